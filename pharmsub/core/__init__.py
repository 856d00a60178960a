"""Core domain logic for the Pharmsub subscription tracker.

This package contains zero external dependencies beyond date arithmetic
and represents the pure business logic of the application. Storage and
user-facing entry points are handled by the adapters package.
"""

from .errors import (
    AuthenticationFailure,
    PharmsubError,
    RepositoryReadFailure,
    RepositoryWriteFailure,
    ValidationError,
)
from .models import (
    ON_HOLD,
    ActiveStatus,
    Fulfillment,
    LogEntry,
    OnHoldStatus,
    PhysicianStatus,
    Subscription,
    SubscriptionStats,
    SubscriptionStatus,
    Substatus,
)
from .scheduler import add_months, generate_schedule
from .status import derive_status, project

__all__ = [
    "ON_HOLD",
    "ActiveStatus",
    "AuthenticationFailure",
    "Fulfillment",
    "LogEntry",
    "OnHoldStatus",
    "PharmsubError",
    "PhysicianStatus",
    "RepositoryReadFailure",
    "RepositoryWriteFailure",
    "Subscription",
    "SubscriptionStats",
    "SubscriptionStatus",
    "Substatus",
    "ValidationError",
    "add_months",
    "derive_status",
    "generate_schedule",
    "project",
]
