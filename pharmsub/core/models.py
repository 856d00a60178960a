"""Domain models for the Pharmsub subscription tracker.

All models in this module use only Python standard library types,
ensuring zero external dependencies in the core domain.

Records are frozen: every mutation is expressed as a method that returns a
new Subscription, which the service then writes back field by field.
"""

from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, TypeAlias

from .errors import ValidationError

# Allowed subscription lengths, in monthly fulfillments.
DURATIONS = frozenset({1, 3, 6})

# Document keys shared by every repository adapter.
PATIENT_NAME = "patientName"
NEW_RX_CALL = "newRxCall"
DURATION = "duration"
START_DATE = "startDate"
STATUS = "status"
PHYSICIAN_STATUS = "physicianStatus"
FULFILLMENTS = "fulfillments"
COMMUNICATION_LOG = "communicationLog"

EDITABLE_FIELDS = frozenset({PATIENT_NAME, NEW_RX_CALL, STATUS, PHYSICIAN_STATUS})
MUTABLE_FIELDS = EDITABLE_FIELDS | {FULFILLMENTS, COMMUNICATION_LOG}


class Substatus(Enum):
    """Pharmacy fulfillment states of a subscription that is not on hold."""

    PENDING = "Pending"
    APPROVED = "Approved"
    FULFILLED = "Fulfilled"
    RENEWAL_NEEDED = "Renewal Needed"


@dataclass(frozen=True)
class ActiveStatus:
    """A subscription that participates in fulfillment-based derivation."""

    substatus: Substatus

    def __post_init__(self) -> None:
        if not isinstance(self.substatus, Substatus):
            raise ValidationError(f"Invalid substatus: {self.substatus!r}")

    @property
    def label(self) -> str:
        return self.substatus.value

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class OnHoldStatus:
    """A subscription suspended by staff.

    Sticky: status derivation never overrides it.
    """

    @property
    def label(self) -> str:
        return "On Hold"

    def __str__(self) -> str:
        return self.label


SubscriptionStatus: TypeAlias = ActiveStatus | OnHoldStatus

PENDING = ActiveStatus(Substatus.PENDING)
APPROVED = ActiveStatus(Substatus.APPROVED)
FULFILLED = ActiveStatus(Substatus.FULFILLED)
RENEWAL_NEEDED = ActiveStatus(Substatus.RENEWAL_NEEDED)
ON_HOLD = OnHoldStatus()


def parse_status(value: str | SubscriptionStatus) -> SubscriptionStatus:
    """Parse a display label ("Pending", "On Hold", ...) into a status variant.

    Raises:
        ValidationError: If the label is not a known status.
    """
    if isinstance(value, (ActiveStatus, OnHoldStatus)):
        return value
    if value == ON_HOLD.label:
        return ON_HOLD
    try:
        return ActiveStatus(Substatus(value))
    except ValueError as e:
        raise ValidationError(f"Unknown subscription status: {value!r}") from e


class PhysicianStatus(Enum):
    """Physician approval track, independent of the pharmacy status."""

    PENDING = "Pending"
    APPROVED = "Approved"


def parse_physician_status(value: str | PhysicianStatus) -> PhysicianStatus:
    """Parse a physician status label.

    Raises:
        ValidationError: If the label is not a known physician status.
    """
    if isinstance(value, PhysicianStatus):
        return value
    try:
        return PhysicianStatus(value)
    except ValueError as e:
        raise ValidationError(f"Unknown physician status: {value!r}") from e


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid timestamp: {value!r}") from e


@dataclass(frozen=True)
class Fulfillment:
    """One scheduled monthly shipment within a subscription.

    ``slot`` is the 0-based position assigned at creation. It never changes,
    so it can tell apart two fulfillments whose dates happen to coincide.
    """

    slot: int
    fulfillment_date: datetime
    shipped: bool = False
    tracking: str | None = None

    def __post_init__(self) -> None:
        """Validate fulfillment invariants on creation."""
        if self.slot < 0:
            raise ValidationError(f"slot must be >= 0, got {self.slot}")
        if not self.shipped and self.tracking:
            raise ValidationError("tracking can only be set on a shipped fulfillment")

    def matches(self, fulfillment_date: datetime, slot: int | None = None) -> bool:
        """Identity check used by shipment recording: date equality, optionally slot."""
        if self.fulfillment_date != fulfillment_date:
            return False
        return slot is None or self.slot == slot

    def ship(self, tracking: str | None) -> "Fulfillment":
        """Return a shipped copy carrying the given tracking value."""
        if self.shipped:
            raise ValidationError(
                f"Fulfillment for {self.fulfillment_date.date()} is already shipped"
            )
        return replace(self, shipped=True, tracking=tracking)

    def to_document(self) -> dict[str, Any]:
        return {
            "slot": self.slot,
            "fulfillmentDate": self.fulfillment_date.isoformat(),
            "shipped": self.shipped,
            "tracking": self.tracking,
        }

    @classmethod
    def from_document(cls, document: Mapping[str, Any], position: int) -> "Fulfillment":
        """Build a fulfillment from its document; ``position`` backs a missing slot."""
        try:
            return cls(
                slot=int(document.get("slot", position)),
                fulfillment_date=_parse_timestamp(document["fulfillmentDate"]),
                shipped=bool(document.get("shipped", False)),
                tracking=document.get("tracking"),
            )
        except KeyError as e:
            raise ValidationError(f"Fulfillment document missing field: {e}") from e


@dataclass(frozen=True)
class LogEntry:
    """A single communication log entry."""

    date: datetime
    message: str
    actor: str

    def __post_init__(self) -> None:
        """Validate log entry invariants on creation."""
        if not self.message or not self.message.strip():
            raise ValidationError("message must be a non-empty string")
        if not self.actor or not self.actor.strip():
            raise ValidationError("actor must be a non-empty string")

    def to_document(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "message": self.message,
            "actor": self.actor,
        }

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "LogEntry":
        try:
            return cls(
                date=_parse_timestamp(document["date"]),
                message=document["message"],
                actor=document["actor"],
            )
        except KeyError as e:
            raise ValidationError(f"Log entry document missing field: {e}") from e


def shipment_message(fulfillment_date: datetime, tracking: str | None) -> str:
    """Log message recorded when a fulfillment ships."""
    return (
        f"Fulfillment for {fulfillment_date:%Y-%m-%d} marked as shipped. "
        f"Tracking: {tracking or 'N/A'}"
    )


@dataclass(frozen=True)
class Subscription:
    """A patient's multi-month prescription fulfillment plan.

    The aggregate root: fulfillments and log entries are owned exclusively
    by their subscription and only change through the ``with_*`` methods,
    which return new records.

    ``id`` is empty until the repository assigns one on creation.
    ``duration`` and ``start_date`` are fixed at creation; the edit
    transform does not accept them.
    """

    patient_name: str
    duration: int
    start_date: datetime
    status: SubscriptionStatus
    physician_status: PhysicianStatus
    fulfillments: tuple[Fulfillment, ...]
    communication_log: tuple[LogEntry, ...]
    new_rx_call: bool = False
    id: str = ""

    def __post_init__(self) -> None:
        """Validate subscription invariants on creation or deserialization."""
        # Accept lists from callers and keep tuples internally
        if not isinstance(self.fulfillments, tuple):
            object.__setattr__(self, "fulfillments", tuple(self.fulfillments))
        if not isinstance(self.communication_log, tuple):
            object.__setattr__(self, "communication_log", tuple(self.communication_log))

        if not self.patient_name or not self.patient_name.strip():
            raise ValidationError("patient_name must be a non-empty string")
        if not isinstance(self.new_rx_call, bool):
            raise ValidationError(f"new_rx_call must be a boolean, got {self.new_rx_call!r}")
        if self.duration not in DURATIONS:
            raise ValidationError(
                f"duration must be one of {sorted(DURATIONS)}, got {self.duration}"
            )
        if not isinstance(self.status, (ActiveStatus, OnHoldStatus)):
            raise ValidationError(f"Invalid status: {self.status!r}")
        if not isinstance(self.physician_status, PhysicianStatus):
            raise ValidationError(f"Invalid physician status: {self.physician_status!r}")
        if len(self.fulfillments) != self.duration:
            raise ValidationError(
                f"Expected {self.duration} fulfillments, got {len(self.fulfillments)}"
            )
        if not self.communication_log:
            raise ValidationError("communication_log must contain at least one entry")

    @property
    def on_hold(self) -> bool:
        return isinstance(self.status, OnHoldStatus)

    def find_fulfillment(
        self, fulfillment_date: datetime, slot: int | None = None
    ) -> Fulfillment | None:
        """Return the first fulfillment matching the date (and slot, if given)."""
        for fulfillment in self.fulfillments:
            if fulfillment.matches(fulfillment_date, slot):
                return fulfillment
        return None

    def with_id(self, subscription_id: str) -> "Subscription":
        return replace(self, id=subscription_id)

    def with_status(self, status: SubscriptionStatus) -> "Subscription":
        return replace(self, status=status)

    def with_edits(
        self,
        *,
        patient_name: str | None = None,
        status: str | SubscriptionStatus | None = None,
        physician_status: str | PhysicianStatus | None = None,
        new_rx_call: bool | None = None,
    ) -> "Subscription":
        """Apply an edit of the editable fields.

        Fields left as None keep their current value. Identity, schedule,
        log, duration and start date always carry over unchanged.
        """
        changes: dict[str, Any] = {}
        if patient_name is not None:
            changes["patient_name"] = patient_name.strip()
        if status is not None:
            changes["status"] = parse_status(status)
        if physician_status is not None:
            changes["physician_status"] = parse_physician_status(physician_status)
        if new_rx_call is not None:
            changes["new_rx_call"] = new_rx_call
        return replace(self, **changes)

    def with_shipment(
        self,
        fulfillment_date: datetime,
        tracking: str | None,
        *,
        actor: str,
        at: datetime,
        slot: int | None = None,
    ) -> "Subscription":
        """Mark the fulfillment matching ``fulfillment_date`` as shipped.

        Every other fulfillment passes through unchanged. When nothing
        matches the array is returned as-is; the log entry is appended either
        way.
        """
        fulfillments = tuple(
            f.ship(tracking) if f.matches(fulfillment_date, slot) else f
            for f in self.fulfillments
        )
        entry = LogEntry(
            date=at,
            message=shipment_message(fulfillment_date, tracking),
            actor=actor,
        )
        return replace(
            self,
            fulfillments=fulfillments,
            communication_log=self.communication_log + (entry,),
        )

    def with_log_entry(self, message: str, *, actor: str, at: datetime) -> "Subscription":
        """Append one communication log entry."""
        entry = LogEntry(date=at, message=message, actor=actor)
        return replace(self, communication_log=self.communication_log + (entry,))

    def to_document(self) -> dict[str, Any]:
        """Serialize to the JSON-compatible document shared by all repositories.

        The ``id`` is not part of the document; stores keep it as the key.
        """
        return {
            PATIENT_NAME: self.patient_name,
            NEW_RX_CALL: self.new_rx_call,
            DURATION: self.duration,
            START_DATE: self.start_date.isoformat(),
            STATUS: self.status.label,
            PHYSICIAN_STATUS: self.physician_status.value,
            FULFILLMENTS: [f.to_document() for f in self.fulfillments],
            COMMUNICATION_LOG: [e.to_document() for e in self.communication_log],
        }

    @classmethod
    def from_document(
        cls, document: Mapping[str, Any], subscription_id: str = ""
    ) -> "Subscription":
        """Deserialize a repository document.

        Raises:
            ValidationError: If the document is missing fields or breaks an invariant.
        """
        try:
            return cls(
                id=subscription_id,
                patient_name=document[PATIENT_NAME],
                new_rx_call=bool(document.get(NEW_RX_CALL, False)),
                duration=int(document[DURATION]),
                start_date=_parse_timestamp(document[START_DATE]),
                status=parse_status(document[STATUS]),
                physician_status=parse_physician_status(document[PHYSICIAN_STATUS]),
                fulfillments=tuple(
                    Fulfillment.from_document(doc, position)
                    for position, doc in enumerate(document[FULFILLMENTS])
                ),
                communication_log=tuple(
                    LogEntry.from_document(doc) for doc in document[COMMUNICATION_LOG]
                ),
            )
        except KeyError as e:
            raise ValidationError(f"Subscription document missing field: {e}") from e


def encode_fields(subscription: Subscription, names: frozenset[str] | set[str]) -> dict[str, Any]:
    """Pick the named document fields of a subscription, ready for ``update``."""
    document = subscription.to_document()
    return {name: document[name] for name in names}


@dataclass(frozen=True)
class SubscriptionStats:
    """Summary counts over the current subscription snapshot."""

    total_subscriptions: int
    by_status: Mapping[str, int]  # derived status label -> count
    by_physician_status: Mapping[str, int]
    new_rx_calls: int
    renewals_needed: int
    unshipped_fulfillments: int = 0

    def __post_init__(self) -> None:
        """Convert mutable dicts to immutable proxies."""
        object.__setattr__(self, "by_status", MappingProxyType(dict(self.by_status)))
        object.__setattr__(
            self, "by_physician_status", MappingProxyType(dict(self.by_physician_status))
        )
