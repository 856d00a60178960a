"""Fake implementations of core ports for testing.

These in-memory implementations allow core domain logic to be tested
without external dependencies:

- FakeSubscriptionRepository: In-memory subscription store with a
  synchronous snapshot feed and switchable failures
"""

from .repository import FakeSubscriptionRepository

__all__ = [
    "FakeSubscriptionRepository",
]
