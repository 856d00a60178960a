"""Exception types raised by the Pharmsub core and its adapters.

Adapters translate driver-specific failures (aiosqlite, asyncpg) into these
types so that the core and the CLI never depend on a storage library.
"""


class PharmsubError(Exception):
    """Base class for all Pharmsub errors."""


class ValidationError(PharmsubError, ValueError):
    """Input or record data violates a subscription invariant.

    Subclasses ValueError so callers that guard domain construction with
    ``except ValueError`` keep working.
    """


class AuthenticationFailure(PharmsubError):
    """A session with the subscription repository could not be established."""


class RepositoryReadFailure(PharmsubError):
    """The repository could not load a snapshot of the subscription collection."""


class RepositoryWriteFailure(PharmsubError):
    """The repository rejected a create, update or delete."""


__all__ = [
    "AuthenticationFailure",
    "PharmsubError",
    "RepositoryReadFailure",
    "RepositoryWriteFailure",
    "ValidationError",
]
