"""Error taxonomy and the result type returned by every public operation.

Errors are raised inside the package and converted into a failed
:class:`Result` at the public boundary, so callers can tell failure causes
apart without catching exceptions.
"""

import logging
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ContactDBError(Exception):
    """Base class for every classified failure.

    Attributes:
        message: Human-readable cause.
        operation: Name of the failing operation, when known.
        level: Logging level the failure is reported at.
    """

    level = logging.ERROR

    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation


class ValidationError(ContactDBError):
    """Rejected field value, identifier or argument."""


class UnknownField(ValidationError):
    """A contact record has no field with the requested name."""


class InvalidArgument(ValidationError):
    """An argument is outside its accepted range."""


class InvalidUsername(ValidationError):
    """The engine does not accept the identifier as a username."""


class ReservedWord(ValidationError):
    """The identifier is an SQL keyword and cannot name a schema."""


class AuthorizationError(ContactDBError):
    """The caller's role may not run the requested operation."""


class NotFoundError(ContactDBError):
    """A user, contact or group does not exist, or no rows were affected."""

    level = logging.WARNING


class CredentialError(ContactDBError):
    """A password or boot password did not match."""


class AlreadyExists(ContactDBError):
    """A user, table or group membership already exists."""


class AlreadyInitialized(ContactDBError):
    """A session is already live."""

    level = logging.WARNING


class HashingUnavailable(ContactDBError):
    """The key-derivation primitive cannot be located."""


class ConnectivityError(ContactDBError):
    """Failure reported by the underlying store.

    Attributes:
        sql_state: Symbolic error name reported by SQLite, if any.
        error_code: Numeric error code reported by SQLite, if any.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        sql_state: Optional[str] = None,
        error_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, operation)
        self.sql_state = sql_state
        self.error_code = error_code

    @classmethod
    def from_exception(cls, exc: Exception, operation: Optional[str] = None):
        """Build from a SQLAlchemy/DBAPI exception, keeping SQLite's codes."""
        orig = getattr(exc, "orig", None) or exc
        return cls(
            str(orig),
            operation,
            sql_state=getattr(orig, "sqlite_errorname", None),
            error_code=getattr(orig, "sqlite_errorcode", None),
        )

    def __str__(self) -> str:
        return (
            f"{self.message} [SQL State: {self.sql_state}, "
            f"Error Code: {self.error_code}]"
        )


class NotConnected(ConnectivityError):
    """An operation was called without a live session."""


@dataclass(frozen=True)
class Result(Generic[T]):
    """Success value or classified error.

    A result is truthy exactly when it succeeded.
    """

    value: Optional[T] = None
    error: Optional[ContactDBError] = None

    @classmethod
    def success(cls, value: T = True) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ContactDBError) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def __bool__(self) -> bool:
        return self.ok

    def unwrap(self) -> T:
        """Return the value, re-raising the error of a failed result."""
        if self.error is not None:
            raise self.error
        return self.value
