"""Caller identity, role gates and the public operation boundary."""

import functools
import logging
import sqlite3
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from .errors import (
    AuthorizationError,
    ConnectivityError,
    ContactDBError,
    NotConnected,
    Result,
)
from .schemas import Role


class AuthorizationGuard:
    """
    Resolves the current caller and the database owner for one session.

    The owner is read from the catalog when the session opens; it cannot
    change while the database exists.

    Args:
        username (str): Authenticated user of the session.
        owner (str): Authorization id of the ``SYS`` schema.
    """

    def __init__(self, username: str, owner: str):
        self.username = username.upper()
        self.owner = owner.upper()

    def current_user(self) -> str:
        """Return the caller's username, uppercased."""
        return self.username

    def is_owner(self) -> bool:
        """Return ``True`` if the caller is the database owner."""
        return self.username == self.owner

    def role(self) -> Role:
        return Role.OWNER if self.is_owner() else Role.REGULAR

    def require(self, role: Role, operation: str) -> None:
        """
        Check that the caller holds ``role``.

        Raises:
            AuthorizationError: If the caller's role differs.
        """
        if role is Role.OWNER and not self.is_owner():
            raise AuthorizationError(
                f"only the database owner can use {operation}()", operation
            )
        if role is Role.REGULAR and self.is_owner():
            raise AuthorizationError(
                "only regular (non-owner) users have lists of contacts and groups",
                operation,
            )


def operation(role: Role | None = None, requires_connection: bool = True) -> Callable:
    """
    Turn a method of :class:`~contactdb.session.SessionManager` into a
    public operation.

    The wrapped method may raise :class:`ContactDBError` or store
    exceptions; they are logged against the operation's name and returned
    as a failed :class:`Result`. Plain return values are wrapped in a
    successful one.

    Args:
        role (Role | None): Role the caller must hold; ``None`` admits both.
        requires_connection (bool): Fail with ``NotConnected`` when no
            session is live.
    """

    def decorator(func: Callable) -> Callable:
        name = func.__name__
        logger = logging.getLogger(func.__module__)

        @functools.wraps(func)
        def wrapper(self, *args, **kwargs) -> Result:
            try:
                if requires_connection and self.guard is None:
                    raise NotConnected("not connected to a database", name)
                if role is not None:
                    self.guard.require(role, name)
                value = func(self, *args, **kwargs)
            except ContactDBError as exc:
                logger.log(exc.level, "%s() : %s", name, exc)
                return Result.failure(exc)
            except (SQLAlchemyError, sqlite3.Error) as exc:
                error = ConnectivityError.from_exception(exc, name)
                logger.log(error.level, "%s() : %s", name, error)
                return Result.failure(error)
            return value if isinstance(value, Result) else Result.success(value)

        return wrapper

    return decorator
