"""User administration.

Only the database owner manages users. Every user, the owner included, can
change their own password. A password lives in two places: the user's
``SECURE`` table (salted PBKDF2 key) and their catalog login record.
"""

import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection

from . import crud
from .auth import operation
from .database import attached
from .errors import AuthorizationError, CredentialError, NotFoundError, ValidationError
from .provisioning import SECURE
from .schemas import Role, SecureRecord, UserOut
from .security import hash_login
from .validators import validate_identifier, validate_password

logger = logging.getLogger(__name__)


def is_blank(value: Optional[str]) -> bool:
    return not isinstance(value, str) or not value.strip()


def check_new_password(password: str, operation: str) -> None:
    if not validate_password(password):
        raise ValidationError("password must be text that can be encoded as UTF-8", operation)
    if password != password.strip():
        raise ValidationError("password cannot have leading or trailing whitespace", operation)


def check_username(username: Optional[str], operation: str) -> str:
    """Return ``username`` uppercased, or raise ``ValidationError``."""
    if not validate_identifier(username):
        raise ValidationError(
            "usernames can only contain ASCII alphanumeric characters and underscores",
            operation,
        )
    return username.upper()


class UserAdministration:
    """User operations of :class:`~contactdb.session.SessionManager`."""

    def _read_secure(self, conn: Connection, username: str) -> SecureRecord:
        row = conn.execute(text(f"SELECT SALT, HASH FROM {username}.{SECURE}")).first()
        if row is None:
            raise NotFoundError(f"no password on record for '{username}'")
        return SecureRecord(salt=row.SALT, hash=row.HASH)

    def _write_secure(self, conn: Connection, username: str, password: str) -> None:
        salt = self.credentials.generate_salt()
        hashed = self.credentials.hash_password(password, salt)
        conn.execute(
            text(f"UPDATE {username}.{SECURE} SET SALT = :salt, HASH = :hash"),
            {"salt": salt, "hash": hashed},
        )
        crud.update_user_password(conn, username, hash_login(password))

    def _check_owner_password(self, conn: Connection, owner_password: str, operation: str) -> None:
        record = self._read_secure(conn, self.guard.owner)
        if not self.credentials.verify_password(owner_password, record.hash, record.salt):
            raise CredentialError("could not verify the database owner's password", operation)

    def _require_user(self, conn: Connection, username: str, operation: str) -> None:
        if crud.get_user_hash(conn, username) is None:
            raise NotFoundError(f"user '{username}' doesn't exist", operation)

    @operation(role=Role.OWNER)
    def list_users(self) -> list[UserOut]:
        """Return every user with their role, sorted by name."""
        with self.transaction() as conn:
            names = crud.list_users(conn)
        return [
            UserOut(username=name, role=Role.OWNER if name == self.guard.owner else Role.REGULAR)
            for name in names
        ]

    @operation(role=Role.OWNER)
    def add_user(self, username: str, password: str, owner_password: str) -> str:
        """
        Create a regular user with empty ``CONTACTS`` and ``GROUPS`` tables.

        Args:
            username (str): New username; stored uppercased.
            password (str): New user's password.
            owner_password (str): The caller's password, re-verified.

        Returns:
            str: The stored username.

        Raises:
            ValidationError: On a blank or malformed username or password.
            CredentialError: If ``owner_password`` is wrong.
            AlreadyExists: If the user already exists.
        """
        if is_blank(username) or is_blank(password) or is_blank(owner_password):
            raise ValidationError(
                "no argument can be null, empty, or all whitespace",
                "add_user",
            )
        check_new_password(password, "add_user")
        username = check_username(username, "add_user")

        with self.transaction() as conn:
            self._check_owner_password(conn, owner_password, "add_user")

        self.provisioner.provision_user(self.session.connection, username, password)
        return username

    @operation(role=Role.OWNER)
    def delete_user(self, username: str, owner_password: str) -> str:
        """
        Delete a regular user together with their tables.

        Raises:
            NotFoundError: If the user doesn't exist.
            AuthorizationError: If ``username`` is the database owner.
            CredentialError: If ``owner_password`` is wrong.
        """
        if is_blank(username) or is_blank(owner_password):
            raise ValidationError(
                "no argument can be null, empty, or all whitespace", "delete_user"
            )
        username = check_username(username, "delete_user")

        with self.transaction() as conn:
            self._require_user(conn, username, "delete_user")
            if username == self.guard.owner:
                raise AuthorizationError("the database owner cannot be deleted", "delete_user")
            self._check_owner_password(conn, owner_password, "delete_user")

        self.provisioner.deprovision_user(self.session.connection, username)
        return username

    @operation()
    def change_password(self, old_password: str, new_password: str) -> bool:
        """
        Change the caller's own password.

        Raises:
            CredentialError: If ``old_password`` is wrong; nothing changes.
        """
        if is_blank(old_password) or is_blank(new_password):
            raise ValidationError(
                "neither argument can be null, empty, or all whitespace", "change_password"
            )
        check_new_password(new_password, "change_password")
        username = self.guard.current_user()

        with self.transaction() as conn:
            record = self._read_secure(conn, username)
            if not self.credentials.verify_password(old_password, record.hash, record.salt):
                raise CredentialError("invalid password; password not changed", "change_password")
            self._write_secure(conn, username, new_password)

        logger.info("change_password() : password successfully changed")
        return True

    @operation(role=Role.OWNER)
    def reset_password(self, username: str, new_password: str, owner_password: str) -> bool:
        """
        Set another user's password without knowing the old one.

        Raises:
            NotFoundError: If the user doesn't exist.
            CredentialError: If ``owner_password`` is wrong.
        """
        if is_blank(username) or is_blank(new_password) or is_blank(owner_password):
            raise ValidationError(
                "no argument can be null, empty, or all whitespace",
                "reset_password",
            )
        check_new_password(new_password, "reset_password")
        username = check_username(username, "reset_password")

        with self.transaction() as conn:
            self._require_user(conn, username, "reset_password")
            self._check_owner_password(conn, owner_password, "reset_password")

        with attached(self.session.connection, self.session.db_dir, username):
            with self.transaction() as conn:
                self._write_secure(conn, username, new_password)

        logger.info("reset_password() : password of '%s' successfully reset", username)
        return True

    @operation()
    def verify_password(self, username: str, password: str) -> bool:
        """
        Check ``password`` against a user's ``SECURE`` record.

        The owner may check any user; a regular user only themself.
        """
        username = check_username(username, "verify_password")
        if not self.guard.is_owner() and username != self.guard.current_user():
            raise AuthorizationError(
                "regular users can only verify their own password", "verify_password"
            )

        with self.transaction() as conn:
            self._require_user(conn, username, "verify_password")

        with attached(self.session.connection, self.session.db_dir, username):
            with self.transaction() as conn:
                record = self._read_secure(conn, username)
        return self.credentials.verify_password(password, record.hash, record.salt)
