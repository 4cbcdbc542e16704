"""Creation and removal of user namespaces.

Each user (the owner included) has a schema named after them, backed by its
own SQLite file. Regular users get ``CONTACTS``, ``GROUPS`` and ``SECURE``;
the owner only gets ``SECURE``.

Every provisioning run is a single transaction: SQLite DDL is transactional,
so a failed step rolls back the catalog rows and the tables created before
it. A namespace file created by a failed run is removed afterwards.
"""

import logging
import sqlite3
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from . import crud
from .contacts import column_definitions
from .database import Base, attach, attached, attached_schemas, detach, namespace_path
from .errors import AlreadyExists, ConnectivityError, ContactDBError, ReservedWord, ValidationError
from .security import CredentialStore, hash_login
from .validators import validate_identifier

logger = logging.getLogger(__name__)

CONTACTS = "CONTACTS"
GROUPS = "GROUPS"
SECURE = "SECURE"

#: Tables of a regular user, in creation order.
USER_TABLES = (CONTACTS, GROUPS, SECURE)

#: Drop order: groups reference contacts.
DROP_ORDER = (GROUPS, CONTACTS, SECURE)


def translate_engine_error(exc: Exception, username: str, operation: str) -> ContactDBError:
    """Classify a store failure raised while a username is used as an identifier."""
    if "syntax error" in str(exc):
        return ReservedWord(
            f'username "{username}" cannot be a reserved SQL word', operation
        )
    return ConnectivityError.from_exception(exc, operation)


class SchemaProvisioner:
    """
    Builds and tears down user namespaces.

    Args:
        credentials (CredentialStore): Used to seed ``SECURE`` tables.
        db_dir (Path): Directory of the database being provisioned.
    """

    def __init__(self, credentials: CredentialStore, db_dir: Path):
        self.credentials = credentials
        self.db_dir = db_dir

    def _create_secure(self, conn: Connection, schema: str, password: str) -> None:
        conn.execute(
            text(
                f"CREATE TABLE IF NOT EXISTS {schema}.{SECURE} "
                "(SALT VARCHAR(1024) NOT NULL, HASH VARCHAR(1024) NOT NULL)"
            )
        )
        salt = self.credentials.generate_salt()
        hashed = self.credentials.hash_password(password, salt)
        conn.execute(
            text(f"INSERT INTO {schema}.{SECURE} (SALT, HASH) VALUES (:salt, :hash)"),
            {"salt": salt, "hash": hashed},
        )
        crud.register_table(conn, schema, SECURE)

    def _reseed_secure(self, conn: Connection, schema: str, password: str) -> None:
        salt = self.credentials.generate_salt()
        hashed = self.credentials.hash_password(password, salt)
        conn.execute(
            text(f"UPDATE {schema}.{SECURE} SET SALT = :salt, HASH = :hash"),
            {"salt": salt, "hash": hashed},
        )

    def _create_contacts(self, conn: Connection, schema: str) -> None:
        conn.execute(
            text(
                f"CREATE TABLE IF NOT EXISTS {schema}.{CONTACTS} "
                f"(ID INTEGER PRIMARY KEY AUTOINCREMENT, {column_definitions()})"
            )
        )
        crud.register_table(conn, schema, CONTACTS)

    def _create_groups(self, conn: Connection, schema: str) -> None:
        conn.execute(
            text(
                f"CREATE TABLE IF NOT EXISTS {schema}.{GROUPS} "
                "(ID INTEGER PRIMARY KEY AUTOINCREMENT, NAME VARCHAR(40), CONTACT_ID INTEGER)"
            )
        )
        crud.register_table(conn, schema, GROUPS)

    def provision_owner(self, conn: Connection, username: str, password: str, boot_password: str) -> None:
        """
        Set up a brand-new database for its owner.

        Creates the catalog, records ``username`` as the immutable owner,
        turns on authentication, records the encryption and authorization
        flags, grants the owner full access and creates the owner's schema
        with a seeded ``SECURE`` table.

        Raises:
            ContactDBError: On any failure; nothing is committed.
        """
        if not validate_identifier(username):
            raise ValidationError(
                "usernames can only contain ASCII alphanumeric characters and underscores",
                "provision_owner",
            )
        crud.check_username(username)

        try:
            attach(conn, self.db_dir, username)
        except sqlite3.Error as exc:
            raise translate_engine_error(exc, username, "provision_owner") from exc

        try:
            with conn.begin():
                Base.metadata.create_all(conn)
                crud.create_schema(conn, crud.OWNER_SCHEMA, username)
                crud.set_property(conn, crud.REQUIRE_AUTHENTICATION, "true")
                crud.set_property(conn, crud.SQL_AUTHORIZATION, "true")
                crud.set_property(conn, crud.DATA_ENCRYPTION, "true")
                crud.set_property(conn, crud.BOOT_PASSWORD, hash_login(boot_password))

                crud.create_schema(conn, username, username)
                self._create_secure(conn, username, password)

                crud.create_user(conn, username, hash_login(password))
                crud.set_property(conn, crud.FULL_ACCESS_USERS, username)
        except SQLAlchemyError as exc:
            detach(conn, username)
            raise ConnectivityError.from_exception(exc, "provision_owner") from exc
        except Exception:
            detach(conn, username)
            raise

        logger.info("provision_owner() : database owner '%s' provisioned", username)

    def provision_user(self, conn: Connection, username: str, password: str) -> None:
        """
        Create a regular user with their schema, tables and grants.

        Steps whose object already exists are skipped, so a user left
        incomplete by an earlier failure is repaired rather than duplicated.

        Raises:
            AlreadyExists: If the user and all their tables already exist,
                or ``username`` is the database owner.
            InvalidUsername: If the engine rejects the identifier.
            ReservedWord: If the identifier is an SQL keyword.
            ConnectivityError: On any other store failure.
        """
        if not validate_identifier(username):
            raise ValidationError(
                "usernames can only contain ASCII alphanumeric characters and underscores",
                "provision_user",
            )
        crud.check_username(username)

        path = namespace_path(self.db_dir, username)
        new_file = not path.exists()
        try:
            with attached(conn, self.db_dir, username):
                with conn.begin():
                    self._provision_user_tables(conn, username, password)
        except (sqlite3.Error, SQLAlchemyError) as exc:
            self._discard(conn, path, new_file, username)
            raise translate_engine_error(exc, username, "provision_user") from exc
        except Exception:
            self._discard(conn, path, new_file, username)
            raise

        logger.info("provision_user() : user '%s' successfully added", username)

    def _discard(self, conn: Connection, path: Path, new_file: bool, username: str) -> None:
        if new_file and username not in attached_schemas(conn):
            path.unlink(missing_ok=True)

    def _provision_user_tables(self, conn: Connection, username: str, password: str) -> None:
        if username == crud.get_owner(conn):
            raise AlreadyExists(f"user '{username}' is the database owner", "provision_user")

        user_exists = crud.get_user_hash(conn, username) is not None
        tables = {table for _, table in crud.list_tables(conn, username)}
        if user_exists and tables.issuperset(USER_TABLES):
            raise AlreadyExists(f"user '{username}' already exists", "provision_user")

        if user_exists:
            crud.update_user_password(conn, username, hash_login(password))
            if SECURE in tables:
                self._reseed_secure(conn, username, password)
        else:
            crud.create_user(conn, username, hash_login(password))
        if not crud.schema_exists(conn, username):
            crud.create_schema(conn, username, username)

        if CONTACTS not in tables:
            self._create_contacts(conn, username)
            crud.grant_all(conn, username, CONTACTS, username)
        if GROUPS not in tables:
            self._create_groups(conn, username)
            crud.grant_all(conn, username, GROUPS, username)
        if SECURE not in tables:
            self._create_secure(conn, username, password)
            crud.grant_all(conn, username, SECURE, username)

    def deprovision_user(self, conn: Connection, username: str) -> None:
        """
        Drop a user's tables, schema and login record, in that order.

        The first failing step aborts the run and rolls back the steps
        before it. The namespace file is removed once the drop commits.

        Raises:
            ConnectivityError: On any store failure.
        """
        try:
            with attached(conn, self.db_dir, username):
                with conn.begin():
                    for table in DROP_ORDER:
                        conn.execute(text(f"DROP TABLE {username}.{table}"))
                        crud.unregister_table(conn, username, table)
                    crud.drop_schema(conn, username)
                    crud.drop_user(conn, username)
        except (sqlite3.Error, SQLAlchemyError) as exc:
            raise ConnectivityError.from_exception(exc, "deprovision_user") from exc

        namespace_path(self.db_dir, username).unlink(missing_ok=True)
        logger.info("deprovision_user() : user '%s' successfully deleted", username)
