"""Session lifecycle and contact operations.

:class:`SessionManager` owns one SQLAlchemy connection to one database and
exposes every public operation. User administration and group handling
live in :mod:`contactdb.users` and :mod:`contactdb.groups` and are mixed in.
"""

import logging
import shutil
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

from pydantic import ValidationError as ParamsError
from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from . import crud
from .auth import AuthorizationGuard, operation
from .contacts import ContactRecord, check_contact_ids
from .core import Settings, configure_logging, get_settings
from .database import attach, attached, attached_schemas, catalog_path, open_engine
from .errors import (
    AlreadyInitialized,
    ConnectivityError,
    ContactDBError,
    CredentialError,
    NotFoundError,
    Result,
    ValidationError,
)
from .groups import GroupOperations
from .provisioning import CONTACTS, GROUPS, SECURE, SchemaProvisioner
from .schemas import ConnectionParams, Role
from .security import CredentialStore, verify_login
from .users import UserAdministration
from .validators import validate_identifier, validate_password

logger = logging.getLogger(__name__)


class State(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"


@dataclass
class ActiveSession:
    """Handles held while connected."""

    database: str
    db_dir: Path
    engine: Engine
    connection: Connection
    username: str
    owner: str
    created: bool = False


class SessionManager(UserAdministration, GroupOperations):
    """
    Connection to one contact database.

    Args:
        settings (Settings | None): Configuration; defaults to the cached
            settings.
        credentials (CredentialStore | None): Password hasher for ``SECURE``
            tables; defaults to one built from ``settings``.
    """

    def __init__(self, settings: Settings | None = None, credentials: CredentialStore | None = None):
        self.settings = settings or get_settings()
        self.credentials = credentials or CredentialStore(self.settings)
        self.state = State.DISCONNECTED
        self.session: Optional[ActiveSession] = None
        self.guard: Optional[AuthorizationGuard] = None
        self.provisioner: Optional[SchemaProvisioner] = None
        configure_logging(self.settings)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.disconnect()

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield the live connection inside a transaction."""
        conn = self.session.connection
        with conn.begin():
            yield conn

    # lifecycle

    def connect(self, database: str, boot_password: str, username: str, password: str) -> Result[ActiveSession]:
        """
        Open ``database`` as ``username``, creating it if it does not exist.

        A new database is owned by ``username``. An existing one checks the
        boot password first, then the username and password. Calling this
        while connected returns the live session unchanged.

        Returns:
            Result[ActiveSession]: The live session.
        """
        if self.session is not None:
            warning = AlreadyInitialized("database already initialised", "connect")
            logger.log(warning.level, "connect() : %s", warning)
            return Result.success(self.session)

        try:
            params = ConnectionParams(
                database=database,
                boot_password=boot_password,
                username=username,
                password=password,
            )
            if not validate_identifier(params.database):
                raise ValidationError(
                    "database names can only contain ASCII alphanumeric characters and underscores",
                    "connect",
                )
            if not validate_identifier(params.username):
                raise ValidationError(
                    "usernames can only contain ASCII alphanumeric characters and underscores",
                    "connect",
                )
            if not (validate_password(params.password) and validate_password(params.boot_password)):
                raise ValidationError(
                    "passwords must be text that can be encoded as UTF-8", "connect"
                )
        except ParamsError:
            error = ValidationError("illegal argument(s) -- no parameter can be null", "connect")
            logger.log(error.level, "connect() : %s", error)
            return Result.failure(error)
        except ValidationError as error:
            logger.log(error.level, "connect() : %s", error)
            return Result.failure(error)

        self.state = State.CONNECTING
        try:
            session = self._open(params)
        except ContactDBError as error:
            self.state = State.DISCONNECTED
            logger.log(error.level, "connect() : %s", error)
            return Result.failure(error)
        except (SQLAlchemyError, sqlite3.Error, OSError) as exc:
            self.state = State.DISCONNECTED
            error = ConnectivityError.from_exception(exc, "connect")
            logger.log(error.level, "connect() : %s", error)
            return Result.failure(error)

        self.session = session
        self.guard = AuthorizationGuard(session.username, session.owner)
        self.provisioner = SchemaProvisioner(self.credentials, session.db_dir)
        self.state = State.CONNECTED
        logger.info("connect() : database '%s' successfully initialised", session.database)
        return Result.success(session)

    def _open(self, params: ConnectionParams) -> ActiveSession:
        db_dir = Path(self.settings.DATA_DIR) / params.database
        username = params.username.upper()
        created = not catalog_path(db_dir).exists()

        engine = open_engine(db_dir, echo=self.settings.SQL_ECHO)
        conn = engine.connect()
        try:
            if created:
                logger.info("connect() : creating database '%s'", params.database)
                provisioner = SchemaProvisioner(self.credentials, db_dir)
                provisioner.provision_owner(conn, username, params.password, params.boot_password)
            else:
                self._authenticate(conn, username, params)

            with conn.begin():
                owner = crud.get_owner(conn)
                has_schema = crud.schema_exists(conn, username)
            if owner is None:
                raise ConnectivityError("database has no owner", "connect")
            if has_schema and username not in attached_schemas(conn):
                attach(conn, db_dir, username)
        except Exception:
            conn.close()
            engine.dispose()
            if created:
                shutil.rmtree(db_dir, ignore_errors=True)
            raise

        return ActiveSession(
            database=params.database,
            db_dir=db_dir,
            engine=engine,
            connection=conn,
            username=username,
            owner=owner,
            created=created,
        )

    def _authenticate(self, conn: Connection, username: str, params: ConnectionParams) -> None:
        with conn.begin():
            boot_hash = crud.get_property(conn, crud.BOOT_PASSWORD)
            if boot_hash is None or not verify_login(params.boot_password, boot_hash):
                raise CredentialError("invalid boot password", "connect")
            if crud.get_property(conn, crud.REQUIRE_AUTHENTICATION) == "true":
                hashed = crud.get_user_hash(conn, username)
                if hashed is None or not verify_login(params.password, hashed):
                    raise CredentialError("invalid username or password", "connect")

    def disconnect(self) -> Result[bool]:
        """Close the session; always ends disconnected."""
        session = self.session
        if session is not None:
            try:
                session.connection.close()
                session.engine.dispose()
            except (SQLAlchemyError, sqlite3.Error) as exc:
                logger.debug("disconnect() : %s", exc)
            logger.info("disconnect() : disconnected from '%s'", session.database)

        self.session = None
        self.guard = None
        self.provisioner = None
        self.state = State.DISCONNECTED
        return Result.success(True)

    @property
    def connected(self) -> bool:
        return self.state is State.CONNECTED

    # identity

    @operation()
    def current_user(self) -> str:
        return self.guard.current_user()

    @operation()
    def owner(self) -> str:
        """Return the database owner, as recorded in the catalog."""
        with self.transaction() as conn:
            return crud.get_owner(conn)

    def is_owner(self) -> bool:
        """``True`` if connected as the database owner."""
        return self.guard is not None and self.guard.is_owner()

    @operation()
    def database_name(self) -> str:
        return self.session.database

    # tables

    def _visible_tables(self, conn: Connection) -> list[str]:
        user = self.guard.current_user()
        if crud.has_full_access(conn, user):
            pairs = crud.list_tables(conn)
        else:
            pairs = [
                (schema, table)
                for schema, table in crud.granted_tables(conn, user)
                if table != SECURE
            ]
        return [f"{schema}.{table}" for schema, table in pairs]

    @operation()
    def list_tables(self) -> list[str]:
        """
        Return the fully-qualified tables visible to the caller.

        The owner sees every user table; a regular user sees their own
        ``CONTACTS`` and ``GROUPS``.
        """
        with self.transaction() as conn:
            return self._visible_tables(conn)

    @operation()
    def read_table(self, name: str) -> list[list[Optional[str]]]:
        """
        Return a table as rows of text, header row first.

        Regular users may omit their own schema (``"contacts"``); the owner
        must always use fully-qualified names. ``NULL`` values are kept as
        ``None``.

        Raises:
            NotFoundError: If the table is not visible to the caller.
        """
        return self._read_table(name, "read_table")

    def _read_table(self, name: str, op: str) -> list[list[Optional[str]]]:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("table name cannot be null, empty, or all whitespace", op)

        table = name.strip().upper()
        if "." not in table and not self.guard.is_owner():
            table = f"{self.guard.current_user()}.{table}"

        with self.transaction() as conn:
            visible = self._visible_tables(conn)
        if table not in visible:
            raise NotFoundError(f"table '{name}' cannot be found", op)

        schema = table.split(".", 1)[0]
        with attached(self.session.connection, self.session.db_dir, schema):
            with self.transaction() as conn:
                result = conn.execute(text(f"SELECT * FROM {table} ORDER BY ROWID"))
                header = [column.upper() for column in result.keys()]
                rows = [[None if value is None else str(value) for value in row] for row in result]
        return [header] + rows

    @operation()
    def format_table(self, name: str, column_width: int = 12) -> str:
        """
        Render a table as fixed-width text.

        Cells wider than ``column_width`` are cut and end in ``...``; a rule
        separates the header from the data.
        """
        if isinstance(column_width, bool) or not isinstance(column_width, int) or column_width < 4:
            raise ValidationError("column width must be an integer of at least 4", "format_table")

        table = self._read_table(name, "format_table")
        rule = ["-" * column_width] * len(table[0])

        def cell(value: Optional[str]) -> str:
            value = value or ""
            if len(value) > column_width:
                return value[: column_width - 3] + "..."
            return value.ljust(column_width)

        lines = [
            "    | " + " | ".join(cell(value) for value in row) + " |"
            for row in [table[0], rule] + table[1:]
        ]
        return "\n".join(lines)

    # contacts

    def _contact_exists(self, conn: Connection, contact_id: int) -> bool:
        schema = self.guard.current_user()
        return conn.execute(
            text(f"SELECT COUNT(*) FROM {schema}.{CONTACTS} WHERE ID = :id"),
            {"id": contact_id},
        ).scalar_one() > 0

    @operation(role=Role.REGULAR)
    def add_contact(self, record: ContactRecord) -> int:
        """
        Store a contact in the caller's ``CONTACTS`` table.

        A record with every field empty is stored as an all-``NULL`` row.

        Returns:
            int: Id of the new contact.
        """
        if not isinstance(record, ContactRecord):
            raise ValidationError("contact cannot be null", "add_contact")

        schema = self.guard.current_user()
        projection = record.projection()
        if projection is None:
            logger.warning("add_contact() : every contact field is empty; storing an empty row")
            sql = f"INSERT INTO {schema}.{CONTACTS} DEFAULT VALUES"
        else:
            columns, values = projection
            quoted = ", ".join(f"'{value}'" for value in values)
            sql = f"INSERT INTO {schema}.{CONTACTS} ({', '.join(columns)}) VALUES ({quoted})"

        with self.transaction() as conn:
            contact_id = conn.execute(text(sql)).lastrowid
        logger.info("add_contact() : contact %d successfully added", contact_id)
        return contact_id

    @operation(role=Role.REGULAR)
    def update_contact(self, contact_id: int, record: ContactRecord) -> int:
        """
        Replace every field of a contact; empty fields become ``NULL``.

        Raises:
            NotFoundError: If no contact has ``contact_id``.
        """
        (contact_id,) = check_contact_ids([contact_id], "update_contact")
        if not isinstance(record, ContactRecord):
            raise ValidationError("contact cannot be null", "update_contact")

        schema = self.guard.current_user()
        with self.transaction() as conn:
            if not self._contact_exists(conn, contact_id):
                raise NotFoundError("no contacts affected", "update_contact")
            affected = conn.execute(
                text(f"UPDATE {schema}.{CONTACTS} SET {record.assignments()} WHERE ID = :id"),
                {"id": contact_id},
            ).rowcount
        logger.info("update_contact() : contact %d successfully updated", contact_id)
        return affected

    @operation(role=Role.REGULAR)
    def delete_contacts(self, *contact_ids: int) -> int:
        """
        Delete contacts and their group memberships.

        Ids that match no contact are skipped.

        Returns:
            int: Number of contacts deleted.

        Raises:
            NotFoundError: If none of the ids matches a contact.
        """
        ids = check_contact_ids(contact_ids, "delete_contacts")
        schema = self.guard.current_user()

        with self.transaction() as conn:
            if not any(self._contact_exists(conn, contact_id) for contact_id in ids):
                raise NotFoundError("no contacts affected", "delete_contacts")
            deleted = 0
            for contact_id in ids:
                conn.execute(
                    text(f"DELETE FROM {schema}.{GROUPS} WHERE CONTACT_ID = :id"),
                    {"id": contact_id},
                )
                deleted += conn.execute(
                    text(f"DELETE FROM {schema}.{CONTACTS} WHERE ID = :id"),
                    {"id": contact_id},
                ).rowcount
        logger.info("delete_contacts() : %d contact(s) successfully deleted", deleted)
        return deleted
