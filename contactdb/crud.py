"""CRUD operations on the system catalog.

This module contains catalog access logic (login records, schemas, tables,
grants and database properties), isolated from the public operations in
:mod:`contactdb.session`. Every function runs on a connection the caller
has already placed inside a transaction.
"""

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Connection

from . import models
from .errors import InvalidUsername

REQUIRE_AUTHENTICATION = "connection.requireAuthentication"
SQL_AUTHORIZATION = "database.sqlAuthorization"
DATA_ENCRYPTION = "dataEncryption"
FULL_ACCESS_USERS = "database.fullAccessUsers"
BOOT_PASSWORD = "bootPassword"

#: Schema names SQLite or the catalog already claim.
RESERVED_SCHEMAS = frozenset({"MAIN", "TEMP", "SYS", "SYSIBM", "SYSCS_UTIL"})

OWNER_SCHEMA = "SYS"


def check_username(username: str) -> None:
    """
    Apply the engine's own rules for authorization identifiers.

    Raises:
        InvalidUsername: If ``username`` is a reserved schema name or starts
            with a digit.
    """
    if username in RESERVED_SCHEMAS or username[:1].isdigit():
        raise InvalidUsername(f'invalid username "{username}"', "create_user")


def create_user(conn: Connection, username: str, hashed_password: str) -> None:
    """
    Create a login record.

    Args:
        conn (Connection): Connection inside a transaction.
        username (str): Uppercased, sanitized username.
        hashed_password (str): passlib hash of the password.

    Raises:
        InvalidUsername: If the engine does not accept ``username``.
    """
    check_username(username)
    conn.execute(
        insert(models.SysUser).values(username=username, hashed_password=hashed_password)
    )


def get_user_hash(conn: Connection, username: str) -> str | None:
    """
    Retrieve the login hash of ``username``.

    Returns:
        str | None: Hash if the user exists, otherwise ``None``.
    """
    return conn.execute(
        select(models.SysUser.hashed_password).where(models.SysUser.username == username)
    ).scalar_one_or_none()


def list_users(conn: Connection) -> list[str]:
    """Return every login name, sorted."""
    return list(
        conn.execute(select(models.SysUser.username).order_by(models.SysUser.username)).scalars()
    )


def update_user_password(conn: Connection, username: str, hashed_password: str) -> int:
    """Replace the login hash of ``username``; returns the affected row count."""
    return conn.execute(
        update(models.SysUser)
        .where(models.SysUser.username == username)
        .values(hashed_password=hashed_password, last_modified=func.current_timestamp())
    ).rowcount


def drop_user(conn: Connection, username: str) -> int:
    """Delete the login record of ``username``; returns the affected row count."""
    return conn.execute(
        delete(models.SysUser).where(models.SysUser.username == username)
    ).rowcount


def get_owner(conn: Connection) -> str | None:
    """
    Return the database owner: the authorization id of the ``SYS`` schema.

    The ``SYS`` row is written once at creation and never updated.
    """
    return conn.execute(
        select(models.SysSchema.authorization_id).where(
            models.SysSchema.schema_name == OWNER_SCHEMA
        )
    ).scalar_one_or_none()


def create_schema(conn: Connection, schema: str, owner: str) -> None:
    """Register ``schema`` as belonging to ``owner``."""
    conn.execute(insert(models.SysSchema).values(schema_name=schema, authorization_id=owner))


def schema_exists(conn: Connection, schema: str) -> bool:
    count = conn.execute(
        select(func.count())
        .select_from(models.SysSchema)
        .where(models.SysSchema.schema_name == schema)
    ).scalar_one()
    return count > 0


def drop_schema(conn: Connection, schema: str) -> int:
    """Unregister ``schema``; it must not contain any table."""
    return conn.execute(
        delete(models.SysSchema).where(models.SysSchema.schema_name == schema)
    ).rowcount


def register_table(conn: Connection, schema: str, table: str) -> None:
    conn.execute(insert(models.SysTable).values(schema_name=schema, table_name=table))


def unregister_table(conn: Connection, schema: str, table: str) -> None:
    """Remove ``schema.table`` and every grant on it."""
    conn.execute(
        delete(models.SysTablePerm).where(
            models.SysTablePerm.schema_name == schema,
            models.SysTablePerm.table_name == table,
        )
    )
    conn.execute(
        delete(models.SysTable).where(
            models.SysTable.schema_name == schema,
            models.SysTable.table_name == table,
        )
    )


def list_tables(conn: Connection, schema: str | None = None) -> list[tuple[str, str]]:
    """
    Return ``(schema, table)`` pairs of user-created tables.

    Args:
        conn (Connection): Connection inside a transaction.
        schema (str | None): Restrict to one schema.
    """
    stmt = select(models.SysTable.schema_name, models.SysTable.table_name).order_by(
        models.SysTable.schema_name, models.SysTable.table_name
    )
    if schema is not None:
        stmt = stmt.where(models.SysTable.schema_name == schema)
    return [tuple(row) for row in conn.execute(stmt)]


def grant_all(conn: Connection, schema: str, table: str, grantee: str) -> None:
    """Grant all privileges on ``schema.table`` to ``grantee``."""
    conn.execute(
        insert(models.SysTablePerm).values(grantee=grantee, schema_name=schema, table_name=table)
    )


def granted_tables(conn: Connection, grantee: str) -> list[tuple[str, str]]:
    """Return the ``(schema, table)`` pairs granted to ``grantee``."""
    return [
        tuple(row)
        for row in conn.execute(
            select(models.SysTablePerm.schema_name, models.SysTablePerm.table_name)
            .where(models.SysTablePerm.grantee == grantee)
            .order_by(models.SysTablePerm.schema_name, models.SysTablePerm.table_name)
        )
    ]


def set_property(conn: Connection, key: str, value: str) -> None:
    """Set a database-wide property, replacing any previous value."""
    conn.execute(delete(models.SysProperty).where(models.SysProperty.key == key))
    conn.execute(insert(models.SysProperty).values(key=key, value=value))


def get_property(conn: Connection, key: str) -> str | None:
    return conn.execute(
        select(models.SysProperty.value).where(models.SysProperty.key == key)
    ).scalar_one_or_none()


def has_full_access(conn: Connection, username: str) -> bool:
    """True if ``username`` is listed in the full-access users property."""
    users = get_property(conn, FULL_ACCESS_USERS) or ""
    return username in {u.strip().upper() for u in users.split(",") if u.strip()}
