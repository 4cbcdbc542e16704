"""Engine construction and namespace files.

A database is a directory containing the system catalog (``catalog.db``)
and one SQLite file per namespace under ``schemas/``. Namespace files are
attached to the live connection under the schema name, so SQL text reads
``ALICE.CONTACTS`` exactly as it would on a server with real schemas.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import declarative_base


Base = declarative_base()
"""Declarative base class for the catalog models."""


CATALOG_FILE = "catalog.db"
SCHEMA_DIR = "schemas"


def catalog_path(db_dir: Path) -> Path:
    """Path of the catalog file of the database stored in ``db_dir``."""
    return db_dir / CATALOG_FILE


def namespace_path(db_dir: Path, schema: str) -> Path:
    """Path of the file backing ``schema``; ``schema`` must be sanitized."""
    return db_dir / SCHEMA_DIR / f"{schema}.db"


def open_engine(db_dir: Path, echo: bool = False) -> Engine:
    """
    Create an engine bound to the catalog of the database in ``db_dir``.

    The pysqlite driver is switched to manual transaction control so that
    ``Connection.begin()`` emits ``BEGIN`` and DDL participates in the
    transaction like any other statement.

    Args:
        db_dir (Path): Database directory.
        echo (bool): Echo SQL through the ``sqlalchemy.engine`` logger.

    Returns:
        Engine: SQLAlchemy engine.
    """
    (db_dir / SCHEMA_DIR).mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{catalog_path(db_dir)}",
        echo=echo,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def _manual_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def _run_outside_transaction(conn: Connection, sql: str, params: tuple = ()) -> None:
    # ATTACH and DETACH are rejected by SQLite inside a transaction
    conn.connection.driver_connection.execute(sql, params)


def attach(conn: Connection, db_dir: Path, schema: str) -> None:
    """
    Attach the file backing ``schema`` under the name ``schema``.

    The name is deliberately left unquoted: SQLite rejects reserved words
    with a syntax error, which callers report as a reserved username.
    """
    path = namespace_path(db_dir, schema)
    _run_outside_transaction(conn, f"ATTACH DATABASE ? AS {schema}", (str(path),))


def detach(conn: Connection, schema: str) -> None:
    """Detach ``schema`` from the connection."""
    _run_outside_transaction(conn, f"DETACH DATABASE {schema}")


def attached_schemas(conn: Connection) -> set[str]:
    """Names of the schemas currently attached, uppercased, without main/temp."""
    rows = conn.connection.driver_connection.execute("PRAGMA database_list").fetchall()
    return {row[1].upper() for row in rows if row[1] not in ("main", "temp")}


@contextmanager
def attached(conn: Connection, db_dir: Path, schema: str, keep: bool = False) -> Iterator[bool]:
    """
    Make ``schema`` available on ``conn`` for the duration of the block.

    Yields ``True`` if the schema was attached by this call. Such a schema
    is detached again on exit unless ``keep`` is set.
    """
    fresh = schema not in attached_schemas(conn)
    if fresh:
        attach(conn, db_dir, schema)
    try:
        yield fresh
    finally:
        if fresh and not keep:
            detach(conn, schema)
