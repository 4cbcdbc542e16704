"""System catalog models.

SQLite has no users, schemas or grants, so every database carries its own
catalog in ``catalog.db``. These SQLAlchemy models define it; the per-user
``CONTACTS``, ``GROUPS`` and ``SECURE`` tables are created at runtime by
:mod:`contactdb.provisioning` instead.
"""

from sqlalchemy import Column, DateTime, String, func

from .database import Base


class SysUser(Base):
    """
    Engine login record.

    Only users with a row here can connect; the password is stored as a
    passlib hash, never in cleartext.
    """

    __tablename__ = "SYSUSERS"

    username = Column("USERNAME", String(128), primary_key=True)
    hashed_password = Column("HASHED_PASSWORD", String(255), nullable=False)
    last_modified = Column(
        "LAST_MODIFIED", DateTime, server_default=func.current_timestamp(), nullable=False
    )


class SysSchema(Base):
    """
    Namespace and the user it belongs to.

    The ``SYS`` row is written once, when the database is created; its
    authorization id is the immutable database owner.
    """

    __tablename__ = "SYSSCHEMAS"

    schema_name = Column("SCHEMANAME", String(128), primary_key=True)
    authorization_id = Column("AUTHORIZATIONID", String(128), nullable=False)


class SysTable(Base):
    """User-created table, identified by schema and table name."""

    __tablename__ = "SYSTABLES"

    schema_name = Column("SCHEMANAME", String(128), primary_key=True)
    table_name = Column("TABLENAME", String(128), primary_key=True)


class SysTablePerm(Base):
    """Grant of all privileges on one table to one user."""

    __tablename__ = "SYSTABLEPERMS"

    grantee = Column("GRANTEE", String(128), primary_key=True)
    schema_name = Column("SCHEMANAME", String(128), primary_key=True)
    table_name = Column("TABLENAME", String(128), primary_key=True)


class SysProperty(Base):
    """Database-wide property such as ``connection.requireAuthentication``."""

    __tablename__ = "SYSPROPERTIES"

    key = Column("KEY", String(128), primary_key=True)
    value = Column("VALUE", String(1024), nullable=True)
