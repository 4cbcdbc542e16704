import sqlite3

import pytest
from sqlalchemy import text

from conftest import BOOT_PASSWORD, DATABASE, OWNER_PASSWORD

from contactdb import crud
from contactdb.database import attached, namespace_path
from contactdb.errors import ConnectivityError, InvalidArgument, ReservedWord
from contactdb.provisioning import SchemaProvisioner, translate_engine_error
from contactdb.security import hash_login


def test_translate_syntax_error():
    exc = sqlite3.OperationalError('near "SELECT": syntax error')

    error = translate_engine_error(exc, "SELECT", "provision_user")

    assert isinstance(error, ReservedWord)
    assert "SELECT" in error.message


def test_translate_other_errors():
    error = translate_engine_error(sqlite3.OperationalError("disk I/O error"), "BOB", "provision_user")

    assert type(error) is ConnectivityError
    assert error.operation == "provision_user"


def test_owner_catalog(owner_session):
    with owner_session.transaction() as conn:
        assert crud.get_owner(conn) == "ADMIN"
        assert crud.get_property(conn, crud.REQUIRE_AUTHENTICATION) == "true"
        assert crud.get_property(conn, crud.SQL_AUTHORIZATION) == "true"
        assert crud.get_property(conn, crud.DATA_ENCRYPTION) == "true"
        assert crud.has_full_access(conn, "ADMIN")
        assert crud.get_property(conn, crud.BOOT_PASSWORD) != "bootsecret"


def test_user_grants(owner_session):
    owner_session.add_user("alice", "alicesecret", OWNER_PASSWORD)

    with owner_session.transaction() as conn:
        assert crud.granted_tables(conn, "ALICE") == [
            ("ALICE", "CONTACTS"),
            ("ALICE", "GROUPS"),
            ("ALICE", "SECURE"),
        ]
        assert not crud.has_full_access(conn, "ALICE")


def test_failed_provisioning_leaves_nothing(owner_session, settings, monkeypatch):
    def fail(self, conn, schema, password):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(SchemaProvisioner, "_create_secure", fail)

    result = owner_session.add_user("dave", "davesecret", OWNER_PASSWORD)

    assert isinstance(result.error, ConnectivityError)
    assert [u.username for u in owner_session.list_users().value] == ["ADMIN"]
    assert owner_session.list_tables().value == ["ADMIN.SECURE"]
    assert not namespace_path(settings.DATA_DIR / DATABASE, "DAVE").exists()


def test_incomplete_user_is_repaired(owner_session):
    with owner_session.transaction() as conn:
        crud.create_user(conn, "CAROL", hash_login("old"))

    result = owner_session.add_user("carol", "carolsecret", OWNER_PASSWORD)

    assert result
    tables = owner_session.list_tables().value
    assert {"CAROL.CONTACTS", "CAROL.GROUPS", "CAROL.SECURE"} <= set(tables)
    assert owner_session.verify_password("carol", "carolsecret").value is True


def test_deprovision_drops_catalog_rows(owner_session):
    owner_session.add_user("alice", "alicesecret", OWNER_PASSWORD)
    owner_session.delete_user("alice", OWNER_PASSWORD)

    with owner_session.transaction() as conn:
        assert not crud.schema_exists(conn, "ALICE")
        assert crud.granted_tables(conn, "ALICE") == []
        assert crud.get_user_hash(conn, "ALICE") is None


def test_repair_rewrites_both_password_records(owner_session):
    owner_session.add_user("alice", "alicesecret", OWNER_PASSWORD)
    session = owner_session.session
    with attached(session.connection, session.db_dir, "ALICE"):
        with owner_session.transaction() as conn:
            conn.execute(text("DROP TABLE ALICE.GROUPS"))
            crud.unregister_table(conn, "ALICE", "GROUPS")

    assert owner_session.add_user("alice", "newsecret", OWNER_PASSWORD)

    assert "ALICE.GROUPS" in owner_session.list_tables().value
    assert owner_session.verify_password("alice", "newsecret").value is True
    owner_session.disconnect()
    assert not owner_session.connect(DATABASE, BOOT_PASSWORD, "alice", "alicesecret")
    assert owner_session.connect(DATABASE, BOOT_PASSWORD, "alice", "newsecret")


def test_unencodable_password_leaves_no_namespace(owner_session, settings):
    session = owner_session.session

    with pytest.raises(InvalidArgument):
        owner_session.provisioner.provision_user(session.connection, "BOB", "pw\ud800")

    assert not namespace_path(settings.DATA_DIR / DATABASE, "BOB").exists()
    with owner_session.transaction() as conn:
        assert crud.get_user_hash(conn, "BOB") is None
