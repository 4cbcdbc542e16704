# tests/conftest.py
import os
import sys

import pytest

sys.path.append(os.path.abspath("."))

from contactdb.contacts import ContactRecord
from contactdb.core import Settings
from contactdb.security import CredentialStore
from contactdb.session import SessionManager


DATABASE = "testdb"
BOOT_PASSWORD = "bootsecret"
OWNER = "admin"
OWNER_PASSWORD = "ownersecret"


# Small salts and few iterations keep key derivation fast
@pytest.fixture()
def settings(tmp_path):
    return Settings(
        DATA_DIR=tmp_path / "databases",
        HASH_ITERATIONS=1000,
        SALT_LENGTH=16,
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture()
def credentials(settings):
    return CredentialStore(settings)


@pytest.fixture()
def manager(settings):
    manager = SessionManager(settings)
    try:
        yield manager
    finally:
        manager.disconnect()


# Fresh database, connected as its owner
@pytest.fixture()
def owner_session(manager):
    result = manager.connect(DATABASE, BOOT_PASSWORD, OWNER, OWNER_PASSWORD)
    assert result, result.error
    return manager


@pytest.fixture()
def login_as(owner_session):
    """Add a regular user as the owner, then reconnect as that user."""

    def _login(username="alice", password="alicesecret"):
        owner_session.disconnect()
        assert owner_session.connect(DATABASE, BOOT_PASSWORD, OWNER, OWNER_PASSWORD)
        added = owner_session.add_user(username, password, OWNER_PASSWORD)
        assert added, added.error
        owner_session.disconnect()
        result = owner_session.connect(DATABASE, BOOT_PASSWORD, username, password)
        assert result, result.error
        return owner_session

    return _login


@pytest.fixture()
def tenant(login_as):
    return login_as()


def make_contact(**fields):
    return ContactRecord.from_fields(**fields).unwrap()
