import pytest

from conftest import BOOT_PASSWORD, DATABASE, OWNER, OWNER_PASSWORD, make_contact

from contactdb.database import namespace_path
from contactdb.errors import (
    AlreadyExists,
    AuthorizationError,
    CredentialError,
    InvalidUsername,
    NotFoundError,
    ReservedWord,
    ValidationError,
)
from contactdb.schemas import Role, UserOut


def usernames(session):
    return [user.username for user in session.list_users().value]


def test_list_users(owner_session):
    owner_session.add_user("alice", "alicesecret", OWNER_PASSWORD)

    assert owner_session.list_users().value == [
        UserOut(username="ADMIN", role=Role.OWNER),
        UserOut(username="ALICE", role=Role.REGULAR),
    ]


def test_add_user_creates_tables(owner_session, settings):
    assert owner_session.add_user("alice", "alicesecret", OWNER_PASSWORD).value == "ALICE"

    assert "ALICE.CONTACTS" in owner_session.list_tables().value
    assert namespace_path(settings.DATA_DIR / DATABASE, "ALICE").exists()


def test_add_user_twice(owner_session):
    owner_session.add_user("alice", "alicesecret", OWNER_PASSWORD)

    result = owner_session.add_user("ALICE", "other", OWNER_PASSWORD)

    assert isinstance(result.error, AlreadyExists)
    assert owner_session.list_tables().value.count("ALICE.CONTACTS") == 1
    assert usernames(owner_session) == ["ADMIN", "ALICE"]
    assert owner_session.verify_password("alice", "alicesecret").value is True
    assert owner_session.verify_password("alice", "other").value is False


def test_add_user_twice_keeps_existing_contacts(login_as):
    session = login_as("alice", "alicesecret")
    session.add_contact(make_contact(firstname="bob"))
    session.add_to_group("friends", 1)
    session.disconnect()
    session.connect(DATABASE, BOOT_PASSWORD, OWNER, OWNER_PASSWORD)

    assert isinstance(session.add_user("alice", "other", OWNER_PASSWORD).error, AlreadyExists)

    assert session.read_table("ALICE.CONTACTS").value[1] == ["1", "bob", None, None]
    assert len(session.read_table("ALICE.GROUPS").value) == 2
    session.disconnect()
    assert session.connect(DATABASE, BOOT_PASSWORD, "alice", "alicesecret")


def test_add_owner_as_user(owner_session):
    assert isinstance(owner_session.add_user(OWNER, "pw", OWNER_PASSWORD).error, AlreadyExists)


def test_add_user_wrong_owner_password(owner_session):
    result = owner_session.add_user("alice", "alicesecret", "wrong")

    assert isinstance(result.error, CredentialError)
    assert usernames(owner_session) == ["ADMIN"]


@pytest.mark.parametrize(
    "username, password",
    [("", "pw"), ("   ", "pw"), (None, "pw"), ("alice", ""), ("alice", None), ("alice", "  ")],
)
def test_add_user_rejects_blank_arguments(owner_session, username, password):
    assert isinstance(owner_session.add_user(username, password, OWNER_PASSWORD).error, ValidationError)


def test_add_user_rejects_padded_password(owner_session):
    assert isinstance(owner_session.add_user("alice", " pw ", OWNER_PASSWORD).error, ValidationError)


@pytest.mark.parametrize("username", ["al ice", "alice'--", "a.b"])
def test_add_user_rejects_bad_usernames(owner_session, username):
    assert isinstance(owner_session.add_user(username, "pw", OWNER_PASSWORD).error, ValidationError)


def test_add_user_reserved_word(owner_session, settings):
    result = owner_session.add_user("select", "pw", OWNER_PASSWORD)

    assert isinstance(result.error, ReservedWord)
    assert usernames(owner_session) == ["ADMIN"]
    assert not namespace_path(settings.DATA_DIR / DATABASE, "SELECT").exists()


@pytest.mark.parametrize("username", ["sys", "main", "9lives"])
def test_add_user_invalid_engine_name(owner_session, username):
    assert isinstance(owner_session.add_user(username, "pw", OWNER_PASSWORD).error, InvalidUsername)


def test_regular_user_cannot_manage_users(tenant):
    assert isinstance(tenant.list_users().error, AuthorizationError)
    assert isinstance(tenant.add_user("bob", "pw", "alicesecret").error, AuthorizationError)
    assert isinstance(tenant.delete_user("alice", "alicesecret").error, AuthorizationError)
    assert isinstance(tenant.reset_password("alice", "pw", "alicesecret").error, AuthorizationError)


def test_delete_user(owner_session, settings):
    owner_session.add_user("alice", "alicesecret", OWNER_PASSWORD)

    assert owner_session.delete_user("alice", OWNER_PASSWORD)

    assert usernames(owner_session) == ["ADMIN"]
    assert owner_session.list_tables().value == ["ADMIN.SECURE"]
    assert not namespace_path(settings.DATA_DIR / DATABASE, "ALICE").exists()


def test_deleted_user_cannot_log_in(owner_session):
    owner_session.add_user("alice", "alicesecret", OWNER_PASSWORD)
    owner_session.delete_user("alice", OWNER_PASSWORD)
    owner_session.disconnect()

    result = owner_session.connect(DATABASE, BOOT_PASSWORD, "alice", "alicesecret")

    assert isinstance(result.error, CredentialError)


def test_user_can_be_added_again_after_delete(owner_session):
    owner_session.add_user("alice", "alicesecret", OWNER_PASSWORD)
    owner_session.delete_user("alice", OWNER_PASSWORD)
    assert owner_session.add_user("alice", "newsecret", OWNER_PASSWORD)


def test_delete_missing_user(owner_session):
    assert isinstance(owner_session.delete_user("nobody", OWNER_PASSWORD).error, NotFoundError)


def test_owner_cannot_be_deleted(owner_session):
    assert isinstance(owner_session.delete_user(OWNER, OWNER_PASSWORD).error, AuthorizationError)


def test_delete_user_wrong_owner_password(owner_session):
    owner_session.add_user("alice", "alicesecret", OWNER_PASSWORD)

    assert isinstance(owner_session.delete_user("alice", "wrong").error, CredentialError)
    assert usernames(owner_session) == ["ADMIN", "ALICE"]


def test_change_password(tenant):
    assert tenant.change_password("alicesecret", "newsecret")
    tenant.disconnect()

    assert not tenant.connect(DATABASE, BOOT_PASSWORD, "alice", "alicesecret")
    assert tenant.connect(DATABASE, BOOT_PASSWORD, "alice", "newsecret")
    assert tenant.verify_password("alice", "newsecret").value is True


def test_change_password_wrong_old_password(tenant):
    result = tenant.change_password("wrong", "newsecret")

    assert isinstance(result.error, CredentialError)
    assert tenant.verify_password("alice", "alicesecret").value is True


def test_change_password_rejects_padded_password(tenant):
    assert isinstance(tenant.change_password("alicesecret", "new ").error, ValidationError)


def test_owner_changes_own_password(owner_session):
    assert owner_session.change_password(OWNER_PASSWORD, "newowner")
    assert isinstance(owner_session.add_user("bob", "pw", OWNER_PASSWORD).error, CredentialError)
    assert owner_session.add_user("bob", "pw", "newowner")


def test_reset_password(login_as):
    session = login_as()
    session.disconnect()
    session.connect(DATABASE, BOOT_PASSWORD, OWNER, OWNER_PASSWORD)

    assert session.reset_password("alice", "resetsecret", OWNER_PASSWORD)
    assert session.verify_password("alice", "resetsecret").value is True

    session.disconnect()
    assert session.connect(DATABASE, BOOT_PASSWORD, "alice", "resetsecret")


def test_reset_password_missing_user(owner_session):
    assert isinstance(owner_session.reset_password("nobody", "pw", OWNER_PASSWORD).error, NotFoundError)


def test_reset_password_wrong_owner_password(owner_session):
    owner_session.add_user("alice", "alicesecret", OWNER_PASSWORD)

    assert isinstance(owner_session.reset_password("alice", "pw", "wrong").error, CredentialError)
    assert owner_session.verify_password("alice", "alicesecret").value is True


def test_verify_password(owner_session):
    owner_session.add_user("alice", "alicesecret", OWNER_PASSWORD)

    assert owner_session.verify_password("alice", "alicesecret").value is True
    assert owner_session.verify_password("alice", "alicesecreT").value is False
    assert owner_session.verify_password(OWNER, OWNER_PASSWORD).value is True


def test_regular_user_verifies_only_themself(login_as):
    login_as("bob", "bobsecret")
    session = login_as("alice", "alicesecret")

    assert isinstance(session.verify_password("bob", "bobsecret").error, AuthorizationError)


@pytest.mark.parametrize("owner_password", [None, "", "   "])
def test_blank_owner_password_is_an_argument_error(owner_session, owner_password):
    owner_session.add_user("alice", "alicesecret", OWNER_PASSWORD)

    for result in (
        owner_session.add_user("bob", "bobsecret", owner_password),
        owner_session.delete_user("alice", owner_password),
        owner_session.reset_password("alice", "pw", owner_password),
    ):
        assert type(result.error) is ValidationError
    assert usernames(owner_session) == ["ADMIN", "ALICE"]


def test_add_user_rejects_unencodable_password(owner_session, settings):
    result = owner_session.add_user("bob", "pw\ud800", OWNER_PASSWORD)

    assert isinstance(result.error, ValidationError)
    assert usernames(owner_session) == ["ADMIN"]
    assert not namespace_path(settings.DATA_DIR / DATABASE, "BOB").exists()


def test_change_password_rejects_unencodable_password(owner_session):
    result = owner_session.change_password(OWNER_PASSWORD, "new\ud800")

    assert isinstance(result.error, ValidationError)
    assert owner_session.verify_password(OWNER, OWNER_PASSWORD).value is True


def test_reset_password_rejects_unencodable_password(owner_session):
    owner_session.add_user("alice", "alicesecret", OWNER_PASSWORD)

    result = owner_session.reset_password("alice", "new\ud800", OWNER_PASSWORD)

    assert isinstance(result.error, ValidationError)
    assert owner_session.verify_password("alice", "alicesecret").value is True


def test_unencodable_old_password_is_a_mismatch(owner_session):
    result = owner_session.change_password("old\ud800", "newowner")
    assert isinstance(result.error, CredentialError)
