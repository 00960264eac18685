import pytest

from securefms.errors import (
    AuthenticationError, AuthorizationError, DuplicateIdentityError, IdentityNotFound,
    InactiveAccountError, ValidationError,
)
from securefms.identity import BcryptHasher, IdentityStore, validate_password
from securefms.models import AuditLog, File, Role, User
from securefms.rbac import RoleName
from securefms.seed import bootstrap_superadmin, seed_roles

GOOD_PASSWORD = "s3cret!pass"


def test_lookup_by_email_or_username(identities, alice):
    assert identities.get_by_identifier("alice@example.com").id == alice.id
    assert identities.get_by_identifier("  ALICE ").id == alice.id
    assert identities.get_by_identifier("nobody") is None
    assert identities.get_by_identifier("") is None
    assert identities.get("abc") is None
    with pytest.raises(IdentityNotFound):
        identities.require(12345)


def test_register_creates_plain_user(identities):
    user = identities.register("Dave", "Dave@Example.com", GOOD_PASSWORD)
    assert user.username == "dave"
    assert user.email == "dave@example.com"
    assert user.role.name == RoleName.USER.value
    assert user.created_by_id is None
    assert identities.authenticate_password("dave", GOOD_PASSWORD).id == user.id


@pytest.mark.parametrize("password", ["short1!", "nodigits!!", "nospecial123", ""])
def test_weak_passwords_rejected(password):
    with pytest.raises(ValidationError):
        validate_password(password)


def test_register_validation(identities, alice):
    with pytest.raises(ValidationError):
        identities.register("eve", "not-an-email")
    with pytest.raises(ValidationError):
        identities.register("eve", "eve@example.com", "weak")
    with pytest.raises(DuplicateIdentityError):
        identities.register("alice", "other@example.com")
    with pytest.raises(DuplicateIdentityError):
        identities.register("other", "alice@example.com")


def test_admin_can_only_create_plain_users(identities, admin_user):
    user = identities.create_user(admin_user, "dave", "dave@example.com", "user")
    assert user.created_by_id == admin_user.id
    assert user.hashed_password is None
    with pytest.raises(AuthorizationError):
        identities.create_user(admin_user, "erin", "erin@example.com", "admin")
    with pytest.raises(AuthorizationError):
        identities.create_user(admin_user, "erin", "erin@example.com", "superadmin")


def test_superadmin_can_create_admins(identities, superadmin):
    admin = identities.create_user(
        superadmin, "erin", "erin@example.com", RoleName.ADMIN, GOOD_PASSWORD)
    assert admin.role.name == "admin"
    assert admin.created_by_id == superadmin.id
    with pytest.raises(ValidationError):
        identities.create_user(superadmin, "frank", "frank@example.com", "overlord")


def test_plain_user_cannot_administer(identities, alice, bob):
    with pytest.raises(AuthorizationError):
        identities.create_user(alice, "dave", "dave@example.com", "user")
    with pytest.raises(AuthorizationError):
        identities.update_user(alice, bob.id, is_active=False)
    with pytest.raises(AuthorizationError):
        identities.list_users(alice)


def test_admin_update_scope(identities, admin_user, alice, bob):
    updated = identities.update_user(admin_user, alice.id, email="alice2@example.com")
    assert updated.email == "alice2@example.com"

    # bob was created by the superadmin, not by this admin
    with pytest.raises(AuthorizationError):
        identities.update_user(admin_user, bob.id, is_active=False)
    with pytest.raises(AuthorizationError):
        identities.update_user(admin_user, alice.id, role_name="admin")


def test_update_rejects_duplicates(identities, superadmin, alice, bob):
    with pytest.raises(DuplicateIdentityError):
        identities.update_user(superadmin, alice.id, username="bob")


def test_superadmin_promotes_and_deactivates(identities, superadmin, bob):
    user = identities.update_user(superadmin, bob.id, role_name="admin", is_active=False)
    assert user.role.name == "admin"
    assert user.is_active is False


def test_list_users_is_scoped(identities, superadmin, admin_user, alice, bob):
    assert [u.id for u in identities.list_users(admin_user)] == [alice.id]
    assert {u.id for u in identities.list_users(superadmin)} == {
        superadmin.id, admin_user.id, alice.id, bob.id}


def test_delete_user_cascades_to_files(identities, blob_store, backend, db, admin_user, alice):
    blob_store.store(alice.id, "a.txt", "text/plain", b"a")
    blob_store.store(alice.id, "b.txt", "text/plain", b"b")
    alice_id = alice.id

    identities.delete_user(admin_user, alice_id, blob_store)

    db.expire_all()
    assert db.get(User, alice_id) is None
    assert db.query(File).count() == 0
    assert list(backend.base_path.glob("*.bin")) == []
    assert db.query(AuditLog).filter(AuditLog.user_id == alice_id).count() == 0
    actions = [row.action for row in db.query(AuditLog).filter(AuditLog.user_id == admin_user.id)]
    assert any("Deleted user alice and 2 file(s)" in a for a in actions)


def test_delete_user_releases_created_users(identities, blob_store, db, superadmin, admin_user, alice):
    identities.delete_user(superadmin, admin_user.id, blob_store)
    db.expire_all()
    assert db.get(User, alice.id).created_by_id is None


def test_delete_user_guards(identities, blob_store, superadmin, admin_user, bob):
    with pytest.raises(ValidationError):
        identities.delete_user(superadmin, superadmin.id, blob_store)
    with pytest.raises(AuthorizationError):
        identities.delete_user(admin_user, bob.id, blob_store)
    with pytest.raises(IdentityNotFound):
        identities.delete_user(superadmin, 9999, blob_store)


def test_password_login_and_reset(identities, make_user):
    user = make_user("dave", password=GOOD_PASSWORD)
    assert identities.authenticate_password("dave@example.com", GOOD_PASSWORD).id == user.id
    with pytest.raises(AuthenticationError):
        identities.authenticate_password("dave", "wrong!pass1")

    with pytest.raises(ValidationError):
        identities.reset_password(user, GOOD_PASSWORD)
    identities.reset_password(user, "n3w!password")
    assert identities.authenticate_password("dave", "n3w!password").id == user.id


def test_inactive_user_cannot_use_password(identities, make_user):
    make_user("dave", password=GOOD_PASSWORD, active=False)
    with pytest.raises(AuthenticationError):
        identities.authenticate_password("dave", GOOD_PASSWORD)


def test_bcrypt_hasher_roundtrip():
    hasher = BcryptHasher()
    hashed = hasher.hash(GOOD_PASSWORD)
    assert hashed.startswith("$2")
    assert hasher.verify(GOOD_PASSWORD, hashed)
    assert not hasher.verify("other!pass1", hashed)


def test_seed_roles_is_idempotent(db):
    seed_roles(db)
    seed_roles(db)
    roles = {r.name: r for r in db.query(Role).all()}
    assert set(roles) == {"user", "admin", "superadmin"}
    assert {p.value for p in roles["user"].permissions} == {"upload_file", "delete_own_file"}


def test_bootstrap_superadmin(db, hasher, monkeypatch):
    monkeypatch.delenv("SUPERADMIN_EMAIL", raising=False)
    assert bootstrap_superadmin(db, hasher) is None

    monkeypatch.setenv("SUPERADMIN_EMAIL", "Root@Example.com")
    monkeypatch.setenv("SUPERADMIN_PASSWORD", GOOD_PASSWORD)
    first = bootstrap_superadmin(db, hasher)
    assert first.email == "root@example.com"
    assert first.role.name == "superadmin"
    assert hasher.verify(GOOD_PASSWORD, first.hashed_password)
    assert bootstrap_superadmin(db, hasher).id == first.id


def test_identity_store_uses_injected_hasher(db, hasher):
    store = IdentityStore(db, hasher=hasher)
    user = store.register("dave", "dave@example.com", GOOD_PASSWORD)
    assert user.hashed_password == hasher.hash(GOOD_PASSWORD)


def test_username_cannot_shadow_an_email(identities, alice):
    with pytest.raises(DuplicateIdentityError):
        identities.register("alice@example.com", "mallory@evil.com")
    assert identities.get_by_identifier("alice@example.com").id == alice.id


def test_email_cannot_shadow_a_username(identities):
    identities.register("victim@example.com", "mallory@evil.com")
    with pytest.raises(DuplicateIdentityError):
        identities.register("victim", "victim@example.com")


def test_update_cannot_shadow_another_identifier(identities, superadmin, alice, bob):
    with pytest.raises(DuplicateIdentityError):
        identities.update_user(superadmin, bob.id, username="alice@example.com")
    # a user may reuse its own email as its username
    user = identities.update_user(superadmin, bob.id, username="bob@example.com")
    assert identities.get_by_identifier("bob@example.com").id == user.id


def test_reset_password_refuses_inactive_account(identities, db, make_user):
    user = make_user("dave", password=GOOD_PASSWORD, active=False)
    with pytest.raises(InactiveAccountError):
        identities.reset_password(user, "n3w!password")
    db.refresh(user)
    assert identities.hasher.verify(GOOD_PASSWORD, user.hashed_password)
