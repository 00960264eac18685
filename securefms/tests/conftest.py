# securefms/tests/conftest.py
import os
import secrets
import tempfile
from types import SimpleNamespace

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

os.environ.setdefault("TESTING", "1")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", secrets.token_urlsafe(32))
os.environ.setdefault("FILE_ENCRYPTION_KEY", secrets.token_hex(32))
os.environ.setdefault("EMAIL_PROVIDER", "console")
os.environ.setdefault("EMAIL_FROM", "noreply@example.com")
os.environ.setdefault("BLOB_BACKEND", "local")
os.environ.setdefault("BLOB_STORAGE_PATH", tempfile.mkdtemp(prefix="securefms-blobs-"))
os.environ.setdefault("AWS_REGION", "eu-north-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from securefms.main import app
from securefms import deps, models
from securefms.blob_store import EncryptedBlobStore
from securefms.database import SessionLocal, engine, get_db
from securefms.identity import IdentityStore
from securefms.models import Role, User
from securefms.otp import InMemoryChallengeStore, OTPManager
from securefms.rbac import RoleName
from securefms.seed import seed_roles
from securefms.utils.local_storage import LocalBlobBackend


class FakeHasher:
    """Stands in for bcrypt so tests do not pay for a real KDF."""

    def hash(self, password):
        return f"fake${password[::-1]}"

    def verify(self, password, hashed):
        return hashed == self.hash(password)


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send_code(self, user, code, purpose, ttl_seconds):
        if self.fail:
            raise ConnectionError("smtp relay unreachable")
        self.sent.append(SimpleNamespace(email=user.email, code=code, purpose=purpose))

    def last_code(self, email=None):
        for item in reversed(self.sent):
            if email is None or item.email == email:
                return item.code
        raise AssertionError("no code was sent")


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


# ───────────────────────── fresh schema for every test ───────────────────
@pytest.fixture(autouse=True)
def _schema():
    models.Base.metadata.drop_all(bind=engine)
    models.Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        seed_roles(session)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def hasher():
    return FakeHasher()


@pytest.fixture
def identities(db, hasher):
    return IdentityStore(db, hasher=hasher)


@pytest.fixture
def make_user(db, hasher):
    def _make(username, role=RoleName.USER, created_by=None, active=True, password=None):
        role_row = db.query(Role).filter(Role.name == RoleName(role).value).one()
        user = User(
            username=username,
            email=f"{username}@example.com",
            hashed_password=hasher.hash(password) if password else None,
            role=role_row,
            is_active=active,
            created_by_id=created_by.id if created_by is not None else None,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def superadmin(make_user):
    return make_user("root", RoleName.SUPERADMIN)


@pytest.fixture
def admin_user(make_user, superadmin):
    return make_user("carol", RoleName.ADMIN, created_by=superadmin)


@pytest.fixture
def alice(make_user, admin_user):
    return make_user("alice", created_by=admin_user)


@pytest.fixture
def bob(make_user, superadmin):
    return make_user("bob", created_by=superadmin)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def otp_manager(notifier, clock):
    return OTPManager(InMemoryChallengeStore(), notifier, clock=clock)


@pytest.fixture
def backend(tmp_path):
    return LocalBlobBackend(tmp_path / "blobs")


@pytest.fixture
def blob_store(db, backend):
    return EncryptedBlobStore(db, backend, deps.FILE_ENCRYPTION_KEY)


# ───────────────────────────── test client  ──────────────────────────────
@pytest.fixture
def client(otp_manager, backend, hasher):
    def _identities(session=Depends(get_db)):
        return IdentityStore(session, hasher=hasher)

    app.dependency_overrides[deps.get_otp_manager] = lambda: otp_manager
    app.dependency_overrides[deps.get_blob_backend] = lambda: backend
    app.dependency_overrides[deps.get_identities] = _identities
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_header():
    def _header(user):
        token = deps.token_service.mint(user.id, user.role.name)
        return {"Authorization": f"Bearer {token}"}
    return _header
