import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.deps import get_notifier, get_storage
from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.core.errors import Unavailable
from app.core.security import create_access_token, hash_password
from app.main import app
from app.models.base import Base
from app.models.user import User, UserRole
from app.services.audit import AuditTrailRecorder
from app.services.certificates import CertificateLifecycleManager
from app.services.roster import Roster

PASSWORD = "correct-horse-42"


class FakeStorage:
    def __init__(self):
        self.uploads = []
        self.fail = False

    def upload(self, payload, folder=None):
        if self.fail:
            raise Unavailable("File upload failed: blob store timed out")
        self.uploads.append((payload, folder))
        return f"https://files.test/{folder}/{len(self.uploads)}.png"


class FakeNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, text, html):
        if self.fail:
            raise ConnectionRefusedError("smtp relay refused the connection")
        self.sent.append({"to": to, "subject": subject, "text": text, "html": html})


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", jwt_secret="test-secret", _env_file=None)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="session")
def password_hash():
    return hash_password(PASSWORD)


@pytest.fixture
def make_user(db, password_hash):
    counter = {"n": 0}

    def _make(role=UserRole.STUDENT, name=None, **fields):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            name=name or f"{role.value.title()} {n}",
            email=fields.pop("email", f"{role.value.lower()}{n}@school.edu"),
            hashed_password=password_hash,
            role=role,
            **fields,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def student(make_user):
    return make_user(UserRole.STUDENT, name="Ada Student", roll_number="R-001")


@pytest.fixture
def teacher(make_user):
    return make_user(UserRole.TEACHER, name="Prof. Anderson")


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN, name="System Admin")


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def audit(db, settings):
    return AuditTrailRecorder(db, settings)


@pytest.fixture
def roster(db, settings):
    return Roster(db, settings)


@pytest.fixture
def lifecycle(db, settings, audit, roster, storage, notifier):
    return CertificateLifecycleManager(db, settings, audit, roster, storage, notifier)


@pytest.fixture
def submit(lifecycle, student):
    def _submit(owner=None, title="Advanced React", platform="Coursera", **kwargs):
        owner = owner or student
        kwargs.setdefault("issued_date", "2023-11-15")
        kwargs.setdefault("file_url", "https://files.test/cert.png")
        return lifecycle.submit(owner, title=title, platform=platform, **kwargs)

    return _submit


@pytest.fixture
def client(session_factory, settings, storage, notifier):
    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_header(settings):
    def _header(user):
        token = create_access_token(settings, user.id, user.role.value)
        return {"Authorization": f"Bearer {token}"}

    return _header
