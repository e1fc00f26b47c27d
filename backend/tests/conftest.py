import os
import tempfile

# Settings are read at import time; point them at throwaway resources first.
_TMP = tempfile.mkdtemp(prefix="idp-tests-")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DB_INIT_MODE"] = "create_all"
os.environ["LOG_FILE"] = os.path.join(_TMP, "app.log")
os.environ["KEYS_DIR"] = os.path.join(_TMP, "keys")
os.environ["ISSUER_URL"] = "https://idp.example"
os.environ["FRONTEND_URL"] = "https://idp.example"

from urllib.parse import parse_qs, urlsplit  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from idp.api.deps import get_key_manager, get_rate_limiter  # noqa: E402
from idp.core.database import Base, SessionLocal, engine  # noqa: E402
from idp.core.security import get_password_hash  # noqa: E402
from idp.main import app  # noqa: E402
from idp.models.user import User  # noqa: E402
from idp.schemas.application import ApplicationCreate  # noqa: E402
from idp.services.application_service import application_service  # noqa: E402
from idp.services.key_manager import KeyManager  # noqa: E402
from idp.services.rate_limiter import InMemoryRateLimiter  # noqa: E402

PASSWORD = "correct-horse-battery"
REDIRECT_URI = "https://app.example/cb"


@pytest.fixture(scope="session")
def password_hash():
    return get_password_hash(PASSWORD)


@pytest.fixture(scope="session")
def key_manager(tmp_path_factory):
    return KeyManager(keys_dir=str(tmp_path_factory.mktemp("keys")))


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def rate_limiter():
    return InMemoryRateLimiter()


@pytest.fixture
def client(db, key_manager, rate_limiter):
    app.dependency_overrides[get_key_manager] = lambda: key_manager
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    try:
        yield TestClient(app, follow_redirects=False)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(db, password_hash):
    def _make(username="alice", role="user", email=None, nickname=None, is_active=True):
        user = User(
            username=username,
            email=email or f"{username}@example.com",
            nickname=nickname,
            password_hash=password_hash,
            role=role,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def make_app(db, make_user):
    def _make(owner=None, redirect_uris=None, scopes=None, name="Example App"):
        owner = owner or make_user(username="devon", role="developer")
        data = ApplicationCreate(
            name=name,
            redirect_uris=redirect_uris or [REDIRECT_URI],
            scopes=scopes or ["openid", "profile"],
        )
        return application_service.create(db, owner, data)
    return _make


def login(client, username="alice", password=PASSWORD):
    response = client.post("/api/v1/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return response


def query_of(url):
    return {key: values[0] for key, values in parse_qs(urlsplit(url).query).items()}
