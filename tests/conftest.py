import os
import tempfile
from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

os.environ["ENVIRONMENT"] = "development"
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-the-kaizen-suite-0123456789")
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite:///{os.path.join(tempfile.gettempdir(), 'kaizen-test-default.db')}",
)

import kaizen.models  # noqa: F401
from kaizen.db.base_class import Base
from kaizen.db.session import get_db
from kaizen.main import app
from kaizen.services import api_key_service

DEFAULT_PASSWORD = "StrongPass1"


@pytest.fixture()
def session_factory() -> Generator[sessionmaker, None, None]:
    db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_file.close()

    engine = create_engine(
        f"sqlite:///{db_file.name}",
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_file.name)


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(
    db_session: Session,
    session_factory: sessionmaker,
    monkeypatch: pytest.MonkeyPatch,
) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Background usage updates open their own session
    monkeypatch.setattr(api_key_service, "SessionLocal", session_factory)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def register(client: TestClient) -> Callable[..., dict]:
    """Register a user and return the response ``data`` (user + token pair)."""

    def _register(email: str, name: str = "Test User", password: str = DEFAULT_PASSWORD) -> dict:
        response = client.post(
            "/api/v1/auth/register",
            json={"email": email, "name": name, "password": password},
        )
        assert response.status_code == 201, response.text
        return response.json()["data"]

    return _register
