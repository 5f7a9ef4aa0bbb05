from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from kaizen.api.deps import (
    AuthContext,
    get_any_identity,
    get_api_key_identity,
    get_current_identity,
    get_token_validator,
)
from kaizen.core.exceptions import PersistenceFailure
from kaizen.db.session import get_db
from kaizen.models.api_key import APIKey
from kaizen.services import api_key_service


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _describe(identity: AuthContext) -> dict:
    return {"user_id": identity.user_id, "auth_method": identity.auth_method}


@pytest.fixture()
def probe_app() -> FastAPI:
    probe = FastAPI()

    @probe.get("/bearer-only")
    def bearer_only(identity: AuthContext = Depends(get_current_identity)):
        return _describe(identity)

    @probe.get("/api-key-only")
    def api_key_only(identity: AuthContext = Depends(get_api_key_identity)):
        return _describe(identity)

    @probe.get("/either")
    def either(identity: AuthContext = Depends(get_any_identity)):
        return _describe(identity)

    return probe


@pytest.fixture()
def probe(
    probe_app: FastAPI,
    db_session: Session,
    session_factory: sessionmaker,
    monkeypatch: pytest.MonkeyPatch,
) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    probe_app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(api_key_service, "SessionLocal", session_factory)
    with TestClient(probe_app) as test_client:
        yield test_client
    probe_app.dependency_overrides.clear()


@pytest.fixture()
def user_with_key(client: TestClient, register) -> dict:
    data = register("policy@example.com")
    response = client.post("/api/v1/users/api-keys", json={"name": "K"})
    assert response.status_code == 201
    data["api_key"] = response.json()["data"]
    return data


def test_api_key_policy_accepts_key_and_records_usage(probe: TestClient, user_with_key, db_session: Session):
    key = user_with_key["api_key"]

    response = probe.get("/api-key-only", headers={"X-API-Key": key["key"]})

    assert response.status_code == 200
    assert response.json() == {"user_id": user_with_key["user"]["id"], "auth_method": "api_key"}

    db_session.expire_all()
    api_key = db_session.query(APIKey).filter(APIKey.id == key["id"]).one()
    assert api_key.last_used_at is not None


def test_api_key_policy_accepts_repeated_requests(probe: TestClient, user_with_key):
    headers = {"X-API-Key": user_with_key["api_key"]["key"]}

    statuses = [probe.get("/api-key-only", headers=headers).status_code for _ in range(5)]

    assert statuses == [200] * 5


def test_api_key_policy_rejects_missing_and_unknown_keys(probe: TestClient, user_with_key):
    missing = probe.get("/api-key-only")
    unknown = probe.get("/api-key-only", headers={"X-API-Key": "f" * 64})

    assert missing.status_code == 401
    assert missing.json()["detail"] == "No API key provided"
    assert unknown.status_code == 401
    assert unknown.json()["detail"] == "Invalid or expired API key"


def test_api_key_policy_ignores_bearer_tokens(probe: TestClient, user_with_key):
    response = probe.get("/api-key-only", headers=_bearer(user_with_key["access_token"]))

    assert response.status_code == 401


def test_bearer_policy_ignores_api_keys(probe: TestClient, user_with_key):
    response = probe.get("/bearer-only", headers={"X-API-Key": user_with_key["api_key"]["key"]})

    assert response.status_code == 401


def test_deactivated_key_is_rejected(client: TestClient, probe: TestClient, user_with_key):
    key = user_with_key["api_key"]
    headers = {"X-API-Key": key["key"]}
    assert probe.get("/api-key-only", headers=headers).status_code == 200

    update = client.patch(f"/api/v1/users/api-keys/{key['id']}", json={"is_active": False})
    assert update.status_code == 200

    response = probe.get("/api-key-only", headers=headers)
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired API key"


def test_expired_key_is_rejected(probe: TestClient, user_with_key, db_session: Session):
    key = user_with_key["api_key"]
    db_session.query(APIKey).filter(APIKey.id == key["id"]).update(
        {"expires_at": datetime.utcnow() - timedelta(minutes=1)}
    )
    db_session.commit()

    response = probe.get("/api-key-only", headers={"X-API-Key": key["key"]})

    assert response.status_code == 401


def test_either_policy_selects_by_credential(probe: TestClient, user_with_key):
    user_id = user_with_key["user"]["id"]

    by_key = probe.get("/either", headers={"X-API-Key": user_with_key["api_key"]["key"]})
    by_header = probe.get("/either", headers=_bearer(user_with_key["access_token"]))
    probe.cookies.set("access_token", user_with_key["access_token"])
    by_cookie = probe.get("/either")

    assert by_key.json() == {"user_id": user_id, "auth_method": "api_key"}
    assert by_header.json() == {"user_id": user_id, "auth_method": "bearer"}
    assert by_cookie.json() == {"user_id": user_id, "auth_method": "bearer"}


def test_either_policy_does_not_fall_back_after_failure(probe: TestClient, user_with_key):
    headers = {
        "Authorization": "Bearer not.a.token",
        "X-API-Key": user_with_key["api_key"]["key"],
    }

    response = probe.get("/either", headers=headers)

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired token"


def test_either_policy_without_credentials(probe: TestClient):
    response = probe.get("/either")

    assert response.status_code == 401
    assert response.json()["detail"] == "No authentication provided"


def test_token_store_failure_is_503(probe_app: FastAPI, probe: TestClient, user_with_key):
    class UnavailableValidator:
        def validate(self, db, token, expected_type=None):
            raise PersistenceFailure("store down")

    probe_app.dependency_overrides[get_token_validator] = lambda: UnavailableValidator()

    response = probe.get("/bearer-only", headers=_bearer(user_with_key["access_token"]))

    assert response.status_code == 503


def test_key_expiry_with_utc_offset_is_enforced(client: TestClient, probe: TestClient, register, db_session: Session):
    register("offset@example.com")
    expired_local = (datetime.now(timezone.utc) - timedelta(hours=1)).astimezone(timezone(timedelta(hours=5)))

    created = client.post(
        "/api/v1/users/api-keys",
        json={"name": "Offset", "expires_at": expired_local.isoformat()},
    )
    assert created.status_code == 201
    key = created.json()["data"]

    stored = db_session.query(APIKey).filter(APIKey.id == key["id"]).one()
    assert stored.expires_at == expired_local.astimezone(timezone.utc).replace(tzinfo=None)

    response = probe.get("/api-key-only", headers={"X-API-Key": key["key"]})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired API key"


def test_failed_usage_update_does_not_fail_request(
    probe: TestClient,
    user_with_key,
    db_session: Session,
    monkeypatch: pytest.MonkeyPatch,
):
    # Fresh in-memory database without any tables
    monkeypatch.setattr(api_key_service, "SessionLocal", sessionmaker(bind=create_engine("sqlite://")))
    key = user_with_key["api_key"]

    response = probe.get("/api-key-only", headers={"X-API-Key": key["key"]})

    assert response.status_code == 200
    db_session.expire_all()
    assert db_session.query(APIKey).filter(APIKey.id == key["id"]).one().last_used_at is None


def test_unavailable_usage_session_does_not_fail_request(
    probe: TestClient,
    user_with_key,
    monkeypatch: pytest.MonkeyPatch,
):
    def unavailable_session():
        raise OperationalError("connect", {}, Exception("connection refused"))

    monkeypatch.setattr(api_key_service, "SessionLocal", unavailable_session)

    response = probe.get("/api-key-only", headers={"X-API-Key": user_with_key["api_key"]["key"]})

    assert response.status_code == 200
