import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from kaizen.api.deps import get_token_revoker
from kaizen.core.exceptions import PersistenceFailure
from kaizen.main import app
from kaizen.models.token import Token, TokenType
from kaizen.models.user import User
from kaizen.services.token_service import TokenRevoker


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _login(client: TestClient, email: str, password: str = "StrongPass1"):
    return client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
    )


def test_register_success(client: TestClient, db_session: Session):
    response = client.post(
        "/api/v1/auth/register",
        json={
            "email": "register@example.com",
            "name": "Register User",
            "password": "StrongPass1",
        },
    )

    assert response.status_code == 201
    payload = response.json()
    assert payload["success"] is True
    assert payload["data"]["user"]["email"] == "register@example.com"
    assert "password_hash" not in payload["data"]["user"]
    assert payload["data"]["token_type"] == "bearer"
    assert response.cookies.get("access_token") == payload["data"]["access_token"]
    assert response.cookies.get("refresh_token") == payload["data"]["refresh_token"]

    assert db_session.query(Token).count() == 2


def test_register_sets_httponly_cookies(client: TestClient):
    response = client.post(
        "/api/v1/auth/register",
        json={"email": "cookie@example.com", "name": "Cookie User", "password": "StrongPass1"},
    )

    set_cookie_headers = response.headers.get_list("set-cookie")
    assert len(set_cookie_headers) == 2
    for header in set_cookie_headers:
        assert "HttpOnly" in header
        assert "samesite=lax" in header.lower()
        # Secure only in production
        assert "Secure" not in header


def test_register_duplicate_email(client: TestClient, register):
    register("dup@example.com")

    response = client.post(
        "/api/v1/auth/register",
        json={"email": "dup@example.com", "name": "Again", "password": "StrongPass1"},
    )

    assert response.status_code == 409
    assert response.json()["message"] == "Email already registered"


def test_register_rejects_weak_password(client: TestClient):
    response = client.post(
        "/api/v1/auth/register",
        json={"email": "weak@example.com", "name": "Weak", "password": "short"},
    )

    assert response.status_code == 422
    assert response.json()["success"] is False


def test_login_success(client: TestClient, register, db_session: Session):
    register("login@example.com", name="Login User")

    response = _login(client, "login@example.com")

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["data"]["user"]["email"] == "login@example.com"
    assert payload["data"]["user"]["last_login_at"] is not None
    assert response.cookies.get("access_token") is not None
    assert response.cookies.get("refresh_token") is not None

    user = db_session.query(User).filter(User.email == "login@example.com").one()
    assert user.last_login_at is not None


def test_login_failure_is_uniform(client: TestClient, register):
    register("wrongpass@example.com")

    wrong_password = _login(client, "wrongpass@example.com", password="WrongPass1")
    unknown_user = _login(client, "nobody@example.com")

    assert wrong_password.status_code == 401
    assert unknown_user.status_code == 401
    assert wrong_password.json()["message"] == unknown_user.json()["message"] == "Invalid email or password"


def test_protected_route_requires_token(client: TestClient):
    response = client.get("/api/v1/users/me")

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"
    assert response.json()["success"] is False


def test_bearer_header_and_cookie_both_work(client: TestClient, register):
    data = register("both@example.com")

    with_cookie = client.get("/api/v1/users/me")
    assert with_cookie.status_code == 200

    client.cookies.clear()
    with_header = client.get("/api/v1/users/me", headers=_bearer(data["access_token"]))
    assert with_header.status_code == 200
    assert with_header.json()["data"]["email"] == "both@example.com"


def test_refresh_token_cannot_access_protected_route(client: TestClient, register):
    data = register("kind@example.com")
    client.cookies.clear()

    response = client.get("/api/v1/users/me", headers=_bearer(data["refresh_token"]))

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid or expired token"


def test_tampered_token_is_rejected(client: TestClient, register):
    data = register("tamper@example.com")
    client.cookies.clear()
    header, payload, signature = data["access_token"].split(".")
    tampered = f"{header}.{payload}.{signature[::-1]}"

    response = client.get("/api/v1/users/me", headers=_bearer(tampered))

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid or expired token"


def test_refresh_rotates_tokens_from_cookie(client: TestClient, register):
    data = register("rotate@example.com")

    response = client.post("/api/v1/auth/refresh")

    assert response.status_code == 200
    new_tokens = response.json()["data"]
    assert new_tokens["refresh_token"] != data["refresh_token"]
    assert response.cookies.get("refresh_token") == new_tokens["refresh_token"]

    # Old refresh token can only be redeemed once
    client.cookies.clear()
    replay = client.post("/api/v1/auth/refresh", json={"refresh_token": data["refresh_token"]})
    assert replay.status_code == 401
    assert replay.json()["message"] == "Invalid refresh token"


def test_refresh_from_body(client: TestClient, register):
    data = register("body@example.com")
    client.cookies.clear()

    response = client.post("/api/v1/auth/refresh", json={"refresh_token": data["refresh_token"]})

    assert response.status_code == 200
    new_access = response.json()["data"]["access_token"]
    me = client.get("/api/v1/users/me", headers=_bearer(new_access))
    assert me.status_code == 200


def test_refresh_rejects_access_token(client: TestClient, register):
    data = register("wrongkind@example.com")
    client.cookies.clear()

    response = client.post("/api/v1/auth/refresh", json={"refresh_token": data["access_token"]})

    assert response.status_code == 401


def test_refresh_without_token(client: TestClient):
    response = client.post("/api/v1/auth/refresh")

    assert response.status_code == 401
    assert response.json()["message"] == "No refresh token provided"


def test_logout_revokes_tokens_and_clears_cookies(client: TestClient, register, db_session: Session):
    data = register("logout@example.com")

    response = client.post("/api/v1/auth/logout", headers=_bearer(data["access_token"]))

    assert response.status_code == 200
    assert response.json()["message"] == "Logged out successfully"
    assert client.cookies.get("access_token") is None
    assert client.cookies.get("refresh_token") is None
    assert db_session.query(Token).count() == 0

    revoked = client.get("/api/v1/users/me", headers=_bearer(data["access_token"]))
    assert revoked.status_code == 401


def test_logout_all_revokes_every_session(client: TestClient, register, db_session: Session):
    first = register("everywhere@example.com")
    second = _login(client, "everywhere@example.com").json()["data"]
    other = register("someone-else@example.com")
    client.cookies.clear()

    response = client.post("/api/v1/auth/logout-all", headers=_bearer(second["access_token"]))

    assert response.status_code == 200
    assert response.json()["data"]["revoked"] == 4
    assert client.get("/api/v1/users/me", headers=_bearer(first["access_token"])).status_code == 401
    assert client.get("/api/v1/users/me", headers=_bearer(other["access_token"])).status_code == 200

    remaining = db_session.query(Token).all()
    assert {row.type for row in remaining} == {TokenType.ACCESS, TokenType.REFRESH}
    assert len(remaining) == 2


def test_update_profile(client: TestClient, register):
    register("profile@example.com", name="Old Name")

    response = client.put("/api/v1/users/me", json={"name": "New Name"})

    assert response.status_code == 200
    assert response.json()["data"]["name"] == "New Name"


def test_health_endpoints(client: TestClient):
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/").status_code == 200

    response = client.get("/health")
    assert "X-Request-ID" in response.headers
    assert "X-Correlation-ID" in response.headers


def test_register_leaves_no_user_when_token_store_fails(
    client: TestClient,
    db_session: Session,
    monkeypatch: pytest.MonkeyPatch,
):
    def failing_commit():
        raise OperationalError("INSERT INTO tokens", {}, Exception("database is locked"))

    monkeypatch.setattr(db_session, "commit", failing_commit)

    response = client.post(
        "/api/v1/auth/register",
        json={"email": "atomic@example.com", "name": "Atomic", "password": "StrongPass1"},
    )

    assert response.status_code == 500
    assert response.json()["message"] == "Failed to generate tokens"
    assert response.cookies.get("access_token") is None

    monkeypatch.undo()
    assert db_session.query(User).count() == 0
    assert db_session.query(Token).count() == 0


def test_logout_clears_cookies_when_revocation_fails(client: TestClient, register):
    class UnavailableRevoker(TokenRevoker):
        def revoke_token(self, db, token, user_id=None):
            raise PersistenceFailure("store down")

    data = register("besteffort@example.com")
    app.dependency_overrides[get_token_revoker] = lambda: UnavailableRevoker()

    response = client.post("/api/v1/auth/logout", headers=_bearer(data["access_token"]))

    assert response.status_code == 200
    assert response.json()["message"] == "Logged out successfully"
    set_cookie_headers = response.headers.get_list("set-cookie")
    assert len(set_cookie_headers) == 2
    assert all("Max-Age=-1" in header for header in set_cookie_headers)
    assert client.cookies.get("access_token") is None
    assert client.cookies.get("refresh_token") is None


def test_refresh_rejected_when_token_already_redeemed(client: TestClient, register, db_session: Session):
    class AlreadyRedeemedRevoker(TokenRevoker):
        def revoke_token(self, db, token, user_id=None):
            # Another request deleted the row first
            return 0

    register("race@example.com")
    app.dependency_overrides[get_token_revoker] = lambda: AlreadyRedeemedRevoker()

    response = client.post("/api/v1/auth/refresh")

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid refresh token"
    assert db_session.query(Token).count() == 2


def test_refresh_cookie_wins_over_unparsable_body(client: TestClient, register):
    register("garbage@example.com")

    response = client.post(
        "/api/v1/auth/refresh",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json()["data"]["access_token"]


def test_refresh_unparsable_body_without_cookie(client: TestClient):
    response = client.post(
        "/api/v1/auth/refresh",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 401
    assert response.json()["message"] == "No refresh token provided"
