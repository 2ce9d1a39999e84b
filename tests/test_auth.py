from unittest.mock import patch

from fastapi import status
from jose import jwt

from gather.config import settings
from gather.models.auth_token import UserSession
from gather.models.user import User, UserStatus
from conftest import TEST_PASSWORD, signin


def _register_payload(email: str = "newuser@example.com", display_name: str | None = "New User") -> dict:
    payload = {"email": email, "password": TEST_PASSWORD}
    if display_name is not None:
        payload["displayName"] = display_name
    return payload


def test_register_success(client, db):
    response = client.post("/api/auth/register", json=_register_payload())

    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert data["user"]["email"] == "newuser@example.com"
    assert data["user"]["displayName"] == "New User"
    assert data["user"]["role"] == "regular"
    assert data["user"]["hasPassword"] is True
    assert data["accessToken"]
    assert data["expiresIn"] == 15 * 60
    assert response.cookies.get("refresh_token")

    user = db.query(User).filter(User.email == "newuser@example.com").first()
    assert user is not None
    assert user.hashed_password != TEST_PASSWORD
    assert db.query(UserSession).filter(UserSession.user_id == user.id).count() == 1


def test_register_then_signin(client):
    assert client.post("/api/auth/register", json=_register_payload()).status_code == status.HTTP_201_CREATED
    client.cookies.clear()

    response = signin(client, "newuser@example.com")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["user"]["email"] == "newuser@example.com"


def test_register_normalizes_email_and_derives_display_name(client):
    response = client.post(
        "/api/auth/register",
        json=_register_payload(email="Jane.Doe@Example.com", display_name=None),
    )

    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["user"]["email"] == "jane.doe@example.com"
    assert response.json()["user"]["displayName"] == "Jane Doe"


def test_register_sets_httponly_strict_cookie(client):
    response = client.post("/api/auth/register", json=_register_payload())

    set_cookie = response.headers["set-cookie"].lower()
    assert "refresh_token=" in set_cookie
    assert "httponly" in set_cookie
    assert "samesite=strict" in set_cookie
    assert "path=/" in set_cookie
    assert "secure" not in set_cookie


def test_register_duplicate_email(client, test_user):
    response = client.post("/api/auth/register", json=_register_payload(email="TEST@example.com"))

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"]["code"] == "USER_EXISTS"


def test_register_weak_password_lists_every_rule(client):
    payload = _register_payload()
    payload["password"] = "short"

    response = client.post("/api/auth/register", json=payload)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    messages = [detail["message"] for detail in error["details"]]
    assert "Password must be at least 8 characters long" in messages
    assert "Password must contain at least one uppercase letter" in messages
    assert "Password must contain at least one number" in messages
    assert "Password must contain at least one special character" in messages
    assert all(detail["field"] == "password" for detail in error["details"])


def test_register_invalid_email(client):
    payload = _register_payload()
    payload["email"] = "not-an-email"

    response = client.post("/api/auth/register", json=payload)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert error["details"][0]["field"] == "email"


def test_signin_success(client, test_user):
    response = signin(client, test_user.email)

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["user"]["id"] == test_user.id
    assert data["expiresIn"] == 15 * 60
    assert response.cookies.get("refresh_token")

    payload = jwt.decode(data["accessToken"], settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    assert payload["sub"] == str(test_user.id)
    assert payload["email"] == test_user.email
    assert payload["role"] == "regular"
    assert payload["type"] == "access"
    assert payload["exp"] - payload["iat"] == 15 * 60


def test_signin_email_is_case_insensitive(client, test_user):
    response = signin(client, "Test@Example.COM")
    assert response.status_code == status.HTTP_200_OK


def test_signin_wrong_password(client, test_user):
    response = signin(client, test_user.email, "Wrongpass123!")

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"]["code"] == "INVALID_CREDENTIALS"


def test_signin_unknown_email_matches_wrong_password(client, test_user):
    unknown = signin(client, "ghost@example.com")
    wrong = signin(client, test_user.email, "Wrongpass123!")

    assert unknown.status_code == wrong.status_code == status.HTTP_401_UNAUTHORIZED
    assert unknown.json() == wrong.json()


def test_signin_passwordless_account_is_rejected(client, make_user):
    user = make_user(email="magic@example.com", password=None)

    response = signin(client, user.email)

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"]["code"] == "INVALID_CREDENTIALS"


def test_signin_suspended_user(client, make_user):
    user = make_user(email="banned@example.com", status=UserStatus.SUSPENDED)

    response = signin(client, user.email)

    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["error"]["code"] == "ACCOUNT_SUSPENDED"


def test_signin_records_device_info(client, db, test_user):
    client.post(
        "/api/auth/signin",
        json={"email": test_user.email, "password": TEST_PASSWORD},
        headers={"User-Agent": "pytest-browser", "X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
    )

    session = db.query(UserSession).filter(UserSession.user_id == test_user.id).one()
    assert session.device_info == {"userAgent": "pytest-browser", "platform": "web"}
    assert session.ip_address == "203.0.113.7"


def test_refresh_rotates_token(client, test_user):
    signin_response = signin(client, test_user.email)
    old_refresh = signin_response.cookies["refresh_token"]

    response = client.post("/api/auth/refresh")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["accessToken"]
    assert response.json()["expiresIn"] == 15 * 60
    new_refresh = response.cookies["refresh_token"]
    assert new_refresh != old_refresh


def test_refresh_token_is_single_use(client, test_user):
    old_refresh = signin(client, test_user.email).cookies["refresh_token"]
    assert client.post("/api/auth/refresh").status_code == status.HTTP_200_OK

    client.cookies.clear()
    client.cookies.set("refresh_token", old_refresh)
    response = client.post("/api/auth/refresh")

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"]["code"] == "UNAUTHORIZED"
    assert "max-age=0" in response.headers["set-cookie"].lower()


def test_refresh_without_cookie(client):
    response = client.post("/api/auth/refresh")

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"]["message"] == "No refresh token provided"


def test_refresh_with_unknown_token_clears_cookie(client):
    client.cookies.set("refresh_token", "not-a-real-token")

    response = client.post("/api/auth/refresh")

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["error"]["message"] == "Invalid or expired refresh token"
    assert "max-age=0" in response.headers["set-cookie"].lower()


def test_refresh_rejected_for_suspended_user(client, db, test_user):
    signin(client, test_user.email)
    test_user.status = UserStatus.SUSPENDED.value
    db.commit()

    response = client.post("/api/auth/refresh")

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert db.query(UserSession).filter(UserSession.user_id == test_user.id).count() == 0


def test_logout_deletes_session(client, db, test_user):
    signin(client, test_user.email)

    response = client.post("/api/auth/logout")

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"message": "Logged out successfully"}
    assert db.query(UserSession).filter(UserSession.user_id == test_user.id).count() == 0
    assert "max-age=0" in response.headers["set-cookie"].lower()


def test_logout_is_idempotent(client, test_user):
    refresh_token = signin(client, test_user.email).cookies["refresh_token"]
    assert client.post("/api/auth/logout").status_code == status.HTTP_200_OK

    client.cookies.set("refresh_token", refresh_token)
    assert client.post("/api/auth/logout").status_code == status.HTTP_200_OK

    client.cookies.clear()
    assert client.post("/api/auth/logout").status_code == status.HTTP_200_OK


def test_logout_all_revokes_every_device(client, db, test_user):
    first = signin(client, test_user.email)
    second = signin(client, test_user.email)
    assert db.query(UserSession).filter(UserSession.user_id == test_user.id).count() == 2

    response = client.post(
        "/api/auth/logout-all",
        headers={"Authorization": f"Bearer {second.json()['accessToken']}"},
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"message": "Signed out of all sessions"}
    assert db.query(UserSession).filter(UserSession.user_id == test_user.id).count() == 0

    client.cookies.clear()
    client.cookies.set("refresh_token", first.cookies["refresh_token"])
    assert client.post("/api/auth/refresh").status_code == status.HTTP_401_UNAUTHORIZED


def test_logout_all_requires_auth(client):
    response = client.post("/api/auth/logout-all")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_me_returns_current_user(client, test_user, auth_headers):
    response = client.get("/api/auth/me", headers=auth_headers)

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["id"] == test_user.id
    assert data["email"] == test_user.email
    assert data["emailVerified"] is True
    assert data["createdAt"]


def test_unexpected_error_uses_envelope(client, test_user):
    from fastapi.testclient import TestClient

    from gather.main import app

    with patch("gather.api.auth.get_user_by_email", side_effect=RuntimeError("boom")):
        response = TestClient(app, raise_server_exceptions=False).post(
            "/api/auth/signin",
            json={"email": test_user.email, "password": TEST_PASSWORD},
        )

    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert response.json() == {
        "error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": None}
    }


def test_unknown_route_uses_envelope(client):
    response = client.get("/api/does-not-exist")

    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["error"]["code"] == "NOT_FOUND"
