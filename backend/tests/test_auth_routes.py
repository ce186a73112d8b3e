import psycopg2.errors
import pytest

from backend.auth_service.otp import OtpOutcome
from backend.auth_service.utils import create_token, hash_password
from backend.errors import InvalidCodeError, ValidationError


@pytest.fixture
def otp_flow(app, mocker):
    flow = mocker.Mock()
    flow.request_code.return_value = OtpOutcome.ISSUED
    flow.resend_code.return_value = OtpOutcome.RESENT
    app.extensions["otp_flow"] = flow
    return flow


def test_register_success(client, mock_db, mocker):
    mock_conn, mock_cursor = mock_db()

    # RETURNING user_id, role
    mock_cursor.fetchone.return_value = {"user_id": 1, "role": "student"}
    mocker.patch("backend.auth_service.users.hash_password", return_value="hashed_secret")

    payload = {
        "email": " Test@Example.com ",
        "password": "password123",
        "name": "Test User",
    }

    response = client.post("/auth/register", json=payload)

    assert response.status_code == 201
    data = response.get_json()
    assert data["user_id"] == 1
    assert data["role"] == "student"
    assert "token" in data

    # Verify DB interaction
    args, _ = mock_cursor.execute.call_args
    assert args[1][0] == "test@example.com"  # normalized email
    assert args[1][1] == "hashed_secret"  # password hash, never the plaintext
    assert args[1][3] == "student"


def test_register_missing_fields(client):
    response = client.post("/auth/register", json={})
    assert response.status_code == 400
    assert "Email and password required" in response.get_json()["error"]


def test_register_short_password(client):
    response = client.post("/auth/register", json={
        "email": "a@b.co", "password": "short", "name": "A"
    })
    assert response.status_code == 400


def test_register_invalid_role(client):
    response = client.post("/auth/register", json={
        "email": "a@b.co", "password": "password123", "name": "A", "role": "admin"
    })
    assert response.status_code == 400
    assert "role must be one of" in response.get_json()["error"]


@pytest.mark.parametrize("payload", [
    {"email": "a@b.co", "password": 12345678, "name": "A"},
    {"email": "a@b.co", "password": "password123", "name": 42},
])
def test_register_non_string_fields(client, payload):
    response = client.post("/auth/register", json=payload)
    assert response.status_code == 400


def test_login_non_string_password(client):
    response = client.post("/auth/login", json={"email": "a@b.co", "password": 12345678})
    assert response.status_code == 400


def test_register_duplicate_email(client, mock_db):
    _, mock_cursor = mock_db()
    mock_cursor.execute.side_effect = psycopg2.errors.UniqueViolation()

    response = client.post("/auth/register", json={
        "email": "a@b.co", "password": "password123", "name": "A"
    })
    assert response.status_code == 400
    assert response.get_json()["error"] == "Email already exists"


def test_login_success(client, mock_db):
    _, mock_cursor = mock_db()
    mock_cursor.fetchone.return_value = {
        "user_id": 1,
        "email": "test@example.com",
        "name": "Test User",
        "password_hash": hash_password("password123"),
        "role": "alumni"
    }

    response = client.post("/auth/login", json={
        "email": "test@example.com",
        "password": "password123"
    })

    assert response.status_code == 200
    data = response.get_json()
    assert data["user_id"] == 1
    assert data["role"] == "alumni"
    assert "token" in data


def test_login_invalid_credentials(client, mock_db):
    _, mock_cursor = mock_db()
    mock_cursor.fetchone.return_value = {
        "user_id": 1,
        "email": "test@example.com",
        "name": "Test User",
        "password_hash": hash_password("password123"),
        "role": "student"
    }

    response = client.post("/auth/login", json={
        "email": "test@example.com",
        "password": "wrongpassword"
    })

    assert response.status_code == 401
    assert "Invalid credentials" in response.get_json()["error"]


def test_login_unknown_email(client, mock_db):
    _, mock_cursor = mock_db()
    mock_cursor.fetchone.return_value = None

    response = client.post("/auth/login", json={"email": "x@y.co", "password": "password123"})
    assert response.status_code == 401


def test_get_me_success(client, mock_db):
    _, mock_cursor = mock_db()
    token = create_token(1, "student")

    mock_cursor.fetchone.return_value = {
        "user_id": 1,
        "email": "test@example.com",
        "name": "Test User",
        "role": "student",
        "profile": {"bio": "hi"},
        "created_at": None,
        "updated_at": None,
    }

    response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    data = response.get_json()
    assert data["email"] == "test@example.com"
    assert "password_hash" not in data


def test_get_me_unauthorized(client):
    response = client.get("/auth/me")
    assert response.status_code == 401


def test_update_me_filters_profile_fields(client, mock_db):
    _, mock_cursor = mock_db()
    token = create_token(1, "student")
    mock_cursor.fetchone.return_value = {
        "user_id": 1, "email": "t@e.co", "name": "New Name", "role": "student",
        "profile": {"bio": "new"}, "created_at": None, "updated_at": None,
    }

    response = client.put(
        "/auth/me",
        json={"name": "New Name", "profile": {"bio": "new", "role": "alumni"}},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 200
    args, _ = mock_cursor.execute.call_args
    assert args[1][0] == "New Name"
    assert args[1][1] == '{"bio": "new"}'


def test_update_me_no_fields(client):
    token = create_token(1, "student")
    response = client.put("/auth/me", json={"profile": {"role": "alumni"}},
                          headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 400


# --- PASSWORD RESET ---

def test_forgot_password_always_ok(client, otp_flow):
    response = client.post("/auth/forgot-password", json={"email": "nobody@example.com"})

    assert response.status_code == 200
    assert response.get_json()["ok"] is True
    otp_flow.request_code.assert_called_once()
    assert otp_flow.request_code.call_args[0][0] == "nobody@example.com"


def test_forgot_password_rate_limited_looks_the_same(client, otp_flow):
    otp_flow.request_code.return_value = OtpOutcome.RATE_LIMITED

    response = client.post("/auth/forgot-password", json={"email": "a@b.co"})

    assert response.status_code == 200
    assert response.get_json() == {"ok": True, "message": "If an account exists, an OTP has been sent."}


def test_forgot_password_without_email(client, otp_flow):
    response = client.post("/auth/forgot-password", json={})

    assert response.status_code == 200
    assert response.get_json() == {"ok": True}
    otp_flow.request_code.assert_not_called()


def test_forgot_password_store_failure(client, otp_flow):
    otp_flow.request_code.side_effect = RuntimeError("db down")

    response = client.post("/auth/forgot-password", json={"email": "a@b.co"})

    assert response.status_code == 500
    assert response.get_json()["ok"] is False


@pytest.mark.parametrize("outcome", [OtpOutcome.RESENT, OtpOutcome.COOLDOWN, OtpOutcome.RATE_LIMITED, OtpOutcome.FALLBACK])
def test_resend_otp_uniform(client, otp_flow, outcome):
    otp_flow.resend_code.return_value = outcome

    response = client.post("/auth/resend-otp", json={"email": "a@b.co"})

    assert response.status_code == 200
    assert response.get_json() == {"ok": True}


def test_verify_otp_success(client, otp_flow):
    response = client.post("/auth/verify-otp", json={
        "email": "a@b.co", "otp": "123456", "newPassword": "newpassword1"
    })

    assert response.status_code == 200
    assert response.get_json() == {"ok": True, "message": "Password reset successful"}
    otp_flow.verify_code.assert_called_once_with("a@b.co", "123456", "newpassword1")


def test_verify_otp_invalid_code(client, otp_flow):
    otp_flow.verify_code.side_effect = InvalidCodeError()

    response = client.post("/auth/verify-otp", json={
        "email": "a@b.co", "otp": "000000", "newPassword": "newpassword1"
    })

    assert response.status_code == 400
    assert response.get_json() == {"ok": False, "message": "Invalid code or expired"}


def test_verify_otp_validation_error(client, otp_flow):
    otp_flow.verify_code.side_effect = ValidationError("Missing fields")

    response = client.post("/auth/verify-otp", json={"email": "a@b.co"})

    assert response.status_code == 400
    assert response.get_json()["message"] == "Missing fields"


def test_verify_otp_server_error(client, otp_flow):
    otp_flow.verify_code.side_effect = RuntimeError("db down")

    response = client.post("/auth/verify-otp", json={
        "email": "a@b.co", "otp": "123456", "newPassword": "newpassword1"
    })

    assert response.status_code == 500
    assert response.get_json() == {"ok": False, "message": "Server error"}
