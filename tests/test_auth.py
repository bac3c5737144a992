"""
Auth & Users Tests
==================

Registration, login lockout, bearer-token guards, refresh/logout and the
admin user endpoints.
Run with: pytest tests/test_auth.py -v
"""

from datetime import timedelta

from bassac.modules.auth.database import UserDatabase
from bassac.modules.auth.tokens import (
    TokenError, generate_access_token, generate_purpose_token, generate_refresh_token, parse_duration,
    verify_access_token, verify_purpose_token,
)
from bassac.modules.notifications.database import get_notifications_db

REGISTRATION = {
    "email": "Reader@Example.com",
    "password": "longenough",
    "first_name": "Sok",
    "last_name": "Dara",
}


# ---------------------------------------------------------------------------
# 1. Tokens -- durations and single-purpose tokens
# ---------------------------------------------------------------------------

def test_parse_duration():
    assert parse_duration("7d") == timedelta(days=7)
    assert parse_duration("15m") == timedelta(minutes=15)
    assert parse_duration("3600") == timedelta(seconds=3600)
    assert parse_duration("soon") == timedelta(days=7)


def test_purpose_token_rejects_other_purpose(app):
    token = generate_purpose_token(1, "password-reset")
    try:
        verify_purpose_token(token, "email-verification")
    except TokenError as e:
        assert str(e) == "Invalid token"
    else:
        raise AssertionError("purpose mismatch must be rejected")


def test_purpose_token_is_not_an_access_token(client, make_user):
    user, _ = make_user()
    token = generate_purpose_token(user["id"], "email-verification")
    response = client.get("/api/subscriptions/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.get_json()["message"] == "Invalid token"


def test_refresh_token_is_not_an_access_token(client, make_user):
    # Without JWT_REFRESH_SECRET both kinds are signed with the same key
    user, _ = make_user()
    token = generate_refresh_token(user)
    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_access_token_is_not_a_refresh_token(client, make_user):
    user, _ = make_user()
    response = client.post("/api/auth/refresh", json={"refreshToken": generate_access_token(user)})
    assert response.status_code == 401
    assert verify_access_token(generate_access_token(user))["type"] == "access"


# ---------------------------------------------------------------------------
# 2. Registration
# ---------------------------------------------------------------------------

def test_register_returns_user_and_tokens(client):
    response = client.post("/api/auth/register", json=REGISTRATION)
    assert response.status_code == 201
    body = response.get_json()
    assert body["message"] == "Registration successful. Please verify your email."
    assert body["data"]["user"]["email"] == "reader@example.com"
    assert body["data"]["user"]["role"] == "user"
    assert "password_hash" not in body["data"]["user"]
    assert body["data"]["accessToken"] and body["data"]["refreshToken"]


def test_register_duplicate_email(client):
    client.post("/api/auth/register", json=REGISTRATION)
    response = client.post("/api/auth/register", json=REGISTRATION)
    assert response.status_code == 409
    assert response.get_json()["message"] == "Email already registered"


def test_check_email(client, make_user):
    make_user(email="taken@example.com")
    body = client.get("/api/auth/check-email?email=TAKEN@example.com").get_json()
    assert body["data"]["exists"] is True
    assert body["data"]["available"] is False


# ---------------------------------------------------------------------------
# 3. Login and lockout
# ---------------------------------------------------------------------------

def test_login_success(client, make_user):
    make_user(email="writer@example.com", role="writer")
    response = client.post("/api/auth/login", json={"email": "writer@example.com", "password": "password123"})
    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["user"]["role"] == "writer"
    assert data["user"]["last_login"]


def test_login_failures_report_remaining_then_lock(client, make_user):
    make_user(email="locked@example.com")
    creds = {"email": "locked@example.com", "password": "wrong-password"}

    for remaining in (4, 3, 2, 1):
        response = client.post("/api/auth/login", json=creds)
        assert response.status_code == 401
        assert response.get_json()["message"] == f"Invalid email or password. {remaining} attempts remaining."

    response = client.post("/api/auth/login", json=creds)
    assert response.status_code == 423
    assert "Too many failed login attempts" in response.get_json()["message"]

    # Even the right password is refused while locked
    response = client.post("/api/auth/login", json={"email": "locked@example.com", "password": "password123"})
    assert response.status_code == 423


def test_login_inactive_account(client, make_user):
    make_user(email="gone@example.com", status="inactive")
    response = client.post("/api/auth/login", json={"email": "gone@example.com", "password": "password123"})
    assert response.status_code == 401
    assert response.get_json()["message"] == "Your account has been deactivated. Please contact support."


# ---------------------------------------------------------------------------
# 4. Guards -- login_required and role checks
# ---------------------------------------------------------------------------

def test_me_requires_token(client):
    response = client.get("/api/auth/me")
    assert response.status_code == 401
    assert response.get_json()["message"] == "Access denied. No token provided"


def test_me_rejects_garbage_token(client):
    response = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.get_json()["message"] == "Invalid token"


def test_me_returns_current_user(client, make_user):
    user, headers = make_user()
    response = client.get("/api/auth/me", headers=headers)
    assert response.status_code == 200
    assert response.get_json()["data"]["id"] == user["id"]


def test_suspended_user_token_is_refused(client, make_user):
    user, headers = make_user()
    UserDatabase.update_user(user["id"], status="suspended")
    response = client.get("/api/auth/me", headers=headers)
    assert response.status_code == 403
    assert response.get_json()["message"] == "Your account has been deactivated"


def test_role_guard_message(client, make_user):
    _, headers = make_user("writer")
    response = client.get("/api/users", headers=headers)
    assert response.status_code == 403
    assert response.get_json()["message"] == "Access denied. Required role(s): admin"


# ---------------------------------------------------------------------------
# 5. Refresh, logout, password flows
# ---------------------------------------------------------------------------

def test_refresh_and_logout(client):
    tokens = client.post("/api/auth/register", json=REGISTRATION).get_json()["data"]
    headers = {"Authorization": f"Bearer {tokens['accessToken']}"}

    response = client.post("/api/auth/refresh", json={"refreshToken": tokens["refreshToken"]})
    assert response.status_code == 200
    rotated = response.get_json()["data"]["refreshToken"]

    client.post("/api/auth/logout", headers=headers)
    response = client.post("/api/auth/refresh", json={"refreshToken": rotated})
    assert response.status_code == 401
    assert response.get_json()["message"] == "Invalid refresh token"


def test_refresh_token_not_issued_by_login_is_refused(client, make_user):
    user, _ = make_user()
    response = client.post("/api/auth/refresh", json={"refreshToken": generate_refresh_token(user)})
    assert response.status_code == 401


def test_change_password_wrong_current(client, make_user):
    _, headers = make_user()
    response = client.put("/api/auth/change-password", headers=headers,
                          json={"current_password": "nope-nope", "new_password": "brandnewpass"})
    assert response.status_code == 400
    assert response.get_json()["message"] == "Current password is incorrect"


def test_change_password_then_login(client, make_user):
    _, headers = make_user(email="change@example.com")
    response = client.put("/api/auth/change-password", headers=headers,
                          json={"current_password": "password123", "new_password": "brandnewpass"})
    assert response.status_code == 200
    response = client.post("/api/auth/login", json={"email": "change@example.com", "password": "brandnewpass"})
    assert response.status_code == 200


def test_forgot_password_does_not_leak_accounts(client, make_user):
    make_user(email="known@example.com")
    for email in ("known@example.com", "unknown@example.com"):
        response = client.post("/api/auth/forgot-password", json={"email": email})
        assert response.status_code == 200
        assert response.get_json()["message"] == "If the email exists, a reset link has been sent"


def test_verify_email(client, make_user):
    user, _ = make_user()
    token = generate_purpose_token(user["id"], "email-verification")
    response = client.post("/api/auth/verify-email", json={"token": token})
    assert response.status_code == 200
    assert response.get_json()["data"]["is_email_verified"] is True

    response = client.post("/api/auth/verify-email", json={"token": "bogus"})
    assert response.status_code == 400


def test_social_login_unconfigured(client):
    response = client.get("/api/auth/social/google")
    assert response.status_code == 503
    response = client.get("/api/auth/social/myspace")
    assert response.status_code == 400


# ---------------------------------------------------------------------------
# 6. Users -- profile and admin management
# ---------------------------------------------------------------------------

def test_public_profile(client, make_user):
    user, _ = make_user("writer")
    body = client.get(f"/api/users/profile/{user['id']}").get_json()
    assert body["data"]["full_name"] == user["full_name"]
    assert "email" not in body["data"]


def test_update_profile_validation(client, make_user):
    _, headers = make_user()
    response = client.put("/api/users/profile", headers=headers, json={"bio": "x" * 501})
    assert response.status_code == 422

    response = client.put("/api/users/profile", headers=headers, json={"first_name": 7, "bio": ["x"]})
    assert response.status_code == 422
    assert {e["field"] for e in response.get_json()["errors"]} == {"first_name", "bio"}


def test_admin_stats_and_list(client, make_user):
    _, admin_headers = make_user("admin")
    make_user("writer")
    make_user("writer")

    stats = client.get("/api/users/stats", headers=admin_headers).get_json()["data"]
    assert stats["total"] == 3
    assert stats["by_role"]["writer"] == 2
    assert stats["by_status"]["active"] == 3

    body = client.get("/api/users?role=writer", headers=admin_headers).get_json()
    assert body["pagination"]["total"] == 2


def test_role_change_notifies_user(client, make_user):
    _, admin_headers = make_user("admin")
    user, _ = make_user()

    response = client.put(f"/api/users/{user['id']}", headers=admin_headers, json={"role": "writer"})
    assert response.status_code == 200
    assert response.get_json()["data"]["role"] == "writer"

    notifications, total = get_notifications_db(user["id"])
    assert total == 1
    assert notifications[0]["type"] == "role_changed"


def test_admin_cannot_demote_or_delete_self(client, make_user):
    admin, headers = make_user("admin")

    response = client.put(f"/api/users/{admin['id']}", headers=headers, json={"role": "user"})
    assert response.status_code == 400
    assert response.get_json()["message"] == "You cannot change your own role"

    response = client.put(f"/api/users/{admin['id']}", headers=headers, json={"status": "inactive"})
    assert response.get_json()["message"] == "You cannot deactivate your own account"

    response = client.delete(f"/api/users/{admin['id']}", headers=headers)
    assert response.status_code == 400
    assert response.get_json()["message"] == "You cannot delete your own account"
