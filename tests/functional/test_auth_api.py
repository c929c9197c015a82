"""Site accounts: signup, login, password reset and profile endpoints."""

import io
from datetime import datetime, timedelta

SIGNUP = {"name": "Ali", "surname": "Valiyev", "email": "Ali@Example.com", "password": "secret123"}


class TestSignupAndLogin:
    def test_signup_lowercases_email(self, client):
        response = client.post("/api/auth/signup", json=SIGNUP)

        assert response.status_code == 201
        body = response.json()
        assert body["ok"] is True
        assert body["data"]["email"] == "ali@example.com"
        assert "password" not in body["data"]
        assert body["data"]["purchasedCourses"] == []

    def test_duplicate_email(self, client):
        client.post("/api/auth/signup", json=SIGNUP)
        response = client.post("/api/auth/signup", json={**SIGNUP, "email": "ali@example.com"})

        assert response.status_code == 409
        assert response.json() == {"ok": False, "error": "Email already registered"}

    def test_short_password_rejected(self, client):
        response = client.post("/api/auth/signup", json={**SIGNUP, "password": "123"})

        assert response.status_code == 400
        assert response.json()["ok"] is False
        assert "password" in response.json()["error"]

    def test_login_returns_token(self, client):
        client.post("/api/auth/signup", json=SIGNUP)
        response = client.post("/api/auth/login", json={"email": "ali@example.com", "password": "secret123"})

        assert response.status_code == 200
        data = response.json()["data"]
        me = client.get("/api/user/me", headers={"Authorization": f"Bearer {data['token']}"})
        assert me.status_code == 200
        assert me.json()["data"]["email"] == "ali@example.com"

    def test_wrong_password(self, client):
        client.post("/api/auth/signup", json=SIGNUP)
        response = client.post("/api/auth/login", json={"email": "ali@example.com", "password": "wrong-pass"})

        assert response.status_code == 401
        assert response.json()["error"] == "Invalid email or password"

    def test_suspended_account_cannot_log_in(self, client, seed):
        seed.user(email="banned@example.com", status="suspended")
        response = client.post("/api/auth/login", json={"email": "banned@example.com", "password": "secret123"})

        assert response.status_code == 401


class TestPasswordReset:
    def test_full_reset_flow(self, client, seed, db, mailer):
        seed.user(email="forgot@example.com")

        response = client.post("/api/auth/send-reset-code", json={"email": "forgot@example.com"})
        assert response.status_code == 200
        assert mailer.outbox[0]["to"] == "forgot@example.com"

        code = seed.find_user("forgot@example.com")["resetCode"]
        assert code in mailer.outbox[0]["body"]

        verify = client.post("/api/auth/verify-reset-code", json={"email": "forgot@example.com", "code": code})
        assert verify.status_code == 200

        reset = client.post(
            "/api/auth/reset-password",
            json={"email": "forgot@example.com", "code": code, "newPassword": "brand-new-pass"},
        )
        assert reset.status_code == 200
        assert seed.find_user("forgot@example.com")["resetCode"] is None

        login = client.post("/api/auth/login", json={"email": "forgot@example.com", "password": "brand-new-pass"})
        assert login.status_code == 200

    def test_unknown_email(self, client):
        response = client.post("/api/auth/send-reset-code", json={"email": "nobody@example.com"})
        assert response.status_code == 404

    def test_wrong_code(self, client, seed):
        seed.user(email="forgot@example.com", resetCode="123456", resetCodeExpiry=datetime.utcnow() + timedelta(minutes=5))
        response = client.post("/api/auth/verify-reset-code", json={"email": "forgot@example.com", "code": "654321"})

        assert response.status_code == 400

    def test_expired_code(self, client, seed):
        seed.user(email="forgot@example.com", resetCode="123456", resetCodeExpiry=datetime.utcnow() - timedelta(minutes=1))
        response = client.post("/api/auth/verify-reset-code", json={"email": "forgot@example.com", "code": "123456"})

        assert response.status_code == 400
        assert "expired" in response.json()["error"]


class TestProfile:
    def test_me_requires_token(self, client):
        response = client.get("/api/user/me")

        assert response.status_code == 401
        assert response.json() == {"ok": False, "error": "Not authorized, no token"}

    def test_garbage_token(self, client):
        response = client.get("/api/user/me", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401
        assert response.json()["error"] == "Not authorized, token failed"

    def test_me_lists_only_active_courses(self, client, seed, user_headers):
        active = seed.course(title="Active Course")
        lapsed = seed.course(title="Lapsed Course")
        user = seed.user(courses=[active], expired=[lapsed])

        data = client.get("/api/user/me", headers=user_headers(user)).json()["data"]

        assert [e["course"] for e in data["purchasedCourses"]] == [str(active["_id"])]

    def test_suspended_user_token_rejected(self, client, seed, user_headers):
        user = seed.user(status="suspended")
        response = client.get("/api/user/me", headers=user_headers(user))

        assert response.status_code == 401
        assert response.json()["error"] == "User account is suspended"

    def test_update_profile_with_avatar(self, client, seed, user_headers, storage):
        user = seed.user()
        response = client.post(
            "/api/user/profile/update",
            headers=user_headers(user),
            data={"name": "Renamed"},
            files={"avatar": ("me.png", io.BytesIO(b"png-bytes"), "image/png")},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["name"] == "Renamed"
        assert data["image"].startswith("https://cdn.test/avatars/")
        assert storage.files[data["image"]] == b"png-bytes"

    def test_avatar_type_checked(self, client, seed, user_headers):
        user = seed.user()
        response = client.post(
            "/api/user/profile/update",
            headers=user_headers(user),
            files={"avatar": ("notes.txt", io.BytesIO(b"text"), "text/plain")},
        )

        assert response.status_code == 400

    def test_change_password(self, client, seed, user_headers):
        user = seed.user()
        headers = user_headers(user)

        too_short = client.post(
            "/api/user/password/change", headers=headers, json={"currentPassword": "secret123", "newPassword": "short"}
        )
        wrong = client.post(
            "/api/user/password/change", headers=headers, json={"currentPassword": "nope", "newPassword": "long-enough"}
        )
        changed = client.post(
            "/api/user/password/change", headers=headers, json={"currentPassword": "secret123", "newPassword": "long-enough"}
        )

        assert too_short.status_code == 400
        assert wrong.status_code == 401
        assert changed.status_code == 200

    def test_email_change_flow(self, client, seed, user_headers, mailer):
        user = seed.user(email="old@example.com")
        seed.user(email="taken@example.com")
        headers = user_headers(user)

        taken = client.post(
            "/api/user/email/request-change",
            headers=headers,
            json={"newEmail": "taken@example.com", "currentPassword": "secret123"},
        )
        assert taken.status_code == 409

        requested = client.post(
            "/api/user/email/request-change",
            headers=headers,
            json={"newEmail": "New@Example.com", "currentPassword": "secret123"},
        )
        assert requested.status_code == 200
        assert mailer.outbox[-1]["to"] == "new@example.com"

        code = seed.find_user("old@example.com")["emailChangeRequest"]["verificationCode"]
        wrong = client.post("/api/user/email/confirm-change", headers=headers, json={"code": "wrong-code"})
        assert wrong.status_code == 400

        confirmed = client.post("/api/user/email/confirm-change", headers=headers, json={"code": code})
        assert confirmed.status_code == 200
        assert confirmed.json()["data"]["email"] == "new@example.com"
        assert seed.find_user("new@example.com") is not None


def test_ping(client):
    assert client.get("/ping").json() == {"ok": True, "data": None, "message": "pong"}

