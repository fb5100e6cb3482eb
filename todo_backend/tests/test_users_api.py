import uuid
from datetime import timedelta

from fastapi.testclient import TestClient
from jose import jwt

from todo_api.auth import create_access_token, decode_access_token, hash_password, verify_password
from todo_api.main import app
from todo_api.settings import get_settings
from todo_api.utils import utcnow

client = TestClient(app)


def unique_email() -> str:
    return f"user-{uuid.uuid4().hex[:12]}@example.com"


def register(email=None, password="secret123"):
    return client.post("/api/v1/users/register", json={"email": email or unique_email(), "password": password})


class TestRegister:
    def test_register_returns_token_and_user(self):
        email = unique_email()
        res = register(email)
        assert res.status_code == 201
        body = res.json()
        assert body["token_type"] == "bearer"
        assert body["user"]["email"] == email
        assert "password" not in body["user"]
        assert "password_hash" not in body["user"]
        assert decode_access_token(body["token"]) == body["user"]["id"]

    def test_register_normalizes_email_case(self):
        email = unique_email()
        res = register(email.upper())
        assert res.status_code == 201
        assert res.json()["user"]["email"] == email

    def test_register_duplicate_email(self):
        email = unique_email()
        assert register(email).status_code == 201

        res = register(email)
        assert res.status_code == 409
        body = res.json()
        assert body["error"] == "ConflictError"
        assert body["message"] == "Email already exists"

    def test_register_short_password(self):
        res = register(password="123")
        assert res.status_code == 422
        assert res.json()["error"] == "ValidationError"

    def test_register_invalid_email(self):
        res = client.post("/api/v1/users/register", json={"email": "not-an-email", "password": "secret123"})
        assert res.status_code == 422


class TestLogin:
    def test_login_with_valid_credentials(self):
        email = unique_email()
        register(email, "hunter22")

        res = client.post("/api/v1/users/login", json={"email": email, "password": "hunter22"})
        assert res.status_code == 200
        body = res.json()
        assert body["user"]["email"] == email
        assert decode_access_token(body["token"]) == body["user"]["id"]

    def test_login_wrong_password(self):
        email = unique_email()
        register(email, "hunter22")

        res = client.post("/api/v1/users/login", json={"email": email, "password": "wrong-pass"})
        assert res.status_code == 401
        assert res.json()["message"] == "Invalid credentials"

    def test_login_unknown_email(self):
        res = client.post("/api/v1/users/login", json={"email": unique_email(), "password": "whatever"})
        assert res.status_code == 401
        assert res.json()["message"] == "Invalid credentials"


class TestProfile:
    def test_me_returns_current_user(self):
        body = register().json()
        res = client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert res.status_code == 200
        assert res.json()["id"] == body["user"]["id"]
        assert res.json()["email"] == body["user"]["email"]

    def test_expired_token_is_rejected(self):
        user_id = register().json()["user"]["id"]
        settings = get_settings()
        expired = jwt.encode(
            {"sub": str(user_id), "exp": utcnow() - timedelta(minutes=5)},
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
        )
        res = client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {expired}"})
        assert res.status_code == 401
        assert res.json()["message"] == "Token expired"

    def test_token_for_unknown_user_is_rejected(self):
        res = client.get(
            "/api/v1/users/me", headers={"Authorization": f"Bearer {create_access_token(10_000_000)}"}
        )
        assert res.status_code == 401
        assert res.json()["message"] == "User not found"

    def test_token_signed_with_other_secret_is_rejected(self):
        user_id = register().json()["user"]["id"]
        forged = jwt.encode({"sub": str(user_id)}, "some-other-secret", algorithm="HS256")
        res = client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {forged}"})
        assert res.status_code == 401


class TestPasswordHashing:
    def test_hash_and_verify(self):
        hashed = hash_password("correct horse")
        assert hashed != "correct horse"
        assert verify_password("correct horse", hashed)
        assert not verify_password("battery staple", hashed)

    def test_verify_against_malformed_hash(self):
        assert verify_password("anything", "not-a-bcrypt-hash") is False
