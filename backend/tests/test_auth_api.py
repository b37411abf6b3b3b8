"""
Tests for the authentication endpoints.
"""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from conftest import STRONG_PASSWORD, bearer
from models.refresh_token import RefreshToken
from models.user import User


class TestRegisterAPI:
    @pytest.mark.asyncio
    async def test_register(self, client: AsyncClient):
        response = await client.post(
            "/auth/register",
            json={"email": "a@b.com", "username": "alice", "password": STRONG_PASSWORD},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["user"]["email"] == "a@b.com"
        assert data["user"]["username"] == "alice"
        assert data["user"]["currency_balance"] == 0
        assert data["user"]["created_at"]
        assert "password_hash" not in data["user"]
        assert data["tokens"]["expires_in"] == 900
        assert data["tokens"]["access_token"]
        assert data["tokens"]["refresh_token"]

    @pytest.mark.asyncio
    async def test_weak_password(self, client: AsyncClient):
        response = await client.post(
            "/auth/register",
            json={"email": "a@b.com", "username": "alice", "password": "short"},
        )

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "validation_error"
        assert "at least 8 characters" in data["details"]["password"]

    @pytest.mark.asyncio
    async def test_missing_fields(self, client: AsyncClient):
        response = await client.post("/auth/register", json={"email": "a@b.com"})

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "validation_error"
        assert set(data["details"]) == {"username", "password"}

    @pytest.mark.asyncio
    async def test_wrong_types(self, client: AsyncClient):
        response = await client.post(
            "/auth/register",
            json={"email": ["a@b.com"], "username": "alice", "password": STRONG_PASSWORD},
        )

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "validation_error"
        assert "email" in data["details"]

    @pytest.mark.asyncio
    async def test_malformed_json(self, client: AsyncClient):
        response = await client.post(
            "/auth/register",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_case_insensitive_email_conflict(self, client: AsyncClient, registered):
        response = await client.post(
            "/auth/register",
            json={"email": "A@B.com", "username": "bob", "password": STRONG_PASSWORD},
        )

        assert response.status_code == 409
        data = response.json()
        assert data["error"] == "conflict"
        assert data["details"] == {"email": "Email is already registered"}

    @pytest.mark.asyncio
    async def test_upper_case_email_after_lower_case(self, client: AsyncClient):
        first = await client.post(
            "/auth/register",
            json={"email": "user@example.com", "username": "user1", "password": STRONG_PASSWORD},
        )
        assert first.status_code == 201

        response = await client.post(
            "/auth/register",
            json={"email": "USER@Example.com", "username": "user2", "password": STRONG_PASSWORD},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    @pytest.mark.asyncio
    async def test_username_conflict(self, client: AsyncClient, registered):
        response = await client.post(
            "/auth/register",
            json={"email": "other@b.com", "username": "Alice", "password": STRONG_PASSWORD},
        )

        assert response.status_code == 409
        assert response.json()["details"] == {"username": "Username is already taken"}

    @pytest.mark.asyncio
    async def test_store_failure_is_generic_500(self, client: AsyncClient):
        error = OperationalError("INSERT INTO users", {}, Exception("database is locked"))
        with patch("services.users.UserRepository.create", AsyncMock(side_effect=error)):
            response = await client.post(
                "/auth/register",
                json={"email": "a@b.com", "username": "alice", "password": STRONG_PASSWORD},
            )

        assert response.status_code == 500
        assert response.json() == {"error": "internal_error", "message": "Registration failed"}


class TestLoginAPI:
    @pytest.mark.asyncio
    async def test_login(self, client: AsyncClient, registered):
        response = await client.post(
            "/auth/login", json={"email": "a@b.com", "password": STRONG_PASSWORD}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["user"]["id"] == registered["user"]["id"]
        assert "created_at" not in data["user"]
        assert data["tokens"]["expires_in"] == 900

    @pytest.mark.asyncio
    async def test_enumeration_resistance(self, client: AsyncClient, registered):
        unknown = await client.post(
            "/auth/login", json={"email": "nonexistent@x.com", "password": "anything"}
        )
        wrong = await client.post(
            "/auth/login", json={"email": "a@b.com", "password": "wrongpassword"}
        )

        assert unknown.status_code == wrong.status_code == 401
        assert unknown.content == wrong.content
        assert unknown.json() == {
            "error": "invalid_credentials",
            "message": "Invalid email or password",
        }
        assert unknown.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_deactivated(self, client: AsyncClient, registered, db_session):
        user = await db_session.get(User, registered["user"]["id"])
        user.is_active = False
        await db_session.commit()

        response = await client.post(
            "/auth/login", json={"email": "a@b.com", "password": STRONG_PASSWORD}
        )

        assert response.status_code == 401
        assert response.json()["error"] == "account_deactivated"

    @pytest.mark.asyncio
    async def test_missing_password(self, client: AsyncClient):
        response = await client.post("/auth/login", json={"email": "a@b.com"})

        assert response.status_code == 400
        assert response.json()["details"] == {"password": "Password is required"}


class TestRefreshAPI:
    @pytest.mark.asyncio
    async def test_refresh(self, client: AsyncClient, registered):
        response = await client.post(
            "/auth/refresh", json={"refresh_token": registered["tokens"]["refresh_token"]}
        )

        assert response.status_code == 200
        data = response.json()
        assert set(data) == {"access_token", "expires_in"}
        assert data["expires_in"] == 900

        me = await client.get("/auth/me", headers=bearer(data["access_token"]))
        assert me.status_code == 200

    @pytest.mark.asyncio
    async def test_access_token_is_not_a_refresh_token(self, client: AsyncClient, registered):
        response = await client.post(
            "/auth/refresh", json={"refresh_token": registered["tokens"]["access_token"]}
        )

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_token"

    @pytest.mark.asyncio
    async def test_garbage(self, client: AsyncClient):
        response = await client.post("/auth/refresh", json={"refresh_token": "not-a-jwt"})

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_token"

    @pytest.mark.asyncio
    async def test_missing(self, client: AsyncClient):
        response = await client.post("/auth/refresh", json={})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_deactivated_user(self, client: AsyncClient, registered, db_session):
        user = await db_session.get(User, registered["user"]["id"])
        user.is_active = False
        await db_session.commit()

        response = await client.post(
            "/auth/refresh", json={"refresh_token": registered["tokens"]["refresh_token"]}
        )

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_user"


class TestLogoutAPI:
    @pytest.mark.asyncio
    async def test_logout_revokes_refresh_token(self, client: AsyncClient, registered):
        tokens = registered["tokens"]
        response = await client.post(
            "/auth/logout",
            json={"refresh_token": tokens["refresh_token"]},
            headers=bearer(tokens["access_token"]),
        )

        assert response.status_code == 200
        assert response.json() == {"message": "Logged out successfully"}

        refresh = await client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refresh.status_code == 401
        assert refresh.json()["error"] == "invalid_token"

    @pytest.mark.asyncio
    async def test_logout_twice(self, client: AsyncClient, registered, db_session):
        tokens = registered["tokens"]
        for _ in range(2):
            response = await client.post(
                "/auth/logout",
                json={"refresh_token": tokens["refresh_token"]},
                headers=bearer(tokens["access_token"]),
            )
            assert response.status_code == 200

        row = (await db_session.execute(select(RefreshToken))).scalar_one()
        assert row.is_revoked is True

    @pytest.mark.asyncio
    async def test_logout_without_body(self, client: AsyncClient, registered):
        response = await client.post(
            "/auth/logout", headers=bearer(registered["tokens"]["access_token"])
        )

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_logout_requires_access_token(self, client: AsyncClient, registered):
        response = await client.post(
            "/auth/logout", json={"refresh_token": registered["tokens"]["refresh_token"]}
        )

        assert response.status_code == 401
        assert response.json() == {"error": "unauthorized", "message": "Access token required"}

    @pytest.mark.asyncio
    async def test_logout_rejects_refresh_token_as_bearer(self, client: AsyncClient, registered):
        response = await client.post(
            "/auth/logout", headers=bearer(registered["tokens"]["refresh_token"])
        )

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_token"


class TestMeAPI:
    @pytest.mark.asyncio
    async def test_me(self, client: AsyncClient, registered):
        response = await client.get("/auth/me", headers=bearer(registered["tokens"]["access_token"]))

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == registered["user"]["id"]
        assert data["email"] == "a@b.com"
        assert data["last_login"] is None
        assert "password_hash" not in data
        assert response.headers["Cache-Control"] == "no-store"

    @pytest.mark.asyncio
    async def test_me_after_deactivation(self, client: AsyncClient, registered, db_session):
        user = await db_session.get(User, registered["user"]["id"])
        user.is_active = False
        await db_session.commit()

        response = await client.get("/auth/me", headers=bearer(registered["tokens"]["access_token"]))

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"


class TestScenarios:
    @pytest.mark.asyncio
    async def test_happy_path(self, client: AsyncClient):
        register = await client.post(
            "/auth/register",
            json={"email": "a@b.com", "username": "alice", "password": "Passw0rd!"},
        )
        assert register.status_code == 201
        assert register.json()["user"]["currency_balance"] == 0
        user_id = register.json()["user"]["id"]

        login = await client.post("/auth/login", json={"email": "a@b.com", "password": "Passw0rd!"})
        assert login.status_code == 200
        assert login.json()["user"]["id"] == user_id
        tokens = login.json()["tokens"]

        refresh = await client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refresh.status_code == 200
        assert refresh.json()["expires_in"] == 900

        logout_all = await client.post(
            "/auth/logout-all", headers=bearer(refresh.json()["access_token"])
        )
        assert logout_all.status_code == 200

        again = await client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert again.status_code == 401
        assert again.json()["error"] == "invalid_token"

    @pytest.mark.asyncio
    async def test_no_plaintext_secrets_at_rest(self, client: AsyncClient, db_session):
        issued = []
        register = await client.post(
            "/auth/register",
            json={"email": "a@b.com", "username": "alice", "password": STRONG_PASSWORD},
        )
        issued.append(register.json()["tokens"]["refresh_token"])
        for _ in range(2):
            login = await client.post(
                "/auth/login", json={"email": "a@b.com", "password": STRONG_PASSWORD}
            )
            issued.append(login.json()["tokens"]["refresh_token"])

        stored = (await db_session.execute(select(RefreshToken.token_hash))).scalars().all()
        assert len(stored) == 3
        assert not set(stored) & set(issued)

        password_hash = (await db_session.execute(select(User.password_hash))).scalar_one()
        assert password_hash != STRONG_PASSWORD

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "mode": "dev"}
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
