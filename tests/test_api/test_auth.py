"""Tests for verification and password reset link endpoints."""

import pytest
from httpx import AsyncClient

from sendledger.services.email_ledger import EmailSendPurpose

pytestmark = pytest.mark.asyncio

VERIFY = EmailSendPurpose.VERIFY_EMAIL
RESET = EmailSendPurpose.PASSWORD_RESET


class TestVerifyEmail:
    """Tests for GET /auth/verify-email."""

    async def test_valid_token_verifies_user(
        self, client: AsyncClient, user_factory, action_token_factory
    ):
        """Should mark the user verified and redirect to login."""
        user = await user_factory(email="verify@example.com")
        token = await action_token_factory(VERIFY, user)

        response = await client.get(
            "/auth/verify-email", params={"token": token}, follow_redirects=False
        )

        assert response.status_code == 302
        assert response.headers["location"].endswith("/login?verified=1")
        assert user.email_verified_at is not None

    async def test_reused_token_rejected(
        self, client: AsyncClient, user_factory, action_token_factory
    ):
        user = await user_factory()
        token = await action_token_factory(VERIFY, user)
        await client.get("/auth/verify-email", params={"token": token}, follow_redirects=False)

        response = await client.get(
            "/auth/verify-email", params={"token": token}, follow_redirects=False
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "This link has already been used"

    async def test_expired_token_rejected(
        self, client: AsyncClient, user_factory, action_token_factory
    ):
        user = await user_factory()
        token = await action_token_factory(VERIFY, user, expired=True)

        response = await client.get("/auth/verify-email", params={"token": token})

        assert response.status_code == 400
        assert response.json()["detail"] == "This link has expired"

    async def test_reset_token_is_not_a_verification_token(
        self, client: AsyncClient, user_factory, action_token_factory
    ):
        user = await user_factory()
        token = await action_token_factory(RESET, user)

        response = await client.get("/auth/verify-email", params={"token": token})

        assert response.status_code == 400

    async def test_missing_token(self, client: AsyncClient):
        response = await client.get("/auth/verify-email")

        assert response.status_code == 422


class TestValidatePasswordReset:
    """Tests for POST /auth/password-reset/validate."""

    async def test_valid_token(self, client: AsyncClient, user_factory, action_token_factory):
        user = await user_factory()
        token = await action_token_factory(RESET, user)

        response = await client.post("/auth/password-reset/validate", json={"token": token})

        assert response.status_code == 200
        assert response.json() == {"valid": True}

    async def test_used_token(self, client: AsyncClient, user_factory, action_token_factory):
        user = await user_factory()
        token = await action_token_factory(RESET, user, used=True)

        response = await client.post("/auth/password-reset/validate", json={"token": token})

        assert response.json() == {"valid": False}

    async def test_unknown_token(self, client: AsyncClient):
        response = await client.post("/auth/password-reset/validate", json={"token": "nope"})

        assert response.json() == {"valid": False}
