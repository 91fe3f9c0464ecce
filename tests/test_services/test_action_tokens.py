"""Tests for single-use action tokens."""

from unittest.mock import patch

import pytest
from sqlalchemy import select

from sendledger.models.action_token import ActionToken
from sendledger.services.action_tokens import (
    InvalidActionTokenError,
    build_action_url,
    consume_action_token,
    delete_stale_action_tokens,
    get_valid_action_token,
    issue_action_token,
)
from sendledger.services.email_ledger import EmailSendPurpose

pytestmark = pytest.mark.asyncio

VERIFY = EmailSendPurpose.VERIFY_EMAIL
RESET = EmailSendPurpose.PASSWORD_RESET


class TestIssueAndConsume:
    """Tests for issue_action_token and consume_action_token."""

    async def test_only_hash_is_stored(self, db_session, user_factory):
        """Should store the hash, never the raw token."""
        user = await user_factory()
        token = await issue_action_token(db_session, VERIFY, user.email, user_id=user.id)

        result = await db_session.execute(select(ActionToken))
        stored = result.scalar_one()
        assert stored.token_hash != token
        assert stored.purpose == "verify_email"
        assert stored.user_id == user.id

    async def test_consume_marks_used(self, db_session, user_factory):
        user = await user_factory()
        token = await issue_action_token(db_session, VERIFY, user.email, user_id=user.id)

        action_token = await consume_action_token(db_session, token, VERIFY)

        assert action_token.used_at is not None

    async def test_reuse_rejected(self, db_session, user_factory):
        """A consumed token should not be accepted twice."""
        user = await user_factory()
        token = await issue_action_token(db_session, VERIFY, user.email, user_id=user.id)
        await consume_action_token(db_session, token, VERIFY)

        with pytest.raises(InvalidActionTokenError, match="already been used"):
            await consume_action_token(db_session, token, VERIFY)

    async def test_expired_rejected(self, user_factory, action_token_factory, db_session):
        user = await user_factory()
        token = await action_token_factory(RESET, user, expired=True)

        with pytest.raises(InvalidActionTokenError, match="expired"):
            await get_valid_action_token(db_session, token, RESET)

    async def test_wrong_purpose_rejected(self, db_session, user_factory):
        """A verification token must not work as a reset token."""
        user = await user_factory()
        token = await issue_action_token(db_session, VERIFY, user.email, user_id=user.id)

        with pytest.raises(InvalidActionTokenError, match="Invalid or expired link"):
            await get_valid_action_token(db_session, token, RESET)

    async def test_unknown_rejected(self, db_session):
        with pytest.raises(InvalidActionTokenError):
            await get_valid_action_token(db_session, "not-a-token", VERIFY)

    async def test_validate_does_not_consume(self, db_session, user_factory):
        user = await user_factory()
        token = await issue_action_token(db_session, RESET, user.email, user_id=user.id)

        await get_valid_action_token(db_session, token, RESET)
        action_token = await get_valid_action_token(db_session, token, RESET)

        assert action_token.used_at is None


class TestDeleteStaleActionTokens:
    """Tests for delete_stale_action_tokens."""

    async def test_deletes_expired_and_used(self, db_session, user_factory, action_token_factory):
        user = await user_factory()
        await action_token_factory(VERIFY, user, expired=True)
        await action_token_factory(VERIFY, user, used=True)
        live = await action_token_factory(RESET, user)

        deleted = await delete_stale_action_tokens(db_session)

        assert deleted == 2
        assert await get_valid_action_token(db_session, live, RESET)


class TestBuildActionUrl:
    """Tests for build_action_url."""

    async def test_verify_url(self, test_settings):
        with patch("sendledger.services.action_tokens.get_settings", return_value=test_settings):
            url = build_action_url(VERIFY, "abc")
        assert url == "http://localhost:8000/auth/verify-email?token=abc"

    async def test_reset_url(self, test_settings):
        with patch("sendledger.services.action_tokens.get_settings", return_value=test_settings):
            url = build_action_url(RESET, "a+b/c")
        assert url == "http://localhost:8000/update-password?token=a%2Bb%2Fc"
