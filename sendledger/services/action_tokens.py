"""Single-use tokens for email verification and password-reset links."""

import uuid
from datetime import timedelta
from urllib.parse import urlencode

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from sendledger.config import get_settings
from sendledger.core.datetime_utils import is_expired, utc_now
from sendledger.core.security import generate_token, hash_token
from sendledger.models.action_token import ActionToken
from sendledger.services.email_ledger import EmailSendPurpose

TOKEN_TTL_BY_PURPOSE: dict[EmailSendPurpose, timedelta] = {
    EmailSendPurpose.VERIFY_EMAIL: timedelta(hours=24),
    EmailSendPurpose.PASSWORD_RESET: timedelta(hours=1),
}

ACTION_PATH_BY_PURPOSE: dict[EmailSendPurpose, str] = {
    EmailSendPurpose.VERIFY_EMAIL: "/auth/verify-email",
    EmailSendPurpose.PASSWORD_RESET: "/update-password",
}


class InvalidActionTokenError(Exception):
    """Token is unknown, used, expired, or for another purpose. Message is user-facing."""


async def issue_action_token(
    db: AsyncSession,
    purpose: EmailSendPurpose,
    email: str,
    user_id: uuid.UUID | None = None,
) -> str:
    """Store a hashed token and return the raw value for the emailed link."""
    token = generate_token()
    db.add(
        ActionToken(
            token_hash=hash_token(token),
            purpose=purpose.value,
            email=email,
            user_id=user_id,
            expires_at=utc_now() + TOKEN_TTL_BY_PURPOSE[purpose],
        )
    )
    await db.flush()
    return token


async def get_valid_action_token(
    db: AsyncSession,
    token: str,
    purpose: EmailSendPurpose,
) -> ActionToken:
    """Look up a token without consuming it."""
    result = await db.execute(
        select(ActionToken).where(ActionToken.token_hash == hash_token(token))
    )
    action_token = result.scalar_one_or_none()

    if not action_token or action_token.purpose != purpose.value:
        raise InvalidActionTokenError("Invalid or expired link")
    if action_token.used_at:
        raise InvalidActionTokenError("This link has already been used")
    if is_expired(action_token.expires_at):
        raise InvalidActionTokenError("This link has expired")

    return action_token


async def consume_action_token(
    db: AsyncSession,
    token: str,
    purpose: EmailSendPurpose,
) -> ActionToken:
    """Validate a token and mark it used."""
    action_token = await get_valid_action_token(db, token, purpose)
    action_token.used_at = utc_now()
    await db.flush()
    return action_token


def build_action_url(purpose: EmailSendPurpose, token: str) -> str:
    """Build the full link embedded in the email."""
    settings = get_settings()
    path = ACTION_PATH_BY_PURPOSE[purpose]
    return f"{settings.base_url.rstrip('/')}{path}?{urlencode({'token': token})}"


async def delete_stale_action_tokens(db: AsyncSession) -> int:
    """Delete expired or used tokens. Returns the number of rows removed."""
    result = await db.execute(
        delete(ActionToken).where(
            or_(ActionToken.expires_at < utc_now(), ActionToken.used_at.is_not(None))
        )
    )
    return result.rowcount or 0
