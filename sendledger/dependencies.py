import uuid
from typing import Annotated

from fastapi import Cookie, Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from sendledger.config import AppConfig, Settings, get_config, get_settings
from sendledger.core.database import get_db
from sendledger.core.security import INTERNAL_EMAIL_HEADER, is_expired, verify_internal_email_key
from sendledger.models.user import Session, User
from sendledger.services.email_ledger import EmailSendLedgerStore, get_ledger_store
from sendledger.services.email_throttle import ThrottleStore, get_throttle_store

# Type aliases for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Config = Annotated[AppConfig, Depends(get_config)]
LedgerStore = Annotated[EmailSendLedgerStore, Depends(get_ledger_store)]
Throttle = Annotated[ThrottleStore, Depends(get_throttle_store)]


async def get_current_user_optional(
    db: DBSession,
    session_id: str | None = Cookie(default=None, alias="session_id"),
) -> User | None:
    """Get the current user if authenticated, None otherwise."""
    if not session_id:
        return None

    try:
        session_uuid = uuid.UUID(session_id)
    except ValueError:
        return None

    result = await db.execute(
        select(Session).where(Session.id == session_uuid).options(joinedload(Session.user))
    )
    session = result.scalar_one_or_none()

    if not session:
        return None

    if is_expired(session.expires_at):
        # Clean up expired session
        await db.delete(session)
        return None

    user: User = session.user
    return user


async def get_current_user(
    user: User | None = Depends(get_current_user_optional),
) -> User:
    """Get the current user, raise 401 if not authenticated."""
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return user


async def require_admin(
    user: User = Depends(get_current_user),
) -> User:
    """Get the current user, raise 403 unless they are an admin."""
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )
    return user


async def require_internal_email_request(
    settings: AppSettings,
    internal_key: str | None = Header(default=None, alias=INTERNAL_EMAIL_HEADER),
) -> None:
    """Allow only server-to-server callers that present the internal email key."""
    if not verify_internal_email_key(settings, internal_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )


# Type alias for admin-only endpoints
AdminUser = Annotated[User, Depends(require_admin)]
