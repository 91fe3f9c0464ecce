from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import RedirectResponse
from sqlalchemy import func, select

from sendledger.core.datetime_utils import utc_now
from sendledger.core.logging import get_logger
from sendledger.dependencies import AppSettings, DBSession
from sendledger.models.user import User
from sendledger.schemas.auth import PasswordResetValidateRequest, PasswordResetValidateResponse
from sendledger.services.action_tokens import (
    InvalidActionTokenError,
    consume_action_token,
    get_valid_action_token,
)
from sendledger.services.email_ledger import EmailSendPurpose, normalize_email_for_ledger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/verify-email")
async def verify_email(
    db: DBSession,
    settings: AppSettings,
    token: str = Query(..., min_length=1),
) -> RedirectResponse:
    """
    Consume an email verification link.

    Marks the account verified and redirects to the login page.
    """
    try:
        action_token = await consume_action_token(db, token, EmailSendPurpose.VERIFY_EMAIL)
    except InvalidActionTokenError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    if action_token.user_id:
        user = await db.get(User, action_token.user_id)
    else:
        result = await db.execute(
            select(User).where(
                func.lower(User.email) == normalize_email_for_ledger(action_token.email)
            )
        )
        user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired link",
        )

    if user.email_verified_at is None:
        user.email_verified_at = utc_now()
        logger.bind(user_id=str(user.id)).info("email_verified")

    return RedirectResponse(
        url=f"{settings.base_url.rstrip('/')}/login?verified=1",
        status_code=status.HTTP_302_FOUND,
    )


@router.post("/password-reset/validate", response_model=PasswordResetValidateResponse)
async def validate_password_reset_token(
    body: PasswordResetValidateRequest,
    db: DBSession,
) -> PasswordResetValidateResponse:
    """Check a reset token without consuming it."""
    try:
        await get_valid_action_token(db, body.token, EmailSendPurpose.PASSWORD_RESET)
    except InvalidActionTokenError:
        return PasswordResetValidateResponse(valid=False)
    return PasswordResetValidateResponse(valid=True)
