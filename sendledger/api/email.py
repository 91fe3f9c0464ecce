from collections.abc import Callable

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sendledger.core.logging import get_logger
from sendledger.core.rate_limit import PUBLIC_EMAIL_RATE_LIMIT, limiter
from sendledger.dependencies import (
    AppSettings,
    Config,
    DBSession,
    LedgerStore,
    Throttle,
    require_internal_email_request,
)
from sendledger.models.user import User
from sendledger.schemas.email import (
    GENERIC_EMAIL_RESPONSE,
    OkResponse,
    PublicEmailRequest,
    PublicEmailResponse,
    WelcomeEmailRequest,
)
from sendledger.services.action_tokens import build_action_url, issue_action_token
from sendledger.services.email_ledger import (
    ClaimReason,
    EmailSendLedgerStore,
    EmailSendPurpose,
    LedgerStatus,
    claim_email_send,
    normalize_email_for_ledger,
)
from sendledger.services.email_service import (
    EmailDeliveryError,
    RenderedEmail,
    render_password_reset_email,
    render_verification_email,
    render_welcome_email,
    send_email,
)
from sendledger.services.email_throttle import get_request_ip, should_throttle_public_email

logger = get_logger(__name__)

router = APIRouter()


async def _rollback_quietly(db: AsyncSession) -> None:
    try:
        await db.rollback()
    except Exception as e:
        logger.bind(error=str(e)).warning("email_route_rollback_failed")


async def _find_user_by_email(db: AsyncSession, email: str) -> User | None:
    """Look up the account for an address. A lookup failure reads as no account."""
    try:
        result = await db.execute(
            select(User).where(func.lower(User.email) == normalize_email_for_ledger(email))
        )
        return result.scalar_one_or_none()
    except Exception as e:
        logger.bind(error=str(e), error_type=type(e).__name__).error("email_user_lookup_failed")
        await _rollback_quietly(db)
        return None


async def _record_outcome(store: EmailSendLedgerStore, ledger_id, **outcome) -> None:
    """Best-effort status update on the claimed ledger row."""
    try:
        await store.record_outcome(ledger_id, **outcome)
    except Exception as e:
        logger.bind(ledger_id=str(ledger_id), error=str(e)).warning(
            "email_ledger_outcome_not_recorded"
        )


async def _send_ledger_gated_email(
    *,
    db: AsyncSession,
    store: EmailSendLedgerStore,
    purpose: EmailSendPurpose,
    user: User,
    render: Callable[[str, str], RenderedEmail],
) -> None:
    """Claim the send slot, then issue a link token and send. Never raises."""
    claim = await claim_email_send(store, purpose, user.email, user_id=user.id)
    if not claim.did_claim:
        if claim.reason == ClaimReason.CLAIM_FAILED:
            logger.bind(
                purpose=purpose.value,
                cooldown_bucket=claim.cooldown_bucket_iso,
            ).warning("email_send_skipped_claim_failed")
        return

    try:
        token = await issue_action_token(db, purpose, user.email, user_id=user.id)
        # Token must be durable before the link leaves the building
        await db.commit()

        rendered = render(user.display_name, build_action_url(purpose, token))
        result = await send_email(to=user.email, subject=rendered.subject, html=rendered.html)
    except Exception as e:
        logger.bind(
            purpose=purpose.value,
            ledger_id=str(claim.ledger_id),
            error=str(e),
            error_type=type(e).__name__,
        ).error("ledger_email_send_failed")
        if not isinstance(e, EmailDeliveryError):
            await _rollback_quietly(db)
        await _record_outcome(
            store, claim.ledger_id, status=LedgerStatus.FAILED.value, meta={"error": str(e)}
        )
        return

    await _record_outcome(
        store,
        claim.ledger_id,
        status=LedgerStatus.SENT.value,
        provider_message_id=result.message_id,
    )


def _is_throttled(
    request: Request, throttle: Throttle, config: Config, route: str, email: str
) -> bool:
    ip = get_request_ip(request)
    throttled = should_throttle_public_email(
        throttle,
        route=route,
        email=email,
        ip=ip,
        max_per_window=config.throttle.max_per_window,
    )
    if throttled:
        logger.bind(route=route, ip=ip).info("email_send_throttled")
    return throttled


@router.post("/send-verification", response_model=PublicEmailResponse)
@limiter.limit(PUBLIC_EMAIL_RATE_LIMIT)
async def send_verification_email(
    request: Request,
    body: PublicEmailRequest,
    db: DBSession,
    store: LedgerStore,
    throttle: Throttle,
    config: Config,
) -> PublicEmailResponse:
    """
    Send (or re-send) the email verification link.

    Always returns the same generic response, whether the email was sent,
    throttled, deduplicated, or the address has no account.
    """
    if _is_throttled(request, throttle, config, "send-verification", body.email):
        return GENERIC_EMAIL_RESPONSE

    user = await _find_user_by_email(db, body.email)
    if not user or user.email_verified_at is not None:
        return GENERIC_EMAIL_RESPONSE

    await _send_ledger_gated_email(
        db=db,
        store=store,
        purpose=EmailSendPurpose.VERIFY_EMAIL,
        user=user,
        render=render_verification_email,
    )
    return GENERIC_EMAIL_RESPONSE


@router.post("/send-password-reset", response_model=PublicEmailResponse)
@limiter.limit(PUBLIC_EMAIL_RATE_LIMIT)
async def send_password_reset_email(
    request: Request,
    body: PublicEmailRequest,
    db: DBSession,
    store: LedgerStore,
    throttle: Throttle,
    config: Config,
) -> PublicEmailResponse:
    """
    Send a password reset link.

    Always returns the same generic response so the route cannot be used
    to discover which addresses have accounts.
    """
    if _is_throttled(request, throttle, config, "send-password-reset", body.email):
        return GENERIC_EMAIL_RESPONSE

    user = await _find_user_by_email(db, body.email)
    if not user:
        return GENERIC_EMAIL_RESPONSE

    await _send_ledger_gated_email(
        db=db,
        store=store,
        purpose=EmailSendPurpose.PASSWORD_RESET,
        user=user,
        render=render_password_reset_email,
    )
    return GENERIC_EMAIL_RESPONSE


@router.post(
    "/send-welcome",
    response_model=OkResponse,
    dependencies=[Depends(require_internal_email_request)],
)
async def send_welcome_email(
    body: WelcomeEmailRequest,
    settings: AppSettings,
) -> OkResponse:
    """Send the welcome email. Internal callers only; not ledger-gated."""
    name = body.first_name or body.email.split("@")[0]
    rendered = render_welcome_email(name, f"{settings.base_url.rstrip('/')}/login")

    try:
        await send_email(to=body.email, subject=rendered.subject, html=rendered.html)
    except EmailDeliveryError as e:
        logger.bind(error=str(e)).error("welcome_email_failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to send welcome email",
        ) from e

    return OkResponse()
