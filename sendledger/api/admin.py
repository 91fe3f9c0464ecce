from fastapi import APIRouter, HTTPException, Query, status
from pydantic import EmailStr, TypeAdapter, ValidationError

from sendledger.core.logging import get_logger
from sendledger.dependencies import AdminUser, LedgerStore
from sendledger.schemas.email import LedgerDebugResponse, LedgerRowOut, LedgerWindowOut
from sendledger.services.email_ledger import (
    EmailSendPurpose,
    UnknownEmailPurposeError,
    compute_email_send_window,
)

logger = get_logger(__name__)

router = APIRouter()

_email_adapter = TypeAdapter(EmailStr)


@router.get("/email-ledger", response_model=LedgerDebugResponse)
async def get_email_ledger_entry(
    admin: AdminUser,
    store: LedgerStore,
    purpose: str | None = Query(default=None),
    email: str | None = Query(default=None),
) -> LedgerDebugResponse:
    """
    Show the current cooldown window for a purpose and recipient.

    Returns the computed idempotency key and, if this window has been
    claimed, the matching ledger row. Admin only.
    """
    try:
        send_purpose = EmailSendPurpose(purpose)
        window = compute_email_send_window(send_purpose, _email_adapter.validate_python(email))
    except (ValueError, UnknownEmailPurposeError, ValidationError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid purpose or email",
        ) from e

    try:
        entry = await store.find_by_idempotency_key(window.idempotency_key)
    except Exception as e:
        logger.bind(admin_id=str(admin.id), error=str(e)).error("email_ledger_lookup_failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Ledger lookup failed",
        ) from e

    return LedgerDebugResponse(
        computed=LedgerWindowOut(
            purpose=send_purpose,
            normalized_email=window.normalized_email,
            cooldown_ms=window.cooldown_ms,
            cooldown_bucket_iso=window.cooldown_bucket_iso,
            idempotency_key=window.idempotency_key,
        ),
        ledger=(
            LedgerRowOut(
                id=str(entry.id),
                created_at=entry.created_at,
                status=entry.status,
                provider_message_id=entry.provider_message_id,
            )
            if entry
            else None
        ),
    )
