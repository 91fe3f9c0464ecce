from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from sendledger.services.email_ledger import EmailSendPurpose

# Same body for sent, throttled, deduplicated, unknown-account and failed sends.
# Changing it per outcome would let callers probe which addresses have accounts.
GENERIC_EMAIL_MESSAGE = "If an account exists for that address, you'll receive an email shortly."


class PublicEmailRequest(BaseModel):
    """Request body for public verification / password reset sends."""

    email: EmailStr


class PublicEmailResponse(BaseModel):
    """Response for public email routes. Identical for every outcome."""

    ok: bool = True
    message: str = GENERIC_EMAIL_MESSAGE


GENERIC_EMAIL_RESPONSE = PublicEmailResponse()


class WelcomeEmailRequest(BaseModel):
    """Request body for the internal welcome email route."""

    email: EmailStr
    first_name: str | None = Field(default=None, max_length=100)


class OkResponse(BaseModel):
    ok: bool = True


class LedgerWindowOut(BaseModel):
    """Computed cooldown window for a purpose and recipient."""

    purpose: EmailSendPurpose
    normalized_email: str
    cooldown_ms: int
    cooldown_bucket_iso: str
    idempotency_key: str


class LedgerRowOut(BaseModel):
    id: str
    created_at: datetime
    status: str
    provider_message_id: str | None = None


class LedgerDebugResponse(BaseModel):
    """Response for the admin ledger debug endpoint."""

    success: bool = True
    computed: LedgerWindowOut
    ledger: LedgerRowOut | None = None
