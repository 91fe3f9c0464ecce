from sendledger.schemas.auth import PasswordResetValidateRequest, PasswordResetValidateResponse
from sendledger.schemas.email import (
    GENERIC_EMAIL_RESPONSE,
    LedgerDebugResponse,
    PublicEmailRequest,
    PublicEmailResponse,
    WelcomeEmailRequest,
)

__all__ = [
    "GENERIC_EMAIL_RESPONSE",
    "LedgerDebugResponse",
    "PasswordResetValidateRequest",
    "PasswordResetValidateResponse",
    "PublicEmailRequest",
    "PublicEmailResponse",
    "WelcomeEmailRequest",
]
