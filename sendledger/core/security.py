import hashlib
import hmac
import os
import re
import secrets

from sendledger.config import Settings
from sendledger.core.datetime_utils import is_expired

INTERNAL_EMAIL_HEADER = "x-internal-email-key"
DEV_INTERNAL_EMAIL_KEY = "dev-internal-email-key"

# Set by hosting platforms on preview/production deploys
HOSTED_PLATFORM_ENV_VARS = ("VERCEL", "NETLIFY", "RENDER", "FLY_APP_NAME", "RAILWAY_ENVIRONMENT")

_LOCAL_URL_RE = re.compile(r"localhost|127\.0\.0\.1", re.IGNORECASE)


def generate_token() -> str:
    """Generate a cryptographically secure random token."""
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    """Hash a token for storage using SHA-256."""
    return hashlib.sha256(token.encode()).hexdigest()


# Re-export is_expired from datetime_utils for callers that only import security
__all__ = ["is_expired"]


def get_internal_email_key(settings: Settings) -> str | None:
    """
    Resolve the shared key for internal-only email routes.

    An explicitly configured key always wins. Without one, production gets
    no key (every internal call is refused), and so does any deploy that
    looks remote; only a plain local setup falls back to a guessable default.
    """
    if settings.internal_email_api_key:
        return settings.internal_email_api_key

    if settings.is_production:
        return None

    looks_remote = bool(settings.base_url) and not _LOCAL_URL_RE.search(settings.base_url)
    is_hosted_preview = any(os.environ.get(name) for name in HOSTED_PLATFORM_ENV_VARS)
    if looks_remote or is_hosted_preview:
        return None

    return DEV_INTERNAL_EMAIL_KEY


def verify_internal_email_key(settings: Settings, provided: str | None) -> bool:
    """Constant-time check of the internal email header value."""
    expected = get_internal_email_key(settings)
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())
