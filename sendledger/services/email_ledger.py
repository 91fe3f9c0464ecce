"""
Email send idempotency ledger.

Guarantees at most one accepted send per (purpose, recipient, cooldown
window) across any number of concurrent requests and processes. There is
no in-process locking and no read-before-write: the claim is a single
INSERT, and the store's unique index on idempotency_key decides the
winner.

Usage:
    window = compute_email_send_window(EmailSendPurpose.VERIFY_EMAIL, "User@Example.com")
    result = await claim_email_send(store, EmailSendPurpose.VERIFY_EMAIL, email, user_id=user.id)
    if result.did_claim:
        ...  # send now, do not claim again
"""

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sendledger.core.database import AsyncSessionLocal
from sendledger.core.datetime_utils import epoch_ms_now, from_epoch_ms, to_iso_millis
from sendledger.core.logging import get_logger
from sendledger.models.email_send_ledger import EmailSendLedgerEntry

logger = get_logger(__name__)


class EmailSendPurpose(str, enum.Enum):
    """Reason for a ledger-gated send."""

    VERIFY_EMAIL = "verify_email"
    PASSWORD_RESET = "password_reset"


class ClaimReason(str, enum.Enum):
    """Why a claim did not grant the send."""

    ALREADY_CLAIMED = "already-claimed"
    CLAIM_FAILED = "claim-failed"


class LedgerStatus(str, enum.Enum):
    CLAIMED = "claimed"
    SENT = "sent"
    FAILED = "failed"


COOLDOWN_MS_BY_PURPOSE: dict[EmailSendPurpose, int] = {
    EmailSendPurpose.VERIFY_EMAIL: 60_000,  # 60s
    EmailSendPurpose.PASSWORD_RESET: 5 * 60_000,  # 5m, stronger abuse protection
}

PG_UNIQUE_VIOLATION = "23505"
SQLITE_UNIQUE_VIOLATION = "SQLITE_CONSTRAINT_UNIQUE"


class UnknownEmailPurposeError(KeyError):
    """Raised for a purpose with no cooldown entry. Programming error, never caught."""


class LedgerConflictError(Exception):
    """Raised by a ledger store when the idempotency key is already taken."""


@dataclass(frozen=True, slots=True)
class EmailSendWindow:
    normalized_email: str
    cooldown_ms: int
    cooldown_bucket: datetime
    cooldown_bucket_iso: str
    idempotency_key: str


@dataclass(frozen=True, slots=True)
class ClaimResult:
    """Outcome of a claim attempt. Callers branch on did_claim."""

    did_claim: bool
    idempotency_key: str
    cooldown_bucket: datetime
    cooldown_bucket_iso: str
    ledger_id: uuid.UUID | None = None
    reason: ClaimReason | None = None


def normalize_email_for_ledger(email: str) -> str:
    return email.strip().lower()


def compute_cooldown_bucket_ms(now_ms: int, cooldown_ms: int) -> int:
    """Floor now_ms to the start of its cooldown window."""
    return (now_ms // cooldown_ms) * cooldown_ms


def build_email_send_idempotency_key(
    purpose: EmailSendPurpose | str,
    normalized_email: str,
    cooldown_bucket_iso: str,
) -> str:
    return f"{EmailSendPurpose(purpose).value}:{normalized_email}:{cooldown_bucket_iso}"


def compute_email_send_window(
    purpose: EmailSendPurpose | str,
    recipient_email: str,
    now_ms: int | None = None,
) -> EmailSendWindow:
    """
    Compute the normalized email, cooldown bucket and idempotency key.

    Pure and deterministic for a given (purpose, recipient_email, now_ms):
    two callers racing for the same recipient in the same window always
    build the identical key.

    Raises:
        UnknownEmailPurposeError: purpose has no cooldown entry
    """
    try:
        purpose = EmailSendPurpose(purpose)
        cooldown_ms = COOLDOWN_MS_BY_PURPOSE[purpose]
    except (ValueError, KeyError) as e:
        raise UnknownEmailPurposeError(purpose) from e

    normalized_email = normalize_email_for_ledger(recipient_email)
    if now_ms is None:
        now_ms = epoch_ms_now()

    cooldown_bucket = from_epoch_ms(compute_cooldown_bucket_ms(now_ms, cooldown_ms))
    cooldown_bucket_iso = to_iso_millis(cooldown_bucket)

    return EmailSendWindow(
        normalized_email=normalized_email,
        cooldown_ms=cooldown_ms,
        cooldown_bucket=cooldown_bucket,
        cooldown_bucket_iso=cooldown_bucket_iso,
        idempotency_key=build_email_send_idempotency_key(
            purpose, normalized_email, cooldown_bucket_iso
        ),
    )


# =============================================================================
# Ledger stores
# =============================================================================


class EmailSendLedgerStore(Protocol):
    """Persistent store with an atomic uniqueness constraint on idempotency_key."""

    async def insert_claim(
        self,
        *,
        purpose: str,
        recipient_email: str,
        user_id: uuid.UUID | None,
        idempotency_key: str,
        cooldown_bucket: datetime,
        status: str,
    ) -> uuid.UUID:
        """Insert a row; raise LedgerConflictError if the key exists."""
        ...

    async def find_by_idempotency_key(self, idempotency_key: str) -> EmailSendLedgerEntry | None:
        ...

    async def record_outcome(
        self,
        ledger_id: uuid.UUID,
        *,
        status: str,
        provider_message_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        ...


def is_unique_violation(exc: IntegrityError) -> bool:
    """Check the driver's structured error for a unique-constraint violation.

    asyncpg (through SQLAlchemy's adapter) exposes the SQLSTATE on the
    wrapped error and keeps the native UniqueViolationError as its cause;
    sqlite3 exposes the extended result code name.
    """
    orig = exc.orig
    if getattr(orig, "sqlstate", None) == PG_UNIQUE_VIOLATION:
        return True
    if getattr(orig, "pgcode", None) == PG_UNIQUE_VIOLATION:
        return True
    if getattr(getattr(orig, "__cause__", None), "sqlstate", None) == PG_UNIQUE_VIOLATION:
        return True
    return getattr(orig, "sqlite_errorname", None) == SQLITE_UNIQUE_VIOLATION


class SqlAlchemyLedgerStore:
    """Ledger store over the email_send_ledger table.

    Every operation runs in its own short session and commits at once,
    so a conflict rollback never touches the caller's request transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def insert_claim(
        self,
        *,
        purpose: str,
        recipient_email: str,
        user_id: uuid.UUID | None,
        idempotency_key: str,
        cooldown_bucket: datetime,
        status: str,
    ) -> uuid.UUID:
        ledger_id = uuid.uuid4()
        entry = EmailSendLedgerEntry(
            id=ledger_id,
            purpose=purpose,
            recipient_email=recipient_email,
            user_id=user_id,
            idempotency_key=idempotency_key,
            cooldown_bucket=cooldown_bucket,
            status=status,
        )
        async with self._session_factory() as session:
            session.add(entry)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                if is_unique_violation(e):
                    raise LedgerConflictError(idempotency_key) from e
                raise
        return ledger_id

    async def find_by_idempotency_key(self, idempotency_key: str) -> EmailSendLedgerEntry | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(EmailSendLedgerEntry).where(
                    EmailSendLedgerEntry.idempotency_key == idempotency_key
                )
            )
            return result.scalar_one_or_none()

    async def record_outcome(
        self,
        ledger_id: uuid.UUID,
        *,
        status: str,
        provider_message_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        values: dict[str, Any] = {"status": status}
        if provider_message_id is not None:
            values["provider_message_id"] = provider_message_id
        if meta is not None:
            values["meta"] = meta

        async with self._session_factory() as session:
            await session.execute(
                update(EmailSendLedgerEntry)
                .where(EmailSendLedgerEntry.id == ledger_id)
                .values(**values)
            )
            await session.commit()


_ledger_store: SqlAlchemyLedgerStore | None = None


def get_ledger_store() -> EmailSendLedgerStore:
    """Dependency returning the ledger store bound to the application database."""
    global _ledger_store
    if _ledger_store is None:
        _ledger_store = SqlAlchemyLedgerStore(AsyncSessionLocal)
    return _ledger_store


# =============================================================================
# Claim
# =============================================================================


async def claim_email_send(
    store: EmailSendLedgerStore,
    purpose: EmailSendPurpose | str,
    recipient_email: str,
    user_id: uuid.UUID | None = None,
    now_ms: int | None = None,
) -> ClaimResult:
    """
    Atomically claim the send slot for a recipient in the current cooldown window.

    Never raises for runtime failures; every outcome is a ClaimResult:
    - did_claim=True: caller may send, and should not claim again
    - ALREADY_CLAIMED: another request owns this window; do not send, not an error
    - CLAIM_FAILED: store failure; do not send, worth a warning
    """
    window = compute_email_send_window(purpose, recipient_email, now_ms=now_ms)
    purpose = EmailSendPurpose(purpose)

    try:
        ledger_id = await store.insert_claim(
            purpose=purpose.value,
            recipient_email=window.normalized_email,
            user_id=user_id,
            idempotency_key=window.idempotency_key,
            cooldown_bucket=window.cooldown_bucket,
            status=LedgerStatus.CLAIMED.value,
        )
    except LedgerConflictError:
        logger.bind(
            purpose=purpose.value,
            cooldown_bucket=window.cooldown_bucket_iso,
        ).debug("email_claim_already_claimed")
        return ClaimResult(
            did_claim=False,
            idempotency_key=window.idempotency_key,
            cooldown_bucket=window.cooldown_bucket,
            cooldown_bucket_iso=window.cooldown_bucket_iso,
            reason=ClaimReason.ALREADY_CLAIMED,
        )
    except Exception as e:
        logger.bind(
            purpose=purpose.value,
            cooldown_bucket=window.cooldown_bucket_iso,
            error=str(e),
            error_type=type(e).__name__,
        ).warning("email_claim_failed")
        return ClaimResult(
            did_claim=False,
            idempotency_key=window.idempotency_key,
            cooldown_bucket=window.cooldown_bucket,
            cooldown_bucket_iso=window.cooldown_bucket_iso,
            reason=ClaimReason.CLAIM_FAILED,
        )

    return ClaimResult(
        did_claim=True,
        idempotency_key=window.idempotency_key,
        cooldown_bucket=window.cooldown_bucket,
        cooldown_bucket_iso=window.cooldown_bucket_iso,
        ledger_id=ledger_id,
    )
