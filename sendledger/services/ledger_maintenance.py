"""Retention for the email send ledger and action tokens."""

from typing import Any

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from sendledger.config import get_config
from sendledger.core.datetime_utils import get_cutoff
from sendledger.core.logging import get_logger
from sendledger.models.email_send_ledger import EmailSendLedgerEntry
from sendledger.services.action_tokens import delete_stale_action_tokens

logger = get_logger(__name__)


async def prune_email_ledger(db: AsyncSession, retention_days: int) -> int:
    """
    Delete ledger rows created more than retention_days ago.

    Old rows belong to windows that closed long ago, so removing them never
    reopens a live cooldown. retention_days <= 0 disables pruning.
    """
    if retention_days <= 0:
        return 0

    result = await db.execute(
        delete(EmailSendLedgerEntry).where(
            EmailSendLedgerEntry.created_at < get_cutoff(days=retention_days)
        )
    )
    return result.rowcount or 0


async def run_retention(db: AsyncSession, retention_days: int | None = None) -> dict[str, Any]:
    """Prune the ledger and stale action tokens in one transaction."""
    if retention_days is None:
        retention_days = get_config().ledger.retention_days

    ledger_deleted = await prune_email_ledger(db, retention_days)
    tokens_deleted = await delete_stale_action_tokens(db)
    await db.commit()

    stats = {
        "retention_days": retention_days,
        "ledger_rows_deleted": ledger_deleted,
        "action_tokens_deleted": tokens_deleted,
    }
    logger.bind(**stats).info("email_retention_completed")
    return stats
