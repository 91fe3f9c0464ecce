"""Append-only ledger of claimed email send slots."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from sendledger.models.base import Base


class EmailSendLedgerEntry(Base):
    """One claimed send slot per (purpose, recipient, cooldown bucket).

    The unique index on idempotency_key is what makes claims atomic;
    application code never checks for an existing row first.
    """

    __tablename__ = "email_send_ledger"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    purpose: Mapped[str] = mapped_column(String(32), index=True)
    recipient_email: Mapped[str] = mapped_column(String(255), index=True)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, default=None)
    idempotency_key: Mapped[str] = mapped_column(String(400), unique=True)
    cooldown_bucket: Mapped[datetime] = mapped_column()
    status: Mapped[str] = mapped_column(String(20), default="claimed")
    provider_message_id: Mapped[str | None] = mapped_column(String(255), default=None)
    meta: Mapped[dict[str, Any] | None] = mapped_column(default=None)
    created_at: Mapped[datetime] = mapped_column(default=func.now(), index=True)

    def __repr__(self) -> str:
        return f"<EmailSendLedgerEntry {self.idempotency_key} {self.status}>"
