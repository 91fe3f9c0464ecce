from sendledger.models.action_token import ActionToken
from sendledger.models.base import Base
from sendledger.models.email_send_ledger import EmailSendLedgerEntry
from sendledger.models.user import Session, User, UserRole

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Session",
    "ActionToken",
    "EmailSendLedgerEntry",
]
