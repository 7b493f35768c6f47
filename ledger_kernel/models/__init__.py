"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import Account
from ledger_kernel.models.audit_event import AuditAction, AuditEvent
from ledger_kernel.models.journal import JournalEntry, JournalLine
from ledger_kernel.models.movement import LedgerMovement, MovementKind

__all__ = [
    "Account",
    "AuditAction",
    "AuditEvent",
    "JournalEntry",
    "JournalLine",
    "LedgerMovement",
    "MovementKind",
]
