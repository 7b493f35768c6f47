"""
Write services.

LedgerService is the public entry point and owns transaction boundaries;
the other services run inside the session it hands them.
"""

from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.journal_service import JournalService
from ledger_kernel.services.ledger_service import LedgerService
from ledger_kernel.services.posting_service import PostingService

__all__ = [
    "AccountRegistry",
    "AuditorService",
    "JournalService",
    "LedgerService",
    "PostingService",
]
