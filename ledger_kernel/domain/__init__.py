"""
Pure domain layer.

Classification, the entry state machine, DTOs and the validator.  Nothing
here touches the ORM, the database, or the wall clock (SystemClock aside).
"""

from ledger_kernel.domain.classification import (
    ALLOWED_SUBTYPES,
    AccountSubtype,
    AccountType,
    NormalBalance,
    check_subtype,
    normal_balance_for,
    signed_delta,
)
from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.dtos import (
    UNSET,
    AccountFilter,
    AccountInfo,
    AccountPatch,
    AccountSpec,
    AuditRecord,
    EntryFilter,
    EntryHeader,
    EntryPatch,
    JournalEntryRecord,
    JournalLineRecord,
    LineSpec,
    PostingResult,
    ValidatedEntry,
    ValidatedLine,
    VoidResult,
)
from ledger_kernel.domain.entry_state import (
    VALID_TRANSITIONS,
    EntryStatus,
    can_transition,
    is_editable,
    transition,
)
from ledger_kernel.domain.validator import JournalEntryValidator

__all__ = [
    "ALLOWED_SUBTYPES",
    "AccountSubtype",
    "AccountType",
    "NormalBalance",
    "check_subtype",
    "normal_balance_for",
    "signed_delta",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "UNSET",
    "AccountFilter",
    "AccountInfo",
    "AccountPatch",
    "AccountSpec",
    "AuditRecord",
    "EntryFilter",
    "EntryHeader",
    "EntryPatch",
    "JournalEntryRecord",
    "JournalLineRecord",
    "LineSpec",
    "PostingResult",
    "ValidatedEntry",
    "ValidatedLine",
    "VoidResult",
    "VALID_TRANSITIONS",
    "EntryStatus",
    "can_transition",
    "is_editable",
    "transition",
    "JournalEntryValidator",
]
