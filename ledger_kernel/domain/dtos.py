"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that flow between callers, the
    validator, and the services: account specs and patches, entry headers
    and line specs (input), validated entries (validator output), and the
    read-side records returned to callers (AccountInfo, JournalEntryRecord,
    PostingResult, VoidResult, AuditRecord).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters and are only
    invoked from the service and selector layers.

Invariants enforced:
    - Every monetary field is a two-place Decimal.  Amount coercion happens
      in __post_init__, so a float never gets past construction.
    - Line amounts are non-negative; the side is carried by which column is
      nonzero.

Failure modes:
    - InvalidAmountError on float, negative or over-precise amounts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from ledger_kernel.db.types import ZERO, to_amount
from ledger_kernel.domain.classification import (
    AccountSubtype,
    AccountType,
    NormalBalance,
)
from ledger_kernel.domain.entry_state import EntryStatus

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account as AccountModel
    from ledger_kernel.models.audit_event import AuditEvent as AuditEventModel
    from ledger_kernel.models.journal import JournalEntry as JournalEntryModel

# Width of journal_entries.entry_number
ENTRY_NUMBER_MAX_LENGTH = 50


class _Unset:
    """Marker for patch fields the caller did not supply."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


# ---------------------------------------------------------------------------
# Chart of accounts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountSpec:
    """
    Input for creating an account.

    Contract:
        ``opening_balance`` is expressed in the account's normal-balance sense
        (a positive opening balance on a liability is a credit balance).  It
        is recorded as an opening-balance movement, never as a bare number.
    """

    account_number: str
    account_name: str
    account_type: AccountType
    account_subtype: AccountSubtype | None = None
    description: str | None = None
    parent_account_id: UUID | None = None
    is_active: bool = True
    opening_balance: Decimal = ZERO
    opening_balance_date: date | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "opening_balance",
            to_amount(self.opening_balance, allow_negative=True),
        )


@dataclass(frozen=True)
class AccountPatch:
    """
    Partial update for an account.  Fields left as UNSET are not touched;
    ``parent_account_id=None`` detaches the account from its parent.
    """

    account_name: Any = UNSET
    account_type: Any = UNSET
    account_subtype: Any = UNSET
    description: Any = UNSET
    is_active: Any = UNSET
    parent_account_id: Any = UNSET

    def supplied(self) -> dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in self.__dataclass_fields__
            if getattr(self, name) is not UNSET
        }


@dataclass(frozen=True)
class AccountFilter:
    account_type: AccountType | None = None
    account_subtype: AccountSubtype | None = None
    active_only: bool = False
    parent_account_id: UUID | None = None


@dataclass(frozen=True)
class AccountInfo:
    """
    Immutable snapshot of an account.

    Used by the validator and returned to callers; domain logic never sees
    the ORM Account.
    """

    id: UUID
    account_number: str
    account_name: str
    account_type: AccountType
    account_subtype: AccountSubtype | None
    normal_balance: NormalBalance
    balance: Decimal
    is_active: bool
    parent_account_id: UUID | None = None
    description: str | None = None

    @classmethod
    def from_model(cls, model: AccountModel) -> AccountInfo:
        return cls(
            id=model.id,
            account_number=model.account_number,
            account_name=model.account_name,
            account_type=AccountType(model.account_type),
            account_subtype=(
                AccountSubtype(model.account_subtype) if model.account_subtype else None
            ),
            normal_balance=NormalBalance(model.normal_balance),
            balance=model.balance,
            is_active=model.is_active,
            parent_account_id=model.parent_account_id,
            description=model.description,
        )


# ---------------------------------------------------------------------------
# Journal entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EntryHeader:
    entry_number: str
    entry_date: date
    description: str = ""
    property_id: str | None = None


@dataclass(frozen=True)
class EntryPatch:
    """Partial update for a draft header.  UNSET fields are left alone."""

    entry_number: Any = UNSET
    entry_date: Any = UNSET
    description: Any = UNSET
    property_id: Any = UNSET

    def supplied(self) -> dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in self.__dataclass_fields__
            if getattr(self, name) is not UNSET
        }


@dataclass(frozen=True)
class LineSpec:
    """
    Specification for one journal line.

    Contract:
        Exactly one of debit_amount / credit_amount should be nonzero; the
        validator, not the constructor, enforces that so the caller gets an
        UnbalancedLineError naming the line.

    Guarantees:
        - Both amounts are non-negative two-place Decimals.
    """

    account_id: UUID
    debit_amount: Decimal = ZERO
    credit_amount: Decimal = ZERO
    description: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "debit_amount", to_amount(self.debit_amount))
        object.__setattr__(self, "credit_amount", to_amount(self.credit_amount))

    @classmethod
    def debit(cls, account_id: UUID, amount: Decimal | str, description: str | None = None) -> LineSpec:
        return cls(account_id=account_id, debit_amount=amount, description=description)

    @classmethod
    def credit(cls, account_id: UUID, amount: Decimal | str, description: str | None = None) -> LineSpec:
        return cls(account_id=account_id, credit_amount=amount, description=description)


@dataclass(frozen=True)
class ValidatedLine:
    line_number: int
    account_id: UUID
    account_type: AccountType
    debit_amount: Decimal
    credit_amount: Decimal
    description: str | None = None


@dataclass(frozen=True)
class ValidatedEntry:
    """
    Validator output: the normalized entry with computed totals.

    Guarantees:
        - total_debit == total_credit (exact comparison).
        - lines is non-empty and numbered from 1 in submission order.
    """

    header: EntryHeader
    lines: tuple[ValidatedLine, ...]
    total_debit: Decimal
    total_credit: Decimal

    @property
    def account_ids(self) -> frozenset[UUID]:
        return frozenset(line.account_id for line in self.lines)


@dataclass(frozen=True)
class EntryFilter:
    status: EntryStatus | None = None
    start_date: date | None = None
    end_date: date | None = None
    property_id: str | None = None
    limit: int | None = None


@dataclass(frozen=True)
class JournalLineRecord:
    id: UUID
    line_number: int
    account_id: UUID
    debit_amount: Decimal
    credit_amount: Decimal
    description: str | None


@dataclass(frozen=True)
class JournalEntryRecord:
    """
    Read-side snapshot of a journal entry and its ordered lines.

    Non-goals:
        - Does NOT enforce immutability (the ORM listeners do that).
    """

    id: UUID
    entry_number: str
    entry_date: date
    description: str
    property_id: str | None
    status: EntryStatus
    total_debit: Decimal
    total_credit: Decimal
    lines: tuple[JournalLineRecord, ...]
    created_by_id: str
    created_at: datetime | None = None
    posted_at: datetime | None = None
    posted_by_id: str | None = None
    voided_at: datetime | None = None
    voided_by_id: str | None = None
    void_reason: str | None = None
    reversal_of_id: UUID | None = None
    reversed_by_id: UUID | None = None

    @classmethod
    def from_model(cls, model: JournalEntryModel) -> JournalEntryRecord:
        lines = tuple(
            JournalLineRecord(
                id=line.id,
                line_number=line.line_number,
                account_id=line.account_id,
                debit_amount=line.debit_amount,
                credit_amount=line.credit_amount,
                description=line.description,
            )
            for line in sorted(model.lines, key=lambda x: x.line_number)
        )
        return cls(
            id=model.id,
            entry_number=model.entry_number,
            entry_date=model.entry_date,
            description=model.description,
            property_id=model.property_id,
            status=EntryStatus(model.status),
            total_debit=model.total_debit,
            total_credit=model.total_credit,
            lines=lines,
            created_by_id=model.created_by_id,
            created_at=model.created_at,
            posted_at=model.posted_at,
            posted_by_id=model.posted_by_id,
            voided_at=model.voided_at,
            voided_by_id=model.voided_by_id,
            void_reason=model.void_reason,
            reversal_of_id=model.reversal_of_id,
            reversed_by_id=model.reversed_by_id,
        )


@dataclass(frozen=True)
class PostingResult:
    """
    Outcome of post().

    ``already_posted`` is True when the entry was posted by an earlier call;
    in that case no balance was touched and ``balance_deltas`` is empty.
    """

    entry: JournalEntryRecord
    already_posted: bool = False
    balance_deltas: dict[UUID, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class VoidResult:
    original: JournalEntryRecord
    reversal: JournalEntryRecord


@dataclass(frozen=True)
class AuditRecord:
    id: UUID
    entity_type: str
    entity_id: UUID
    action: str
    actor_id: str
    occurred_at: datetime
    payload: dict[str, Any]

    @classmethod
    def from_model(cls, model: AuditEventModel) -> AuditRecord:
        return cls(
            id=model.id,
            entity_type=model.entity_type,
            entity_id=model.entity_id,
            action=model.action,
            actor_id=model.actor_id,
            occurred_at=model.occurred_at,
            payload=dict(model.payload or {}),
        )
