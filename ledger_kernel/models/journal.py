"""
Module: ledger_kernel.models.journal
Responsibility: ORM persistence for journal entries and journal lines.
Architecture position: Kernel > Models.  May import from db/ and domain/.
    MUST NOT import from services/ or selectors/.

Invariants enforced:
    - entry_number is unique (uq_journal_entry_number).
    - Every line has non-negative amounts with exactly one side nonzero
      (ck_journal_line_one_side), so a malformed line cannot be stored even
      by code that skips the validator.
    - Line numbers are unique within an entry.
    - A posted entry is reversed at most once: reversal_of_id is unique.
    - Posted and voided entries are immutable apart from the void stamp and
      reversal link (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate entry_number (translated to
      DuplicateEntryNumberError by JournalService).
    - ImmutableEntryError from the ORM listeners on edits of non-draft
      entries or their lines.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from ledger_kernel.db.types import MinorUnitAmount, value_enum
from ledger_kernel.domain.dtos import ENTRY_NUMBER_MAX_LENGTH
from ledger_kernel.domain.entry_state import EntryStatus

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account


class JournalEntry(TrackedBase):
    """
    Journal entry header.

    Contract:
        Created as DRAFT.  PostingService moves it to POSTED once and, via
        a compensating reversal, to VOIDED once.  total_debit/total_credit
        are written from the validator's output and are equal for every
        stored entry.

    Guarantees:
        - lines are loaded eagerly and ordered by line_number.
        - reversal_of_id is set only on reversal entries; reversed_by_id
          only on voided originals.
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        UniqueConstraint("entry_number", name="uq_journal_entry_number"),
        UniqueConstraint("reversal_of_id", name="uq_journal_entry_reversal_of"),
        Index("idx_journal_entry_status", "status"),
        Index("idx_journal_entry_date", "entry_date"),
        Index("idx_journal_entry_property", "property_id"),
    )

    entry_number: Mapped[str] = mapped_column(
        String(ENTRY_NUMBER_MAX_LENGTH),
        nullable=False,
    )

    entry_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
    )

    # Cost-center tag owned by the host application
    property_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    status: Mapped[EntryStatus] = mapped_column(
        value_enum(EntryStatus, 20),
        nullable=False,
        default=EntryStatus.DRAFT,
    )

    total_debit: Mapped[Decimal] = mapped_column(
        MinorUnitAmount(),
        nullable=False,
        default=Decimal("0.00"),
    )

    total_credit: Mapped[Decimal] = mapped_column(
        MinorUnitAmount(),
        nullable=False,
        default=Decimal("0.00"),
    )

    posted_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    posted_by_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    voided_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    voided_by_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    void_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id", ondelete="RESTRICT"),
        nullable=True,
    )

    reversed_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id", ondelete="RESTRICT"),
        nullable=True,
    )

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="JournalLine.line_number",
    )

    def __repr__(self) -> str:
        return f"<JournalEntry {self.entry_number} status={self.status.value}>"


class JournalLine(Base):
    """
    One debit or credit line of a journal entry.

    Contract:
        Exactly one of debit_amount / credit_amount is nonzero.  Lines
        belong to their entry and follow its lifecycle: editable only while
        the entry is a draft.
    """

    __tablename__ = "journal_lines"

    __table_args__ = (
        UniqueConstraint("journal_entry_id", "line_number", name="uq_journal_line_number"),
        CheckConstraint(
            "(debit_amount > 0 AND credit_amount = 0) "
            "OR (debit_amount = 0 AND credit_amount > 0)",
            name="ck_journal_line_one_side",
        ),
        Index("idx_journal_line_account", "account_id"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id", ondelete="CASCADE"),
        nullable=False,
    )

    # 1-based position within the entry
    line_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )

    debit_amount: Mapped[Decimal] = mapped_column(
        MinorUnitAmount(),
        nullable=False,
        default=Decimal("0.00"),
    )

    credit_amount: Mapped[Decimal] = mapped_column(
        MinorUnitAmount(),
        nullable=False,
        default=Decimal("0.00"),
    )

    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    entry: Mapped["JournalEntry"] = relationship(
        back_populates="lines",
    )

    account: Mapped["Account"] = relationship()

    def __repr__(self) -> str:
        side = "Dr" if self.debit_amount else "Cr"
        return f"<JournalLine {self.line_number} {side} {self.debit_amount or self.credit_amount}>"
