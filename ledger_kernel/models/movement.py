"""
Module: ledger_kernel.models.movement
Responsibility: Append-only movement log.  Every change to an account's
    materialized balance is recorded here as one row, in the same
    transaction and under the same row lock as the balance write.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - For every account, balance == sum(delta) over its movements.
    - One movement per journal line (uq_movement_journal_line), so a posted
      line can never be applied twice even if a caller bypasses the state
      machine.
    - Rows are never updated or deleted (db/immutability.py).

Movement kinds:
    posting          one per line of a posted entry (reversals included)
    opening_balance  the caller-supplied starting balance of a new account
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UTCDateTime, UUIDString
from ledger_kernel.db.types import MinorUnitAmount, value_enum


class MovementKind(str, Enum):
    POSTING = "posting"
    OPENING_BALANCE = "opening_balance"


class LedgerMovement(Base):
    """
    One signed balance change on one account.

    Contract:
        ``delta`` is signed in the account's normal-balance sense, i.e. the
        output of classification.signed_delta.  debit_amount/credit_amount
        keep the raw sides so cash-flow style reports can split inflows and
        outflows without re-reading journal lines.
    """

    __tablename__ = "ledger_movements"

    __table_args__ = (
        UniqueConstraint("journal_line_id", name="uq_movement_journal_line"),
        Index("idx_movement_account_date", "account_id", "entry_date"),
        Index("idx_movement_entry", "journal_entry_id"),
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )

    kind: Mapped[MovementKind] = mapped_column(
        value_enum(MovementKind, 20),
        nullable=False,
    )

    # Null for opening_balance movements
    journal_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id", ondelete="RESTRICT"),
        nullable=True,
    )

    journal_line_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_lines.id", ondelete="RESTRICT"),
        nullable=True,
    )

    # Accounting date (the entry date, or the opening-balance date)
    entry_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    debit_amount: Mapped[Decimal] = mapped_column(
        MinorUnitAmount(),
        nullable=False,
    )

    credit_amount: Mapped[Decimal] = mapped_column(
        MinorUnitAmount(),
        nullable=False,
    )

    delta: Mapped[Decimal] = mapped_column(
        MinorUnitAmount(),
        nullable=False,
    )

    recorded_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    actor_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<LedgerMovement {self.kind.value} {self.account_id} {self.delta}>"
