"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the chart of accounts.  Each row is one
    account: its classification, its place in the parent/child tree, and its
    materialized balance.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/.  MUST NOT import from services/ or selectors/.

Invariants enforced:
    - account_number is unique (uq_account_number).
    - normal_balance is derived from account_type at write time and never
      set independently.
    - balance equals the sum of this account's ledger_movements.delta.  Only
      the posting service and the opening-balance path write it, and only
      while holding the account's row lock.
    - account_type is frozen once any journal line references the account
      (AccountRegistry and db/immutability.py).

Failure modes:
    - IntegrityError on duplicate account_number (translated to
      DuplicateAccountNumberError by AccountRegistry).
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.db.types import MinorUnitAmount, value_enum
from ledger_kernel.domain.classification import (
    AccountSubtype,
    AccountType,
    NormalBalance,
)


class Account(TrackedBase):
    """
    Chart of Accounts entry.

    Contract:
        account_number is globally unique.  Once any JournalLine references
        the account, account_type (and therefore normal_balance) MUST NOT
        change.  Referenced accounts are deactivated, never deleted.

    Guarantees:
        - balance is an exact two-place Decimal, positive on the normal side.
        - normal_balance is consistent with account_type.

    Non-goals:
        - Does NOT compute balances itself; see BalanceProjector for the
          derived view and PostingService for the only writer.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("account_number", name="uq_account_number"),
        Index("idx_account_type", "account_type"),
        Index("idx_account_active", "is_active"),
        Index("idx_account_parent", "parent_account_id"),
    )

    # Human-readable sortable key, e.g. "1000"
    account_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    account_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    account_type: Mapped[AccountType] = mapped_column(
        value_enum(AccountType, 20),
        nullable=False,
    )

    account_subtype: Mapped[AccountSubtype | None] = mapped_column(
        value_enum(AccountSubtype, 32),
        nullable=True,
    )

    normal_balance: Mapped[NormalBalance] = mapped_column(
        value_enum(NormalBalance, 10),
        nullable=False,
    )

    # Materialized; signed in the normal-balance sense
    balance: Mapped[Decimal] = mapped_column(
        MinorUnitAmount(),
        nullable=False,
        default=Decimal("0.00"),
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    parent_account_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=True,
    )

    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Account {self.account_number}: {self.account_name}>"

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT

    @property
    def is_credit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.CREDIT
