"""
Module: ledger_kernel.selectors.balance_projector
Responsibility: Read-side balance derivation.  Point-in-time and range
    balances, the trial balance, profit and loss, balance sheet and cash
    flow figures, all aggregated from the append-only ledger_movements log
    rather than from the materialized Account.balance column.
Architecture position: Kernel > Selectors.  Never writes.

Invariants enforced:
    - Movements are aggregated in SQL over integer minor units; results are
      exact two-place Decimals.
    - "Posted" includes movements of entries that were later voided: those
      entries were posted, and their reversal entry carries the offsetting
      movements.
    - Empty ranges produce zero totals, never an error.
    - reconcile() rebuilds every balance independently from journal lines
      and compares three numbers per account: the stored balance, the
      movement log, and the rebuild.

Failure modes:
    - AccountNotFoundError from the single-account helpers.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.classification import (
    AccountSubtype,
    AccountType,
    NormalBalance,
    signed_delta,
)
from ledger_kernel.domain.entry_state import EntryStatus
from ledger_kernel.exceptions import AccountNotFoundError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.journal import JournalEntry, JournalLine
from ledger_kernel.models.movement import LedgerMovement, MovementKind
from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.balance_projector")


# ---------------------------------------------------------------------------
# Report shapes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TrialBalanceRow:
    """
    One account on the trial balance.

    ``balance`` is signed in the normal-balance sense.  debit_balance and
    credit_balance are the presentation columns: a contra balance on a
    debit-normal account shows in the credit column.
    """

    account_id: UUID
    account_number: str
    account_name: str
    account_type: AccountType
    normal_balance: NormalBalance
    balance: Decimal
    debit_balance: Decimal
    credit_balance: Decimal
    is_active: bool


@dataclass(frozen=True)
class TrialBalance:
    as_of: date | None
    rows: tuple[TrialBalanceRow, ...]
    total_debit: Decimal
    total_credit: Decimal

    @property
    def is_balanced(self) -> bool:
        return self.total_debit == self.total_credit


@dataclass(frozen=True)
class ReportLine:
    account_id: UUID
    account_number: str
    account_name: str
    account_subtype: AccountSubtype | None
    amount: Decimal


@dataclass(frozen=True)
class ProfitAndLoss:
    start_date: date | None
    end_date: date | None
    revenue: tuple[ReportLine, ...]
    expenses: tuple[ReportLine, ...]
    total_revenue: Decimal
    total_expenses: Decimal

    @property
    def net_income(self) -> Decimal:
        return self.total_revenue - self.total_expenses


@dataclass(frozen=True)
class BalanceSheet:
    """
    Assets, liabilities and equity as of a date.

    current_earnings is revenue minus expenses from the first movement up to
    ``as_of``; it is presented inside total_equity.
    """

    as_of: date | None
    assets: tuple[ReportLine, ...]
    liabilities: tuple[ReportLine, ...]
    equity: tuple[ReportLine, ...]
    total_assets: Decimal
    total_liabilities: Decimal
    current_earnings: Decimal
    total_equity: Decimal

    @property
    def is_balanced(self) -> bool:
        return self.total_assets == self.total_liabilities + self.total_equity


@dataclass(frozen=True)
class CashFlowLine:
    account_id: UUID
    account_number: str
    account_name: str
    opening_balance: Decimal
    inflows: Decimal
    outflows: Decimal
    closing_balance: Decimal

    @property
    def net_change(self) -> Decimal:
        return self.inflows - self.outflows


@dataclass(frozen=True)
class CashFlow:
    start_date: date | None
    end_date: date | None
    accounts: tuple[CashFlowLine, ...]
    total_inflows: Decimal
    total_outflows: Decimal

    @property
    def net_change(self) -> Decimal:
        return self.total_inflows - self.total_outflows


@dataclass(frozen=True)
class BalanceDiscrepancy:
    """An account whose three balance derivations do not agree."""

    account_id: UUID
    account_number: str
    stored_balance: Decimal
    movement_balance: Decimal
    rebuilt_balance: Decimal


# ---------------------------------------------------------------------------
# Projector
# ---------------------------------------------------------------------------


class BalanceProjector(BaseSelector[LedgerMovement]):
    """
    Derived balances and financial statement figures.

    Contract:
        Every figure is computed from ledger_movements (reconcile() also
        reads journal lines).  Date bounds are inclusive; ``None`` means
        unbounded on that side.
    """

    def __init__(self, session: Session):
        super().__init__(session)
        self._accounts = AccountSelector(session)

    def _movement_sums(
        self,
        start: date | None = None,
        end: date | None = None,
        account_ids: set[UUID] | None = None,
    ) -> dict[UUID, tuple[Decimal, Decimal, Decimal]]:
        """account_id -> (sum delta, sum debit, sum credit) over the window."""
        query = select(
            LedgerMovement.account_id,
            func.sum(LedgerMovement.delta),
            func.sum(LedgerMovement.debit_amount),
            func.sum(LedgerMovement.credit_amount),
        )
        if start is not None:
            query = query.where(LedgerMovement.entry_date >= start)
        if end is not None:
            query = query.where(LedgerMovement.entry_date <= end)
        if account_ids is not None:
            query = query.where(LedgerMovement.account_id.in_(account_ids))
        query = query.group_by(LedgerMovement.account_id)
        return {
            account_id: (delta or ZERO, debit or ZERO, credit or ZERO)
            for account_id, delta, debit, credit in self.session.execute(query).all()
        }

    def _all_accounts(self) -> list[Account]:
        return list(
            self.session.execute(select(Account).order_by(Account.account_number)).scalars()
        )

    # -------------------------------------------------------------------------
    # Balances
    # -------------------------------------------------------------------------

    def account_balance_as_of(self, account_id: UUID, as_of: date | None = None) -> Decimal:
        """
        Signed balance of one account from movements dated on or before
        ``as_of``.  With ``as_of=None`` it must equal Account.balance.
        """
        self._accounts.require(account_id)
        sums = self._movement_sums(end=as_of, account_ids={account_id})
        return sums.get(account_id, (ZERO, ZERO, ZERO))[0]

    def rollup_balance(self, account_id: UUID, as_of: date | None = None) -> Decimal:
        """Balance of an account plus all of its descendants."""
        self._accounts.require(account_id)
        ids = self._accounts.descendant_ids(account_id) | {account_id}
        sums = self._movement_sums(end=as_of, account_ids=ids)
        return sum((sums[i][0] for i in ids if i in sums), ZERO)

    def trial_balance(self, as_of: date | None = None) -> TrialBalance:
        """
        Every active account's balance as of ``as_of``.

        Inactive accounts still holding a balance are listed too, so the
        totals always cover the whole chart and the debit/credit identity is
        checked over every movement.
        """
        sums = self._movement_sums(end=as_of)
        rows: list[TrialBalanceRow] = []
        total_debit = ZERO
        total_credit = ZERO
        for account in self._all_accounts():
            balance = sums.get(account.id, (ZERO, ZERO, ZERO))[0]
            if not account.is_active and balance == ZERO:
                continue
            on_debit_side = (balance >= ZERO) == account.is_debit_normal
            debit_balance = abs(balance) if on_debit_side else ZERO
            credit_balance = ZERO if on_debit_side else abs(balance)
            total_debit += debit_balance
            total_credit += credit_balance
            rows.append(
                TrialBalanceRow(
                    account_id=account.id,
                    account_number=account.account_number,
                    account_name=account.account_name,
                    account_type=account.account_type,
                    normal_balance=account.normal_balance,
                    balance=balance,
                    debit_balance=debit_balance,
                    credit_balance=credit_balance,
                    is_active=account.is_active,
                )
            )

        report = TrialBalance(
            as_of=as_of,
            rows=tuple(rows),
            total_debit=total_debit,
            total_credit=total_credit,
        )
        if not report.is_balanced:
            logger.warning(
                "trial_balance_out_of_balance",
                extra={
                    "as_of": as_of.isoformat() if as_of else None,
                    "total_debit": str(total_debit),
                    "total_credit": str(total_credit),
                },
            )
        return report

    # -------------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------------

    def _section(
        self,
        accounts: list[Account],
        sums: dict[UUID, tuple[Decimal, Decimal, Decimal]],
        account_type: AccountType,
    ) -> tuple[tuple[ReportLine, ...], Decimal]:
        lines = []
        for account in accounts:
            if account.account_type is not account_type:
                continue
            amount = sums.get(account.id, (ZERO, ZERO, ZERO))[0]
            if amount == ZERO and not account.is_active:
                continue
            lines.append(
                ReportLine(
                    account_id=account.id,
                    account_number=account.account_number,
                    account_name=account.account_name,
                    account_subtype=account.account_subtype,
                    amount=amount,
                )
            )
        return tuple(lines), sum((line.amount for line in lines), ZERO)

    def profit_and_loss(self, start: date | None = None, end: date | None = None) -> ProfitAndLoss:
        accounts = self._all_accounts()
        sums = self._movement_sums(start=start, end=end)
        revenue, total_revenue = self._section(accounts, sums, AccountType.REVENUE)
        expenses, total_expenses = self._section(accounts, sums, AccountType.EXPENSE)
        return ProfitAndLoss(
            start_date=start,
            end_date=end,
            revenue=revenue,
            expenses=expenses,
            total_revenue=total_revenue,
            total_expenses=total_expenses,
        )

    def net_income(self, start: date | None = None, end: date | None = None) -> Decimal:
        """Revenue movements minus expense movements in the range."""
        query = (
            select(Account.account_type, func.sum(LedgerMovement.delta))
            .select_from(LedgerMovement)
            .join(Account, Account.id == LedgerMovement.account_id)
            .where(Account.account_type.in_([AccountType.REVENUE, AccountType.EXPENSE]))
            .group_by(Account.account_type)
        )
        if start is not None:
            query = query.where(LedgerMovement.entry_date >= start)
        if end is not None:
            query = query.where(LedgerMovement.entry_date <= end)
        totals = {AccountType(t): (amount or ZERO) for t, amount in self.session.execute(query).all()}
        return totals.get(AccountType.REVENUE, ZERO) - totals.get(AccountType.EXPENSE, ZERO)

    def balance_sheet(self, as_of: date | None = None) -> BalanceSheet:
        accounts = self._all_accounts()
        sums = self._movement_sums(end=as_of)
        assets, total_assets = self._section(accounts, sums, AccountType.ASSET)
        liabilities, total_liabilities = self._section(accounts, sums, AccountType.LIABILITY)
        equity, equity_accounts_total = self._section(accounts, sums, AccountType.EQUITY)
        current_earnings = self.net_income(end=as_of)
        return BalanceSheet(
            as_of=as_of,
            assets=assets,
            liabilities=liabilities,
            equity=equity,
            total_assets=total_assets,
            total_liabilities=total_liabilities,
            current_earnings=current_earnings,
            total_equity=equity_accounts_total + current_earnings,
        )

    def cash_flow(self, start: date | None = None, end: date | None = None) -> CashFlow:
        """
        Inflows (debits) and outflows (credits) per cash-subtype account.

        opening_balance is the balance before ``start``; closing_balance is
        opening plus the net change in the range.
        """
        cash_accounts = [
            a for a in self._all_accounts() if a.account_subtype is AccountSubtype.CASH
        ]
        ids = {a.id for a in cash_accounts}
        in_range = self._movement_sums(start=start, end=end, account_ids=ids)
        before = (
            self._movement_sums(end=start - timedelta(days=1), account_ids=ids)
            if start is not None
            else {}
        )

        lines = []
        for account in cash_accounts:
            opening = before.get(account.id, (ZERO, ZERO, ZERO))[0]
            _, inflows, outflows = in_range.get(account.id, (ZERO, ZERO, ZERO))
            lines.append(
                CashFlowLine(
                    account_id=account.id,
                    account_number=account.account_number,
                    account_name=account.account_name,
                    opening_balance=opening,
                    inflows=inflows,
                    outflows=outflows,
                    closing_balance=opening + inflows - outflows,
                )
            )
        return CashFlow(
            start_date=start,
            end_date=end,
            accounts=tuple(lines),
            total_inflows=sum((line.inflows for line in lines), ZERO),
            total_outflows=sum((line.outflows for line in lines), ZERO),
        )

    # -------------------------------------------------------------------------
    # Consistency
    # -------------------------------------------------------------------------

    def reconcile(self) -> list[BalanceDiscrepancy]:
        """
        Cross-check every account's stored balance.

        Three derivations must agree: Account.balance, the movement log, and
        a rebuild from the lines of posted and voided entries plus opening
        movements.  Returns the accounts where they do not.
        """
        movement_sums = self._movement_sums()

        line_sums = {
            account_id: (debit or ZERO, credit or ZERO)
            for account_id, debit, credit in self.session.execute(
                select(
                    JournalLine.account_id,
                    func.sum(JournalLine.debit_amount),
                    func.sum(JournalLine.credit_amount),
                )
                .join(JournalEntry, JournalEntry.id == JournalLine.journal_entry_id)
                .where(JournalEntry.status.in_([EntryStatus.POSTED, EntryStatus.VOIDED]))
                .group_by(JournalLine.account_id)
            ).all()
        }
        opening_sums = {
            account_id: amount or ZERO
            for account_id, amount in self.session.execute(
                select(LedgerMovement.account_id, func.sum(LedgerMovement.delta))
                .where(LedgerMovement.kind == MovementKind.OPENING_BALANCE)
                .group_by(LedgerMovement.account_id)
            ).all()
        }

        discrepancies = []
        for account in self._all_accounts():
            debit, credit = line_sums.get(account.id, (ZERO, ZERO))
            rebuilt = signed_delta(account.account_type, debit, credit) + opening_sums.get(account.id, ZERO)
            from_movements = movement_sums.get(account.id, (ZERO, ZERO, ZERO))[0]
            if account.balance == from_movements == rebuilt:
                continue
            discrepancies.append(
                BalanceDiscrepancy(
                    account_id=account.id,
                    account_number=account.account_number,
                    stored_balance=account.balance,
                    movement_balance=from_movements,
                    rebuilt_balance=rebuilt,
                )
            )

        if discrepancies:
            logger.critical(
                "balance_discrepancy_detected",
                extra={
                    "count": len(discrepancies),
                    "account_numbers": [d.account_number for d in discrepancies],
                },
            )
        else:
            logger.info("balances_reconciled", extra={"account_count": len(movement_sums)})
        return discrepancies
