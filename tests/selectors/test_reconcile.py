"""
reconcile(): stored balance vs movement log vs rebuild from journal lines.

Corruption is planted with Core UPDATE/INSERT statements, which bypass the
ORM immutability listeners the same way a manual SQL edit would.
"""

from decimal import Decimal
from uuid import uuid4

from sqlalchemy import insert, update

from ledger_kernel.domain.classification import AccountSubtype, AccountType
from ledger_kernel.models.account import Account
from ledger_kernel.models.movement import LedgerMovement, MovementKind
from tests.conftest import DEFAULT_ENTRY_DATE, TEST_ACTOR_ID


def test_consistent_ledger(ledger, chart, post_entry):
    first = post_entry("JE-1", chart.cash.id, chart.rent_revenue.id, "800.00")
    post_entry("JE-2", chart.repairs_expense.id, chart.cash.id, "120.00")
    ledger.void(first.entry.id, TEST_ACTOR_ID)

    assert ledger.reconcile() == []


def test_empty_ledger(ledger, chart):
    assert ledger.reconcile() == []


def test_stored_balance_drift_detected(ledger, chart, post_entry, engine, captured_logs):
    post_entry("JE-1", chart.cash.id, chart.rent_revenue.id, "800.00")

    with engine.begin() as conn:
        conn.execute(
            update(Account.__table__)
            .where(Account.__table__.c.id == chart.cash.id)
            .values(balance=Decimal("850.00"))
        )

    (discrepancy,) = ledger.reconcile()

    assert discrepancy.account_number == "1000"
    assert discrepancy.stored_balance == Decimal("850.00")
    assert discrepancy.movement_balance == Decimal("800.00")
    assert discrepancy.rebuilt_balance == Decimal("800.00")
    alert = next(r for r in captured_logs() if r["message"] == "balance_discrepancy_detected")
    assert alert["level"] == "CRITICAL"
    assert alert["account_numbers"] == ["1000"]


def test_stray_movement_detected(ledger, chart, post_entry, engine):
    post_entry("JE-1", chart.cash.id, chart.rent_revenue.id, "800.00")

    with engine.begin() as conn:
        conn.execute(
            insert(LedgerMovement.__table__).values(
                id=uuid4(),
                account_id=chart.rent_revenue.id,
                kind=MovementKind.POSTING,
                entry_date=DEFAULT_ENTRY_DATE,
                debit_amount=Decimal("0.00"),
                credit_amount=Decimal("5.00"),
                delta=Decimal("5.00"),
                recorded_at=ledger.clock.now(),
                actor_id="dba-console",
            )
        )

    (discrepancy,) = ledger.reconcile()

    assert discrepancy.account_number == "4000"
    assert discrepancy.stored_balance == Decimal("800.00")
    assert discrepancy.movement_balance == Decimal("805.00")
    assert discrepancy.rebuilt_balance == Decimal("800.00")


def test_opening_balances_reconcile(ledger, make_account):
    make_account("1000", "Cash", AccountType.ASSET, AccountSubtype.CASH, opening_balance="300.00")
    make_account("2000", "Loan", AccountType.LIABILITY, AccountSubtype.LONG_TERM_LIABILITY,
                  opening_balance="300.00")

    assert ledger.reconcile() == []
