"""
Concurrent posting and voiding.

Threads are released together by a Barrier so their transactions overlap.
On SQLite writers queue on BEGIN IMMEDIATE; on PostgreSQL they queue on the
account row locks.  Either way the outcome must equal some serial order:
no lost update, no double application, no deadlock.

Run against PostgreSQL with:
    DATABASE_URL=postgresql://... pytest tests/concurrency -m "slow_locks or postgres"
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from ledger_kernel.db.engine import session_scope
from ledger_kernel.domain.classification import AccountSubtype, AccountType
from ledger_kernel.domain.entry_state import EntryStatus
from ledger_kernel.exceptions import InvalidTransitionError
from ledger_kernel.models.account import Account
from ledger_kernel.models.movement import LedgerMovement
from tests.conftest import TEST_ACTOR_ID

pytestmark = pytest.mark.slow_locks

THREADS = 8


def _run_together(calls):
    """Run each zero-argument callable in its own thread, released at once."""
    barrier = threading.Barrier(len(calls), timeout=30)

    def _wrapped(call):
        barrier.wait()
        try:
            return call(), None
        except Exception as exc:
            return None, exc

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        futures = [pool.submit(_wrapped, call) for call in calls]
        return [f.result(timeout=120) for f in futures]


class TestNoLostUpdate:

    def test_shared_cash_account(self, ledger, chart, create_draft):
        """Two entries debit Cash 100.00 each and credit different revenue accounts."""
        first = create_draft("JE-A", [(chart.cash.id, "100.00", "0"), (chart.rent_revenue.id, "0", "100.00")])
        second = create_draft("JE-B", [(chart.cash.id, "100.00", "0"), (chart.fee_revenue.id, "0", "100.00")])

        outcomes = _run_together([
            lambda: ledger.post(first.id, TEST_ACTOR_ID),
            lambda: ledger.post(second.id, TEST_ACTOR_ID),
        ])

        assert [exc for _, exc in outcomes] == [None, None]
        assert ledger.get_account(chart.cash.id).balance == Decimal("200.00")
        assert ledger.get_account(chart.rent_revenue.id).balance == Decimal("100.00")
        assert ledger.get_account(chart.fee_revenue.id).balance == Decimal("100.00")

    def test_many_writers_on_one_account(self, ledger, chart, create_draft):
        drafts = [
            create_draft(
                f"JE-{i:03d}",
                [(chart.cash.id, f"{i}.25", "0"), (chart.rent_revenue.id, "0", f"{i}.25")],
            )
            for i in range(1, THREADS + 1)
        ]

        outcomes = _run_together([
            (lambda d=d: ledger.post(d.id, TEST_ACTOR_ID)) for d in drafts
        ])

        assert all(exc is None for _, exc in outcomes)
        expected = sum((Decimal(f"{i}.25") for i in range(1, THREADS + 1)), Decimal("0.00"))
        assert ledger.get_account(chart.cash.id).balance == expected
        assert ledger.reconcile() == []

    def test_opposite_line_order_does_not_deadlock(self, ledger, chart, create_draft):
        # Same two accounts, listed in opposite order; locks are taken sorted by id
        forward = create_draft("JE-F", [(chart.cash.id, "10.00", "0"), (chart.receivables.id, "0", "10.00")])
        backward = create_draft("JE-R", [(chart.receivables.id, "30.00", "0"), (chart.cash.id, "0", "30.00")])

        outcomes = _run_together([
            lambda: ledger.post(forward.id, TEST_ACTOR_ID),
            lambda: ledger.post(backward.id, TEST_ACTOR_ID),
        ])

        assert [exc for _, exc in outcomes] == [None, None]
        assert ledger.get_account(chart.cash.id).balance == Decimal("-20.00")
        assert ledger.get_account(chart.receivables.id).balance == Decimal("20.00")


class TestSingleApplication:

    def test_same_entry_posted_concurrently(self, ledger, chart, create_draft, session_factory):
        draft = create_draft("JE-1", [(chart.cash.id, "1200.00", "0"), (chart.rent_revenue.id, "0", "1200.00")])

        outcomes = _run_together([lambda: ledger.post(draft.id, TEST_ACTOR_ID)] * THREADS)

        assert all(exc is None for _, exc in outcomes)
        fresh = [result for result, _ in outcomes if not result.already_posted]
        assert len(fresh) == 1
        assert ledger.get_account(chart.cash.id).balance == Decimal("1200.00")
        with session_scope(session_factory) as session:
            count = session.execute(select(func.count()).select_from(LedgerMovement)).scalar()
            assert count == 2

    def test_same_entry_voided_concurrently(self, ledger, chart, post_entry):
        posted = post_entry("JE-1", chart.cash.id, chart.rent_revenue.id, "500.00")

        outcomes = _run_together([lambda: ledger.void(posted.entry.id, TEST_ACTOR_ID)] * 4)

        successes = [result for result, exc in outcomes if exc is None]
        failures = [exc for _, exc in outcomes if exc is not None]
        assert len(successes) == 1
        assert all(isinstance(exc, InvalidTransitionError) for exc in failures)
        assert ledger.get_account(chart.cash.id).balance == Decimal("0.00")
        assert ledger.get_entry(posted.entry.id).status is EntryStatus.VOIDED
        assert len(ledger.list_entries()) == 2

    def test_post_and_void_race(self, ledger, chart, post_entry, create_draft):
        posted = post_entry("JE-1", chart.cash.id, chart.rent_revenue.id, "75.00")
        draft = create_draft("JE-2", [(chart.cash.id, "25.00", "0"), (chart.rent_revenue.id, "0", "25.00")])

        outcomes = _run_together([
            lambda: ledger.void(posted.entry.id, TEST_ACTOR_ID),
            lambda: ledger.post(draft.id, TEST_ACTOR_ID),
        ])

        assert [exc for _, exc in outcomes] == [None, None]
        assert ledger.get_account(chart.cash.id).balance == Decimal("25.00")
        assert ledger.reconcile() == []


@pytest.mark.postgres
def test_disjoint_accounts_do_not_block(ledger, chart, create_draft, session_factory):
    """A held lock on Cash must not delay a posting that never touches Cash."""
    draft = create_draft(
        "JE-1", [(chart.repairs_expense.id, "40.00", "0"), (chart.payables.id, "0", "40.00")],
    )

    with session_scope(session_factory) as holder:
        holder.execute(select(Account).where(Account.id == chart.cash.id).with_for_update()).scalar_one()

        with ThreadPoolExecutor(max_workers=1) as pool:
            result = pool.submit(ledger.post, draft.id, TEST_ACTOR_ID).result(timeout=10)

    assert result.entry.status is EntryStatus.POSTED
    assert ledger.get_account(chart.payables.id).balance == Decimal("40.00")


@pytest.mark.postgres
def test_shared_account_waits_for_lock(ledger, chart, create_draft, session_factory):
    draft = create_draft("JE-1", [(chart.cash.id, "40.00", "0"), (chart.rent_revenue.id, "0", "40.00")])
    started = threading.Event()

    def _post():
        started.set()
        return ledger.post(draft.id, TEST_ACTOR_ID)

    with ThreadPoolExecutor(max_workers=1) as pool:
        with session_scope(session_factory) as holder:
            holder.execute(select(Account).where(Account.id == chart.cash.id).with_for_update()).scalar_one()
            future = pool.submit(_post)
            started.wait(timeout=5)
            time.sleep(0.5)
            assert not future.done()
        result = future.result(timeout=30)

    assert result.entry.status is EntryStatus.POSTED
    assert ledger.get_account(chart.cash.id).balance == Decimal("40.00")


def test_account_created_during_posting(ledger, chart, create_draft, make_account):
    """Registry writes and postings interleave without corrupting either."""
    drafts = [
        create_draft(f"JE-{i}", [(chart.cash.id, "5.00", "0"), (chart.rent_revenue.id, "0", "5.00")])
        for i in range(4)
    ]
    calls = [(lambda d=d: ledger.post(d.id, TEST_ACTOR_ID)) for d in drafts]
    calls += [
        (lambda n=n: make_account(f"60{n}0", f"Expense {n}", AccountType.EXPENSE, AccountSubtype.OTHER_EXPENSE))
        for n in range(4)
    ]

    outcomes = _run_together(calls)

    assert all(exc is None for _, exc in outcomes)
    assert ledger.get_account(chart.cash.id).balance == Decimal("20.00")
    assert len(ledger.list_accounts()) == 11
