"""
BalanceProjector reports: point-in-time balances, trial balance, profit and
loss, balance sheet, cash flow and parent roll-ups.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.classification import AccountSubtype, AccountType
from ledger_kernel.exceptions import AccountNotFoundError
from tests.conftest import TEST_ACTOR_ID

JAN_1 = date(2024, 1, 1)
JAN_31 = date(2024, 1, 31)
FEB_29 = date(2024, 2, 29)


@pytest.fixture
def activity(ledger, chart, post_entry):
    """
    January: rent billed and collected, a repair bill paid.
    February: more rent, a late fee, owner draws nothing.
    """
    post_entry("JE-01", chart.cash.id, chart.owner_equity.id, "10000.00", date(2024, 1, 1))
    post_entry("JE-02", chart.receivables.id, chart.rent_revenue.id, "2400.00", date(2024, 1, 2))
    post_entry("JE-03", chart.cash.id, chart.receivables.id, "2400.00", date(2024, 1, 5))
    post_entry("JE-04", chart.repairs_expense.id, chart.payables.id, "600.00", date(2024, 1, 12))
    post_entry("JE-05", chart.payables.id, chart.cash.id, "600.00", date(2024, 1, 25))
    post_entry("JE-06", chart.cash.id, chart.rent_revenue.id, "2400.00", date(2024, 2, 1))
    post_entry("JE-07", chart.cash.id, chart.fee_revenue.id, "75.00", date(2024, 2, 8))
    return chart


class TestAccountBalanceAsOf:

    def test_matches_live_balance(self, ledger, activity):
        for account in ledger.list_accounts():
            assert ledger.account_balance_as_of(account.id) == account.balance

    def test_point_in_time(self, ledger, activity):
        assert ledger.account_balance_as_of(activity.cash.id, date(2024, 1, 4)) == Decimal("10000.00")
        assert ledger.account_balance_as_of(activity.cash.id, JAN_31) == Decimal("11800.00")
        assert ledger.account_balance_as_of(activity.cash.id, FEB_29) == Decimal("14275.00")

    def test_before_any_activity(self, ledger, activity):
        assert ledger.account_balance_as_of(activity.cash.id, date(2023, 12, 31)) == Decimal("0.00")

    def test_drafts_do_not_count(self, ledger, chart, create_draft):
        create_draft("JE-1", [(chart.cash.id, "99.00", "0"), (chart.rent_revenue.id, "0", "99.00")])

        assert ledger.account_balance_as_of(chart.cash.id) == Decimal("0.00")

    def test_unknown_account(self, ledger, engine):
        with pytest.raises(AccountNotFoundError):
            ledger.account_balance_as_of(uuid4())


class TestTrialBalance:

    def test_identity_holds(self, ledger, activity):
        report = ledger.trial_balance()

        assert report.is_balanced
        assert report.total_debit == report.total_credit == Decimal("14875.00")

    def test_rows_in_account_number_order(self, ledger, activity):
        report = ledger.trial_balance()

        numbers = [row.account_number for row in report.rows]
        assert numbers == sorted(numbers)
        assert len(numbers) == 7

    def test_columns_follow_normal_balance(self, ledger, activity):
        rows = {row.account_number: row for row in ledger.trial_balance().rows}

        assert rows["1000"].debit_balance == Decimal("14275.00")
        assert rows["1000"].credit_balance == Decimal("0.00")
        assert rows["4000"].credit_balance == Decimal("4800.00")
        assert rows["4000"].debit_balance == Decimal("0.00")

    def test_contra_balance_goes_to_opposite_column(self, ledger, chart, post_entry):
        # Overdraw cash: an asset with a credit balance
        post_entry("JE-1", chart.repairs_expense.id, chart.cash.id, "50.00")

        rows = {row.account_number: row for row in ledger.trial_balance().rows}

        assert rows["1000"].balance == Decimal("-50.00")
        assert rows["1000"].credit_balance == Decimal("50.00")
        assert ledger.trial_balance().is_balanced

    def test_as_of_date(self, ledger, activity):
        report = ledger.trial_balance(JAN_31)

        assert report.is_balanced
        assert report.as_of == JAN_31
        assert report.total_debit == Decimal("12400.00")

    def test_inactive_zero_accounts_omitted(self, ledger, activity):
        ledger.deactivate_account(activity.payables.id, TEST_ACTOR_ID)

        numbers = [row.account_number for row in ledger.trial_balance().rows]

        assert "2000" not in numbers

    def test_inactive_account_with_balance_listed(self, ledger, activity):
        ledger.deactivate_account(activity.fee_revenue.id, TEST_ACTOR_ID)

        rows = {row.account_number: row for row in ledger.trial_balance().rows}

        assert not rows["4100"].is_active
        assert rows["4100"].balance == Decimal("75.00")
        assert ledger.trial_balance().is_balanced

    def test_empty_ledger(self, ledger, chart):
        report = ledger.trial_balance()

        assert report.total_debit == report.total_credit == Decimal("0.00")
        assert report.is_balanced


class TestProfitAndLoss:

    def test_january(self, ledger, activity):
        report = ledger.profit_and_loss(JAN_1, JAN_31)

        revenue = {line.account_number: line.amount for line in report.revenue}
        expenses = {line.account_number: line.amount for line in report.expenses}
        assert revenue == {"4000": Decimal("2400.00"), "4100": Decimal("0.00")}
        assert expenses == {"5000": Decimal("600.00")}
        assert report.net_income == Decimal("1800.00")

    def test_february(self, ledger, activity):
        report = ledger.profit_and_loss(date(2024, 2, 1), FEB_29)

        assert report.total_revenue == Decimal("2475.00")
        assert report.total_expenses == Decimal("0.00")
        assert report.net_income == Decimal("2475.00")

    def test_net_income_matches(self, ledger, activity):
        assert ledger.net_income(JAN_1, FEB_29) == ledger.profit_and_loss(JAN_1, FEB_29).net_income
        assert ledger.net_income(JAN_1, FEB_29) == Decimal("4275.00")

    def test_empty_range_is_zero(self, ledger, activity):
        report = ledger.profit_and_loss(date(2025, 1, 1), date(2025, 12, 31))

        assert report.total_revenue == Decimal("0.00")
        assert report.total_expenses == Decimal("0.00")
        assert report.net_income == Decimal("0.00")
        assert ledger.net_income(date(2025, 1, 1), date(2025, 12, 31)) == Decimal("0.00")

    def test_void_cancels_within_period(self, ledger, chart, post_entry):
        result = post_entry("JE-1", chart.cash.id, chart.rent_revenue.id, "300.00", date(2024, 3, 3))
        ledger.void(result.entry.id, TEST_ACTOR_ID)

        assert ledger.net_income(date(2024, 3, 1), date(2024, 3, 31)) == Decimal("0.00")


class TestBalanceSheet:

    def test_balances_with_current_earnings(self, ledger, activity):
        sheet = ledger.balance_sheet(FEB_29)

        assert sheet.total_assets == Decimal("14275.00")
        assert sheet.total_liabilities == Decimal("0.00")
        assert sheet.current_earnings == Decimal("4275.00")
        assert sheet.total_equity == Decimal("14275.00")
        assert sheet.is_balanced

    def test_sections(self, ledger, activity):
        sheet = ledger.balance_sheet(JAN_31)

        assert [line.account_number for line in sheet.assets] == ["1000", "1100"]
        assert [line.account_number for line in sheet.liabilities] == ["2000"]
        assert [line.account_number for line in sheet.equity] == ["3000"]
        assert sheet.equity[0].amount == Decimal("10000.00")
        assert sheet.current_earnings == Decimal("1800.00")
        assert sheet.is_balanced

    def test_opening_balances_need_an_offset(self, ledger, make_account):
        make_account("1000", "Cash", AccountType.ASSET, AccountSubtype.CASH, opening_balance="500.00")
        make_account("3000", "Equity", AccountType.EQUITY, AccountSubtype.EQUITY, opening_balance="500.00")

        assert ledger.balance_sheet().is_balanced
        assert ledger.trial_balance().is_balanced


class TestCashFlow:

    def test_february_flows(self, ledger, activity):
        report = ledger.cash_flow(date(2024, 2, 1), FEB_29)

        (cash,) = report.accounts
        assert cash.account_number == "1000"
        assert cash.opening_balance == Decimal("11800.00")
        assert cash.inflows == Decimal("2475.00")
        assert cash.outflows == Decimal("0.00")
        assert cash.closing_balance == Decimal("14275.00")
        assert report.net_change == Decimal("2475.00")

    def test_january_flows(self, ledger, activity):
        report = ledger.cash_flow(JAN_1, JAN_31)

        assert report.total_inflows == Decimal("12400.00")
        assert report.total_outflows == Decimal("600.00")
        assert report.accounts[0].opening_balance == Decimal("0.00")
        assert report.accounts[0].net_change == Decimal("11800.00")

    def test_only_cash_accounts(self, ledger, activity, make_account):
        make_account("1010", "Petty Cash", AccountType.ASSET, AccountSubtype.CASH)

        report = ledger.cash_flow(JAN_1, FEB_29)

        assert [line.account_number for line in report.accounts] == ["1000", "1010"]

    def test_empty_range(self, ledger, activity):
        report = ledger.cash_flow(date(2025, 1, 1), date(2025, 1, 31))

        assert report.net_change == Decimal("0.00")
        assert report.accounts[0].opening_balance == report.accounts[0].closing_balance


class TestRollup:

    def test_parent_includes_descendants(self, ledger, make_account, create_draft):
        assets = make_account("1000", "Assets", AccountType.ASSET)
        current = make_account("1100", "Current Assets", AccountType.ASSET, parent_account_id=assets.id)
        bank = make_account("1110", "Bank", AccountType.ASSET, AccountSubtype.CASH, parent_account_id=current.id)
        petty = make_account("1120", "Petty Cash", AccountType.ASSET, AccountSubtype.CASH,
                             parent_account_id=current.id)
        equity = make_account("3000", "Equity", AccountType.EQUITY, AccountSubtype.EQUITY)
        draft = create_draft(
            "JE-1",
            [(bank.id, "900.00", "0"), (petty.id, "100.00", "0"), (equity.id, "0", "1000.00")],
        )
        ledger.post(draft.id, TEST_ACTOR_ID)

        assert ledger.rollup_balance(assets.id) == Decimal("1000.00")
        assert ledger.rollup_balance(current.id) == Decimal("1000.00")
        assert ledger.rollup_balance(bank.id) == Decimal("900.00")
        assert ledger.rollup_balance(assets.id, date(2023, 12, 31)) == Decimal("0.00")

    def test_unknown_account(self, ledger, engine):
        with pytest.raises(AccountNotFoundError):
            ledger.rollup_balance(uuid4())
