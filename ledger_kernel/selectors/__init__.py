"""Read-only query layer.  Selectors never add, flush, or commit."""

from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.selectors.balance_projector import (
    BalanceDiscrepancy,
    BalanceProjector,
    BalanceSheet,
    CashFlow,
    CashFlowLine,
    ProfitAndLoss,
    ReportLine,
    TrialBalance,
    TrialBalanceRow,
)
from ledger_kernel.selectors.journal_selector import JournalSelector

__all__ = [
    "AccountSelector",
    "BalanceDiscrepancy",
    "BalanceProjector",
    "BalanceSheet",
    "CashFlow",
    "CashFlowLine",
    "JournalSelector",
    "ProfitAndLoss",
    "ReportLine",
    "TrialBalance",
    "TrialBalanceRow",
]
