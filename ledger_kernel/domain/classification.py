"""
Classification -- Account types, subtypes, and the sign convention.

Responsibility:
    Defines the closed vocabulary of account classification and the ONE
    function that turns a line's debit/credit pair into a signed balance
    delta.  Every balance computation in the kernel (posting, projection,
    reconciliation) goes through ``signed_delta`` so the sign convention
    cannot drift between call sites.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - A subtype is only valid under the account type that owns it
      (``cash`` only under ``asset``, and so on).
    - Asset and expense accounts increase on debit; liability, equity and
      revenue accounts increase on credit.
"""

from decimal import Decimal
from enum import Enum

from ledger_kernel.exceptions import InvalidAccountClassificationError


class AccountType(str, Enum):
    """Fundamental account classification (the accounting equation)."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"


class AccountSubtype(str, Enum):
    """Refinement of an account type used for report sectioning."""

    CASH = "cash"
    ACCOUNTS_RECEIVABLE = "accounts_receivable"
    FIXED_ASSET = "fixed_asset"
    ACCOUNTS_PAYABLE = "accounts_payable"
    CURRENT_LIABILITY = "current_liability"
    LONG_TERM_LIABILITY = "long_term_liability"
    EQUITY = "equity"
    OPERATING_INCOME = "operating_income"
    OTHER_INCOME = "other_income"
    OPERATING_EXPENSE = "operating_expense"
    OTHER_EXPENSE = "other_expense"


class NormalBalance(str, Enum):
    """Side on which an account's balance increases."""

    DEBIT = "debit"
    CREDIT = "credit"


ALLOWED_SUBTYPES: dict[AccountType, frozenset[AccountSubtype]] = {
    AccountType.ASSET: frozenset({
        AccountSubtype.CASH,
        AccountSubtype.ACCOUNTS_RECEIVABLE,
        AccountSubtype.FIXED_ASSET,
    }),
    AccountType.LIABILITY: frozenset({
        AccountSubtype.ACCOUNTS_PAYABLE,
        AccountSubtype.CURRENT_LIABILITY,
        AccountSubtype.LONG_TERM_LIABILITY,
    }),
    AccountType.EQUITY: frozenset({
        AccountSubtype.EQUITY,
    }),
    AccountType.REVENUE: frozenset({
        AccountSubtype.OPERATING_INCOME,
        AccountSubtype.OTHER_INCOME,
    }),
    AccountType.EXPENSE: frozenset({
        AccountSubtype.OPERATING_EXPENSE,
        AccountSubtype.OTHER_EXPENSE,
    }),
}

_DEBIT_NORMAL_TYPES = frozenset({AccountType.ASSET, AccountType.EXPENSE})


def normal_balance_for(account_type: AccountType) -> NormalBalance:
    if AccountType(account_type) in _DEBIT_NORMAL_TYPES:
        return NormalBalance.DEBIT
    return NormalBalance.CREDIT


def check_subtype(
    account_type: AccountType | str,
    account_subtype: AccountSubtype | str | None,
) -> tuple[AccountType, AccountSubtype | None]:
    """
    Validate and normalize a type/subtype pairing.

    A missing subtype is allowed (the account is simply unrefined).

    Raises:
        InvalidAccountClassificationError: unknown type, unknown subtype, or
            a subtype that belongs to a different type.
    """
    all_types = tuple(t.value for t in AccountType)
    try:
        acct_type = AccountType(account_type)
    except ValueError:
        raise InvalidAccountClassificationError(
            str(account_type), str(account_subtype), all_types,
        ) from None

    allowed = tuple(sorted(s.value for s in ALLOWED_SUBTYPES[acct_type]))
    if account_subtype is None:
        return acct_type, None
    try:
        subtype = AccountSubtype(account_subtype)
    except ValueError:
        raise InvalidAccountClassificationError(
            acct_type.value, str(account_subtype), allowed,
        ) from None
    if subtype not in ALLOWED_SUBTYPES[acct_type]:
        raise InvalidAccountClassificationError(acct_type.value, subtype.value, allowed)
    return acct_type, subtype


def signed_delta(
    account_type: AccountType | str,
    debit_amount: Decimal,
    credit_amount: Decimal,
) -> Decimal:
    """
    Balance change produced by one line on an account of ``account_type``.

    Returns debit - credit for debit-normal accounts and credit - debit for
    credit-normal accounts, so a positive result always means the balance
    grew on its normal side.
    """
    if normal_balance_for(account_type) is NormalBalance.DEBIT:
        return debit_amount - credit_amount
    return credit_amount - debit_amount
