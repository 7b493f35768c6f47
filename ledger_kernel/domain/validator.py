"""
Journal Entry Validator -- Structural and balance checks for candidate entries.

Responsibility:
    Pure, side-effect-free verification of a candidate journal entry before
    it touches storage.  Runs twice per entry lifecycle: when the draft is
    created or edited, and again immediately before posting against the
    account state read under lock.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Account state is
    supplied by the caller as a mapping of AccountInfo snapshots, so the
    validator never queries the database and never takes a lock.

Invariants enforced:
    - The entry number is non-blank and fits the entry number column.
    - An entry has at least one line.
    - Every line carries exactly one nonzero side.
    - Every line references an existing, active account.
    - sum(debit) == sum(credit), compared exactly.  Amounts are two-place
      Decimals, so there is no tolerance to tune.

Failure modes (checked in this order, first failure wins):
    - ValidationError (blank or over-long entry number)
    - EmptyEntryError
    - UnbalancedLineError (names the 1-based line number)
    - UnknownAccountError / InactiveAccountError (names the line number)
    - ImbalanceError (names both totals)
"""

from collections.abc import Mapping, Sequence
from decimal import Decimal
from uuid import UUID

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.dtos import (
    ENTRY_NUMBER_MAX_LENGTH,
    AccountInfo,
    EntryHeader,
    LineSpec,
    ValidatedEntry,
    ValidatedLine,
)
from ledger_kernel.exceptions import (
    EmptyEntryError,
    ImbalanceError,
    InactiveAccountError,
    UnbalancedLineError,
    UnknownAccountError,
    ValidationError,
)


class JournalEntryValidator:
    """
    Validates a header plus line specs against an account snapshot.

    Contract:
        validate() either returns a ValidatedEntry or raises the first
        violated rule as a typed ValidationError.  Calling it repeatedly with
        the same inputs yields the same result.

    Non-goals:
        - Does NOT check entry_number uniqueness (needs storage; the journal
          service does that).
        - Does NOT look at entry status.
    """

    def validate(
        self,
        header: EntryHeader,
        lines: Sequence[LineSpec],
        accounts: Mapping[UUID, AccountInfo],
    ) -> ValidatedEntry:
        """
        Validate a candidate entry.

        Args:
            header: Entry header.
            lines: Line specs in submission order.
            accounts: Snapshot of every account the lines may reference,
                keyed by id.  Missing keys mean the account does not exist.

        Returns:
            ValidatedEntry with computed totals and 1-based line numbers.

        Raises:
            ValidationError: see module docstring for the order of checks.
        """
        if not header.entry_number or not header.entry_number.strip():
            raise ValidationError("entry number must not be blank")
        if len(header.entry_number.strip()) > ENTRY_NUMBER_MAX_LENGTH:
            raise ValidationError(f"entry number exceeds {ENTRY_NUMBER_MAX_LENGTH} characters")

        if not lines:
            raise EmptyEntryError(header.entry_number)

        for index, line in enumerate(lines, start=1):
            has_debit = line.debit_amount != ZERO
            has_credit = line.credit_amount != ZERO
            if has_debit == has_credit:
                raise UnbalancedLineError(index, line.debit_amount, line.credit_amount)

        validated: list[ValidatedLine] = []
        for index, line in enumerate(lines, start=1):
            account = accounts.get(line.account_id)
            if account is None:
                raise UnknownAccountError(str(line.account_id), line_index=index)
            if not account.is_active:
                raise InactiveAccountError(
                    str(account.id), account.account_number, line_index=index,
                )
            validated.append(
                ValidatedLine(
                    line_number=index,
                    account_id=account.id,
                    account_type=account.account_type,
                    debit_amount=line.debit_amount,
                    credit_amount=line.credit_amount,
                    description=line.description,
                )
            )

        total_debit = sum((line.debit_amount for line in validated), Decimal("0.00"))
        total_credit = sum((line.credit_amount for line in validated), Decimal("0.00"))
        if total_debit != total_credit:
            raise ImbalanceError(total_debit, total_credit, header.entry_number)

        return ValidatedEntry(
            header=header,
            lines=tuple(validated),
            total_debit=total_debit,
            total_credit=total_credit,
        )
