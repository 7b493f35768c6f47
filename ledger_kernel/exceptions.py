"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every rejected ledger operation is something an accountant has to act on.
Callers must be able to catch by type and read structured attributes
instead of parsing message strings:

    try:
        ledger.post(entry_id, actor_id)
    except ImbalanceError as e:
        api_response(code=e.code, debit=e.total_debit, credit=e.total_credit)

Every class has:
  1. A class-level CODE attribute (machine-readable, API-safe)
  2. Structured attributes carrying the context of the failure
  3. A message naming the violated rule with the concrete values

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerError (base)
    |
    +-- ValidationError                      malformed input, nothing persisted
    |   +-- EmptyEntryError
    |   +-- UnbalancedLineError
    |   +-- UnknownAccountError
    |   |   +-- InactiveAccountError
    |   +-- ImbalanceError
    |   +-- InvalidAmountError
    |   +-- InvalidAccountClassificationError
    |   +-- DuplicateAccountNumberError
    |   +-- DuplicateEntryNumberError
    |
    +-- ConflictError                        state-dependent rule violation
    |   +-- AccountReclassificationError
    |   +-- AccountReferencedError
    |   +-- CycleError
    |   +-- TransactionConflictError
    |
    +-- InvalidStateError                    illegal lifecycle transition
    |   +-- InvalidTransitionError
    |   +-- ImmutableEntryError
    |
    +-- NotFoundError                        unknown id
        +-- AccountNotFoundError
        +-- EntryNotFoundError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                           | When Raised
-------------|--------------------------------|---------------------------------------
Validation   | EMPTY_ENTRY                    | Entry has no lines
             | UNBALANCED_LINE                | Line carries both or neither side
             | UNKNOWN_ACCOUNT                | Line references a missing account
             | INACTIVE_ACCOUNT               | Line references a deactivated account
             | IMBALANCE                      | Total debit != total credit
             | INVALID_AMOUNT                 | Float, negative, or > 2 decimal places
             | INVALID_ACCOUNT_CLASSIFICATION | Subtype not allowed for the type
             | DUPLICATE_ACCOUNT_NUMBER       | account_number already in use
             | DUPLICATE_ENTRY_NUMBER         | entry_number already in use
-------------|--------------------------------|---------------------------------------
Conflict     | ACCOUNT_RECLASSIFICATION       | Type change on a referenced account
             | ACCOUNT_REFERENCED             | Delete of a referenced account
             | ACCOUNT_CYCLE                  | Parent assignment would form a cycle
             | TRANSACTION_CONFLICT           | Lock conflict outlasted the retries
-------------|--------------------------------|---------------------------------------
State        | INVALID_TRANSITION             | e.g. post on voided, void on draft
             | IMMUTABLE_ENTRY                | Edit/delete of a posted/voided entry
-------------|--------------------------------|---------------------------------------
Not found    | ACCOUNT_NOT_FOUND              | Account id does not exist
             | ENTRY_NOT_FOUND                | Journal entry id does not exist

===============================================================================
RETRY POLICY
===============================================================================

Nothing here is retried by the ledger.  The only internally retried condition
is a transient lock/serialization conflict inside LedgerService, which
surfaces as TransactionConflictError once the retry budget is exhausted.
Retrying void() from the caller side after an ambiguous failure is safe only
because a second void() on a voided entry raises InvalidTransitionError.
"""

from decimal import Decimal


class LedgerError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_ERROR"


# Validation exceptions


class ValidationError(LedgerError):
    """Base exception for input that is rejected before any persistence."""

    code: str = "VALIDATION_ERROR"


class EmptyEntryError(ValidationError):
    """Journal entry has no lines."""

    code: str = "EMPTY_ENTRY"

    def __init__(self, entry_number: str | None = None):
        self.entry_number = entry_number
        label = f"entry {entry_number}" if entry_number else "entry"
        super().__init__(f"{label} must have at least one line")


class UnbalancedLineError(ValidationError):
    """A line carries both a debit and a credit amount, or neither."""

    code: str = "UNBALANCED_LINE"

    def __init__(self, line_index: int, debit_amount: Decimal, credit_amount: Decimal):
        self.line_index = line_index
        self.debit_amount = debit_amount
        self.credit_amount = credit_amount
        if debit_amount and credit_amount:
            reason = "carries both a debit and a credit amount"
        else:
            reason = "carries neither a debit nor a credit amount"
        super().__init__(
            f"line {line_index} {reason} "
            f"(debit {debit_amount}, credit {credit_amount}); "
            "exactly one side must be nonzero"
        )


class UnknownAccountError(ValidationError):
    """A line references an account that does not exist."""

    code: str = "UNKNOWN_ACCOUNT"

    def __init__(
        self,
        account_id: str,
        line_index: int | None = None,
        detail: str | None = None,
    ):
        self.account_id = account_id
        self.line_index = line_index
        where = f"line {line_index} " if line_index is not None else ""
        super().__init__(f"{where}references {detail or 'unknown account ' + account_id}")


class InactiveAccountError(UnknownAccountError):
    """A line references a deactivated account."""

    code: str = "INACTIVE_ACCOUNT"

    def __init__(
        self,
        account_id: str,
        account_number: str,
        line_index: int | None = None,
    ):
        self.account_number = account_number
        super().__init__(
            account_id,
            line_index,
            detail=f"inactive account {account_number} ({account_id})",
        )


class ImbalanceError(ValidationError):
    """Journal entry debits do not equal credits."""

    code: str = "IMBALANCE"

    def __init__(self, total_debit: Decimal, total_credit: Decimal, entry_number: str | None = None):
        self.total_debit = total_debit
        self.total_credit = total_credit
        self.entry_number = entry_number
        label = f"entry {entry_number}" if entry_number else "entry"
        super().__init__(
            f"{label} total debit {total_debit} does not equal "
            f"total credit {total_credit}"
        )


class InvalidAmountError(ValidationError):
    """Amount is a float, negative, non-numeric, or too precise."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, value: object, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"invalid amount {value!r}: {reason}")


class InvalidAccountClassificationError(ValidationError):
    """Account subtype does not belong to the account type."""

    code: str = "INVALID_ACCOUNT_CLASSIFICATION"

    def __init__(self, account_type: str, account_subtype: str, allowed: tuple[str, ...]):
        self.account_type = account_type
        self.account_subtype = account_subtype
        self.allowed = allowed
        super().__init__(
            f"subtype '{account_subtype}' is not valid for account type "
            f"'{account_type}' (allowed: {', '.join(allowed)})"
        )


class DuplicateAccountNumberError(ValidationError):
    """Account number is already in use."""

    code: str = "DUPLICATE_ACCOUNT_NUMBER"

    def __init__(self, account_number: str):
        self.account_number = account_number
        super().__init__(f"account number {account_number} is already in use")


class DuplicateEntryNumberError(ValidationError):
    """Journal entry number is already in use."""

    code: str = "DUPLICATE_ENTRY_NUMBER"

    def __init__(self, entry_number: str):
        self.entry_number = entry_number
        super().__init__(f"entry number {entry_number} is already in use")


# Conflict exceptions


class ConflictError(LedgerError):
    """Base exception for state-dependent rule violations."""

    code: str = "CONFLICT"


class AccountReclassificationError(ConflictError):
    """Attempted to change the type of an account referenced by journal lines."""

    code: str = "ACCOUNT_RECLASSIFICATION"

    def __init__(self, account_id: str, current_type: str, requested_type: str):
        self.account_id = account_id
        self.current_type = current_type
        self.requested_type = requested_type
        super().__init__(
            f"account {account_id} is referenced by journal lines; its type "
            f"cannot change from '{current_type}' to '{requested_type}'"
        )


class AccountReferencedError(ConflictError):
    """Account cannot be deleted; deactivate it instead."""

    code: str = "ACCOUNT_REFERENCED"

    def __init__(self, account_id: str, reason: str = "referenced by journal lines"):
        self.account_id = account_id
        self.reason = reason
        super().__init__(
            f"account {account_id} cannot be deleted: {reason}; deactivate it instead"
        )


class CycleError(ConflictError):
    """Parent assignment would make an account its own ancestor."""

    code: str = "ACCOUNT_CYCLE"

    def __init__(self, account_id: str, parent_account_id: str):
        self.account_id = account_id
        self.parent_account_id = parent_account_id
        super().__init__(
            f"assigning parent {parent_account_id} to account {account_id} "
            "would create a cycle in the account tree"
        )


class TransactionConflictError(ConflictError):
    """Transient lock conflict persisted past the retry budget."""

    code: str = "TRANSACTION_CONFLICT"

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"{operation} could not acquire its locks after {attempts} attempt(s); "
            "no changes were applied"
        )


# Lifecycle exceptions


class InvalidStateError(LedgerError):
    """Base exception for illegal lifecycle transitions."""

    code: str = "INVALID_STATE"


class InvalidTransitionError(InvalidStateError):
    """Requested transition is not legal from the entry's current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entry_id: str, status: str, action: str):
        self.entry_id = entry_id
        self.status = status
        self.action = action
        super().__init__(f"cannot {action} entry {entry_id}: status is {status}")


class ImmutableEntryError(InvalidStateError):
    """Attempted to modify or delete a posted or voided entry."""

    code: str = "IMMUTABLE_ENTRY"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"{entity_type} {entity_id} is immutable: {reason}")


# Lookup exceptions


class NotFoundError(LedgerError):
    """Base exception for unknown ids."""

    code: str = "NOT_FOUND"


class AccountNotFoundError(NotFoundError):
    """Account was not found."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"account not found: {account_id}")


class EntryNotFoundError(NotFoundError):
    """Journal entry was not found."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"journal entry not found: {entry_id}")
