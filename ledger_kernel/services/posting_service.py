"""
PostingService -- the posting state machine and the only writer of balances.

Responsibility:
    Moves journal entries DRAFT -> POSTED and POSTED -> VOIDED, and applies
    the resulting balance deltas to accounts.  Opening balances of new
    accounts go through here too, so every balance write in the system
    happens in one module, under one locking discipline.

Architecture position:
    Kernel > Services.  Runs inside the transaction opened by
    LedgerService; never commits.

Invariants enforced:
    - Lock order: the entry row first, then every touched account row in
      ascending id order (SELECT ... FOR UPDATE, populate_existing).  Two
      entries that share accounts serialize; entries on disjoint accounts
      never wait for each other.
    - Read-modify-write of Account.balance happens on the row just read
      under that lock, in the same transaction that writes the movement
      rows and the status change.  Either all of it commits or none of it.
    - For every account, balance == sum(ledger_movements.delta).
    - The entry is re-validated against the locked account state before any
      balance moves.
    - Each line produces exactly one movement (uq_movement_journal_line).

Lifecycle:
    post(draft)    -> POSTED, balances applied
    post(posted)   -> no-op, already_posted=True (safe retry)
    post(voided)   -> InvalidTransitionError
    void(posted)   -> reversal entry created and posted, original VOIDED
    void(other)    -> InvalidTransitionError (never idempotent)

Failure modes:
    - EntryNotFoundError for an unknown entry id.
    - ValidationError subclasses from the re-validation step.
    - DuplicateEntryNumberError if the reversal number is taken.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.classification import signed_delta
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import (
    ENTRY_NUMBER_MAX_LENGTH,
    AccountInfo,
    EntryHeader,
    JournalEntryRecord,
    LineSpec,
    PostingResult,
    ValidatedEntry,
    VoidResult,
)
from ledger_kernel.domain.entry_state import EntryStatus, transition
from ledger_kernel.domain.validator import JournalEntryValidator
from ledger_kernel.exceptions import (
    DuplicateEntryNumberError,
    EntryNotFoundError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.journal import JournalEntry, JournalLine
from ledger_kernel.models.movement import LedgerMovement, MovementKind
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.base import BaseService

logger = get_logger("services.posting")


class PostingService(BaseService[JournalEntry]):
    """
    Posting state machine.

    Contract:
        post() and void() either complete fully inside the caller's
        transaction or raise before anything observable changed.  Balance
        deltas come from classification.signed_delta only.

    Non-goals:
        - Does NOT commit or retry; LedgerService owns both.
        - Does NOT create drafts (JournalService does).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
        validator: JournalEntryValidator | None = None,
    ):
        super().__init__(session, clock)
        self._auditor = auditor or AuditorService(session, self.clock)
        self._validator = validator or JournalEntryValidator()

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    def _lock_entry(self, entry_id: UUID) -> JournalEntry:
        entry = self.session.execute(
            select(JournalEntry)
            .where(JournalEntry.id == entry_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry

    def _lock_accounts(self, account_ids) -> dict[UUID, Account]:
        """Lock account rows in ascending id order and return them by id."""
        ordered = sorted(set(account_ids), key=str)
        if not ordered:
            return {}
        rows = self.session.execute(
            select(Account)
            .where(Account.id.in_(ordered))
            .order_by(Account.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars()
        return {account.id: account for account in rows}

    def _number_taken(self, entry_number: str) -> bool:
        return self.session.execute(
            select(JournalEntry.id).where(JournalEntry.entry_number == entry_number)
        ).first() is not None

    # -------------------------------------------------------------------------
    # post
    # -------------------------------------------------------------------------

    def post(self, entry_id: UUID, actor_id: str) -> PostingResult:
        """
        Post a draft entry.

        Preconditions:
            - Called inside a transaction owned by the caller.
        Postconditions:
            - On success the entry is POSTED, every line has one movement,
              and each touched account's balance moved by its signed delta.
            - If the entry was already POSTED nothing changes and
              ``already_posted`` is True.

        Raises:
            EntryNotFoundError: unknown id.
            InvalidTransitionError: the entry is VOIDED.
            ValidationError: the entry no longer validates (for example an
                account was deactivated after the draft was created).
        """
        entry = self._lock_entry(entry_id)

        if entry.status == EntryStatus.POSTED:
            logger.info(
                "journal_post_idempotent",
                extra={"entry_id": str(entry.id), "entry_number": entry.entry_number},
            )
            return PostingResult(entry=JournalEntryRecord.from_model(entry), already_posted=True)

        transition(entry.id, entry.status, EntryStatus.POSTED)

        accounts = self._lock_accounts(line.account_id for line in entry.lines)
        validated = self._revalidate(entry, accounts)

        now = self.clock.now()
        deltas: dict[UUID, Decimal] = {}
        lines_by_number = {line.line_number: line for line in entry.lines}
        for vline in validated.lines:
            account = accounts[vline.account_id]
            delta = signed_delta(account.account_type, vline.debit_amount, vline.credit_amount)
            account.balance = account.balance + delta
            account.updated_by_id = actor_id
            deltas[account.id] = deltas.get(account.id, ZERO) + delta
            self.session.add(
                LedgerMovement(
                    account_id=account.id,
                    kind=MovementKind.POSTING,
                    journal_entry_id=entry.id,
                    journal_line_id=lines_by_number[vline.line_number].id,
                    entry_date=entry.entry_date,
                    debit_amount=vline.debit_amount,
                    credit_amount=vline.credit_amount,
                    delta=delta,
                    recorded_at=now,
                    actor_id=actor_id,
                )
            )

        entry.status = EntryStatus.POSTED
        entry.posted_at = now
        entry.posted_by_id = actor_id
        entry.total_debit = validated.total_debit
        entry.total_credit = validated.total_credit
        entry.updated_by_id = actor_id
        self.session.flush()

        for account_id in sorted(deltas, key=str):
            logger.debug(
                "balance_applied",
                extra={
                    "entry_id": str(entry.id),
                    "account_id": str(account_id),
                    "delta": str(deltas[account_id]),
                    "balance": str(accounts[account_id].balance),
                },
            )

        self._auditor.record_posting(
            entry.id,
            entry.entry_number,
            entry.entry_date,
            validated.total_debit,
            len(validated.lines),
            actor_id,
        )

        logger.info(
            "journal_posted",
            extra={
                "entry_id": str(entry.id),
                "entry_number": entry.entry_number,
                "total_debit": str(validated.total_debit),
                "total_credit": str(validated.total_credit),
                "line_count": len(validated.lines),
                "account_count": len(accounts),
            },
        )
        return PostingResult(
            entry=JournalEntryRecord.from_model(entry),
            already_posted=False,
            balance_deltas=deltas,
        )

    def _revalidate(self, entry: JournalEntry, accounts: dict[UUID, Account]) -> ValidatedEntry:
        header = EntryHeader(
            entry_number=entry.entry_number,
            entry_date=entry.entry_date,
            description=entry.description,
            property_id=entry.property_id,
        )
        specs = [
            LineSpec(
                account_id=line.account_id,
                debit_amount=line.debit_amount,
                credit_amount=line.credit_amount,
                description=line.description,
            )
            for line in entry.lines
        ]
        snapshot = {account_id: AccountInfo.from_model(a) for account_id, a in accounts.items()}
        try:
            return self._validator.validate(header, specs, snapshot)
        except ValidationError as exc:
            logger.warning(
                "journal_post_rejected",
                extra={
                    "entry_id": str(entry.id),
                    "entry_number": entry.entry_number,
                    "code": exc.code,
                    "reason": str(exc),
                },
            )
            raise

    # -------------------------------------------------------------------------
    # void
    # -------------------------------------------------------------------------

    def void(
        self,
        entry_id: UUID,
        actor_id: str,
        reason: str | None = None,
        reversal_entry_number: str | None = None,
        reversal_date: date | None = None,
    ) -> VoidResult:
        """
        Void a posted entry with a compensating reversal.

        The reversal swaps debit and credit on every line and is posted
        through post(), so it is locked, re-validated and applied exactly
        like any other entry.  The original entry's lines are never touched.

        Args:
            entry_id: The POSTED entry to void.
            actor_id: Who is voiding.
            reason: Free-text reason, stored on the original and in audit.
            reversal_entry_number: Defaults to "<entry_number>-VOID".
            reversal_date: Defaults to the original entry_date, so the
                original and its reversal net to zero in every period.

        Raises:
            EntryNotFoundError: unknown id.
            InvalidTransitionError: the entry is DRAFT or already VOIDED.
            DuplicateEntryNumberError: the reversal number is taken.
            ValidationError: the reversal does not validate (for example an
                account on the original was deactivated since).  Also raised
                when the default "-VOID" number would exceed the
                entry number length limit.
        """
        original = self._lock_entry(entry_id)
        transition(original.id, original.status, EntryStatus.VOIDED)

        self._lock_accounts(line.account_id for line in original.lines)

        number = reversal_entry_number or f"{original.entry_number}-VOID"
        if len(number) > ENTRY_NUMBER_MAX_LENGTH:
            raise ValidationError(
                f"reversal entry number '{number}' exceeds {ENTRY_NUMBER_MAX_LENGTH} characters; "
                "pass a shorter reversal_entry_number"
            )
        if self._number_taken(number):
            raise DuplicateEntryNumberError(number)

        description = f"Void of {original.entry_number}"
        if reason:
            description = f"{description}: {reason}"

        reversal = JournalEntry(
            entry_number=number,
            entry_date=reversal_date or original.entry_date,
            description=description,
            property_id=original.property_id,
            status=EntryStatus.DRAFT,
            total_debit=original.total_credit,
            total_credit=original.total_debit,
            reversal_of_id=original.id,
            created_by_id=actor_id,
            lines=[
                JournalLine(
                    line_number=line.line_number,
                    account_id=line.account_id,
                    debit_amount=line.credit_amount,
                    credit_amount=line.debit_amount,
                    description=line.description,
                )
                for line in original.lines
            ],
        )
        self.session.add(reversal)
        try:
            self.session.flush()
        except IntegrityError as exc:
            # A concurrent create_draft took the number after the check above
            raise DuplicateEntryNumberError(number) from exc
        self._auditor.record_reversal_created(reversal.id, original.id, actor_id)

        posting = self.post(reversal.id, actor_id)

        original.status = transition(original.id, original.status, EntryStatus.VOIDED)
        original.voided_at = self.clock.now()
        original.voided_by_id = actor_id
        original.void_reason = reason
        original.reversed_by_id = reversal.id
        original.updated_by_id = actor_id
        self.session.flush()

        self._auditor.record_void(original.id, reversal.id, reason, actor_id)

        logger.info(
            "journal_voided",
            extra={
                "entry_id": str(original.id),
                "entry_number": original.entry_number,
                "reversal_id": str(reversal.id),
                "reversal_number": reversal.entry_number,
                "amount": str(original.total_debit),
            },
        )
        return VoidResult(
            original=JournalEntryRecord.from_model(original),
            reversal=posting.entry,
        )

    # -------------------------------------------------------------------------
    # Opening balances
    # -------------------------------------------------------------------------

    def apply_opening_balance(
        self,
        account_id: UUID,
        amount: Decimal,
        as_of: date,
        actor_id: str,
    ) -> LedgerMovement | None:
        """
        Record a new account's starting balance as a movement.

        ``amount`` is in the account's normal-balance sense; a negative
        amount is a contra balance and lands on the opposite side.

        Returns:
            The opening_balance movement, or None when amount is zero.
        """
        if amount == ZERO:
            return None

        account = self._lock_accounts([account_id])[account_id]
        if account.is_debit_normal:
            debit, credit = (amount, ZERO) if amount > 0 else (ZERO, -amount)
        else:
            debit, credit = (ZERO, amount) if amount > 0 else (-amount, ZERO)
        delta = signed_delta(account.account_type, debit, credit)

        account.balance = account.balance + delta
        movement = LedgerMovement(
            account_id=account.id,
            kind=MovementKind.OPENING_BALANCE,
            entry_date=as_of,
            debit_amount=debit,
            credit_amount=credit,
            delta=delta,
            recorded_at=self.clock.now(),
            actor_id=actor_id,
        )
        self.session.add(movement)
        self.session.flush()

        self._auditor.record_balance_adjusted(account.id, delta, as_of, "opening_balance", actor_id)
        logger.info(
            "account_balance_adjusted",
            extra={
                "account_id": str(account.id),
                "account_number": account.account_number,
                "delta": str(delta),
                "balance": str(account.balance),
                "as_of": as_of.isoformat(),
                "reason": "opening_balance",
            },
        )
        return movement
