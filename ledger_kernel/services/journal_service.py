"""
JournalService -- draft journal entry management.

Responsibility:
    Creates, edits and deletes DRAFT entries.  Every draft that reaches
    storage has passed the validator, so a stored draft is always balanced
    and references existing, active accounts at the time it was saved.

Architecture position:
    Kernel > Services.  Runs inside the transaction opened by
    LedgerService; never commits.  Posting and voiding belong to
    PostingService.

Invariants enforced:
    - entry_number is unique (DuplicateEntryNumberError).
    - Lines are numbered 1..n in submission order.
    - Only DRAFT entries are edited or deleted here; anything else raises
      ImmutableEntryError before a single attribute is touched.

Failure modes:
    - ValidationError subclasses from the validator.
    - EntryNotFoundError for unknown ids.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import (
    EntryHeader,
    EntryPatch,
    JournalEntryRecord,
    LineSpec,
    ValidatedEntry,
)
from ledger_kernel.domain.entry_state import EntryStatus, is_editable
from ledger_kernel.domain.validator import JournalEntryValidator
from ledger_kernel.exceptions import (
    DuplicateEntryNumberError,
    EntryNotFoundError,
    ImmutableEntryError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.journal import JournalEntry, JournalLine
from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.base import BaseService

logger = get_logger("services.journal")


class JournalService(BaseService[JournalEntry]):
    """
    Draft lifecycle.

    Contract:
        create_draft/update_draft validate against a snapshot of the
        referenced accounts read in the current transaction.  No account
        lock is taken; posting re-validates under lock.
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
        self._accounts = AccountSelector(session)

    def validate(self, header: EntryHeader, lines: Sequence[LineSpec]) -> ValidatedEntry:
        """Run the validator against current account state without writing."""
        snapshot = self._accounts.snapshot(line.account_id for line in lines)
        try:
            return self._validator.validate(header, lines, snapshot)
        except ValidationError as exc:
            logger.warning(
                "journal_validation_failed",
                extra={"entry_number": header.entry_number, "code": exc.code, "reason": str(exc)},
            )
            raise

    def _number_taken(self, entry_number: str, exclude_id: UUID | None = None) -> bool:
        query = select(JournalEntry.id).where(JournalEntry.entry_number == entry_number)
        if exclude_id is not None:
            query = query.where(JournalEntry.id != exclude_id)
        return self.session.execute(query.limit(1)).first() is not None

    def _build_lines(self, validated: ValidatedEntry) -> list[JournalLine]:
        return [
            JournalLine(
                line_number=line.line_number,
                account_id=line.account_id,
                debit_amount=line.debit_amount,
                credit_amount=line.credit_amount,
                description=line.description,
            )
            for line in validated.lines
        ]

    def _lock_draft(self, entry_id: UUID, operation: str) -> JournalEntry:
        entry = self.session.execute(
            select(JournalEntry)
            .where(JournalEntry.id == entry_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        if not is_editable(entry.status):
            logger.warning(
                "journal_draft_change_rejected",
                extra={
                    "entry_id": str(entry.id),
                    "status": entry.status.value,
                    "operation": operation,
                },
            )
            raise ImmutableEntryError(
                "JournalEntry",
                str(entry.id),
                f"cannot {operation} a {entry.status.value} entry; only drafts may change",
            )
        return entry

    # -------------------------------------------------------------------------
    # create / update / delete
    # -------------------------------------------------------------------------

    def create_draft(
        self,
        header: EntryHeader,
        lines: Sequence[LineSpec],
        actor_id: str,
    ) -> JournalEntryRecord:
        """
        Validate and store a new DRAFT entry.

        Raises:
            ValidationError: see JournalEntryValidator.
            DuplicateEntryNumberError: entry_number already in use.
        """
        validated = self.validate(header, lines)
        number = header.entry_number.strip()
        if self._number_taken(number):
            raise DuplicateEntryNumberError(number)

        entry = JournalEntry(
            entry_number=number,
            entry_date=header.entry_date,
            description=header.description or "",
            property_id=header.property_id,
            status=EntryStatus.DRAFT,
            total_debit=validated.total_debit,
            total_credit=validated.total_credit,
            created_by_id=actor_id,
            lines=self._build_lines(validated),
        )
        self.session.add(entry)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateEntryNumberError(number) from exc

        self._auditor.record_draft_created(entry.id, number, validated.total_debit, actor_id)
        logger.info(
            "journal_draft_created",
            extra={
                "entry_id": str(entry.id),
                "entry_number": number,
                "total_debit": str(validated.total_debit),
                "line_count": len(validated.lines),
            },
        )
        return JournalEntryRecord.from_model(entry)

    def update_draft(
        self,
        entry_id: UUID,
        patch: EntryPatch | None,
        lines: Sequence[LineSpec] | None,
        actor_id: str,
    ) -> JournalEntryRecord:
        """
        Edit a draft's header and/or replace its lines.

        ``lines=None`` keeps the current lines; any sequence replaces them
        wholesale.  The merged result is re-validated before it is written.

        Raises:
            EntryNotFoundError: unknown id.
            ImmutableEntryError: the entry is not a draft.
            ValidationError: the merged entry does not validate.
            DuplicateEntryNumberError: the new number is taken.
        """
        entry = self._lock_draft(entry_id, "edit")
        supplied = (patch or EntryPatch()).supplied()

        header = EntryHeader(
            entry_number=supplied.get("entry_number", entry.entry_number),
            entry_date=supplied.get("entry_date", entry.entry_date),
            description=supplied.get("description", entry.description),
            property_id=supplied.get("property_id", entry.property_id),
        )
        if lines is None:
            candidate = [
                LineSpec(
                    account_id=line.account_id,
                    debit_amount=line.debit_amount,
                    credit_amount=line.credit_amount,
                    description=line.description,
                )
                for line in entry.lines
            ]
        else:
            candidate = list(lines)
        validated = self.validate(header, candidate)

        number = header.entry_number.strip()
        if number != entry.entry_number and self._number_taken(number, exclude_id=entry.id):
            raise DuplicateEntryNumberError(number)

        changed = [name for name in supplied if getattr(entry, name) != supplied[name]]
        entry.entry_number = number
        entry.entry_date = header.entry_date
        entry.description = header.description or ""
        entry.property_id = header.property_id
        entry.total_debit = validated.total_debit
        entry.total_credit = validated.total_credit
        entry.updated_by_id = actor_id

        if lines is not None:
            # Old rows go first so the (entry, line_number) key is free again
            entry.lines.clear()
            self.session.flush()
            entry.lines.extend(self._build_lines(validated))
            changed.append("lines")
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateEntryNumberError(number) from exc

        self._auditor.record_draft_updated(entry.id, changed, actor_id)
        logger.info(
            "journal_draft_updated",
            extra={
                "entry_id": str(entry.id),
                "entry_number": entry.entry_number,
                "fields": sorted(changed),
                "total_debit": str(validated.total_debit),
            },
        )
        return JournalEntryRecord.from_model(entry)

    def delete_draft(self, entry_id: UUID, actor_id: str) -> None:
        """
        Delete a draft and its lines.

        Raises:
            EntryNotFoundError: unknown id.
            ImmutableEntryError: the entry is not a draft.
        """
        entry = self._lock_draft(entry_id, "delete")
        number = entry.entry_number
        self._auditor.record_draft_deleted(entry.id, number, actor_id)
        self.session.delete(entry)
        self.session.flush()
        logger.info(
            "journal_draft_deleted",
            extra={"entry_id": str(entry_id), "entry_number": number},
        )
