"""
Module: ledger_kernel.selectors.journal_selector
Responsibility: Read-only journal entry queries returning JournalEntryRecord
    DTOs with ordered lines.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Lines inside every record are ordered by line_number.
    - list_entries() orders by entry_date descending, then entry_number.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ledger_kernel.domain.dtos import EntryFilter, JournalEntryRecord
from ledger_kernel.models.journal import JournalEntry, JournalLine
from ledger_kernel.selectors.base import BaseSelector


class JournalSelector(BaseSelector[JournalEntry]):
    """
    Selector for journal entry queries.

    Non-goals:
        - Does NOT compute balances; use BalanceProjector for that.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def get_entry(self, entry_id: UUID) -> JournalEntryRecord | None:
        entry = self.session.execute(
            select(JournalEntry)
            .options(selectinload(JournalEntry.lines))
            .where(JournalEntry.id == entry_id)
        ).scalar_one_or_none()
        return JournalEntryRecord.from_model(entry) if entry is not None else None

    def get_by_number(self, entry_number: str) -> JournalEntryRecord | None:
        entry = self.session.execute(
            select(JournalEntry).where(JournalEntry.entry_number == entry_number)
        ).scalar_one_or_none()
        return JournalEntryRecord.from_model(entry) if entry is not None else None

    def list_entries(self, entry_filter: EntryFilter | None = None) -> list[JournalEntryRecord]:
        """
        Entries matching the filter, newest entry_date first.

        Date bounds are inclusive.
        """
        f = entry_filter or EntryFilter()
        query = select(JournalEntry).options(selectinload(JournalEntry.lines))
        if f.status is not None:
            query = query.where(JournalEntry.status == f.status)
        if f.start_date is not None:
            query = query.where(JournalEntry.entry_date >= f.start_date)
        if f.end_date is not None:
            query = query.where(JournalEntry.entry_date <= f.end_date)
        if f.property_id is not None:
            query = query.where(JournalEntry.property_id == f.property_id)
        query = query.order_by(JournalEntry.entry_date.desc(), JournalEntry.entry_number)
        if f.limit is not None:
            query = query.limit(f.limit)
        return [JournalEntryRecord.from_model(e) for e in self.session.execute(query).scalars()]

    def entries_for_account(self, account_id: UUID) -> list[JournalEntryRecord]:
        """Every entry with at least one line on ``account_id``, oldest first."""
        entry_ids = select(JournalLine.journal_entry_id).where(JournalLine.account_id == account_id)
        query = (
            select(JournalEntry)
            .options(selectinload(JournalEntry.lines))
            .where(JournalEntry.id.in_(entry_ids))
            .order_by(JournalEntry.entry_date, JournalEntry.entry_number)
        )
        return [JournalEntryRecord.from_model(e) for e in self.session.execute(query).scalars()]

    def is_account_referenced(self, account_id: UUID) -> bool:
        """True if any journal line, in any status, references the account."""
        return self.session.execute(
            select(JournalLine.id).where(JournalLine.account_id == account_id).limit(1)
        ).first() is not None
