"""
LedgerService -- public entry point of the ledger kernel.

Responsibility:
    One method per ledger operation.  Each call opens its own transaction
    (session_scope), wires the services onto that session, runs, and
    returns frozen DTOs built before the session closes.  This is the only
    place in the kernel that commits, rolls back, or retries.

Architecture position:
    Kernel > Services (facade).  Callers (HTTP handlers, importers, sync
    jobs) use this class and nothing below it.

Retry policy:
    Only transient storage conflicts are retried:
        PostgreSQL 40001 serialization_failure
        PostgreSQL 40P01 deadlock_detected
        PostgreSQL 55P03 lock_not_available
        SQLite     "database is locked"
    Attempt n sleeps n * lock_retry_backoff_seconds before attempt n + 1.
    When the last attempt fails, TransactionConflictError is raised.  Every
    other error (all LedgerError subclasses included) propagates on the
    first occurrence, after session_scope has rolled the transaction back.

Failure modes:
    - Any LedgerError from the underlying services, unchanged.
    - TransactionConflictError after the retry budget is spent.
"""

import time
from collections.abc import Callable, Sequence
from datetime import date
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.config import LedgerSettings, init_engine_from_settings
from ledger_kernel.db.engine import get_session_factory, session_scope
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    AccountFilter,
    AccountInfo,
    AccountPatch,
    AccountSpec,
    AuditRecord,
    EntryFilter,
    EntryHeader,
    EntryPatch,
    JournalEntryRecord,
    LineSpec,
    PostingResult,
    ValidatedEntry,
    VoidResult,
)
from ledger_kernel.domain.validator import JournalEntryValidator
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    EntryNotFoundError,
    TransactionConflictError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.selectors.balance_projector import (
    BalanceDiscrepancy,
    BalanceProjector,
    BalanceSheet,
    CashFlow,
    ProfitAndLoss,
    TrialBalance,
)
from ledger_kernel.selectors.journal_selector import JournalSelector
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.journal_service import JournalService
from ledger_kernel.services.posting_service import PostingService

logger = get_logger("services.ledger")

T = TypeVar("T")

_TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


def is_transient_conflict(exc: DBAPIError) -> bool:
    """True for lock/serialization conflicts that a fresh attempt may clear."""
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in _TRANSIENT_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()


class LedgerService:
    """
    Transactional facade over the ledger.

    Contract:
        Every public method is one atomic unit of work.  Nothing is visible
        to other sessions until the method returns; if it raises, nothing
        it did is visible at all.

    Thread safety:
        Safe to share between threads.  Each call creates its own Session
        from the shared factory.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        settings: LedgerSettings | None = None,
    ):
        self._session_factory = session_factory
        self.clock = clock or SystemClock()
        self.settings = settings or LedgerSettings()
        self._validator = JournalEntryValidator()

    @classmethod
    def from_settings(cls, settings: LedgerSettings, clock: Clock | None = None) -> "LedgerService":
        """Initialize logging and the engine from settings and return a service on it."""
        init_engine_from_settings(settings)
        return cls(get_session_factory(), clock=clock, settings=settings)

    # -------------------------------------------------------------------------
    # Transaction plumbing
    # -------------------------------------------------------------------------

    def _factory(self) -> sessionmaker[Session]:
        return self._session_factory or get_session_factory()

    def _run(
        self,
        operation: str,
        work: Callable[[Session], T],
        actor_id: str | None = None,
        entry_id: UUID | None = None,
        account_id: UUID | None = None,
    ) -> T:
        attempts = self.settings.lock_retry_attempts
        backoff = self.settings.lock_retry_backoff_seconds
        with LogContext.bind(
            operation=operation,
            actor_id=actor_id,
            entry_id=str(entry_id) if entry_id else None,
            account_id=str(account_id) if account_id else None,
        ):
            for attempt in range(1, attempts + 1):
                try:
                    with session_scope(self._factory()) as session:
                        return work(session)
                except DBAPIError as exc:
                    if not is_transient_conflict(exc):
                        raise
                    if attempt == attempts:
                        logger.error(
                            "transaction_conflict_exhausted",
                            extra={"attempts": attempts, "reason": str(exc.orig)},
                        )
                        raise TransactionConflictError(operation, attempts) from exc
                    logger.warning(
                        "transaction_retry",
                        extra={
                            "attempt": attempt,
                            "max_attempts": attempts,
                            "reason": str(exc.orig),
                        },
                    )
                    time.sleep(backoff * attempt)
        raise AssertionError("unreachable")  # pragma: no cover

    def _posting(self, session: Session) -> PostingService:
        return PostingService(session, self.clock, AuditorService(session, self.clock), self._validator)

    def _registry(self, session: Session) -> AccountRegistry:
        auditor = AuditorService(session, self.clock)
        posting = PostingService(session, self.clock, auditor, self._validator)
        return AccountRegistry(session, self.clock, auditor, posting)

    def _journal(self, session: Session) -> JournalService:
        return JournalService(session, self.clock, AuditorService(session, self.clock), self._validator)

    # -------------------------------------------------------------------------
    # Chart of accounts
    # -------------------------------------------------------------------------

    def create_account(self, spec: AccountSpec, actor_id: str) -> AccountInfo:
        return self._run(
            "create_account",
            lambda s: self._registry(s).create_account(spec, actor_id),
            actor_id=actor_id,
        )

    def update_account(self, account_id: UUID, patch: AccountPatch, actor_id: str) -> AccountInfo:
        return self._run(
            "update_account",
            lambda s: self._registry(s).update_account(account_id, patch, actor_id),
            actor_id=actor_id,
            account_id=account_id,
        )

    def deactivate_account(self, account_id: UUID, actor_id: str) -> AccountInfo:
        return self._run(
            "deactivate_account",
            lambda s: self._registry(s).deactivate_account(account_id, actor_id),
            actor_id=actor_id,
            account_id=account_id,
        )

    def delete_account(self, account_id: UUID, actor_id: str) -> None:
        self._run(
            "delete_account",
            lambda s: self._registry(s).delete_account(account_id, actor_id),
            actor_id=actor_id,
            account_id=account_id,
        )

    def get_account(self, account_id: UUID) -> AccountInfo:
        """Raises AccountNotFoundError for an unknown id."""
        return self._run(
            "get_account",
            lambda s: AccountSelector(s).require(account_id),
            account_id=account_id,
        )

    def get_account_by_number(self, account_number: str) -> AccountInfo:
        def work(session: Session) -> AccountInfo:
            info = AccountSelector(session).get_by_number(account_number)
            if info is None:
                raise AccountNotFoundError(account_number)
            return info

        return self._run("get_account_by_number", work)

    def list_accounts(self, account_filter: AccountFilter | None = None) -> list[AccountInfo]:
        return self._run("list_accounts", lambda s: AccountSelector(s).list_accounts(account_filter))

    def resolve_parent_chain(self, account_id: UUID) -> list[AccountInfo]:
        """Ancestors of the account, nearest parent first."""
        return self._run(
            "resolve_parent_chain",
            lambda s: AccountSelector(s).parent_chain(account_id),
            account_id=account_id,
        )

    # -------------------------------------------------------------------------
    # Journal entries
    # -------------------------------------------------------------------------

    def validate(self, header: EntryHeader, lines: Sequence[LineSpec]) -> ValidatedEntry:
        """Check a candidate entry without storing it or locking anything."""
        return self._run("validate", lambda s: self._journal(s).validate(header, lines))

    def create_draft(
        self,
        header: EntryHeader,
        lines: Sequence[LineSpec],
        actor_id: str,
    ) -> JournalEntryRecord:
        return self._run(
            "create_draft",
            lambda s: self._journal(s).create_draft(header, lines, actor_id),
            actor_id=actor_id,
        )

    def update_draft(
        self,
        entry_id: UUID,
        actor_id: str,
        patch: EntryPatch | None = None,
        lines: Sequence[LineSpec] | None = None,
    ) -> JournalEntryRecord:
        return self._run(
            "update_draft",
            lambda s: self._journal(s).update_draft(entry_id, patch, lines, actor_id),
            actor_id=actor_id,
            entry_id=entry_id,
        )

    def delete_draft(self, entry_id: UUID, actor_id: str) -> None:
        self._run(
            "delete_draft",
            lambda s: self._journal(s).delete_draft(entry_id, actor_id),
            actor_id=actor_id,
            entry_id=entry_id,
        )

    def get_entry(self, entry_id: UUID) -> JournalEntryRecord:
        """Raises EntryNotFoundError for an unknown id."""

        def work(session: Session) -> JournalEntryRecord:
            record = JournalSelector(session).get_entry(entry_id)
            if record is None:
                raise EntryNotFoundError(str(entry_id))
            return record

        return self._run("get_entry", work, entry_id=entry_id)

    def list_entries(self, entry_filter: EntryFilter | None = None) -> list[JournalEntryRecord]:
        return self._run("list_entries", lambda s: JournalSelector(s).list_entries(entry_filter))

    def post(self, entry_id: UUID, actor_id: str) -> PostingResult:
        return self._run(
            "post",
            lambda s: self._posting(s).post(entry_id, actor_id),
            actor_id=actor_id,
            entry_id=entry_id,
        )

    def void(
        self,
        entry_id: UUID,
        actor_id: str,
        reason: str | None = None,
        reversal_entry_number: str | None = None,
        reversal_date: date | None = None,
    ) -> VoidResult:
        return self._run(
            "void",
            lambda s: self._posting(s).void(
                entry_id,
                actor_id,
                reason=reason,
                reversal_entry_number=reversal_entry_number,
                reversal_date=reversal_date,
            ),
            actor_id=actor_id,
            entry_id=entry_id,
        )

    def audit_trail(self, entity_id: UUID) -> list[AuditRecord]:
        """Audit events for an account or entry, oldest first."""
        return self._run(
            "audit_trail",
            lambda s: [
                AuditRecord.from_model(e)
                for e in AuditorService(s, self.clock).get_trail(entity_id)
            ],
        )

    def verify_audit_hashes(self) -> list[UUID]:
        return self._run(
            "verify_audit_hashes",
            lambda s: AuditorService(s, self.clock).verify_payload_hashes(),
        )

    # -------------------------------------------------------------------------
    # Balances and reports
    # -------------------------------------------------------------------------

    def account_balance_as_of(self, account_id: UUID, as_of: date | None = None) -> Decimal:
        return self._run(
            "account_balance_as_of",
            lambda s: BalanceProjector(s).account_balance_as_of(account_id, as_of),
            account_id=account_id,
        )

    def rollup_balance(self, account_id: UUID, as_of: date | None = None) -> Decimal:
        return self._run(
            "rollup_balance",
            lambda s: BalanceProjector(s).rollup_balance(account_id, as_of),
            account_id=account_id,
        )

    def trial_balance(self, as_of: date | None = None) -> TrialBalance:
        return self._run("trial_balance", lambda s: BalanceProjector(s).trial_balance(as_of))

    def net_income(self, start: date | None = None, end: date | None = None) -> Decimal:
        return self._run("net_income", lambda s: BalanceProjector(s).net_income(start, end))

    def profit_and_loss(self, start: date | None = None, end: date | None = None) -> ProfitAndLoss:
        return self._run("profit_and_loss", lambda s: BalanceProjector(s).profit_and_loss(start, end))

    def balance_sheet(self, as_of: date | None = None) -> BalanceSheet:
        return self._run("balance_sheet", lambda s: BalanceProjector(s).balance_sheet(as_of))

    def cash_flow(self, start: date | None = None, end: date | None = None) -> CashFlow:
        return self._run("cash_flow", lambda s: BalanceProjector(s).cash_flow(start, end))

    def reconcile(self) -> list[BalanceDiscrepancy]:
        return self._run("reconcile", lambda s: BalanceProjector(s).reconcile())
