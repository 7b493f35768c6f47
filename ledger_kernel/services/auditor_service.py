"""
AuditorService -- append-only audit trail for ledger lifecycle actions.

Responsibility:
    Records who did what to which account or journal entry, and when.
    Every status transition (draft created, posted, voided) and every
    account lifecycle change writes one AuditEvent in the same transaction
    as the change itself, so the trail can never disagree with the ledger.

Architecture position:
    Kernel > Services.  Called by AccountRegistry, JournalService and
    PostingService; never commits.

Invariants enforced:
    - Audit events are append-only (ORM listeners in db/immutability.py).
    - payload_hash == SHA-256(canonical JSON payload) at insert time;
      verify_payload_hashes() re-checks it for every row.

Failure modes:
    - TypeError from canonicalization if a payload carries an unsupported
      type (programming error, surfaces immediately).
"""

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_event import AuditAction, AuditEvent
from ledger_kernel.services.base import BaseService
from ledger_kernel.utils.hashing import hash_payload, json_safe

logger = get_logger("services.auditor")

ACCOUNT = "Account"
JOURNAL_ENTRY = "JournalEntry"


class AuditorService(BaseService[AuditEvent]):
    """
    Writes and reads audit events.

    Contract:
        The record_* methods add and flush one AuditEvent each.  Payload
        values may be Decimal/UUID/date; they are stored as their canonical
        JSON text ("1200.00", ISO dates).

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT chain events globally (see models/audit_event.py).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: str,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        payload_data = json_safe(payload or {})
        # Callers hold the entity's row lock (or created it in this transaction).
        last_seq = self.session.execute(
            select(func.max(AuditEvent.entity_seq)).where(AuditEvent.entity_id == entity_id)
        ).scalar()
        audit_event = AuditEvent(
            entity_type=entity_type,
            entity_id=entity_id,
            entity_seq=(last_seq or 0) + 1,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self.clock.now(),
            payload=payload_data,
            payload_hash=hash_payload(payload_data),
        )
        self.session.add(audit_event)
        self.session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
            },
        )
        return audit_event

    # Account lifecycle

    def record_account_created(self, account_id: UUID, account_number: str, actor_id: str) -> AuditEvent:
        return self._create_audit_event(
            ACCOUNT, account_id, AuditAction.ACCOUNT_CREATED, actor_id,
            {"account_number": account_number},
        )

    def record_account_updated(
        self,
        account_id: UUID,
        changes: dict[str, tuple[Any, Any]],
        actor_id: str,
    ) -> AuditEvent:
        """``changes`` maps field name to (old, new)."""
        return self._create_audit_event(
            ACCOUNT, account_id, AuditAction.ACCOUNT_UPDATED, actor_id,
            {"changes": {name: {"old": old, "new": new} for name, (old, new) in changes.items()}},
        )

    def record_account_active_changed(self, account_id: UUID, is_active: bool, actor_id: str) -> AuditEvent:
        action = AuditAction.ACCOUNT_REACTIVATED if is_active else AuditAction.ACCOUNT_DEACTIVATED
        return self._create_audit_event(ACCOUNT, account_id, action, actor_id, {"is_active": is_active})

    def record_account_deleted(self, account_id: UUID, account_number: str, actor_id: str) -> AuditEvent:
        return self._create_audit_event(
            ACCOUNT, account_id, AuditAction.ACCOUNT_DELETED, actor_id,
            {"account_number": account_number},
        )

    def record_balance_adjusted(
        self,
        account_id: UUID,
        amount: Decimal,
        as_of: date,
        reason: str,
        actor_id: str,
    ) -> AuditEvent:
        """Any balance change that did not come from a posted entry."""
        return self._create_audit_event(
            ACCOUNT, account_id, AuditAction.ACCOUNT_BALANCE_ADJUSTED, actor_id,
            {"amount": amount, "as_of": as_of, "reason": reason},
        )

    # Journal lifecycle

    def record_draft_created(self, entry_id: UUID, entry_number: str, total: Decimal, actor_id: str) -> AuditEvent:
        return self._create_audit_event(
            JOURNAL_ENTRY, entry_id, AuditAction.JOURNAL_DRAFT_CREATED, actor_id,
            {"entry_number": entry_number, "total": total, "status": "draft"},
        )

    def record_draft_updated(self, entry_id: UUID, fields: list[str], actor_id: str) -> AuditEvent:
        return self._create_audit_event(
            JOURNAL_ENTRY, entry_id, AuditAction.JOURNAL_DRAFT_UPDATED, actor_id,
            {"fields": sorted(fields)},
        )

    def record_draft_deleted(self, entry_id: UUID, entry_number: str, actor_id: str) -> AuditEvent:
        return self._create_audit_event(
            JOURNAL_ENTRY, entry_id, AuditAction.JOURNAL_DRAFT_DELETED, actor_id,
            {"entry_number": entry_number},
        )

    def record_posting(
        self,
        entry_id: UUID,
        entry_number: str,
        entry_date: date,
        total: Decimal,
        line_count: int,
        actor_id: str,
    ) -> AuditEvent:
        return self._create_audit_event(
            JOURNAL_ENTRY, entry_id, AuditAction.JOURNAL_POSTED, actor_id,
            {
                "entry_number": entry_number,
                "entry_date": entry_date,
                "total": total,
                "line_count": line_count,
                "from_status": "draft",
                "to_status": "posted",
            },
        )

    def record_reversal_created(
        self,
        reversal_id: UUID,
        original_entry_id: UUID,
        actor_id: str,
    ) -> AuditEvent:
        return self._create_audit_event(
            JOURNAL_ENTRY, reversal_id, AuditAction.JOURNAL_REVERSAL_CREATED, actor_id,
            {"reversal_of_id": original_entry_id},
        )

    def record_void(
        self,
        entry_id: UUID,
        reversal_id: UUID,
        reason: str | None,
        actor_id: str,
    ) -> AuditEvent:
        return self._create_audit_event(
            JOURNAL_ENTRY, entry_id, AuditAction.JOURNAL_VOIDED, actor_id,
            {
                "reversed_by_id": reversal_id,
                "reason": reason,
                "from_status": "posted",
                "to_status": "voided",
            },
        )

    # Read side

    def get_trail(self, entity_id: UUID) -> list[AuditEvent]:
        """All events for one entity, oldest first."""
        return list(
            self.session.execute(
                select(AuditEvent)
                .where(AuditEvent.entity_id == entity_id)
                .order_by(AuditEvent.entity_seq)
            ).scalars()
        )

    def verify_payload_hashes(self) -> list[UUID]:
        """Ids of audit events whose stored payload no longer matches its hash."""
        mismatched = [
            event.id
            for event in self.session.execute(select(AuditEvent)).scalars()
            if hash_payload(event.payload or {}) != event.payload_hash
        ]
        if mismatched:
            logger.critical(
                "audit_payload_hash_mismatch",
                extra={"count": len(mismatched), "event_ids": [str(i) for i in mismatched]},
            )
        return mismatched
