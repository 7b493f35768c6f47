"""
Module: ledger_kernel.models.audit_event
Responsibility: Append-only audit log of account and journal lifecycle
    actions with actor attribution and timestamp.
Architecture position: Kernel > Models.  May import from db/.

Invariants enforced:
    - Rows are never updated or deleted (db/immutability.py).
    - payload_hash is the SHA-256 of the canonical JSON payload, so an
      out-of-band payload edit is detectable row by row.
    - entity_seq numbers the events of one entity 1, 2, 3, ...  Writers hold
      the entity's row lock, and uq_audit_entity_seq rejects a duplicate.

Non-goals:
    - No global hash chain or sequence counter.  A single chain would force
      every posting to serialize on the chain head, including postings that
      touch disjoint accounts.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UTCDateTime, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Account lifecycle
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DEACTIVATED = "account_deactivated"
    ACCOUNT_REACTIVATED = "account_reactivated"
    ACCOUNT_DELETED = "account_deleted"
    ACCOUNT_BALANCE_ADJUSTED = "account_balance_adjusted"

    # Journal lifecycle
    JOURNAL_DRAFT_CREATED = "journal_draft_created"
    JOURNAL_DRAFT_UPDATED = "journal_draft_updated"
    JOURNAL_DRAFT_DELETED = "journal_draft_deleted"
    JOURNAL_POSTED = "journal_posted"
    JOURNAL_VOIDED = "journal_voided"
    JOURNAL_REVERSAL_CREATED = "journal_reversal_created"


class AuditEvent(Base):
    """
    One audited action on one entity.

    Contract:
        AuditEvent rows are append-only.  Status transitions of journal
        entries always produce a row in the same transaction as the
        transition itself.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        UniqueConstraint("entity_id", "entity_seq", name="uq_audit_entity_seq"),
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    # "Account" or "JournalEntry"
    entity_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    entity_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    # Position in this entity's trail, starting at 1
    entity_seq: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    action: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    actor_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    occurred_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    payload: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )

    payload_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"
