"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Posted transactions cannot be modified, only reversed by new entries that
leave a visible trail.  The services already refuse to edit non-draft
entries; this module is the layer underneath them.  It catches a
modification made through any Session, including code that never goes
through JournalService or PostingService.

    session.flush()
         |
         v
    [before_flush]  --> account deletions  -----------> AccountReferencedError
    [before_update] --> _check_*_immutability() ------> ImmutableEntryError
    [before_delete] --> _check_*_delete() ------------> ImmutableEntryError
         |
         v
    SQL sent to database (only if checks pass)

A failed check raises inside flush; the surrounding transaction is rolled
back by session_scope and the database is never modified.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | When immutable                   | What may still change
----------------|----------------------------------|------------------------------
JournalEntry    | status POSTED                    | POSTED -> VOIDED stamp and
                |                                  | reversal link only
JournalEntry    | status VOIDED                    | nothing
JournalLine     | parent entry not DRAFT           | nothing
LedgerMovement  | always                           | nothing
AuditEvent      | always                           | nothing
Account         | account_type, once referenced    | everything else
Account         | delete, once referenced          | (deactivate instead)

updated_at / updated_by_id are audit metadata and may change on any row.

===============================================================================
USAGE
===============================================================================

Registered by init_engine_from_url() and create_tables().  Tests that need to plant corrupt data can
call unregister_immutability_listeners() and re-register afterwards.
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.exceptions import (
    AccountReclassificationError,
    AccountReferencedError,
    ImmutableEntryError,
)
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})

# Fields PostingService.void writes on the original entry
_VOID_STAMP_FIELDS = frozenset({
    "status",
    "voided_at",
    "voided_by_id",
    "void_reason",
    "reversed_by_id",
})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra) -> ImmutableEntryError:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "reason": reason,
            **extra,
        },
    )
    return ImmutableEntryError(entity_type=entity_type, entity_id=str(entity_id), reason=reason)


def _changed_fields(target) -> list[str]:
    return [
        attr.key
        for attr in inspect(target).attrs
        if attr.key not in _AUDIT_METADATA_FIELDS and attr.history.has_changes()
    ]


def _check_journal_entry_immutability(mapper, connection, target):
    """
    Block updates to posted/voided entries except the void stamp.

    The status *before* this flush decides:
        DRAFT  -> anything goes (this is drafting, or the posting itself)
        POSTED -> only the void stamp, and only towards VOIDED
        VOIDED -> nothing
    """
    from ledger_kernel.domain.entry_state import EntryStatus

    status_history = get_history(target, "status")
    if status_history.deleted:
        prior = EntryStatus(status_history.deleted[0])
    elif status_history.unchanged:
        prior = EntryStatus(status_history.unchanged[0])
    else:
        return

    if prior is EntryStatus.DRAFT:
        return

    changed = _changed_fields(target)
    if prior is EntryStatus.POSTED:
        illegal = [name for name in changed if name not in _VOID_STAMP_FIELDS]
        if "status" in changed and EntryStatus(target.status) is not EntryStatus.VOIDED:
            illegal.append("status")
    else:
        illegal = changed

    if illegal:
        raise _blocked(
            "JournalEntry",
            target.id,
            "UPDATE",
            f"cannot modify field '{illegal[0]}' on {prior.value} journal entry",
            fields=illegal,
        )


def _check_journal_entry_delete(mapper, connection, target):
    from ledger_kernel.domain.entry_state import EntryStatus

    status_history = get_history(target, "status")
    prior_values = status_history.deleted or status_history.unchanged or (target.status,)
    prior = EntryStatus(prior_values[0])
    if prior is not EntryStatus.DRAFT:
        raise _blocked(
            "JournalEntry",
            target.id,
            "DELETE",
            f"{prior.value} journal entries cannot be deleted",
        )


def _persisted_entry_status(connection, entry_id):
    from ledger_kernel.models.journal import JournalEntry

    return connection.execute(
        select(JournalEntry.status).where(JournalEntry.id == entry_id)
    ).scalar_one_or_none()


def _check_journal_line_immutability(mapper, connection, target):
    from ledger_kernel.domain.entry_state import EntryStatus

    status = _persisted_entry_status(connection, target.journal_entry_id)
    if status is not None and EntryStatus(status) is not EntryStatus.DRAFT:
        raise _blocked(
            "JournalLine",
            target.id,
            "UPDATE",
            f"journal lines cannot be modified once the entry is {EntryStatus(status).value}",
        )


def _check_journal_line_delete(mapper, connection, target):
    from ledger_kernel.domain.entry_state import EntryStatus

    status = _persisted_entry_status(connection, target.journal_entry_id)
    if status is not None and EntryStatus(status) is not EntryStatus.DRAFT:
        raise _blocked(
            "JournalLine",
            target.id,
            "DELETE",
            f"journal lines cannot be deleted once the entry is {EntryStatus(status).value}",
        )


def _check_movement_immutability(mapper, connection, target):
    raise _blocked("LedgerMovement", target.id, "UPDATE", "movements are append-only")


def _check_movement_delete(mapper, connection, target):
    raise _blocked("LedgerMovement", target.id, "DELETE", "movements are append-only")


def _check_audit_event_immutability(mapper, connection, target):
    raise _blocked("AuditEvent", target.id, "UPDATE", "audit events are append-only")


def _check_audit_event_delete(mapper, connection, target):
    raise _blocked("AuditEvent", target.id, "DELETE", "audit events are append-only")


def _account_is_referenced(connection, account_id) -> bool:
    from ledger_kernel.models.journal import JournalLine

    return connection.execute(
        select(JournalLine.id).where(JournalLine.account_id == account_id).limit(1)
    ).first() is not None


def _check_account_structural_immutability(mapper, connection, target):
    """Reclassifying a referenced account would rewrite historical reports."""
    hist = get_history(target, "account_type")
    if not hist.deleted or not hist.added:
        return
    old_type, new_type = hist.deleted[0], hist.added[0]
    if old_type == new_type:
        return
    if _account_is_referenced(connection, target.id):
        logger.error(
            "immutability_violation_blocked",
            extra={
                "entity_type": "Account",
                "entity_id": str(target.id),
                "operation": "UPDATE",
                "field": "account_type",
            },
        )
        raise AccountReclassificationError(
            account_id=str(target.id),
            current_type=getattr(old_type, "value", old_type),
            requested_type=getattr(new_type, "value", new_type),
        )


def _check_account_deletion_before_flush(session, flush_context, instances):
    """
    Refuse deletion of accounts referenced by journal lines or movements.

    Runs in SessionEvents.before_flush because mapper-level before_delete
    fires after the flush plan is already fixed.
    """
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.journal import JournalLine
    from ledger_kernel.models.movement import LedgerMovement

    for obj in list(session.deleted):
        if not isinstance(obj, Account):
            continue
        with session.no_autoflush:
            referenced = session.execute(
                select(JournalLine.id).where(JournalLine.account_id == obj.id).limit(1)
            ).first() or session.execute(
                select(LedgerMovement.id).where(LedgerMovement.account_id == obj.id).limit(1)
            ).first()
        if referenced:
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "Account",
                    "entity_id": str(obj.id),
                    "operation": "DELETE",
                    "reason": "account_referenced",
                },
            )
            raise AccountReferencedError(account_id=str(obj.id))


def _listeners():
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.audit_event import AuditEvent
    from ledger_kernel.models.journal import JournalEntry, JournalLine
    from ledger_kernel.models.movement import LedgerMovement

    return (
        (Session, "before_flush", _check_account_deletion_before_flush),
        (JournalEntry, "before_update", _check_journal_entry_immutability),
        (JournalEntry, "before_delete", _check_journal_entry_delete),
        (JournalLine, "before_update", _check_journal_line_immutability),
        (JournalLine, "before_delete", _check_journal_line_delete),
        (LedgerMovement, "before_update", _check_movement_immutability),
        (LedgerMovement, "before_delete", _check_movement_delete),
        (AuditEvent, "before_update", _check_audit_event_immutability),
        (AuditEvent, "before_delete", _check_audit_event_delete),
        (Account, "before_update", _check_account_structural_immutability),
    )


def register_immutability_listeners() -> None:
    """Register all immutability listeners.  Safe to call repeatedly."""
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove the immutability listeners.

    WARNING: Only use this in tests that plant inconsistent data on purpose.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
