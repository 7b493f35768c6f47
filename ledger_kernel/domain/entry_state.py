"""
Entry State -- Journal entry lifecycle as an explicit state machine.

Responsibility:
    Declares the three entry statuses and the legal transitions between
    them.  Call sites never compare status strings; they ask ``transition``
    for the next state and receive either the target or a typed error.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - DRAFT -> POSTED happens exactly once per entry.
    - POSTED -> VOIDED happens exactly once per entry.
    - VOIDED is terminal.  No transition leads back to DRAFT.

Failure modes:
    - InvalidTransitionError for any pair not in VALID_TRANSITIONS.
"""

from enum import Enum

from ledger_kernel.exceptions import InvalidTransitionError


class EntryStatus(str, Enum):
    """
    Status of a journal entry.

    Contract:
        Lifecycle: DRAFT -> POSTED -> VOIDED.
        DRAFT entries may be edited or deleted freely.  POSTED and VOIDED
        entries are immutable apart from the void stamp and reversal link.
    """

    DRAFT = "draft"
    POSTED = "posted"
    VOIDED = "voided"


VALID_TRANSITIONS: dict[EntryStatus, frozenset[EntryStatus]] = {
    EntryStatus.DRAFT: frozenset({EntryStatus.POSTED}),
    EntryStatus.POSTED: frozenset({EntryStatus.VOIDED}),
    # Terminal
    EntryStatus.VOIDED: frozenset(),
}

_ACTION_FOR_TARGET = {
    EntryStatus.POSTED: "post",
    EntryStatus.VOIDED: "void",
    EntryStatus.DRAFT: "reopen",
}


def can_transition(current: EntryStatus, target: EntryStatus) -> bool:
    return EntryStatus(target) in VALID_TRANSITIONS[EntryStatus(current)]


def transition(entry_id: object, current: EntryStatus, target: EntryStatus) -> EntryStatus:
    """
    Return ``target`` if ``current -> target`` is legal.

    Raises:
        InvalidTransitionError: naming the attempted action and the status
            the entry is actually in.
    """
    current = EntryStatus(current)
    target = EntryStatus(target)
    if target not in VALID_TRANSITIONS[current]:
        raise InvalidTransitionError(
            entry_id=str(entry_id),
            status=current.value,
            action=_ACTION_FOR_TARGET[target],
        )
    return target


def is_editable(status: EntryStatus) -> bool:
    """Only drafts have never touched balances."""
    return EntryStatus(status) is EntryStatus.DRAFT
