"""
AccountRegistry -- chart of accounts lifecycle.

Responsibility:
    Creates, edits, deactivates and deletes accounts.  Owns the rules that
    keep the classification tree trustworthy for historical reports:
    subtype must belong to type, account numbers are unique, the parent tree
    has no cycles, and a referenced account keeps its type forever.

Architecture position:
    Kernel > Services.  Runs inside the transaction opened by
    LedgerService; never commits.  Opening balances are handed to
    PostingService, which stays the only balance writer.

Invariants enforced:
    - normal_balance is derived from account_type, never supplied.
    - account_type is frozen once a journal line or movement references the
      account (AccountReclassificationError).
    - Every parent reassignment is checked for cycles (CycleError).
    - Referenced accounts and accounts with children are never deleted
      (AccountReferencedError).

Failure modes:
    - ValidationError subclasses for malformed specs and duplicate numbers.
    - AccountNotFoundError for unknown ids, including an unknown parent.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.classification import (
    AccountType,
    check_subtype,
    normal_balance_for,
)
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import AccountInfo, AccountPatch, AccountSpec
from ledger_kernel.exceptions import (
    AccountNotFoundError,
    AccountReclassificationError,
    AccountReferencedError,
    CycleError,
    DuplicateAccountNumberError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.journal import JournalLine
from ledger_kernel.models.movement import LedgerMovement
from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.posting_service import PostingService

logger = get_logger("services.account_registry")

_PATCHABLE_FIELDS = (
    "account_name",
    "account_type",
    "account_subtype",
    "description",
    "parent_account_id",
)


class AccountRegistry(BaseService[Account]):
    """
    Write side of the chart of accounts.

    Contract:
        Every method returns an AccountInfo snapshot taken after the flush,
        and writes exactly one audit event per observable change.

    Non-goals:
        - Does NOT move balances except through PostingService's
          opening-balance path.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
        posting: PostingService | None = None,
    ):
        super().__init__(session, clock)
        self._auditor = auditor or AuditorService(session, self.clock)
        self._posting = posting or PostingService(session, self.clock, auditor=self._auditor)
        self._accounts = AccountSelector(session)

    def _lock(self, account_id: UUID) -> Account:
        account = self.session.execute(
            select(Account)
            .where(Account.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account

    def _is_referenced(self, account_id: UUID) -> bool:
        line = self.session.execute(
            select(JournalLine.id).where(JournalLine.account_id == account_id).limit(1)
        ).first()
        if line is not None:
            return True
        return self.session.execute(
            select(LedgerMovement.id).where(LedgerMovement.account_id == account_id).limit(1)
        ).first() is not None

    # -------------------------------------------------------------------------
    # create
    # -------------------------------------------------------------------------

    def create_account(self, spec: AccountSpec, actor_id: str) -> AccountInfo:
        """
        Create an account, optionally with an opening balance.

        Raises:
            ValidationError: blank number or name.
            InvalidAccountClassificationError: subtype not allowed for type.
            DuplicateAccountNumberError: number already in use.
            AccountNotFoundError: parent_account_id does not exist.
        """
        account_type, account_subtype = check_subtype(spec.account_type, spec.account_subtype)
        number = (spec.account_number or "").strip()
        name = (spec.account_name or "").strip()
        if not number:
            raise ValidationError("account number must not be blank")
        if not name:
            raise ValidationError("account name must not be blank")

        if self._accounts.get_by_number(number) is not None:
            raise DuplicateAccountNumberError(number)
        if spec.parent_account_id is not None:
            self._accounts.require(spec.parent_account_id)

        account = Account(
            account_number=number,
            account_name=name,
            account_type=account_type,
            account_subtype=account_subtype,
            normal_balance=normal_balance_for(account_type),
            is_active=spec.is_active,
            parent_account_id=spec.parent_account_id,
            description=spec.description,
            created_by_id=actor_id,
        )
        self.session.add(account)
        try:
            self.session.flush()
        except IntegrityError as exc:
            # Lost a race with a concurrent create of the same number
            raise DuplicateAccountNumberError(number) from exc

        self._auditor.record_account_created(account.id, number, actor_id)
        logger.info(
            "account_created",
            extra={
                "account_id": str(account.id),
                "account_number": number,
                "account_type": account_type.value,
                "account_subtype": account_subtype.value if account_subtype else None,
            },
        )

        if spec.opening_balance:
            self._posting.apply_opening_balance(
                account.id,
                spec.opening_balance,
                spec.opening_balance_date or self.clock.today(),
                actor_id,
            )
        return AccountInfo.from_model(account)

    # -------------------------------------------------------------------------
    # update
    # -------------------------------------------------------------------------

    def update_account(self, account_id: UUID, patch: AccountPatch, actor_id: str) -> AccountInfo:
        """
        Apply a partial update.

        ``is_active`` in the patch deactivates or reactivates; that change is
        audited separately from the other fields.

        Raises:
            AccountNotFoundError: unknown account or unknown new parent.
            AccountReclassificationError: type change on a referenced account.
            InvalidAccountClassificationError: subtype not valid for the
                (possibly new) type.
            CycleError: the new parent is the account itself or a descendant.
        """
        account = self._lock(account_id)
        supplied = patch.supplied()

        new_type = AccountType(supplied.get("account_type", account.account_type))
        if new_type is not account.account_type and self._is_referenced(account.id):
            logger.warning(
                "account_reclassification_rejected",
                extra={
                    "account_id": str(account.id),
                    "current_type": account.account_type.value,
                    "requested_type": new_type.value,
                },
            )
            raise AccountReclassificationError(
                str(account.id), account.account_type.value, new_type.value,
            )

        if "account_subtype" in supplied or "account_type" in supplied:
            subtype = supplied.get("account_subtype", account.account_subtype)
            if "account_type" in supplied and "account_subtype" not in supplied:
                # A type change without a subtype drops a subtype that no longer fits
                try:
                    _, subtype = check_subtype(new_type, subtype)
                except ValidationError:
                    subtype = None
            _, subtype = check_subtype(new_type, subtype)
            supplied["account_subtype"] = subtype
            supplied["account_type"] = new_type

        if "account_name" in supplied:
            name = (supplied["account_name"] or "").strip()
            if not name:
                raise ValidationError("account name must not be blank")
            supplied["account_name"] = name

        if supplied.get("parent_account_id") is not None:
            parent_id = supplied["parent_account_id"]
            self._accounts.require(parent_id)
            if self._accounts.would_create_cycle(account.id, parent_id):
                logger.warning(
                    "account_cycle_rejected",
                    extra={"account_id": str(account.id), "parent_account_id": str(parent_id)},
                )
                raise CycleError(str(account.id), str(parent_id))

        changes: dict[str, tuple[Any, Any]] = {}
        old_normal_balance = account.normal_balance
        for field_name in _PATCHABLE_FIELDS:
            if field_name not in supplied:
                continue
            old, new = getattr(account, field_name), supplied[field_name]
            if old != new:
                changes[field_name] = (old, new)
                setattr(account, field_name, new)
        if "account_type" in changes:
            account.normal_balance = normal_balance_for(new_type)
            if account.normal_balance != old_normal_balance:
                changes["normal_balance"] = (old_normal_balance, account.normal_balance)

        active_changed = "is_active" in supplied and bool(supplied["is_active"]) != account.is_active
        if active_changed:
            account.is_active = bool(supplied["is_active"])

        if not changes and not active_changed:
            return AccountInfo.from_model(account)

        account.updated_by_id = actor_id
        self.session.flush()

        if changes:
            self._auditor.record_account_updated(account.id, changes, actor_id)
            logger.info(
                "account_updated",
                extra={"account_id": str(account.id), "fields": sorted(changes)},
            )
        if active_changed:
            self._auditor.record_account_active_changed(account.id, account.is_active, actor_id)
            logger.info(
                "account_deactivated" if not account.is_active else "account_reactivated",
                extra={"account_id": str(account.id), "account_number": account.account_number},
            )
        return AccountInfo.from_model(account)

    def deactivate_account(self, account_id: UUID, actor_id: str) -> AccountInfo:
        """Soft-disable an account.  Already inactive accounts are left as they are."""
        return self.update_account(account_id, AccountPatch(is_active=False), actor_id)

    # -------------------------------------------------------------------------
    # delete
    # -------------------------------------------------------------------------

    def delete_account(self, account_id: UUID, actor_id: str) -> None:
        """
        Hard-delete an account that nothing refers to.

        Raises:
            AccountNotFoundError: unknown id.
            AccountReferencedError: journal lines or movements reference the
                account, or it has child accounts.
        """
        account = self._lock(account_id)
        if self._is_referenced(account.id):
            raise AccountReferencedError(str(account.id))
        if self._accounts.has_children(account.id):
            raise AccountReferencedError(str(account.id), reason="it has child accounts")

        number = account.account_number
        self._auditor.record_account_deleted(account.id, number, actor_id)
        self.session.delete(account)
        self.session.flush()
        logger.info(
            "account_deleted",
            extra={"account_id": str(account_id), "account_number": number},
        )
