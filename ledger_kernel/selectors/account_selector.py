"""
Module: ledger_kernel.selectors.account_selector
Responsibility: Read-only chart-of-accounts queries: lookup, filtered
    listing, snapshots for the validator, and walks of the parent tree.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - list_accounts() is ordered by account_number.
    - parent_chain() never loops: a revisited id raises CycleError instead
      of walking forever over corrupted data.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.dtos import AccountFilter, AccountInfo
from ledger_kernel.exceptions import AccountNotFoundError, CycleError
from ledger_kernel.models.account import Account
from ledger_kernel.selectors.base import BaseSelector


class AccountSelector(BaseSelector[Account]):
    """
    Selector for account queries.

    Non-goals:
        - Does NOT compute balances from movements; see BalanceProjector.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def get(self, account_id: UUID) -> AccountInfo | None:
        account = self.session.get(Account, account_id)
        return AccountInfo.from_model(account) if account is not None else None

    def require(self, account_id: UUID) -> AccountInfo:
        """
        Raises:
            AccountNotFoundError: if no account has this id.
        """
        info = self.get(account_id)
        if info is None:
            raise AccountNotFoundError(str(account_id))
        return info

    def get_by_number(self, account_number: str) -> AccountInfo | None:
        account = self.session.execute(
            select(Account).where(Account.account_number == account_number)
        ).scalar_one_or_none()
        return AccountInfo.from_model(account) if account is not None else None

    def list_accounts(self, account_filter: AccountFilter | None = None) -> list[AccountInfo]:
        """Accounts matching the filter, ordered by account_number."""
        f = account_filter or AccountFilter()
        query = select(Account)
        if f.account_type is not None:
            query = query.where(Account.account_type == f.account_type)
        if f.account_subtype is not None:
            query = query.where(Account.account_subtype == f.account_subtype)
        if f.active_only:
            query = query.where(Account.is_active.is_(True))
        if f.parent_account_id is not None:
            query = query.where(Account.parent_account_id == f.parent_account_id)
        query = query.order_by(Account.account_number)
        return [AccountInfo.from_model(a) for a in self.session.execute(query).scalars()]

    def snapshot(self, account_ids: Iterable[UUID]) -> dict[UUID, AccountInfo]:
        """
        AccountInfo for every existing id in ``account_ids``.

        Missing ids are simply absent from the result; the validator turns
        that into UnknownAccountError with the offending line number.
        """
        ids = set(account_ids)
        if not ids:
            return {}
        rows = self.session.execute(select(Account).where(Account.id.in_(ids))).scalars()
        return {a.id: AccountInfo.from_model(a) for a in rows}

    def parent_chain(self, account_id: UUID) -> list[AccountInfo]:
        """
        Ancestors of ``account_id``, nearest parent first, root last.

        Raises:
            AccountNotFoundError: if the account does not exist.
            CycleError: if the stored tree contains a cycle.
        """
        current = self.require(account_id)
        chain: list[AccountInfo] = []
        seen = {current.id}
        while current.parent_account_id is not None:
            if current.parent_account_id in seen:
                raise CycleError(str(account_id), str(current.parent_account_id))
            parent = self.require(current.parent_account_id)
            chain.append(parent)
            seen.add(parent.id)
            current = parent
        return chain

    def would_create_cycle(self, account_id: UUID, new_parent_id: UUID) -> bool:
        """True if making ``new_parent_id`` the parent of ``account_id`` closes a loop."""
        if new_parent_id == account_id:
            return True
        return any(a.id == account_id for a in self.parent_chain(new_parent_id))

    def descendant_ids(self, account_id: UUID) -> set[UUID]:
        """All ids below ``account_id`` in the tree (excluding itself)."""
        rows = self.session.execute(
            select(Account.id, Account.parent_account_id).where(
                Account.parent_account_id.is_not(None)
            )
        ).all()
        children: dict[UUID, list[UUID]] = {}
        for child_id, parent_id in rows:
            children.setdefault(parent_id, []).append(child_id)

        found: set[UUID] = set()
        stack = [account_id]
        while stack:
            for child_id in children.get(stack.pop(), ()):
                if child_id not in found and child_id != account_id:
                    found.add(child_id)
                    stack.append(child_id)
        return found

    def has_children(self, account_id: UUID) -> bool:
        return self.session.execute(
            select(Account.id).where(Account.parent_account_id == account_id).limit(1)
        ).first() is not None
