"""User hierarchy: creator/parent/child edges and modify/delete checks.

An edge is recorded on both accounts: the parent lists the child in
``hierarchy.childUsers`` and the child names the parent in
``hierarchy.createdBy`` and ``hierarchy.parentUser``.  ``record_child``
returns updated copies and never mutates its inputs; persisting both
copies atomically is the storage layer's job
(:meth:`AccountStore.insert_child_account`).
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Mapping
from typing import Any

from radaccess.core.models import Account, Decision
from radaccess.rbac import ADMIN_ROLES, Role, to_role

logger = logging.getLogger("radaccess.policy.hierarchy")
_audit_logger = logging.getLogger("radaccess.audit")


def _created_by(target: Account | Mapping[str, Any]) -> str | None:
    if isinstance(target, Account):
        return target.hierarchy.created_by
    hierarchy = target.get("hierarchy") or {}
    return hierarchy.get("createdBy", hierarchy.get("created_by"))


def _role(target: Account | Mapping[str, Any]) -> Role | None:
    if isinstance(target, Account):
        return target.role
    return to_role(target.get("role"))


def _target_id(target: Account | Mapping[str, Any]) -> str | None:
    if isinstance(target, Account):
        return target.id
    return target.get("id", target.get("_id"))


def can_modify(actor: Account, target: Account | Mapping[str, Any]) -> bool:
    """True when *actor* is an admin or created *target*."""
    if actor.role in ADMIN_ROLES:
        return True
    if _created_by(target) == actor.id:
        return True
    _audit_logger.info(
        "Modify denied: %s did not create %s",
        actor.id,
        _target_id(target),
        extra={
            "event_category": "audit",
            "action": "modify_denied",
            "actor_id": actor.id,
            "target_id": _target_id(target),
            "role": actor.role.value,
        },
    )
    return False


def can_delete(actor: Account, target: Account | Mapping[str, Any]) -> Decision:
    """Decide whether *actor* may delete *target* through the standard path."""
    target_role = _role(target)
    if actor.role not in ADMIN_ROLES:
        return Decision.deny("Only admin can delete users")
    if target_role == Role.SUPER_ADMIN:
        return Decision.deny("Super admin accounts cannot be deleted")
    if target_role == Role.ADMIN and actor.role != Role.SUPER_ADMIN:
        return Decision.deny("Cannot delete admin accounts")
    return Decision.allow()


def record_child(parent: Account, child: Account) -> tuple[Account, Account]:
    """Return ``(parent, child)`` copies with the creator edge recorded on both.

    Recording the same edge twice does not duplicate the child id.

    Raises:
        ValueError: *parent* and *child* are the same account.
    """
    if parent.id == child.id:
        msg = f"Account {parent.id} cannot be its own child"
        raise ValueError(msg)

    children = parent.hierarchy.child_users
    if child.id not in children:
        children = [*children, child.id]

    new_parent = parent.model_copy(
        update={"hierarchy": parent.hierarchy.model_copy(update={"child_users": children})}
    )
    new_child = child.model_copy(
        update={
            "hierarchy": child.hierarchy.model_copy(
                update={"created_by": parent.id, "parent_user": parent.id}
            )
        }
    )
    return new_parent, new_child


def detach_child(parent: Account, child: Account) -> tuple[Account, Account]:
    """Return ``(parent, child)`` copies with the parent edge removed from both.

    ``createdBy`` is kept: a creator may still manage what it created.
    """
    children = [c for c in parent.hierarchy.child_users if c != child.id]
    new_parent = parent.model_copy(
        update={"hierarchy": parent.hierarchy.model_copy(update={"child_users": children})}
    )
    new_child = child.model_copy(
        update={"hierarchy": child.hierarchy.model_copy(update={"parent_user": None})}
    )
    return new_parent, new_child


class UserHierarchyGraph:
    """Read-only directed graph over account ids built from stored accounts."""

    def __init__(self, accounts: Iterable[Account]) -> None:
        self._accounts: dict[str, Account] = {a.id: a for a in accounts}

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._accounts

    def __len__(self) -> int:
        return len(self._accounts)

    def children_of(self, account_id: str) -> list[str]:
        account = self._accounts.get(account_id)
        return list(account.hierarchy.child_users) if account else []

    def parent_of(self, account_id: str) -> str | None:
        account = self._accounts.get(account_id)
        return account.hierarchy.parent_user if account else None

    def descendants(self, account_id: str) -> list[str]:
        """All accounts below *account_id*, breadth-first, each listed once."""
        seen = {account_id}
        order: list[str] = []
        queue = deque(self.children_of(account_id))
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            order.append(current)
            queue.extend(self.children_of(current))
        return order

    def one_sided_edges(self) -> list[tuple[str, str]]:
        """``(parent_id, child_id)`` edges recorded on only one of the two accounts."""
        broken: set[tuple[str, str]] = set()
        for account in self._accounts.values():
            for child_id in account.hierarchy.child_users:
                child = self._accounts.get(child_id)
                if child is None or child.hierarchy.parent_user != account.id:
                    broken.add((account.id, child_id))
            parent_id = account.hierarchy.parent_user
            if parent_id is None:
                continue
            parent = self._accounts.get(parent_id)
            if parent is None or account.id not in parent.hierarchy.child_users:
                broken.add((parent_id, account.id))
        if broken:
            logger.warning("Found %d one-sided hierarchy edges", len(broken))
        return sorted(broken)
