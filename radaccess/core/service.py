"""Account service layer.

Orchestrates the write path around the pure evaluators: every operation
re-reads its target, asks the relevant policy for a decision, and only
then touches the store.  Denials become :class:`PermissionDeniedError`
here and nowhere else; targets outside the actor's tenant scope are
reported as not found.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any
from uuid import uuid4

from radaccess.core.models import Account, CreateAccountRequest, Decision, RoleConfig
from radaccess.exceptions import InvalidRequestError, NotFoundError, PermissionDeniedError
from radaccess.policy.creation import can_create, can_switch_role, creatable_roles
from radaccess.policy.hierarchy import UserHierarchyGraph, can_delete, can_modify
from radaccess.policy.role_config import normalize_linked_labs, sanitize_role_config
from radaccess.policy.tenant import ResourceType, scope_for, scoped_organization
from radaccess.rbac import (
    DEFAULT_REGISTRY,
    Role,
    RoleRegistry,
    resolve_primary_role,
    to_role,
)
from radaccess.storage.database import AccountStore

logger = logging.getLogger("radaccess.service")
_audit_logger = logging.getLogger("radaccess.audit")


class AccountService:
    """Creates, switches, (de)activates, reconfigures and deletes accounts."""

    def __init__(self, store: AccountStore, registry: RoleRegistry = DEFAULT_REGISTRY) -> None:
        self.store = store
        self.registry = registry

    # --- helpers ---

    def _audit(
        self,
        message: str,
        *,
        action: str,
        actor: Account,
        target: Account | None = None,
        level: int = logging.INFO,
        **extra: Any,
    ) -> None:
        if target is not None:
            extra.setdefault("target_id", target.id)
            extra.setdefault("target_role", target.role.value)
        _audit_logger.log(
            level,
            message,
            extra={
                "event_category": "audit",
                "action": action,
                "actor_id": actor.id,
                "role": actor.role.value,
                **extra,
            },
        )

    def _require(
        self, decision: Decision, actor: Account, action: str, **extra: Any
    ) -> None:
        if decision.allowed:
            return
        self._audit(
            f"{action} denied for {actor.id}: {decision.reason}",
            action=f"{action}_denied",
            actor=actor,
            level=logging.WARNING,
            reason=decision.reason,
            **extra,
        )
        raise PermissionDeniedError(decision.reason or "Permission denied")

    async def _load_in_scope(self, actor: Account, target_id: str) -> Account:
        account = await self.store.get_account(target_id)
        if account is None or not scope_for(actor, ResourceType.USER).matches(account):
            raise NotFoundError(f"Account {target_id} not found")
        return account

    def _target_tenant(
        self, actor: Account, request: CreateAccountRequest
    ) -> tuple[str, str | None]:
        if actor.role == Role.SUPER_ADMIN:
            organization_identifier = request.organization_identifier or scoped_organization(actor)
            if not organization_identifier:
                raise InvalidRequestError("A target organization is required")
            return organization_identifier, request.organization

        if not actor.organization_identifier:
            raise InvalidRequestError("Acting account has no organization")
        requested = request.organization_identifier
        if requested and requested != actor.organization_identifier:
            raise PermissionDeniedError("Cannot create accounts in another organization")
        return actor.organization_identifier, actor.organization

    # --- operations ---

    async def create_account(
        self, actor: Account, request: CreateAccountRequest | Mapping[str, Any]
    ) -> Account:
        """Create an account under *actor* and record the hierarchy edge.

        The role config is sanitized before anything is written, so a typist
        without a linked radiologist fails with ConfigValidationError and
        leaves the store untouched.
        """
        if not isinstance(request, CreateAccountRequest):
            request = CreateAccountRequest.model_validate(request)

        account_roles = list(dict.fromkeys(request.account_roles or [request.role]))
        if request.role not in account_roles:
            account_roles.insert(0, request.role)
        for role in account_roles:
            self._require(
                can_create(actor.role, role, self.registry),
                actor,
                "create_account",
                target_role=role.value,
            )

        organization_identifier, organization = self._target_tenant(actor, request)

        if request.primary_role is not None:
            if request.primary_role not in account_roles:
                raise InvalidRequestError(
                    f"Primary role '{request.primary_role.value}' must be one of the account roles"
                )
            primary_role = request.primary_role
        else:
            primary_role = to_role(resolve_primary_role(account_roles, self.registry))

        role_config = sanitize_role_config(
            request.role_config,
            request.role,
            linked_labs=request.linked_labs,
            account_roles=account_roles,
        )

        account = Account(
            id=request.id or uuid4().hex,
            organization=organization,
            organization_identifier=organization_identifier,
            username=request.username,
            email=request.email,
            full_name=request.full_name,
            role=request.role,
            account_roles=account_roles,
            primary_role=primary_role,
            role_config=role_config,
            linked_labs=normalize_linked_labs(request.linked_labs),
            visible_columns=request.visible_columns,
            permissions=self.registry.capabilities_of(request.role),
        )
        _, account = await self.store.insert_child_account(actor.id, account)

        self._audit(
            f"{actor.id} created {account.role.value} account {account.id}",
            action="account_created",
            actor=actor,
            target=account,
            organization_identifier=organization_identifier,
        )
        return account

    async def switch_role(
        self,
        actor: Account,
        target_id: str,
        new_role: Role | str,
        role_config: Mapping[str, Any] | None = None,
    ) -> Account:
        """Move an account to *new_role*, resetting its config and permissions."""
        self._require(
            can_switch_role(actor.role, new_role, self.registry),
            actor,
            "switch_role",
            target_id=target_id,
        )
        role = Role(new_role)

        target = await self._load_in_scope(actor, target_id)
        if target.role not in creatable_roles(actor.role, self.registry):
            self._require(
                Decision.deny(f"Cannot change the role of {target.role.value} accounts"),
                actor,
                "switch_role",
                target_id=target_id,
            )

        account_roles = [role if r == target.role else r for r in target.account_roles]
        account_roles = list(dict.fromkeys(account_roles or [role]))
        if role not in account_roles:
            account_roles.insert(0, role)

        new_config: RoleConfig = sanitize_role_config(
            role_config or {}, role, account_roles=account_roles
        )
        primary_role = to_role(resolve_primary_role(account_roles, self.registry))

        old_role = target.role
        updated = target.model_copy(
            update={
                "role": role,
                "account_roles": account_roles,
                "primary_role": primary_role,
                "role_config": new_config,
                "permissions": self.registry.capabilities_of(role),
            }
        )
        await self.store.update_account(updated)

        self._audit(
            f"{actor.id} switched {target.id} from {old_role.value} to {role.value}",
            action="role_switched",
            actor=actor,
            target=updated,
        )
        return updated

    async def set_active(self, actor: Account, target_id: str, is_active: bool) -> Account:
        target = await self._load_in_scope(actor, target_id)
        if not can_modify(actor, target):
            raise PermissionDeniedError("You can only manage accounts you created")
        updated = target.model_copy(update={"is_active": is_active})
        await self.store.update_account(updated)
        self._audit(
            f"{actor.id} {'activated' if is_active else 'deactivated'} {target.id}",
            action="account_activated" if is_active else "account_deactivated",
            actor=actor,
            target=updated,
        )
        return updated

    async def update_role_config(
        self, actor: Account, target_id: str, patch: Mapping[str, Any]
    ) -> Account:
        """Shallow-merge *patch* into the stored role config and re-sanitize it."""
        target = await self._load_in_scope(actor, target_id)
        if not can_modify(actor, target):
            raise PermissionDeniedError("You can only manage accounts you created")

        stored = target.role_config.model_dump(by_alias=True, exclude={"kind"})
        merged = {**stored, **dict(patch)}
        role_config = sanitize_role_config(
            merged, target.role, account_roles=target.account_roles
        )
        updated = target.model_copy(update={"role_config": role_config})
        await self.store.update_account(updated)
        self._audit(
            f"{actor.id} updated role config of {target.id}",
            action="role_config_updated",
            actor=actor,
            target=updated,
        )
        return updated

    async def delete_account(self, actor: Account, target_id: str) -> Account:
        """Deactivate *target_id* and detach it from its parent."""
        target = await self._load_in_scope(actor, target_id)
        self._require(can_delete(actor, target), actor, "delete_account", target_id=target_id)
        deleted = await self.store.soft_delete_account(target.id)
        self._audit(
            f"{actor.id} deleted {target.id}",
            action="account_deleted",
            actor=actor,
            target=deleted,
        )
        return deleted

    async def get_account(self, actor: Account, target_id: str) -> Account:
        return await self._load_in_scope(actor, target_id)

    async def list_accounts(
        self,
        actor: Account,
        role: Role | str | None = None,
        include_inactive: bool = False,
        created_by_me: bool = False,
    ) -> list[Account]:
        scope = scope_for(actor, ResourceType.USER)
        accounts = await self.store.list_accounts(
            scope,
            role=role,
            include_inactive=include_inactive,
            created_by=actor.id if created_by_me else None,
        )
        logger.debug("Listed %d accounts for %s", len(accounts), actor.id)
        return accounts

    async def available_roles(self, actor: Account) -> list[dict[str, str]]:
        """Roles *actor* may create, as ``{"value", "label"}`` pairs."""
        return [
            {"value": role.value, "label": self.registry.label_of(role)}
            for role in creatable_roles(actor.role, self.registry)
        ]

    async def hierarchy(self, actor: Account) -> UserHierarchyGraph:
        """Graph over every account inside the actor's scope, inactive ones included."""
        accounts = await self.list_accounts(actor, include_inactive=True)
        return UserHierarchyGraph(accounts)
