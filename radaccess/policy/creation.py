"""Role-creation authorization.

Who may provision which role is read from the registry's ``creatable``
column.  Denials are returned, never raised, and carry a user-facing
sentence naming both roles.
"""

from __future__ import annotations

import logging

from radaccess.core.models import Decision
from radaccess.rbac import ADMIN_ROLES, DEFAULT_REGISTRY, Role, RoleRegistry, to_role

logger = logging.getLogger("radaccess.policy.creation")


def _display(role: object) -> str:
    # Only the first underscore becomes a space: "dashboard viewer", "doctor account".
    return str(role).replace("_", " ", 1)


def creatable_roles(
    acting_role: object, registry: RoleRegistry = DEFAULT_REGISTRY
) -> tuple[Role, ...]:
    """Roles *acting_role* may create, in registry order."""
    return registry.creatable_by(acting_role)


def can_create(
    acting_role: object, target_role: object, registry: RoleRegistry = DEFAULT_REGISTRY
) -> Decision:
    """Decide whether an account holding *acting_role* may create *target_role*."""
    target = to_role(target_role)
    if target is not None and target in registry.creatable_by(acting_role):
        return Decision.allow()
    reason = f"{_display(acting_role)} cannot create {_display(target_role)} accounts"
    logger.debug("Creation denied: %s", reason)
    return Decision.deny(reason)


def can_switch_role(
    acting_role: object, new_role: object, registry: RoleRegistry = DEFAULT_REGISTRY
) -> Decision:
    """Decide whether *acting_role* may move an existing account to *new_role*.

    Only admins switch roles, and only to a role they could have created.
    """
    if to_role(acting_role) not in ADMIN_ROLES:
        return Decision.deny("Only admin can switch user roles")
    if to_role(new_role) not in registry.creatable_by(acting_role):
        return Decision.deny("Invalid role specified")
    return Decision.allow()
