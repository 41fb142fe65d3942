"""Study access evaluation.

``can_access`` short-circuits in a fixed order: admins first, then tenant
isolation, then the role's own rule.  A typist's access is entirely
delegated through the linked radiologist; the typist's own id is never
checked against the assignment list.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from radaccess.core.models import Account, Study, StudyPermissions
from radaccess.policy.tenant import ResourceType, same_tenant, scope_for
from radaccess.rbac import ADMIN_ROLES, DEFAULT_REGISTRY, Capabilities, Role, RoleRegistry

logger = logging.getLogger("radaccess.policy.study_access")
_audit_logger = logging.getLogger("radaccess.audit")

_ORGANIZATION_WIDE = frozenset({Role.ASSIGNOR, Role.RECEPTIONIST, Role.BILLING})
_CLINICAL_HISTORY_EDITORS = ADMIN_ROLES | {Role.RADIOLOGIST, Role.ASSIGNOR}
_ASSIGNERS = ADMIN_ROLES | {Role.ASSIGNOR}


def _as_study(study: Study | dict[str, Any]) -> Study:
    if isinstance(study, Study):
        return study
    return Study.model_validate(study)


def _assignees(study: Study) -> set[str]:
    return {entry.assigned_to for entry in study.assignment if entry.assigned_to}


def effective_permissions(
    actor: Account, registry: RoleRegistry = DEFAULT_REGISTRY
) -> Capabilities:
    """The actor's materialized permissions, else those derived from its role."""
    if actor.permissions is not None:
        return actor.permissions
    return registry.capabilities_of(actor.role)


def is_assigned(actor: Account, study: Study | dict[str, Any]) -> bool:
    """True when some assignment entry names the actor directly."""
    return actor.id in _assignees(_as_study(study))


def _audit_denial(actor: Account, study: Study, reason: str) -> None:
    _audit_logger.info(
        "Study access denied for %s: %s",
        actor.id,
        reason,
        extra={
            "event_category": "audit",
            "action": "study_access_denied",
            "actor_id": actor.id,
            "target_id": study.id,
            "role": actor.role.value,
            "organization_identifier": actor.organization_identifier,
            "reason": reason,
        },
    )


def can_access(
    actor: Account,
    study: Study | dict[str, Any],
    registry: RoleRegistry = DEFAULT_REGISTRY,
) -> bool:
    """Decide whether *actor* may view *study*."""
    study = _as_study(study)
    role = actor.role

    if role in ADMIN_ROLES:
        return True

    if not same_tenant(actor, study):
        _audit_denial(actor, study, "organization mismatch")
        return False

    assignees = _assignees(study)
    config = actor.role_config

    if role == Role.RADIOLOGIST:
        allowed = actor.id in assignees
    elif role == Role.VERIFIER:
        allowed = not assignees.isdisjoint(getattr(config, "assigned_radiologists", []))
    elif role == Role.PHYSICIAN:
        physician = study.referring_physician
        allowed = physician is not None and physician.id == actor.id
    elif role in _ORGANIZATION_WIDE:
        allowed = True
    elif role == Role.TYPIST:
        linked = getattr(config, "linked_radiologist", None)
        allowed = linked is not None and linked in assignees
    else:
        allowed = effective_permissions(actor, registry).can_view_cases

    if not allowed:
        _audit_denial(actor, study, f"{role.value} rule not satisfied")
    return allowed


def editable_fields(
    actor: Account,
    study: Study | dict[str, Any],
    registry: RoleRegistry = DEFAULT_REGISTRY,
) -> StudyPermissions:
    """Summarize what *actor* may do with *study*."""
    study = _as_study(study)
    role = actor.role
    permissions = effective_permissions(actor, registry)
    is_admin = role in ADMIN_ROLES
    assigned = is_assigned(actor, study)

    return StudyPermissions(
        can_view=can_access(actor, study, registry),
        can_edit=permissions.can_edit_cases or is_admin,
        can_edit_clinical_history=(
            permissions.can_edit_cases or role in _CLINICAL_HISTORY_EDITORS
        ),
        can_create_report=(permissions.can_create_reports and assigned) or is_admin,
        can_download=permissions.can_download_reports or is_admin,
        can_discuss=permissions.can_view_cases or is_admin,
        can_assign=permissions.can_assign_cases or role in _ASSIGNERS,
        is_assigned=assigned,
    )


def visible_studies(
    actor: Account,
    studies: Iterable[Study | dict[str, Any]],
    registry: RoleRegistry = DEFAULT_REGISTRY,
) -> list[Study | dict[str, Any]]:
    """Filter *studies* to those inside the actor's scope that it may access."""
    scope = scope_for(actor, ResourceType.STUDY)
    visible = [s for s in studies if scope.matches(s) and can_access(actor, s, registry)]
    logger.debug("Actor %s sees %d studies", actor.id, len(visible))
    return visible
