"""Role configuration sanitizer.

Turns the free-form ``roleConfig`` mapping a client submits into the
RoleConfig variant stored for the account's role.  Processing runs in a
fixed order and later steps may overwrite what earlier ones produced:

1. strip empty reference fields (linkedRadiologist, parentUser, supervisorId)
2. wrap scalar list fields in a one-element list
3. assignor: force labAccessMode into all/selected/none, clear assignedLabs
   unless the mode is ``selected``
4. role requirements and defaults (typist needs linkedRadiologist)
5. assignor with explicit lab links: assignedLabs is replaced by the linked
   lab ids and labAccessMode follows from whether any lab is linked

Unknown keys are dropped by the variant models.  The only error raised for
content is :class:`ConfigValidationError`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel

from radaccess.core.models import (
    AssignorConfig,
    DashboardAccess,
    DashboardViewerConfig,
    EmptyRoleConfig,
    LabAccessMode,
    LinkedLab,
    PhysicianConfig,
    RoleConfig,
    TypistConfig,
    VerifierConfig,
    config_kind_for,
)
from radaccess.exceptions import ConfigValidationError
from radaccess.rbac import Role

logger = logging.getLogger("radaccess.policy.role_config")

REFERENCE_FIELDS: tuple[str, ...] = ("linkedRadiologist", "parentUser", "supervisorId")
LIST_FIELDS: tuple[str, ...] = (
    "assignedRadiologists",
    "assignableUsers",
    "allowedPatients",
    "assignedLabs",
)
DASHBOARD_ACCESS_FLAGS: tuple[str, ...] = ("viewWorkload", "viewTAT", "viewRevenue", "viewReports")
#: List fields whose entries are stored as plain string references.
STRING_LIST_FIELDS: tuple[str, ...] = ("assignedRadiologists", "allowedPatients", "assignedLabs")

_LAB_ACCESS_MODES = frozenset(mode.value for mode in LabAccessMode)
_ASSIGNABLE_ROLES = frozenset({Role.RADIOLOGIST.value, Role.VERIFIER.value})

_VARIANTS: dict[str, type[BaseModel]] = {
    "typist": TypistConfig,
    "assignor": AssignorConfig,
    "verifier": VerifierConfig,
    "physician": PhysicianConfig,
    "dashboard_viewer": DashboardViewerConfig,
    "none": EmptyRoleConfig,
}

#: snake_case spellings accepted for the camelCase keys of every variant.
_WIRE_KEYS: dict[str, str] = {
    "parent_user": "parentUser",
    "supervisor_id": "supervisorId",
    **{
        name: info.alias
        for model in _VARIANTS.values()
        for name, info in model.model_fields.items()
        if info.alias and info.alias != name
    },
}
_DASHBOARD_KEYS: dict[str, str] = {
    name: info.alias
    for name, info in DashboardAccess.model_fields.items()
    if info.alias and info.alias != name
}


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _wire_keys(raw: Mapping[str, Any], aliases: Mapping[str, str]) -> dict[str, Any]:
    """Rename snake_case keys to camelCase; the camelCase spelling wins when both appear."""
    renamed: dict[str, Any] = {}
    for key, value in raw.items():
        wire = aliases.get(key, key)
        if wire != key and wire in raw:
            continue
        renamed[wire] = value
    return renamed


def _as_mapping(raw: Any) -> dict[str, Any]:
    if isinstance(raw, BaseModel):
        return raw.model_dump(by_alias=True, exclude={"kind"})
    if isinstance(raw, Mapping):
        return _wire_keys({k: v for k, v in raw.items() if k != "kind"}, _WIRE_KEYS)
    return {}


def normalize_linked_labs(raw: Any) -> list[LinkedLab]:
    """Normalize submitted lab links into :class:`LinkedLab` records.

    A bare string is a lab id with view-only permissions.  Mappings must
    carry ``labId``; entries without one are dropped.
    """
    if raw is None:
        return []
    if isinstance(raw, (str, Mapping, LinkedLab)):
        raw = [raw]

    labs: list[LinkedLab] = []
    for entry in raw:
        if isinstance(entry, LinkedLab):
            labs.append(entry)
        elif isinstance(entry, str):
            if entry.strip():
                labs.append(LinkedLab(lab_id=entry.strip()))
        elif isinstance(entry, Mapping):
            lab_id = entry.get("labId", entry.get("lab_id"))
            if _is_empty(lab_id):
                continue
            labs.append(
                LinkedLab(
                    lab_id=str(lab_id),
                    lab_name=entry.get("labName", entry.get("lab_name")),
                    lab_identifier=entry.get("labIdentifier", entry.get("lab_identifier")),
                    permissions=entry.get("permissions") or {},
                )
            )
        else:
            logger.warning("Dropping linked lab entry of type %s", type(entry).__name__)
    return labs


def _clean_assignable_users(entries: Iterable[Any]) -> list[dict[str, str]]:
    cleaned: list[dict[str, str]] = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            logger.warning("Dropping assignable user entry %r: not a mapping", entry)
            continue
        user_id = entry.get("userId", entry.get("userRef", entry.get("user_id")))
        role = entry.get("role")
        if (
            not isinstance(user_id, (str, int))
            or _is_empty(user_id)
            or not isinstance(role, str)
            or role not in _ASSIGNABLE_ROLES
        ):
            logger.warning(
                "Dropping assignable user entry %r: needs a user and a radiologist/verifier role",
                dict(entry),
            )
            continue
        cleaned.append({"userId": str(user_id), "role": role})
    return cleaned


def sanitize_role_config(
    raw: Any,
    role: str,
    *,
    linked_labs: Any = None,
    account_roles: Iterable[str] | None = None,
) -> RoleConfig:
    """Normalize *raw* into the RoleConfig variant stored for *role*.

    Args:
        raw: Submitted roleConfig; anything that is not a mapping counts as ``{}``.
        role: The account's canonical role.
        linked_labs: Lab links supplied with the account.  ``None`` means the
            caller supplied none and step 5 is skipped; an empty list applies
            step 5 and yields ``labAccessMode='all'``.
        account_roles: Additional roles held by the account.

    Raises:
        ConfigValidationError: typist without a linked radiologist.
    """
    account_roles = list(account_roles or [])
    kind = config_kind_for(role, account_roles)
    config = _as_mapping(raw)

    # 1. empty references never reach storage
    for field in REFERENCE_FIELDS:
        if _is_empty(config.get(field)):
            config.pop(field, None)

    # 2. list fields
    for field in LIST_FIELDS:
        value = config.get(field)
        if _is_empty(value):
            config.pop(field, None)
            continue
        if not isinstance(value, (list, tuple)):
            value = [value]
        items = [item for item in value if not _is_empty(item)]
        if field in STRING_LIST_FIELDS:
            items = [str(item).strip() for item in items]
        config[field] = items

    # 3. lab access mode
    if kind == "assignor":
        mode = config.get("labAccessMode")
        if not isinstance(mode, str) or mode not in _LAB_ACCESS_MODES:
            config["labAccessMode"] = LabAccessMode.ALL.value
        if config["labAccessMode"] != LabAccessMode.SELECTED.value:
            config["assignedLabs"] = []

    # 4. role requirements and defaults
    if role == Role.TYPIST:
        if not isinstance(config.get("linkedRadiologist"), (str, int)):
            raise ConfigValidationError("Typist role requires a linked radiologist")
        config["linkedRadiologist"] = str(config["linkedRadiologist"]).strip()
    elif kind == "assignor":
        config["assignableUsers"] = _clean_assignable_users(config.get("assignableUsers", []))
    elif role == Role.DASHBOARD_VIEWER:
        access = config.get("dashboardAccess")
        submitted = _wire_keys(access, _DASHBOARD_KEYS) if isinstance(access, Mapping) else {}
        config["dashboardAccess"] = {
            flag: bool(submitted.get(flag, False)) for flag in DASHBOARD_ACCESS_FLAGS
        }

    # 5. explicit lab links win over labAccessMode
    holds_assignor = role == Role.ASSIGNOR or Role.ASSIGNOR in account_roles
    if holds_assignor and linked_labs is not None:
        labs = normalize_linked_labs(linked_labs)
        config["assignedLabs"] = [lab.lab_id for lab in labs]
        config["labAccessMode"] = (
            LabAccessMode.SELECTED.value if labs else LabAccessMode.ALL.value
        )

    logger.debug("Sanitized role config for %s into %s variant", role, kind)
    return _VARIANTS[kind].model_validate(config)  # type: ignore[return-value]
