"""Tenant scope builder.

Produces the base filter every study, user and lab query is ANDed with.
Only a super_admin without an organization-context override sees across
tenants; everyone else is pinned to an organization identifier, and an
actor with no tenant at all gets a filter that matches nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic.alias_generators import to_camel

from radaccess.core.models import Account, Lab, LabAccessMode
from radaccess.rbac import Role

logger = logging.getLogger("radaccess.policy.tenant")
_audit_logger = logging.getLogger("radaccess.audit")

ORGANIZATION_FIELD = "organization_identifier"


class ResourceType(str, Enum):
    STUDY = "study"
    USER = "user"
    LAB = "lab"


def field_value(record: Any, name: str) -> Any:
    """Read *name* from a model or a mapping keyed in camelCase or snake_case."""
    if isinstance(record, Mapping):
        camel = to_camel(name)
        return record[camel] if camel in record else record.get(name)
    return getattr(record, name, None)


def _normalize_identifier(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).strip().upper() or None


@dataclass(frozen=True)
class Condition:
    """One constraint: ``eq`` (value), ``in`` (tuple of values) or ``is_null``."""

    field: str
    op: str
    value: Any = None

    def __post_init__(self) -> None:
        if self.op not in ("eq", "in", "is_null"):
            msg = f"Unsupported condition operator: {self.op}"
            raise ValueError(msg)

    def holds(self, record: Any) -> bool:
        actual = field_value(record, self.field)
        if self.field == ORGANIZATION_FIELD:
            actual = _normalize_identifier(actual)
        if self.op == "eq":
            return actual is not None and actual == self.value
        if self.op == "in":
            return actual is not None and actual in self.value
        return actual is None

    def as_query(self) -> Any:
        if self.op == "eq":
            return self.value
        if self.op == "in":
            return {"$in": list(self.value)}
        return None


@dataclass(frozen=True)
class ScopeFilter:
    """A conjunction of :class:`Condition` objects.

    An empty filter matches everything; ``matches_nothing`` is the
    fail-closed filter and absorbs anything it is combined with.
    """

    conditions: tuple[Condition, ...] = ()
    matches_nothing: bool = False

    @classmethod
    def nothing(cls) -> ScopeFilter:
        return cls(matches_nothing=True)

    @property
    def is_unrestricted(self) -> bool:
        return not self.matches_nothing and not self.conditions

    def and_(self, other: ScopeFilter | Condition | None) -> ScopeFilter:
        """Logical AND of this filter with *other*."""
        if other is None:
            return self
        if isinstance(other, Condition):
            other = ScopeFilter((other,))
        if self.matches_nothing or other.matches_nothing:
            return ScopeFilter.nothing()
        return ScopeFilter(self.conditions + other.conditions)

    def constraint(self, name: str) -> Condition | None:
        """Return the first condition on *name*, if any."""
        for condition in self.conditions:
            if condition.field == name:
                return condition
        return None

    def matches(self, record: Any) -> bool:
        if self.matches_nothing:
            return False
        return all(condition.holds(record) for condition in self.conditions)

    def as_query(self) -> dict[str, Any]:
        """Render as a document-store query with camelCase keys."""
        if self.matches_nothing:
            return {to_camel(ORGANIZATION_FIELD): {"$in": []}}
        clauses = [{to_camel(c.field): c.as_query()} for c in self.conditions]
        keys = [c.field for c in self.conditions]
        if len(set(keys)) == len(keys):
            merged: dict[str, Any] = {}
            for clause in clauses:
                merged.update(clause)
            return merged
        return {"$and": clauses}

    def to_sql(self, columns: Mapping[str, str] | None = None) -> tuple[str, list[Any]]:
        """Render as a SQL ``WHERE`` fragment and its parameters.

        *columns* maps condition fields to column names; unmapped fields are
        used as-is.
        """
        if self.matches_nothing:
            return "1 = 0", []
        if not self.conditions:
            return "1 = 1", []
        columns = columns or {}
        parts: list[str] = []
        params: list[Any] = []
        for condition in self.conditions:
            column = columns.get(condition.field, condition.field)
            if condition.op == "eq":
                parts.append(f"{column} = ?")
                params.append(condition.value)
            elif condition.op == "in":
                if not condition.value:
                    parts.append("1 = 0")
                    continue
                placeholders = ", ".join("?" for _ in condition.value)
                parts.append(f"{column} IN ({placeholders})")
                params.extend(condition.value)
            else:
                parts.append(f"{column} IS NULL")
        return " AND ".join(parts), params


def scoped_organization(actor: Account) -> str | None:
    """Organization the actor's queries are pinned to, ``None`` when unpinned."""
    if actor.role == Role.SUPER_ADMIN:
        context = actor.organization_context
        return context.organization_identifier if context else None
    return actor.organization_identifier


def _assignor_lab_condition(actor: Account) -> Condition | None:
    if Role.ASSIGNOR not in (actor.role, actor.primary_role):
        return None
    mode = getattr(actor.role_config, "lab_access_mode", None)
    labs = getattr(actor.role_config, "assigned_labs", [])
    if mode == LabAccessMode.SELECTED and labs:
        return Condition("source_lab", "in", tuple(labs))
    if mode == LabAccessMode.NONE:
        return Condition("source_lab", "in", ())
    return None


def scope_for(actor: Account, resource_type: ResourceType | str) -> ScopeFilter:
    """Build the base filter restricting *actor*'s queries on *resource_type*."""
    resource_type = ResourceType(resource_type)
    organization = scoped_organization(actor)

    if organization is None:
        if actor.role == Role.SUPER_ADMIN:
            return ScopeFilter()
        _audit_logger.warning(
            "Actor %s has no tenant; %s scope matches nothing",
            actor.id,
            resource_type.value,
            extra={
                "event_category": "audit",
                "action": "scope_fail_closed",
                "actor_id": actor.id,
                "role": actor.role.value,
            },
        )
        return ScopeFilter.nothing()

    scope = ScopeFilter((Condition(ORGANIZATION_FIELD, "eq", organization),))
    if resource_type == ResourceType.STUDY:
        scope = scope.and_(_assignor_lab_condition(actor))
    logger.debug("Scope for %s on %s: %s", actor.id, resource_type.value, scope)
    return scope


def same_tenant(actor: Account, record: Any) -> bool:
    """True when *record* belongs to the actor's own organization."""
    own = actor.organization_identifier
    return own is not None and own == _normalize_identifier(
        field_value(record, ORGANIZATION_FIELD)
    )


def visible_labs(actor: Account, labs: Iterable[Lab | Mapping[str, Any]]) -> list[Lab]:
    """Labs from *labs* inside the actor's lab scope, in input order."""
    scope = scope_for(actor, ResourceType.LAB)
    parsed = (lab if isinstance(lab, Lab) else Lab.model_validate(lab) for lab in labs)
    return [lab for lab in parsed if scope.matches(lab)]
