"""Domain models for the radaccess core.

- Account: the actor passed to every evaluator and the record the service persists
- RoleConfig: per-role settings, a union tagged by ``kind``
- LinkedLab: lab reference with per-lab permission flags
- Study / Lab: external records the core evaluates access against
- Decision / StudyPermissions: evaluator outputs

All models accept the camelCase keys used on the wire (``organizationIdentifier``,
``roleConfig``...) as well as snake_case attribute names.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from radaccess.rbac import Capabilities, Role


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _upper_identifier(value: str | None) -> str | None:
    if value is None:
        return None
    value = str(value).strip().upper()
    return value or None


#: Organization identifiers are stored upper-case.
OrgIdentifier = Annotated[str | None, BeforeValidator(_upper_identifier)]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class WorkflowStatus(str, Enum):
    RECEIVED = "received"
    ASSIGNED = "assigned"
    REPORTED = "reported"
    VERIFIED = "verified"
    ARCHIVED = "archived"


class LabAccessMode(str, Enum):
    ALL = "all"
    SELECTED = "selected"
    NONE = "none"


# ---------------------------------------------------------------------------
# Role configuration variants
# ---------------------------------------------------------------------------


class AssignableUser(_WireModel):
    """A radiologist or verifier an assignor may hand studies to."""

    user_id: str = Field(validation_alias=AliasChoices("userId", "userRef", "user_id"))
    role: Role

    @field_validator("role")
    @classmethod
    def _assignable_role(cls, v: Role) -> Role:
        if v not in (Role.RADIOLOGIST, Role.VERIFIER):
            msg = f"assignable users must be radiologists or verifiers, got '{v}'"
            raise ValueError(msg)
        return v


class DashboardAccess(_WireModel):
    view_workload: bool = False
    view_tat: bool = Field(default=False, alias="viewTAT")
    view_revenue: bool = False
    view_reports: bool = False


class TypistConfig(_WireModel):
    kind: Literal["typist"] = "typist"
    linked_radiologist: str = Field(min_length=1)


class AssignorConfig(_WireModel):
    kind: Literal["assignor"] = "assignor"
    assigned_labs: list[str] = Field(default_factory=list)
    lab_access_mode: LabAccessMode = LabAccessMode.ALL
    assignable_users: list[AssignableUser] = Field(default_factory=list)

    @model_validator(mode="after")
    def _labs_only_when_selected(self) -> AssignorConfig:
        if self.assigned_labs and self.lab_access_mode != LabAccessMode.SELECTED:
            msg = "assignedLabs may only be set when labAccessMode is 'selected'"
            raise ValueError(msg)
        return self


class VerifierConfig(_WireModel):
    kind: Literal["verifier"] = "verifier"
    assigned_radiologists: list[str] = Field(default_factory=list)


class PhysicianConfig(_WireModel):
    kind: Literal["physician"] = "physician"
    allowed_patients: list[str] = Field(default_factory=list)


class DashboardViewerConfig(_WireModel):
    kind: Literal["dashboard_viewer"] = "dashboard_viewer"
    dashboard_access: DashboardAccess = Field(default_factory=DashboardAccess)


class EmptyRoleConfig(_WireModel):
    """Configuration for roles that carry no role-specific settings."""

    kind: Literal["none"] = "none"


RoleConfig = Annotated[
    TypistConfig
    | AssignorConfig
    | VerifierConfig
    | PhysicianConfig
    | DashboardViewerConfig
    | EmptyRoleConfig,
    Field(discriminator="kind"),
]

_CONFIG_KIND_BY_ROLE: dict[Role, str] = {
    Role.TYPIST: "typist",
    Role.ASSIGNOR: "assignor",
    Role.VERIFIER: "verifier",
    Role.PHYSICIAN: "physician",
    Role.DASHBOARD_VIEWER: "dashboard_viewer",
}


def config_kind_for(role: str | None, account_roles: list[Any] | None = None) -> str:
    """Return the RoleConfig ``kind`` an account with *role* stores.

    A role without its own variant that also holds ``assignor`` among its
    account roles stores the assignor variant.
    """
    kind = _CONFIG_KIND_BY_ROLE.get(role)  # type: ignore[arg-type]
    if kind is not None:
        return kind
    if account_roles and Role.ASSIGNOR in account_roles:
        return "assignor"
    return "none"


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class LinkedLabPermissions(_WireModel):
    can_view_studies: bool = True
    can_assign_studies: bool = False
    can_manage_staff: bool = False


class LinkedLab(_WireModel):
    lab_id: str = Field(min_length=1)
    lab_name: str | None = None
    lab_identifier: str | None = None
    permissions: LinkedLabPermissions = Field(default_factory=LinkedLabPermissions)


class Hierarchy(_WireModel):
    created_by: str | None = None
    parent_user: str | None = None
    child_users: list[str] = Field(default_factory=list)


class OrganizationContext(_WireModel):
    """Tenant a super_admin is currently viewing as."""

    organization_identifier: OrgIdentifier = None


class Account(_WireModel):
    """A user account, also used as the acting user for every decision."""

    id: str = Field(min_length=1, validation_alias=AliasChoices("id", "_id"))
    organization: str | None = None
    organization_identifier: OrgIdentifier = None
    username: str | None = None
    email: str | None = None
    full_name: str | None = None
    role: Role
    account_roles: list[Role] = Field(default_factory=list)
    primary_role: Role | None = None
    role_config: RoleConfig = Field(default_factory=EmptyRoleConfig)
    hierarchy: Hierarchy = Field(default_factory=Hierarchy)
    linked_labs: list[LinkedLab] = Field(default_factory=list)
    visible_columns: list[str] = Field(default_factory=list)
    is_active: bool = True
    permissions: Capabilities | None = None
    organization_context: OrganizationContext | None = None

    @model_validator(mode="before")
    @classmethod
    def _tag_role_config(cls, data: Any) -> Any:
        """Tag an untagged roleConfig mapping with the variant its role stores."""
        if not isinstance(data, dict):
            return data
        key = "roleConfig" if "roleConfig" in data else "role_config"
        raw = data.get(key)
        if raw is None:
            data = {k: v for k, v in data.items() if k != key}
        elif isinstance(raw, dict) and "kind" not in raw:
            roles = data.get("accountRoles", data.get("account_roles")) or []
            data = {**data, key: {**raw, "kind": config_kind_for(data.get("role"), roles)}}
        return data

    @model_validator(mode="after")
    def _check_primary_role(self) -> Account:
        if self.primary_role is not None and self.account_roles:
            if self.primary_role not in self.account_roles:
                msg = f"primaryRole '{self.primary_role}' must be one of accountRoles"
                raise ValueError(msg)
        elif len(self.account_roles) > 1:
            msg = "primaryRole is required when accountRoles has more than one entry"
            raise ValueError(msg)
        return self

    def holds(self, role: Role) -> bool:
        """True when *role* is the account's role or one of its account roles."""
        return self.role == role or role in self.account_roles


class CreateAccountRequest(_WireModel):
    """Input to :meth:`AccountService.create_account`."""

    id: str | None = None
    username: str | None = None
    email: str | None = None
    full_name: str | None = None
    role: Role
    account_roles: list[Role] | None = None
    primary_role: Role | None = None
    role_config: dict[str, Any] = Field(default_factory=dict)
    linked_labs: list[Any] | None = None
    visible_columns: list[str] = Field(default_factory=list)
    organization: str | None = None
    organization_identifier: OrgIdentifier = None


# ---------------------------------------------------------------------------
# External records
# ---------------------------------------------------------------------------


class Assignment(_WireModel):
    assigned_to: str | None = None
    assigned_by: str | None = None
    priority: str | None = None
    status: str | None = None


class ReferringPhysician(_WireModel):
    id: str | None = None
    name: str | None = None


class Study(_WireModel):
    """A DICOM study record, owned elsewhere and evaluated here."""

    id: str | None = Field(default=None, validation_alias=AliasChoices("id", "_id"))
    organization_identifier: OrgIdentifier = None
    assignment: list[Assignment] = Field(default_factory=list)
    referring_physician: ReferringPhysician | None = None
    source_lab: str | None = None
    workflow_status: WorkflowStatus | None = None

    @field_validator("assignment", mode="before")
    @classmethod
    def _wrap_single_assignment(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, dict):
            return [v]
        return v


class StaffUser(_WireModel):
    user_id: str
    role: str
    is_active: bool = True


class Lab(_WireModel):
    id: str | None = Field(default=None, validation_alias=AliasChoices("id", "_id"))
    organization_identifier: OrgIdentifier = None
    identifier: str
    name: str | None = None
    staff_users: list[StaffUser] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


class Decision(_WireModel):
    """Allow/deny outcome; ``reason`` is a user-facing sentence on deny."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: str | None = None

    @classmethod
    def allow(cls) -> Decision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> Decision:
        return cls(allowed=False, reason=reason)


class StudyPermissions(_WireModel):
    model_config = ConfigDict(frozen=True)

    can_view: bool = False
    can_edit: bool = False
    can_edit_clinical_history: bool = False
    can_create_report: bool = False
    can_download: bool = False
    can_discuss: bool = False
    can_assign: bool = False
    is_assigned: bool = False
