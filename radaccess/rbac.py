"""Role-Based Access Control for radaccess.

Defines the role registry: the single table every other component
consults for a role's dominance rank, its default capability set and the
roles it may provision.  Rank and creation rights are two projections of
the same :class:`RoleDefinition` rows, and the registry refuses to build
if they contradict each other (a role may only create roles ranked
strictly below it).

Roles (highest → lowest rank):
    super_admin       100, platform-wide control, no tenant
    admin              90, organization admin
    group_id           80, provisions assignors, radiologists, verifiers...
    assignor           70, assigns studies to radiologists/verifiers
    radiologist        60, reads studies, creates reports
    typist             60, types dictated reports for a linked radiologist
    verifier           50, reviews and finalizes reports
    physician          40, referring doctor
    receptionist       30, patient registration, printing
    billing            20, bills
    dashboard_viewer,
    lab_staff,
    doctor_account,
    owner              10
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Role(StrEnum):
    """Enumerated account roles."""

    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    GROUP_ID = "group_id"
    ASSIGNOR = "assignor"
    RADIOLOGIST = "radiologist"
    TYPIST = "typist"
    VERIFIER = "verifier"
    PHYSICIAN = "physician"
    RECEPTIONIST = "receptionist"
    BILLING = "billing"
    DASHBOARD_VIEWER = "dashboard_viewer"
    LAB_STAFF = "lab_staff"
    DOCTOR_ACCOUNT = "doctor_account"
    OWNER = "owner"


#: Roles that bypass tenant checks on study access and may manage any account.
ADMIN_ROLES: frozenset[Role] = frozenset({Role.SUPER_ADMIN, Role.ADMIN})


def to_role(value: object) -> Role | None:
    """Coerce *value* to a :class:`Role`, returning ``None`` when unknown."""
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value))
    except ValueError:
        return None


class Capabilities(BaseModel):
    """Named capability flags derived from a role.

    Accepts and emits the camelCase names used on the wire
    (``canViewCases``); attributes are snake_case.
    """

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    # Case management
    can_create_cases: bool = False
    can_assign_cases: bool = False
    can_view_cases: bool = False
    can_edit_cases: bool = False

    # Reports
    can_create_reports: bool = False
    can_edit_reports: bool = False
    can_verify_reports: bool = False
    can_finalize_reports: bool = False
    can_download_reports: bool = False
    can_print_reports: bool = False

    # Users
    can_create_users: bool = False
    can_manage_users: bool = False
    can_view_users: bool = False

    # Patients
    can_register_patients: bool = False
    can_edit_patients: bool = False
    can_view_patients: bool = False

    # Billing
    can_generate_bills: bool = False
    can_view_billing: bool = False
    can_manage_pricing: bool = False

    # Dashboard and analytics
    can_view_dashboard: bool = False
    can_view_analytics: bool = False
    can_export_data: bool = False

    # DICOM viewer
    can_use_dicom_viewer: bool = False
    can_use_2d_tools: bool = Field(default=False, alias="canUse2DTools")
    can_use_mpr_tools: bool = Field(default=False, alias="canUseMPRTools")
    can_use_3d_tools: bool = Field(default=False, alias="canUse3DTools")

    # Voice and templates
    can_use_voice_dictation: bool = False
    can_use_saved_templates: bool = False
    can_create_templates: bool = False

    # System administration
    can_manage_organizations: bool = False
    can_view_system_reports: bool = False
    can_manage_backups: bool = False

    @classmethod
    def granting(cls, *names: str) -> Capabilities:
        """Build a capability set with exactly *names* (snake_case) enabled."""
        unknown = set(names) - set(cls.model_fields)
        if unknown:
            msg = f"Unknown capabilities: {', '.join(sorted(unknown))}"
            raise ValueError(msg)
        return cls(**dict.fromkeys(names, True))

    @classmethod
    def everything(cls) -> Capabilities:
        return cls.granting(*cls.model_fields)

    def granted(self) -> frozenset[str]:
        """Return the snake_case names of every enabled capability."""
        return frozenset(name for name, value in self if value)


#: Fail-closed capability set for unknown roles.
NO_CAPABILITIES = Capabilities()


@dataclass(frozen=True)
class RoleDefinition:
    """One row of the role registry."""

    role: Role
    rank: int
    capabilities: Capabilities
    creatable: tuple[Role, ...] = ()
    label: str = ""
    dashboard_route: str = "/dashboard"


@dataclass(frozen=True)
class RoleRegistry:
    """Immutable role table, built once and injected where needed."""

    definitions: Mapping[Role, RoleDefinition] = field(repr=False)

    @classmethod
    def from_definitions(cls, rows: Iterable[RoleDefinition]) -> RoleRegistry:
        table: dict[Role, RoleDefinition] = {}
        for row in rows:
            if row.role in table:
                msg = f"Role '{row.role}' is defined more than once"
                raise ValueError(msg)
            table[row.role] = row
        registry = cls(MappingProxyType(table))
        registry._check_consistency()
        return registry

    def _check_consistency(self) -> None:
        """Reject creation rights that contradict the rank ordering."""
        for row in self.definitions.values():
            for target in row.creatable:
                target_row = self.definitions.get(target)
                if target_row is None:
                    msg = f"'{row.role}' may create undefined role '{target}'"
                    raise ValueError(msg)
                if target_row.rank >= row.rank:
                    msg = (
                        f"'{row.role}' (rank {row.rank}) may not create "
                        f"'{target}' (rank {target_row.rank}): creators must outrank "
                        "the roles they provision"
                    )
                    raise ValueError(msg)

    @property
    def roles(self) -> tuple[Role, ...]:
        return tuple(self.definitions)

    def definition(self, role: object) -> RoleDefinition | None:
        known = to_role(role)
        if known is None:
            return None
        return self.definitions.get(known)

    def rank_of(self, role: object) -> int:
        """Dominance rank of *role*; 0 for an unknown role."""
        row = self.definition(role)
        return row.rank if row else 0

    def capabilities_of(self, role: object) -> Capabilities:
        """Default capability set of *role*; all-false for an unknown role."""
        row = self.definition(role)
        return row.capabilities if row else NO_CAPABILITIES

    def creatable_by(self, role: object) -> tuple[Role, ...]:
        row = self.definition(role)
        return row.creatable if row else ()

    def label_of(self, role: object) -> str:
        row = self.definition(role)
        return row.label if row else str(role)

    def dashboard_route_of(self, role: object) -> str:
        row = self.definition(role)
        return row.dashboard_route if row else "/dashboard"


_DICOM_TOOLS = ("can_use_dicom_viewer", "can_use_2d_tools", "can_use_mpr_tools", "can_use_3d_tools")

_ADMIN_CREATABLE = (
    Role.GROUP_ID,
    Role.ASSIGNOR,
    Role.RADIOLOGIST,
    Role.VERIFIER,
    Role.PHYSICIAN,
    Role.RECEPTIONIST,
    Role.BILLING,
    Role.TYPIST,
    Role.DASHBOARD_VIEWER,
)

DEFAULT_REGISTRY = RoleRegistry.from_definitions(
    [
        RoleDefinition(
            role=Role.SUPER_ADMIN,
            rank=100,
            capabilities=Capabilities.everything(),
            creatable=(
                Role.ADMIN,
                *_ADMIN_CREATABLE,
                Role.LAB_STAFF,
                Role.DOCTOR_ACCOUNT,
                Role.OWNER,
            ),
            label="Super Admin",
            dashboard_route="/superadmin/dashboard",
        ),
        RoleDefinition(
            role=Role.ADMIN,
            rank=90,
            capabilities=Capabilities.granting(
                "can_create_cases",
                "can_assign_cases",
                "can_view_cases",
                "can_edit_cases",
                "can_create_reports",
                "can_edit_reports",
                "can_verify_reports",
                "can_finalize_reports",
                "can_download_reports",
                "can_print_reports",
                "can_create_users",
                "can_manage_users",
                "can_view_users",
                "can_register_patients",
                "can_edit_patients",
                "can_view_patients",
                "can_generate_bills",
                "can_view_billing",
                "can_manage_pricing",
                "can_view_dashboard",
                "can_view_analytics",
                "can_export_data",
                *_DICOM_TOOLS,
                "can_use_voice_dictation",
                "can_use_saved_templates",
                "can_create_templates",
            ),
            creatable=_ADMIN_CREATABLE,
            label="Admin",
            dashboard_route="/admin/dashboard",
        ),
        RoleDefinition(
            role=Role.GROUP_ID,
            rank=80,
            capabilities=Capabilities.granting(
                "can_view_cases",
                "can_create_users",
                "can_manage_users",
                "can_view_users",
                "can_view_patients",
                "can_view_dashboard",
                "can_view_analytics",
            ),
            creatable=(
                Role.ASSIGNOR,
                Role.RADIOLOGIST,
                Role.VERIFIER,
                Role.TYPIST,
                Role.RECEPTIONIST,
            ),
            label="Group ID",
            dashboard_route="/group/dashboard",
        ),
        RoleDefinition(
            role=Role.ASSIGNOR,
            rank=70,
            capabilities=Capabilities.granting(
                "can_assign_cases",
                "can_view_cases",
                "can_edit_cases",
                "can_view_patients",
                "can_view_dashboard",
                "can_view_analytics",
                "can_view_users",
            ),
            label="Assignor",
            dashboard_route="/assignor/dashboard",
        ),
        RoleDefinition(
            role=Role.RADIOLOGIST,
            rank=60,
            capabilities=Capabilities.granting(
                "can_view_cases",
                "can_create_reports",
                "can_edit_reports",
                "can_download_reports",
                "can_view_patients",
                *_DICOM_TOOLS,
                "can_use_voice_dictation",
                "can_use_saved_templates",
                "can_create_templates",
                "can_view_dashboard",
            ),
            label="Radiologist",
            dashboard_route="/radiologist/dashboard",
        ),
        RoleDefinition(
            role=Role.TYPIST,
            rank=60,
            capabilities=Capabilities.granting(
                "can_view_cases",
                "can_edit_reports",
                "can_view_patients",
                "can_use_saved_templates",
            ),
            label="Typist",
            dashboard_route="/typist/dashboard",
        ),
        RoleDefinition(
            role=Role.VERIFIER,
            rank=50,
            capabilities=Capabilities.granting(
                "can_view_cases",
                "can_edit_reports",
                "can_verify_reports",
                "can_finalize_reports",
                "can_download_reports",
                "can_view_patients",
                *_DICOM_TOOLS,
                "can_view_dashboard",
            ),
            label="Verifier",
            dashboard_route="/verifier/dashboard",
        ),
        RoleDefinition(
            role=Role.PHYSICIAN,
            rank=40,
            capabilities=Capabilities.granting(
                "can_view_cases",
                "can_download_reports",
                "can_view_patients",
            ),
            label="Physician/Referral Doctor",
            dashboard_route="/physician/dashboard",
        ),
        RoleDefinition(
            role=Role.RECEPTIONIST,
            rank=30,
            capabilities=Capabilities.granting(
                "can_register_patients",
                "can_edit_patients",
                "can_view_patients",
                "can_print_reports",
                "can_view_cases",
            ),
            label="Receptionist",
            dashboard_route="/receptionist/dashboard",
        ),
        RoleDefinition(
            role=Role.BILLING,
            rank=20,
            capabilities=Capabilities.granting(
                "can_generate_bills",
                "can_view_billing",
                "can_view_patients",
                "can_view_cases",
                "can_download_reports",
            ),
            label="Billing Section",
            dashboard_route="/billing/dashboard",
        ),
        RoleDefinition(
            role=Role.DASHBOARD_VIEWER,
            rank=10,
            # Which dashboards are visible lives in roleConfig.dashboardAccess.
            capabilities=Capabilities.granting("can_view_dashboard", "can_view_analytics"),
            label="Dashboard Viewer",
            dashboard_route="/viewer/dashboard",
        ),
        RoleDefinition(
            role=Role.LAB_STAFF,
            rank=10,
            capabilities=Capabilities.granting(
                "can_view_cases",
                "can_view_patients",
                "can_register_patients",
            ),
            label="Lab Staff",
            dashboard_route="/lab/dashboard",
        ),
        RoleDefinition(
            role=Role.DOCTOR_ACCOUNT,
            rank=10,
            capabilities=Capabilities.granting(
                "can_view_cases",
                "can_create_reports",
                "can_edit_reports",
                "can_download_reports",
                "can_view_patients",
                *_DICOM_TOOLS,
            ),
            label="Doctor Account",
            dashboard_route="/doctor/dashboard",
        ),
        RoleDefinition(
            role=Role.OWNER,
            rank=10,
            capabilities=Capabilities.granting(
                "can_view_cases",
                "can_view_dashboard",
                "can_view_analytics",
                "can_view_billing",
                "can_manage_pricing",
            ),
            label="Owner",
            dashboard_route="/owner/dashboard",
        ),
    ]
)


def rank_of(role: object, registry: RoleRegistry = DEFAULT_REGISTRY) -> int:
    """Dominance rank of *role* (0 when unknown)."""
    return registry.rank_of(role)


def capabilities_of(role: object, registry: RoleRegistry = DEFAULT_REGISTRY) -> Capabilities:
    """Capability set derived from *role* (all-false when unknown)."""
    return registry.capabilities_of(role)


def dashboard_route_of(role: object, registry: RoleRegistry = DEFAULT_REGISTRY) -> str:
    """Landing route for *role*; ``/dashboard`` when unknown."""
    return registry.dashboard_route_of(role)


def label_of(role: object, registry: RoleRegistry = DEFAULT_REGISTRY) -> str:
    return registry.label_of(role)


def resolve_primary_role(
    roles: Sequence[str] | None, registry: RoleRegistry = DEFAULT_REGISTRY
) -> str | None:
    """Pick the dominant role among *roles*.

    Highest rank wins; among equal ranks the first-listed role wins
    (``sorted`` is stable).  Unknown roles rank 0 and are returned as
    given if nothing outranks them.
    """
    if not roles:
        return None
    if len(roles) == 1:
        return roles[0]
    return sorted(roles, key=registry.rank_of, reverse=True)[0]
