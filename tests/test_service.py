"""Tests for the account service write path."""

from __future__ import annotations

import logging

import pytest

from radaccess.core.models import (
    AssignorConfig,
    EmptyRoleConfig,
    LabAccessMode,
    OrganizationContext,
    TypistConfig,
)
from radaccess.exceptions import (
    ConfigValidationError,
    InvalidRequestError,
    NotFoundError,
    PermissionDeniedError,
)
from radaccess.rbac import Role, capabilities_of


async def _create(service, actor, role, id, **fields):
    return await service.create_account(actor, {"id": id, "role": role, **fields})


class TestCreateAccount:
    async def test_super_admin_creates_admin(self, org1_admin, store):
        assert org1_admin.organization_identifier == "ORG1"
        assert org1_admin.hierarchy.created_by == "SA"
        assert org1_admin.permissions == capabilities_of(Role.ADMIN)
        assert org1_admin.primary_role == Role.ADMIN
        parent = await store.get_account("SA")
        assert parent.hierarchy.child_users == ["A1"]

    async def test_admin_creates_in_own_org(self, service, org1_admin):
        account = await _create(service, org1_admin, "billing", "B1")
        assert account.organization_identifier == "ORG1"
        assert account.hierarchy.parent_user == "A1"

    async def test_admin_cannot_create_admin(self, service, org1_admin, store, caplog):
        with caplog.at_level(logging.WARNING, logger="radaccess.audit"):
            with pytest.raises(PermissionDeniedError, match="admin cannot create admin"):
                await _create(service, org1_admin, "admin", "A9")
        assert caplog.records[-1].action == "create_account_denied"
        assert await store.get_account("A9") is None

    async def test_admin_cannot_create_in_other_org(self, service, org1_admin):
        with pytest.raises(PermissionDeniedError):
            await _create(service, org1_admin, "billing", "B1", organizationIdentifier="ORG2")

    async def test_super_admin_needs_target_org(self, service, super_admin):
        with pytest.raises(InvalidRequestError, match="target organization"):
            await _create(service, super_admin, "admin", "A9")

    async def test_super_admin_uses_context_org(self, service, super_admin):
        actor = super_admin.model_copy(
            update={"organization_context": OrganizationContext(organization_identifier="ORG5")}
        )
        account = await _create(service, actor, "owner", "O1")
        assert account.organization_identifier == "ORG5"

    async def test_every_account_role_must_be_creatable(self, service, org1_admin):
        with pytest.raises(PermissionDeniedError):
            await _create(
                service,
                org1_admin,
                "billing",
                "B1",
                accountRoles=["billing", "lab_staff"],
                primaryRole="billing",
            )

    async def test_primary_role_resolved_by_rank(self, service, org1_admin):
        account = await _create(
            service, org1_admin, "radiologist", "R1", accountRoles=["radiologist", "assignor"]
        )
        assert account.primary_role == Role.ASSIGNOR
        assert account.account_roles == [Role.RADIOLOGIST, Role.ASSIGNOR]
        assert isinstance(account.role_config, AssignorConfig)

    async def test_explicit_primary_role_must_be_held(self, service, org1_admin):
        with pytest.raises(InvalidRequestError, match="must be one of"):
            await _create(
                service,
                org1_admin,
                "radiologist",
                "R1",
                accountRoles=["radiologist", "verifier"],
                primaryRole="billing",
            )

    async def test_typist_without_link_writes_nothing(self, service, org1_admin, store):
        with pytest.raises(ConfigValidationError):
            await _create(service, org1_admin, "typist", "T1")
        assert await store.get_account("T1") is None
        parent = await store.get_account("A1")
        assert parent.hierarchy.child_users == []

    async def test_typist_with_link(self, service, org1_admin):
        account = await _create(
            service, org1_admin, "typist", "T1", roleConfig={"linkedRadiologist": "R1"}
        )
        assert isinstance(account.role_config, TypistConfig)
        assert account.role_config.linked_radiologist == "R1"

    async def test_assignor_linked_labs(self, service, org1_admin):
        account = await _create(
            service, org1_admin, "assignor", "AS1", linkedLabs=["L1", {"labId": "L2"}]
        )
        assert account.role_config.lab_access_mode == LabAccessMode.SELECTED
        assert account.role_config.assigned_labs == ["L1", "L2"]
        assert [lab.lab_id for lab in account.linked_labs] == ["L1", "L2"]

    async def test_group_id_creates_typist(self, service, org1_admin):
        group = await _create(service, org1_admin, "group_id", "G1")
        typist = await _create(
            service, group, "typist", "T1", roleConfig={"linkedRadiologist": "R1"}
        )
        assert typist.hierarchy.created_by == "G1"

    async def test_generated_id(self, service, org1_admin):
        account = await service.create_account(org1_admin, {"role": "billing"})
        assert len(account.id) == 32

    async def test_audit_record(self, service, org1_admin, caplog):
        with caplog.at_level(logging.INFO, logger="radaccess.audit"):
            await _create(service, org1_admin, "billing", "B1")
        record = caplog.records[-1]
        assert record.action == "account_created"
        assert record.actor_id == "A1"
        assert record.target_id == "B1"
        assert record.target_role == "billing"
        assert record.event_category == "audit"


class TestSwitchRole:
    async def test_admin_switches_staff_role(self, service, org1_admin, store):
        await _create(service, org1_admin, "radiologist", "R1")
        updated = await service.switch_role(org1_admin, "R1", "verifier")
        assert updated.role == Role.VERIFIER
        assert updated.account_roles == [Role.VERIFIER]
        assert updated.primary_role == Role.VERIFIER
        assert updated.permissions == capabilities_of(Role.VERIFIER)
        stored = await store.get_account("R1")
        assert stored.role == Role.VERIFIER

    async def test_switch_resets_config(self, service, org1_admin):
        await _create(service, org1_admin, "typist", "T1", roleConfig={"linkedRadiologist": "R1"})
        updated = await service.switch_role(org1_admin, "T1", "billing")
        assert isinstance(updated.role_config, EmptyRoleConfig)

    async def test_switch_to_typist_needs_link(self, service, org1_admin):
        await _create(service, org1_admin, "billing", "B1")
        with pytest.raises(ConfigValidationError):
            await service.switch_role(org1_admin, "B1", "typist")
        updated = await service.switch_role(
            org1_admin, "B1", "typist", {"linkedRadiologist": "R1"}
        )
        assert updated.role_config.linked_radiologist == "R1"

    async def test_group_id_cannot_switch(self, service, org1_admin):
        group = await _create(service, org1_admin, "group_id", "G1")
        await _create(service, group, "radiologist", "R1")
        with pytest.raises(PermissionDeniedError, match="Only admin"):
            await service.switch_role(group, "R1", "verifier")

    async def test_admin_cannot_switch_to_admin(self, service, org1_admin):
        await _create(service, org1_admin, "billing", "B1")
        with pytest.raises(PermissionDeniedError, match="Invalid role"):
            await service.switch_role(org1_admin, "B1", "admin")

    async def test_admin_cannot_switch_peer_admin(self, service, org1_admin, super_admin):
        await _create(service, super_admin, "admin", "A3", organizationIdentifier="ORG1")
        with pytest.raises(PermissionDeniedError, match="Cannot change the role"):
            await service.switch_role(org1_admin, "A3", "billing")

    async def test_other_tenant_is_not_found(self, service, org1_admin, org2_admin):
        await _create(service, org2_admin, "billing", "B2")
        with pytest.raises(NotFoundError):
            await service.switch_role(org1_admin, "B2", "receptionist")


class TestModifyAndDelete:
    async def test_creator_deactivates(self, service, org1_admin):
        group = await _create(service, org1_admin, "group_id", "G1")
        await _create(service, group, "receptionist", "RC1")
        updated = await service.set_active(group, "RC1", False)
        assert updated.is_active is False
        reactivated = await service.set_active(group, "RC1", True)
        assert reactivated.is_active is True

    async def test_non_creator_cannot_modify(self, service, org1_admin):
        group = await _create(service, org1_admin, "group_id", "G1")
        await _create(service, org1_admin, "receptionist", "RC1")
        with pytest.raises(PermissionDeniedError, match="accounts you created"):
            await service.set_active(group, "RC1", False)

    async def test_update_role_config_merges(self, service, org1_admin):
        await _create(
            service,
            org1_admin,
            "verifier",
            "V1",
            roleConfig={"assignedRadiologists": ["R1"], "allowedPatients": ["P1"]},
        )
        updated = await service.update_role_config(
            org1_admin, "V1", {"assignedRadiologists": ["R1", "R2"]}
        )
        assert updated.role_config.assigned_radiologists == ["R1", "R2"]

    async def test_update_role_config_cannot_clear_typist_link(self, service, org1_admin):
        await _create(service, org1_admin, "typist", "T1", roleConfig={"linkedRadiologist": "R1"})
        with pytest.raises(ConfigValidationError):
            await service.update_role_config(org1_admin, "T1", {"linkedRadiologist": ""})

    async def test_admin_deletes_staff(self, service, org1_admin, store):
        await _create(service, org1_admin, "billing", "B1")
        deleted = await service.delete_account(org1_admin, "B1")
        assert deleted.is_active is False
        parent = await store.get_account("A1")
        assert "B1" not in parent.hierarchy.child_users

    async def test_admin_cannot_delete_admin(self, service, org1_admin, super_admin):
        await _create(service, super_admin, "admin", "A3", organizationIdentifier="ORG1")
        with pytest.raises(PermissionDeniedError, match="Cannot delete admin"):
            await service.delete_account(org1_admin, "A3")

    async def test_super_admin_deletes_admin(self, service, org1_admin, super_admin):
        deleted = await service.delete_account(super_admin, "A1")
        assert deleted.is_active is False

    async def test_group_id_cannot_delete(self, service, org1_admin):
        group = await _create(service, org1_admin, "group_id", "G1")
        await _create(service, group, "receptionist", "RC1")
        with pytest.raises(PermissionDeniedError, match="Only admin"):
            await service.delete_account(group, "RC1")


class TestReads:
    async def test_get_in_scope(self, service, org1_admin):
        await _create(service, org1_admin, "billing", "B1")
        assert (await service.get_account(org1_admin, "B1")).id == "B1"

    async def test_get_other_tenant_is_not_found(self, service, org1_admin, org2_admin):
        with pytest.raises(NotFoundError):
            await service.get_account(org1_admin, "A2")

    async def test_list_is_tenant_scoped(self, service, org1_admin, org2_admin):
        await _create(service, org1_admin, "billing", "B1")
        await _create(service, org2_admin, "billing", "B2")
        ids = [a.id for a in await service.list_accounts(org1_admin)]
        assert ids == ["A1", "B1"]

    async def test_super_admin_lists_everything(self, service, super_admin, org1_admin, org2_admin):
        ids = {a.id for a in await service.list_accounts(super_admin)}
        assert ids == {"SA", "A1", "A2"}

    async def test_list_created_by_me(self, service, org1_admin):
        group = await _create(service, org1_admin, "group_id", "G1")
        await _create(service, group, "receptionist", "RC1")
        ids = [a.id for a in await service.list_accounts(group, created_by_me=True)]
        assert ids == ["RC1"]

    async def test_available_roles(self, service, org1_admin):
        group = await _create(service, org1_admin, "group_id", "G1")
        roles = await service.available_roles(group)
        assert {"value": "typist", "label": "Typist"} in roles
        assert [r["value"] for r in roles] == [
            "assignor",
            "radiologist",
            "verifier",
            "typist",
            "receptionist",
        ]

    async def test_hierarchy_graph(self, service, org1_admin):
        group = await _create(service, org1_admin, "group_id", "G1")
        await _create(service, group, "receptionist", "RC1")
        await service.delete_account(org1_admin, "RC1")
        graph = await service.hierarchy(org1_admin)
        assert "RC1" in graph
        assert graph.descendants("A1") == ["G1"]
        assert graph.parent_of("RC1") is None
        assert ("G1", "RC1") not in graph.one_sided_edges()
