"""Shared fixtures for radaccess tests."""

from __future__ import annotations

from typing import Any

import pytest
import pytest_asyncio

from radaccess.core.models import Account
from radaccess.core.service import AccountService
from radaccess.rbac import Role
from radaccess.storage.database import AccountStore


def _account(
    role: Role | str, id: str | None = None, org: str | None = "ORG1", **fields: Any
) -> Account:
    data: dict[str, Any] = {"id": id or f"{role}-1", "role": role, **fields}
    if Role(role) != Role.SUPER_ADMIN:
        data.setdefault("organizationIdentifier", org)
    return Account.model_validate(data)


@pytest.fixture
def make_account():
    """Factory building an :class:`Account` in ORG1 unless told otherwise."""
    return _account


@pytest_asyncio.fixture
async def store(tmp_path):
    """Fresh SQLite account store for each test."""
    account_store = AccountStore(tmp_path / "test.db")
    await account_store.connect()
    yield account_store
    await account_store.close()


@pytest_asyncio.fixture
async def super_admin(store):
    """A stored super_admin with no tenant."""
    account = _account(Role.SUPER_ADMIN, id="SA", email="root@example.com")
    await store.insert_account(account)
    return account


@pytest_asyncio.fixture
async def service(store):
    return AccountService(store)


@pytest_asyncio.fixture
async def org1_admin(service, super_admin):
    """An ORG1 admin created by the super_admin through the service."""
    return await service.create_account(
        super_admin,
        {
            "id": "A1",
            "role": "admin",
            "email": "admin@org1.example",
            "organizationIdentifier": "org1",
        },
    )


@pytest_asyncio.fixture
async def org2_admin(service, super_admin):
    return await service.create_account(
        super_admin,
        {
            "id": "A2",
            "role": "admin",
            "email": "admin@org2.example",
            "organizationIdentifier": "ORG2",
        },
    )
