"""Async SQLite account store.

Uses aiosqlite for async access.  Every write that touches both ends of a
hierarchy edge runs inside one ``BEGIN IMMEDIATE`` transaction, so an edge
is either recorded on both accounts or on neither.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from radaccess.config import settings
from radaccess.core.models import Account
from radaccess.exceptions import (
    HierarchyWriteError,
    InvalidRequestError,
    NotFoundError,
    StorageError,
)
from radaccess.policy.hierarchy import detach_child, record_child
from radaccess.policy.tenant import ScopeFilter

logger = logging.getLogger("radaccess.storage")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    organization TEXT,
    organization_identifier TEXT,
    username TEXT,
    email TEXT,
    full_name TEXT,
    role TEXT NOT NULL,
    account_roles TEXT NOT NULL DEFAULT '[]',
    primary_role TEXT,
    role_config TEXT NOT NULL DEFAULT '{}',
    created_by TEXT,
    parent_user TEXT,
    child_users TEXT NOT NULL DEFAULT '[]',
    linked_labs TEXT NOT NULL DEFAULT '[]',
    visible_columns TEXT NOT NULL DEFAULT '[]',
    is_active INTEGER NOT NULL DEFAULT 1,
    permissions TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_accounts_email
    ON accounts (email);

CREATE INDEX IF NOT EXISTS idx_accounts_org_role
    ON accounts (organization_identifier, role, is_active);

CREATE INDEX IF NOT EXISTS idx_accounts_parent
    ON accounts (parent_user);

CREATE INDEX IF NOT EXISTS idx_accounts_created_by
    ON accounts (created_by);
"""

_COLUMNS = (
    "id",
    "organization",
    "organization_identifier",
    "username",
    "email",
    "full_name",
    "role",
    "account_roles",
    "primary_role",
    "role_config",
    "created_by",
    "parent_user",
    "child_users",
    "linked_labs",
    "visible_columns",
    "is_active",
    "permissions",
)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class AccountStore:
    """Async SQLite persistence for :class:`Account` records."""

    def __init__(self, db_path: Path | str | None = None, timeout: float | None = None) -> None:
        self.db_path = Path(db_path if db_path is not None else settings.db_path)
        self.timeout = timeout if timeout is not None else settings.db_timeout
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        self._db = await aiosqlite.connect(self.db_path, timeout=self.timeout)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA_SQL)
        await self._db.commit()
        logger.debug("Account store connected at %s", self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("AccountStore not connected. Call connect() first.")
        return self._db

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        db = self.db
        # One connection serves every coroutine; transactions must not interleave.
        async with self._write_lock:
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield db
            except BaseException:
                await db.rollback()
                raise
            await db.commit()

    # --- Accounts ---

    def _account_params(self, account: Account) -> tuple[Any, ...]:
        permissions = account.permissions
        return (
            account.id,
            account.organization,
            account.organization_identifier,
            account.username,
            account.email,
            account.full_name,
            account.role.value,
            json.dumps([r.value for r in account.account_roles]),
            account.primary_role.value if account.primary_role else None,
            json.dumps(account.role_config.model_dump(mode="json", by_alias=True)),
            account.hierarchy.created_by,
            account.hierarchy.parent_user,
            json.dumps(account.hierarchy.child_users),
            json.dumps([lab.model_dump(mode="json", by_alias=True) for lab in account.linked_labs]),
            json.dumps(account.visible_columns),
            int(account.is_active),
            json.dumps(permissions.model_dump(by_alias=True)) if permissions else None,
        )

    async def _insert(self, db: aiosqlite.Connection, account: Account) -> None:
        now = _utcnow()
        placeholders = ", ".join("?" for _ in range(len(_COLUMNS) + 2))
        await db.execute(
            f"INSERT INTO accounts ({', '.join(_COLUMNS)}, created_at, updated_at) "
            f"VALUES ({placeholders})",
            (*self._account_params(account), now, now),
        )

    async def _write(self, db: aiosqlite.Connection, account: Account) -> None:
        assignments = ", ".join(f"{col} = ?" for col in _COLUMNS[1:])
        params = self._account_params(account)
        cursor = await db.execute(
            f"UPDATE accounts SET {assignments}, updated_at = ? WHERE id = ?",
            (*params[1:], _utcnow(), account.id),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Account {account.id} not found")

    async def _fetch(self, db: aiosqlite.Connection, account_id: str) -> Account | None:
        cursor = await db.execute("SELECT * FROM accounts WHERE id = ?", (account_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_account(row)

    async def insert_account(self, account: Account) -> None:
        """Insert an account that has no creator (e.g. the first super_admin)."""
        try:
            async with self._transaction() as db:
                await self._insert(db, account)
        except aiosqlite.IntegrityError as exc:
            raise InvalidRequestError(f"Account {account.id} already exists") from exc

    async def get_account(self, account_id: str) -> Account | None:
        return await self._fetch(self.db, account_id)

    async def update_account(self, account: Account) -> None:
        try:
            async with self._transaction() as db:
                await self._write(db, account)
        except aiosqlite.IntegrityError as exc:
            raise InvalidRequestError(
                f"Account {account.id} conflicts with an existing account"
            ) from exc
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to update account {account.id}: {exc}") from exc

    async def insert_child_account(self, parent_id: str, child: Account) -> tuple[Account, Account]:
        """Insert *child* under *parent_id* and record the edge on both rows.

        The parent is re-read inside the transaction so concurrent creations
        under the same parent each append their own child id.

        Returns:
            The stored ``(parent, child)`` pair.

        Raises:
            HierarchyWriteError: the parent is missing or either write failed;
                nothing was written.
            InvalidRequestError: the child's id or email is already taken.
        """
        try:
            async with self._transaction() as db:
                parent = await self._fetch(db, parent_id)
                if parent is None:
                    raise HierarchyWriteError(f"Parent account {parent_id} does not exist")
                parent, child = record_child(parent, child)
                await self._insert(db, child)
                await self._write(db, parent)
        except aiosqlite.IntegrityError as exc:
            raise InvalidRequestError(
                f"Account {child.id} conflicts with an existing account"
            ) from exc
        except aiosqlite.Error as exc:
            raise HierarchyWriteError(
                f"Could not record {child.id} under {parent_id}: {exc}"
            ) from exc
        logger.info("Recorded account %s under %s", child.id, parent_id)
        return parent, child

    async def soft_delete_account(self, account_id: str) -> Account:
        """Deactivate an account and drop it from its parent's child list."""
        try:
            async with self._transaction() as db:
                account = await self._fetch(db, account_id)
                if account is None:
                    raise NotFoundError(f"Account {account_id} not found")
                parent_id = account.hierarchy.parent_user
                parent = await self._fetch(db, parent_id) if parent_id else None
                if parent is not None:
                    parent, account = detach_child(parent, account)
                    await self._write(db, parent)
                account = account.model_copy(update={"is_active": False})
                await self._write(db, account)
        except aiosqlite.Error as exc:
            raise HierarchyWriteError(f"Could not delete account {account_id}: {exc}") from exc
        return account

    async def list_accounts(
        self,
        scope: ScopeFilter,
        *,
        role: str | None = None,
        include_inactive: bool = False,
        created_by: str | None = None,
    ) -> list[Account]:
        """Return accounts matching *scope* and the optional filters."""
        where, params = scope.to_sql()
        clauses = [where]
        if role is not None:
            clauses.append("role = ?")
            params.append(str(role))
        if not include_inactive:
            clauses.append("is_active = 1")
        if created_by is not None:
            clauses.append("created_by = ?")
            params.append(created_by)
        cursor = await self.db.execute(
            f"SELECT * FROM accounts WHERE {' AND '.join(clauses)} ORDER BY created_at, id",
            params,
        )
        rows = await cursor.fetchall()
        return [self._row_to_account(r) for r in rows]

    async def count_accounts(self) -> int:
        cursor = await self.db.execute("SELECT COUNT(*) FROM accounts")
        row = await cursor.fetchone()
        return row[0] if row else 0

    def _row_to_account(self, row: aiosqlite.Row) -> Account:
        permissions = row["permissions"]
        return Account.model_validate(
            {
                "id": row["id"],
                "organization": row["organization"],
                "organizationIdentifier": row["organization_identifier"],
                "username": row["username"],
                "email": row["email"],
                "fullName": row["full_name"],
                "role": row["role"],
                "accountRoles": json.loads(row["account_roles"]),
                "primaryRole": row["primary_role"],
                "roleConfig": json.loads(row["role_config"]),
                "hierarchy": {
                    "createdBy": row["created_by"],
                    "parentUser": row["parent_user"],
                    "childUsers": json.loads(row["child_users"]),
                },
                "linkedLabs": json.loads(row["linked_labs"]),
                "visibleColumns": json.loads(row["visible_columns"]),
                "isActive": bool(row["is_active"]),
                "permissions": json.loads(permissions) if permissions else None,
            }
        )
