"""
Role storage backends.

Storage is the only place that enforces name uniqueness atomically: the
in-memory backend checks and inserts under one lock, the SQLite backend
relies on a UNIQUE index over the canonical role name.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Optional

import aiosqlite

from .exceptions import RoleConflictError, RoleNotFoundError, RoleStoreUnavailableError
from .models import Role
from .roles import RoleName

logger = logging.getLogger(__name__)


# =============================================================================
# Storage Interface
# =============================================================================

class RoleStorage(ABC):
    """Abstract base class for role storage backends."""

    async def initialize(self) -> None:
        """Prepare the backend (open connections, create schema)."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass

    @abstractmethod
    async def get_role(self, role_id: str) -> Optional[Role]:
        """Get role by id."""
        pass

    @abstractmethod
    async def get_role_by_name(self, name: RoleName) -> Optional[Role]:
        """Get role by canonical name."""
        pass

    @abstractmethod
    async def list_roles(self) -> List[Role]:
        """List all roles."""
        pass

    @abstractmethod
    async def insert_role(self, role: Role) -> Role:
        """Insert a new role. Raises RoleConflictError if the name is taken."""
        pass

    @abstractmethod
    async def update_role(self, role: Role) -> Role:
        """Replace the role with the same id. Raises RoleConflictError on a name clash."""
        pass

    @abstractmethod
    async def delete_role(self, role_id: str) -> bool:
        """Delete role by id. Returns False if it did not exist."""
        pass


# =============================================================================
# In-Memory Storage Implementation
# =============================================================================

class InMemoryRoleStorage(RoleStorage):
    """In-memory role storage for tests and single-process deployments."""

    def __init__(self):
        self._roles: Dict[str, Role] = {}
        self._ids_by_name: Dict[RoleName, str] = {}
        self._lock = asyncio.Lock()

    async def get_role(self, role_id: str) -> Optional[Role]:
        return self._roles.get(role_id)

    async def get_role_by_name(self, name: RoleName) -> Optional[Role]:
        role_id = self._ids_by_name.get(name)
        return self._roles.get(role_id) if role_id else None

    async def list_roles(self) -> List[Role]:
        return list(self._roles.values())

    async def insert_role(self, role: Role) -> Role:
        async with self._lock:
            name = role.role_name
            if name in self._ids_by_name:
                raise RoleConflictError(
                    f"Role '{role.name}' already exists",
                    role_name=role.name,
                    operation="create"
                )
            if role.id in self._roles:
                raise RoleConflictError(
                    f"Role id '{role.id}' already exists",
                    role_id=role.id,
                    operation="create"
                )
            self._roles[role.id] = role
            self._ids_by_name[name] = role.id
        return role

    async def update_role(self, role: Role) -> Role:
        async with self._lock:
            current = self._roles.get(role.id)
            if current is None:
                raise RoleNotFoundError(f"Role '{role.id}' not found", role_id=role.id, operation="update")
            old_name, new_name = current.role_name, role.role_name
            if new_name != old_name:
                if new_name in self._ids_by_name:
                    raise RoleConflictError(
                        f"Role '{role.name}' already exists",
                        role_id=role.id,
                        role_name=role.name,
                        operation="update"
                    )
                del self._ids_by_name[old_name]
                self._ids_by_name[new_name] = role.id
            self._roles[role.id] = role
        return role

    async def delete_role(self, role_id: str) -> bool:
        async with self._lock:
            role = self._roles.pop(role_id, None)
            if role is None:
                return False
            self._ids_by_name.pop(role.role_name, None)
        return True


# =============================================================================
# SQLite Storage Implementation
# =============================================================================

_SCHEMA = """
CREATE TABLE IF NOT EXISTS roles (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    canonical_name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    is_system INTEGER NOT NULL DEFAULT 0,
    permissions TEXT NOT NULL DEFAULT '[]',
    created_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_roles_canonical_name ON roles (canonical_name);
"""

_COLUMNS = "id, name, canonical_name, description, is_system, permissions, created_by, created_at, updated_at"


class SQLiteRoleStorage(RoleStorage):
    """
    SQLite role storage using aiosqlite.

    A single connection is opened by :meth:`initialize` and reused; aiosqlite
    runs statements on its own worker thread, so calls are serialized.
    """

    def __init__(self, database_path: str):
        self.database_path = database_path
        self._conn: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        if self._conn is not None:
            return
        try:
            self._conn = await aiosqlite.connect(self.database_path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.executescript(_SCHEMA)
            await self._conn.commit()
        except aiosqlite.Error as e:
            raise RoleStoreUnavailableError(
                f"Failed to open role database {self.database_path}: {e}", cause=e
            )
        logger.info("Role storage ready at %s", self.database_path)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RoleStoreUnavailableError("Role storage is not initialized")
        return self._conn

    @staticmethod
    def _to_row(role: Role) -> tuple:
        return (
            role.id,
            role.name,
            role.role_name.canonical,
            role.description,
            1 if role.is_system else 0,
            json.dumps(list(role.permissions)),
            role.created_by,
            role.created_at.isoformat(),
            role.updated_at.isoformat(),
        )

    @staticmethod
    def _from_row(row) -> Role:
        return Role(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            is_system=bool(row["is_system"]),
            permissions=json.loads(row["permissions"]),
            created_by=row["created_by"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def _fetch_one(self, query: str, params: tuple) -> Optional[Role]:
        try:
            async with self._connection().execute(query, params) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise RoleStoreUnavailableError(f"Role query failed: {e}", cause=e)
        return self._from_row(row) if row else None

    async def get_role(self, role_id: str) -> Optional[Role]:
        return await self._fetch_one(f"SELECT {_COLUMNS} FROM roles WHERE id = ?", (role_id,))

    async def get_role_by_name(self, name: RoleName) -> Optional[Role]:
        return await self._fetch_one(
            f"SELECT {_COLUMNS} FROM roles WHERE canonical_name = ?", (name.canonical,)
        )

    async def list_roles(self) -> List[Role]:
        try:
            async with self._connection().execute(f"SELECT {_COLUMNS} FROM roles") as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise RoleStoreUnavailableError(f"Role query failed: {e}", cause=e)
        return [self._from_row(row) for row in rows]

    @asynccontextmanager
    async def _transaction(self):
        """Yield the connection, commit on success, roll back on any failure."""
        conn = self._connection()
        try:
            yield conn
            await conn.commit()
        except BaseException:
            # Includes cancellation by a storage timeout: the statement may
            # already be queued on the worker thread and must not be
            # committed by a later call.
            await self._rollback(conn)
            raise

    @staticmethod
    async def _rollback(conn: aiosqlite.Connection) -> None:
        try:
            await conn.rollback()
        except aiosqlite.Error:
            logger.exception("Role storage rollback failed")

    async def insert_role(self, role: Role) -> Role:
        try:
            async with self._transaction() as conn:
                await conn.execute(
                    f"INSERT INTO roles ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    self._to_row(role)
                )
        except aiosqlite.IntegrityError as e:
            raise RoleConflictError(
                f"Role '{role.name}' already exists",
                role_name=role.name,
                operation="create",
                cause=e
            )
        except aiosqlite.Error as e:
            raise RoleStoreUnavailableError(f"Failed to insert role: {e}", cause=e)
        return role

    async def update_role(self, role: Role) -> Role:
        row = self._to_row(role)
        try:
            async with self._transaction() as conn:
                cursor = await conn.execute(
                    "UPDATE roles SET name = ?, canonical_name = ?, description = ?, is_system = ?, "
                    "permissions = ?, created_by = ?, created_at = ?, updated_at = ? WHERE id = ?",
                    row[1:] + (role.id,)
                )
                updated = cursor.rowcount
        except aiosqlite.IntegrityError as e:
            raise RoleConflictError(
                f"Role '{role.name}' already exists",
                role_id=role.id,
                role_name=role.name,
                operation="update",
                cause=e
            )
        except aiosqlite.Error as e:
            raise RoleStoreUnavailableError(f"Failed to update role: {e}", cause=e)
        if not updated:
            raise RoleNotFoundError(f"Role '{role.id}' not found", role_id=role.id, operation="update")
        return role

    async def delete_role(self, role_id: str) -> bool:
        try:
            async with self._transaction() as conn:
                cursor = await conn.execute("DELETE FROM roles WHERE id = ?", (role_id,))
                deleted = cursor.rowcount
        except aiosqlite.Error as e:
            raise RoleStoreUnavailableError(f"Failed to delete role: {e}", cause=e)
        return deleted > 0


def create_role_storage(database_path: Optional[str] = None) -> RoleStorage:
    """SQLite storage when a path is given, in-memory otherwise."""
    if database_path:
        return SQLiteRoleStorage(database_path)
    return InMemoryRoleStorage()
