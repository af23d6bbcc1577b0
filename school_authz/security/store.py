"""
Role Store: the single authoritative source of role -> permission grants.

Reads go through an immutable :class:`RoleSnapshot` cached for a short TTL
and dropped on every mutation. Mutations are serialized per canonical role
name, validated against the permission catalog, and reported to the
decision observer.
"""

from __future__ import annotations

import asyncio
import logging
import time
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple, TypeVar

from .catalog import PermissionCatalog, SYSTEM_ROLES, SystemRoleDefinition, format_role_name
from .directory import PrincipalDirectory
from .exceptions import (
    RoleConflictError, RoleNotFoundError, RoleStoreUnavailableError, RoleValidationError
)
from .logging import DecisionObserver, NullObserver, RoleChangeEvent, SecurityEventType
from .models import Principal, Role, RoleCreate, RoleUpdate
from .roles import RoleName, canonicalize
from .storage import RoleStorage

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RoleSnapshot:
    """Immutable view of every role at one point in time."""
    roles: Mapping[RoleName, Role]
    loaded_at: float
    grants: Mapping[RoleName, FrozenSet[str]] = field(default_factory=dict)

    @classmethod
    def build(cls, roles: List[Role], loaded_at: float) -> "RoleSnapshot":
        by_name = {role.role_name: role for role in roles}
        grants = {name: frozenset(role.permissions) for name, role in by_name.items()}
        return cls(roles=by_name, loaded_at=loaded_at, grants=grants)

    def get(self, name: RoleName) -> Optional[Role]:
        return self.roles.get(name)

    def permissions_of(self, name: RoleName) -> FrozenSet[str]:
        return self.grants.get(name, frozenset())

    def has_permission(self, name: RoleName, permission: str) -> bool:
        return permission in self.grants.get(name, ())


class RoleStore:
    """
    Role repository with caching, invariants and per-name serialization.

    Args:
        storage: Backend holding role records.
        catalog: Permission catalog used to validate grants.
        directory: Identity store view used for "in use" checks.
        observer: Receiver of role change events.
        cache_ttl: Seconds a snapshot may be served before reloading.
        storage_timeout: Upper bound for any single storage call.
    """

    def __init__(
        self,
        storage: RoleStorage,
        catalog: PermissionCatalog,
        directory: PrincipalDirectory,
        observer: Optional[DecisionObserver] = None,
        cache_ttl: float = 5.0,
        storage_timeout: float = 2.0,
        system_roles: tuple = SYSTEM_ROLES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.storage = storage
        self.catalog = catalog
        self.directory = directory
        self.observer = observer or NullObserver()
        self.cache_ttl = cache_ttl
        self.storage_timeout = storage_timeout
        self.system_roles = system_roles
        self._clock = clock

        self._snapshot: Optional[RoleSnapshot] = None
        self._generation = 0
        self._refresh_lock = asyncio.Lock()
        # Entries vanish once no coroutine holds or waits on the lock.
        self._name_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """Open storage and seed system roles. Safe to call repeatedly."""
        await self._call(self.storage.initialize())
        seeded = []
        for definition in self.system_roles:
            if await self._seed_system_role(definition):
                seeded.append(definition.name.display)
        self.invalidate()
        if seeded:
            logger.info("Seeded system roles: %s", ", ".join(seeded))
            self._notify(
                SecurityEventType.ROLES_SEEDED,
                operation="seed",
                message=f"Seeded {len(seeded)} system roles",
                details={"roles": seeded, "catalog_version": self.catalog.version},
            )

    async def _seed_system_role(self, definition: SystemRoleDefinition) -> bool:
        unknown = self.catalog.unknown(definition.permissions)
        if unknown:
            raise RoleValidationError(
                f"System role '{definition.name}' grants unknown permissions",
                role_name=definition.name.display,
                operation="seed",
                invalid_permissions=unknown,
            )
        async with self._lock_for(definition.name):
            if await self._call(self.storage.get_role_by_name(definition.name)) is not None:
                return False
            role = Role(
                name=definition.name.display,
                description=definition.description,
                is_system=True,
                permissions=list(definition.permissions),
                created_by="system",
            )
            try:
                await self._call(self.storage.insert_role(role))
            except RoleConflictError:
                return False
        return True

    async def close(self) -> None:
        await self.storage.close()

    # -------------------------------------------------------------------------
    # Snapshot cache
    # -------------------------------------------------------------------------

    def invalidate(self) -> None:
        """Drop the cached snapshot; the next read reloads from storage."""
        self._generation += 1
        self._snapshot = None

    def _is_fresh(self, snapshot: Optional[RoleSnapshot]) -> bool:
        return snapshot is not None and (self._clock() - snapshot.loaded_at) < self.cache_ttl

    async def snapshot(self) -> RoleSnapshot:
        """Current snapshot, reloaded at most once per TTL by one caller."""
        snapshot = self._snapshot
        if self._is_fresh(snapshot):
            return snapshot
        async with self._refresh_lock:
            snapshot = self._snapshot
            if self._is_fresh(snapshot):
                return snapshot
            generation = self._generation
            roles = await self._call(self.storage.list_roles())
            snapshot = RoleSnapshot.build(roles, self._clock())
            # A mutation that landed during the load makes this snapshot stale.
            if generation == self._generation:
                self._snapshot = snapshot
            return snapshot

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def resolve_role(self, name) -> Role:
        """Resolve any spelling of a role name to its record."""
        try:
            role_name = canonicalize(name)
        except (TypeError, ValueError):
            raise RoleNotFoundError(f"Role '{name}' not found", operation="resolve")
        role = (await self.snapshot()).get(role_name)
        if role is None:
            raise RoleNotFoundError(
                f"Role '{role_name}' not found", role_name=role_name.display, operation="resolve"
            )
        return role

    async def get_role(self, role_id: str) -> Role:
        role = await self._call(self.storage.get_role(role_id))
        if role is None:
            raise RoleNotFoundError(f"Role '{role_id}' not found", role_id=role_id, operation="get")
        return role

    async def find_role(self, identifier: str) -> Role:
        """Look a role up by id, falling back to any spelling of its name."""
        role = await self._call(self.storage.get_role(identifier))
        if role is not None:
            return role
        return await self.resolve_role(identifier)

    async def list_roles(self) -> List[Role]:
        """System roles first, then custom roles, each by name."""
        roles = await self._call(self.storage.list_roles())
        return sorted(roles, key=lambda r: (not r.is_system, r.role_name.canonical))

    async def role_statistics(self) -> Dict[str, object]:
        roles = await self.list_roles()
        counts = await asyncio.gather(
            *(self._call(self.directory.count_principals_with_role(r.role_name)) for r in roles)
        )
        entries = [
            {
                "role": role.name,
                "displayName": format_role_name(role.name),
                "isSystem": role.is_system,
                "permissionCount": len(role.permissions),
                "userCount": count,
            }
            for role, count in zip(roles, counts)
        ]
        return {
            "roles": entries,
            "totalRoles": len(roles),
            "systemRoles": sum(1 for r in roles if r.is_system),
            "customRoles": sum(1 for r in roles if not r.is_system),
            "totalUsers": sum(counts),
        }

    async def role_holders(self, name) -> Tuple[Role, List[Principal]]:
        """The role named ``name`` and the principals currently holding it."""
        role = await self.resolve_role(name)
        holders = await self._call(self.directory.list_principals_with_role(role.role_name))
        return role, holders

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def create_role(self, payload: RoleCreate, created_by: Optional[str] = None) -> Role:
        """Create a custom role. Raises RoleValidationError or RoleConflictError."""
        try:
            role_name = canonicalize(payload.name)
        except ValueError as e:
            raise RoleValidationError(str(e), operation="create")
        self._validate_permissions(payload.permissions, role_name.display, "create")

        async with self._lock_for(role_name):
            if await self._call(self.storage.get_role_by_name(role_name)) is not None:
                raise RoleConflictError(
                    f"Role '{role_name}' already exists",
                    role_name=role_name.display,
                    operation="create",
                )
            role = Role(
                name=role_name.display,
                description=payload.description,
                is_system=False,
                permissions=list(payload.permissions),
                created_by=created_by,
            )
            role = await self._call(self.storage.insert_role(role))
            self.invalidate()

        logger.info("Role %s created by %s", role.name, created_by)
        self._notify(
            SecurityEventType.ROLE_CREATED,
            role=role,
            user_id=created_by,
            operation="create",
            details={"permissions": list(role.permissions)},
        )
        return role

    async def update_role(self, role_id: str, patch: RoleUpdate, updated_by: Optional[str] = None) -> Role:
        """
        Apply a partial update.

        ``is_system`` is never changed. Renaming a system role, renaming a
        role that principals hold, or renaming onto an existing name is a
        conflict. Permission grants are re-validated against the catalog.
        """
        current = await self.get_role(role_id)
        changes = patch.model_dump(exclude_unset=True)
        changes.pop("is_system", None)

        new_name = None
        if changes.get("name") is not None:
            new_name = canonicalize(changes["name"])

        lock_names = {current.role_name}
        if new_name is not None:
            lock_names.add(new_name)

        async with self._lock_many(lock_names):
            # Re-read under the lock; the role may have changed meanwhile.
            current = await self.get_role(role_id)
            update: Dict[str, object] = {}

            if new_name is not None:
                if new_name != current.role_name:
                    if current.is_system:
                        raise RoleConflictError(
                            "Cannot rename system role",
                            role_id=role_id,
                            role_name=current.name,
                            operation="update",
                        )
                    holders = await self._call(self.directory.count_principals_with_role(current.role_name))
                    if holders:
                        raise RoleConflictError(
                            "Cannot rename role that is in use",
                            role_id=role_id,
                            role_name=current.name,
                            operation="update",
                            details={"userCount": holders},
                        )
                    update["name"] = new_name.display
                elif not current.is_system:
                    update["name"] = new_name.display

            if "description" in changes and changes["description"] is not None:
                update["description"] = changes["description"]

            if changes.get("permissions") is not None:
                self._validate_permissions(changes["permissions"], current.name, "update", role_id=role_id)
                update["permissions"] = list(changes["permissions"])

            if not update:
                return current

            update["updated_at"] = datetime.now(timezone.utc)
            role = current.model_copy(update=update)
            role = await self._call(self.storage.update_role(role))
            self.invalidate()

        logger.info("Role %s updated by %s", role.name, updated_by)
        self._notify(
            SecurityEventType.ROLE_UPDATED,
            role=role,
            user_id=updated_by,
            operation="update",
            details={"changed": sorted(k for k in update if k != "updated_at"), "previous_name": current.name},
        )
        return role

    async def delete_role(self, role_id: str, deleted_by: Optional[str] = None) -> Role:
        """Delete a custom role nobody holds. Returns the deleted record."""
        current = await self.get_role(role_id)
        if current.is_system:
            raise RoleConflictError(
                "Cannot delete system role",
                role_id=role_id,
                role_name=current.name,
                operation="delete",
            )

        async with self._lock_for(current.role_name):
            # Point-in-time check: a principal assigned after this read is not seen.
            holders = await self._call(self.directory.count_principals_with_role(current.role_name))
            if holders:
                raise RoleConflictError(
                    "Cannot delete role that is in use",
                    role_id=role_id,
                    role_name=current.name,
                    operation="delete",
                    details={"userCount": holders},
                )
            deleted = await self._call(self.storage.delete_role(role_id))
            if not deleted:
                raise RoleNotFoundError(f"Role '{role_id}' not found", role_id=role_id, operation="delete")
            self.invalidate()

        logger.info("Role %s deleted by %s", current.name, deleted_by)
        self._notify(
            SecurityEventType.ROLE_DELETED,
            role=current,
            user_id=deleted_by,
            operation="delete",
        )
        return current

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _validate_permissions(self, permissions, role_name: str, operation: str, role_id: Optional[str] = None):
        if not permissions:
            raise RoleValidationError(
                "Role must have at least one permission",
                role_id=role_id,
                role_name=role_name,
                operation=operation,
            )
        unknown = self.catalog.unknown(permissions)
        if unknown:
            raise RoleValidationError(
                f"Invalid permissions: {', '.join(unknown)}",
                role_id=role_id,
                role_name=role_name,
                operation=operation,
                invalid_permissions=unknown,
            )

    def _lock_for(self, name: RoleName) -> asyncio.Lock:
        lock = self._name_locks.get(name.canonical)
        if lock is None:
            lock = self._name_locks[name.canonical] = asyncio.Lock()
        return lock

    def _lock_many(self, names) -> "_MultiLock":
        # Fixed acquisition order keeps concurrent renames deadlock free.
        ordered = sorted(names, key=lambda n: n.canonical)
        return _MultiLock([self._lock_for(n) for n in ordered])

    async def _call(self, awaitable: Awaitable[T]) -> T:
        """Await a storage call bounded by ``storage_timeout``."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.storage_timeout)
        except asyncio.TimeoutError as e:
            logger.error("Role storage call timed out after %.2fs", self.storage_timeout)
            raise RoleStoreUnavailableError(
                f"Role storage did not answer within {self.storage_timeout}s", cause=e
            )

    def _notify(
        self,
        event_type: SecurityEventType,
        operation: str,
        role: Optional[Role] = None,
        user_id: Optional[str] = None,
        message: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        event = RoleChangeEvent(
            event_type=event_type,
            user_id=user_id,
            role_id=role.id if role else None,
            role_name=role.name if role else None,
            operation=operation,
            message=message or f"Role {role.name if role else ''} {operation}d".strip(),
            details=details or {},
        )
        try:
            self.observer.notify(event)
        except Exception:
            logger.exception("Observer failed for %s", event_type.value)


class _MultiLock:
    """Async context manager acquiring several locks in the given order."""

    def __init__(self, locks: List[asyncio.Lock]):
        self._locks = locks
        self._held: List[asyncio.Lock] = []

    async def __aenter__(self):
        try:
            for lock in self._locks:
                await lock.acquire()
                self._held.append(lock)
        except BaseException:
            self._release()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self._release()
        return False

    def _release(self):
        while self._held:
            self._held.pop().release()
