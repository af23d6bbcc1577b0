"""
Principal directory: the engine's view of the identity store.

The engine never owns user records. It only asks how many principals hold
a role (to refuse deleting or renaming roles in use) and, for the
management API, who a principal is and who holds a given role.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .models import Principal
from .roles import RoleName, canonicalize


class PrincipalDirectory(ABC):
    """Read-only identity store contract."""

    @abstractmethod
    async def count_principals_with_role(self, role: RoleName) -> int:
        pass

    @abstractmethod
    async def get_principal(self, principal_id: str) -> Optional[Principal]:
        pass

    @abstractmethod
    async def list_principals_with_role(self, role: RoleName) -> List[Principal]:
        pass


class InMemoryPrincipalDirectory(PrincipalDirectory):
    """Directory backed by a dict, used by tests and demos."""

    def __init__(self):
        self._principals: Dict[str, Principal] = {}

    def add(self, principal_id: str, role, email: Optional[str] = None) -> Principal:
        principal = Principal(id=principal_id, role=canonicalize(role), email=email)
        self._principals[principal_id] = principal
        return principal

    def remove(self, principal_id: str) -> None:
        self._principals.pop(principal_id, None)

    async def count_principals_with_role(self, role: RoleName) -> int:
        return sum(1 for p in self._principals.values() if p.role == role)

    async def get_principal(self, principal_id: str) -> Optional[Principal]:
        return self._principals.get(principal_id)

    async def list_principals_with_role(self, role: RoleName) -> List[Principal]:
        holders = [p for p in self._principals.values() if p.role == role]
        return sorted(holders, key=lambda p: p.id)
