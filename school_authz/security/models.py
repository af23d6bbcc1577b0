"""
Data models for roles and principals.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .roles import RoleName, canonicalize


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dedupe(values: List[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        value = value.strip()
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result


class Role(BaseModel):
    """Role record as held by the role store."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = Field(..., min_length=1, max_length=64)
    description: str = ""
    is_system: bool = False
    permissions: List[str] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Role name cannot be empty")
        return v

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, v: List[str]) -> List[str]:
        return _dedupe(v)

    @property
    def role_name(self) -> RoleName:
        return canonicalize(self.name)

    def grants(self, permission: str) -> bool:
        return permission in self.permissions

    def to_response(self, user_count: Optional[int] = None) -> Dict[str, Any]:
        """JSON body used by the management API."""
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "isSystem": self.is_system,
            "permissions": list(self.permissions),
            "permissionCount": len(self.permissions),
            "createdBy": self.created_by,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if user_count is not None:
            data["userCount"] = user_count
        return data


class RoleCreate(BaseModel):
    """Payload for creating a custom role."""
    name: str = Field(..., min_length=1, max_length=64)
    description: str = ""
    permissions: List[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Role name cannot be empty")
        return v

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, v: List[str]) -> List[str]:
        return _dedupe(v)


class RoleUpdate(BaseModel):
    """
    Partial update for a role.

    ``is_system`` is accepted so clients that echo full records do not fail
    validation, but the store never applies it.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=64)
    description: Optional[str] = None
    permissions: Optional[List[str]] = None
    is_system: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Role name cannot be empty")
        return v

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return None if v is None else _dedupe(v)


class CheckPermissionRequest(BaseModel):
    """Body of the check-permission management call."""
    role: Optional[str] = None
    permissions: Optional[List[str]] = None


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, rebuilt from the bearer token on every request."""
    id: str
    role: RoleName
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == RoleName("admin")

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "email": self.email, "role": self.role.display}
