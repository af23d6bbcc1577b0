"""
Role management API endpoints
"""
from fastapi import APIRouter, HTTPException, status, Depends
from fastapi.responses import JSONResponse
from typing import Any, Dict
import logging

from ...security.catalog import format_role_name, role_hierarchy
from ...security.dependencies import get_engine, require_authenticated, require_role
from ...security.engine import AuthorizationEngine
from ...security.exceptions import AuthorizationError, RoleNotFoundError
from ...security.models import CheckPermissionRequest, Principal, RoleCreate, RoleUpdate

logger = logging.getLogger(__name__)

# Router setup
router = APIRouter(prefix="/api/roles", tags=["Roles"])

require_admin = require_role("admin")


def _http_error(error: AuthorizationError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.to_dict())


def _internal_error(action: str, error: Exception) -> HTTPException:
    logger.error(f"Failed to {action}: {error}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": f"Failed to {action}"}
    )


@router.get("")
async def list_roles(
    principal: Principal = Depends(require_admin),
    engine: AuthorizationEngine = Depends(get_engine)
):
    """List all roles, system roles first"""
    try:
        roles = await engine.store.list_roles()
        return {
            "success": True,
            "roles": [role.to_response() for role in roles],
            "total": len(roles),
        }
    except AuthorizationError as e:
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("list roles", e)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_role(
    payload: RoleCreate,
    principal: Principal = Depends(require_admin),
    engine: AuthorizationEngine = Depends(get_engine)
):
    """Create a custom role"""
    try:
        role = await engine.store.create_role(payload, created_by=principal.id)
        return {"success": True, "message": "Role created successfully", "role": role.to_response()}
    except AuthorizationError as e:
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("create role", e)


@router.get("/hierarchy")
async def get_hierarchy():
    """System roles in display order (public)"""
    return {"success": True, "hierarchy": role_hierarchy()}


@router.get("/permissions/all")
async def get_all_permissions(
    principal: Principal = Depends(require_admin),
    engine: AuthorizationEngine = Depends(get_engine)
):
    """Permission catalog, flat and grouped by category"""
    catalog = engine.catalog
    return {
        "success": True,
        "allPermissions": catalog.sorted_permissions(),
        "byCategory": catalog.grouped(),
        "total": len(catalog),
        "version": catalog.version,
    }


@router.get("/statistics")
async def get_statistics(
    principal: Principal = Depends(require_role("admin", "head-teacher")),
    engine: AuthorizationEngine = Depends(get_engine)
):
    """Principal counts per role"""
    try:
        statistics = await engine.store.role_statistics()
        return {"success": True, "statistics": statistics}
    except AuthorizationError as e:
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("load role statistics", e)


@router.get("/my/info")
async def get_my_info(
    principal: Principal = Depends(require_authenticated),
    engine: AuthorizationEngine = Depends(get_engine)
):
    """The caller's identity and role details"""
    try:
        try:
            role = await engine.resolve_role(principal.role)
        except RoleNotFoundError:
            role = None
        permissions = await engine.resolved_permissions(principal.role)
        role_details: Dict[str, Any] = {
            "name": principal.role.display,
            "displayName": format_role_name(principal.role),
            "description": role.description if role else None,
            "isSystem": role.is_system if role else False,
            "permissions": permissions,
            "permissionCount": len(permissions),
        }
        return {"success": True, "user": principal.to_dict(), "roleDetails": role_details}
    except AuthorizationError as e:
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("load role information", e)


@router.get("/my/permissions")
async def get_my_permissions(
    principal: Principal = Depends(require_authenticated),
    engine: AuthorizationEngine = Depends(get_engine)
):
    """The caller's resolved permission list"""
    try:
        permissions = await engine.resolved_permissions(principal.role)
        return {
            "success": True,
            "role": principal.role.display,
            "permissions": permissions,
            "count": len(permissions),
        }
    except AuthorizationError as e:
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("load permissions", e)


@router.post("/check-permission")
async def check_permission(
    payload: CheckPermissionRequest,
    principal: Principal = Depends(require_admin),
    engine: AuthorizationEngine = Depends(get_engine)
):
    """Check which of the given permissions a role grants"""
    if not payload.role or payload.permissions is None:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Role and permissions array required"}
        )
    try:
        try:
            role = await engine.resolve_role(payload.role)
        except RoleNotFoundError:
            roles = await engine.store.list_roles()
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": "Invalid role", "availableRoles": [r.name for r in roles]}
            )
        results = {}
        for permission in payload.permissions:
            results[permission] = await engine.has_permission(role.name, permission)
        return {"success": True, "role": role.name, "permissions": results}
    except AuthorizationError as e:
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("check permissions", e)


@router.get("/{role_id}/permissions")
async def get_role_permissions(
    role_id: str,
    principal: Principal = Depends(require_admin),
    engine: AuthorizationEngine = Depends(get_engine)
):
    """Permissions granted by one role"""
    try:
        role = await engine.store.find_role(role_id)
        return {
            "success": True,
            "role": role.name,
            "permissions": list(role.permissions),
            "count": len(role.permissions),
        }
    except AuthorizationError as e:
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("load role permissions", e)


@router.get("/{role_name}/users")
async def get_role_users(
    role_name: str,
    principal: Principal = Depends(require_role("admin", "head-teacher")),
    engine: AuthorizationEngine = Depends(get_engine)
):
    """Principals holding one role"""
    try:
        role, holders = await engine.store.role_holders(role_name)
        return {
            "success": True,
            "role": role.name,
            "count": len(holders),
            "data": [holder.to_dict() for holder in holders],
        }
    except AuthorizationError as e:
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("load role users", e)


@router.get("/{role_id}")
async def get_role(
    role_id: str,
    principal: Principal = Depends(require_admin),
    engine: AuthorizationEngine = Depends(get_engine)
):
    """One role, looked up by id or name"""
    try:
        role = await engine.store.find_role(role_id)
        return {"success": True, "role": role.to_response()}
    except AuthorizationError as e:
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("load role", e)


@router.put("/{role_id}")
async def update_role(
    role_id: str,
    payload: RoleUpdate,
    principal: Principal = Depends(require_admin),
    engine: AuthorizationEngine = Depends(get_engine)
):
    """Update a role; system roles keep their name"""
    try:
        role = await engine.store.update_role(role_id, payload, updated_by=principal.id)
        return {"success": True, "message": "Role updated successfully", "role": role.to_response()}
    except AuthorizationError as e:
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("update role", e)


@router.delete("/{role_id}")
async def delete_role(
    role_id: str,
    principal: Principal = Depends(require_admin),
    engine: AuthorizationEngine = Depends(get_engine)
):
    """Delete a custom role nobody holds"""
    try:
        role = await engine.store.delete_role(role_id, deleted_by=principal.id)
        return {"success": True, "message": "Role deleted successfully", "role": role.to_response()}
    except AuthorizationError as e:
        raise _http_error(e)
    except Exception as e:
        raise _internal_error("delete role", e)
