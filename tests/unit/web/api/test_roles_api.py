"""
Unit tests for role management API endpoints.
"""

import pytest
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

from school_authz.security.exceptions import RoleStoreUnavailableError
from school_authz.web.app import create_app


@pytest.fixture
def client(config, directory):
    """Create test client with the application lifespan running."""
    app = create_app(config, directory=directory)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def admin(auth_header):
    return auth_header("admin-1", "admin")


@pytest.fixture
def teacher(auth_header):
    return auth_header("teacher-1", "teacher")


def create_mentor(client, headers, **overrides):
    payload = {"name": "Mentor", "description": "Peer mentor", "permissions": ["view_class_students"]}
    payload.update(overrides)
    return client.post("/api/roles", json=payload, headers=headers)


class TestRolesAPI:
    """Test cases for roles API endpoints."""

    def test_list_roles(self, client, admin):
        response = client.get("/api/roles", headers=admin)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["total"] == 6
        assert all(role["isSystem"] for role in data["roles"])

    def test_list_requires_admin(self, client, teacher):
        response = client.get("/api/roles", headers=teacher)
        assert response.status_code == 403
        detail = response.json()["detail"]
        assert detail["error"] == "Forbidden: Insufficient permissions"
        assert detail["requiredRoles"] == ["admin"]
        assert detail["userRole"] == "teacher"

    def test_list_requires_token(self, client):
        response = client.get("/api/roles")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_create_role(self, client, admin):
        response = create_mentor(client, admin)
        assert response.status_code == 201
        role = response.json()["role"]
        assert role["name"] == "Mentor"
        assert role["isSystem"] is False
        assert role["createdBy"] == "admin-1"
        assert role["permissionCount"] == 1

    def test_create_duplicate_conflicts(self, client, admin):
        create_mentor(client, admin)
        response = create_mentor(client, admin, name="MENTOR")
        assert response.status_code == 409
        assert response.json()["detail"]["kind"] == "conflict"

    def test_create_with_unknown_permission(self, client, admin):
        response = create_mentor(client, admin, permissions=["fly_to_moon"])
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["kind"] == "validation"

    def test_create_with_blank_name(self, client, admin):
        response = create_mentor(client, admin, name="   ")
        assert response.status_code == 422

    def test_get_role_by_id_and_name(self, client, admin):
        role_id = create_mentor(client, admin).json()["role"]["id"]
        assert client.get(f"/api/roles/{role_id}", headers=admin).json()["role"]["name"] == "Mentor"
        assert client.get("/api/roles/mentor", headers=admin).json()["role"]["id"] == role_id

    def test_get_missing_role(self, client, admin):
        response = client.get("/api/roles/no-such-role", headers=admin)
        assert response.status_code == 404
        assert response.json()["detail"]["kind"] == "not_found"

    def test_role_permissions(self, client, admin):
        response = client.get("/api/roles/parent/permissions", headers=admin)
        assert response.status_code == 200
        data = response.json()
        assert data["role"] == "parent"
        assert data["count"] == 3

    def test_update_role(self, client, admin):
        role_id = create_mentor(client, admin).json()["role"]["id"]
        response = client.put(
            f"/api/roles/{role_id}",
            json={"description": "Updated", "permissions": ["view_subjects", "view_class_students"]},
            headers=admin,
        )
        assert response.status_code == 200
        role = response.json()["role"]
        assert role["description"] == "Updated"
        assert role["permissionCount"] == 2

    def test_rename_system_role_conflicts(self, client, admin):
        response = client.put("/api/roles/teacher", json={"name": "educator"}, headers=admin)
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "Cannot rename system role"

    def test_delete_role(self, client, admin):
        role_id = create_mentor(client, admin).json()["role"]["id"]
        response = client.delete(f"/api/roles/{role_id}", headers=admin)
        assert response.status_code == 200
        assert response.json()["role"]["id"] == role_id
        assert client.get(f"/api/roles/{role_id}", headers=admin).status_code == 404

    def test_delete_system_role_conflicts(self, client, admin):
        response = client.delete("/api/roles/student", headers=admin)
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "Cannot delete system role"

    def test_delete_role_in_use(self, client, admin, directory):
        role_id = create_mentor(client, admin).json()["role"]["id"]
        directory.add("mentor-1", "mentor")
        response = client.delete(f"/api/roles/{role_id}", headers=admin)
        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["error"] == "Cannot delete role that is in use"
        assert detail["details"]["userCount"] == 1


class TestCatalogAPI:
    """Test cases for catalog and self-service endpoints."""

    def test_hierarchy_is_public(self, client):
        response = client.get("/api/roles/hierarchy")
        assert response.status_code == 200
        hierarchy = response.json()["hierarchy"]
        assert [entry["level"] for entry in hierarchy] == [1, 2, 3, 4, 5, 6]
        assert hierarchy[0]["role"] == "admin"

    def test_all_permissions(self, client, admin):
        data = client.get("/api/roles/permissions/all", headers=admin).json()
        assert data["total"] == len(data["allPermissions"])
        assert data["allPermissions"] == sorted(data["allPermissions"])
        assert "manage_grades" in data["allPermissions"]
        assert data["version"]

    def test_statistics_for_head_teacher(self, client, auth_header):
        response = client.get("/api/roles/statistics", headers=auth_header("ht-1", "head-teacher"))
        assert response.status_code == 200
        statistics = response.json()["statistics"]
        assert statistics["totalUsers"] == 3
        assert statistics["systemRoles"] == 6

    def test_statistics_denied_for_student(self, client, auth_header):
        response = client.get("/api/roles/statistics", headers=auth_header("student-1", "student"))
        assert response.status_code == 403

    def test_role_users(self, client, admin, directory):
        directory.add("teacher-2", "TEACHER", "t2@school.test")
        response = client.get("/api/roles/Teacher/users", headers=admin)
        assert response.status_code == 200
        data = response.json()
        assert data["role"] == "teacher"
        assert data["count"] == 2
        assert [user["id"] for user in data["data"]] == ["teacher-1", "teacher-2"]
        assert data["data"][1] == {"id": "teacher-2", "email": "t2@school.test", "role": "TEACHER"}

    def test_role_users_for_head_teacher(self, client, auth_header):
        response = client.get("/api/roles/parent/users", headers=auth_header("ht-1", "head-teacher"))
        assert response.status_code == 200
        assert response.json()["count"] == 0

    def test_role_users_unknown_role(self, client, admin):
        response = client.get("/api/roles/janitor/users", headers=admin)
        assert response.status_code == 404
        assert response.json()["detail"]["kind"] == "not_found"

    def test_role_users_denied_for_teacher(self, client, teacher):
        assert client.get("/api/roles/teacher/users", headers=teacher).status_code == 403

    def test_my_permissions(self, client, teacher):
        data = client.get("/api/roles/my/permissions", headers=teacher).json()
        assert data["role"] == "teacher"
        assert "manage_grades" in data["permissions"]
        assert data["count"] == len(data["permissions"])

    def test_my_info(self, client, auth_header):
        headers = auth_header("s-9", "STUDENT", email="s9@school.test")
        data = client.get("/api/roles/my/info", headers=headers).json()
        assert data["user"] == {"id": "s-9", "email": "s9@school.test", "role": "STUDENT"}
        assert data["roleDetails"]["isSystem"] is True
        assert "view_own_grades" in data["roleDetails"]["permissions"]

    def test_my_info_for_admin_lists_catalog(self, client, admin):
        all_permissions = client.get("/api/roles/permissions/all", headers=admin).json()["allPermissions"]
        data = client.get("/api/roles/my/permissions", headers=admin).json()
        assert data["permissions"] == all_permissions


class TestCheckPermissionAPI:
    """Test cases for the check-permission endpoint."""

    def test_check_permission(self, client, admin):
        response = client.post(
            "/api/roles/check-permission",
            json={"role": "head-teacher", "permissions": ["import_data", "manage_fees"]},
            headers=admin,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["role"] == "head-teacher"
        assert data["permissions"] == {"import_data": True, "manage_fees": False}

    def test_missing_fields(self, client, admin):
        response = client.post("/api/roles/check-permission", json={"role": "teacher"}, headers=admin)
        assert response.status_code == 400
        assert response.json() == {"error": "Role and permissions array required"}

    def test_invalid_role(self, client, admin):
        response = client.post(
            "/api/roles/check-permission",
            json={"role": "janitor", "permissions": ["manage_grades"]},
            headers=admin,
        )
        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "Invalid role"
        assert "teacher" in data["availableRoles"]


class TestStoreOutage:
    """Management calls when role storage is down."""

    def test_list_roles_unavailable(self, client, admin):
        engine = client.app.state.authz_engine
        engine.store.list_roles = AsyncMock(side_effect=RoleStoreUnavailableError("db down"))
        response = client.get("/api/roles", headers=admin)
        assert response.status_code == 503
        assert response.json()["detail"]["kind"] == "unavailable"

    def test_unexpected_error_is_500(self, client, admin):
        engine = client.app.state.authz_engine
        engine.store.list_roles = AsyncMock(side_effect=RuntimeError("boom"))
        response = client.get("/api/roles", headers=admin)
        assert response.status_code == 500
        assert response.json()["detail"] == {"error": "Failed to list roles"}


def test_health(client):
    data = client.get("/health").json()
    assert data["status"] == "healthy"
    assert data["catalog_version"]
