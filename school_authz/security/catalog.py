"""
Permission Catalog and system role definitions.

The catalog is the closed set of permission identifiers the school
application knows about. It is versioned as a whole: adding or removing a
permission produces a new catalog with a new version string.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .roles import RoleName, ADMIN, HEAD_TEACHER, TEACHER, STUDENT, ACCOUNTS, PARENT


# =============================================================================
# Permission identifiers
# =============================================================================

# Student
VIEW_OWN_GRADES = "view_own_grades"
VIEW_OWN_ATTENDANCE = "view_own_attendance"
VIEW_OWN_SUBJECTS = "view_own_subjects"
DOWNLOAD_GRADE_CARD = "download_grade_card"
VIEW_OWN_FEES = "view_own_fees"

# Teacher
MARK_ATTENDANCE = "mark_attendance"
MANAGE_GRADES = "manage_grades"
VIEW_CLASS_STUDENTS = "view_class_students"
VIEW_SUBJECTS = "view_subjects"
VIEW_CLASS_ATTENDANCE = "view_class_attendance"

# Head teacher
MANAGE_STAFF = "manage_staff"
MARK_STAFF_ATTENDANCE = "mark_staff_attendance"
VIEW_STAFF_ATTENDANCE = "view_staff_attendance"
MANAGE_STUDENTS = "manage_students"
MANAGE_SUBJECTS = "manage_subjects"
IMPORT_DATA = "import_data"
VIEW_ANALYTICS = "view_analytics"
VIEW_GRADE_ANALYTICS = "view_grade_analytics"
VIEW_ATTENDANCE_ANALYTICS = "view_attendance_analytics"
VIEW_CLASSROOM_REPORTS = "view_classroom_reports"

# Accounts
MANAGE_FEES = "manage_fees"
MANAGE_PAYMENTS = "manage_payments"
MANAGE_EXPENSES = "manage_expenses"
GENERATE_FINANCIAL_REPORTS = "generate_financial_reports"
VIEW_FINANCIAL_ANALYTICS = "view_financial_analytics"

# Admin
MANAGE_USERS = "manage_users"
MANAGE_ROLES = "manage_roles"
VIEW_AUDIT_LOGS = "view_audit_logs"
CONFIGURE_SYSTEM = "configure_system"
MANAGE_STAFF_USERS = "manage_staff_users"
MANAGE_SCHOOL_SETTINGS = "manage_school_settings"
MANAGE_ALL_DATA = "manage_all_data"


DEFAULT_PERMISSIONS_BY_CATEGORY: Dict[str, Tuple[str, ...]] = {
    "student": (
        VIEW_OWN_GRADES, VIEW_OWN_ATTENDANCE, VIEW_OWN_SUBJECTS,
        DOWNLOAD_GRADE_CARD, VIEW_OWN_FEES,
    ),
    "teacher": (
        MARK_ATTENDANCE, MANAGE_GRADES, VIEW_CLASS_STUDENTS,
        VIEW_SUBJECTS, VIEW_CLASS_ATTENDANCE,
    ),
    "head-teacher": (
        MANAGE_STAFF, MARK_STAFF_ATTENDANCE, VIEW_STAFF_ATTENDANCE,
        MANAGE_STUDENTS, MANAGE_SUBJECTS, IMPORT_DATA, VIEW_ANALYTICS,
        VIEW_GRADE_ANALYTICS, VIEW_ATTENDANCE_ANALYTICS, VIEW_CLASSROOM_REPORTS,
    ),
    "accounts": (
        MANAGE_FEES, MANAGE_PAYMENTS, MANAGE_EXPENSES,
        GENERATE_FINANCIAL_REPORTS, VIEW_FINANCIAL_ANALYTICS,
    ),
    "admin": (
        MANAGE_USERS, MANAGE_ROLES, VIEW_AUDIT_LOGS, CONFIGURE_SYSTEM,
        MANAGE_STAFF_USERS, MANAGE_SCHOOL_SETTINGS, MANAGE_ALL_DATA,
    ),
}

# Permissions that additionally require the requester to own the resource.
DEFAULT_SELF_ACCESS_PERMISSIONS: FrozenSet[str] = frozenset({
    VIEW_OWN_GRADES,
    VIEW_OWN_ATTENDANCE,
    VIEW_OWN_SUBJECTS,
    VIEW_OWN_FEES,
})


def format_permission_name(permission: str) -> str:
    """``view_own_fees`` -> ``View Own Fees``."""
    return " ".join(part.capitalize() for part in permission.split("_") if part)


def format_role_name(role) -> str:
    """``head-teacher`` -> ``Head Teacher``."""
    text = str(role).replace("_", "-")
    return " ".join(part.capitalize() for part in text.split("-") if part)


# =============================================================================
# Permission Catalog
# =============================================================================

@dataclass(frozen=True)
class PermissionCatalog:
    """Closed, versioned set of permission identifiers grouped by category."""
    categories: Mapping[str, Tuple[str, ...]]
    version: str = ""
    _all: FrozenSet[str] = field(default=frozenset(), init=False, repr=False, compare=False)

    def __post_init__(self):
        frozen = {name: tuple(perms) for name, perms in self.categories.items()}
        object.__setattr__(self, "categories", frozen)
        everything = frozenset(p for perms in frozen.values() for p in perms)
        object.__setattr__(self, "_all", everything)
        if not self.version:
            digest = hashlib.sha256(",".join(sorted(everything)).encode("utf-8")).hexdigest()
            object.__setattr__(self, "version", digest[:12])

    @property
    def permissions(self) -> FrozenSet[str]:
        return self._all

    def __contains__(self, permission) -> bool:
        return permission in self._all

    def __len__(self) -> int:
        return len(self._all)

    def unknown(self, permissions: Iterable[str]) -> List[str]:
        """Return the entries of ``permissions`` that are not in the catalog."""
        return sorted({p for p in permissions if p not in self._all})

    def category_of(self, permission: str) -> Optional[str]:
        for name, perms in self.categories.items():
            if permission in perms:
                return name
        return None

    def sorted_permissions(self) -> List[str]:
        return [p for perms in self.categories.values() for p in perms]

    def grouped(self) -> Dict[str, List[Dict[str, str]]]:
        """Catalog grouped by category with display names, for UIs."""
        return {
            name: [
                {"code": p, "displayName": format_permission_name(p)}
                for p in perms
            ]
            for name, perms in self.categories.items()
        }

    def with_permissions(self, category: str, permissions: Iterable[str]) -> "PermissionCatalog":
        """Return a new catalog version with ``permissions`` added to ``category``."""
        merged = {k: list(v) for k, v in self.categories.items()}
        bucket = merged.setdefault(category, [])
        for permission in permissions:
            if permission not in self._all and permission not in bucket:
                bucket.append(permission)
        return PermissionCatalog(categories={k: tuple(v) for k, v in merged.items()})


def default_catalog() -> PermissionCatalog:
    return PermissionCatalog(categories=DEFAULT_PERMISSIONS_BY_CATEGORY)


# =============================================================================
# System roles
# =============================================================================

@dataclass(frozen=True)
class SystemRoleDefinition:
    """Seed entry for a built-in role."""
    name: RoleName
    description: str
    permissions: Tuple[str, ...]
    level: int


SYSTEM_ROLES: Tuple[SystemRoleDefinition, ...] = (
    SystemRoleDefinition(
        name=ADMIN,
        description="System administrator with full access",
        level=1,
        permissions=(
            MANAGE_USERS, MANAGE_ROLES, VIEW_AUDIT_LOGS, CONFIGURE_SYSTEM,
            MANAGE_STAFF_USERS, MANAGE_SCHOOL_SETTINGS, MANAGE_ALL_DATA,
            MARK_ATTENDANCE, MANAGE_GRADES, VIEW_CLASS_STUDENTS, MANAGE_STAFF,
            MANAGE_STUDENTS, MANAGE_SUBJECTS, MANAGE_FEES, MANAGE_PAYMENTS,
            MANAGE_EXPENSES, GENERATE_FINANCIAL_REPORTS, VIEW_ANALYTICS,
            VIEW_GRADE_ANALYTICS, VIEW_ATTENDANCE_ANALYTICS,
        ),
    ),
    SystemRoleDefinition(
        name=HEAD_TEACHER,
        description="Head teacher managing school operations",
        level=2,
        permissions=(
            MANAGE_STAFF, MARK_STAFF_ATTENDANCE, VIEW_STAFF_ATTENDANCE,
            MANAGE_STUDENTS, MANAGE_SUBJECTS, IMPORT_DATA, VIEW_ANALYTICS,
            VIEW_GRADE_ANALYTICS, VIEW_ATTENDANCE_ANALYTICS,
            VIEW_CLASSROOM_REPORTS, MANAGE_ALL_DATA,
        ),
    ),
    SystemRoleDefinition(
        name=ACCOUNTS,
        description="Accounts officer managing fees",
        level=3,
        permissions=(
            MANAGE_FEES, MANAGE_PAYMENTS, MANAGE_EXPENSES,
            GENERATE_FINANCIAL_REPORTS, VIEW_FINANCIAL_ANALYTICS,
        ),
    ),
    SystemRoleDefinition(
        name=TEACHER,
        description="Teacher managing classes and grades",
        level=4,
        permissions=(
            MARK_ATTENDANCE, MANAGE_GRADES, VIEW_CLASS_STUDENTS,
            VIEW_SUBJECTS, VIEW_CLASS_ATTENDANCE,
        ),
    ),
    SystemRoleDefinition(
        name=STUDENT,
        description="Student accessing own academic records",
        level=5,
        permissions=(
            VIEW_OWN_GRADES, VIEW_OWN_ATTENDANCE, VIEW_OWN_SUBJECTS,
            DOWNLOAD_GRADE_CARD, VIEW_OWN_FEES,
        ),
    ),
    SystemRoleDefinition(
        name=PARENT,
        description="Parent viewing a child's fees, grades and attendance",
        level=6,
        permissions=(VIEW_OWN_FEES, VIEW_OWN_GRADES, VIEW_OWN_ATTENDANCE),
    ),
)


def role_hierarchy(definitions: Iterable[SystemRoleDefinition] = SYSTEM_ROLES) -> List[Dict[str, object]]:
    """Display ordering of system roles, most privileged first."""
    return [
        {
            "level": d.level,
            "role": d.name.display,
            "displayName": format_role_name(d.name),
            "description": d.description,
            "permissions": len(d.permissions),
        }
        for d in sorted(definitions, key=lambda d: d.level)
    ]
