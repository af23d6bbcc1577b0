"""
Endpoint Access Table.

Maps request paths to the roles allowed to call them. Exact patterns win;
otherwise the longest ``/**`` prefix rule that matches on a path-segment
boundary applies. Paths no rule covers follow the configured policy.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Sequence, Tuple, Union

from .roles import RoleName, ADMIN, HEAD_TEACHER, TEACHER, STUDENT, ACCOUNTS, canonicalize, try_canonicalize

PUBLIC = "*"
AUTHENTICATED = "@authenticated"
PREFIX_SUFFIX = "/**"


@dataclass(frozen=True)
class EndpointAccessRule:
    path_pattern: str
    allowed_roles: FrozenSet[RoleName]
    public: bool = False
    any_authenticated: bool = False

    @classmethod
    def build(cls, path_pattern: str, allowed: Iterable[Union[str, RoleName]]) -> "EndpointAccessRule":
        if not path_pattern.startswith("/"):
            raise ValueError(f"Endpoint pattern must start with '/': {path_pattern}")
        roles = set()
        public = any_authenticated = False
        for entry in allowed:
            if entry == PUBLIC:
                public = True
            elif entry == AUTHENTICATED:
                any_authenticated = True
            else:
                roles.add(canonicalize(entry))
        return cls(path_pattern, frozenset(roles), public, any_authenticated)

    @property
    def is_prefix(self) -> bool:
        return self.path_pattern.endswith(PREFIX_SUFFIX)

    @property
    def prefix(self) -> str:
        return self.path_pattern[: -len(PREFIX_SUFFIX)] if self.is_prefix else self.path_pattern

    def matches(self, path: str) -> bool:
        if not self.is_prefix:
            return path == self.path_pattern
        prefix = self.prefix
        return path == prefix or path.startswith(prefix + "/") or prefix == ""

    def allows(self, role: Optional[RoleName]) -> bool:
        if self.public:
            return True
        if role is None:
            return False
        if self.any_authenticated:
            return True
        return role in self.allowed_roles


class EndpointAccessTable:
    """Immutable set of endpoint rules with a fallback policy."""

    def __init__(self, rules: Mapping[str, Sequence[Union[str, RoleName]]], allow_unmatched: bool = True):
        self.allow_unmatched = allow_unmatched
        built = [EndpointAccessRule.build(pattern, roles) for pattern, roles in rules.items()]
        self._exact: Dict[str, EndpointAccessRule] = {r.path_pattern: r for r in built if not r.is_prefix}
        # Longest prefix first
        self._prefixes: Tuple[EndpointAccessRule, ...] = tuple(
            sorted((r for r in built if r.is_prefix), key=lambda r: len(r.prefix), reverse=True)
        )

    @staticmethod
    def _normalize_path(path: str) -> str:
        path = path.split("?", 1)[0]
        if len(path) > 1:
            path = path.rstrip("/")
        return path or "/"

    def match(self, path: str) -> Optional[EndpointAccessRule]:
        """Rule governing ``path``, or None when no rule matches."""
        path = self._normalize_path(path)
        rule = self._exact.get(path)
        if rule is not None:
            return rule
        for rule in self._prefixes:
            if rule.matches(path):
                return rule
        return None

    def can_access(self, role, path: str) -> bool:
        """
        True if ``role`` (None for unauthenticated callers) may call ``path``.

        Admin passes every rule; public rules pass everyone.
        """
        role_name = try_canonicalize(role) if role is not None else None
        rule = self.match(path)
        if rule is None:
            return self.allow_unmatched
        if rule.public:
            return True
        if role_name is not None and role_name == ADMIN:
            return True
        return rule.allows(role_name)


DEFAULT_ENDPOINT_RULES: Dict[str, Tuple[str, ...]] = {
    # Authentication
    "/api/auth/login": (PUBLIC,),
    "/api/auth/logout": (AUTHENTICATED,),
    "/api/auth/profile": (
        ADMIN.display, HEAD_TEACHER.display, TEACHER.display, STUDENT.display, ACCOUNTS.display,
    ),

    # Student
    "/api/student/dashboard": (STUDENT.display, ADMIN.display),
    "/api/student/grades": (STUDENT.display, ADMIN.display, TEACHER.display),
    "/api/student/attendance": (STUDENT.display, ADMIN.display, TEACHER.display, HEAD_TEACHER.display),
    "/api/student/fees": (STUDENT.display, ADMIN.display, ACCOUNTS.display),

    # Teacher
    "/api/teacher/dashboard": (TEACHER.display, ADMIN.display, HEAD_TEACHER.display),
    "/api/teacher/attendance": (TEACHER.display, ADMIN.display, HEAD_TEACHER.display),
    "/api/teacher/grades": (TEACHER.display, ADMIN.display, HEAD_TEACHER.display),
    "/api/teacher/classes": (TEACHER.display, ADMIN.display, HEAD_TEACHER.display),

    # Admin
    "/api/admin/**": (ADMIN.display,),

    # Accounts
    "/api/accounts/dashboard": (ACCOUNTS.display, ADMIN.display, HEAD_TEACHER.display),
    "/api/accounts/fees": (ACCOUNTS.display, ADMIN.display, HEAD_TEACHER.display),
    "/api/accounts/payments": (ACCOUNTS.display, ADMIN.display, HEAD_TEACHER.display),
    "/api/accounts/expenses": (ACCOUNTS.display, ADMIN.display),

    # Head teacher
    "/api/head-teacher/dashboard": (HEAD_TEACHER.display, ADMIN.display),
    "/api/head-teacher/staff": (HEAD_TEACHER.display, ADMIN.display),
    "/api/head-teacher/students": (HEAD_TEACHER.display, ADMIN.display),
    "/api/head-teacher/analytics": (HEAD_TEACHER.display, ADMIN.display),
}
