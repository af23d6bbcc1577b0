"""
Unit tests for the in-memory principal directory.
"""

from school_authz.security.directory import InMemoryPrincipalDirectory
from school_authz.security.roles import RoleName


class TestInMemoryPrincipalDirectory:
    """Test cases for InMemoryPrincipalDirectory."""

    async def test_counts_match_any_spelling(self):
        directory = InMemoryPrincipalDirectory()
        directory.add("h-1", "head-teacher")
        directory.add("h-2", "HEAD_TEACHER")
        directory.add("t-1", "teacher")
        assert await directory.count_principals_with_role(RoleName("Head Teacher")) == 2
        assert await directory.count_principals_with_role(RoleName("parent")) == 0

    async def test_get_and_remove(self):
        directory = InMemoryPrincipalDirectory()
        directory.add("s-1", "student", "s1@school.test")
        principal = await directory.get_principal("s-1")
        assert principal.email == "s1@school.test"
        assert principal.role == RoleName("STUDENT")

        directory.remove("s-1")
        directory.remove("s-1")
        assert await directory.get_principal("s-1") is None

    async def test_list_holders_sorted_by_id(self):
        directory = InMemoryPrincipalDirectory()
        directory.add("t-2", "Teacher")
        directory.add("t-1", "teacher")
        directory.add("s-1", "student")
        holders = await directory.list_principals_with_role(RoleName("TEACHER"))
        assert [p.id for p in holders] == ["t-1", "t-2"]
        assert await directory.list_principals_with_role(RoleName("parent")) == []
