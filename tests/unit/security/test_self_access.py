"""
Unit tests for ownership-limited permissions.
"""

from school_authz.security.catalog import DEFAULT_SELF_ACCESS_PERMISSIONS
from school_authz.security.decisions import DenialReason
from school_authz.security.self_access import ResourceContext, SelfAccessRuleSet


class TestSelfAccessRuleSet:
    """Test cases for SelfAccessRuleSet."""

    def setup_method(self):
        self.rules = SelfAccessRuleSet(DEFAULT_SELF_ACCESS_PERMISSIONS)

    def test_owner_allowed(self):
        assert self.rules.check("view_own_grades", ResourceContext("A", "A")).allowed

    def test_other_owner_denied(self):
        decision = self.rules.check("view_own_grades", ResourceContext("A", "B"))
        assert not decision.allowed
        assert decision.reason == DenialReason.SELF_ACCESS_VIOLATION

    def test_missing_owner_denied(self):
        decision = self.rules.check("view_own_fees", ResourceContext("A"))
        assert decision.reason == DenialReason.MISSING_RESOURCE_OWNER
        assert not self.rules.check("view_own_fees", None).allowed

    def test_missing_requester_denied(self):
        assert not self.rules.check("view_own_fees", ResourceContext(None, "A")).allowed

    def test_other_permissions_unconstrained(self):
        assert self.rules.check("manage_grades", ResourceContext("A", "B")).allowed
        assert self.rules.check("download_grade_card", None).allowed

    def test_ids_compared_as_strings(self):
        assert self.rules.check("view_own_attendance", ResourceContext(7, "7")).allowed

    def test_membership(self):
        assert "view_own_subjects" in self.rules
        assert self.rules.requires_ownership("view_own_grades")
        assert not self.rules.requires_ownership("manage_fees")
