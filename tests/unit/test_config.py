"""
Unit tests for engine configuration.
"""

import json

import pytest

from school_authz.config import AuthzConfig, SecurityLoggingConfig, UnmatchedEndpointPolicy
from school_authz.exceptions import ConfigurationError
from school_authz.security.catalog import DEFAULT_SELF_ACCESS_PERMISSIONS


class TestAuthzConfig:
    """Test cases for AuthzConfig validation."""

    def test_defaults(self):
        config = AuthzConfig()
        assert config.role_cache_ttl == 5.0
        assert config.unmatched_endpoint_policy == UnmatchedEndpointPolicy.ALLOW
        assert config.self_access_permissions == DEFAULT_SELF_ACCESS_PERMISSIONS
        assert config.endpoint_rules is None
        assert config.database_path is None

    @pytest.mark.parametrize("kwargs", [
        {"jwt_secret": ""},
        {"jwt_algorithm": "none"},
        {"role_cache_ttl": -1},
        {"storage_timeout": 0},
        {"unmatched_endpoint_policy": "maybe"},
        {"endpoint_rules": {"api/x": ["admin"]}},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigurationError):
            AuthzConfig(**kwargs)

    def test_policy_from_string(self):
        assert AuthzConfig(unmatched_endpoint_policy="deny").unmatched_endpoint_policy == UnmatchedEndpointPolicy.DENY

    def test_endpoint_rules_normalized(self):
        config = AuthzConfig(endpoint_rules={"/api/x": "teacher", "/api/y/**": ["admin", "student"]})
        assert config.endpoint_rules == {"/api/x": ("teacher",), "/api/y/**": ("admin", "student")}

    def test_logging_from_dict(self):
        config = AuthzConfig(security_logging={"log_level": "DEBUG", "async_logging": False})
        assert isinstance(config.security_logging, SecurityLoggingConfig)
        assert config.security_logging.log_level == "DEBUG"

    @pytest.mark.parametrize("kwargs", [
        {"log_level": "LOUD"},
        {"log_format": "xml"},
        {"buffer_size": 0},
    ])
    def test_invalid_logging(self, kwargs):
        with pytest.raises(ConfigurationError):
            SecurityLoggingConfig(**kwargs)

    def test_unknown_keys_rejected(self):
        with pytest.raises(ConfigurationError, match="jwt_secrte"):
            AuthzConfig.from_dict({"jwt_secrte": "x"})

    def test_to_dict_masks_secret(self):
        data = AuthzConfig(jwt_secret="very-secret").to_dict()
        assert data["jwt_secret"] == "***"
        assert data["unmatched_endpoint_policy"] == "allow"
        assert data["self_access_permissions"] == sorted(DEFAULT_SELF_ACCESS_PERMISSIONS)


class TestConfigSources:
    """Test cases for loading configuration."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("AUTHZ_JWT_SECRET", "env-secret")
        monkeypatch.setenv("AUTHZ_ROLE_CACHE_TTL", "2.5")
        monkeypatch.setenv("AUTHZ_UNMATCHED_ENDPOINT_POLICY", "deny")
        monkeypatch.setenv("AUTHZ_SELF_ACCESS_PERMISSIONS", "view_own_grades, view_own_fees")
        monkeypatch.setenv("AUTHZ_LOG_ENABLED", "false")
        monkeypatch.setenv("AUTHZ_LOG_LEVEL", "WARNING")

        config = AuthzConfig.from_env()
        assert config.jwt_secret == "env-secret"
        assert config.role_cache_ttl == 2.5
        assert config.unmatched_endpoint_policy == UnmatchedEndpointPolicy.DENY
        assert config.self_access_permissions == frozenset({"view_own_grades", "view_own_fees"})
        assert config.security_logging.enabled is False
        assert config.security_logging.log_level == "WARNING"

    def test_from_env_bad_number(self, monkeypatch):
        monkeypatch.setenv("AUTHZ_STORAGE_TIMEOUT", "soon")
        with pytest.raises(ConfigurationError, match="AUTHZ_STORAGE_TIMEOUT"):
            AuthzConfig.from_env()

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "authz.yaml"
        path.write_text(
            "jwt_secret: yaml-secret\n"
            "database_path: /var/lib/school/roles.db\n"
            "endpoint_rules:\n"
            "  /api/library/**: [student, teacher]\n"
            "security_logging:\n"
            "  log_format: text\n"
        )
        config = AuthzConfig.from_file(path)
        assert config.jwt_secret == "yaml-secret"
        assert config.database_path == "/var/lib/school/roles.db"
        assert config.endpoint_rules == {"/api/library/**": ("student", "teacher")}
        assert config.security_logging.log_format == "text"

    def test_from_json(self, tmp_path):
        path = tmp_path / "authz.json"
        path.write_text(json.dumps({"jwt_secret": "json-secret", "storage_timeout": 0.5}))
        config = AuthzConfig.from_file(path)
        assert config.storage_timeout == 0.5

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            AuthzConfig.from_file(tmp_path / "absent.yaml")

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "authz.ini"
        path.write_text("[authz]\n")
        with pytest.raises(ConfigurationError, match="Unsupported"):
            AuthzConfig.from_file(path)

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "authz.yaml"
        path.write_text("jwt_secret: [unclosed\n")
        with pytest.raises(ConfigurationError):
            AuthzConfig.from_file(path)

    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "authz.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            AuthzConfig.from_file(path)
