# school-authz/school_authz/config.py
"""
Configuration for the school authorization engine.

Configuration is built once at startup (from keyword arguments, the
environment, or a YAML/JSON file) and injected into the engine.
"""

import json
import os
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple, Union

import yaml

from .exceptions import ConfigurationError
from .security.catalog import DEFAULT_SELF_ACCESS_PERMISSIONS


class UnmatchedEndpointPolicy(str, Enum):
    """What the endpoint table answers for a path no rule covers."""
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class SecurityLoggingConfig:
    """Configuration for security event logging."""
    enabled: bool = True
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None
    async_logging: bool = True
    buffer_size: int = 1000
    enable_audit_trail: bool = True
    audit_secret_key: Optional[str] = None

    def __post_init__(self):
        """Validate security logging configuration."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_levels:
            raise ConfigurationError(f"log_level must be one of {valid_levels}")
        if self.log_format not in ("json", "text"):
            raise ConfigurationError("log_format must be 'json' or 'text'")
        if self.buffer_size < 1:
            raise ConfigurationError("buffer_size must be at least 1")


@dataclass(frozen=True)
class AuthzConfig:
    """Top-level authorization engine configuration."""
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    role_cache_ttl: float = 5.0  # seconds
    storage_timeout: float = 2.0  # seconds
    unmatched_endpoint_policy: UnmatchedEndpointPolicy = UnmatchedEndpointPolicy.ALLOW
    self_access_permissions: FrozenSet[str] = DEFAULT_SELF_ACCESS_PERMISSIONS
    # None means the built-in endpoint table
    endpoint_rules: Optional[Mapping[str, Tuple[str, ...]]] = None
    # SQLite file for role storage; in-memory storage when unset
    database_path: Optional[str] = None
    security_logging: SecurityLoggingConfig = field(default_factory=SecurityLoggingConfig)

    def __post_init__(self):
        """Validate and normalize configuration values."""
        if not self.jwt_secret:
            raise ConfigurationError("jwt_secret cannot be empty")
        if not self.jwt_algorithm.startswith(("HS", "RS", "ES", "PS")):
            raise ConfigurationError(f"Unsupported JWT algorithm: {self.jwt_algorithm}")
        if self.role_cache_ttl < 0:
            raise ConfigurationError("role_cache_ttl cannot be negative")
        if self.storage_timeout <= 0:
            raise ConfigurationError("storage_timeout must be positive")

        try:
            policy = UnmatchedEndpointPolicy(self.unmatched_endpoint_policy)
        except ValueError:
            raise ConfigurationError(
                f"unmatched_endpoint_policy must be 'allow' or 'deny', got {self.unmatched_endpoint_policy!r}"
            )
        object.__setattr__(self, "unmatched_endpoint_policy", policy)
        object.__setattr__(self, "self_access_permissions", frozenset(self.self_access_permissions))

        if self.endpoint_rules is not None:
            rules = {}
            for pattern, roles in dict(self.endpoint_rules).items():
                if not str(pattern).startswith("/"):
                    raise ConfigurationError(f"Endpoint pattern must start with '/': {pattern}")
                if isinstance(roles, str):
                    roles = [roles]
                rules[str(pattern)] = tuple(roles)
            object.__setattr__(self, "endpoint_rules", rules)

        if isinstance(self.security_logging, dict):
            object.__setattr__(self, "security_logging", SecurityLoggingConfig(**self.security_logging))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AuthzConfig":
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {unknown}")
        return cls(**dict(data))

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> "AuthzConfig":
        """Load configuration from file (JSON or YAML)."""
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        suffix = config_path.suffix.lower()
        try:
            with open(config_path, 'r') as f:
                if suffix in ['.yaml', '.yml']:
                    data = yaml.safe_load(f) or {}
                elif suffix == '.json':
                    data = json.load(f)
                else:
                    raise ConfigurationError(f"Unsupported configuration file format: {config_path.suffix}")
        except ConfigurationError:
            raise
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load configuration from {config_path}: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, prefix: str = "AUTHZ_") -> "AuthzConfig":
        """Load configuration from environment variables."""
        config_data: Dict[str, Any] = {}
        logging_data: Dict[str, Any] = {}

        env_mappings = {
            f"{prefix}JWT_SECRET": (config_data, "jwt_secret", str),
            f"{prefix}JWT_ALGORITHM": (config_data, "jwt_algorithm", str),
            f"{prefix}ROLE_CACHE_TTL": (config_data, "role_cache_ttl", float),
            f"{prefix}STORAGE_TIMEOUT": (config_data, "storage_timeout", float),
            f"{prefix}UNMATCHED_ENDPOINT_POLICY": (config_data, "unmatched_endpoint_policy", str),
            f"{prefix}SELF_ACCESS_PERMISSIONS": (config_data, "self_access_permissions", frozenset),
            f"{prefix}DATABASE_PATH": (config_data, "database_path", str),
            f"{prefix}LOG_ENABLED": (logging_data, "enabled", bool),
            f"{prefix}LOG_LEVEL": (logging_data, "log_level", str),
            f"{prefix}LOG_FORMAT": (logging_data, "log_format", str),
            f"{prefix}LOG_FILE": (logging_data, "log_file", str),
            f"{prefix}LOG_ASYNC": (logging_data, "async_logging", bool),
            f"{prefix}AUDIT_TRAIL_ENABLED": (logging_data, "enable_audit_trail", bool),
            f"{prefix}AUDIT_SECRET_KEY": (logging_data, "audit_secret_key", str),
        }

        for env_var, (target, key, config_type) in env_mappings.items():
            value = os.getenv(env_var)
            if value is None:
                continue
            try:
                if config_type == bool:
                    value = value.lower() in ('true', '1', 'yes', 'on')
                elif config_type == float:
                    value = float(value)
                elif config_type == frozenset:
                    value = frozenset(v.strip() for v in value.split(",") if v.strip())
            except ValueError:
                raise ConfigurationError(f"Invalid value for {env_var}: {value!r}")
            target[key] = value

        if logging_data:
            config_data["security_logging"] = SecurityLoggingConfig(**logging_data)
        return cls(**config_data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a JSON-friendly dictionary."""
        data = asdict(self)
        data["unmatched_endpoint_policy"] = self.unmatched_endpoint_policy.value
        data["self_access_permissions"] = sorted(self.self_access_permissions)
        if self.endpoint_rules is not None:
            data["endpoint_rules"] = {k: list(v) for k, v in self.endpoint_rules.items()}
        data["jwt_secret"] = "***"
        return data
