"""
Shared fixtures for the authorization engine tests.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import jwt
import pytest

from school_authz.config import AuthzConfig, SecurityLoggingConfig
from school_authz.security.directory import InMemoryPrincipalDirectory
from school_authz.security.engine import build_authorization_engine
from school_authz.security.logging import DecisionObserver

TEST_SECRET = "test-secret-key-for-school-authz-suite"


def _make_token(user_id="u-1", role="teacher", email="user@school.test", secret=TEST_SECRET,
                expires_in=timedelta(hours=1), **extra_claims):
    claims = {"id": user_id, "role": role, "email": email,
              "exp": datetime.now(timezone.utc) + expires_in}
    claims.update(extra_claims)
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def secret():
    return TEST_SECRET


@pytest.fixture
def make_token():
    """Mint a bearer token the way the login service does."""
    return _make_token


@pytest.fixture
def auth_header():
    """Build an Authorization header for a user id and role."""
    def _auth_header(user_id="u-1", role="teacher", **kwargs):
        return {"Authorization": f"Bearer {_make_token(user_id=user_id, role=role, **kwargs)}"}
    return _auth_header


@pytest.fixture
def config():
    """Engine configuration with logging turned off."""
    return AuthzConfig(
        jwt_secret=TEST_SECRET,
        role_cache_ttl=5.0,
        storage_timeout=1.0,
        security_logging=SecurityLoggingConfig(enabled=False),
    )


@pytest.fixture
def observer():
    """Mock decision observer."""
    return Mock(spec=DecisionObserver)


@pytest.fixture
def directory():
    """Identity store with one principal per system role."""
    directory = InMemoryPrincipalDirectory()
    directory.add("admin-1", "admin", "admin@school.test")
    directory.add("teacher-1", "teacher", "teacher@school.test")
    directory.add("student-1", "student", "student@school.test")
    return directory


@pytest.fixture
async def engine(config, directory, observer):
    """Initialized engine backed by in-memory storage."""
    engine = build_authorization_engine(config, directory=directory, observer=observer)
    await engine.initialize()
    yield engine
    await engine.close()
