"""
Pytest configuration and fixtures for capgate tests.

This module provides shared fixtures used across unit and integration
tests: a small capability configuration, its registry, an in-memory grant
source and a few actors.
"""

import tempfile
from pathlib import Path
from typing import Generator

import pytest

from capgate.capability import CapabilityCatalog, CapabilityRegistry
from capgate.policy import InMemoryGrantSource
from capgate.schema import Actor, AuthzConfig, PrincipalType, Role, load_config_from_string

COMPANY_ID = 10
OTHER_COMPANY_ID = 20


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a small authz configuration."""
    return """
domains:
  core: Core platform
  admin: Administration
verbs: [view, list, create, update, delete]
capabilities:
  - core.user.view
  - core.user.list
  - core.user.update
  - core.user.delete
  - admin.role.list
roles:
  core_admin:
    name: Core Administrator
    grant_all: true
  user_viewer:
    name: User Viewer
    capabilities: [core.user.view, core.user.list]
decision_log_retention_days: 30
"""


@pytest.fixture
def sample_config(sample_config_yaml: str) -> AuthzConfig:
    """Parsed sample configuration."""
    return load_config_from_string(sample_config_yaml)


@pytest.fixture
def registry(sample_config: AuthzConfig) -> CapabilityRegistry:
    """Registry built from the sample configuration."""
    return CapabilityRegistry.from_catalog(CapabilityCatalog.from_config(sample_config))


@pytest.fixture
def grant_source() -> InMemoryGrantSource:
    """Empty in-memory grant source."""
    return InMemoryGrantSource()


@pytest.fixture
def viewer_role(grant_source: InMemoryGrantSource) -> Role:
    """A role holding core.user.view, stored in grant_source."""
    return grant_source.add_role(
        Role(code="user_viewer", name="User Viewer", capabilities={"core.user.view"})
    )


@pytest.fixture
def admin_role(grant_source: InMemoryGrantSource) -> Role:
    """A grant_all role, stored in grant_source."""
    return grant_source.add_role(Role(code="core_admin", name="Core Admin", grant_all=True))


@pytest.fixture
def human() -> Actor:
    """Human user 5 in company 10."""
    return Actor(type=PrincipalType.HUMAN_USER, id=5, company_id=COMPANY_ID)


@pytest.fixture
def agent() -> Actor:
    """Personal agent 7 acting for user 5 in company 10."""
    return Actor(
        type=PrincipalType.PERSONAL_AGENT,
        id=7,
        company_id=COMPANY_ID,
        acting_for_user_id=5,
    )
