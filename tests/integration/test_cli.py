"""
Integration tests for the CLI.

Tests cover:
- Version and help output
- validate / capabilities against the bundled and custom configs
- Role administration and overrides
- check exit codes and JSON output
- permissions, decisions and prune
"""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from capgate import __version__
from capgate.cli import app

runner = CliRunner()


@pytest.fixture
def db_path(temp_dir: Path) -> Path:
    return temp_dir / "capgate.db"


@pytest.fixture
def config_path(temp_dir: Path, sample_config_yaml: str) -> Path:
    path = temp_dir / "authz.yaml"
    path.write_text(sample_config_yaml)
    return path


def _invoke(*args: str):
    return runner.invoke(app, list(args))


@pytest.fixture
def seeded(db_path: Path, config_path: Path) -> tuple[str, str]:
    """Seeded database with user 5 holding user_viewer in company 10."""
    db, config = str(db_path), str(config_path)
    assert _invoke("seed", "--db", db, "--config", config).exit_code == 0
    result = _invoke(
        "assign-role", "human_user", "5", "user_viewer", "--company", "10",
        "--db", db, "--config", config,
    )
    assert result.exit_code == 0, result.output
    return db, config


class TestBasics:
    """Tests for global options."""

    def test_version(self) -> None:
        result = _invoke("--version")
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_no_args_shows_help(self) -> None:
        result = _invoke()
        assert "check" in result.output
        assert "decisions" in result.output


class TestConfigCommands:
    """Tests for validate and capabilities."""

    def test_validate_bundled(self) -> None:
        result = _invoke("validate")
        assert result.exit_code == 0
        assert "Configuration is valid" in result.output

    def test_validate_json(self, config_path: Path) -> None:
        result = _invoke("validate", "--config", str(config_path), "--json")
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data == {"valid": True, "domains": 2, "verbs": 5, "capabilities": 5, "roles": 2}

    def test_validate_invalid(self, temp_dir: Path) -> None:
        path = temp_dir / "bad.yaml"
        path.write_text("domains: [core]\nverbs: [view]\ncapabilities: [billing.invoice.view]\n")
        result = _invoke("validate", "--config", str(path))
        assert result.exit_code == 1
        assert "billing" in result.output

    def test_validate_role_with_unknown_capability(self, temp_dir: Path) -> None:
        path = temp_dir / "bad.yaml"
        path.write_text(
            "domains: [core]\nverbs: [view]\ncapabilities: [core.user.view]\n"
            "roles:\n  r:\n    name: R\n    capabilities: [core.user.list]\n"
        )
        result = _invoke("validate", "--config", str(path), "--json")
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["error_type"] == "UnknownCapabilityError"

    def test_capabilities_domain(self, config_path: Path) -> None:
        result = _invoke("capabilities", "--config", str(config_path), "--domain", "admin")
        assert result.exit_code == 0
        assert "admin.role.list" in result.output
        assert "core.user.view" not in result.output


class TestAdministration:
    """Tests for seed, role assignment and overrides."""

    def test_seed(self, db_path: Path, config_path: Path) -> None:
        result = _invoke("seed", "--db", str(db_path), "--config", str(config_path))
        assert result.exit_code == 0
        assert "Seeded 2 system roles" in result.output

    def test_assign_unknown_role(self, db_path: Path, config_path: Path) -> None:
        result = _invoke(
            "assign-role", "human_user", "5", "nope", "--db", str(db_path), "--config", str(config_path)
        )
        assert result.exit_code == 1
        assert "Role not found" in result.output

    def test_revoke(self, seeded: tuple[str, str]) -> None:
        db, config = seeded
        args = ("human_user", "5", "user_viewer", "--company", "10", "--db", db, "--config", config)
        result = _invoke("revoke-role", *args)
        assert result.exit_code == 0
        assert "Revoked" in result.output
        result = _invoke("revoke-role", *args)
        assert "No assignment" in result.output

    def test_grant_unknown_capability(self, seeded: tuple[str, str]) -> None:
        db, config = seeded
        result = _invoke("grant", "human_user", "5", "core.user.teleport", "--db", db, "--config", config)
        assert result.exit_code == 1

    def test_invalid_actor_type(self, seeded: tuple[str, str]) -> None:
        db, config = seeded
        result = _invoke("grant", "robot", "5", "core.user.view", "--db", db, "--config", config)
        assert result.exit_code != 0


class TestCheck:
    """Tests for the check command."""

    def test_allowed_exit_zero(self, seeded: tuple[str, str]) -> None:
        db, config = seeded
        result = _invoke(
            "check", "human_user", "5", "core.user.view", "--company", "10",
            "--db", db, "--config", config,
        )
        assert result.exit_code == 0
        assert "ALLOWED" in result.output

    def test_denied_exit_one(self, seeded: tuple[str, str]) -> None:
        db, config = seeded
        result = _invoke(
            "check", "human_user", "5", "core.user.delete", "--company", "10",
            "--db", db, "--config", config,
        )
        assert result.exit_code == 1
        assert "denied_missing_capability" in result.output

    def test_cross_tenant_json(self, seeded: tuple[str, str]) -> None:
        db, config = seeded
        result = _invoke(
            "check", "human_user", "5", "core.user.view", "--company", "10",
            "--resource-company", "20", "--db", db, "--config", config, "--json",
        )
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["allowed"] is False
        assert data["reason_code"] == "denied_company_scope"
        assert data["applied_policies"] == ["actor_context", "capability_registry", "company_scope"]

    def test_invalid_actor(self, seeded: tuple[str, str]) -> None:
        db, config = seeded
        result = _invoke("check", "human_user", "5", "core.user.view", "--db", db, "--config", config, "--json")
        assert result.exit_code == 1
        assert json.loads(result.output)["reason_code"] == "denied_invalid_actor_context"

    def test_explicit_deny(self, seeded: tuple[str, str]) -> None:
        db, config = seeded
        result = _invoke(
            "deny", "human_user", "5", "core.user.view", "--company", "10", "--db", db, "--config", config
        )
        assert result.exit_code == 0
        result = _invoke(
            "check", "human_user", "5", "core.user.view", "--company", "10",
            "--db", db, "--config", config, "--json",
        )
        assert result.exit_code == 1
        assert json.loads(result.output)["reason_code"] == "denied_explicitly"


class TestReports:
    """Tests for permissions, decisions and prune."""

    def test_permissions_json(self, seeded: tuple[str, str]) -> None:
        db, config = seeded
        _invoke("grant", "human_user", "5", "admin.role.list", "--company", "10", "--db", db, "--config", config)
        result = _invoke(
            "permissions", "human_user", "5", "--company", "10", "--db", db, "--config", config, "--json"
        )
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["allowed"] == ["admin.role.list", "core.user.list", "core.user.view"]
        assert data["grant_all"] is False

    def test_decisions_after_checks(self, seeded: tuple[str, str]) -> None:
        db, config = seeded
        for capability in ("core.user.view", "core.user.delete"):
            _invoke("check", "human_user", "5", capability, "--company", "10", "--db", db, "--config", config)

        result = _invoke("decisions", "--db", db, "--json")
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["summary"]["total"] == 2
        assert data["summary"]["denied"] == 1

        result = _invoke("decisions", "--db", db, "--denied", "--json")
        assert result.exit_code == 0
        denied = json.loads(result.output)["decisions"]
        assert [d["capability"] for d in denied] == ["core.user.delete"]

        result = _invoke("decisions", "--db", db)
        assert result.exit_code == 0
        assert "Summary" in result.output

    def test_decisions_without_database(self, temp_dir: Path) -> None:
        result = _invoke("decisions", "--db", str(temp_dir / "missing.db"))
        assert result.exit_code == 0
        assert "No database found" in result.output

    def test_prune(self, seeded: tuple[str, str]) -> None:
        db, config = seeded
        _invoke("check", "human_user", "5", "core.user.view", "--company", "10", "--db", db, "--config", config)
        result = _invoke("prune", "--db", db, "--config", config)
        assert result.exit_code == 0
        assert "Pruned 0" in result.output
