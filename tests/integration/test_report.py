"""
Integration tests for the Report module.

Tests cover:
- JSON decision report generation and filtering
- Console decision report generation
- Permission and single-decision reports
"""

import json
from io import StringIO
from pathlib import Path

import pytest
from rich.console import Console

from capgate.engine import Authz
from capgate.report import (
    build_decision_dict,
    build_decisions_dict,
    build_permissions_dict,
    generate_decisions_console_report,
    generate_decisions_json_report,
    print_decision,
    print_permissions,
)
from capgate.schema import Actor, AuthorizationDecision, PrincipalType, ReasonCode, ResourceContext


def _console() -> tuple[Console, StringIO]:
    output = StringIO()
    return Console(file=output, force_terminal=False, width=160), output


@pytest.fixture
def db_with_decisions(temp_dir: Path, sample_config, human: Actor, agent: Actor) -> Path:
    """Database holding three recorded decisions."""
    db_path = temp_dir / "capgate.db"
    with Authz(db_path=db_path, config=sample_config) as authz:
        authz.seed()
        viewer = authz.db.get_role_by_code("user_viewer")
        authz.db.assign_role(PrincipalType.HUMAN_USER, 5, viewer.id, company_id=10)

        service = authz.service()
        service.can(human, "core.user.view", context={"correlation_id": "req-1"})
        service.can(human, "core.user.view", ResourceContext(type="user", id=3, company_id=20))
        service.can(agent, "core.user.delete")
    return db_path


class TestJsonReport:
    """Tests for JSON decision reports."""

    def test_structure(self, db_with_decisions: Path) -> None:
        report = build_decisions_dict(db_with_decisions)

        assert report["report_version"] == "1.0"
        assert "generated_at" in report
        assert len(report["decisions"]) == 3
        assert report["summary"] == {
            "total": 3,
            "allowed": 1,
            "denied": 2,
            "by_reason": {
                "allowed": 1,
                "denied_company_scope": 1,
                "denied_missing_capability": 1,
            },
        }

    def test_entry_fields(self, db_with_decisions: Path) -> None:
        report = build_decisions_dict(db_with_decisions, actor_type=PrincipalType.PERSONAL_AGENT)

        [entry] = report["decisions"]
        assert entry["actor"] == {"type": "personal_agent", "id": 7, "acting_for_user_id": 5}
        assert entry["capability"] == "core.user.delete"
        assert entry["resource"] is None
        assert entry["applied_policies"][-1] == "role_capability"

    def test_resource_serialized(self, db_with_decisions: Path) -> None:
        report = build_decisions_dict(db_with_decisions, allowed=False, actor_id=5)
        [entry] = report["decisions"]
        assert entry["resource"] == {"type": "user", "id": "3"}
        assert entry["reason_code"] == "denied_company_scope"

    def test_generate_is_valid_json(self, db_with_decisions: Path) -> None:
        data = json.loads(generate_decisions_json_report(db_with_decisions, limit=1))
        assert len(data["decisions"]) == 1

    def test_permissions_dict(self, human: Actor, db_with_decisions: Path, sample_config) -> None:
        with Authz(db_path=db_with_decisions, config=sample_config) as authz:
            data = build_permissions_dict(human, authz.effective_permissions(human))

        assert data["actor"]["company_id"] == 10
        assert data["allowed"] == ["core.user.list", "core.user.view"]
        assert data["denied"] == []
        assert data["grant_all"] is False

    def test_decision_dict(self, human: Actor) -> None:
        decision = AuthorizationDecision.deny(
            ReasonCode.DENIED_COMPANY_SCOPE,
            ["company_scope"],
            {"actor_company_id": 10, "resource_company_id": 20},
        )
        data = build_decision_dict(human, "Core.User.View", decision)
        assert data["capability"] == "core.user.view"
        assert data["audit_meta"]["resource_company_id"] == 20


class TestConsoleReport:
    """Tests for console reports."""

    def test_decision_log(self, db_with_decisions: Path) -> None:
        console, output = _console()
        generate_decisions_console_report(db_with_decisions, console=console, verbose=True)

        text = output.getvalue()
        assert "core.user.delete" in text
        assert "personal_agent:7" in text
        assert "denied_company_scope" in text
        assert "correlation: req-1" in text
        assert "Summary" in text

    def test_empty_log(self, temp_dir: Path) -> None:
        console, output = _console()
        generate_decisions_console_report(temp_dir / "empty.db", console=console)
        assert "No decisions recorded" in output.getvalue()

    def test_print_decision(self, human: Actor) -> None:
        console, output = _console()
        decision = AuthorizationDecision.allow(["actor_context", "grant", "role_capability"])
        print_decision(human, "core.user.view", decision, console)

        text = output.getvalue()
        assert "ALLOWED" in text
        assert "actor_context → grant → role_capability" in text

    def test_print_permissions(self, human: Actor, db_with_decisions: Path, sample_config) -> None:
        with Authz(db_path=db_with_decisions, config=sample_config) as authz:
            authz.db.set_principal_capability(
                PrincipalType.HUMAN_USER, 5, "core.user.list", False, company_id=10
            )
            permissions = authz.effective_permissions(human)

        console, output = _console()
        print_permissions(human, permissions, console)

        text = output.getvalue()
        assert "core.user.view" in text
        assert "explicit" in text
        assert "1 allowed, 1 explicitly denied" in text
