"""
JSON report generator for capgate.

Generates structured JSON output for programmatic consumption: the
decision log, an actor's effective permissions and single decisions.

Design Principles:
    - Consistent schema: Same structure across reports
    - Human-readable keys: Use descriptive snake_case names
    - ISO timestamps: Standard datetime format
"""

import json
from collections import Counter
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from capgate.capability import key as capability_key
from capgate.policy.permissions import EffectivePermissions
from capgate.schema import Actor, AuthorizationDecision, DecisionLogEntry, PrincipalType
from capgate.store import AuthzDB

REPORT_VERSION = "1.0"


def generate_decisions_json_report(
    db_path: str | Path = "capgate.db",
    limit: int = 100,
    actor_type: PrincipalType | None = None,
    actor_id: int | None = None,
    capability: str | None = None,
    allowed: bool | None = None,
    indent: int = 2,
) -> str:
    """
    Generate a JSON report of recent decisions.

    Args:
        db_path: Path to the SQLite database
        limit: Maximum number of decisions
        actor_type: Only decisions for this principal type
        actor_id: Only decisions for this principal id
        capability: Only decisions for this capability
        allowed: Only allowed (True) or denied (False) decisions
        indent: JSON indentation level (default: 2)

    Returns:
        JSON string with the decision report
    """
    report = build_decisions_dict(db_path, limit, actor_type, actor_id, capability, allowed)
    return dumps(report, indent=indent)


def build_decisions_dict(
    db_path: str | Path = "capgate.db",
    limit: int = 100,
    actor_type: PrincipalType | None = None,
    actor_id: int | None = None,
    capability: str | None = None,
    allowed: bool | None = None,
) -> dict[str, Any]:
    """Build a report dictionary of recent decisions, most recent first."""
    with AuthzDB(db_path) as db:
        entries = db.list_decision_logs(
            limit=limit,
            actor_type=actor_type,
            actor_id=actor_id,
            capability=capability,
            allowed=allowed,
        )

    return {
        "report_version": REPORT_VERSION,
        "generated_at": datetime.now(UTC).isoformat(),
        "decisions": [_serialize_entry(entry) for entry in entries],
        "summary": _build_summary(entries),
    }


def _serialize_entry(entry: DecisionLogEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "occurred_at": entry.occurred_at.isoformat(),
        "company_id": entry.company_id,
        "actor": {
            "type": entry.actor_type.value,
            "id": entry.actor_id,
            "acting_for_user_id": entry.acting_for_user_id,
        },
        "capability": entry.capability,
        "resource": (
            {"type": entry.resource_type, "id": entry.resource_id}
            if entry.resource_type is not None
            else None
        ),
        "allowed": entry.allowed,
        "reason_code": entry.reason_code.value,
        "applied_policies": entry.applied_policies,
        "correlation_id": entry.correlation_id,
        "context": entry.context,
    }


def _build_summary(entries: list[DecisionLogEntry]) -> dict[str, Any]:
    allowed = sum(1 for e in entries if e.allowed)
    reasons = Counter(e.reason_code.value for e in entries)
    return {
        "total": len(entries),
        "allowed": allowed,
        "denied": len(entries) - allowed,
        "by_reason": dict(sorted(reasons.items())),
    }


def build_permissions_dict(actor: Actor, permissions: EffectivePermissions) -> dict[str, Any]:
    """Effective permissions for one actor as a dictionary."""
    return {
        "report_version": REPORT_VERSION,
        "actor": _serialize_actor(actor),
        "grant_all": permissions.has_grant_all(),
        "allowed": permissions.allowed(),
        "denied": permissions.denied(),
    }


def build_decision_dict(
    actor: Actor,
    capability: str,
    decision: AuthorizationDecision,
) -> dict[str, Any]:
    """A single decision as a dictionary."""
    return {
        "actor": _serialize_actor(actor),
        "capability": capability_key.normalize(capability),
        "allowed": decision.allowed,
        "reason_code": decision.reason_code.value,
        "applied_policies": list(decision.applied_policies),
        "audit_meta": dict(decision.audit_meta),
    }


def _serialize_actor(actor: Actor) -> dict[str, Any]:
    return {
        "type": actor.type.value,
        "id": actor.id,
        "company_id": actor.company_id,
        "acting_for_user_id": actor.acting_for_user_id,
    }


def _json_serializer(obj: Any) -> Any:
    """Custom JSON serializer for non-standard types."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def dumps(data: dict[str, Any], indent: int = 2) -> str:
    """Serialize a report dictionary."""
    return json.dumps(data, indent=indent, default=_json_serializer)
