"""
Storage module for capgate.

This module provides SQLite-based persistence for roles, role assignments,
explicit capability overrides and the decision log. AuthzDB doubles as the
GrantSource the grant stage reads from.

Tables:
    - roles / role_capabilities: Named capability bundles
    - principal_roles: Who holds which role, in which company
    - principal_capabilities: Explicit allow/deny overrides
    - decision_logs: Append-only record of every decision

Design principles:
    - Append-only audit: Decision logs are only ever pruned by age
    - Scoped: Every grant row is either company-specific or global
    - Self-contained: A single .db file holds all grant data
"""

from capgate.store.db import AuthzDB, now_iso

__all__ = [
    "AuthzDB",
    "now_iso",
]
