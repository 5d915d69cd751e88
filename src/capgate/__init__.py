"""
capgate - Capability-based authorization engine.

For a given actor (a human user, or a personal agent acting for one) and a
requested capability key, capgate decides whether the action is permitted
and why. It provides:
- Deny-by-default evaluation through an ordered chain of policy stages
- Company (tenant) scoping
- Role and explicit-override resolution with per-request caching
- Best-effort audit logging of every decision

Example usage:
    from capgate import Actor, Authz, PrincipalType

    with Authz(db_path="capgate.db") as authz:
        actor = Actor(type=PrincipalType.HUMAN_USER, id=5, company_id=10)
        decision = authz.service().can(actor, "core.user.view")

    $ capgate check human_user 5 core.user.view --company 10
"""

__version__ = "0.1.0"
__author__ = "capgate Contributors"

from capgate.engine import Authz, build_service
from capgate.errors import AuthorizationDeniedError, CapgateError
from capgate.schema import (
    Actor,
    AuthorizationDecision,
    PrincipalType,
    ReasonCode,
    ResourceContext,
)

__all__ = [
    "Actor",
    "AuthorizationDecision",
    "AuthorizationDeniedError",
    "Authz",
    "CapgateError",
    "PrincipalType",
    "ReasonCode",
    "ResourceContext",
    "__author__",
    "__version__",
    "build_service",
]
