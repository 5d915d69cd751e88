"""
Authorization Engine for capgate.

The engine is the decision point: every capability check passes through
an ordered pipeline of policy stages.

Design Principles:
    - Deny-by-default: Unknown capabilities and malformed actors are denied
    - Fail-closed: A stage error, or a pipeline where every stage abstains,
      is a DENIED_POLICY_ENGINE_ERROR, never an implicit allow
    - Pure: The engine records nothing; auditing is a decorator
    - Auditable: Every decision carries the trail of stages consulted

How it works:
    1. Normalize the capability key
    2. Run each stage in order, appending its key to the trail
    3. Return the first decision, prefixed with the trail so far
    4. If every stage abstains, deny with DENIED_POLICY_ENGINE_ERROR
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from capgate.capability import key as capability_key
from capgate.errors import AuthorizationDeniedError
from capgate.policy.stages import PolicyStage
from capgate.schema import Actor, AuthorizationDecision, ReasonCode, ResourceContext

logger = logging.getLogger(__name__)


def to_resource_context(resource: Any) -> ResourceContext | None:
    """
    Convert an arbitrary resource to a ResourceContext by convention.

    Accepts a ResourceContext as-is, a mapping with type/id/company_id
    keys, or an object exposing id/company_id attributes. Anything else
    yields None (evaluated without a resource).
    """
    if resource is None or isinstance(resource, ResourceContext):
        return resource

    if isinstance(resource, Mapping):
        company_id = resource.get("company_id")
        return ResourceContext(
            type=str(resource.get("type", "resource")),
            id=resource.get("id"),
            company_id=int(company_id) if company_id is not None else None,
            attributes=dict(resource),
        )

    if hasattr(resource, "id") or hasattr(resource, "company_id"):
        company_id = getattr(resource, "company_id", None)
        return ResourceContext(
            type=str(getattr(resource, "resource_type", type(resource).__name__.lower())),
            id=getattr(resource, "id", None),
            company_id=int(company_id) if company_id is not None else None,
            attributes=dict(getattr(resource, "__dict__", {})),
        )

    return None


class AuthorizationService(ABC):
    """
    Contract offered to callers such as HTTP middleware.

    Subclasses implement can(); authorize() and filter_allowed() are
    derived from it.
    """

    @abstractmethod
    def can(
        self,
        actor: Actor,
        capability: str,
        resource: ResourceContext | None = None,
        context: dict[str, Any] | None = None,
    ) -> AuthorizationDecision:
        """Evaluate whether actor may use capability on resource."""
        ...

    def authorize(
        self,
        actor: Actor,
        capability: str,
        resource: ResourceContext | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """
        Authorize or raise.

        Raises:
            AuthorizationDeniedError: Carrying the denied decision
        """
        decision = self.can(actor, capability, resource, context)
        if decision.allowed:
            return
        raise AuthorizationDeniedError(decision=decision, capability=capability_key.normalize(capability))

    def filter_allowed(
        self,
        actor: Actor,
        capability: str,
        resources: Iterable[Any],
        context: dict[str, Any] | None = None,
    ) -> list[Any]:
        """
        Keep only the resources the actor may use capability on.

        Each resource is evaluated on its own; input order is preserved and
        the original objects are returned.
        """
        allowed = []
        for resource in resources:
            decision = self.can(actor, capability, to_resource_context(resource), context)
            if decision.allowed:
                allowed.append(resource)
        return allowed


class AuthorizationEngine(AuthorizationService):
    """
    Pure authorization engine: an ordered pipeline of policy stages.

    Usage:
        engine = AuthorizationEngine(default_stages(registry, source))
        decision = engine.can(actor, "core.user.view")
        if decision.allowed:
            ...

    Attributes:
        stages: Policy stages in evaluation order
    """

    def __init__(self, stages: Iterable[PolicyStage]) -> None:
        self.stages: tuple[PolicyStage, ...] = tuple(stages)

    def can(
        self,
        actor: Actor,
        capability: str,
        resource: ResourceContext | None = None,
        context: dict[str, Any] | None = None,
    ) -> AuthorizationDecision:
        capability = capability_key.normalize(capability)
        context = context or {}
        applied: list[str] = []

        try:
            for stage in self.stages:
                applied.append(stage.key)
                decision = stage.evaluate(actor, capability, resource, context)
                if decision is not None:
                    return decision.with_trail(applied)
        except Exception as e:
            logger.exception(
                "Policy stage %s failed for %s on %s",
                applied[-1] if applied else "?",
                actor.cache_key(),
                capability,
            )
            return AuthorizationDecision.deny(
                ReasonCode.DENIED_POLICY_ENGINE_ERROR,
                applied,
                {"error": type(e).__name__, "stage": applied[-1] if applied else None},
            )

        logger.error(
            "No policy stage decided %s for %s; denying",
            capability,
            actor.cache_key(),
        )
        return AuthorizationDecision.deny(
            ReasonCode.DENIED_POLICY_ENGINE_ERROR,
            applied,
            {"error": "no terminal stage produced a decision"},
        )

    def __repr__(self) -> str:
        keys = ", ".join(stage.key for stage in self.stages)
        return f"<AuthorizationEngine: [{keys}]>"
