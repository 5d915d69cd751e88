"""
Policy stages for the authorization pipeline.

Each stage either returns a decision, which halts the pipeline, or
returns None to abstain and let the next stage decide.

The set of stages is closed:
    - ActorContextStage: actor shape (id, company, agent delegation)
    - KnownCapabilityStage: capability exists in the registry
    - CompanyScopeStage: resource belongs to the actor's company
    - GrantStage: role and override resolution (terminal, never abstains)

Cheap context-free checks run first; tenant isolation runs before any
grant lookup so a cross-tenant request is denied even for an actor that
holds the capability.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any

from capgate.capability.registry import CapabilityRegistry
from capgate.policy.permissions import EffectivePermissions, GrantSource
from capgate.schema import Actor, AuthorizationDecision, ReasonCode, ResourceContext


class PolicyStage(ABC):
    """
    One stage of the authorization pipeline.

    Subclasses must implement:
    - key property: stable identifier recorded in the decision trail
    - evaluate(): return a decision to halt, or None to abstain
    """

    @property
    @abstractmethod
    def key(self) -> str:
        """Stable identifier for audit trails."""
        ...

    @abstractmethod
    def evaluate(
        self,
        actor: Actor,
        capability: str,
        resource: ResourceContext | None,
        context: dict[str, Any],
    ) -> AuthorizationDecision | None:
        """
        Evaluate this stage.

        Args:
            actor: The principal requesting authorization
            capability: Normalized capability key
            resource: Optional resource context
            context: Caller-supplied context

        Returns:
            A decision to halt the pipeline, or None to continue
        """
        ...

    def __repr__(self) -> str:
        return f"<PolicyStage: {self.key}>"


class ActorContextStage(PolicyStage):
    """Denies malformed actors; abstains when the actor context is valid."""

    @property
    def key(self) -> str:
        return "actor_context"

    def evaluate(
        self,
        actor: Actor,
        capability: str,
        resource: ResourceContext | None,
        context: dict[str, Any],
    ) -> AuthorizationDecision | None:
        error = actor.validation_error()
        if error is None:
            return None
        return AuthorizationDecision.deny(
            ReasonCode.DENIED_INVALID_ACTOR_CONTEXT,
            audit_meta={"violation": error},
        )


class KnownCapabilityStage(PolicyStage):
    """
    Rejects capabilities that were never registered.

    Grants are only ever evaluated for known, well-defined capabilities,
    so an unregistered key fails closed regardless of actor or resource.
    """

    def __init__(self, registry: CapabilityRegistry) -> None:
        self.registry = registry

    @property
    def key(self) -> str:
        return "capability_registry"

    def evaluate(
        self,
        actor: Actor,
        capability: str,
        resource: ResourceContext | None,
        context: dict[str, Any],
    ) -> AuthorizationDecision | None:
        if self.registry.has(capability):
            return None
        return AuthorizationDecision.deny(ReasonCode.DENIED_UNKNOWN_CAPABILITY)


class CompanyScopeStage(PolicyStage):
    """
    Enforces the company tenant boundary.

    Abstains when there is no resource, the resource has no company, or
    the companies match.
    """

    @property
    def key(self) -> str:
        return "company_scope"

    def evaluate(
        self,
        actor: Actor,
        capability: str,
        resource: ResourceContext | None,
        context: dict[str, Any],
    ) -> AuthorizationDecision | None:
        if resource is None or resource.company_id is None:
            return None
        if resource.company_id != actor.company_id:
            return AuthorizationDecision.deny(
                ReasonCode.DENIED_COMPANY_SCOPE,
                audit_meta={
                    "actor_company_id": actor.company_id,
                    "resource_company_id": resource.company_id,
                },
            )
        return None


class GrantStage(PolicyStage):
    """
    Resolves explicit overrides and role grants. Always decides.

    Effective permissions are computed at most once per actor cache key for
    the lifetime of this stage instance. The lock makes a shared instance
    safe across threads; a request-scoped instance never contends on it.
    """

    def __init__(self, source: GrantSource, registry: CapabilityRegistry) -> None:
        self.source = source
        self.registry = registry
        self._cache: dict[str, EffectivePermissions] = {}
        self._lock = threading.Lock()

    @property
    def key(self) -> str:
        return "grant"

    def permissions_for(self, actor: Actor) -> EffectivePermissions:
        """Cached effective permissions for an actor."""
        cache_key = actor.cache_key()
        with self._lock:
            permissions = self._cache.get(cache_key)
            if permissions is None:
                permissions = EffectivePermissions.for_actor(actor, self.source, self.registry)
                self._cache[cache_key] = permissions
        return permissions

    def evaluate(
        self,
        actor: Actor,
        capability: str,
        resource: ResourceContext | None,
        context: dict[str, Any],
    ) -> AuthorizationDecision | None:
        return self.permissions_for(actor).evaluate(capability)


def default_stages(registry: CapabilityRegistry, source: GrantSource) -> list[PolicyStage]:
    """The standard pipeline, in evaluation order."""
    return [
        ActorContextStage(),
        KnownCapabilityStage(registry),
        CompanyScopeStage(),
        GrantStage(source, registry),
    ]
