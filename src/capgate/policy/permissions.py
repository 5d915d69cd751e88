"""
Effective permissions for an actor.

Resolves, in a fixed number of lookups, every capability an actor holds:
the union of role-derived grants, adjusted by explicit per-principal
overrides. Checks are then answered in memory.

Precedence:
    explicit deny > explicit allow > grant_all role > role grant > deny

Grant data comes from a GrantSource. Any store that can answer the two
scoped questions below is a valid source:
    - which roles are assigned to this principal in this company (or globally)?
    - which explicit allow/deny overrides exist for this principal?
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable

from capgate.capability import key as capability_key
from capgate.capability.registry import CapabilityRegistry
from capgate.schema import (
    Actor,
    AuthorizationDecision,
    PrincipalCapability,
    PrincipalRole,
    ReasonCode,
    Role,
)


class GrantSource(ABC):
    """
    Role/grant data consumed by the grant stage.

    Both queries are scoped the same way: rows whose company_id equals the
    actor's company, plus rows with no company (global).
    """

    @abstractmethod
    def roles_for(self, actor: Actor) -> list[Role]:
        """Roles assigned to the actor's principal within its company scope."""
        ...

    @abstractmethod
    def overrides_for(self, actor: Actor) -> list[PrincipalCapability]:
        """Explicit capability overrides for the actor's principal."""
        ...


def _in_scope(row_company_id: int | None, actor: Actor) -> bool:
    return row_company_id is None or row_company_id == actor.company_id


class InMemoryGrantSource(GrantSource):
    """
    GrantSource backed by plain lists.

    Useful for embedding the engine without a database, and in tests.

    Usage:
        source = InMemoryGrantSource()
        role = source.add_role(Role(code="viewer", capabilities={"core.user.view"}))
        source.assign(actor, role)
        source.deny(actor, "core.user.view")
    """

    def __init__(
        self,
        roles: Iterable[Role] = (),
        assignments: Iterable[PrincipalRole] = (),
        overrides: Iterable[PrincipalCapability] = (),
    ) -> None:
        self._roles: dict[int, Role] = {}
        for role in roles:
            self.add_role(role)
        self._assignments: list[PrincipalRole] = list(assignments)
        self._overrides: list[PrincipalCapability] = list(overrides)

    def add_role(self, role: Role) -> Role:
        """Store a role, assigning the next id when it has none."""
        if role.id == 0:
            role = role.model_copy(update={"id": len(self._roles) + 1})
        self._roles[role.id] = role
        return role

    def assign(self, actor: Actor, role: Role, company_id: int | None = None) -> None:
        """Assign a role to the actor's principal (global when company_id is None)."""
        self._assignments.append(
            PrincipalRole(
                principal_type=actor.type,
                principal_id=actor.id,
                company_id=company_id,
                role_id=role.id,
            )
        )

    def allow(self, actor: Actor, capability: str, company_id: int | None = None) -> None:
        """Record an explicit grant."""
        self._override(actor, capability, True, company_id)

    def deny(self, actor: Actor, capability: str, company_id: int | None = None) -> None:
        """Record an explicit deny."""
        self._override(actor, capability, False, company_id)

    def _override(
        self,
        actor: Actor,
        capability: str,
        is_allowed: bool,
        company_id: int | None,
    ) -> None:
        self._overrides.append(
            PrincipalCapability(
                principal_type=actor.type,
                principal_id=actor.id,
                company_id=company_id,
                capability_key=capability,
                is_allowed=is_allowed,
            )
        )

    def roles_for(self, actor: Actor) -> list[Role]:
        role_ids = {
            a.role_id
            for a in self._assignments
            if a.principal_type == actor.type
            and a.principal_id == actor.id
            and _in_scope(a.company_id, actor)
        }
        return [self._roles[rid] for rid in sorted(role_ids) if rid in self._roles]

    def overrides_for(self, actor: Actor) -> list[PrincipalCapability]:
        return [
            o
            for o in self._overrides
            if o.principal_type == actor.type
            and o.principal_id == actor.id
            and _in_scope(o.company_id, actor)
        ]


class EffectivePermissions:
    """
    Pre-loaded permission set for one actor.

    Attributes:
        direct_denies: Capability keys explicitly denied
        direct_allows: Capability keys explicitly allowed
        role_grants: Capability keys granted through roles
        grant_all: Whether any assigned role has grant_all
    """

    def __init__(
        self,
        direct_denies: frozenset[str],
        direct_allows: frozenset[str],
        role_grants: frozenset[str],
        grant_all: bool,
        registry: CapabilityRegistry,
    ) -> None:
        self.direct_denies = direct_denies
        self.direct_allows = direct_allows
        self.role_grants = role_grants
        self.grant_all = grant_all
        self._registry = registry

    @classmethod
    def for_actor(
        cls,
        actor: Actor,
        source: GrantSource,
        registry: CapabilityRegistry,
    ) -> "EffectivePermissions":
        """
        Load every effective permission for an actor.

        Runs exactly two source queries regardless of how many roles or
        capabilities the actor has.
        """
        denies: set[str] = set()
        allows: set[str] = set()
        for override in source.overrides_for(actor):
            if override.is_allowed:
                allows.add(override.capability_key)
            else:
                denies.add(override.capability_key)

        roles = source.roles_for(actor)
        grant_all = any(role.grant_all for role in roles)

        role_grants: set[str] = set()
        if not grant_all:
            for role in roles:
                role_grants.update(role.capabilities)

        return cls(
            direct_denies=frozenset(denies),
            direct_allows=frozenset(allows),
            role_grants=frozenset(role_grants),
            grant_all=grant_all,
            registry=registry,
        )

    def allowed(self) -> list[str]:
        """
        Every capability the actor effectively holds, sorted.

        Merges direct allows with the role baseline, then subtracts
        explicit denies.
        """
        baseline = set(self._registry.all()) if self.grant_all else set(self.role_grants)
        return sorted((baseline | self.direct_allows) - self.direct_denies)

    def denied(self) -> list[str]:
        """Capabilities explicitly denied for this actor, sorted."""
        return sorted(self.direct_denies)

    def has_grant_all(self) -> bool:
        return self.grant_all

    def evaluate(self, capability: str) -> AuthorizationDecision:
        """Decide whether the actor holds the capability."""
        capability = capability_key.normalize(capability)

        if capability in self.direct_denies:
            return AuthorizationDecision.deny(
                ReasonCode.DENIED_EXPLICITLY,
                ["direct_capability"],
            )

        if capability in self.direct_allows:
            return AuthorizationDecision.allow(["direct_capability"])

        if self.grant_all:
            return AuthorizationDecision.allow(["grant_all"])

        if capability in self.role_grants:
            return AuthorizationDecision.allow(["role_capability"])

        return AuthorizationDecision.deny(
            ReasonCode.DENIED_MISSING_CAPABILITY,
            ["role_capability"],
        )

    def __repr__(self) -> str:
        return (
            f"<EffectivePermissions: grant_all={self.grant_all}, "
            f"roles={len(self.role_grants)}, allows={len(self.direct_allows)}, "
            f"denies={len(self.direct_denies)}>"
        )
