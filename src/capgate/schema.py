"""
Schema definitions for capgate.

This module defines the Pydantic models used throughout capgate:
- Actor/ResourceContext: Who is asking, and about what
- AuthorizationDecision: The result of running the policy pipeline
- Role/PrincipalRole/PrincipalCapability: Grant data consumed by the engine
- DecisionLogEntry: Append-only audit record
- AuthzConfig/RoleTemplate: Capability configuration loaded from YAML

Design Decisions:
    - Per-request values (Actor, ResourceContext, decisions) are frozen
    - Actor construction accepts malformed ids and missing companies; the
      actor-context stage turns those into a denial instead of an exception
    - Capability keys are lower-cased on the way in, everywhere
"""

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)

from capgate.capability import key as capability_key
from capgate.errors import ConfigError, ConfigNotFoundError


# =============================================================================
# Enums
# =============================================================================


class PrincipalType(str, Enum):
    """Kind of principal requesting authorization."""

    HUMAN_USER = "human_user"
    PERSONAL_AGENT = "personal_agent"


class ReasonCode(str, Enum):
    """
    Closed set of reasons attached to every decision.

    Exactly one reason accompanies a decision; ALLOWED is the only reason
    an allowed decision may carry.
    """

    ALLOWED = "allowed"
    DENIED_UNKNOWN_CAPABILITY = "denied_unknown_capability"
    DENIED_INVALID_ACTOR_CONTEXT = "denied_invalid_actor_context"
    DENIED_COMPANY_SCOPE = "denied_company_scope"
    DENIED_MISSING_CAPABILITY = "denied_missing_capability"
    DENIED_EXPLICITLY = "denied_explicitly"
    DENIED_POLICY_ENGINE_ERROR = "denied_policy_engine_error"


# =============================================================================
# Request Models
# =============================================================================


class Actor(BaseModel):
    """
    The principal requesting an authorization decision.

    A personal agent always acts on behalf of a human user, so it must
    carry acting_for_user_id.

    Attributes:
        type: Human user or personal agent
        id: Principal identity (must be positive to be valid)
        company_id: Tenant scope (required to be valid)
        acting_for_user_id: Delegating user, required for personal agents
        attributes: Free-form attributes
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: PrincipalType = Field(..., description="Principal type")
    id: int = Field(..., description="Principal identity")
    company_id: int | None = Field(default=None, description="Tenant scope")
    acting_for_user_id: int | None = Field(
        default=None,
        description="User a personal agent acts for",
    )
    attributes: dict[str, Any] = Field(default_factory=dict)

    def is_human_user(self) -> bool:
        return self.type == PrincipalType.HUMAN_USER

    def is_personal_agent(self) -> bool:
        return self.type == PrincipalType.PERSONAL_AGENT

    def cache_key(self) -> str:
        """Key identifying this actor's permission set: type:id:company_id."""
        company = "" if self.company_id is None else str(self.company_id)
        return f"{self.type.value}:{self.id}:{company}"

    def validation_error(self) -> str | None:
        """
        Check the minimum actor context.

        Returns:
            A short description of the first violation, or None if valid
        """
        if self.id <= 0:
            return "actor id must be positive"
        if self.company_id is None:
            return "actor has no company"
        if self.is_personal_agent() and self.acting_for_user_id is None:
            return "personal agent has no delegating user"
        return None


class ResourceContext(BaseModel):
    """
    Optional description of the object being acted upon.

    Attributes:
        type: Resource type tag (e.g., "employee")
        id: Resource identifier, if any
        company_id: Owning company, used for tenant-scope checks
        attributes: Free-form attributes
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: str = Field(default="resource", description="Resource type tag")
    id: str | int | None = Field(default=None, description="Resource identifier")
    company_id: int | None = Field(default=None, description="Owning company")
    attributes: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Decision Model
# =============================================================================


class AuthorizationDecision(BaseModel):
    """
    Immutable result of an authorization check.

    Attributes:
        allowed: Whether the action is permitted
        reason_code: Why; ALLOWED if and only if allowed is True
        applied_policies: Ordered trail of policy keys that were consulted
        audit_meta: Free-form diagnostic context (read-only view)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    allowed: bool = Field(..., description="Whether the action is permitted")
    reason_code: ReasonCode = Field(..., description="Reason for the decision")
    applied_policies: tuple[str, ...] = Field(default_factory=tuple)
    audit_meta: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)

    @field_validator("audit_meta", mode="after")
    @classmethod
    def freeze_audit_meta(cls, v: Mapping[str, Any]) -> Mapping[str, Any]:
        return MappingProxyType(dict(v))

    @field_serializer("audit_meta")
    def dump_audit_meta(self, v: Mapping[str, Any]) -> dict[str, Any]:
        return dict(v)

    @model_validator(mode="after")
    def check_reason_matches_outcome(self) -> "AuthorizationDecision":
        if self.allowed != (self.reason_code == ReasonCode.ALLOWED):
            msg = f"allowed={self.allowed} is inconsistent with {self.reason_code.value}"
            raise ValueError(msg)
        return self

    @classmethod
    def allow(
        cls,
        applied_policies: Iterable[str] = (),
        audit_meta: Mapping[str, Any] | None = None,
    ) -> "AuthorizationDecision":
        """Create an ALLOW decision."""
        return cls(
            allowed=True,
            reason_code=ReasonCode.ALLOWED,
            applied_policies=tuple(applied_policies),
            audit_meta=audit_meta or {},
        )

    @classmethod
    def deny(
        cls,
        reason_code: ReasonCode,
        applied_policies: Iterable[str] = (),
        audit_meta: Mapping[str, Any] | None = None,
    ) -> "AuthorizationDecision":
        """Create a DENY decision."""
        return cls(
            allowed=False,
            reason_code=reason_code,
            applied_policies=tuple(applied_policies),
            audit_meta=audit_meta or {},
        )

    def with_trail(self, consulted: Iterable[str]) -> "AuthorizationDecision":
        """Return a copy whose trail is the consulted stages followed by this trail."""
        return self.model_copy(
            update={"applied_policies": (*consulted, *self.applied_policies)}
        )


# =============================================================================
# Grant Data Models
# =============================================================================


class Role(BaseModel):
    """
    Named bundle of capability keys.

    Capabilities are plain key strings, decoupled from any capability rows,
    so roles can be seeded before capabilities exist in storage.

    Attributes:
        id: Storage identifier (0 for roles not backed by storage)
        code: Stable machine name (e.g., "user_viewer")
        name: Display name
        description: Optional description
        company_id: Owning company, or None for a global/system role
        grant_all: Role implicitly holds every known capability
        is_system: Protected from deletion
        capabilities: Capability keys attached to the role
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: int = Field(default=0, ge=0)
    code: str = Field(..., min_length=1)
    name: str = Field(default="")
    description: str | None = None
    company_id: int | None = None
    grant_all: bool = False
    is_system: bool = False
    capabilities: frozenset[str] = Field(default_factory=frozenset)

    @field_validator("capabilities", mode="before")
    @classmethod
    def normalize_capabilities(cls, v: Any) -> frozenset[str]:
        return frozenset(capability_key.normalize(str(key)) for key in (v or ()))


class PrincipalRole(BaseModel):
    """Assignment of a role to a principal within a company scope."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    principal_type: PrincipalType
    principal_id: int
    company_id: int | None = None
    role_id: int


class PrincipalCapability(BaseModel):
    """
    Explicit per-principal override for one capability key.

    is_allowed=False is an explicit deny and beats any role-derived grant.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    principal_type: PrincipalType
    principal_id: int
    company_id: int | None = None
    capability_key: str
    is_allowed: bool

    @field_validator("capability_key")
    @classmethod
    def lower_key(cls, v: str) -> str:
        return capability_key.normalize(v)


class DecisionLogEntry(BaseModel):
    """
    Append-only audit record of one decision.

    Attributes:
        company_id: Actor's company at decision time
        actor_type: Actor principal type
        actor_id: Actor principal id
        acting_for_user_id: Delegating user for personal agents
        capability: Capability key that was checked
        resource_type: Resource type tag, if a resource was given
        resource_id: Resource id rendered as text, if any
        allowed: Outcome
        reason_code: Reason attached to the outcome
        applied_policies: Policy trail
        context: Caller-supplied context
        correlation_id: Taken from context["correlation_id"] when present
        occurred_at: When the decision was made
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: int | None = None
    company_id: int | None = None
    actor_type: PrincipalType
    actor_id: int
    acting_for_user_id: int | None = None
    capability: str
    resource_type: str | None = None
    resource_id: str | None = None
    allowed: bool
    reason_code: ReasonCode
    applied_policies: list[str] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)
    correlation_id: str | None = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_decision(
        cls,
        actor: Actor,
        capability: str,
        resource: ResourceContext | None,
        decision: AuthorizationDecision,
        context: dict[str, Any] | None = None,
    ) -> "DecisionLogEntry":
        """Build the audit record for a decision."""
        context = context or {}
        correlation_id = context.get("correlation_id")
        return cls(
            company_id=actor.company_id,
            actor_type=actor.type,
            actor_id=actor.id,
            acting_for_user_id=actor.acting_for_user_id,
            capability=capability_key.normalize(capability),
            resource_type=resource.type if resource else None,
            resource_id=(
                str(resource.id) if resource is not None and resource.id is not None else None
            ),
            allowed=decision.allowed,
            reason_code=decision.reason_code,
            applied_policies=list(decision.applied_policies),
            context=context,
            correlation_id=str(correlation_id) if correlation_id is not None else None,
        )


# =============================================================================
# Configuration Models
# =============================================================================


class RoleTemplate(BaseModel):
    """A system role declared in configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    description: str | None = None
    grant_all: bool = False
    capabilities: list[str] = Field(default_factory=list)

    @field_validator("capabilities")
    @classmethod
    def lower_keys(cls, v: list[str]) -> list[str]:
        return [capability_key.normalize(key) for key in v]


class AuthzConfig(BaseModel):
    """
    Capability configuration, merged across feature modules.

    Domains may be given as a list of names or as a mapping of
    name to description.

    Attributes:
        domains: Domain name -> description
        verbs: Allowed action segments
        capabilities: Capability keys
        roles: System role templates by code
        decision_log_retention_days: Age after which decision logs are pruned
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    domains: dict[str, str] = Field(default_factory=dict)
    verbs: list[str] = Field(default_factory=list)
    capabilities: list[str] = Field(default_factory=list)
    roles: dict[str, RoleTemplate] = Field(default_factory=dict)
    decision_log_retention_days: int = Field(default=90, gt=0)

    @field_validator("domains", mode="before")
    @classmethod
    def domains_from_list(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, list):
            return {str(name): "" for name in v}
        return v


# =============================================================================
# YAML Loading Helpers
# =============================================================================

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config" / "authz.yaml"

MODULE_CONFIG_NAME = "authz.yaml"


def _parse(data: Any, path: str | None) -> AuthzConfig:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(path=path, message=f"Authz config must be a mapping: {path}")
    try:
        return AuthzConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(path=path, message=f"Invalid authz config {path}: {e}") from e


def load_config(path: Path | str = DEFAULT_CONFIG_PATH) -> AuthzConfig:
    """
    Load authz configuration from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Validated AuthzConfig

    Raises:
        ConfigNotFoundError: If the file doesn't exist
        ConfigError: If the YAML doesn't match the schema
    """
    path = Path(path)
    if not path.exists():
        raise ConfigNotFoundError(path=str(path))
    with path.open() as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(path=str(path), message=f"Invalid YAML in {path}: {e}") from e

    return _parse(data, str(path))


def load_config_from_string(content: str) -> AuthzConfig:
    """Load authz configuration from a YAML string."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(message=f"Invalid YAML: {e}") from e
    return _parse(data, None)


def merge_configs(base: AuthzConfig, *others: AuthzConfig) -> AuthzConfig:
    """
    Merge module configs into a base config.

    Capabilities are appended and roles are merged by code (later modules
    win). Domains, verbs and retention stay owned by the base config.
    """
    capabilities = list(base.capabilities)
    roles = dict(base.roles)
    for other in others:
        capabilities.extend(other.capabilities)
        roles.update(other.roles)
    return base.model_copy(update={"capabilities": capabilities, "roles": roles})


def discover_configs(
    base: AuthzConfig,
    module_dirs: list[Path | str],
) -> AuthzConfig:
    """
    Discover per-module authz.yaml files and merge them into base.

    Each module directory is scanned one level deep, so a layout such as
    modules/<name>/authz.yaml is picked up. Files are merged in sorted
    path order.
    """
    found: list[AuthzConfig] = []
    for module_dir in module_dirs:
        root = Path(module_dir)
        if not root.is_dir():
            continue
        for file in sorted(root.glob(f"*/{MODULE_CONFIG_NAME}")):
            found.append(load_config(file))
    return merge_configs(base, *found)
