"""
Wiring for capgate.

Authz is the service provider: it loads configuration, validates the
capability catalog, opens the grant store and hands out audited
authorization services.

Bootstrap Flow:
    1. Load the base config and merge any module authz.yaml files
    2. Validate the catalog and build the registry (fails fast)
    3. Open the SQLite store used as the grant source
    4. For each request, build a fresh engine so grant caches never
       outlive the request

Design Principles:
    - Fail-fast: Configuration errors raise here, never inside can()
    - Request-scoped caches: Each service() call gets its own GrantStage
    - Best-effort audit: Decision logs are buffered per request and
      flushed when the service block exits or the buffer fills
"""

import logging
from pathlib import Path
from typing import Any

from capgate.audit import (
    AuditingAuthorizationService,
    DatabaseDecisionLogger,
    DecisionLogger,
    InMemoryDecisionLogger,
)
from capgate.capability import CapabilityCatalog, CapabilityRegistry
from capgate.policy import (
    AuthorizationEngine,
    EffectivePermissions,
    GrantSource,
    default_stages,
)
from capgate.schema import (
    DEFAULT_CONFIG_PATH,
    Actor,
    AuthzConfig,
    Role,
    discover_configs,
    load_config,
)
from capgate.store import AuthzDB

logger = logging.getLogger(__name__)


def build_service(
    registry: CapabilityRegistry,
    grant_source: GrantSource,
    decision_logger: DecisionLogger | None = None,
) -> AuditingAuthorizationService:
    """
    Wire the default pipeline for embedding without a database.

    Args:
        registry: Known capabilities
        grant_source: Where roles and overrides come from
        decision_logger: Sink for decisions (in-memory when omitted)

    Returns:
        An audited authorization service with a fresh grant cache
    """
    engine = AuthorizationEngine(default_stages(registry, grant_source))
    return AuditingAuthorizationService(engine, decision_logger or InMemoryDecisionLogger())


class Authz:
    """
    Service provider owning configuration, registry and storage.

    Usage:
        with Authz(db_path="capgate.db") as authz:
            authz.seed()
            with authz.service() as service:
                service.authorize(actor, "core.user.view")

    Attributes:
        config: Merged authz configuration
        catalog: Validated capability catalog
        registry: Capability registry built from the catalog
        db: Grant store and decision log sink
        decision_logger: Buffered database decision logger
    """

    def __init__(
        self,
        db_path: str | Path = "capgate.db",
        config: AuthzConfig | None = None,
        config_path: str | Path = DEFAULT_CONFIG_PATH,
        module_dirs: list[str | Path] | None = None,
    ) -> None:
        """
        Initialize the provider.

        Args:
            db_path: Path to SQLite database, or ":memory:"
            config: Pre-loaded configuration (skips loading and discovery)
            config_path: Base YAML configuration
            module_dirs: Directories scanned for module authz.yaml files

        Raises:
            ConfigError: If configuration cannot be loaded
            CapabilityError: If the catalog fails validation
        """
        if config is None:
            config = discover_configs(load_config(config_path), module_dirs or [])
        self.config = config
        self.catalog = CapabilityCatalog.from_config(config)
        self.registry = CapabilityRegistry.from_catalog(self.catalog)
        self.db = AuthzDB(db_path)
        self.decision_logger = DatabaseDecisionLogger(self.db)
        logger.debug("Authz ready: %r, %r", self.catalog, self.registry)

    def service(self) -> AuditingAuthorizationService:
        """
        A request-scoped, audited authorization service.

        Use it as a context manager to flush the decision log when the
        request ends.
        """
        return build_service(self.registry, self.db, self.decision_logger)

    def effective_permissions(self, actor: Actor) -> EffectivePermissions:
        """Resolve every capability the actor effectively holds."""
        return EffectivePermissions.for_actor(actor, self.db, self.registry)

    def seed(self) -> list[Role]:
        """Seed the configured system roles into the database."""
        return self.db.seed_roles(self.config, self.registry)

    def flush(self) -> int:
        """Write buffered decision logs."""
        return self.decision_logger.flush()

    def prune(self) -> int:
        """Delete decision logs older than the configured retention."""
        return self.db.prune_decision_logs(self.config.decision_log_retention_days)

    def close(self) -> None:
        """Flush pending decision logs and close the database."""
        self.decision_logger.close()
        self.db.close()

    def __enter__(self) -> "Authz":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
