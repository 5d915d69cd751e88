"""
Decision auditing for capgate.

AuditingAuthorizationService wraps a pure engine and records every
decision it produces. Recording is best-effort: a logger that raises is
reported through logging and the caller still receives the decision.

Loggers:
    - InMemoryDecisionLogger: Keeps entries in a list
    - DatabaseDecisionLogger: Buffers entries and writes them to AuthzDB
      in one batch per flush
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any

from capgate.capability import key as capability_key
from capgate.policy.engine import AuthorizationEngine, AuthorizationService
from capgate.schema import Actor, AuthorizationDecision, DecisionLogEntry, ResourceContext
from capgate.store.db import DECISION_LOG_CHUNK_SIZE, AuthzDB

logger = logging.getLogger(__name__)


class DecisionLogger(ABC):
    """Sink for authorization decisions."""

    @abstractmethod
    def log(
        self,
        actor: Actor,
        capability: str,
        resource: ResourceContext | None,
        decision: AuthorizationDecision,
        context: dict[str, Any],
    ) -> None:
        """Record one decision."""
        ...

    def flush(self) -> int:
        """Write any buffered entries; returns how many were written."""
        return 0


class InMemoryDecisionLogger(DecisionLogger):
    """Collects decision log entries in memory."""

    def __init__(self) -> None:
        self.entries: list[DecisionLogEntry] = []

    def log(
        self,
        actor: Actor,
        capability: str,
        resource: ResourceContext | None,
        decision: AuthorizationDecision,
        context: dict[str, Any],
    ) -> None:
        self.entries.append(
            DecisionLogEntry.from_decision(actor, capability, resource, decision, context)
        )

    def __len__(self) -> int:
        return len(self.entries)


class DatabaseDecisionLogger(DecisionLogger):
    """
    Buffers decision log entries and writes them to the database in batches.

    Entries are held in memory until flush(), close() or context-manager
    exit, or until flush_at entries are pending, whichever comes first. A
    failed flush is logged and the buffered entries are dropped; it never
    propagates to the caller.

    Usage:
        with DatabaseDecisionLogger(db) as decision_logger:
            service = AuditingAuthorizationService(engine, decision_logger)
            service.can(actor, "core.user.view")
    """

    def __init__(self, db: AuthzDB, flush_at: int = DECISION_LOG_CHUNK_SIZE) -> None:
        self.db = db
        self.flush_at = flush_at
        self._buffer: list[DecisionLogEntry] = []
        self._lock = threading.Lock()

    def log(
        self,
        actor: Actor,
        capability: str,
        resource: ResourceContext | None,
        decision: AuthorizationDecision,
        context: dict[str, Any],
    ) -> None:
        entry = DecisionLogEntry.from_decision(actor, capability, resource, decision, context)
        with self._lock:
            self._buffer.append(entry)
            full = len(self._buffer) >= self.flush_at
        if full:
            self.flush()

    @property
    def pending(self) -> int:
        """Number of buffered entries not yet written."""
        return len(self._buffer)

    def flush(self) -> int:
        """
        Write buffered entries.

        Returns:
            Number of entries written (0 when the buffer was empty or the
            write failed)
        """
        with self._lock:
            entries, self._buffer = self._buffer, []
        if not entries:
            return 0
        try:
            return self.db.insert_decision_logs(entries)
        except Exception:
            logger.exception("Failed to write %d decision log entries", len(entries))
            return 0

    def close(self) -> None:
        self.flush()

    def __enter__(self) -> "DatabaseDecisionLogger":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class AuditingAuthorizationService(AuthorizationService):
    """
    Decorator that records every decision of a wrapped engine.

    authorize() and filter_allowed() are inherited and go through can(),
    so each individual decision is recorded exactly once.

    Used as a context manager it marks one request: exit flushes the
    decision logger so buffered entries reach storage per request.

    Attributes:
        engine: The wrapped authorization engine
        decision_logger: Sink receiving each decision
    """

    def __init__(self, engine: AuthorizationEngine, decision_logger: DecisionLogger) -> None:
        self.engine = engine
        self.decision_logger = decision_logger

    def can(
        self,
        actor: Actor,
        capability: str,
        resource: ResourceContext | None = None,
        context: dict[str, Any] | None = None,
    ) -> AuthorizationDecision:
        context = context or {}
        decision = self.engine.can(actor, capability, resource, context)
        try:
            self.decision_logger.log(
                actor, capability_key.normalize(capability), resource, decision, context
            )
        except Exception:
            logger.exception(
                "Decision logger failed for %s on %s; decision returned unrecorded",
                actor.cache_key(),
                capability,
            )
        return decision

    def flush(self) -> int:
        """Flush the decision logger; failures are logged, never raised."""
        try:
            return self.decision_logger.flush()
        except Exception:
            logger.exception("Decision logger flush failed")
            return 0

    def __enter__(self) -> "AuditingAuthorizationService":
        return self

    def __exit__(self, *args: Any) -> None:
        self.flush()

    def __repr__(self) -> str:
        return f"<AuditingAuthorizationService: {self.engine!r}>"
