"""
Unit tests for decision auditing.

Tests cover:
- Every decision is recorded, allowed or denied
- Logger failures never reach the caller
- Buffered database logging and flush failures
- Per-request and size-triggered flushing
"""

import logging
import threading
from pathlib import Path
from typing import Any

import pytest

from capgate.audit import (
    AuditingAuthorizationService,
    DatabaseDecisionLogger,
    DecisionLogger,
    InMemoryDecisionLogger,
)
from capgate.capability import CapabilityRegistry
from capgate.errors import AuthorizationDeniedError, StorageWriteError
from capgate.policy import AuthorizationEngine, InMemoryGrantSource, default_stages
from capgate.schema import Actor, ReasonCode, ResourceContext, Role
from capgate.store import AuthzDB


class FailingDecisionLogger(DecisionLogger):
    """Logger whose sink is down."""

    def __init__(self) -> None:
        self.attempts = 0

    def log(self, actor, capability, resource, decision, context) -> None:
        self.attempts += 1
        raise ConnectionError("audit sink unreachable")


class FailingDB:
    """Stand-in database whose writes fail."""

    def insert_decision_logs(self, entries: list[Any]) -> int:
        raise StorageWriteError(operation="insert_decision_logs", underlying_error="disk full")


@pytest.fixture
def engine(registry: CapabilityRegistry, grant_source: InMemoryGrantSource) -> AuthorizationEngine:
    return AuthorizationEngine(default_stages(registry, grant_source))


@pytest.fixture
def viewer(human: Actor, grant_source: InMemoryGrantSource, viewer_role: Role) -> Actor:
    grant_source.assign(human, viewer_role)
    return human


# =============================================================================
# AuditingAuthorizationService Tests
# =============================================================================


class TestAuditingAuthorizationService:
    """Tests for the auditing decorator."""

    def test_forwards_decision(self, engine: AuthorizationEngine, viewer: Actor) -> None:
        service = AuditingAuthorizationService(engine, InMemoryDecisionLogger())
        assert service.can(viewer, "core.user.view") == engine.can(viewer, "core.user.view")

    def test_logs_allow_and_deny(self, engine: AuthorizationEngine, viewer: Actor) -> None:
        decision_logger = InMemoryDecisionLogger()
        service = AuditingAuthorizationService(engine, decision_logger)

        service.can(viewer, "Core.User.View", context={"correlation_id": "abc"})
        service.can(viewer, "core.user.delete")

        assert len(decision_logger) == 2
        first, second = decision_logger.entries
        assert first.allowed and first.capability == "core.user.view"
        assert first.correlation_id == "abc"
        assert second.reason_code == ReasonCode.DENIED_MISSING_CAPABILITY

    def test_authorize_logs_before_raising(self, engine: AuthorizationEngine, viewer: Actor) -> None:
        decision_logger = InMemoryDecisionLogger()
        service = AuditingAuthorizationService(engine, decision_logger)

        with pytest.raises(AuthorizationDeniedError):
            service.authorize(viewer, "core.user.delete")

        assert len(decision_logger) == 1
        assert not decision_logger.entries[0].allowed

    def test_filter_allowed_logs_each_resource(
        self,
        engine: AuthorizationEngine,
        viewer: Actor,
    ) -> None:
        decision_logger = InMemoryDecisionLogger()
        service = AuditingAuthorizationService(engine, decision_logger)
        resources = [
            ResourceContext(type="employee", id=1, company_id=10),
            ResourceContext(type="employee", id=2, company_id=20),
            ResourceContext(type="employee", id=3, company_id=10),
        ]

        allowed = service.filter_allowed(viewer, "core.user.view", resources)

        assert allowed == [resources[0], resources[2]]
        assert [e.resource_id for e in decision_logger.entries] == ["1", "2", "3"]
        assert [e.allowed for e in decision_logger.entries] == [True, False, True]

    def test_logger_failure_returns_decision(
        self,
        engine: AuthorizationEngine,
        viewer: Actor,
        caplog,
    ) -> None:
        failing = FailingDecisionLogger()
        service = AuditingAuthorizationService(engine, failing)

        with caplog.at_level(logging.ERROR, logger="capgate.audit"):
            decision = service.can(viewer, "core.user.view")

        assert decision.allowed
        assert failing.attempts == 1
        assert "audit sink unreachable" in caplog.text

    def test_logger_failure_does_not_change_authorize(
        self,
        engine: AuthorizationEngine,
        viewer: Actor,
    ) -> None:
        service = AuditingAuthorizationService(engine, FailingDecisionLogger())
        assert service.authorize(viewer, "core.user.view") is None
        with pytest.raises(AuthorizationDeniedError):
            service.authorize(viewer, "core.user.delete")


# =============================================================================
# DatabaseDecisionLogger Tests
# =============================================================================


class TestDatabaseDecisionLogger:
    """Tests for the buffered database logger."""

    def test_buffers_until_flush(self, engine: AuthorizationEngine, viewer: Actor) -> None:
        with AuthzDB(":memory:") as db:
            decision_logger = DatabaseDecisionLogger(db)
            service = AuditingAuthorizationService(engine, decision_logger)

            service.can(viewer, "core.user.view")
            service.can(viewer, "core.user.delete")

            assert decision_logger.pending == 2
            assert db.count_decision_logs() == 0

            assert decision_logger.flush() == 2
            assert decision_logger.pending == 0
            assert db.count_decision_logs() == 2

    def test_flush_empty(self) -> None:
        with AuthzDB(":memory:") as db:
            assert DatabaseDecisionLogger(db).flush() == 0

    def test_context_manager_flushes(self, engine: AuthorizationEngine, viewer: Actor) -> None:
        with AuthzDB(":memory:") as db:
            with DatabaseDecisionLogger(db) as decision_logger:
                AuditingAuthorizationService(engine, decision_logger).can(viewer, "core.user.view")
            assert db.count_decision_logs() == 1

    def test_flush_failure_is_logged(self, engine: AuthorizationEngine, viewer: Actor, caplog) -> None:
        decision_logger = DatabaseDecisionLogger(FailingDB())
        service = AuditingAuthorizationService(engine, decision_logger)
        service.can(viewer, "core.user.view")

        with caplog.at_level(logging.ERROR, logger="capgate.audit"):
            written = decision_logger.flush()

        assert written == 0
        assert decision_logger.pending == 0
        assert "Failed to write 1 decision log entries" in caplog.text

    def test_flushes_when_buffer_fills(self, engine: AuthorizationEngine, viewer: Actor) -> None:
        """Long-lived loggers write once flush_at entries are pending."""
        with AuthzDB(":memory:") as db:
            decision_logger = DatabaseDecisionLogger(db, flush_at=10)
            for _ in range(25):
                AuditingAuthorizationService(engine, decision_logger).can(viewer, "core.user.view")

            assert db.count_decision_logs() == 20
            assert decision_logger.pending == 5

    def test_concurrent_flushes_keep_every_entry(
        self,
        engine: AuthorizationEngine,
        viewer: Actor,
        temp_dir: Path,
    ) -> None:
        """Threads sharing one connection never lose each other's writes."""
        with AuthzDB(temp_dir / "capgate.db") as db:
            decision_logger = DatabaseDecisionLogger(db, flush_at=3)
            service = AuditingAuthorizationService(engine, decision_logger)

            def work() -> None:
                for _ in range(30):
                    service.can(viewer, "core.user.view")

            threads = [threading.Thread(target=work) for _ in range(4)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
            decision_logger.flush()

            assert db.count_decision_logs() == 120


class TestRequestScope:
    """Tests for the auditing service as a per-request context manager."""

    def test_exit_flushes(self, engine: AuthorizationEngine, viewer: Actor) -> None:
        with AuthzDB(":memory:") as db:
            decision_logger = DatabaseDecisionLogger(db)
            with AuditingAuthorizationService(engine, decision_logger) as service:
                service.can(viewer, "core.user.view")
                service.can(viewer, "core.user.delete")
                assert db.count_decision_logs() == 0

            assert decision_logger.pending == 0
            assert db.count_decision_logs() == 2

    def test_in_memory_logger_flush_is_noop(self, engine: AuthorizationEngine, viewer: Actor) -> None:
        decision_logger = InMemoryDecisionLogger()
        with AuditingAuthorizationService(engine, decision_logger) as service:
            service.can(viewer, "core.user.view")
        assert service.flush() == 0
        assert len(decision_logger) == 1

    def test_flush_failure_does_not_raise(
        self,
        engine: AuthorizationEngine,
        viewer: Actor,
        caplog,
    ) -> None:
        class BrokenFlushLogger(InMemoryDecisionLogger):
            def flush(self) -> int:
                raise ConnectionError("audit sink unreachable")

        with caplog.at_level(logging.ERROR, logger="capgate.audit"):
            with AuditingAuthorizationService(engine, BrokenFlushLogger()) as service:
                decision = service.can(viewer, "core.user.view")

        assert decision.allowed
        assert "Decision logger flush failed" in caplog.text
