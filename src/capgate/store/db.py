"""
SQLite storage for capgate.

This module provides persistent storage for roles, role assignments,
explicit capability overrides and the decision log. It is also the
default GrantSource consumed by the grant stage.

Design Principles:
    - Capability keys on roles are plain strings, not foreign keys, so roles
      can be seeded before any capability rows exist
    - Decision logs are append-only; only retention pruning deletes them
    - Grant lookups run a fixed number of queries per actor

Tables:
    - roles: Named capability bundles (global when company_id is NULL)
    - role_capabilities: Capability keys attached to each role
    - principal_roles: Role assignments per principal and company
    - principal_capabilities: Explicit allow/deny overrides
    - decision_logs: Audit trail of every decision
"""

import json
import sqlite3
import threading
from collections.abc import Iterable
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Generator

from capgate.capability import key as capability_key
from capgate.capability.registry import CapabilityRegistry
from capgate.errors import (
    RoleNotFoundError,
    RoleProtectedError,
    StorageConnectionError,
    StorageReadError,
    StorageWriteError,
)
from capgate.policy.permissions import GrantSource
from capgate.schema import (
    Actor,
    AuthzConfig,
    DecisionLogEntry,
    PrincipalCapability,
    PrincipalRole,
    PrincipalType,
    ReasonCode,
    Role,
)

# Schema version for migrations
SCHEMA_VERSION = 1

# Rows per INSERT batch when flushing decision logs
DECISION_LOG_CHUNK_SIZE = 500

# SQL for creating tables
CREATE_TABLES_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Roles: named bundles of capability keys
CREATE TABLE IF NOT EXISTS roles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    company_id INTEGER,
    code TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    is_system INTEGER NOT NULL DEFAULT 0,
    grant_all INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Role capabilities: keys, intentionally not foreign keys
CREATE TABLE IF NOT EXISTS role_capabilities (
    role_id INTEGER NOT NULL,
    capability_key TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (role_id, capability_key),
    FOREIGN KEY (role_id) REFERENCES roles(id) ON DELETE CASCADE
);

-- Principal roles: role assignments
CREATE TABLE IF NOT EXISTS principal_roles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    company_id INTEGER,
    principal_type TEXT NOT NULL,
    principal_id INTEGER NOT NULL,
    role_id INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (role_id) REFERENCES roles(id) ON DELETE CASCADE
);

-- Principal capabilities: explicit allow/deny overrides
CREATE TABLE IF NOT EXISTS principal_capabilities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    company_id INTEGER,
    principal_type TEXT NOT NULL,
    principal_id INTEGER NOT NULL,
    capability_key TEXT NOT NULL,
    is_allowed INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Decision logs: append-only audit trail
CREATE TABLE IF NOT EXISTS decision_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    company_id INTEGER,
    actor_type TEXT NOT NULL,
    actor_id INTEGER NOT NULL,
    acting_for_user_id INTEGER,
    capability TEXT NOT NULL,
    resource_type TEXT,
    resource_id TEXT,
    allowed INTEGER NOT NULL,
    reason_code TEXT NOT NULL,
    applied_policies_json TEXT NOT NULL,
    context_json TEXT NOT NULL,
    correlation_id TEXT,
    occurred_at TEXT NOT NULL
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_roles_code ON roles(code, company_id);
CREATE INDEX IF NOT EXISTS idx_role_capabilities_key ON role_capabilities(capability_key);
CREATE INDEX IF NOT EXISTS idx_principal_roles_principal
    ON principal_roles(principal_type, principal_id);
CREATE INDEX IF NOT EXISTS idx_principal_capabilities_principal
    ON principal_capabilities(principal_type, principal_id);
CREATE INDEX IF NOT EXISTS idx_decision_logs_actor
    ON decision_logs(actor_type, actor_id, occurred_at);
CREATE INDEX IF NOT EXISTS idx_decision_logs_capability ON decision_logs(capability, allowed);
CREATE INDEX IF NOT EXISTS idx_decision_logs_occurred_at ON decision_logs(occurred_at);
"""

# Company scope: the actor's company, or global rows
_SCOPE_SQL = "(company_id = ? OR company_id IS NULL)"


def now_iso() -> str:
    """Get current UTC time in ISO format."""
    return datetime.now(UTC).isoformat()


def _same_company_sql(column: str = "company_id") -> str:
    # NULL-safe equality for exact company matches
    return f"{column} IS ?"


class AuthzDB(GrantSource):
    """
    SQLite database for capgate storage.

    Usage:
        db = AuthzDB("capgate.db")
        role = db.create_role("user_viewer", "User Viewer", capabilities=["core.user.view"])
        db.assign_role(PrincipalType.HUMAN_USER, 5, role.id, company_id=10)
        db.close()

    Or use as context manager:
        with AuthzDB("capgate.db") as db:
            ...
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file, or ":memory:".
                     Will be created if it doesn't exist.
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        self._conn: sqlite3.Connection | None = None
        # One connection shared by every thread; all access goes through this lock
        self._lock = threading.RLock()
        self._connect()
        self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as e:
            raise StorageConnectionError(
                db_path=str(self.db_path),
                operation="connect",
                message=f"Failed to connect to database: {e}",
            ) from e

    def _init_schema(self) -> None:
        """Initialize database schema if needed."""
        try:
            cursor = self._conn.executescript(CREATE_TABLES_SQL)
            cursor.close()

            cursor = self._conn.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = cursor.fetchone()
            if row is None:
                self._conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, now_iso()),
                )
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="init_schema",
                underlying_error=str(e),
            ) from e

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        """
        Context manager for database transactions.

        Holds the connection lock until commit or rollback, so a rollback in
        one thread never discards statements issued by another.
        """
        with self._lock:
            try:
                yield
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "AuthzDB":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    # =========================================================================
    # Role Operations
    # =========================================================================

    def _row_to_role(self, row: sqlite3.Row, capabilities: Iterable[str]) -> Role:
        return Role(
            id=row["id"],
            code=row["code"],
            name=row["name"],
            description=row["description"],
            company_id=row["company_id"],
            grant_all=bool(row["grant_all"]),
            is_system=bool(row["is_system"]),
            capabilities=frozenset(capabilities),
        )

    def _capabilities_by_role(self, role_ids: list[int]) -> dict[int, set[str]]:
        result: dict[int, set[str]] = {rid: set() for rid in role_ids}
        if not role_ids:
            return result
        placeholders = ", ".join("?" for _ in role_ids)
        cursor = self._conn.execute(
            f"SELECT role_id, capability_key FROM role_capabilities "
            f"WHERE role_id IN ({placeholders})",
            role_ids,
        )
        for row in cursor:
            result[row["role_id"]].add(row["capability_key"])
        return result

    def create_role(
        self,
        code: str,
        name: str,
        description: str | None = None,
        company_id: int | None = None,
        grant_all: bool = False,
        is_system: bool = False,
        capabilities: Iterable[str] = (),
    ) -> Role:
        """
        Create a role.

        Args:
            code: Machine name, unique within a company scope
            name: Display name
            description: Optional description
            company_id: Owning company, or None for a global role
            grant_all: Role implicitly holds every known capability
            is_system: Protect the role from deletion
            capabilities: Capability keys (validated against the grammar)

        Returns:
            The created Role

        Raises:
            InvalidCapabilityKeyError: If a key violates the grammar
            StorageWriteError: If the code already exists in that scope
        """
        keys = [capability_key.validate(k) for k in capabilities]
        if self.get_role_by_code(code, company_id) is not None:
            raise StorageWriteError(
                operation="create_role",
                underlying_error=f"role code already exists: {code}",
            )

        now = now_iso()
        try:
            with self.transaction():
                cursor = self._conn.execute(
                    """
                    INSERT INTO roles (
                        company_id, code, name, description,
                        is_system, grant_all, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (company_id, code, name, description, int(is_system), int(grant_all), now, now),
                )
                role_id = cursor.lastrowid
                self._replace_role_capabilities(role_id, keys)
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="create_role",
                underlying_error=str(e),
            ) from e

        return self.get_role(role_id)

    def get_role(self, role_id: int) -> Role | None:
        """Get a role by id, or None if not found."""
        with self._lock:
            try:
                row = self._conn.execute("SELECT * FROM roles WHERE id = ?", (role_id,)).fetchone()
                if row is None:
                    return None
                caps = self._capabilities_by_role([row["id"]])
                return self._row_to_role(row, caps[row["id"]])
            except sqlite3.Error as e:
                raise StorageReadError(
                    operation="get_role",
                    underlying_error=str(e),
                ) from e

    def get_role_by_code(self, code: str, company_id: int | None = None) -> Role | None:
        """Get a role by code within a company scope (None for global roles)."""
        with self._lock:
            try:
                row = self._conn.execute(
                    f"SELECT * FROM roles WHERE code = ? AND {_same_company_sql()}",
                    (code, company_id),
                ).fetchone()
                if row is None:
                    return None
                caps = self._capabilities_by_role([row["id"]])
                return self._row_to_role(row, caps[row["id"]])
            except sqlite3.Error as e:
                raise StorageReadError(
                    operation="get_role_by_code",
                    underlying_error=str(e),
                ) from e

    def list_roles(self, company_id: int | None = None) -> list[Role]:
        """
        List roles visible to a company: its own roles plus global roles.

        With company_id None, only global roles are listed.
        """
        with self._lock:
            try:
                cursor = self._conn.execute(
                    f"SELECT * FROM roles WHERE {_SCOPE_SQL} ORDER BY code",
                    (company_id,),
                )
                rows = cursor.fetchall()
                caps = self._capabilities_by_role([row["id"] for row in rows])
                return [self._row_to_role(row, caps[row["id"]]) for row in rows]
            except sqlite3.Error as e:
                raise StorageReadError(
                    operation="list_roles",
                    underlying_error=str(e),
                ) from e

    def delete_role(self, role_id: int) -> None:
        """
        Delete a role and its assignments.

        Raises:
            RoleNotFoundError: If the role does not exist
            RoleProtectedError: If the role is a system role
        """
        role = self.get_role(role_id)
        if role is None:
            raise RoleNotFoundError(role=str(role_id))
        if role.is_system:
            raise RoleProtectedError(role=role.code)
        try:
            with self.transaction():
                self._conn.execute("DELETE FROM roles WHERE id = ?", (role_id,))
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="delete_role",
                underlying_error=str(e),
            ) from e

    def _replace_role_capabilities(self, role_id: int, keys: list[str]) -> None:
        self._conn.execute("DELETE FROM role_capabilities WHERE role_id = ?", (role_id,))
        now = now_iso()
        self._conn.executemany(
            "INSERT OR IGNORE INTO role_capabilities (role_id, capability_key, created_at) "
            "VALUES (?, ?, ?)",
            [(role_id, key, now) for key in keys],
        )

    def set_role_capabilities(self, role_id: int, capabilities: Iterable[str]) -> Role:
        """
        Replace the capability keys attached to a role.

        Raises:
            InvalidCapabilityKeyError: If a key violates the grammar
            RoleNotFoundError: If the role does not exist
        """
        keys = [capability_key.validate(k) for k in capabilities]
        if self.get_role(role_id) is None:
            raise RoleNotFoundError(role=str(role_id))
        try:
            with self.transaction():
                self._replace_role_capabilities(role_id, keys)
                self._conn.execute(
                    "UPDATE roles SET updated_at = ? WHERE id = ?",
                    (now_iso(), role_id),
                )
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="set_role_capabilities",
                underlying_error=str(e),
            ) from e
        return self.get_role(role_id)

    def seed_roles(self, config: AuthzConfig, registry: CapabilityRegistry) -> list[Role]:
        """
        Upsert the system roles declared in config.

        Seeding is idempotent: re-running it brings each role's name,
        flags and capabilities back to the configured template.

        Raises:
            UnknownCapabilityError: If a template references an unknown key
        """
        for template in config.roles.values():
            for key in template.capabilities:
                registry.assert_known(key)

        seeded = []
        now = now_iso()
        try:
            with self.transaction():
                for code, template in config.roles.items():
                    existing = self._conn.execute(
                        "SELECT id FROM roles WHERE code = ? AND company_id IS NULL",
                        (code,),
                    ).fetchone()
                    if existing is None:
                        cursor = self._conn.execute(
                            """
                            INSERT INTO roles (
                                company_id, code, name, description,
                                is_system, grant_all, created_at, updated_at
                            ) VALUES (NULL, ?, ?, ?, 1, ?, ?, ?)
                            """,
                            (code, template.name, template.description,
                             int(template.grant_all), now, now),
                        )
                        role_id = cursor.lastrowid
                    else:
                        role_id = existing["id"]
                        self._conn.execute(
                            """
                            UPDATE roles SET name = ?, description = ?, is_system = 1,
                                grant_all = ?, updated_at = ?
                            WHERE id = ?
                            """,
                            (template.name, template.description,
                             int(template.grant_all), now, role_id),
                        )
                    self._replace_role_capabilities(role_id, list(template.capabilities))
                    seeded.append(role_id)
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="seed_roles",
                underlying_error=str(e),
            ) from e

        return [self.get_role(role_id) for role_id in seeded]

    # =========================================================================
    # Assignment Operations
    # =========================================================================

    def assign_role(
        self,
        principal_type: PrincipalType,
        principal_id: int,
        role_id: int,
        company_id: int | None = None,
    ) -> PrincipalRole:
        """
        Assign a role to a principal. Assigning twice is a no-op.

        Raises:
            RoleNotFoundError: If the role does not exist
        """
        if self.get_role(role_id) is None:
            raise RoleNotFoundError(role=str(role_id))

        assignment = PrincipalRole(
            principal_type=principal_type,
            principal_id=principal_id,
            company_id=company_id,
            role_id=role_id,
        )
        try:
            with self.transaction():
                exists = self._conn.execute(
                    f"""
                    SELECT 1 FROM principal_roles
                    WHERE principal_type = ? AND principal_id = ? AND role_id = ?
                      AND {_same_company_sql()}
                    """,
                    (principal_type.value, principal_id, role_id, company_id),
                ).fetchone()
                if exists is None:
                    self._conn.execute(
                        """
                        INSERT INTO principal_roles (
                            company_id, principal_type, principal_id, role_id, created_at
                        ) VALUES (?, ?, ?, ?, ?)
                        """,
                        (company_id, principal_type.value, principal_id, role_id, now_iso()),
                    )
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="assign_role",
                underlying_error=str(e),
            ) from e
        return assignment

    def revoke_role(
        self,
        principal_type: PrincipalType,
        principal_id: int,
        role_id: int,
        company_id: int | None = None,
    ) -> bool:
        """
        Remove a role assignment.

        Returns:
            True if an assignment was removed
        """
        try:
            with self.transaction():
                cursor = self._conn.execute(
                    f"""
                    DELETE FROM principal_roles
                    WHERE principal_type = ? AND principal_id = ? AND role_id = ?
                      AND {_same_company_sql()}
                    """,
                    (principal_type.value, principal_id, role_id, company_id),
                )
            return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="revoke_role",
                underlying_error=str(e),
            ) from e

    def list_principal_roles(
        self,
        principal_type: PrincipalType,
        principal_id: int,
    ) -> list[PrincipalRole]:
        """All role assignments for a principal, in every scope."""
        with self._lock:
            try:
                cursor = self._conn.execute(
                    """
                    SELECT * FROM principal_roles
                    WHERE principal_type = ? AND principal_id = ?
                    ORDER BY id
                    """,
                    (principal_type.value, principal_id),
                )
                return [
                    PrincipalRole(
                        principal_type=PrincipalType(row["principal_type"]),
                        principal_id=row["principal_id"],
                        company_id=row["company_id"],
                        role_id=row["role_id"],
                    )
                    for row in cursor
                ]
            except sqlite3.Error as e:
                raise StorageReadError(
                    operation="list_principal_roles",
                    underlying_error=str(e),
                ) from e

    # =========================================================================
    # Override Operations
    # =========================================================================

    def set_principal_capability(
        self,
        principal_type: PrincipalType,
        principal_id: int,
        capability: str,
        is_allowed: bool,
        company_id: int | None = None,
    ) -> PrincipalCapability:
        """
        Record an explicit allow or deny, replacing any override for the
        same principal, key and company scope.

        Raises:
            InvalidCapabilityKeyError: If the key violates the grammar
        """
        key = capability_key.validate(capability)
        now = now_iso()
        try:
            with self.transaction():
                cursor = self._conn.execute(
                    f"""
                    UPDATE principal_capabilities SET is_allowed = ?, updated_at = ?
                    WHERE principal_type = ? AND principal_id = ? AND capability_key = ?
                      AND {_same_company_sql()}
                    """,
                    (int(is_allowed), now, principal_type.value, principal_id, key, company_id),
                )
                if cursor.rowcount == 0:
                    self._conn.execute(
                        """
                        INSERT INTO principal_capabilities (
                            company_id, principal_type, principal_id, capability_key,
                            is_allowed, created_at, updated_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (company_id, principal_type.value, principal_id, key,
                         int(is_allowed), now, now),
                    )
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="set_principal_capability",
                underlying_error=str(e),
            ) from e

        return PrincipalCapability(
            principal_type=principal_type,
            principal_id=principal_id,
            company_id=company_id,
            capability_key=key,
            is_allowed=is_allowed,
        )

    def remove_principal_capability(
        self,
        principal_type: PrincipalType,
        principal_id: int,
        capability: str,
        company_id: int | None = None,
    ) -> bool:
        """
        Remove an explicit override.

        Returns:
            True if an override was removed
        """
        key = capability_key.normalize(capability)
        try:
            with self.transaction():
                cursor = self._conn.execute(
                    f"""
                    DELETE FROM principal_capabilities
                    WHERE principal_type = ? AND principal_id = ? AND capability_key = ?
                      AND {_same_company_sql()}
                    """,
                    (principal_type.value, principal_id, key, company_id),
                )
            return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="remove_principal_capability",
                underlying_error=str(e),
            ) from e

    # =========================================================================
    # GrantSource
    # =========================================================================

    def roles_for(self, actor: Actor) -> list[Role]:
        with self._lock:
            try:
                cursor = self._conn.execute(
                    f"""
                    SELECT DISTINCT r.* FROM roles r
                    JOIN principal_roles pr ON pr.role_id = r.id
                    WHERE pr.principal_type = ? AND pr.principal_id = ?
                      AND (pr.company_id = ? OR pr.company_id IS NULL)
                    ORDER BY r.id
                    """,
                    (actor.type.value, actor.id, actor.company_id),
                )
                rows = cursor.fetchall()
                caps = self._capabilities_by_role([row["id"] for row in rows])
                return [self._row_to_role(row, caps[row["id"]]) for row in rows]
            except sqlite3.Error as e:
                raise StorageReadError(
                    operation="roles_for",
                    underlying_error=str(e),
                ) from e

    def overrides_for(self, actor: Actor) -> list[PrincipalCapability]:
        with self._lock:
            try:
                cursor = self._conn.execute(
                    f"""
                    SELECT * FROM principal_capabilities
                    WHERE principal_type = ? AND principal_id = ? AND {_SCOPE_SQL}
                    ORDER BY id
                    """,
                    (actor.type.value, actor.id, actor.company_id),
                )
                return [
                    PrincipalCapability(
                        principal_type=PrincipalType(row["principal_type"]),
                        principal_id=row["principal_id"],
                        company_id=row["company_id"],
                        capability_key=row["capability_key"],
                        is_allowed=bool(row["is_allowed"]),
                    )
                    for row in cursor
                ]
            except sqlite3.Error as e:
                raise StorageReadError(
                    operation="overrides_for",
                    underlying_error=str(e),
                ) from e

    # =========================================================================
    # Decision Log Operations
    # =========================================================================

    def insert_decision_logs(self, entries: list[DecisionLogEntry]) -> int:
        """
        Append decision log entries in batches.

        Returns:
            Number of rows written
        """
        rows = [
            (
                e.company_id,
                e.actor_type.value,
                e.actor_id,
                e.acting_for_user_id,
                e.capability,
                e.resource_type,
                e.resource_id,
                int(e.allowed),
                e.reason_code.value,
                json.dumps(e.applied_policies),
                json.dumps(e.context, default=str),
                e.correlation_id,
                e.occurred_at.isoformat(),
            )
            for e in entries
        ]
        try:
            with self.transaction():
                for start in range(0, len(rows), DECISION_LOG_CHUNK_SIZE):
                    self._conn.executemany(
                        """
                        INSERT INTO decision_logs (
                            company_id, actor_type, actor_id, acting_for_user_id,
                            capability, resource_type, resource_id, allowed,
                            reason_code, applied_policies_json, context_json,
                            correlation_id, occurred_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        rows[start:start + DECISION_LOG_CHUNK_SIZE],
                    )
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="insert_decision_logs",
                underlying_error=str(e),
            ) from e
        return len(rows)

    def list_decision_logs(
        self,
        limit: int = 100,
        actor_type: PrincipalType | None = None,
        actor_id: int | None = None,
        capability: str | None = None,
        allowed: bool | None = None,
    ) -> list[DecisionLogEntry]:
        """
        List decision logs, most recent first.

        Args:
            limit: Maximum number of entries to return
            actor_type: Only entries for this principal type
            actor_id: Only entries for this principal id
            capability: Only entries for this capability key
            allowed: Only allowed (True) or denied (False) entries
        """
        clauses: list[str] = []
        params: list[Any] = []
        if actor_type is not None:
            clauses.append("actor_type = ?")
            params.append(actor_type.value)
        if actor_id is not None:
            clauses.append("actor_id = ?")
            params.append(actor_id)
        if capability is not None:
            clauses.append("capability = ?")
            params.append(capability_key.normalize(capability))
        if allowed is not None:
            clauses.append("allowed = ?")
            params.append(int(allowed))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        with self._lock:
            try:
                cursor = self._conn.execute(
                    f"SELECT * FROM decision_logs {where} "
                    f"ORDER BY occurred_at DESC, id DESC LIMIT ?",
                    params,
                )
                return [
                    DecisionLogEntry(
                        id=row["id"],
                        company_id=row["company_id"],
                        actor_type=PrincipalType(row["actor_type"]),
                        actor_id=row["actor_id"],
                        acting_for_user_id=row["acting_for_user_id"],
                        capability=row["capability"],
                        resource_type=row["resource_type"],
                        resource_id=row["resource_id"],
                        allowed=bool(row["allowed"]),
                        reason_code=ReasonCode(row["reason_code"]),
                        applied_policies=json.loads(row["applied_policies_json"]),
                        context=json.loads(row["context_json"]),
                        correlation_id=row["correlation_id"],
                        occurred_at=datetime.fromisoformat(row["occurred_at"]),
                    )
                    for row in cursor
                ]
            except sqlite3.Error as e:
                raise StorageReadError(
                    operation="list_decision_logs",
                    underlying_error=str(e),
                ) from e

    def count_decision_logs(self) -> int:
        """Total number of stored decision logs."""
        with self._lock:
            try:
                row = self._conn.execute("SELECT COUNT(*) AS n FROM decision_logs").fetchone()
                return int(row["n"])
            except sqlite3.Error as e:
                raise StorageReadError(
                    operation="count_decision_logs",
                    underlying_error=str(e),
                ) from e

    def prune_decision_logs(
        self,
        retention_days: int,
        now: datetime | None = None,
    ) -> int:
        """
        Delete decision logs older than the retention period.

        Returns:
            Number of rows deleted
        """
        cutoff = (now or datetime.now(UTC)) - timedelta(days=retention_days)
        try:
            with self.transaction():
                cursor = self._conn.execute(
                    "DELETE FROM decision_logs WHERE occurred_at < ?",
                    (cutoff.isoformat(),),
                )
            return cursor.rowcount
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="prune_decision_logs",
                underlying_error=str(e),
            ) from e
