"""
Exception hierarchy for capgate.

All capgate exceptions inherit from CapgateError, allowing callers to catch
all capgate-specific exceptions with a single except clause.

Exception Categories:
    - AuthorizationDeniedError: authorize() refused an action
    - CapabilityError: Invalid capability keys, unknown domains/verbs/capabilities
    - ConfigError: Authz configuration could not be loaded
    - RoleNotFoundError: Administrative operation referenced a missing role
    - StorageError: Database operation failed

Note that denials are data, not errors: can() never raises for an unknown
capability or a malformed actor. Only authorize() converts a denial into
AuthorizationDeniedError, at the boundary.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from capgate.schema import AuthorizationDecision


# =============================================================================
# Error Codes
# =============================================================================

# Authorization errors: 1xxx
ERROR_AUTHORIZATION_DENIED = 1001

# Capability / catalog errors: 2xxx
ERROR_CAPABILITY_INVALID_KEY = 2001
ERROR_CAPABILITY_UNKNOWN_DOMAIN = 2002
ERROR_CAPABILITY_UNKNOWN_VERB = 2003
ERROR_CAPABILITY_UNKNOWN = 2004

# Config errors: 3xxx
ERROR_CONFIG_INVALID = 3001
ERROR_CONFIG_NOT_FOUND = 3002

# Grant data errors: 4xxx
ERROR_ROLE_NOT_FOUND = 4001
ERROR_ROLE_PROTECTED = 4002

# Storage errors: 5xxx
ERROR_STORAGE_CONNECTION = 5001
ERROR_STORAGE_WRITE = 5002
ERROR_STORAGE_READ = 5003


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class CapgateError(Exception):
    """
    Base exception for all capgate errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Authorization Errors
# =============================================================================


@dataclass
class AuthorizationDeniedError(CapgateError):
    """
    Raised by authorize() when the decision is not allowed.

    The full decision travels with the exception so the embedding layer can
    map reason_code to a transport status. Every denial maps to HTTP 403;
    unauthenticated requests never reach this engine.

    Attributes:
        decision: The denied AuthorizationDecision
        capability: The capability key that was checked
    """

    decision: "AuthorizationDecision | None" = None
    capability: str = ""

    http_status: int = 403

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        reason = self.decision.reason_code.value if self.decision else "unknown"
        if not self.message:
            self.message = f"Authorization denied: {reason}"
        if self.code == 0:
            self.code = ERROR_AUTHORIZATION_DENIED
        self.context.update({
            "capability": self.capability,
            "reason_code": reason,
            "applied_policies": list(self.decision.applied_policies) if self.decision else [],
        })

    @property
    def reason_code(self) -> Any:
        """Reason code of the carried decision."""
        return self.decision.reason_code if self.decision else None


# =============================================================================
# Capability Errors
# =============================================================================


@dataclass
class CapabilityError(CapgateError):
    """
    Base class for capability grammar and catalog errors.

    These are configuration errors: they abort startup instead of producing
    per-request denials.

    Attributes:
        key: The offending capability key
    """

    key: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["key"] = self.key


@dataclass
class InvalidCapabilityKeyError(CapabilityError):
    """Raised when a key does not match <domain>.<resource>.<action>."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid capability key [{self.key}]."
        if self.code == 0:
            self.code = ERROR_CAPABILITY_INVALID_KEY
        if not self.suggestion:
            self.suggestion = "Use three lower-case segments, e.g. core.user.view"
        super().__post_init__()


@dataclass
class UnknownDomainError(CapabilityError):
    """Raised when a key's domain segment is not declared in the catalog."""

    domain: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unknown capability domain [{self.domain}] for [{self.key}]."
        if self.code == 0:
            self.code = ERROR_CAPABILITY_UNKNOWN_DOMAIN
        if not self.suggestion:
            self.suggestion = "Declare the domain under 'domains' in authz config"
        super().__post_init__()
        self.context["domain"] = self.domain


@dataclass
class UnknownVerbError(CapabilityError):
    """Raised when a key's action segment is not a declared verb."""

    verb: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unknown capability verb [{self.verb}] for [{self.key}]."
        if self.code == 0:
            self.code = ERROR_CAPABILITY_UNKNOWN_VERB
        if not self.suggestion:
            self.suggestion = "Declare the verb under 'verbs' in authz config"
        super().__post_init__()
        self.context["verb"] = self.verb


@dataclass
class UnknownCapabilityError(CapabilityError):
    """Raised by CapabilityRegistry.assert_known() for unregistered keys."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unknown capability [{self.key}]."
        if self.code == 0:
            self.code = ERROR_CAPABILITY_UNKNOWN
        super().__post_init__()


# =============================================================================
# Config Errors
# =============================================================================


@dataclass
class ConfigError(CapgateError):
    """
    Raised when authz configuration is malformed.

    Attributes:
        path: Path of the config file, if loaded from disk
    """

    path: str | None = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid authz configuration: {self.path}"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        self.context["path"] = self.path


@dataclass
class ConfigNotFoundError(ConfigError):
    """Raised when a config file does not exist."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Config file not found: {self.path}"
        if self.code == 0:
            self.code = ERROR_CONFIG_NOT_FOUND
        super().__post_init__()


# =============================================================================
# Grant Data Errors
# =============================================================================


@dataclass
class RoleNotFoundError(CapgateError):
    """Raised when an administrative operation references a missing role."""

    role: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Role not found: {self.role}"
        if self.code == 0:
            self.code = ERROR_ROLE_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Run 'capgate seed' or create the role first"
        self.context["role"] = self.role


@dataclass
class RoleProtectedError(CapgateError):
    """Raised when deleting a system role."""

    role: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"System role cannot be deleted: {self.role}"
        if self.code == 0:
            self.code = ERROR_ROLE_PROTECTED
        self.context["role"] = self.role


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class StorageError(CapgateError):
    """
    Base class for storage/database errors.

    Attributes:
        operation: The operation that failed (e.g., "insert", "query")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["operation"] = self.operation


@dataclass
class StorageConnectionError(StorageError):
    """Raised when database connection fails."""

    db_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to connect to database: {self.db_path}"
        if self.code == 0:
            self.code = ERROR_STORAGE_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the database path is valid and writable"
        super().__post_init__()
        self.context["db_path"] = self.db_path


@dataclass
class StorageWriteError(StorageError):
    """Raised when a write operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database write failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_WRITE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StorageReadError(StorageError):
    """Raised when a read operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database read failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_READ
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error
