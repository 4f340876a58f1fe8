"""
Exception hierarchy for HookGuard.

All HookGuard exceptions inherit from HookGuardError, allowing the hook
runner to catch every engine failure with a single except clause and turn
it into a fail-open decision.

Exception Categories:
    - ConfigLoadError: Policy file missing, unreadable or malformed
    - PatternCompileError: A single rule pattern does not compile
    - InputParseError: The invocation context is not valid JSON
    - InputTimeoutError: The invocation channel exceeded its bound
    - StateError: The session state document could not be read or written
    - EvaluationError: Any other unexpected failure during evaluation

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors include context for the operator's logs
    - None of these errors may ever produce a Block decision
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Configuration errors: 1xxx
ERROR_CONFIG_LOAD = 1001
ERROR_CONFIG_SYNTAX = 1002
ERROR_CONFIG_SCHEMA = 1003
ERROR_PATTERN_COMPILE = 1004

# Input errors: 2xxx
ERROR_INPUT_PARSE = 2001
ERROR_INPUT_TIMEOUT = 2002

# State errors: 3xxx
ERROR_STATE_READ = 3001
ERROR_STATE_WRITE = 3002
ERROR_STATE_LOCK = 3003

# Evaluation errors: 4xxx
ERROR_EVALUATION = 4001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class HookGuardError(Exception):
    """
    Base exception for all HookGuard errors.

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
# Configuration Errors
# =============================================================================


@dataclass
class ConfigLoadError(HookGuardError):
    """
    Raised when the policy configuration cannot be loaded.

    Attributes:
        path: The policy file that failed to load
        underlying_error: The parser or I/O error text
    """

    path: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to load policy {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_CONFIG_LOAD
        if not self.suggestion:
            self.suggestion = "Run 'hookguard rules' to check the policy file"
        self.context.update({
            "path": self.path,
            "underlying_error": self.underlying_error,
        })


@dataclass
class PatternCompileError(HookGuardError):
    """Raised when a single rule pattern fails to compile."""

    pattern: str = ""
    category: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Invalid pattern in category '{self.category}': "
                f"{self.pattern!r} ({self.underlying_error})"
            )
        if self.code == 0:
            self.code = ERROR_PATTERN_COMPILE
        if not self.suggestion:
            self.suggestion = "Fix or remove the rule; the remaining rules still apply"
        self.context.update({
            "pattern": self.pattern,
            "category": self.category,
            "underlying_error": self.underlying_error,
        })


# =============================================================================
# Input Errors
# =============================================================================


@dataclass
class InputParseError(HookGuardError):
    """Raised when the invocation context is not a JSON object."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Malformed hook input: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_INPUT_PARSE
        self.context["underlying_error"] = self.underlying_error


@dataclass
class InputTimeoutError(HookGuardError):
    """Raised when no hook input arrived before the read bound expired."""

    timeout_seconds: float = 0.0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"No hook input after {self.timeout_seconds}s"
        if self.code == 0:
            self.code = ERROR_INPUT_TIMEOUT
        if not self.suggestion:
            self.suggestion = "Increase HOOKGUARD_STDIN_TIMEOUT if the host is slow to write"
        self.context["timeout_seconds"] = self.timeout_seconds


# =============================================================================
# State Errors
# =============================================================================


@dataclass
class StateError(HookGuardError):
    """
    Base class for session state errors.

    Attributes:
        path: The state document involved
        operation: The operation that failed (e.g., "read", "write")
    """

    path: str = ""
    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if self.code == 0:
            self.code = ERROR_STATE_WRITE if self.operation == "write" else ERROR_STATE_READ
        if not self.message:
            self.message = f"Session state {self.operation} failed: {self.path}"
        self.context.update({
            "path": self.path,
            "operation": self.operation,
        })


@dataclass
class StateLockError(StateError):
    """Raised when the state lock could not be acquired in time."""

    timeout_seconds: float = 0.0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Timed out after {self.timeout_seconds}s waiting for lock on {self.path}"
        if self.code == 0:
            self.code = ERROR_STATE_LOCK
        if not self.operation:
            self.operation = "lock"
        super().__post_init__()
        self.context["timeout_seconds"] = self.timeout_seconds


# =============================================================================
# Evaluation Errors
# =============================================================================


@dataclass
class EvaluationError(HookGuardError):
    """Wraps any unexpected exception raised while evaluating a hook."""

    stage: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unexpected failure during {self.stage or 'evaluation'}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_EVALUATION
        self.context.update({
            "stage": self.stage,
            "underlying_error": self.underlying_error,
        })
