"""
Base classes for tool validators.

A validator owns one family of tools (Bash, file writes, multi-agent
coordination). It receives the already-decoded ToolCall, the policy for
this invocation and a ValidationContext, and returns exactly one Decision.

Design Principles:
    - Validators are stateless; durable state comes in via ValidationContext
    - Validators receive typed calls; payload decoding happened at the boundary
    - A computed Block is a normal return value, never an exception
    - Unexpected exceptions propagate; the hook runner turns them into a
      fail-open Allow
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

from hookguard.schema import Decision, PolicyConfig

if TYPE_CHECKING:
    from hookguard.schema import ToolCall
    from hookguard.store.ratelimit import RateLimitStore


@dataclass
class ValidationContext:
    """
    Runtime context passed to validators.

    Attributes:
        project_root: Root that file paths must stay inside
        rate_limits: Durable multi-agent counters, or None when no state
            document is available (team limits are then not enforced)
        after_call: True when the tool has already run
    """

    project_root: Path
    rate_limits: "RateLimitStore | None" = None
    after_call: bool = False


class Validator(ABC):
    """
    Abstract base class for all validators.

    Subclasses set tool_names and implement validate().

    Example:
        class EchoValidator(Validator):
            tool_names = ("Echo",)

            def validate(self, call, config, context):
                return Decision.allow()
    """

    tool_names: ClassVar[tuple[str, ...]] = ()

    @property
    def name(self) -> str:
        """Short identifier used in logs and the rules listing."""
        return self.__class__.__name__

    @abstractmethod
    def validate(
        self,
        call: "ToolCall",
        config: PolicyConfig,
        context: ValidationContext,
    ) -> Decision:
        """
        Decide on one tool call.

        Args:
            call: The decoded tool call; its tool_name is one of tool_names
            config: The policy loaded for this invocation
            context: Project root and durable state

        Returns:
            The Decision for this call
        """
        ...

    def __repr__(self) -> str:
        return f"<Validator: {self.name} [{', '.join(self.tool_names)}]>"
