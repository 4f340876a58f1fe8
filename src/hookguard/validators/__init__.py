"""
Validators module for HookGuard.

Each validator owns a family of host tools:
    - BashValidator: Bash
    - PathValidator: Write, Edit
    - MultiAgentValidator: TeamCreate, TeamDelete, SendMessage,
      TaskCreate, TaskUpdate, TaskGet, TaskList

Architecture:
    - Validator: Abstract base class defining validate()
    - ValidatorRegistry: Maps tool names to validators
    - ValidationContext: Project root and durable state for one invocation

Tools with no registered validator pass through as Allow.
"""

from hookguard.validators.base import ValidationContext, Validator
from hookguard.validators.bash import BashValidator
from hookguard.validators.multi_agent import MultiAgentValidator
from hookguard.validators.path import PathValidator, canonicalize
from hookguard.validators.registry import (
    ValidatorRegistry,
    default_registry,
    register_validator,
)


def register_builtin_validators(registry: ValidatorRegistry | None = None) -> ValidatorRegistry:
    """Register the built-in validators (default registry if none given)."""
    registry = default_registry if registry is None else registry
    registry.register(BashValidator())
    registry.register(PathValidator())
    registry.register(MultiAgentValidator())
    return registry


register_builtin_validators()

__all__ = [
    "BashValidator",
    "MultiAgentValidator",
    "PathValidator",
    "ValidationContext",
    "Validator",
    "ValidatorRegistry",
    "canonicalize",
    "default_registry",
    "register_builtin_validators",
    "register_validator",
]
