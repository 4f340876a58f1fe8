"""
Validator registry for HookGuard.

Maps host tool names to the validator responsible for them. Tool names
with no registered validator are outside HookGuard's authority and pass
through as Allow.

Usage:
    from hookguard.validators.registry import default_registry

    validator = default_registry.get("Bash")
"""

from typing import Iterator

from hookguard.validators.base import Validator


class ValidatorRegistry:
    """
    Registry for looking up validators by tool name.

    Attributes:
        _validators: Mapping of tool names to validator instances
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._validators: dict[str, Validator] = {}

    def register(self, validator: Validator) -> None:
        """
        Register a validator for each of its tool names.

        A later registration for the same tool name replaces the earlier one.

        Raises:
            ValueError: If validator is None or declares no tool names
        """
        if validator is None:
            msg = "Cannot register None as a validator"
            raise ValueError(msg)
        if not validator.tool_names:
            msg = f"{validator.name} declares no tool names"
            raise ValueError(msg)

        for tool_name in validator.tool_names:
            self._validators[tool_name] = validator

    def get(self, tool_name: str) -> Validator | None:
        """Return the validator for a tool name, or None if unregistered."""
        return self._validators.get(tool_name)

    def unregister(self, tool_name: str) -> bool:
        """
        Remove one tool name from the registry.

        Returns:
            True if the tool name was registered
        """
        return self._validators.pop(tool_name, None) is not None

    def clear(self) -> None:
        """Remove all registrations."""
        self._validators.clear()

    def list_tools(self) -> list[str]:
        """Registered tool names in sorted order."""
        return sorted(self._validators)

    def validators(self) -> list[Validator]:
        """Distinct registered validators, in registration order."""
        seen: list[Validator] = []
        for validator in self._validators.values():
            if validator not in seen:
                seen.append(validator)
        return seen

    def __len__(self) -> int:
        return len(self._validators)

    def __iter__(self) -> Iterator[str]:
        return iter(self.list_tools())

    def __contains__(self, tool_name: str) -> bool:
        return tool_name in self._validators

    def __repr__(self) -> str:
        return f"<ValidatorRegistry: [{', '.join(self.list_tools())}]>"


# Registry used by the hook runner unless overridden
default_registry = ValidatorRegistry()


def register_validator(validator: Validator) -> None:
    """Register a validator in the default registry."""
    default_registry.register(validator)
