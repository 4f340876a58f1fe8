"""
Bash command validator.

The candidate is the literal command line. Built-in checks for
destructive filesystem operations, history rewrites and destructive SQL
run first, then the configured bash_rules; all matches are reduced
together, so a built-in Block can never be overridden by a configured
Allow.
"""

from hookguard.policy.builtins import BASH_BUILTIN_RULES
from hookguard.policy.engine import RuleEngine
from hookguard.policy.resolver import reduce
from hookguard.schema import BashCall, Decision, PolicyConfig, ToolCall
from hookguard.validators.base import ValidationContext, Validator

_BUILTIN_ENGINE = RuleEngine(BASH_BUILTIN_RULES)


class BashValidator(Validator):
    """Validates shell commands proposed through the Bash tool."""

    tool_names = ("Bash",)

    def validate(self, call: ToolCall, config: PolicyConfig, context: ValidationContext) -> Decision:
        if not isinstance(call, BashCall):
            msg = f"BashValidator cannot validate {call.kind} calls"
            raise TypeError(msg)

        matches = _BUILTIN_ENGINE.evaluate(call.command)
        matches += RuleEngine(config.bash_rules).evaluate(call.command)
        return reduce(matches)
