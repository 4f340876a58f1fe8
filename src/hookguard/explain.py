"""
Dry-run evaluation with a full rule trace.

'hookguard explain' answers "why did this call get this verdict": it
evaluates a context exactly as the hook would, except that durable state
is never modified and no metrics are recorded, and it reports every rule
that was evaluated with its outcome.
"""

from dataclasses import dataclass, field
from typing import Any

from hookguard.config import load_policy_config
from hookguard.errors import HookGuardError, InputParseError
from hookguard.policy.builtins import BASH_BUILTIN_RULES, MESSAGE_BUILTIN_RULES, SECRET_RULES
from hookguard.policy.engine import RuleEngine
from hookguard.runner import HookSettings, fail_open_decision, pass_through_decision
from hookguard.schema import (
    BashCall,
    Decision,
    PassThroughCall,
    PathCall,
    PolicyConfig,
    RuleMatch,
    SendMessageCall,
    TaskCall,
    ToolCall,
    decode_tool_call,
    parse_hook_context,
)
from hookguard.validators import canonicalize, default_registry
from hookguard.validators.base import ValidationContext


@dataclass
class Explanation:
    """
    A decision and the rule trace behind it.

    Attributes:
        tool_name: Tool named in the context
        call: The decoded tool call, if decoding got that far
        decision: The decision the hook would render
        matches: Every rule evaluated, in evaluation order
        candidates: The canonical strings the rules were evaluated against
        policy_source: Where the policy came from
    """

    tool_name: str
    decision: Decision
    call: ToolCall | None = None
    matches: list[RuleMatch] = field(default_factory=list)
    candidates: list[str] = field(default_factory=list)
    policy_source: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {
            "tool_name": self.tool_name,
            "call": self.call.model_dump() if self.call is not None else None,
            "decision": self.decision.model_dump(mode="json"),
            "policy_source": self.policy_source,
            "candidates": self.candidates,
            "matches": [
                {
                    "category": m.rule.category,
                    "action": m.rule.action.value,
                    "pattern": m.rule.pattern,
                    "builtin": m.rule.builtin,
                    "matched": m.matched,
                    "match_text": m.match_text,
                }
                for m in self.matches
            ],
        }


def _trace(call: ToolCall, config: PolicyConfig, settings: HookSettings) -> tuple[list[str], list[RuleMatch]]:
    if isinstance(call, BashCall):
        candidate = call.command
        engines = [RuleEngine(BASH_BUILTIN_RULES), RuleEngine(config.bash_rules)]
        return [candidate], [m for e in engines for m in e.evaluate(candidate)]

    if isinstance(call, PathCall):
        target = canonicalize(call.file_path, settings.project_root)
        if not target.inside:
            return [target.absolute], []
        return [target.relative], RuleEngine(config.path_rules).evaluate(target.relative)

    if isinstance(call, SendMessageCall):
        engines = [RuleEngine(MESSAGE_BUILTIN_RULES), RuleEngine(config.message_rules)]
        return [call.content], [m for e in engines for m in e.evaluate(call.content)]

    if isinstance(call, TaskCall):
        engine = RuleEngine(SECRET_RULES)
        return list(call.texts), [m for text in call.texts for m in engine.evaluate(text)]

    return [], []


def explain_context(raw: str, settings: HookSettings) -> Explanation:
    """
    Evaluate raw context text without side effects.

    Args:
        raw: The invocation context JSON
        settings: Runtime settings (project root, policy source)

    Returns:
        Explanation

    Raises:
        HookGuardError: If the input or the policy cannot be loaded; unlike
            the hook, explain reports these instead of failing open
    """
    try:
        context = parse_hook_context(raw)
    except ValueError as e:
        raise InputParseError(underlying_error=str(e)) from e

    call = decode_tool_call(context)
    validator = None if isinstance(call, PassThroughCall) else default_registry.get(call.tool_name)
    if validator is None:
        passthrough = call if isinstance(call, PassThroughCall) else PassThroughCall(tool_name=call.tool_name)
        return Explanation(tool_name=context.tool_name, call=call, decision=pass_through_decision(passthrough))

    config = load_policy_config(settings.policy_source)
    candidates, matches = _trace(call, config, settings)

    # No rate limit store: team creation must not consume a slot here
    validation = ValidationContext(
        project_root=settings.project_root,
        rate_limits=None,
        after_call=context.after_call,
    )
    try:
        decision = validator.validate(call, config, validation)
    except HookGuardError as e:
        decision = fail_open_decision(e)

    return Explanation(
        tool_name=context.tool_name,
        call=call,
        decision=decision,
        matches=matches,
        candidates=candidates,
        policy_source=config.source,
    )
