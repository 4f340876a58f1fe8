"""
Decision resolver for HookGuard.

Reduces every matched rule (configured and built-in) to exactly one
Decision using the fixed precedence BLOCK > ASK > ALLOW. All matches are
collected before reduction; when several rules share the winning action
the first one in rule order is the primary reason and the rest are listed
in the decision detail.
"""

from typing import Iterable

from hookguard.policy.engine import render_message
from hookguard.schema import Action, Decision, RuleMatch


def _describe(match: RuleMatch) -> str:
    return f"{match.rule.category}: {render_message(match)}"


def _detail(primary: RuleMatch, others: list[RuleMatch]) -> str | None:
    lines: list[str] = []
    if primary.rule.remediation:
        lines.append(primary.rule.remediation)
    if others:
        lines.append("Also matched:")
        lines.extend(f"  - {_describe(m)}" for m in others)
    return "\n".join(lines) if lines else None


def reduce(matches: Iterable[RuleMatch]) -> Decision:
    """
    Reduce rule matches to a single Decision.

    Entries with matched=False are ignored, so the full output of
    RuleEngine.evaluate() can be passed directly.

    Args:
        matches: Rule matches in rule order (built-ins first)

    Returns:
        Block if any matched rule blocks, else Ask if any asks, else Allow
    """
    hits = [m for m in matches if m.matched]
    if not hits:
        return Decision.allow()

    winning = max(m.rule.action.precedence for m in hits)
    primary, *others = [m for m in hits if m.rule.action.precedence == winning]
    action = primary.rule.action

    if action == Action.BLOCK:
        return Decision.block(
            render_message(primary),
            detail=_detail(primary, others),
            category=primary.rule.category,
        )

    if action == Action.ASK:
        return Decision.ask(
            render_message(primary),
            detail=_detail(primary, others),
            category=primary.rule.category,
        )

    return Decision.allow(
        f"Allowed by rule: {render_message(primary)}",
        category=primary.rule.category,
    )


class DecisionResolver:
    """
    Object form of reduce(), for callers that inject the resolver.

    Usage:
        resolver = DecisionResolver()
        decision = resolver.reduce(builtin_matches + configured_matches)
    """

    def reduce(self, matches: Iterable[RuleMatch]) -> Decision:
        """Reduce matches to a single Decision."""
        return reduce(matches)
