"""
Policy module for HookGuard.

This module implements rule matching and verdict reduction.

Key concepts:
    - PolicyRule: pattern + category + action + message template
    - RuleEngine: evaluates a candidate string against an ordered rule set
    - DecisionResolver: reduces matches with precedence BLOCK > ASK > ALLOW
    - Built-in rules: non-configurable checks evaluated before configured ones

The policy layer is pure: it reads no files and holds no state between
invocations.
"""

from hookguard.policy.engine import RuleEngine, compile_rule, evaluate, glob_to_regex, render_message
from hookguard.policy.resolver import DecisionResolver, reduce

__all__ = [
    "DecisionResolver",
    "RuleEngine",
    "compile_rule",
    "evaluate",
    "glob_to_regex",
    "reduce",
    "render_message",
]
