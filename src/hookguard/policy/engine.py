"""
Rule Engine for HookGuard.

The rule engine matches one candidate string (a command line, a
root-relative path, a message body) against an ordered rule set and
reports every rule's outcome. It never decides on its own; the
DecisionResolver reduces the matches to a verdict.

Design Principles:
    - Collect everything: every rule is evaluated, no short-circuit
    - Degrade, never abort: a rule that fails to compile is dropped and
      logged while the remaining rules still evaluate
    - Predictable: same candidate and rules always produce the same matches

Matching semantics:
    - regex rules are searched (substring), not full-matched
    - glob rules are full-matched against the root-relative POSIX path;
      "**" crosses directories, "*" and "?" do not; a glob without "/"
      also matches the final path component
    - case sensitivity is per rule
"""

import logging
import re
from dataclasses import dataclass
from typing import Sequence

from hookguard.errors import PatternCompileError
from hookguard.schema import PatternKind, PolicyRule, RuleMatch

logger = logging.getLogger(__name__)

# Longest candidate excerpt substituted into {candidate}
_CANDIDATE_EXCERPT = 200


@dataclass(frozen=True)
class CompiledRule:
    """A rule paired with its compiled pattern."""

    rule: PolicyRule
    regex: re.Pattern[str]

    def match(self, candidate: str) -> RuleMatch:
        """Evaluate this rule against a candidate."""
        if self.rule.kind == PatternKind.GLOB:
            match_text = self._match_glob(candidate)
        else:
            found = self.regex.search(candidate)
            match_text = found.group(0) if found else None

        return RuleMatch(
            rule=self.rule,
            matched=match_text is not None,
            match_text=match_text,
            candidate=candidate,
        )

    def _match_glob(self, candidate: str) -> str | None:
        if self.regex.fullmatch(candidate):
            return candidate
        if "/" not in self.rule.pattern.rstrip("/"):
            name = candidate.rsplit("/", 1)[-1]
            if self.regex.fullmatch(name):
                return name
        return None


def glob_to_regex(pattern: str) -> str:
    """
    Translate a path glob into a regular expression.

    Examples:
        "**/*.pem"   -> matches "a/b/key.pem" and "key.pem"
        ".git/**"    -> matches anything under .git
        "secrets/"   -> same as "secrets/**"
        "*.lock"     -> matches "yarn.lock" but not "dir/yarn.lock" by path
                        (the final-component fallback handles that)

    Args:
        pattern: The glob pattern

    Returns:
        Regex source suitable for re.fullmatch
    """
    if pattern.startswith("./"):
        pattern = pattern[2:]
    pattern = pattern.lstrip("/")
    if pattern.endswith("/"):
        pattern += "**"

    out: list[str] = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                i += 2
                if i < n and pattern[i] == "/":
                    i += 1
                    out.append("(?:.*/)?")
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1:end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end + 1
                continue
        else:
            out.append(re.escape(c))
        i += 1

    return "".join(out)


def compile_rule(rule: PolicyRule) -> CompiledRule:
    """
    Compile one rule's pattern.

    Raises:
        PatternCompileError: If the pattern is not valid for its kind
    """
    flags = 0 if rule.case_sensitive else re.IGNORECASE
    source = glob_to_regex(rule.pattern) if rule.kind == PatternKind.GLOB else rule.pattern
    try:
        regex = re.compile(source, flags)
    except (re.error, OverflowError, RecursionError) as e:
        raise PatternCompileError(
            pattern=rule.pattern,
            category=rule.category,
            underlying_error=str(e),
        ) from e
    return CompiledRule(rule=rule, regex=regex)


class _TemplateValues(dict):
    """Leaves unknown placeholders untouched."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def render_message(match: RuleMatch) -> str:
    """
    Render a rule's message template for a match.

    Supported placeholders: {category}, {match}, {candidate}.
    An empty template renders as the category; a malformed one verbatim.
    """
    rule = match.rule
    template = rule.message or rule.category
    candidate = match.candidate
    if len(candidate) > _CANDIDATE_EXCERPT:
        candidate = candidate[:_CANDIDATE_EXCERPT] + "..."

    values = _TemplateValues(
        category=rule.category,
        match=match.match_text or "",
        candidate=candidate,
    )
    try:
        return template.format_map(values)
    except (ValueError, IndexError, AttributeError, KeyError):
        return template


class RuleEngine:
    """
    Evaluates candidates against an ordered rule set.

    Patterns are compiled once, when the engine is built; one engine is
    built per invocation so configuration edits apply immediately.

    Usage:
        engine = RuleEngine(config.bash_rules)
        matches = engine.evaluate("git push --force")
        for m in matches:
            if m.matched: ...

    Attributes:
        rules: The rules as given, in order
        skipped: Compile errors for rules dropped from the active set
    """

    def __init__(self, rules: Sequence[PolicyRule]) -> None:
        self.rules = list(rules)
        self.skipped: list[PatternCompileError] = []
        self._compiled: list[CompiledRule] = []

        for rule in self.rules:
            try:
                self._compiled.append(compile_rule(rule))
            except PatternCompileError as e:
                logger.warning("Skipping rule: %s", e.message)
                self.skipped.append(e)

    @property
    def active_rules(self) -> list[PolicyRule]:
        """Rules that compiled and take part in evaluation."""
        return [c.rule for c in self._compiled]

    def evaluate(self, candidate: str) -> list[RuleMatch]:
        """
        Evaluate every active rule against a candidate.

        Args:
            candidate: The command line, path or message body

        Returns:
            One RuleMatch per active rule, in rule order
        """
        return [compiled.match(candidate) for compiled in self._compiled]

    def matches(self, candidate: str) -> list[RuleMatch]:
        """Only the rules that matched, in rule order."""
        return [m for m in self.evaluate(candidate) if m.matched]

    def __len__(self) -> int:
        return len(self._compiled)

    def __repr__(self) -> str:
        return f"<RuleEngine: {len(self._compiled)} active, {len(self.skipped)} skipped>"


def evaluate(candidate: str, rules: Sequence[PolicyRule]) -> list[RuleMatch]:
    """Evaluate a candidate against rules without keeping the engine."""
    return RuleEngine(rules).evaluate(candidate)
