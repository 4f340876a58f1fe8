"""
Unit tests for the rule engine.

Tests cover:
- Regex matching (search semantics, case sensitivity)
- Glob translation and path matching
- Invalid patterns being skipped without aborting evaluation
- Message template rendering
"""

import logging
import re

import pytest

from hookguard.errors import PatternCompileError
from hookguard.policy.engine import RuleEngine, compile_rule, evaluate, glob_to_regex, render_message
from hookguard.schema import Action, PatternKind, PolicyRule, RuleMatch


def regex_rule(pattern: str, category: str = "test", **kwargs) -> PolicyRule:
    return PolicyRule(pattern=pattern, category=category, **kwargs)


def glob_rule(pattern: str, category: str = "paths", **kwargs) -> PolicyRule:
    return PolicyRule(pattern=pattern, category=category, kind=PatternKind.GLOB, case_sensitive=True, **kwargs)


# =============================================================================
# Regex rules
# =============================================================================


class TestRegexRules:
    """Regex rules are searched, not full-matched."""

    def test_substring_match(self) -> None:
        (match,) = evaluate("echo hi && sudo rm x", [regex_rule(r"\bsudo\b")])
        assert match.matched
        assert match.match_text == "sudo"
        assert match.candidate == "echo hi && sudo rm x"

    def test_no_match(self) -> None:
        (match,) = evaluate("ls -la", [regex_rule(r"\bsudo\b")])
        assert not match.matched
        assert match.match_text is None

    def test_case_insensitive_by_default(self) -> None:
        (match,) = evaluate("DROP TABLE users", [regex_rule(r"drop\s+table")])
        assert match.matched

    def test_case_sensitive(self) -> None:
        (match,) = evaluate("EXEC(", [regex_rule(r"exec\(", case_sensitive=True)])
        assert not match.matched

    def test_every_rule_reported_in_order(self) -> None:
        rules = [regex_rule("a", "first"), regex_rule("z", "second"), regex_rule("b", "third")]
        matches = RuleEngine(rules).evaluate("abc")
        assert [m.rule.category for m in matches] == ["first", "second", "third"]
        assert [m.matched for m in matches] == [True, False, True]

    def test_matches_filters(self) -> None:
        rules = [regex_rule("a", "first"), regex_rule("z", "second")]
        assert [m.rule.category for m in RuleEngine(rules).matches("abc")] == ["first"]


# =============================================================================
# Glob rules
# =============================================================================


class TestGlobToRegex:
    """Glob translation."""

    @pytest.mark.parametrize(
        ("pattern", "path", "expected"),
        [
            ("**/*.pem", "a/b/key.pem", True),
            ("**/*.pem", "key.pem", True),
            ("**/*.pem", "key.pem.bak", False),
            (".git/**", ".git/config", True),
            (".git/**", ".git/refs/heads/main", True),
            (".git/**", ".gitignore", False),
            ("src/*.py", "src/a.py", True),
            ("src/*.py", "src/pkg/a.py", False),
            ("src/**/*.py", "src/pkg/a.py", True),
            ("secrets/", "secrets/prod.json", True),
            ("./docs/**", "docs/index.md", True),
            ("/docs/**", "docs/index.md", True),
            ("file?.txt", "file1.txt", True),
            ("file?.txt", "file/.txt", False),
            ("[!a]bc", "xbc", True),
            ("[!a]bc", "abc", False),
            ("[ab]c", "bc", True),
        ],
    )
    def test_translation(self, pattern: str, path: str, expected: bool) -> None:
        assert bool(re.fullmatch(glob_to_regex(pattern), path)) is expected

    def test_unclosed_bracket_is_literal(self) -> None:
        assert re.fullmatch(glob_to_regex("a[b"), "a[b")


class TestGlobRules:
    """Glob rules match root-relative paths."""

    def test_full_path_match(self) -> None:
        (match,) = evaluate(".github/workflows/ci.yml", [glob_rule(".github/workflows/**")])
        assert match.matched
        assert match.match_text == ".github/workflows/ci.yml"

    def test_basename_fallback(self) -> None:
        (match,) = evaluate("frontend/yarn.lock", [glob_rule("*.lock")])
        assert match.matched
        assert match.match_text == "yarn.lock"

    def test_no_basename_fallback_with_slash(self) -> None:
        (match,) = evaluate("other/docs/a.md", [glob_rule("docs/*.md")])
        assert not match.matched

    def test_case_sensitive(self) -> None:
        (match,) = evaluate("README.MD", [glob_rule("*.md")])
        assert not match.matched

    def test_dotfile_by_name(self) -> None:
        (match,) = evaluate("config/.env", [glob_rule(".env")])
        assert match.matched


# =============================================================================
# Invalid patterns
# =============================================================================


class TestInvalidPatterns:
    """A bad pattern removes only itself."""

    def test_compile_error(self) -> None:
        with pytest.raises(PatternCompileError) as exc_info:
            compile_rule(regex_rule("(unclosed", "broken"))
        assert exc_info.value.category == "broken"

    def test_skipped_and_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        rules = [regex_rule("(unclosed", "broken"), regex_rule("ok", "good")]
        with caplog.at_level(logging.WARNING, logger="hookguard.policy.engine"):
            engine = RuleEngine(rules)

        assert len(engine) == 1
        assert len(engine.skipped) == 1
        assert [r.category for r in engine.active_rules] == ["good"]
        assert "broken" in caplog.text

        (match,) = engine.evaluate("ok")
        assert match.matched

    def test_repr(self) -> None:
        engine = RuleEngine([regex_rule("(", "broken"), regex_rule("ok")])
        assert repr(engine) == "<RuleEngine: 1 active, 1 skipped>"


# =============================================================================
# Message templates
# =============================================================================


def _match(message: str, candidate: str = "git push -f", match_text: str = "push -f") -> RuleMatch:
    rule = regex_rule("push", "history", message=message, action=Action.BLOCK)
    return RuleMatch(rule=rule, matched=True, match_text=match_text, candidate=candidate)


class TestRenderMessage:
    """Template rendering."""

    def test_placeholders(self) -> None:
        text = render_message(_match("{category}: {match} in {candidate}"))
        assert text == "history: push -f in git push -f"

    def test_empty_template_is_category(self) -> None:
        assert render_message(_match("")) == "history"

    def test_unknown_placeholder_kept(self) -> None:
        assert render_message(_match("see {docs}")) == "see {docs}"

    def test_malformed_template_verbatim(self) -> None:
        assert render_message(_match("oops {")) == "oops {"

    def test_long_candidate_truncated(self) -> None:
        text = render_message(_match("{candidate}", candidate="x" * 500))
        assert text == "x" * 200 + "..."
