"""
Unit tests for policy configuration loading.

Tests cover:
- Built-in defaults
- Ordered resolution of the policy source
- Failure modes that abort loading (fail-open at the runner)
- Per-entry leniency: malformed rules are skipped, not fatal
- Expansion of the allow_paths/deny_paths shorthands
"""

from pathlib import Path

import pytest

from hookguard.config import (
    DEFAULTS_SOURCE,
    default_policy_candidates,
    find_project_root,
    load_policy_config,
    load_policy_config_from_string,
    render_default_policy,
    resolve_policy_source,
)
from hookguard.errors import ERROR_CONFIG_SCHEMA, ERROR_CONFIG_SYNTAX, ConfigLoadError
from hookguard.policy.engine import RuleEngine
from hookguard.schema import Action, PatternKind


# =============================================================================
# Defaults
# =============================================================================


class TestDefaults:
    """The built-in default policy."""

    def test_source(self) -> None:
        config = load_policy_config(None)
        assert config.source == DEFAULTS_SOURCE

    def test_default_limits(self) -> None:
        limits = load_policy_config(None).limits
        assert limits.max_teammates == 8
        assert limits.max_concurrent_teams == 4
        assert limits.max_message_bytes == 10240
        assert limits.max_write_bytes == 0

    def test_all_default_patterns_compile(self) -> None:
        config = load_policy_config(None)
        assert config.skipped_entries == []
        for rules in (config.bash_rules, config.path_rules, config.message_rules):
            assert RuleEngine(rules).skipped == []

    def test_default_rules_present(self) -> None:
        config = load_policy_config(None)
        categories = {r.category for r in config.bash_rules}
        assert "privilege_escalation" in categories
        assert any(r.category == "deny_paths" for r in config.path_rules)

    def test_rendered_default_round_trips(self) -> None:
        config = load_policy_config_from_string(render_default_policy())
        assert len(config.bash_rules) == len(load_policy_config(None).bash_rules)


# =============================================================================
# Resolution
# =============================================================================


class TestResolution:
    """Ordered policy source resolution."""

    def test_candidate_order(self, temp_dir: Path) -> None:
        env = {"HOOKGUARD_POLICY": "/custom/policy.yaml", "XDG_CONFIG_HOME": "/xdg"}
        candidates = default_policy_candidates(temp_dir, env)
        assert candidates[0] == Path("/custom/policy.yaml")
        assert candidates[1] == temp_dir / ".hookguard" / "policy.yaml"
        assert candidates[2] == temp_dir / ".hookguard" / "policy.yml"
        assert candidates[-1] == Path("/xdg/hookguard/policy.yaml")

    def test_no_env_override(self, temp_dir: Path) -> None:
        candidates = default_policy_candidates(temp_dir, {"XDG_CONFIG_HOME": "/xdg"})
        assert candidates[0] == temp_dir / ".hookguard" / "policy.yaml"

    def test_first_existing_wins(self, temp_dir: Path) -> None:
        second = temp_dir / "second.yaml"
        third = temp_dir / "third.yaml"
        second.write_text("version: 1\n")
        third.write_text("version: 1\n")
        assert resolve_policy_source([temp_dir / "missing.yaml", second, third]) == second

    def test_none_exist(self, temp_dir: Path) -> None:
        assert resolve_policy_source([temp_dir / "a.yaml", temp_dir / "b.yaml"]) is None

    def test_directory_is_not_a_source(self, temp_dir: Path) -> None:
        assert resolve_policy_source([temp_dir]) is None


class TestFindProjectRoot:
    """Project root discovery."""

    def test_env_override(self, temp_dir: Path) -> None:
        assert find_project_root(Path("/"), {"CLAUDE_PROJECT_DIR": str(temp_dir)}) == temp_dir

    def test_nearest_marker(self, temp_dir: Path) -> None:
        (temp_dir / ".hookguard").mkdir()
        nested = temp_dir / "a" / "b"
        nested.mkdir(parents=True)
        assert find_project_root(nested, {}) == temp_dir

    def test_git_marker(self, temp_dir: Path) -> None:
        (temp_dir / ".git").mkdir()
        nested = temp_dir / "src"
        nested.mkdir()
        assert find_project_root(nested, {}) == temp_dir


# =============================================================================
# Fatal load errors
# =============================================================================


class TestLoadErrors:
    """Errors that abort loading."""

    def test_missing_file(self, temp_dir: Path) -> None:
        with pytest.raises(ConfigLoadError):
            load_policy_config(temp_dir / "nope.yaml")

    def test_yaml_syntax_error(self) -> None:
        with pytest.raises(ConfigLoadError) as exc_info:
            load_policy_config_from_string("bash_rules: [unclosed\n")
        assert exc_info.value.code == ERROR_CONFIG_SYNTAX

    def test_non_mapping_document(self) -> None:
        with pytest.raises(ConfigLoadError) as exc_info:
            load_policy_config_from_string("- just\n- a list\n")
        assert exc_info.value.code == ERROR_CONFIG_SCHEMA

    def test_invalid_limits(self) -> None:
        with pytest.raises(ConfigLoadError):
            load_policy_config_from_string("limits:\n  max_teammates: -1\n")

    def test_unknown_limit(self) -> None:
        with pytest.raises(ConfigLoadError):
            load_policy_config_from_string("limits:\n  max_agents: 3\n")

    def test_section_wrong_shape(self) -> None:
        with pytest.raises(ConfigLoadError):
            load_policy_config_from_string("bash_rules:\n  - pattern: x\n")

    def test_shorthand_wrong_shape(self) -> None:
        with pytest.raises(ConfigLoadError):
            load_policy_config_from_string("deny_paths: .env\n")

    def test_reads_file(self, temp_dir: Path) -> None:
        path = temp_dir / "policy.yaml"
        path.write_text("limits:\n  max_teammates: 3\n")
        config = load_policy_config(path)
        assert config.limits.max_teammates == 3
        assert config.source == str(path)


# =============================================================================
# Lenient entries
# =============================================================================


class TestRuleEntries:
    """Per-entry parsing."""

    def test_empty_document(self) -> None:
        config = load_policy_config_from_string("")
        assert config.bash_rules == []
        assert config.path_rules == []

    def test_full_entry(self) -> None:
        config = load_policy_config_from_string(
            """
bash_rules:
  publish:
    - pattern: '\\bnpm\\s+publish\\b'
      action: ask
      message: "Publishing: {match}"
      remediation: "Ask a maintainer"
"""
        )
        (rule,) = config.bash_rules
        assert rule.category == "publish"
        assert rule.action == Action.ASK
        assert rule.kind == PatternKind.REGEX
        assert rule.case_sensitive is False
        assert rule.remediation == "Ask a maintainer"
        assert rule.pattern == r"\bnpm\s+publish\b"

    def test_string_shorthand_blocks(self) -> None:
        config = load_policy_config_from_string("bash_rules:\n  misc:\n    - 'shutdown'\n")
        (rule,) = config.bash_rules
        assert rule.action == Action.BLOCK
        assert rule.pattern == "shutdown"

    def test_single_entry_without_list(self) -> None:
        config = load_policy_config_from_string("bash_rules:\n  misc:\n    pattern: reboot\n")
        assert [r.pattern for r in config.bash_rules] == ["reboot"]

    def test_detail_alias(self) -> None:
        config = load_policy_config_from_string(
            "bash_rules:\n  misc:\n    - pattern: x\n      detail: use y\n"
        )
        assert config.bash_rules[0].remediation == "use y"

    def test_malformed_entries_skipped(self) -> None:
        config = load_policy_config_from_string(
            """
bash_rules:
  misc:
    - action: block
    - pattern: ok
    - pattern: bad
      action: maybe
    - 42
"""
        )
        assert [r.pattern for r in config.bash_rules] == ["ok"]
        assert config.skipped_entries == ["bash_rules.misc[0]", "bash_rules.misc[2]", "bash_rules.misc[3]"]

    def test_builtin_cannot_be_claimed(self) -> None:
        config = load_policy_config_from_string(
            "bash_rules:\n  misc:\n    - pattern: x\n      builtin: true\n"
        )
        assert config.bash_rules == []
        assert config.skipped_entries == ["bash_rules.misc[0]"]

    def test_invalid_regex_kept_for_engine(self) -> None:
        # Shape is valid; compilation is the rule engine's concern
        config = load_policy_config_from_string("bash_rules:\n  misc:\n    - pattern: '('\n")
        assert len(config.bash_rules) == 1
        assert len(RuleEngine(config.bash_rules).skipped) == 1

    def test_path_rules_are_case_sensitive_globs(self) -> None:
        config = load_policy_config_from_string("path_rules:\n  ci:\n    - pattern: '.github/**'\n")
        (rule,) = config.path_rules
        assert rule.kind == PatternKind.GLOB
        assert rule.case_sensitive is True

    def test_unknown_top_level_key_ignored(self) -> None:
        config = load_policy_config_from_string("version: 1\nfuture_feature: true\n")
        assert config.version == 1


class TestPathShorthands:
    """allow_paths and deny_paths expansion."""

    def test_order_deny_rules_allow(self) -> None:
        config = load_policy_config_from_string(
            """
allow_paths: ["docs/**"]
deny_paths: [".env"]
path_rules:
  ci:
    - pattern: ".github/**"
      action: ask
"""
        )
        assert [r.category for r in config.path_rules] == ["deny_paths", "ci", "allow_paths"]
        assert [r.action for r in config.path_rules] == [Action.BLOCK, Action.ASK, Action.ALLOW]

    def test_invalid_shorthand_entry_skipped(self) -> None:
        config = load_policy_config_from_string("deny_paths: ['.env', 3, '']\n")
        assert [r.pattern for r in config.path_rules] == [".env"]
        assert config.skipped_entries == ["deny_paths[1]", "deny_paths[2]"]
