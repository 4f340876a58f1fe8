"""
Policy configuration loading for HookGuard.

The policy is a YAML document read fresh on every invocation, so edits
take effect on the very next tool call. Resolution is an explicit,
ordered search over known locations; the first existing file wins and is
handed to the loader.

Policy file format:
    version: 1
    limits:
      max_teammates: 8
      max_concurrent_teams: 4
      max_message_bytes: 10240
      max_write_bytes: 0
    deny_paths: [".env", "**/*.pem"]       # glob shorthand -> block
    allow_paths: ["docs/**"]               # glob shorthand -> allow
    bash_rules:                            # category -> entries (regex)
      package_publish:
        - pattern: '\\bnpm\\s+publish\\b'
          action: ask
          message: "Publishing a package: {match}"
    path_rules:                            # category -> entries (glob)
      ci_config:
        - pattern: ".github/workflows/**"
          action: ask
    message_rules:                         # category -> entries (regex)
      ...

Failure semantics:
    - No policy file anywhere: built-in defaults
    - Unreadable file, YAML syntax error, non-mapping document or invalid
      limits: ConfigLoadError (the hook runner fails open)
    - One malformed rule entry: that entry is skipped and logged
"""

import logging
import os
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml
from pydantic import ValidationError

from hookguard.errors import ERROR_CONFIG_SCHEMA, ERROR_CONFIG_SYNTAX, ConfigLoadError
from hookguard.schema import Action, Limits, PatternKind, PolicyConfig, PolicyRule

logger = logging.getLogger(__name__)

# Project-local directory holding policy and session state
HOOKGUARD_DIR = ".hookguard"

# Environment overrides
ENV_POLICY = "HOOKGUARD_POLICY"
ENV_PROJECT_DIR = "CLAUDE_PROJECT_DIR"
ENV_XDG_CONFIG = "XDG_CONFIG_HOME"

# Source label for the built-in policy
DEFAULTS_SOURCE = "defaults"

# section name -> (pattern kind, case sensitive)
_RULE_SECTIONS: dict[str, tuple[PatternKind, bool]] = {
    "bash_rules": (PatternKind.REGEX, False),
    "path_rules": (PatternKind.GLOB, True),
    "message_rules": (PatternKind.REGEX, False),
}

_KNOWN_KEYS = {"version", "limits", "allow_paths", "deny_paths", *_RULE_SECTIONS}


DEFAULT_POLICY_YAML = """\
# HookGuard policy
#
# Built-in checks (always on, cannot be disabled here):
#   Bash:         rm -rf of / or ~, git push --force, git reset --hard,
#                 DROP DATABASE / DROP TABLE
#   Write/Edit:   path traversal outside the project, symlinked targets
#   SendMessage:  size ceiling, ${...}, backticks, exec(, eval(, forced git,
#                 rm -rf /, DROP DATABASE / DROP TABLE
#   TaskCreate/TaskUpdate: credentials and API tokens
#   TeamCreate:   teammate ceiling, concurrent team ceiling
#
# Rules below add to those checks. Actions: allow, ask, block.
# Precedence when several rules match: block > ask > allow.

version: 1

limits:
  max_teammates: 8
  max_concurrent_teams: 4
  max_message_bytes: 10240
  max_write_bytes: 0   # 0 = no size check on Write

deny_paths:
  - ".env"
  - ".env.*"
  - "**/*.pem"
  - "**/id_rsa*"
  - ".git/**"
  - ".hookguard/session-state.json"

allow_paths: []

bash_rules:
  privilege_escalation:
    - pattern: '\\bsudo\\b'
      action: ask
      message: "Command runs with elevated privileges: {match}"
  remote_code:
    - pattern: '\\b(?:curl|wget)\\b[^|]*\\|\\s*(?:ba|z)?sh\\b'
      action: block
      message: "Piping a download straight into a shell"
      remediation: "Download the script, review it, then run it."
  disk_destruction:
    - pattern: '\\bmkfs(?:\\.\\w+)?\\b'
      action: block
      message: "Formatting a filesystem: {match}"
    - pattern: '\\bdd\\b[^;&|]*\\bof=/dev/'
      action: block
      message: "Raw write to a block device"
  permissions:
    - pattern: '\\bchmod\\s+(?:-R\\s+)?777\\b'
      action: ask
      message: "World-writable permissions: {match}"
  history_rewrite:
    - pattern: '\\bgit\\s+push\\b[^;&|]*--force-with-lease'
      action: ask
      message: "Force push with lease: {match}"
    - pattern: '\\bgit\\s+clean\\s+-[a-z]*f'
      action: ask
      message: "git clean deletes untracked files"
  package_publish:
    - pattern: '\\b(?:npm|yarn|pnpm)\\s+publish\\b'
      action: ask
      message: "Publishing a package: {match}"
  infrastructure:
    - pattern: '\\bterraform\\s+destroy\\b'
      action: ask
      message: "Destroying infrastructure: {match}"
    - pattern: '\\bkubectl\\s+delete\\b'
      action: ask
      message: "Deleting cluster resources: {match}"

path_rules:
  ci_config:
    - pattern: ".github/workflows/**"
      action: ask
      message: "Editing CI workflow {candidate}"
  lockfiles:
    - pattern: "package-lock.json"
      action: ask
      message: "Hand-editing a lockfile: {candidate}"

message_rules: {}
"""


# =============================================================================
# Resolution
# =============================================================================


def find_project_root(start: Path | None = None, env: Mapping[str, str] | None = None) -> Path:
    """
    Locate the project root.

    $CLAUDE_PROJECT_DIR wins when set; otherwise the nearest ancestor of
    start holding a .hookguard directory or a .git entry; otherwise start.

    Args:
        start: Directory to search from (default: current directory)
        env: Environment mapping (default: os.environ)

    Returns:
        Absolute project root
    """
    env = os.environ if env is None else env
    override = env.get(ENV_PROJECT_DIR)
    if override:
        return Path(override).expanduser().absolute()

    start = (start or Path.cwd()).absolute()
    for directory in (start, *start.parents):
        if (directory / HOOKGUARD_DIR).is_dir() or (directory / ".git").exists():
            return directory
    return start


def default_policy_candidates(project_root: Path, env: Mapping[str, str] | None = None) -> list[Path]:
    """
    Known policy locations, most specific first.

    Order:
        1. $HOOKGUARD_POLICY
        2. <root>/.hookguard/policy.yaml
        3. <root>/.hookguard/policy.yml
        4. <root>/.hookguard/templates/policy.yaml
        5. $XDG_CONFIG_HOME/hookguard/policy.yaml (default ~/.config)
    """
    env = os.environ if env is None else env
    candidates: list[Path] = []

    override = env.get(ENV_POLICY)
    if override:
        candidates.append(Path(override).expanduser())

    base = project_root / HOOKGUARD_DIR
    candidates.extend([
        base / "policy.yaml",
        base / "policy.yml",
        base / "templates" / "policy.yaml",
    ])

    config_home = env.get(ENV_XDG_CONFIG)
    user_config = Path(config_home) if config_home else Path.home() / ".config"
    candidates.append(user_config / "hookguard" / "policy.yaml")

    return candidates


def resolve_policy_source(candidates: Iterable[Path]) -> Path | None:
    """
    Return the first candidate that exists as a file, or None.

    Candidates that cannot be inspected (e.g., permission denied on a
    parent directory) are skipped.
    """
    for candidate in candidates:
        try:
            if candidate.is_file():
                return candidate
        except OSError:
            continue
    return None


# =============================================================================
# Loading
# =============================================================================


def load_policy_config(source: Path | str | None) -> PolicyConfig:
    """
    Load a policy configuration.

    Args:
        source: Resolved policy file, or None for built-in defaults

    Returns:
        Validated PolicyConfig

    Raises:
        ConfigLoadError: If the file cannot be read or parsed
    """
    if source is None:
        return load_policy_config_from_string(DEFAULT_POLICY_YAML, source=DEFAULTS_SOURCE)

    path = Path(source)
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigLoadError(path=str(path), underlying_error=str(e)) from e

    return load_policy_config_from_string(content, source=str(path))


def load_policy_config_from_string(content: str, source: str = "<string>") -> PolicyConfig:
    """Load a policy configuration from YAML text."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigLoadError(
            path=source,
            underlying_error=str(e),
            code=ERROR_CONFIG_SYNTAX,
        ) from e

    # An empty file means "no extra rules"
    if data is None:
        data = {}

    return parse_policy_document(data, source=source)


def parse_policy_document(data: Any, source: str = "<string>") -> PolicyConfig:
    """
    Build a PolicyConfig from an already-parsed YAML document.

    Raises:
        ConfigLoadError: If the document or one of its sections has the wrong shape
    """
    if not isinstance(data, dict):
        raise ConfigLoadError(
            path=source,
            underlying_error=f"policy must be a mapping, got {type(data).__name__}",
            code=ERROR_CONFIG_SCHEMA,
        )

    for key in data:
        if key not in _KNOWN_KEYS:
            logger.warning("Ignoring unknown policy key %r in %s", key, source)

    try:
        limits = Limits.model_validate(data.get("limits") or {})
        version = int(data.get("version", 1))
    except (ValidationError, TypeError, ValueError) as e:
        raise ConfigLoadError(path=source, underlying_error=str(e), code=ERROR_CONFIG_SCHEMA) from e

    skipped: list[str] = []
    sections: dict[str, list[PolicyRule]] = {}
    for section, (kind, case_sensitive) in _RULE_SECTIONS.items():
        sections[section] = _parse_rule_section(
            data.get(section),
            section=section,
            kind=kind,
            case_sensitive=case_sensitive,
            source=source,
            skipped=skipped,
        )

    path_rules = (
        _parse_path_shorthand(data.get("deny_paths"), "deny_paths", Action.BLOCK, source, skipped)
        + sections["path_rules"]
        + _parse_path_shorthand(data.get("allow_paths"), "allow_paths", Action.ALLOW, source, skipped)
    )

    return PolicyConfig(
        version=version,
        limits=limits,
        bash_rules=sections["bash_rules"],
        path_rules=path_rules,
        message_rules=sections["message_rules"],
        source=source,
        skipped_entries=skipped,
    )


def _parse_rule_section(
    value: Any,
    section: str,
    kind: PatternKind,
    case_sensitive: bool,
    source: str,
    skipped: list[str],
) -> list[PolicyRule]:
    if value is None:
        return []
    if not isinstance(value, dict):
        raise ConfigLoadError(
            path=source,
            underlying_error=f"'{section}' must map categories to rule lists",
            code=ERROR_CONFIG_SCHEMA,
        )

    rules: list[PolicyRule] = []
    for category, entries in value.items():
        if entries is None:
            continue
        if not isinstance(entries, list):
            entries = [entries]
        for index, entry in enumerate(entries):
            where = f"{section}.{category}[{index}]"
            rule = _parse_rule_entry(entry, str(category), kind, case_sensitive)
            if rule is None:
                logger.warning("Skipping malformed rule %s in %s", where, source)
                skipped.append(where)
            else:
                rules.append(rule)
    return rules


def _parse_rule_entry(
    entry: Any,
    category: str,
    kind: PatternKind,
    case_sensitive: bool,
) -> PolicyRule | None:
    if isinstance(entry, str):
        entry = {"pattern": entry}
    if not isinstance(entry, dict):
        return None

    fields = dict(entry)
    if "detail" in fields and "remediation" not in fields:
        fields["remediation"] = fields.pop("detail")
    # Built-in status cannot be claimed from a policy file
    if "builtin" in fields or "category" in fields:
        return None
    fields.setdefault("kind", kind)
    fields.setdefault("case_sensitive", case_sensitive)

    try:
        return PolicyRule(category=category, **fields)
    except (ValidationError, TypeError):
        return None


def _parse_path_shorthand(
    value: Any,
    category: str,
    action: Action,
    source: str,
    skipped: list[str],
) -> list[PolicyRule]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigLoadError(
            path=source,
            underlying_error=f"'{category}' must be a list of glob patterns",
            code=ERROR_CONFIG_SCHEMA,
        )

    verb = "protected" if action == Action.BLOCK else "allowed"
    rules: list[PolicyRule] = []
    for index, pattern in enumerate(value):
        if not isinstance(pattern, str) or not pattern:
            logger.warning("Skipping malformed %s[%d] in %s", category, index, source)
            skipped.append(f"{category}[{index}]")
            continue
        rules.append(PolicyRule(
            pattern=pattern,
            category=category,
            action=action,
            message=f"Path {{candidate}} is {verb} by pattern '{pattern.replace('{', '{{').replace('}', '}}')}'",
            kind=PatternKind.GLOB,
            case_sensitive=True,
        ))
    return rules


def render_default_policy() -> str:
    """Return the default policy YAML, as written by 'hookguard init'."""
    return DEFAULT_POLICY_YAML
