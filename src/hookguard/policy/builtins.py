"""
Built-in, non-configurable checks.

These rules ship with HookGuard and are always evaluated ahead of the
configured rules, so a built-in Block outranks any configured Allow and is
the reason reported first. A policy file cannot remove or weaken them.

Catalogs:
    - BASH_BUILTIN_RULES: destructive filesystem, history rewrite,
      destructive SQL (applied to Bash command lines)
    - MESSAGE_BUILTIN_RULES: code injection idioms plus the same
      destructive families (applied to inter-agent message bodies)
    - SECRET_PATTERNS: credential shapes rejected in task descriptions
"""

from dataclasses import dataclass

from hookguard.schema import Action, PolicyRule

# rm flag combinations that mean recursive + force
_RM_RECURSIVE_FORCE = (
    r"(?:-[a-z]*r[a-z]*f[a-z]*|-[a-z]*f[a-z]*r[a-z]*"
    r"|(?:-r|--recursive)\s+(?:-f|--force)"
    r"|(?:-f|--force)\s+(?:-r|--recursive))"
)
# Filesystem root, root glob or home directory as a whole operand, optionally quoted
_RM_CRITICAL_TARGET = r"[\x27\x22]?(?:/\*?|~/?|\$HOME/?|\$\{HOME\}/?)[\x27\x22]?(?=\s|$|[;&|)])"
# Any operands of the same simple command
_OPERANDS = r"(?:\s+[^\s;&|]+)*?"
# git global options (-C <dir>, -c <k=v>, --no-pager, ...) before the subcommand
_GIT = r"\bgit(?:\s+-[^\s;&|]+(?:\s+[^\s;&|-][^\s;&|]*)?)*"


def _builtin(
    pattern: str,
    category: str,
    message: str,
    action: Action = Action.BLOCK,
    case_sensitive: bool = False,
    remediation: str | None = None,
) -> PolicyRule:
    return PolicyRule(
        pattern=pattern,
        category=category,
        action=action,
        message=message,
        case_sensitive=case_sensitive,
        remediation=remediation,
        builtin=True,
    )


# =============================================================================
# Bash
# =============================================================================

BASH_BUILTIN_RULES: tuple[PolicyRule, ...] = (
    _builtin(
        rf"\brm\s+{_RM_RECURSIVE_FORCE}{_OPERANDS}\s+{_RM_CRITICAL_TARGET}",
        "destructive_filesystem",
        "Recursive force delete of a root or home directory: {match}",
        remediation="Delete a specific path inside the project instead.",
    ),
    _builtin(
        r"\brm\b[^;&|\n]*--no-preserve-root",
        "destructive_filesystem",
        "rm with --no-preserve-root",
        remediation="There is no legitimate reason for an agent to remove the filesystem root.",
    ),
    _builtin(
        rf"{_GIT}\s+push\b[^;&|\n]*\s(?:--force(?![\w-])|-f(?![\w-])|\+[\w./-]+)",
        "history_rewrite",
        "Forced push rewrites remote history: {match}",
        remediation="Push without --force, or use --force-with-lease after confirming with a human.",
    ),
    _builtin(
        rf"{_GIT}\s+reset\b[^;&|\n]*\s--hard\b",
        "history_rewrite",
        "git reset --hard discards uncommitted work",
        remediation="Use 'git stash' to set changes aside instead.",
    ),
    _builtin(
        r"\bdrop\s+(?:database|schema)\b",
        "destructive_sql",
        "SQL statement drops a whole database: {match}",
        remediation="Run destructive migrations manually.",
    ),
    _builtin(
        r"\bdrop\s+table\b",
        "destructive_sql",
        "SQL statement drops a table: {match}",
        remediation="Run destructive migrations manually.",
    ),
)


# =============================================================================
# Inter-agent messages
# =============================================================================

_MESSAGE_REASON = "Message contains potentially dangerous content pattern"

MESSAGE_BUILTIN_RULES: tuple[PolicyRule, ...] = tuple(
    _builtin(
        pattern,
        category,
        _MESSAGE_REASON,
        case_sensitive=case_sensitive,
        remediation=f"Matched: {pattern}",
    )
    for pattern, category, case_sensitive in (
        (r"\$\{.*\}", "code_injection", True),
        (r"`[^`]*`", "code_injection", True),
        (r"\bexec\s*\(", "code_injection", True),
        (r"\beval\s*\(", "code_injection", True),
        (r"\bgit\s+push\s+--force\b", "history_rewrite", False),
        (r"\bgit\s+reset\s+--hard\b", "history_rewrite", False),
        (r"\brm\s+-rf\s+/", "destructive_filesystem", True),
        (r"\bdrop\s+database\b", "destructive_sql", False),
        (r"\bdrop\s+table\b", "destructive_sql", False),
    )
)


# =============================================================================
# Secrets
# =============================================================================


@dataclass(frozen=True)
class SecretPattern:
    """
    A credential shape that must never appear in task parameters.

    Attributes:
        regex: Pattern source
        label: What kind of secret it looks like
        case_sensitive: Whether matching respects case
    """

    regex: str
    label: str
    case_sensitive: bool = True

    def as_rule(self) -> PolicyRule:
        """Express this pattern as a built-in block rule."""
        return _builtin(
            self.regex,
            "secret_in_task",
            f"Task description appears to contain secrets or credentials ({self.label})",
            case_sensitive=self.case_sensitive,
            remediation="Never pass secrets in task parameters. Use environment variables instead.",
        )


SECRET_PATTERNS: tuple[SecretPattern, ...] = (
    SecretPattern(
        r"\b\w*(?:API_?KEY|SECRET|PASSWORD|PASSWD|TOKEN|CREDENTIALS)\b\s*[:=]\s*\S+",
        "credential assignment",
        case_sensitive=False,
    ),
    SecretPattern(r"\bsk-[A-Za-z0-9_-]{20,}", "sk- API key"),
    SecretPattern(r"\bghp_[A-Za-z0-9]{36}", "GitHub personal access token"),
    SecretPattern(r"\bgithub_pat_[A-Za-z0-9_]{22,}", "GitHub fine-grained token"),
    SecretPattern(r"\bnpm_[A-Za-z0-9]{36}", "npm token"),
    SecretPattern(r"\bAKIA[0-9A-Z]{16}\b", "AWS access key id"),
    SecretPattern(r"\bxox[abposr]-[A-Za-z0-9-]{10,}", "Slack token"),
    SecretPattern(r"-----BEGIN (?:[A-Z]+ )?PRIVATE KEY-----", "private key"),
)

SECRET_RULES: tuple[PolicyRule, ...] = tuple(p.as_rule() for p in SECRET_PATTERNS)
