"""
CLI entry point for HookGuard.

This module provides the Typer-based command-line interface for HookGuard.
The agent host calls 'hookguard hook' before every guarded tool call;
the remaining commands are for the people who write and debug policies.

Commands:
    hook        PreToolUse entry point (reads the call context on stdin)
    explain     Evaluate a call context and show every rule match
    rules       List built-in and configured rules
    init        Write the default policy to .hookguard/policy.yaml
    settings    Print the host settings block that installs the hook
    metrics     Show or clear hook timing metrics
    teams       Show or edit the active team counters

Architecture Note:
    The CLI is intentionally thin. Only the hook command is on the agent's
    critical path, and it never exits non-zero for an internal failure:
    anything unexpected is logged and the call is allowed.
"""

import json
import logging
import os
import sys
import traceback
from pathlib import Path
from typing import Annotated, Any, Optional

import click
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from typer.core import TyperCommand

from hookguard import __version__
from hookguard.config import HOOKGUARD_DIR, load_policy_config, render_default_policy
from hookguard.errors import HookGuardError
from hookguard.explain import explain_context
from hookguard.metrics import clear_hook_metrics, get_hook_metrics
from hookguard.policy.builtins import BASH_BUILTIN_RULES, MESSAGE_BUILTIN_RULES, SECRET_RULES
from hookguard.policy.engine import RuleEngine
from hookguard.runner import HookRunner, HookSettings, parse_stdin_timeout
from hookguard.schema import Action, PolicyRule
from hookguard.store.ratelimit import RateLimitStore
from hookguard.store.session import SessionStateFile, default_state_path

logger = logging.getLogger(__name__)

ENV_LOG_LEVEL = "HOOKGUARD_LOG_LEVEL"

# Tools the installed hook is attached to, one PreToolUse entry each
HOOK_MATCHERS = (
    "Bash",
    "Write",
    "Edit",
    "TeamCreate|TeamDelete|SendMessage|TaskCreate|TaskUpdate|TaskGet|TaskList",
)
HOOK_TIMEOUT_SECONDS = 5

# Initialize Typer app with metadata
app = typer.Typer(
    name="hookguard",
    help="Allow, ask or block agent tool calls before they run.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()

_ACTION_STYLES = {
    Action.ALLOW: "green",
    Action.ASK: "yellow",
    Action.BLOCK: "red",
}


def _configure_logging(verbose: bool) -> None:
    """Send log records to stderr; stdout belongs to the hook contract."""
    level_name = "DEBUG" if verbose else os.environ.get(ENV_LOG_LEVEL, "WARNING").upper()
    level = getattr(logging, level_name, logging.WARNING)
    logging.basicConfig(
        stream=sys.stderr,
        level=level if isinstance(level, int) else logging.WARNING,
        format="hookguard %(levelname)s %(name)s: %(message)s",
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]hookguard[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            help="Log debug output to stderr.",
        ),
    ] = False,
) -> None:
    """
    HookGuard - Policy decisions for agent tool calls.

    Every guarded call gets exactly one verdict: allow, ask or block.
    Internal failures always allow.
    """
    _configure_logging(verbose)


# =============================================================================
# Shared options
# =============================================================================

ProjectDirOption = Annotated[
    Optional[Path],
    typer.Option(
        "--project-dir",
        "-C",
        help="Project root (default: $CLAUDE_PROJECT_DIR or nearest .hookguard/.git).",
        file_okay=False,
        resolve_path=True,
    ),
]

PolicyOption = Annotated[
    Optional[Path],
    typer.Option(
        "--policy",
        "-p",
        help="Policy YAML file (default: first of $HOOKGUARD_POLICY, .hookguard/policy.yaml, ...).",
    ),
]

JsonOption = Annotated[
    bool,
    typer.Option(
        "--json",
        help="Output in JSON format.",
    ),
]


def _output_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _fail(message: str, json_output: bool = False) -> None:
    if json_output:
        _output_json({"error": True, "message": message})
    else:
        console.print(f"[red]Error: {escape(message)}[/red]")
    raise typer.Exit(code=1)


# =============================================================================
# hook
# =============================================================================


class FailOpenCommand(TyperCommand):
    """
    A command whose argument errors are logged instead of exiting 2.

    Exit status 2 means Block to the host, so a mistyped option in the
    host settings must not turn into a Block for every tool call.
    Arguments that cannot be parsed are dropped and defaults apply.
    """

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as e:
            logger.warning("Ignoring hook arguments %s: %s", args, e.format_message())
            return super().parse_args(ctx, [])


@app.command(
    cls=FailOpenCommand,
    context_settings={"ignore_unknown_options": True, "allow_extra_args": True},
)
def hook(
    ctx: typer.Context,
    project_dir: ProjectDirOption = None,
    policy: PolicyOption = None,
    timeout: Annotated[
        Optional[str],
        typer.Option(
            "--timeout",
            help="Seconds to wait for input on stdin (default: $HOOKGUARD_STDIN_TIMEOUT or 3).",
        ),
    ] = None,
    no_metrics: Annotated[
        bool,
        typer.Option(
            "--no-metrics",
            help="Do not record hook timing metrics.",
        ),
    ] = False,
) -> None:
    """
    Decide on one tool call (PreToolUse entry point).

    Reads {"tool_name": ..., "tool_input": {...}} on stdin.
    Exit 0 allows; an ask prints {"result": "ask", "message": ...};
    exit 2 blocks with "[BLOCKED] <reason>" on stderr.

    Example:
        $ echo '{"tool_name":"Bash","tool_input":{"command":"ls"}}' | hookguard hook
    """
    if ctx.args:
        logger.warning("Ignoring unexpected hook arguments: %s", " ".join(ctx.args))

    try:
        settings = HookSettings.from_env(
            project_dir=project_dir,
            policy=policy,
            timeout=parse_stdin_timeout(timeout, "--timeout"),
            record_metrics=not no_metrics,
        )
        response = HookRunner(settings).run(stream=sys.stdin).response
    except Exception as e:
        logger.warning("Failing open: %s", e)
        logger.debug("%s", traceback.format_exc())
        raise typer.Exit(code=0)

    # Plain echo: rich would treat "[BLOCKED]" as markup
    if response.stdout:
        typer.echo(response.stdout)
    if response.stderr:
        typer.echo(response.stderr, err=True)
    raise typer.Exit(code=response.exit_code)


# =============================================================================
# explain
# =============================================================================


@app.command()
def explain(
    context_file: Annotated[
        Optional[Path],
        typer.Argument(
            help="File holding the call context JSON (default: stdin).",
            exists=True,
            dir_okay=False,
            readable=True,
            resolve_path=True,
        ),
    ] = None,
    project_dir: ProjectDirOption = None,
    policy: PolicyOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Evaluate a call context and show every rule match.

    Nothing is recorded: team counters and metrics are left untouched.

    Example:
        $ echo '{"tool_name":"Bash","tool_input":{"command":"git push -f"}}' | hookguard explain
    """
    raw = context_file.read_text(encoding="utf-8") if context_file else sys.stdin.read()
    settings = HookSettings.from_env(project_dir=project_dir, policy=policy, record_metrics=False)

    try:
        explanation = explain_context(raw, settings)
    except HookGuardError as e:
        _fail(e.message, json_output)
        return

    if json_output:
        _output_json(explanation.to_dict())
        return

    decision = explanation.decision
    style = _ACTION_STYLES[decision.action]
    console.print(
        f"[bold]{escape(explanation.tool_name or '(no tool)')}[/bold]: "
        f"[{style}]{decision.action.value.upper()}[/{style}] {escape(decision.reason)}"
    )
    if decision.category:
        console.print(f"[dim]category: {escape(decision.category)}[/dim]")
    if decision.detail:
        console.print(f"[dim]{escape(decision.detail)}[/dim]")
    if decision.fail_open:
        console.print("[yellow]Fail-open: the engine could not evaluate this call[/yellow]")
    if explanation.policy_source:
        console.print(f"[dim]policy: {escape(explanation.policy_source)}[/dim]")
    for candidate in explanation.candidates:
        console.print(f"[dim]candidate: {escape(candidate)}[/dim]")

    if explanation.matches:
        console.print()
        table = Table(show_header=True, header_style="bold")
        table.add_column("#", style="dim", width=3)
        table.add_column("Source", width=10)
        table.add_column("Category", style="cyan")
        table.add_column("Action", width=6)
        table.add_column("Matched", width=7)
        table.add_column("Pattern")

        for i, m in enumerate(explanation.matches):
            action_style = _ACTION_STYLES[m.rule.action]
            table.add_row(
                str(i),
                "built-in" if m.rule.builtin else "policy",
                escape(m.rule.category),
                f"[{action_style}]{m.rule.action.value}[/{action_style}]",
                f"[bold]{escape(m.match_text or 'yes')}[/bold]" if m.matched else "[dim]-[/dim]",
                escape(m.rule.pattern),
            )
        console.print(table)


# =============================================================================
# rules
# =============================================================================


def _rule_rows(section: str, rules: list[PolicyRule]) -> list[tuple[str, PolicyRule]]:
    return [(section, rule) for rule in rules]


@app.command()
def rules(
    project_dir: ProjectDirOption = None,
    policy: PolicyOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    List active built-in and configured rules.

    Invalid rule entries and patterns that fail to compile are listed
    separately; they are skipped at evaluation time.
    """
    settings = HookSettings.from_env(project_dir=project_dir, policy=policy, record_metrics=False)
    try:
        config = load_policy_config(settings.policy_source)
    except HookGuardError as e:
        _fail(str(e), json_output)
        return

    rows = (
        _rule_rows("bash (built-in)", list(BASH_BUILTIN_RULES))
        + _rule_rows("message (built-in)", list(MESSAGE_BUILTIN_RULES))
        + _rule_rows("task (built-in)", list(SECRET_RULES))
        + _rule_rows("bash", config.bash_rules)
        + _rule_rows("path", config.path_rules)
        + _rule_rows("message", config.message_rules)
    )
    compile_errors = [
        e
        for section in (config.bash_rules, config.path_rules, config.message_rules)
        for e in RuleEngine(section).skipped
    ]

    if json_output:
        _output_json({
            "source": config.source,
            "limits": config.limits.model_dump(),
            "rules": [{"section": s, **r.model_dump(mode="json")} for s, r in rows],
            "skipped_entries": config.skipped_entries,
            "invalid_patterns": [e.to_dict() for e in compile_errors],
        })
        return

    console.print(f"[bold]Policy:[/bold] {escape(config.source)}")
    limits = config.limits
    console.print(
        f"[dim]limits: teammates={limits.max_teammates} teams={limits.max_concurrent_teams} "
        f"message_bytes={limits.max_message_bytes} write_bytes={limits.max_write_bytes or 'unchecked'}[/dim]"
    )
    console.print()

    table = Table(show_header=True, header_style="bold")
    table.add_column("Section", style="dim")
    table.add_column("Category", style="cyan")
    table.add_column("Action", width=6)
    table.add_column("Kind", width=5)
    table.add_column("Pattern")

    for section, rule in rows:
        style = _ACTION_STYLES[rule.action]
        table.add_row(
            section,
            escape(rule.category),
            f"[{style}]{rule.action.value}[/{style}]",
            rule.kind.value,
            escape(rule.pattern),
        )
    console.print(table)

    if config.skipped_entries or compile_errors:
        console.print()
        console.print("[yellow]Skipped:[/yellow]")
        for entry in config.skipped_entries:
            console.print(f"  [yellow]-[/yellow] malformed entry {escape(entry)}")
        for e in compile_errors:
            console.print(f"  [yellow]-[/yellow] {escape(e.message)}")


# =============================================================================
# init / settings
# =============================================================================


@app.command()
def init(
    project_dir: ProjectDirOption = None,
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            "-f",
            help="Overwrite an existing policy file.",
        ),
    ] = False,
) -> None:
    """Write the default policy to .hookguard/policy.yaml."""
    root = project_dir or HookSettings.from_env(record_metrics=False).project_root
    target = root / HOOKGUARD_DIR / "policy.yaml"

    if target.exists() and not force:
        console.print(f"[red]Policy already exists: {escape(str(target))}[/red]")
        console.print("[dim]Use --force to overwrite.[/dim]")
        raise typer.Exit(code=1)

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(render_default_policy(), encoding="utf-8")
    except OSError as e:
        _fail(f"Cannot write {target}: {e}")

    console.print(f"[green]✓[/green] Wrote {escape(str(target))}")


def build_settings_block(command: str = "hookguard hook", timeout: int = HOOK_TIMEOUT_SECONDS) -> dict[str, Any]:
    """The PreToolUse hooks block for the host's settings.json."""
    return {
        "hooks": {
            "PreToolUse": [
                {
                    "matcher": matcher,
                    "hooks": [{"type": "command", "command": command, "timeout": timeout}],
                }
                for matcher in HOOK_MATCHERS
            ]
        }
    }


@app.command()
def settings(
    command: Annotated[
        str,
        typer.Option(
            "--command",
            help="Command the host should run.",
        ),
    ] = "hookguard hook",
) -> None:
    """Print the .claude/settings.json block that installs the hook."""
    # Plain output so the block can be piped or copied verbatim
    typer.echo(json.dumps(build_settings_block(command), indent=2))


# =============================================================================
# metrics / teams
# =============================================================================


def _state_file(project_dir: Path | None) -> SessionStateFile:
    root = project_dir or HookSettings.from_env(record_metrics=False).project_root
    return SessionStateFile(default_state_path(root))


@app.command()
def metrics(
    project_dir: ProjectDirOption = None,
    clear: Annotated[
        bool,
        typer.Option(
            "--clear",
            help="Reset recorded metrics.",
        ),
    ] = False,
    json_output: JsonOption = False,
) -> None:
    """Show or clear hook timing metrics."""
    state = _state_file(project_dir)

    if clear:
        result = clear_hook_metrics(state)
        if not result.ok:
            _fail(f"Could not clear metrics: {result.error}", json_output)
        if json_output:
            _output_json({"cleared": True})
        else:
            console.print("[green]✓[/green] Hook metrics cleared")
        return

    data = get_hook_metrics(state)
    if json_output:
        _output_json(data)
        return

    hooks = data.get("hooks") or {}
    if not hooks:
        console.print("[dim]No hook metrics recorded[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Event", style="dim")
    table.add_column("Hook", style="cyan")
    table.add_column("Status", width=8)
    table.add_column("Last (ms)", justify="right")
    table.add_column("Allow", justify="right")
    table.add_column("Ask", justify="right")
    table.add_column("Block", justify="right")
    table.add_column("Fail-open", justify="right")
    table.add_column("Details")

    for event, entries in hooks.items():
        for name, entry in entries.items():
            counts = entry.get("counts", {})
            table.add_row(
                escape(event),
                escape(name),
                escape(str(entry.get("status", ""))),
                str(entry.get("duration_ms", 0)),
                str(counts.get("allow", 0)),
                str(counts.get("ask", 0)),
                str(counts.get("block", 0)),
                str(counts.get("fail_open", 0)),
                f"[red]{escape(entry['error'])}[/red]" if entry.get("error") else "",
            )

    console.print(table)
    console.print(f"[dim]Session total: {data.get('session_total_ms', 0)}ms[/dim]")
    if data.get("last_updated"):
        console.print(f"[dim]Last updated: {data['last_updated']}[/dim]")


@app.command()
def teams(
    project_dir: ProjectDirOption = None,
    session: Annotated[
        Optional[str],
        typer.Option(
            "--session",
            "-s",
            help="Host session id (default: teams recorded without a session).",
        ),
    ] = None,
    release: Annotated[
        Optional[str],
        typer.Option(
            "--release",
            help="Mark a team as no longer active.",
        ),
    ] = None,
    reset: Annotated[
        bool,
        typer.Option(
            "--reset",
            help="Forget all active teams.",
        ),
    ] = False,
    json_output: JsonOption = False,
) -> None:
    """Show or edit the active team counters of one session."""
    store = RateLimitStore(_state_file(project_dir), session_id=session)

    try:
        if reset:
            store.reset()
            scope = f"session {escape(session)}" if session else "all sessions"
            console.print(f"[green]✓[/green] All teams released ({scope})")
            return
        if release is not None:
            if store.release_team(release):
                console.print(f"[green]✓[/green] Released team {escape(release)}")
            else:
                console.print(f"[yellow]Team {escape(release)} was not active[/yellow]")
            return
    except HookGuardError as e:
        _fail(e.message, json_output)

    counters = store.load()
    if json_output:
        _output_json(counters.model_dump(mode="json"))
        return

    if not counters.active_teams:
        console.print("[dim]No active teams[/dim]")
        _print_other_sessions(store)
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Team", style="cyan")
    table.add_column("Teammates", justify="right")
    table.add_column("Created")

    for name, record in counters.active_teams.items():
        table.add_row(escape(name), str(record.teammates), record.created_at.isoformat())
    console.print(table)
    _print_other_sessions(store)


def _print_other_sessions(store: RateLimitStore) -> None:
    others = [s for s in store.sessions() if s != store.session_id]
    if others:
        console.print(f"[dim]Other sessions with teams: {escape(', '.join(others))} (use --session)[/dim]")


if __name__ == "__main__":
    app()
