"""
Hook runner for HookGuard.

The runner is the orchestrator for one invocation: it takes the raw
invocation context, walks it through a fixed sequence of stages and
renders exactly one Decision as an exit status and output.

Stages:
    received -> parsed -> dispatched -> config_loaded -> evaluated -> reported

Each stage returns a StageResult carrying either a value or a
HookGuardError. The pipeline stops at the first error and maps it to a
fail-open Allow; this is the only way an internal fault can leave the
runner. A Block computed by a validator is a successful evaluation.

Exit codes:
    0 - allow (ask adds {"result": "ask", "message": ...} on stdout)
    2 - block ([BLOCKED] <reason> on stderr)
"""

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Callable, Generic, Mapping, TypeVar

from pydantic import ValidationError

from hookguard.config import (
    default_policy_candidates,
    find_project_root,
    load_policy_config,
    resolve_policy_source,
)
from hookguard.errors import EvaluationError, HookGuardError, InputParseError, InputTimeoutError
from hookguard.metrics import HookTimer, MetricsRecorder
from hookguard.schema import (
    Action,
    Decision,
    HookContext,
    PassThroughCall,
    PolicyConfig,
    ToolCall,
    decode_tool_call,
    parse_hook_context,
)
from hookguard.store.ratelimit import RateLimitStore
from hookguard.store.session import SessionStateFile, default_state_path
from hookguard.validators import default_registry
from hookguard.validators.base import ValidationContext, Validator
from hookguard.validators.registry import ValidatorRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

ENV_STDIN_TIMEOUT = "HOOKGUARD_STDIN_TIMEOUT"
DEFAULT_STDIN_TIMEOUT = 3.0

EXIT_ALLOW = 0
EXIT_BLOCK = 2


# =============================================================================
# Pipeline types
# =============================================================================


class HookState(str, Enum):
    """Where an invocation is in the pipeline."""

    RECEIVED = "received"
    PARSED = "parsed"
    DISPATCHED = "dispatched"
    CONFIG_LOADED = "config_loaded"
    EVALUATED = "evaluated"
    REPORTED = "reported"


@dataclass(frozen=True)
class StageResult(Generic[T]):
    """
    The outcome of one pipeline stage: a value or an error, never both.

    Attributes:
        value: The stage's product when it succeeded
        error: The failure when it did not
    """

    value: T | None = None
    error: HookGuardError | None = None

    @property
    def ok(self) -> bool:
        """Whether the stage succeeded."""
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "StageResult[T]":
        """Create a successful result."""
        return cls(value=value)

    @classmethod
    def failure(cls, error: HookGuardError) -> "StageResult[T]":
        """Create a failed result."""
        return cls(error=error)


@dataclass(frozen=True)
class HookResponse:
    """What the CLI boundary writes and exits with."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""


@dataclass
class HookOutcome:
    """
    Everything known about one finished invocation.

    Attributes:
        decision: The rendered decision
        response: Exit status and output
        states: Stages reached, in order; always ends with REPORTED
        error: The error that caused a fail-open, if any
        timed_out: Whether the input read hit its bound
        tool_name: Tool named in the context ("" if none)
        call: The decoded tool call, once dispatched
    """

    decision: Decision
    response: HookResponse
    states: list[HookState] = field(default_factory=list)
    error: HookGuardError | None = None
    timed_out: bool = False
    tool_name: str = ""
    call: ToolCall | None = None

    @property
    def state(self) -> HookState:
        """The final state."""
        return self.states[-1] if self.states else HookState.RECEIVED


@dataclass
class HookSettings:
    """
    Runtime settings for one invocation.

    Attributes:
        project_root: Root that file paths must stay inside
        policy_source: Resolved policy file, or None for built-in defaults
        state_path: Session state document, or None to run without state
        stdin_timeout: Seconds to wait for the invocation context
        record_metrics: Whether to write hook metrics after reporting
    """

    project_root: Path
    policy_source: Path | None = None
    state_path: Path | None = None
    stdin_timeout: float = DEFAULT_STDIN_TIMEOUT
    record_metrics: bool = True

    @classmethod
    def from_env(
        cls,
        project_dir: Path | None = None,
        policy: Path | None = None,
        timeout: float | None = None,
        record_metrics: bool = True,
        env: Mapping[str, str] | None = None,
    ) -> "HookSettings":
        """
        Build settings from explicit options with environment fallbacks.

        Explicit options win over $CLAUDE_PROJECT_DIR, $HOOKGUARD_POLICY,
        $HOOKGUARD_STATE and $HOOKGUARD_STDIN_TIMEOUT.
        """
        env = os.environ if env is None else env
        root = project_dir.absolute() if project_dir else find_project_root(env=env)

        if policy is not None:
            policy_source = policy
        else:
            policy_source = resolve_policy_source(default_policy_candidates(root, env))

        if timeout is None:
            timeout = _timeout_from_env(env)

        return cls(
            project_root=root,
            policy_source=policy_source,
            state_path=default_state_path(root, env),
            stdin_timeout=timeout,
            record_metrics=record_metrics,
        )


def parse_stdin_timeout(raw: str | None, source: str = ENV_STDIN_TIMEOUT) -> float | None:
    """
    Parse a stdin timeout given as text.

    Returns:
        Seconds, or None when raw is empty, not a number or not positive
    """
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", source, raw)
        return None
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r", source, raw)
        return None
    return value


def _timeout_from_env(env: Mapping[str, str]) -> float:
    return parse_stdin_timeout(env.get(ENV_STDIN_TIMEOUT)) or DEFAULT_STDIN_TIMEOUT


# =============================================================================
# Input
# =============================================================================


def read_stdin_bounded(stream: IO[str], timeout: float) -> str:
    """
    Read the whole stream, giving up after timeout seconds.

    The read runs on a daemon thread so a host that never closes stdin
    cannot hang the process.

    Raises:
        InputTimeoutError: If the stream did not reach EOF in time
    """
    chunks: list[str] = []
    failures: list[BaseException] = []

    def _read() -> None:
        try:
            chunks.append(stream.read())
        except (OSError, ValueError, UnicodeDecodeError) as e:
            failures.append(e)

    reader = threading.Thread(target=_read, name="hookguard-stdin", daemon=True)
    reader.start()
    reader.join(timeout)

    if reader.is_alive():
        raise InputTimeoutError(timeout_seconds=timeout)
    if failures:
        raise InputParseError(underlying_error=str(failures[0]))
    return "".join(chunks)


# =============================================================================
# Decisions to output
# =============================================================================


def fail_open_decision(error: HookGuardError) -> Decision:
    """Map any internal failure to Allow."""
    return Decision.allow(
        reason=f"Fail-open: {error.message}",
        category="fail_open",
        fail_open=True,
    )


def pass_through_decision(call: PassThroughCall) -> Decision:
    """Allow for calls outside HookGuard's authority."""
    return Decision.allow(reason=call.reason or "Pass-through", category="pass_through")


def render_decision(decision: Decision) -> HookResponse:
    """
    Render a decision into the host's hook contract.

    Allow: exit 0, no output.
    Ask: exit 0, {"result": "ask", "message": ...} on stdout.
    Block: exit 2, "[BLOCKED] <reason>", indented detail lines and a
    trailing "hookguard: <category>" line on stderr.
    """
    if decision.action == Action.BLOCK:
        lines = [f"[BLOCKED] {decision.reason}"]
        if decision.detail:
            lines.extend(f"  {line}" for line in decision.detail.splitlines())
        if decision.category:
            lines.append(f"hookguard: {decision.category}")
        return HookResponse(exit_code=EXIT_BLOCK, stderr="\n".join(lines))

    if decision.action == Action.ASK:
        message = decision.reason
        if decision.detail:
            message = f"{message}\n\n{decision.detail}"
        payload = json.dumps({"result": "ask", "message": message})
        return HookResponse(exit_code=EXIT_ALLOW, stdout=payload)

    return HookResponse(exit_code=EXIT_ALLOW)


# =============================================================================
# Runner
# =============================================================================


def _guard(stage: str, fn: Callable[[], T]) -> StageResult[T]:
    """Run a stage body, converting exceptions into a failed StageResult."""
    try:
        return StageResult.success(fn())
    except HookGuardError as e:
        return StageResult.failure(e)
    except Exception as e:
        logger.debug("Unexpected failure during %s", stage, exc_info=True)
        return StageResult.failure(EvaluationError(stage=stage, underlying_error=f"{type(e).__name__}: {e}"))


class HookRunner:
    """
    Runs one hook invocation end to end.

    Usage:
        settings = HookSettings.from_env()
        outcome = HookRunner(settings).run(stream=sys.stdin)
        sys.stderr.write(outcome.response.stderr)
        sys.exit(outcome.response.exit_code)

    Attributes:
        settings: Runtime settings
        registry: Tool name -> validator lookup
    """

    def __init__(self, settings: HookSettings, registry: ValidatorRegistry | None = None) -> None:
        self.settings = settings
        self.registry = default_registry if registry is None else registry

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def parse(self, raw: str) -> StageResult[HookContext]:
        """received -> parsed"""
        try:
            return StageResult.success(parse_hook_context(raw))
        except (ValueError, ValidationError) as e:
            # json.JSONDecodeError is a ValueError
            return StageResult.failure(InputParseError(underlying_error=str(e)))

    def dispatch(self, context: HookContext) -> StageResult[tuple[ToolCall, Validator | None]]:
        """parsed -> dispatched"""

        def _dispatch() -> tuple[ToolCall, Validator | None]:
            call = decode_tool_call(context)
            if isinstance(call, PassThroughCall):
                return call, None
            return call, self.registry.get(call.tool_name)

        return _guard("dispatch", _dispatch)

    def load_config(self) -> StageResult[PolicyConfig]:
        """dispatched -> config_loaded"""
        return _guard("config", lambda: load_policy_config(self.settings.policy_source))

    def evaluate(
        self,
        validator: Validator,
        call: ToolCall,
        config: PolicyConfig,
        hook_context: HookContext | None = None,
    ) -> StageResult[Decision]:
        """config_loaded -> evaluated"""
        hook_context = hook_context or HookContext()
        context = ValidationContext(
            project_root=self.settings.project_root,
            rate_limits=self._rate_limits(hook_context.session_id),
            after_call=hook_context.after_call,
        )
        return _guard("evaluate", lambda: validator.validate(call, config, context))

    def _rate_limits(self, session_id: str | None) -> RateLimitStore | None:
        if self.settings.state_path is None:
            return None
        return RateLimitStore(SessionStateFile(self.settings.state_path), session_id=session_id)

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    def run(self, raw: str | None = None, stream: IO[str] | None = None) -> HookOutcome:
        """
        Run one invocation.

        Args:
            raw: The invocation context as text; read from stream when None
            stream: Where to read the context from (bounded wait)

        Returns:
            HookOutcome; its response is what the CLI must emit
        """
        timer = HookTimer()
        states = [HookState.RECEIVED]
        timed_out = False

        if raw is None:
            try:
                raw = read_stdin_bounded(stream, self.settings.stdin_timeout) if stream is not None else ""
            except InputTimeoutError as e:
                logger.warning("%s; continuing with empty input", e.message)
                raw = ""
                timed_out = True
            except InputParseError as e:
                return self._report(timer, states, fail_open_decision(e), error=e)

        outcome_call: ToolCall | None = None
        tool_name = ""
        try:
            parsed = self.parse(raw)
            if not parsed.ok:
                return self._report(timer, states, fail_open_decision(parsed.error), error=parsed.error)
            context = parsed.value
            tool_name = context.tool_name
            timer.hook_name = tool_name or "unknown"
            states.append(HookState.PARSED)

            dispatched = self.dispatch(context)
            if not dispatched.ok:
                return self._report(
                    timer, states, fail_open_decision(dispatched.error),
                    error=dispatched.error, tool_name=tool_name,
                )
            call, validator = dispatched.value
            outcome_call = call
            states.append(HookState.DISPATCHED)

            if validator is None:
                if not isinstance(call, PassThroughCall):
                    call = PassThroughCall(
                        tool_name=call.tool_name,
                        reason=f"No validator registered for tool '{call.tool_name}'",
                    )
                logger.debug("Pass-through: %s", call.reason)
                return self._report(
                    timer, states, pass_through_decision(call),
                    timed_out=timed_out, tool_name=tool_name, call=outcome_call,
                )

            loaded = self.load_config()
            if not loaded.ok:
                return self._report(
                    timer, states, fail_open_decision(loaded.error),
                    error=loaded.error, tool_name=tool_name, call=outcome_call,
                )
            states.append(HookState.CONFIG_LOADED)

            evaluated = self.evaluate(validator, call, loaded.value, context)
            if not evaluated.ok:
                return self._report(
                    timer, states, fail_open_decision(evaluated.error),
                    error=evaluated.error, tool_name=tool_name, call=outcome_call,
                )
            states.append(HookState.EVALUATED)

            return self._report(
                timer, states, evaluated.value,
                timed_out=timed_out, tool_name=tool_name, call=outcome_call,
            )
        except Exception as e:
            error = EvaluationError(stage="runner", underlying_error=f"{type(e).__name__}: {e}")
            return self._report(timer, states, fail_open_decision(error), error=error, tool_name=tool_name)

    def _report(
        self,
        timer: HookTimer,
        states: list[HookState],
        decision: Decision,
        error: HookGuardError | None = None,
        timed_out: bool = False,
        tool_name: str = "",
        call: ToolCall | None = None,
    ) -> HookOutcome:
        if error is not None:
            logger.warning("Failing open: %s", error.message)

        response = render_decision(decision)
        states.append(HookState.REPORTED)
        outcome = HookOutcome(
            decision=decision,
            response=response,
            states=states,
            error=error,
            timed_out=timed_out,
            tool_name=tool_name,
            call=call,
        )

        if self.settings.record_metrics and self.settings.state_path is not None:
            recorder = MetricsRecorder(SessionStateFile(self.settings.state_path))
            recorder.record(
                timer,
                decision,
                error=error.message if error is not None else None,
                timed_out=timed_out,
            )

        return outcome


def run_hook(raw: str, settings: HookSettings, registry: ValidatorRegistry | None = None) -> HookOutcome:
    """Run one invocation from already-read input text."""
    return HookRunner(settings, registry).run(raw=raw)

