"""
Hook timing metrics.

Each invocation records how long it took and how it ended under
hook_metrics in the session state document:

    {
      "hook_metrics": {
        "last_updated": "2026-02-02T12:00:00+00:00",
        "session_total_ms": 565,
        "hooks": {
          "PreToolUse": {
            "Bash": {
              "duration_ms": 12,
              "status": "blocked",
              "at": "...",
              "counts": {"allow": 40, "ask": 2, "block": 1, "fail_open": 0}
            }
          }
        }
      }
    }

Recording metrics must never change a decision, so MetricsRecorder.record
swallows and logs every failure.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from hookguard.schema import Action, Decision
from hookguard.store.session import SessionStateFile

logger = logging.getLogger(__name__)

METRICS_KEY = "hook_metrics"
DEFAULT_EVENT = "PreToolUse"

STATUS_ALLOW = "allow"
STATUS_ASK = "ask"
STATUS_BLOCKED = "blocked"
STATUS_ERROR = "error"
STATUS_TIMEOUT = "timeout"

_STATUS_BY_ACTION = {
    Action.ALLOW: STATUS_ALLOW,
    Action.ASK: STATUS_ASK,
    Action.BLOCK: STATUS_BLOCKED,
}


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _empty_metrics() -> dict[str, Any]:
    return {"last_updated": None, "session_total_ms": 0, "hooks": {}}


@dataclass
class HookTimer:
    """
    Monotonic timer for one hook invocation.

    Attributes:
        event: Hook event name (e.g., "PreToolUse")
        hook_name: Which hook ran; HookGuard uses the tool name
        started: time.monotonic() at creation
    """

    event: str = DEFAULT_EVENT
    hook_name: str = "unknown"
    started: float = field(default_factory=time.monotonic)

    def elapsed_ms(self) -> int:
        """Milliseconds since the timer started."""
        return int((time.monotonic() - self.started) * 1000)


@dataclass(frozen=True)
class MetricsResult:
    """Outcome of recording one metric."""

    ok: bool
    duration_ms: int = 0
    error: str | None = None


def status_for(decision: Decision, error: str | None = None, timed_out: bool = False) -> str:
    """Map a decision to its metrics status."""
    if timed_out:
        return STATUS_TIMEOUT
    if decision.fail_open or error:
        return STATUS_ERROR
    return _STATUS_BY_ACTION[decision.action]


class MetricsRecorder:
    """
    Writes hook timings into the session state document.

    Usage:
        timer = HookTimer(hook_name="Bash")
        ...
        MetricsRecorder(state).record(timer, decision)
    """

    def __init__(self, state: SessionStateFile) -> None:
        self.state = state

    def record(
        self,
        timer: HookTimer,
        decision: Decision,
        error: str | None = None,
        timed_out: bool = False,
    ) -> MetricsResult:
        """
        Record one invocation. Never raises.

        Args:
            timer: Timer started when the invocation began
            decision: The decision that was rendered
            error: Error text when the invocation failed open
            timed_out: Whether the input read hit its bound

        Returns:
            MetricsResult with ok=False and the error text on failure
        """
        duration_ms = timer.elapsed_ms()
        status = status_for(decision, error, timed_out)

        def apply(doc: dict[str, Any]) -> dict[str, Any]:
            metrics = doc.get(METRICS_KEY)
            if not isinstance(metrics, dict) or not isinstance(metrics.get("hooks"), dict):
                metrics = _empty_metrics()

            event_hooks = metrics["hooks"].setdefault(timer.event, {})
            previous = event_hooks.get(timer.hook_name)
            counts = dict(previous.get("counts", {})) if isinstance(previous, dict) else {}
            action_key = decision.action.value
            counts[action_key] = int(counts.get(action_key, 0)) + 1
            if decision.fail_open:
                counts["fail_open"] = int(counts.get("fail_open", 0)) + 1

            metric: dict[str, Any] = {
                "duration_ms": duration_ms,
                "status": status,
                "at": _now(),
                "counts": counts,
            }
            if error:
                metric["error"] = error
            event_hooks[timer.hook_name] = metric

            metrics["last_updated"] = _now()
            metrics["session_total_ms"] = sum(
                int(m.get("duration_ms", 0))
                for hooks in metrics["hooks"].values()
                if isinstance(hooks, dict)
                for m in hooks.values()
                if isinstance(m, dict)
            )
            doc[METRICS_KEY] = metrics
            return doc

        try:
            self.state.update(apply)
        except Exception as e:
            logger.warning("Could not record hook metrics: %s", e)
            return MetricsResult(ok=False, duration_ms=duration_ms, error=str(e))

        return MetricsResult(ok=True, duration_ms=duration_ms)


def get_hook_metrics(state: SessionStateFile) -> dict[str, Any]:
    """Return the recorded metrics, or an empty structure."""
    metrics = state.read().get(METRICS_KEY)
    if not isinstance(metrics, dict):
        return _empty_metrics()
    return metrics


def clear_hook_metrics(state: SessionStateFile) -> MetricsResult:
    """Reset hook_metrics, preserving every other key."""

    def clear(doc: dict[str, Any]) -> dict[str, Any]:
        doc[METRICS_KEY] = {"last_updated": _now(), "session_total_ms": 0, "hooks": {}}
        return doc

    try:
        state.update(clear)
    except Exception as e:
        logger.warning("Could not clear hook metrics: %s", e)
        return MetricsResult(ok=False, error=str(e))
    return MetricsResult(ok=True)


_STATUS_MARKS = {
    STATUS_ALLOW: "+",
    STATUS_ASK: "?",
    STATUS_BLOCKED: "x",
    STATUS_ERROR: "!",
    STATUS_TIMEOUT: "~",
}


def format_hook_metrics(metrics: dict[str, Any] | None) -> str:
    """Format metrics as plain text."""
    if not metrics or not metrics.get("hooks"):
        return "No hook metrics recorded"

    lines = [f"Hook Metrics (total: {metrics.get('session_total_ms', 0)}ms)", "-" * 50]
    for event, hooks in metrics["hooks"].items():
        lines.append(f"  {event}:")
        for name, data in hooks.items():
            mark = _STATUS_MARKS.get(data.get("status"), "?")
            error = f" ({data['error']})" if data.get("error") else ""
            lines.append(f"    {mark} {name}: {data.get('duration_ms', 0)}ms {data.get('status', '')}{error}")

    if metrics.get("last_updated"):
        lines.append("")
        lines.append(f"Last updated: {metrics['last_updated']}")
    return "\n".join(lines)
