"""
Durable multi-agent counters.

Team creation is only refused when the number of active teams already
equals the configured ceiling. Counting and recording happen inside one
locked read-modify-write of the session state document, so two agents
creating teams at the same moment can never both take the last slot.

Counters are kept per host session. A store opened without a session id
uses the top level of the document.

State keys:
    active_teams: {team_name: {"teammates": int, "created_at": iso8601}}
    active_team:  name of the most recently created team
    sessions:     {session_id: {"active_teams": ..., "active_team": ...}}
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from hookguard.schema import RateLimitCounters, TeamRecord
from hookguard.store.session import SessionStateFile

logger = logging.getLogger(__name__)

# Name recorded for teams created without one
UNNAMED_TEAM = "default"

SESSIONS_KEY = "sessions"


@dataclass(frozen=True)
class SpawnResult:
    """
    Outcome of a team spawn attempt.

    Attributes:
        ok: True when the team was recorded (or was already active)
        active_count: Active teams after the attempt
        limit: The concurrent team ceiling that was applied
    """

    ok: bool
    active_count: int
    limit: int


def _counters(scope: dict[str, Any]) -> RateLimitCounters:
    try:
        return RateLimitCounters.model_validate({"active_teams": scope.get("active_teams") or {}})
    except ValidationError as e:
        logger.warning("Resetting malformed active_teams in session state: %s", e)
        return RateLimitCounters()


def _dump_teams(counters: RateLimitCounters) -> dict[str, Any]:
    return {
        name: record.model_dump(mode="json")
        for name, record in counters.active_teams.items()
    }


class RateLimitStore:
    """
    The only access path to the multi-agent counters.

    Usage:
        store = RateLimitStore(SessionStateFile(path), session_id="abc")
        result = store.try_spawn_team("reviewers", teammates=3, max_teams=4)
        if not result.ok: ...

    Attributes:
        state: The locked session state document
        session_id: Host session the counters belong to, or None
    """

    def __init__(self, state: SessionStateFile, session_id: str | None = None) -> None:
        self.state = state
        self.session_id = session_id

    def _scope(self, doc: dict[str, Any], create: bool = False) -> dict[str, Any]:
        """The part of the document holding this session's counters."""
        if self.session_id is None:
            return doc

        sessions = doc.get(SESSIONS_KEY)
        if not isinstance(sessions, dict):
            if not create:
                return {}
            sessions = doc[SESSIONS_KEY] = {}

        scope = sessions.get(self.session_id)
        if not isinstance(scope, dict):
            if not create:
                return {}
            scope = sessions[self.session_id] = {}
        return scope

    def load(self) -> RateLimitCounters:
        """Read the current counters without locking."""
        return _counters(self._scope(self.state.read()))

    def try_spawn_team(self, name: str | None, teammates: int, max_teams: int) -> SpawnResult:
        """
        Record a new active team if a slot is free.

        Re-creating a team that is already active refreshes its record
        without consuming another slot.

        Raises:
            StateLockError: If the state lock cannot be acquired in time
            StateError: If the state cannot be written
        """
        team = name or UNNAMED_TEAM
        outcome: dict[str, SpawnResult] = {}

        def spawn(doc: dict[str, Any]) -> dict[str, Any]:
            teams = dict(_counters(self._scope(doc)).active_teams)
            if team not in teams and len(teams) >= max_teams:
                outcome["result"] = SpawnResult(ok=False, active_count=len(teams), limit=max_teams)
                return doc

            teams[team] = TeamRecord(teammates=teammates, created_at=datetime.now(UTC))
            scope = self._scope(doc, create=True)
            scope["active_teams"] = _dump_teams(RateLimitCounters(active_teams=teams))
            scope["active_team"] = team
            outcome["result"] = SpawnResult(ok=True, active_count=len(teams), limit=max_teams)
            return doc

        self.state.update(spawn)
        result = outcome["result"]
        logger.debug("Team spawn %r (session %s): %s", team, self.session_id, result)
        return result

    def release_team(self, name: str | None) -> bool:
        """
        Remove a team from the active set.

        Returns:
            True if the team was active
        """
        team = name or UNNAMED_TEAM
        released: list[bool] = []

        def release(doc: dict[str, Any]) -> dict[str, Any]:
            teams = dict(_counters(self._scope(doc)).active_teams)
            released.append(teams.pop(team, None) is not None)
            if not released[0]:
                return doc

            scope = self._scope(doc, create=True)
            scope["active_teams"] = _dump_teams(RateLimitCounters(active_teams=teams))
            if scope.get("active_team") == team:
                scope.pop("active_team")
            return doc

        self.state.update(release)
        logger.debug("Team release %r (session %s): %s", team, self.session_id, released[0])
        return released[0]

    def reset(self) -> None:
        """Forget every active team of this session (or of every session when unscoped)."""

        def clear(doc: dict[str, Any]) -> dict[str, Any]:
            if self.session_id is None:
                doc["active_teams"] = {}
                doc.pop("active_team", None)
                doc.pop(SESSIONS_KEY, None)
                return doc

            sessions = doc.get(SESSIONS_KEY)
            if isinstance(sessions, dict):
                sessions.pop(self.session_id, None)
            return doc

        self.state.update(clear)

    def sessions(self) -> list[str]:
        """Session ids that have counters in the document."""
        sessions = self.state.read().get(SESSIONS_KEY)
        return sorted(sessions) if isinstance(sessions, dict) else []
