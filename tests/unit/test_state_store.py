"""
Unit tests for the session state document and rate limit counters.

Tests cover:
- Tolerant reads of missing, corrupt and non-object documents
- Atomic, key-preserving read-modify-write
- Bounded lock waits
- Team spawn, release and reset
- Concurrent spawns never exceeding the ceiling
"""

import json
import threading
from pathlib import Path

import pytest

from hookguard.errors import StateLockError
from hookguard.store import RateLimitStore, SessionStateFile, default_state_path
from hookguard.store.ratelimit import UNNAMED_TEAM


# =============================================================================
# SessionStateFile
# =============================================================================


class TestRead:
    """Reads never raise."""

    def test_missing(self, state_file: SessionStateFile) -> None:
        assert state_file.read() == {}

    def test_corrupt(self, state_file: SessionStateFile) -> None:
        state_file.path.write_text("{not json")
        assert state_file.read() == {}

    def test_not_an_object(self, state_file: SessionStateFile) -> None:
        state_file.path.write_text("[1, 2, 3]")
        assert state_file.read() == {}

    def test_valid(self, state_file: SessionStateFile) -> None:
        state_file.path.write_text('{"a": 1}')
        assert state_file.read() == {"a": 1}


class TestUpdate:
    """Locked read-modify-write."""

    def test_creates_document(self, temp_dir: Path) -> None:
        state = SessionStateFile(temp_dir / "nested" / "state.json")
        state.update(lambda doc: {**doc, "x": 1})
        assert json.loads(state.path.read_text()) == {"x": 1}

    def test_preserves_foreign_keys(self, state_file: SessionStateFile) -> None:
        state_file.path.write_text('{"other_tool": {"keep": true}}')

        def bump(doc):
            doc["counter"] = doc.get("counter", 0) + 1
            return doc

        state_file.update(bump)
        state_file.update(bump)
        assert state_file.read() == {"other_tool": {"keep": True}, "counter": 2}

    def test_none_keeps_mutated_document(self, state_file: SessionStateFile) -> None:
        def mutate(doc):
            doc["y"] = 2

        result = state_file.update(mutate)
        assert result == {"y": 2}
        assert state_file.read() == {"y": 2}

    def test_replaces_corrupt_document(self, state_file: SessionStateFile) -> None:
        state_file.path.write_text("garbage")
        state_file.update(lambda doc: {"fresh": True})
        assert state_file.read() == {"fresh": True}

    def test_no_temp_files_left(self, state_file: SessionStateFile) -> None:
        state_file.update(lambda doc: {"a": 1})
        leftovers = [p for p in state_file.path.parent.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_lock_file_is_sidecar(self, state_file: SessionStateFile) -> None:
        state_file.update(lambda doc: doc)
        assert state_file.lock_path.name == "session-state.json.lock"
        assert state_file.lock_path.exists()

    def test_lock_timeout(self, state_file: SessionStateFile) -> None:
        contender = SessionStateFile(state_file.path, lock_timeout=0.05)
        with state_file.lock():
            with pytest.raises(StateLockError):
                contender.update(lambda doc: {"never": True})
        assert state_file.read() == {}

    def test_lock_released_after_error(self, state_file: SessionStateFile) -> None:
        def boom(doc):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            state_file.update(boom)

        quick = SessionStateFile(state_file.path, lock_timeout=0.05)
        quick.update(lambda doc: {"ok": True})
        assert state_file.read() == {"ok": True}


class TestDefaultStatePath:
    """Location of the state document."""

    def test_project_default(self, temp_dir: Path) -> None:
        assert default_state_path(temp_dir, env={}) == temp_dir / ".hookguard" / "session-state.json"

    def test_env_override(self, temp_dir: Path) -> None:
        custom = temp_dir / "elsewhere.json"
        assert default_state_path(temp_dir, env={"HOOKGUARD_STATE": str(custom)}) == custom


# =============================================================================
# RateLimitStore
# =============================================================================


class TestRateLimitStore:
    """Team counters."""

    def test_spawn_records_team(self, rate_limits: RateLimitStore, state_file: SessionStateFile) -> None:
        result = rate_limits.try_spawn_team("reviewers", teammates=3, max_teams=4)
        assert result.ok
        assert result.active_count == 1
        assert result.limit == 4

        doc = state_file.read()
        assert doc["active_team"] == "reviewers"
        assert doc["active_teams"]["reviewers"]["teammates"] == 3
        assert "created_at" in doc["active_teams"]["reviewers"]

    def test_unnamed_team(self, rate_limits: RateLimitStore) -> None:
        rate_limits.try_spawn_team(None, teammates=1, max_teams=4)
        assert UNNAMED_TEAM in rate_limits.load().active_teams

    def test_ceiling(self, rate_limits: RateLimitStore) -> None:
        for name in ("a", "b"):
            assert rate_limits.try_spawn_team(name, 1, max_teams=2).ok
        result = rate_limits.try_spawn_team("c", 1, max_teams=2)
        assert not result.ok
        assert result.active_count == 2
        assert "c" not in rate_limits.load().active_teams

    def test_existing_team_does_not_count_twice(self, rate_limits: RateLimitStore) -> None:
        assert rate_limits.try_spawn_team("a", 1, max_teams=1).ok
        result = rate_limits.try_spawn_team("a", 5, max_teams=1)
        assert result.ok
        assert result.active_count == 1

    def test_release(self, rate_limits: RateLimitStore, state_file: SessionStateFile) -> None:
        rate_limits.try_spawn_team("a", 1, max_teams=4)
        assert rate_limits.release_team("a") is True
        assert rate_limits.release_team("a") is False
        doc = state_file.read()
        assert doc["active_teams"] == {}
        assert "active_team" not in doc

    def test_release_keeps_other_active_team(self, rate_limits: RateLimitStore, state_file: SessionStateFile) -> None:
        rate_limits.try_spawn_team("a", 1, max_teams=4)
        rate_limits.try_spawn_team("b", 1, max_teams=4)
        rate_limits.release_team("a")
        assert state_file.read()["active_team"] == "b"

    def test_reset(self, rate_limits: RateLimitStore, state_file: SessionStateFile) -> None:
        state_file.path.write_text('{"hook_metrics": {"hooks": {}}}')
        rate_limits.try_spawn_team("a", 1, max_teams=4)
        rate_limits.reset()
        assert rate_limits.load().active_team_count == 0
        assert "hook_metrics" in state_file.read()

    def test_malformed_counters_reset(self, rate_limits: RateLimitStore, state_file: SessionStateFile) -> None:
        state_file.path.write_text('{"active_teams": {"a": {"teammates": -3}}}')
        assert rate_limits.load().active_team_count == 0
        assert rate_limits.try_spawn_team("b", 1, max_teams=1).ok

    def test_sessions_counted_separately(self, state_file: SessionStateFile) -> None:
        first = RateLimitStore(state_file, session_id="s1")
        second = RateLimitStore(state_file, session_id="s2")

        assert first.try_spawn_team("a", 1, max_teams=1).ok
        assert not first.try_spawn_team("b", 1, max_teams=1).ok
        assert second.try_spawn_team("b", 1, max_teams=1).ok

        doc = state_file.read()
        assert list(doc["sessions"]["s1"]["active_teams"]) == ["a"]
        assert list(doc["sessions"]["s2"]["active_teams"]) == ["b"]
        assert "active_teams" not in doc
        assert first.sessions() == ["s1", "s2"]

    def test_session_release(self, state_file: SessionStateFile) -> None:
        store = RateLimitStore(state_file, session_id="s1")
        store.try_spawn_team("a", 1, max_teams=1)
        assert RateLimitStore(state_file, session_id="s2").release_team("a") is False
        assert store.release_team("a") is True
        assert store.try_spawn_team("b", 1, max_teams=1).ok

    def test_session_reset_leaves_other_sessions(self, state_file: SessionStateFile) -> None:
        RateLimitStore(state_file, session_id="s1").try_spawn_team("a", 1, max_teams=4)
        RateLimitStore(state_file, session_id="s2").try_spawn_team("b", 1, max_teams=4)

        RateLimitStore(state_file, session_id="s1").reset()
        assert RateLimitStore(state_file).sessions() == ["s2"]

        RateLimitStore(state_file).reset()
        assert RateLimitStore(state_file).sessions() == []

    def test_malformed_sessions_ignored(self, state_file: SessionStateFile) -> None:
        state_file.path.write_text('{"sessions": "corrupt"}')
        store = RateLimitStore(state_file, session_id="s1")
        assert store.load().active_team_count == 0
        assert store.try_spawn_team("a", 1, max_teams=1).ok
        assert store.sessions() == ["s1"]

    def test_concurrent_spawns_respect_ceiling(self, state_file: SessionStateFile) -> None:
        results = []
        results_lock = threading.Lock()

        def spawn(i: int) -> None:
            store = RateLimitStore(SessionStateFile(state_file.path, lock_timeout=10.0))
            result = store.try_spawn_team(f"team-{i}", 1, max_teams=4)
            with results_lock:
                results.append(result.ok)

        threads = [threading.Thread(target=spawn, args=(i,)) for i in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 4
        assert RateLimitStore(state_file).load().active_team_count == 4
