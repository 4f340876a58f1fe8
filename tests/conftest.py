"""
Pytest configuration and fixtures for HookGuard tests.

This module provides shared fixtures used across unit, integration,
and security tests.
"""

import json
import tempfile
from pathlib import Path
from typing import Any, Callable, Generator

import pytest

from hookguard.config import load_policy_config, load_policy_config_from_string
from hookguard.schema import HookContext, PolicyConfig
from hookguard.store.ratelimit import RateLimitStore
from hookguard.store.session import SessionStateFile
from hookguard.validators.base import ValidationContext


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory) -> None:
    """Keep the developer's environment and user policy out of every test."""
    for name in (
        "CLAUDE_PROJECT_DIR",
        "HOOKGUARD_POLICY",
        "HOOKGUARD_STATE",
        "HOOKGUARD_STDIN_TIMEOUT",
        "HOOKGUARD_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path_factory.mktemp("xdg")))


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def project_root(temp_dir: Path) -> Path:
    """A project directory with an empty .hookguard directory."""
    (temp_dir / ".hookguard").mkdir()
    return temp_dir


@pytest.fixture
def default_config() -> PolicyConfig:
    """The built-in default policy."""
    return load_policy_config(None)


@pytest.fixture
def empty_config() -> PolicyConfig:
    """A policy with no configured rules and default limits."""
    return load_policy_config_from_string("version: 1\n")


@pytest.fixture
def make_config() -> Callable[[str], PolicyConfig]:
    """Build a PolicyConfig from YAML text."""

    def _make(text: str) -> PolicyConfig:
        return load_policy_config_from_string(text, source="test")

    return _make


@pytest.fixture
def state_file(project_root: Path) -> SessionStateFile:
    """Session state document inside the test project."""
    return SessionStateFile(project_root / ".hookguard" / "session-state.json")


@pytest.fixture
def rate_limits(state_file: SessionStateFile) -> RateLimitStore:
    """Rate limit store over the test state document."""
    return RateLimitStore(state_file)


@pytest.fixture
def validation_context(project_root: Path, rate_limits: RateLimitStore) -> ValidationContext:
    """Validation context rooted at the test project."""
    return ValidationContext(project_root=project_root, rate_limits=rate_limits)


@pytest.fixture
def hook_input() -> Callable[..., str]:
    """Serialise a tool call as the host would send it."""

    def _make(tool_name: str, **tool_input: Any) -> str:
        return json.dumps({"tool_name": tool_name, "tool_input": tool_input})

    return _make


@pytest.fixture
def make_context() -> Callable[..., HookContext]:
    """Build a HookContext for a tool call."""

    def _make(tool_name: str, **tool_input: Any) -> HookContext:
        return HookContext(tool_name=tool_name, tool_input=tool_input)

    return _make
