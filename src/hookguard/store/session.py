"""
Session state document for HookGuard.

One JSON file per project holds everything that must survive between
invocations: the multi-agent counters and the hook metrics. Every
invocation is a separate process, so all writes are read-modify-write
cycles under an exclusive OS lock on a sidecar file, and the new
document replaces the old one atomically.

Design Principles:
    - Tolerant reads: a missing or corrupt document reads as empty
    - Atomic writes: temp file in the same directory, then os.replace
    - Bounded waits: lock acquisition gives up after a timeout
    - Foreign keys are preserved: other tools share this document

Locking:
    - Unix: fcntl.flock(LOCK_EX | LOCK_NB), polled
    - Windows: msvcrt.locking(LK_NBLCK), polled
    - The lock file is <state>.lock
"""

import json
import logging
import os
import sys
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Generator, Mapping

from hookguard.errors import StateError, StateLockError

logger = logging.getLogger(__name__)

# Environment override for the state document location
ENV_STATE = "HOOKGUARD_STATE"

STATE_FILENAME = "session-state.json"

# Lock acquisition bound and polling interval, in seconds
DEFAULT_LOCK_TIMEOUT = 2.0
_LOCK_POLL_INTERVAL = 0.01


def default_state_path(project_root: Path, env: Mapping[str, str] | None = None) -> Path:
    """Return the state document path, honouring $HOOKGUARD_STATE."""
    env = os.environ if env is None else env
    override = env.get(ENV_STATE)
    if override:
        return Path(override).expanduser()
    return project_root / ".hookguard" / STATE_FILENAME


def _try_lock(handle: Any) -> bool:
    if sys.platform == "win32":
        import msvcrt

        try:
            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    import fcntl

    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        return False
    return True


def _unlock(handle: Any) -> None:
    if sys.platform == "win32":
        import msvcrt

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        import fcntl

        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class SessionStateFile:
    """
    Locked access to the session state JSON document.

    Usage:
        state = SessionStateFile(Path(".hookguard/session-state.json"))
        data = state.read()

        def bump(doc):
            doc["counter"] = doc.get("counter", 0) + 1
            return doc

        state.update(bump)

    Attributes:
        path: The state document
        lock_path: The sidecar lock file
        lock_timeout: Seconds to wait for the lock before giving up
    """

    def __init__(self, path: Path | str, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.lock_timeout = lock_timeout

    def read(self) -> dict[str, Any]:
        """
        Read the document without locking.

        Returns:
            The parsed document, or {} if it is missing, unreadable or not
            a JSON object
        """
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Cannot read session state %s: %s", self.path, e)
            return {}

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning("Ignoring corrupt session state %s: %s", self.path, e)
            return {}

        if not isinstance(data, dict):
            logger.warning("Ignoring session state %s: not a JSON object", self.path)
            return {}
        return data

    @contextmanager
    def lock(self) -> Generator[None, None, None]:
        """
        Hold the exclusive lock for the duration of the block.

        Raises:
            StateLockError: If the lock is not acquired within lock_timeout
            StateError: If the lock file cannot be opened
        """
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self.lock_path, "a+")
        except OSError as e:
            raise StateError(
                path=str(self.lock_path),
                operation="lock",
                message=f"Cannot open lock file {self.lock_path}: {e}",
            ) from e

        try:
            deadline = time.monotonic() + self.lock_timeout
            while not _try_lock(handle):
                if time.monotonic() >= deadline:
                    raise StateLockError(path=str(self.path), timeout_seconds=self.lock_timeout)
                time.sleep(_LOCK_POLL_INTERVAL)

            try:
                yield
            finally:
                _unlock(handle)
        finally:
            handle.close()

    def write(self, data: dict[str, Any]) -> None:
        """
        Replace the document atomically. Callers must hold the lock.

        Raises:
            StateError: If the document cannot be written
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                dir=self.path.parent,
            )
        except OSError as e:
            raise StateError(
                path=str(self.path),
                operation="write",
                message=f"Cannot write session state {self.path}: {e}",
            ) from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, default=str)
                f.write("\n")
            os.replace(tmp_name, self.path)
        except (OSError, TypeError, ValueError) as e:
            try:
                os.unlink(tmp_name)
            except OSError:
                logger.debug("Could not remove temp file %s", tmp_name)
            raise StateError(
                path=str(self.path),
                operation="write",
                message=f"Cannot write session state {self.path}: {e}",
            ) from e

    def update(self, fn: Callable[[dict[str, Any]], dict[str, Any] | None]) -> dict[str, Any]:
        """
        Read-modify-write the document under the exclusive lock.

        Args:
            fn: Receives the current document and returns the new one.
                Returning None keeps the (possibly mutated) input.

        Returns:
            The document as written

        Raises:
            StateLockError: If the lock cannot be acquired in time
            StateError: If the document cannot be written
        """
        with self.lock():
            current = self.read()
            updated = fn(current)
            if updated is None:
                updated = current
            self.write(updated)
            return updated

    def __repr__(self) -> str:
        return f"<SessionStateFile: {self.path}>"
