"""
Store module for HookGuard.

Everything HookGuard persists between invocations lives in one JSON
session state document, accessed through SessionStateFile. The
multi-agent counters are reached only through RateLimitStore.
"""

from hookguard.store.ratelimit import RateLimitStore, SpawnResult
from hookguard.store.session import SessionStateFile, default_state_path

__all__ = [
    "RateLimitStore",
    "SessionStateFile",
    "SpawnResult",
    "default_state_path",
]
