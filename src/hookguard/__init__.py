"""
HookGuard - Policy gate for autonomous-agent tool calls.

HookGuard sits between an agent host and the tools it is about to run.
Every proposed call is rendered a verdict before it executes:
- allow: the call proceeds
- ask: the host relays a confirmation prompt to a human or supervisor
- block: the call is refused with a reason

Example usage (as a PreToolUse hook):
    $ echo '{"tool_name": "Bash", "tool_input": {"command": "ls"}}' | hookguard hook
    $ hookguard explain context.json
    $ hookguard rules
"""

__version__ = "0.1.0"
__author__ = "HookGuard Contributors"

__all__ = [
    "__version__",
    "__author__",
]
