"""
Multi-agent coordination validator.

Guards the tools agents use to form teams, message each other and share
tasks:

    TeamCreate    teammate ceiling, empty team confirmation, and the
                  concurrent team ceiling (durable, shared counters)
    TeamDelete    asks before the call (deleting a team stops all its
                  teammates); after the call, frees the team's slot
    SendMessage   size ceiling, then injection and destructive content
    TaskCreate/   credentials and API tokens in any free-text field
    TaskUpdate
    TaskGet/      read-only, always allowed
    TaskList
"""

import logging

from hookguard.policy.builtins import MESSAGE_BUILTIN_RULES, SECRET_RULES
from hookguard.policy.engine import RuleEngine
from hookguard.policy.resolver import reduce
from hookguard.schema import (
    Decision,
    PolicyConfig,
    SendMessageCall,
    TaskCall,
    TaskReadCall,
    TeamCreateCall,
    TeamDeleteCall,
    ToolCall,
)
from hookguard.validators.base import ValidationContext, Validator

logger = logging.getLogger(__name__)

_MESSAGE_ENGINE = RuleEngine(MESSAGE_BUILTIN_RULES)
_SECRET_ENGINE = RuleEngine(SECRET_RULES)


class MultiAgentValidator(Validator):
    """Validates team, message and task tools."""

    tool_names = (
        "TeamCreate",
        "TeamDelete",
        "SendMessage",
        "TaskCreate",
        "TaskUpdate",
        "TaskGet",
        "TaskList",
    )

    def validate(self, call: ToolCall, config: PolicyConfig, context: ValidationContext) -> Decision:
        if isinstance(call, TeamCreateCall):
            return self._team_create(call, config, context)
        if isinstance(call, TeamDeleteCall):
            return self._team_delete(call, context)
        if isinstance(call, SendMessageCall):
            return self._send_message(call, config)
        if isinstance(call, TaskCall):
            return self._task(call)
        if isinstance(call, TaskReadCall):
            return Decision.allow("Read-only task operation")

        msg = f"MultiAgentValidator cannot validate {call.kind} calls"
        raise TypeError(msg)

    # =========================================================================
    # Teams
    # =========================================================================

    def _team_create(
        self,
        call: TeamCreateCall,
        config: PolicyConfig,
        context: ValidationContext,
    ) -> Decision:
        size = len(call.teammates)
        max_teammates = config.limits.max_teammates

        if size > max_teammates:
            return Decision.block(
                f"Team size {size} exceeds maximum ({max_teammates})",
                detail="Split the work across smaller teams.",
                category="team_size",
            )

        if size == 0:
            return Decision.ask(
                "Creating a team with no teammates. Continue?",
                category="empty_team",
            )

        if context.rate_limits is None:
            logger.debug("No session state; concurrent team limit not enforced")
            return Decision.allow(f"Team of {size} within limits")

        max_teams = config.limits.max_concurrent_teams
        result = context.rate_limits.try_spawn_team(call.team_name, size, max_teams)
        if not result.ok:
            return Decision.block(
                f"Concurrent team limit reached ({result.active_count} of {result.limit} active)",
                detail="Delete a finished team before creating another.",
                category="team_limit",
            )

        return Decision.allow(
            f"Team of {size} created ({result.active_count} of {result.limit} teams active)",
        )

    def _team_delete(self, call: TeamDeleteCall, context: ValidationContext) -> Decision:
        if not context.after_call:
            return Decision.ask(
                "Deleting a team will stop all teammates. Continue?",
                detail=f"Team: {call.team_name}" if call.team_name else None,
                category="team_delete",
            )

        # The delete has happened; free its slot
        if context.rate_limits is not None and context.rate_limits.release_team(call.team_name):
            return Decision.allow(f"Team {call.team_name or '(unnamed)'} deleted; slot released")
        return Decision.allow("Team deleted")

    # =========================================================================
    # Messages and tasks
    # =========================================================================

    def _send_message(self, call: SendMessageCall, config: PolicyConfig) -> Decision:
        size = call.size_bytes
        limit = config.limits.max_message_bytes
        if size > limit:
            return Decision.block(
                f"Message size ({size} bytes) exceeds limit ({limit})",
                detail="Share large content through a file and send its path instead.",
                category="message_size",
            )

        matches = _MESSAGE_ENGINE.evaluate(call.content)
        matches += RuleEngine(config.message_rules).evaluate(call.content)
        return reduce(matches)

    def _task(self, call: TaskCall) -> Decision:
        matches = []
        for text in call.texts:
            matches += _SECRET_ENGINE.evaluate(text)
        return reduce(matches)
