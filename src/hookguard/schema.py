"""
Schema definitions for HookGuard.

This module defines the Pydantic models used throughout HookGuard:
- PolicyRule/RuleMatch: Pattern rules and their evaluation results
- Limits/PolicyConfig: The loaded policy configuration
- HookContext: The raw invocation context sent by the host
- ToolCall variants: The typed, decoded form of a tool invocation
- Decision: The single verdict rendered for an invocation

Design Decisions:
    - Models are immutable (frozen=True); rules never change once loaded
    - Tool payloads are decoded once, at the boundary, into a tagged union;
      validators never inspect raw payload fields
    - Payloads that do not match any known shape decode to PassThroughCall
"""

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Callable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Enums
# =============================================================================


class Action(str, Enum):
    """
    The verdict a rule or decision carries.

    Precedence is BLOCK > ASK > ALLOW when several rules match.
    """

    ALLOW = "allow"
    ASK = "ask"
    BLOCK = "block"

    @property
    def precedence(self) -> int:
        """Rank used when reducing several matches to one decision."""
        return _ACTION_PRECEDENCE[self]


_ACTION_PRECEDENCE = {Action.ALLOW: 0, Action.ASK: 1, Action.BLOCK: 2}


class PatternKind(str, Enum):
    """How a rule's pattern is interpreted."""

    REGEX = "regex"
    GLOB = "glob"


# =============================================================================
# Rule Models
# =============================================================================


class PolicyRule(BaseModel):
    """
    A single pattern rule.

    Attributes:
        pattern: Regular expression (searched) or glob (matched on paths)
        category: Grouping name reported when the rule decides the outcome
        action: What a match means (allow, ask, block)
        message: Template rendered into the decision reason.
            Supports {category}, {match} and {candidate}.
        kind: Whether pattern is a regex or a glob
        case_sensitive: Whether matching respects case
        remediation: Optional hint appended to the decision detail
        builtin: True for the non-configurable checks shipped with HookGuard
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    pattern: str = Field(..., min_length=1, description="Regex or glob pattern")
    category: str = Field(..., min_length=1, description="Rule category")
    action: Action = Field(default=Action.BLOCK, description="Verdict on match")
    message: str = Field(default="", description="Reason template")
    kind: PatternKind = Field(default=PatternKind.REGEX, description="Pattern syntax")
    case_sensitive: bool = Field(default=False, description="Case-sensitive matching")
    remediation: str | None = Field(default=None, description="Hint shown on block/ask")
    builtin: bool = Field(default=False, description="Shipped, non-configurable check")


class RuleMatch(BaseModel):
    """
    The outcome of evaluating one rule against one candidate.

    Attributes:
        rule: The rule that was evaluated
        matched: Whether the pattern matched the candidate
        match_text: The matched substring (or the whole path for globs)
        candidate: The string the rule was evaluated against
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    rule: PolicyRule
    matched: bool
    match_text: str | None = None
    candidate: str = ""


# =============================================================================
# Policy Configuration
# =============================================================================


class Limits(BaseModel):
    """
    Numeric limits enforced by the built-in checks.

    Attributes:
        max_teammates: Maximum teammates in a single team
        max_concurrent_teams: Maximum teams active at the same time
        max_message_bytes: Maximum SendMessage content size in bytes
        max_write_bytes: Maximum Write content size in bytes (0 = unchecked)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_teammates: int = Field(default=8, description="Teammates per team", ge=0)
    max_concurrent_teams: int = Field(default=4, description="Active teams", ge=0)
    max_message_bytes: int = Field(
        default=10 * 1024,  # 10 KiB
        description="SendMessage content ceiling in bytes",
        ge=0,
    )
    max_write_bytes: int = Field(
        default=0,
        description="Write content ceiling in bytes (0 = unchecked)",
        ge=0,
    )


class PolicyConfig(BaseModel):
    """
    Complete policy configuration for one invocation.

    Rules are stored flat and in configured order; the loader expands the
    category-keyed YAML sections and the allow_paths/deny_paths shorthands.

    Attributes:
        version: Policy file format version
        limits: Numeric limits for the built-in checks
        bash_rules: Rules applied to Bash command lines
        path_rules: Rules applied to root-relative file paths
        message_rules: Rules applied to inter-agent message bodies
        source: Where the policy came from (file path or "defaults")
        skipped_entries: Rule entries dropped because of an invalid shape
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: int = Field(default=1, description="Policy format version")
    limits: Limits = Field(default_factory=Limits)
    bash_rules: list[PolicyRule] = Field(default_factory=list)
    path_rules: list[PolicyRule] = Field(default_factory=list)
    message_rules: list[PolicyRule] = Field(default_factory=list)
    source: str = Field(default="defaults", description="Policy source")
    skipped_entries: list[str] = Field(default_factory=list)


# =============================================================================
# Decision
# =============================================================================


class Decision(BaseModel):
    """
    The verdict for one invocation.

    Attributes:
        action: allow, ask or block
        reason: Human-readable explanation
        detail: Optional remediation and secondary matches
        category: Category of the rule or check that decided
        fail_open: True when the engine could not evaluate and allowed by rule
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    action: Action
    reason: str
    detail: str | None = None
    category: str | None = None
    fail_open: bool = False

    @property
    def allowed(self) -> bool:
        """Whether the call may proceed without confirmation."""
        return self.action == Action.ALLOW

    @property
    def blocked(self) -> bool:
        """Whether the call is refused."""
        return self.action == Action.BLOCK

    @classmethod
    def allow(
        cls,
        reason: str = "No policy rule matched",
        category: str | None = None,
        fail_open: bool = False,
    ) -> "Decision":
        """Create an ALLOW decision."""
        return cls(action=Action.ALLOW, reason=reason, category=category, fail_open=fail_open)

    @classmethod
    def ask(cls, reason: str, detail: str | None = None, category: str | None = None) -> "Decision":
        """Create an ASK decision."""
        return cls(action=Action.ASK, reason=reason, detail=detail, category=category)

    @classmethod
    def block(cls, reason: str, detail: str | None = None, category: str | None = None) -> "Decision":
        """Create a BLOCK decision."""
        return cls(action=Action.BLOCK, reason=reason, detail=detail, category=category)


# =============================================================================
# Invocation Context
# =============================================================================


class HookContext(BaseModel):
    """
    The JSON object a host sends for one proposed tool call.

    Hosts add fields of their own (cwd, hook_event_name, ...); they are
    ignored here.

    Attributes:
        tool_name: The tool the agent wants to run
        tool_input: The tool's arguments, opaque at this layer
        tool_output: Present only for post-execution hooks
        session_id: The host session; team counters are kept per session
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    tool_name: str = ""
    tool_input: dict[str, Any] = Field(default_factory=dict)
    tool_output: Any = None
    session_id: str | None = None

    @field_validator("tool_input", mode="before")
    @classmethod
    def coerce_missing_input(cls, v: Any) -> Any:
        """Treat an explicit null tool_input as empty."""
        return {} if v is None else v

    @field_validator("session_id", mode="before")
    @classmethod
    def coerce_session_id(cls, v: Any) -> Any:
        """Accept numeric ids; other shapes mean no session."""
        if isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            return str(v)
        if isinstance(v, str) and v:
            return v
        return None

    @property
    def after_call(self) -> bool:
        """Whether the tool has already run (a post-execution invocation)."""
        return self.tool_output is not None


# =============================================================================
# Tool Call Variants
# =============================================================================


class BashCall(BaseModel):
    """A shell command proposed through the Bash tool."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["bash"] = "bash"
    tool_name: str = "Bash"
    command: str = Field(..., min_length=1)


class PathCall(BaseModel):
    """A file write or edit; content is only checked for Write."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["path"] = "path"
    tool_name: str
    file_path: str = Field(..., min_length=1)
    content: str | None = None


class TeamCreateCall(BaseModel):
    """Creation of a multi-agent team."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["team_create"] = "team_create"
    tool_name: str = "TeamCreate"
    team_name: str | None = None
    teammates: list[Any] = Field(default_factory=list)


class TeamDeleteCall(BaseModel):
    """Deletion of a multi-agent team."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["team_delete"] = "team_delete"
    tool_name: str = "TeamDelete"
    team_name: str | None = None


class SendMessageCall(BaseModel):
    """A message sent from one agent to another."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["send_message"] = "send_message"
    tool_name: str = "SendMessage"
    content: str = ""
    recipient: str | None = None

    @property
    def size_bytes(self) -> int:
        """Size of the message body in UTF-8 bytes."""
        return len(self.content.encode("utf-8"))


class TaskCall(BaseModel):
    """TaskCreate/TaskUpdate; texts holds every free-text field sent."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["task"] = "task"
    tool_name: str
    texts: list[str] = Field(default_factory=list)


class TaskReadCall(BaseModel):
    """TaskGet/TaskList; nothing to guard."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["task_read"] = "task_read"
    tool_name: str


class PassThroughCall(BaseModel):
    """A call outside this engine's authority, or one with an unknown shape."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["pass_through"] = "pass_through"
    tool_name: str = ""
    reason: str = ""


ToolCall = Annotated[
    Union[
        BashCall,
        PathCall,
        TeamCreateCall,
        TeamDeleteCall,
        SendMessageCall,
        TaskCall,
        TaskReadCall,
        PassThroughCall,
    ],
    Field(discriminator="kind"),
]


# =============================================================================
# Rate Limit State
# =============================================================================


class TeamRecord(BaseModel):
    """One active team as tracked in the session state document."""

    model_config = ConfigDict(extra="ignore")

    teammates: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class RateLimitCounters(BaseModel):
    """Snapshot of the durable multi-agent counters."""

    model_config = ConfigDict(extra="ignore")

    active_teams: dict[str, TeamRecord] = Field(default_factory=dict)

    @property
    def active_team_count(self) -> int:
        """Number of teams currently active."""
        return len(self.active_teams)


# =============================================================================
# Tool Call Decoding
# =============================================================================


def _first_str(data: dict[str, Any], *keys: str, required: bool = False) -> str | None:
    """Return the first string value among keys; reject non-string values."""
    for key in keys:
        if key in data and data[key] is not None:
            value = data[key]
            if not isinstance(value, str):
                msg = f"'{key}' must be a string, got {type(value).__name__}"
                raise ValueError(msg)
            return value
    if required:
        msg = f"missing required field: {' or '.join(keys)}"
        raise ValueError(msg)
    return None


def decode_bash(tool_name: str, data: dict[str, Any]) -> BashCall:
    """Decode a Bash payload: {"command": str}."""
    return BashCall(tool_name=tool_name, command=_first_str(data, "command", required=True))


def decode_path(tool_name: str, data: dict[str, Any]) -> PathCall:
    """Decode a Write/Edit payload: {"file_path": str, "content"?: str}."""
    file_path = _first_str(data, "file_path", "path", required=True)
    content = data.get("content")
    return PathCall(
        tool_name=tool_name,
        file_path=file_path,
        content=content if isinstance(content, str) else None,
    )


def decode_team_create(tool_name: str, data: dict[str, Any]) -> TeamCreateCall:
    """Decode a TeamCreate payload: {"team_name"|"name"?: str, "teammates"?: list}."""
    teammates = data.get("teammates")
    if teammates is None:
        teammates = []
    if not isinstance(teammates, list):
        msg = f"'teammates' must be a list, got {type(teammates).__name__}"
        raise ValueError(msg)
    return TeamCreateCall(
        tool_name=tool_name,
        team_name=_first_str(data, "team_name", "name"),
        teammates=teammates,
    )


def decode_team_delete(tool_name: str, data: dict[str, Any]) -> TeamDeleteCall:
    """Decode a TeamDelete payload."""
    return TeamDeleteCall(tool_name=tool_name, team_name=_first_str(data, "team_name", "name"))


def decode_send_message(tool_name: str, data: dict[str, Any]) -> SendMessageCall:
    """
    Decode a SendMessage payload.

    The body may arrive as "message" or "content". Structured bodies are
    serialised so size and content checks still see them.
    """
    body: Any = ""
    for key in ("message", "content"):
        if data.get(key) is not None:
            body = data[key]
            break
    if isinstance(body, (dict, list)):
        body = json.dumps(body, ensure_ascii=False)
    elif not isinstance(body, str):
        msg = f"message body must be text, got {type(body).__name__}"
        raise ValueError(msg)
    return SendMessageCall(
        tool_name=tool_name,
        content=body,
        recipient=_first_str(data, "recipient", "to"),
    )


def decode_task(tool_name: str, data: dict[str, Any]) -> TaskCall:
    """Decode TaskCreate/TaskUpdate; every free-text field is kept for scanning."""
    texts = [
        data[key]
        for key in ("subject", "description", "prompt", "activeForm")
        if isinstance(data.get(key), str)
    ]
    return TaskCall(tool_name=tool_name, texts=texts)


def decode_task_read(tool_name: str, data: dict[str, Any]) -> TaskReadCall:
    """Decode TaskGet/TaskList; the payload is irrelevant."""
    return TaskReadCall(tool_name=tool_name)


Decoder = Callable[[str, dict[str, Any]], BaseModel]

TOOL_DECODERS: dict[str, Decoder] = {
    "Bash": decode_bash,
    "Write": decode_path,
    "Edit": decode_path,
    "TeamCreate": decode_team_create,
    "TeamDelete": decode_team_delete,
    "SendMessage": decode_send_message,
    "TaskCreate": decode_task,
    "TaskUpdate": decode_task,
    "TaskGet": decode_task_read,
    "TaskList": decode_task_read,
}


def decode_tool_call(context: HookContext) -> ToolCall:
    """
    Decode a HookContext into its ToolCall variant.

    Unknown tools and payloads with an unexpected shape decode to
    PassThroughCall rather than raising.

    Args:
        context: The parsed invocation context

    Returns:
        The typed tool call
    """
    decoder = TOOL_DECODERS.get(context.tool_name)
    if decoder is None:
        return PassThroughCall(
            tool_name=context.tool_name,
            reason=f"No validator registered for tool '{context.tool_name}'",
        )

    try:
        return decoder(context.tool_name, context.tool_input)
    except ValueError as e:
        # pydantic.ValidationError is a ValueError
        return PassThroughCall(
            tool_name=context.tool_name,
            reason=f"Unrecognised {context.tool_name} payload: {e}",
        )


def parse_hook_context(raw: str) -> HookContext:
    """
    Parse the raw JSON text sent by the host.

    Empty input yields an empty context (tool_name="").

    Raises:
        ValueError: If the text is not a JSON object
    """
    if not raw.strip():
        return HookContext()
    data = json.loads(raw)
    if not isinstance(data, dict):
        msg = f"hook input must be a JSON object, got {type(data).__name__}"
        raise ValueError(msg)
    return HookContext.model_validate(data)
