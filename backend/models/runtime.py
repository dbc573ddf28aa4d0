"""Runtime models for a single pipeline run.

These models are owned by the orchestrator for the duration of one run. They
are plain (mutable) pydantic models so that a paused run can be dumped to a
RunSnapshot and restored later.
"""

import time
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class AgentState(StrEnum):
    """Lifecycle states of one agent within a run."""

    IDLE = "idle"
    PROMPT_DRAFT = "prompt_draft"
    PROMPT_APPROVED = "prompt_approved"
    GENERATING = "generating"
    RESPONSE_DRAFT = "response_draft"
    RESPONSE_APPROVED = "response_approved"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL_STATES = frozenset({AgentState.COMPLETE, AgentState.FAILED})


class RunStatus(StrEnum):
    """Overall status reported on an execution trace."""

    RUNNING = "running"
    AWAITING_APPROVAL = "awaiting_approval"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class ApprovalKind(StrEnum):
    """Which gate an approval request belongs to."""

    PROMPT = "prompt"
    RESPONSE = "response"
    MIGRATION = "migration"


class ApprovalAction(StrEnum):
    """Reviewer decision."""

    APPROVE = "approve"
    REJECT = "reject"
    EDIT = "edit"


# -----------------------------------------------------------------------------
# Parsed outputs (tagged by output format)
# -----------------------------------------------------------------------------


class JsonOutput(BaseModel):
    """A response parsed as a JSON value."""

    format: Literal["json"] = "json"
    raw: str
    data: dict[str, Any] | list[Any]


class MarkdownOutput(BaseModel):
    """A markdown response with its heading outline."""

    format: Literal["markdown"] = "markdown"
    raw: str
    headings: list[str] = Field(default_factory=list)


class TextOutput(BaseModel):
    """A plain text response."""

    format: Literal["text"] = "text"
    raw: str


AgentOutput = Annotated[
    JsonOutput | MarkdownOutput | TextOutput,
    Field(discriminator="format"),
]


# -----------------------------------------------------------------------------
# Agent runtime state
# -----------------------------------------------------------------------------


class StateTransition(BaseModel):
    """One committed state change."""

    from_state: AgentState
    to_state: AgentState
    timestamp: float = Field(default_factory=time.time)


class AgentRuntimeState(BaseModel):
    """Transient state of one agent for one run.

    Attributes:
        agent_id: The AgentSpec this state belongs to.
        state: Current lifecycle state.
        current_prompt: Rendered (or reviewer-edited) prompt, once drafted.
        current_response: Generated (or reviewer-edited) response text.
        output: Response parsed according to the agent's output format.
        execution_count: Number of generation attempts.
        error_count: Number of failed attempts.
        last_error: Message of the most recent failure.
        error_type: Machine-readable code of the most recent failure.
        started_at: When the agent left Idle.
        completed_at: When the agent reached a terminal state.
        history: Ordered list of committed transitions.
    """

    agent_id: int
    state: AgentState = AgentState.IDLE
    current_prompt: str | None = None
    current_response: str | None = None
    output: AgentOutput | None = None
    execution_count: int = 0
    error_count: int = 0
    last_error: str | None = None
    error_type: str | None = None
    started_at: float | None = None
    completed_at: float | None = None
    history: list[StateTransition] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def duration_ms(self) -> int | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at) * 1000)


# -----------------------------------------------------------------------------
# Approvals
# -----------------------------------------------------------------------------


class ApprovalRequest(BaseModel):
    """Content surfaced to a reviewer at a gate."""

    run_id: str | None = None
    agent_id: int | None = None
    kind: ApprovalKind
    content: str


class ApprovalDecision(BaseModel):
    """A reviewer's answer to an ApprovalRequest or a pending migration.

    ``content`` replaces the prompt/response on EDIT. ``user_changes`` and
    ``tag_mappings`` only apply to migration review.
    """

    model_config = ConfigDict(populate_by_name=True)

    action: ApprovalAction
    content: str | None = None
    reason: str | None = None
    user_changes: dict[str, Any] = Field(default_factory=dict, alias="userChanges")
    tag_mappings: dict[str, str] | None = Field(default=None, alias="tagMappings")


# -----------------------------------------------------------------------------
# Trace and snapshot
# -----------------------------------------------------------------------------


class AgentTraceEntry(BaseModel):
    """Final view of one agent in an execution trace."""

    agent_id: int
    title: str
    state: AgentState
    prompt: str | None = None
    response: str | None = None
    output: AgentOutput | None = None
    started_at: float | None = None
    completed_at: float | None = None
    duration_ms: int | None = None
    execution_count: int = 0
    error_count: int = 0
    error: str | None = None
    error_type: str | None = None


class ExecutionTrace(BaseModel):
    """Result of driving a run as far as it can currently go."""

    run_id: str
    status: RunStatus
    success: bool
    user_input: str
    order: list[int]
    agents: list[AgentTraceEntry]
    pending_approvals: list[ApprovalRequest] = Field(default_factory=list)
    started_at: float
    completed_at: float | None = None

    def agent(self, agent_id: int) -> AgentTraceEntry:
        for entry in self.agents:
            if entry.agent_id == agent_id:
                return entry
        raise KeyError(agent_id)

    @property
    def failed_agent_ids(self) -> list[int]:
        return [e.agent_id for e in self.agents if e.state == AgentState.FAILED]


class RunSnapshot(BaseModel):
    """Persistable state of a paused run."""

    run_id: str
    schema_version: str
    user_input: str
    started_at: float
    states: list[AgentRuntimeState]
