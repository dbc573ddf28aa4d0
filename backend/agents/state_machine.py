"""Per-agent lifecycle state machine.

An agent moves linearly through draft, approval and generation:

    Idle -> PromptDraft -> PromptApproved -> Generating
         -> ResponseDraft -> ResponseApproved -> Complete

``Failed`` is the alternate terminal state. It is reachable from:

- Idle: an upstream agent failed, so this one never runs
- PromptDraft / ResponseDraft: the reviewer rejected the draft
- PromptApproved: the run was cancelled before generation started
- Generating: generation or output parsing failed, or the run was cancelled

The machine only enforces legality and records history; deciding when to move
is the orchestrator's job.
"""

import structlog

from errors import InvalidTransitionError
from models.runtime import AgentRuntimeState, AgentState, StateTransition

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS: dict[AgentState, frozenset[AgentState]] = {
    AgentState.IDLE: frozenset({AgentState.PROMPT_DRAFT, AgentState.FAILED}),
    AgentState.PROMPT_DRAFT: frozenset({AgentState.PROMPT_APPROVED, AgentState.FAILED}),
    AgentState.PROMPT_APPROVED: frozenset({AgentState.GENERATING, AgentState.FAILED}),
    AgentState.GENERATING: frozenset({AgentState.RESPONSE_DRAFT, AgentState.FAILED}),
    AgentState.RESPONSE_DRAFT: frozenset({AgentState.RESPONSE_APPROVED, AgentState.FAILED}),
    AgentState.RESPONSE_APPROVED: frozenset({AgentState.COMPLETE}),
    AgentState.COMPLETE: frozenset(),
    AgentState.FAILED: frozenset(),
}


def can_transition(from_state: AgentState, to_state: AgentState) -> bool:
    return to_state in ALLOWED_TRANSITIONS[from_state]


def transition(state: AgentRuntimeState, to_state: AgentState) -> StateTransition:
    """Move ``state`` to ``to_state`` and record the change.

    Sets ``started_at`` when the agent first leaves Idle and ``completed_at``
    when it reaches a terminal state.

    Raises:
        InvalidTransitionError: If the move is not allowed.
    """
    from_state = state.state
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(state.agent_id, from_state.value, to_state.value)

    record = StateTransition(from_state=from_state, to_state=to_state)
    state.state = to_state
    state.history.append(record)

    if from_state == AgentState.IDLE and to_state != AgentState.FAILED:
        state.started_at = record.timestamp
    if state.is_terminal:
        state.completed_at = record.timestamp

    logger.debug(
        "agent_state_transition",
        agent_id=state.agent_id,
        from_state=from_state.value,
        to_state=to_state.value,
    )
    return record


def fail(state: AgentRuntimeState, error: Exception | str, error_type: str) -> StateTransition:
    """Move ``state`` to Failed and record the error."""
    record = transition(state, AgentState.FAILED)
    state.last_error = str(error)
    state.error_type = error_type
    return record


def record_generation_error(state: AgentRuntimeState, error: Exception, error_type: str) -> StateTransition:
    """Count a failed generation attempt, then fail the agent."""
    state.error_count += 1
    return fail(state, error, error_type)

