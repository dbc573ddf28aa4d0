"""Event type definitions for the pipeline event system.

This module defines the events published while configurations are migrated
and pipeline runs execute. Every meaningful state change produces an event,
so a host can render progress without polling the orchestrator.
"""

import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class EventType(StrEnum):
    """All event types in the pipeline system.

    Events are categorized by:
    - Run lifecycle: Start, pause, completion, and cancellation
    - Agent lifecycle: State transitions, generation, and failure
    - Approval gates: Requests and decisions at prompt and response gates
    - Migration: Planning, finalization, and rejection of schema migrations
    - Observability: Generation metrics
    """

    # Run lifecycle
    RUN_STARTED = "run_started"
    RUN_AWAITING_APPROVAL = "run_awaiting_approval"
    RUN_COMPLETE = "run_complete"
    RUN_CANCELLED = "run_cancelled"
    RUN_ERROR = "run_error"
    RUN_CLOSED = "run_closed"

    # Agent lifecycle
    AGENT_STATE_CHANGED = "agent_state_changed"
    AGENT_PROMPT_RENDERED = "agent_prompt_rendered"
    AGENT_GENERATION_STARTED = "agent_generation_started"
    AGENT_COMPLETE = "agent_complete"
    AGENT_FAILED = "agent_failed"

    # Approval gates
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_RESOLVED = "approval_resolved"

    # Migration
    MIGRATION_PLANNED = "migration_planned"
    MIGRATION_FINALIZED = "migration_finalized"
    MIGRATION_REJECTED = "migration_rejected"

    # Observability
    GENERATION_COMPLETE = "generation_complete"


class PipelineEvent(BaseModel):
    """An event emitted during migration or pipeline execution.

    Each event includes:
    - type: The category of event (from EventType enum)
    - timestamp: Unix timestamp when the event occurred
    - run_id: Which run (or configuration, for migration events) this belongs to
    - agent_id: Which agent produced this event (if applicable)
    - agent_title: The agent's role title (if applicable)
    - data: Event-specific payload

    Payload schemas by event type:

    RUN_STARTED:
        - order: list[int] - Topological execution order
        - quality_gates: bool - Whether approvals are required

    AGENT_STATE_CHANGED:
        - from_state: str - Previous state
        - to_state: str - New state

    AGENT_FAILED:
        - error: str - Failure message
        - error_type: str - Machine-readable error code

    APPROVAL_REQUESTED:
        - kind: str - "prompt" or "response"
        - content: str - Text awaiting review

    APPROVAL_RESOLVED:
        - kind: str - "prompt" or "response"
        - action: str - "approve", "edit" or "reject"

    MIGRATION_PLANNED:
        - source_version: str - Declared version
        - target_version: str - Version after migration
        - pending_changes: int - Mappings requiring review

    GENERATION_COMPLETE:
        - model: str - Model used
        - prompt_chars: int - Prompt length
        - response_chars: int - Response length
        - latency_ms: int - Latency in milliseconds
    """

    type: EventType
    timestamp: float = Field(default_factory=time.time)
    run_id: str
    agent_id: int | None = None
    agent_title: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "type": "agent_state_changed",
                    "timestamp": 1699876543.123,
                    "run_id": "run_abc123",
                    "agent_id": 1,
                    "agent_title": "Market Researcher",
                    "data": {"from_state": "idle", "to_state": "prompt_draft"},
                }
            ]
        }
    }


class GenerationMetrics(BaseModel):
    """Size and latency metrics for a single generation call.

    Attributes:
        model: The model identifier (e.g., "anthropic/claude-3-5-sonnet-20240620")
        prompt_chars: Number of characters in the prompt
        response_chars: Number of characters in the response
        latency_ms: Time taken for the call in milliseconds
    """

    model: str | None = None
    prompt_chars: int
    response_chars: int
    latency_ms: int
