"""Agent graph, prompts, generation, validation and orchestration.

This module exports the key components needed to execute a pipeline:
- Dependency graph with cycle detection and stable ordering
- Per-agent state machine
- Prompt rendering and role-aware system prompts
- Output parsing per declared format
- Generation clients (LiteLLM-backed and mock)
- Document validation
- The orchestrator that drives a run
"""

from agents.generation import (
    GenerationClient,
    GenerationParams,
    LiteLLMGenerationClient,
    MockGenerationClient,
    create_generation_client,
)
from agents.graph import AgentGraph
from agents.orchestrator import ApprovalHandler, Orchestrator, PipelineRun
from agents.outputs import extract_json_from_response, parse_output
from agents.prompts import (
    RenderedPrompt,
    build_system_prompt,
    find_placeholders,
    render_prompt,
)
from agents.state_machine import ALLOWED_TRANSITIONS, can_transition, transition
from agents.validation import ValidationReport, validate_document, validate_run_request

__all__ = [
    # Graph
    "AgentGraph",
    # State machine
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "transition",
    # Prompts
    "RenderedPrompt",
    "build_system_prompt",
    "find_placeholders",
    "render_prompt",
    # Outputs
    "extract_json_from_response",
    "parse_output",
    # Generation
    "GenerationClient",
    "GenerationParams",
    "LiteLLMGenerationClient",
    "MockGenerationClient",
    "create_generation_client",
    # Validation
    "ValidationReport",
    "validate_document",
    "validate_run_request",
    # Orchestration
    "ApprovalHandler",
    "Orchestrator",
    "PipelineRun",
]
