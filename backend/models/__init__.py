"""Models module for configuration documents and run state.

This module exposes the persisted document schema and the transient runtime
models used by the orchestrator.
"""

from models.runtime import (
    AgentOutput,
    AgentRuntimeState,
    AgentState,
    AgentTraceEntry,
    ApprovalAction,
    ApprovalDecision,
    ApprovalKind,
    ApprovalRequest,
    ExecutionTrace,
    JsonOutput,
    MarkdownOutput,
    RunSnapshot,
    RunStatus,
    TextOutput,
)
from models.schemas import (
    USER_INPUT_SOURCE_ID,
    AgentRole,
    AgentSpec,
    ConfigurationDocument,
    ContextSourceRef,
    ContextType,
    GenerationSettings,
    OutputFormat,
    RoleCategory,
    TaskConfig,
    agent_output_source_id,
)

__all__ = [
    # Document schema
    "USER_INPUT_SOURCE_ID",
    "AgentRole",
    "AgentSpec",
    "ConfigurationDocument",
    "ContextSourceRef",
    "ContextType",
    "GenerationSettings",
    "OutputFormat",
    "RoleCategory",
    "TaskConfig",
    "agent_output_source_id",
    # Runtime
    "AgentOutput",
    "AgentRuntimeState",
    "AgentState",
    "AgentTraceEntry",
    "ApprovalAction",
    "ApprovalDecision",
    "ApprovalKind",
    "ApprovalRequest",
    "ExecutionTrace",
    "JsonOutput",
    "MarkdownOutput",
    "RunSnapshot",
    "RunStatus",
    "TextOutput",
]
