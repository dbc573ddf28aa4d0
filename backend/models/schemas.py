"""Pydantic schemas for pipeline configuration documents.

This module defines the persisted shape of a pipeline configuration. Wire
keys are camelCase (``schemaVersion``, ``contextSources``) while Python
attributes are snake_case; both spellings are accepted on input.

Document models are frozen: the orchestration and migration engines never
mutate a caller's document, they produce new values with ``model_copy``.
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

USER_INPUT_SOURCE_ID = "user_input"


def agent_output_source_id(agent_id: int) -> str:
    """Return the context source id (and placeholder name) for an agent's output."""
    return f"agent_{agent_id}_output"


class RoleCategory(StrEnum):
    """Functional role categories an agent can take."""

    DESIGNER = "designer"
    RESEARCHER = "researcher"
    AUTHOR = "author"
    ANALYST = "analyst"
    STRATEGIST = "strategist"
    ARCHITECT = "architect"


class ContextType(StrEnum):
    """Where a context source's text comes from."""

    USER_INPUT = "user_input"
    AGENT_OUTPUT = "agent_output"


class OutputFormat(StrEnum):
    """Declared format of an agent's generated response."""

    JSON = "json"
    MARKDOWN = "markdown"
    TEXT = "text"


class _DocumentModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class AgentRole(_DocumentModel):
    """Display identity and functional category of an agent."""

    title: str = Field(
        description="Role title shown to reviewers",
        examples=["Product Strategist"],
    )
    category: RoleCategory = Field(description="Functional role category")
    description: str = Field(default="", description="What the role is responsible for")
    icon: str = Field(default="", description="Icon identifier for UI consumers")


class ContextSourceRef(_DocumentModel):
    """One input an agent may draw on: the user input or another agent's output."""

    id: str = Field(
        description="Source identifier, also the prompt placeholder name",
        examples=["user_input", "agent_1_output"],
    )
    label: str = Field(default="", description="Display name")
    type: ContextType = Field(description="Kind of source")
    agent_id: int | None = Field(
        default=None,
        description="Upstream agent id when type is agent_output",
    )
    selected: bool = Field(default=True, description="Whether the source is active")

    @property
    def is_user_input(self) -> bool:
        return self.type == ContextType.USER_INPUT

    @classmethod
    def user_input(cls, label: str = "User Input", selected: bool = True) -> "ContextSourceRef":
        return cls(
            id=USER_INPUT_SOURCE_ID,
            label=label,
            type=ContextType.USER_INPUT,
            selected=selected,
        )

    @classmethod
    def agent_output(
        cls,
        agent_id: int,
        label: str | None = None,
        selected: bool = True,
    ) -> "ContextSourceRef":
        return cls(
            id=agent_output_source_id(agent_id),
            label=label or f"Agent {agent_id} Output",
            type=ContextType.AGENT_OUTPUT,
            agent_id=agent_id,
            selected=selected,
        )


class TaskConfig(_DocumentModel):
    """Prompt template and generation parameters for an agent.

    Ranges (temperature in [0, 1], positive max_tokens) are checked by
    ``agents.validation`` so that a document can be loaded and reported on
    rather than rejected at parse time.
    """

    prompt_template: str = Field(description="Template with {source_id} placeholders")
    output_format: OutputFormat = Field(default=OutputFormat.MARKDOWN)
    max_tokens: int = Field(default=2000)
    temperature: float = Field(default=0.7)
    instructions: list[str] = Field(default_factory=list)


class AgentSpec(_DocumentModel):
    """One pipeline stage."""

    id: int = Field(description="Identifier unique within the document")
    role: AgentRole
    context_sources: list[ContextSourceRef] = Field(default_factory=list)
    task: TaskConfig

    @property
    def selected_sources(self) -> list[ContextSourceRef]:
        return [source for source in self.context_sources if source.selected]

    @property
    def upstream_agent_ids(self) -> list[int]:
        """Ids of agents whose output this agent consumes, in declared order."""
        ids: list[int] = []
        for source in self.selected_sources:
            if (
                source.type == ContextType.AGENT_OUTPUT
                and source.agent_id is not None
                and source.agent_id not in ids
            ):
                ids.append(source.agent_id)
        return ids


class GenerationSettings(_DocumentModel):
    """Document-wide generation defaults."""

    default_model: str = Field(default="", description="Model identifier for all agents")
    auto_save: bool = Field(default=True)
    quality_gates: bool = Field(
        default=False,
        description="When true, prompts and responses wait for explicit approval",
    )


class ConfigurationDocument(_DocumentModel):
    """Root persisted entity describing a whole pipeline."""

    schema_version: str = Field(examples=["0.7.1"])
    compatible_versions: list[str] = Field(default_factory=list)
    description: str = Field(default="")
    created: str | None = Field(default=None, description="ISO timestamp")
    modified: str | None = Field(default=None, description="ISO timestamp")
    agents: list[AgentSpec] = Field(default_factory=list)
    settings: GenerationSettings = Field(default_factory=GenerationSettings)

    def get_agent(self, agent_id: int) -> AgentSpec | None:
        for agent in self.agents:
            if agent.id == agent_id:
                return agent
        return None

    def to_raw(self) -> dict[str, Any]:
        """Serialize to the camelCase wire shape used for persistence."""
        return self.model_dump(mode="json", by_alias=True)
