"""Built-in pipeline configurations.

This module provides the documents a host can offer before the user has saved
anything of their own:

- default_document: The canonical seven-agent design document pipeline
- mvp_document: The first three agents of the canonical pipeline, for quick
  prototypes
- BUILT_IN_TEMPLATES: Both of the above, by template name

Every call builds a fresh document stamped with the current time, so callers
can edit the raw form freely.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from models.schemas import ConfigurationDocument, ContextType, OutputFormat, RoleCategory
from versioning.builtin import COMPATIBLE_VERSIONS, CURRENT_VERSION

DEFAULT_PIPELINE_MODEL = "claude-3-sonnet"

MVP_AGENT_COUNT = 3


@dataclass(frozen=True)
class _Stage:
    id: int
    title: str
    category: RoleCategory
    description: str
    icon: str
    upstream: tuple[int, ...]
    prompt: str
    max_tokens: int
    temperature: float
    instructions: tuple[str, ...]


_STAGES: tuple[_Stage, ...] = (
    _Stage(
        id=1,
        title="Product Strategist",
        category=RoleCategory.STRATEGIST,
        description="Analyzes market opportunities and defines product strategy",
        icon="target",
        upstream=(),
        prompt="""\
You are a Product Strategist. Based on the user's creative idea: "{user_input}", \
please analyze and provide strategic insights.

Focus on:
- Market opportunity assessment
- Target audience identification
- Competitive landscape analysis
- Value proposition definition
- Strategic positioning

Provide your analysis in a structured format.""",
        max_tokens=2000,
        temperature=0.7,
        instructions=(
            "Focus on market viability",
            "Identify core value proposition",
            "Consider competitive landscape",
        ),
    ),
    _Stage(
        id=2,
        title="Customer Persona Specialist",
        category=RoleCategory.RESEARCHER,
        description="Develops detailed customer personas and user profiles",
        icon="users",
        upstream=(1,),
        prompt="""\
You are a Customer Persona Specialist. Using the user's creative idea and strategic \
analysis, develop detailed customer personas.

Input:
- User Idea: "{user_input}"
- Strategic Analysis: {agent_1_output}

Create comprehensive customer personas including:
- Demographics
- Psychographics
- Pain points
- Goals and motivations
- User journey stages
- Decision-making factors

Provide detailed, actionable personas.""",
        max_tokens=2500,
        temperature=0.6,
        instructions=(
            "Create realistic personas",
            "Include behavioral insights",
            "Focus on actionable details",
        ),
    ),
    _Stage(
        id=3,
        title="UI/UX Product Manager",
        category=RoleCategory.DESIGNER,
        description="Defines user experience and interface requirements",
        icon="layout",
        upstream=(1, 2),
        prompt="""\
You are a UI/UX Product Manager. Based on the product strategy and customer personas, \
define the user experience and interface requirements.

Input:
- User Idea: "{user_input}"
- Strategy: {agent_1_output}
- Personas: {agent_2_output}

Define:
- User journey flows
- Key user stories
- Interface requirements
- UX principles
- Accessibility considerations
- Mobile responsiveness needs

Focus on user-centered design principles.""",
        max_tokens=2200,
        temperature=0.6,
        instructions=(
            "Prioritize user experience",
            "Consider accessibility",
            "Include mobile-first design",
        ),
    ),
    _Stage(
        id=4,
        title="Creative Director",
        category=RoleCategory.DESIGNER,
        description="Establishes visual identity and creative direction",
        icon="palette",
        upstream=(1, 2, 3),
        prompt="""\
You are a Creative Director. Based on the product strategy, personas, and UX \
requirements, establish the visual identity and creative direction.

Input:
- User Idea: "{user_input}"
- Strategy: {agent_1_output}
- Personas: {agent_2_output}
- UX Requirements: {agent_3_output}

Define:
- Brand identity guidelines
- Color palette and typography
- Visual style and aesthetics
- Brand voice and tone
- Creative assets requirements
- Design system principles

Create a cohesive visual identity that resonates with the target audience.""",
        max_tokens=2000,
        temperature=0.7,
        instructions=(
            "Create cohesive brand identity",
            "Consider target audience preferences",
            "Ensure scalability",
        ),
    ),
    _Stage(
        id=5,
        title="Market Researcher",
        category=RoleCategory.RESEARCHER,
        description="Conducts market analysis and competitive research",
        icon="trending-up",
        upstream=(1,),
        prompt="""\
You are a Market Researcher. Based on the user's idea and strategic analysis, conduct \
comprehensive market research.

Input:
- User Idea: "{user_input}"
- Strategy: {agent_1_output}

Research and analyze:
- Market size and growth potential
- Competitive landscape
- Market trends and opportunities
- Regulatory environment
- Pricing strategies
- Distribution channels
- Market entry strategies

Provide data-driven market insights.""",
        max_tokens=2500,
        temperature=0.5,
        instructions=(
            "Provide data-driven insights",
            "Identify market opportunities",
            "Analyze competitive landscape",
        ),
    ),
    _Stage(
        id=6,
        title="Visual Researcher",
        category=RoleCategory.RESEARCHER,
        description="Researches visual trends and design inspiration",
        icon="eye",
        upstream=(4, 5),
        prompt="""\
You are a Visual Researcher. Based on the creative direction and market research, \
identify visual trends and design inspiration.

Input:
- User Idea: "{user_input}"
- Creative Direction: {agent_4_output}
- Market Research: {agent_5_output}

Research and identify:
- Current design trends
- Visual inspiration sources
- Color and typography trends
- UI/UX patterns
- Visual storytelling approaches
- Design tools and technologies
- Industry best practices

Provide visual research insights and recommendations.""",
        max_tokens=2000,
        temperature=0.6,
        instructions=(
            "Identify current trends",
            "Provide visual inspiration",
            "Consider industry best practices",
        ),
    ),
    _Stage(
        id=7,
        title="Frontend Architect",
        category=RoleCategory.ARCHITECT,
        description="Defines technical architecture and implementation strategy",
        icon="code",
        upstream=(3, 4, 6),
        prompt="""\
You are a Frontend Architect. Based on the UX requirements, creative direction, and \
visual research, define the technical architecture and implementation strategy.

Input:
- User Idea: "{user_input}"
- UX Requirements: {agent_3_output}
- Creative Direction: {agent_4_output}
- Visual Research: {agent_6_output}

Define:
- Technology stack recommendations
- Architecture patterns
- Component structure
- State management approach
- Performance optimization strategies
- Accessibility implementation
- Testing strategy
- Deployment considerations

Provide comprehensive technical architecture.""",
        max_tokens=2500,
        temperature=0.5,
        instructions=(
            "Define scalable architecture",
            "Consider performance",
            "Include accessibility",
            "Plan for maintainability",
        ),
    ),
)

_TITLES = {stage.id: stage.title for stage in _STAGES}


def _raw_agent(stage: _Stage) -> dict[str, Any]:
    sources: list[dict[str, Any]] = [
        {
            "id": "user_input",
            "label": "User Creative Input",
            "type": ContextType.USER_INPUT.value,
            "selected": True,
        }
    ]
    for agent_id in stage.upstream:
        sources.append({
            "id": f"agent_{agent_id}_output",
            "label": f"{_TITLES[agent_id]} Output",
            "type": ContextType.AGENT_OUTPUT.value,
            "agentId": agent_id,
            "selected": True,
        })
    return {
        "id": stage.id,
        "role": {
            "title": stage.title,
            "category": stage.category.value,
            "description": stage.description,
            "icon": stage.icon,
        },
        "contextSources": sources,
        "task": {
            "promptTemplate": stage.prompt,
            "outputFormat": OutputFormat.JSON.value,
            "maxTokens": stage.max_tokens,
            "temperature": stage.temperature,
            "instructions": list(stage.instructions),
        },
    }


def _raw_document(stages: tuple[_Stage, ...], description: str) -> dict[str, Any]:
    now = datetime.now(UTC).isoformat()
    return {
        "schemaVersion": CURRENT_VERSION,
        "compatibleVersions": list(COMPATIBLE_VERSIONS),
        "description": description,
        "created": now,
        "modified": now,
        "agents": [_raw_agent(stage) for stage in stages],
        "settings": {
            "defaultModel": DEFAULT_PIPELINE_MODEL,
            "autoSave": True,
            "qualityGates": True,
        },
    }


def default_document() -> ConfigurationDocument:
    """The canonical seven-agent pipeline, with quality gates on."""
    return ConfigurationDocument.model_validate(
        _raw_document(_STAGES, "Default configuration - 7 specialized AI agents")
    )


def mvp_document() -> ConfigurationDocument:
    """Strategist, persona and UX stages of the canonical pipeline."""
    return ConfigurationDocument.model_validate(
        _raw_document(_STAGES[:MVP_AGENT_COUNT], "MVP 3-Agent Pipeline")
    )


BUILT_IN_TEMPLATES = {
    "Canonical 7-Agent Pipeline": default_document,
    "MVP 3-Agent Pipeline": mvp_document,
}
