"""Prompt rendering and system prompts for pipeline agents.

This module contains:
- render_prompt: Substitutes ``{source_id}`` placeholders in an agent's
  prompt template with the user input or upstream agent outputs
- build_system_prompt: Role-aware system prompt sent alongside the rendered
  prompt, carrying the agent's instructions and output format guidance
- find_placeholders / known_placeholders: Used by validation to report
  placeholders that cannot be resolved

Placeholders are substituted in a single pass, so text inserted from an
upstream output is never re-scanned for placeholders. Placeholders that do not
resolve are left in place verbatim.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from models.schemas import AgentSpec, ContextType, OutputFormat, RoleCategory

PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z0-9_]+)\}")

# Resolved for every agent, independent of its context sources
RUN_PLACEHOLDERS = ("AGENT_NAME", "ROLE_TITLE", "ROLE_CATEGORY", "STEP_NUMBER", "TOTAL_STEPS")

# Base system prompt shared by every agent
BASE_SYSTEM_PROMPT = """\
You are an AI agent designed to help create comprehensive technical specifications.
Please provide detailed, well-structured responses that are actionable and specific \
to the given context."""

CATEGORY_EXPERTISE: dict[RoleCategory, str] = {
    RoleCategory.STRATEGIST: (
        "Market analysis, competitive positioning, business strategy, value proposition development"
    ),
    RoleCategory.RESEARCHER: (
        "Market research, user behavior analysis, competitive intelligence, data gathering"
    ),
    RoleCategory.DESIGNER: (
        "User experience design, interface design, visual design, interaction patterns"
    ),
    RoleCategory.AUTHOR: (
        "Technical writing, documentation, content creation, specification development"
    ),
    RoleCategory.ANALYST: (
        "Data analysis, metrics interpretation, performance evaluation, insights generation"
    ),
    RoleCategory.ARCHITECT: (
        "System architecture, technical design, infrastructure planning, scalability considerations"
    ),
}

CATEGORY_INSTRUCTIONS: dict[RoleCategory, list[str]] = {
    RoleCategory.STRATEGIST: [
        "Focus on business value and market opportunity",
        "Consider competitive landscape and differentiation",
        "Provide actionable strategic recommendations",
    ],
    RoleCategory.RESEARCHER: [
        "Base recommendations on data and evidence",
        "Consider multiple perspectives and sources",
        "Identify key insights and patterns",
    ],
    RoleCategory.DESIGNER: [
        "Prioritize user experience and usability",
        "Consider accessibility and inclusivity",
        "Focus on visual and interaction design principles",
    ],
    RoleCategory.AUTHOR: [
        "Write clear, concise, and well-structured content",
        "Use appropriate technical terminology",
        "Ensure completeness and accuracy",
    ],
    RoleCategory.ANALYST: [
        "Provide data-driven insights and recommendations",
        "Consider quantitative and qualitative factors",
        "Focus on measurable outcomes and metrics",
    ],
    RoleCategory.ARCHITECT: [
        "Consider scalability, performance, and maintainability",
        "Address technical constraints and requirements",
        "Provide clear architectural decisions and rationale",
    ],
}

FORMAT_INSTRUCTIONS: dict[OutputFormat, list[str]] = {
    OutputFormat.JSON: [
        "Provide your response in valid JSON format",
        "Use clear, descriptive keys for JSON properties",
    ],
    OutputFormat.MARKDOWN: [
        "Format your response using Markdown",
        "Use headers, lists, and emphasis appropriately",
    ],
    OutputFormat.TEXT: [
        "Provide a clear, well-structured text response",
        "Use paragraphs and formatting for readability",
    ],
}


@dataclass
class RenderedPrompt:
    """Result of rendering an agent's prompt template.

    Attributes:
        text: The rendered prompt.
        unresolved: Placeholder names left in place, in order of appearance.
    """

    text: str
    unresolved: list[str] = field(default_factory=list)


def compose_prompt_sections(*sections: str) -> str:
    """Compose prompt sections into a single deterministic prompt."""
    cleaned = [section.strip() for section in sections if section and section.strip()]
    return "\n\n".join(cleaned)


def find_placeholders(template: str) -> list[str]:
    """Return placeholder names in ``template``, deduplicated, in order."""
    return list(dict.fromkeys(PLACEHOLDER_PATTERN.findall(template)))


def known_placeholders(agent: AgentSpec) -> set[str]:
    """Placeholder names that resolve for ``agent``.

    Each selected context source resolves under its own id. The uppercase
    aliases ``USER_INPUT`` and ``AGENT_<n>_RESPONSE`` resolve for the same
    selected sources. The agent's role fields and its position in the run
    are always available.
    """
    names = set(RUN_PLACEHOLDERS)
    for source in agent.selected_sources:
        names.add(source.id)
        if source.type == ContextType.USER_INPUT:
            names.add("USER_INPUT")
        elif source.agent_id is not None:
            names.add(f"AGENT_{source.agent_id}_RESPONSE")
    return names


def build_context(
    agent: AgentSpec,
    user_input: str,
    outputs: Mapping[int, str],
    step_number: int = 1,
    total_steps: int = 1,
) -> dict[str, str]:
    """Map each resolvable placeholder name to its substitution text.

    Upstream sources without an entry in ``outputs`` are omitted, so their
    placeholders stay unresolved.

    Args:
        agent: The agent being rendered.
        user_input: The run's user input.
        outputs: Final response text of completed upstream agents.
        step_number: 1-based position of the agent in the execution order.
        total_steps: Number of agents in the run.
    """
    values = {
        "AGENT_NAME": agent.role.title,
        "ROLE_TITLE": agent.role.title,
        "ROLE_CATEGORY": agent.role.category.value,
        "STEP_NUMBER": str(step_number),
        "TOTAL_STEPS": str(total_steps),
    }
    for source in agent.selected_sources:
        if source.type == ContextType.USER_INPUT:
            values[source.id] = user_input
            values["USER_INPUT"] = user_input
        elif source.agent_id is not None and source.agent_id in outputs:
            values[source.id] = outputs[source.agent_id]
            values[f"AGENT_{source.agent_id}_RESPONSE"] = outputs[source.agent_id]
    return values


def render_template(template: str, values: Mapping[str, str]) -> RenderedPrompt:
    unresolved: list[str] = []

    def substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in values:
            return values[name]
        if name not in unresolved:
            unresolved.append(name)
        return match.group(0)

    return RenderedPrompt(text=PLACEHOLDER_PATTERN.sub(substitute, template), unresolved=unresolved)


def render_prompt(
    agent: AgentSpec,
    user_input: str,
    outputs: Mapping[int, str],
    step_number: int = 1,
    total_steps: int = 1,
) -> RenderedPrompt:
    """Render ``agent``'s prompt template against the run's available text."""
    values = build_context(agent, user_input, outputs, step_number, total_steps)
    return render_template(agent.task.prompt_template, values)


def build_instructions(agent: AgentSpec) -> list[str]:
    """Agent instructions followed by format and category guidance."""
    return [
        *agent.task.instructions,
        *FORMAT_INSTRUCTIONS[agent.task.output_format],
        *CATEGORY_INSTRUCTIONS.get(agent.role.category, []),
    ]


def build_system_prompt(agent: AgentSpec) -> str:
    """Get the system prompt for ``agent``'s role.

    Args:
        agent: The agent being executed

    Returns:
        The complete system prompt including role, expertise and instructions
    """
    expertise = CATEGORY_EXPERTISE.get(
        agent.role.category, "General AI assistance and problem solving"
    )
    role_lines = [
        f"You are acting as: {agent.role.title}",
        f"Your role category is: {agent.role.category.value}",
        f"Your expertise includes: {expertise}",
    ]
    if agent.role.description:
        role_lines.append(f"Your responsibilities: {agent.role.description}")

    instructions = "\n".join(f"- {item}" for item in build_instructions(agent))
    return compose_prompt_sections(
        BASE_SYSTEM_PROMPT,
        "\n".join(role_lines),
        "Please maintain consistency with your role and provide responses that align "
        "with your specialized expertise.",
        f"## Instructions\n{instructions}",
    )
