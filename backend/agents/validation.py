"""Structural and semantic validation of configuration documents.

Validation is a read-only pass: it never mutates the document and reports
every problem it finds rather than stopping at the first. Errors make a
document unusable for a run; warnings (such as an unresolved placeholder,
which may be intentional prose) do not.
"""

from collections import Counter
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from agents.prompts import find_placeholders, known_placeholders
from models.schemas import ConfigurationDocument, ContextType


class ValidationReport(BaseModel):
    """Outcome of validating a document or run request."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


def _format_location(loc: tuple[int | str, ...]) -> str:
    parts: list[str] = []
    for item in loc:
        if isinstance(item, int):
            parts.append(f"[{item}]")
        else:
            parts.append(f".{item}" if parts else str(item))
    return "".join(parts) or "document"


def parse_document(
    document: Mapping[str, Any] | ConfigurationDocument,
) -> tuple[ConfigurationDocument | None, list[str]]:
    """Parse a raw mapping into a document, collecting path-qualified errors."""
    if isinstance(document, ConfigurationDocument):
        return document, []
    try:
        return ConfigurationDocument.model_validate(document), []
    except ValidationError as e:
        return None, [f"{_format_location(err['loc'])}: {err['msg']}" for err in e.errors()]


def validate_document(document: Mapping[str, Any] | ConfigurationDocument) -> ValidationReport:
    """Check a document for structural and semantic problems.

    Checks:
        - the document parses into the current schema
        - agent ids are unique
        - every agent_output source carries an agentId that exists
        - temperature lies in [0, 1] and maxTokens is positive
        - the prompt template is non-empty
        - placeholders resolve to a selected source (warning only)

    Args:
        document: A raw camelCase mapping or a parsed ConfigurationDocument

    Returns:
        A ValidationReport; ``valid`` is true iff there are no errors
    """
    parsed, errors = parse_document(document)
    if parsed is None:
        return ValidationReport(valid=False, errors=errors)

    warnings: list[str] = []
    ids = [agent.id for agent in parsed.agents]
    for agent_id, count in Counter(ids).items():
        if count > 1:
            errors.append(f"agents: duplicate agent id {agent_id}")
    known_ids = set(ids)

    for index, agent in enumerate(parsed.agents):
        where = f"agents[{index}]"

        for source_index, source in enumerate(agent.context_sources):
            source_where = f"{where}.contextSources[{source_index}]"
            if source.type != ContextType.AGENT_OUTPUT:
                continue
            if source.agent_id is None:
                errors.append(f"{source_where}.agentId: required for agent_output sources")
            elif source.agent_id not in known_ids:
                errors.append(
                    f"{source_where}.agentId: references unknown agent {source.agent_id}"
                )

        task = agent.task
        if not 0.0 <= task.temperature <= 1.0:
            errors.append(
                f"{where}.task.temperature: must be between 0 and 1, got {task.temperature}"
            )
        if task.max_tokens <= 0:
            errors.append(f"{where}.task.maxTokens: must be positive, got {task.max_tokens}")
        if not task.prompt_template.strip():
            errors.append(f"{where}.task.promptTemplate: must not be empty")

        resolvable = known_placeholders(agent)
        for name in find_placeholders(task.prompt_template):
            if name not in resolvable:
                warnings.append(
                    f"{where}.task.promptTemplate: placeholder {{{name}}} does not match "
                    "a selected context source"
                )

    return ValidationReport(valid=not errors, errors=errors, warnings=warnings)


def validate_run_request(
    document: Mapping[str, Any] | ConfigurationDocument,
    user_input: str,
) -> ValidationReport:
    """Validate a document together with the user input it will run on."""
    report = validate_document(document)
    errors = list(report.errors)
    if not user_input or not user_input.strip():
        errors.append("userInput: must not be empty")
    return ValidationReport(valid=not errors, errors=errors, warnings=report.warnings)
