"""Parsing of generated responses into typed outputs.

Each output format has its own parse rule:
- json: the response must contain a JSON object or array, optionally wrapped
  in prose or a fenced code block
- markdown: any non-empty text; ATX headings are collected as an outline
- text: any non-empty text

A response that does not satisfy its format raises OutputParseError, which
the orchestrator treats as a failed generation attempt.
"""

import json
import re
from typing import Any

from errors import OutputParseError
from models.runtime import AgentOutput, JsonOutput, MarkdownOutput, TextOutput
from models.schemas import OutputFormat

HEADING_PATTERN = re.compile(r"^\s{0,3}#{1,6}\s+(.+?)\s*#*\s*$", re.MULTILINE)
FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def _extract_balanced(text: str, opener: str, closer: str) -> list[str]:
    """Extract balanced ``opener``...``closer`` candidates from arbitrary text."""
    candidates: list[str] = []
    n = len(text)

    for start in range(n):
        if text[start] != opener:
            continue

        depth = 0
        in_string = False
        escaped = False

        for end in range(start, n):
            ch = text[end]

            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue

            if ch == '"':
                in_string = True
                continue

            if ch == opener:
                depth += 1
            elif ch == closer:
                depth -= 1
                if depth == 0:
                    candidates.append(text[start : end + 1])
                    break

    return candidates


def extract_json_from_response(response: str) -> dict[str, Any] | list[Any] | None:
    """Extract a JSON object or array from a response that may contain extra text.

    Args:
        response: The full generated text

    Returns:
        Parsed JSON value if found, None otherwise
    """
    def try_parse(candidate: str) -> dict[str, Any] | list[Any] | None:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict | list) else None

    # 1) Pure JSON response.
    parsed = try_parse(response.strip())
    if parsed is not None:
        return parsed

    # 2) JSON within fenced blocks.
    for match in FENCE_PATTERN.finditer(response):
        parsed = try_parse(match.group(1).strip())
        if parsed is not None:
            return parsed

    # 3) Balanced object, then array, extraction from free-form text.
    for opener, closer in (("{", "}"), ("[", "]")):
        for candidate in _extract_balanced(response, opener, closer):
            parsed = try_parse(candidate)
            if parsed is not None:
                return parsed

    return None


def extract_headings(markdown: str) -> list[str]:
    return [m.group(1) for m in HEADING_PATTERN.finditer(markdown)]


def parse_output(response: str, output_format: OutputFormat) -> AgentOutput:
    """Parse ``response`` according to ``output_format``.

    Raises:
        OutputParseError: If the response is empty or not valid for the format.
    """
    if not response or not response.strip():
        raise OutputParseError("Generated response is empty", cause="empty_response")

    if output_format == OutputFormat.JSON:
        data = extract_json_from_response(response)
        if data is None:
            raise OutputParseError(
                "Generated response does not contain valid JSON",
                cause="invalid_json",
            )
        return JsonOutput(raw=response, data=data)

    if output_format == OutputFormat.MARKDOWN:
        return MarkdownOutput(raw=response, headings=extract_headings(response))

    return TextOutput(raw=response)
