"""Shared test fixtures for backend tests.

Provides document factories for current and legacy configuration versions,
mock generation clients, and a fresh EventBus, so tests never touch a real
provider or a shared database.
"""

import asyncio
import sys
from pathlib import Path
from typing import Any

import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from versioning.registry import ...`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(Path(__file__).resolve().parent.parent)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

from agents.generation import MockGenerationClient  # noqa: E402
from events.bus import EventBus, reset_event_bus  # noqa: E402
from events.types import PipelineEvent  # noqa: E402
from metrics import MetricsCollector  # noqa: E402
from models.database import ConfigurationStore  # noqa: E402
from models.runtime import ApprovalAction, ApprovalDecision, ApprovalRequest  # noqa: E402

# ---------------------------------------------------------------------------
# Event Bus
# ---------------------------------------------------------------------------


@pytest.fixture()
def event_bus() -> EventBus:
    """Return a fresh EventBus instance for each test."""
    reset_event_bus()
    bus = EventBus()
    return bus


@pytest.fixture()
def metrics_collector() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture()
async def store(tmp_path: Path) -> ConfigurationStore:
    """Return an initialized ConfigurationStore in a temporary directory."""
    store = ConfigurationStore(str(tmp_path / "nested" / "pipeline.db"))
    await store.init()
    return store


# ---------------------------------------------------------------------------
# Mock generation
# ---------------------------------------------------------------------------


@pytest.fixture()
def echo_client() -> MockGenerationClient:
    """Generation client that answers ``OUT:`` + prompt."""
    return MockGenerationClient(prefix="OUT:")


class ScriptedReviewer:
    """Approval handler that answers every request with fixed decisions.

    Args:
        decisions: Decision per (kind, agent_id); missing keys approve.
    """

    def __init__(self, decisions: dict[tuple[str, int | None], ApprovalDecision] | None = None) -> None:
        self.decisions = decisions or {}
        self.requests: list[ApprovalRequest] = []

    async def review(self, request: ApprovalRequest) -> ApprovalDecision:
        self.requests.append(request)
        key = (request.kind.value, request.agent_id)
        return self.decisions.get(key, ApprovalDecision(action=ApprovalAction.APPROVE))


class BlockingReviewer:
    """Approval handler that holds every review until ``release`` is set."""

    def __init__(self) -> None:
        self.requested = asyncio.Event()
        self.release = asyncio.Event()
        self.answered = 0

    async def review(self, request: ApprovalRequest) -> ApprovalDecision:
        self.requested.set()
        await self.release.wait()
        self.answered += 1
        return ApprovalDecision(action=ApprovalAction.APPROVE)


# ---------------------------------------------------------------------------
# Document factories (current schema)
# ---------------------------------------------------------------------------


def user_source(selected: bool = True) -> dict[str, Any]:
    return {"id": "user_input", "label": "User Input", "type": "user_input", "selected": selected}


def agent_source(agent_id: int, selected: bool = True) -> dict[str, Any]:
    return {
        "id": f"agent_{agent_id}_output",
        "label": f"Agent {agent_id} Output",
        "type": "agent_output",
        "agentId": agent_id,
        "selected": selected,
    }


def make_agent(
    agent_id: int,
    prompt_template: str,
    sources: list[dict[str, Any]] | None = None,
    title: str | None = None,
    category: str = "analyst",
    output_format: str = "markdown",
    **task: Any,
) -> dict[str, Any]:
    """Build a raw current-version agent."""
    return {
        "id": agent_id,
        "role": {
            "title": title or f"Agent {agent_id}",
            "category": category,
            "description": f"Stage {agent_id} of the pipeline",
        },
        "contextSources": sources if sources is not None else [user_source()],
        "task": {
            "promptTemplate": prompt_template,
            "outputFormat": output_format,
            "maxTokens": task.pop("max_tokens", 2000),
            "temperature": task.pop("temperature", 0.7),
            "instructions": task.pop("instructions", []),
        },
    }


def make_document(
    agents: list[dict[str, Any]],
    quality_gates: bool = False,
    version: str = "0.7.1",
) -> dict[str, Any]:
    """Build a raw current-version document."""
    return {
        "schemaVersion": version,
        "compatibleVersions": ["0.7.0"],
        "description": "Test pipeline",
        "created": "2024-01-01T00:00:00+00:00",
        "modified": "2024-01-01T00:00:00+00:00",
        "agents": agents,
        "settings": {
            "defaultModel": "mock-model",
            "autoSave": True,
            "qualityGates": quality_gates,
        },
    }


def three_agent_document(quality_gates: bool = False) -> dict[str, Any]:
    """Researcher -> Designer -> Author chain; the author also reads agent 1."""
    return make_document(
        [
            make_agent(1, "Research: {user_input}", title="Researcher", category="researcher"),
            make_agent(
                2,
                "Design from {agent_1_output}",
                sources=[agent_source(1)],
                title="Designer",
                category="designer",
            ),
            make_agent(
                3,
                "Write using {agent_1_output} and {agent_2_output}",
                sources=[agent_source(1), agent_source(2)],
                title="Author",
                category="author",
            ),
        ],
        quality_gates=quality_gates,
    )


@pytest.fixture()
def pipeline_document() -> dict[str, Any]:
    return three_agent_document()


@pytest.fixture()
def gated_document() -> dict[str, Any]:
    return three_agent_document(quality_gates=True)


# ---------------------------------------------------------------------------
# Document factories (legacy schemas)
# ---------------------------------------------------------------------------


def make_legacy_agent_0_6_0(
    agent_id: int,
    prompt_template: str,
    name: str | None = None,
    category: str = "Analyst",
    sources: list[dict[str, Any]] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    agent: dict[str, Any] = {
        "id": agent_id,
        "name": name if name is not None else f"Legacy Agent {agent_id}",
        "description": f"Legacy stage {agent_id}",
        "category": category,
        "promptTemplate": prompt_template,
        "maxTokens": 1500,
        "temperature": 0.5,
        "contextSources": sources if sources is not None else [
            {"id": "user_input", "label": "User Input", "type": "user_input"},
        ],
    }
    agent.update(extra)
    return agent


def legacy_document_0_6_0() -> dict[str, Any]:
    """A two-agent document in the 0.6.0 layout."""
    return {
        "header": {
            "version": "0.6.0",
            "description": "Legacy pipeline",
            "created": "2023-06-01T00:00:00+00:00",
        },
        "agents": [
            make_legacy_agent_0_6_0(
                1, "Research {User_Input}", name="Researcher", category="Researcher"
            ),
            make_legacy_agent_0_6_0(
                2,
                "Summarize {Agent1_Output}",
                name="Writer",
                category="Author",
                sources=[
                    {
                        "id": "agent_1_output",
                        "label": "Agent 1 Output",
                        "type": "agent_output",
                        "agentId": 1,
                    },
                ],
            ),
        ],
        "settings": {"defaultLLM": "claude-3-opus"},
    }


def legacy_document_0_5_0() -> dict[str, Any]:
    """A two-agent document in the 0.5.0 layout (free-form ``type``)."""
    document = legacy_document_0_6_0()
    document["header"]["version"] = "0.5.0"
    first, second = document["agents"]
    del first["category"]
    del second["category"]
    first["type"] = "research"
    second["type"] = "writing"
    first["promptTemplate"] = "Research {UserInput}"
    second["promptTemplate"] = "Summarize {Agent1Result}"
    return document


# ---------------------------------------------------------------------------
# Event Collection Helper
# ---------------------------------------------------------------------------


def event_types(event_bus: EventBus, run_id: str) -> list[str]:
    """Types of every event recorded for a run, in order."""
    return [event.type.value for event in event_bus.get_event_history(run_id)]


def events_of(event_bus: EventBus, run_id: str, event_type: str) -> list[PipelineEvent]:
    return [e for e in event_bus.get_event_history(run_id) if e.type.value == event_type]
