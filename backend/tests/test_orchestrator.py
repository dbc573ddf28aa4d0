"""Tests for agents/orchestrator.py -- driving a pipeline run.

Covers the echo scenario, ordering and concurrency bounds, failure
propagation, approval gates, cancellation, resumption from snapshots, and
the events and metrics a run produces.
"""

import asyncio

import pytest

from agents.generation import GenerationParams, MockGenerationClient
from agents.orchestrator import Orchestrator, PipelineRun
from errors import (
    CyclicDependencyError,
    DocumentValidationError,
    GenerationError,
    InvalidTransitionError,
    MigrationRequiredError,
    OutputParseError,
    RunCancelledError,
    UnknownVersionError,
)
from events.bus import EventBus
from metrics import MetricsCollector
from models.runtime import (
    AgentState,
    ApprovalAction,
    ApprovalDecision,
    ApprovalKind,
    RunSnapshot,
    RunStatus,
)
from models.schemas import ConfigurationDocument
from versioning.registry import VersionRegistry

from tests.conftest import (
    BlockingReviewer,
    ScriptedReviewer,
    agent_source,
    event_types,
    events_of,
    make_agent,
    make_document,
    three_agent_document,
)

USER_INPUT = "todo app"
PROMPT_1 = "Research: todo app"
RESPONSE_1 = "OUT:" + PROMPT_1
PROMPT_2 = "Design from " + RESPONSE_1
RESPONSE_2 = "OUT:" + PROMPT_2
PROMPT_3 = f"Write using {RESPONSE_1} and {RESPONSE_2}"


async def _wait_for_calls(client: MockGenerationClient, count: int) -> None:
    for _ in range(2000):
        if client.call_count >= count:
            return
        await asyncio.sleep(0.001)
    raise AssertionError(f"expected {count} generation calls, saw {client.call_count}")


def _states(run: PipelineRun) -> dict[int, AgentState]:
    return {agent_id: state.state for agent_id, state in run.states.items()}


# =========================================================================
# Happy path
# =========================================================================


class TestEchoScenario:
    async def test_three_agent_chain(self, echo_client: MockGenerationClient) -> None:
        trace = await Orchestrator(echo_client).run(three_agent_document(), USER_INPUT)

        assert trace.status == RunStatus.COMPLETE
        assert trace.success
        assert trace.order == [1, 2, 3]
        assert trace.agent(1).response == RESPONSE_1
        assert trace.agent(2).response == RESPONSE_2
        assert trace.agent(3).response == "OUT:" + PROMPT_3
        assert [call["prompt"] for call in echo_client.call_history] == [PROMPT_1, PROMPT_2, PROMPT_3]

    async def test_trace_entries(self, echo_client: MockGenerationClient) -> None:
        trace = await Orchestrator(echo_client).run(three_agent_document(), USER_INPUT)
        entry = trace.agent(2)
        assert entry.title == "Designer"
        assert entry.state == AgentState.COMPLETE
        assert entry.prompt == PROMPT_2
        assert entry.execution_count == 1
        assert entry.error is None
        assert entry.output is not None and entry.output.format == "markdown"
        assert trace.completed_at is not None
        assert trace.pending_approvals == []

    async def test_generation_params_follow_task(self) -> None:
        client = MockGenerationClient(responses=['{"ok": true}'])
        document = make_document(
            [make_agent(1, "{user_input}", output_format="json", temperature=0.2, max_tokens=321)]
        )
        trace = await Orchestrator(client).run(document, USER_INPUT)

        params: GenerationParams = client.call_history[0]["params"]
        assert params.max_tokens == 321
        assert params.temperature == 0.2
        assert params.model == "mock-model"
        assert params.system_prompt and "You are acting as: Agent 1" in params.system_prompt
        assert trace.agent(1).output is not None
        assert trace.agent(1).output.data == {"ok": True}

    async def test_step_placeholders_follow_execution_order(
        self, echo_client: MockGenerationClient
    ) -> None:
        document = make_document(
            [
                make_agent(1, "{STEP_NUMBER}/{TOTAL_STEPS} {agent_2_output}", sources=[agent_source(2)]),
                make_agent(2, "{STEP_NUMBER}/{TOTAL_STEPS} {AGENT_NAME}", title="First"),
            ]
        )
        trace = await Orchestrator(echo_client).run(document, USER_INPUT)
        assert trace.agent(2).prompt == "1/2 First"
        assert trace.agent(1).prompt == "2/2 OUT:1/2 First"

    async def test_document_is_not_mutated(self, echo_client: MockGenerationClient) -> None:
        document = three_agent_document()
        before = repr(document)
        await Orchestrator(echo_client).run(document, USER_INPUT)
        assert repr(document) == before

    async def test_events_and_metrics(
        self,
        echo_client: MockGenerationClient,
        event_bus: EventBus,
        metrics_collector: MetricsCollector,
    ) -> None:
        orchestrator = Orchestrator(echo_client, event_bus=event_bus, metrics_collector=metrics_collector)
        run = await orchestrator.start(three_agent_document(), USER_INPUT, run_id="run_echo")
        await orchestrator.advance(run)

        types = event_types(event_bus, "run_echo")
        assert types[0] == "run_started"
        assert types[-1] == "run_complete"
        assert types.count("agent_complete") == 3
        assert types.count("generation_complete") == 3
        completed = events_of(event_bus, "run_echo", "agent_complete")
        assert [e.agent_title for e in completed] == ["Researcher", "Designer", "Author"]

        assert run.metrics is not None
        assert run.metrics.generation_calls == 3
        assert run.metrics.failed_agents == 0
        assert run.metrics.response_chars == sum(len(r) for r in run.outputs().values())
        assert metrics_collector.get("run_echo") is None


# =========================================================================
# Ordering and concurrency
# =========================================================================


class TestConcurrency:
    @staticmethod
    def _tracking_client() -> tuple[MockGenerationClient, dict[str, int]]:
        counters = {"active": 0, "peak": 0}

        async def responder(prompt: str, params: GenerationParams) -> str:
            counters["active"] += 1
            counters["peak"] = max(counters["peak"], counters["active"])
            await asyncio.sleep(0.01)
            counters["active"] -= 1
            return f"done: {prompt}"

        return MockGenerationClient(responder=responder), counters

    @staticmethod
    def _parallel_document() -> dict:
        return make_document([make_agent(i, f"Task {i}: {{user_input}}") for i in (1, 2, 3)])

    async def test_independent_agents_run_concurrently(self) -> None:
        client, counters = self._tracking_client()
        trace = await Orchestrator(client, max_concurrency=3).run(self._parallel_document(), USER_INPUT)
        assert trace.success
        assert counters["peak"] == 3

    async def test_concurrency_is_bounded(self) -> None:
        client, counters = self._tracking_client()
        trace = await Orchestrator(client, max_concurrency=1).run(self._parallel_document(), USER_INPUT)
        assert trace.success
        assert counters["peak"] == 1

    async def test_dependent_never_starts_before_dependency(self) -> None:
        order: list[str] = []

        async def responder(prompt: str, params: GenerationParams) -> str:
            order.append(prompt)
            await asyncio.sleep(0.001)
            return prompt.upper()

        document = make_document(
            [
                make_agent(1, "late {agent_2_output}", sources=[agent_source(2)]),
                make_agent(2, "early {user_input}"),
            ]
        )
        trace = await Orchestrator(MockGenerationClient(responder=responder)).run(document, "x")
        assert trace.order == [2, 1]
        assert order == ["early x", "late EARLY X"]


# =========================================================================
# Structural errors
# =========================================================================


class TestStructuralErrors:
    async def test_cycle_fails_before_any_generation(self, echo_client: MockGenerationClient) -> None:
        document = make_document(
            [
                make_agent(1, "{user_input}"),
                make_agent(2, "{agent_3_output}", sources=[agent_source(3)]),
                make_agent(3, "{agent_2_output}", sources=[agent_source(2)]),
            ]
        )
        with pytest.raises(CyclicDependencyError) as exc_info:
            await Orchestrator(echo_client).run(document, USER_INPUT)
        assert sorted(exc_info.value.agent_ids) == [2, 3]
        assert echo_client.call_count == 0

    async def test_invalid_document_rejected(self, echo_client: MockGenerationClient) -> None:
        document = make_document([make_agent(1, "x", temperature=4.0)])
        with pytest.raises(DocumentValidationError):
            await Orchestrator(echo_client).run(document, USER_INPUT)
        assert echo_client.call_count == 0

    async def test_empty_user_input_rejected(self, echo_client: MockGenerationClient) -> None:
        with pytest.raises(DocumentValidationError) as exc_info:
            await Orchestrator(echo_client).run(three_agent_document(), "")
        assert "userInput: must not be empty" in exc_info.value.errors

    async def test_unknown_version_fails_before_any_generation(
        self, echo_client: MockGenerationClient
    ) -> None:
        document = make_document([make_agent(1, "{user_input}")], version="9.9.9")
        with pytest.raises(UnknownVersionError) as exc_info:
            await Orchestrator(echo_client).run(document, USER_INPUT)
        assert exc_info.value.version == "9.9.9"
        assert echo_client.call_count == 0

    async def test_parsed_legacy_document_must_be_migrated(
        self, echo_client: MockGenerationClient
    ) -> None:
        document = ConfigurationDocument.model_validate(
            make_document([make_agent(1, "{user_input}")], version="0.6.0")
        )
        with pytest.raises(MigrationRequiredError) as exc_info:
            await Orchestrator(echo_client).run(document, USER_INPUT)
        assert exc_info.value.version == "0.6.0"
        assert echo_client.call_count == 0

    async def test_compatible_version_runs(self, echo_client: MockGenerationClient) -> None:
        document = make_document([make_agent(1, "{user_input}")], version="0.7.0")
        trace = await Orchestrator(echo_client).run(document, USER_INPUT)
        assert trace.success
        assert trace.agent(1).response == "OUT:" + USER_INPUT

    async def test_injected_registry_decides_current_version(
        self, echo_client: MockGenerationClient
    ) -> None:
        orchestrator = Orchestrator(echo_client, registry=VersionRegistry("2.0.0"))
        document = make_document([make_agent(1, "{user_input}")], version="2.0.0")
        trace = await orchestrator.run(document, USER_INPUT)
        assert trace.success

        with pytest.raises(UnknownVersionError):
            await orchestrator.run(three_agent_document(), USER_INPUT)


# =========================================================================
# Failure propagation
# =========================================================================


class TestFailurePropagation:
    async def test_failed_agent_fails_dependents_without_generation(self) -> None:
        client = MockGenerationClient(responses=[GenerationError("provider down")])
        trace = await Orchestrator(client).run(three_agent_document(), USER_INPUT)

        assert trace.status == RunStatus.COMPLETE
        assert not trace.success
        assert client.call_count == 1
        assert trace.agent(1).error_type == "generation_error"
        assert trace.agent(1).error_count == 1
        assert trace.agent(2).error_type == "dependency_failed"
        assert trace.agent(3).error_type == "dependency_failed"
        assert trace.agent(2).execution_count == 0
        assert trace.failed_agent_ids == [1, 2, 3]

    async def test_independent_branch_still_completes(self) -> None:
        def responder(prompt: str, params: GenerationParams) -> str:
            if prompt.startswith("Alpha"):
                raise GenerationError("rate limited")
            return "ok"

        document = make_document(
            [
                make_agent(1, "Alpha {user_input}"),
                make_agent(2, "Beta {user_input}"),
                make_agent(3, "Gamma {agent_1_output}", sources=[agent_source(1)]),
            ]
        )
        client = MockGenerationClient(responder=responder)
        trace = await Orchestrator(client).run(document, USER_INPUT)

        assert trace.agent(1).state == AgentState.FAILED
        assert trace.agent(2).state == AgentState.COMPLETE
        assert trace.agent(3).error_type == "dependency_failed"
        assert client.call_count == 2

    async def test_unexpected_exception_is_wrapped(self) -> None:
        client = MockGenerationClient(responses=[RuntimeError("socket closed")])
        document = make_document([make_agent(1, "{user_input}")])
        trace = await Orchestrator(client).run(document, USER_INPUT)
        assert trace.agent(1).error_type == "generation_error"
        assert trace.agent(1).error == "socket closed"

    async def test_unparseable_output_fails_agent(self) -> None:
        client = MockGenerationClient(responses=["definitely not json"])
        document = make_document([make_agent(1, "{user_input}", output_format="json")])
        trace = await Orchestrator(client).run(document, USER_INPUT)
        entry = trace.agent(1)
        assert entry.state == AgentState.FAILED
        assert entry.error_type == "output_parse_error"
        assert entry.response == "definitely not json"

    async def test_failures_are_counted(self, metrics_collector: MetricsCollector) -> None:
        client = MockGenerationClient(responses=[GenerationError("down")])
        orchestrator = Orchestrator(client, metrics_collector=metrics_collector)
        run = await orchestrator.start(three_agent_document(), USER_INPUT)
        await orchestrator.advance(run)
        assert run.metrics is not None
        assert run.metrics.failed_agents == 3
        assert run.metrics.generation_calls == 0


# =========================================================================
# Approval gates
# =========================================================================


class TestApprovalGates:
    async def test_gated_prompt_waits_without_generation(
        self, echo_client: MockGenerationClient, gated_document: dict
    ) -> None:
        orchestrator = Orchestrator(echo_client)
        run = await orchestrator.start(gated_document, USER_INPUT)
        trace = await orchestrator.advance(run)

        assert trace.status == RunStatus.AWAITING_APPROVAL
        assert _states(run) == {1: AgentState.PROMPT_DRAFT, 2: AgentState.IDLE, 3: AgentState.IDLE}
        assert echo_client.call_count == 0
        [request] = trace.pending_approvals
        assert request.agent_id == 1
        assert request.kind == ApprovalKind.PROMPT
        assert request.content == PROMPT_1

        # Advancing again without a decision changes nothing
        again = await orchestrator.advance(run)
        assert again.status == RunStatus.AWAITING_APPROVAL
        assert echo_client.call_count == 0

    async def test_step_through_gates(
        self, echo_client: MockGenerationClient, gated_document: dict
    ) -> None:
        orchestrator = Orchestrator(echo_client)
        run = await orchestrator.start(gated_document, USER_INPUT)
        await orchestrator.advance(run)

        await orchestrator.approve_prompt(run, 1)
        trace = await orchestrator.advance(run)
        assert run.state(1).state == AgentState.RESPONSE_DRAFT
        assert trace.pending_approvals[0].kind == ApprovalKind.RESPONSE
        assert trace.pending_approvals[0].content == RESPONSE_1
        assert echo_client.call_count == 1

        await orchestrator.approve_response(run, 1)
        await orchestrator.advance(run)
        assert run.state(1).state == AgentState.COMPLETE
        assert run.state(2).state == AgentState.PROMPT_DRAFT

    async def test_edited_prompt_is_sent(
        self, echo_client: MockGenerationClient, gated_document: dict
    ) -> None:
        orchestrator = Orchestrator(echo_client)
        run = await orchestrator.start(gated_document, USER_INPUT)
        await orchestrator.advance(run)
        await orchestrator.approve_prompt(run, 1, content="Custom prompt")
        await orchestrator.advance(run)
        assert echo_client.call_history[0]["prompt"] == "Custom prompt"
        assert run.state(1).current_response == "OUT:Custom prompt"

    async def test_edited_response_feeds_dependents(
        self, echo_client: MockGenerationClient, gated_document: dict
    ) -> None:
        orchestrator = Orchestrator(echo_client)
        run = await orchestrator.start(gated_document, USER_INPUT)
        await orchestrator.advance(run)
        await orchestrator.approve_prompt(run, 1)
        await orchestrator.advance(run)
        await orchestrator.approve_response(run, 1, content="# Edited findings")
        trace = await orchestrator.advance(run)

        assert run.state(1).output is not None
        assert run.state(1).output.headings == ["Edited findings"]
        assert trace.pending_approvals[0].content == "Design from # Edited findings"

    async def test_invalid_edited_response_keeps_draft(self) -> None:
        client = MockGenerationClient(responses=['{"a": 1}'])
        document = make_document(
            [make_agent(1, "{user_input}", output_format="json")], quality_gates=True
        )
        orchestrator = Orchestrator(client)
        run = await orchestrator.start(document, USER_INPUT)
        await orchestrator.advance(run)
        await orchestrator.approve_prompt(run, 1)
        await orchestrator.advance(run)

        with pytest.raises(OutputParseError):
            await orchestrator.approve_response(run, 1, content="no json here")
        assert run.state(1).state == AgentState.RESPONSE_DRAFT
        assert run.state(1).current_response == '{"a": 1}'

    async def test_rejected_prompt_fails_agent_and_dependents(
        self, echo_client: MockGenerationClient, gated_document: dict
    ) -> None:
        orchestrator = Orchestrator(echo_client)
        run = await orchestrator.start(gated_document, USER_INPUT)
        await orchestrator.advance(run)
        await orchestrator.reject_prompt(run, 1, reason="off topic")
        trace = await orchestrator.advance(run)

        assert trace.status == RunStatus.COMPLETE
        assert trace.agent(1).error_type == "prompt_rejected"
        assert "off topic" in (trace.agent(1).error or "")
        assert trace.agent(2).error_type == "dependency_failed"
        assert echo_client.call_count == 0

    async def test_rejected_response_fails_agent(
        self, echo_client: MockGenerationClient, gated_document: dict
    ) -> None:
        orchestrator = Orchestrator(echo_client)
        run = await orchestrator.start(gated_document, USER_INPUT)
        await orchestrator.advance(run)
        await orchestrator.approve_prompt(run, 1)
        await orchestrator.advance(run)
        await orchestrator.reject_response(run, 1)
        assert run.state(1).error_type == "response_rejected"

    async def test_decision_on_wrong_gate_raises(
        self, echo_client: MockGenerationClient, gated_document: dict
    ) -> None:
        orchestrator = Orchestrator(echo_client)
        run = await orchestrator.start(gated_document, USER_INPUT)
        await orchestrator.advance(run)
        with pytest.raises(InvalidTransitionError):
            await orchestrator.reject_response(run, 1)
        with pytest.raises(InvalidTransitionError):
            await orchestrator.approve_prompt(run, 2)

    async def test_drive_with_reviewer(
        self, echo_client: MockGenerationClient, gated_document: dict, event_bus: EventBus
    ) -> None:
        reviewer = ScriptedReviewer(
            {
                ("prompt", 2): ApprovalDecision(action=ApprovalAction.EDIT, content="Short design"),
            }
        )
        orchestrator = Orchestrator(echo_client, event_bus=event_bus)
        run = await orchestrator.start(gated_document, USER_INPUT, run_id="run_gated")
        trace = await orchestrator.drive(run, reviewer)

        assert trace.status == RunStatus.COMPLETE
        assert trace.success
        assert len(reviewer.requests) == 6
        assert trace.agent(2).response == "OUT:Short design"
        assert len(events_of(event_bus, "run_gated", "approval_requested")) == 6
        assert len(events_of(event_bus, "run_gated", "approval_resolved")) == 6


# =========================================================================
# Cancellation
# =========================================================================


class TestCancellation:
    async def test_cancel_during_generation(self, event_bus: EventBus) -> None:
        client = MockGenerationClient(prefix="OUT:", delay=10)
        orchestrator = Orchestrator(client, event_bus=event_bus)
        run = await orchestrator.start(three_agent_document(), USER_INPUT, run_id="run_cancel")
        advancing = asyncio.create_task(orchestrator.advance(run))
        await _wait_for_calls(client, 1)

        run.cancel()
        trace = await asyncio.wait_for(advancing, timeout=2)

        assert trace.status == RunStatus.CANCELLED
        assert trace.agent(1).state == AgentState.FAILED
        assert trace.agent(1).error_type == "cancelled"
        assert trace.agent(2).state == AgentState.IDLE
        assert trace.agent(3).state == AgentState.IDLE
        assert event_types(event_bus, "run_cancel")[-1] == "run_cancelled"

    async def test_completed_agents_keep_results(self) -> None:
        async def responder(prompt: str, params: GenerationParams) -> str:
            if prompt.startswith("Design"):
                await asyncio.sleep(10)
            return "OUT:" + prompt

        client = MockGenerationClient(responder=responder)
        orchestrator = Orchestrator(client)
        run = await orchestrator.start(three_agent_document(), USER_INPUT)
        advancing = asyncio.create_task(orchestrator.advance(run))
        await _wait_for_calls(client, 2)

        trace = await orchestrator.cancel(run)
        await asyncio.wait_for(advancing, timeout=2)

        assert trace.agent(1).state == AgentState.COMPLETE
        assert trace.agent(1).response == RESPONSE_1
        assert trace.agent(2).error_type == "cancelled"
        assert trace.agent(3).state == AgentState.IDLE

    async def test_external_event_cancels_before_start(self, echo_client: MockGenerationClient) -> None:
        cancel_event = asyncio.Event()
        cancel_event.set()
        trace = await Orchestrator(echo_client).run(three_agent_document(), USER_INPUT, cancel_event=cancel_event)
        assert trace.status == RunStatus.CANCELLED
        assert echo_client.call_count == 0
        assert all(entry.state == AgentState.IDLE for entry in trace.agents)

    async def test_cancel_at_gate(self, echo_client: MockGenerationClient, gated_document: dict) -> None:
        orchestrator = Orchestrator(echo_client)
        run = await orchestrator.start(gated_document, USER_INPUT)
        await orchestrator.advance(run)
        trace = await orchestrator.cancel(run)
        assert trace.status == RunStatus.CANCELLED
        assert trace.agent(1).error_type == "cancelled"
        assert trace.pending_approvals == []

    async def test_cancel_while_reviewer_is_deciding(
        self,
        echo_client: MockGenerationClient,
        gated_document: dict,
        event_bus: EventBus,
    ) -> None:
        reviewer = BlockingReviewer()
        orchestrator = Orchestrator(echo_client, event_bus=event_bus)
        run = await orchestrator.start(gated_document, USER_INPUT, run_id="run_review_cancel")
        driving = asyncio.create_task(orchestrator.drive(run, reviewer))
        await asyncio.wait_for(reviewer.requested.wait(), timeout=2)

        run.cancel()
        trace = await asyncio.wait_for(driving, timeout=2)

        assert trace.status == RunStatus.CANCELLED
        assert trace.agent(1).error_type == "cancelled"
        assert reviewer.answered == 0
        assert echo_client.call_count == 0
        to_states = [
            e.data["to_state"] for e in events_of(event_bus, "run_review_cancel", "agent_state_changed")
        ]
        assert "prompt_approved" not in to_states

    async def test_decision_after_cancel_is_refused(
        self, echo_client: MockGenerationClient, gated_document: dict
    ) -> None:
        orchestrator = Orchestrator(echo_client)
        run = await orchestrator.start(gated_document, USER_INPUT)
        trace = await orchestrator.advance(run)
        request = trace.pending_approvals[0]

        run.cancel()
        with pytest.raises(RunCancelledError):
            await orchestrator.decide(run, request, ApprovalDecision(action=ApprovalAction.APPROVE))
        assert run.state(1).state == AgentState.PROMPT_DRAFT


# =========================================================================
# Snapshots and resume
# =========================================================================


class TestResume:
    async def test_resume_paused_run(self, gated_document: dict) -> None:
        first = Orchestrator(MockGenerationClient(prefix="OUT:"))
        run = await first.start(gated_document, USER_INPUT, run_id="run_pause")
        await first.advance(run)
        await first.approve_prompt(run, 1)
        await first.advance(run)
        snapshot = RunSnapshot.model_validate_json(run.snapshot().model_dump_json())

        client = MockGenerationClient(prefix="OUT:")
        second = Orchestrator(client)
        resumed = await second.resume(gated_document, snapshot)
        assert resumed.run_id == "run_pause"
        assert resumed.state(1).state == AgentState.RESPONSE_DRAFT
        assert resumed.state(1).current_response == RESPONSE_1

        trace = await second.drive(resumed, ScriptedReviewer())
        assert trace.status == RunStatus.COMPLETE
        assert trace.agent(2).response == RESPONSE_2
        assert client.call_count == 2

    async def test_generating_agents_fail_as_interrupted(self) -> None:
        slow = MockGenerationClient(prefix="OUT:", delay=10)
        orchestrator = Orchestrator(slow)
        run = await orchestrator.start(three_agent_document(), USER_INPUT)
        advancing = asyncio.create_task(orchestrator.advance(run))
        await _wait_for_calls(slow, 1)
        snapshot = run.snapshot()
        await orchestrator.cancel(run)
        await asyncio.wait_for(advancing, timeout=2)

        client = MockGenerationClient(prefix="OUT:")
        resumed_orchestrator = Orchestrator(client)
        resumed = await resumed_orchestrator.resume(three_agent_document(), snapshot)
        assert resumed.state(1).error_type == "interrupted"

        trace = await resumed_orchestrator.advance(resumed)
        assert trace.failed_agent_ids == [1, 2, 3]
        assert client.call_count == 0

    async def test_snapshot_must_match_document(self, gated_document: dict) -> None:
        orchestrator = Orchestrator(MockGenerationClient())
        run = await orchestrator.start(gated_document, USER_INPUT)
        snapshot = run.snapshot()

        with pytest.raises(DocumentValidationError):
            await orchestrator.resume(gated_document, snapshot.model_copy(update={"schema_version": "0.7.0"}))

        fewer_agents = dict(gated_document, agents=gated_document["agents"][:2])
        with pytest.raises(DocumentValidationError):
            await orchestrator.resume(fewer_agents, snapshot)
