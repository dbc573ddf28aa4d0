"""Pipeline orchestrator.

Drives every agent of a configuration document through its state machine:

    1. Check the schema version, then validate the document and the run
       request (fail fast).
    2. Build the dependency graph (fail fast on cycles).
    3. Initialize one AgentRuntimeState per agent in Idle.
    4. Repeatedly scan for agents that can advance and drive them until no
       further progress is possible: every agent is Complete or Failed, or a
       quality gate is waiting for an external decision.
    5. Report an ExecutionTrace.

Concurrency model:
    All runtime state is mutated by the coroutine holding ``run.lock``. The
    eligibility scan and the commit of a finished generation both happen
    under that lock, so a transition is always visible before the next scan
    reads it and no agent is ever started twice. Only the generation calls
    themselves run as separate tasks, bounded by a semaphore.

Gates:
    With ``qualityGates`` enabled, an agent stops in PromptDraft and again in
    ResponseDraft until approve_* / reject_* is called. ``advance`` then
    picks up where it left off. Gates never time out here; a host that wants
    a timeout cancels the run itself.
"""

import asyncio
import time
import uuid
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

import structlog

from agents import state_machine
from agents.generation import GenerationClient, GenerationParams
from agents.graph import AgentGraph
from agents.outputs import parse_output
from agents.prompts import build_system_prompt, render_prompt
from agents.validation import parse_document, validate_run_request
from config import settings
from errors import (
    DocumentValidationError,
    GenerationError,
    InvalidTransitionError,
    MigrationRequiredError,
    OutputParseError,
    RunCancelledError,
    UnknownVersionError,
)
from events.bus import EventBus
from events.types import EventType, GenerationMetrics, PipelineEvent
from metrics import MetricsCollector, RunMetricsData
from models.runtime import (
    AgentRuntimeState,
    AgentState,
    AgentTraceEntry,
    ApprovalAction,
    ApprovalDecision,
    ApprovalKind,
    ApprovalRequest,
    ExecutionTrace,
    RunSnapshot,
    RunStatus,
)
from models.schemas import AgentSpec, ConfigurationDocument
from versioning.builtin import build_default_registry
from versioning.registry import VersionRegistry, detect_version

logger = structlog.get_logger(__name__)

# States in which an agent is considered in flight when a run is cancelled
CANCELLABLE_STATES = frozenset({
    AgentState.PROMPT_DRAFT,
    AgentState.PROMPT_APPROVED,
    AgentState.GENERATING,
    AgentState.RESPONSE_DRAFT,
})


@runtime_checkable
class ApprovalHandler(Protocol):
    """Human-in-the-loop reviewer for prompt and response drafts."""

    async def review(self, request: ApprovalRequest) -> ApprovalDecision: ...


class PipelineRun:
    """Runtime state of one execution of a document.

    The run owns its AgentRuntimeState objects; the document is only read.

    Attributes:
        run_id: Unique identifier for the run.
        document: The (validated) configuration being executed.
        graph: Dependency graph of the document's agents.
        user_input: Text substituted for the user input source.
        states: Runtime state per agent id.
        order: Topological execution order.
        lock: Serializes scans, commits, and approval decisions.
        tasks: In-flight generation tasks per agent id.
        metrics: Final metrics, set once the run is over and a collector is attached.
    """

    def __init__(
        self,
        run_id: str,
        document: ConfigurationDocument,
        graph: AgentGraph,
        user_input: str,
        states: dict[int, AgentRuntimeState],
        started_at: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self.run_id = run_id
        self.document = document
        self.graph = graph
        self.user_input = user_input
        self.states = states
        self.order = graph.topological_order()
        self.started_at = started_at if started_at is not None else time.time()
        self.completed_at: float | None = None
        self.metrics: RunMetricsData | None = None
        self.lock = asyncio.Lock()
        self.tasks: dict[int, asyncio.Task[tuple[str, int]]] = {}
        self.cancel_event = cancel_event or asyncio.Event()
        self._agents: dict[int, AgentSpec] = {a.id: a for a in document.agents}
        self.closed = False

    @property
    def quality_gates(self) -> bool:
        return self.document.settings.quality_gates

    @property
    def is_cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def is_finished(self) -> bool:
        return all(state.is_terminal for state in self.states.values())

    def agent(self, agent_id: int) -> AgentSpec:
        return self._agents[agent_id]

    def state(self, agent_id: int) -> AgentRuntimeState:
        return self.states[agent_id]

    def cancel(self) -> None:
        """Request cooperative cancellation."""
        self.cancel_event.set()

    def outputs(self) -> dict[int, str]:
        """Final response text of every Complete agent."""
        return {
            agent_id: state.current_response or ""
            for agent_id, state in self.states.items()
            if state.state == AgentState.COMPLETE
        }

    def pending_approvals(self) -> list[ApprovalRequest]:
        requests: list[ApprovalRequest] = []
        for agent_id in self.order:
            state = self.states[agent_id]
            if state.state == AgentState.PROMPT_DRAFT:
                kind, content = ApprovalKind.PROMPT, state.current_prompt
            elif state.state == AgentState.RESPONSE_DRAFT:
                kind, content = ApprovalKind.RESPONSE, state.current_response
            else:
                continue
            requests.append(
                ApprovalRequest(
                    run_id=self.run_id,
                    agent_id=agent_id,
                    kind=kind,
                    content=content or "",
                )
            )
        return requests

    @property
    def status(self) -> RunStatus:
        if self.is_cancelled:
            return RunStatus.CANCELLED
        if self.is_finished:
            return RunStatus.COMPLETE
        if self.pending_approvals():
            return RunStatus.AWAITING_APPROVAL
        return RunStatus.RUNNING

    def trace(self) -> ExecutionTrace:
        """Build the execution trace for the run's current state."""
        entries = []
        for agent_id in self.order:
            state = self.states[agent_id]
            entries.append(
                AgentTraceEntry(
                    agent_id=agent_id,
                    title=self.agent(agent_id).role.title,
                    state=state.state,
                    prompt=state.current_prompt,
                    response=state.current_response,
                    output=state.output,
                    started_at=state.started_at,
                    completed_at=state.completed_at,
                    duration_ms=state.duration_ms,
                    execution_count=state.execution_count,
                    error_count=state.error_count,
                    error=state.last_error,
                    error_type=state.error_type,
                )
            )
        return ExecutionTrace(
            run_id=self.run_id,
            status=self.status,
            success=not any(s.state == AgentState.FAILED for s in self.states.values()),
            user_input=self.user_input,
            order=list(self.order),
            agents=entries,
            pending_approvals=self.pending_approvals(),
            started_at=self.started_at,
            completed_at=self.completed_at,
        )

    def snapshot(self) -> RunSnapshot:
        """Capture the run so it can be resumed after a pause."""
        return RunSnapshot(
            run_id=self.run_id,
            schema_version=self.document.schema_version,
            user_input=self.user_input,
            started_at=self.started_at,
            states=[self.states[a].model_copy(deep=True) for a in self.graph.agent_ids],
        )


class Orchestrator:
    """Executes configuration documents against a generation collaborator.

    Collaborators are injected; the orchestrator holds no global state and
    never writes to the document it executes.

    Args:
        generator: Client used for every generation call.
        event_bus: Optional bus receiving run, agent and approval events.
        metrics_collector: Optional per-run metrics sink.
        max_concurrency: Upper bound on simultaneous generation calls.
        registry: Version registry; only current versions are executed.
    """

    def __init__(
        self,
        generator: GenerationClient,
        event_bus: EventBus | None = None,
        metrics_collector: MetricsCollector | None = None,
        max_concurrency: int | None = None,
        registry: VersionRegistry | None = None,
    ) -> None:
        self.generator = generator
        self.registry = registry or build_default_registry()
        self.event_bus = event_bus
        self.metrics_collector = metrics_collector
        self.max_concurrency = max(1, max_concurrency or settings.max_concurrent_agents)
        self._semaphore = asyncio.Semaphore(self.max_concurrency)

    # =========================================================================
    # Run lifecycle
    # =========================================================================

    async def run(
        self,
        document: Mapping[str, Any] | ConfigurationDocument,
        user_input: str,
        cancel_event: asyncio.Event | None = None,
    ) -> ExecutionTrace:
        """Start a run and drive it as far as it can go.

        Raises:
            UnknownVersionError: If the schema version cannot be resolved.
            MigrationRequiredError: If the document must be migrated first.
            DocumentValidationError: If the document or request is invalid.
            CyclicDependencyError: If agents depend on each other in a cycle.
        """
        pipeline_run = await self.start(document, user_input, cancel_event=cancel_event)
        return await self.advance(pipeline_run)

    async def start(
        self,
        document: Mapping[str, Any] | ConfigurationDocument,
        user_input: str,
        run_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> PipelineRun:
        """Validate, build the graph, and initialize every agent in Idle.

        No generation happens here, so structural errors always surface
        before any provider call.
        """
        parsed, graph = self._prepare(document, user_input)
        states = {agent.id: AgentRuntimeState(agent_id=agent.id) for agent in parsed.agents}
        pipeline_run = PipelineRun(
            run_id=run_id or f"run_{uuid.uuid4().hex[:12]}",
            document=parsed,
            graph=graph,
            user_input=user_input,
            states=states,
            cancel_event=cancel_event,
        )
        await self._on_run_started(pipeline_run)
        return pipeline_run

    async def resume(
        self,
        document: Mapping[str, Any] | ConfigurationDocument,
        snapshot: RunSnapshot,
        cancel_event: asyncio.Event | None = None,
    ) -> PipelineRun:
        """Rebuild a paused run from its snapshot.

        Agents caught in Generating when the snapshot was taken cannot be
        resumed mid-call and are failed as interrupted.

        Raises:
            DocumentValidationError: If the snapshot does not match the document.
        """
        parsed, graph = self._prepare(document, snapshot.user_input)

        if snapshot.schema_version != parsed.schema_version:
            raise DocumentValidationError([
                f"snapshot.schemaVersion: {snapshot.schema_version} does not match "
                f"document version {parsed.schema_version}"
            ])
        states = {s.agent_id: s.model_copy(deep=True) for s in snapshot.states}
        if set(states) != set(graph.agent_ids):
            raise DocumentValidationError([
                "snapshot.states: agent ids do not match the document's agents"
            ])

        for state in states.values():
            if state.state == AgentState.GENERATING:
                state_machine.record_generation_error(
                    state,
                    GenerationError("Generation was interrupted by a restart", state.agent_id),
                    "interrupted",
                )

        pipeline_run = PipelineRun(
            run_id=snapshot.run_id,
            document=parsed,
            graph=graph,
            user_input=snapshot.user_input,
            states=states,
            started_at=snapshot.started_at,
            cancel_event=cancel_event,
        )
        logger.info("run_resumed", run_id=pipeline_run.run_id)
        await self._on_run_started(pipeline_run, resumed=True)
        return pipeline_run

    async def advance(self, pipeline_run: PipelineRun) -> ExecutionTrace:
        """Drive the run until no further progress is possible.

        Returns when every agent is terminal, when the remaining work waits
        on approval gates, or when the run has been cancelled.
        """
        while True:
            async with pipeline_run.lock:
                if pipeline_run.is_cancelled:
                    await self._cancel_in_flight(pipeline_run)
                    break
                await self._scan(pipeline_run)
                in_flight = list(pipeline_run.tasks.values())

            if not in_flight:
                break

            cancel_waiter = asyncio.create_task(pipeline_run.cancel_event.wait())
            try:
                done, _ = await asyncio.wait(
                    [*in_flight, cancel_waiter],
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                cancel_waiter.cancel()

            async with pipeline_run.lock:
                for agent_id, task in list(pipeline_run.tasks.items()):
                    if task in done:
                        await self._commit_generation(pipeline_run, agent_id, task)

        return await self._report(pipeline_run)

    async def cancel(self, pipeline_run: PipelineRun) -> ExecutionTrace:
        """Cancel a run and report its final trace."""
        pipeline_run.cancel()
        async with pipeline_run.lock:
            await self._cancel_in_flight(pipeline_run)
        return await self._report(pipeline_run)

    async def drive(self, pipeline_run: PipelineRun, handler: ApprovalHandler) -> ExecutionTrace:
        """Advance a run, routing every pending gate through ``handler``.

        A review still pending when the run is cancelled is abandoned and its
        decision is never applied.
        """
        trace = await self.advance(pipeline_run)
        while trace.status == RunStatus.AWAITING_APPROVAL:
            for request in trace.pending_approvals:
                decision = await self._review(pipeline_run, handler, request)
                if decision is None:
                    break
                try:
                    await self.decide(pipeline_run, request, decision)
                except RunCancelledError:
                    break
            trace = await self.advance(pipeline_run)
        return trace

    async def _review(
        self,
        pipeline_run: PipelineRun,
        handler: ApprovalHandler,
        request: ApprovalRequest,
    ) -> ApprovalDecision | None:
        """Wait for ``handler`` or for cancellation, whichever comes first."""
        review = asyncio.create_task(handler.review(request))
        cancel_waiter = asyncio.create_task(pipeline_run.cancel_event.wait())
        try:
            await asyncio.wait({review, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (review, cancel_waiter):
                if not task.done():
                    task.cancel()

        if pipeline_run.is_cancelled:
            logger.info(
                "approval_review_abandoned",
                run_id=pipeline_run.run_id,
                agent_id=request.agent_id,
                kind=request.kind.value,
            )
            return None
        return review.result()

    # =========================================================================
    # Approval gates
    # =========================================================================

    async def approve_prompt(
        self,
        pipeline_run: PipelineRun,
        agent_id: int,
        content: str | None = None,
    ) -> None:
        """Approve (optionally replacing) an agent's drafted prompt."""
        async with pipeline_run.lock:
            self._require_active(pipeline_run, agent_id)
            state = pipeline_run.state(agent_id)
            if content is not None and state.state == AgentState.PROMPT_DRAFT:
                state.current_prompt = content
            await self._transition(pipeline_run, state, AgentState.PROMPT_APPROVED)
            await self._emit_approval(pipeline_run, agent_id, ApprovalKind.PROMPT, content)

    async def reject_prompt(
        self,
        pipeline_run: PipelineRun,
        agent_id: int,
        reason: str | None = None,
    ) -> None:
        """Reject an agent's drafted prompt; the agent fails."""
        async with pipeline_run.lock:
            self._require_active(pipeline_run, agent_id)
            state = pipeline_run.state(agent_id)
            self._require_state(state, AgentState.PROMPT_DRAFT, AgentState.FAILED)
            await self._fail(pipeline_run, state, f"Prompt rejected: {reason or 'no reason given'}", "prompt_rejected")
            await self._emit_approval(
                pipeline_run, agent_id, ApprovalKind.PROMPT, None, ApprovalAction.REJECT
            )

    async def approve_response(
        self,
        pipeline_run: PipelineRun,
        agent_id: int,
        content: str | None = None,
    ) -> None:
        """Approve (optionally replacing) an agent's drafted response.

        Raises:
            OutputParseError: If replacement content does not satisfy the
                agent's output format. The agent stays in ResponseDraft.
        """
        async with pipeline_run.lock:
            self._require_active(pipeline_run, agent_id)
            state = pipeline_run.state(agent_id)
            if content is not None and state.state == AgentState.RESPONSE_DRAFT:
                output_format = pipeline_run.agent(agent_id).task.output_format
                state.output = parse_output(content, output_format)
                state.current_response = content
            await self._transition(pipeline_run, state, AgentState.RESPONSE_APPROVED)
            await self._emit_approval(pipeline_run, agent_id, ApprovalKind.RESPONSE, content)

    async def reject_response(
        self,
        pipeline_run: PipelineRun,
        agent_id: int,
        reason: str | None = None,
    ) -> None:
        """Reject an agent's drafted response; the agent fails."""
        async with pipeline_run.lock:
            self._require_active(pipeline_run, agent_id)
            state = pipeline_run.state(agent_id)
            self._require_state(state, AgentState.RESPONSE_DRAFT, AgentState.FAILED)
            await self._fail(pipeline_run, state, f"Response rejected: {reason or 'no reason given'}", "response_rejected")
            await self._emit_approval(
                pipeline_run, agent_id, ApprovalKind.RESPONSE, None, ApprovalAction.REJECT
            )

    async def decide(
        self,
        pipeline_run: PipelineRun,
        request: ApprovalRequest,
        decision: ApprovalDecision,
    ) -> None:
        """Apply a reviewer decision to the gate named by ``request``.

        Raises:
            RunCancelledError: If the run was cancelled before the decision
                could be applied.
        """
        if request.agent_id is None:
            raise ValueError("Approval request does not name an agent")

        content = decision.content if decision.action == ApprovalAction.EDIT else None
        if request.kind == ApprovalKind.PROMPT:
            if decision.action == ApprovalAction.REJECT:
                await self.reject_prompt(pipeline_run, request.agent_id, decision.reason)
            else:
                await self.approve_prompt(pipeline_run, request.agent_id, content)
        elif request.kind == ApprovalKind.RESPONSE:
            if decision.action == ApprovalAction.REJECT:
                await self.reject_response(pipeline_run, request.agent_id, decision.reason)
            else:
                await self.approve_response(pipeline_run, request.agent_id, content)
        else:
            raise ValueError(f"Orchestrator cannot apply {request.kind.value} decisions")

    # =========================================================================
    # Scan and commit (callers hold run.lock)
    # =========================================================================

    async def _scan(self, pipeline_run: PipelineRun) -> None:
        """Advance every agent that can move without external input.

        Repeats until a full pass makes no change so that, for example, an
        auto-approved response completes and unblocks its dependents within
        the same scan.
        """
        gates = pipeline_run.quality_gates
        changed = True
        while changed and not pipeline_run.is_cancelled:
            changed = False
            for agent_id in pipeline_run.order:
                state = pipeline_run.state(agent_id)

                if state.state == AgentState.IDLE:
                    changed |= await self._try_draft_prompt(pipeline_run, state)

                if state.state == AgentState.PROMPT_DRAFT and not gates:
                    await self._transition(pipeline_run, state, AgentState.PROMPT_APPROVED)
                    changed = True

                if state.state == AgentState.PROMPT_APPROVED and agent_id not in pipeline_run.tasks:
                    await self._start_generation(pipeline_run, state)
                    changed = True

                if state.state == AgentState.RESPONSE_DRAFT and not gates:
                    await self._transition(pipeline_run, state, AgentState.RESPONSE_APPROVED)
                    changed = True

                if state.state == AgentState.RESPONSE_APPROVED:
                    await self._transition(pipeline_run, state, AgentState.COMPLETE)
                    await self._emit(
                        pipeline_run,
                        EventType.AGENT_COMPLETE,
                        agent_id,
                        {"duration_ms": state.duration_ms},
                    )
                    changed = True

    async def _try_draft_prompt(self, pipeline_run: PipelineRun, state: AgentRuntimeState) -> bool:
        """Fail on a failed dependency, draft the prompt once all are complete."""
        dependencies = pipeline_run.graph.dependencies(state.agent_id)
        failed = [d for d in dependencies if pipeline_run.state(d).state == AgentState.FAILED]
        if failed:
            await self._fail(
                pipeline_run,
                state,
                f"Upstream agent(s) {', '.join(map(str, failed))} failed",
                "dependency_failed",
            )
            return True

        if any(pipeline_run.state(d).state != AgentState.COMPLETE for d in dependencies):
            return False

        agent = pipeline_run.agent(state.agent_id)
        rendered = render_prompt(
            agent,
            pipeline_run.user_input,
            pipeline_run.outputs(),
            step_number=pipeline_run.order.index(state.agent_id) + 1,
            total_steps=len(pipeline_run.order),
        )
        if rendered.unresolved:
            logger.warning(
                "prompt_placeholders_unresolved",
                run_id=pipeline_run.run_id,
                agent_id=state.agent_id,
                placeholders=rendered.unresolved,
            )
        state.current_prompt = rendered.text
        await self._transition(pipeline_run, state, AgentState.PROMPT_DRAFT)

        if pipeline_run.quality_gates:
            await self._emit(
                pipeline_run,
                EventType.APPROVAL_REQUESTED,
                state.agent_id,
                {"kind": ApprovalKind.PROMPT.value, "content": rendered.text},
            )
        return True

    async def _start_generation(self, pipeline_run: PipelineRun, state: AgentRuntimeState) -> None:
        agent = pipeline_run.agent(state.agent_id)
        params = GenerationParams(
            max_tokens=agent.task.max_tokens,
            temperature=agent.task.temperature,
            output_format=agent.task.output_format,
            model=pipeline_run.document.settings.default_model or None,
            system_prompt=build_system_prompt(agent),
        )
        await self._transition(pipeline_run, state, AgentState.GENERATING)
        state.execution_count += 1

        prompt = state.current_prompt or ""
        pipeline_run.tasks[state.agent_id] = asyncio.create_task(
            self._generate(prompt, params),
            name=f"{pipeline_run.run_id}:agent-{state.agent_id}",
        )
        await self._emit(
            pipeline_run,
            EventType.AGENT_GENERATION_STARTED,
            state.agent_id,
            {"attempt": state.execution_count},
        )

    async def _generate(self, prompt: str, params: GenerationParams) -> tuple[str, int]:
        async with self._semaphore:
            start_time = time.time()
            text = await self.generator.generate(prompt, params)
            return text, int((time.time() - start_time) * 1000)

    async def _commit_generation(
        self,
        pipeline_run: PipelineRun,
        agent_id: int,
        task: asyncio.Task[tuple[str, int]],
    ) -> None:
        """Record the outcome of a finished generation task."""
        pipeline_run.tasks.pop(agent_id, None)
        state = pipeline_run.state(agent_id)
        if state.state != AgentState.GENERATING:
            return

        if task.cancelled():
            await self._fail_generation(
                pipeline_run, state, RunCancelledError(pipeline_run.run_id, agent_id)
            )
            return

        error = task.exception()
        if error is not None:
            if not isinstance(error, GenerationError):
                error = GenerationError(str(error) or type(error).__name__, agent_id, type(error).__name__)
            await self._fail_generation(pipeline_run, state, error)
            return

        text, latency_ms = task.result()
        state.current_response = text
        try:
            state.output = parse_output(text, pipeline_run.agent(agent_id).task.output_format)
        except OutputParseError as e:
            await self._fail_generation(pipeline_run, state, e)
            return

        call = GenerationMetrics(
            model=pipeline_run.document.settings.default_model or None,
            prompt_chars=len(state.current_prompt or ""),
            response_chars=len(text),
            latency_ms=latency_ms,
        )
        if self.metrics_collector:
            self.metrics_collector.record_generation(
                pipeline_run.run_id,
                prompt_chars=call.prompt_chars,
                response_chars=call.response_chars,
                latency_ms=call.latency_ms,
            )
        await self._emit(pipeline_run, EventType.GENERATION_COMPLETE, agent_id, call.model_dump())
        await self._transition(pipeline_run, state, AgentState.RESPONSE_DRAFT)

        if pipeline_run.quality_gates:
            await self._emit(
                pipeline_run,
                EventType.APPROVAL_REQUESTED,
                agent_id,
                {"kind": ApprovalKind.RESPONSE.value, "content": text},
            )

    async def _cancel_in_flight(self, pipeline_run: PipelineRun) -> None:
        """Stop generation tasks and fail every agent that had started."""
        tasks = list(pipeline_run.tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        pipeline_run.tasks.clear()

        for agent_id in pipeline_run.order:
            state = pipeline_run.state(agent_id)
            if state.state in CANCELLABLE_STATES:
                await self._fail(
                    pipeline_run,
                    state,
                    RunCancelledError(pipeline_run.run_id, agent_id),
                    RunCancelledError.code,
                )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _prepare(
        self,
        document: Mapping[str, Any] | ConfigurationDocument,
        user_input: str,
    ) -> tuple[ConfigurationDocument, AgentGraph]:
        if isinstance(document, ConfigurationDocument):
            version: str | None = document.schema_version
        else:
            version = detect_version(document)
        try:
            self.registry.require_current(version)
        except (UnknownVersionError, MigrationRequiredError) as e:
            logger.warning("run_rejected_version", version=version, error_code=e.code)
            raise

        report = validate_run_request(document, user_input)
        if not report.valid:
            logger.warning("run_rejected_invalid_document", errors=report.errors)
            raise DocumentValidationError(report.errors, report.warnings)
        parsed, errors = parse_document(document)
        if parsed is None:
            raise DocumentValidationError(errors)
        return parsed, AgentGraph.from_document(parsed)

    def _require_active(self, pipeline_run: PipelineRun, agent_id: int) -> None:
        if pipeline_run.is_cancelled:
            raise RunCancelledError(pipeline_run.run_id, agent_id)

    def _require_state(self, state: AgentRuntimeState, expected: AgentState, target: AgentState) -> None:
        if state.state != expected:
            raise InvalidTransitionError(
                state.agent_id, state.state.value, target.value
            )

    async def _transition(
        self,
        pipeline_run: PipelineRun,
        state: AgentRuntimeState,
        to_state: AgentState,
    ) -> None:
        record = state_machine.transition(state, to_state)
        await self._emit(
            pipeline_run,
            EventType.AGENT_STATE_CHANGED,
            state.agent_id,
            {"from_state": record.from_state.value, "to_state": record.to_state.value},
        )

    async def _fail(
        self,
        pipeline_run: PipelineRun,
        state: AgentRuntimeState,
        error: Exception | str,
        error_type: str,
    ) -> None:
        from_state = state.state
        state_machine.fail(state, error, error_type)
        await self._on_agent_failed(pipeline_run, state, from_state)

    async def _fail_generation(
        self,
        pipeline_run: PipelineRun,
        state: AgentRuntimeState,
        error: GenerationError | RunCancelledError,
    ) -> None:
        from_state = state.state
        if isinstance(error, GenerationError):
            state_machine.record_generation_error(state, error, error.code)
        else:
            state_machine.fail(state, error, error.code)
        await self._on_agent_failed(pipeline_run, state, from_state)

    async def _on_agent_failed(
        self,
        pipeline_run: PipelineRun,
        state: AgentRuntimeState,
        from_state: AgentState,
    ) -> None:
        logger.warning(
            "agent_failed",
            run_id=pipeline_run.run_id,
            agent_id=state.agent_id,
            from_state=from_state.value,
            error_type=state.error_type,
            error=state.last_error,
        )
        if self.metrics_collector:
            self.metrics_collector.record_failure(pipeline_run.run_id)
        await self._emit(
            pipeline_run,
            EventType.AGENT_FAILED,
            state.agent_id,
            {"error": state.last_error, "error_type": state.error_type},
        )

    async def _on_run_started(self, pipeline_run: PipelineRun, resumed: bool = False) -> None:
        if self.metrics_collector:
            self.metrics_collector.start(pipeline_run.run_id)
        logger.info(
            "run_started",
            run_id=pipeline_run.run_id,
            agents=len(pipeline_run.states),
            order=pipeline_run.order,
            quality_gates=pipeline_run.quality_gates,
            resumed=resumed,
        )
        await self._emit(
            pipeline_run,
            EventType.RUN_STARTED,
            data={
                "order": pipeline_run.order,
                "quality_gates": pipeline_run.quality_gates,
                "resumed": resumed,
            },
        )

    async def _report(self, pipeline_run: PipelineRun) -> ExecutionTrace:
        """Build the trace and, once the run is over, finalize it exactly once."""
        trace = pipeline_run.trace()
        if trace.status == RunStatus.AWAITING_APPROVAL:
            await self._emit(
                pipeline_run,
                EventType.RUN_AWAITING_APPROVAL,
                data={"pending": [r.agent_id for r in trace.pending_approvals]},
            )
            return trace
        if trace.status == RunStatus.RUNNING or pipeline_run.closed:
            return trace

        pipeline_run.closed = True
        pipeline_run.completed_at = time.time()
        if self.metrics_collector:
            pipeline_run.metrics = self.metrics_collector.finish(pipeline_run.run_id)

        event_type = (
            EventType.RUN_CANCELLED if trace.status == RunStatus.CANCELLED else EventType.RUN_COMPLETE
        )
        logger.info(
            "run_finished",
            run_id=pipeline_run.run_id,
            status=trace.status.value,
            success=trace.success,
            failed_agents=trace.failed_agent_ids,
        )
        await self._emit(
            pipeline_run,
            event_type,
            data={"success": trace.success, "failed_agents": trace.failed_agent_ids},
        )
        return pipeline_run.trace()

    async def _emit_approval(
        self,
        pipeline_run: PipelineRun,
        agent_id: int,
        kind: ApprovalKind,
        content: str | None,
        action: ApprovalAction | None = None,
    ) -> None:
        if action is None:
            action = ApprovalAction.APPROVE if content is None else ApprovalAction.EDIT
        logger.info(
            "approval_resolved",
            run_id=pipeline_run.run_id,
            agent_id=agent_id,
            kind=kind.value,
            action=action.value,
        )
        await self._emit(
            pipeline_run,
            EventType.APPROVAL_RESOLVED,
            agent_id,
            {"kind": kind.value, "action": action.value},
        )

    async def _emit(
        self,
        pipeline_run: PipelineRun,
        event_type: EventType,
        agent_id: int | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(
            PipelineEvent(
                type=event_type,
                run_id=pipeline_run.run_id,
                agent_id=agent_id,
                agent_title=pipeline_run.agent(agent_id).role.title if agent_id is not None else None,
                data=data or {},
            )
        )
