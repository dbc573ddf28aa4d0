"""Pipeline manager for loading, migrating and running configurations.

This module provides the PipelineManager class that ties the pipeline core
together for a host application:

- ConfigurationStore: Raw documents in whatever version they were saved
- VersionRegistry / MigrationEngine: Version checks and two-phase migration
- Orchestrator: Execution of current-version documents
- EventBus: Run, agent, approval and migration events

A run is executed in a background task. When it pauses at an approval gate
its snapshot is persisted, so it can be resumed after a host restart.

Usage:
    >>> from agents import Orchestrator, create_generation_client
    >>> from events import get_event_bus
    >>> from models.database import ConfigurationStore
    >>> from pipeline_manager import PipelineManager
    >>>
    >>> store = ConfigurationStore("./data/pipeline.db")
    >>> await store.init()
    >>> orchestrator = Orchestrator(create_generation_client(), event_bus=get_event_bus())
    >>> manager = PipelineManager(orchestrator, store=store)
    >>>
    >>> document = await manager.open_configuration("cfg_abc123")
    >>> run_id = await manager.start_run(document, "Build a todo app", config_id="cfg_abc123")
    >>> trace = await manager.wait_for_run(run_id)
    >>>
    >>> await manager.cleanup_all()
"""

import asyncio
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from agents.orchestrator import ApprovalHandler, Orchestrator, PipelineRun
from errors import (
    ConfigurationNotFoundError,
    MigrationRejectedError,
    RunNotFoundError,
)
from events import EventBus
from events.types import EventType, PipelineEvent
from models.database import ConfigurationStore
from models.runtime import (
    ApprovalAction,
    ApprovalDecision,
    ApprovalKind,
    ApprovalRequest,
    ExecutionTrace,
    RunStatus,
)
from models.schemas import ConfigurationDocument
from versioning import (
    CompatibilityReport,
    MigrationEngine,
    MigrationPlan,
    VersionRegistry,
    detect_version,
)

logger = structlog.get_logger(__name__)


@dataclass
class RunInfo:
    """Bookkeeping for one run owned by the manager.

    Attributes:
        run_id: The run's identifier.
        config_id: Configuration the run executes, if it came from the store.
        pipeline_run: The orchestrator's runtime state for the run.
        trace: Most recent trace reported by the orchestrator.
        error_message: Set when the background task died unexpectedly.
    """

    run_id: str
    config_id: str | None
    pipeline_run: PipelineRun
    trace: ExecutionTrace | None = None
    error_message: str | None = None
    task: asyncio.Task[None] | None = field(default=None, repr=False)


def describe_plan(plan: MigrationPlan) -> str:
    """Render a migration plan as the JSON text shown to a reviewer."""
    summary = {
        "sourceVersion": plan.source_version,
        "targetVersion": plan.target_version,
        "path": plan.path,
        "pendingChanges": [
            {"oldPath": m.old_path, "newPath": m.new_path, "transformation": m.transformation}
            for m in plan.pending_changes
        ],
        "tagMappings": plan.tag_mappings,
        "deprecatedFields": plan.deprecated_fields,
        "newFields": plan.new_fields,
        "warnings": plan.warnings,
    }
    return json.dumps(summary, indent=2)


class PipelineManager:
    """Coordinates configuration migration and pipeline runs.

    Thread Safety:
        The run registry is guarded by an asyncio.Lock. Migration
        finalization holds a per-configuration lock so that at most one
        finalization per configuration id is in flight.

    Attributes:
        orchestrator: Executes current-version documents.
        store: Optional persistence for documents, snapshots and metrics.
        registry: Version registry used for compatibility checks.
        engine: Migration engine bound to the registry.
        approval_handler: Optional reviewer for gates and migrations.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        store: ConfigurationStore | None = None,
        registry: VersionRegistry | None = None,
        event_bus: EventBus | None = None,
        approval_handler: ApprovalHandler | None = None,
    ) -> None:
        """Initialize the PipelineManager.

        Args:
            orchestrator: Orchestrator used for every run
            store: Optional SQLite store for documents and snapshots
            registry: Version registry (defaults to the orchestrator's)
            event_bus: Bus for migration events (defaults to the orchestrator's)
            approval_handler: Optional reviewer; without one, gated runs pause
        """
        self.orchestrator = orchestrator
        self.store = store
        self.registry = registry or orchestrator.registry
        self.engine = MigrationEngine(self.registry)
        self.event_bus = event_bus if event_bus is not None else orchestrator.event_bus
        self.approval_handler = approval_handler
        self._runs: dict[str, RunInfo] = {}
        self._lock = asyncio.Lock()
        self._migration_locks: dict[str, asyncio.Lock] = {}
        logger.info("pipeline_manager_initialized", current_version=self.registry.current_version)

    # =========================================================================
    # Configurations and migration
    # =========================================================================

    async def load_document(self, config_id: str) -> dict[str, Any]:
        """Load a raw document from the store.

        Raises:
            ConfigurationNotFoundError: If no store is attached or the id is unknown.
        """
        if self.store is None:
            raise ConfigurationNotFoundError(config_id)
        raw = await self.store.get_configuration(config_id)
        if raw is None:
            raise ConfigurationNotFoundError(config_id)
        return raw

    def check_compatibility(self, document: Mapping[str, Any]) -> CompatibilityReport:
        return self.registry.check_compatibility(document)

    async def prepare(
        self,
        document: Mapping[str, Any],
        config_id: str | None = None,
    ) -> MigrationPlan | None:
        """Plan the migration of a raw document.

        Returns:
            None when the document is already current, otherwise the plan.

        Raises:
            UnknownVersionError: If the version cannot be resolved.
            MigrationIncompleteError: If mandatory values are missing.
        """
        plan = self.engine.plan(document)
        if plan is None:
            return None

        await self._emit_migration(
            EventType.MIGRATION_PLANNED,
            config_id,
            {
                "source_version": plan.source_version,
                "target_version": plan.target_version,
                "pending_changes": len(plan.pending_changes),
                "requires_user_approval": plan.requires_user_approval,
            },
        )
        return plan

    async def finalize_migration(
        self,
        plan: MigrationPlan,
        decision: ApprovalDecision,
        config_id: str | None = None,
        name: str = "",
    ) -> ConfigurationDocument:
        """Finalize a reviewed plan and save the result under ``config_id``.

        The original raw document is never overwritten in place: the new
        document replaces it only after it has validated.

        Raises:
            MigrationRejectedError: If the decision rejects the migration.
            DocumentValidationError: If the reviewed result is invalid.
        """
        lock = self._migration_lock(config_id)
        async with lock:
            try:
                document = self.engine.finalize(plan, decision)
            except MigrationRejectedError as e:
                await self._emit_migration(
                    EventType.MIGRATION_REJECTED,
                    config_id,
                    {"source_version": plan.source_version, "reason": e.reason},
                )
                raise

            if config_id is not None and self.store is not None:
                await self.store.save_configuration(config_id, document.to_raw(), name=name)

            await self._emit_migration(
                EventType.MIGRATION_FINALIZED,
                config_id,
                {
                    "source_version": plan.source_version,
                    "target_version": document.schema_version,
                    "user_changes": len(decision.user_changes),
                },
            )
            return document

    async def open_configuration(
        self,
        config_id: str,
        handler: ApprovalHandler | None = None,
    ) -> ConfigurationDocument:
        """Load a configuration and migrate it to the current version if needed.

        A pending migration is routed through ``handler`` (or the manager's
        approval handler) as a MIGRATION approval request.

        Raises:
            ConfigurationNotFoundError: If the id is unknown.
            UnknownVersionError: If the stored version cannot be resolved.
            MigrationRejectedError: If the reviewer rejects the migration, or
                it needs review and no reviewer is available.
        """
        raw = await self.load_document(config_id)
        plan = await self.prepare(raw, config_id)
        if plan is None:
            return ConfigurationDocument.model_validate(raw)

        reviewer = handler or self.approval_handler
        if reviewer is not None:
            request = ApprovalRequest(kind=ApprovalKind.MIGRATION, content=describe_plan(plan))
            decision = await reviewer.review(request)
        elif plan.requires_user_approval:
            raise MigrationRejectedError(plan.source_version, "review required but no reviewer is available")
        else:
            decision = ApprovalDecision(action=ApprovalAction.APPROVE)

        return await self.finalize_migration(plan, decision, config_id)

    # =========================================================================
    # Runs
    # =========================================================================

    async def start_run(
        self,
        document: Mapping[str, Any] | ConfigurationDocument,
        user_input: str,
        config_id: str | None = None,
        run_id: str | None = None,
    ) -> str:
        """Validate a current-version document and start executing it.

        Structural errors surface here, before any background work starts.

        Returns:
            The run id.

        Raises:
            UnknownVersionError: If the schema version cannot be resolved.
            MigrationRequiredError: If the document is not at a current version.
            DocumentValidationError: If the document or request is invalid.
            CyclicDependencyError: If agents depend on each other in a cycle.
        """
        if isinstance(document, ConfigurationDocument):
            version: str | None = document.schema_version
        else:
            version = detect_version(document)
        self.registry.require_current(version)

        pipeline_run = await self.orchestrator.start(document, user_input, run_id=run_id)
        info = RunInfo(run_id=pipeline_run.run_id, config_id=config_id, pipeline_run=pipeline_run)
        async with self._lock:
            self._runs[info.run_id] = info

        await self._schedule_advance(info)
        logger.info("run_scheduled", run_id=info.run_id, config_id=config_id)
        return info.run_id

    async def resume_run(
        self,
        run_id: str,
        document: Mapping[str, Any] | ConfigurationDocument | None = None,
    ) -> str:
        """Resume a paused run from its persisted snapshot.

        Args:
            run_id: The run to resume.
            document: The document the run executes; loaded from the store by
                the snapshot's configuration id when omitted.

        Raises:
            RunNotFoundError: If no snapshot exists for the run.
            DocumentValidationError: If the snapshot does not match the document.
        """
        if self.store is None:
            raise RunNotFoundError(run_id)
        snapshot = await self.store.get_snapshot(run_id)
        if snapshot is None:
            raise RunNotFoundError(run_id)

        config_id = await self.store.get_snapshot_config_id(run_id)
        if document is None:
            if config_id is None:
                raise RunNotFoundError(run_id)
            document = await self.load_document(config_id)

        pipeline_run = await self.orchestrator.resume(document, snapshot)
        info = RunInfo(run_id=run_id, config_id=config_id, pipeline_run=pipeline_run)
        async with self._lock:
            self._runs[run_id] = info

        await self._schedule_advance(info)
        return run_id

    def get_run(self, run_id: str) -> PipelineRun:
        return self._get_info(run_id).pipeline_run

    def get_trace(self, run_id: str) -> ExecutionTrace:
        """Current trace of a run, built from its live state."""
        return self._get_info(run_id).pipeline_run.trace()

    def list_runs(self) -> list[str]:
        return list(self._runs.keys())

    async def wait_for_run(self, run_id: str) -> ExecutionTrace:
        """Wait until the run's background work settles and return its trace.

        Returns once the run is over or paused at an approval gate.

        Raises:
            RunNotFoundError: If the run is unknown.
        """
        info = self._get_info(run_id)
        task = info.task
        if task is not None:
            await asyncio.wait({task})
        return info.pipeline_run.trace()

    async def approve(self, run_id: str, agent_id: int, content: str | None = None) -> None:
        """Approve (optionally editing) whichever gate the agent waits at."""
        request = self._pending_request(run_id, agent_id)
        action = ApprovalAction.APPROVE if content is None else ApprovalAction.EDIT
        await self.decide(run_id, request, ApprovalDecision(action=action, content=content))

    async def reject(self, run_id: str, agent_id: int, reason: str | None = None) -> None:
        """Reject whichever gate the agent waits at; the agent fails."""
        request = self._pending_request(run_id, agent_id)
        await self.decide(
            run_id, request, ApprovalDecision(action=ApprovalAction.REJECT, reason=reason)
        )

    async def decide(
        self,
        run_id: str,
        request: ApprovalRequest,
        decision: ApprovalDecision,
    ) -> None:
        """Apply a reviewer decision and continue the run in the background."""
        info = self._get_info(run_id)
        await self.orchestrator.decide(info.pipeline_run, request, decision)
        await self._schedule_advance(info)

    async def cancel_run(self, run_id: str) -> ExecutionTrace:
        """Cancel a run; completed agents keep their results.

        Raises:
            RunNotFoundError: If the run is unknown.
        """
        info = self._get_info(run_id)
        pipeline_run = info.pipeline_run
        if pipeline_run.closed:
            return pipeline_run.trace()
        logger.info("cancel_run_start", run_id=run_id, status=pipeline_run.status.value)

        pipeline_run.cancel()
        task = info.task
        if task is not None and not task.done():
            task.cancel()
            # asyncio.wait leaves the task's CancelledError behind and only
            # raises if cancel_run itself is cancelled.
            await asyncio.wait({task})

        trace = await self.orchestrator.cancel(pipeline_run)
        await self._settle(info, trace)
        logger.info("cancel_run_complete", run_id=run_id)
        return trace

    async def cleanup_all(self) -> None:
        """Cancel every run and release its resources.

        This method should be called during application shutdown.
        """
        logger.info("cleanup_all_start", run_count=len(self._runs))

        async with self._lock:
            run_ids = list(self._runs.keys())

        for run_id in run_ids:
            info = self._runs.get(run_id)
            if info is None or info.pipeline_run.closed:
                continue
            try:
                await self.cancel_run(run_id)
            except Exception as e:
                logger.error("cleanup_run_cancel_failed", run_id=run_id, error=str(e))

        if self.event_bus is not None:
            for run_id in run_ids:
                await self.event_bus.close_run(run_id)
                self.event_bus.clear_event_history(run_id)

        async with self._lock:
            self._runs.clear()
        self._migration_locks.clear()
        logger.info("cleanup_all_complete")

    # =========================================================================
    # Background execution
    # =========================================================================

    async def _schedule_advance(self, info: RunInfo) -> None:
        """Chain an advance of the run after any advance already in flight."""
        async with self._lock:
            previous = info.task
            info.task = asyncio.create_task(
                self._advance(info, previous),
                name=f"run_{info.run_id}",
            )

    async def _advance(self, info: RunInfo, previous: asyncio.Task[None] | None) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})

        pipeline_run = info.pipeline_run
        try:
            if self.approval_handler is not None:
                trace = await self.orchestrator.drive(pipeline_run, self.approval_handler)
            else:
                trace = await self.orchestrator.advance(pipeline_run)
        except Exception as e:
            info.error_message = str(e)
            logger.error("run_task_failed", run_id=info.run_id, error=str(e))
            await self._publish(
                PipelineEvent(
                    type=EventType.RUN_ERROR,
                    run_id=info.run_id,
                    data={"error": str(e), "error_type": type(e).__name__},
                )
            )
            return

        await self._settle(info, trace)

    async def _settle(self, info: RunInfo, trace: ExecutionTrace) -> None:
        """Persist what a host needs after the run stops making progress."""
        info.trace = trace
        if self.store is None:
            return

        if trace.status == RunStatus.AWAITING_APPROVAL:
            await self.store.save_snapshot(
                info.pipeline_run.snapshot(),
                trace.status.value,
                config_id=info.config_id,
            )
            return

        if trace.status in (RunStatus.COMPLETE, RunStatus.CANCELLED):
            await self.store.delete_snapshot(info.run_id)
            metrics = info.pipeline_run.metrics
            if metrics is not None:
                await self.store.save_metrics(info.run_id, metrics.to_dict())

    # =========================================================================
    # Helpers
    # =========================================================================

    def _get_info(self, run_id: str) -> RunInfo:
        info = self._runs.get(run_id)
        if info is None:
            raise RunNotFoundError(run_id)
        return info

    def _pending_request(self, run_id: str, agent_id: int) -> ApprovalRequest:
        pipeline_run = self._get_info(run_id).pipeline_run
        for request in pipeline_run.pending_approvals():
            if request.agent_id == agent_id:
                return request
        state = pipeline_run.state(agent_id).state
        raise ValueError(f"Agent {agent_id} is not waiting for approval (state: {state.value})")

    def _migration_lock(self, config_id: str | None) -> asyncio.Lock:
        if config_id is None:
            return asyncio.Lock()
        return self._migration_locks.setdefault(config_id, asyncio.Lock())

    async def _emit_migration(
        self,
        event_type: EventType,
        config_id: str | None,
        data: dict[str, Any],
    ) -> None:
        if config_id is None:
            return
        await self._publish(PipelineEvent(type=event_type, run_id=config_id, data=data))

    async def _publish(self, event: PipelineEvent) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(event)
