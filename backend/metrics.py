"""In-memory metrics collection for active pipeline runs.

This module provides the MetricsCollector class that accumulates generation
counts, sizes and timing for running pipelines. The orchestrator records
into it; the host reads the final numbers when a run finishes.

Usage:
    >>> from metrics import MetricsCollector
    >>> collector = MetricsCollector()
    >>> collector.start("run_abc123")
    >>> collector.record_generation("run_abc123", prompt_chars=400, response_chars=900, latency_ms=1200)
    >>> collector.record_failure("run_abc123")
    >>> final = collector.finish("run_abc123")
    >>> print(final)  # RunMetricsData(...)
"""

import time
from dataclasses import dataclass, field

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class RunMetricsData:
    """Accumulated metrics for a single run.

    Attributes:
        generation_calls: Number of generation invocations.
        failed_agents: Number of agents that ended in the failed state.
        prompt_chars: Total prompt characters sent.
        response_chars: Total response characters received.
        generation_ms: Summed latency of generation calls.
        duration_ms: Wall-clock run time in milliseconds (set by finish()).
        started_at: Unix timestamp when tracking began.
    """

    generation_calls: int = 0
    failed_agents: int = 0
    prompt_chars: int = 0
    response_chars: int = 0
    generation_ms: int = 0
    duration_ms: int = 0
    started_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, int]:
        return {
            "generation_calls": self.generation_calls,
            "failed_agents": self.failed_agents,
            "prompt_chars": self.prompt_chars,
            "response_chars": self.response_chars,
            "generation_ms": self.generation_ms,
            "duration_ms": self.duration_ms,
        }


class MetricsCollector:
    """In-memory collector that tracks per-run metrics.

    Each active run gets its own RunMetricsData instance. Mutations are plain
    attribute updates performed on the event loop thread, so concurrent agent
    tasks within one run do not need a lock.

    Attributes:
        _runs: Mapping from run_id to its metrics data.
    """

    def __init__(self) -> None:
        """Initialize an empty metrics collector."""
        self._runs: dict[str, RunMetricsData] = {}
        logger.info("metrics_collector_initialized")

    def start(self, run_id: str) -> None:
        """Begin tracking metrics for a run.

        If the run is already being tracked, this is a no-op.

        Args:
            run_id: The run to start tracking.
        """
        if run_id in self._runs:
            logger.debug("metrics_already_tracking", run_id=run_id)
            return

        self._runs[run_id] = RunMetricsData()
        logger.debug("metrics_tracking_started", run_id=run_id)

    def record_generation(
        self,
        run_id: str,
        prompt_chars: int,
        response_chars: int,
        latency_ms: int,
    ) -> None:
        """Record one successful generation call.

        If the run is not being tracked, this is a no-op with a warning.

        Args:
            run_id: The run the call belongs to.
            prompt_chars: Length of the prompt sent.
            response_chars: Length of the response received.
            latency_ms: Call latency.
        """
        data = self._runs.get(run_id)
        if data is None:
            logger.warning("metrics_record_no_run", run_id=run_id)
            return

        data.generation_calls += 1
        data.prompt_chars += prompt_chars
        data.response_chars += response_chars
        data.generation_ms += latency_ms

        logger.debug(
            "metrics_generation_recorded",
            run_id=run_id,
            prompt_chars=prompt_chars,
            response_chars=response_chars,
            total_generation_calls=data.generation_calls,
        )

    def record_failure(self, run_id: str) -> None:
        """Increment the failed-agent counter for a run."""
        data = self._runs.get(run_id)
        if data is None:
            logger.warning("metrics_failure_no_run", run_id=run_id)
            return

        data.failed_agents += 1

    def finish(self, run_id: str) -> RunMetricsData | None:
        """Finalize metrics for a run, calculating duration.

        The run's metrics data is removed from the collector after this call.

        Args:
            run_id: The run to finalize.

        Returns:
            The final RunMetricsData, or None if not tracked.
        """
        data = self._runs.pop(run_id, None)
        if data is None:
            logger.warning("metrics_finish_no_run", run_id=run_id)
            return None

        data.duration_ms = int((time.time() - data.started_at) * 1000)

        logger.info(
            "metrics_run_finished",
            run_id=run_id,
            generation_calls=data.generation_calls,
            failed_agents=data.failed_agents,
            duration_ms=data.duration_ms,
        )
        return data

    def get(self, run_id: str) -> RunMetricsData | None:
        """Get current (in-progress) metrics for a run without removing it."""
        return self._runs.get(run_id)
