"""Per-run event delivery for pipeline observers.

The orchestrator and the pipeline manager publish every run lifecycle,
agent state, approval gate and migration event here, keyed by run id.
Observers of a run (a UI bridge, a CLI, a test) subscribe with that id and
read events from their own asyncio.Queue in publication order.

A run's events are delivered to subscribers, buffered while it has none,
and kept in a bounded history for replay. Closing a run sends RUN_CLOSED
to its observers; the orchestrator never waits on a slow observer for
more than a few seconds.
"""

import asyncio
import threading
from collections import defaultdict

import structlog

from events.types import EventType, PipelineEvent

logger = structlog.get_logger()


class EventBus:
    """Fan-out of pipeline events to the observers of each run.

    Buffering:
        A run starts emitting (run_started, the first agent_state_changed)
        as soon as the manager schedules it, which is usually before a host
        has subscribed. Those events are buffered and handed to the first
        subscriber of the run.

    History:
        Every event except RUN_CLOSED is also appended to the run's history,
        capped at MAX_HISTORY_PER_RUN, so a late observer or a test can read
        the full sequence of a finished run.

    Thread Safety:
        The subscription, buffer and history tables are guarded by a
        threading.Lock. Queue delivery happens outside the lock.

    Usage:
        >>> bus = EventBus()
        >>> queue = bus.subscribe("run_123")
        >>> await bus.publish(PipelineEvent(
        ...     type=EventType.RUN_STARTED,
        ...     run_id="run_123",
        ...     data={"order": [1, 3, 2]},
        ... ))
        >>> event = await queue.get()
        >>> bus.unsubscribe("run_123", queue)
        >>> await bus.close_run("run_123")
    """

    MAX_HISTORY_PER_RUN = 5000

    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue[PipelineEvent]]] = defaultdict(list)
        self._event_buffer: dict[str, list[PipelineEvent]] = defaultdict(list)
        self._event_history: dict[str, list[PipelineEvent]] = defaultdict(list)
        self._lock = threading.Lock()
        logger.info("event_bus_initialized")

    def subscribe(self, run_id: str) -> asyncio.Queue[PipelineEvent]:
        """Start observing a run.

        Events the run emitted while it had no observer are put on the new
        queue first, in order.

        Args:
            run_id: The run to observe

        Returns:
            A queue receiving the run's events until RUN_CLOSED
        """
        queue: asyncio.Queue[PipelineEvent] = asyncio.Queue()
        buffered_events: list[PipelineEvent] = []

        with self._lock:
            self._subscribers[run_id].append(queue)
            subscriber_count = len(self._subscribers[run_id])

            if run_id in self._event_buffer:
                buffered_events = self._event_buffer[run_id]
                del self._event_buffer[run_id]

        for event in buffered_events:
            queue.put_nowait(event)

        logger.info(
            "run_observer_added",
            run_id=run_id,
            observer_count=subscriber_count,
            buffered_events_delivered=len(buffered_events),
        )
        return queue

    def unsubscribe(self, run_id: str, queue: asyncio.Queue[PipelineEvent]) -> None:
        """Stop observing a run. Unknown queues are ignored.

        The run itself is unaffected; later events are buffered again once
        its last observer leaves.
        """
        with self._lock:
            if run_id not in self._subscribers:
                return
            try:
                self._subscribers[run_id].remove(queue)
            except ValueError:
                logger.warning("run_observer_not_found", run_id=run_id)
                return

            subscriber_count = len(self._subscribers[run_id])
            logger.info(
                "run_observer_removed",
                run_id=run_id,
                observer_count=subscriber_count,
            )
            if not self._subscribers[run_id]:
                del self._subscribers[run_id]

    async def publish(self, event: PipelineEvent) -> None:
        """Deliver an event to the observers of its run.

        With no observers the event is buffered. Delivery to each queue is
        bounded by a timeout; a queue that times out misses that event and
        the run carries on.

        Args:
            event: The PipelineEvent to publish
        """
        with self._lock:
            if event.type != EventType.RUN_CLOSED:
                history = self._event_history[event.run_id]
                history.append(event)
                if len(history) > self.MAX_HISTORY_PER_RUN:
                    self._event_history[event.run_id] = history[-self.MAX_HISTORY_PER_RUN:]

            subscribers = list(self._subscribers.get(event.run_id, []))

            if not subscribers:
                self._event_buffer[event.run_id].append(event)
                logger.debug(
                    "event_buffered",
                    run_id=event.run_id,
                    event_type=event.type.value,
                    buffer_size=len(self._event_buffer[event.run_id]),
                )
                return

        # A stalled observer costs at most five seconds per event
        for queue in subscribers:
            try:
                await asyncio.wait_for(queue.put(event), timeout=5.0)
            except TimeoutError:
                logger.warning(
                    "event_delivery_timeout",
                    run_id=event.run_id,
                    event_type=event.type.value,
                )
            except Exception:
                logger.warning(
                    "event_delivery_failed",
                    run_id=event.run_id,
                    event_type=event.type.value,
                )

        logger.debug(
            "event_published",
            run_id=event.run_id,
            event_type=event.type.value,
            observer_count=len(subscribers),
            agent_id=event.agent_id,
        )

    def get_event_history(self, run_id: str) -> list[PipelineEvent]:
        """Every event the run has published so far, oldest first."""
        with self._lock:
            return list(self._event_history.get(run_id, []))

    async def close_run(self, run_id: str) -> None:
        """End observation of a finished or cancelled run.

        Each observer receives a final RUN_CLOSED event and is dropped, and
        events still buffered for the run are discarded. The run's history
        stays readable until clear_event_history is called.

        Args:
            run_id: The run to close
        """
        queues_to_signal: list[asyncio.Queue[PipelineEvent]] = []

        with self._lock:
            subscriber_count = 0
            buffer_count = 0

            if run_id in self._subscribers:
                subscriber_count = len(self._subscribers[run_id])
                queues_to_signal = list(self._subscribers[run_id])
                del self._subscribers[run_id]

            if run_id in self._event_buffer:
                buffer_count = len(self._event_buffer[run_id])
                del self._event_buffer[run_id]

        for queue in queues_to_signal:
            queue.put_nowait(
                PipelineEvent(
                    type=EventType.RUN_CLOSED,
                    run_id=run_id,
                    data={"reason": "run_closed"},
                )
            )

        if subscriber_count > 0 or buffer_count > 0:
            logger.info(
                "run_closed",
                run_id=run_id,
                observers_removed=subscriber_count,
                buffered_events_cleared=buffer_count,
            )
        else:
            logger.debug("close_run_not_found", run_id=run_id)

    def get_subscriber_count(self, run_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(run_id, []))

    def get_active_runs(self) -> list[str]:
        """Runs that currently have at least one observer."""
        with self._lock:
            return list(self._subscribers.keys())

    def clear_event_history(self, run_id: str) -> None:
        """Forget a run's history, e.g. when the manager shuts down."""
        with self._lock:
            self._event_history.pop(run_id, None)


# Process-wide bus shared by the orchestrator and the pipeline manager
_event_bus: EventBus | None = None
_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Return the process-wide EventBus, creating it on first use."""
    global _event_bus
    if _event_bus is None:
        with _bus_lock:
            if _event_bus is None:
                _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Drop the process-wide EventBus so the next run starts with no history."""
    global _event_bus
    with _bus_lock:
        _event_bus = None
    logger.info("event_bus_reset")
