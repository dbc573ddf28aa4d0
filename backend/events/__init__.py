"""Event system for pipeline observability.

This package provides the event infrastructure between the orchestrator and
migration flow on one side and hosts observing them on the other. The event
system is based on an async pub/sub pattern using asyncio.Queue.

Key Components:
    - EventType: Enum of all event types in the system
    - PipelineEvent: Pydantic model for events flowing through the system
    - EventBus: Async pub/sub implementation for event distribution
    - GenerationMetrics: Size and latency metrics for individual generation calls

Usage:
    >>> from events import EventType, PipelineEvent, EventBus
    >>>
    >>> bus = EventBus()
    >>> queue = bus.subscribe("run_123")
    >>>
    >>> await bus.publish(PipelineEvent(
    ...     type=EventType.AGENT_COMPLETE,
    ...     run_id="run_123",
    ...     agent_id=1,
    ... ))
    >>>
    >>> event = await queue.get()
    >>> print(f"Received: {event.type.value}")
"""

from events.bus import (
    EventBus,
    get_event_bus,
    reset_event_bus,
)
from events.types import (
    EventType,
    GenerationMetrics,
    PipelineEvent,
)

__all__ = [
    # Event types
    "EventType",
    "PipelineEvent",
    "GenerationMetrics",
    # Event bus
    "EventBus",
    "get_event_bus",
    "reset_event_bus",
]
