"""
Event Bus - Pub/sub for run and node lifecycle events.

Lets an editor (or any observer) follow a run as it happens:
- when the run starts, completes or fails
- when each node starts, completes or fails

The scheduler publishes; subscribers decide what to do with the events.
Handler errors are logged and never affect the run.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of events that can be published."""

    # Run lifecycle
    EXECUTION_STARTED = "execution_started"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"

    # Node lifecycle
    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"


@dataclass
class FlowEvent:
    """An event emitted during a run."""

    type: EventType
    run_id: str
    node_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "run_id": self.run_id,
            "node_id": self.node_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[FlowEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to events."""

    id: str
    event_types: set[EventType]
    handler: EventHandler
    filter_run: str | None = None  # Only receive events from this run
    filter_node: str | None = None  # Only receive events from this node


class EventBus:
    """
    Pub/sub event bus for run observability.

    Example:
        bus = EventBus()

        async def on_node_failed(event: FlowEvent):
            print(f"{event.node_id} failed: {event.data['error']}")

        bus.subscribe(event_types=[EventType.NODE_FAILED], handler=on_node_failed)
        await scheduler.run(graph, ctx)  # scheduler created with event_bus=bus
    """

    def __init__(self, max_history: int = 1000, max_concurrent_handlers: int = 10):
        """
        Args:
            max_history: Maximum events to keep in history
            max_concurrent_handlers: Maximum concurrent handler executions
        """
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[FlowEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_run: str | None = None,
        filter_node: str | None = None,
    ) -> str:
        """Subscribe to events. Returns a subscription ID for unsubscribe()."""
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"

        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_run=filter_run,
            filter_node=filter_node,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns True if it existed."""
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: FlowEvent) -> None:
        """Publish an event to all matching subscribers."""
        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history :]

        matching_handlers = [
            sub.handler for sub in self._subscriptions.values() if self._matches(sub, event)
        ]
        if matching_handlers:
            await self._execute_handlers(event, matching_handlers)

    def _matches(self, subscription: Subscription, event: FlowEvent) -> bool:
        if event.type not in subscription.event_types:
            return False
        if subscription.filter_run and subscription.filter_run != event.run_id:
            return False
        if subscription.filter_node and subscription.filter_node != event.node_id:
            return False
        return True

    async def _execute_handlers(self, event: FlowEvent, handlers: list[EventHandler]) -> None:
        """Execute handlers concurrently with rate limiting."""

        async def run_handler(handler: EventHandler) -> None:
            async with self._semaphore:
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(f"Handler error for {event.type}: {e}")

        await asyncio.gather(*[run_handler(h) for h in handlers], return_exceptions=True)

    def get_history(
        self,
        event_type: EventType | None = None,
        run_id: str | None = None,
        limit: int | None = None,
    ) -> list[FlowEvent]:
        """Return recorded events, optionally filtered, oldest first."""
        events = [
            e
            for e in self._event_history
            if (event_type is None or e.type == event_type)
            and (run_id is None or e.run_id == run_id)
        ]
        if limit is not None:
            events = events[-limit:]
        return events

    # === CONVENIENCE PUBLISHERS ===

    async def emit_execution_started(self, run_id: str, graph_id: str, node_count: int) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.EXECUTION_STARTED,
                run_id=run_id,
                data={"graph_id": graph_id, "node_count": node_count},
            )
        )

    async def emit_execution_completed(self, run_id: str, output: Any = None) -> None:
        await self.publish(
            FlowEvent(type=EventType.EXECUTION_COMPLETED, run_id=run_id, data={"output": output})
        )

    async def emit_execution_failed(self, run_id: str, error: str, failed_nodes: list[str]) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.EXECUTION_FAILED,
                run_id=run_id,
                data={"error": error, "failed_nodes": failed_nodes},
            )
        )

    async def emit_node_started(self, run_id: str, node_id: str) -> None:
        await self.publish(FlowEvent(type=EventType.NODE_STARTED, run_id=run_id, node_id=node_id))

    async def emit_node_completed(
        self,
        run_id: str,
        node_id: str,
        input_tokens: int,
        output_tokens: int,
        latency_ms: int,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.NODE_COMPLETED,
                run_id=run_id,
                node_id=node_id,
                data={
                    "input_tokens": input_tokens,
                    "output_tokens": output_tokens,
                    "latency_ms": latency_ms,
                },
            )
        )

    async def emit_node_failed(self, run_id: str, node_id: str, error: str) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.NODE_FAILED,
                run_id=run_id,
                node_id=node_id,
                data={"error": error},
            )
        )
