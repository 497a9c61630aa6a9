"""Runtime services around a flow: lifecycle events and the HTTP surface."""

from flowstudio.runtime.event_bus import EventBus, EventType, FlowEvent, Subscription
from flowstudio.runtime.flow_server import FlowServer, FlowServerConfig

__all__ = [
    "EventBus",
    "EventType",
    "FlowEvent",
    "Subscription",
    "FlowServer",
    "FlowServerConfig",
]
