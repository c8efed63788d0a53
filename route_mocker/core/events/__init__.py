"""Network lifecycle events, recording and replay."""

from .event_bus import NetworkEvent, NetworkEventBus, NetworkEventType, SubscriberFailure
from .recorder import NetworkRecorder, RecordedExchange

__all__ = [
    "NetworkEvent",
    "NetworkEventBus",
    "NetworkEventType",
    "NetworkRecorder",
    "RecordedExchange",
    "SubscriberFailure",
]
