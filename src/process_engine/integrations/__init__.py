"""Integrations with the host application"""

from .event_bus import EventBus, Event, SNAPSHOT_TOPIC, FINISHED_TOPIC

__all__ = [
    "EventBus",
    "Event",
    "SNAPSHOT_TOPIC",
    "FINISHED_TOPIC"
]
