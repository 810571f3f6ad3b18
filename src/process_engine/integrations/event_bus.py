"""
In-process event bus for instance snapshots
"""
from typing import Any, Callable, Dict, List
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging


logger = logging.getLogger(__name__)


SNAPSHOT_TOPIC = "instance.snapshot"
FINISHED_TOPIC = "instance.finished"


@dataclass
class Event:
    """Published event"""
    topic: str
    payload: Any
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    headers: Dict[str, str] = field(default_factory=dict)


class EventBus:
    """Synchronous publish/subscribe hub.

    Subscribers run in the publisher's call; a failing subscriber is logged
    and does not affect the others or the publisher.
    """

    def __init__(self):
        self.subscribers: Dict[str, List[Callable[[Event], Any]]] = {}

    def publish(self, topic: str, payload: Any, headers: Dict[str, str] = None):
        event = Event(
            topic=topic,
            payload=payload,
            headers=headers or {}
        )

        subscribers = list(self.subscribers.get(topic, []))
        for subscriber in subscribers:
            self._notify_subscriber(subscriber, event)

        logger.debug(f"Published event to topic '{topic}' with {len(subscribers)} subscribers")

    def subscribe(self, topic: str, handler: Callable[[Event], Any]):
        self.subscribers.setdefault(topic, []).append(handler)
        logger.debug(f"Subscribed to topic '{topic}'")

    def unsubscribe(self, topic: str, handler: Callable[[Event], Any]):
        if topic in self.subscribers:
            self.subscribers[topic].remove(handler)
            if not self.subscribers[topic]:
                del self.subscribers[topic]

    def _notify_subscriber(self, subscriber: Callable[[Event], Any], event: Event):
        try:
            subscriber(event)
        except Exception as e:
            logger.error(f"Error notifying subscriber for topic '{event.topic}': {e}", exc_info=True)
