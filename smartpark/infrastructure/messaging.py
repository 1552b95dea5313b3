"""
Messaging Infrastructure for the SmartPark Ledger

The ledger publishes a domain event after every successful entry or exit so
that other parts of the system (occupancy displays, receipt printers) can
react without polling:

1. EventBus - in-process publish/subscribe keyed by event type
2. EventHandler - interface for subscribers
3. ReceiptLogHandler - keeps an append-only in-process log of receipts
4. RedisMessageQueue / RedisEventForwarder - forwards events to Redis Pub/Sub
   for consumers in other processes

A failing handler is logged and skipped; it never changes the outcome of the
ledger operation that produced the event.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Callable, Any
import logging
import json
import threading
from uuid import uuid4

import redis

from ..domain.models import DomainEvent, CarExitedEvent, Receipt


EVENTS_CHANNEL = "smartpark.events"


# ============================================================================
# EVENT HANDLERS
# ============================================================================

class EventHandler(ABC):
    """Base class for event handlers"""

    @abstractmethod
    def handle(self, event: DomainEvent) -> None:
        pass

    def can_handle(self, event: DomainEvent) -> bool:
        return True


# ============================================================================
# EVENT BUS (In-memory)
# ============================================================================

class EventBus:
    """
    In-memory event bus for intra-process event publishing

    Implements publish/subscribe pattern within the same process.
    Subscribing to "*" receives every event type.
    """

    WILDCARD = "*"

    def __init__(self):
        self._subscribers: Dict[str, List[EventHandler]] = {}
        self._logger = logging.getLogger(self.__class__.__name__)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe to events of a specific type"""
        handlers = self._subscribers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)
            self._logger.debug(f"Subscribed {handler.__class__.__name__} to {event_type}")

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if handler in self._subscribers.get(event_type, []):
            self._subscribers[event_type].remove(handler)
            self._logger.debug(f"Unsubscribed {handler.__class__.__name__} from {event_type}")

    def publish(self, event: DomainEvent) -> None:
        """Publish an event to all subscribers"""
        self._logger.info(f"Publishing event: {event.event_type} (ID: {event.event_id})")

        handlers = self._subscribers.get(event.event_type, []) + \
            self._subscribers.get(self.WILDCARD, [])
        for handler in handlers:
            if not handler.can_handle(event):
                continue
            try:
                handler.handle(event)
                self._logger.debug(f"Event handled by {handler.__class__.__name__}")
            except Exception as e:
                self._logger.error(
                    f"Error handling event {event.event_type} with "
                    f"{handler.__class__.__name__}: {e}"
                )

    def publish_all(self, events: List[DomainEvent]) -> None:
        for event in events:
            self.publish(event)


class ReceiptLogHandler(EventHandler):
    """Append-only log of the receipts issued in this process"""

    def __init__(self, max_entries: Optional[int] = None):
        self.max_entries = max_entries
        self._receipts: List[Receipt] = []
        self._lock = threading.Lock()

    def can_handle(self, event: DomainEvent) -> bool:
        return isinstance(event, CarExitedEvent)

    def handle(self, event: DomainEvent) -> None:
        with self._lock:
            self._receipts.append(event.receipt)
            if self.max_entries is not None and len(self._receipts) > self.max_entries:
                del self._receipts[0]

    @property
    def receipts(self) -> List[Receipt]:
        with self._lock:
            return list(self._receipts)

    @property
    def last_receipt(self) -> Optional[Receipt]:
        with self._lock:
            return self._receipts[-1] if self._receipts else None


# ============================================================================
# REDIS PUB/SUB
# ============================================================================

class RedisMessageQueue:
    """Redis Pub/Sub message queue"""

    def __init__(self, redis_url: str = "redis://localhost:6379", **kwargs):
        self.redis_client = redis.Redis.from_url(redis_url, **kwargs)
        self.pubsub = self.redis_client.pubsub()
        self.subscriptions: Dict[str, str] = {}
        self._listener_thread: Optional[Any] = None
        self._logger = logging.getLogger(self.__class__.__name__)

    def publish(self, topic: str, message: Dict[str, Any]) -> bool:
        """Publish a JSON message; returns False if Redis is unreachable"""
        try:
            receivers = self.redis_client.publish(topic, json.dumps(message))
            self._logger.debug(f"Published to {topic}, {receivers} receivers")
            return True
        except redis.RedisError as e:
            self._logger.error(f"Error publishing to Redis topic {topic}: {e}")
            return False

    def subscribe(self, topic: str, callback: Callable[[Dict[str, Any]], None]) -> str:
        """Subscribe to a topic; messages are decoded before the callback runs"""
        subscription_id = str(uuid4())

        def handler(redis_message: Dict[str, Any]) -> None:
            try:
                callback(json.loads(redis_message["data"]))
            except (ValueError, KeyError) as e:
                self._logger.error(f"Discarding malformed message on {topic}: {e}")

        self.pubsub.subscribe(**{topic: handler})
        self.subscriptions[subscription_id] = topic
        if self._listener_thread is None:
            self._listener_thread = self.pubsub.run_in_thread(sleep_time=0.1, daemon=True)
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        topic = self.subscriptions.pop(subscription_id, None)
        if topic is None:
            return False
        if topic not in self.subscriptions.values():
            self.pubsub.unsubscribe(topic)
        return True

    def close(self):
        if self._listener_thread is not None:
            self._listener_thread.stop()
            self._listener_thread = None
        self.pubsub.close()
        self.redis_client.close()


class RedisEventForwarder(EventHandler):
    """Forwards every domain event to a Redis channel"""

    def __init__(self, queue: RedisMessageQueue, channel: str = EVENTS_CHANNEL):
        self.queue = queue
        self.channel = channel

    def handle(self, event: DomainEvent) -> None:
        self.queue.publish(self.channel, event.to_dict())


class MessageBrokerFactory:
    """Factory for event plumbing"""

    @staticmethod
    def create_event_bus(
        receipt_log: Optional[ReceiptLogHandler] = None,
        redis_url: Optional[str] = None
    ) -> EventBus:
        bus = EventBus()
        if receipt_log is not None:
            bus.subscribe(CarExitedEvent.event_type, receipt_log)
        if redis_url:
            bus.subscribe(EventBus.WILDCARD, RedisEventForwarder(RedisMessageQueue(redis_url)))
        return bus
