"""
Playback Domain Events

The engine announces what happened through an injected EventPublisher rather
than a process-wide broadcaster, so any transport (in-process pub/sub, a
message queue, websocket fan-out) can be plugged in.

Events are published after the state change they describe has been
committed. A failing subscriber never rolls back that change.
"""

import threading
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Deque, Dict, List, Optional, Type

from utils.logger import logger


@dataclass(frozen=True)
class DomainEvent:
    """Base event emitted by the playback service"""
    session_id: str
    track_id: str
    occurred_at: float

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["event"] = self.name
        return payload


@dataclass(frozen=True)
class PlayStarted(DomainEvent):
    """A new playback session was issued"""
    user_id: str = ""
    tier: str = ""


@dataclass(frozen=True)
class PlayEnded(DomainEvent):
    """A session reached a terminal state"""
    user_id: str = ""
    valid: bool = False
    state: str = ""
    reason: Optional[str] = None


@dataclass(frozen=True)
class RoyaltyCredited(DomainEvent):
    """A valid play was credited to the track's recipients"""
    amount: str = "0"
    split: List[Dict[str, str]] = field(default_factory=list)


EventHandler = Callable[[DomainEvent], None]


class EventPublisher(ABC):
    """Outbound port for domain events"""

    @abstractmethod
    def publish(self, event: DomainEvent) -> None:
        pass


class NullEventPublisher(EventPublisher):
    """Discards every event"""

    def publish(self, event: DomainEvent) -> None:
        return None


class InMemoryEventBus(EventPublisher):
    """
    Synchronous in-process pub/sub.

    Handlers subscribe per event type (or DomainEvent for everything). The
    most recent events are kept for inspection.
    """

    def __init__(self, history_size: int = 1000):
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = defaultdict(list)
        self._history: Deque[DomainEvent] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type)
            if handlers and handler in handlers:
                handlers.remove(handler)

    def publish(self, event: DomainEvent) -> None:
        with self._lock:
            self._history.append(event)
            handlers = [
                h
                for event_type, registered in self._handlers.items()
                if isinstance(event, event_type)
                for h in registered
            ]

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.exception(f"Event handler failed for {event.name} ({event.session_id}): {e}")

    def history(self, event_type: Type[DomainEvent] = DomainEvent) -> List[DomainEvent]:
        with self._lock:
            return [e for e in self._history if isinstance(e, event_type)]
