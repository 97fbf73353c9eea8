"""Progress event channel.

Stages report progress by emitting :class:`PipelineEvent` records on an
:class:`EventBus`. Delivery is synchronous: ``emit`` calls each subscriber in
subscription order before returning, so the order a consumer observes is the
order stages emitted in. A failing subscriber is logged and skipped; it never
breaks the pipeline.
"""
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core.logging_utils import log_json


class EventType(str, Enum):
    PHASE = "phase"
    PLAN = "plan"
    REVIEW = "review"
    FILE_OPERATION = "file_operation"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class PipelineEvent:
    type: EventType
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    ts: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["type"] = self.type.value
        return payload


Subscriber = Callable[[PipelineEvent], None]


class EventBus:
    def __init__(self, subscribers: Optional[List[Subscriber]] = None, keep_history: bool = True):
        self._subscribers: List[Subscriber] = list(subscribers or [])
        self.keep_history = keep_history
        self.history: List[PipelineEvent] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback*; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def emit(self, event_type: EventType, message: str, **data) -> PipelineEvent:
        event = PipelineEvent(EventType(event_type), message, data)
        if self.keep_history:
            self.history.append(event)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                log_json("WARN", "event_subscriber_failed",
                         details={"event": event.type.value, "error": str(e)})
        return event

    # Convenience wrappers used throughout the stages
    def phase(self, message: str, **data) -> PipelineEvent:
        return self.emit(EventType.PHASE, message, **data)

    def warning(self, message: str, **data) -> PipelineEvent:
        return self.emit(EventType.WARNING, message, **data)

    def error(self, message: str, **data) -> PipelineEvent:
        return self.emit(EventType.ERROR, message, **data)

    def of_type(self, event_type: EventType) -> List[PipelineEvent]:
        return [e for e in self.history if e.type == event_type]
