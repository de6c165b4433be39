"""
In-process publish/subscribe channel for workflow progress.

One ``EventBus`` exists per session and the orchestrator is its only
publisher. Subscribers (CLI, loggers, tests) register plain callables per
topic. ``pipe`` forwards every event of one bus into another, which is how a
process-wide bus observes all concurrently running sessions.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from loguru import logger

from explainit.error_handler import safe_execute
from .types import EventTopic, NodeStatus, WorkflowPhase

DEFAULT_SESSION_ID = "default"


@dataclass
class Event:
    topic: EventTopic
    type: str
    session_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": str(self.topic),
            "type": self.type,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            **self.data,
        }


EventHandler = Callable[[Event], Any]
Unsubscribe = Callable[[], None]


class EventBus:
    """Callback registry keyed by topic."""

    def __init__(self, session_id: str = DEFAULT_SESSION_ID):
        self.session_id = session_id
        self._handlers: Dict[EventTopic, List[EventHandler]] = {topic: [] for topic in EventTopic}

    def subscribe(self, topic: Union[EventTopic, str], handler: EventHandler) -> Unsubscribe:
        """Register ``handler`` for ``topic``; call the returned function to stop."""
        topic = EventTopic(topic)
        self._handlers[topic].append(handler)

        def unsubscribe():
            self.unsubscribe(topic, handler)

        return unsubscribe

    def subscribe_all(self, handler: EventHandler) -> Unsubscribe:
        stops = [self.subscribe(topic, handler) for topic in EventTopic]

        def unsubscribe():
            for stop in stops:
                stop()

        return unsubscribe

    def unsubscribe(self, topic: Union[EventTopic, str], handler: EventHandler):
        handlers = self._handlers[EventTopic(topic)]
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, topic: Optional[Union[EventTopic, str]] = None) -> int:
        if topic is not None:
            return len(self._handlers[EventTopic(topic)])
        return sum(len(h) for h in self._handlers.values())

    def publish(self, topic: Union[EventTopic, str], event_type: str,
                data: Optional[Dict[str, Any]] = None) -> Event:
        """Stamp an event with this bus's session id and the current time, then dispatch it."""
        event = Event(
            topic=EventTopic(topic),
            type=event_type,
            session_id=self.session_id,
            data=dict(data or {}),
        )
        self.dispatch(event)
        return event

    def dispatch(self, event: Event):
        """Deliver an already-built event unchanged. A failing handler does not stop the others."""
        for handler in list(self._handlers[event.topic]):
            safe_execute(lambda: handler(event), component="event_bus")

    def pipe(self, target: "EventBus") -> Unsubscribe:
        """Forward every event to ``target``, keeping the original session id."""
        if target is self:
            raise ValueError("Cannot pipe an event bus into itself")
        return self.subscribe_all(target.dispatch)

    # Typed helpers used by the orchestrator

    def phase_changed(self, phase: WorkflowPhase, message: Optional[str] = None) -> Event:
        return self.publish(EventTopic.WORKFLOW, "phase_changed", {"phase": str(phase), "message": message})

    def workflow(self, event_type: str, **data) -> Event:
        return self.publish(EventTopic.WORKFLOW, event_type, data)

    def node_discovered(self, node_id: str, name: str, parent_id: Optional[str],
                        depth: int, path: str) -> Event:
        return self.publish(EventTopic.NODE, "node_discovered", {
            "node_id": node_id,
            "name": name,
            "parent_id": parent_id,
            "depth": depth,
            "path": path,
        })

    def node_status(self, node_id: str, status: NodeStatus, error: Optional[str] = None,
                    cached: bool = False) -> Event:
        return self.publish(EventTopic.NODE, "node_status", {
            "node_id": node_id,
            "status": str(status),
            "error": error,
            "cached": cached,
        })

    def step_progress(self, node_id: str, step: str, message: str = "") -> Event:
        return self.publish(EventTopic.NODE, "step_progress", {
            "node_id": node_id,
            "step": step,
            "message": message,
        })

    def warning(self, message: str, **data) -> Event:
        return self.publish(EventTopic.ERROR, "warning", {"message": message, **data})

    def error(self, message: str, error: Optional[BaseException] = None, **data) -> Event:
        payload = {"message": message, **data}
        if error is not None:
            payload["error_type"] = type(error).__name__
        return self.publish(EventTopic.ERROR, "error", payload)

    def log(self, level: str, message: str, source: Optional[str] = None) -> Event:
        return self.publish(EventTopic.LOG, "log", {"level": level, "message": message, "source": source})

    def request_input(self, prompt: str, options: Optional[List[str]] = None) -> Event:
        return self.publish(EventTopic.INPUT, "input_requested", {"prompt": prompt, "options": options or []})


def log_event(event: Event):
    """Subscriber that mirrors non-log events into the debug log."""
    if event.topic == EventTopic.LOG:
        return
    logger.bind(session_id=event.session_id).debug(f"event {event.topic}/{event.type}: {event.data}")
