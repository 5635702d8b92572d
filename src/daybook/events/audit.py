"""In-memory audit log with hooks for external processing.

Usage:
    audit = AuditLog()
    audit.add_event_hook(print)

    audit.record(some_event)
    audit.recent_events
"""

from collections import deque
from collections.abc import Callable

import structlog

from daybook.events.types import AuditEvent, EventType

logger = structlog.get_logger(__name__)


class AuditLog:
    """Keeps the most recent audit events and forwards them to hooks."""

    def __init__(self, buffer_size: int = 500):
        self._buffer_size = buffer_size
        self._event_buffer: deque[AuditEvent] = deque(maxlen=buffer_size)
        self._event_hooks: list[Callable[[AuditEvent], None]] = []
        self._logger = logger.bind(component="audit_log")

    @property
    def recent_events(self) -> list[AuditEvent]:
        """Get recently recorded events, oldest first."""
        return list(self._event_buffer)

    def events_of(self, event_type: EventType) -> list[AuditEvent]:
        return [e for e in self._event_buffer if e.event_type is event_type]

    def add_event_hook(self, hook: Callable[[AuditEvent], None]) -> None:
        """Add a hook to be called for every event.

        Hooks are called synchronously, in registration order.
        """
        self._event_hooks.append(hook)

    def remove_event_hook(self, hook: Callable[[AuditEvent], None]) -> None:
        """Remove an event hook."""
        if hook in self._event_hooks:
            self._event_hooks.remove(hook)

    def record(self, event: AuditEvent) -> None:
        """Store an event and hand it to every hook.

        A failing hook is logged and does not stop the others.
        """
        self._event_buffer.append(event)
        self._logger.debug(
            "audit_event", event_type=event.event_type.value, event_id=str(event.event_id)
        )

        for hook in self._event_hooks:
            try:
                hook(event)
            except Exception as e:
                self._logger.error("event_hook_error", error=str(e))

    def clear(self) -> None:
        self._event_buffer.clear()
