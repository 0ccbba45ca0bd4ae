"""
Billing Domain Events

Write operations publish one event after their transaction commits:
- DocumentCreated
- DocumentUpdated
- DocumentDeleted
- DocumentStatusChanged
- DocumentConverted

Delivery (email/SMS/push, audit trails, ...) lives outside the engine.
Subscribers register handlers on an EventPublisher that is injected into
the services. A failing handler is logged and never undoes the committed
write.
"""
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Type
from uuid import UUID


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DocumentEvent:
    document_id: UUID
    document_type: str
    document_number: str
    occurred_at: datetime = field(default_factory=_utcnow, compare=False)

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class DocumentCreated(DocumentEvent):
    grand_total: Any = None


@dataclass(frozen=True)
class DocumentUpdated(DocumentEvent):
    grand_total: Any = None


@dataclass(frozen=True)
class DocumentDeleted(DocumentEvent):
    pass


@dataclass(frozen=True)
class DocumentStatusChanged(DocumentEvent):
    old_status: Optional[str] = None
    new_status: Optional[str] = None


@dataclass(frozen=True)
class DocumentConverted(DocumentEvent):
    """``document_*`` fields describe the new document."""
    source_id: Optional[UUID] = None
    source_type: Optional[str] = None


EventHandler = Callable[[DocumentEvent], Any]


class EventPublisher:
    """
    In-process publisher.

    Handlers may be plain callables or coroutine functions. Handlers
    registered for ``DocumentEvent`` receive every event.
    """

    def __init__(self):
        self._handlers: Dict[Type[DocumentEvent], List[EventHandler]] = {}

    def subscribe(
        self,
        event_type: Type[DocumentEvent],
        handler: EventHandler
    ) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(
        self,
        event_type: Type[DocumentEvent],
        handler: EventHandler
    ) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def _handlers_for(self, event: DocumentEvent) -> List[EventHandler]:
        matched = []
        for event_type, handlers in self._handlers.items():
            if isinstance(event, event_type):
                matched.extend(handlers)
        return matched

    async def publish(self, event: DocumentEvent) -> None:
        logger.debug(
            f"Publishing {event.name} for {event.document_type} {event.document_number}"
        )
        for handler in self._handlers_for(event):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Event handler {getattr(handler, '__name__', handler)} failed "
                    f"for {event.name} ({event.document_number}): {e}",
                    exc_info=True
                )


# Default publisher used when none is injected
event_publisher = EventPublisher()
