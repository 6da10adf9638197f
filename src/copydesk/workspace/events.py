"""Event bus for decoupled communication between the session and its consumers.

Producers (hydration, autosave, the generation workflow, the storage gateway)
publish small dataclass events; the application layer subscribes instead of
polling session state.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar
from weakref import WeakMethod, ref

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all workspace events."""


# High-frequency event types that should not log each publish
_QUIET_EVENT_TYPES: set[type] = set()


# =============================================================================
# Session lifecycle
# =============================================================================


@dataclass(slots=True)
class HydrationCompleted(Event):
    """Emitted once when persisted state has been loaded into the session.

    Attributes:
        with_error: True when the cache was unreadable and defaults were used.
        error_code: Code of the recovered :class:`HydrationFailure`, if any.
    """

    with_error: bool = False
    error_code: str | None = None


@dataclass(slots=True)
class SessionChanged(Event):
    """Emitted whenever an observable session field changes.

    Attributes:
        fields: Names of the fields that changed.
    """

    fields: tuple[str, ...]


# =============================================================================
# Documents
# =============================================================================


@dataclass(slots=True)
class DocumentCreated(Event):
    document_id: str
    title: str


@dataclass(slots=True)
class DocumentOpened(Event):
    document_id: str
    location: str


@dataclass(slots=True)
class DocumentDeleted(Event):
    document_id: str


@dataclass(slots=True)
class DocumentContentSaved(Event):
    """Emitted after an autosave write completes.

    Attributes:
        document_id: The saved document.
        location: The :class:`StorageLocation` value the write landed in.
        pending_sync: True when the write still needs remote reconciliation.
    """

    document_id: str
    location: str
    pending_sync: bool = False


@dataclass(slots=True)
class SelectionChanged(Event):
    text: str | None
    start: int = 0
    end: int = 0


_QUIET_EVENT_TYPES.add(SelectionChanged)


# =============================================================================
# Storage
# =============================================================================


@dataclass(slots=True)
class SyncStateChanged(Event):
    pending_sync: bool
    error_code: str | None = None


@dataclass(slots=True)
class StorageLimitReached(Event):
    required_bytes: int | None = None
    capacity_bytes: int | None = None


# =============================================================================
# Generation workflow
# =============================================================================


@dataclass(slots=True)
class SectionGenerated(Event):
    document_id: str
    section_id: str
    section_index: int
    regenerated: bool = False


@dataclass(slots=True)
class SectionGenerationFailed(Event):
    document_id: str
    section_id: str
    section_index: int
    error_code: str
    message: str


@dataclass(slots=True)
class GenerationStateChanged(Event):
    """Workflow-level transition (``active``, ``completed`` or ``abandoned``)."""

    document_id: str
    state: str


# =============================================================================
# Notices
# =============================================================================


@dataclass(slots=True)
class NoticePosted(Event):
    """User-facing notice produced by a recovered failure.

    Attributes:
        message: Short text shown to the user.
        severity: ``info``, ``warning`` or ``error``.
        details: Structured payload from the originating error.
    """

    message: str
    severity: str = "info"
    details: dict[str, Any] | None = None


class EventBus(Generic[E]):
    """A typed publish-subscribe event bus.

    Handlers registered for an event type receive every published event of
    exactly that type, in registration order. Bound-method handlers are held
    weakly so a discarded subscriber is cleaned up automatically. A handler
    that raises is logged and the remaining handlers still run.

    Not thread-safe; use it from the event loop thread only.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register ``handler`` for ``event_type``.

        Subscribing the same handler twice results in two invocations.
        """
        self._handlers[event_type].append(_HandlerRef.create(handler))
        logger.debug(
            "Subscribed handler %s to event type %s",
            _handler_name(handler),
            event_type.__name__,
        )

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""
        handlers = self._handlers.get(event_type)
        if handlers is None:
            return
        for i, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(i)
                logger.debug(
                    "Unsubscribed handler %s from event type %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
                return

    def publish(self, event: E) -> None:
        """Invoke every live handler registered for the event's type."""
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        is_quiet = event_type in _QUIET_EVENT_TYPES

        if not handlers:
            if not is_quiet:
                logger.debug("No handlers for event type %s", event_type.__name__)
            return

        if not is_quiet:
            logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers))

        dead_indices: list[int] = []
        for i, handler_ref in enumerate(list(handlers)):
            handler = handler_ref.resolve()
            if handler is None:
                dead_indices.append(i)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )

        for i in reversed(dead_indices):
            if i < len(handlers) and handlers[i].resolve() is None:
                handlers.pop(i)

    def clear(self) -> None:
        self._handlers.clear()
        logger.debug("Cleared all event handlers")

    def handler_count(self, event_type: type[E] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Weak reference for bound methods, strong reference for everything else."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | ref | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        return resolved is not None and resolved == handler


def _handler_name(handler: Handler) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = [
    "DocumentContentSaved",
    "DocumentCreated",
    "DocumentDeleted",
    "DocumentOpened",
    "Event",
    "EventBus",
    "GenerationStateChanged",
    "Handler",
    "HydrationCompleted",
    "NoticePosted",
    "SectionGenerated",
    "SectionGenerationFailed",
    "SelectionChanged",
    "SessionChanged",
    "StorageLimitReached",
    "SyncStateChanged",
]
