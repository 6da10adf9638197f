"""Unit tests for :mod:`copydesk.workspace.events`."""

from __future__ import annotations

import gc
import logging

import pytest

from copydesk.workspace.events import (
    DocumentCreated,
    Event,
    EventBus,
    NoticePosted,
    SelectionChanged,
    SessionChanged,
)


class TestEventBusSubscription:
    """Subscription bookkeeping."""

    def test_subscribe_same_handler_twice(self) -> None:
        """Subscribing the same handler twice results in two registrations."""
        bus: EventBus[Event] = EventBus()

        def handler(event: DocumentCreated) -> None:
            pass

        bus.subscribe(DocumentCreated, handler)
        bus.subscribe(DocumentCreated, handler)

        assert bus.handler_count(DocumentCreated) == 2
        bus.unsubscribe(DocumentCreated, handler)
        assert bus.handler_count(DocumentCreated) == 1

    def test_unsubscribe_unknown_handler_is_safe(self) -> None:
        bus: EventBus[Event] = EventBus()

        bus.unsubscribe(SessionChanged, lambda event: None)

        assert bus.handler_count() == 0

    def test_handler_counts_are_per_type(self) -> None:
        bus: EventBus[Event] = EventBus()
        bus.subscribe(DocumentCreated, lambda event: None)
        bus.subscribe(SessionChanged, lambda event: None)

        assert bus.handler_count(DocumentCreated) == 1
        assert bus.handler_count() == 2
        bus.clear()
        assert bus.handler_count() == 0


class TestEventBusPublish:
    """Dispatch semantics."""

    def test_publish_invokes_handlers_in_order(self) -> None:
        bus: EventBus[Event] = EventBus()
        order: list[int] = []
        bus.subscribe(SessionChanged, lambda event: order.append(1))
        bus.subscribe(SessionChanged, lambda event: order.append(2))

        bus.publish(SessionChanged(fields=("prefs",)))

        assert order == [1, 2]

    def test_publish_dispatches_on_exact_type(self) -> None:
        bus: EventBus[Event] = EventBus()
        created: list[DocumentCreated] = []
        notices: list[NoticePosted] = []
        bus.subscribe(DocumentCreated, created.append)
        bus.subscribe(NoticePosted, notices.append)

        bus.publish(DocumentCreated(document_id="doc-1", title="Brochure"))

        assert [event.document_id for event in created] == ["doc-1"]
        assert notices == []

    def test_failing_handler_does_not_stop_others(self, caplog: pytest.LogCaptureFixture) -> None:
        bus: EventBus[Event] = EventBus()
        received: list[NoticePosted] = []

        def broken(event: NoticePosted) -> None:
            raise RuntimeError("boom")

        bus.subscribe(NoticePosted, broken)
        bus.subscribe(NoticePosted, received.append)

        with caplog.at_level(logging.ERROR):
            bus.publish(NoticePosted(message="Storage is full", severity="error"))

        assert len(received) == 1
        assert "raised exception" in caplog.text

    def test_quiet_events_still_dispatch(self) -> None:
        bus: EventBus[Event] = EventBus()
        received: list[SelectionChanged] = []
        bus.subscribe(SelectionChanged, received.append)

        bus.publish(SelectionChanged(text="Hello", start=0, end=5))

        assert received[0].text == "Hello"


class TestWeakHandlers:
    """Bound-method handlers are held weakly."""

    def test_dead_bound_method_is_dropped(self) -> None:
        bus: EventBus[Event] = EventBus()
        calls: list[str] = []

        class Listener:
            def on_created(self, event: DocumentCreated) -> None:
                calls.append(event.document_id)

        listener = Listener()
        bus.subscribe(DocumentCreated, listener.on_created)
        bus.publish(DocumentCreated(document_id="a", title="A"))

        del listener
        gc.collect()
        bus.publish(DocumentCreated(document_id="b", title="B"))

        assert calls == ["a"]
        assert bus.handler_count(DocumentCreated) == 0
