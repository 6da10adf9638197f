"""Editing component contract and an in-memory implementation.

The workspace never talks to a concrete widget. It depends on
:class:`EditorComponent`, which any rich-text surface can implement.
:class:`BufferEditor` keeps the content in a plain string buffer so the
engine runs headless (tests, CLI) with the same change-notification
semantics a real component has: every mutation made through the selection
model fires the update listeners.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ..core.ranges import TextRange


@dataclass(slots=True, frozen=True)
class SelectionChange:
    """Payload of a selection-change notification."""

    text: str
    start: int
    end: int


class UpdateListener(Protocol):
    def __call__(self, content: str) -> None:
        ...


class SelectionListener(Protocol):
    def __call__(self, change: SelectionChange) -> None:
        ...


class EditorComponent(Protocol):
    """Surface the engine needs from a rich-text editing component."""

    def get_content(self) -> str:
        ...

    def set_content(self, payload: str) -> None:
        ...

    def set_selection(self, start: int, end: int) -> None:
        ...

    def delete_selection(self) -> None:
        ...

    def insert_content(self, text: str) -> None:
        ...

    def add_update_listener(self, listener: UpdateListener) -> None:
        ...

    def add_selection_listener(self, listener: SelectionListener) -> None:
        ...


class BufferEditor:
    """String-backed editing component used when no widget is attached."""

    def __init__(self, content: str = "") -> None:
        self._buffer = content
        self._selection = TextRange(0, 0)
        self._update_listeners: list[UpdateListener] = []
        self._selection_listeners: list[SelectionListener] = []

    # ------------------------------------------------------------------
    # Content accessors
    # ------------------------------------------------------------------
    def get_content(self) -> str:
        return self._buffer

    def set_content(self, payload: str) -> None:
        """Replace the whole buffer and collapse the selection to the end."""

        if payload == self._buffer:
            return
        self._buffer = payload
        self._selection = TextRange(len(payload), len(payload))
        self._emit_update()
        self._emit_selection()

    # ------------------------------------------------------------------
    # Selection model
    # ------------------------------------------------------------------
    @property
    def selection(self) -> TextRange:
        return self._selection

    def set_selection(self, start: int, end: int) -> None:
        self._selection = TextRange(start, end).clamped(len(self._buffer))
        self._emit_selection()

    def delete_selection(self) -> None:
        """Remove the selected span; a caret selection is a no-op."""

        start, end = self._selection
        if start == end:
            return
        self._buffer = self._buffer[:start] + self._buffer[end:]
        self._selection = TextRange(start, start)
        self._emit_update()
        self._emit_selection()

    def insert_content(self, text: str) -> None:
        """Insert ``text`` at the caret, replacing any selected span."""

        start, end = self._selection
        self._buffer = self._buffer[:start] + text + self._buffer[end:]
        caret = start + len(text)
        self._selection = TextRange(caret, caret)
        self._emit_update()
        self._emit_selection()

    def type_text(self, text: str) -> None:
        """Simulate keystrokes at the caret, one update per character."""

        for char in text:
            self.insert_content(char)

    # ------------------------------------------------------------------
    # Listener registration
    # ------------------------------------------------------------------
    def add_update_listener(self, listener: UpdateListener) -> None:
        self._update_listeners.append(listener)

    def add_selection_listener(self, listener: SelectionListener) -> None:
        self._selection_listeners.append(listener)

    def _emit_update(self) -> None:
        for listener in list(self._update_listeners):
            listener(self._buffer)

    def _emit_selection(self) -> None:
        if not self._selection_listeners:
            return
        start, end = self._selection
        change = SelectionChange(text=self._selection.slice(self._buffer), start=start, end=end)
        for listener in list(self._selection_listeners):
            listener(change)


__all__ = [
    "BufferEditor",
    "EditorComponent",
    "SelectionChange",
    "SelectionListener",
    "UpdateListener",
]
