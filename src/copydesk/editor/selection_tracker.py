"""Live selection tracking and range-scoped replacement for AI tools."""

from __future__ import annotations

import logging
from typing import Callable

from ..core.ranges import TextRange
from ..services.errors import SelectionStale
from ..utils.text import summarize
from .buffer_editor import EditorComponent, SelectionChange
from .document_model import Selection

LOGGER = logging.getLogger(__name__)

SelectionPublisher = Callable[[Selection | None], None]


class SelectionTracker:
    """Observe the editor selection and publish stable snapshots.

    Tools read :attr:`current` (or the session's published copy) instead of
    querying the editor, so "what was selected when the tool ran" stays well
    defined after the cursor moves. The tracker never mutates the selection
    on its own; every snapshot is derived from an editor notification.
    """

    def __init__(self, editor: EditorComponent, publish: SelectionPublisher | None = None) -> None:
        self._editor = editor
        self._publish = publish
        self._current: Selection | None = None
        editor.add_selection_listener(self.handle_selection_changed)

    @property
    def current(self) -> Selection | None:
        return self._current

    def handle_selection_changed(self, change: SelectionChange) -> None:
        """Capture ``{text, range}`` or ``None`` for a collapsed/blank selection."""

        selection: Selection | None = None
        if change.start != change.end and change.text.strip():
            selection = Selection(
                text=change.text,
                range=TextRange(change.start, change.end),
                content_length=len(self._editor.get_content()),
            )
        if selection == self._current:
            return
        self._current = selection
        if selection is not None:
            LOGGER.debug(
                "Selection captured %s: %s",
                selection.range.to_tuple(),
                summarize(selection.text, 40),
            )
        if self._publish is not None:
            self._publish(selection)

    def capture(self) -> Selection | None:
        """Return the latest published snapshot, for tool invocations."""

        return self._current

    def validate(self, selection: Selection) -> None:
        """Raise :class:`SelectionStale` unless ``selection`` still matches the content."""

        content = self._editor.get_content()
        span = selection.range
        reason: str | None = None
        if not span.fits(len(content)):
            reason = "range_out_of_bounds"
        elif selection.content_length and selection.content_length != len(content):
            reason = "content_length_changed"
        elif span.slice(content) != selection.text:
            reason = "text_changed"
        if reason is None:
            return
        raise SelectionStale(
            details={
                "reason": reason,
                "range": span.to_dict(),
                "content_length": len(content),
            }
        )

    def replace_selection(self, selection: Selection, new_content: str) -> TextRange:
        """Replace exactly the captured span with ``new_content``.

        The edit goes through the component's selection model (select, delete
        selection, insert) so its change notifications fire and autosave sees
        the mutation. A stale snapshot raises :class:`SelectionStale` carrying
        ``new_content`` for manual insertion; the document is left untouched.
        Returns the range now covered by the inserted text.
        """

        try:
            self.validate(selection)
        except SelectionStale as exc:
            exc.replacement = new_content
            LOGGER.warning(
                "Refusing to replace stale selection %s (%s)",
                selection.range.to_tuple(),
                exc.details.get("reason"),
            )
            raise
        start, end = selection.range
        self._editor.set_selection(start, end)
        self._editor.delete_selection()
        self._editor.insert_content(new_content)
        LOGGER.debug(
            "Replaced selection %s with %d chars", selection.range.to_tuple(), len(new_content)
        )
        return selection.range.replaced_with(new_content)

    def insert_at_cursor(self, text: str) -> None:
        """Insert ``text`` at the caret when nothing is selected."""

        self._editor.insert_content(text)


__all__ = ["SelectionPublisher", "SelectionTracker"]
