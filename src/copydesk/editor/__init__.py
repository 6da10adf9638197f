"""Editor package containing document models and the selection tracker."""

from .buffer_editor import BufferEditor, EditorComponent, SelectionChange
from .document_model import Document, DocumentMetadata, Selection
from .selection_tracker import SelectionTracker

__all__ = [
    "BufferEditor",
    "Document",
    "DocumentMetadata",
    "EditorComponent",
    "Selection",
    "SelectionChange",
    "SelectionTracker",
]
