"""Offset spans into document content."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Iterator


def _offset(value: Any, label: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"TextRange {label} must be an integer, got {value!r}") from exc
    return max(0, number)


@dataclass(slots=True, frozen=True)
class TextRange(Sequence[int]):
    """Absolute ``(start, end)`` offsets into a document's content.

    Offsets are clamped at zero and swapped when given backwards, so a
    selection dragged right-to-left normalizes to the same span. Serialized
    payloads use the ``{"from": ..., "to": ...}`` shape emitted by the editing
    component; ``start``/``end`` keys are accepted as well.
    """

    start: int
    end: int

    def __post_init__(self) -> None:
        start, end = sorted((_offset(self.start, "start"), _offset(self.end, "end")))
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    def __len__(self) -> int:
        return 2

    def __getitem__(self, index: int | slice) -> int | tuple[int, ...]:
        return self.to_tuple()[index]

    def __iter__(self) -> Iterator[int]:
        return iter(self.to_tuple())

    @property
    def length(self) -> int:
        return self.end - self.start

    @property
    def is_caret(self) -> bool:
        return self.start == self.end

    def fits(self, content_length: int) -> bool:
        """Return ``True`` when the span lies inside content of ``content_length`` chars."""

        return self.end <= max(0, int(content_length))

    def clamped(self, content_length: int) -> TextRange:
        limit = max(0, int(content_length))
        return TextRange(min(self.start, limit), min(self.end, limit))

    def slice(self, content: str) -> str:
        """The text this span covers in ``content``."""

        return content[self.start : self.end]

    def replaced_with(self, text: str) -> TextRange:
        """The span ``text`` occupies once it has replaced this one."""

        return TextRange(self.start, self.start + len(text))

    def to_tuple(self) -> tuple[int, int]:
        return (self.start, self.end)

    def to_dict(self) -> dict[str, int]:
        return {"from": self.start, "to": self.end}

    @classmethod
    def from_value(cls, value: Any) -> TextRange:
        """Coerce a mapping, a two-item sequence or a ``start``/``end`` object."""

        if isinstance(value, TextRange):
            return value
        if value is None:
            raise ValueError("TextRange value is required")
        if isinstance(value, Mapping):
            start = value.get("from", value.get("start"))
            end = value.get("to", value.get("end"))
            if start is None or end is None:
                raise ValueError("TextRange mappings require from/to keys")
            return cls(start, end)
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            if len(value) != 2:
                raise ValueError("TextRange sequences must have exactly two entries")
            return cls(value[0], value[1])
        if hasattr(value, "start") and hasattr(value, "end"):
            return cls(value.start, value.end)
        raise TypeError(f"Unsupported TextRange input: {type(value).__name__}")


__all__ = ["TextRange"]
