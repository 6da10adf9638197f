"""Versioned envelope written atomically per entity id."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

SCHEMA_VERSION = 1

DOCUMENTS = "documents"
PROGRESS = "progress"
COLLECTIONS: tuple[str, ...] = (DOCUMENTS, PROGRESS)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class PersistedRecord:
    """Whole-payload envelope; partial writes are never exposed to callers."""

    payload: dict[str, Any]
    schema_version: int = SCHEMA_VERSION
    updated_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "updatedAt": self.updated_at,
            "payload": self.payload,
        }

    @property
    def updated_at_datetime(self) -> datetime:
        try:
            stamp = datetime.fromisoformat(self.updated_at)
        except ValueError:
            return datetime.min.replace(tzinfo=timezone.utc)
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        return stamp

    def is_newer_than(self, other: PersistedRecord | None) -> bool:
        if other is None:
            return True
        return self.updated_at_datetime >= other.updated_at_datetime

    @classmethod
    def from_dict(cls, value: Any) -> PersistedRecord:
        """Parse an envelope, raising ``ValueError`` when it is malformed."""

        if not isinstance(value, Mapping):
            raise ValueError("Persisted record must be a mapping")
        payload = value.get("payload")
        if not isinstance(payload, Mapping):
            raise ValueError("Persisted record is missing its payload")
        version = value.get("schemaVersion", SCHEMA_VERSION)
        if not isinstance(version, int):
            raise ValueError("Persisted record has a non-integer schemaVersion")
        if version > SCHEMA_VERSION:
            raise ValueError(f"Persisted record schemaVersion {version} is newer than supported")
        updated_at = value.get("updatedAt")
        return cls(
            payload=dict(payload),
            schema_version=version,
            updated_at=updated_at if isinstance(updated_at, str) and updated_at else _now_iso(),
        )


__all__ = [
    "COLLECTIONS",
    "DOCUMENTS",
    "PROGRESS",
    "PersistedRecord",
    "SCHEMA_VERSION",
]
