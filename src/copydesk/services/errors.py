"""Error taxonomy for the document synchronization engine.

Every class carries a machine-readable ``error_code`` plus a short user-level
``suggestion``. Callers recover from all of them locally; ``to_dict`` gives the
payload surfaced to the application layer as a notice.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


class ErrorCode:
    """Constants for error codes used in notices and logs."""

    HYDRATION_FAILURE = "hydration_failure"
    REMOTE_UNAVAILABLE = "remote_unavailable"
    SELECTION_STALE = "selection_stale"
    GENERATION_FAILURE = "generation_failure"
    QUOTA_EXCEEDED = "quota_exceeded"
    MISSING_IDENTITY = "missing_identity"
    TEMPLATE_INVALID = "template_invalid"
    SECTION_BUSY = "section_busy"
    NO_ACTIVE_DOCUMENT = "no_active_document"


@dataclass
class CopydeskError(Exception):
    """Base exception for all recoverable engine errors.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
        suggestion: Actionable guidance shown to the user.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
            "severity": self.severity,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


@dataclass
class HydrationFailure(CopydeskError):
    """The local cache could not be read; the session starts from empty defaults."""

    error_code: str = field(default=ErrorCode.HYDRATION_FAILURE)
    message: str = field(default="Saved workspace state could not be read")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Starting with an empty workspace")

    severity: ClassVar[str] = "warning"


@dataclass
class RemoteUnavailable(CopydeskError):
    """The remote durable store rejected or could not be reached for an operation."""

    error_code: str = field(default=ErrorCode.REMOTE_UNAVAILABLE)
    message: str = field(default="Couldn't sync, working offline")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Changes are kept locally and will sync later")

    status_code: int | None = field(default=None)

    severity: ClassVar[str] = "warning"

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.status_code is not None:
            result["status_code"] = self.status_code
        return result


@dataclass
class SelectionStale(CopydeskError):
    """The captured selection no longer matches the document content."""

    error_code: str = field(default=ErrorCode.SELECTION_STALE)
    message: str = field(default="The selection changed before the result could be applied")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Copy the generated text and insert it manually")

    replacement: str | None = field(default=None)

    severity: ClassVar[str] = "warning"

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.replacement is not None:
            result["replacement"] = self.replacement
        return result


@dataclass
class GenerationFailure(CopydeskError):
    """The generation service failed or timed out."""

    error_code: str = field(default=ErrorCode.GENERATION_FAILURE)
    message: str = field(default="This section failed to generate")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Retry")

    timed_out: bool = field(default=False)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["timed_out"] = self.timed_out
        return result


@dataclass
class QuotaExceeded(CopydeskError):
    """The local cache is full; further local writes are refused."""

    error_code: str = field(default=ErrorCode.QUOTA_EXCEEDED)
    message: str = field(default="Storage is full")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Delete unused documents to free space")

    required_bytes: int | None = field(default=None)
    capacity_bytes: int | None = field(default=None)


@dataclass
class MissingIdentity(CopydeskError):
    """An authenticated remote call was attempted without a user id."""

    error_code: str = field(default=ErrorCode.MISSING_IDENTITY)
    message: str = field(default="No signed-in user for remote storage")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Sign in to enable sync")


@dataclass
class TemplateValidationError(CopydeskError):
    """A template definition or a section form failed validation."""

    error_code: str = field(default=ErrorCode.TEMPLATE_INVALID)
    message: str = field(default="Template validation failed")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    missing_fields: tuple[str, ...] = field(default=())

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.missing_fields:
            result["missing_fields"] = list(self.missing_fields)
        return result


@dataclass
class SectionBusy(CopydeskError):
    """A generation call for the same section is still outstanding."""

    error_code: str = field(default=ErrorCode.SECTION_BUSY)
    message: str = field(default="This section is already generating")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Wait for the current request to finish")


@dataclass
class NoActiveDocument(CopydeskError):
    """An operation requires an active document but none is loaded."""

    error_code: str = field(default=ErrorCode.NO_ACTIVE_DOCUMENT)
    message: str = field(default="No document is open")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Create or open a document first")


__all__ = [
    "CopydeskError",
    "ErrorCode",
    "GenerationFailure",
    "HydrationFailure",
    "MissingIdentity",
    "NoActiveDocument",
    "QuotaExceeded",
    "RemoteUnavailable",
    "SectionBusy",
    "SelectionStale",
    "TemplateValidationError",
]
