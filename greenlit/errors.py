"""Error taxonomy and the Result envelope used at degrade boundaries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class GreenlitError(Exception):
    """Base error carrying a stable kind for API payloads and logs."""

    kind: str = "GreenlitError"

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, **self.context}


class UpstreamUnavailable(GreenlitError):
    """The guideline source could not be read and nothing usable is cached."""

    kind = "UpstreamUnavailable"


class ScannerInvocationFailed(GreenlitError):
    """The external scanner failed without producing any output."""

    kind = "ScannerInvocationFailed"


class DownloadFailed(GreenlitError):
    """A remote .ipa could not be downloaded."""

    kind = "DownloadFailed"


class EnrichmentFailed(GreenlitError):
    """The enrichment service timed out, refused, or replied with garbage."""

    kind = "EnrichmentFailed"


class MalformedScanOutput(GreenlitError):
    """Scanner output did not match any known structured shape."""

    kind = "MalformedScanOutput"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a call whose failure the caller must decide how to absorb."""

    value: T | None = None
    error: GreenlitError | None = None

    @classmethod
    def success(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: GreenlitError) -> Result[T]:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None
