"""Per-item results and run statistics for batch processing."""

from dataclasses import dataclass, field
from typing import Any, Union

from n8n_code_utils.normalize import to_json_safe


@dataclass(frozen=True)
class WorkItem:
    """One unit of input paired with its position in the input sequence."""
    payload: dict[str, Any]
    index: int = 0


@dataclass(frozen=True)
class Success:
    """Transform output for one item."""
    payload: Any
    index: int

    ok = True

    def to_n8n(self) -> dict[str, Any]:
        """Return the item in n8n output shape."""
        return {"json": to_json_safe(self.payload), "pairedItem": self.index}


@dataclass(frozen=True)
class Failure:
    """Structured failure for one item.

    ``original_payload`` is kept so the n8n output can carry the original
    fields alongside the ``_error`` marker.
    """
    index: int
    error_kind: str
    message: str
    timestamp: str
    captured_context: dict[str, Any] = field(default_factory=dict)
    original_payload: Any = field(default=None, repr=False, compare=False)

    ok = False

    @property
    def payload(self) -> dict[str, Any]:
        return {
            "errorKind": self.error_kind,
            "message": self.message,
            "timestamp": self.timestamp,
            "capturedContext": self.captured_context,
        }

    def error_marker(self) -> dict[str, Any]:
        """Return the ``_error`` mapping used in n8n output."""
        return {
            "type": self.error_kind,
            "message": self.message,
            "timestamp": self.timestamp,
            "itemIndex": self.index,
            "originalData": to_json_safe(self.captured_context),
        }

    def to_n8n(self) -> dict[str, Any]:
        """Return the item in n8n output shape with an ``_error`` marker."""
        base = self.original_payload if isinstance(self.original_payload, dict) else {}
        body = {**to_json_safe(base), "_error": self.error_marker()}
        return {"json": body, "pairedItem": self.index}


ProcessingResult = Union[Success, Failure]


@dataclass(frozen=True)
class FailureRecord:
    """Diagnostic entry for the ``errors`` list of a batch run."""
    index: int
    error: dict[str, Any]
    original_item: Any = None

    @property
    def kind(self) -> str:
        return self.error.get("type", "unknown")

    def to_dict(self) -> dict[str, Any]:
        return {
            "itemIndex": self.index,
            "error": to_json_safe(self.error),
            "originalItem": to_json_safe(self.original_item),
        }


@dataclass(frozen=True)
class RunStatistics:
    """Aggregate counts for one batch run."""
    total: int
    successful: int
    failed: int
    success_rate: float
    failure_rate: float
    error_breakdown: dict[str, int] | None = None
    sample_errors: list[dict[str, Any]] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return statistics with the camelCase keys used in n8n output."""
        result: dict[str, Any] = {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "successRate": self.success_rate,
            "failureRate": self.failure_rate,
        }
        if self.error_breakdown is not None:
            result["errorBreakdown"] = dict(self.error_breakdown)
        if self.sample_errors is not None:
            result["sampleErrors"] = list(self.sample_errors)
        return result


@dataclass
class BatchResult:
    """Outcome of one batch run."""
    results: list[ProcessingResult]
    errors: list[FailureRecord]
    stats: RunStatistics

    def items(self) -> list[dict[str, Any]]:
        """Return results as n8n items, ready to return from a Code node."""
        return [result.to_n8n() for result in self.results]

    def to_n8n(self) -> dict[str, Any]:
        return {
            "results": self.items(),
            "errors": [record.to_dict() for record in self.errors],
            "stats": self.stats.to_dict(),
        }
