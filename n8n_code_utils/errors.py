"""Error objects for data that has to survive the workflow boundary.

Per-item failures are represented as ``{"_error": {...}}`` mappings (and the
``Failure``/``FailureRecord`` types built from them) instead of raised
exceptions, so a Code node can return them as regular items.
"""

import functools
import inspect
import json
import traceback
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Sequence

from n8n_code_utils import logger as package_logger
from n8n_code_utils.logger import LoggerLike
from n8n_code_utils.normalize import item_payload, pick, to_json_safe
from n8n_code_utils.results import Failure, FailureRecord, RunStatistics

PROCESSING_ERROR = "processing_error"
ACCESSOR_ERROR = "accessor_error"
VALIDATION_ERROR = "validation_error"
PARSING_ERROR = "parsing_error"
FUNCTION_ERROR = "function_error"

# Payload fields copied into a failure to identify the item
CONTEXT_FIELDS = ("id", "title", "name", "guid")

SAMPLE_ERROR_COUNT = 3

# Kinds that describe bad input rather than a broken transform
_WARNING_KINDS = frozenset({VALIDATION_ERROR, PARSING_ERROR, ACCESSOR_ERROR})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _format_stack(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def create_base_error(kind: str, message: str, **context: Any) -> dict[str, Any]:
    """Create a base error object.

    Args:
        kind: Error kind (e.g. ``processing_error``)
        message: Human-readable message
        **context: Extra fields merged into the error mapping

    Returns:
        ``{"_error": {"type", "message", "timestamp", ...context}}``
    """
    return {
        "_error": {
            "type": kind,
            "message": message,
            "timestamp": _now(),
            **context,
        }
    }


def create_processing_error(
    exc: BaseException,
    item: Any,
    item_index: int,
) -> tuple[Failure, FailureRecord]:
    """Build the failure result and diagnostic record for a failed item.

    Args:
        exc: Exception raised by the transform
        item: The item that failed
        item_index: Position of the item in the input sequence

    Returns:
        Tuple of (failure for ``results``, record for ``errors``)
    """
    payload = item_payload(item)
    captured = pick(payload, CONTEXT_FIELDS)
    error = create_base_error(
        PROCESSING_ERROR,
        str(exc),
        itemIndex=item_index,
        originalData=to_json_safe(captured),
        stack=_format_stack(exc),
    )["_error"]

    failure = Failure(
        index=item_index,
        error_kind=PROCESSING_ERROR,
        message=error["message"],
        timestamp=error["timestamp"],
        captured_context=captured,
        original_payload=payload,
    )
    record = FailureRecord(
        index=item_index,
        error=error,
        original_item=to_json_safe(item),
    )
    return failure, record


def create_accessor_error(
    node_name: str,
    item_index: int,
    exc: BaseException,
    attempt: int = 0,
) -> dict[str, Any]:
    """Create error object for a failed node accessor call."""
    return create_base_error(
        ACCESSOR_ERROR,
        f"Failed to access node '{node_name}': {exc}",
        nodeName=node_name,
        itemIndex=item_index,
        attempt=attempt,
        originalError=str(exc),
    )


def create_validation_error(kind: str, message: str, **context: Any) -> dict[str, Any]:
    """Create error object for a validation failure."""
    return create_base_error(kind, message, **context)


def create_parsing_error(
    data_type: str,
    original_value: Any,
    exc: BaseException,
    **context: Any,
) -> dict[str, Any]:
    """Create error object for a value that failed to parse.

    The original value is stringified and truncated to 100 characters.
    """
    if isinstance(original_value, (dict, list)):
        try:
            shown = json.dumps(original_value, ensure_ascii=False)
        except (TypeError, ValueError):
            shown = str(original_value)
    else:
        shown = str(original_value)

    return create_base_error(
        PARSING_ERROR,
        f"Failed to parse {data_type}: {exc}",
        dataType=data_type,
        originalValue=shown[:100],
        originalError=str(exc),
        **context,
    )


def calculate_error_stats(
    results: Sequence[Any],
    errors: Sequence[FailureRecord],
) -> RunStatistics:
    """Calculate run statistics from results and error records.

    Rates are 0.0 for an empty run. The breakdown and samples are only set
    when at least one item failed.

    Args:
        results: All processing results of the run
        errors: Failure records of the run

    Returns:
        RunStatistics
    """
    total = len(results)
    failed = len(errors)
    successful = total - failed

    error_breakdown = None
    sample_errors = None
    if failed:
        error_breakdown = dict(Counter(record.kind for record in errors))
        sample_errors = [
            {
                "type": record.kind,
                "message": record.error.get("message"),
                "itemIndex": record.index,
            }
            for record in errors[:SAMPLE_ERROR_COUNT]
        ]

    return RunStatistics(
        total=total,
        successful=successful,
        failed=failed,
        success_rate=successful / total if total else 0.0,
        failure_rate=failed / total if total else 0.0,
        error_breakdown=error_breakdown,
        sample_errors=sample_errors,
    )


def is_error_object(obj: Any) -> bool:
    """Check if an object is an error object created by this module."""
    if not isinstance(obj, dict):
        return False
    error = obj.get("_error")
    return isinstance(error, dict) and bool(error.get("type")) and bool(error.get("message"))


def get_error_message(error: Any) -> str:
    """Extract a message from an error object, exception or string."""
    if is_error_object(error):
        return error["_error"]["message"]
    if isinstance(error, BaseException):
        return str(error)
    if isinstance(error, str):
        return error
    return "Unknown error"


def log_error(
    error: Any,
    logger: LoggerLike | None = None,
    include_stack: bool = False,
    prefix: str = "",
) -> None:
    """Log an error object at a level chosen by its kind.

    Args:
        error: Error object (or anything else, logged as-is)
        logger: Logger to use (default: package logger)
        include_stack: Also log the stored stack trace
        prefix: Prefix for the log message
    """
    log = logger or package_logger.get_logger(__name__)

    if not is_error_object(error):
        log.error("%sError: %s", prefix, error)
        return

    info = error["_error"]
    message = f"{prefix}{info['type']}: {info['message']}"
    if info["type"] in _WARNING_KINDS:
        log.warning(message)
    else:
        log.error(message)

    if include_stack and info.get("stack"):
        log.error("Stack trace: %s", info["stack"])

    if info.get("itemIndex") is not None:
        log.error("Item index: %s", info["itemIndex"])


def with_error_handling(
    fn: Callable[..., Any],
    kind: str = FUNCTION_ERROR,
    **context: Any,
) -> Callable[..., Awaitable[Any]]:
    """Wrap a sync or async function so failures return an error object.

    Args:
        fn: Function to wrap
        kind: Error kind for failures
        **context: Extra fields for the error object

    Returns:
        Async wrapper returning the function result or an error object
    """
    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            result = fn(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as e:
            return create_base_error(
                kind,
                str(e),
                functionName=getattr(fn, "__name__", "anonymous"),
                arguments=len(args) + len(kwargs),
                originalError=str(e),
                stack=_format_stack(e),
                **context,
            )

    return wrapper
