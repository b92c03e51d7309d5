"""Synchronous helpers that keep n8n item pairing intact.

These work directly on n8n item lists (``{"json": ..., "pairedItem": ...}``)
for Code nodes that do not need node data injection.
"""

from typing import Any, Callable, Sequence

from n8n_code_utils import logger as package_logger
from n8n_code_utils.errors import SAMPLE_ERROR_COUNT, create_processing_error
from n8n_code_utils.exceptions import ValidationError
from n8n_code_utils.logger import LoggerLike
from n8n_code_utils.normalize import item_payload


def _chunks(items: Sequence[Any], size: int | None) -> list[tuple[int, Sequence[Any]]]:
    if not size:
        return [(0, items)]
    return [(start, items[start:start + size]) for start in range(0, len(items), size)]


def process_items_with_pairing(
    items: Sequence[Any],
    processor: Callable[[Any, int], Any],
    *,
    maintain_pairing: bool = True,
    log_errors: bool = True,
    stop_on_error: bool = False,
    batch_size: int | None = None,
    logger: LoggerLike | None = None,
) -> list[Any]:
    """Apply ``processor(item, index)`` to each item, keeping pairing.

    Args:
        items: Input items
        processor: Function called with the item and its index
        maintain_pairing: Wrap outputs as ``{"json", "pairedItem"}``
        log_errors: Log failures
        stop_on_error: Stop after the first failure
        batch_size: Iterate in chunks of this size (order is unchanged)
        logger: Logger for failures (default: package logger)

    Returns:
        One output per processed item; failures carry an ``_error`` marker
    """
    if isinstance(items, (str, bytes)) or not isinstance(items, Sequence):
        raise ValidationError("Items must be a list")
    if batch_size is not None and batch_size < 1:
        raise ValidationError(f"batch_size must be at least 1, got {batch_size}")

    log = logger or package_logger.get_logger(__name__)
    output: list[Any] = []

    for start, chunk in _chunks(items, batch_size):
        for offset, item in enumerate(chunk):
            index = start + offset
            try:
                value = processor(item, index)
                output.append({"json": value, "pairedItem": index} if maintain_pairing else value)
            except Exception as e:
                if log_errors:
                    log.error("Processing failed for item %d: %s", index, e)
                failure, _ = create_processing_error(e, item, index)
                n8n_item = failure.to_n8n()
                output.append(n8n_item if maintain_pairing else n8n_item["json"])
                if stop_on_error:
                    return output

    return output


def filter_and_process(
    items: Sequence[Any],
    predicate: Callable[[Any], bool],
    processor: Callable[[Any, int, int], Any],
) -> dict[str, Any]:
    """Filter items, then process the survivors paired to their original index.

    ``processor`` is called as ``processor(item, original_index, filtered_index)``.

    Returns:
        Mapping with ``processed``, ``totalItems``, ``filteredCount``,
        ``processedCount`` and ``filterRate``
    """
    kept = [(index, item) for index, item in enumerate(items) if predicate(item)]
    processed = [
        {"json": processor(item, original_index, filtered_index), "pairedItem": original_index}
        for filtered_index, (original_index, item) in enumerate(kept)
    ]

    total = len(items)
    return {
        "processed": processed,
        "totalItems": total,
        "filteredCount": len(kept),
        "processedCount": len(processed),
        "filterRate": len(kept) / total if total else 0.0,
    }


def _is_failed_marker(processed_item: Any) -> bool:
    payload = item_payload(processed_item)
    return isinstance(payload, dict) and isinstance(payload.get("_error"), dict)


def aggregate_results(
    processed_items: Sequence[Any],
    include_error_details: bool = True,
) -> dict[str, Any]:
    """Compute run statistics from n8n items carrying ``_error`` markers.

    Returns:
        Statistics with camelCase keys; ``errorBreakdown`` and
        ``sampleErrors`` are only present when an item failed and
        ``include_error_details`` is set
    """
    total = len(processed_items)
    failures = [item for item in processed_items if _is_failed_marker(item)]
    failed = len(failures)
    successful = total - failed

    stats: dict[str, Any] = {
        "total": total,
        "successful": successful,
        "failed": failed,
        "successRate": successful / total if total else 0.0,
        "failureRate": failed / total if total else 0.0,
    }

    if failed and include_error_details:
        breakdown: dict[str, int] = {}
        samples: list[dict[str, Any]] = []
        for item in failures:
            error = item_payload(item)["_error"]
            kind = error.get("type", "unknown")
            breakdown[kind] = breakdown.get(kind, 0) + 1
            if len(samples) < SAMPLE_ERROR_COUNT:
                samples.append({
                    "type": kind,
                    "message": error.get("message"),
                    "itemIndex": item.get("pairedItem") if isinstance(item, dict) else None,
                })
        stats["errorBreakdown"] = breakdown
        stats["sampleErrors"] = samples

    return stats


def retry_failed_items(
    processed_items: list[Any],
    original_items: Sequence[Any],
    processor: Callable[[Any, int], Any],
    max_retries: int = 1,
    logger: LoggerLike | None = None,
) -> list[Any]:
    """Re-run ``processor`` for items whose output carries ``_error``.

    Each failed item is retried up to ``max_retries`` times; the first
    success replaces the failed output. Items still failing keep a fresh
    ``_error`` marker.

    Returns:
        ``processed_items`` itself when nothing failed, else a new list
    """
    failed_positions = [
        position for position, item in enumerate(processed_items) if _is_failed_marker(item)
    ]
    if not failed_positions:
        return processed_items

    log = logger or package_logger.get_logger(__name__)
    retried = list(processed_items)

    for position in failed_positions:
        entry = processed_items[position]
        index = entry.get("pairedItem", position) if isinstance(entry, dict) else position
        if not isinstance(index, int) or not 0 <= index < len(original_items):
            log.warning("Cannot retry item at position %d: no original item for index %r", position, index)
            continue

        original = original_items[index]
        for attempt in range(max_retries):
            try:
                retried[position] = {"json": processor(original, index), "pairedItem": index}
                log.info("Item %d succeeded on retry %d", index, attempt + 1)
                break
            except Exception as e:
                log.warning("Retry %d for item %d failed: %s", attempt + 1, index, e)
                failure, _ = create_processing_error(e, original, index)
                retried[position] = failure.to_n8n()

    return retried
