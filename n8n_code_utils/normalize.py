"""Name and JSON normalization for values crossing the workflow boundary."""

import dataclasses
import re
from datetime import date, datetime
from typing import Any, Iterable, Mapping

# Anything that is not a letter, digit or whitespace separates words,
# and so does the underscore
_SEPARATOR_PATTERN = re.compile(r"[^\w\s]|_")
_WHITESPACE_PATTERN = re.compile(r"\s+")


def to_camel_case(name: str) -> str:
    """Convert a node or source name to a lower camel case parameter name.

    ``"Ingestion Sources"`` becomes ``ingestionSources`` and
    ``"API_Config-v2"`` becomes ``apiConfigV2``.

    Args:
        name: Original name (may contain spaces and punctuation)

    Returns:
        Lower camel case token, empty when the name has no word characters
    """
    spaced = _SEPARATOR_PATTERN.sub(" ", name)
    words = [w for w in _WHITESPACE_PATTERN.split(spaced) if w]
    if not words:
        return ""

    head, *rest = words
    return head.lower() + "".join(w[:1].upper() + w[1:].lower() for w in rest)


def item_payload(item: Any) -> Any:
    """Return the JSON payload of a workflow item.

    n8n items carry their data under ``json``. Mappings of the form
    ``{"payload": {...}, "index": n}`` and ``WorkItem`` objects carry it under
    ``payload``. Any other mapping is its own payload.

    Args:
        item: n8n item mapping, item proxy, WorkItem, or bare payload

    Returns:
        The payload, or the item itself when it has no ``json``/``payload``
    """
    if isinstance(item, Mapping):
        payload = item.get("json")
        if payload is not None:
            return payload
        payload = item.get("payload")
        if isinstance(payload, Mapping):
            return payload
        return item

    for attr in ("json", "payload"):
        payload = getattr(item, attr, None)
        if payload is not None:
            return payload

    return item


def pick(obj: Any, keys: Iterable[str]) -> dict[str, Any]:
    """Return the subset of ``obj`` with the given keys that are present."""
    if not isinstance(obj, Mapping):
        return {}
    return {k: obj[k] for k in keys if k in obj}


def to_json_safe(obj: Any) -> Any:
    """Recursively convert an object to JSON-compatible values.

    Mappings become dicts with string keys, sequences become lists,
    dataclasses are expanded, dates become ISO-8601 strings and any other
    non-JSON value falls back to ``str()``.

    Args:
        obj: Object to convert

    Returns:
        JSON-compatible copy of ``obj``
    """
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, Mapping):
        return {str(k): to_json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [to_json_safe(v) for v in obj]
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return to_json_safe(dataclasses.asdict(obj))
    if hasattr(obj, "json"):
        # Host item proxies
        return {"json": to_json_safe(obj.json)}
    return str(obj)
