"""Node data access over the n8n ``$`` function.

The Code node runtime exposes ``$("Node Name")`` (``_("Node Name")`` in
Python Code nodes), returning a reference to another node's output. The
helpers here take that function as a parameter because it only exists inside
the node's execution context.
"""

from typing import Any, Callable, Mapping, Protocol, Sequence

from n8n_code_utils import logger as package_logger
from n8n_code_utils.logger import LoggerLike


class NodeRef(Protocol):
    """Protocol for the node reference returned by the host ``$`` function."""

    @property
    def item(self) -> Any:
        """Item paired with the current input item."""
        ...

    def all(self) -> Sequence[Any]:
        """All output items of the node."""
        ...


DollarFn = Callable[[str], NodeRef | None]
NodeNames = str | Sequence[str] | Mapping[str, str]


def _item_json(item: Any) -> Any:
    """Return ``item.json`` for item proxies and item mappings."""
    if item is None:
        return None
    if isinstance(item, Mapping):
        return item.get("json")
    return getattr(item, "json", None)


def _item_matching(ref: Any, item_index: int) -> Any:
    method = getattr(ref, "item_matching", None) or getattr(ref, "itemMatching", None)
    if method is None:
        return None
    return method(item_index)


def _all_items(ref: Any) -> list[Any]:
    method = getattr(ref, "all", None)
    if method is None:
        return []
    return list(method() or [])


def _names_to_aliases(node_names: NodeNames) -> list[tuple[str, str]]:
    """Expand node names into (key, node_name) pairs."""
    if isinstance(node_names, str):
        return [(node_names, node_names)]
    if isinstance(node_names, Mapping):
        return [(str(alias), name) for alias, name in node_names.items()]
    return [(name, name) for name in node_names]


def node_accessor(dollar: DollarFn, node_name: str) -> Callable[[int], Any]:
    """Create an accessor returning a node's JSON paired with an item index.

    Lookup order per call: ``item_matching(index)``, the current ``item``,
    then ``all()[min(index, len - 1)]``. Errors from the host propagate so
    the batch processor can recover and retry.

    Args:
        dollar: The host ``$`` function
        node_name: Name of the node to read

    Returns:
        Accessor taking an item index and returning JSON data or None
    """
    def accessor(item_index: int) -> Any:
        ref = dollar(node_name)
        if not ref:
            return None

        data = _item_json(_item_matching(ref, item_index))
        if data:
            return data

        data = _item_json(getattr(ref, "item", None))
        if data:
            return data

        items = _all_items(ref)
        if items:
            return _item_json(items[min(item_index, len(items) - 1)])

        return None

    accessor.__name__ = f"node_accessor[{node_name}]"
    return accessor


def node_accessors(dollar: DollarFn, node_names: Sequence[str]) -> dict[str, Callable[[int], Any]]:
    """Build an ordered name -> accessor mapping for ``process_batch``."""
    return {name: node_accessor(dollar, name) for name in node_names}


def extract_node_data(
    dollar: DollarFn,
    node_names: NodeNames,
    current_item: Any = None,
    item_index: int = 0,
    logger: LoggerLike | None = None,
) -> dict[str, Any]:
    """Extract paired JSON data from one or more nodes.

    Args:
        dollar: The host ``$`` function
        node_names: Node name, list of names, or ``{alias: node_name}``
        current_item: Current item, added under ``"current"`` when given
        item_index: Index of the item being processed
        logger: Logger for failures (default: package logger)

    Returns:
        Mapping of name (or alias) to JSON data, None for failing nodes
    """
    log = logger or package_logger.get_logger(__name__)
    extracted: dict[str, Any] = {}

    for key, node_name in _names_to_aliases(node_names):
        try:
            ref = dollar(node_name)
            data = _item_json(_item_matching(ref, item_index)) if ref else None
            if not data and ref:
                data = _item_json(getattr(ref, "item", None))
            extracted[key] = data or None
        except Exception as e:
            log.warning(
                "Failed to extract data from node '%s' at index %d: %s",
                node_name, item_index, e,
            )
            extracted[key] = None

    if current_item is not None:
        extracted["current"] = _item_json(current_item) or current_item

    return extracted


def extract_all_node_data(
    dollar: DollarFn,
    node_names: NodeNames,
    include_metadata: bool = False,
    logger: LoggerLike | None = None,
) -> dict[str, Any]:
    """Extract every output item from one or more nodes.

    Args:
        dollar: The host ``$`` function
        node_names: Node name, list of names, or ``{alias: node_name}``
        include_metadata: Add ``<key>_metadata`` entries with counts
        logger: Logger for failures (default: package logger)

    Returns:
        Mapping of name (or alias) to item lists, empty for failing nodes
    """
    log = logger or package_logger.get_logger(__name__)
    extracted: dict[str, Any] = {}

    for key, node_name in _names_to_aliases(node_names):
        try:
            ref = dollar(node_name)
            items = _all_items(ref) if ref else []
            extracted[key] = items
            if include_metadata:
                extracted[f"{key}_metadata"] = {
                    "count": len(items),
                    "hasData": len(items) > 0,
                }
        except Exception as e:
            log.warning("Failed to extract all data from node '%s': %s", node_name, e)
            extracted[key] = []
            if include_metadata:
                extracted[f"{key}_metadata"] = {
                    "count": 0,
                    "hasData": False,
                    "error": str(e),
                }

    return extracted


def get_node_value(
    dollar: DollarFn,
    node_name: str,
    path: str = "json",
    fallback: Any = None,
    item_index: int = 0,
    logger: LoggerLike | None = None,
) -> Any:
    """Read a dotted path from a node's paired item.

    Args:
        dollar: The host ``$`` function
        node_name: Name of the node
        path: Dotted path from the item (e.g. ``"json.title"``)
        fallback: Value returned when the path cannot be resolved
        item_index: Index of the item being processed
        logger: Logger for failures (default: package logger)

    Returns:
        Value at path or fallback
    """
    try:
        ref = dollar(node_name)
        if not ref:
            return fallback
        item = _item_matching(ref, item_index) or getattr(ref, "item", None)
        if item is None:
            return fallback

        current = item
        for part in path.split("."):
            if isinstance(current, Mapping) and part in current:
                current = current[part]
            elif not isinstance(current, Mapping) and hasattr(current, part):
                current = getattr(current, part)
            else:
                return fallback

        return fallback if current is None else current
    except Exception as e:
        log = logger or package_logger.get_logger(__name__)
        log.warning(
            "Failed to get value from node '%s' at path '%s' (item %d): %s",
            node_name, path, item_index, e,
        )
        return fallback


def check_node_availability(dollar: DollarFn, node_names: str | Sequence[str]) -> dict[str, dict[str, Any]]:
    """Check which nodes exist and have paired data.

    Returns:
        ``{"available": {...}, "hasData": {...}, "errors": {...}}`` keyed by node name
    """
    status: dict[str, dict[str, Any]] = {"available": {}, "hasData": {}, "errors": {}}
    names = [node_names] if isinstance(node_names, str) else list(node_names)

    for node_name in names:
        try:
            ref = dollar(node_name)
            has_data = bool(ref) and bool(_item_json(getattr(ref, "item", None)))
            status["available"][node_name] = bool(ref)
            status["hasData"][node_name] = has_data
            if not has_data:
                status["errors"][node_name] = "Node exists but has no data"
        except Exception as e:
            status["available"][node_name] = False
            status["hasData"][node_name] = False
            status["errors"][node_name] = str(e)

    return status


class N8nHelpers:
    """Node helpers with the host ``$`` function pre-bound."""

    def __init__(self, dollar: DollarFn, logger: LoggerLike | None = None) -> None:
        self.dollar = dollar
        self.logger = logger

    def extract_node_data(self, node_names: NodeNames, current_item: Any = None, item_index: int = 0) -> dict[str, Any]:
        return extract_node_data(self.dollar, node_names, current_item, item_index, self.logger)

    def extract_all_node_data(self, node_names: NodeNames, include_metadata: bool = False) -> dict[str, Any]:
        return extract_all_node_data(self.dollar, node_names, include_metadata, self.logger)

    def get_node_value(self, node_name: str, path: str = "json", fallback: Any = None, item_index: int = 0) -> Any:
        return get_node_value(self.dollar, node_name, path, fallback, item_index, self.logger)

    def check_node_availability(self, node_names: str | Sequence[str]) -> dict[str, dict[str, Any]]:
        return check_node_availability(self.dollar, node_names)

    def accessor(self, node_name: str) -> Callable[[int], Any]:
        return node_accessor(self.dollar, node_name)

    def accessors(self, node_names: Sequence[str]) -> dict[str, Callable[[int], Any]]:
        return node_accessors(self.dollar, node_names)
