"""Batch item processing with node data injection.

``process_batch`` walks the input items in order, fetches auxiliary data for
each item from named accessors, calls the transform and turns per-item
failures into ``Failure`` results instead of raising. The output always has
one result per attempted item, paired with the item's original index.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Sequence

from n8n_code_utils import logger as package_logger
from n8n_code_utils.errors import calculate_error_stats, create_processing_error
from n8n_code_utils.exceptions import ValidationError
from n8n_code_utils.logger import LoggerLike
from n8n_code_utils.normalize import item_payload, to_camel_case
from n8n_code_utils.results import BatchResult, FailureRecord, ProcessingResult, Success
from n8n_code_utils.retry import Accessor, RetryPolicy, retrying_accessor

Transform = Callable[..., Any]


@dataclass
class BatchOptions:
    """Options for a batch run.

    ``settle_delay`` and ``accessor_retry`` are compatibility shims for the
    n8n race where upstream node data is not visible yet when a Code node
    starts. Both are off unless set.
    """
    log_errors: bool = True
    stop_on_error: bool = False
    settle_delay: float = 0.0
    accessor_retry: RetryPolicy | None = None
    logger: LoggerLike | None = field(default=None, repr=False, compare=False)

    def get_logger(self) -> LoggerLike:
        return self.logger or package_logger.get_logger(__name__)


@dataclass(frozen=True)
class AccessorBinding:
    """A named accessor resolved to its transform parameter name."""
    name: str
    param_name: str
    accessor: Accessor


def bind_accessors(accessors: Mapping[str, Accessor] | None) -> list[AccessorBinding]:
    """Resolve accessors into an ordered list of bindings.

    Args:
        accessors: Mapping of node name to accessor, in parameter order

    Returns:
        Bindings in registration order

    Raises:
        ValidationError: If the mapping, a name or an accessor is invalid,
            or two names normalize to the same parameter name
    """
    if accessors is None:
        return []
    if not isinstance(accessors, Mapping):
        raise ValidationError(
            "Accessors must be a mapping of node names to accessor functions"
        )

    bindings: list[AccessorBinding] = []
    seen: dict[str, str] = {}

    for name, accessor in accessors.items():
        if not isinstance(name, str) or not name.strip():
            raise ValidationError(f"Accessor name must be a non-empty string: {name!r}")
        if not callable(accessor):
            raise ValidationError(f"Accessor for node '{name}' must be callable")

        param_name = to_camel_case(name)
        if not param_name:
            raise ValidationError(f"Accessor name '{name}' has no usable characters")
        if param_name in seen:
            raise ValidationError(
                f"Accessor names '{seen[param_name]}' and '{name}' both map to '{param_name}'"
            )
        seen[param_name] = name

        bindings.append(AccessorBinding(name=name, param_name=param_name, accessor=accessor))

    return bindings


def _validate_inputs(items: Any, transform: Any) -> None:
    if isinstance(items, (str, bytes)) or not isinstance(items, Sequence):
        raise ValidationError(
            "Items must be a list, e.g. from $input.all() or $('Node Name').all()"
        )
    if not callable(transform):
        raise ValidationError("Transform must be callable")


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _prepare(
    accessors: Mapping[str, Accessor] | None,
    options: BatchOptions,
) -> list[AccessorBinding]:
    bindings = bind_accessors(accessors)
    if options.accessor_retry is None:
        return bindings

    log = options.get_logger()
    return [
        AccessorBinding(
            name=b.name,
            param_name=b.param_name,
            accessor=retrying_accessor(
                b.accessor,
                options.accessor_retry,
                name=b.name,
                logger=log,
                log_exhausted=options.log_errors,
            ),
        )
        for b in bindings
    ]


async def _fetch_aux(
    bindings: Sequence[AccessorBinding],
    item_index: int,
    options: BatchOptions,
) -> list[Any]:
    """Call every accessor for one item; failures become None."""
    values: list[Any] = []
    for binding in bindings:
        try:
            values.append(await _maybe_await(binding.accessor(item_index)))
        except Exception as e:
            if options.log_errors:
                options.get_logger().warning(
                    "Failed to extract data from node '%s' for item %d: %s",
                    binding.name, item_index, e,
                )
            values.append(None)
    return values


async def _process_one(
    item: Any,
    item_index: int,
    transform: Transform,
    bindings: Sequence[AccessorBinding],
    options: BatchOptions,
) -> tuple[ProcessingResult, FailureRecord | None]:
    """Process one item, returning its result and failure record (if any)."""
    aux = await _fetch_aux(bindings, item_index, options)

    try:
        value = await _maybe_await(transform(item, item_payload(item), item_index, *aux))
    except Exception as e:
        failure, record = create_processing_error(e, item, item_index)
        if options.log_errors:
            options.get_logger().error("Processing failed for item %d: %s", item_index, e)
        return failure, record

    return Success(payload=value, index=item_index), None


async def process_batch(
    items: Sequence[Any],
    transform: Transform,
    accessors: Mapping[str, Accessor] | None = None,
    options: BatchOptions | None = None,
) -> BatchResult:
    """Process items sequentially with node data injection.

    The transform is called as ``transform(item, payload, index, *aux)``
    where ``aux`` holds one value per accessor, in the accessors' order
    (``None`` when an accessor failed). Sync and async transforms and
    accessors are both supported.

    Args:
        items: Items from ``$input.all()`` or ``$("Node Name").all()``
        transform: Per-item transform
        accessors: Mapping of node name to ``accessor(item_index)``
        options: Batch options

    Returns:
        BatchResult with one result per attempted item, failure records
        and run statistics

    Raises:
        ValidationError: If items, transform or accessors are malformed
    """
    options = options or BatchOptions()
    _validate_inputs(items, transform)
    bindings = _prepare(accessors, options)

    if options.settle_delay > 0:
        await asyncio.sleep(options.settle_delay)

    results: list[ProcessingResult] = []
    errors: list[FailureRecord] = []

    for item_index, item in enumerate(items):
        result, record = await _process_one(item, item_index, transform, bindings, options)
        results.append(result)
        if record is None:
            continue

        errors.append(record)
        if options.stop_on_error:
            options.get_logger().info(
                "Stopping batch after failure at item %d (%d of %d items processed)",
                item_index, len(results), len(items),
            )
            break

    return BatchResult(results=results, errors=errors, stats=calculate_error_stats(results, errors))


def process_batch_sync(
    items: Sequence[Any],
    transform: Transform,
    accessors: Mapping[str, Accessor] | None = None,
    options: BatchOptions | None = None,
) -> BatchResult:
    """Run ``process_batch`` to completion from synchronous code.

    Must not be called from inside a running event loop.
    """
    return asyncio.run(process_batch(items, transform, accessors, options))


async def process_items_parallel(
    items: Sequence[Any],
    transform: Transform,
    accessors: Mapping[str, Accessor] | None = None,
    options: BatchOptions | None = None,
    concurrency: int = 5,
) -> BatchResult:
    """Process items concurrently, at most ``concurrency`` at a time.

    Results are written by index, so order and pairing match
    ``process_batch`` even when items complete out of order.

    Raises:
        ValidationError: If inputs are malformed, ``concurrency`` is below 1
            or ``stop_on_error`` is set
    """
    options = options or BatchOptions()
    _validate_inputs(items, transform)
    if concurrency < 1:
        raise ValidationError(f"Concurrency must be at least 1, got {concurrency}")
    if options.stop_on_error:
        raise ValidationError("stop_on_error is not supported for parallel processing")
    bindings = _prepare(accessors, options)

    if options.settle_delay > 0:
        await asyncio.sleep(options.settle_delay)

    semaphore = asyncio.Semaphore(concurrency)
    slots: list[tuple[ProcessingResult, FailureRecord | None] | None] = [None] * len(items)

    async def run(item_index: int, item: Any) -> None:
        async with semaphore:
            slots[item_index] = await _process_one(item, item_index, transform, bindings, options)

    await asyncio.gather(*(run(i, item) for i, item in enumerate(items)))

    results: list[ProcessingResult] = []
    errors: list[FailureRecord] = []
    for slot in slots:
        if slot is None:
            continue
        result, record = slot
        results.append(result)
        if record is not None:
            errors.append(record)

    return BatchResult(results=results, errors=errors, stats=calculate_error_stats(results, errors))


def with_node_data(
    transform: Callable[..., Awaitable[Any] | Any],
    param_names: Sequence[str],
) -> Transform:
    """Adapt a keyword-style transform to the positional calling convention.

    The wrapped transform is called as
    ``transform(item, payload, index, **{param_name: value})``, using the
    camelCase names from ``AccessorBinding.param_name``.
    """
    names = list(param_names)

    def positional(item: Any, payload: Any, item_index: int, *aux: Any) -> Any:
        return transform(item, payload, item_index, **dict(zip(names, aux)))

    return positional
