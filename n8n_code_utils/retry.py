"""Bounded retry with exponential backoff for node accessors.

Right after a Code node starts, n8n does not always expose the paired items
of upstream nodes yet, so an accessor can come back empty on the first call
and succeed a few milliseconds later. ``retrying_accessor`` papers over that
host quirk. It does not guarantee eventual success: after the last attempt
the accessor yields ``None``.
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from n8n_code_utils import logger as package_logger
from n8n_code_utils.exceptions import AccessorError, ConfigError
from n8n_code_utils.logger import LoggerLike

Accessor = Callable[[int], Any]
AsyncAccessor = Callable[[int], Awaitable[Any]]
UsablePredicate = Callable[[Any], bool]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings for accessor calls.

    Delay before retry ``n`` (0-based) is
    ``min(base_delay * multiplier ** n, max_delay)`` seconds.
    """
    max_attempts: int = 3
    base_delay: float = 0.05
    multiplier: float = 2.0
    max_delay: float = 0.5

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigError("Retry delays cannot be negative")
        if self.multiplier < 1:
            raise ConfigError(f"multiplier must be at least 1, got {self.multiplier}")

    @classmethod
    def n8n_race_workaround(cls) -> "RetryPolicy":
        """Policy matching the host workaround: 50ms doubling, capped at 500ms."""
        return cls(max_attempts=3, base_delay=0.05, multiplier=2.0, max_delay=0.5)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RetryPolicy":
        """Build a policy from a config mapping, ignoring unknown keys.

        Raises:
            ConfigError: If a value has the wrong type or is out of range
        """
        kwargs: dict[str, Any] = {}
        try:
            if "max_attempts" in data:
                kwargs["max_attempts"] = int(data["max_attempts"])
            for key in ("base_delay", "multiplier", "max_delay"):
                if key in data:
                    kwargs[key] = float(data[key])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid accessor retry setting: {e}")
        return cls(**kwargs)

    def delay_for(self, attempt: int) -> float:
        """Return the backoff delay in seconds after a failed attempt.

        Args:
            attempt: Failed attempt number (0-indexed)

        Returns:
            Delay in seconds, capped at ``max_delay``
        """
        return min(self.base_delay * (self.multiplier ** attempt), self.max_delay)

    def should_retry(self, attempt: int) -> bool:
        """Check whether another attempt follows the given 0-indexed attempt."""
        return attempt < self.max_attempts - 1


def require_fields(*fields: str) -> UsablePredicate:
    """Build a predicate accepting mappings where every field is set.

    Source nodes in ingestion workflows, for example, are only usable once
    ``knowledgeSourceId`` is visible.
    """
    def is_usable(data: Any) -> bool:
        if not isinstance(data, Mapping):
            return False
        return all(data.get(name) for name in fields)

    return is_usable


async def _call(accessor: Accessor, item_index: int) -> Any:
    result = accessor(item_index)
    if inspect.isawaitable(result):
        result = await result
    return result


def retrying_accessor(
    accessor: Accessor,
    policy: RetryPolicy | None = None,
    name: str = "",
    logger: LoggerLike | None = None,
    is_usable: UsablePredicate | None = None,
    log_exhausted: bool = True,
) -> AsyncAccessor:
    """Wrap an accessor so empty results and errors are retried.

    A falsy result, a result rejected by ``is_usable`` and a raised exception
    all count as a failed attempt.

    Args:
        accessor: Sync or async accessor taking an item index
        policy: Retry policy (default: ``RetryPolicy()``)
        name: Node name for log messages
        logger: Logger for diagnostics (default: package logger)
        is_usable: Extra acceptance check for returned data
        log_exhausted: Log a warning when every attempt failed

    Returns:
        Async accessor returning the data, or None when every attempt failed
    """
    policy = policy or RetryPolicy()
    log = logger or package_logger.get_logger(__name__)
    label = name or getattr(accessor, "__name__", "accessor")

    async def fetch(item_index: int) -> Any:
        last_error: BaseException | None = None

        for attempt in range(policy.max_attempts):
            try:
                data = await _call(accessor, item_index)
                if data and (is_usable is None or is_usable(data)):
                    return data
                last_error = AccessorError(
                    label, item_index, f"no usable data on attempt {attempt + 1}"
                )
                if attempt == 0:
                    log.debug("Node '%s' has no usable data for item %d, retrying", label, item_index)
            except Exception as e:
                last_error = e

            if policy.should_retry(attempt):
                await asyncio.sleep(policy.delay_for(attempt))

        if log_exhausted:
            log.warning(
                "Node '%s' unavailable for item %d after %d attempt(s): %s",
                label, item_index, policy.max_attempts, last_error,
            )
        return None

    fetch.__name__ = f"retrying_{getattr(accessor, '__name__', 'accessor')}"
    return fetch
