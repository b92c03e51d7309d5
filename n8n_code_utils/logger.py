"""Logging facade for n8n-code-utils.

Modules log through ``from n8n_code_utils import logger`` and the module-level
helpers below, or take an injected ``logging.Logger`` when the caller wants
output routed elsewhere (for example into an n8n execution log).
"""

import logging
import sys
from typing import Any, TextIO, Union

ROOT_LOGGER_NAME = "n8n_code_utils"

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]

_root = logging.getLogger(ROOT_LOGGER_NAME)
_root.addHandler(logging.NullHandler())


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a logger under the package namespace.

    Args:
        name: Dotted suffix or full module name (``__name__``)

    Returns:
        Logger instance
    """
    if not name or name == ROOT_LOGGER_NAME:
        return _root
    if name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def configure(level: int | str = logging.INFO, stream: TextIO | None = None) -> None:
    """Attach a stream handler to the package logger.

    Calling it again replaces the previous handler instead of stacking them.

    Args:
        level: Logging level
        stream: Output stream (default: stderr)
    """
    for handler in list(_root.handlers):
        if getattr(handler, "_n8n_code_utils", False):
            _root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    handler._n8n_code_utils = True  # type: ignore[attr-defined]
    _root.addHandler(handler)
    _root.setLevel(level)


def debug(msg: str, *args: Any, **kwargs: Any) -> None:
    _root.debug(msg, *args, **kwargs)


def info(msg: str, *args: Any, **kwargs: Any) -> None:
    _root.info(msg, *args, **kwargs)

