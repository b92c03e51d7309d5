"""Configuration management for n8n-code-utils."""

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from n8n_code_utils import logger
from n8n_code_utils.batch import BatchOptions
from n8n_code_utils.exceptions import ConfigError
from n8n_code_utils.retry import RetryPolicy

CONFIG_FILE_NAME = ".n8n-batch.yaml"

ENV_LOG_ERRORS = "N8N_BATCH_LOG_ERRORS"
ENV_STOP_ON_ERROR = "N8N_BATCH_STOP_ON_ERROR"
ENV_SETTLE_DELAY = "N8N_BATCH_SETTLE_DELAY"
ENV_MAX_ATTEMPTS = "N8N_ACCESSOR_MAX_ATTEMPTS"
ENV_BASE_DELAY = "N8N_ACCESSOR_BASE_DELAY"
ENV_MAX_DELAY = "N8N_ACCESSOR_MAX_DELAY"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigError(f"'{name}' must be a boolean, got {value!r}")


def _parse_float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"'{name}' must be a number, got {value!r}")
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{name}' must be a number, got {value!r}")
    if result < 0:
        raise ConfigError(f"'{name}' cannot be negative, got {value!r}")
    return result


def _load_config_file(path: Path) -> dict[str, Any]:
    """Parse the YAML batch config file.

    Args:
        path: Path to the config file

    Returns:
        Parsed settings, empty if the file is empty

    Raises:
        ConfigError: If the file cannot be parsed or is not a mapping
    """
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path.name} root must be a dictionary")
    return data


def _env_retry_settings() -> dict[str, str]:
    settings: dict[str, str] = {}
    for env_name, key in (
        (ENV_MAX_ATTEMPTS, "max_attempts"),
        (ENV_BASE_DELAY, "base_delay"),
        (ENV_MAX_DELAY, "max_delay"),
    ):
        value = os.getenv(env_name)
        if value:
            settings[key] = value
    return settings


def load_batch_options(
    repo_root: Optional[Path] = None,
    args: Optional[object] = None,
    env_file: Optional[Path] = None,
) -> BatchOptions:
    """Load batch options from multiple sources.

    Priority order:
    1. Attributes on ``args`` (log_errors, stop_on_error, settle_delay, retry_attempts)
    2. Environment variables (N8N_BATCH_*, N8N_ACCESSOR_*)
    3. .n8n-batch.yaml in repo root

    Accessor retry stays disabled unless one of the sources configures it.

    Args:
        repo_root: Directory holding .n8n-batch.yaml
        args: Namespace-like object with overrides
        env_file: Optional .env file loaded before reading the environment

    Returns:
        BatchOptions

    Raises:
        ConfigError: If a value is malformed
    """
    if env_file:
        load_dotenv_file(env_file)

    file_data: dict[str, Any] = {}
    if repo_root is not None:
        config_path = repo_root / CONFIG_FILE_NAME
        if config_path.exists():
            file_data = _load_config_file(config_path)
            logger.debug("Loaded batch options from %s", config_path)

    options = BatchOptions()

    # Priority 3: config file
    if "log_errors" in file_data:
        options.log_errors = _parse_bool("log_errors", file_data["log_errors"])
    if "stop_on_error" in file_data:
        options.stop_on_error = _parse_bool("stop_on_error", file_data["stop_on_error"])
    if "settle_delay" in file_data:
        options.settle_delay = _parse_float("settle_delay", file_data["settle_delay"])

    retry_settings: dict[str, Any] = {}
    file_retry = file_data.get("accessor_retry")
    if file_retry is not None:
        if not isinstance(file_retry, dict):
            raise ConfigError("'accessor_retry' must be a dictionary")
        retry_settings.update(file_retry)

    # Priority 2: environment variables
    if os.getenv(ENV_LOG_ERRORS):
        options.log_errors = _parse_bool(ENV_LOG_ERRORS, os.getenv(ENV_LOG_ERRORS))
    if os.getenv(ENV_STOP_ON_ERROR):
        options.stop_on_error = _parse_bool(ENV_STOP_ON_ERROR, os.getenv(ENV_STOP_ON_ERROR))
    if os.getenv(ENV_SETTLE_DELAY):
        options.settle_delay = _parse_float(ENV_SETTLE_DELAY, os.getenv(ENV_SETTLE_DELAY))
    retry_settings.update(_env_retry_settings())

    # Priority 1: explicit arguments
    if args is not None:
        if getattr(args, "log_errors", None) is not None:
            options.log_errors = _parse_bool("log_errors", args.log_errors)
        if getattr(args, "stop_on_error", None) is not None:
            options.stop_on_error = _parse_bool("stop_on_error", args.stop_on_error)
        if getattr(args, "settle_delay", None) is not None:
            options.settle_delay = _parse_float("settle_delay", args.settle_delay)
        if getattr(args, "retry_attempts", None) is not None:
            retry_settings["max_attempts"] = args.retry_attempts

    if retry_settings:
        options.accessor_retry = RetryPolicy.from_dict(retry_settings)
        logger.info("Accessor retry enabled: %d attempt(s)", options.accessor_retry.max_attempts)

    return options


def load_dotenv_file(env_file: Path) -> None:
    """Load environment variables from a .env file.

    Existing variables are not overridden.

    Args:
        env_file: Path to .env file

    Raises:
        ConfigError: If the file does not exist
    """
    if not env_file.exists():
        raise ConfigError(f"Env file not found: {env_file}")
    load_dotenv(env_file)
    logger.debug("Loaded environment from %s", env_file)
