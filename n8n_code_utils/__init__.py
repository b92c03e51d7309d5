"""Batch processing helpers for n8n Code nodes."""

from n8n_code_utils.accessors import N8nHelpers, node_accessor, node_accessors
from n8n_code_utils.batch import (
    AccessorBinding,
    BatchOptions,
    bind_accessors,
    process_batch,
    process_batch_sync,
    process_items_parallel,
    with_node_data,
)
from n8n_code_utils.exceptions import AccessorError, ConfigError, N8nCodeUtilsError, ValidationError
from n8n_code_utils.normalize import to_camel_case
from n8n_code_utils.results import BatchResult, Failure, FailureRecord, RunStatistics, Success, WorkItem
from n8n_code_utils.retry import RetryPolicy, require_fields, retrying_accessor

__version__ = "0.1.0"

__all__ = [
    "AccessorBinding",
    "AccessorError",
    "BatchOptions",
    "BatchResult",
    "ConfigError",
    "Failure",
    "FailureRecord",
    "N8nCodeUtilsError",
    "N8nHelpers",
    "RetryPolicy",
    "RunStatistics",
    "Success",
    "ValidationError",
    "WorkItem",
    "bind_accessors",
    "node_accessor",
    "node_accessors",
    "process_batch",
    "process_batch_sync",
    "process_items_parallel",
    "require_fields",
    "retrying_accessor",
    "to_camel_case",
    "with_node_data",
]
