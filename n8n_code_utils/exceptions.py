"""Common exceptions for n8n-code-utils."""


class N8nCodeUtilsError(Exception):
    """Base exception for n8n-code-utils."""
    pass


class ConfigError(N8nCodeUtilsError):
    """Configuration error."""
    pass


class ValidationError(N8nCodeUtilsError):
    """Malformed arguments passed to a batch helper."""

    kind = "validation_error"


class AccessorError(N8nCodeUtilsError):
    """Node accessor returned no usable data."""

    kind = "accessor_error"

    def __init__(self, node_name: str, item_index: int, message: str) -> None:
        self.node_name = node_name
        self.item_index = item_index
        super().__init__(f"Node '{node_name}' (item {item_index}): {message}")
