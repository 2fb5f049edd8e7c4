"""Strata exception types.

NotFound and NoMatch are not exceptions: a missing item resolves to None and
an unmatched query yields an empty list.
"""

from datetime import datetime


class ConfigurationError(Exception):
    """Raised when configuration is invalid (bad strategy, conflicting layers)."""
    pass


class LayerFailure(Exception):
    """
    A layer raised or returned malformed data while being read.

    Never propagated out of resolution; recorded per layer and logged.
    """

    def __init__(self, layer_name: str, operation: str, cause: BaseException):
        self.layer_name = layer_name
        self.operation = operation
        self.cause = cause
        self.timestamp = datetime.now().isoformat()
        super().__init__(f"Layer '{layer_name}' failed during {operation}: {cause}")

    def to_dict(self) -> dict:
        return {
            "layer": self.layer_name,
            "operation": self.operation,
            "error": str(self.cause),
            "error_type": type(self.cause).__name__,
            "timestamp": self.timestamp,
        }
