"""Exception types and error message normalization."""

import json
from typing import Any


class DeployerError(Exception):
    """Base class for deployer errors."""


class BackendError(DeployerError):
    """A remote device operation reported failure.

    ``str(error)`` is the backend's message verbatim.
    """

    def __init__(self, operation: str, message: str):
        super().__init__(message)
        self.operation = operation
        self.message = message


class RoleNotSetError(DeployerError):
    """Deployment was attempted on a device without an assigned role."""

    def __init__(self, message: str = "Device role not set"):
        super().__init__(message)


class ConfigError(DeployerError):
    """Configuration file could not be loaded."""


class OperationInProgressError(DeployerError):
    """A firmware or therapy run is already active."""


def error_message(error: Any) -> str:
    """Normalize an exception, plain string or other payload into a message.

    Args:
        error: Raised exception, backend string, or arbitrary JSON-able value

    Returns:
        Message string (never empty)
    """
    if isinstance(error, str):
        return error or "Unknown error"
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    try:
        return json.dumps(error)
    except (TypeError, ValueError):
        return repr(error)
