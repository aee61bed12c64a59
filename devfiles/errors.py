from __future__ import annotations

from typing import Optional

__all__ = [
    "GatewayError",
    "NotFound",
    "PermissionDenied",
    "Conflict",
    "MalformedInput",
    "SubprocessFailure",
    "CommandTimeout",
    "UploadTransportFailure",
]


class GatewayError(Exception):
    """Base for every failure a gateway operation reports to its caller."""

    status = 500

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class NotFound(GatewayError):
    status = 404


class PermissionDenied(GatewayError):
    status = 403


class Conflict(GatewayError):
    status = 409


class MalformedInput(GatewayError):
    status = 400


class SubprocessFailure(GatewayError):
    """An elevated command exited nonzero; ``output`` holds what it printed."""

    status = 500

    def __init__(self, message: str, output: str = "", *, status: Optional[int] = None) -> None:
        super().__init__(message, status=status)
        self.output = output


class CommandTimeout(GatewayError):
    """Raised when a helper process outlives the configured timeout."""

    status = 504


class UploadTransportFailure(GatewayError):
    status = 400
