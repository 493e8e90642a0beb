"""Error handling module for dev-sandbox.

This module defines error codes, exception classes, and the response model
used when errors are reported in machine-readable form.

Error Response Format:
{
    "error": {
        "code": "NOT_IN_SANDBOX",
        "message": "Not in a sandbox environment"
    }
}

Usage:
    from devsandbox.errors import InvalidInstanceIdError, ServiceCommandError

    # Raise with default message
    raise NotInSandboxError()

    # Raise with custom message
    raise InvalidInstanceIdError("Instance ID 'abc' must be 20 lowercase hex characters")
"""

from collections.abc import Sequence
from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes."""

    # Validation
    INVALID_INSTANCE_ID = "INVALID_INSTANCE_ID"
    PORT_OUT_OF_RANGE = "PORT_OUT_OF_RANGE"

    # Environment preconditions
    NOT_IN_SANDBOX = "NOT_IN_SANDBOX"
    SERVICE_NOT_INITIALIZED = "SERVICE_NOT_INITIALIZED"

    # External process
    SERVICE_COMMAND_FAILED = "SERVICE_COMMAND_FAILED"
    PORT_IN_USE = "PORT_IN_USE"

    # Readiness
    READINESS_TIMEOUT = "READINESS_TIMEOUT"


class ErrorDetail(BaseModel):
    """Error detail containing code and message."""

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Error response format."""

    error: ErrorDetail


class SandboxError(Exception):
    """Base exception for dev-sandbox.

    All dev-sandbox specific exceptions should inherit from this class.
    This enables centralized exception handling in the CLI.

    Attributes:
        code: The error code from ErrorCode enum
        message: Human-readable error message
        exit_code: Process exit code to return
    """

    def __init__(self, code: ErrorCode, message: str, exit_code: int = 1) -> None:
        self.code = code
        self.message = message
        self.exit_code = exit_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to ErrorResponse model."""
        return ErrorResponse(
            error=ErrorDetail(code=self.code.value, message=self.message)
        )


class InvalidInstanceIdError(SandboxError):
    """Malformed instance ID (wrong length or non-hex characters)."""

    def __init__(self, message: str = "Invalid instance ID") -> None:
        super().__init__(ErrorCode.INVALID_INSTANCE_ID, message, 2)


class PortOutOfRangeError(SandboxError):
    """Derived port fell outside the configured range."""

    def __init__(self, message: str = "Port out of range") -> None:
        super().__init__(ErrorCode.PORT_OUT_OF_RANGE, message, 2)


class NotInSandboxError(SandboxError):
    """Lifecycle command invoked outside an activated sandbox."""

    def __init__(self, message: str = "Not in a sandbox environment") -> None:
        super().__init__(ErrorCode.NOT_IN_SANDBOX, message, 1)


class ServiceNotInitializedError(SandboxError):
    """Service data directory has not been initialized."""

    def __init__(self, message: str = "Service data directory is not initialized") -> None:
        super().__init__(ErrorCode.SERVICE_NOT_INITIALIZED, message, 1)


class ServiceCommandError(SandboxError):
    """External service tool exited non-zero (or could not be run).

    Attributes:
        argv: Command that failed
        returncode: Exit code of the command (None when it never ran)
        stderr: Captured standard error, verbatim
    """

    def __init__(
        self,
        argv: Sequence[str],
        returncode: int | None,
        stderr: str = "",
        message: str | None = None,
        context: str | None = None,
    ) -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        if message is None:
            message = f"Command '{self.argv[0]}' failed with exit code {returncode}"
            if stderr.strip():
                message = f"{message}: {stderr.strip()}"
        if context:
            message = f"{context}: {message}"
        super().__init__(ErrorCode.SERVICE_COMMAND_FAILED, message, 1)


class PortInUseError(SandboxError):
    """Allocated port is already bound by another process."""

    def __init__(self, port: int, message: str | None = None) -> None:
        self.port = port
        super().__init__(
            ErrorCode.PORT_IN_USE,
            message or f"Port {port} is already in use",
            1,
        )


class ReadinessTimeoutError(SandboxError):
    """Service launched but never became ready within the probe window."""

    def __init__(self, message: str = "Service did not become ready in time") -> None:
        super().__init__(ErrorCode.READINESS_TIMEOUT, message, 1)
