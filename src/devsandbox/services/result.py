"""Operation result types for service lifecycle calls."""

from enum import Enum

from pydantic import BaseModel


class OperationStatus(str, Enum):
    """Operation status values."""

    COMPLETED = "completed"

    # Already in the desired state
    ALREADY_INITIALIZED = "already_initialized"
    ALREADY_RUNNING = "already_running"
    ALREADY_STOPPED = "already_stopped"


class OperationResult(BaseModel):
    """Unified result for init/start/stop.

    Lets callers tell "did the work" from "nothing to do" without
    treating either as an error.
    """

    status: OperationStatus
    message: str = ""

    @property
    def changed(self) -> bool:
        """Check if the call actually changed anything."""
        return self.status == OperationStatus.COMPLETED
