"""Service lifecycle and fleet management."""

from devsandbox.services.fleet import CleanupReport, FleetManager, InstanceSummary
from devsandbox.services.postgres import PostgresController, ServiceState, ServiceStatus
from devsandbox.services.result import OperationResult, OperationStatus

__all__ = [
    "CleanupReport",
    "FleetManager",
    "InstanceSummary",
    "OperationResult",
    "OperationStatus",
    "PostgresController",
    "ServiceState",
    "ServiceStatus",
]
