"""Log event types for structured logging."""

from enum import StrEnum


class LogEvent(StrEnum):
    """Log event types for dev-sandbox.

    Used with logger.info/warning/error extra dict:
        logger.info("message", extra={"event": LogEvent.SERVICE_STARTED, ...})
    """

    # Instance events
    INSTANCE_CREATED = "instance_created"
    INSTANCE_ATTACHED = "instance_attached"
    SOCKET_PATH_SHORTENED = "socket_path_shortened"

    # Service events
    SERVICE_INITIALIZED = "service_initialized"
    SERVICE_CONFIGURED = "service_configured"
    SERVICE_STARTED = "service_started"
    SERVICE_STOPPED = "service_stopped"
    SERVICE_READY = "service_ready"
    SERVICE_NOT_READY = "service_not_ready"
    COMMAND_FAILED = "command_failed"

    # Fleet events
    CLEANUP_STARTED = "cleanup_started"
    CLEANUP_COMPLETED = "cleanup_completed"
    INSTANCE_REMOVED = "instance_removed"
    INSTANCE_SKIPPED = "instance_skipped"
    STOP_FAILED = "stop_failed"
