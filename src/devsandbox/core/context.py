"""Per-session sandbox context.

A SandboxContext is built once per activation and passed to every lifecycle
call. The process environment is only an export format: to_environment()
writes it for the shell, from_environment() reads it back (validating
everything that crosses that boundary).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from os import PathLike

from pydantic import BaseModel

from devsandbox.config import SandboxConfig
from devsandbox.core.identity import (
    canonical_project_root,
    generate_instance_id,
    require_instance_id,
)
from devsandbox.core.paths import SandboxLayout, ServicePaths
from devsandbox.core.ports import PortAllocator
from devsandbox.errors import NotInSandboxError, PortOutOfRangeError
from devsandbox.logging_schema import LogEvent

logger = logging.getLogger(__name__)

ENV_INSTANCE_ID = "INSTANCE_ID"
ENV_STATE_DIR = "STATE_DIR"
ENV_ALLOCATED_PORT = "ALLOCATED_PORT"
ENV_PROJECT_ROOT = "SANDBOX_PROJECT_ROOT"


class SandboxContext(BaseModel):
    """Identity, port and paths of one sandbox instance."""

    project_root: str
    instance_id: str
    sandbox_dir: str
    port: int
    service: str
    paths: ServicePaths
    user: str
    password: str
    database: str

    model_config = {"frozen": True}

    def to_environment(self) -> dict[str, str]:
        """Environment variables for consumers of this instance."""
        return {
            ENV_INSTANCE_ID: self.instance_id,
            ENV_STATE_DIR: self.sandbox_dir,
            ENV_ALLOCATED_PORT: str(self.port),
            ENV_PROJECT_ROOT: self.project_root,
            "PGPORT": str(self.port),
            "PGHOST": self.paths.socket,
            "PGUSER": self.user,
            "PGPASSWORD": self.password,
            "PGDATA": self.paths.data,
            "PGDATABASE": self.database,
        }

    @classmethod
    def from_environment(
        cls,
        env: Mapping[str, str],
        config: SandboxConfig,
        layout: SandboxLayout | None = None,
        allocator: PortAllocator | None = None,
    ) -> SandboxContext:
        """Rebuild the context of an activated sandbox from its exported variables.

        Raises:
            NotInSandboxError: If INSTANCE_ID or STATE_DIR is missing
            InvalidInstanceIdError: If INSTANCE_ID is malformed
            PortOutOfRangeError: If ALLOCATED_PORT is not a port in range
        """
        raw_id = env.get(ENV_INSTANCE_ID)
        state_dir = env.get(ENV_STATE_DIR)
        if not raw_id or not state_dir:
            raise NotInSandboxError(
                f"Not in a sandbox environment ({ENV_INSTANCE_ID} and "
                f"{ENV_STATE_DIR} must be set; run 'devsandbox activate')"
            )
        instance_id = require_instance_id(raw_id)

        layout = layout or SandboxLayout(config.layout)
        allocator = allocator or PortAllocator(config.ports)
        project_root = env.get(ENV_PROJECT_ROOT) or ""

        raw_port = env.get(ENV_ALLOCATED_PORT)
        if raw_port:
            try:
                port = int(raw_port)
            except ValueError as e:
                raise PortOutOfRangeError(
                    f"{ENV_ALLOCATED_PORT}={raw_port!r} is not a port number"
                ) from e
            allocator.check(port)
        elif project_root:
            port = allocator.port_for_instance(project_root, instance_id)
        else:
            raise NotInSandboxError(
                f"Not in a sandbox environment ({ENV_ALLOCATED_PORT} is not set)"
            )

        paths = layout.service_paths(state_dir, config.service)
        socket_dir = env.get("PGHOST")
        if socket_dir and socket_dir.startswith("/"):
            paths = paths.with_socket(socket_dir)
        else:
            paths = layout.resolve_socket_dir(paths, instance_id, port)

        return cls(
            project_root=project_root,
            instance_id=instance_id,
            sandbox_dir=state_dir.rstrip("/"),
            port=port,
            service=config.service,
            paths=paths,
            user=env.get("PGUSER") or config.postgres.user,
            password=env.get("PGPASSWORD") or config.postgres.password,
            database=env.get("PGDATABASE") or config.postgres.database,
        )


def create_context(
    project_root: str | PathLike[str],
    config: SandboxConfig,
    instance_id: str | None = None,
    layout: SandboxLayout | None = None,
    allocator: PortAllocator | None = None,
) -> SandboxContext:
    """Allocate a new instance, or attach to `instance_id` when given.

    Pure derivation: no directories are created here.
    """
    layout = layout or SandboxLayout(config.layout)
    allocator = allocator or PortAllocator(config.ports)
    root = canonical_project_root(project_root)

    if instance_id is None:
        instance_id = generate_instance_id(root)
        event = LogEvent.INSTANCE_CREATED
    else:
        instance_id = require_instance_id(instance_id)
        event = LogEvent.INSTANCE_ATTACHED

    sandbox_dir = layout.sandbox_dir(root, instance_id)
    port = allocator.port_for_instance(root, instance_id)
    paths = layout.resolve_socket_dir(
        layout.service_paths(sandbox_dir, config.service), instance_id, port
    )

    logger.debug(
        "Sandbox context for %s",
        instance_id,
        extra={"event": event, "instance_id": instance_id, "port": port},
    )
    return SandboxContext(
        project_root=root,
        instance_id=instance_id,
        sandbox_dir=sandbox_dir,
        port=port,
        service=config.service,
        paths=paths,
        user=config.postgres.user,
        password=config.postgres.password,
        database=config.postgres.database,
    )
