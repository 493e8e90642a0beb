"""Instance identity, port allocation and path derivation."""

from devsandbox.core.context import SandboxContext, create_context
from devsandbox.core.identity import (
    generate_instance_id,
    project_fingerprint,
    require_instance_id,
    validate_instance_id,
)
from devsandbox.core.paths import (
    SandboxLayout,
    ServicePaths,
    derive_sandbox_dir,
    derive_service_paths,
)
from devsandbox.core.ports import PortAllocator, project_port_seed

__all__ = [
    "PortAllocator",
    "SandboxContext",
    "SandboxLayout",
    "ServicePaths",
    "create_context",
    "derive_sandbox_dir",
    "derive_service_paths",
    "generate_instance_id",
    "project_fingerprint",
    "project_port_seed",
    "require_instance_id",
    "validate_instance_id",
]
