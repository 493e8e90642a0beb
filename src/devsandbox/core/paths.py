"""Sandbox path derivation.

Everything here is string arithmetic; nothing touches the filesystem except
SandboxLayout.cache_root(), which reads the environment.

Layout of one instance:

    <sandboxes-root>/<instance-id>/
      <service>/data/
      <service>/socket/      (or <short_socket_root>/svc-<instance-id>)
      <service>/log/
      <service>/config/postgresql.conf
      <service>/config/pg_hba.conf
"""

from __future__ import annotations

import logging
import os
from os import PathLike

from pydantic import BaseModel

from devsandbox.config import LayoutConfig
from devsandbox.core.identity import (
    canonical_project_root,
    project_fingerprint,
    require_instance_id,
)
from devsandbox.logging_schema import LogEvent

logger = logging.getLogger(__name__)

DEFAULT_SANDBOXES_DIRNAME = ".sandboxes"
SHORT_SOCKET_PREFIX = "svc-"
CONFIG_FILENAME = "postgresql.conf"
HBA_FILENAME = "pg_hba.conf"


class ServicePaths(BaseModel):
    """Per-service directories of one instance."""

    data: str
    socket: str
    log: str
    config: str

    model_config = {"frozen": True}

    @property
    def config_file(self) -> str:
        return f"{self.config}/{CONFIG_FILENAME}"

    @property
    def hba_file(self) -> str:
        return f"{self.config}/{HBA_FILENAME}"

    def with_socket(self, socket_dir: str) -> "ServicePaths":
        return self.model_copy(update={"socket": socket_dir})


def derive_sandbox_dir(
    project_root: str | PathLike[str],
    instance_id: str,
    dirname: str = DEFAULT_SANDBOXES_DIRNAME,
) -> str:
    """<project-root>/.sandboxes/<instance-id>"""
    return f"{os.fspath(project_root).rstrip('/')}/{dirname}/{instance_id}"


def derive_service_paths(sandbox_dir: str, service: str) -> ServicePaths:
    base = f"{sandbox_dir.rstrip('/')}/{service}"
    return ServicePaths(
        data=f"{base}/data",
        socket=f"{base}/socket",
        log=f"{base}/log",
        config=f"{base}/config",
    )


def socket_file_path(socket_dir: str, port: int) -> str:
    """Path of the PostgreSQL Unix socket inside socket_dir."""
    return f"{socket_dir}/.s.PGSQL.{port}"


class SandboxLayout:
    """Centralized naming conventions for sandbox directories."""

    def __init__(self, config: LayoutConfig | None = None) -> None:
        config = config or LayoutConfig()
        self._mode = config.mode
        self._dirname = config.dirname
        self._namespace = config.namespace
        self._cache_root = config.cache_root
        self._socket_path_max = config.socket_path_max
        self._short_socket_root = config.short_socket_root

    @property
    def mode(self) -> str:
        return self._mode

    def cache_root(self) -> str:
        if self._cache_root:
            return self._cache_root.rstrip("/")
        xdg = os.environ.get("XDG_CACHE_HOME")
        if xdg:
            return xdg.rstrip("/")
        return os.path.join(os.path.expanduser("~"), ".cache")

    def sandboxes_root(self, project_root: str | PathLike[str]) -> str:
        root = canonical_project_root(project_root)
        if self._mode == "cache":
            return f"{self.cache_root()}/{self._namespace}/{project_fingerprint(root)}"
        return f"{root}/{self._dirname}"

    def sandbox_dir(self, project_root: str | PathLike[str], instance_id: str) -> str:
        require_instance_id(instance_id)
        return f"{self.sandboxes_root(project_root)}/{instance_id}"

    def service_paths(self, sandbox_dir: str, service: str) -> ServicePaths:
        return derive_service_paths(sandbox_dir, service)

    def short_socket_dir(self, instance_id: str) -> str:
        root = "" if self._short_socket_root == "/" else self._short_socket_root
        return f"{root}/{SHORT_SOCKET_PREFIX}{instance_id}"

    def socket_path_fits(self, socket_dir: str, port: int) -> bool:
        # PostgreSQL also creates "<socket>.lock" next to the socket
        return len(socket_file_path(socket_dir, port) + ".lock") <= self._socket_path_max

    def resolve_socket_dir(self, paths: ServicePaths, instance_id: str, port: int) -> ServicePaths:
        """Swap in a short socket directory when the default one is too long."""
        if self.socket_path_fits(paths.socket, port):
            return paths

        short = self.short_socket_dir(instance_id)
        logger.info(
            "Socket path too long, using %s",
            short,
            extra={
                "event": LogEvent.SOCKET_PATH_SHORTENED,
                "instance_id": instance_id,
                "socket": paths.socket,
                "limit": self._socket_path_max,
            },
        )
        return paths.with_socket(short)

    def instance_id_from_dir(self, sandbox_dir: str) -> str:
        return os.path.basename(sandbox_dir.rstrip("/"))
