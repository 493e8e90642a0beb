"""Fleet manager - every instance directory under one sandboxes root.

Cleanup runs alongside live instances of other shells, so a running server
is an expected condition, not a race:
- running instances are fast-stopped first (or skipped with keep_running);
- an instance whose stop fails is skipped, never deleted;
- status is re-probed right before deletion and the instance is skipped if
  a server is still up;
- per-instance failures never abort the loop.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Collection

from pydantic import BaseModel, Field

from devsandbox.core.identity import validate_instance_id
from devsandbox.core.paths import SandboxLayout
from devsandbox.errors import ServiceCommandError
from devsandbox.logging_schema import LogEvent
from devsandbox.services.postgres import PostgresController, ServiceState, ServiceStatus

logger = logging.getLogger(__name__)


class InstanceSummary(BaseModel):
    """One entry of `list`."""

    instance_id: str
    path: str
    valid: bool
    running: bool
    state: ServiceState | None = None
    error: str | None = None


class CleanupReport(BaseModel):
    """Outcome of one cleanup pass."""

    removed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    dry_run: bool = False

    @property
    def removed_count(self) -> int:
        return len(self.removed)


class FleetManager:
    """Lists and cleans up sandbox instances of a project."""

    def __init__(
        self,
        controller: PostgresController,
        layout: SandboxLayout,
        service: str = "postgres",
    ) -> None:
        self._controller = controller
        self._layout = layout
        self._service = service

    def _data_dir(self, instance_dir: str) -> str:
        return self._layout.service_paths(instance_dir, self._service).data

    @staticmethod
    def instance_dirs(sandboxes_root: str) -> list[str]:
        """Immediate subdirectories of the root, sorted. Missing root -> []."""
        try:
            entries = sorted(os.scandir(sandboxes_root), key=lambda e: e.name)
        except (FileNotFoundError, NotADirectoryError):
            return []
        return [e.path for e in entries if e.is_dir(follow_symlinks=False)]

    def list(self, sandboxes_root: str) -> list[InstanceSummary]:
        results = []
        for instance_dir in self.instance_dirs(sandboxes_root):
            instance_id = self._layout.instance_id_from_dir(instance_dir)
            summary = InstanceSummary(
                instance_id=instance_id,
                path=instance_dir,
                valid=validate_instance_id(instance_id),
                running=False,
            )
            try:
                status = self._controller.status(self._data_dir(instance_dir))
            except ServiceCommandError as e:
                summary.error = e.message
            else:
                summary.running = status.running
                summary.state = status.state
            results.append(summary)

        return results

    def cleanup(
        self,
        sandboxes_root: str,
        keep_running: bool = False,
        exclude: Collection[str] = (),
        dry_run: bool = False,
    ) -> CleanupReport:
        """Remove stale instances, stopping orphaned servers first.

        Args:
            sandboxes_root: Directory holding one subdirectory per instance
            keep_running: Skip running instances instead of stopping them
            exclude: Instance IDs never to touch (e.g. the caller's own)
            dry_run: Report what would be removed without stopping or deleting
        """
        report = CleanupReport(dry_run=dry_run)
        instance_dirs = self.instance_dirs(sandboxes_root)
        if not instance_dirs:
            logger.info("No sandboxes found under %s", sandboxes_root)
            return report

        logger.info(
            "Cleaning up %d sandbox(es)",
            len(instance_dirs),
            extra={"event": LogEvent.CLEANUP_STARTED, "root": sandboxes_root},
        )

        for instance_dir in instance_dirs:
            instance_id = self._layout.instance_id_from_dir(instance_dir)
            if instance_id in exclude:
                outcome = self._skip_outcome(instance_id, "excluded")
            else:
                outcome = self._cleanup_one(instance_dir, instance_id, keep_running, dry_run)
            getattr(report, outcome).append(instance_id)

        logger.info(
            "Removed %d sandbox(es), skipped %d, failed %d",
            len(report.removed),
            len(report.skipped),
            len(report.failed),
            extra={
                "event": LogEvent.CLEANUP_COMPLETED,
                "root": sandboxes_root,
                "dry_run": dry_run,
            },
        )
        return report

    def _cleanup_one(
        self,
        instance_dir: str,
        instance_id: str,
        keep_running: bool,
        dry_run: bool,
    ) -> str:
        """Returns the CleanupReport list the instance belongs in."""
        data_dir = self._data_dir(instance_dir)

        status: ServiceStatus | None
        try:
            status = self._controller.status(data_dir)
        except ServiceCommandError as e:
            logger.warning("[%s] Status probe failed: %s", instance_id, e.message)
            status = None

        if status is None and (keep_running or dry_run):
            return self._skip_outcome(instance_id, "status unknown")
        if status is None or status.running:
            if keep_running:
                return self._skip_outcome(instance_id, "still running")
            if dry_run:
                return "removed"
            try:
                self._controller.shutdown(data_dir)
            except ServiceCommandError as e:
                logger.warning(
                    "[%s] Failed to stop, keeping directory: %s",
                    instance_id,
                    e.message,
                    extra={"event": LogEvent.STOP_FAILED, "instance_id": instance_id},
                )
                return "failed"
        elif dry_run:
            return "removed"

        # Re-probe right before deleting
        try:
            status = self._controller.status(data_dir)
        except ServiceCommandError as e:
            logger.warning(
                "[%s] Status re-probe failed, keeping directory: %s", instance_id, e.message
            )
            return "failed"
        if status.running:
            logger.warning(
                "[%s] Still running after stop, keeping directory",
                instance_id,
                extra={"event": LogEvent.INSTANCE_SKIPPED, "instance_id": instance_id},
            )
            return "failed"

        try:
            self._remove(instance_dir, instance_id)
        except OSError as e:
            logger.warning("[%s] Failed to remove %s: %s", instance_id, instance_dir, e)
            return "failed"
        return "removed"

    def _remove(self, instance_dir: str, instance_id: str) -> None:
        shutil.rmtree(instance_dir)
        if validate_instance_id(instance_id):
            short_socket = self._layout.short_socket_dir(instance_id)
            if os.path.isdir(short_socket):
                shutil.rmtree(short_socket)

        logger.info(
            "Removed %s",
            instance_id,
            extra={"event": LogEvent.INSTANCE_REMOVED, "path": instance_dir},
        )

    @staticmethod
    def _skip_outcome(instance_id: str, reason: str) -> str:
        logger.info(
            "Skipping %s (%s)",
            instance_id,
            reason,
            extra={"event": LogEvent.INSTANCE_SKIPPED, "instance_id": instance_id},
        )
        return "skipped"
