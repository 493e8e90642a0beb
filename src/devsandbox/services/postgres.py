"""PostgreSQL lifecycle controller.

States per instance:

    UNINITIALIZED -> INITIALIZED -> RUNNING <-> STOPPED

Nothing about the state is remembered between calls. Every call re-probes
`pg_ctl status` and the data directory:
- no PG_VERSION marker: UNINITIALIZED
- pg_ctl reports a server: RUNNING
- postmaster.opts present (written on every server start): STOPPED
- otherwise: INITIALIZED
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import tempfile
import time
from collections.abc import Callable
from enum import StrEnum

from pydantic import BaseModel

from devsandbox.config import PostgresConfig
from devsandbox.core.paths import ServicePaths
from devsandbox.core.ports import is_port_free
from devsandbox.errors import (
    PortInUseError,
    ReadinessTimeoutError,
    ServiceCommandError,
    ServiceNotInitializedError,
)
from devsandbox.infra import CommandRunner
from devsandbox.logging_schema import LogEvent
from devsandbox.services.result import OperationResult, OperationStatus

logger = logging.getLogger(__name__)

VERSION_MARKER = "PG_VERSION"
STARTED_MARKER = "postmaster.opts"
STARTUP_LOG = "startup.log"
SERVER_LOG = "postgresql.log"

# pg_ctl status exit codes
PG_CTL_RUNNING = 0
PG_CTL_NOT_RUNNING = 3
PG_CTL_NO_DATA_DIR = 4

_PID_RE = re.compile(r"PID:\s*(\d+)")
_ADDRESS_IN_USE_MARKER = "Address already in use"


class ServiceState(StrEnum):
    """Lifecycle state, derived on every probe."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    RUNNING = "running"
    STOPPED = "stopped"


class ServiceStatus(BaseModel):
    """Service status as reported by pg_ctl."""

    running: bool
    state: ServiceState
    pid: int | None = None
    details: str = ""


def _quote_conf(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def render_config(paths: ServicePaths, port: int, listen_addresses: str) -> str:
    """postgresql.conf for one instance."""
    return "\n".join(
        [
            "# Generated by devsandbox; rewritten on every start",
            f"port = {port}",
            f"listen_addresses = {_quote_conf(listen_addresses)}",
            "max_connections = 100",
            "shared_buffers = 128MB",
            "",
            f"unix_socket_directories = {_quote_conf(paths.socket)}",
            "",
            "logging_collector = on",
            f"log_directory = {_quote_conf(paths.log)}",
            f"log_filename = {_quote_conf(SERVER_LOG)}",
            "log_rotation_age = 1d",
            "log_rotation_size = 100MB",
            "log_statement = 'all'",
            "log_duration = on",
            "",
            "effective_cache_size = 256MB",
            "maintenance_work_mem = 64MB",
            "checkpoint_completion_target = 0.9",
            "wal_buffers = 16MB",
            "default_statistics_target = 100",
            "random_page_cost = 1.1",
            "",
        ]
    )


def render_hba() -> str:
    """pg_hba.conf: password auth for socket and loopback connections."""
    return "\n".join(
        [
            "# TYPE  DATABASE        USER            ADDRESS                 METHOD",
            "local   all             all                                     md5",
            "host    all             all             127.0.0.1/32            md5",
            "host    all             all             ::1/128                 md5",
            "",
        ]
    )


class PostgresController:
    """Init/start/stop/status for the PostgreSQL server of one instance."""

    def __init__(
        self,
        config: PostgresConfig | None = None,
        runner: CommandRunner | None = None,
        sleep: Callable[[float], None] = time.sleep,
        port_probe: Callable[[int], bool] = is_port_free,
    ) -> None:
        self._config = config or PostgresConfig()
        self._runner = runner or CommandRunner(timeout=self._config.command_timeout)
        self._sleep = sleep
        self._port_probe = port_probe

    def _bin(self, name: str) -> str:
        if self._config.bin_dir:
            return os.path.join(self._config.bin_dir, name)
        return name

    @staticmethod
    def is_initialized(data_dir: str) -> bool:
        return os.path.isfile(os.path.join(data_dir, VERSION_MARKER))

    # =========================================================================
    # Init
    # =========================================================================

    def init(self, paths: ServicePaths, password: str | None = None) -> OperationResult:
        """Initialize the data directory (idempotent).

        Checks the PG_VERSION marker first:
        - If present: returns ALREADY_INITIALIZED without touching anything
        - Otherwise: creates data/socket/log dirs, runs initdb, returns COMPLETED

        Raises:
            ServiceCommandError: If initdb fails. Never retried.
        """
        if self.is_initialized(paths.data):
            logger.info(
                "Data directory already initialized",
                extra={
                    "event": LogEvent.SERVICE_INITIALIZED,
                    "data_dir": paths.data,
                    "status": "already_initialized",
                },
            )
            return OperationResult(
                status=OperationStatus.ALREADY_INITIALIZED,
                message=f"{paths.data} already initialized",
            )

        os.makedirs(paths.data, mode=0o700, exist_ok=True)
        os.makedirs(paths.socket, exist_ok=True)
        os.makedirs(paths.log, exist_ok=True)

        password = password or self._config.password
        # NamedTemporaryFile is created with mode 0600
        pwfile = tempfile.NamedTemporaryFile("w", prefix="devsandbox-pw-", delete=False)
        try:
            with pwfile:
                pwfile.write(password + "\n")
            self._runner.run(
                [
                    self._bin("initdb"),
                    "-D",
                    paths.data,
                    "--auth=md5",
                    f"--username={self._config.user}",
                    f"--pwfile={pwfile.name}",
                ]
            ).check(context=f"initdb failed for {paths.data}")
        finally:
            os.unlink(pwfile.name)

        logger.info(
            "Initialized PostgreSQL data directory",
            extra={"event": LogEvent.SERVICE_INITIALIZED, "data_dir": paths.data},
        )
        return OperationResult(status=OperationStatus.COMPLETED)

    # =========================================================================
    # Configuration
    # =========================================================================

    def write_config(self, paths: ServicePaths, port: int) -> tuple[str, str]:
        """Write postgresql.conf and pg_hba.conf, returning their paths."""
        os.makedirs(paths.config, exist_ok=True)
        with open(paths.config_file, "w", encoding="utf-8") as f:
            f.write(render_config(paths, port, self._config.listen_addresses))
        with open(paths.hba_file, "w", encoding="utf-8") as f:
            f.write(render_hba())

        logger.debug(
            "Wrote service configuration",
            extra={
                "event": LogEvent.SERVICE_CONFIGURED,
                "config_file": paths.config_file,
                "port": port,
            },
        )
        return paths.config_file, paths.hba_file

    # =========================================================================
    # Status
    # =========================================================================

    def status(self, data_dir: str) -> ServiceStatus:
        """Ask pg_ctl whether a server is running on data_dir.

        Raises:
            ServiceCommandError: If pg_ctl cannot run or answers with an
                unexpected exit code
        """
        result = self._runner.run([self._bin("pg_ctl"), "status", "-D", data_dir])
        output = (result.stdout or result.stderr).strip()

        if result.returncode == PG_CTL_RUNNING:
            match = _PID_RE.search(result.stdout)
            return ServiceStatus(
                running=True,
                state=ServiceState.RUNNING,
                pid=int(match.group(1)) if match else None,
                details=output,
            )

        if result.returncode in (PG_CTL_NOT_RUNNING, PG_CTL_NO_DATA_DIR):
            if not self.is_initialized(data_dir):
                state = ServiceState.UNINITIALIZED
            elif os.path.exists(os.path.join(data_dir, STARTED_MARKER)):
                state = ServiceState.STOPPED
            else:
                state = ServiceState.INITIALIZED
            return ServiceStatus(running=False, state=state, details=output)

        raise ServiceCommandError(
            result.argv,
            result.returncode,
            result.stderr or result.stdout,
            context=f"pg_ctl status failed for {data_dir}",
        )

    # =========================================================================
    # Start / Stop
    # =========================================================================

    def start(self, paths: ServicePaths, port: int) -> OperationResult:
        """Start the server and wait until it accepts connections.

        Checks pg_ctl status first (idempotency):
        - If already running: returns ALREADY_RUNNING
        - Otherwise: refreshes config, launches, polls readiness, returns COMPLETED

        Raises:
            ServiceNotInitializedError: If init() has not run
            PortInUseError: If the port is already bound
            ServiceCommandError: If pg_ctl start fails
            ReadinessTimeoutError: If the server never becomes ready
        """
        current = self.status(paths.data)
        if current.running:
            logger.info(
                "PostgreSQL already running",
                extra={
                    "event": LogEvent.SERVICE_STARTED,
                    "data_dir": paths.data,
                    "pid": current.pid,
                    "status": "already_running",
                },
            )
            return OperationResult(
                status=OperationStatus.ALREADY_RUNNING,
                message="PostgreSQL is already running",
            )

        if current.state == ServiceState.UNINITIALIZED:
            raise ServiceNotInitializedError(
                f"Data directory {paths.data} is not initialized"
            )

        if not self._port_probe(port):
            raise PortInUseError(
                port,
                f"Port {port} is already in use; cannot start PostgreSQL for {paths.data}",
            )

        os.makedirs(paths.socket, exist_ok=True)
        os.makedirs(paths.log, exist_ok=True)
        config_file, hba_file = self.write_config(paths, port)
        startup_log = os.path.join(paths.log, STARTUP_LOG)
        # pg_ctl appends; only lines from this launch count
        log_offset = _file_size(startup_log)

        server_opts = (
            f"-c config_file={shlex.quote(config_file)} "
            f"-c hba_file={shlex.quote(hba_file)}"
        )
        logger.info("Starting PostgreSQL on port %d", port)
        result = self._runner.run(
            [
                self._bin("pg_ctl"),
                "start",
                "-D",
                paths.data,
                "-l",
                startup_log,
                "-W",
                "-o",
                server_opts,
            ]
        )
        if not result.ok:
            self._raise_if_address_in_use(startup_log, log_offset, port)
            result.check(context=f"pg_ctl start failed for {paths.data} (port {port})")

        try:
            attempts = self.wait_ready(paths.socket, port)
        except ReadinessTimeoutError:
            self._raise_if_address_in_use(startup_log, log_offset, port)
            raise

        logger.info(
            "PostgreSQL is ready",
            extra={
                "event": LogEvent.SERVICE_STARTED,
                "data_dir": paths.data,
                "port": port,
                "attempts": attempts,
            },
        )
        return OperationResult(status=OperationStatus.COMPLETED)

    def wait_ready(self, socket_dir: str, port: int) -> int:
        """Poll pg_isready until the server accepts connections.

        Returns:
            Number of attempts it took.

        Raises:
            ReadinessTimeoutError: After ready_attempts failed probes
        """
        attempts = self._config.ready_attempts
        argv = [self._bin("pg_isready"), "-h", socket_dir, "-p", str(port), "-t", "1"]

        for attempt in range(1, attempts + 1):
            if self._runner.run(argv).ok:
                logger.debug(
                    "Readiness probe succeeded",
                    extra={"event": LogEvent.SERVICE_READY, "attempt": attempt},
                )
                return attempt
            if attempt < attempts:
                self._sleep(self._config.ready_interval)

        logger.error(
            "PostgreSQL did not become ready",
            extra={
                "event": LogEvent.SERVICE_NOT_READY,
                "socket": socket_dir,
                "port": port,
                "attempts": attempts,
            },
        )
        raise ReadinessTimeoutError(
            f"PostgreSQL on port {port} (socket {socket_dir}) "
            f"not ready after {attempts} attempts"
        )

    def stop(self, data_dir: str) -> OperationResult:
        """Fast shutdown of the server on data_dir.

        Checks pg_ctl status first (idempotency):
        - If not running: returns ALREADY_STOPPED
        - Otherwise: runs `pg_ctl stop -m fast` and returns COMPLETED

        Raises:
            ServiceCommandError: If pg_ctl stop fails
        """
        current = self.status(data_dir)
        if not current.running:
            logger.info(
                "PostgreSQL already stopped",
                extra={
                    "event": LogEvent.SERVICE_STOPPED,
                    "data_dir": data_dir,
                    "status": "already_stopped",
                },
            )
            return OperationResult(
                status=OperationStatus.ALREADY_STOPPED,
                message="PostgreSQL is not running",
            )

        self.shutdown(data_dir)
        return OperationResult(status=OperationStatus.COMPLETED)

    def shutdown(self, data_dir: str) -> None:
        """Issue `pg_ctl stop -m fast` without probing status first.

        Raises:
            ServiceCommandError: If pg_ctl stop fails (including "not running")
        """
        self._runner.run(
            [self._bin("pg_ctl"), "stop", "-D", data_dir, "-m", "fast", "-w"]
        ).check(context=f"pg_ctl stop failed for {data_dir}")

        logger.info(
            "PostgreSQL stopped",
            extra={"event": LogEvent.SERVICE_STOPPED, "data_dir": data_dir},
        )

    def restart(self, paths: ServicePaths, port: int) -> OperationResult:
        self.stop(paths.data)
        return self.start(paths, port)

    def connect_command(
        self,
        socket_dir: str,
        port: int,
        user: str | None = None,
        database: str | None = None,
    ) -> list[str]:
        """argv for an interactive psql session."""
        return [
            self._bin("psql"),
            "-h",
            socket_dir,
            "-p",
            str(port),
            "-U",
            user or self._config.user,
            "-d",
            database or self._config.database,
        ]

    def _raise_if_address_in_use(self, startup_log: str, offset: int, port: int) -> None:
        if _ADDRESS_IN_USE_MARKER in _read_from(startup_log, offset):
            raise PortInUseError(
                port,
                f"Port {port} is already in use (see {startup_log})",
            )


def _file_size(path: str) -> int:
    try:
        return os.path.getsize(path)
    except FileNotFoundError:
        return 0


def _read_from(path: str, offset: int, size: int = 65536) -> str:
    """Up to `size` bytes of path starting at offset."""
    try:
        with open(path, "rb") as f:
            f.seek(offset)
            return f.read(size).decode("utf-8", errors="replace")
    except FileNotFoundError:
        return ""
