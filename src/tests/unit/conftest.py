"""Fixtures for unit tests.

FakePostgres stands in for initdb / pg_ctl / pg_isready so lifecycle and
fleet logic can be tested without PostgreSQL installed. It keeps the same
on-disk markers the real tools leave behind (PG_VERSION, postmaster.opts).
"""

import os
from collections.abc import Sequence

import pytest

from devsandbox.config import PostgresConfig, SandboxConfig
from devsandbox.core.paths import SandboxLayout, ServicePaths, derive_service_paths
from devsandbox.infra import CommandResult, CommandRunner
from devsandbox.services.postgres import PostgresController

INSTANCE_ID = "0123abcd1234567889ab"


class FakePostgres(CommandRunner):
    """In-memory PostgreSQL toolchain."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[list[str]] = []
        self.running: dict[str, int] = {}
        self.start_count: dict[str, int] = {}
        self.init_fails = False
        self.start_rc = 0
        self.status_rc: int | None = None
        self.stop_fails: set[str] = set()
        self.ignore_stop: set[str] = set()
        # Appended to the -l startup log by each pg_ctl start
        self.startup_output = ""
        # Failed pg_isready probes before success; None = never ready
        self.ready_after: int | None = 0
        self._probes = 0
        self._next_pid = 4242

    def commands(self, tool: str) -> list[list[str]]:
        return [c for c in self.calls if os.path.basename(c[0]) == tool]

    def run(self, argv: Sequence[str], timeout=None, env=None) -> CommandResult:
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        tool = os.path.basename(argv[0])
        handler = getattr(self, f"_{tool}")
        rc, stdout, stderr = handler(argv[1:])
        return CommandResult(argv=argv, returncode=rc, stdout=stdout, stderr=stderr)

    def call(self, argv, env=None) -> int:
        self.calls.append(list(argv))
        return 0

    @staticmethod
    def _data_dir(args: list[str]) -> str:
        return args[args.index("-D") + 1]

    def _initdb(self, args: list[str]) -> tuple[int, str, str]:
        if self.init_fails:
            return 1, "", "initdb: error: directory exists but is not empty"
        data_dir = self._data_dir(args)
        os.makedirs(data_dir, exist_ok=True)
        with open(os.path.join(data_dir, "PG_VERSION"), "w") as f:
            f.write("16\n")
        return 0, "Success.\n", ""

    def _pg_ctl(self, args: list[str]) -> tuple[int, str, str]:
        action = args[0]
        data_dir = self._data_dir(args)

        if action == "status":
            if self.status_rc is not None:
                return self.status_rc, "", "pg_ctl: could not open PID file: Permission denied"
            if data_dir in self.running:
                pid = self.running[data_dir]
                return 0, f"pg_ctl: server is running (PID: {pid})\n", ""
            if not os.path.isdir(data_dir):
                return 4, "", f'pg_ctl: directory "{data_dir}" does not exist\n'
            return 3, "pg_ctl: no server running\n", ""

        if action == "start":
            if self.startup_output:
                with open(args[args.index("-l") + 1], "a") as f:
                    f.write(self.startup_output)
            if self.start_rc != 0:
                return self.start_rc, "", "pg_ctl: could not start server\n"
            self.running[data_dir] = self._next_pid
            self._next_pid += 1
            self.start_count[data_dir] = self.start_count.get(data_dir, 0) + 1
            with open(os.path.join(data_dir, "postmaster.opts"), "w") as f:
                f.write("postgres\n")
            return 0, "server starting\n", ""

        if action == "stop":
            if data_dir in self.stop_fails:
                return 1, "", "pg_ctl: server does not shut down\n"
            if data_dir not in self.running:
                return 1, "", f'pg_ctl: PID file "{data_dir}/postmaster.pid" does not exist\n'
            if data_dir not in self.ignore_stop:
                del self.running[data_dir]
            return 0, "server stopped\n", ""

        raise AssertionError(f"unexpected pg_ctl action {action}")

    def _pg_isready(self, args: list[str]) -> tuple[int, str, str]:
        self._probes += 1
        if self.ready_after is None or self._probes <= self.ready_after:
            return 2, "no response\n", ""
        return 0, "accepting connections\n", ""


@pytest.fixture
def fake_pg() -> FakePostgres:
    return FakePostgres()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def pg_config() -> PostgresConfig:
    return PostgresConfig(ready_attempts=5, ready_interval=0.5)


@pytest.fixture
def controller(
    fake_pg: FakePostgres,
    pg_config: PostgresConfig,
    sleeps: list[float],
) -> PostgresController:
    """PostgresController backed by FakePostgres with a free port."""
    return PostgresController(
        pg_config,
        runner=fake_pg,
        sleep=sleeps.append,
        port_probe=lambda port: True,
    )


@pytest.fixture
def sandbox_config() -> SandboxConfig:
    return SandboxConfig()


@pytest.fixture
def layout(sandbox_config: SandboxConfig) -> SandboxLayout:
    return SandboxLayout(sandbox_config.layout)


@pytest.fixture
def paths(tmp_path) -> ServicePaths:
    return derive_service_paths(str(tmp_path / ".sandboxes" / INSTANCE_ID), "postgres")


@pytest.fixture
def instance_id() -> str:
    return INSTANCE_ID
