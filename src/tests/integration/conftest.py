"""Integration test fixtures.

These tests drive real initdb / pg_ctl / pg_isready binaries. They are
skipped unless the binaries are on PATH (or SANDBOX_POSTGRES__BIN_DIR
points at them). PostgreSQL refuses to run as root, so they are skipped
for root as well.
"""

import os
import shutil
import tempfile
from collections.abc import Generator

import pytest

from devsandbox.config import PostgresConfig, SandboxConfig
from devsandbox.core.paths import SandboxLayout
from devsandbox.services import FleetManager, PostgresController

PG_TOOLS = ("initdb", "pg_ctl", "pg_isready", "psql")


def _bin_dir() -> str | None:
    return os.environ.get("SANDBOX_POSTGRES__BIN_DIR")


def _have_postgres() -> bool:
    bin_dir = _bin_dir()
    for tool in PG_TOOLS:
        path = os.path.join(bin_dir, tool) if bin_dir else tool
        if shutil.which(path) is None:
            return False
    return True


@pytest.fixture(scope="session")
def bin_dir() -> str | None:
    """PostgreSQL binary directory, captured before the env is scrubbed."""
    if not _have_postgres():
        pytest.skip(f"PostgreSQL binaries not found: {', '.join(PG_TOOLS)}")
    if hasattr(os, "geteuid") and os.geteuid() == 0:
        pytest.skip("PostgreSQL cannot run as root")
    return _bin_dir()


@pytest.fixture
def sandbox_config(bin_dir: str | None) -> SandboxConfig:
    return SandboxConfig(postgres=PostgresConfig(bin_dir=bin_dir, ready_interval=0.5))


@pytest.fixture
def controller(sandbox_config: SandboxConfig) -> PostgresController:
    return PostgresController(sandbox_config.postgres)


@pytest.fixture
def layout(sandbox_config: SandboxConfig) -> SandboxLayout:
    return SandboxLayout(sandbox_config.layout)


@pytest.fixture
def fleet(
    controller: PostgresController,
    layout: SandboxLayout,
    sandbox_config: SandboxConfig,
) -> FleetManager:
    return FleetManager(controller, layout, sandbox_config.service)


@pytest.fixture
def project_root(
    fleet: FleetManager, layout: SandboxLayout
) -> Generator[str, None, None]:
    """Short project root under /tmp so socket paths stay within limits."""
    root = tempfile.mkdtemp(prefix="dsbx-", dir="/tmp")
    yield root
    # Stop anything a failed test left running before deleting the tree
    fleet.cleanup(layout.sandboxes_root(root))
    shutil.rmtree(root, ignore_errors=True)
