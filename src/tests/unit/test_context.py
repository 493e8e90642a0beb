"""Unit tests for SandboxContext creation and environment round trips."""

import pytest

from devsandbox.config import SandboxConfig
from devsandbox.core.context import SandboxContext, create_context
from devsandbox.core.identity import project_fingerprint
from devsandbox.core.ports import PortAllocator
from devsandbox.errors import (
    ErrorCode,
    InvalidInstanceIdError,
    NotInSandboxError,
    PortOutOfRangeError,
)

ROOT = "/home/dev/app"


@pytest.fixture
def ctx(sandbox_config: SandboxConfig, instance_id: str) -> SandboxContext:
    return create_context(ROOT, sandbox_config, instance_id=instance_id)


class TestCreateContext:
    """Tests for create_context."""

    def test_new_instance(self, sandbox_config: SandboxConfig) -> None:
        ctx = create_context(ROOT, sandbox_config)

        assert ctx.instance_id.startswith(project_fingerprint(ROOT))
        assert ctx.sandbox_dir == f"{ROOT}/.sandboxes/{ctx.instance_id}"
        assert 10000 <= ctx.port < 10500

    def test_two_activations_differ(self, sandbox_config: SandboxConfig) -> None:
        first = create_context(ROOT, sandbox_config)
        second = create_context(ROOT, sandbox_config)

        assert first.instance_id != second.instance_id
        assert first.sandbox_dir != second.sandbox_dir

    def test_attach_is_deterministic(
        self, sandbox_config: SandboxConfig, instance_id: str
    ) -> None:
        a = create_context(ROOT, sandbox_config, instance_id=instance_id)
        b = create_context(ROOT, sandbox_config, instance_id=instance_id)
        assert a == b

    def test_paths(self, ctx: SandboxContext, instance_id: str) -> None:
        base = f"{ROOT}/.sandboxes/{instance_id}/postgres"
        assert ctx.paths.data == f"{base}/data"
        assert ctx.paths.socket == f"{base}/socket"
        assert ctx.paths.log == f"{base}/log"

    def test_port_matches_allocator(self, ctx: SandboxContext, instance_id: str) -> None:
        assert ctx.port == PortAllocator().port_for_instance(ROOT, instance_id)

    def test_credentials_from_config(self, ctx: SandboxContext) -> None:
        assert (ctx.user, ctx.password, ctx.database) == ("postgres", "postgres", "postgres")

    def test_invalid_instance_id(self, sandbox_config: SandboxConfig) -> None:
        with pytest.raises(InvalidInstanceIdError):
            create_context(ROOT, sandbox_config, instance_id="xyz")

    def test_creates_nothing_on_disk(self, tmp_path, sandbox_config: SandboxConfig) -> None:
        create_context(tmp_path, sandbox_config)
        assert list(tmp_path.iterdir()) == []

    def test_long_root_uses_short_socket(self, sandbox_config: SandboxConfig, instance_id: str):
        root = "/" + "nested/" * 15 + "app"
        ctx = create_context(root, sandbox_config, instance_id=instance_id)
        assert ctx.paths.socket == f"/tmp/svc-{instance_id}"


class TestToEnvironment:
    """Tests for SandboxContext.to_environment."""

    def test_exact_variables(self, ctx: SandboxContext) -> None:
        env = ctx.to_environment()

        assert set(env) == {
            "INSTANCE_ID",
            "STATE_DIR",
            "ALLOCATED_PORT",
            "SANDBOX_PROJECT_ROOT",
            "PGPORT",
            "PGHOST",
            "PGUSER",
            "PGPASSWORD",
            "PGDATA",
            "PGDATABASE",
        }

    def test_values(self, ctx: SandboxContext) -> None:
        env = ctx.to_environment()

        assert env["INSTANCE_ID"] == ctx.instance_id
        assert env["STATE_DIR"] == ctx.sandbox_dir
        assert env["ALLOCATED_PORT"] == env["PGPORT"] == str(ctx.port)
        assert env["PGHOST"] == ctx.paths.socket
        assert env["PGDATA"] == ctx.paths.data
        assert env["SANDBOX_PROJECT_ROOT"] == ROOT


class TestFromEnvironment:
    """Tests for SandboxContext.from_environment."""

    def test_round_trip(self, ctx: SandboxContext, sandbox_config: SandboxConfig) -> None:
        restored = SandboxContext.from_environment(ctx.to_environment(), sandbox_config)
        assert restored == ctx

    def test_missing_instance_id(self, sandbox_config: SandboxConfig) -> None:
        with pytest.raises(NotInSandboxError) as exc_info:
            SandboxContext.from_environment({"STATE_DIR": "/x"}, sandbox_config)

        assert exc_info.value.code == ErrorCode.NOT_IN_SANDBOX
        assert "INSTANCE_ID" in exc_info.value.message

    def test_missing_state_dir(self, sandbox_config: SandboxConfig, instance_id: str) -> None:
        with pytest.raises(NotInSandboxError):
            SandboxContext.from_environment({"INSTANCE_ID": instance_id}, sandbox_config)

    def test_empty_environment(self, sandbox_config: SandboxConfig) -> None:
        with pytest.raises(NotInSandboxError):
            SandboxContext.from_environment({}, sandbox_config)

    def test_malformed_instance_id(self, ctx: SandboxContext, sandbox_config: SandboxConfig):
        env = {**ctx.to_environment(), "INSTANCE_ID": "NOT-HEX"}
        with pytest.raises(InvalidInstanceIdError):
            SandboxContext.from_environment(env, sandbox_config)

    @pytest.mark.parametrize("raw_port", ["abc", "80", "99999"])
    def test_bad_port(
        self, ctx: SandboxContext, sandbox_config: SandboxConfig, raw_port: str
    ) -> None:
        env = {**ctx.to_environment(), "ALLOCATED_PORT": raw_port}
        with pytest.raises(PortOutOfRangeError):
            SandboxContext.from_environment(env, sandbox_config)

    def test_port_recomputed_from_project_root(
        self, ctx: SandboxContext, sandbox_config: SandboxConfig
    ) -> None:
        env = ctx.to_environment()
        del env["ALLOCATED_PORT"]

        assert SandboxContext.from_environment(env, sandbox_config).port == ctx.port

    def test_no_port_and_no_root(self, ctx: SandboxContext, sandbox_config: SandboxConfig):
        env = ctx.to_environment()
        del env["ALLOCATED_PORT"]
        del env["SANDBOX_PROJECT_ROOT"]

        with pytest.raises(NotInSandboxError):
            SandboxContext.from_environment(env, sandbox_config)

    def test_credentials_from_environment(
        self, ctx: SandboxContext, sandbox_config: SandboxConfig
    ) -> None:
        env = {**ctx.to_environment(), "PGUSER": "app", "PGDATABASE": "appdb"}
        restored = SandboxContext.from_environment(env, sandbox_config)

        assert restored.user == "app"
        assert restored.database == "appdb"

    def test_relative_pghost_ignored(
        self, ctx: SandboxContext, sandbox_config: SandboxConfig
    ) -> None:
        env = {**ctx.to_environment(), "PGHOST": "localhost"}
        restored = SandboxContext.from_environment(env, sandbox_config)

        assert restored.paths.socket == ctx.paths.socket
