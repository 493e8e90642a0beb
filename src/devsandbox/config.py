"""Sandbox configuration using pydantic-settings.

Configuration hierarchy:
- PortConfig: Port range and instance offset derivation
- LayoutConfig: Where sandbox directories and sockets live
- PostgresConfig: PostgreSQL binaries, credentials and readiness polling
- LoggingConfig: Logging behavior
- SandboxConfig: Main config aggregating all sub-configs

Environment variable prefix: SANDBOX_
Examples:
    SANDBOX_PORTS__RANGE_START=20000
    SANDBOX_LAYOUT__MODE=cache
    SANDBOX_POSTGRES__BIN_DIR=/usr/lib/postgresql/16/bin
"""

from functools import lru_cache
from typing import Literal, Self

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PortConfig(BaseSettings):
    """Port allocation configuration.

    Each instance consumes two adjacent ports (primary + secondary listener),
    so at most range_width / 2 instances of one project fit without collision.
    """

    model_config = SettingsConfigDict(env_prefix="SANDBOX_PORTS__", extra="ignore")

    range_start: int = Field(default=10000, description="First port of the allocation range")
    range_width: int = Field(default=500, description="Number of ports in the allocation range")
    instance_slice: Literal["suffix", "full"] = Field(
        default="suffix",
        description=(
            "Which part of the instance ID feeds the port offset: "
            "'suffix' = last 8 hex chars, 'full' = the whole ID"
        ),
    )

    @field_validator("range_start")
    @classmethod
    def validate_range_start(cls, v: int) -> int:
        if not 1024 <= v <= 65535:
            raise ValueError(f"Invalid range_start {v}: must be between 1024 and 65535")
        return v

    @field_validator("range_width")
    @classmethod
    def validate_range_width(cls, v: int) -> int:
        if v < 2:
            raise ValueError(
                f"Invalid range_width {v}: must be at least 2 "
                "(each instance reserves two adjacent ports)"
            )
        return v

    @model_validator(mode="after")
    def validate_range_end(self) -> Self:
        end = self.range_start + self.range_width - 1
        if end > 65535:
            raise ValueError(
                f"Port range [{self.range_start}, {self.range_start + self.range_width}) "
                "exceeds 65535"
            )
        return self


class LayoutConfig(BaseSettings):
    """Sandbox directory layout.

    - project: <project-root>/.sandboxes/<instance-id>
    - cache:   <cache-root>/<namespace>/<project-fingerprint>/<instance-id>
    """

    model_config = SettingsConfigDict(env_prefix="SANDBOX_LAYOUT__", extra="ignore")

    mode: Literal["project", "cache"] = Field(
        default="project",
        description="Root the sandbox directories under the project or a cache dir",
    )
    dirname: str = Field(default=".sandboxes", description="Directory name in project mode")
    namespace: str = Field(default="dev-sandbox", description="Namespace under the cache root")
    cache_root: str | None = Field(
        default=None,
        description="Cache root (defaults to $XDG_CACHE_HOME or ~/.cache)",
    )
    # macOS sun_path is 104 bytes including the terminating NUL; Linux is 108
    socket_path_max: int = Field(
        default=103,
        description="Longest Unix domain socket path the platform accepts",
    )
    short_socket_root: str = Field(
        default="/tmp",
        description="Root for short socket directories when the default is too long",
    )

    @field_validator("dirname", "namespace")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or "/" in v:
            raise ValueError(f"Invalid name '{v}': must be non-empty and contain no '/'")
        return v

    @field_validator("short_socket_root")
    @classmethod
    def validate_short_socket_root(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(
                f"Invalid short_socket_root '{v}': must be an absolute path starting with '/'"
            )
        return v.rstrip("/") or "/"


class PostgresConfig(BaseSettings):
    """PostgreSQL service configuration."""

    model_config = SettingsConfigDict(env_prefix="SANDBOX_POSTGRES__", extra="ignore")

    bin_dir: str | None = Field(
        default=None,
        description="Directory holding initdb/pg_ctl/pg_isready/psql (default: PATH)",
    )
    user: str = Field(default="postgres", description="Superuser created by initdb")
    password: str = Field(default="postgres", description="Superuser password")
    database: str = Field(default="postgres", description="Default database for clients")
    listen_addresses: str = Field(default="localhost", description="TCP listen addresses")

    # Readiness probe (the only retry loop in the system)
    ready_attempts: int = Field(default=30, description="Readiness probe attempts")
    ready_interval: float = Field(default=1.0, description="Seconds between readiness probes")

    command_timeout: float = Field(
        default=60.0,
        description="Timeout for a single initdb/pg_ctl invocation (seconds)",
    )

    @field_validator("user", "password", "database")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("value cannot be empty")
        return v

    @field_validator("ready_attempts")
    @classmethod
    def validate_ready_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Invalid ready_attempts {v}: must be at least 1")
        return v


class LoggingConfig(BaseSettings):
    """Logging configuration.

    - text: Human-readable for interactive shells
    - json: Structured logging for tooling built on top
    """

    model_config = SettingsConfigDict(env_prefix="SANDBOX_LOGGING__", extra="ignore")

    level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    format: Literal["text", "json"] = Field(default="text", description="Log format")


class SandboxConfig(BaseSettings):
    """Main sandbox configuration aggregating all sub-configs.

    All settings can be configured via environment variables with SANDBOX_ prefix.
    Nested settings use double underscore as separator.
    """

    model_config = SettingsConfigDict(
        env_prefix="SANDBOX_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    service: str = Field(default="postgres", description="Service directory name")

    ports: PortConfig = Field(default_factory=PortConfig)
    layout: LayoutConfig = Field(default_factory=LayoutConfig)
    postgres: PostgresConfig = Field(default_factory=PostgresConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


@lru_cache
def get_config() -> SandboxConfig:
    """Get cached sandbox configuration.

    Raises:
        ValidationError: If configuration is invalid with detailed error message
    """
    return SandboxConfig()
