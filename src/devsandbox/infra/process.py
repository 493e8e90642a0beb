"""Subprocess access for external service tools.

The runner reports exit codes instead of raising on them: several tools
(pg_ctl status, pg_isready) use non-zero exits as ordinary answers. It only
raises when a command cannot run at all or exceeds its timeout.
"""

import logging
import os
import subprocess
from collections.abc import Mapping, Sequence

from pydantic import BaseModel

from devsandbox.errors import ServiceCommandError
from devsandbox.logging_schema import LogEvent

logger = logging.getLogger(__name__)


class CommandResult(BaseModel):
    """Outcome of one external command."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    model_config = {"frozen": True}

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def check(self, context: str | None = None) -> "CommandResult":
        """Raise ServiceCommandError unless the command exited 0.

        Args:
            context: Prefix for the error message (e.g. which data directory)
        """
        if not self.ok:
            logger.error(
                "Command failed: %s",
                " ".join(self.argv),
                extra={
                    "event": LogEvent.COMMAND_FAILED,
                    "returncode": self.returncode,
                    "stderr": self.stderr.strip(),
                },
            )
            raise ServiceCommandError(
                self.argv,
                self.returncode,
                self.stderr or self.stdout,
                context=context,
            )
        return self


class CommandRunner:
    """Runs external commands synchronously."""

    def __init__(self, timeout: float = 60.0) -> None:
        self._timeout = timeout

    def run(
        self,
        argv: Sequence[str],
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        argv = [str(a) for a in argv]
        run_env = None
        if env is not None:
            run_env = {**os.environ, **env}

        logger.debug("Running: %s", " ".join(argv))
        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout or self._timeout,
                env=run_env,
                check=False,
            )
        except FileNotFoundError as e:
            raise ServiceCommandError(
                argv, None, message=f"Command not found: {argv[0]}"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ServiceCommandError(
                argv,
                None,
                message=f"Command '{argv[0]}' timed out after {e.timeout:g}s",
            ) from e

        return CommandResult(
            argv=argv,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )

    def call(self, argv: Sequence[str], env: Mapping[str, str] | None = None) -> int:
        """Run an interactive command attached to the current terminal."""
        argv = [str(a) for a in argv]
        run_env = {**os.environ, **env} if env is not None else None
        try:
            return subprocess.call(argv, env=run_env)
        except FileNotFoundError as e:
            raise ServiceCommandError(
                argv, None, message=f"Command not found: {argv[0]}"
            ) from e
