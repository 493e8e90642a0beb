"""Sandbox infrastructure layer."""

from devsandbox.infra.process import CommandResult, CommandRunner

__all__ = [
    "CommandResult",
    "CommandRunner",
]
