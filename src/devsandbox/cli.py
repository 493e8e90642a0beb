"""devsandbox command line interface.

Usage:
    eval "$(devsandbox activate)"   # new instance, exports its environment
    devsandbox start-service
    devsandbox status
    devsandbox list
    devsandbox cleanup --dry-run
"""

import argparse
import logging
import os
import shlex
import sys
from collections.abc import Callable, Mapping, Sequence

from pydantic import ValidationError

from devsandbox.config import SandboxConfig, get_config
from devsandbox.core.context import (
    ENV_INSTANCE_ID,
    ENV_PROJECT_ROOT,
    SandboxContext,
    create_context,
)
from devsandbox.core.identity import validate_instance_id
from devsandbox.core.paths import SandboxLayout
from devsandbox.errors import SandboxError
from devsandbox.infra import CommandRunner
from devsandbox.logging import setup_logging
from devsandbox.services import FleetManager, PostgresController

logger = logging.getLogger(__name__)


class App:
    """Wires configuration, controller and fleet manager for one CLI run."""

    def __init__(
        self,
        config: SandboxConfig,
        project_root: str | None = None,
        env: Mapping[str, str] | None = None,
        controller: PostgresController | None = None,
    ) -> None:
        self.config = config
        self.env = os.environ if env is None else env
        self.project_root = project_root or self.env.get(ENV_PROJECT_ROOT) or os.getcwd()
        self.layout = SandboxLayout(config.layout)
        self.runner = CommandRunner(timeout=config.postgres.command_timeout)
        self.controller = controller or PostgresController(config.postgres, self.runner)
        self.fleet = FleetManager(self.controller, self.layout, config.service)

    def current(self) -> SandboxContext:
        return SandboxContext.from_environment(self.env, self.config, self.layout)

    def current_instance_id(self) -> str | None:
        instance_id = self.env.get(ENV_INSTANCE_ID)
        return instance_id if validate_instance_id(instance_id) else None


def _print_exports(ctx: SandboxContext) -> None:
    for key, value in ctx.to_environment().items():
        print(f"export {key}={shlex.quote(value)}")


def cmd_activate(app: App, args: argparse.Namespace) -> int:
    ctx = create_context(app.project_root, app.config, layout=app.layout)
    os.makedirs(ctx.sandbox_dir, exist_ok=True)
    if not args.no_init:
        app.controller.init(ctx.paths, ctx.password)
    if args.start:
        app.controller.start(ctx.paths, ctx.port)

    logger.info("Sandbox instance: %s", ctx.instance_id)
    logger.info("Sandbox directory: %s", ctx.sandbox_dir)
    logger.info("Port: %d", ctx.port)
    _print_exports(ctx)
    return 0


def cmd_env(app: App, args: argparse.Namespace) -> int:
    _print_exports(app.current())
    return 0


def cmd_start(app: App, args: argparse.Namespace) -> int:
    ctx = app.current()
    app.controller.init(ctx.paths, ctx.password)
    result = app.controller.start(ctx.paths, ctx.port)
    print(result.message or f"PostgreSQL is ready on port {ctx.port}", file=sys.stderr)
    return 0


def cmd_stop(app: App, args: argparse.Namespace) -> int:
    ctx = app.current()
    result = app.controller.stop(ctx.paths.data)
    print(result.message or "PostgreSQL stopped", file=sys.stderr)
    return 0


def cmd_restart(app: App, args: argparse.Namespace) -> int:
    ctx = app.current()
    app.controller.restart(ctx.paths, ctx.port)
    print(f"PostgreSQL is ready on port {ctx.port}", file=sys.stderr)
    return 0


def cmd_status(app: App, args: argparse.Namespace) -> int:
    ctx = app.current()
    status = app.controller.status(ctx.paths.data)

    print(f"Sandbox Instance: {ctx.instance_id}")
    print(f"Directory: {ctx.sandbox_dir}")
    print()
    if status.running:
        print("PostgreSQL: Running")
        if status.pid:
            print(f"PID: {status.pid}")
        print(f"Port: {ctx.port}")
        print(f"Socket: {ctx.paths.socket}")
        print(f"Data: {ctx.paths.data}")
        print(f"Log: {ctx.paths.log}")
        return 0

    print(f"PostgreSQL: Stopped ({status.state.value})")
    return 1


def cmd_list(app: App, args: argparse.Namespace) -> int:
    root = app.layout.sandboxes_root(app.project_root)
    summaries = app.fleet.list(root)
    if not summaries:
        print("No sandboxes found")
        return 0

    current = app.current_instance_id()
    print(f"  {'Instance':<22} {'PostgreSQL':<14} Path")
    print("  " + "-" * 60)
    for s in summaries:
        if s.error:
            state = "Unknown"
        else:
            state = "Running" if s.running else "Stopped"
        marker = "*" if s.instance_id == current else " "
        print(f"{marker} {s.instance_id:<22} {state:<14} {s.path}")
        if s.error:
            print(f"    error: {s.error}")
    return 0


def cmd_cleanup(app: App, args: argparse.Namespace) -> int:
    root = app.layout.sandboxes_root(app.project_root)
    current = app.current_instance_id()
    exclude = {current} if current and not args.include_current else set()

    report = app.fleet.cleanup(
        root,
        keep_running=args.keep_running,
        exclude=exclude,
        dry_run=args.dry_run,
    )

    verb = "Would remove" if report.dry_run else "Removed"
    for instance_id in report.removed:
        print(f"{verb}: {instance_id}")
    for instance_id in report.skipped:
        print(f"Skipped: {instance_id}")
    for instance_id in report.failed:
        print(f"Failed: {instance_id}", file=sys.stderr)

    if report.removed_count == 0:
        print("No stale sandboxes found")
    else:
        print(f"{verb} {report.removed_count} sandbox(es)")
    return 1 if report.failed else 0


def cmd_connect(app: App, args: argparse.Namespace) -> int:
    ctx = app.current()
    argv = app.controller.connect_command(ctx.paths.socket, ctx.port, ctx.user, ctx.database)
    return app.runner.call([*argv, *args.psql_args], env=ctx.to_environment())


COMMANDS: dict[str, Callable[[App, argparse.Namespace], int]] = {
    "activate": cmd_activate,
    "env": cmd_env,
    "start-service": cmd_start,
    "stop-service": cmd_stop,
    "restart-service": cmd_restart,
    "status": cmd_status,
    "list": cmd_list,
    "cleanup": cmd_cleanup,
    "connect": cmd_connect,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Isolated per-instance development sandboxes",
        prog="devsandbox",
    )
    parser.add_argument(
        "--project-root",
        help="Project root (default: $SANDBOX_PROJECT_ROOT or current directory)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override SANDBOX_LOGGING__LEVEL",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        help="Override SANDBOX_LOGGING__FORMAT",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    activate_parser = subparsers.add_parser(
        "activate", help="Create a new instance and print its environment"
    )
    activate_parser.add_argument(
        "--no-init", action="store_true", help="Do not initialize the data directory"
    )
    activate_parser.add_argument(
        "--start", action="store_true", help="Start PostgreSQL after initializing"
    )

    subparsers.add_parser("env", help="Print the environment of the current instance")
    subparsers.add_parser("start-service", help="Start PostgreSQL for the current instance")
    subparsers.add_parser("stop-service", help="Stop PostgreSQL for the current instance")
    subparsers.add_parser("restart-service", help="Restart PostgreSQL for the current instance")
    subparsers.add_parser("status", help="Show status of the current instance")
    subparsers.add_parser("list", help="List all instances of the project")

    cleanup_parser = subparsers.add_parser("cleanup", help="Remove stale instances")
    cleanup_parser.add_argument(
        "--keep-running",
        action="store_true",
        help="Skip instances whose PostgreSQL is running instead of stopping them",
    )
    cleanup_parser.add_argument(
        "--include-current",
        action="store_true",
        help="Also remove the instance of the current shell",
    )
    cleanup_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be removed without actually removing",
    )

    connect_parser = subparsers.add_parser("connect", help="Open psql on the current instance")
    connect_parser.add_argument("psql_args", nargs=argparse.REMAINDER, help="Extra psql arguments")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = get_config()
    except ValidationError as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        return 2

    overrides = {}
    if args.log_level:
        overrides["level"] = args.log_level
    if args.log_format:
        overrides["format"] = args.log_format
    logging_config = config.logging.model_copy(update=overrides)
    setup_logging(logging_config)

    try:
        app = App(config, project_root=args.project_root)
        return COMMANDS[args.command](app, args)
    except SandboxError as e:
        if logging_config.format == "json":
            print(e.to_response().model_dump_json(), file=sys.stderr)
        else:
            print(f"Error: {e.message}", file=sys.stderr)
        return e.exit_code


if __name__ == "__main__":
    sys.exit(main())
