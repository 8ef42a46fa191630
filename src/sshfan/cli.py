"""sshfan CLI - Main entry point."""

import logging
import sys
from pathlib import Path
from typing import Any, Callable

import click
from rich.console import Console
from rich.markup import escape

from sshfan import __version__
from sshfan.config import resolve_hosts, write_template
from sshfan.errors import ConfigError, SchedulerError, SequencerError
from sshfan.models import DEFAULT_TIMEOUT, Operation, RunCommand, SendFile
from sshfan.presenter import OutcomePresenter
from sshfan.scheduler import run_operation

console = Console()
error_console = Console(stderr=True)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_HOST_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERNAL_ERROR = 3


def configure_logging(verbose: bool) -> None:
    """Send sshfan logs to stderr; DEBUG when verbose, WARNING otherwise."""
    package_logger = logging.getLogger("sshfan")
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    # Replace rather than reuse: sys.stderr may have been swapped since the last call
    for old in list(package_logger.handlers):
        package_logger.removeHandler(old)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s")
    )
    package_logger.addHandler(handler)
    package_logger.propagate = False

    # paramiko logs every transport event at INFO
    logging.getLogger("paramiko").setLevel(logging.WARNING)


def print_error(message: str) -> None:
    error_console.print(f"[red]✗[/red] {escape(message)}", soft_wrap=True)


def print_warning(message: str) -> None:
    error_console.print(f"[yellow]![/yellow] {escape(message)}", soft_wrap=True)


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {escape(message)}", soft_wrap=True)


_HOST_OPTIONS = [
    click.option("--hosts", "-h", default=None, help="Hosts separated by commas, semicolons or spaces"),
    click.option("--port", "-P", type=int, default=None, help="SSH port (default: 22)"),
    click.option("--username", "-u", default=None, help="SSH username (default: root)"),
    click.option("--password", "-p", default=None, help="SSH password"),
    click.option(
        "--config", "-f", "config_path",
        type=click.Path(dir_okay=False, path_type=Path),
        default=None,
        help="YAML inventory file",
    ),
    click.option("--section", "-s", default=None, help="Section in the inventory file"),
    click.option(
        "--timeout", "-T", type=float, default=None,
        help=f"Connect and authentication timeout in seconds (default: {DEFAULT_TIMEOUT:g})",
    ),
    click.option(
        "--threads", "-n", type=click.IntRange(min=1), default=1,
        help="Number of hosts to run at once (default: 1)",
    ),
    click.option(
        "--stable", is_flag=True,
        help="Print results in host order instead of completion order",
    ),
]


def host_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the options shared by every command that runs against hosts."""
    for option in reversed(_HOST_OPTIONS):
        func = option(func)
    return func


@click.group()
@click.option("--json", "json_output", is_flag=True, help="Output one JSON object per host")
@click.option("--verbose", "-v", is_flag=True, help="Log connection progress to stderr")
@click.version_option(version=__version__, prog_name="sshfan")
@click.pass_context
def cli(ctx: click.Context, json_output: bool, verbose: bool) -> None:
    """sshfan - Run a command or upload a file on many SSH hosts at once.

    Hosts come from --hosts or from a YAML inventory (see `sshfan init`).
    """
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["json_output"] = json_output


def _fan_out(ctx: click.Context, operation: Operation, options: dict[str, Any]) -> None:
    """Resolve hosts, run the operation and exit with the overall status."""
    try:
        hosts = resolve_hosts(
            hosts=options["hosts"],
            username=options["username"],
            password=options["password"],
            port=options["port"],
            config_path=options["config_path"],
            section=options["section"],
            timeout=options["timeout"],
        )
    except ConfigError as e:
        print_error(str(e))
        sys.exit(EXIT_CONFIG_ERROR)

    if not hosts:
        print_warning("No hosts to run on.")
        sys.exit(EXIT_OK)

    presenter = OutcomePresenter(console, json_output=ctx.obj["json_output"])
    logger.debug("Running %s on %d hosts", type(operation).__name__, len(hosts))

    try:
        run_operation(
            hosts,
            operation,
            presenter,
            workers=options["threads"],
            stable=options["stable"],
        )
    except (SchedulerError, SequencerError) as e:
        print_error(f"Internal error, run aborted: {e}")
        sys.exit(EXIT_INTERNAL_ERROR)

    if len(hosts) > 1:
        presenter.print_summary()
    sys.exit(EXIT_OK if presenter.all_ok else EXIT_HOST_FAILED)


def _operation(kind: Callable[..., Operation], *args: str) -> Operation:
    try:
        return kind(*args)
    except ValueError as e:
        print_error(str(e))
        sys.exit(EXIT_CONFIG_ERROR)


@cli.command("exec")
@click.argument("command")
@host_options
@click.pass_context
def exec_command(ctx: click.Context, command: str, **options: Any) -> None:
    """Run COMMAND on every host."""
    _fan_out(ctx, _operation(RunCommand, command), options)


@cli.command("send")
@click.argument("local", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("remote")
@host_options
@click.pass_context
def send_file(ctx: click.Context, local: Path, remote: str, **options: Any) -> None:
    """Upload LOCAL to REMOTE on every host."""
    _fan_out(ctx, _operation(SendFile, str(local), remote), options)


@cli.command("init")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path), default="sshfan.yaml")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init_inventory(path: Path, force: bool) -> None:
    """Write an example inventory file to PATH (default: sshfan.yaml)."""
    try:
        written = write_template(path, force=force)
    except ConfigError as e:
        print_error(str(e))
        sys.exit(EXIT_CONFIG_ERROR)
    print_success(f"Wrote inventory template to {written}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
