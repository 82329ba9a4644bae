import logging
import sys
from collections.abc import Callable
from functools import wraps
from importlib import metadata
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

import click
from appdirs import user_log_dir
from botocore.exceptions import BotoCoreError, ClientError
from pulumi.automation import CommandError
from rich.logging import RichHandler

from edgeroute.cli.commands import (
    console,
    parse_header_options,
    run_destroy,
    run_diff,
    run_provision,
    run_render,
    run_resolve,
    run_routes,
    run_validate,
)
from edgeroute.exceptions import ConfigurationError

app_logger = logging.getLogger("edgeroute")
# Capture everything from 'edgeroute'; handlers decide what is shown.
app_logger.setLevel(logging.DEBUG)

app_name = "edgeroute"
log_dir = Path(user_log_dir(app_name))
log_dir.mkdir(parents=True, exist_ok=True)
log_file_path = log_dir / f"{app_name}.log"
file_handler = TimedRotatingFileHandler(
    filename=str(log_file_path), when="D", interval=1, backupCount=7, encoding="utf-8"
)
file_handler.setLevel(logging.DEBUG)
file_handler.setFormatter(
    logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
)
app_logger.addHandler(file_handler)

logger = logging.getLogger(__name__)

config_argument = click.argument(
    "config_path", metavar="CONFIG", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
env_option = click.option("--env", "-e", default="dev", show_default=True, help="Environment name")
app_option = click.option("--app", default=None, help="App name (defaults to the edge name)")


def _handle_errors(func: Callable) -> Callable:
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ConfigurationError as e:
            logger.debug("Configuration rejected", exc_info=True)
            console.print("\n[bold red]✗ Invalid configuration[/bold red]")
            console.print(f"  {e}", highlight=False, markup=False)
            raise SystemExit(1) from None
        except (ClientError, BotoCoreError) as e:
            logger.debug("AWS call failed", exc_info=True)
            console.print("\n[bold red]✗ AWS error[/bold red]")
            console.print(f"  {e}", highlight=False, markup=False)
            raise SystemExit(1) from None
        except CommandError as e:
            logger.debug("Pulumi command failed", exc_info=True)
            console.print("\n[bold red]✗ Pulumi error[/bold red]")
            console.print(f"  {e}", highlight=False, markup=False)
            raise SystemExit(1) from None

    return wrapper


@click.group(invoke_without_command=True)
@click.option(
    "--verbose", "-v", count=True, help="Increase verbosity. -v for INFO, -vv for DEBUG logs."
)
@click.option("--version", is_flag=True, help="Show edgeroute version.")
@click.pass_context
def cli(ctx: click.Context, verbose: int, version: bool) -> None:
    if version:
        _version()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        ctx.exit(0)

    if verbose > 0:
        console_handler = RichHandler(
            console=console,
            show_time=False,
            show_level=True,
            markup=True,
            tracebacks_suppress=[click],
            rich_tracebacks=True,
        )
        console_handler.setLevel(logging.INFO if verbose == 1 else logging.DEBUG)
        console.print(f"[italic dim]Logs saved to: {log_file_path}[/]")
        app_logger.addHandler(console_handler)


@click.command()
@config_argument
@_handle_errors
def validate(config_path: Path) -> None:
    """Validates an edge configuration file."""
    run_validate(config_path)


@click.command()
@config_argument
@_handle_errors
def routes(config_path: Path) -> None:
    """Shows cache behaviors in the order requests are matched against them."""
    run_routes(config_path)


@click.command()
@config_argument
@click.argument("path")
@click.option("--method", "-X", default="GET", show_default=True, help="Request method")
@click.option(
    "--scheme", type=click.Choice(["http", "https"]), default="https", show_default=True
)
@click.option("--query", "-q", default="", help="Query string without the leading '?'")
@click.option("--header", "-H", "headers", multiple=True, help="Header as 'Name: value'")
@click.option("--client-ip", default=None, help="Viewer IP address for IP set rules")
@_handle_errors
def resolve(
    config_path: Path,
    path: str,
    method: str,
    scheme: str,
    query: str,
    headers: tuple[str, ...],
    client_ip: str | None,
) -> None:
    """
    Shows how the edge would handle a request: behavior, protocol check, access
    rules, method check and cache key. Origins are not contacted.
    """
    try:
        parsed_headers = parse_header_options(headers)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--header") from None
    run_resolve(config_path, path, method, scheme, query, parsed_headers, client_ip)


@click.command()
@config_argument
@env_option
@app_option
@_handle_errors
def render(config_path: Path, env: str, app: str | None) -> None:
    """Prints the CloudFront, WAF and bucket policy payloads as JSON."""
    run_render(config_path, env, app)


@click.command()
@config_argument
@env_option
@app_option
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompts")
@_handle_errors
def provision(config_path: Path, env: str, app: str | None, yes: bool) -> None:
    """
    Creates or updates the distribution, web ACL and origin access in AWS.
    Running it again applies configuration changes to the same resources.
    """
    if not yes:
        console.print(f"About to provision the edge in [bold red]{env}[/bold red] environment.")
        if not click.confirm(f"Provision {env}?"):
            console.print("Provisioning cancelled.")
            return
    run_provision(config_path, env, app)


@click.command()
@config_argument
@env_option
@app_option
@_handle_errors
def diff(config_path: Path, env: str, app: str | None) -> None:
    """Shows what provision would change in AWS."""
    run_diff(config_path, env, app)


@click.command()
@config_argument
@env_option
@app_option
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompts")
@_handle_errors
def destroy(config_path: Path, env: str, app: str | None, yes: bool) -> None:
    """Destroys the distribution, web ACL and origin access created by provision."""
    if not yes:
        console.print(f"About to destroy the edge in [bold red]{env}[/bold red] environment.")
        if not click.confirm(f"Destroy {env}? This cannot be undone"):
            console.print("Destruction cancelled.")
            return
    run_destroy(config_path, env, app)


cli.add_command(validate)
cli.add_command(routes)
cli.add_command(resolve)
cli.add_command(render)
cli.add_command(provision)
cli.add_command(diff)
cli.add_command(destroy)


def _version() -> None:
    console.print(f"edgeroute version: {metadata.version('edgeroute')}", highlight=False)
    sys.exit(0)
