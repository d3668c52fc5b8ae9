"""CLI entry points for ToolGuard.

Implements click-based CLI
"""

import asyncio
import json
import sys
import threading
import uuid
from pathlib import Path

import click
import pyfiglet
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from toolguard import __version__
from toolguard.core.config import (
    SecurityConfig,
    SecurityConfigLoader,
    create_example_config,
)
from toolguard.core.exceptions import ConfigurationError, format_error_for_user
from toolguard.core.factory import create_confirmation_manager, create_guard
from toolguard.core.logger import ToolGuardLogger
from toolguard.core.types import Platform, SecurityContext
from toolguard.security.confirmation import (
    ConfirmationDetails,
    ConfirmationRequest,
    ConfirmationType,
    InteractiveConfirmationStrategy,
)
from toolguard.validation.schema import format_validation_error, validate_tool_input

# Load .env file from current directory or parent directories
load_dotenv()

console = Console()

PLATFORM_CHOICES = [p.value for p in Platform]


def print_logo() -> None:
    """Print ToolGuard logo."""
    logo_text = pyfiglet.figlet_format("TOOLGUARD", font="small")
    console.print(logo_text, style="bold cyan")


def load_cli_config(config_path: str | None, project_root: str, platform: Platform) -> SecurityConfig:
    """Load config for a CLI command, exiting with a message on validation errors."""
    try:
        return SecurityConfigLoader(
            config_path=config_path,
            cwd=project_root,
            platform=platform,
            logger=ToolGuardLogger(),
        ).load()
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {escape(format_error_for_user(e))}")
        sys.exit(1)


def cli_context() -> SecurityContext:
    return SecurityContext(agent_id="cli", channel_id="cli", request_id=str(uuid.uuid4()))


def prompt_in_background(strategy: InteractiveConfirmationStrategy) -> None:
    """Answer interactive confirmation requests from the terminal.

    The prompt runs on its own thread so the request deadline still applies
    while the user is thinking.
    """

    def on_request(request: ConfirmationRequest) -> None:
        def ask() -> None:
            details = request.details
            target = details.command or details.path or request.operation
            console.print(
                Panel(
                    f"[bold]{escape(target)}[/bold]\n"
                    f"Risk: {details.risk_level.value}\n"
                    f"Reason: {escape(details.reason)}",
                    title="Confirmation required",
                    expand=False,
                )
            )
            approved = Confirm.ask("Allow this operation?", default=False, console=console)
            if not strategy.respond_to_confirmation(request.id, approved):
                console.print("[yellow]Request already resolved (timed out?)[/yellow]")

        threading.Thread(target=ask, daemon=True).start()

    strategy.on_confirmation_required(on_request)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="toolguard")
@click.option("--config", "-c", "config_path", type=click.Path(), help="Security config file")
@click.option("--project-root", "-r", default=".", help="Project root directory")
@click.option(
    "--platform",
    type=click.Choice(PLATFORM_CHOICES),
    default=None,
    help="Rule table to use (default: running OS)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, project_root: str, platform: str | None) -> None:
    """ToolGuard.

    Check agent commands, paths and tool input against the security policy.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["project_root"] = project_root
    ctx.obj["platform"] = Platform(platform) if platform else Platform.current()

    if ctx.invoked_subcommand is None:
        print_logo()
        console.print("[bold]Available Commands:[/bold]\n")
        console.print("  [cyan]toolguard check-command[/cyan] - Classify a shell command")
        console.print("  [cyan]toolguard check-path[/cyan]    - Classify a filesystem path")
        console.print("  [cyan]toolguard validate-input[/cyan] - Validate tool input against a schema")
        console.print("  [cyan]toolguard config[/cyan]        - Show or create the security config\n")
        console.print("[dim]Run 'toolguard --help' for more information[/dim]\n")


@cli.command("check-command")
@click.argument("command")
@click.option("--confirm", is_flag=True, help="Run the configured confirmation strategy if needed")
@click.pass_context
def check_command(ctx: click.Context, command: str, confirm: bool) -> None:
    """Classify COMMAND as allowed, blocked or needing confirmation."""
    platform = ctx.obj["platform"]
    project_root = ctx.obj["project_root"]
    config = load_cli_config(ctx.obj["config_path"], project_root, platform)
    logger = ToolGuardLogger.from_config(config.logging)

    guard = create_guard(config, project_root, platform=platform, logger=logger)
    context = cli_context()
    verdict = guard.validate_command(command, context)

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_row("Command", escape(command))
    table.add_row(
        "Verdict",
        "[green]allowed[/green]" if verdict.allowed else "[bold red]blocked[/bold red]",
    )
    table.add_row("Risk", verdict.risk_level.value if verdict.risk_level else "-")
    table.add_row("Confirmation", "required" if verdict.requires_confirmation else "not required")
    if verdict.reason:
        table.add_row("Reason", escape(verdict.reason))
    console.print(table)

    if not verdict.allowed:
        sys.exit(1)

    if not (confirm and verdict.requires_confirmation):
        return

    if not config.enabled:
        console.print("[yellow]Security disabled in config; skipping confirmation[/yellow]")
        return

    manager = create_confirmation_manager(config, project_root, logger=logger)
    if isinstance(manager.strategy, InteractiveConfirmationStrategy):
        prompt_in_background(manager.strategy)

    details = ConfirmationDetails(
        risk_level=verdict.risk_level,
        reason=verdict.reason or "Command requires confirmation",
        command=command,
    )
    timeout_ms = config.confirmation.timeout
    approved = asyncio.run(
        manager.request_confirmation(
            ConfirmationType.COMMAND,
            "execute_command",
            details,
            context,
            timeout_ms=30_000 if timeout_ms is None else timeout_ms,
        )
    )

    if approved:
        console.print("[bold green]✓ Approved[/bold green]")
    else:
        console.print("[bold red]✗ Not confirmed[/bold red]")
        sys.exit(1)


@cli.command("check-path")
@click.argument("path")
@click.option(
    "--operation",
    "-o",
    type=click.Choice(["read", "write", "delete"]),
    default="read",
    help="Operation to check",
)
@click.pass_context
def check_path(ctx: click.Context, path: str, operation: str) -> None:
    """Classify PATH for a read, write or delete."""
    platform = ctx.obj["platform"]
    project_root = ctx.obj["project_root"]
    config = load_cli_config(ctx.obj["config_path"], project_root, platform)

    guard = create_guard(
        config, project_root, platform=platform, logger=ToolGuardLogger.from_config(config.logging)
    )
    verdict = guard.validate_path(path, operation)

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_row("Path", escape(path))
    table.add_row("Operation", operation)
    table.add_row(
        "Verdict",
        "[green]allowed[/green]" if verdict.allowed else "[bold red]denied[/bold red]",
    )
    if verdict.resolved_path:
        table.add_row("Resolved", escape(verdict.resolved_path))
    if verdict.reason:
        table.add_row("Reason", escape(verdict.reason))
    console.print(table)

    if not verdict.allowed:
        sys.exit(1)


@cli.command("validate-input")
@click.argument("schema_file", type=click.Path(exists=True, dir_okay=False))
@click.argument("input_json")
@click.option("--tool-name", "-t", default="tool", help="Tool name used in the report")
def validate_input(schema_file: str, input_json: str, tool_name: str) -> None:
    """Validate INPUT_JSON against the JSON schema in SCHEMA_FILE.

    Prints the coerced input on success and the full report on failure.

    Examples:
        toolguard validate-input schema.json '{"count": "5"}'
    """
    try:
        schema = json.loads(Path(schema_file).read_text(encoding="utf-8"))
        tool_input = json.loads(input_json)
    except (OSError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        sys.exit(1)

    result = validate_tool_input(schema, tool_input)
    if result.valid:
        console.print("[bold green]✓ Valid[/bold green]")
        console.print_json(json.dumps(result.coerced_input, default=str))
        return

    console.print(escape(format_validation_error(result, tool_name, schema, tool_input)))
    sys.exit(1)


@cli.group()
def config() -> None:
    """Show or create the security configuration."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show the merged configuration (defaults, file, environment, platform)."""
    obj = ctx.find_root().obj
    loader = SecurityConfigLoader(
        config_path=obj["config_path"],
        cwd=obj["project_root"],
        platform=obj["platform"],
        logger=ToolGuardLogger(),
    )
    try:
        merged = loader.load()
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {escape(format_error_for_user(e))}")
        sys.exit(1)

    source = str(loader.config_path) if loader.config_path else "built-in defaults"
    console.print(f"[bold]Source:[/bold] {escape(source)}")
    console.print_json(json.dumps(merged.to_dict()))


@config.command("init")
@click.option("--output", "-o", type=click.Path(), help="Where to write the example config")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
@click.pass_context
def config_init(ctx: click.Context, output: str | None, force: bool) -> None:
    """Write an example configuration file.

    Examples:
        toolguard config init
        toolguard config init --output .mcp-security.json
    """
    obj = ctx.find_root().obj
    project_root = obj["project_root"]
    target = Path(output) if output else SecurityConfigLoader(cwd=project_root).default_config_path()

    if target.exists() and not force:
        console.print(
            f"[yellow]Config already exists (use --force to overwrite):[/yellow] {escape(str(target))}"
        )
        sys.exit(1)

    try:
        written = create_example_config(target, cwd=project_root)
    except ConfigurationError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(format_error_for_user(e))}")
        sys.exit(1)

    console.print(f"[bold green]✓ Example config written to[/bold green] {escape(str(written))}")


if __name__ == "__main__":
    cli()
