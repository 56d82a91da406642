"""
Command-line interface for sqlsteward.
"""

import asyncio
import logging
import logging.handlers
import sys
from functools import wraps
from pathlib import Path
from typing import Awaitable, Callable, TypeVar

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .analyzer import ScriptUpdates
from .config import LoggingConfig, StewardConfig
from .database.connection import ConnectionConfig, ConnectionPool
from .exceptions import ConfigurationError, StewardError
from .maintainer import DatabaseMaintainer, UpdateResult


console = Console()

T = TypeVar("T")

EXIT_IRREGULAR_UPDATES = 2


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except StewardError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(130)
        except Exception as e:
            console.print(f"[red]Unexpected error:[/red] {escape(str(e))}")
            if "--debug" in sys.argv:
                import traceback
                traceback.print_exc()
            sys.exit(1)
    return wrapper


def configure_logging(config: LoggingConfig, debug: bool = False) -> None:
    """Apply the logging section of the configuration."""
    handlers = [logging.StreamHandler()]
    if config.file:
        handlers.append(
            logging.handlers.RotatingFileHandler(
                config.file, maxBytes=config.max_size, backupCount=config.backup_count
            )
        )
    logging.basicConfig(
        level=logging.DEBUG if debug else getattr(logging, config.level),
        format=config.format,
        handlers=handlers,
        force=True,
    )


def _load_config(ctx: click.Context, path: str) -> StewardConfig:
    steward_config = StewardConfig.from_yaml(path)
    configure_logging(steward_config.logging, debug=ctx.obj.get("debug", False) or steward_config.debug)
    return steward_config


def _run_with_maintainer(
    steward_config: StewardConfig,
    action: Callable[[DatabaseMaintainer], Awaitable[T]],
) -> T:
    async def run() -> T:
        async with ConnectionPool(steward_config.database) as pool:
            maintainer = DatabaseMaintainer.from_config(steward_config, pool)
            try:
                return await action(maintainer)
            finally:
                await maintainer.runner.close()

    return asyncio.run(run())


config_option = click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)


@click.group()
@click.version_option(__version__)
@click.option(
    "--debug", is_flag=True, help="Enable debug mode"
)
@click.pass_context
def main(ctx, debug):
    """sqlsteward: keeps databases in sync with versioned scripts."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default="sqlsteward.yaml",
    help="Output configuration file path",
)
@handle_errors
def init(output: str):
    """Initialize a new sqlsteward configuration file."""
    if Path(output).exists():
        if not click.confirm(f"Configuration file {output} already exists. Overwrite?"):
            return

    config = StewardConfig(
        database=ConnectionConfig(
            host="localhost",
            database="app",
            user="postgres",
            password="${PGPASSWORD}",
        )
    )
    config.to_yaml(output)
    console.print(f"[green]✓[/green] Configuration file created: {output}")
    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Edit the configuration file with your database details and script locations")
    console.print("2. Run: sqlsteward validate-config -c your-config.yaml")
    console.print("3. Run: sqlsteward analyze -c your-config.yaml")
    console.print("4. Run: sqlsteward update -c your-config.yaml")


@main.command()
@config_option
@click.pass_context
@handle_errors
def validate_config(ctx, config: str):
    """Validate configuration file."""
    console.print(f"Validating configuration: {config}")

    try:
        steward_config = StewardConfig.from_yaml(config)
        steward_config.validate_config()
    except ConfigurationError as e:
        console.print(f"[red]✗[/red] Configuration error: {escape(str(e))}")
        sys.exit(1)

    console.print("[green]✓[/green] Configuration is valid")
    _display_config_summary(steward_config)


@main.command()
@config_option
@click.pass_context
@handle_errors
def analyze(ctx, config: str):
    """Show the script updates since the last database update."""
    steward_config = _load_config(ctx, config)

    updates = _run_with_maintainer(steward_config, lambda m: m.analyze())
    _display_updates(updates)

    if updates.has_irregular_updates:
        console.print(
            "\n[red]Irregular script updates found:[/red] the database must be "
            "recreated from scratch"
        )
        sys.exit(EXIT_IRREGULAR_UPDATES)


@main.command()
@config_option
@click.option("--dry-run", is_flag=True, help="Show the scripts that would run without executing them")
@click.option("--from-scratch", is_flag=True, help="Recreate the database from scratch")
@click.pass_context
@handle_errors
def update(ctx, config: str, dry_run: bool, from_scratch: bool):
    """Bring the database up to date with the scripts."""
    steward_config = _load_config(ctx, config)
    dry_run = dry_run or steward_config.dry_run

    if from_scratch and not dry_run:
        if not click.confirm("All objects of the configured schemas will be dropped. Continue?"):
            return

    result = _run_with_maintainer(
        steward_config,
        lambda m: m.update_database(dry_run=dry_run, from_scratch=from_scratch),
    )
    _display_update_result(result)


@main.command()
@config_option
@click.pass_context
@handle_errors
def mark_up_to_date(ctx, config: str):
    """Record all scripts as executed without running them."""
    steward_config = _load_config(ctx, config)
    count = _run_with_maintainer(steward_config, lambda m: m.mark_database_as_up_to_date())
    console.print(f"[green]✓[/green] Marked {count} scripts as executed")


@main.command()
@config_option
@click.pass_context
@handle_errors
def mark_error_scripts_performed(ctx, config: str):
    """Record failed scripts as successfully executed after fixing them by hand."""
    steward_config = _load_config(ctx, config)
    count = _run_with_maintainer(steward_config, lambda m: m.mark_error_scripts_performed())
    console.print(f"[green]✓[/green] Marked {count} failed scripts as performed")


@main.command()
@config_option
@click.pass_context
@handle_errors
def mark_error_scripts_reverted(ctx, config: str):
    """Forget failed scripts after reverting their changes by hand."""
    steward_config = _load_config(ctx, config)
    count = _run_with_maintainer(steward_config, lambda m: m.mark_error_scripts_reverted())
    console.print(f"[green]✓[/green] Removed {count} failed scripts from the executed scripts")


def _display_config_summary(config: StewardConfig) -> None:
    """Display configuration summary."""
    table = Table(title="Configuration Summary")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    db = config.database
    table.add_row("Database", f"{db.host}:{db.port}/{db.database}")
    table.add_row("Script locations", "\n".join(config.scripts.locations))
    table.add_row("Extensions", ", ".join(config.scripts.extensions))
    table.add_row("Executed scripts table", f"{config.history.schema_name}.{config.history.table_name}")
    table.add_row("From scratch enabled", str(config.policy.from_scratch_enabled))
    table.add_row("Out-of-sequence patches", str(config.policy.allow_out_of_sequence_patches))
    table.add_row("Ignore deletions", str(config.policy.ignore_deletions))
    table.add_row("Clean database", str(config.policy.clean_db))
    table.add_row("Update sequences", str(config.policy.update_sequences))

    console.print(table)


_CATEGORIES = (
    ("regularly_updated_preprocessing", "Preprocessing"),
    ("regularly_added_or_modified", "Added or modified"),
    ("regularly_added_patch", "Patch (out of sequence)"),
    ("regularly_renamed", "Renamed"),
    ("regularly_deleted_repeatable", "Deleted repeatable"),
    ("regularly_updated_postprocessing", "Postprocessing"),
    ("ignored", "Ignored"),
    ("irregularly_updated", "Irregular"),
)


def _display_updates(updates: ScriptUpdates) -> None:
    if updates.is_empty:
        console.print("[green]✓[/green] No script updates, the database is up to date")
        return

    table = Table(title="Script Updates")
    table.add_column("Category", style="cyan")
    table.add_column("Update", style="magenta")
    table.add_column("Script")
    table.add_column("Renamed to")

    for attribute, label in _CATEGORIES:
        style = "red" if attribute == "irregularly_updated" else None
        for update in getattr(updates, attribute):
            table.add_row(
                label,
                update.update_type.value,
                update.script.file_name,
                update.renamed_to.file_name if update.renamed_to else "",
                style=style,
            )

    console.print(table)


def _display_update_result(result: UpdateResult) -> None:
    if result.is_up_to_date:
        console.print("[green]✓[/green] The database is up to date")
        return

    _display_updates(result.updates)

    if result.dry_run:
        console.print(f"\n[yellow]Dry run[/yellow] ({result.mode.value}), scripts that would run:")
        for script in result.planned_scripts:
            console.print(f"  {script.file_name}")
        return

    console.print(
        f"\n[green]✓[/green] Database updated ({result.mode.value}): "
        f"{result.script_count} scripts executed in {result.execution_time_ms:.0f}ms"
    )
    if result.cleaned_tables:
        console.print(f"Deleted the data of {len(result.cleaned_tables)} tables")
    if result.updated_sequences:
        console.print(f"Raised {len(result.updated_sequences)} sequences")


if __name__ == "__main__":
    main()
