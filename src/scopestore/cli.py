"""Command-line interface for scopestore."""

import json
import logging
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import CONFIG_FILENAME, Config
from .errors import ConfigurationError, SchemaError
from .policy import make_policy
from .store import OptionsStore

# Exit codes
EXIT_OK = 0
EXIT_VALIDATION_ERROR = 1
EXIT_BAD_USAGE = 2
EXIT_WRITE_DECLINED = 3
EXIT_IO_ERROR = 4

app = typer.Typer()
console = Console()

DEFAULT_CONFIG = """# scopestore configuration

[store]
# Name of the row holding every option
main_key = "{main_key}"

# Storage scope: site, network, blog or user
scope = "site"
# blog_id = 2
# user_id = 7
# user_storage = "meta"
# user_global = false

# Autoload hint applied when the row is first created (site scope only)
autoload = true

[storage]
# Backend driver: filesystem or memory
driver = "filesystem"
root_path = ".scopestore"

[policy]
# Policy driver: operations or whitelist
driver = "operations"
# allow = ["stage_option", "stage_options", "save_all"]
deny = []

[schema.enabled]
type = "bool"
default = true

[schema.port]
type = "int"
min = 1
max = 65535
default = 80

[schema.mode]
type = "choice"
choices = ["simple", "advanced"]
sanitize = ["strip", "lower"]
default = "simple"

[logging]
level = "WARNING"
"""


def setup_logging(level: str) -> None:
    """Route library logging through rich."""
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def load_config(path: Path | None) -> Config:
    """Load the project configuration or exit with a usage error."""
    config_path = path / CONFIG_FILENAME if path else Path.cwd() / CONFIG_FILENAME
    if not config_path.exists():
        console.print(f"[red]scopestore project not found at {config_path.parent}[/red]")
        raise typer.Exit(EXIT_BAD_USAGE)

    try:
        config = Config(config_path)
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(EXIT_BAD_USAGE) from e

    setup_logging(config.log_level)
    return config


def get_store(config: Config) -> OptionsStore:
    """Build the store described by configuration."""
    try:
        return OptionsStore(
            config.main_key,
            config.make_backend(),
            config.storage_context,
            config.autoload,
            policy=make_policy(config),
            schema=config.schema_rules(),
            config=config,
        )
    except (ConfigurationError, ValueError) as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(EXIT_BAD_USAGE) from e


def parse_value(raw: str, as_json: bool) -> Any:
    if not as_json:
        return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON value: {e}[/red]")
        raise typer.Exit(EXIT_BAD_USAGE) from e


@app.command()
def init(
    path: Path | None = typer.Option(
        None, "--path", help="Path to initialize (default: current directory)"
    ),
    main_key: str = typer.Option("options", "--main-key", help="Main row name"),
    force: bool = typer.Option(
        False, "--force", help="Overwrite existing configuration"
    ),
) -> None:
    """Initialize scopestore in the current directory."""
    try:
        target_path = path or Path.cwd()
        config_path = target_path / CONFIG_FILENAME
        storage_path = target_path / ".scopestore"

        if config_path.exists() and not force:
            console.print(
                "[red]scopestore already initialized. Use --force to overwrite.[/red]"
            )
            raise typer.Exit(EXIT_BAD_USAGE)

        storage_path.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(DEFAULT_CONFIG.format(main_key=main_key))

        console.print(f"[green]scopestore initialized in {target_path}[/green]")
        console.print(f"[blue]Configuration: {config_path}[/blue]")
        console.print(f"[blue]Storage: {storage_path}[/blue]")

    except typer.Exit:
        # Re-raise typer.Exit exceptions (preserve exit codes)
        raise
    except OSError as e:
        console.print(f"[red]Failed to initialize: {e}[/red]")
        raise typer.Exit(EXIT_IO_ERROR) from e


@app.command()
def show(
    path: Path | None = typer.Option(None, "--path", help="Path to scopestore project"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show every option in the configured row."""
    try:
        config = load_config(path)
        store = get_store(config)
        options = store.get_options()

        if json_output:
            console.print_json(json.dumps(options, sort_keys=True, default=str))
            return

        table = Table(title=f"Options: {store.main_key} ({store.storage_context.cache_key})")
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="white")
        table.add_column("Schema", style="green")

        for key in sorted(options):
            table.add_row(
                key,
                json.dumps(options[key], default=str),
                "yes" if store.has_schema_key(key) else "no",
            )

        console.print(table)
        console.print(f"\nTotal: {len(options)} options")

    except typer.Exit:
        raise
    except SchemaError as e:
        console.print(f"[red]Stored options do not match the schema: {e}[/red]")
        raise typer.Exit(EXIT_VALIDATION_ERROR) from e
    except OSError as e:
        console.print(f"[red]Failed to read options: {e}[/red]")
        raise typer.Exit(EXIT_IO_ERROR) from e


@app.command()
def get(
    key: str = typer.Argument(..., help="Option key"),
    path: Path | None = typer.Option(None, "--path", help="Path to scopestore project"),
) -> None:
    """Print one option as JSON."""
    try:
        config = load_config(path)
        store = get_store(config)

        if not store.has_option(key):
            console.print(f"[red]Option '{store.normalize_key(key)}' not set[/red]")
            raise typer.Exit(EXIT_VALIDATION_ERROR)

        console.print_json(json.dumps(store.get_option(key), default=str))

    except typer.Exit:
        raise
    except SchemaError as e:
        console.print(f"[red]Stored options do not match the schema: {e}[/red]")
        raise typer.Exit(EXIT_VALIDATION_ERROR) from e
    except OSError as e:
        console.print(f"[red]Failed to read option: {e}[/red]")
        raise typer.Exit(EXIT_IO_ERROR) from e


@app.command("set")
def set_option(
    key: str = typer.Argument(..., help="Option key"),
    value: str = typer.Argument(..., help="New value"),
    path: Path | None = typer.Option(None, "--path", help="Path to scopestore project"),
    as_json: bool = typer.Option(False, "--json", help="Parse VALUE as JSON"),
    replace: bool = typer.Option(
        False, "--replace", help="Replace the stored row instead of merging"
    ),
) -> None:
    """Stage and commit one option."""
    try:
        config = load_config(path)
        store = get_store(config)

        if not store.stage_option(key, parse_value(value, as_json)):
            console.print(f"[yellow]Write to '{key}' declined[/yellow]")
            raise typer.Exit(EXIT_WRITE_DECLINED)

        committed = store.commit_replace() if replace else store.commit_merge()
        if not committed:
            console.print("[red]Failed to persist options[/red]")
            raise typer.Exit(EXIT_WRITE_DECLINED)

        normalized = store.normalize_key(key)
        console.print(
            f"[green]{normalized} = {json.dumps(store.get_option(normalized), default=str)}[/green]"
        )

    except typer.Exit:
        raise
    except SchemaError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_VALIDATION_ERROR) from e
    except OSError as e:
        console.print(f"[red]Failed to write option: {e}[/red]")
        raise typer.Exit(EXIT_IO_ERROR) from e


@app.command()
def delete(
    key: str = typer.Argument(..., help="Option key"),
    path: Path | None = typer.Option(None, "--path", help="Path to scopestore project"),
) -> None:
    """Delete one option and persist the row."""
    try:
        config = load_config(path)
        store = get_store(config)

        if not store.has_option(key):
            console.print(f"[red]Option '{store.normalize_key(key)}' not set[/red]")
            raise typer.Exit(EXIT_VALIDATION_ERROR)

        if not store.delete_option(key):
            console.print(f"[yellow]Delete of '{key}' declined[/yellow]")
            raise typer.Exit(EXIT_WRITE_DECLINED)

        console.print(f"[green]Deleted {store.normalize_key(key)}[/green]")

    except typer.Exit:
        raise
    except SchemaError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_VALIDATION_ERROR) from e
    except OSError as e:
        console.print(f"[red]Failed to delete option: {e}[/red]")
        raise typer.Exit(EXIT_IO_ERROR) from e


@app.command()
def clear(
    path: Path | None = typer.Option(None, "--path", help="Path to scopestore project"),
    yes: bool = typer.Option(False, "--yes", help="Do not ask for confirmation"),
) -> None:
    """Remove every option and persist the empty row."""
    try:
        config = load_config(path)
        store = get_store(config)

        if not yes and not typer.confirm(f"Clear every option in '{store.main_key}'?"):
            raise typer.Exit(EXIT_OK)

        if not store.clear():
            console.print("[yellow]Clear declined[/yellow]")
            raise typer.Exit(EXIT_WRITE_DECLINED)

        console.print(f"[green]Cleared {store.main_key}[/green]")

    except typer.Exit:
        raise
    except OSError as e:
        console.print(f"[red]Failed to clear options: {e}[/red]")
        raise typer.Exit(EXIT_IO_ERROR) from e


@app.command()
def seed(
    path: Path | None = typer.Option(None, "--path", help="Path to scopestore project"),
) -> None:
    """Create the row from schema defaults when it does not exist yet."""
    try:
        config = load_config(path)
        store = get_store(config)

        defaults = {
            key: rule["default"]
            for key, rule in config.schema_rules().items()
            if "default" in rule
        }
        if not defaults:
            console.print("[red]No schema defaults configured[/red]")
            raise typer.Exit(EXIT_BAD_USAGE)

        if store.seed_if_missing(defaults):
            console.print(
                f"[green]Seeded {store.main_key} with {len(defaults)} defaults[/green]"
            )
        else:
            console.print(f"[yellow]{store.main_key} already exists or seeding was declined[/yellow]")

    except typer.Exit:
        raise
    except SchemaError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_VALIDATION_ERROR) from e
    except OSError as e:
        console.print(f"[red]Failed to seed options: {e}[/red]")
        raise typer.Exit(EXIT_IO_ERROR) from e


@app.command()
def doctor(
    path: Path | None = typer.Option(None, "--path", help="Path to scopestore project")
) -> None:
    """Check scopestore configuration and storage."""
    try:
        project_path = path or Path.cwd()
        config_path = project_path / CONFIG_FILENAME

        checks = []

        config = None
        if config_path.exists():
            try:
                config = Config(config_path)
                checks.append(("Configuration file", True, str(config_path)))
            except ValueError as e:
                checks.append(("Configuration file", False, str(e)))
        else:
            checks.append(("Configuration file", False, f"{CONFIG_FILENAME} not found"))

        if config is not None:
            try:
                context = config.storage_context
                checks.append(("Storage context", True, context.cache_key))
            except ConfigurationError as e:
                checks.append(("Storage context", False, str(e)))

            try:
                rules = config.schema_rules()
                checks.append(("Schema", True, f"{len(rules)} keys"))
            except ConfigurationError as e:
                checks.append(("Schema", False, str(e)))

            try:
                policy = make_policy(config)
                checks.append(("Write policy", True, repr(policy)))
            except ConfigurationError as e:
                checks.append(("Write policy", False, str(e)))

            if config.storage_driver == "filesystem":
                root = config.storage_root
                checks.append(("Storage directory", root.exists(), str(root)))

        table = Table(title="scopestore Doctor")
        table.add_column("Check", style="white")
        table.add_column("Status", style="green")
        table.add_column("Details", style="blue")

        for check_name, status, details in checks:
            status_icon = "[green]✓[/green]" if status else "[red]✗[/red]"
            table.add_row(check_name, status_icon, details)

        console.print(table)

        all_good = all(status for _, status, _ in checks)
        if all_good:
            console.print("\n[green]scopestore is healthy![/green]")
        else:
            console.print(
                "\n[yellow]Some issues found. Run 'scopestore init' to fix.[/yellow]"
            )
            raise typer.Exit(EXIT_VALIDATION_ERROR)

    except typer.Exit:
        # Re-raise typer.Exit exceptions (preserve exit codes)
        raise
    except OSError as e:
        console.print(f"[red]Doctor check failed: {e}[/red]")
        raise typer.Exit(EXIT_IO_ERROR) from e


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
