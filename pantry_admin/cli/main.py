"""
CLI interface for Pantry Admin.

Provides command-line access to the administrative operations.
"""

import asyncio
import sys
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from pantry_admin.config.loader import AdminConfig, default_config, load_admin_config
from pantry_admin.config.logging_config import setup_logging
from pantry_admin.core.admin import AdminService
from pantry_admin.core.authorization import IdentityClaims
from pantry_admin.core.backfill import DirectoryIdentityProvider, IdentityProvider
from pantry_admin.core.errors import Unauthorized
from pantry_admin.core.stats import UserRecord
from pantry_admin.demo.seed_demo_data import seed_demo_data
from pantry_admin.storage.db import DEFAULT_DB_PATH
from pantry_admin.storage.repository import get_store, initialize_schema

app = typer.Typer()
console = Console()

# Exit codes - partial data is a non-failing warning (0)
EXIT_CODE_PASS = 0
EXIT_CODE_WARN = 0  # Non-failing warning
EXIT_CODE_FAIL = 1  # Failing error

DbOption = typer.Option(DEFAULT_DB_PATH, "--db", envvar="PANTRY_ADMIN_DB", help="Path to the record store database")
ConfigOption = typer.Option(None, "--config", "-c", envvar="PANTRY_ADMIN_CONFIG", help="Path to admin YAML config")
AsOption = typer.Option(None, "--as", envvar="PANTRY_ADMIN_EMAIL", help="Email of the administrator running the command")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level")
):
    """Pantry Admin CLI."""
    setup_logging(log_level)
    if ctx.invoked_subcommand is None:
        console.print("Pantry Admin - Use --help to see available commands")


@app.command()
def status():
    """Check that Pantry Admin is installed."""
    console.print("[green]✓[/] Pantry Admin is installed")


@app.command()
def init(db: str = DbOption):
    """Initialize the record store database."""
    try:
        initialize_schema(db)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("seed-demo")
def seed_demo(db: str = DbOption):
    """Insert demo records for a few users."""
    try:
        count = seed_demo_data(db)
        console.print(f"[green]✓[/] Inserted {count} demo records")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error seeding demo data:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def stats(db: str = DbOption, config: Optional[str] = ConfigOption, as_email: Optional[str] = AsOption):
    """Show system-wide statistics."""
    service = _build_service(config, db)
    result = _run(service.system_stats(_claims(as_email)))

    table = Table(title="System Statistics")
    table.add_column("Collection")
    table.add_column("Records", justify="right")
    for name in service.inventory.names:
        if name in result.collection_totals:
            table.add_row(name, str(result.collection_totals[name]))
        else:
            table.add_row(name, "[red]unavailable[/]")
    console.print(table)
    console.print(f"[bold]Total users:[/bold] {result.total_users}")
    console.print(f"[dim]{result.summary()}[/]")

    _report_partial([f.describe() for f in result.failures])
    sys.exit(EXIT_CODE_PASS if result.is_complete else EXIT_CODE_WARN)


@app.command()
def users(db: str = DbOption, config: Optional[str] = ConfigOption, as_email: Optional[str] = AsOption):
    """List every user with record counts and estimated AI cost."""
    service = _build_service(config, db)
    report = _run(service.all_user_stats(_claims(as_email)))

    if not report.users:
        console.print("\n[bold yellow]No users found[/]")

    table = Table(title="Users")
    table.add_column("User")
    table.add_column("Username")
    table.add_column("Email")
    table.add_column("Records", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Est. cost", justify="right")
    for user in report.users:
        table.add_row(
            user.id,
            user.display_name or "-",
            user.contact or "-",
            str(user.total_records) + (" *" if user.is_partial else ""),
            str(user.usage.total_tokens) if user.usage else "-",
            _format_cost(user),
        )
    if report.users:
        console.print(table)

    _report_partial([f.describe() for f in report.failures])
    sys.exit(EXIT_CODE_WARN if report.is_partial else EXIT_CODE_PASS)


@app.command()
def user(
    user_id: str = typer.Argument(..., help="User identifier"),
    db: str = DbOption,
    config: Optional[str] = ConfigOption,
    as_email: Optional[str] = AsOption
):
    """Show statistics for one user."""
    service = _build_service(config, db)
    record = _run(service.user_stats(_claims(as_email), user_id))

    console.print(f"\n[bold]User:[/bold] {record.id}")
    console.print(f"Username: {record.display_name or '-'}")
    console.print(f"Email: {record.contact or '-'}")

    table = Table()
    table.add_column("Collection")
    table.add_column("Records", justify="right")
    for name, count in record.counts.items():
        table.add_row(name, "[red]unavailable[/]" if name in record.unavailable else str(count))
    console.print(table)

    if record.usage is not None:
        console.print(
            f"AI usage: {record.usage.request_count} requests, "
            f"{record.usage.prompt_tokens} prompt / {record.usage.completion_tokens} completion tokens"
        )
        console.print(f"Estimated cost: {_format_cost(record)}")

    _report_partial([f.describe() for f in record.failures])
    sys.exit(EXIT_CODE_WARN if record.is_partial else EXIT_CODE_PASS)


@app.command("delete-user")
def delete_user(
    user_id: str = typer.Argument(..., help="User identifier"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    db: str = DbOption,
    config: Optional[str] = ConfigOption,
    as_email: Optional[str] = AsOption
):
    """Permanently delete all data for a user."""
    if not yes:
        typer.confirm(
            f"Delete all data for user {user_id}? This action cannot be undone.",
            abort=True
        )

    service = _build_service(config, db)
    result = _run(service.delete_user(_claims(as_email), user_id))

    table = Table(title=f"Deletion of {user_id}")
    table.add_column("Collection")
    table.add_column("Attempted", justify="right")
    table.add_column("Deleted", justify="right")
    table.add_column("Failed", justify="right")
    for name, outcome in result.per_collection.items():
        table.add_row(name, str(outcome.attempted), str(outcome.succeeded), str(outcome.failed))
    console.print(table)

    if result.overall_succeeded:
        console.print(f"[green]✓[/] {result.summary()}")
        sys.exit(EXIT_CODE_PASS)

    console.print(f"[red]✗[/] {result.summary()} - re-run the command to retry")
    for failure in result.failures:
        console.print(f"  [red]•[/] {failure.describe()}")
    sys.exit(EXIT_CODE_FAIL)


@app.command("populate-attributes")
def populate_attributes(
    user_ids: List[str] = typer.Argument(..., help="User identifiers to backfill"),
    directory: str = typer.Option(..., "--directory", "-d", help="YAML mapping of user ids to emails"),
    db: str = DbOption,
    config: Optional[str] = ConfigOption,
    as_email: Optional[str] = AsOption
):
    """Populate missing emails and usernames from the identity directory."""
    try:
        provider = DirectoryIdentityProvider.from_yaml(directory)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    service = _build_service(config, db, provider)
    result = _run(service.populate_missing_identity_attributes(_claims(as_email), user_ids))

    table = Table(title="Attribute backfill")
    table.add_column("User")
    table.add_column("Status")
    table.add_column("Detail")
    for detail in result.details:
        table.add_row(detail.user_id, detail.status.value, detail.error or detail.contact or "")
    console.print(table)
    console.print(f"Updated {result.updated}, errors {result.errors}, processed {result.processed}")
    sys.exit(EXIT_CODE_WARN if result.errors else EXIT_CODE_PASS)


def _build_service(
    config_path: Optional[str],
    db_path: str,
    provider: Optional[IdentityProvider] = None
) -> AdminService:
    try:
        config: AdminConfig = load_admin_config(config_path) if config_path else default_config()
    except Exception as e:
        console.print(f"[red]Error loading config:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    if not config.admin_emails:
        console.print(
            "[red]No administrator emails configured:[/] pass --config with an "
            "admin_emails list (see admin.example.yaml)"
        )
        sys.exit(EXIT_CODE_FAIL)
    return AdminService(config, get_store(db_path), provider)


def _claims(email: Optional[str]) -> IdentityClaims:
    return IdentityClaims(email=email)


def _run(coro):
    """Run an admin coroutine, turning rejections and crashes into exit codes."""
    try:
        return asyncio.run(coro)
    except Unauthorized:
        console.print("[red]Not authorized:[/] pass an administrator email with --as")
        sys.exit(EXIT_CODE_FAIL)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _format_cost(record: UserRecord) -> str:
    """Format an estimated cost, marking approximate figures with '~'."""
    if record.cost is None:
        return "-"
    prefix = "~" if record.cost.approximate else ""
    return f"{prefix}${record.cost.rounded():,.4f}"


def _report_partial(messages: List[str]) -> None:
    if not messages:
        return
    console.print(f"\n[bold yellow]Some data failed to load ({len(messages)} issue(s)); partial data is shown above.[/]")
    for message in messages:
        console.print(f"  [yellow]•[/] {message}")


if __name__ == "__main__":
    app()
