#!/usr/bin/env python3
"""
Command-line interface for the Vivarium toolkit.

Provides configuration checks, schema setup, trash maintenance and audit
log reporting. Commands run as the system actor.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import pandas as pd  # type: ignore[import-untyped]
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .access_control import SOFT_DELETABLE, SYSTEM_ACTOR, EntityType
from .audit_trail import AuditLogEntry, AuditLogger, AuditQuery, SQLAuditStorage
from .config import get_config
from .database import create_db_engine, create_session_factory, init_db
from .inventory import build_repositories
from .soft_delete import RetentionSweeper, SoftDeleteService

console = Console()
logger = logging.getLogger(__name__)

ENTITY_CHOICES = [e.value for e in SOFT_DELETABLE]


def _session_factory() -> Any:
    config = get_config()
    return create_session_factory(create_db_engine(config.database_url, config.database_echo))


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Vivarium - laboratory animal and cage inventory tools."""
    config = get_config()
    logging.basicConfig(
        level=config.log_level.value,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if ctx.invoked_subcommand is None:
        console.print(
            Panel.fit(
                f"[bold blue]Vivarium Toolkit[/bold blue] v{__version__}\n"
                "[dim]Laboratory animal and cage inventory[/dim]\n\n"
                "Use [bold]vivarium --help[/bold] to see available commands.",
                border_style="blue",
            )
        )


@cli.group()
def config() -> None:
    """Inspect toolkit configuration."""
    pass


@config.command("show")
@click.option("--format", type=click.Choice(["table", "json", "yaml"]), default="table")
def config_show(format: str) -> None:
    """Display current configuration."""
    try:
        config_dict = get_config().to_dict()

        if format == "json":
            console.print_json(data=config_dict)
        elif format == "yaml":
            import yaml  # type: ignore[import-untyped]

            console.print(yaml.dump(config_dict, default_flow_style=False))
        else:
            table = Table(title="Vivarium Configuration", show_header=True)
            table.add_column("Setting", style="cyan")
            table.add_column("Value", style="green")

            categories = {
                "General": ["application_name", "environment", "log_level"],
                "Database": ["database_url", "database_echo"],
                "Trash": ["retention_days", "expiring_soon_days"],
                "QR Codes": ["qr_base_url", "blank_qr_max_batch"],
                "Audit Trail": ["audit_enabled", "audit_query_limit"],
                "Listing": ["default_page_size"],
            }

            for category, settings in categories.items():
                table.add_row(f"[bold]{category}[/bold]", "")
                for setting in settings:
                    value = config_dict.get(setting)
                    if isinstance(value, bool):
                        value = "✓" if value else "✗"
                    table.add_row(f"  {setting}", str(value))

            console.print(table)

    except Exception as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)


@config.command("validate")
def config_validate() -> None:
    """Validate current configuration."""
    try:
        config = get_config()
    except Exception as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)

    warnings = []
    if config.environment == "production" and config.database_url.startswith("sqlite"):
        warnings.append("SQLite is not recommended for production")
    if config.environment == "production" and "localhost" in config.qr_base_url:
        warnings.append("QR codes will embed a localhost URL")
    if not config.audit_enabled:
        warnings.append("Audit logging is disabled")
    if config.expiring_soon_days >= config.retention_days:
        warnings.append("Every trash item will be flagged as expiring soon")

    console.print("[green]✓ Configuration is valid[/green]")
    if warnings:
        console.print("\n[yellow]⚠ Warnings:[/yellow]")
        for warning in warnings:
            console.print(f"  [yellow]• {warning}[/yellow]")


@cli.group()
def db() -> None:
    """Database management."""
    pass


@db.command("init")
@click.option("--database-url", help="Override the configured database URL")
def db_init(database_url: Optional[str]) -> None:
    """Create all tables."""
    try:
        engine = create_db_engine(database_url)
        init_db(engine)
        console.print(
            f"[green]✓[/green] Database initialized at "
            f"{engine.url.render_as_string(hide_password=True)}"
        )
    except Exception as e:
        console.print(f"[red]Error initializing database: {e}[/red]")
        sys.exit(1)


@cli.group()
def trash() -> None:
    """Trash inspection and retention cleanup."""
    pass


@trash.command("list")
@click.option(
    "--entity",
    type=click.Choice(ENTITY_CHOICES),
    help="Only list this entity type",
)
@click.option("--company", help="Only list records of this company")
def trash_list(entity: Optional[str], company: Optional[str]) -> None:
    """List soft-deleted records and their purge countdown."""
    entity_types = [EntityType(entity)] if entity else list(SOFT_DELETABLE)
    try:
        with _session_factory()() as session:
            service = SoftDeleteService(
                session,
                AuditLogger(SQLAuditStorage(session)),
                build_repositories(session),
            )
            items = [
                item
                for entity_type in entity_types
                for item in service.list_trash(SYSTEM_ACTOR, entity_type, company)
            ]
    except Exception as e:
        console.print(f"[red]Error listing trash: {e}[/red]")
        sys.exit(1)

    if not items:
        console.print("[yellow]Trash is empty[/yellow]")
        return

    table = Table(title=f"Trash ({len(items)} records)")
    table.add_column("Type", style="cyan")
    table.add_column("ID", style="dim")
    table.add_column("Company", style="blue")
    table.add_column("Deleted At", style="green")
    table.add_column("Deleted By")
    table.add_column("Days Left", justify="right")

    for item in items:
        days = str(item.days_left)
        if item.expiring_soon:
            days = f"[red]{days}[/red]"
        table.add_row(
            item.entity_type,
            item.record["id"],
            str(item.record.get("company_id") or "-"),
            item.deleted_at.strftime("%Y-%m-%d %H:%M:%S"),
            item.deleted_by,
            days,
        )

    console.print(table)


@trash.command("cleanup")
@click.option("--dry-run", is_flag=True, help="Show what would be purged")
def trash_cleanup(dry_run: bool) -> None:
    """Permanently delete records older than the retention window."""
    config = get_config()
    try:
        with _session_factory()() as session:
            sweeper = RetentionSweeper(
                session,
                AuditLogger(SQLAuditStorage(session), config),
                build_repositories(session),
                config,
            )
            if dry_run:
                expired = sweeper.find_expired()
                counts = {table: len(ids) for table, ids in expired.items()}
            else:
                with Progress(
                    SpinnerColumn(),
                    TextColumn("[progress.description]{task.description}"),
                    console=console,
                ) as progress:
                    progress.add_task("Purging expired records...", total=None)
                    counts = sweeper.cleanup()
    except Exception as e:
        console.print(f"[red]Error during cleanup: {e}[/red]")
        sys.exit(1)

    title = "Records eligible for purge" if dry_run else "Purged records"
    table = Table(title=f"{title} (retention {config.retention_days} days)")
    table.add_column("Entity", style="cyan")
    table.add_column("Count", style="green", justify="right")
    for table_name, count in counts.items():
        table.add_row(table_name, str(count))
    console.print(table)

    total = sum(counts.values())
    if dry_run:
        console.print(f"[yellow]Dry run: {total} records would be purged[/yellow]")
    else:
        console.print(f"[green]✓ Purged {total} records[/green]")


@cli.group()
def audit() -> None:
    """Audit log search and export."""
    pass


def _query_entries(query: AuditQuery) -> List[AuditLogEntry]:
    with _session_factory()() as session:
        return SQLAuditStorage(session).query(query)


def _entries_frame(entries: List[AuditLogEntry]) -> "pd.DataFrame":
    return pd.DataFrame([entry.model_dump(mode="json") for entry in entries])


@audit.command("search")
@click.option("--table", "table_name", help="Filter by table name")
@click.option("--record", "record_id", help="Filter by record ID")
@click.option("--action", help="Filter by action")
@click.option("--company", help="Filter by company ID")
@click.option("--user", help="Filter by user ID")
@click.option("--start-date", type=click.DateTime(), help="Start date for search")
@click.option("--end-date", type=click.DateTime(), help="End date for search")
@click.option("--limit", type=int, default=100, help="Maximum results to return")
@click.option("--format", type=click.Choice(["table", "json", "csv"]), default="table")
def audit_search(
    table_name: Optional[str],
    record_id: Optional[str],
    action: Optional[str],
    company: Optional[str],
    user: Optional[str],
    start_date: Optional[Any],
    end_date: Optional[Any],
    limit: int,
    format: str,
) -> None:
    """Search audit log entries."""
    try:
        query = AuditQuery(
            table_name=table_name,
            record_id=record_id,
            company_id=company,
            user_ids=[user] if user else None,
            actions=[action.upper()] if action else None,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
        )
        entries = _query_entries(query)
    except Exception as e:
        console.print(f"[red]Error searching audit log: {e}[/red]")
        sys.exit(1)

    if not entries:
        console.print("[yellow]No audit entries found matching criteria[/yellow]")
        return

    if format == "json":
        console.print_json(data=[entry.model_dump(mode="json") for entry in entries])
    elif format == "csv":
        click.echo(_entries_frame(entries).to_csv(index=False))
    else:
        table = Table(title=f"Audit Log Entries (showing {len(entries)} of {limit})")
        table.add_column("Timestamp", style="cyan")
        table.add_column("User", style="green")
        table.add_column("Action", style="yellow")
        table.add_column("Record", style="blue")
        table.add_column("Company", style="dim")

        for entry in entries:
            table.add_row(
                entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                entry.user_id or "system",
                str(entry.action),
                f"{entry.table_name}:{entry.record_id}",
                entry.company_id or "-",
            )

        console.print(table)


@audit.command("export")
@click.option("--start-date", type=click.DateTime(), help="Start date for export")
@click.option("--end-date", type=click.DateTime(), help="End date for export")
@click.option("--company", help="Only export entries of this company")
@click.option("--output", type=click.Path(), required=True, help="Output file path")
@click.option("--format", type=click.Choice(["json", "csv", "excel"]), default="csv")
def audit_export(
    start_date: Optional[Any],
    end_date: Optional[Any],
    company: Optional[str],
    output: str,
    format: str,
) -> None:
    """Export audit log entries for reporting."""
    try:
        entries = _query_entries(
            AuditQuery(
                start_date=start_date,
                end_date=end_date,
                company_id=company,
                sort_desc=False,
                limit=1000,
            )
        )
        df = _entries_frame(entries)

        output_path = Path(output)
        if format == "json":
            df.to_json(output_path, orient="records", indent=2)
        elif format == "excel":
            if "changes" in df:
                df["changes"] = df["changes"].astype(str)
            df.to_excel(output_path, index=False, engine="openpyxl")
        else:
            df.to_csv(output_path, index=False)
    except Exception as e:
        console.print(f"[red]Error exporting audit log: {e}[/red]")
        sys.exit(1)

    console.print(f"[green]✓ Exported {len(entries)} audit entries to {output_path}[/green]")


@cli.command()
def doctor() -> None:
    """Run diagnostic checks on the toolkit installation."""
    console.print("[bold]Running Vivarium diagnostics...[/bold]\n")

    results: Dict[str, bool] = {}

    try:
        config = get_config()
        console.print("[green]✓[/green] Configuration loaded successfully")
        results["config"] = True
    except Exception as e:
        console.print(f"[red]✗[/red] Configuration error: {e}")
        sys.exit(1)

    try:
        from sqlalchemy import inspect, text

        engine = create_db_engine(config.database_url)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        console.print("[green]✓[/green] Database connection successful")
        results["database"] = True

        missing = [
            name
            for name in [e.value for e in SOFT_DELETABLE] + ["companies", "audit_logs"]
            if name not in inspect(engine).get_table_names()
        ]
        if missing:
            console.print(
                f"[yellow]⚠[/yellow] Missing tables: {', '.join(missing)} "
                "(run 'vivarium db init')"
            )
            results["schema"] = False
        else:
            console.print("[green]✓[/green] Database schema present")
            results["schema"] = True
    except Exception as e:
        console.print(f"[red]✗[/red] Database connection failed: {e}")
        results["database"] = False

    passed = sum(1 for ok in results.values() if ok)
    failed = len(results) - passed
    console.print("\n[bold]Summary:[/bold]")
    console.print(f"  Checks passed: [green]{passed}[/green]")
    console.print(f"  Checks failed: [red]{failed}[/red]")

    if failed:
        console.print("\n[yellow]⚠ Some issues detected - review output above[/yellow]")
        sys.exit(1)
    console.print("\n[green]✓ All systems operational[/green]")


if __name__ == "__main__":
    cli()
