"""FieldTrack CLI - bulk component import and milestone tooling.

Commands:
- init: Initialize database schema
- import: Import components from XLSX/CSV/JSON into a project
- seed-templates: Create the standard milestone templates for a project
- analyze-types: Preview template assignment per component type
- progress: Show a project's completion summary
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from fieldtrack.config import DatabaseNotConfiguredError, get_config
from fieldtrack.core.logging import configure_logging
from fieldtrack.db.connection import close_db, get_session, init_db
from fieldtrack.db.models import ProjectModel
from fieldtrack.ingestion.formats import FormatError, ingest_file
from fieldtrack.ingestion.normalizer import normalize_import_data
from fieldtrack.milestones.resolver import TemplatesUnavailableError, analyze_component_types
from fieldtrack.milestones.templates import ConfigurationError, ensure_project_templates
from fieldtrack.pipeline.orchestrator import import_file
from fieldtrack.pipeline.types import ImportOptions, ImportProgress, ImportResult
from fieldtrack.pipeline.validator import generate_remediation_report
from fieldtrack.reporting.progress import project_progress_summary

app = typer.Typer(
    name="fieldtrack",
    help="FieldTrack - Construction component milestone tracking",
    no_args_is_help=True,
)

console = Console()


@app.callback()
def main(
    log_level: str | None = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
):
    """Configure logging once for every command."""
    configure_logging(level=log_level or get_config().log_level, json_logs=get_config().json_logs)


def _print_progress(progress: ImportProgress) -> None:
    if progress.phase == "importing" and progress.batch:
        console.print(f"  Processing batch {progress.batch}/{progress.total_batches}")
    else:
        console.print(f"  {progress.phase}: {progress.processed}/{progress.total}")


def _print_result(result: ImportResult) -> None:
    table = Table(title="Import Summary" + (" (dry run)" if result.dry_run else ""))
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right", style="green")

    table.add_row("Total rows", str(result.total_rows))
    table.add_row("Processed", str(result.processed_rows))
    table.add_row("Successful", str(result.successful_rows))
    table.add_row("Created", str(result.created_rows))
    table.add_row("Updated", str(result.updated_rows))
    table.add_row("Errors", str(result.error_rows))
    table.add_row("Warnings", str(len(result.warnings)))
    console.print(table)

    for warning in result.warnings[:5]:
        console.print(f"  [yellow]⚠[/yellow] Row {warning.row}: {warning.message}", style="dim")
    if len(result.warnings) > 5:
        console.print(f"  ... and {len(result.warnings) - 5} more warnings", style="dim")


@app.command()
def init(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables"),
):
    """Initialize database schema."""
    try:
        db_config = get_config().db
    except DatabaseNotConfiguredError as e:
        console.print(f"[red]✗ {e.args[0]}[/red]")
        raise typer.Exit(1)
    console.print(f"[bold]Initializing database:[/bold] {db_config.url}")

    async def _init():
        try:
            if drop:
                console.print("[yellow]Dropping existing tables...[/yellow]")
            await init_db(drop=drop)
        finally:
            await close_db()

    asyncio.run(_init())
    console.print("[bold green]✓[/bold green] Database initialized")


@app.command(name="import")
def import_cmd(
    file_path: Path = typer.Argument(..., help="Component file (XLSX/CSV/JSON)"),
    project_id: str | None = typer.Option(None, "--project-id", help="Project ID to import into"),
    user_id: str | None = typer.Option(None, "--user-id", help="User ID recorded on completed milestones"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate without saving to database"),
    skip_duplicates: bool = typer.Option(False, "--skip-duplicates", help="Skip components that already exist"),
    update_existing: bool = typer.Option(False, "--update-existing", help="Update existing components"),
    allow_partial: bool = typer.Option(False, "--allow-partial", help="Continue on validation errors"),
):
    """Import components from a spreadsheet, CSV or JSON file."""
    if not project_id:
        console.print("[red]Error:[/red] --project-id is required")
        raise typer.Exit(1)

    console.print(f"[bold]Importing:[/bold] {file_path.name} -> project {project_id}")
    if dry_run:
        console.print("[yellow]DRY RUN MODE - No data will be saved[/yellow]")

    options = ImportOptions.from_config(
        dry_run=dry_run,
        skip_duplicates=skip_duplicates,
        update_existing=update_existing,
        allow_partial_success=allow_partial,
        progress_callback=_print_progress,
    )

    async def _import() -> ImportResult:
        try:
            return await import_file(file_path, project_id, options=options, user_id=user_id)
        finally:
            await close_db()

    try:
        result = asyncio.run(_import())
    except (
        FileNotFoundError,
        FormatError,
        TemplatesUnavailableError,
        ConfigurationError,
        DatabaseNotConfiguredError,
    ) as e:
        console.print(f"\n[red]✗ Import failed:[/red] {e}")
        raise typer.Exit(1)

    _print_result(result)

    if result.errors:
        console.print(generate_remediation_report(result.errors))

    if result.success:
        console.print("\n[bold green]✓ Import completed successfully![/bold green]")
        return

    console.print("\n[red]✗ Import completed with errors[/red]")
    raise typer.Exit(1)


@app.command(name="seed-templates")
def seed_templates_cmd(
    project_id: str | None = typer.Option(None, "--project-id", help="Project ID"),
):
    """Create the standard milestone templates for a project (idempotent)."""
    if not project_id:
        console.print("[red]Error:[/red] --project-id is required")
        raise typer.Exit(1)

    async def _seed() -> dict | None:
        try:
            async with get_session() as session:
                if await session.get(ProjectModel, project_id) is None:
                    return None
                return await ensure_project_templates(session, project_id)
        finally:
            await close_db()

    try:
        templates = asyncio.run(_seed())
    except ConfigurationError as e:
        console.print(f"[red]✗ Invalid template configuration:[/red] {e}")
        raise typer.Exit(1)

    if templates is None:
        console.print(f"[red]✗ Project {project_id} not found[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Milestone Templates ({project_id})")
    table.add_column("Template", style="cyan")
    table.add_column("Milestones", justify="right")
    table.add_column("Total Weight", justify="right", style="green")
    for template in templates.values():
        table.add_row(template.name, str(len(template.milestones)), f"{template.total_weight:g}%")
    console.print(table)


@app.command(name="analyze-types")
def analyze_types_cmd(
    file_path: Path = typer.Argument(..., help="Component file (XLSX/CSV/JSON)"),
):
    """Show component types in a file and the template each would receive."""
    imports = get_config().imports
    try:
        raw = ingest_file(file_path, max_file_size_mb=imports.max_file_size_mb, max_rows=imports.max_rows)
    except (FileNotFoundError, FormatError) as e:
        console.print(f"[red]✗ Cannot read file:[/red] {e}")
        raise typer.Exit(1)

    stats = analyze_component_types(normalize_import_data(raw).components)

    table = Table(title=f"Component Types ({file_path.name})")
    table.add_column("Type", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Template", style="green")
    table.add_column("Examples", style="dim")

    for type_tag, entry in sorted(stats.items(), key=lambda item: -item[1].count):
        table.add_row(type_tag, str(entry.count), entry.template, ", ".join(entry.examples))

    console.print(table)


@app.command()
def progress(
    project_id: str | None = typer.Option(None, "--project-id", help="Project ID"),
):
    """Show component counts by status and overall completion."""
    if not project_id:
        console.print("[red]Error:[/red] --project-id is required")
        raise typer.Exit(1)

    async def _progress():
        try:
            async with get_session() as session:
                return await project_progress_summary(session, project_id)
        finally:
            await close_db()

    summary = asyncio.run(_progress())

    table = Table(title=f"Progress ({project_id})")
    table.add_column("Status", style="cyan")
    table.add_column("Components", justify="right", style="green")
    for status, count in summary.to_dict()["by_status"].items():
        table.add_row(status, str(count))
    table.add_row("[bold]Total[/bold]", str(summary.total_components))
    console.print(table)
    console.print(f"Overall completion: [bold]{summary.overall_percent}%[/bold]")


if __name__ == "__main__":
    app()
