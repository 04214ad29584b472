"""
CLI interface for LLM Tracker.

Provides command-line access to tracking, reporting and administration.
"""

import logging
import sqlite3
import sys
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from llm_tracker.config.loader import TrackerConfig, load_config
from llm_tracker.core.analytics import MAX_WINDOW_DAYS, UsageBreakdown, summarize_usage
from llm_tracker.core.errors import TrackerError
from llm_tracker.core.rates import Provider
from llm_tracker.core.tracking import track_usage
from llm_tracker.demo.seed_demo_data import seed_demo_data
from llm_tracker.storage.repository import get_repository, initialize_schema

app = typer.Typer()
org_app = typer.Typer(help="Manage organizations.")
project_app = typer.Typer(help="Manage projects.")
app.add_typer(org_app, name="org")
app.add_typer(project_app, name="project")

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


def setup_logging(level: str = "WARNING") -> None:
    """Route log records through Rich on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _config(ctx: typer.Context) -> TrackerConfig:
    return ctx.obj


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


def _format_currency(amount: float) -> str:
    """Format currency with symbol; small amounts keep more precision."""
    if 0 < abs(amount) < 0.01:
        return f"${amount:,.6f}"
    return f"${amount:,.2f}"


def _format_number(value: float) -> str:
    """Abbreviate large counts (1.2K, 3.4M)."""
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return str(value)


def _format_change(percent: float) -> str:
    return f"{'+' if percent > 0 else ''}{percent:,.1f}%"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML settings file"
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Override the configured log level"
    ),
):
    """LLM Tracker CLI."""
    try:
        config = load_config(config_path)
    except (OSError, ValueError) as e:
        _fail(f"Invalid configuration: {e}")
    setup_logging(log_level or config.log_level)
    ctx.obj = config

    if ctx.invoked_subcommand is None:
        console.print("LLM Tracker - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the LLM Tracker database."""
    config = _config(ctx)
    try:
        initialize_schema(config.database_path)
    except sqlite3.Error as e:
        _fail(f"Could not initialize database: {e}")
    console.print(f"[green]✓[/] Database initialized at {config.database_path}")


@app.command()
def status(ctx: typer.Context):
    """Show the active settings."""
    config = _config(ctx)
    table = config.rate_table()
    model_count = sum(1 for _ in table.entries())
    console.print(f"Database: {config.database_path}")
    console.print(f"Default currency: {config.default_currency}")
    console.print(f"Rate table: {config.rates_file or 'built-in'} ({model_count} models)")


@app.command()
def rates(
    ctx: typer.Context,
    provider: Optional[str] = typer.Option(
        None,
        "--provider",
        "-p",
        help="Only show models of this provider"
    ),
):
    """List the per-1K-token rates of every known model."""
    config = _config(ctx)
    if provider is not None and provider not in {p.value for p in Provider}:
        _fail(f"Unknown provider: {provider}")

    output = Table(title=f"Model rates ({config.default_currency} per 1K tokens)")
    output.add_column("Provider")
    output.add_column("Model")
    output.add_column("Input", justify="right")
    output.add_column("Output", justify="right")
    for entry_provider, model, rate in config.rate_table().entries():
        if provider is None or entry_provider.value == provider:
            output.add_row(entry_provider.value, model, f"{rate.input_rate:g}", f"{rate.output_rate:g}")
    console.print(output)


@app.command()
def track(
    ctx: typer.Context,
    model: str = typer.Argument(..., help="Model identifier, e.g. gpt-4o"),
    api_key: str = typer.Option(..., "--api-key", "-k", help="Project key"),
    prompt_tokens: int = typer.Option(..., "--prompt-tokens", help="Input token count"),
    completion_tokens: int = typer.Option(..., "--completion-tokens", help="Output token count"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="Provider; derived from model if omitted"),
    currency: Optional[str] = typer.Option(None, "--currency", help="Currency code"),
):
    """Record one LLM call against a project."""
    config = _config(ctx)
    payload = {
        "model": model,
        "api_key": api_key,
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "provider": provider,
        "currency": currency,
    }
    try:
        record = track_usage(
            payload,
            repository=get_repository(config.database_path),
            table=config.rate_table(),
            default_currency=config.default_currency,
        )
    except TrackerError as e:
        _fail(str(e))

    console.print(f"[green]✓[/] Tracked {record.provider}/{record.model} ({record.id})")
    console.print(f"Tokens: {record.prompt_tokens} in / {record.completion_tokens} out / {record.total_tokens} total")
    console.print(
        f"Cost: {_format_currency(record.input_cost)} in + "
        f"{_format_currency(record.output_cost)} out = {_format_currency(record.total_cost)} {record.currency}"
    )


@app.command()
def usage(
    ctx: typer.Context,
    project_id: str = typer.Option(..., "--project", "-P", help="Project id"),
    days: Optional[int] = typer.Option(
        None, "--days", "-d", min=1, max=MAX_WINDOW_DAYS, help="Only the last N days"
    ),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum rows to show"),
):
    """Show the most recent usage records of a project."""
    config = _config(ctx)
    try:
        records = get_repository(config.database_path).fetch_usage_records(project_id, days=days, limit=limit)
    except sqlite3.Error as e:
        _fail(str(e))

    if not records:
        console.print("\n[bold yellow]No usage recorded for this project[/]\n")
        return

    output = Table(title="Recent requests")
    for column in ("Time", "Provider", "Model", "Tokens", "Latency", "Cost", "Status"):
        output.add_column(column)
    for record in records:
        output.add_row(
            record.timestamp.strftime("%Y-%m-%d %H:%M"),
            record.provider,
            record.model,
            _format_number(record.total_tokens),
            f"{record.request_duration_ms}ms",
            _format_currency(record.total_cost),
            str(record.status_code),
        )
    console.print(output)


def _breakdown_table(title: str, rows: List[UsageBreakdown]) -> Table:
    output = Table(title=title)
    for column in ("Name", "Requests", "Share", "Avg tokens", "Avg latency", "Cost", "Success"):
        output.add_column(column)
    for row in rows:
        output.add_row(
            row.name,
            str(row.requests),
            f"{row.share:.1f}%",
            _format_number(row.avg_tokens),
            f"{row.avg_latency_ms}ms",
            _format_currency(row.total_cost),
            f"{row.success_rate:.1f}%",
        )
    return output


@app.command()
def summary(
    ctx: typer.Context,
    project_id: str = typer.Option(..., "--project", "-P", help="Project id"),
    days: int = typer.Option(30, "--days", "-d", min=1, max=MAX_WINDOW_DAYS, help="Window length in days"),
):
    """Summarize requests, tokens, latency and cost of a project."""
    config = _config(ctx)
    try:
        records = get_repository(config.database_path).fetch_usage_records(project_id, days=2 * days)
    except sqlite3.Error as e:
        _fail(str(e))

    result = summarize_usage(records, days=days)

    console.print(f"\n[bold]Usage over the last {days} days[/bold]")
    console.print("-" * 40)
    console.print(f"Requests: {result.total_requests} ({_format_change(result.requests_change)})")
    console.print(f"Tokens: {_format_number(result.total_tokens)} ({_format_change(result.tokens_change)})")
    console.print(f"Avg latency: {result.avg_latency_ms}ms ({_format_change(result.latency_change)})")
    console.print(f"Total cost: {_format_currency(result.total_cost)} ({_format_change(result.cost_change)})")
    console.print(f"Avg cost/request: {_format_currency(result.avg_cost_per_request)}")
    console.print(f"Error rate: {result.error_rate:.1f}%")

    if result.by_model:
        console.print(_breakdown_table("By model", result.by_model))
    if result.by_provider:
        console.print(_breakdown_table("By provider", result.by_provider))


@app.command()
def seed(
    ctx: typer.Context,
    records: int = typer.Option(100, "--records", "-r", min=1, help="Usage records per project"),
):
    """Populate the database with demo organizations, projects and usage."""
    config = _config(ctx)
    initialize_schema(config.database_path)
    projects = seed_demo_data(get_repository(config.database_path), records_per_project=records)

    output = Table(title="Demo projects")
    output.add_column("Project")
    output.add_column("Id")
    output.add_column("Project key")
    for project in projects:
        output.add_row(project.name, project.id, project.project_key)
    console.print(output)


@app.command()
def serve(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Bind port"),
):
    """Run the HTTP API."""
    import uvicorn

    from llm_tracker.api.app import create_app

    config = _config(ctx)
    logger.info("Serving LLM Tracker API on %s:%d", host, port)
    uvicorn.run(create_app(config), host=host, port=port, log_level=config.log_level.lower())


@org_app.command("create")
def org_create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Organization name"),
    owner: str = typer.Option(..., "--owner", "-o", help="Owner user id"),
    description: Optional[str] = typer.Option(None, "--description", help="Description"),
):
    """Create an organization."""
    org = get_repository(_config(ctx).database_path).create_organization(
        name=name, owner_id=owner, description=description
    )
    console.print(f"[green]✓[/] Created organization {org.name} ({org.id})")


@org_app.command("list")
def org_list(
    ctx: typer.Context,
    owner: str = typer.Option(..., "--owner", "-o", help="Owner user id"),
):
    """List organizations of an owner."""
    orgs = get_repository(_config(ctx).database_path).list_organizations(owner)
    output = Table(title="Organizations")
    output.add_column("Id")
    output.add_column("Name")
    output.add_column("Active")
    for org in orgs:
        output.add_row(org.id, org.name, "yes" if org.is_active else "no")
    console.print(output)


@project_app.command("create")
def project_create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Project name"),
    org_id: str = typer.Option(..., "--org", help="Organization id"),
    user: str = typer.Option(..., "--user", "-u", help="Creating user id"),
    description: Optional[str] = typer.Option(None, "--description", help="Description"),
):
    """Create a project and print its project key."""
    try:
        project = get_repository(_config(ctx).database_path).create_project(
            organization_id=org_id, name=name, created_by=user, description=description
        )
    except TrackerError as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Created project {project.name} ({project.id})")
    console.print(f"Project key: {project.project_key}")


@project_app.command("list")
def project_list(
    ctx: typer.Context,
    org_id: str = typer.Option(..., "--org", help="Organization id"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Only projects created by this user"),
):
    """List projects of an organization."""
    projects = get_repository(_config(ctx).database_path).list_projects(org_id, created_by=user)
    output = Table(title="Projects")
    output.add_column("Id")
    output.add_column("Name")
    output.add_column("Project key")
    for project in projects:
        output.add_row(project.id, project.name, project.project_key)
    console.print(output)


if __name__ == "__main__":
    app()
