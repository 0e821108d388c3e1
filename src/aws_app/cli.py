"""The AWS App CLI functions.

Check `aws-app --help` for more details."""

import logging
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

import typer
from cachier import set_global_params
from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from sqlalchemy import create_mock_engine
from typing_extensions import Annotated

from .aggregate import cheapest, page, price_table
from .config import Config
from .context import AppContext
from .dispatch import ACTION_SPECS, dispatch
from .exceptions import AppError
from .logger import enable_logging, sync_progress
from .reconcile import reconcile_all
from .resource_kinds import get_binding
from .table_fields import Action, PriceType, ResourceKind, SyncKind
from .tables import tables

cli = typer.Typer()
console = Console()

engine_to_dialect = {
    "postgresql": "postgresql+psycopg2://",
    "mysql": "mysql+pymysql://",
    "sqlite": "sqlite://",
}
Engines = Enum("ENGINES", {k: k for k in engine_to_dialect.keys()})

log_levels = list(logging._nameToLevel.keys())
LogLevels = Enum("LOGLEVELS", {k: k for k in log_levels})

schemas_app = typer.Typer()
cli.add_typer(schemas_app, name="schemas", help="Database schema utilities.")

ConnectionString = Annotated[
    Optional[str],
    typer.Option(
        help="Database URL with SQLAlchemy dialect, overrides AWS_APP_DATABASE_URL."
    ),
]
LogLevel = Annotated[LogLevels, typer.Option(help="Log level threshold.")]
Cache = Annotated[
    bool,
    typer.Option(help="Enable or disable caching of reference data API calls on disk."),
]
CacheTtl = Annotated[int, typer.Option(help="Cache Time-to-live in minutes.")]


def _context(
    connection_string: Optional[str],
    log_level: LogLevels,
    cache: bool = False,
    cache_ttl: int = 60,
) -> AppContext:
    enable_logging(log_level.value)
    try:
        config = Config.from_env()
    except AppError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(code=1) from e
    if connection_string:
        config = config.model_copy(update={"database_url": connection_string})
    if cache or config.cache:
        set_global_params(
            caching_enabled=True,
            stale_after=timedelta(minutes=cache_ttl if cache else config.cache_ttl),
        )
    return AppContext.from_config(config)


def _key_values(items: Optional[List[str]]) -> Dict[str, str]:
    """Parse `key=value` pairs.

    Examples:
        >>> _key_values(["size=100", "name=a=b"])
        {'size': '100', 'name': 'a=b'}
    """
    parsed = {}
    for item in items or []:
        if "=" not in item:
            raise typer.BadParameter(f"Expected key=value, got: {item}")
        key, value = item.split("=", 1)
        parsed[key.strip()] = value
    return parsed


def _table(title: str, rows: List[Dict[str, Any]]) -> Table:
    table = Table(title=title)
    columns = list(rows[0].keys()) if rows else []
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*[str(row.get(c, "")) for c in columns])
    return table


def _price(value: Optional[float]) -> str:
    return "" if value is None else f"${value:0.4f}/hr"


@schemas_app.command()
def create(
    connection_string: Annotated[
        Optional[str], typer.Option(help="Database URL with SQLAlchemy dialect.")
    ] = None,
    dialect: Annotated[
        Optional[Engines],
        typer.Option(
            help="SQLAlchemy dialect to use for generating CREATE TABLE statements."
        ),
    ] = None,
):
    """
    Print the Cache Store schema in a SQL dialect.

    Either `connection_string` or `dialect` is to be provided to decide
    what SQL dialect to use to generate the CREATE TABLE (and related)
    SQL statements.
    """
    if connection_string is None and dialect is None:
        print("Either connection_string or dialect parameters needs to be provided!")
        raise typer.Exit(code=1)
    if dialect:
        url = engine_to_dialect[dialect.value]
    else:
        url = connection_string

    def metadata_dump(sql, *_args, **_kwargs):
        typer.echo(str(sql.compile(dialect=engine.dialect)) + ";")

    engine = create_mock_engine(url, metadata_dump)
    for table in tables:
        table.__table__.create(engine)


@cli.command(name="kinds")
def kinds_command():
    """List the resource kinds with their permitted actions."""
    table = Table(title="Resource kinds")
    table.add_column("Kind", no_wrap=True)
    table.add_column("Cached")
    table.add_column("Actions")
    for kind in ResourceKind:
        binding = get_binding(kind)
        table.add_row(
            kind.value,
            "yes" if kind.is_cached else "",
            ", ".join(sorted(a.value for a in binding.actions)),
        )
    console.print(table)


@cli.command(name="list")
def list_command(
    kinds: Annotated[
        List[ResourceKind], typer.Argument(help="Resource kinds to be listed.")
    ],
    search: Annotated[
        Optional[str],
        typer.Option(help="Case-insensitive substring filter, e.g. instance family."),
    ] = None,
    connection_string: ConnectionString = None,
    log_level: LogLevel = LogLevels.WARNING.value,
):
    """List resources of one or more kinds, fetching live kinds concurrently."""
    ctx = _context(connection_string, log_level)
    try:
        for listing in page(ctx, kinds, search):
            name = listing.kind.value
            if listing.error:
                console.print(f"[red]{name}: no data ({escape(listing.error)})[/red]")
            elif not listing.rows:
                console.print(f"{name}: no resources found")
            else:
                console.print(_table(name, listing.rows))
    finally:
        ctx.close()


@cli.command()
def update(
    kinds: Annotated[
        Optional[List[SyncKind]],
        typer.Option(
            "--kind", help="Sync units to reconcile. Can be specified multiple times."
        ),
    ] = None,
    connection_string: ConnectionString = None,
    log_level: LogLevel = LogLevels.INFO.value,
    cache: Cache = False,
    cache_ttl: CacheTtl = 60,
):
    """
    Reconcile the cached instance families, types and prices with the AWS APIs.

    Reference data API calls are optionally cached as Pickle objects in `~/.cachier`.
    """
    ctx = _context(connection_string, log_level, cache, cache_ttl)
    progress = sync_progress()
    try:
        with Live(Panel(progress, title="Updating Cache Store", expand=False)):
            summary = reconcile_all(ctx, kinds, progress=progress)
    finally:
        ctx.close()

    table = Table(title="Sync results")
    table.add_column("Kind", no_wrap=True)
    table.add_column("Table", no_wrap=True)
    table.add_column("New rows", justify="right")
    table.add_column("Updated rows", justify="right")
    table.add_column("Deleted rows", justify="right")
    for report in summary.reports:
        for table_name, changes in report.tables.items():
            table.add_row(
                report.kind.value,
                table_name,
                str(changes.inserted),
                str(changes.updated),
                str(changes.deleted),
            )
    console.print(table)
    for failure in summary.failures:
        message = escape(failure.message)
        console.print(f"[red]{failure.kind.value} failed: {message}[/red]")
    for kind in summary.skipped:
        console.print(f"[yellow]{kind.value} skipped due to the timeout[/yellow]")
    if summary.failures:
        raise typer.Exit(code=1)


@cli.command()
def prices(
    search: Annotated[
        List[str], typer.Argument(help="Substrings of the instance types, e.g. m5 c6g.")
    ],
    connection_string: ConnectionString = None,
    log_level: LogLevel = LogLevels.WARNING.value,
):
    """Print the latest on-demand, spot and reserved prices of instance types."""
    ctx = _context(connection_string, log_level)
    try:
        rows = price_table(ctx, search)
    finally:
        ctx.close()
    table = Table(title="Instance prices")
    for column in ["Instance type", "On-demand", "Spot", "Reserved"]:
        table.add_column(column)
    for column in ["CPU", "Memory", "Family"]:
        table.add_column(column)
    for row in rows:
        table.add_row(
            row.instance_type,
            _price(row.ondemand),
            _price(row.spot),
            _price(row.reserved),
            str(row.n_cpu),
            f"{row.memory_gib:g} GiB",
            row.display_name,
        )
    console.print(table)


@cli.command(name="cheapest")
def cheapest_command(
    search: Annotated[
        Optional[str], typer.Argument(help="Substring of the instance family.")
    ] = None,
    price_type: Annotated[
        Optional[PriceType], typer.Option(help="Pricing model.")
    ] = None,
    limit: Annotated[int, typer.Option(help="Number of rows to show.")] = 10,
    connection_string: ConnectionString = None,
    log_level: LogLevel = LogLevels.WARNING.value,
):
    """Print the cheapest instance types based on the most recent prices."""
    ctx = _context(connection_string, log_level)
    try:
        rows = cheapest(ctx, search, price_type, limit)
    finally:
        ctx.close()
    console.print(
        _table(
            "Cheapest instance types",
            [r.model_dump(exclude={"price_timestamp"}, mode="json") for r in rows],
        )
    )


@cli.command(name="action")
def action_command(
    action: Annotated[Action, typer.Argument(help="Action to execute.")],
    target_id: Annotated[
        str, typer.Argument(help="Id or Name tag of the resource to act on.")
    ],
    param: Annotated[
        Optional[List[str]],
        typer.Option(
            help="Action parameter as key=value. Can be specified multiple times."
        ),
    ] = None,
    tag: Annotated[
        Optional[List[str]],
        typer.Option(help="Tag as key=value. Can be specified multiple times."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", help="Skip the confirmation of destructive actions."),
    ] = False,
    connection_string: ConnectionString = None,
    log_level: LogLevel = LogLevels.INFO.value,
):
    """Execute a mutating action against the live AWS account."""
    params: Dict[str, Any] = _key_values(param)
    tags = _key_values(tag)
    if tags:
        params["tags"] = tags
    if ACTION_SPECS[action].destructive and not yes:
        typer.confirm(f"Really {action.value} {target_id}?", abort=True)
    ctx = _context(connection_string, log_level)
    try:
        outcome = dispatch(ctx, action, target_id, params)
    except AppError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(code=1) from e
    finally:
        ctx.close()
    console.print(f"{outcome.action.value} {outcome.target_id}: {outcome.status.value}")
    if outcome.result:
        console.print(outcome.result)


if __name__ == "__main__":
    cli()
