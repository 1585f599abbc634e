"""
CLI Main - Typer-based command-line interface.

Usage:
    dealsearch init
    dealsearch load marketplace.json
    dealsearch search "laptop" --type deals --sort price_low
    dealsearch suggest "lap"
    dealsearch serve
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

app = typer.Typer(
    name="dealsearch",
    help="DealSearch - Marketplace search engine",
    add_completion=False,
)
console = Console()


@app.callback()
def _configure(
    log_level: str | None = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
) -> None:
    """Configure logging for every command."""
    from dealsearch.config import get_settings

    level = (log_level or get_settings().log_level).upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


@app.command()
def search(
    query: str = typer.Argument("", help="Search query"),
    type_: str = typer.Option("all", "--type", "-t", help="all, deals, coupons, users, companies, categories"),
    sort: str = typer.Option("relevance", "--sort", "-s", help="Sort mode"),
    limit: int = typer.Option(10, "--limit", "-n", help="Results per entity"),
    page: int = typer.Option(1, "--page", "-p", help="Page number"),
) -> None:
    """Search the marketplace."""
    asyncio.run(_search_async({"q": query, "type": type_, "sort": sort, "limit": limit, "page": page}))


async def _search_async(params: dict[str, Any]) -> None:
    """Async search implementation."""
    from dealsearch.adapters.sqlite import SQLiteRecordStore
    from dealsearch.config import DealSearchError, get_settings
    from dealsearch.domains.search import FuzzyMatcher, SearchEngine

    settings = get_settings()
    store = SQLiteRecordStore(settings.db_path)
    engine = SearchEngine.from_settings(store, settings)

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task("Searching...", total=None)
            response = await engine.search(params)
    except DealSearchError as e:
        console.print(f"[red]Error:[/red] {escape(e.message)}")
        raise typer.Exit(1)
    finally:
        await engine.aclose()
        await store.close()

    matcher = FuzzyMatcher()
    query = response.query

    def mark(text: str | None) -> str:
        if not text:
            return ""
        return matcher.highlight_matches(escape(text), query, "[bold yellow]", "[/bold yellow]")

    console.print(
        f"\n[bold]{response.total_results}[/bold] results for "
        f"[cyan]{escape(query) or '(everything)'}[/cyan] in {response.search_time:.1f}ms\n"
    )

    if response.deals:
        table = Table(title=f"Deals ({response.total_deals})")
        table.add_column("ID", style="dim")
        table.add_column("Title")
        table.add_column("Merchant", style="cyan")
        table.add_column("Price", justify="right", style="green")
        table.add_column("Views", justify="right")
        for deal in response.deals:
            price = f"{deal.price:.2f}" if deal.price is not None else "-"
            table.add_row(str(deal.id), mark(deal.title), mark(deal.merchant), price, str(deal.views_count))
        console.print(table)

    if response.coupons:
        table = Table(title=f"Coupons ({response.total_coupons})")
        table.add_column("ID", style="dim")
        table.add_column("Title")
        table.add_column("Code", style="magenta")
        table.add_column("Discount", justify="right", style="green")
        for coupon in response.coupons:
            discount = f"{coupon.discount_value:g}" if coupon.discount_value is not None else "-"
            table.add_row(str(coupon.id), mark(coupon.title), escape(coupon.coupon_code or ""), discount)
        console.print(table)

    if response.companies:
        table = Table(title=f"Companies ({response.total_companies})")
        table.add_column("Name")
        table.add_column("Verified")
        table.add_column("Offers", justify="right")
        for company in response.companies:
            offers = company.stats.total if company.stats else 0
            table.add_row(mark(company.name), "yes" if company.is_verified else "", str(offers))
        console.print(table)

    if response.categories:
        table = Table(title=f"Categories ({response.total_categories})")
        table.add_column("Name")
        table.add_column("Items", justify="right")
        for category in response.categories:
            items = category.stats.total if category.stats else 0
            table.add_row(mark(category.name), str(items))
        console.print(table)

    if response.users:
        table = Table(title=f"Users ({response.total_users})")
        table.add_column("Handle")
        table.add_column("Name")
        table.add_column("Karma", justify="right")
        for user in response.users:
            table.add_row(mark(user.handle), mark(user.display_name), str(user.karma))
        console.print(table)

    if response.suggestions:
        console.print(
            Panel(
                ", ".join(escape(s.text) for s in response.suggestions),
                title="Did you mean",
                style="yellow",
            )
        )


@app.command()
def suggest(
    query: str = typer.Argument(..., help="Partial query"),
    limit: int = typer.Option(10, "--limit", "-n", help="Number of suggestions"),
) -> None:
    """Show suggestions for a partial query."""
    asyncio.run(_suggest_async(query, limit))


async def _suggest_async(query: str, limit: int) -> None:
    """Async suggestions implementation."""
    from dealsearch.adapters.sqlite import SQLiteRecordStore
    from dealsearch.config import get_settings
    from dealsearch.domains.search import SearchEngine

    settings = get_settings()
    store = SQLiteRecordStore(settings.db_path)
    engine = SearchEngine.from_settings(store, settings)
    try:
        suggestions = await engine.get_suggestions(query, limit)
    finally:
        await store.close()

    if not suggestions:
        console.print("[yellow]No suggestions[/yellow]")
        return

    table = Table(title=f"Suggestions for '{escape(query)}'")
    table.add_column("Text")
    table.add_column("Type", style="cyan")
    table.add_column("Score", justify="right", style="green")
    for suggestion in suggestions:
        table.add_row(escape(suggestion.text), suggestion.type.value, f"{suggestion.score:g}")
    console.print(table)


@app.command()
def init(
    db_path: Path | None = typer.Option(None, "--db", "-d", help="Database path"),
) -> None:
    """Create the database schema."""
    asyncio.run(_init_async(db_path))


async def _init_async(db_path: Path | None) -> None:
    """Async initialization."""
    from dealsearch.adapters.sqlite import SQLiteRecordStore
    from dealsearch.config import get_settings

    path = db_path or get_settings().db_path
    store = SQLiteRecordStore(path)
    try:
        await store.initialize()
    finally:
        await store.close()

    console.print("\n[green]Initialization complete![/green]")
    console.print(f"[dim]Database: {path}[/dim]")


@app.command()
def load(
    fixture: Path = typer.Argument(..., help="JSON fixture keyed by collection"),
    db_path: Path | None = typer.Option(None, "--db", "-d", help="Database path"),
) -> None:
    """Seed the database from a JSON fixture."""
    if not fixture.exists():
        console.print(f"[red]Error:[/red] File not found: {fixture}")
        raise typer.Exit(1)

    asyncio.run(_load_async(fixture, db_path))


async def _load_async(fixture: Path, db_path: Path | None) -> None:
    """Async fixture loading."""
    from dealsearch.adapters.sqlite import SQLiteRecordStore
    from dealsearch.config import DealSearchError, get_settings

    store = SQLiteRecordStore(db_path or get_settings().db_path)
    try:
        await store.initialize()
        counts = await store.load_fixture(fixture)
    except DealSearchError as e:
        console.print(f"[red]Error:[/red] {escape(e.message)}")
        raise typer.Exit(1)
    finally:
        await store.close()

    table = Table(title="Loaded Records")
    table.add_column("Collection", style="cyan")
    table.add_column("Rows", justify="right", style="green")
    for collection, count in counts.items():
        table.add_row(collection, str(count))
    console.print(table)


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Host to bind"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to bind"),
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable auto-reload"),
) -> None:
    """Start the API server."""
    import uvicorn

    from dealsearch.config import get_settings

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port

    console.print("\n[green]Starting DealSearch API server[/green]")
    console.print(f"[dim]http://{host}:{port}[/dim]\n")

    uvicorn.run(
        "dealsearch.interfaces.api:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


@app.command()
def version() -> None:
    """Show version information."""
    from dealsearch import __version__

    console.print(f"DealSearch v{__version__}")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
