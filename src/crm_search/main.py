import json
from dataclasses import asdict
from typing import Annotated, Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from typer import Argument, Exit, Option, Typer

from .log import configure_logging
from .models import SemanticSearchResponse
from .search.report import similarity_digest
from .services import Services, build_services
from .storage import ENTITY_TABLES, RecordNotFoundError

app = Typer(help="Semantic search over CRM leads, contacts, deals and companies.")

console = Console()

DbPathOption = Annotated[
    Optional[str],
    Option("--db-path", help="DuckDB file to use (defaults to CRM_SEARCH_DB_PATH)."),
]
BackendOption = Annotated[
    Optional[str],
    Option("--backend", help="Storage backend: duckdb or supabase."),
]
UserOption = Annotated[str, Option("--user", "-u", help="Owner of the records.")]


@app.callback()
def cli(
    log_level: Annotated[
        Optional[str], Option("--log-level", help="Log level (defaults to CRM_SEARCH_LOG_LEVEL).")
    ] = None,
) -> None:
    configure_logging(level=log_level)


def _services(db_path: str | None, backend: str | None) -> Services:
    try:
        return build_services(backend=backend, db_path=db_path)
    except ValueError as exc:
        console.print(f"[bold red]Configuration error:[/] {exc}")
        raise Exit(code=1) from exc


def _print_results(response: SemanticSearchResponse) -> None:
    table = Table(title=f'Results for "{response.query}"', title_justify="left")
    table.add_column("#", justify="right")
    table.add_column("Type")
    table.add_column("Name")
    table.add_column("Company")
    table.add_column("Details")
    table.add_column("Relevance", justify="right")
    for index, result in enumerate(response.results, start=1):
        details = " | ".join(
            f"{label}: {value}"
            for label, value in (
                ("stage", result.stage),
                ("status", result.status),
                ("source", result.source),
                ("industry", result.industry),
                ("email", result.email),
            )
            if value
        )
        table.add_row(
            str(index),
            result.type,
            result.name,
            result.company or "",
            details,
            f"{round(result.similarity * 100)}%",
        )
    console.print(table)
    console.print(
        f"[dim]{response.total_results} results in {response.search_time_ms:.0f} ms, "
        f"average similarity {response.average_similarity:.2f}[/]"
    )


def _print_digest(response: SemanticSearchResponse) -> None:
    digest = similarity_digest(response)
    if digest.total == 0:
        console.print("[yellow]No results to analyze.[/]")
        return
    console.print(
        f"[bold]Similarity[/] min {digest.min_similarity:.3f} "
        f"max {digest.max_similarity:.3f} avg {digest.average_similarity:.3f}"
    )
    console.print(
        "[bold]By type[/] "
        + ", ".join(f"{kind}: {count}" for kind, count in sorted(digest.counts_by_type.items()))
    )
    for name, count in digest.buckets.items():
        bar = "█" * round(count / digest.total * 20)
        console.print(f"{name:>9} {bar} {count}")


@app.command()
def search(
    query: Annotated[str, Argument(help="What to look for.")],
    user: UserOption,
    types: Annotated[
        Optional[list[str]],
        Option("--type", "-t", help="Entity table to include (repeatable)."),
    ] = None,
    limit: Annotated[int, Option("--limit", "-n", help="Maximum results.")] = 5,
    threshold: Annotated[float, Option("--threshold", help="Requested similarity threshold.")] = 0.5,
    debug: Annotated[bool, Option("--debug", help="Show the similarity distribution.")] = False,
    db_path: DbPathOption = None,
    backend: BackendOption = None,
) -> None:
    """Semantic search across CRM records."""
    services = _services(db_path, backend)
    try:
        response = services.search_engine.search(
            query=query,
            user_id=user,
            included_types=types or None,
            max_results=limit,
            similarity_threshold=threshold,
        )
    except ValueError as exc:
        console.print(f"[bold red]Error:[/] {exc}")
        raise Exit(code=1) from exc
    if not response.results:
        console.print("[yellow]No matching records.[/]")
        return
    _print_results(response)
    if debug:
        _print_digest(response)


@app.command()
def ask(
    question: Annotated[str, Argument(help="Question about your leads.")],
    user: UserOption,
    filters: Annotated[
        Optional[str], Option("--filters", "-f", help="Lead filters, e.g. 'status=new, score>=50'.")
    ] = None,
    limit: Annotated[int, Option("--limit", "-n", help="Maximum semantic matches.")] = 10,
    db_path: DbPathOption = None,
    backend: BackendOption = None,
) -> None:
    """Ask a natural-language question about leads."""
    services = _services(db_path, backend)
    try:
        with console.status(status="Searching leads..."):
            response = services.lead_query.query(
                query=question, user_id=user, max_results=limit, filters=filters
            )
    except ValueError as exc:
        console.print(f"[bold red]Error:[/] {exc}")
        raise Exit(code=1) from exc

    console.print(
        Panel(
            Markdown(response.answer),
            title_align="left",
            title=f"Answer (confidence {response.confidence}%)",
            border_style="bold green",
        )
    )
    if response.top_leads:
        table = Table(title="Top leads", title_justify="left")
        for column in ("Name", "Company", "Email", "Status", "Score", "Match"):
            table.add_column(column)
        for lead in response.top_leads:
            table.add_row(
                lead.name,
                lead.company or "",
                lead.email or "",
                lead.status or "",
                "" if lead.score is None else f"{lead.score:g}",
                f"{lead.similarity}%",
            )
        console.print(table)
    console.print(f"[dim]Sources: {', '.join(response.sources) or 'none'}[/]")


@app.command()
def embed(
    user: UserOption,
    entity: Annotated[
        str, Option("--entity", "-e", help="lead, contact, deal or company.")
    ] = "lead",
    field: Annotated[
        Optional[str], Option("--field", help="Embed one text field instead of the composite.")
    ] = None,
    batch_size: Annotated[Optional[int], Option("--batch-size", help="Records per batch.")] = None,
    db_path: DbPathOption = None,
    backend: BackendOption = None,
) -> None:
    """Backfill missing embeddings."""
    services = _services(db_path, backend)
    managers = {
        "contact": services.contacts,
        "deal": services.deals,
        "company": services.companies,
    }
    try:
        if field is not None:
            if entity not in ENTITY_TABLES:
                raise ValueError(f"Unknown entity {entity!r}")
            result = services.pipeline.batch_embed_field(
                ENTITY_TABLES[entity], field, user, batch_size=batch_size or 10
            )
        elif entity == "lead":
            result = services.leads.batch_process(user)
        elif entity in managers:
            result = managers[entity].batch_process(user, batch_size=batch_size or 10)
        else:
            raise ValueError(
                f"Unsupported entity type {entity!r}. "
                f"Expected one of: {', '.join(ENTITY_TABLES)}"
            )
    except ValueError as exc:
        console.print(f"[bold red]Error:[/] {exc}")
        raise Exit(code=1) from exc
    console.print(
        f"[bold green]Done:[/] {result.processed} embedded, {result.errors} errors"
    )


@app.command()
def stats(
    user: UserOption,
    as_json: Annotated[bool, Option("--json", help="Print JSON.")] = False,
    db_path: DbPathOption = None,
    backend: BackendOption = None,
) -> None:
    """Show embedding coverage for every entity table."""
    services = _services(db_path, backend)
    all_stats = [
        services.leads.stats(user),
        services.contacts.stats(user),
        services.deals.stats(user),
        services.companies.stats(user),
    ]
    if as_json:
        payload = {item.table: asdict(item) for item in all_stats}
        console.print_json(json.dumps(payload))
        return
    table = Table(title="Embedding coverage", title_justify="left")
    table.add_column("Table")
    table.add_column("Records", justify="right")
    table.add_column("Vectors")
    table.add_column("Coverage", justify="right")
    for item in all_stats:
        table.add_row(
            item.table,
            str(item.total),
            ", ".join(f"{column}={count}" for column, count in item.with_embeddings.items()),
            f"{item.coverage}%",
        )
    console.print(table)


@app.command()
def context(
    entity: Annotated[str, Argument(help="lead, contact or deal.")],
    entity_id: Annotated[str, Argument(help="Record id.")],
    user: UserOption,
    db_path: DbPathOption = None,
    backend: BackendOption = None,
) -> None:
    """Print the composed text that an entity's composite embedding is built from."""
    services = _services(db_path, backend)
    try:
        text = services.pipeline.entity_context(entity, entity_id, user)
    except ValueError as exc:
        console.print(f"[bold red]Error:[/] {exc}")
        raise Exit(code=1) from exc
    if not text:
        console.print(f"[yellow]No {entity} found with id {entity_id}.[/]")
        raise Exit(code=1)
    console.print(Panel(text, title_align="left", title=f"{entity} {entity_id}"))


@app.command()
def recommend(
    company_id: Annotated[str, Argument(help="Company id.")],
    user: UserOption,
    limit: Annotated[int, Option("--limit", "-n", help="Similar companies to consider.")] = 5,
    db_path: DbPathOption = None,
    backend: BackendOption = None,
) -> None:
    """Recommendations derived from similar companies."""
    services = _services(db_path, backend)
    try:
        result = services.companies.recommendations(
            company_id, user_id=user, max_recommendations=limit
        )
    except RecordNotFoundError as exc:
        console.print(f"[bold red]Error:[/] {exc}")
        raise Exit(code=1) from exc
    lines = [f"- {line}" for line in result.recommendations]
    lines.append("")
    lines.extend(f"- {line}" for line in result.insights.market_opportunities)
    lines.append("")
    lines.append(result.insights.competitor_analysis)
    console.print(
        Panel(Markdown("\n".join(lines)), title_align="left", title="Recommendations")
    )


@app.command()
def history(
    user: UserOption,
    limit: Annotated[int, Option("--limit", "-n", help="Entries to show.")] = 20,
    db_path: DbPathOption = None,
    backend: BackendOption = None,
) -> None:
    """Show recent semantic searches."""
    services = _services(db_path, backend)
    entries = services.storage.list_searches(user_id=user, limit=limit)
    if not entries:
        console.print("[yellow]No searches recorded.[/]")
        return
    table = Table(title="Recent searches", title_justify="left")
    for column in ("When", "Query", "Types", "Results"):
        table.add_column(column)
    for entry in entries:
        table.add_row(
            str(entry.get("created_at") or ""),
            entry["query_text"],
            entry["search_type"],
            str(entry.get("results_count") or 0),
        )
    console.print(table)


@app.command()
def serve(
    host: Annotated[str, Option("--host", help="Bind address.")] = "127.0.0.1",
    port: Annotated[int, Option("--port", help="Port.")] = 8000,
) -> None:
    """Run the HTTP API."""
    from .server import run_server

    run_server(host=host, port=port)
