"""Command-line entry points for the news digest pipeline."""

import json
import os
from datetime import date
from typing import List, Optional

import typer
from rich import print as rprint
from rich.table import Table

from .admin import analyze_categories, collect_stats, delete_article, merge_categories
from .config import get_settings
from .errors import ArticleNotFoundError, FetchError, NewsDigestError
from .logging_setup import configure_logging
from .models import Article, ArticlePage
from .orchestrator import Progress, Stage
from .services import Services, build_services

app = typer.Typer(help="Fetch Guardian articles, rewrite them with AI, and manage the results.")
articles_app = typer.Typer(help="Browse, hide, restore and delete stored articles.")
categories_app = typer.Typer(help="Inspect and merge article categories.")
ledger_app = typer.Typer(help="Maintain the processed-articles ledger.")
app.add_typer(articles_app, name="articles")
app.add_typer(categories_app, name="categories")
app.add_typer(ledger_app, name="ledger")


def _services() -> Services:
    try:
        return build_services(get_settings())
    except (NewsDigestError, ValueError) as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)


def _parse_date(value: Optional[str], name: str) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise typer.BadParameter(f"{name} must be a YYYY-MM-DD date.") from exc


def _print_page(page: ArticlePage) -> None:
    table = Table(title=f"Articles (page {page.page}/{max(page.total_pages, 1)}, {page.total} total)")
    table.add_column("Published")
    table.add_column("Slug")
    table.add_column("Category")
    table.add_column("Hidden")
    for article in page.items:
        table.add_row(
            article.published_at.strftime("%Y-%m-%d %H:%M"),
            article.slug,
            article.category,
            "yes" if article.is_deleted else "",
        )
    rprint(table)


def _print_article(article: Article) -> None:
    state = " [yellow](hidden)[/yellow]" if article.is_deleted else ""
    rprint(f"[bold]{article.title}[/bold]{state}")
    rprint(f"[dim]{article.category} | {article.published_at.isoformat()} | {article.original_url}[/dim]")
    rprint()
    rprint(article.content)
    if article.key_points:
        rprint("\n[bold]Key points[/bold]")
        for point in article.key_points:
            rprint(f"- {point}")
    if article.faqs:
        rprint("\n[bold]FAQs[/bold]")
        for faq in article.faqs:
            rprint(f"[cyan]Q: {faq.question}[/cyan]")
            rprint(f"A: {faq.answer}")


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Override LOG_LEVEL for this run (DEBUG, INFO, WARNING...)."
    ),
):
    configure_logging(log_level or get_settings().log_level)


@app.command("ingest")
def ingest_command(
    from_date: Optional[str] = typer.Option(None, "--from", help="Earliest publication date (YYYY-MM-DD)."),
    to_date: Optional[str] = typer.Option(None, "--to", help="Latest publication date (YYYY-MM-DD)."),
    query: Optional[str] = typer.Option(
        None, "--query", "-q", help="Headline search query (defaults to DEFAULT_QUERY)."
    ),
):
    """
    Run one ingestion batch: fetch, skip known ids, summarize, and store new articles.
    """
    start = _parse_date(from_date, "--from")
    end = _parse_date(to_date, "--to")
    if start and end and start > end:
        raise typer.BadParameter("--from must not be after --to.")

    services = _services()
    try:
        orchestrator = services.orchestrator()
    except RuntimeError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    def show_progress(progress: Progress) -> None:
        if progress.current_title:
            # One line per article, printed before it is summarized.
            if progress.current < progress.total and progress.message.startswith("Processing"):
                rprint(f"[cyan]{progress.message}[/cyan] {progress.current_title}")
        elif progress.stage != Stage.COMPLETED:
            rprint(f"[cyan]{progress.message}[/cyan]")

    try:
        stats = orchestrator.run(
            query or services.settings.default_query,
            from_date=start,
            to_date=end,
            on_progress=show_progress,
        )
    except FetchError as exc:
        rprint(f"[red]Fetch failed: {exc}[/red]")
        raise typer.Exit(code=1)

    for message in stats.error_messages:
        rprint(f"[red]{message}[/red]")
    rprint(
        f"[green]Fetched {stats.total_fetched}: {stats.newly_processed} new, "
        f"{stats.already_processed} already processed, {stats.skipped} skipped, "
        f"{stats.errors} errors ({stats.elapsed_seconds:.1f}s).[/green]"
    )
    if stats.errors:
        raise typer.Exit(code=1)


@articles_app.command("list")
def articles_list(
    page: int = typer.Option(1, "--page", "-p", min=1),
    limit: int = typer.Option(20, "--limit", "-l", min=1, max=100),
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Filter by title, body or category."),
    show_hidden: bool = typer.Option(False, "--all", help="Include hidden articles."),
):
    """List stored articles, newest first."""
    services = _services()
    _print_page(
        services.store.list_articles(page, limit, search=search, include_deleted=show_hidden)
    )


@articles_app.command("search")
def articles_search(
    query: str = typer.Argument(..., help="Case-insensitive text to look for."),
    show_hidden: bool = typer.Option(False, "--all", help="Include hidden articles."),
):
    """Search titles, bodies and categories."""
    results = _services().store.search(query, include_deleted=show_hidden)
    if not results:
        rprint("[yellow]No matching articles.[/yellow]")
        return
    for article in results:
        rprint(f"{article.slug}  [dim]{article.category}[/dim]  {article.title}")


@articles_app.command("show")
def articles_show(slug: str = typer.Argument(...)):
    """Print one article, hidden or not."""
    article = _services().store.get_by_slug(slug)
    if article is None:
        rprint(f"[red]Article '{slug}' not found.[/red]")
        raise typer.Exit(code=1)
    _print_article(article)


def _change_visibility(slug: str, hidden: Optional[bool]) -> None:
    store = _services().store
    try:
        if hidden is None:
            article = store.toggle_visibility(slug)
        else:
            article = store.set_visibility(slug, hidden)
    except ArticleNotFoundError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    state = "hidden" if article.is_deleted else "visible"
    rprint(f"[green]{article.slug} is now {state}.[/green]")


@articles_app.command("toggle")
def articles_toggle(slug: str = typer.Argument(...)):
    """Flip an article between hidden and visible."""
    _change_visibility(slug, None)


@articles_app.command("hide")
def articles_hide(slug: str = typer.Argument(...)):
    _change_visibility(slug, True)


@articles_app.command("restore")
def articles_restore(slug: str = typer.Argument(...)):
    _change_visibility(slug, False)


@articles_app.command("delete")
def articles_delete(
    slug: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
):
    """
    Permanently delete an article and allow its source to be ingested again.
    """
    if not yes:
        typer.confirm(f"Permanently delete '{slug}'?", abort=True)
    services = _services()
    try:
        article = delete_article(services.store, services.ledger, slug)
    except ArticleNotFoundError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    rprint(f"[green]Deleted {article.slug} ({article.guardian_id}).[/green]")


@categories_app.command("list")
def categories_list():
    """Show categories of visible articles with their article counts."""
    table = Table(title="Categories")
    table.add_column("Category")
    table.add_column("Articles", justify="right")
    for category in _services().store.list_categories():
        table.add_row(category.name, str(category.count))
    rprint(table)


@categories_app.command("merge")
def categories_merge(
    from_category: str = typer.Argument(..., help="Category to rename (case-insensitive)."),
    to_category: str = typer.Argument(..., help="New category name."),
):
    """Rename a category on every article, hidden ones included."""
    report = merge_categories(_services().store, [(from_category, to_category)])
    detail = report.details[0]
    if detail.error:
        rprint(f"[red]Merge failed: {detail.error}[/red]")
        raise typer.Exit(code=1)
    rprint(
        f"[green]Moved {detail.articles_updated} articles from "
        f"'{from_category}' to '{to_category}'.[/green]"
    )


@categories_app.command("analyze")
def categories_analyze(
    apply: bool = typer.Option(False, "--apply", help="Apply every suggested merge."),
    min_confidence: str = typer.Option(
        "low", "--min-confidence", help="Only show suggestions at or above: high, medium, low."
    ),
):
    """Ask the model which categories duplicate each other."""
    ranks = {"high": 3, "medium": 2, "low": 1}
    if min_confidence.lower() not in ranks:
        raise typer.BadParameter("--min-confidence must be high, medium or low.")
    services = _services()
    try:
        suggestions = analyze_categories(services.store, services.reviewer())
    except (RuntimeError, NewsDigestError) as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    floor = ranks[min_confidence.lower()]
    suggestions = [s for s in suggestions if ranks[s.confidence] >= floor]
    if not suggestions:
        rprint("[green]No merges suggested.[/green]")
        return

    table = Table(title="Suggested merges")
    for column in ("From", "To", "Articles", "Confidence", "Reason"):
        table.add_column(column)
    for s in suggestions:
        table.add_row(
            s.original_category, s.suggested_category, str(s.article_count), s.confidence, s.reason
        )
    rprint(table)

    if apply:
        report = merge_categories(
            services.store, [(s.original_category, s.suggested_category) for s in suggestions]
        )
        rprint(
            f"[green]Applied {report.merged_count} merges, "
            f"{report.articles_updated} articles updated.[/green]"
        )
        failed: List[str] = [f"{d.from_category}: {d.error}" for d in report.details if d.error]
        for line in failed:
            rprint(f"[red]{line}[/red]")
        if failed:
            raise typer.Exit(code=1)


@app.command("stats")
def stats_command(
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON."),
):
    """Show article and ledger counts."""
    services = _services()
    stats = collect_stats(services.store, services.ledger)
    if as_json:
        rprint(json.dumps(stats, indent=2))
        return
    articles, processed = stats["articles"], stats["processed"]
    rprint(
        f"Articles: {articles['total']} total, {articles['published']} published, "
        f"{articles['hidden']} hidden, {articles['recent']} in the last 24h, "
        f"{articles['categories']} categories"
    )
    rprint(
        f"Processed ids: {processed['total']} total, {processed['recent_week']} this week, "
        f"{processed['recent_month']} this month"
    )


@ledger_app.command("cleanup")
def ledger_cleanup(
    days: int = typer.Option(90, "--days", min=1, help="Drop entries older than this many days."),
):
    """Forget processed ids older than the cutoff."""
    removed = _services().ledger.cleanup_old_entries(days)
    rprint(f"[green]Removed {removed} ledger entries older than {days} days.[/green]")


@app.command("serve")
def serve_command(
    host: str = typer.Option(os.getenv("API_HOST", "127.0.0.1"), "--host"),
    port: int = typer.Option(int(os.getenv("API_PORT", "8000")), "--port"),
    reload: bool = typer.Option(False, "--reload"),
):
    """Run the admin HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run("news_digest.server:app", host=host, port=port, reload=reload)


def main():
    app()


if __name__ == "__main__":
    main()
