"""CLI entry point for CallSifter."""

import json
import logging
import uuid
from dataclasses import replace
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from callsifter.config import (
    SUPPORTED_PLATFORMS,
    Settings,
    load_rules,
    load_settings,
    save_rules,
)
from callsifter.errors import CallSifterError
from callsifter.platforms.registry import AdapterRegistry
from callsifter.search.filters import TranscriptFilters
from callsifter.storage.database import Database
from callsifter.storage.models import AssociationRule, CallWindow, RuleType
from callsifter.sync.queue import QueueConsumer
from callsifter.web.deps import Services, build_services

console = Console(force_terminal=True)

STATUS_STYLES = {"success": "green", "skipped": "yellow", "error": "red"}


def _settings(ctx) -> Settings:
    return ctx.obj["settings"]


def _registry(ctx) -> AdapterRegistry:
    if "registry" not in ctx.obj:
        ctx.obj["registry"] = AdapterRegistry(_settings(ctx))
    return ctx.obj["registry"]


def _open_services(ctx, db: Database) -> Services:
    return build_services(db, _settings(ctx), _registry(ctx))


def _fail(error: Exception):
    console.print(f"[red]Error:[/red] {error}")
    raise SystemExit(1)


@click.group()
@click.option(
    "--db",
    default=None,
    help="Database path (overrides CALLSIFTER_DB_PATH)",
    type=click.Path(),
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, db, verbose):
    """CallSifter - Ingest call transcripts and group them by account."""
    ctx.ensure_object(dict)

    settings = load_settings()
    if db:
        settings = replace(settings, db_path=Path(db))
    ctx.obj["settings"] = settings

    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.INFO, format="%(message)s")


# ---------------------------------------------------------------------------
# Sync Commands
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("platform", type=click.Choice(SUPPORTED_PLATFORMS))
@click.option("--days", type=int, default=None, help="Days back to sync (default: SYNC_DAYS)")
@click.option("--limit", type=int, default=None, help="Max calls to list (default: SYNC_LIMIT)")
@click.option("--json", "as_json", is_flag=True, help="Print the summary as JSON")
@click.pass_context
def sync(ctx, platform, days, limit, as_json):
    """Ingest recent calls from a platform."""
    settings = _settings(ctx)
    window = CallWindow.last_days(days or settings.sync_days)

    with Database(settings.db_path) as db:
        services = _open_services(ctx, db)
        try:
            summary = services.engine.bulk_sync(platform, window, limit or settings.sync_limit)
        except CallSifterError as e:
            _fail(e)

    if as_json:
        click.echo(json.dumps(summary.to_dict(), indent=2))
        return

    table = Table(title=f"{platform} sync")
    table.add_column("Call", style="cyan")
    table.add_column("Title", style="bold")
    table.add_column("Status")
    table.add_column("Account", justify="right")
    table.add_column("Detail", style="dim")
    for d in summary.details:
        style = STATUS_STYLES.get(d.status, "")
        table.add_row(
            d.call_id,
            (d.title or "")[:50],
            f"[{style}]{d.status}[/{style}]",
            str(d.account_id or ""),
            d.error or d.reason or d.action or "",
        )
    console.print(table)
    console.print(
        f"\n[bold]{summary.total}[/bold] calls: "
        f"[green]{summary.processed} processed[/green], "
        f"[yellow]{summary.skipped} skipped[/yellow], "
        f"[red]{summary.errors} errors[/red] "
        f"[dim]({summary.execution_time:.1f}s)[/dim]"
    )


@cli.command(name="sync-call")
@click.argument("platform", type=click.Choice(SUPPORTED_PLATFORMS))
@click.argument("call_id")
@click.pass_context
def sync_call(ctx, platform, call_id):
    """Fetch and store a single call."""
    with Database(_settings(ctx).db_path) as db:
        services = _open_services(ctx, db)
        try:
            result = services.engine.sync_call(platform, call_id, source="manual")
        except CallSifterError as e:
            _fail(e)

    console.print(
        f"[green]{result.action.capitalize()}[/green] {platform} call {call_id} "
        f"as transcript {result.transcript_id}"
    )
    console.print(
        f"  Account: {result.account_id} ({result.rule_name}, confidence {result.confidence:.2f})"
    )


@cli.command()
@click.option("--batch", type=int, default=10, help="Messages per receive")
@click.option("--max-batches", type=int, default=None, help="Stop after this many batches")
@click.pass_context
def consume(ctx, batch, max_batches):
    """Process queued webhook messages."""
    with Database(_settings(ctx).db_path) as db:
        services = _open_services(ctx, db)
        counts = QueueConsumer(services.queue, services.engine).drain(batch, max_batches)

    console.print(
        f"[green]{counts['succeeded']} succeeded[/green], "
        f"[yellow]{counts['retried']} to retry[/yellow], "
        f"[red]{counts['dead_lettered']} dead-lettered[/red]"
    )


@cli.command(name="test-connection")
@click.argument("platform", type=click.Choice(SUPPORTED_PLATFORMS))
@click.pass_context
def test_connection(ctx, platform):
    """Check credentials against a platform."""
    try:
        adapter = _registry(ctx).get(platform)
    except CallSifterError as e:
        _fail(e)

    if adapter.test_connection():
        console.print(f"[green]✓[/green] Connected to {platform}")
    else:
        console.print(f"[red]✗[/red] Could not connect to {platform}")
        raise SystemExit(1)


@cli.command(name="setup-webhook")
@click.argument("platform", type=click.Choice(SUPPORTED_PLATFORMS))
@click.argument("url")
@click.pass_context
def setup_webhook(ctx, platform, url):
    """Register the webhook URL with a platform (or print setup steps)."""
    try:
        adapter = _registry(ctx).get(platform)
    except CallSifterError as e:
        _fail(e)
    adapter.setup_webhook(url)


# ---------------------------------------------------------------------------
# Browsing Commands
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def status(ctx):
    """Show stored transcripts, accounts and queue state."""
    db_path = _settings(ctx).db_path
    if not db_path.exists():
        console.print("[yellow]No database found.[/yellow] Run 'sync' first.")
        return

    with Database(db_path) as db:
        summary = _open_services(ctx, db).repo.get_summary()

    table = Table(title="CallSifter Status")
    table.add_column("Item", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Transcripts", str(summary["total_transcripts"]))
    for platform, count in sorted(summary["by_platform"].items()):
        table.add_row(f"  {platform}", str(count))
    table.add_row("Accounts", str(summary["total_accounts"]))
    for state, count in sorted(summary["queue"].items()):
        table.add_row(f"Queue {state}", str(count))
    console.print(table)


@cli.command()
@click.pass_context
def accounts(ctx):
    """List accounts with their transcript counts."""
    with Database(_settings(ctx).db_path) as db:
        rows = _open_services(ctx, db).repo.list_accounts()

    if not rows:
        console.print("[yellow]No accounts yet.[/yellow]")
        return

    table = Table(title="Accounts")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("Domain", style="cyan")
    table.add_column("Source")
    table.add_column("Transcripts", justify="right")
    for r in rows:
        source = r["metadata"].get("source", "manual")
        if r["metadata"].get("needsReview"):
            source += " [yellow](review)[/yellow]"
        table.add_row(str(r["id"]), r["name"], r["domain"], source, str(r["transcript_count"]))
    console.print(table)


@cli.command()
@click.argument("query", required=False)
@click.option("--account", "account_ids", type=int, multiple=True, help="Filter by account id")
@click.option("--platform", "platforms", multiple=True, help="Filter by platform")
@click.option("--date-from", help="Filter from date (YYYY-MM-DD)")
@click.option("--date-to", help="Filter to date (YYYY-MM-DD)")
@click.option("--limit", type=int, default=20, help="Max results")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@click.pass_context
def search(ctx, query, account_ids, platforms, date_from, date_to, limit, as_json):
    """Search stored transcripts."""
    filters = TranscriptFilters(
        account_ids=list(account_ids),
        platforms=list(platforms),
        date_from=date_from,
        date_to=date_to,
        query=query,
        limit=limit,
    )
    with Database(_settings(ctx).db_path) as db:
        results = _open_services(ctx, db).repo.search_transcripts(filters)

    if not results["transcripts"]:
        console.print("[yellow]No results found.[/yellow]")
        return

    if as_json:
        click.echo(json.dumps(results, indent=2))
        return

    table = Table(title=f"Search: {query}" if query else "Transcripts")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Platform", style="cyan")
    table.add_column("Title", style="bold")
    table.add_column("Account")
    table.add_column("Date", style="dim", width=10)
    for r in results["transcripts"]:
        table.add_row(
            str(r["id"]),
            r["platform"],
            r["title"][:50],
            r["account_name"] or "",
            r["start_time"][:10],
        )
    console.print(table)
    console.print(f"\n[dim]Showing {len(results['transcripts'])} of {results['total_count']}.[/dim]")


@cli.command()
@click.argument("transcript_id", type=int)
@click.argument("account_id", type=int)
@click.option("--reason", required=True, help="Why the transcript is being moved")
@click.option("--actor", default="cli", help="Who is making the change")
@click.pass_context
def reassign(ctx, transcript_id, account_id, reason, actor):
    """Move a transcript to another account."""
    with Database(_settings(ctx).db_path) as db:
        try:
            record = _open_services(ctx, db).association.reassociate_transcript(
                transcript_id, account_id, reason, actor
            )
        except CallSifterError as e:
            _fail(e)

    console.print(
        f"[green]Reassigned[/green] transcript {transcript_id}: "
        f"account {record.old_account_id} → {record.new_account_id}"
    )


# ---------------------------------------------------------------------------
# Association Rules
# ---------------------------------------------------------------------------


@cli.group(name="rules")
def rules_group():
    """Manage account association rules."""
    pass


@rules_group.command(name="list")
def rules_list():
    """List rules in evaluation order."""
    rules = sorted(load_rules(), key=lambda r: -r.priority)
    if not rules:
        console.print("[yellow]No rules defined.[/yellow]")
        return

    table = Table(title="Association Rules")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Type", style="cyan")
    table.add_column("Pattern")
    table.add_column("Account", justify="right")
    table.add_column("Priority", justify="right")
    table.add_column("Active", justify="center")
    for r in rules:
        table.add_row(
            r.id,
            r.name,
            r.type.value,
            r.pattern or "",
            str(r.account_id) if r.account_id is not None else "",
            str(r.priority),
            "[green]✓[/green]" if r.active else "",
        )
    console.print(table)


@rules_group.command(name="add")
@click.option("--name", required=True, help="Rule display name")
@click.option("--type", "rule_type", required=True, type=click.Choice([t.value for t in RuleType]))
@click.option("--pattern", default=None, help="Domain or regular expression")
@click.option("--account", "account_id", type=int, required=True, help="Target account id")
@click.option("--priority", type=int, default=0, help="Higher runs first")
@click.option("--inactive", is_flag=True, help="Create the rule disabled")
def rules_add(name, rule_type, pattern, account_id, priority, inactive):
    """Add an association rule."""
    rule_type = RuleType(rule_type)
    if rule_type != RuleType.MANUAL and not pattern:
        console.print(f"[red]Error:[/red] --pattern is required for {rule_type.value} rules")
        raise SystemExit(1)

    rule = AssociationRule(
        id=uuid.uuid4().hex[:8],
        name=name,
        type=rule_type,
        pattern=pattern,
        account_id=account_id,
        priority=priority,
        active=not inactive,
    )
    save_rules(load_rules() + [rule])
    console.print(f"[green]Added rule:[/green] {rule.id} ({rule.name})")


@rules_group.command(name="remove")
@click.argument("rule_id")
def rules_remove(rule_id):
    """Delete an association rule."""
    rules = load_rules()
    remaining = [r for r in rules if r.id != rule_id]
    if len(remaining) == len(rules):
        console.print(f"[red]Error:[/red] No rule with id {rule_id}")
        raise SystemExit(1)
    save_rules(remaining)
    console.print(f"[green]Removed rule:[/green] {rule_id}")


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", type=int, default=8000, help="Port")
@click.pass_context
def serve(ctx, host, port):
    """Run the webhook and admin API server."""
    import uvicorn

    from callsifter.web.app import create_app

    app = create_app(_settings(ctx))
    console.print(f"[bold]CallSifter[/bold] listening on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port)