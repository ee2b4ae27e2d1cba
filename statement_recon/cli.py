"""
Command-line interface for the statement reconciliation tool.
"""
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich import box

from .config import config
from .exceptions import BankReconError
from .logging_config import setup_logging
from .models import EntryOverrides, ReconciliationStatus
from .reconciler import BankReconciler, create_gateway
from .reporting import ReportGenerator
from .statement_parser import StatementParser, period_text


console = Console()

STATUS_STYLES = {
    ReconciliationStatus.PENDING: "yellow",
    ReconciliationStatus.MATCHED: "green",
    ReconciliationStatus.CREATED: "green",
    ReconciliationStatus.IGNORED: "dim",
}


@click.group()
@click.version_option(version="1.0.0")
@click.option("--database-url", envvar="DATABASE_URL", default=config.database_url, show_default=True,
              help="Local ledger database (used when LEDGER_API_URL is not set)")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Enable logging at this level")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON")
@click.pass_context
def cli(ctx, database_url, log_level, json_logs):
    """
    Bank Statement Reconciliation

    Parses OFX/QFX statements, suggests matching receivables and payables,
    and records each reconciliation decision.
    """
    ctx.ensure_object(dict)
    ctx.obj["database_url"] = database_url
    if log_level:
        setup_logging(level=log_level, json_format=json_logs)


def _make_reconciler(ctx) -> BankReconciler:
    return BankReconciler(gateway=create_gateway(config, ctx.obj["database_url"]))


def _fail(message: str):
    console.print(f"[red]Error: {message}[/red]")
    sys.exit(1)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--limit", "-n", default=50, help="Number of transactions to show")
def parse(file, limit):
    """Parse a statement file and show its contents."""
    try:
        statement = StatementParser().parse_file(Path(file))
    except BankReconError as e:
        _fail(e.message)

    info_table = Table(show_header=False, box=box.SIMPLE)
    info_table.add_column("Field", style="cyan")
    info_table.add_column("Value")
    info_table.add_row("File", statement.file_name or "")
    info_table.add_row("Bank", statement.account.bank_id or "-")
    info_table.add_row("Account", statement.account.account_id or "-")
    info_table.add_row("Period", period_text(statement.period))
    info_table.add_row("Transactions", str(len(statement.transactions)))
    if statement.ledger_balance is not None:
        info_table.add_row("Ledger Balance", f"{float(statement.ledger_balance):,.2f}")
    console.print(Panel(info_table, title="Statement"))

    table = Table(title="Transactions", box=box.ROUNDED)
    table.add_column("Date")
    table.add_column("FITID", style="cyan")
    table.add_column("Type")
    table.add_column("Amount", justify="right")
    table.add_column("Description")

    for tx in statement.transactions[:limit]:
        color = "green" if tx.is_credit() else "red"
        table.add_row(
            tx.date_str,
            tx.fit_id,
            tx.ofx_type,
            f"[{color}]{float(tx.amount):,.2f}[/{color}]",
            tx.description[:50],
        )
    console.print(table)

    _display_warnings(statement.warnings)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--tenant", "-t", required=True, help="Tenant ID")
@click.option("--user", "-u", default=None, help="User performing the import")
@click.option("--import-id", default=None, help="Reopen an earlier import instead of recording a new one")
@click.option("--output-dir", "-o", type=click.Path(), default=None, help="Output directory for reports")
@click.option("--format", "-f", "formats", multiple=True, type=click.Choice(["excel", "json", "html"]),
              help="Report formats to generate")
@click.pass_context
def reconcile(ctx, file, tenant, user, import_id, output_dir, formats):
    """
    Import a statement and suggest matches for each transaction.

    Examples:
        recon reconcile extrato.ofx --tenant t1
        recon reconcile extrato.ofx --tenant t1 -f excel -f html
    """
    console.print(Panel.fit(
        "[bold blue]Bank Statement Reconciliation[/bold blue]",
        border_style="blue"
    ))

    reconciler = _make_reconciler(ctx)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Loading statement...", total=None)
        try:
            session = reconciler.start_session(Path(file), tenant, user_id=user, import_id=import_id)
        except BankReconError as e:
            progress.stop()
            _fail(e.message)
        progress.update(task, description="Complete!")

    console.print(f"\n[cyan]Import:[/cyan] {session.import_id}")
    console.print(f"[cyan]Period:[/cyan] {period_text(session.statement.period)}")

    _display_summary(session.summary)
    _display_items(session.items)
    _display_warnings(session.statement.warnings)

    if formats:
        generator = ReportGenerator(Path(output_dir) if output_dir else None)
        builders = {
            "excel": generator.generate_excel_report,
            "json": generator.generate_json_report,
            "html": generator.generate_html_report,
        }
        console.print("\n[bold green]Reports Generated:[/bold green]")
        for fmt in formats:
            console.print(f"  {fmt.upper()}: {builders[fmt](session)}")


def _open_item(ctx, file, tenant, import_id, fit_id):
    reconciler = _make_reconciler(ctx)
    try:
        session = reconciler.start_session(Path(file), tenant, import_id=import_id)
    except BankReconError as e:
        _fail(e.message)

    item = session.find(fit_id)
    if item is None:
        _fail(f"Transaction {fit_id} not found in {session.statement.file_name}")
    return reconciler, session, item


def _report_result(reconciler, session, item, result, new_status):
    if not result.success:
        _fail(result.error)

    item.status = new_status
    item.linked_entry_id = result.entry_id or item.linked_entry_id
    item.record_id = result.record_id
    count = reconciler.update_reconciled_count(session.import_id, session.items)

    console.print(
        f"[green]✓ {item.transaction.fit_id} {new_status.value}[/green]"
        + (f" (entry {result.entry_id})" if result.entry_id else "")
    )
    console.print(f"Reconciled in this import: {count}/{len(session.items)}")


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.argument("fit_id")
@click.argument("entry_id")
@click.option("--tenant", "-t", required=True, help="Tenant ID")
@click.option("--import-id", required=True, help="Import the transaction belongs to")
@click.option("--user", "-u", default=None, help="User performing the match")
@click.pass_context
def match(ctx, file, fit_id, entry_id, tenant, import_id, user):
    """Settle a suggested ledger entry with a bank transaction."""
    reconciler, session, item = _open_item(ctx, file, tenant, import_id, fit_id)

    suggestion = next((m for m in item.suggested_matches if m.entry_id == entry_id), None)
    if suggestion is None:
        _fail(f"Entry {entry_id} is not a suggested match for {fit_id}")

    result = reconciler.match_transaction(tenant, item.transaction, suggestion, import_id, user_id=user)
    _report_result(reconciler, session, item, result, ReconciliationStatus.MATCHED)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.argument("fit_id")
@click.option("--tenant", "-t", required=True, help="Tenant ID")
@click.option("--import-id", required=True, help="Import the transaction belongs to")
@click.option("--user", "-u", default=None, help="User creating the entry")
@click.option("--description", default=None, help="Entry description (default: bank description)")
@click.option("--category", default=None, help="Entry category")
@click.option("--type", "entry_type", default=None, help="Entry type (default: other)")
@click.option("--customer", "customer_id", default=None, help="Customer ID (credits)")
@click.option("--supplier", "supplier_name", default=None, help="Supplier name (debits)")
@click.option("--competence-date", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="Competence date (default: first day of the transaction month)")
@click.pass_context
def create(ctx, file, fit_id, tenant, import_id, user, description, category, entry_type,
           customer_id, supplier_name, competence_date):
    """Create a settled receivable/payable from a bank transaction."""
    reconciler, session, item = _open_item(ctx, file, tenant, import_id, fit_id)

    overrides = EntryOverrides(
        description=description,
        category=category,
        entry_type=entry_type,
        customer_id=customer_id,
        supplier_name=supplier_name,
        competence_date=competence_date.date() if competence_date else None,
    )
    result = reconciler.create_entry(tenant, item.transaction, import_id, overrides, user_id=user)
    _report_result(reconciler, session, item, result, ReconciliationStatus.CREATED)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.argument("fit_id")
@click.option("--tenant", "-t", required=True, help="Tenant ID")
@click.option("--import-id", required=True, help="Import the transaction belongs to")
@click.option("--user", "-u", default=None, help="User ignoring the transaction")
@click.option("--reason", "-r", default=None, help="Why the transaction needs no ledger entry")
@click.pass_context
def ignore(ctx, file, fit_id, tenant, import_id, user, reason):
    """Mark a bank transaction as not needing a ledger entry."""
    reconciler, session, item = _open_item(ctx, file, tenant, import_id, fit_id)
    result = reconciler.ignore_transaction(tenant, item.transaction, import_id, reason, user_id=user)
    _report_result(reconciler, session, item, result, ReconciliationStatus.IGNORED)


@cli.command()
@click.option("--tenant", "-t", required=True, help="Tenant ID")
@click.pass_context
def imports(ctx, tenant):
    """List recent statement imports."""
    reconciler = _make_reconciler(ctx)
    rows = reconciler.list_imports(tenant)

    if not rows:
        console.print("[yellow]No imports found.[/yellow]")
        return

    table = Table(title="Statement Imports", box=box.ROUNDED)
    table.add_column("ID", style="cyan")
    table.add_column("Imported")
    table.add_column("File")
    table.add_column("Period")
    table.add_column("Transactions", justify="right")
    table.add_column("Reconciled", justify="right")

    for imp in rows:
        period = f"{imp.period_start or '?'} a {imp.period_end or '?'}"
        table.add_row(
            (imp.id or "")[:8],
            imp.imported_at.strftime("%Y-%m-%d %H:%M"),
            imp.file_name,
            period,
            str(imp.total_transactions),
            f"{imp.reconciled_count}/{imp.total_transactions}",
        )

    console.print(table)


@cli.command()
@click.pass_context
def status(ctx):
    """Show configuration status."""
    console.print("\n[bold]Configuration Status[/bold]\n")

    table = Table(show_header=False, box=box.SIMPLE)
    table.add_column("Setting", style="cyan")
    table.add_column("Status")

    api_ok = config.ledger.is_configured()
    table.add_row(
        "Ledger API",
        f"[green]{config.ledger.api_url}[/green]" if api_ok else "[yellow]Not configured[/yellow]"
    )
    if not api_ok:
        table.add_row("Local Database", ctx.obj["database_url"])

    table.add_row("Currency", config.ledger.currency)
    table.add_row("Amount Tolerance", str(config.matching.amount_tolerance))
    table.add_row("Date Window", f"{config.matching.date_window_days} days")
    table.add_row("Minimum Score", str(config.matching.min_match_score))
    table.add_row("Max Suggestions", str(config.matching.max_suggestions))
    table.add_row("Reports Directory", str(config.reports_dir))

    console.print(table)


def _display_summary(summary):
    """Display reconciliation summary."""
    console.print("\n")

    table = Table(title="Reconciliation Summary", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Transactions", str(summary.total))
    table.add_row("Pending", f"[yellow]{summary.pending}[/yellow]")
    table.add_row("Matched", f"[green]{summary.matched}[/green]")
    table.add_row("Created", f"[green]{summary.created}[/green]")
    table.add_row("Ignored", str(summary.ignored))
    table.add_row("", "")
    table.add_row(f"Credits ({summary.total_credits})", f"{float(summary.credit_amount):,.2f}")
    table.add_row(f"Debits ({summary.total_debits})", f"{float(summary.debit_amount):,.2f}")
    table.add_row("", "")
    table.add_row("Progress", f"[bold]{summary.progress:.1%}[/bold]")

    console.print(table)


def _display_items(items):
    """Display each transaction with its status or best suggestion."""
    table = Table(title="Transactions", box=box.SIMPLE)
    table.add_column("Date")
    table.add_column("FITID", style="cyan")
    table.add_column("Amount", justify="right")
    table.add_column("Description")
    table.add_column("Status")
    table.add_column("Best Suggestion")

    for item in items:
        tx = item.transaction
        style = STATUS_STYLES[item.status]
        best = item.best_match
        if best:
            suggestion = f"{best.entry_id[:8]} {best.description[:25]} ({best.score})"
        elif item.linked_entry_id:
            suggestion = f"→ {item.linked_entry_id[:8]}"
        else:
            suggestion = "-"

        table.add_row(
            tx.date_str,
            tx.fit_id,
            f"{float(tx.amount):,.2f}",
            tx.description[:40],
            f"[{style}]{item.status.value}[/{style}]",
            suggestion,
        )

    console.print(table)


def _display_warnings(warnings):
    if not warnings:
        return
    console.print(f"\n[bold yellow]Warnings ({len(warnings)}):[/bold yellow]")
    for warning in warnings[:10]:
        console.print(f"  [yellow]•[/yellow] {warning}")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
