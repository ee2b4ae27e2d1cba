#!/usr/bin/env python3
"""
Demo script to showcase statement reconciliation.

Parses a sample OFX statement, scores it against a handful of open
receivables and payables in an in-memory ledger, settles the confident
matches and prints the result.
"""
import sys
from pathlib import Path

# Add package root to path
sys.path.insert(0, str(Path(__file__).parent))

from datetime import date
from decimal import Decimal

from statement_recon.models import EntryTable, MatchConfidence, ReconciliationStatus
from statement_recon.reconciler import BankReconciler, calculate_summary
from statement_recon.reporting import ReportGenerator
from statement_recon.statement_parser import parse_ofx, period_text
from statement_recon.storage import SqlLedgerGateway

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich import box


console = Console()

TENANT = "demo-tenant"

SAMPLE_STATEMENT = """OFXHEADER:100
DATA:OFXSGML
VERSION:102
CHARSET:1252

<OFX>
<BANKMSGSRSV1>
<STMTTRNRS>
<STMTRS>
<CURDEF>BRL
<BANKACCTFROM>
<BANKID>0341
<BRANCHID>1234
<ACCTID>56789-0
<ACCTTYPE>CHECKING
</BANKACCTFROM>
<BANKTRANLIST>
<DTSTART>20240301000000[-3:BRT]
<DTEND>20240331235959[-3:BRT]
<STMTTRN>
<TRNTYPE>DEBIT
<DTPOSTED>20240305100000[-3:BRT]
<TRNAMT>-2500.00
<FITID>DEMO001
<MEMO>ALUGUEL SALA COMERCIAL
<STMTTRN>
<TRNTYPE>CREDIT
<DTPOSTED>20240308
<TRNAMT>1200.50
<FITID>DEMO002
<NAME>CLIENTE XYZ LTDA
<MEMO>MENSALIDADE MARCO
<STMTTRN>
<TRNTYPE>FEE
<DTPOSTED>20240310
<TRNAMT>-12,90
<FITID>DEMO003
<MEMO>TARIFA PACOTE SERVICOS
<STMTTRN>
<TRNTYPE>DEBIT
<DTPOSTED>20240318
<TRNAMT>-415.37
<FITID>DEMO004
<MEMO>ENERGIA ELETRICA CPFL
<STMTTRN>
<TRNTYPE>XFER
<DTPOSTED>20240325
<TRNAMT>830.00
<FITID>DEMO005
<MEMO>PIX RECEBIDO CONSULTORIA
</BANKTRANLIST>
<LEDGERBAL>
<BALAMT>18230.45
<DTASOF>20240331
</LEDGERBAL>
</STMTRS>
</STMTTRNRS>
</BANKMSGSRSV1>
</OFX>
"""

SAMPLE_ENTRIES = [
    (EntryTable.PAYABLE, "Aluguel sala comercial", "2500.00", date(2024, 3, 5)),
    (EntryTable.PAYABLE, "Energia eletrica marco", "402.10", date(2024, 3, 15)),
    (EntryTable.PAYABLE, "Internet fibra", "199.90", date(2024, 3, 20)),
    (EntryTable.RECEIVABLE, "Mensalidade Cliente XYZ", "1200.50", date(2024, 3, 10)),
    (EntryTable.RECEIVABLE, "Consultoria projeto Alfa", "830.00", date(2024, 3, 28)),
]


def seed_ledger(gateway):
    for table, description, amount, due_date in SAMPLE_ENTRIES:
        gateway.create(table.value, {
            "tenant_id": TENANT,
            "description": description,
            "amount": Decimal(amount),
            "due_date": due_date,
            "status": "pending",
        })


def main():
    console.print(Panel.fit(
        "[bold blue]Bank Statement Reconciliation - Demo[/bold blue]\n"
        "[dim]OFX parsing, match suggestions and reconciliation records[/dim]",
        border_style="blue"
    ))

    console.print("\n[cyan]Seeding in-memory ledger...[/cyan]")
    gateway = SqlLedgerGateway("sqlite://")
    seed_ledger(gateway)
    console.print(f"  • Open entries: {len(SAMPLE_ENTRIES)}")

    statement = parse_ofx(SAMPLE_STATEMENT, file_name="extrato_demo.ofx")
    console.print(f"  • Bank transactions: {len(statement.transactions)}")
    console.print(f"  • Period: {period_text(statement.period)}")

    console.print("\n[cyan]Scoring transactions...[/cyan]")
    reconciler = BankReconciler(gateway=gateway)
    session = reconciler.start_session(statement, TENANT, user_id="demo")

    display_suggestions(session.items)

    console.print("\n[cyan]Settling high-confidence matches...[/cyan]")
    for item in session.items:
        best = item.best_match
        if best and best.confidence is MatchConfidence.HIGH:
            result = reconciler.match_transaction(TENANT, item.transaction, best, session.import_id, "demo")
            if result.success:
                item.status = ReconciliationStatus.MATCHED
                item.linked_entry_id = best.entry_id
                console.print(f"  [green]✓[/green] {item.transaction.fit_id} → {best.description}")

    fee = session.find("DEMO003")
    if fee and fee.status is ReconciliationStatus.PENDING:
        result = reconciler.create_entry(TENANT, fee.transaction, session.import_id, user_id="demo")
        if result.success:
            fee.status = ReconciliationStatus.CREATED
            fee.linked_entry_id = result.entry_id
            console.print(f"  [green]✓[/green] {fee.transaction.fit_id} created as new payable")

    reconciler.update_reconciled_count(session.import_id, session.items)
    session.summary = calculate_summary(session.items)
    display_summary(session.summary)

    generator = ReportGenerator()
    console.print("\n[bold green]Reports Generated:[/bold green]")
    console.print(f"  [cyan]EXCEL:[/cyan] {generator.generate_excel_report(session)}")
    console.print(f"  [cyan]HTML:[/cyan] {generator.generate_html_report(session)}")

    gateway.close()

    console.print("\n[bold green]Demo complete![/bold green]")
    console.print("\nTo run with your own data:")
    console.print("  1. Set DATABASE_URL (or LEDGER_API_URL) in .env")
    console.print("  2. Run: recon reconcile your_statement.ofx --tenant <tenant-id>")


def display_suggestions(items):
    """Display the best suggestion for each transaction."""
    table = Table(title="\nSuggested Matches", box=box.ROUNDED)
    table.add_column("FITID", style="cyan")
    table.add_column("Amount", justify="right")
    table.add_column("Description")
    table.add_column("Best Suggestion")
    table.add_column("Score", justify="right")
    table.add_column("Reasons")

    for item in items:
        tx = item.transaction
        best = item.best_match
        color = "green" if tx.is_credit() else "red"
        table.add_row(
            tx.fit_id,
            f"[{color}]{float(tx.amount):,.2f}[/{color}]",
            tx.description[:30],
            best.description[:25] if best else "-",
            str(best.score) if best else "",
            "; ".join(best.match_reasons) if best else "",
        )

    console.print(table)


def display_summary(summary):
    """Display reconciliation summary."""
    table = Table(title="\nReconciliation Summary", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Transactions", str(summary.total))
    table.add_row("Matched", f"[green]{summary.matched}[/green]")
    table.add_row("Created", f"[green]{summary.created}[/green]")
    table.add_row("Pending", f"[yellow]{summary.pending}[/yellow]")
    table.add_row("", "")
    table.add_row("Progress", f"[bold]{summary.progress:.1%}[/bold]")

    console.print(table)


if __name__ == "__main__":
    main()
