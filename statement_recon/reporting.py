"""
Reconciliation reporting and export functionality.

Generates, for one import session:
- Excel workbook (summary, transactions, suggested matches)
- JSON export for further processing
- HTML page for review in a browser
"""
from datetime import datetime
from pathlib import Path
from typing import List, Dict, Any, Optional
import json

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Border, Side
from openpyxl.utils.dataframe import dataframe_to_rows
from jinja2 import Template

from .config import config
from .models import MatchConfidence, ReconciliationItem, ReconciliationMatch, ReconciliationStatus
from .statement_parser import period_text


class ReportGenerator:
    """Generates reconciliation reports in various formats."""

    # Excel styling
    HEADER_FILL = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
    HEADER_FONT = Font(bold=True, color="FFFFFF")
    MATCHED_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
    IGNORED_FILL = PatternFill(start_color="D9D9D9", end_color="D9D9D9", fill_type="solid")
    PENDING_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
    BORDER = Border(
        left=Side(style='thin'),
        right=Side(style='thin'),
        top=Side(style='thin'),
        bottom=Side(style='thin')
    )

    STATUS_FILLS = {
        ReconciliationStatus.MATCHED.value: MATCHED_FILL,
        ReconciliationStatus.CREATED.value: MATCHED_FILL,
        ReconciliationStatus.IGNORED.value: IGNORED_FILL,
        ReconciliationStatus.PENDING.value: PENDING_FILL,
    }

    def __init__(self, output_dir: Optional[Path] = None):
        self.output_dir = Path(output_dir or config.reports_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def _default_filename(self, session, extension: str) -> str:
        if session.import_id:
            return f"reconciliation_{session.import_id[:8]}.{extension}"
        end = session.statement.period.end or datetime.now()
        return f"reconciliation_{end.strftime('%Y%m%d')}.{extension}"

    def transactions_frame(self, items: List[ReconciliationItem]) -> pd.DataFrame:
        """One row per transaction with its status and best suggestion."""
        rows = []
        for item in items:
            tx = item.transaction
            best = item.best_match
            rows.append({
                "FITID": tx.fit_id,
                "Date": tx.date_str,
                "Type": tx.type.value,
                "Amount": float(tx.amount),
                "Description": tx.description,
                "Status": item.status.value,
                "Linked Entry": item.linked_entry_id or "",
                "Best Score": best.score if best else "",
                "Suggestions": len(item.suggested_matches),
            })
        return pd.DataFrame(rows, columns=[
            "FITID", "Date", "Type", "Amount", "Description",
            "Status", "Linked Entry", "Best Score", "Suggestions"
        ])

    def generate_excel_report(self, session, filename: Optional[str] = None) -> Path:
        """Generate Excel reconciliation workbook."""
        wb = Workbook()

        # Remove default sheet
        wb.remove(wb.active)

        self._create_summary_sheet(wb, session)
        self._create_transactions_sheet(wb, session.items)
        self._create_suggestions_sheet(wb, session.items)

        output_path = self.output_dir / (filename or self._default_filename(session, "xlsx"))
        wb.save(output_path)

        return output_path

    def _create_summary_sheet(self, wb: Workbook, session):
        """Create summary dashboard sheet."""
        ws = wb.create_sheet("Summary", 0)
        statement = session.statement
        summary = session.summary

        ws["A1"] = "Bank Reconciliation Summary"
        ws["A1"].font = Font(bold=True, size=16)
        ws.merge_cells("A1:D1")

        ws["A3"] = "File:"
        ws["B3"] = statement.file_name or ""
        ws["A4"] = "Period:"
        ws["B4"] = period_text(statement.period)
        ws["A5"] = "Bank / Account:"
        ws["B5"] = f"{statement.account.bank_id or '-'} / {statement.account.account_id or '-'}"
        ws["A6"] = "Import ID:"
        ws["B6"] = session.import_id or ""

        ws["A8"] = "Status"
        ws["A8"].font = Font(bold=True, size=12)

        count_data = [
            ("Transactions", summary.total),
            ("Pending", summary.pending),
            ("Matched", summary.matched),
            ("Created", summary.created),
            ("Ignored", summary.ignored),
        ]
        for i, (label, value) in enumerate(count_data, start=9):
            ws[f"A{i}"] = label
            ws[f"B{i}"] = value

        ws["A15"] = "Amounts"
        ws["A15"].font = Font(bold=True, size=12)

        amount_data = [
            (f"Credits ({summary.total_credits})", summary.credit_amount),
            (f"Debits ({summary.total_debits})", summary.debit_amount),
            ("Ledger Balance", statement.ledger_balance),
        ]
        for i, (label, value) in enumerate(amount_data, start=16):
            ws[f"A{i}"] = label
            ws[f"B{i}"] = float(value) if value is not None else None
            ws[f"B{i}"].number_format = '#,##0.00'

        ws["A20"] = "Progress:"
        ws["B20"] = f"{summary.progress:.1%}"

        if statement.warnings:
            ws["D3"] = "Parser Warnings"
            ws["D3"].font = Font(bold=True, size=12)
            for i, warning in enumerate(statement.warnings, start=4):
                ws[f"D{i}"] = warning

        ws.column_dimensions["A"].width = 25
        ws.column_dimensions["B"].width = 30
        ws.column_dimensions["D"].width = 60

    def _create_transactions_sheet(self, wb: Workbook, items: List[ReconciliationItem]):
        """Create the per-transaction sheet from a DataFrame."""
        ws = wb.create_sheet("Transactions")
        df = self.transactions_frame(items)
        status_col = list(df.columns).index("Status") + 1

        for row_num, row in enumerate(dataframe_to_rows(df, index=False, header=True), start=1):
            for col, value in enumerate(row, start=1):
                cell = ws.cell(row=row_num, column=col, value=value)
                cell.border = self.BORDER
                if row_num == 1:
                    cell.fill = self.HEADER_FILL
                    cell.font = self.HEADER_FONT
                elif col == status_col and value in self.STATUS_FILLS:
                    cell.fill = self.STATUS_FILLS[value]
            if row_num > 1:
                ws.cell(row=row_num, column=4).number_format = '#,##0.00'

        widths = [24, 12, 8, 14, 50, 10, 38, 11, 12]
        for col, width in enumerate(widths, start=1):
            ws.column_dimensions[chr(64 + col)].width = width

    def _create_suggestions_sheet(self, wb: Workbook, items: List[ReconciliationItem]):
        """Create sheet listing every suggested match for pending items."""
        ws = wb.create_sheet("Suggestions")

        headers = [
            "FITID", "Bank Amount", "Entry ID", "Table", "Entry Description",
            "Entry Amount", "Due Date", "Score", "Confidence", "Reasons"
        ]
        for col, header in enumerate(headers, start=1):
            cell = ws.cell(row=1, column=col, value=header)
            cell.fill = self.HEADER_FILL
            cell.font = self.HEADER_FONT
            cell.border = self.BORDER

        row_num = 2
        for item in items:
            for match in item.suggested_matches:
                row_data = [
                    item.transaction.fit_id,
                    float(item.transaction.amount),
                    match.entry_id,
                    match.entry_table.value,
                    match.description[:50],
                    float(match.amount),
                    match.due_date,
                    match.score,
                    match.confidence.value,
                    "; ".join(match.match_reasons),
                ]
                for col, value in enumerate(row_data, start=1):
                    cell = ws.cell(row=row_num, column=col, value=value)
                    cell.border = self.BORDER
                    if col == 9 and match.confidence is MatchConfidence.HIGH:
                        cell.fill = self.MATCHED_FILL
                ws.cell(row=row_num, column=2).number_format = '#,##0.00'
                ws.cell(row=row_num, column=6).number_format = '#,##0.00'
                row_num += 1

        if row_num == 2:
            ws["A3"] = "No suggestions for pending transactions"

        for col in range(1, len(headers) + 1):
            ws.column_dimensions[chr(64 + col)].width = 16

    def generate_json_report(self, session, filename: Optional[str] = None) -> Path:
        """Generate JSON report for API consumption or further processing."""
        statement = session.statement
        summary = session.summary

        report_data = {
            "generated_at": datetime.now().isoformat(),
            "import_id": session.import_id,
            "file_name": statement.file_name,
            "account": {
                "bank_id": statement.account.bank_id,
                "account_id": statement.account.account_id,
                "currency": statement.account.currency,
            },
            "period": {
                "start": statement.period.start.isoformat() if statement.period.start else None,
                "end": statement.period.end.isoformat() if statement.period.end else None,
            },
            "ledger_balance": str(statement.ledger_balance) if statement.ledger_balance is not None else None,
            "warnings": statement.warnings,
            "summary": {
                "total": summary.total,
                "pending": summary.pending,
                "matched": summary.matched,
                "created": summary.created,
                "ignored": summary.ignored,
                "total_credits": summary.total_credits,
                "total_debits": summary.total_debits,
                "credit_amount": str(summary.credit_amount),
                "debit_amount": str(summary.debit_amount),
                "progress": summary.progress,
            },
            "items": [self._item_to_dict(item) for item in session.items],
        }

        output_path = self.output_dir / (filename or self._default_filename(session, "json"))
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(report_data, f, indent=2, default=str, ensure_ascii=False)

        return output_path

    def _item_to_dict(self, item: ReconciliationItem) -> Dict[str, Any]:
        tx = item.transaction
        return {
            "fit_id": tx.fit_id,
            "date": tx.date_str,
            "type": tx.type.value,
            "ofx_type": tx.ofx_type,
            "amount": str(tx.amount),
            "description": tx.description,
            "status": item.status.value,
            "linked_entry_id": item.linked_entry_id,
            "linked_entry_table": item.linked_entry_table.value if item.linked_entry_table else None,
            "record_id": item.record_id,
            "notes": item.notes,
            "suggested_matches": [self._match_to_dict(m) for m in item.suggested_matches],
        }

    def _match_to_dict(self, match: ReconciliationMatch) -> Dict[str, Any]:
        return {
            "entry_id": match.entry_id,
            "entry_table": match.entry_table.value,
            "description": match.description,
            "amount": str(match.amount),
            "due_date": match.due_date.isoformat() if match.due_date else None,
            "status": match.status,
            "score": match.score,
            "confidence": match.confidence.value,
            "reasons": match.match_reasons,
        }

    def generate_html_report(self, session, filename: Optional[str] = None) -> Path:
        """Generate HTML report for web viewing."""
        template = Template(HTML_REPORT_TEMPLATE)

        html_content = template.render(
            statement=session.statement,
            summary=session.summary,
            items=session.items,
            period=period_text(session.statement.period),
            generated_at=datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        )

        output_path = self.output_dir / (filename or self._default_filename(session, "html"))
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(html_content)

        return output_path


# HTML Report Template
HTML_REPORT_TEMPLATE = """
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>Bank Reconciliation Report</title>
    <style>
        body { font-family: Arial, sans-serif; margin: 20px; background: #f5f5f5; }
        .container { max-width: 1200px; margin: 0 auto; background: white; padding: 20px; border-radius: 8px; box-shadow: 0 2px 4px rgba(0,0,0,0.1); }
        h1 { color: #333; border-bottom: 2px solid #366092; padding-bottom: 10px; }
        h2 { color: #366092; margin-top: 30px; }
        .summary-grid { display: grid; grid-template-columns: repeat(auto-fit, minmax(160px, 1fr)); gap: 20px; margin: 20px 0; }
        .summary-card { background: #f8f9fa; padding: 15px; border-radius: 8px; border-left: 4px solid #366092; }
        .summary-card h3 { margin: 0 0 10px 0; color: #666; font-size: 14px; }
        .summary-card .value { font-size: 24px; font-weight: bold; color: #333; }
        table { width: 100%; border-collapse: collapse; margin: 20px 0; }
        th, td { padding: 10px; text-align: left; border-bottom: 1px solid #ddd; }
        th { background: #366092; color: white; }
        tr:hover { background: #f5f5f5; }
        .status-matched, .status-created { background: #c6efce; color: #006100; padding: 4px 8px; border-radius: 4px; }
        .status-pending { background: #ffeb9c; color: #9c5700; padding: 4px 8px; border-radius: 4px; }
        .status-ignored { background: #d9d9d9; color: #444; padding: 4px 8px; border-radius: 4px; }
        .credit { color: #006100; }
        .debit { color: #9c0006; }
        .warnings { background: #fff4e5; border-left: 4px solid #f0a500; padding: 10px 15px; }
        .footer { margin-top: 40px; text-align: center; color: #666; font-size: 12px; }
    </style>
</head>
<body>
    <div class="container">
        <h1>Bank Reconciliation Report</h1>
        <p>{{ statement.file_name or '' }} | Period: {{ period }} | Generated: {{ generated_at }}</p>

        {% if statement.warnings %}
        <div class="warnings">
            {% for warning in statement.warnings %}<div>{{ warning }}</div>{% endfor %}
        </div>
        {% endif %}

        <div class="summary-grid">
            <div class="summary-card"><h3>Transactions</h3><div class="value">{{ summary.total }}</div></div>
            <div class="summary-card"><h3>Pending</h3><div class="value">{{ summary.pending }}</div></div>
            <div class="summary-card"><h3>Matched</h3><div class="value">{{ summary.matched }}</div></div>
            <div class="summary-card"><h3>Created</h3><div class="value">{{ summary.created }}</div></div>
            <div class="summary-card"><h3>Ignored</h3><div class="value">{{ summary.ignored }}</div></div>
            <div class="summary-card"><h3>Progress</h3><div class="value">{{ "%.1f"|format(summary.progress * 100) }}%</div></div>
            <div class="summary-card"><h3>Credits</h3><div class="value">{{ "%.2f"|format(summary.credit_amount|float) }}</div></div>
            <div class="summary-card"><h3>Debits</h3><div class="value">{{ "%.2f"|format(summary.debit_amount|float) }}</div></div>
        </div>

        <h2>Transactions</h2>
        <table>
            <thead>
                <tr>
                    <th>Date</th>
                    <th>Description</th>
                    <th>Amount</th>
                    <th>Status</th>
                    <th>Best Suggestion</th>
                </tr>
            </thead>
            <tbody>
                {% for item in items %}
                <tr>
                    <td>{{ item.transaction.date_str }}</td>
                    <td>{{ item.transaction.description|truncate(60) }}</td>
                    <td class="{{ item.transaction.type.value }}">{{ "%.2f"|format(item.transaction.amount|float) }}</td>
                    <td><span class="status-{{ item.status.value }}">{{ item.status.value }}</span></td>
                    <td>
                        {% if item.best_match %}
                        {{ item.best_match.description|truncate(40) }} ({{ item.best_match.score }}): {{ item.best_match.match_reasons|join(', ') }}
                        {% elif item.linked_entry_id %}
                        {{ item.linked_entry_table.value if item.linked_entry_table else '' }} {{ item.linked_entry_id }}
                        {% else %}-{% endif %}
                    </td>
                </tr>
                {% endfor %}
            </tbody>
        </table>

        <div class="footer">
            Generated by Bank Statement Reconciliation | {{ generated_at }}
        </div>
    </div>
</body>
</html>
"""
