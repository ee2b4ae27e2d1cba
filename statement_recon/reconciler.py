"""
Main reconciliation orchestrator.

Coordinates the parser, scorer and ledger gateway:
1. Load persisted decisions and open ledger entries for a tenant
2. Rehydrate already-reconciled transactions, score the rest
3. Apply operator decisions (match / create / ignore)
4. Track the import and its reconciled count
"""
import json
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import requests

from .config import config, Config
from .exceptions import (
    AlreadyReconciledError, BankReconError, ClassMismatchError, GatewayError,
    RecordNotFoundError
)
from .gateway import CrudFilter, HttpLedgerGateway, LedgerGateway, ListOptions
from .logging_config import (
    get_logger, log_action, log_error, log_import_complete, log_import_start
)
from .matching_engine import MatchScorer
from .models import (
    IMPORTS_TABLE, ITEMS_TABLE, OPEN_LEDGER_STATUSES,
    ActionResult, BankTransaction, EntryOverrides, EntryTable, LedgerEntry,
    LedgerStatus, ParsedStatement, ReconciliationImport, ReconciliationItem,
    ReconciliationMatch, ReconciliationRecord, ReconciliationStatus,
    ReconciliationSummary
)
from .statement_parser import StatementParser, total_credits, total_debits
from .storage import SqlLedgerGateway

logger = get_logger("reconciler")

READ_ERRORS = (BankReconError, requests.RequestException)


@dataclass
class ImportSession:
    """One statement loaded for reconciliation."""
    statement: ParsedStatement
    import_record: Optional[ReconciliationImport]
    items: List[ReconciliationItem] = field(default_factory=list)
    summary: ReconciliationSummary = field(default_factory=ReconciliationSummary)

    @property
    def import_id(self) -> Optional[str]:
        return self.import_record.id if self.import_record else None

    def find(self, fit_id: str) -> Optional[ReconciliationItem]:
        for item in self.items:
            if item.transaction.fit_id == fit_id:
                return item
        return None


def create_gateway(cfg: Optional[Config] = None, database_url: Optional[str] = None) -> LedgerGateway:
    """HTTP gateway when a ledger API is configured, local SQL store otherwise."""
    cfg = cfg or config
    if cfg.ledger.is_configured():
        return HttpLedgerGateway(cfg.ledger)

    return SqlLedgerGateway(database_url or cfg.database_url)


def records_from_rows(rows: List[Dict[str, Any]]) -> List[ReconciliationRecord]:
    """Convert live history rows, skipping any that do not describe a valid record."""
    records = []
    for row in rows:
        if row.get("deleted_at"):
            continue
        try:
            records.append(ReconciliationRecord.from_row(row))
        except ValueError as e:
            logger.warning(
                f"Skipping unreadable reconciliation record {row.get('id')}: {e}",
                extra={"extra_data": {"event": "record_skipped", "record_id": row.get("id")}}
            )
    return records


def calculate_summary(items: List[ReconciliationItem]) -> ReconciliationSummary:
    """Aggregate status counts and money totals over items."""
    summary = ReconciliationSummary(total=len(items))

    for item in items:
        tx = item.transaction
        if item.status is ReconciliationStatus.PENDING:
            summary.pending += 1
        elif item.status is ReconciliationStatus.MATCHED:
            summary.matched += 1
        elif item.status is ReconciliationStatus.CREATED:
            summary.created += 1
        elif item.status is ReconciliationStatus.IGNORED:
            summary.ignored += 1

        if tx.is_credit():
            summary.total_credits += 1
            summary.credit_amount += tx.absolute_amount
        else:
            summary.total_debits += 1
            summary.debit_amount += tx.absolute_amount

    return summary


class BankReconciler:
    """
    Reconciliation engine for one ledger gateway.

    Usage:
        reconciler = BankReconciler(SqlLedgerGateway("sqlite:///recon.db"))
        session = reconciler.start_session("extrato.ofx", tenant_id="t1")
        for item in session.items:
            if item.best_match:
                reconciler.match_transaction(
                    "t1", item.transaction, item.best_match, session.import_id
                )
    """

    def __init__(
        self,
        gateway: Optional[LedgerGateway] = None,
        scorer: Optional[MatchScorer] = None,
        cfg: Optional[Config] = None
    ):
        self.config = cfg or config
        self.gateway = gateway or create_gateway(self.config)
        self.scorer = scorer or MatchScorer(self.config.matching)
        self.parser = StatementParser()

    # ============== Loading ==============

    def build_items(self, statement: ParsedStatement, tenant_id: str) -> List[ReconciliationItem]:
        """
        Turn parsed transactions into reconciliation items.

        Transactions that already have a persisted record come back in their
        recorded state with no suggestions. Everything else is pending and
        scored against open entries of the matching table.
        """
        start_time = time.time()

        with ThreadPoolExecutor(max_workers=3) as pool:
            records_future = pool.submit(
                self._safe_read, "reconciliation records", self._load_records, tenant_id
            )
            receivables_future = pool.submit(
                self._safe_read, "receivables", self._load_candidates, tenant_id, EntryTable.RECEIVABLE
            )
            payables_future = pool.submit(
                self._safe_read, "payables", self._load_candidates, tenant_id, EntryTable.PAYABLE
            )
            records = records_future.result() or {}
            candidates = {
                EntryTable.RECEIVABLE: receivables_future.result() or [],
                EntryTable.PAYABLE: payables_future.result() or [],
            }

        items = []
        rehydrated = 0
        suggestion_count = 0

        for tx in statement.transactions:
            record = records.get(tx.fit_id)
            if record:
                rehydrated += 1
                items.append(ReconciliationItem(
                    transaction=tx,
                    status=record.status,
                    linked_entry_id=record.linked_entry_id,
                    linked_entry_table=record.linked_entry_table,
                    record_id=record.id,
                    notes=record.notes,
                ))
                continue

            suggestions = self.scorer.suggest_matches(
                tx, candidates[EntryTable.for_class(tx.type)]
            )
            suggestion_count += len(suggestions)
            items.append(ReconciliationItem(transaction=tx, suggested_matches=suggestions))

        log_import_complete(
            logger,
            tenant_id,
            pending=len(items) - rehydrated,
            rehydrated=rehydrated,
            suggestions=suggestion_count,
            duration_seconds=time.time() - start_time,
        )
        return items

    def _safe_read(self, what: str, loader: Callable, *args) -> Any:
        try:
            return loader(*args)
        except READ_ERRORS as e:
            logger.warning(
                f"Could not load {what}, continuing without them: {e}",
                extra={"extra_data": {"event": "read_degraded", "source": what}}
            )
            return None

    def _load_records(self, tenant_id: str) -> Dict[str, ReconciliationRecord]:
        rows = self.gateway.list(
            ITEMS_TABLE,
            [CrudFilter("tenant_id", tenant_id)],
            ListOptions(limit=self.config.ledger.history_limit, auto_exclude_deleted=True),
        )
        # transactions without a FITID have no dedup key
        return {record.fit_id: record for record in records_from_rows(rows) if record.fit_id}

    def _load_candidates(self, tenant_id: str, table: EntryTable) -> List[LedgerEntry]:
        rows = self.gateway.list(
            table.value,
            [
                CrudFilter("tenant_id", tenant_id),
                CrudFilter("status", list(OPEN_LEDGER_STATUSES), "in"),
            ],
            ListOptions(
                sort_column="due_date DESC",
                limit=self.config.ledger.candidate_limit,
                auto_exclude_deleted=True,
            ),
        )
        return [LedgerEntry.from_row(row, table) for row in rows if not row.get("deleted_at")]

    def _existing_record(self, tenant_id: str, fit_id: str) -> Optional[Dict[str, Any]]:
        rows = self.gateway.list(
            ITEMS_TABLE,
            [CrudFilter("tenant_id", tenant_id), CrudFilter("fit_id", fit_id)],
            ListOptions(limit=1, auto_exclude_deleted=True),
        )
        rows = [row for row in rows if not row.get("deleted_at")]
        return rows[0] if rows else None

    def _ensure_unreconciled(self, tenant_id: str, transaction: BankTransaction):
        if not transaction.fit_id:
            return
        existing = self._existing_record(tenant_id, transaction.fit_id)
        if existing:
            raise AlreadyReconciledError(transaction.fit_id, str(existing.get("status")))

    # ============== Actions ==============

    def match_transaction(
        self,
        tenant_id: str,
        transaction: BankTransaction,
        match: ReconciliationMatch,
        import_id: str,
        user_id: Optional[str] = None
    ) -> ActionResult:
        """Settle an existing ledger entry with a bank transaction."""
        try:
            table = EntryTable.for_class(transaction.type)
            if match.entry_table is not table:
                raise ClassMismatchError(
                    transaction.fit_id, transaction.type.value, match.entry_table.value
                )
            self._ensure_unreconciled(tenant_id, transaction)

            now = datetime.now()
            payload = {
                "id": match.entry_id,
                "status": LedgerStatus.PAID,
                "notes": json.dumps({
                    "reconciled": True,
                    "bank_fit_id": transaction.fit_id,
                    "bank_description": transaction.description,
                    "reconciled_at": now.isoformat(),
                    "reconciled_by": user_id,
                }),
            }
            payload.update(self._settlement_fields(table, transaction))
            prior = self._entry_snapshot(table, match.entry_id, payload)
            self.gateway.update(table.value, payload)

            record = ReconciliationRecord.for_transaction(
                tenant_id, import_id, transaction, ReconciliationStatus.MATCHED,
                linked_entry_id=match.entry_id,
                linked_entry_table=table,
                match_score=match.score,
                reconciled_by=user_id,
                reconciled_at=now,
            )
            try:
                row = self.gateway.create(ITEMS_TABLE, record.to_payload())
            except BankReconError:
                self._restore_entry(table, prior)
                raise
        except BankReconError as e:
            log_error(logger, e, "match_transaction", {"fit_id": transaction.fit_id})
            return ActionResult.failed(e.message)

        log_action(logger, "match", transaction.fit_id, "matched", match.entry_id, match.score)
        return ActionResult(success=True, entry_id=match.entry_id, record_id=row.get("id"))

    def create_entry(
        self,
        tenant_id: str,
        transaction: BankTransaction,
        import_id: str,
        overrides: Optional[EntryOverrides] = None,
        user_id: Optional[str] = None
    ) -> ActionResult:
        """
        Create a settled receivable/payable from a transaction.

        If the reconciliation record cannot be written the new entry is
        soft-deleted again, so a failed call leaves the ledger unchanged.
        """
        overrides = overrides or EntryOverrides()
        table = EntryTable.for_class(transaction.type)

        try:
            self._ensure_unreconciled(tenant_id, transaction)

            now = datetime.now()
            entry = self.gateway.create(
                table.value, self._entry_payload(tenant_id, transaction, table, import_id, overrides, user_id, now)
            )
            entry_id = entry.get("id")
            if not entry_id:
                raise GatewayError("create returned no id", table=table.value)

            record = ReconciliationRecord.for_transaction(
                tenant_id, import_id, transaction, ReconciliationStatus.CREATED,
                linked_entry_id=str(entry_id),
                linked_entry_table=table,
                reconciled_by=user_id,
                reconciled_at=now,
            )
            try:
                row = self.gateway.create(ITEMS_TABLE, record.to_payload())
            except BankReconError:
                self._discard_entry(table, str(entry_id))
                raise
        except BankReconError as e:
            log_error(logger, e, "create_entry", {"fit_id": transaction.fit_id})
            return ActionResult.failed(e.message)

        log_action(logger, "create", transaction.fit_id, "created", str(entry_id))
        return ActionResult(success=True, entry_id=str(entry_id), record_id=row.get("id"))

    def ignore_transaction(
        self,
        tenant_id: str,
        transaction: BankTransaction,
        import_id: str,
        reason: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> ActionResult:
        """Mark a transaction as not needing a ledger entry."""
        try:
            self._ensure_unreconciled(tenant_id, transaction)
            record = ReconciliationRecord.for_transaction(
                tenant_id, import_id, transaction, ReconciliationStatus.IGNORED,
                notes=reason or None,
                reconciled_by=user_id,
                reconciled_at=datetime.now(),
            )
            row = self.gateway.create(ITEMS_TABLE, record.to_payload())
        except BankReconError as e:
            log_error(logger, e, "ignore_transaction", {"fit_id": transaction.fit_id})
            return ActionResult.failed(e.message)

        log_action(logger, "ignore", transaction.fit_id, "ignored")
        return ActionResult(success=True, record_id=row.get("id"))

    def _settlement_fields(self, table: EntryTable, transaction: BankTransaction) -> Dict[str, Any]:
        if table is EntryTable.RECEIVABLE:
            return {"amount_received": transaction.absolute_amount, "received_at": transaction.posted_at}
        return {"amount_paid": transaction.absolute_amount, "paid_at": transaction.posted_at}

    def _entry_payload(
        self,
        tenant_id: str,
        transaction: BankTransaction,
        table: EntryTable,
        import_id: str,
        overrides: EntryOverrides,
        user_id: Optional[str],
        now: datetime
    ) -> Dict[str, Any]:
        payload = {
            "tenant_id": tenant_id,
            "description": overrides.description or transaction.description,
            "type": overrides.entry_type or "other",
            "category": overrides.category or self.config.ledger.default_category,
            "amount": transaction.absolute_amount,
            "status": LedgerStatus.PAID,
            "currency": self.config.ledger.currency,
            "due_date": transaction.transaction_date,
            "competence_date": overrides.competence_date or transaction.transaction_date.replace(day=1),
            "recurrence": "none",
            "notes": json.dumps({
                "source": "bank_reconciliation",
                "bank_fit_id": transaction.fit_id,
                "bank_description": transaction.description,
                "import_id": import_id,
                "created_at": now.isoformat(),
            }),
            "created_by": user_id,
        }
        payload.update(self._settlement_fields(table, transaction))

        if table is EntryTable.RECEIVABLE and overrides.customer_id:
            payload["customer_id"] = overrides.customer_id
        if table is EntryTable.PAYABLE and overrides.supplier_name:
            payload["supplier_name"] = overrides.supplier_name
        return payload

    def _entry_snapshot(self, table: EntryTable, entry_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Current values of the fields `payload` is about to overwrite."""
        rows = self.gateway.list(
            table.value, [CrudFilter("id", entry_id)], ListOptions(limit=1)
        )
        if not rows:
            raise RecordNotFoundError(table.value, entry_id)
        return {key: rows[0].get(key) for key in payload}

    def _restore_entry(self, table: EntryTable, prior: Dict[str, Any]):
        try:
            self.gateway.update(table.value, prior)
        except BankReconError as e:
            log_error(logger, e, "restore_entry", {"entry_id": prior.get("id"), "table": table.value})

    def _discard_entry(self, table: EntryTable, entry_id: str):
        try:
            self.gateway.update(table.value, {"id": entry_id, "deleted_at": datetime.now()})
        except BankReconError as e:
            log_error(logger, e, "discard_entry", {"entry_id": entry_id, "table": table.value})

    # ============== Import tracking ==============

    def record_import(
        self,
        statement: ParsedStatement,
        tenant_id: str,
        file_name: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> ReconciliationImport:
        """Persist the import row for a parsed statement."""
        period = statement.period
        imported = ReconciliationImport(
            tenant_id=tenant_id,
            file_name=file_name or statement.file_name or "statement.ofx",
            bank_id=statement.account.bank_id,
            account_id=statement.account.account_id,
            period_start=period.start.date() if period.start else None,
            period_end=period.end.date() if period.end else None,
            total_transactions=len(statement.transactions),
            total_credits=len(statement.credits),
            total_debits=len(statement.debits),
            credit_amount=total_credits(statement.transactions),
            debit_amount=total_debits(statement.transactions),
            reconciled_count=0,
            imported_by=user_id,
        )
        row = self.gateway.create(IMPORTS_TABLE, imported.to_payload())
        imported.id = str(row.get("id")) if row.get("id") else None
        return imported

    def update_reconciled_count(self, import_id: str, items: List[ReconciliationItem]) -> int:
        """
        Recompute the reconciled count from items and store it.

        The stored count only ever grows: a smaller recomputed value (a
        session rebuilt from a partial statement, say) leaves it untouched.
        """
        count = calculate_summary(items).reconciled
        rows = self.gateway.list(
            IMPORTS_TABLE, [CrudFilter("id", import_id)], ListOptions(limit=1)
        )
        stored = int(rows[0].get("reconciled_count") or 0) if rows else 0

        if count <= stored:
            return stored

        self.gateway.update(IMPORTS_TABLE, {"id": import_id, "reconciled_count": count})
        return count

    def list_imports(self, tenant_id: str) -> List[ReconciliationImport]:
        """Most recent imports for a tenant; empty when the store is unavailable."""
        rows = self._safe_read(
            "imports",
            self.gateway.list,
            IMPORTS_TABLE,
            [CrudFilter("tenant_id", tenant_id)],
            ListOptions(
                sort_column="imported_at DESC",
                limit=self.config.ledger.import_list_limit,
                auto_exclude_deleted=True,
            ),
        )
        return [ReconciliationImport.from_row(row) for row in rows or [] if not row.get("deleted_at")]

    def list_records(self, tenant_id: str, import_id: Optional[str] = None) -> List[ReconciliationRecord]:
        """Audit trail of reconciliation decisions."""
        filters = [CrudFilter("tenant_id", tenant_id)]
        if import_id:
            filters.append(CrudFilter("import_id", import_id))

        rows = self.gateway.list(
            ITEMS_TABLE,
            filters,
            ListOptions(
                sort_column="reconciled_at DESC",
                limit=self.config.ledger.history_limit,
                auto_exclude_deleted=True,
            ),
        )
        return records_from_rows(rows)

    # ============== Sessions ==============

    def start_session(
        self,
        source: Union[str, Path, ParsedStatement],
        tenant_id: str,
        user_id: Optional[str] = None,
        import_id: Optional[str] = None
    ) -> ImportSession:
        """
        Parse (if needed), record the import and build items in one call.

        Pass `import_id` to reopen an earlier import instead of recording a
        new one.
        """
        if isinstance(source, ParsedStatement):
            statement = source
        else:
            statement = self.parser.parse_file(Path(source))

        log_import_start(
            logger, tenant_id, statement.file_name or "-", len(statement.transactions)
        )

        if import_id:
            import_record = self._find_import(tenant_id, import_id)
        else:
            import_record = self.record_import(statement, tenant_id, user_id=user_id)

        items = self.build_items(statement, tenant_id)
        return ImportSession(
            statement=statement,
            import_record=import_record,
            items=items,
            summary=calculate_summary(items),
        )

    def _find_import(self, tenant_id: str, import_id: str) -> ReconciliationImport:
        rows = self.gateway.list(
            IMPORTS_TABLE,
            [CrudFilter("tenant_id", tenant_id), CrudFilter("id", import_id)],
            ListOptions(limit=1, auto_exclude_deleted=True),
        )
        if not rows:
            raise RecordNotFoundError(IMPORTS_TABLE, import_id)
        return ReconciliationImport.from_row(rows[0])
