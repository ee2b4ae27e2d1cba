"""
Tests for the reconciliation orchestrator and import recorder.
"""
import json
import pytest
from datetime import date, datetime
from decimal import Decimal
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from statement_recon.exceptions import DatabaseError, GatewayError
from statement_recon.gateway import CrudFilter, HttpLedgerGateway, LedgerGateway, ListOptions
from statement_recon.models import (
    IMPORTS_TABLE, ITEMS_TABLE, EntryOverrides, EntryTable, MatchConfidence,
    ReconciliationItem, ReconciliationMatch, ReconciliationStatus
)
from statement_recon.reconciler import BankReconciler, ImportSession, calculate_summary, create_gateway
from statement_recon.statement_parser import parse_ofx
from statement_recon.storage import SqlLedgerGateway

TENANT = "tenant-001"

NO_FITID_STATEMENT = """<OFX>
<BANKTRANLIST>
<STMTTRN>
<TRNTYPE>FEE
<DTPOSTED>20240312
<TRNAMT>-9.90
<MEMO>TARIFA B
</STMTTRN>
<STMTTRN>
<TRNTYPE>FEE
<DTPOSTED>20240305
<TRNAMT>-4.50
<MEMO>TARIFA A
</STMTTRN>
</BANKTRANLIST>
</OFX>
"""


class UnavailableGateway(LedgerGateway):
    """Gateway whose every call fails."""

    def list(self, table, filters=None, options=None):
        raise GatewayError("connection refused", table=table)

    def create(self, table, payload):
        raise GatewayError("connection refused", table=table)

    def update(self, table, payload):
        raise GatewayError("connection refused", table=table)


class FailingRecordGateway(SqlLedgerGateway):
    """SQL store that refuses to write reconciliation records."""

    def create(self, table, payload):
        if table == ITEMS_TABLE:
            raise DatabaseError("insert", "disk full")
        return super().create(table, payload)


def _items_by_fit(items):
    return {item.transaction.fit_id: item for item in items}


def _rows(gateway, table, **filters):
    return gateway.list(table, [CrudFilter(k, v) for k, v in filters.items()])


@pytest.fixture
def statement(sgml_statement):
    return parse_ofx(sgml_statement, file_name="extrato.ofx")


@pytest.fixture
def import_id(reconciler, statement):
    return reconciler.record_import(statement, TENANT, user_id="user-1").id


class TestBuildItems:
    """Tests for building reconciliation items."""

    def test_pending_items_with_suggestions(self, reconciler, statement, seed_payable):
        payable = seed_payable()

        items = _items_by_fit(reconciler.build_items(statement, TENANT))

        assert all(item.status is ReconciliationStatus.PENDING for item in items.values())
        best = items["TX001"].best_match
        assert best.entry_id == payable["id"]
        assert best.entry_table is EntryTable.PAYABLE
        assert best.confidence is MatchConfidence.HIGH
        assert "Valor exato" in best.match_reasons
        assert items["TX002"].suggested_matches == []

    def test_candidates_limited_to_tenant_and_open_status(self, reconciler, statement, seed_payable):
        seed_payable(tenant_id="other-tenant")
        seed_payable(status="paid")
        seed_payable(status="cancelled")
        overdue = seed_payable(status="overdue")

        items = _items_by_fit(reconciler.build_items(statement, TENANT))

        assert [m.entry_id for m in items["TX001"].suggested_matches] == [overdue["id"]]

    def test_receivable_candidates_for_credits(self, reconciler, statement, seed_receivable):
        receivable = seed_receivable()

        items = _items_by_fit(reconciler.build_items(statement, TENANT))

        assert items["TX002"].best_match.entry_id == receivable["id"]
        assert items["TX002"].best_match.entry_table is EntryTable.RECEIVABLE
        assert items["TX001"].suggested_matches == []

    def test_soft_deleted_candidates_excluded(self, reconciler, gateway, statement, seed_payable):
        payable = seed_payable()
        gateway.update(EntryTable.PAYABLE.value, {"id": payable["id"], "deleted_at": datetime.now()})

        items = _items_by_fit(reconciler.build_items(statement, TENANT))
        assert items["TX001"].suggested_matches == []

    def test_unavailable_gateway_degrades_to_pending(self, statement, test_config):
        """Failed reads yield pending items without suggestions instead of raising."""
        reconciler = BankReconciler(gateway=UnavailableGateway(), cfg=test_config)

        items = reconciler.build_items(statement, TENANT)

        assert len(items) == 3
        assert all(item.status is ReconciliationStatus.PENDING for item in items)
        assert all(item.suggested_matches == [] for item in items)

    def test_empty_statement(self, reconciler):
        assert reconciler.build_items(parse_ofx(""), TENANT) == []


class TestRehydration:
    """Re-importing a statement restores recorded decisions."""

    def test_ignored_transaction_stays_ignored(self, reconciler, gateway, statement, import_id, seed_payable):
        """A fitId already ignored comes back ignored with no suggestions and no new record."""
        seed_payable(amount=Decimal("80.00"), due_date=date(2024, 3, 20))
        tx003 = _items_by_fit(reconciler.build_items(statement, TENANT))["TX003"].transaction
        assert reconciler.ignore_transaction(TENANT, tx003, import_id, reason="Transferência interna").success
        records_before = len(_rows(gateway, ITEMS_TABLE))

        second_import = reconciler.record_import(statement, TENANT).id
        items = _items_by_fit(reconciler.build_items(statement, TENANT))

        assert second_import != import_id
        assert items["TX003"].status is ReconciliationStatus.IGNORED
        assert items["TX003"].suggested_matches == []
        assert items["TX003"].notes == "Transferência interna"
        assert items["TX003"].record_id is not None
        assert len(_rows(gateway, ITEMS_TABLE)) == records_before

    def test_rebuild_is_idempotent(self, reconciler, statement, import_id, seed_payable):
        seed_payable()
        first = reconciler.build_items(statement, TENANT)
        item = _items_by_fit(first)["TX001"]
        reconciler.match_transaction(TENANT, item.transaction, item.best_match, import_id)

        second = reconciler.build_items(statement, TENANT)
        third = reconciler.build_items(statement, TENANT)

        assert [(i.transaction.fit_id, i.status, i.record_id) for i in second] == \
            [(i.transaction.fit_id, i.status, i.record_id) for i in third]
        matched = _items_by_fit(second)["TX001"]
        assert matched.status is ReconciliationStatus.MATCHED
        assert matched.linked_entry_table is EntryTable.PAYABLE

    def test_records_scoped_by_tenant(self, reconciler, statement, import_id):
        tx = statement.transactions[0]
        reconciler.ignore_transaction(TENANT, tx, import_id)

        items = _items_by_fit(reconciler.build_items(statement, "other-tenant"))
        assert items[tx.fit_id].status is ReconciliationStatus.PENDING


    def test_transactions_without_fitid_are_independent(self, reconciler, gateway):
        """Missing FITIDs are not a shared dedup key."""
        statement = parse_ofx(NO_FITID_STATEMENT)
        first, second = statement.transactions
        imp = reconciler.record_import(statement, TENANT).id

        assert reconciler.ignore_transaction(TENANT, first, imp, reason="tarifa").success
        assert reconciler.ignore_transaction(TENANT, second, imp).success

        items = reconciler.build_items(parse_ofx(NO_FITID_STATEMENT), TENANT)
        assert [item.status for item in items] == [ReconciliationStatus.PENDING] * 2
        assert len(reconciler.list_records(TENANT, imp)) == 2

    def test_unreadable_record_skipped(self, reconciler, gateway, statement, import_id):
        """A history row with an unknown status is skipped instead of breaking the rebuild."""
        gateway.create(ITEMS_TABLE, {
            "tenant_id": TENANT, "import_id": import_id, "fit_id": "TX001",
            "transaction_date": "2024-03-10", "transaction_amount": "-150.00",
            "transaction_type": "debit", "status": "archived",
        })

        items = _items_by_fit(reconciler.build_items(statement, TENANT))

        assert items["TX001"].status is ReconciliationStatus.PENDING
        assert reconciler.list_records(TENANT) == []


class TestMatchTransaction:
    """Tests for matching a transaction to an existing entry."""

    def test_match_settles_payable(self, reconciler, gateway, statement, import_id, seed_payable):
        payable = seed_payable()
        item = _items_by_fit(reconciler.build_items(statement, TENANT))["TX001"]

        result = reconciler.match_transaction(TENANT, item.transaction, item.best_match, import_id, user_id="user-1")

        assert result.success
        assert result.entry_id == payable["id"]
        assert result.record_id

        row = _rows(gateway, EntryTable.PAYABLE.value, id=payable["id"])[0]
        assert row["status"] == "paid"
        assert row["amount_paid"] == Decimal("150.00")
        assert row["paid_at"] == item.transaction.posted_at
        notes = json.loads(row["notes"])
        assert notes["reconciled"] is True
        assert notes["bank_fit_id"] == "TX001"
        assert notes["reconciled_by"] == "user-1"

        record = reconciler.list_records(TENANT, import_id)[0]
        assert record.status is ReconciliationStatus.MATCHED
        assert record.linked_entry_id == payable["id"]
        assert record.linked_entry_table is EntryTable.PAYABLE
        assert record.match_score == item.best_match.score
        assert record.reconciled_by == "user-1"

    def test_match_settles_receivable(self, reconciler, gateway, statement, import_id, seed_receivable):
        receivable = seed_receivable()
        item = _items_by_fit(reconciler.build_items(statement, TENANT))["TX002"]

        result = reconciler.match_transaction(TENANT, item.transaction, item.best_match, import_id)

        assert result.success
        row = _rows(gateway, EntryTable.RECEIVABLE.value, id=receivable["id"])[0]
        assert row["status"] == "paid"
        assert row["amount_received"] == Decimal("1200.50")
        assert row["received_at"] == item.transaction.posted_at

    def test_second_match_refused(self, reconciler, gateway, statement, import_id, seed_payable):
        """A transaction with a record cannot be reconciled again."""
        seed_payable()
        item = _items_by_fit(reconciler.build_items(statement, TENANT))["TX001"]
        assert reconciler.match_transaction(TENANT, item.transaction, item.best_match, import_id).success

        again = reconciler.match_transaction(TENANT, item.transaction, item.best_match, import_id)
        ignored = reconciler.ignore_transaction(TENANT, item.transaction, import_id)

        assert not again.success
        assert "already reconciled" in again.error
        assert not ignored.success
        assert len(_rows(gateway, ITEMS_TABLE, fit_id="TX001")) == 1

    def test_class_mismatch_refused(self, reconciler, gateway, credit_transaction, import_id, seed_payable):
        payable = seed_payable()
        wrong = ReconciliationMatch(
            entry_id=payable["id"],
            entry_table=EntryTable.PAYABLE,
            description="Fornecedor ABC Materiais",
            amount=Decimal("150.00"),
            due_date=date(2024, 3, 10),
            status="pending",
            score=80,
            confidence=MatchConfidence.HIGH,
        )

        result = reconciler.match_transaction(TENANT, credit_transaction, wrong, import_id)

        assert not result.success
        assert "Cannot match credit" in result.error
        assert _rows(gateway, EntryTable.PAYABLE.value, id=payable["id"])[0]["status"] == "pending"
        assert _rows(gateway, ITEMS_TABLE) == []

    def test_failure_is_a_result(self, statement, test_config, debit_transaction):
        reconciler = BankReconciler(gateway=UnavailableGateway(), cfg=test_config)
        match = ReconciliationMatch(
            entry_id="AP-1", entry_table=EntryTable.PAYABLE, description="", amount=Decimal("150"),
            due_date=None, status="pending", score=50, confidence=MatchConfidence.MEDIUM,
        )

        result = reconciler.match_transaction(TENANT, debit_transaction, match, "imp-1")

        assert not result.success
        assert "connection refused" in result.error


    def test_record_failure_restores_entry(self, test_config, statement, seed_payable):
        """A failed record write puts the entry back as it was, so the match can be retried."""
        payable = seed_payable(notes="Contrato 12/2024")
        failing = FailingRecordGateway(test_config.database_url)
        reconciler = BankReconciler(gateway=failing, cfg=test_config)
        item = _items_by_fit(reconciler.build_items(statement, TENANT))["TX001"]

        result = reconciler.match_transaction(TENANT, item.transaction, item.best_match, "imp-1")

        assert not result.success
        assert "disk full" in result.error
        row = _rows(failing, EntryTable.PAYABLE.value, id=payable["id"])[0]
        assert row["status"] == "pending"
        assert row["notes"] == "Contrato 12/2024"
        assert row["amount_paid"] == Decimal("0")
        assert row["paid_at"] is None

        rebuilt = _items_by_fit(reconciler.build_items(statement, TENANT))["TX001"]
        assert rebuilt.status is ReconciliationStatus.PENDING
        assert rebuilt.best_match.entry_id == payable["id"]
        failing.close()

        retry = BankReconciler(gateway=SqlLedgerGateway(test_config.database_url), cfg=test_config)
        assert retry.match_transaction(TENANT, rebuilt.transaction, rebuilt.best_match, "imp-1").success

    def test_unknown_entry(self, reconciler, gateway, debit_transaction, import_id):
        match = ReconciliationMatch(
            entry_id="AP-404", entry_table=EntryTable.PAYABLE, description="", amount=Decimal("150"),
            due_date=None, status="pending", score=50, confidence=MatchConfidence.MEDIUM,
        )

        result = reconciler.match_transaction(TENANT, debit_transaction, match, import_id)

        assert not result.success
        assert "AP-404" in result.error
        assert _rows(gateway, ITEMS_TABLE) == []


class TestCreateEntry:
    """Tests for creating a ledger entry from a transaction."""

    def test_credit_creates_paid_receivable(self, reconciler, gateway, credit_transaction, import_id):
        """500.00 received on 2024-05-02 becomes a paid receivable competent in May."""
        result = reconciler.create_entry(TENANT, credit_transaction, import_id, user_id="user-1")

        assert result.success
        row = _rows(gateway, EntryTable.RECEIVABLE.value, id=result.entry_id)[0]
        assert row["status"] == "paid"
        assert row["amount"] == Decimal("500.00")
        assert row["amount_received"] == Decimal("500.00")
        assert row["due_date"] == date(2024, 5, 2)
        assert row["competence_date"] == date(2024, 5, 1)
        assert row["received_at"] == datetime(2024, 5, 2, 9, 30, 0)
        assert row["category"] == "Importado do banco"
        assert row["type"] == "other"
        assert row["currency"] == "BRL"
        assert row["recurrence"] == "none"
        assert row["description"] == "TED RECEBIDA CLIENTE XYZ"
        assert row["created_by"] == "user-1"
        notes = json.loads(row["notes"])
        assert notes["source"] == "bank_reconciliation"
        assert notes["import_id"] == import_id

        record = reconciler.list_records(TENANT)[0]
        assert record.status is ReconciliationStatus.CREATED
        assert record.linked_entry_id == result.entry_id
        assert record.linked_entry_table is EntryTable.RECEIVABLE

    def test_debit_creates_payable_with_overrides(self, reconciler, gateway, debit_transaction, import_id):
        overrides = EntryOverrides(
            description="Compra de materiais",
            category="Materiais",
            entry_type="supplier",
            supplier_name="ABC Materiais Ltda",
            competence_date=date(2024, 2, 1),
        )

        result = reconciler.create_entry(TENANT, debit_transaction, import_id, overrides)

        assert result.success
        row = _rows(gateway, EntryTable.PAYABLE.value, id=result.entry_id)[0]
        assert row["description"] == "Compra de materiais"
        assert row["category"] == "Materiais"
        assert row["type"] == "supplier"
        assert row["supplier_name"] == "ABC Materiais Ltda"
        assert row["competence_date"] == date(2024, 2, 1)
        assert row["amount_paid"] == Decimal("150.00")
        assert _rows(gateway, EntryTable.RECEIVABLE.value) == []

    def test_record_failure_discards_entry(self, test_config, credit_transaction):
        """When the record cannot be written the new entry is soft-deleted."""
        gateway = FailingRecordGateway(test_config.database_url)
        reconciler = BankReconciler(gateway=gateway, cfg=test_config)

        result = reconciler.create_entry(TENANT, credit_transaction, "imp-1")

        assert not result.success
        assert "disk full" in result.error
        visible = gateway.list(
            EntryTable.RECEIVABLE.value, [CrudFilter("tenant_id", TENANT)],
            ListOptions(auto_exclude_deleted=True)
        )
        assert visible == []
        all_rows = gateway.list(EntryTable.RECEIVABLE.value, [CrudFilter("tenant_id", TENANT)])
        assert len(all_rows) == 1
        assert all_rows[0]["deleted_at"] is not None
        gateway.close()

    def test_create_after_ignore_refused(self, reconciler, gateway, credit_transaction, import_id):
        assert reconciler.ignore_transaction(TENANT, credit_transaction, import_id).success

        result = reconciler.create_entry(TENANT, credit_transaction, import_id)

        assert not result.success
        assert _rows(gateway, EntryTable.RECEIVABLE.value) == []


class TestIgnoreTransaction:
    """Tests for ignoring a transaction."""

    def test_ignore_writes_record_only(self, reconciler, gateway, debit_transaction, import_id, seed_payable):
        seed_payable()

        result = reconciler.ignore_transaction(TENANT, debit_transaction, import_id, reason="Tarifa", user_id="u")

        assert result.success
        assert result.entry_id is None
        record = reconciler.list_records(TENANT, import_id)[0]
        assert record.status is ReconciliationStatus.IGNORED
        assert record.notes == "Tarifa"
        assert record.linked_entry_id is None
        assert _rows(gateway, EntryTable.PAYABLE.value)[0]["status"] == "pending"

    def test_ignore_without_reason(self, reconciler, debit_transaction, import_id):
        assert reconciler.ignore_transaction(TENANT, debit_transaction, import_id).success
        assert reconciler.list_records(TENANT)[0].notes is None


class TestSummary:
    """Tests for summary aggregation."""

    def test_counts_and_amounts(self, statement):
        items = [ReconciliationItem(transaction=tx) for tx in statement.transactions]
        items[0].status = ReconciliationStatus.IGNORED
        items[1].status = ReconciliationStatus.MATCHED

        summary = calculate_summary(items)

        assert summary.total == 3
        assert summary.pending == 1
        assert summary.matched == 1
        assert summary.ignored == 1
        assert summary.created == 0
        assert summary.total_credits == 1
        assert summary.total_debits == 2
        assert summary.credit_amount == Decimal("1200.50")
        assert summary.debit_amount == Decimal("230.00")

    def test_empty(self):
        summary = calculate_summary([])
        assert summary.total == 0
        assert summary.credit_amount == Decimal("0")


class TestImportRecorder:
    """Tests for import tracking."""

    def test_record_import(self, reconciler, gateway, statement):
        imported = reconciler.record_import(statement, TENANT, user_id="user-1")

        assert imported.id
        row = _rows(gateway, IMPORTS_TABLE, id=imported.id)[0]
        assert row["file_name"] == "extrato.ofx"
        assert row["bank_id"] == "0341"
        assert row["account_id"] == "56789-0"
        assert row["period_start"] == date(2024, 3, 1)
        assert row["period_end"] == date(2024, 3, 31)
        assert row["total_transactions"] == 3
        assert row["total_credits"] == 1
        assert row["total_debits"] == 2
        assert row["credit_amount"] == Decimal("1200.50")
        assert row["debit_amount"] == Decimal("230.00")
        assert row["reconciled_count"] == 0
        assert row["imported_by"] == "user-1"

    def test_reconciled_count_only_grows(self, reconciler, gateway, statement, import_id):
        items = [ReconciliationItem(transaction=tx) for tx in statement.transactions]
        items[0].status = ReconciliationStatus.IGNORED
        items[1].status = ReconciliationStatus.CREATED

        assert reconciler.update_reconciled_count(import_id, items) == 2

        items[1].status = ReconciliationStatus.PENDING
        assert reconciler.update_reconciled_count(import_id, items) == 2
        assert _rows(gateway, IMPORTS_TABLE, id=import_id)[0]["reconciled_count"] == 2

        items[1].status = ReconciliationStatus.MATCHED
        items[2].status = ReconciliationStatus.MATCHED
        assert reconciler.update_reconciled_count(import_id, items) == 3

    def test_list_imports_newest_first(self, reconciler, statement):
        first = reconciler.record_import(statement, TENANT)
        second = reconciler.record_import(statement, TENANT, file_name="abril.ofx")
        reconciler.record_import(statement, "other-tenant")

        imports = reconciler.list_imports(TENANT)

        assert [i.id for i in imports] == [second.id, first.id]
        assert imports[0].file_name == "abril.ofx"
        assert imports[0].total_transactions == 3

    def test_list_imports_unavailable(self, test_config):
        reconciler = BankReconciler(gateway=UnavailableGateway(), cfg=test_config)
        assert reconciler.list_imports(TENANT) == []


class TestSession:
    """Tests for the one-call import session."""

    def test_start_session_from_file(self, reconciler, statement_file, seed_payable):
        seed_payable()

        session = reconciler.start_session(statement_file, TENANT, user_id="user-1")

        assert isinstance(session, ImportSession)
        assert session.import_id
        assert session.import_record.file_name == "extrato_marco.ofx"
        assert session.summary.total == 3
        assert session.summary.pending == 3
        assert session.find("TX001").best_match is not None
        assert session.find("missing") is None

    def test_reopen_existing_import(self, reconciler, statement, import_id):
        session = reconciler.start_session(statement, TENANT, import_id=import_id)

        assert session.import_id == import_id
        assert len(reconciler.list_imports(TENANT)) == 1

    def test_reopen_unknown_import(self, reconciler, statement):
        with pytest.raises(DatabaseError):
            reconciler.start_session(statement, TENANT, import_id="does-not-exist")


class TestCreateGateway:
    """Tests for gateway selection."""

    def test_local_store_by_default(self, test_config, tmp_path):
        store = create_gateway(test_config, f"sqlite:///{tmp_path / 'other.db'}")
        assert isinstance(store, SqlLedgerGateway)
        assert (tmp_path / "other.db").exists()
        store.close()

    def test_http_when_configured(self, test_config):
        test_config.ledger.api_url = "https://ledger.example.com/crud"
        assert isinstance(create_gateway(test_config), HttpLedgerGateway)
