"""
SQL-backed ledger store.

Implements the LedgerGateway contract over SQLAlchemy Core so the
reconciler can run against a local database. Reconciliation items carry a
unique (tenant_id, fit_id) index among non-deleted rows with a FITID.
"""
import threading
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import (
    Column, Date, DateTime, Index, Integer, MetaData, Numeric, String, Table, Text,
    and_, create_engine, or_, select, update
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .exceptions import DatabaseError, DuplicateRecordError, RecordNotFoundError
from .gateway import CrudFilter, LedgerGateway, ListOptions
from .logging_config import get_logger
from .models import IMPORTS_TABLE, ITEMS_TABLE, EntryTable, to_date, to_datetime, to_decimal

logger = get_logger("storage")

metadata = MetaData()


def _audit_columns():
    return [
        Column("created_at", DateTime, nullable=False, default=datetime.now),
        Column("updated_at", DateTime, nullable=False, default=datetime.now),
        Column("deleted_at", DateTime),
    ]


imports_table = Table(
    IMPORTS_TABLE, metadata,
    Column("id", String(36), primary_key=True),
    Column("tenant_id", String(36), nullable=False, index=True),
    Column("file_name", Text, nullable=False),
    Column("bank_id", String(64)),
    Column("account_id", String(64)),
    Column("period_start", Date),
    Column("period_end", Date),
    Column("total_transactions", Integer, nullable=False, default=0),
    Column("total_credits", Integer, nullable=False, default=0),
    Column("total_debits", Integer, nullable=False, default=0),
    Column("credit_amount", Numeric(12, 2), nullable=False, default=0),
    Column("debit_amount", Numeric(12, 2), nullable=False, default=0),
    Column("reconciled_count", Integer, nullable=False, default=0),
    Column("imported_at", DateTime, nullable=False, default=datetime.now),
    Column("imported_by", String(36)),
    *_audit_columns()
)

items_table = Table(
    ITEMS_TABLE, metadata,
    Column("id", String(36), primary_key=True),
    Column("tenant_id", String(36), nullable=False),
    Column("import_id", String(36), nullable=False, index=True),
    Column("fit_id", String(255), nullable=False),
    Column("transaction_date", Date, nullable=False),
    Column("transaction_amount", Numeric(12, 2), nullable=False),
    Column("transaction_description", Text),
    Column("transaction_type", String(16), nullable=False),
    Column("status", String(16), nullable=False, default="pending"),
    Column("linked_entry_id", String(36)),
    Column("linked_entry_table", String(32)),
    Column("match_score", Integer),
    Column("notes", Text),
    Column("reconciled_by", String(36)),
    Column("reconciled_at", DateTime),
    *_audit_columns()
)

Index(
    "idx_bank_recon_items_fitid_tenant",
    items_table.c.tenant_id,
    items_table.c.fit_id,
    unique=True,
    sqlite_where=and_(items_table.c.deleted_at.is_(None), items_table.c.fit_id != ""),
    postgresql_where=and_(items_table.c.deleted_at.is_(None), items_table.c.fit_id != ""),
)


def _ledger_table(name: str, party_column: str, settled_amount: str, settled_at: str) -> Table:
    return Table(
        name, metadata,
        Column("id", String(36), primary_key=True),
        Column("tenant_id", String(36), nullable=False, index=True),
        Column("description", Text, nullable=False, default=""),
        Column("type", String(32), nullable=False, default="other"),
        Column("category", Text),
        Column(party_column, String(255)),
        Column("amount", Numeric(12, 2), nullable=False, default=0),
        Column(settled_amount, Numeric(12, 2), nullable=False, default=0),
        Column("status", String(16), nullable=False, default="pending"),
        Column("currency", String(3), nullable=False, default="BRL"),
        Column("due_date", Date),
        Column(settled_at, DateTime),
        Column("competence_date", Date),
        Column("recurrence", String(16), nullable=False, default="none"),
        Column("notes", Text),
        Column("created_by", String(36)),
        *_audit_columns()
    )


receivables_table = _ledger_table(
    EntryTable.RECEIVABLE.value, "customer_id", "amount_received", "received_at"
)
payables_table = _ledger_table(
    EntryTable.PAYABLE.value, "supplier_name", "amount_paid", "paid_at"
)


def _coerce(column: Column, value: Any) -> Any:
    """Convert gateway-style values (ISO strings, floats) to the column's type."""
    if value is None:
        return None
    if isinstance(column.type, DateTime):
        return to_datetime(value)
    if isinstance(column.type, Date):
        return to_date(value)
    if isinstance(column.type, Numeric):
        return to_decimal(value, default=None)
    if isinstance(column.type, Integer) and not isinstance(value, bool):
        return int(value)
    if isinstance(value, (Decimal, date)):
        return str(value)
    return value


class SqlLedgerGateway(LedgerGateway):
    """LedgerGateway backed by a SQL database."""

    OPERATORS = {
        "equal": lambda col, val: col == val,
        "not_equal": lambda col, val: col != val,
        "like": lambda col, val: col.like(val),
        "gt": lambda col, val: col > val,
        "gte": lambda col, val: col >= val,
        "lt": lambda col, val: col < val,
        "lte": lambda col, val: col <= val,
    }

    def __init__(self, database_url: str = "sqlite://"):
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            self.engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(database_url)
        # sqlite connections must not be used by two threads at once
        self._lock = threading.RLock()
        metadata.create_all(self.engine)

    def _table(self, name: str) -> Table:
        try:
            return metadata.tables[name]
        except KeyError:
            raise DatabaseError("lookup", f"unknown table {name}")

    def _column(self, table: Table, name: str) -> Column:
        if name not in table.c:
            raise DatabaseError("lookup", f"unknown column {table.name}.{name}")
        return table.c[name]

    def _condition(self, table: Table, flt: CrudFilter):
        column = self._column(table, flt.field)
        operator = flt.operator or "equal"

        if operator == "in":
            values = flt.value
            if isinstance(values, str):
                values = [v.strip() for v in values.split(",") if v.strip()]
            return column.in_([_coerce(column, v) for v in values])

        if operator not in self.OPERATORS:
            raise DatabaseError("query", f"unsupported operator {operator}")
        return self.OPERATORS[operator](column, _coerce(column, flt.value))

    def list(self, table, filters=None, options=None):
        tbl = self._table(table)
        options = options or ListOptions()
        query = select(tbl)

        conditions = [self._condition(tbl, f) for f in filters or []]
        if conditions:
            combine = or_ if (options.combine_type or "").upper() == "OR" else and_
            query = query.where(combine(*conditions))
        if options.auto_exclude_deleted:
            query = query.where(tbl.c.deleted_at.is_(None))

        if options.sort_column:
            name, _, direction = options.sort_column.partition(" ")
            column = self._column(tbl, name)
            query = query.order_by(column.desc() if direction.strip().upper() == "DESC" else column.asc())
        if options.limit is not None:
            query = query.limit(options.limit)
        if options.offset is not None:
            query = query.offset(options.offset)

        try:
            with self._lock, self.engine.connect() as conn:
                return [dict(row._mapping) for row in conn.execute(query)]
        except SQLAlchemyError as e:
            raise DatabaseError("query", str(e))

    def create(self, table, payload):
        tbl = self._table(table)
        now = datetime.now()
        values = {
            key: _coerce(self._column(tbl, key), value)
            for key, value in payload.items()
        }
        values.setdefault("id", str(uuid.uuid4()))
        values.setdefault("created_at", now)
        values["updated_at"] = now

        try:
            with self._lock, self.engine.begin() as conn:
                conn.execute(tbl.insert().values(**values))
        except IntegrityError as e:
            raise DuplicateRecordError(table, str(e.orig))
        except SQLAlchemyError as e:
            raise DatabaseError("insert", str(e))

        logger.debug(f"Inserted {table} {values['id']}")
        return self._fetch(tbl, values["id"])

    def update(self, table, payload):
        tbl = self._table(table)
        record_id = payload.get("id")
        if not record_id:
            raise DatabaseError("update", f"payload for {table} requires an id")

        values = {
            key: _coerce(self._column(tbl, key), value)
            for key, value in payload.items()
            if key != "id"
        }
        values["updated_at"] = datetime.now()

        try:
            with self._lock, self.engine.begin() as conn:
                result = conn.execute(
                    update(tbl).where(tbl.c.id == str(record_id)).values(**values)
                )
                updated = result.rowcount
        except IntegrityError as e:
            raise DuplicateRecordError(table, str(e.orig))
        except SQLAlchemyError as e:
            raise DatabaseError("update", str(e))

        if updated == 0:
            raise RecordNotFoundError(table, str(record_id))
        return self._fetch(tbl, record_id)

    def _fetch(self, tbl: Table, record_id: str) -> Dict[str, Any]:
        with self._lock, self.engine.connect() as conn:
            row = conn.execute(select(tbl).where(tbl.c.id == str(record_id))).first()
        if row is None:
            raise RecordNotFoundError(tbl.name, str(record_id))
        return dict(row._mapping)

    def close(self):
        """Dispose of pooled connections."""
        self.engine.dispose()
