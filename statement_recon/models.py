"""Data models for bank statement reconciliation."""
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, List, Dict, Any


class TransactionClass(Enum):
    """Money direction of a bank transaction."""
    CREDIT = "credit"
    DEBIT = "debit"


class ReconciliationStatus(Enum):
    """Per-transaction reconciliation state."""
    PENDING = "pending"
    MATCHED = "matched"
    CREATED = "created"
    IGNORED = "ignored"

    @property
    def is_terminal(self) -> bool:
        return self is not ReconciliationStatus.PENDING


class MatchConfidence(Enum):
    """Coarse bucketing of a match score for display."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


class EntryTable(Enum):
    """Ledger tables a transaction can be linked to."""
    RECEIVABLE = "accounts_receivable"
    PAYABLE = "accounts_payable"

    @classmethod
    def for_class(cls, transaction_class: TransactionClass) -> "EntryTable":
        """Credits settle receivables, debits settle payables."""
        if transaction_class is TransactionClass.CREDIT:
            return cls.RECEIVABLE
        return cls.PAYABLE


class LedgerStatus:
    """Status values used by receivable/payable rows."""
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


OPEN_LEDGER_STATUSES = (LedgerStatus.PENDING, LedgerStatus.PARTIAL, LedgerStatus.OVERDUE)

IMPORTS_TABLE = "bank_reconciliation_imports"
ITEMS_TABLE = "bank_reconciliation_items"


def to_decimal(value: Any, default: Optional[Decimal] = Decimal("0")) -> Optional[Decimal]:
    """Coerce a gateway value to Decimal."""
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return default


def to_date(value: Any) -> Optional[date]:
    """Coerce a gateway value (date, datetime or ISO string) to a date."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def to_datetime(value: Any) -> Optional[datetime]:
    """Coerce a gateway value to a datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


@dataclass(frozen=True)
class BankTransaction:
    """One statement line item, immutable once parsed."""
    fit_id: str
    type: TransactionClass
    ofx_type: str
    posted_at: datetime
    amount: Decimal
    description: str
    check_number: Optional[str] = None
    ref_number: Optional[str] = None
    payee_name: Optional[str] = None

    @property
    def absolute_amount(self) -> Decimal:
        return abs(self.amount)

    @property
    def transaction_date(self) -> date:
        return self.posted_at.date()

    @property
    def date_str(self) -> str:
        return self.posted_at.strftime("%Y-%m-%d")

    def is_credit(self) -> bool:
        return self.type is TransactionClass.CREDIT

    def is_debit(self) -> bool:
        return self.type is TransactionClass.DEBIT


@dataclass
class BankAccount:
    """Account metadata from the statement header."""
    bank_id: Optional[str] = None
    branch_id: Optional[str] = None
    account_id: Optional[str] = None
    account_type: Optional[str] = None
    currency: Optional[str] = None


@dataclass
class StatementPeriod:
    """Statement coverage; either bound may be missing."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass
class ParsedStatement:
    """Result of parsing one statement file."""
    transactions: List[BankTransaction] = field(default_factory=list)
    account: BankAccount = field(default_factory=BankAccount)
    period: StatementPeriod = field(default_factory=StatementPeriod)
    ledger_balance: Optional[Decimal] = None
    available_balance: Optional[Decimal] = None
    balance_date: Optional[datetime] = None
    warnings: List[str] = field(default_factory=list)
    file_name: Optional[str] = None

    @property
    def credits(self) -> List[BankTransaction]:
        return [tx for tx in self.transactions if tx.is_credit()]

    @property
    def debits(self) -> List[BankTransaction]:
        return [tx for tx in self.transactions if tx.is_debit()]


@dataclass
class LedgerEntry:
    """A receivable or payable row eligible for matching."""
    id: str
    table: EntryTable
    description: str = ""
    amount: Decimal = Decimal("0")
    due_date: Optional[date] = None
    status: str = ""
    category: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any], table: EntryTable) -> "LedgerEntry":
        return cls(
            id=str(row.get("id", "")),
            table=table,
            description=str(row.get("description") or ""),
            amount=to_decimal(row.get("amount")),
            due_date=to_date(row.get("due_date")),
            status=str(row.get("status") or ""),
            category=_optional_str(row.get("category")),
        )


@dataclass
class ReconciliationMatch:
    """A scored suggestion linking a transaction to one ledger entry."""
    entry_id: str
    entry_table: EntryTable
    description: str
    amount: Decimal
    due_date: Optional[date]
    status: str
    score: int
    confidence: MatchConfidence
    match_reasons: List[str] = field(default_factory=list)
    category: Optional[str] = None


@dataclass
class ReconciliationItem:
    """Working unit presented to an operator."""
    transaction: BankTransaction
    status: ReconciliationStatus = ReconciliationStatus.PENDING
    suggested_matches: List[ReconciliationMatch] = field(default_factory=list)
    linked_entry_id: Optional[str] = None
    linked_entry_table: Optional[EntryTable] = None
    record_id: Optional[str] = None
    notes: Optional[str] = None

    @property
    def best_match(self) -> Optional[ReconciliationMatch]:
        return self.suggested_matches[0] if self.suggested_matches else None


@dataclass
class ReconciliationRecord:
    """Persisted audit row keyed by (tenant_id, fit_id)."""
    tenant_id: str
    import_id: str
    fit_id: str
    transaction_date: date
    transaction_amount: Decimal
    transaction_description: str
    transaction_type: TransactionClass
    status: ReconciliationStatus
    linked_entry_id: Optional[str] = None
    linked_entry_table: Optional[EntryTable] = None
    match_score: Optional[int] = None
    notes: Optional[str] = None
    reconciled_by: Optional[str] = None
    reconciled_at: Optional[datetime] = None
    id: Optional[str] = None

    @classmethod
    def for_transaction(
        cls,
        tenant_id: str,
        import_id: str,
        transaction: BankTransaction,
        status: ReconciliationStatus,
        **kwargs
    ) -> "ReconciliationRecord":
        return cls(
            tenant_id=tenant_id,
            import_id=import_id,
            fit_id=transaction.fit_id,
            transaction_date=transaction.transaction_date,
            transaction_amount=transaction.amount,
            transaction_description=transaction.description,
            transaction_type=transaction.type,
            status=status,
            **kwargs
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "import_id": self.import_id,
            "fit_id": self.fit_id,
            "transaction_date": self.transaction_date,
            "transaction_amount": self.transaction_amount,
            "transaction_description": self.transaction_description,
            "transaction_type": self.transaction_type.value,
            "status": self.status.value,
            "linked_entry_id": self.linked_entry_id,
            "linked_entry_table": self.linked_entry_table.value if self.linked_entry_table else None,
            "match_score": self.match_score,
            "notes": self.notes,
            "reconciled_by": self.reconciled_by,
            "reconciled_at": self.reconciled_at,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ReconciliationRecord":
        linked_table = row.get("linked_entry_table")
        score = row.get("match_score")
        return cls(
            id=_optional_str(row.get("id")),
            tenant_id=str(row.get("tenant_id", "")),
            import_id=str(row.get("import_id", "")),
            fit_id=str(row.get("fit_id", "")),
            transaction_date=to_date(row.get("transaction_date")),
            transaction_amount=to_decimal(row.get("transaction_amount")),
            transaction_description=str(row.get("transaction_description") or ""),
            transaction_type=TransactionClass(row.get("transaction_type", "credit")),
            status=ReconciliationStatus(row.get("status", "pending")),
            linked_entry_id=_optional_str(row.get("linked_entry_id")),
            linked_entry_table=EntryTable(linked_table) if linked_table else None,
            match_score=int(score) if score is not None else None,
            notes=_optional_str(row.get("notes")),
            reconciled_by=_optional_str(row.get("reconciled_by")),
            reconciled_at=to_datetime(row.get("reconciled_at")),
        )


@dataclass
class ReconciliationImport:
    """One statement-file import event."""
    tenant_id: str
    file_name: str
    bank_id: Optional[str] = None
    account_id: Optional[str] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    total_transactions: int = 0
    total_credits: int = 0
    total_debits: int = 0
    credit_amount: Decimal = Decimal("0")
    debit_amount: Decimal = Decimal("0")
    reconciled_count: int = 0
    imported_at: datetime = field(default_factory=datetime.now)
    imported_by: Optional[str] = None
    id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "file_name": self.file_name,
            "bank_id": self.bank_id,
            "account_id": self.account_id,
            "period_start": self.period_start,
            "period_end": self.period_end,
            "total_transactions": self.total_transactions,
            "total_credits": self.total_credits,
            "total_debits": self.total_debits,
            "credit_amount": self.credit_amount,
            "debit_amount": self.debit_amount,
            "reconciled_count": self.reconciled_count,
            "imported_at": self.imported_at,
            "imported_by": self.imported_by,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ReconciliationImport":
        return cls(
            id=_optional_str(row.get("id")),
            tenant_id=str(row.get("tenant_id", "")),
            file_name=str(row.get("file_name", "")),
            bank_id=_optional_str(row.get("bank_id")),
            account_id=_optional_str(row.get("account_id")),
            period_start=to_date(row.get("period_start")),
            period_end=to_date(row.get("period_end")),
            total_transactions=int(row.get("total_transactions") or 0),
            total_credits=int(row.get("total_credits") or 0),
            total_debits=int(row.get("total_debits") or 0),
            credit_amount=to_decimal(row.get("credit_amount")),
            debit_amount=to_decimal(row.get("debit_amount")),
            reconciled_count=int(row.get("reconciled_count") or 0),
            imported_at=to_datetime(row.get("imported_at")) or datetime.now(),
            imported_by=_optional_str(row.get("imported_by")),
        )


@dataclass
class ReconciliationSummary:
    """Aggregate counts over a set of reconciliation items."""
    total: int = 0
    pending: int = 0
    matched: int = 0
    created: int = 0
    ignored: int = 0
    total_credits: int = 0
    total_debits: int = 0
    credit_amount: Decimal = Decimal("0")
    debit_amount: Decimal = Decimal("0")

    @property
    def reconciled(self) -> int:
        return self.matched + self.created + self.ignored

    @property
    def progress(self) -> float:
        return self.reconciled / self.total if self.total else 0.0


@dataclass
class EntryOverrides:
    """Operator-supplied fields for a ledger entry created from a transaction."""
    description: Optional[str] = None
    category: Optional[str] = None
    entry_type: Optional[str] = None
    customer_id: Optional[str] = None
    supplier_name: Optional[str] = None
    competence_date: Optional[date] = None


@dataclass
class ActionResult:
    """Outcome of match / create / ignore; failures are values, not raises."""
    success: bool
    error: Optional[str] = None
    entry_id: Optional[str] = None
    record_id: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> "ActionResult":
        return cls(success=False, error=error)
