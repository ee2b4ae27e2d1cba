"""
Custom exceptions for the statement reconciliation tool.

Provides structured error handling with specific exception types
for different error scenarios.
"""


class BankReconError(Exception):
    """Base exception for bank reconciliation errors."""

    def __init__(self, message: str, code: str = None, details: dict = None):
        self.message = message
        self.code = code or "BANK_RECON_ERROR"
        self.details = details or {}
        super().__init__(self.message)


# ============== Data Errors ==============

class DataError(BankReconError):
    """Error in data processing."""

    def __init__(self, message: str, field: str = None, value: str = None):
        super().__init__(
            message,
            code="DATA_ERROR",
            details={"field": field, "value": value}
        )


class ParseError(DataError):
    """Error reading a statement file."""

    def __init__(self, filename: str, reason: str = None):
        message = f"Failed to parse {filename}"
        if reason:
            message += f": {reason}"

        super().__init__(
            message,
            field="filename",
            value=filename
        )
        self.code = "PARSE_ERROR"


# ============== Matching Errors ==============

class MatchingError(BankReconError):
    """Error while resolving a bank transaction."""

    def __init__(self, message: str, fit_id: str = None, entry_id: str = None):
        super().__init__(
            message,
            code="MATCHING_ERROR",
            details={"fit_id": fit_id, "entry_id": entry_id}
        )


class AlreadyReconciledError(MatchingError):
    """Transaction already has a persisted reconciliation record."""

    def __init__(self, fit_id: str, status: str):
        super().__init__(
            f"Transaction {fit_id} already reconciled as {status}",
            fit_id=fit_id
        )
        self.code = "ALREADY_RECONCILED"
        self.details["status"] = status


class ClassMismatchError(MatchingError):
    """Credit matched against a payable, or debit against a receivable."""

    def __init__(self, fit_id: str, transaction_class: str, entry_table: str):
        super().__init__(
            f"Cannot match {transaction_class} transaction {fit_id} against {entry_table}",
            fit_id=fit_id
        )
        self.code = "CLASS_MISMATCH"
        self.details["entry_table"] = entry_table


# ============== API Errors ==============

class APIError(BankReconError):
    """Error from external API."""

    def __init__(self, service: str, message: str, status_code: int = None):
        super().__init__(
            f"{service} API error: {message}",
            code="API_ERROR",
            details={"service": service, "status_code": status_code}
        )


class GatewayError(APIError):
    """Error from the ledger data-access gateway."""

    def __init__(self, message: str, table: str = None, status_code: int = None):
        super().__init__("Ledger", message, status_code)
        self.code = "GATEWAY_ERROR"
        self.details["table"] = table


# ============== Database Errors ==============

class DatabaseError(BankReconError):
    """Database operation error."""

    def __init__(self, operation: str, message: str):
        super().__init__(
            f"Database {operation} failed: {message}",
            code="DATABASE_ERROR",
            details={"operation": operation}
        )


class RecordNotFoundError(DatabaseError):
    """Record not found in database."""

    def __init__(self, table: str, record_id: str):
        super().__init__(
            "query",
            f"Record {record_id} not found in {table}"
        )
        self.code = "RECORD_NOT_FOUND"
        self.details["table"] = table
        self.details["record_id"] = record_id


class DuplicateRecordError(DatabaseError):
    """Uniqueness constraint violated on write."""

    def __init__(self, table: str, message: str):
        super().__init__("insert", f"duplicate row in {table}: {message}")
        self.code = "DUPLICATE_RECORD"
        self.details["table"] = table
