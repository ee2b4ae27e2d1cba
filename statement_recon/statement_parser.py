"""
OFX/QFX bank statement parser.

Handles both statement dialects:
- OFX 1.x (SGML): leaf tags are never closed, <TAG>value runs to the next
  tag or line break, and transaction blocks may be left open
- OFX 2.x (XML): every tag is closed, <TAG>value</TAG>

Malformed content never raises; problems are collected as warnings on the
returned ParsedStatement and the offending transaction block is skipped.
"""
import re
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, List, Optional

from .exceptions import ParseError
from .logging_config import get_logger, log_parse_warning
from .models import (
    BankAccount, BankTransaction, ParsedStatement, StatementPeriod, TransactionClass
)

logger = get_logger("statement_parser")

NO_TRANSACTIONS_WARNING = (
    "Nenhuma transação encontrada no arquivo OFX. Verifique se o formato está correto."
)

# TRNTYPE codes with a fixed money direction
CREDIT_TYPES = frozenset({"CREDIT", "DEP", "DIRECTDEP", "INT", "DIV"})
DEBIT_TYPES = frozenset({
    "DEBIT", "FEE", "SRVCHG", "ATM", "POS", "CHECK", "PAYMENT",
    "DIRECTDEBIT", "REPEATPMT", "CASH",
})

DESCRIPTION_SEPARATOR = " — "

_TIMEZONE_RE = re.compile(r"\[.*\]")


# ============== Tag extraction ==============

def extract_closed_tag(content: str, tag: str) -> Optional[str]:
    """XML dialect: <TAG>value</TAG>, value may span lines."""
    match = re.search(
        rf"<{re.escape(tag)}>\s*([\s\S]*?)\s*</{re.escape(tag)}>",
        content,
        re.IGNORECASE,
    )
    if match:
        return match.group(1).strip()
    return None


def extract_open_tag(content: str, tag: str) -> Optional[str]:
    """SGML dialect: <TAG>value, terminated by the next tag or a line break."""
    match = re.search(rf"<{re.escape(tag)}>[ \t]*([^<\r\n]+)", content, re.IGNORECASE)
    if match:
        value = match.group(1).strip()
        return value or None
    return None


def extract_tag(content: str, tag: str) -> Optional[str]:
    """Extract a scalar tag value, trying the closed form before the open form."""
    value = extract_closed_tag(content, tag)
    if value is not None:
        return value
    return extract_open_tag(content, tag)


def extract_blocks(content: str, tag: str) -> List[str]:
    """
    Extract the bodies of every <TAG> aggregate.

    A block ends at its own </TAG> when one follows before the next sibling
    <TAG>; otherwise it runs up to that sibling (or the end of the content).
    """
    open_re = re.compile(rf"<{re.escape(tag)}>", re.IGNORECASE)
    close_re = re.compile(rf"</{re.escape(tag)}>", re.IGNORECASE)

    blocks = []
    pos = 0
    while True:
        opening = open_re.search(content, pos)
        if not opening:
            break

        start = opening.end()
        closing = close_re.search(content, start)
        next_open = open_re.search(content, start)

        if closing and (next_open is None or closing.start() < next_open.start()):
            blocks.append(content[start:closing.start()])
            pos = closing.end()
        else:
            end = next_open.start() if next_open else len(content)
            blocks.append(content[start:end])
            pos = end

    return blocks


# ============== Value parsing ==============

def parse_ofx_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an OFX date: YYYYMMDD[HHMMSS[.XXX]][TZ].

    The bracketed timezone (e.g. [-3:BRT]) is dropped; the result is a naive
    local datetime. Missing time parts default to midnight.
    """
    if not value or len(value) < 8:
        return None

    clean = _TIMEZONE_RE.sub("", value).strip()
    if len(clean) < 8 or not clean[:8].isdigit():
        return None

    def part(start: int, end: int) -> int:
        if len(clean) >= end and clean[start:end].isdigit():
            return int(clean[start:end])
        return 0

    try:
        return datetime(
            int(clean[0:4]), int(clean[4:6]), int(clean[6:8]),
            part(8, 10), part(10, 12), part(12, 14),
        )
    except ValueError:
        return None


def parse_amount(value: Optional[str]) -> Optional[Decimal]:
    """Parse a TRNAMT/BALAMT value; '.' or ',' may be the decimal separator."""
    if value is None:
        return None

    text = re.sub(r"\s", "", value)
    if "," in text and "." in text:
        # Whichever separator comes last is the decimal one
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    else:
        text = text.replace(",", ".")

    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None

    if not amount.is_finite():
        return None
    return amount


def classify_transaction_type(ofx_type: str, amount: Decimal) -> TransactionClass:
    """
    Map a TRNTYPE code to credit/debit.

    Codes outside the fixed tables (XFER, OTHER, unknown) fall back to the
    sign of the amount.
    """
    code = (ofx_type or "").upper().strip()

    if code in CREDIT_TYPES:
        return TransactionClass.CREDIT
    if code in DEBIT_TYPES:
        return TransactionClass.DEBIT

    return TransactionClass.CREDIT if amount >= 0 else TransactionClass.DEBIT


def build_description(name: Optional[str], memo: Optional[str], ofx_type: str) -> str:
    """NAME and MEMO joined; banks vary which one carries the text."""
    parts = [p for p in (name, memo) if p]
    return DESCRIPTION_SEPARATOR.join(parts).strip() or ofx_type


# ============== Parser ==============

class StatementParser:
    """Parser for OFX/QFX statement exports."""

    ENCODINGS = ("utf-8", "cp1252", "latin-1")

    def parse(self, content: str, file_name: Optional[str] = None) -> ParsedStatement:
        """Parse raw statement text."""
        warnings: List[str] = []

        normalized = content.replace("\r\n", "\n").replace("\r", "\n")

        account = BankAccount(
            bank_id=extract_tag(normalized, "BANKID"),
            branch_id=extract_tag(normalized, "BRANCHID"),
            account_id=extract_tag(normalized, "ACCTID"),
            account_type=extract_tag(normalized, "ACCTTYPE"),
            currency=extract_tag(normalized, "CURDEF"),
        )

        period = StatementPeriod(
            start=parse_ofx_date(extract_tag(normalized, "DTSTART")),
            end=parse_ofx_date(extract_tag(normalized, "DTEND")),
        )

        transactions = []
        for block in extract_blocks(normalized, "STMTTRN"):
            tx = self._parse_transaction(block, warnings)
            if tx:
                transactions.append(tx)

        transactions.sort(key=lambda t: t.posted_at, reverse=True)

        if not transactions:
            warnings.append(NO_TRANSACTIONS_WARNING)

        for warning in warnings:
            log_parse_warning(logger, warning, file_name)

        return ParsedStatement(
            transactions=transactions,
            account=account,
            period=period,
            ledger_balance=self._ledger_balance(normalized),
            available_balance=self._available_balance(normalized),
            balance_date=parse_ofx_date(extract_tag(normalized, "DTASOF")),
            warnings=warnings,
            file_name=file_name,
        )

    def parse_file(self, file_path: Path) -> ParsedStatement:
        """Read and parse a statement file from disk."""
        file_path = Path(file_path)

        try:
            raw = file_path.read_bytes()
        except OSError as e:
            raise ParseError(str(file_path), reason=str(e))

        for encoding in self.ENCODINGS:
            try:
                content = raw.decode(encoding)
                break
            except UnicodeDecodeError:
                continue
        else:
            raise ParseError(str(file_path), reason="could not decode file")

        logger.debug(f"Read {len(raw)} bytes from {file_path.name} as {encoding}")
        return self.parse(content, file_name=file_path.name)

    def _parse_transaction(self, block: str, warnings: List[str]) -> Optional[BankTransaction]:
        ofx_type = extract_tag(block, "TRNTYPE") or "OTHER"
        date_str = extract_tag(block, "DTPOSTED")
        amount_str = extract_tag(block, "TRNAMT")
        fit_id = extract_tag(block, "FITID") or ""
        name = extract_tag(block, "NAME")
        memo = extract_tag(block, "MEMO")

        if not amount_str:
            warnings.append(f"Transaction missing TRNAMT (FITID: {fit_id})")
            return None

        amount = parse_amount(amount_str)
        if amount is None:
            warnings.append(f'Invalid amount "{amount_str}" (FITID: {fit_id})')
            return None

        posted_at = parse_ofx_date(date_str)
        if posted_at is None:
            warnings.append(f'Invalid date "{date_str}" (FITID: {fit_id})')
            return None

        return BankTransaction(
            fit_id=fit_id,
            type=classify_transaction_type(ofx_type, amount),
            ofx_type=ofx_type,
            posted_at=posted_at,
            amount=amount,
            description=build_description(name, memo, ofx_type),
            check_number=extract_tag(block, "CHECKNUM"),
            ref_number=extract_tag(block, "REFNUM"),
            payee_name=name,
        )

    def _ledger_balance(self, content: str) -> Optional[Decimal]:
        blocks = extract_blocks(content, "LEDGERBAL")
        source = blocks[0] if blocks else content
        return parse_amount(extract_tag(source, "BALAMT"))

    def _available_balance(self, content: str) -> Optional[Decimal]:
        blocks = extract_blocks(content, "AVAILBAL")
        if not blocks:
            return None
        return parse_amount(extract_tag(blocks[0], "BALAMT"))


def parse_ofx(content: str, file_name: Optional[str] = None) -> ParsedStatement:
    """Parse statement text with a default parser."""
    return StatementParser().parse(content, file_name=file_name)


# ============== Helpers for consumers ==============

def total_credits(transactions: List[BankTransaction]) -> Decimal:
    """Total money in."""
    return sum((t.absolute_amount for t in transactions if t.is_credit()), Decimal("0"))


def total_debits(transactions: List[BankTransaction]) -> Decimal:
    """Total money out."""
    return sum((t.absolute_amount for t in transactions if t.is_debit()), Decimal("0"))


def group_by_date(transactions: List[BankTransaction]) -> Dict[str, List[BankTransaction]]:
    """Group transactions by YYYY-MM-DD, keeping input order."""
    groups: Dict[str, List[BankTransaction]] = OrderedDict()
    for tx in transactions:
        groups.setdefault(tx.date_str, []).append(tx)
    return groups


def period_text(period: StatementPeriod) -> str:
    if not period.start and not period.end:
        return "Período não informado"
    start = period.start.strftime("%Y-%m-%d") if period.start else "?"
    end = period.end.strftime("%Y-%m-%d") if period.end else "?"
    return f"{start} a {end}"
