"""
Pytest fixtures for statement reconciliation tests.
"""
import pytest
from datetime import date, datetime
from decimal import Decimal
import os
import sys

# Add package root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from statement_recon.config import Config
from statement_recon.models import (
    BankTransaction, EntryTable, LedgerEntry, TransactionClass
)
from statement_recon.reconciler import BankReconciler
from statement_recon.storage import SqlLedgerGateway


TENANT = "tenant-001"


SGML_STATEMENT = """OFXHEADER:100
DATA:OFXSGML
VERSION:102
SECURITY:NONE
ENCODING:USASCII
CHARSET:1252
COMPRESSION:NONE
OLDFILEUID:NONE
NEWFILEUID:NONE

<OFX>
<SIGNONMSGSRSV1>
<SONRS>
<STATUS>
<CODE>0
<SEVERITY>INFO
</STATUS>
<DTSERVER>20240401083000[-3:BRT]
<LANGUAGE>POR
</SONRS>
</SIGNONMSGSRSV1>
<BANKMSGSRSV1>
<STMTTRNRS>
<TRNUID>1001
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
<DTPOSTED>20240310120000[-3:BRT]
<TRNAMT>-150.00
<FITID>TX001
<MEMO>PAGAMENTO FORNECEDOR ABC
</STMTTRN>
<STMTTRN>
<TRNTYPE>CREDIT
<DTPOSTED>20240315
<TRNAMT>1200.50
<FITID>TX002
<NAME>CLIENTE XYZ LTDA
<MEMO>TED RECEBIDA
</STMTTRN>
<STMTTRN>
<TRNTYPE>XFER
<DTPOSTED>20240320
<TRNAMT>-80,00
<FITID>TX003
<MEMO>TRANSFERENCIA PIX
</STMTTRN>
</BANKTRANLIST>
<LEDGERBAL>
<BALAMT>5000.00
<DTASOF>20240331
</LEDGERBAL>
<AVAILBAL>
<BALAMT>4800.00
<DTASOF>20240331
</AVAILBAL>
</STMTRS>
</STMTTRNRS>
</BANKMSGSRSV1>
</OFX>
"""


XML_STATEMENT = """<?xml version="1.0" encoding="UTF-8" standalone="no"?>
<?OFX OFXHEADER="200" VERSION="211" SECURITY="NONE" OLDFILEUID="NONE" NEWFILEUID="NONE"?>
<OFX>
  <BANKMSGSRSV1>
    <STMTTRNRS>
      <STMTRS>
        <CURDEF>BRL</CURDEF>
        <BANKACCTFROM>
          <BANKID>0341</BANKID>
          <BRANCHID>1234</BRANCHID>
          <ACCTID>56789-0</ACCTID>
          <ACCTTYPE>CHECKING</ACCTTYPE>
        </BANKACCTFROM>
        <BANKTRANLIST>
          <DTSTART>20240301000000[-3:BRT]</DTSTART>
          <DTEND>20240331235959[-3:BRT]</DTEND>
          <STMTTRN>
            <TRNTYPE>DEBIT</TRNTYPE>
            <DTPOSTED>20240310120000[-3:BRT]</DTPOSTED>
            <TRNAMT>-150.00</TRNAMT>
            <FITID>TX001</FITID>
            <MEMO>PAGAMENTO FORNECEDOR ABC</MEMO>
          </STMTTRN>
          <STMTTRN>
            <TRNTYPE>CREDIT</TRNTYPE>
            <DTPOSTED>20240315</DTPOSTED>
            <TRNAMT>1200.50</TRNAMT>
            <FITID>TX002</FITID>
            <NAME>CLIENTE XYZ LTDA</NAME>
            <MEMO>TED RECEBIDA</MEMO>
          </STMTTRN>
          <STMTTRN>
            <TRNTYPE>XFER</TRNTYPE>
            <DTPOSTED>20240320</DTPOSTED>
            <TRNAMT>-80,00</TRNAMT>
            <FITID>TX003</FITID>
            <MEMO>TRANSFERENCIA PIX</MEMO>
          </STMTTRN>
        </BANKTRANLIST>
        <LEDGERBAL>
          <BALAMT>5000.00</BALAMT>
          <DTASOF>20240331</DTASOF>
        </LEDGERBAL>
        <AVAILBAL>
          <BALAMT>4800.00</BALAMT>
          <DTASOF>20240331</DTASOF>
        </AVAILBAL>
      </STMTRS>
    </STMTTRNRS>
  </BANKMSGSRSV1>
</OFX>
"""


@pytest.fixture
def sgml_statement():
    """OFX 1.x statement with three transactions."""
    return SGML_STATEMENT


@pytest.fixture
def xml_statement():
    """The same statement in OFX 2.x form."""
    return XML_STATEMENT


@pytest.fixture
def statement_file(tmp_path):
    """SGML statement written to disk."""
    path = tmp_path / "extrato_marco.ofx"
    path.write_text(SGML_STATEMENT, encoding="utf-8")
    return path


@pytest.fixture
def debit_transaction():
    """Supplier payment from the bank."""
    return BankTransaction(
        fit_id="TX001",
        type=TransactionClass.DEBIT,
        ofx_type="DEBIT",
        posted_at=datetime(2024, 3, 10, 12, 0, 0),
        amount=Decimal("-150.00"),
        description="PAGAMENTO FORNECEDOR ABC",
    )


@pytest.fixture
def credit_transaction():
    """Customer receipt of 500.00 on 2024-05-02."""
    return BankTransaction(
        fit_id="TX500",
        type=TransactionClass.CREDIT,
        ofx_type="CREDIT",
        posted_at=datetime(2024, 5, 2, 9, 30, 0),
        amount=Decimal("500.00"),
        description="TED RECEBIDA CLIENTE XYZ",
        payee_name="CLIENTE XYZ",
    )


@pytest.fixture
def payable_entry():
    """Pending payable matching the debit transaction."""
    return LedgerEntry(
        id="AP-001",
        table=EntryTable.PAYABLE,
        description="Fornecedor ABC Materiais",
        amount=Decimal("150.00"),
        due_date=date(2024, 3, 10),
        status="pending",
    )


@pytest.fixture
def test_config(tmp_path):
    """Configuration pointing at a throwaway database and reports dir."""
    cfg = Config()
    cfg.database_url = f"sqlite:///{tmp_path / 'recon.db'}"
    cfg.reports_dir = tmp_path / "reports"
    cfg.ledger.api_url = ""
    return cfg


@pytest.fixture
def gateway(test_config):
    """SQL ledger store on a temporary sqlite file."""
    store = SqlLedgerGateway(test_config.database_url)
    yield store
    store.close()


@pytest.fixture
def reconciler(gateway, test_config):
    """Reconciler wired to the temporary store."""
    return BankReconciler(gateway=gateway, cfg=test_config)


@pytest.fixture
def seed_payable(gateway):
    """Insert a payable row and return it."""
    def _seed(**fields):
        payload = {
            "tenant_id": TENANT,
            "description": "Fornecedor ABC Materiais",
            "amount": Decimal("150.00"),
            "status": "pending",
            "due_date": date(2024, 3, 10),
        }
        payload.update(fields)
        return gateway.create(EntryTable.PAYABLE.value, payload)
    return _seed


@pytest.fixture
def seed_receivable(gateway):
    """Insert a receivable row and return it."""
    def _seed(**fields):
        payload = {
            "tenant_id": TENANT,
            "description": "Mensalidade Cliente XYZ",
            "amount": Decimal("1200.50"),
            "status": "pending",
            "due_date": date(2024, 3, 15),
        }
        payload.update(fields)
        return gateway.create(EntryTable.RECEIVABLE.value, payload)
    return _seed
