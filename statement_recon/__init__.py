"""OFX bank statement parsing and ledger reconciliation."""

__version__ = "1.0.0"
