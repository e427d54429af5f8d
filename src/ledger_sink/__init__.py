"""ledger_sink - persists validator ledger notifications into a wide-column store."""

__version__ = "0.1.0"
