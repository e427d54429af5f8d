"""Row codec - event <-> wide-column row mapping."""

from ledger_sink.codec.rows import (
    ACCOUNT_FAMILY,
    BLOCK_FAMILY,
    SLOT_FAMILY,
    TRANSACTION_FAMILY,
    RowCodec,
)

__all__ = [
    "RowCodec",
    "ACCOUNT_FAMILY", "BLOCK_FAMILY", "SLOT_FAMILY", "TRANSACTION_FAMILY",
]
