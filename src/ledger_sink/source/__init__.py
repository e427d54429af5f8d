"""Host notification sources."""

from ledger_sink.source.jsonl import JsonLinesSource, decode_notification

__all__ = ["JsonLinesSource", "decode_notification"]
