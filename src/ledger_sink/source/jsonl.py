"""JSON-lines notification source - replays a recorded host stream.

One notification per line:

    {"type": "slot", "slot": 42, "parent_slot": 41, "status": "confirmed"}
    {"type": "account", "slot": 42, "pubkey": "<hex>", "owner": "<hex>",
     "lamports": 7, "data": "<base64>", "write_version": 1, "is_startup": false}
    {"type": "transaction", "slot": 42, "signature": "<hex>", "index_in_block": 0,
     "error_code": null, "accounts_touched": ["<hex>"], "message": "<base64>",
     "is_vote": false}
    {"type": "block", "slot": 42, "blockhash": "<hex>", "block_time": 1700000000,
     "block_height": 40}

Blank lines and lines starting with "#" are skipped.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import AsyncIterator, Iterable

from ledger_sink.errors import EncodeError
from ledger_sink.models.events import (
    AccountUpdateEvent,
    BlockMetadataEvent,
    LedgerEvent,
    SlotStatus,
    SlotStatusEvent,
    TransactionEvent,
    TransactionStatus,
)

log = logging.getLogger(__name__)


def _hex(value: str, field: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except (TypeError, ValueError) as exc:
        raise EncodeError(f"{field}: invalid hex id") from exc


def _b64(value: str | None, field: str) -> bytes:
    if not value:
        return b""
    try:
        return base64.b64decode(value, validate=True)
    except (TypeError, binascii.Error) as exc:
        raise EncodeError(f"{field}: invalid base64 payload") from exc


def decode_notification(obj: dict) -> LedgerEvent:
    """Build an event from one parsed JSON notification."""
    kind = obj.get("type")
    try:
        if kind == "account":
            return AccountUpdateEvent(
                slot=int(obj["slot"]),
                pubkey=_hex(obj["pubkey"], "pubkey"),
                lamports=int(obj["lamports"]),
                owner=_hex(obj["owner"], "owner"),
                data=_b64(obj.get("data"), "data"),
                write_version=int(obj["write_version"]),
                is_startup=bool(obj.get("is_startup", False)),
            )
        if kind == "transaction":
            code = obj.get("error_code")
            return TransactionEvent(
                slot=int(obj["slot"]),
                signature=_hex(obj["signature"], "signature"),
                index_in_block=int(obj["index_in_block"]),
                status=TransactionStatus.ok() if code is None else TransactionStatus.failed(int(code)),
                accounts_touched=tuple(
                    _hex(a, "accounts_touched") for a in obj.get("accounts_touched", [])
                ),
                message_bytes=_b64(obj.get("message"), "message"),
                is_vote=bool(obj.get("is_vote", False)),
            )
        if kind == "slot":
            parent = obj.get("parent_slot")
            return SlotStatusEvent(
                slot=int(obj["slot"]),
                parent_slot=None if parent is None else int(parent),
                status=SlotStatus(str(obj["status"]).lower()),
            )
        if kind == "block":
            block_time = obj.get("block_time")
            block_height = obj.get("block_height")
            return BlockMetadataEvent(
                slot=int(obj["slot"]),
                blockhash=_hex(obj["blockhash"], "blockhash"),
                block_time=None if block_time is None else int(block_time),
                block_height=None if block_height is None else int(block_height),
            )
    except KeyError as exc:
        raise EncodeError(f"{kind} notification missing field {exc.args[0]}") from exc
    except (TypeError, ValueError) as exc:
        raise EncodeError(f"{kind} notification: {exc}") from exc
    raise EncodeError(f"unknown notification type {kind!r}")


class JsonLinesSource:
    """EventSource over an iterable of JSON lines (an open file, stdin, a list)."""

    def __init__(self, lines: Iterable[str]) -> None:
        self._lines = lines
        self.skipped = 0

    async def events(self) -> AsyncIterator[LedgerEvent]:
        for lineno, line in enumerate(self._lines, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                obj = json.loads(line)
                if not isinstance(obj, dict):
                    raise EncodeError("notification is not a JSON object")
                event = decode_notification(obj)
            except (json.JSONDecodeError, EncodeError) as exc:
                log.warning("Skipping line %d: %s", lineno, exc)
                self.skipped += 1
                continue
            yield event
