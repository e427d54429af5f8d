"""Row codec - maps ledger events to storage row mutations and back.

Pure and stateless. Each event becomes one row of several cells in a single
column family:

    table         family  row key                      cell timestamp
    accounts      a       reverse(pubkey)#slot         write_version
    transactions  t       slot#index                   slot
    blocks        b       slot                         slot
    slots         s       slot                         slot

Integers are big-endian (u64 as 8 bytes, u32 as 4 bytes), booleans a single
byte. Using write_version as the account cell timestamp lets the backend's
latest-cell-wins semantics keep the highest write version per row.
"""

from __future__ import annotations

import struct

from ledger_sink.codec import keys
from ledger_sink.errors import EncodeError
from ledger_sink.models.config import TableNames
from ledger_sink.models.events import (
    AccountUpdateEvent,
    BlockMetadataEvent,
    LedgerEvent,
    SlotStatus,
    SlotStatusEvent,
    TransactionEvent,
    TransactionStatus,
)
from ledger_sink.models.records import MutationKind, RowMutation, StoredRow

ACCOUNT_FAMILY = "a"
TRANSACTION_FAMILY = "t"
BLOCK_FAMILY = "b"
SLOT_FAMILY = "s"

DEFAULT_MAX_CELL_BYTES = 100 * 1024 * 1024


def _u64(value: int, name: str) -> bytes:
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= keys.U64_MAX:
        raise EncodeError(f"{name} out of range: {value!r}")
    return struct.pack(">Q", value)


def _u32(value: int, name: str) -> bytes:
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= keys.U32_MAX:
        raise EncodeError(f"{name} out of range: {value!r}")
    return struct.pack(">I", value)


def _i64(value: int, name: str) -> bytes:
    try:
        return struct.pack(">q", value)
    except struct.error as exc:
        raise EncodeError(f"{name} out of range: {value!r}") from exc


def _id(value: bytes, size: int, name: str) -> bytes:
    if not isinstance(value, (bytes, bytearray)) or len(value) != size:
        raise EncodeError(f"{name} must be {size} bytes")
    return bytes(value)


def _flag(value: bool) -> bytes:
    return b"\x01" if value else b"\x00"


class RowCodec:
    """Encodes events into RowMutations and decodes stored rows into events."""

    def __init__(
        self,
        tables: TableNames | None = None,
        max_cell_bytes: int = DEFAULT_MAX_CELL_BYTES,
    ) -> None:
        self.tables = tables or TableNames()
        self._max_cell_bytes = max_cell_bytes

    # ── Encode ─────────────────────────────────────────────

    def encode(self, event: LedgerEvent) -> list[RowMutation]:
        """Map an event to its row mutations.

        Raises EncodeError on malformed input or cells exceeding the backend
        cell limit. Never truncates.
        """
        if isinstance(event, AccountUpdateEvent):
            return self._encode_account(event)
        if isinstance(event, TransactionEvent):
            return self._encode_transaction(event)
        if isinstance(event, BlockMetadataEvent):
            return self._encode_block(event)
        if isinstance(event, SlotStatusEvent):
            return self._encode_slot(event)
        raise EncodeError(f"unsupported event type: {type(event).__name__}")

    def tombstone(self, table: str, row_key: bytes) -> RowMutation:
        return RowMutation(table=table, row_key=row_key, kind=MutationKind.DELETE_ROW)

    def _cells(
        self,
        table: str,
        row_key: bytes,
        family: str,
        timestamp: int,
        cells: list[tuple[bytes, bytes]],
    ) -> list[RowMutation]:
        out = []
        for qualifier, value in cells:
            if len(value) > self._max_cell_bytes:
                raise EncodeError(
                    f"cell {family}:{qualifier.decode()} of {len(value)} bytes exceeds "
                    f"limit of {self._max_cell_bytes}"
                )
            out.append(RowMutation(
                table=table,
                row_key=row_key,
                family=family,
                qualifier=qualifier,
                value=value,
                timestamp=timestamp,
            ))
        return out

    def _encode_account(self, event: AccountUpdateEvent) -> list[RowMutation]:
        pubkey = _id(event.pubkey, 32, "pubkey")
        cells = [
            (b"pubkey", pubkey),
            (b"owner", _id(event.owner, 32, "owner")),
            (b"lamports", _u64(event.lamports, "lamports")),
            (b"slot", _u64(event.slot, "slot")),
            (b"write_version", _u64(event.write_version, "write_version")),
            (b"is_startup", _flag(event.is_startup)),
            (b"data", bytes(event.data)),
        ]
        return self._cells(
            self.tables.accounts,
            keys.account_key(pubkey, event.slot),
            ACCOUNT_FAMILY,
            event.write_version,
            cells,
        )

    def _encode_transaction(self, event: TransactionEvent) -> list[RowMutation]:
        cells = [
            (b"signature", _id(event.signature, 64, "signature")),
            (b"slot", _u64(event.slot, "slot")),
            (b"index", _u32(event.index_in_block, "index_in_block")),
            (b"success", _flag(event.status.success)),
        ]
        if not event.status.success and event.status.error_code is not None:
            cells.append((b"error_code", _u32(event.status.error_code, "error_code")))
        accounts = b"".join(_id(a, 32, "accounts_touched entry") for a in event.accounts_touched)
        cells += [
            (b"accounts", accounts),
            (b"message", bytes(event.message_bytes)),
            (b"is_vote", _flag(event.is_vote)),
        ]
        return self._cells(
            self.tables.transactions,
            keys.transaction_key(event.slot, event.index_in_block),
            TRANSACTION_FAMILY,
            event.slot,
            cells,
        )

    def _encode_block(self, event: BlockMetadataEvent) -> list[RowMutation]:
        cells = [
            (b"slot", _u64(event.slot, "slot")),
            (b"blockhash", _id(event.blockhash, 32, "blockhash")),
        ]
        if event.block_time is not None:
            cells.append((b"block_time", _i64(event.block_time, "block_time")))
        if event.block_height is not None:
            cells.append((b"block_height", _u64(event.block_height, "block_height")))
        return self._cells(
            self.tables.blocks, keys.slot_key(event.slot), BLOCK_FAMILY, event.slot, cells,
        )

    def _encode_slot(self, event: SlotStatusEvent) -> list[RowMutation]:
        cells = [
            (b"slot", _u64(event.slot, "slot")),
            (b"status", event.status.value.encode("ascii")),
        ]
        if event.parent_slot is not None:
            cells.append((b"parent", _u64(event.parent_slot, "parent_slot")))
        return self._cells(
            self.tables.slots, keys.slot_key(event.slot), SLOT_FAMILY, event.slot, cells,
        )

    # ── Decode ─────────────────────────────────────────────

    def decode(self, table: str, row: StoredRow) -> LedgerEvent:
        """Rebuild the event a stored row was encoded from."""
        if table == self.tables.accounts:
            return self._decode_account(row)
        if table == self.tables.transactions:
            return self._decode_transaction(row)
        if table == self.tables.blocks:
            return self._decode_block(row)
        if table == self.tables.slots:
            return self._decode_slot(row)
        raise EncodeError(f"unknown table: {table}")

    @staticmethod
    def _need(row: StoredRow, family: str, qualifier: bytes) -> bytes:
        value = row.get(family, qualifier)
        if value is None:
            raise EncodeError(
                f"row {row.row_key!r} is missing cell {family}:{qualifier.decode()}"
            )
        return value

    def _decode_account(self, row: StoredRow) -> AccountUpdateEvent:
        f = ACCOUNT_FAMILY
        return AccountUpdateEvent(
            slot=struct.unpack(">Q", self._need(row, f, b"slot"))[0],
            pubkey=self._need(row, f, b"pubkey"),
            lamports=struct.unpack(">Q", self._need(row, f, b"lamports"))[0],
            owner=self._need(row, f, b"owner"),
            data=row.get(f, b"data") or b"",
            write_version=struct.unpack(">Q", self._need(row, f, b"write_version"))[0],
            is_startup=self._need(row, f, b"is_startup") == b"\x01",
        )

    def _decode_transaction(self, row: StoredRow) -> TransactionEvent:
        f = TRANSACTION_FAMILY
        if self._need(row, f, b"success") == b"\x01":
            status = TransactionStatus.ok()
        else:
            code = row.get(f, b"error_code")
            status = TransactionStatus(
                success=False,
                error_code=None if code is None else struct.unpack(">I", code)[0],
            )
        accounts = row.get(f, b"accounts") or b""
        if len(accounts) % 32:
            raise EncodeError(f"row {row.row_key!r} has a truncated account list")
        return TransactionEvent(
            slot=struct.unpack(">Q", self._need(row, f, b"slot"))[0],
            signature=self._need(row, f, b"signature"),
            index_in_block=struct.unpack(">I", self._need(row, f, b"index"))[0],
            status=status,
            accounts_touched=tuple(accounts[i:i + 32] for i in range(0, len(accounts), 32)),
            message_bytes=row.get(f, b"message") or b"",
            is_vote=row.get(f, b"is_vote") == b"\x01",
        )

    def _decode_block(self, row: StoredRow) -> BlockMetadataEvent:
        f = BLOCK_FAMILY
        block_time = row.get(f, b"block_time")
        block_height = row.get(f, b"block_height")
        return BlockMetadataEvent(
            slot=struct.unpack(">Q", self._need(row, f, b"slot"))[0],
            blockhash=self._need(row, f, b"blockhash"),
            block_time=struct.unpack(">q", block_time)[0] if block_time is not None else None,
            block_height=struct.unpack(">Q", block_height)[0] if block_height is not None else None,
        )

    def _decode_slot(self, row: StoredRow) -> SlotStatusEvent:
        f = SLOT_FAMILY
        parent = row.get(f, b"parent")
        try:
            status = SlotStatus(self._need(row, f, b"status").decode("ascii"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise EncodeError(f"row {row.row_key!r} has an invalid slot status") from exc
        return SlotStatusEvent(
            slot=struct.unpack(">Q", self._need(row, f, b"slot"))[0],
            parent_slot=struct.unpack(">Q", parent)[0] if parent is not None else None,
            status=status,
        )
