"""Row codec: key layout, cell encoding, decode round trip, boundaries."""

from __future__ import annotations

import pytest

from ledger_sink.codec import keys
from ledger_sink.codec.rows import ACCOUNT_FAMILY, RowCodec
from ledger_sink.errors import EncodeError
from ledger_sink.models.config import TableNames
from ledger_sink.models.events import SlotStatus, TransactionStatus
from ledger_sink.models.records import MutationKind, RowMutation, StoredRow

from tests.factories import (
    make_account_event,
    make_block_event,
    make_id,
    make_slot_event,
    make_transaction_event,
)


def as_row(mutations: list[RowMutation]) -> StoredRow:
    """What a store would return for freshly written mutations."""
    row = StoredRow(row_key=mutations[0].row_key)
    for m in mutations:
        row.cells[(m.family, m.qualifier)] = m.value
        row.timestamps[(m.family, m.qualifier)] = m.timestamp
    return row


# ── Row keys ─────────────────────────────────────────────────────


def test_slot_keys_sort_numerically():
    slots = [0, 9, 10, 255, 256, 4096, 2**32, keys.U64_MAX]
    encoded = [keys.slot_key(s) for s in slots]
    assert encoded == sorted(encoded)
    assert keys.slot_key(255) == b"00000000000000ff"


def test_transaction_keys_sort_by_slot_then_index():
    pairs = [(5, 0), (5, 1), (5, 16), (6, 0), (16, 3)]
    encoded = [keys.transaction_key(s, i) for s, i in pairs]
    assert encoded == sorted(encoded)
    assert keys.transaction_key(5, 16) == b"0000000000000005#00000010"


def test_account_key_reverses_pubkey():
    pubkey = bytes(range(32))
    key = keys.account_key(pubkey, 42)
    assert key == bytes(reversed(range(32))).hex().encode() + b"#000000000000002a"
    assert keys.slot_from_key(key) == 42


def test_account_range_covers_every_slot_of_one_account():
    pubkey = make_id("account-A")
    start, end = keys.account_range(pubkey)
    for slot in (0, 1, keys.U64_MAX):
        assert start <= keys.account_key(pubkey, slot) < end
    other = keys.account_key(make_id("account-B"), 1)
    assert not start <= other < end


def test_slot_range_is_inclusive_of_end_slot():
    start, end = keys.slot_range(10, 12)
    assert start == keys.slot_key(10)
    assert end == keys.slot_key(13)
    assert start <= keys.transaction_key(12, keys.U32_MAX) < end
    assert keys.slot_range(None, keys.U64_MAX) == (None, None)


# ── Encode ───────────────────────────────────────────────────────


def test_account_cells_use_write_version_timestamp(codec):
    event = make_account_event(slot=7, write_version=99)
    mutations = codec.encode(event)

    assert {m.table for m in mutations} == {"account"}
    assert {m.family for m in mutations} == {ACCOUNT_FAMILY}
    assert {m.timestamp for m in mutations} == {99}
    assert all(m.row_key == keys.account_key(event.pubkey, 7) for m in mutations)
    lamports = next(m for m in mutations if m.qualifier == b"lamports")
    assert lamports.value == (1_000_000).to_bytes(8, "big")


def test_other_tables_use_slot_timestamp(codec):
    for event in (
        make_transaction_event(slot=55),
        make_block_event(slot=55),
        make_slot_event(slot=55, status=SlotStatus.ROOTED, parent_slot=54),
    ):
        assert {m.timestamp for m in codec.encode(event)} == {55}


def test_tombstone_is_a_row_delete(codec):
    m = codec.tombstone("tx", b"0000000000000001#00000000")
    assert m.kind == MutationKind.DELETE_ROW
    assert m.is_tombstone


def test_custom_table_names():
    custom = RowCodec(TableNames(accounts="acc_v2"))
    assert {m.table for m in custom.encode(make_account_event())} == {"acc_v2"}


# ── Round trip ───────────────────────────────────────────────────


@pytest.mark.parametrize("event", [
    make_account_event(),
    make_account_event(data=b"", is_startup=True, lamports=0),
    make_transaction_event(),
    make_transaction_event(
        status=TransactionStatus.failed(17), accounts_touched=(), is_vote=True, message_bytes=b"",
    ),
    make_transaction_event(status=TransactionStatus.failed(0)),
    make_transaction_event(status=TransactionStatus(success=False, error_code=None)),
    make_block_event(),
    make_block_event(block_time=None, block_height=None),
    make_block_event(block_time=-1),
    make_slot_event(status=SlotStatus.ROOTED, parent_slot=99),
    make_slot_event(status=SlotStatus.ROOTED, parent_slot=None),
], ids=[
    "account", "account-empty", "tx", "tx-failed-vote", "tx-failed-code-0",
    "tx-failed-no-code", "block",
    "block-no-optionals", "block-negative-time", "slot", "slot-no-parent",
])
def test_decode_reverses_encode(codec, event):
    mutations = codec.encode(event)
    assert codec.decode(mutations[0].table, as_row(mutations)) == event


def test_boundary_values_round_trip(codec):
    event = make_account_event(
        slot=keys.U64_MAX, lamports=keys.U64_MAX, write_version=keys.U64_MAX,
    )
    mutations = codec.encode(event)
    assert codec.decode("account", as_row(mutations)) == event

    tx = make_transaction_event(slot=keys.U64_MAX, index_in_block=keys.U32_MAX)
    assert codec.decode("tx", as_row(codec.encode(tx))) == tx


# ── Malformed input ──────────────────────────────────────────────


@pytest.mark.parametrize("event", [
    make_account_event(slot=2**64),
    make_account_event(lamports=-1),
    make_account_event(pubkey=b"\x01" * 31),
    make_account_event(owner=b"\x01" * 33),
    make_transaction_event(index_in_block=2**32),
    make_transaction_event(signature=b"\x00" * 32),
    make_transaction_event(accounts_touched=(b"short",)),
    make_block_event(block_time=2**63),
    make_block_event(blockhash=b""),
], ids=[
    "slot-overflow", "negative-lamports", "short-pubkey", "long-owner", "index-overflow",
    "short-signature", "short-mention", "time-overflow", "empty-blockhash",
])
def test_malformed_events_raise(codec, event):
    with pytest.raises(EncodeError):
        codec.encode(event)


def test_oversized_cell_is_rejected_not_truncated():
    codec = RowCodec(max_cell_bytes=64)
    assert codec.encode(make_account_event(data=b"x" * 64))
    with pytest.raises(EncodeError, match="exceeds"):
        codec.encode(make_account_event(data=b"x" * 65))


def test_unsupported_event_type(codec):
    with pytest.raises(EncodeError, match="unsupported"):
        codec.encode("not an event")


def test_decode_missing_cell_raises(codec):
    mutations = codec.encode(make_account_event())
    row = as_row([m for m in mutations if m.qualifier != b"lamports"])
    with pytest.raises(EncodeError, match="lamports"):
        codec.decode("account", row)


def test_decode_unknown_table(codec):
    with pytest.raises(EncodeError, match="unknown table"):
        codec.decode("nope", StoredRow(row_key=b"k"))
