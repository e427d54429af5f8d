"""Row key construction.

Slots are rendered as fixed-width (16 digit) lowercase hex so that the
lexicographic order of keys matches numeric slot order, which the scan
based read path relies on.
"""

from __future__ import annotations

from ledger_sink.errors import EncodeError

U64_MAX = 2**64 - 1
U32_MAX = 2**32 - 1
SEPARATOR = b"#"


def _check_uint(name: str, value: int, maximum: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= maximum:
        raise EncodeError(f"{name} out of range: {value!r}")


def slot_key(slot: int) -> bytes:
    _check_uint("slot", slot, U64_MAX)
    return f"{slot:016x}".encode("ascii")


def account_key(pubkey: bytes, slot: int) -> bytes:
    """reverse(pubkey) + padded(slot): spreads writes, keeps per-account history ordered."""
    if len(pubkey) != 32:
        raise EncodeError(f"pubkey must be 32 bytes, got {len(pubkey)}")
    return pubkey[::-1].hex().encode("ascii") + SEPARATOR + slot_key(slot)


def transaction_key(slot: int, index_in_block: int) -> bytes:
    _check_uint("index_in_block", index_in_block, U32_MAX)
    return slot_key(slot) + SEPARATOR + f"{index_in_block:08x}".encode("ascii")


def slot_range(start_slot: int | None, end_slot: int | None) -> tuple[bytes | None, bytes | None]:
    """Key range [start, end) covering slots start_slot..end_slot inclusive.

    Valid for the slot-prefixed tables (transactions, blocks, slots).
    """
    start = slot_key(start_slot) if start_slot is not None else None
    end = None
    if end_slot is not None and end_slot < U64_MAX:
        end = slot_key(end_slot + 1)
    return start, end


def account_range(pubkey: bytes) -> tuple[bytes, bytes]:
    """Key range covering every slot of one account."""
    if len(pubkey) != 32:
        raise EncodeError(f"pubkey must be 32 bytes, got {len(pubkey)}")
    prefix = pubkey[::-1].hex().encode("ascii") + SEPARATOR
    # "$" sorts right after "#"
    return prefix, prefix[:-1] + b"$"


def slot_from_key(row_key: bytes) -> int:
    """Extract the slot component from any row key produced here."""
    parts = row_key.split(SEPARATOR)
    # account keys carry the slot last, slot-prefixed keys first
    raw = parts[-1] if len(parts[0]) == 64 else parts[0]
    try:
        return int(raw.decode("ascii"), 16)
    except (UnicodeDecodeError, ValueError) as exc:
        raise EncodeError(f"not a ledger row key: {row_key!r}") from exc
