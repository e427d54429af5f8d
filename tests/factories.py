"""Synthetic event factories for testing."""

from __future__ import annotations

import base64
import hashlib
import json

from ledger_sink.models.events import (
    AccountUpdateEvent,
    BlockMetadataEvent,
    SlotStatus,
    SlotStatusEvent,
    TransactionEvent,
    TransactionStatus,
)


def make_id(seed: str, size: int = 32) -> bytes:
    """Deterministic fake pubkey/hash/signature of `size` bytes."""
    digest = hashlib.sha512(seed.encode("utf-8")).digest()
    return (digest * (size // len(digest) + 1))[:size]


def make_account_event(
    slot: int = 100,
    pubkey: bytes | None = None,
    lamports: int = 1_000_000,
    owner: bytes | None = None,
    data: bytes = b"\x01\x02\x03",
    write_version: int = 1,
    is_startup: bool = False,
) -> AccountUpdateEvent:
    return AccountUpdateEvent(
        slot=slot,
        pubkey=make_id("account-A") if pubkey is None else pubkey,
        lamports=lamports,
        owner=make_id("owner-program") if owner is None else owner,
        data=data,
        write_version=write_version,
        is_startup=is_startup,
    )


def make_transaction_event(
    slot: int = 100,
    index_in_block: int = 0,
    signature: bytes | None = None,
    status: TransactionStatus | None = None,
    accounts_touched: tuple[bytes, ...] | None = None,
    message_bytes: bytes = b"message",
    is_vote: bool = False,
) -> TransactionEvent:
    return TransactionEvent(
        slot=slot,
        signature=make_id(f"sig-{slot}-{index_in_block}", 64) if signature is None else signature,
        index_in_block=index_in_block,
        status=status or TransactionStatus.ok(),
        accounts_touched=(
            accounts_touched if accounts_touched is not None else (make_id("account-A"),)
        ),
        message_bytes=message_bytes,
        is_vote=is_vote,
    )


def make_block_event(
    slot: int = 100,
    blockhash: bytes | None = None,
    block_time: int | None = 1_700_000_000,
    block_height: int | None = 90,
) -> BlockMetadataEvent:
    return BlockMetadataEvent(
        slot=slot,
        blockhash=make_id(f"block-{slot}") if blockhash is None else blockhash,
        block_time=block_time,
        block_height=block_height,
    )


def make_slot_event(
    slot: int = 100,
    status: SlotStatus = SlotStatus.PROCESSED,
    parent_slot: int | None = None,
) -> SlotStatusEvent:
    return SlotStatusEvent(slot=slot, parent_slot=parent_slot, status=status)


# ── JSON-lines notifications ─────────────────────────────────────


def account_line(event: AccountUpdateEvent) -> str:
    return json.dumps({
        "type": "account",
        "slot": event.slot,
        "pubkey": event.pubkey.hex(),
        "owner": event.owner.hex(),
        "lamports": event.lamports,
        "data": base64.b64encode(event.data).decode(),
        "write_version": event.write_version,
        "is_startup": event.is_startup,
    })


def slot_line(slot: int, status: str, parent_slot: int | None = None) -> str:
    return json.dumps({"type": "slot", "slot": slot, "parent_slot": parent_slot, "status": status})
