"""Notification event models delivered by the validator host."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class SlotStatus(str, Enum):
    """Commitment level of a slot as reported by the host."""

    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    ROOTED = "rooted"
    DEAD = "dead"


@dataclass(frozen=True)
class TransactionStatus:
    """Execution outcome of a transaction: success, or failure with a code."""

    success: bool = True
    error_code: int | None = None

    @classmethod
    def ok(cls) -> TransactionStatus:
        return cls(success=True)

    @classmethod
    def failed(cls, code: int) -> TransactionStatus:
        return cls(success=False, error_code=code)


@dataclass(frozen=True)
class AccountUpdateEvent:
    """One observed mutation of an account at a given slot."""

    slot: int
    pubkey: bytes  # 32 bytes
    lamports: int
    owner: bytes  # 32 bytes
    data: bytes
    write_version: int
    is_startup: bool = False


@dataclass(frozen=True)
class TransactionEvent:
    """A transaction executed in a slot. Immutable once emitted."""

    slot: int
    signature: bytes  # 64 bytes
    index_in_block: int
    status: TransactionStatus
    accounts_touched: tuple[bytes, ...]
    message_bytes: bytes
    is_vote: bool = False


@dataclass(frozen=True)
class SlotStatusEvent:
    """Slot commitment transition (drives the confirmation tracker)."""

    slot: int
    parent_slot: int | None
    status: SlotStatus


@dataclass(frozen=True)
class BlockMetadataEvent:
    """Metadata of the block produced in a slot."""

    slot: int
    blockhash: bytes  # 32 bytes
    block_time: int | None  # unix seconds
    block_height: int | None


LedgerEvent = Union[AccountUpdateEvent, TransactionEvent, SlotStatusEvent, BlockMetadataEvent]

# Row-carrying events, i.e. everything the tracker gates by slot
RowEvent = Union[AccountUpdateEvent, TransactionEvent, BlockMetadataEvent]


def event_category(event: LedgerEvent) -> str:
    """Metric label for an event."""
    if isinstance(event, AccountUpdateEvent):
        return "account"
    if isinstance(event, TransactionEvent):
        return "transaction"
    if isinstance(event, SlotStatusEvent):
        return "slot"
    if isinstance(event, BlockMetadataEvent):
        return "block"
    return "unknown"
