"""Selector protocols - decide which accounts and transactions are stored."""

from __future__ import annotations

from typing import Iterable, Protocol


class AccountFilter(Protocol):
    def is_account_selected(self, pubkey: bytes, owner: bytes) -> bool:
        ...

    def is_enabled(self) -> bool:
        ...


class TransactionFilter(Protocol):
    def is_transaction_selected(self, is_vote: bool, mentioned: Iterable[bytes]) -> bool:
        ...

    def is_enabled(self) -> bool:
        ...
