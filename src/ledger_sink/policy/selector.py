"""Account and transaction selectors - which notifications get persisted."""

from __future__ import annotations

from typing import Iterable

from ledger_sink.errors import ConfigurationError

WILDCARD = "*"
ALL_VOTES = "all_votes"


def _parse_ids(values: Iterable[str], field: str) -> set[bytes]:
    ids: set[bytes] = set()
    for value in values:
        try:
            raw = bytes.fromhex(value)
        except ValueError as exc:
            raise ConfigurationError(f"{field}: {value!r} is not a hex encoded id") from exc
        if len(raw) != 32:
            raise ConfigurationError(f"{field}: {value!r} is not a 32-byte id")
        ids.add(raw)
    return ids


class AccountsSelector:
    """Selects accounts by pubkey or by owner program.

    An account is selected when its pubkey is listed, its owner is listed,
    or the accounts list contains the "*" wildcard.
    """

    def __init__(self, accounts: Iterable[str] = (), owners: Iterable[str] = ()) -> None:
        accounts = list(accounts)
        self.select_all = WILDCARD in accounts
        self._accounts = _parse_ids((a for a in accounts if a != WILDCARD), "accounts")
        self._owners = _parse_ids(owners, "owners")

    def is_account_selected(self, pubkey: bytes, owner: bytes) -> bool:
        return self.select_all or pubkey in self._accounts or owner in self._owners

    def is_enabled(self) -> bool:
        return self.select_all or bool(self._accounts) or bool(self._owners)

    def __repr__(self) -> str:
        return (
            f"AccountsSelector(select_all={self.select_all}, "
            f"accounts={len(self._accounts)}, owners={len(self._owners)})"
        )


class TransactionSelector:
    """Selects transactions by mentioned account.

    "*" selects every transaction, "all_votes" every vote transaction.
    """

    def __init__(self, mentions: Iterable[str] = ()) -> None:
        mentions = list(mentions)
        self.select_all = WILDCARD in mentions
        self.select_all_votes = ALL_VOTES in mentions
        self._mentions = _parse_ids(
            (m for m in mentions if m not in (WILDCARD, ALL_VOTES)), "mentions",
        )

    def is_transaction_selected(self, is_vote: bool, mentioned: Iterable[bytes]) -> bool:
        if self.select_all:
            return True
        if self.select_all_votes and is_vote:
            return True
        return any(key in self._mentions for key in mentioned)

    def is_enabled(self) -> bool:
        return self.select_all or self.select_all_votes or bool(self._mentions)

    def __repr__(self) -> str:
        return (
            f"TransactionSelector(select_all={self.select_all}, "
            f"all_votes={self.select_all_votes}, mentions={len(self._mentions)})"
        )
