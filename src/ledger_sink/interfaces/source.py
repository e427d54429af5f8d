"""EventSource protocol - produces host notifications in emission order."""

from __future__ import annotations

from typing import AsyncIterator, Protocol

from ledger_sink.models.events import LedgerEvent


class EventSource(Protocol):
    """Yields decoded notifications in the order the host emitted them."""

    def events(self) -> AsyncIterator[LedgerEvent]:
        ...
