"""Exception hierarchy for the ledger sink."""

from __future__ import annotations

from ledger_sink.models.records import MutationOutcome


class LedgerSinkError(Exception):
    """Base class for all ledger sink errors."""


class ConfigurationError(LedgerSinkError):
    """Invalid or incomplete configuration."""


class EncodeError(LedgerSinkError):
    """An event could not be mapped to storage rows (malformed or oversized)."""


class StorageError(LedgerSinkError):
    """Base class for storage backend failures."""

    def __init__(self, msg: str, table: str | None = None) -> None:
        super().__init__(msg)
        self.table = table


class TransientStorageError(StorageError):
    """Rate limiting or unavailability - retry eligible."""


class PermanentStorageError(StorageError):
    """Schema/permission mismatch - never retried, opens the table circuit."""


class CircuitOpenError(PermanentStorageError):
    """Writes to a table are refused until an operator resets its circuit."""


class BatchWriteFailed(StorageError):
    """Retries exhausted; carries the mutations that still failed."""

    def __init__(
        self,
        msg: str,
        table: str | None = None,
        failed: list[MutationOutcome] | None = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(msg, table)
        self.failed = failed or []
        self.attempts = attempts


class ProtocolViolation(LedgerSinkError):
    """The host reported an impossible slot-status transition."""

    def __init__(self, msg: str, slot: int) -> None:
        super().__init__(msg)
        self.slot = slot


class StorageFailure(LedgerSinkError):
    """Raised to the host when panic_on_storage_errors is enabled."""
