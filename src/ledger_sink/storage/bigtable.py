"""Bigtable implementation of the TableStore protocol (REST data API via httpx).

Uses the v2 data API:
- {table}:mutateRows  bulk keyed mutations, per-entry status
- {table}:readRows    key-range scans, latest cell per column

Row keys, qualifiers and values travel base64-encoded. Cell timestamps are
sent in microseconds with millisecond granularity (the table default), so a
sink timestamp `ts` is stored as `ts * 1000`.
"""

from __future__ import annotations

import base64
import logging

import httpx

from ledger_sink.errors import PermanentStorageError, TransientStorageError
from ledger_sink.models.records import (
    EntryFailure,
    FailureKind,
    MutationKind,
    RowEntry,
    RowMutation,
    StoredRow,
)
from ledger_sink.storage.auth import TokenProvider

log = logging.getLogger(__name__)

# gRPC status codes worth retrying: DEADLINE_EXCEEDED, RESOURCE_EXHAUSTED,
# ABORTED, INTERNAL, UNAVAILABLE
TRANSIENT_CODES = {4, 8, 10, 13, 14}
TRANSIENT_HTTP = {408, 429, 500, 502, 503, 504}


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _unb64(text: str | None) -> bytes:
    return base64.b64decode(text) if text else b""


def _mutation_json(m: RowMutation) -> dict:
    if m.kind == MutationKind.DELETE_ROW:
        return {"deleteFromRow": {}}
    return {
        "setCell": {
            "familyName": m.family,
            "columnQualifier": _b64(m.qualifier),
            "timestampMicros": str(m.timestamp * 1000),
            "value": _b64(m.value),
        }
    }


def _responses(payload: object) -> list[dict]:
    """Streaming RPCs come back as a JSON array of messages over REST."""
    if isinstance(payload, list):
        return [p for p in payload if isinstance(p, dict)]
    if isinstance(payload, dict):
        return [payload]
    return []


class BigtableTableStore:
    """Talks to Cloud Bigtable through the REST data API."""

    def __init__(
        self,
        project: str,
        instance: str,
        token_provider: TokenProvider,
        endpoint: str = "https://bigtable.googleapis.com",
        app_profile_id: str = "",
        timeout: float = 30.0,
    ) -> None:
        self._base_url = (
            f"{endpoint.rstrip('/')}/v2/projects/{project}/instances/{instance}/tables"
        )
        self._tokens = token_provider
        self._app_profile_id = app_profile_id
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    def _url(self, table: str, method: str) -> str:
        return f"{self._base_url}/{table}:{method}"

    async def initialize(self) -> None:
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout, connect=10))

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post(self, table: str, method: str, body: dict) -> object:
        assert self._client is not None, "Store not initialized. Call initialize() first."
        if self._app_profile_id:
            body["appProfileId"] = self._app_profile_id
        headers = {"Authorization": f"Bearer {await self._tokens.token()}"}
        try:
            resp = await self._client.post(self._url(table, method), json=body, headers=headers)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise TransientStorageError(f"{method} on {table}: {exc!r}", table) from exc

        if resp.status_code in TRANSIENT_HTTP:
            raise TransientStorageError(
                f"{method} on {table}: HTTP {resp.status_code}", table,
            )
        if resp.status_code >= 400:
            log.error("Bigtable %s on %s rejected: %s", method, table, resp.text[:200])
            raise PermanentStorageError(
                f"{method} on {table}: HTTP {resp.status_code}", table,
            )
        return resp.json()

    async def mutate_rows(self, table: str, entries: list[RowEntry]) -> dict[int, EntryFailure]:
        body = {
            "entries": [
                {
                    "rowKey": _b64(entry.row_key),
                    "mutations": [_mutation_json(m) for m in entry.mutations],
                }
                for entry in entries
            ]
        }
        payload = await self._post(table, "mutateRows", body)

        failures: dict[int, EntryFailure] = {}
        for message in _responses(payload):
            for item in message.get("entries", []):
                index = int(item.get("index", 0))
                status = item.get("status") or {}
                code = int(status.get("code", 0))
                if code == 0:
                    continue
                kind = FailureKind.TRANSIENT if code in TRANSIENT_CODES else FailureKind.PERMANENT
                failures[index] = EntryFailure(
                    kind=kind, error=f"code {code}: {status.get('message', '')}".strip(),
                )
        return failures

    async def read_rows(
        self,
        table: str,
        start_key: bytes | None = None,
        end_key: bytes | None = None,
        limit: int | None = None,
    ) -> list[StoredRow]:
        row_range: dict = {}
        if start_key is not None:
            row_range["startKeyClosed"] = _b64(start_key)
        if end_key is not None:
            row_range["endKeyOpen"] = _b64(end_key)
        body: dict = {
            "rows": {"rowRanges": [row_range]},
            "filter": {"cellsPerColumnLimitFilter": 1},
        }
        if limit is not None:
            body["rowsLimit"] = str(limit)
        payload = await self._post(table, "readRows", body)
        return _merge_chunks(_responses(payload))


def _merge_chunks(messages: list[dict]) -> list[StoredRow]:
    """Reassemble ReadRows cell chunks into rows.

    Row key, family and qualifier are only sent when they change; a value may
    be split over several chunks (valueSize > 0 on all but the last).
    """
    rows: list[StoredRow] = []
    current: StoredRow | None = None
    family = ""
    qualifier = b""
    timestamp = 0
    value = b""

    for message in messages:
        for chunk in message.get("chunks", []):
            if chunk.get("resetRow"):
                current, value = None, b""
                continue
            if "rowKey" in chunk:
                current = StoredRow(row_key=_unb64(chunk["rowKey"]))
            if "familyName" in chunk:
                family = chunk["familyName"]
            if "qualifier" in chunk:
                qualifier = _unb64(chunk["qualifier"])
            if "timestampMicros" in chunk:
                timestamp = int(chunk["timestampMicros"]) // 1000
            value += _unb64(chunk.get("value"))
            if not int(chunk.get("valueSize", 0)) and current is not None:
                column = (family, qualifier)
                if column not in current.cells:
                    current.cells[column] = value
                    current.timestamps[column] = timestamp
                value = b""
            if chunk.get("commitRow") and current is not None:
                rows.append(current)
                current = None
    return rows
