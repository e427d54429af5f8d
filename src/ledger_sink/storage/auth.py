"""Access tokens for the Bigtable data API."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from google.auth.transport.requests import Request
from google.oauth2 import service_account

from ledger_sink.errors import ConfigurationError

log = logging.getLogger(__name__)

BIGTABLE_DATA_SCOPE = "https://www.googleapis.com/auth/bigtable.data"


class TokenProvider(Protocol):
    async def token(self) -> str:
        ...


class StaticToken:
    """A pre-acquired bearer token (e.g. from LEDGER_SINK_ACCESS_TOKEN)."""

    def __init__(self, token: str) -> None:
        self._token = token

    async def token(self) -> str:
        return self._token


class ServiceAccountToken:
    """OAuth token minted from a service account credential file.

    The token is refreshed in a worker thread when it is missing or expired.
    """

    def __init__(self, credential_path: str, scopes: list[str] | None = None) -> None:
        try:
            self._credentials = service_account.Credentials.from_service_account_file(
                credential_path, scopes=scopes or [BIGTABLE_DATA_SCOPE],
            )
        except (OSError, ValueError) as exc:
            raise ConfigurationError(
                f"cannot load credential file {credential_path}: {exc}"
            ) from exc
        self._lock = asyncio.Lock()

    async def token(self) -> str:
        async with self._lock:
            if not self._credentials.valid:
                log.debug("Refreshing Bigtable access token")
                await asyncio.to_thread(self._credentials.refresh, Request())
            return self._credentials.token
