# REST client for the networked structured store (PostgREST/Supabase style tables)
from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from utils.config import RemoteConfig
from utils.errors import BackendUnavailableError, PersistenceError, ReceiptCollisionError
from utils.logger import get_logger

_logger = get_logger(__name__)


def eq(value: Any) -> str:
    if isinstance(value, bool):
        return f"is.{str(value).lower()}"
    return f"eq.{value}"


def in_(values) -> str:
    return "in.(" + ",".join(str(v) for v in values) + ")"


class RemoteDataService:
    """
    Thin async wrapper over the remote tables.

    Filters are passed as PostgREST query params (``{"barcode": "eq.123"}``).
    Every failure is mapped onto the PersistenceError family:
    transport errors, timeouts and 5xx become BackendUnavailableError,
    409 becomes ReceiptCollisionError.
    """

    def __init__(
        self,
        config: RemoteConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def configured(self) -> bool:
        return self._config.enabled

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"{self._config.url}/rest/v1",
                timeout=self._config.timeout,
                transport=self._transport,
                headers={
                    "apikey": self._config.api_key,
                    "Authorization": f"Bearer {self._config.api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, table: str, **kwargs) -> httpx.Response:
        if not self.configured:
            raise BackendUnavailableError("remote data service is not configured")
        try:
            resp = await self._get_client().request(method, f"/{table}", **kwargs)
        except httpx.TimeoutException as e:
            raise BackendUnavailableError(f"{method} {table} timed out") from e
        except httpx.TransportError as e:
            raise BackendUnavailableError(f"{method} {table} failed: {e}") from e

        if resp.status_code == 409:
            raise ReceiptCollisionError(f"{table}: duplicate key")
        if resp.status_code >= 500:
            raise BackendUnavailableError(
                f"{method} {table} returned {resp.status_code}"
            )
        if resp.status_code >= 400:
            raise PersistenceError(f"{method} {table} returned {resp.status_code}")
        return resp

    @staticmethod
    def _rows(resp: httpx.Response) -> List[Dict[str, Any]]:
        try:
            rows = resp.json()
        except ValueError as e:
            raise PersistenceError("remote data service sent malformed JSON") from e
        if not isinstance(rows, list):
            raise PersistenceError("remote data service sent an unexpected payload")
        return rows

    async def select(
        self, table: str, filters: Dict[str, str], columns: str = "*"
    ) -> List[Dict[str, Any]]:
        resp = await self._request(
            "GET", table, params={**filters, "select": columns}
        )
        return self._rows(resp)

    async def select_one(
        self, table: str, filters: Dict[str, str], columns: str = "*"
    ) -> Optional[Dict[str, Any]]:
        rows = await self.select(table, {**filters, "limit": "1"}, columns)
        return rows[0] if rows else None

    async def insert(self, table: str, row: Dict[str, Any]) -> None:
        await self._request(
            "POST", table, json=[row], headers={"Prefer": "return=minimal"}
        )

    async def update(
        self, table: str, filters: Dict[str, str], values: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        """PATCH rows matching filters; return the rows that were changed."""
        resp = await self._request(
            "PATCH",
            table,
            params=filters,
            json=values,
            headers={"Prefer": "return=representation"},
        )
        rows = self._rows(resp)
        _logger.debug(f"PATCH {table} {filters} -> {len(rows)} row(s)")
        return rows
