"""Async access to the telemetry service: reading tables, users and procedures."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from errors import ConflictError, NetworkError, NotFoundError, StorageError
from models.records import format_timestamp

logger = logging.getLogger(__name__)


class RemoteStore:
    """Thin wrapper around ``httpx.AsyncClient`` that speaks the service API.

    Transport failures and timeouts become :class:`NetworkError`; error
    responses become :class:`StorageError` (:class:`ConflictError` for 409).
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @classmethod
    def connect(cls, base_url: str, timeout: float = 30.0) -> "RemoteStore":
        return cls(httpx.AsyncClient(base_url=base_url, timeout=timeout))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_readings(
        self,
        table: str,
        *,
        limit: int = 100,
        lte: Optional[datetime] = None,
        after_id: Optional[int] = None,
        ascending: bool = False,
        order_by: str = "timestamp",
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "limit": limit,
            "order": "asc" if ascending else "desc",
            "order_by": order_by,
        }
        if lte is not None:
            params["lte"] = format_timestamp(lte)
        if after_id is not None:
            params["after_id"] = after_id
        response = await self._request("GET", f"/tables/{table}", params=params)
        return response.json()

    async def ingest(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Post one sensor transmission the way the field device does."""
        response = await self._request("POST", "/arduino-data", json=payload)
        return response.json()

    async def call(self, procedure: str, **params: Any) -> Any:
        response = await self._request("POST", f"/rpc/{procedure}", json=params)
        return response.json().get("data")

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = await self._request("GET", f"/users/{user_id}")
        except NotFoundError:
            return None
        return response.json()

    async def find_user(self, username: str) -> Optional[Dict[str, Any]]:
        response = await self._request("GET", "/users", params={"username": username})
        users = response.json()
        return users[0] if users else None

    async def list_users(self) -> List[Dict[str, Any]]:
        response = await self._request("GET", "/users")
        return response.json()

    async def update_user(self, user_id: str, **changes: Any) -> Dict[str, Any]:
        response = await self._request("PATCH", f"/users/{user_id}", json=changes)
        return response.json()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._raise_for_error(exc)
        except httpx.HTTPError as exc:
            logger.warning("Remote store unreachable", extra={"reason": f"{method} {url}: {exc!r}"})
            raise NetworkError(f"Remote store unreachable: {exc}") from exc
        return response

    @staticmethod
    def _raise_for_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail") or data.get("error")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        status_code = exc.response.status_code
        if status_code == 409:
            raise ConflictError(message) from exc
        if status_code == 404:
            raise NotFoundError(message) from exc
        raise StorageError(message) from exc
