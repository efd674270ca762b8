"""
REST client for the remote row service (see board_server.py).

Every call is a discrete round-trip run on a worker thread so the event
loop stays responsive. Failures are raised as typed faults:

    timeout / connection error / 5xx  → NetworkFault
    400 / 409 / 422                   → ValidationFault
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests

from .faults import NetworkFault, ValidationFault

logger = logging.getLogger(__name__)

VALIDATION_STATUSES = {400, 409, 422}


class HttpRowService:
    """Row-oriented access to one table over HTTP."""

    def __init__(
        self,
        base_url: str,
        table: str = "tasks",
        api_key: str = "",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.table = table
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def table_url(self) -> str:
        return f"{self.base_url}/rest/v1/{self.table}"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    def _request(self, method: str, url: str, **kwargs) -> Any:
        """Perform one blocking request and decode the JSON body."""
        try:
            r = self.session.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except requests.Timeout:
            raise NetworkFault(f"{method} {url} timed out after {self.timeout}s")
        except requests.RequestException as e:
            raise NetworkFault(f"{method} {url} failed: {e}")

        if r.status_code in VALIDATION_STATUSES:
            raise ValidationFault(_error_message(r))
        if not r.ok:
            raise NetworkFault(f"{method} {url} returned {r.status_code}: {_error_message(r)}")

        if r.status_code == 204 or not r.content:
            return None
        try:
            return r.json()
        except ValueError:
            raise NetworkFault(f"{method} {url} returned a non-JSON body")

    async def _call(self, method: str, url: str, **kwargs) -> Any:
        logger.debug(f"{method} {url}")
        return await asyncio.to_thread(self._request, method, url, **kwargs)

    # ── Table operations ─────────────────────────────────────────────────

    async def select(self, order: str = "created_at.desc") -> List[Dict[str, Any]]:
        rows = await self._call("GET", self.table_url, params={"order": order})
        if not isinstance(rows, list):
            raise NetworkFault("Row listing did not return a JSON array")
        return rows

    async def insert(self, row: Dict[str, Any]) -> Dict[str, Any]:
        created = await self._call("POST", self.table_url, json=row)
        if not isinstance(created, dict):
            raise NetworkFault("Insert did not return the created row")
        return created

    async def update(self, row_id: str, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self._call("PATCH", f"{self.table_url}/{row_id}", json=row)

    async def delete(self, row_id: str) -> None:
        await self._call("DELETE", f"{self.table_url}/{row_id}")


def _error_message(r: requests.Response) -> str:
    try:
        body = r.json()
    except ValueError:
        return r.text[:200] or r.reason or str(r.status_code)
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return str(body)[:200]
