# KonsernKontroll - Group financial reporting dashboard
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
REST storage client.

``RestTableStore`` talks to the hosted generic table API:

- ``GET    /api/<table>?col=value&_t=<timestamp>`` -> ``{"rows": [...]}``
- ``POST   /api/<table>`` with a JSON array        -> ``{"inserted": [...]}``
- ``PATCH  /api/<table>`` with ``{"id", "data"}`` (one row) or
  ``[{"id", "fields"}, ...]`` (several rows)       -> ``{"rows": [...]}``
- ``DELETE /api/<table>?field=id&value=<id>``      -> ``{"deleted": n}``

The API only supports equality filters and deletes one value per request,
so list filters are applied client-side and deletes are issued per id.
Reads are retried; writes are not.

Every request carries ``Authorization: Bearer <api_key>`` and
``X-APP-ID: <app_id>``.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import requests

from .storage import (
    Filter,
    PatchInput,
    StorageError,
    TableStore,
    as_ids,
    as_patches,
    as_records,
    row_matches,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RestConfig:
    """Connection settings for the REST backend."""

    base_url: str = ""
    app_id: str = ""
    api_key: str = ""
    timeout: float = 10.0
    retries: int = 3
    retry_delay: float = 1.0


class RestTableStore(TableStore):
    """
    ``TableStore`` backed by the hosted table API.

    Usage:
        store = RestTableStore(RestConfig(base_url="https://...", app_id="x", api_key="y"))
        rows = store.fetch_rows("companies", {"group_id": 1})
    """

    def __init__(self, cfg: RestConfig):
        if not cfg.base_url:
            raise ValueError("RestConfig.base_url is required")
        if not cfg.app_id or not cfg.api_key:
            logger.warning("REST credentials are missing (app id or api key is empty)")
        self.cfg = cfg
        self.base_url = cfg.base_url.rstrip("/")

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-APP-ID": self.cfg.app_id,
            "Authorization": f"Bearer {self.cfg.api_key}",
        }

    def _url(self, table: str) -> str:
        return f"{self.base_url}/api/{table}"

    def _request(
        self,
        method: str,
        table: str,
        params: Optional[dict[str, Any]] = None,
        payload: Any = None,
    ) -> dict[str, Any]:
        """Send one request and return the decoded JSON body."""
        try:
            response = requests.request(
                method=method,
                url=self._url(table),
                headers=self.headers,
                params=params,
                json=payload,
                timeout=self.cfg.timeout,
            )
        except requests.exceptions.Timeout as exc:
            raise StorageError(504, f"{method} {table} timed out") from exc
        except requests.exceptions.ConnectionError as exc:
            raise StorageError(503, f"{method} {table}: connection failed") from exc
        except requests.exceptions.RequestException as exc:
            raise StorageError(500, f"{method} {table} failed: {exc}") from exc

        if response.status_code >= 400:
            raise StorageError(
                response.status_code,
                f"{method} {table} failed: {response.status_code} {response.text}".strip(),
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise StorageError(502, f"Invalid JSON response from {self._url(table)}") from exc
        if not isinstance(body, dict):
            raise StorageError(502, f"Unexpected response shape from {self._url(table)}")
        return body

    def fetch_rows(self, table: str, filters: Filter | None = None) -> list[dict[str, Any]]:
        filters = dict(filters or {})
        params: dict[str, Any] = {}
        client_side: dict[str, Any] = {}
        for key, value in filters.items():
            if isinstance(value, (list, tuple, set)):
                if not value:
                    return []
                client_side[key] = list(value)
            elif value is not None:
                params[key] = value

        attempts = max(1, self.cfg.retries)
        last_error: Optional[StorageError] = None
        for attempt in range(1, attempts + 1):
            # Cache buster, the API may otherwise serve stale rows.
            params["_t"] = str(int(time.time() * 1000))
            try:
                body = self._request("GET", table, params=params)
                rows = body.get("rows") or []
                return [dict(r) for r in rows if row_matches(r, client_side)]
            except StorageError as exc:
                if 400 <= exc.status < 500:
                    raise
                last_error = exc
                logger.warning("GET %s attempt %d/%d failed: %s", table, attempt, attempts, exc)
                if attempt < attempts:
                    time.sleep(self.cfg.retry_delay)

        logger.error("All fetch attempts failed for %s", table)
        raise last_error

    def insert_rows(self, table: str, records: Any) -> list[dict[str, Any]]:
        body = self._request("POST", table, payload=as_records(records))
        return [dict(r) for r in body.get("inserted") or []]

    def patch_rows(self, table: str, patches: PatchInput) -> list[dict[str, Any]]:
        updates = as_patches(patches)
        if len(updates) == 1:
            payload: Any = {"id": updates[0].id, "data": updates[0].fields}
        else:
            payload = [{"id": p.id, "fields": p.fields} for p in updates]
        body = self._request("PATCH", table, payload=payload)
        return [dict(r) for r in body.get("rows") or []]

    def delete_rows(self, table: str, ids: Any) -> int:
        deleted = 0
        for value in as_ids(ids):
            body = self._request(
                "DELETE", table, params={"field": "id", "value": value}, payload=[value]
            )
            deleted += int(body.get("deleted") or 0)
        return deleted
