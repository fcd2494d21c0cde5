"""
Ninox REST API client.

Base URL: {api_root}/teams/{team_id}/databases/{database_id}

The client is synchronous (``requests``); async callers run it through
``asyncio.to_thread`` so network I/O never blocks the event loop.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Literal
from urllib.parse import quote

import requests

from dvbase.core.retry import retry_with_backoff
from dvbase.core.types import FileDownload, NinoxRecord, NinoxTable

logger = logging.getLogger("dvbase.clients.ninox")

DEFAULT_API_ROOT = "https://api.ninox.com/v1"

_FILENAME_PATTERN = re.compile(r"filename[^;=\n]*=(?:(\\?['\"])(.*?)\1|([^\s;]*))", re.IGNORECASE)


class NinoxAPIError(Exception):
    """Raised when the Ninox API answers with a non-2xx status or is unreachable."""

    def __init__(self, message: str, status: int | None = None, reason: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.reason = reason

    @property
    def retryable(self) -> bool:
        return self.status is None or self.status == 429 or self.status >= 500


@dataclass(frozen=True)
class NinoxClientConfig:
    api_key: str
    team_id: str
    database_id: str
    base_url: str | None = None
    timeout: float = 30.0


@dataclass(frozen=True)
class RecordQuery:
    """Query-string options for ``GET /tables/{id}/records``."""

    filters: dict[str, Any] | None = None
    page: int | None = None
    per_page: int | None = None
    order: str | None = None
    desc: bool = False
    new: bool = False
    updated: bool = False
    since_id: int | None = None
    since_sq: int | None = None
    ids: bool | None = None
    choice_style: Literal["ids", "names"] | None = None

    def to_params(self) -> dict[str, str]:
        params: dict[str, str] = {}
        if self.filters:
            params["filters"] = json.dumps(self.filters)
        if self.per_page is not None:
            params["perPage"] = str(self.per_page)
        if self.page is not None:
            params["page"] = str(self.page)
        if self.order:
            params["order"] = self.order
        if self.desc:
            params["desc"] = "true"
        if self.new:
            params["new"] = "true"
        if self.updated:
            params["updated"] = "true"
        if self.since_id is not None:
            params["sinceId"] = str(self.since_id)
        if self.since_sq is not None:
            params["sinceSq"] = str(self.since_sq)
        if self.ids is not None:
            params["ids"] = "true" if self.ids else "false"
        if self.choice_style:
            params["choiceStyle"] = self.choice_style
        return params


def _is_transient(error: Exception) -> bool:
    return isinstance(error, NinoxAPIError) and error.retryable


class NinoxClient:
    """Typed wrapper around the Ninox database endpoints."""

    def __init__(self, config: NinoxClientConfig, session: requests.Session | None = None) -> None:
        self.config = config
        api_root = (config.base_url or DEFAULT_API_ROOT).rstrip("/")
        self.base_url = f"{api_root}/teams/{config.team_id}/databases/{config.database_id}"
        self._session = session or requests.Session()
        self._session.headers.update({"Authorization": f"Bearer {config.api_key}"})

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _send(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, str] | None = None,
        json_body: Any = None,
    ) -> requests.Response:
        url = f"{self.base_url}{endpoint}"
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            raise NinoxAPIError(f"Ninox API unreachable: {e}") from e

        if not response.ok:
            raise NinoxAPIError(
                f"Ninox API error: {response.status_code} {response.reason} - {response.text}",
                status=response.status_code,
                reason=response.reason or "",
            )
        return response

    def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, str] | None = None,
        json_body: Any = None,
    ) -> Any:
        def call() -> Any:
            return self._send(method, endpoint, params=params, json_body=json_body).json()

        if method != "GET":
            return call()
        return retry_with_backoff(call, _is_transient)

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def list_tables(self) -> list[NinoxTable]:
        """GET /tables - all tables with their field definitions."""
        payload = self._request("GET", "/tables")
        return [NinoxTable.from_payload(item) for item in payload or [] if isinstance(item, dict)]

    def get_table_schema(self, table_id: str) -> NinoxTable:
        """GET /tables/{table_id}."""
        payload = self._request("GET", f"/tables/{quote(table_id, safe='')}")
        return NinoxTable.from_payload(payload if isinstance(payload, dict) else {"id": table_id})

    def get_full_schema(self) -> list[NinoxTable]:
        """All tables with fields; fetches tables one by one if the listing has no fields."""
        tables = self.list_tables()
        if any(table.fields for table in tables):
            return tables
        return [self.get_table_schema(table.id) for table in tables]

    def get_full_database_schema(self) -> dict[str, Any]:
        """GET /schema - includes formulas, triggers and visibility conditions."""
        payload = self._request("GET", "/schema")
        return payload if isinstance(payload, dict) else {}

    def get_full_table_schema(self, table_id: str) -> NinoxTable | None:
        types = self.get_full_database_schema().get("types") or {}
        table = types.get(table_id)
        if not isinstance(table, dict):
            return None
        return NinoxTable.from_full_type(table_id, table)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def get_records(self, table_id: str, query: RecordQuery | None = None) -> list[NinoxRecord]:
        params = (query or RecordQuery()).to_params()
        payload = self._request(
            "GET", f"/tables/{quote(table_id, safe='')}/records", params=params or None
        )
        return [NinoxRecord.from_payload(item) for item in payload or [] if isinstance(item, dict)]

    def get_record(self, table_id: str, record_id: int) -> NinoxRecord:
        payload = self._request("GET", f"/tables/{quote(table_id, safe='')}/records/{record_id}")
        return NinoxRecord.from_payload(payload)

    def create_record(self, table_id: str, fields: dict[str, Any]) -> NinoxRecord:
        payload = self._request(
            "POST", f"/tables/{quote(table_id, safe='')}/records", json_body={"fields": fields}
        )
        return NinoxRecord.from_payload(payload)

    def create_records(self, table_id: str, records: list[dict[str, Any]]) -> list[NinoxRecord]:
        """Create several records at once; each item is ``{"fields": {...}}``."""
        payload = self._request(
            "POST", f"/tables/{quote(table_id, safe='')}/records", json_body=records
        )
        return [NinoxRecord.from_payload(item) for item in payload or [] if isinstance(item, dict)]

    def update_record(self, table_id: str, record_id: int, fields: dict[str, Any]) -> NinoxRecord:
        payload = self._request(
            "PUT",
            f"/tables/{quote(table_id, safe='')}/records/{record_id}",
            json_body={"fields": fields},
        )
        return NinoxRecord.from_payload(payload)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def download_file(
        self, table_id: str, record_id: int, field_id: str, file_name: str
    ) -> FileDownload:
        endpoint = (
            f"/tables/{quote(table_id, safe='')}/records/{record_id}"
            f"/files/{quote(field_id, safe='')}/{quote(file_name, safe='')}"
        )

        def call() -> requests.Response:
            return self._send("GET", endpoint)

        response = retry_with_backoff(call, _is_transient)
        disposition = response.headers.get("content-disposition", "")
        match = _FILENAME_PATTERN.search(disposition)
        resolved_name = (match.group(2) or match.group(3)) if match else ""
        return FileDownload(
            content=response.content,
            content_type=response.headers.get("content-type", "application/octet-stream"),
            file_name=resolved_name or file_name or "file",
        )

    # ------------------------------------------------------------------
    # Ninox script
    # ------------------------------------------------------------------

    def execute_query(self, query: str) -> Any:
        """POST /query - read-only Ninox script, e.g. ``(select Kontakte).'Name'``."""
        logger.debug("ninox_query query=%s", query, extra={"query": query})
        return self._request("POST", "/query", json_body={"query": query})

    def execute_writable_query(self, query: str) -> Any:
        """POST /exec - Ninox script that may modify data."""
        logger.info("ninox_exec query=%s", query, extra={"query": query})
        return self._request("POST", "/exec", json_body={"query": query})
