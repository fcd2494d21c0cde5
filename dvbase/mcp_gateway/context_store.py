"""Developer context knowledge from the Ninox documentation table.

Expected fields per documentation record (by name):
Modul, Prozessbeschreibung, Stolperfallen, N8N_Abhaengigkeiten,
Kundenspezifisch, Tabellen_Mapping (comma-separated table ids).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from dvbase.clients.ninox import NinoxClient, RecordQuery
from dvbase.core.types import ModuleContext
from dvbase.mcp_gateway.constants import (
    DEFAULT_CONTEXT_CACHE_TTL_SECONDS,
    DOCUMENTATION_PAGE_SIZE,
)

logger = logging.getLogger("dvbase.mcp_gateway.context")


@dataclass(frozen=True)
class _Snapshot:
    records: tuple[dict[str, Any], ...]
    expires_at: float


def _module_name(fields: dict[str, Any]) -> str:
    return str(fields.get("Modul") or "")


class ContextStore:
    """Cached accessor over the documentation table.

    The whole table is cached as one snapshot and invalidated wholesale once
    ``ttl_seconds`` have passed or on ``clear_cache()``.
    """

    def __init__(
        self,
        client: NinoxClient,
        table_id: str,
        ttl_seconds: float = DEFAULT_CONTEXT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.table_id = table_id
        self.ttl_seconds = ttl_seconds
        self._snapshot: _Snapshot | None = None
        self._clock = clock
        self._refresh_lock = asyncio.Lock()

    def _fresh_snapshot(self) -> _Snapshot | None:
        snapshot = self._snapshot
        if snapshot is not None and snapshot.expires_at > self._clock():
            return snapshot
        return None

    async def _all_records(self) -> tuple[dict[str, Any], ...]:
        snapshot = self._fresh_snapshot()
        if snapshot is not None:
            return snapshot.records

        async with self._refresh_lock:
            # Another request may have refreshed while we waited.
            snapshot = self._fresh_snapshot()
            if snapshot is not None:
                return snapshot.records

            records = await asyncio.to_thread(
                self.client.get_records,
                self.table_id,
                RecordQuery(per_page=DOCUMENTATION_PAGE_SIZE),
            )
            snapshot = _Snapshot(
                records=tuple(record.fields for record in records),
                expires_at=self._clock() + self.ttl_seconds,
            )
            self._snapshot = snapshot
            logger.debug(
                "context_cache_refresh table=%s records=%d",
                self.table_id,
                len(snapshot.records),
                extra={"table_id": self.table_id, "records": len(snapshot.records)},
            )
            return snapshot.records

    async def get_module_context(self, module_name: str) -> ModuleContext | None:
        """Case-insensitive exact match on ``Modul``, then a substring match either way."""
        records = await self._all_records()
        wanted = module_name.strip().lower()
        if not wanted:
            return None

        for fields in records:
            if _module_name(fields).lower() == wanted:
                return ModuleContext.from_fields(fields, module_name)

        for fields in records:
            candidate = _module_name(fields).lower()
            if candidate and (wanted in candidate or candidate in wanted):
                return ModuleContext.from_fields(fields, module_name)

        return None

    async def list_modules(self) -> list[str]:
        records = await self._all_records()
        return [name for name in (_module_name(fields) for fields in records) if name]

    def clear_cache(self) -> None:
        self._snapshot = None
