from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from dvbase.clients.ninox import NinoxAPIError, NinoxClientConfig, RecordQuery
from dvbase.core.types import NinoxRecord, NinoxTable
from dvbase.mcp_gateway.config import AppConfig, SecurityConfig, ServerConfig

SAMPLE_TABLES: list[dict[str, Any]] = [
    {
        "id": "A",
        "name": "Bautagesberichte",
        "fields": [
            {"id": "C", "name": "Datum", "type": "date", "order": 3},
            {
                "id": "A",
                "name": "Status",
                "type": "choice",
                "values": {
                    "2": {"caption": "Erledigt", "order": 2},
                    "1": {"caption": "Offen", "order": 1},
                },
            },
            {"id": "B", "name": "Summe", "type": "formula", "fn": "sum(Positionen.Betrag)"},
        ],
    },
    {
        "id": "B",
        "name": "Rechnungen",
        "fields": [{"id": "A", "name": "Nummer", "type": "string"}],
    },
]

SAMPLE_DOCS: list[dict[str, Any]] = [
    {
        "id": 1,
        "fields": {
            "Modul": "Bautagesbericht",
            "Prozessbeschreibung": "Tägliche Dokumentation der Baustelle.",
            "Stolperfallen": "Datum wird per Trigger gesetzt.",
            "Tabellen_Mapping": "A, B",
        },
    },
    {"id": 2, "fields": {"Modul": "Faktura", "N8N_Abhaengigkeiten": "Rechnungsversand"}},
    {"id": 3, "fields": {"Modul": ""}},
]


class FakeNinoxClient:
    """In-memory stand-in for ``NinoxClient`` that records calls."""

    def __init__(
        self,
        tables: list[dict[str, Any]] | None = None,
        docs: list[dict[str, Any]] | None = None,
    ) -> None:
        self.tables = {table["id"]: table for table in (tables or SAMPLE_TABLES)}
        self.docs = docs if docs is not None else SAMPLE_DOCS
        self.calls: list[tuple[str, Any]] = []
        self.failures: dict[str, Exception] = {}
        self.query_results: dict[str, Any] = {}
        self.closed = False

    def _record(self, name: str, argument: Any = None) -> None:
        self.calls.append((name, argument))
        failure = self.failures.get(name)
        if failure is not None:
            raise failure

    def call_count(self, name: str) -> int:
        return sum(1 for call_name, _ in self.calls if call_name == name)

    def list_tables(self) -> list[NinoxTable]:
        self._record("list_tables")
        return [NinoxTable.from_payload(table) for table in self.tables.values()]

    def get_table_schema(self, table_id: str) -> NinoxTable:
        self._record("get_table_schema", table_id)
        table = self.tables.get(table_id)
        if table is None:
            raise NinoxAPIError("Ninox API error: 404 Not Found - table", status=404)
        return NinoxTable.from_payload(table)

    def get_records(self, table_id: str, query: RecordQuery | None = None) -> list[NinoxRecord]:
        self._record("get_records", (table_id, query))
        return [NinoxRecord.from_payload(doc) for doc in self.docs]

    def execute_query(self, query: str) -> Any:
        self._record("execute_query", query)
        return self.query_results.get(query, [])

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_client() -> FakeNinoxClient:
    return FakeNinoxClient()


@pytest.fixture
def make_config() -> Callable[..., AppConfig]:
    def build(
        security: SecurityConfig | None = None,
        documentation_table_id: str | None = "DOKU",
        json_response: bool = True,
    ) -> AppConfig:
        return AppConfig(
            ninox=NinoxClientConfig(api_key="key", team_id="team", database_id="db"),
            documentation_table_id=documentation_table_id,
            security=security or SecurityConfig(),
            server=ServerConfig(json_response=json_response),
        )

    return build
