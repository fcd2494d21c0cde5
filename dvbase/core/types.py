"""Data model shared by the Ninox client, the context store and the MCP tools."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Layout/meta keys that carry no debugging value and are never rendered.
LAYOUT_FIELD_KEYS: frozenset[str] = frozenset(
    {
        "order",
        "width",
        "formWidth",
        "height",
        "uuid",
        "globalSearch",
        "hasIndex",
        "tooltips",
        "nextChoiceId",
        "multiRenderer",
        "captions",
    }
)

KNOWN_FIELD_KEYS: frozenset[str] = frozenset(
    {
        "id",
        "name",
        "type",
        "base",
        "caption",
        "fn",
        "values",
        "choices",
        "displayIf",
        "visibleIf",
        "visibility",
        "hideIf",
        "onOpen",
        "afterUpdate",
        "onChange",
        "required",
        "ref",
        "referencedTable",
        "labelPosition",
        "style",
    }
)


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value is False


@dataclass(frozen=True)
class ChoiceOption:
    """One option of a choice/multi field."""

    id: str
    caption: str
    order: float = 0
    icon: str | None = None
    color: str | None = None

    @classmethod
    def from_value(cls, option_id: str, payload: Any) -> ChoiceOption:
        data: dict[str, Any] = payload if isinstance(payload, dict) else {}
        icon_payload = data.get("icon")
        icon = icon_payload.get("icon") if isinstance(icon_payload, dict) else None
        order = data.get("order")
        return cls(
            id=option_id,
            caption=str(data.get("caption") or option_id),
            order=order if isinstance(order, (int, float)) else 0,
            icon=_optional_str(icon),
            color=_optional_str(data.get("color")),
        )


@dataclass(frozen=True)
class NinoxField:
    """A field definition with a fixed set of known attributes.

    Anything the API returns that is neither known nor layout metadata lands in
    ``extensions`` so it can still be rendered.
    """

    id: str
    name: str | None = None
    type: str | None = None
    base: str | None = None
    caption: str | None = None
    formula: str | None = None
    options: tuple[ChoiceOption, ...] = ()
    legacy_choices: tuple[str, ...] = ()
    display_if: str | None = None
    visible_if: str | None = None
    visibility: str | None = None
    hide_if: str | None = None
    on_open: str | None = None
    after_update: str | None = None
    on_change: str | None = None
    required: bool = False
    ref: str | None = None
    referenced_table: str | None = None
    label_position: str | None = None
    style: str | None = None
    extensions: dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or self.caption or self.id

    @property
    def display_type(self) -> str:
        return self.type or self.base or "unknown"

    @classmethod
    def from_payload(cls, payload: dict[str, Any], field_id: str | None = None) -> NinoxField:
        values = payload.get("values")
        options: tuple[ChoiceOption, ...] = ()
        if isinstance(values, dict):
            options = tuple(
                sorted(
                    (ChoiceOption.from_value(str(key), value) for key, value in values.items()),
                    key=lambda option: option.order,
                )
            )

        choices = payload.get("choices")
        legacy_choices: tuple[str, ...] = ()
        if isinstance(choices, list):
            legacy_choices = tuple(
                str(choice.get("caption", "")) if isinstance(choice, dict) else str(choice)
                for choice in choices
            )

        extensions = {
            key: value
            for key, value in payload.items()
            if key not in KNOWN_FIELD_KEYS
            and key not in LAYOUT_FIELD_KEYS
            and not _is_empty(value)
        }

        return cls(
            id=str(payload.get("id") or field_id or ""),
            name=_optional_str(payload.get("name")),
            type=_optional_str(payload.get("type")),
            base=_optional_str(payload.get("base")),
            caption=_optional_str(payload.get("caption")),
            formula=_optional_str(payload.get("fn")),
            options=options,
            legacy_choices=legacy_choices,
            display_if=_optional_str(payload.get("displayIf")),
            visible_if=_optional_str(payload.get("visibleIf")),
            visibility=_optional_str(payload.get("visibility")),
            hide_if=_optional_str(payload.get("hideIf")),
            on_open=_optional_str(payload.get("onOpen")),
            after_update=_optional_str(payload.get("afterUpdate")),
            on_change=_optional_str(payload.get("onChange")),
            required=bool(payload.get("required")),
            ref=_optional_str(payload.get("ref")),
            referenced_table=_optional_str(payload.get("referencedTable")),
            label_position=_optional_str(payload.get("labelPosition")),
            style=_optional_str(payload.get("style")),
            extensions=extensions,
        )


@dataclass(frozen=True)
class NinoxTable:
    """A table and its fields in declared order."""

    id: str
    name: str
    fields: tuple[NinoxField, ...] = ()

    @property
    def field_ids(self) -> list[str]:
        return [table_field.id for table_field in self.fields]

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> NinoxTable:
        raw_fields = payload.get("fields") or []
        fields: tuple[NinoxField, ...]
        if isinstance(raw_fields, dict):
            fields = tuple(
                NinoxField.from_payload(value, field_id=str(key))
                for key, value in raw_fields.items()
                if isinstance(value, dict)
            )
        else:
            fields = tuple(
                NinoxField.from_payload(value) for value in raw_fields if isinstance(value, dict)
            )
        table_id = str(payload.get("id", ""))
        return cls(
            id=table_id,
            name=str(payload.get("name") or payload.get("caption") or table_id),
            fields=fields,
        )

    @classmethod
    def from_full_type(cls, table_id: str, payload: dict[str, Any]) -> NinoxTable:
        """Build a table from one entry of the ``/schema`` ``types`` map."""
        return cls.from_payload({**payload, "id": table_id})


@dataclass(frozen=True)
class NinoxRecord:
    id: int
    fields: dict[str, Any]
    sequence: int | None = None
    created_at: str | None = None
    created_by: str | int | None = None
    modified_at: str | None = None
    modified_by: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> NinoxRecord:
        fields = payload.get("fields")
        return cls(
            id=int(payload.get("id", 0)),
            fields=dict(fields) if isinstance(fields, dict) else {},
            sequence=payload.get("sequence"),
            created_at=payload.get("createdAt"),
            created_by=payload.get("createdBy"),
            modified_at=payload.get("modifiedAt"),
            modified_by=payload.get("modifiedBy"),
        )


@dataclass(frozen=True)
class FileDownload:
    content: bytes
    content_type: str
    file_name: str


@dataclass(frozen=True)
class ModuleContext:
    """Read-only projection of one documentation record."""

    module_name: str
    process_description: str = ""
    known_issues: str = ""
    n8n_dependencies: str = ""
    customer_specific: str = ""
    related_table_ids: tuple[str, ...] = ()

    @classmethod
    def from_fields(cls, fields: dict[str, Any], fallback_name: str) -> ModuleContext:
        mapping = str(fields.get("Tabellen_Mapping") or "")
        return cls(
            module_name=str(fields.get("Modul") or fallback_name),
            process_description=str(fields.get("Prozessbeschreibung") or ""),
            known_issues=str(fields.get("Stolperfallen") or ""),
            n8n_dependencies=str(fields.get("N8N_Abhaengigkeiten") or ""),
            customer_specific=str(fields.get("Kundenspezifisch") or ""),
            related_table_ids=tuple(part.strip() for part in mapping.split(",") if part.strip()),
        )


@dataclass(frozen=True)
class ToolResult:
    """Text payload returned by every tool; ``is_error`` flags failures."""

    text: str
    is_error: bool = False

    @classmethod
    def error(cls, text: str) -> ToolResult:
        return cls(text=text, is_error=True)
