"""Markdown rendering for schemas, context records and query results."""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

from dvbase.core.types import ModuleContext, NinoxField, NinoxTable


def _code_block(code: str) -> str:
    return f"```\n{code}\n```"


def _field_lines(field: NinoxField) -> list[str]:
    lines = [f"#### {field.display_name} (ID: `{field.id}`, Type: `{field.display_type}`)"]

    if field.formula:
        lines.append(f"- **Formula:**\n{_code_block(field.formula)}")

    if field.options:
        rendered = [
            f"{option.caption} ({option.icon})" if option.icon else option.caption
            for option in field.options
        ]
        lines.append(f"- **Options:** {', '.join(rendered)}")

    if field.legacy_choices:
        lines.append(f"- **Options:** {', '.join(field.legacy_choices)}")

    for condition in (field.display_if, field.visible_if, field.visibility):
        if condition:
            lines.append(f"- **Only shown if:** `{condition}`")
    if field.hide_if:
        lines.append(f"- **Hidden if:** `{field.hide_if}`")

    if field.on_open:
        lines.append(f"- **On open:**\n{_code_block(field.on_open)}")
    if field.after_update:
        lines.append(f"- **After update:**\n{_code_block(field.after_update)}")
    if field.on_change:
        lines.append(f"- **On change:**\n{_code_block(field.on_change)}")

    if field.required:
        lines.append("- **Required:** yes")

    for reference in (field.ref, field.referenced_table):
        if reference:
            lines.append(f"- **References table:** `{reference}`")

    if field.label_position:
        lines.append(f"- **Label position:** {field.label_position}")
    if field.style:
        lines.append(f"- **Style:** `{field.style}`")

    if field.extensions:
        extra = json.dumps(field.extensions, ensure_ascii=False, separators=(",", ":"), default=str)
        lines.append(f"- **Other properties:** `{extra}`")

    return lines


def format_schema(table: NinoxTable) -> str:
    parts = [f"## Table: {table.name} (ID: {table.id})\n"]

    if not table.fields:
        parts.append("_No fields defined._\n")
        return "\n".join(parts) + "\n"

    parts.append("### Fields\n")
    for field in table.fields:
        parts.append("\n".join(_field_lines(field)) + "\n")
    parts.append(f"_Field IDs ({', '.join(table.field_ids)}) are stable and never change._\n")
    return "\n".join(parts) + "\n"


def format_context(context: ModuleContext) -> str:
    sections = [
        ("Process description", context.process_description),
        ("Known issues", context.known_issues),
        ("n8n dependencies", context.n8n_dependencies),
        ("Customer-specific adjustments", context.customer_specific),
    ]
    text = f"## Context: {context.module_name}\n\n"
    for title, body in sections:
        if body:
            text += f"### {title}\n{body}\n\n"
    return text


def format_table_list(tables: Iterable[NinoxTable], documented_modules: list[str]) -> str:
    text = "# DVBase modules & tables\n\nTables available in the database:\n\n"
    for table in tables:
        text += f"- **{table.name}** (ID: `{table.id}`, {len(table.fields)} fields)\n"

    if documented_modules:
        text += "\n## Documented modules (with context knowledge)\n\n"
        for module in documented_modules:
            text += f"- {module}\n"
        text += "\n_Use get_full_module_info for schema + context of a module._\n"
    return text


def format_query_result(query: str, result: Any) -> str:
    formatted = json.dumps(result, indent=2, ensure_ascii=False, default=str)
    return f"# Query result\n\n**Query:** `{query}`\n\n```json\n{formatted}\n```"
