"""
Rich formatters for CLI output.

Keeps table/panel layout out of the command functions.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, List, Optional, Sequence

from rich.panel import Panel
from rich.table import Table

from cmadmin.domain.models import Connection, ManagementObject, MethodResult

MAX_CELL = 80


def format_value(value: Any) -> str:
    """One-line rendering of a property value for a table cell."""
    if value is None:
        return ""
    if isinstance(value, ManagementObject):
        return f"<{value.class_name}>"
    if isinstance(value, (list, tuple)):
        text = ", ".join(format_value(v) for v in value)
    elif isinstance(value, dict):
        text = json.dumps(value, default=str)
    else:
        text = str(value)
    if len(text) > MAX_CELL:
        text = text[: MAX_CELL - 3] + "..."
    return text


def connection_table(conn: Connection) -> Table:
    table = Table(title="SMS Provider Connection", show_header=False)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")
    table.add_row("Provider", conn.provider_host)
    table.add_row("Namespace", conn.namespace)
    table.add_row("Site code", conn.site_code)
    if conn.session is not None:
        table.add_row("Protocol", conn.session.protocol.value.upper())
    if conn.credential is not None:
        table.add_row("Account", conn.credential.username)
    return table


def objects_table(
    class_name: str,
    objects: Sequence[ManagementObject],
    properties: Optional[Iterable[str]] = None,
) -> Table:
    """
    Table of query results.

    Without an explicit property list the columns are the union of the
    objects' properties, system (`__`) properties excluded.
    """
    columns: List[str] = list(properties or [])
    if not columns:
        for obj in objects:
            for name in obj.properties:
                if not name.startswith("__") and name not in columns:
                    columns.append(name)

    table = Table(title=f"{class_name} ({len(objects)})")
    for name in columns:
        table.add_column(name, overflow="fold")
    for obj in objects:
        table.add_row(*(format_value(obj.get(name)) for name in columns))
    return table


def method_result_panel(result: MethodResult) -> Panel:
    lines = [f"ReturnValue: {result.return_value}"]
    for name, value in result.out_parameters.items():
        lines.append(f"{name}: {format_value(value)}")
    style = "green" if result.succeeded else "yellow"
    title = f"{result.class_name}.{result.method_name}"
    return Panel("\n".join(lines), title=title, border_style=style)
