"""Deleted tab for viewing and exporting the deletion log."""

from __future__ import annotations

import csv
import json
from datetime import datetime
from typing import Any

from textual import on
from textual.containers import Container, Horizontal, Vertical
from textual.widgets import Button, DataTable, Static

from core.chat_ids import bare_user
from ..constants import EXPORTS_DIR
from ..state import ArchiveSnapshot


def format_epoch(value: int) -> str:
    if not value:
        return ""
    return datetime.fromtimestamp(value).strftime("%Y-%m-%d %H:%M:%S")


def clip_text(value: str, limit: int = 64) -> str:
    value = " ".join(value.split())
    if len(value) <= limit:
        return value
    return value[: limit - 3] + "..."


class DeletedTab(Container):
    """Deletion log with JSON/CSV export."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._rows: list[dict[str, Any]] = []
        self._table_ready = False

    def compose(self):
        with Vertical(id="deleted-panel"):
            yield Static("Deleted messages", classes="panel-title")
            yield DataTable(id="deleted-table", cursor_type="row")
            with Horizontal(id="deleted-actions", classes="actions"):
                yield Button("Export JSON", id="export-json", variant="success")
                yield Button("Export CSV", id="export-csv")
            yield Static("", id="deleted-output", classes="output")

    def on_mount(self) -> None:
        table = self.query_one("#deleted-table", DataTable)
        table.add_column("deleted at", key="deleted_at", width=20)
        table.add_column("sender", key="sender_id", width=18)
        table.add_column("chat", key="chat_id", width=22)
        table.add_column("media", key="media", width=9)
        table.add_column("content", key="content", width=48)
        table.zebra_stripes = True
        table.styles.height = "1fr"
        self._table_ready = True

    def show(self, snapshot: ArchiveSnapshot) -> None:
        if not self._table_ready:
            return
        table = self.query_one("#deleted-table", DataTable)
        table.clear()
        self._rows = [entry.to_dict() for entry in snapshot.deletions]
        for entry in snapshot.deletions:
            media_kind = (entry.media_descriptor or {}).get("kind", "")
            table.add_row(
                format_epoch(entry.deleted_at),
                bare_user(entry.sender_id),
                bare_user(entry.chat_id),
                media_kind,
                clip_text(entry.content or ""),
                key=entry.original_id,
            )
        self._set_output(f"loaded {len(self._rows)} deleted messages")

    @on(Button.Pressed, "#export-json")
    def _on_export_json(self) -> None:
        self._export_rows("json")

    @on(Button.Pressed, "#export-csv")
    def _on_export_csv(self) -> None:
        self._export_rows("csv")

    def _export_rows(self, fmt: str) -> None:
        if not self._rows:
            self._set_output("No deleted messages to export.")
            return
        EXPORTS_DIR.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        path = EXPORTS_DIR / f"deleted-{timestamp}.{fmt}"
        try:
            if fmt == "json":
                path.write_text(json.dumps(self._rows, indent=2, ensure_ascii=False), encoding="utf-8")
            else:
                rows = [{**row, "media_descriptor": json.dumps(row.get("media_descriptor"))} for row in self._rows]
                with path.open("w", encoding="utf-8", newline="") as handle:
                    writer = csv.DictWriter(handle, fieldnames=list(rows[0].keys()))
                    writer.writeheader()
                    writer.writerows(rows)
            self._set_output(f"exported {len(self._rows)} deleted messages to {path}")
        except OSError as exc:
            self._set_output(f"export failed: {exc.strerror or exc}")

    def _set_output(self, message: str) -> None:
        self.query_one("#deleted-output", Static).update(message)
