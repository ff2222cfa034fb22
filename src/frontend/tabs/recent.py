"""Recent tab listing the newest archived messages."""

from __future__ import annotations

from typing import Any

from textual import on
from textual.containers import Container, Vertical
from textual.widgets import DataTable, Input, Static

from core.chat_ids import bare_user, classify_chat
from ..constants import RECENT_LIMIT
from ..state import ArchiveSnapshot
from .deleted import clip_text, format_epoch


class RecentTab(Container):
    """Newest archived messages, optionally filtered by chat."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._snapshot = ArchiveSnapshot()
        self._table_ready = False

    def compose(self):
        with Vertical(id="recent-panel"):
            yield Static("Recent messages", classes="panel-title")
            yield Input(placeholder="filter by chat id", id="recent-filter")
            yield DataTable(id="recent-table", cursor_type="row")
            yield Static("", id="recent-output", classes="output")

    def on_mount(self) -> None:
        table = self.query_one("#recent-table", DataTable)
        table.add_column("sent", key="timestamp", width=20)
        table.add_column("class", key="class", width=8)
        table.add_column("chat", key="chat_id", width=20)
        table.add_column("kind", key="kind", width=9)
        table.add_column("flags", key="flags", width=8)
        table.add_column("text", key="text", width=44)
        table.zebra_stripes = True
        table.styles.height = "1fr"
        self._table_ready = True

    def show(self, snapshot: ArchiveSnapshot) -> None:
        self._snapshot = snapshot
        self._render_rows()

    @on(Input.Changed, "#recent-filter")
    def _on_filter(self) -> None:
        self._render_rows()

    def _render_rows(self) -> None:
        if not self._table_ready:
            return
        needle = self.query_one("#recent-filter", Input).value.strip()
        table = self.query_one("#recent-table", DataTable)
        table.clear()
        shown = 0
        for record in self._snapshot.messages:
            if needle and needle not in record.chat_id:
                continue
            flags = ("D" if record.deleted else "") + ("E" if record.is_edited else "") + ("M" if record.media else "")
            table.add_row(
                format_epoch(record.timestamp),
                classify_chat(record.chat_id).value,
                bare_user(record.chat_id),
                record.kind.value,
                flags,
                clip_text(record.text or ""),
                key=record.id,
            )
            shown += 1
            if shown >= RECENT_LIMIT:
                break
        total = len(self._snapshot.messages)
        self.query_one("#recent-output", Static).update(f"showing {shown} of {total} archived messages")
