"""Stats tab summarizing the archive."""

from __future__ import annotations

from collections import Counter

from rich.table import Table
from textual.containers import Container, Vertical
from textual.widgets import Static

from core.chat_ids import classify_chat
from ..state import ArchiveSnapshot


def build_stats_table(snapshot: ArchiveSnapshot) -> Table:
    table = Table(show_header=False, box=None, pad_edge=False)
    table.add_column("name", style="bold")
    table.add_column("value")

    by_class = Counter(classify_chat(record.chat_id).value for record in snapshot.messages)
    table.add_row("Messages", str(len(snapshot.messages)))
    for name, count in sorted(by_class.items()):
        table.add_row(f"  {name}", str(count))
    table.add_row("With media", str(sum(1 for record in snapshot.messages if record.media)))
    table.add_row("Media size", f"{sum(r.media.byte_size for r in snapshot.messages if r.media) / (1024 * 1024):.2f} MB")
    table.add_row("Deleted", str(len(snapshot.deletions)))
    table.add_row("Edit mappings", str(snapshot.edit_mappings))
    table.add_row("Context backups", str(snapshot.context_backups))
    antidelete = snapshot.settings.get("antidelete.enabled", True)
    table.add_row("Anti-delete", "on" if antidelete else "off")
    policy = snapshot.settings.get("retention.policy")
    if isinstance(policy, dict):
        for name, hours in sorted(policy.items()):
            table.add_row(f"Retention {name}", f"{hours}h")
    for error in snapshot.errors:
        table.add_row("Error", error, style="red")
    return table


class StatsTab(Container):
    def compose(self):
        with Vertical(id="stats-panel"):
            yield Static("Archive statistics", classes="panel-title")
            yield Static("", id="stats-body")

    def show(self, snapshot: ArchiveSnapshot) -> None:
        self.query_one("#stats-body", Static).update(build_stats_table(snapshot))
