"""Main Textual app for browsing the chatvault archive."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from rich.text import Text
from textual.app import App, ComposeResult
from textual.containers import Center, Container, Horizontal, Vertical
from textual.widgets import ContentSwitcher, Footer, Static, Tab, Tabs

from .constants import VAULT_GREEN
from .state import ArchiveSnapshot, load_snapshot
from .tabs.deleted import DeletedTab
from .tabs.recent import RecentTab
from .tabs.stats import StatsTab


class ArchiveBrowserApp(App):
    """Read-only browser over the archive documents."""

    CSS = """
    Screen {
        background: #0f1a21;
        color: #e8eef5;
    }

    #header {
        height: 6;
        padding: 1 4;
        border-bottom: solid #2a3a46;
    }

    #header-left, #header-right {
        width: 1fr;
    }

    #header-right {
        text-align: right;
    }

    .subtle {
        color: #c6d2dd;
    }

    #tabs-bar {
        height: 5;
        padding: 0 4;
        border-bottom: solid #2a3a46;
    }

    #tabs-center {
        width: 100%;
        height: 4;
        align: center middle;
    }

    #tabs {
        width: auto;
    }

    .panel-title {
        text-style: bold;
        padding: 1 0 0 0;
    }

    .actions {
        height: 3;
    }

    .output {
        color: #c6d2dd;
        height: 1;
    }
    """

    BINDINGS = [
        ("r", "reload", "Reload"),
        ("q", "quit", "Quit"),
    ]

    def __init__(self, storage_root: str | Path, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._storage_root = Path(storage_root)
        self.snapshot = ArchiveSnapshot()

    def compose(self) -> ComposeResult:
        with Container(id="header"):
            with Horizontal():
                with Vertical(id="header-left"):
                    yield Static(self._title_text(), id="title")
                    yield Static("read-only", classes="subtle")
                with Vertical(id="header-right"):
                    yield Static(f"storage: {self._storage_root}", classes="subtle")
                    yield Static("", id="header-status", classes="subtle")

        with Container(id="tabs-bar"):
            with Center(id="tabs-center"):
                yield Tabs(
                    Tab("Deleted", id="deleted"),
                    Tab("Recent", id="recent"),
                    Tab("Stats", id="stats"),
                    id="tabs",
                )

        with ContentSwitcher(id="content", initial="deleted"):
            yield DeletedTab(id="deleted")
            yield RecentTab(id="recent")
            yield StatsTab(id="stats")
        yield Footer()

    def on_mount(self) -> None:
        # Tables add their columns on their own mount.
        self.call_after_refresh(self.action_reload)

    def on_tabs_tab_activated(self, event: Tabs.TabActivated) -> None:
        if event.tab.id:
            self.query_one("#content", ContentSwitcher).current = event.tab.id

    def action_reload(self) -> None:
        self.snapshot = load_snapshot(self._storage_root)
        self.query_one(DeletedTab).show(self.snapshot)
        self.query_one(RecentTab).show(self.snapshot)
        self.query_one(StatsTab).show(self.snapshot)
        status = f"{len(self.snapshot.messages)} messages, {len(self.snapshot.deletions)} deleted"
        if self.snapshot.errors:
            status += f" ({len(self.snapshot.errors)} unreadable)"
        self.query_one("#header-status", Static).update(status)

    @staticmethod
    def _title_text() -> Text:
        return Text.assemble(
            ("CHAT", VAULT_GREEN),
            ("VAULT > Archive Browser", "bold"),
        )
