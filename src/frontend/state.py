"""Read-only snapshot of the archive documents for the browser.

The browser never writes: unreadable documents are reported, not
quarantined, so a running archive keeps ownership of its files.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from adapters.json_documents import read_json
from core.models import DeletionRecord, MessageRecord


@dataclass
class ArchiveSnapshot:
    messages: list[MessageRecord] = field(default_factory=list)
    deletions: list[DeletionRecord] = field(default_factory=list)
    edit_mappings: int = 0
    context_backups: int = 0
    settings: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


def _read_table(root: Path, table: str, errors: list[str]) -> dict[str, Any]:
    value, ok = read_json(root / f"{table}.json")
    if not ok or (value is not None and not isinstance(value, dict)):
        errors.append(f"{table}.json unreadable")
        return {}
    return value or {}


def load_snapshot(root: str | Path) -> ArchiveSnapshot:
    root = Path(root)
    snapshot = ArchiveSnapshot()

    for data in _read_table(root, "messages", snapshot.errors).values():
        try:
            snapshot.messages.append(MessageRecord.from_dict(data))
        except (KeyError, TypeError, ValueError):
            continue
    snapshot.messages.sort(key=lambda record: (record.timestamp, record.ingested_at), reverse=True)

    for data in _read_table(root, "deleted_messages", snapshot.errors).values():
        try:
            snapshot.deletions.append(DeletionRecord.from_dict(data))
        except (KeyError, TypeError, ValueError):
            continue
    snapshot.deletions.sort(key=lambda entry: entry.deleted_at, reverse=True)

    snapshot.edit_mappings = len(_read_table(root, "edited_messages", snapshot.errors))
    snapshot.context_backups = len(_read_table(root, "context_backups", snapshot.errors))

    settings_dir = root / "settings"
    if settings_dir.is_dir():
        for path in sorted(settings_dir.glob("*.json")):
            value, ok = read_json(path)
            if ok:
                snapshot.settings[path.stem] = value
            else:
                snapshot.errors.append(f"settings/{path.name} unreadable")
    return snapshot
