"""JSON document storage adapter.

Implements the core DocumentPort and KeyedDocumentsPort using plain JSON
files. Every save rewrites the whole document through a temp file and an
atomic rename, so a crash mid-write leaves the previous version intact.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import threading
import time
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"
SETTING_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def _write_atomic(path: Path, payload: Any) -> None:
    tmp_path = path.with_name(path.name + TEMP_SUFFIX)
    with open(tmp_path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, ensure_ascii=False)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)


def quarantine(path: Path) -> Path | None:
    """Copy an unreadable file aside as <name>.backup.<epoch_ms>."""

    backup = path.with_name(f"{path.name}.backup.{int(time.time() * 1000)}")
    try:
        shutil.copy2(path, backup)
    except OSError as exc:
        LOGGER.error("Failed to back up corrupted file %s: %s", path, exc)
        return None
    LOGGER.info("Corrupted file backed up to %s", backup)
    return backup


def read_json(path: Path) -> tuple[Any, bool]:
    """Read a JSON file, returning (value, ok).

    A missing or blank file reads as (None, True); anything unparsable reads
    as (None, False).
    """

    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None, True
    except (OSError, UnicodeDecodeError) as exc:
        LOGGER.warning("Error reading %s: %s", path, exc)
        return None, False
    if not raw.strip():
        return None, True
    try:
        return json.loads(raw), True
    except json.JSONDecodeError as exc:
        LOGGER.warning("Error parsing %s: %s", path, exc.msg)
        return None, False


class JsonDocument:
    """One logical table stored as a JSON object in a single file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        """Load the document, replacing it with {} if it cannot be read.

        Startup never aborts here: a corrupt file is quarantined and a fresh,
        valid document takes its place.
        """

        value, ok = read_json(self._path)
        if ok and value is None:
            if self._path.exists():
                LOGGER.warning("%s is empty, initializing with empty storage", self._path.name)
                self._reset()
            return {}
        if ok and isinstance(value, dict):
            return value
        if ok:
            LOGGER.warning("%s does not hold a JSON object, starting fresh", self._path.name)
        quarantine(self._path)
        self._reset()
        return {}

    def save(self, data: dict[str, Any]) -> None:
        """Serialize the full document to disk before returning."""

        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            _write_atomic(self._path, data)

    def _reset(self) -> None:
        try:
            self.save({})
        except OSError as exc:
            LOGGER.error("Failed to reinitialize %s: %s", self._path, exc)


class JsonKeyedDocuments:
    """A directory holding one JSON document per key (settings)."""

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)
        self._lock = threading.Lock()

    def _path_for(self, key: str) -> Path:
        if not SETTING_KEY_PATTERN.match(key):
            raise ValueError(f"Invalid setting key: {key!r}")
        return self._dir / f"{key}.json"

    def load_all(self) -> dict[str, Any]:
        """Load every <key>.json in the directory; corrupt files are skipped."""

        loaded: dict[str, Any] = {}
        if not self._dir.is_dir():
            return loaded
        for path in sorted(self._dir.glob("*.json")):
            key = path.stem
            value, ok = read_json(path)
            if not ok:
                LOGGER.warning("Failed to load setting file %s", path.name)
                quarantine(path)
                path.unlink(missing_ok=True)
                continue
            loaded[key] = value
        if loaded:
            LOGGER.info("Loaded %s stored settings", len(loaded))
        return loaded

    def save(self, key: str, value: Any) -> None:
        path = self._path_for(key)
        with self._lock:
            self._dir.mkdir(parents=True, exist_ok=True)
            _write_atomic(path, value)

    def delete(self, key: str) -> bool:
        path = self._path_for(key)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                return False
        return True


class JsonDocumentStore:
    """Factory for the archive's documents under one storage root.

    Layout:
    - messages.json: archived MessageRecords keyed by message id
    - deleted_messages.json: append-only DeletionRecords keyed by message id
    - edited_messages.json: edited id -> original id mappings
    - context_backups.json: reply-context snapshots keyed by edited id
    - settings/<key>.json: one document per setting
    """

    TABLES = ("messages", "deleted_messages", "edited_messages", "context_backups")

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def init(self) -> None:
        """Create the storage root if it does not exist."""

        self._root.mkdir(parents=True, exist_ok=True)

    def document(self, table: str) -> JsonDocument:
        if table not in self.TABLES:
            raise ValueError(f"Unknown table: {table}")
        return JsonDocument(self._root / f"{table}.json")

    def settings(self) -> JsonKeyedDocuments:
        return JsonKeyedDocuments(self._root / "settings")
