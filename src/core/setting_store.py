"""Generic persisted settings, one document per key."""

from __future__ import annotations

import logging
import threading
from typing import Any

from core.ports import KeyedDocumentsPort

LOGGER = logging.getLogger(__name__)

ANTIDELETE_ENABLED = "antidelete.enabled"
RETENTION_POLICY = "retention.policy"


class SettingStore:
    """Key-value settings backed by one JSON document per key."""

    def __init__(self, documents: KeyedDocumentsPort) -> None:
        self._documents = documents
        self._lock = threading.Lock()
        self._values: dict[str, Any] = {}

    def load(self) -> None:
        with self._lock:
            self._values = self._documents.load_all()

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> bool:
        """Persist a value; returns False when the write failed."""

        with self._lock:
            try:
                self._documents.save(key, value)
            except (OSError, TypeError, ValueError) as exc:
                LOGGER.error("Error writing setting %s: %s", key, exc)
                return False
            self._values[key] = value
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            self._values.pop(key, None)
            try:
                return self._documents.delete(key)
            except (OSError, ValueError) as exc:
                LOGGER.error("Error deleting setting %s: %s", key, exc)
                return False

    def keys(self) -> list[str]:
        return sorted(self._values)

    def antidelete_enabled(self) -> bool:
        return bool(self.get(ANTIDELETE_ENABLED, True))
