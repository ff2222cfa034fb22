"""Edit correlation (core domain).

An edit arrives as a new message wrapping the changed content, under its
own id. Matching it back to the record it replaces is a heuristic: the most
recent non-edited messages of the same chat are compared by their leading
word. False positives and misses are accepted.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable, Iterable, Optional

from core.models import ContextSnapshot, MessageRecord
from core.ports import ArchiveReader, DocumentPort

LOGGER = logging.getLogger(__name__)

SCAN_LIMIT = 10
CONTEXT_SCAN_LIMIT = 5


def leading_token(text: str) -> str:
    parts = text.split(None, 1)
    return parts[0] if parts else ""


def _parse_context(raw: Optional[str]) -> Optional[dict[str, Any]]:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        LOGGER.debug("Error parsing stored reply context: %s", exc.msg)
        return None
    return value if isinstance(value, dict) else None


def _has_quote(context: Optional[dict[str, Any]]) -> bool:
    return bool(context and context.get("quotedMessage") and context.get("stanzaId"))


class EditCorrelator:
    """Maps edited messages to originals and keeps reply-context backups."""

    def __init__(
        self,
        archive: ArchiveReader,
        mappings: DocumentPort,
        backups: DocumentPort,
        backup_ttl_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._archive = archive
        self._mappings_doc = mappings
        self._backups_doc = backups
        self._backup_ttl = backup_ttl_seconds
        self._clock = clock
        # The retention sweep evicts from a worker thread.
        self._lock = threading.RLock()
        self._mappings: dict[str, str] = {}
        self._backups: dict[str, ContextSnapshot] = {}

    def load(self) -> None:
        now = int(self._clock())
        self._mappings = {str(key): str(value) for key, value in self._mappings_doc.load().items()}
        self._backups = {}
        for message_id, data in self._backups_doc.load().items():
            try:
                self._backups[message_id] = ContextSnapshot.from_dict(message_id, data, self._backup_ttl, now)
            except (AttributeError, TypeError, ValueError) as exc:
                LOGGER.warning("Skipping unreadable context backup %s: %s", message_id, exc)

    def _save_mappings(self) -> None:
        try:
            self._mappings_doc.save(dict(self._mappings))
        except OSError as exc:
            LOGGER.error("Error saving edited messages data: %s", exc)

    def _save_backups(self) -> None:
        try:
            self._backups_doc.save({key: snap.to_dict() for key, snap in self._backups.items()})
        except OSError as exc:
            LOGGER.error("Error saving context backups: %s", exc)

    def find_original(self, edited: MessageRecord) -> Optional[MessageRecord]:
        """Return the most recent same-chat record sharing the leading word."""

        edited_token = leading_token(edited.text)
        if not edited_token:
            return None
        scanned = 0
        for candidate in self._archive.recent_by_chat(edited.chat_id, limit=None):
            if candidate.id == edited.id or candidate.is_edited:
                continue
            scanned += 1
            if candidate.text and leading_token(candidate.text) == edited_token:
                return candidate
            if scanned >= SCAN_LIMIT:
                break
        return None

    def correlate(self, edited: MessageRecord) -> Optional[str]:
        """Record the edit mapping and context backup for an edited record.

        Returns the original message id when one was matched.
        """

        if not edited.is_edited:
            return None

        original_id: Optional[str] = None
        original = self.find_original(edited)
        with self._lock:
            if original is not None:
                original_id = original.id
                self._mappings[edited.id] = original_id
                self._save_mappings()
                LOGGER.debug("Mapped edited message %s to original %s", edited.id, original_id)

            if edited.context_snapshot:
                self._backups[edited.id] = ContextSnapshot(
                    message_id=edited.id,
                    context=edited.context_snapshot,
                    stored_at=int(self._clock()),
                    ttl_seconds=self._backup_ttl,
                )
                self._save_backups()
        return original_id

    def original_for(self, edited_id: str) -> Optional[str]:
        return self._mappings.get(edited_id)

    def backup_for(self, edited_id: str) -> Optional[ContextSnapshot]:
        return self._backups.get(edited_id)

    def find_context(self, edited_id: str, chat_id: str) -> Optional[dict[str, Any]]:
        """Reconstruct the reply context an edited message had.

        Lookup order: the mapped original's context, the backup snapshot,
        then the newest recent message of the chat that quotes something.
        """

        original_id = self._mappings.get(edited_id)
        if original_id:
            original = self._archive.get(original_id)
            context = _parse_context(original.context_snapshot if original else None)
            if context:
                return context

        snapshot = self._backups.get(edited_id)
        if snapshot is not None:
            context = _parse_context(snapshot.context)
            if _has_quote(context):
                return context

        checked = 0
        for candidate in self._archive.recent_by_chat(chat_id, limit=None):
            if candidate.id == edited_id or candidate.is_edited or not candidate.context_snapshot:
                continue
            checked += 1
            context = _parse_context(candidate.context_snapshot)
            if _has_quote(context):
                return context
            if checked >= CONTEXT_SCAN_LIMIT:
                break
        return None

    def evict_expired(self, now: Optional[float] = None) -> int:
        """Drop context backups older than their TTL."""

        current = self._clock() if now is None else now
        with self._lock:
            expired = [key for key, snap in self._backups.items() if snap.is_expired(current)]
            for key in expired:
                del self._backups[key]
            if expired:
                self._save_backups()
        if expired:
            LOGGER.info("Cleaned up %s expired context backups", len(expired))
        return len(expired)

    def forget(self, message_ids: Iterable[str]) -> None:
        """Drop mappings and backups that refer to evicted records."""

        gone = set(message_ids)
        if not gone:
            return
        with self._lock:
            mappings_before = len(self._mappings)
            self._mappings = {
                edited: original
                for edited, original in self._mappings.items()
                if edited not in gone and original not in gone
            }
            if len(self._mappings) != mappings_before:
                self._save_mappings()
            backups_before = len(self._backups)
            self._backups = {key: snap for key, snap in self._backups.items() if key not in gone}
            if len(self._backups) != backups_before:
                self._save_backups()

    def counts(self) -> dict[str, int]:
        return {"edit_mappings": len(self._mappings), "context_backups": len(self._backups)}
