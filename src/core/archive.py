"""Archive store: the repository of every observed message.

The in-memory index is the source of truth. Each mutating call rewrites the
owning JSON document before it returns, under a single-writer lock. Media
bearing messages are stored immediately without media; the download runs in
the media worker pool and patches the record when it completes.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Iterable, Iterator, Optional

from core.content import extract_reply_context, is_noise, parse_content, parse_raw_message
from core.media import MediaStore, MediaWorkerPool
from core.models import DeletionRecord, MediaRecord, MessageRecord
from core.ports import DocumentPort

LOGGER = logging.getLogger(__name__)


class ArchiveStore:
    """Message records plus the append-only deletion log."""

    def __init__(
        self,
        messages: DocumentPort,
        deletions: DocumentPort,
        media_store: MediaStore,
        media_pool: Optional[MediaWorkerPool] = None,
        self_id: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._messages_doc = messages
        self._deletions_doc = deletions
        self._media_store = media_store
        self._media_pool = media_pool
        self._self_id = self_id
        self._clock = clock
        self._lock = threading.RLock()
        self._records: dict[str, MessageRecord] = {}
        self._deletions: dict[str, DeletionRecord] = {}

    def load(self) -> None:
        """Load both documents; unreadable entries are skipped."""

        with self._lock:
            self._records = {}
            for message_id, data in self._messages_doc.load().items():
                try:
                    self._records[message_id] = MessageRecord.from_dict(data)
                except (KeyError, TypeError, ValueError) as exc:
                    LOGGER.warning("Skipping unreadable archived message %s: %s", message_id, exc)
            self._deletions = {}
            for message_id, data in self._deletions_doc.load().items():
                try:
                    self._deletions[message_id] = DeletionRecord.from_dict(data)
                except (KeyError, TypeError, ValueError) as exc:
                    LOGGER.warning("Skipping unreadable deletion entry %s: %s", message_id, exc)
        LOGGER.info("Loaded %s archived messages, %s deletions", len(self._records), len(self._deletions))

    def set_media_pool(self, media_pool: MediaWorkerPool) -> None:
        self._media_pool = media_pool

    def _persist_messages(self) -> bool:
        try:
            self._messages_doc.save({key: record.to_dict() for key, record in self._records.items()})
        except OSError as exc:
            LOGGER.error("Error saving messages: %s", exc)
            return False
        return True

    def _persist_deletions(self) -> bool:
        try:
            self._deletions_doc.save({key: record.to_dict() for key, record in self._deletions.items()})
        except OSError as exc:
            LOGGER.error("Error saving deleted messages: %s", exc)
            return False
        return True

    def archive(self, raw_message: dict[str, Any]) -> bool:
        """Idempotently archive a raw message event.

        Returns True for archived, already-archived and deliberately skipped
        messages (malformed events and noise are skipped, not stored); False
        only when the write failed or archiving raised.
        """

        try:
            return self._archive(raw_message)
        except Exception:
            LOGGER.exception("Error archiving message")
            return False

    def _archive(self, raw_message: dict[str, Any]) -> bool:
        raw = parse_raw_message(raw_message, self._self_id)
        if raw is None:
            LOGGER.debug("Skipping message with no key or content")
            return True

        parsed = parse_content(raw.content)
        if parsed is None or is_noise(parsed, raw.chat_id):
            LOGGER.debug("Skipping message %s with no archivable content", raw.id)
            return True

        if parsed.protocol_type == "REVOKE":
            LOGGER.info("Archiving deletion notification %s", raw.id)

        context_snapshot, quoted_id = extract_reply_context(raw.content)
        now = int(self._clock())
        record = MessageRecord(
            id=raw.id,
            chat_id=raw.chat_id,
            sender_id=raw.sender_id,
            participant_id=raw.participant_id,
            kind=parsed.kind,
            text=parsed.text,
            timestamp=raw.timestamp or now,
            ingested_at=now,
            from_self=raw.from_self,
            is_group=raw.is_group,
            is_business=raw.is_business,
            is_voice_note=parsed.is_voice_note,
            is_edited=parsed.is_edited,
            context_snapshot=context_snapshot,
            quoted_original_id=quoted_id,
            content_kinds=parsed.content_kinds,
        )

        with self._lock:
            if raw.id in self._records:
                return True
            self._records[raw.id] = record
            if not self._persist_messages():
                # Not durable, so not archived: a retry must write again.
                del self._records[raw.id]
                return False

        # Edited wrappers only change text; the attachment belongs to the
        # original record.
        if parsed.kind.has_media and not parsed.is_edited and self._media_pool is not None:
            self._media_pool.submit(raw_message, parsed.kind)
        return True

    def attach_media(self, message_id: str, media: MediaRecord) -> bool:
        """Apply the one allowed content patch: the downloaded media."""

        with self._lock:
            record = self._records.get(message_id)
            if record is None:
                LOGGER.debug("Media finished for evicted message %s, discarding file", message_id)
                self._media_store.delete(media)
                return False
            if record.media is not None:
                return False
            self._records[message_id] = record.with_media(media)
            if not self._persist_messages():
                self._records[message_id] = record
                return False
            return True

    def get(self, message_id: str) -> Optional[MessageRecord]:
        return self._records.get(message_id)

    def mark_deleted(self, message_id: str, chat_id: str) -> bool:
        """Flag a record deleted and append its deletion snapshot once."""

        with self._lock:
            record = self._records.get(message_id)
            if record is None:
                return False
            if message_id in self._deletions and record.deleted:
                return True
            previous_entry = self._deletions.get(message_id)
            self._records[message_id] = record.as_deleted()
            self._deletions[message_id] = DeletionRecord(
                original_id=message_id,
                chat_id=chat_id or record.chat_id,
                sender_id=record.sender_id,
                content=record.text,
                media_descriptor={
                    "kind": record.kind.value,
                    "media_path": record.media.relative_path if record.media else None,
                },
                deleted_at=int(self._clock()),
            )
            if self._persist_messages() and self._persist_deletions():
                return True
            # Restore the pre-call state so a retry writes both documents.
            self._records[message_id] = record
            if previous_entry is None:
                del self._deletions[message_id]
            else:
                self._deletions[message_id] = previous_entry
            return False

    def recent_by_chat(self, chat_id: str, limit: Optional[int] = 50) -> Iterator[MessageRecord]:
        """Yield up to `limit` records of a chat, newest first (None: all)."""

        with self._lock:
            candidates = [record for record in self._records.values() if record.chat_id == chat_id]
        candidates.sort(key=lambda record: (record.timestamp, record.ingested_at), reverse=True)
        yield from candidates if limit is None else candidates[:limit]

    def records(self) -> list[MessageRecord]:
        with self._lock:
            return list(self._records.values())

    def remove(self, message_ids: Iterable[str]) -> int:
        """Drop records (retention); deletion log entries are kept."""

        with self._lock:
            removed = 0
            for message_id in message_ids:
                if self._records.pop(message_id, None) is not None:
                    removed += 1
            if removed:
                self._persist_messages()
        return removed

    def referenced_media(self) -> set[str]:
        with self._lock:
            return {record.media.relative_path for record in self._records.values() if record.media}

    def media_path(self, message_id: str) -> Optional[str]:
        """Absolute path of a record's media file, if it is on disk."""

        record = self._records.get(message_id)
        if record is None or record.media is None:
            return None
        path = self._media_store.path_for(record.media)
        return str(path) if path.is_file() else None

    def get_media(self, message_id: str) -> Optional[tuple[MediaRecord, bytes]]:
        record = self._records.get(message_id)
        if record is None or record.media is None:
            return None
        data = self._media_store.read(record.media)
        if data is None:
            return None
        return record.media, data

    def deletion_for(self, message_id: str) -> Optional[DeletionRecord]:
        return self._deletions.get(message_id)

    def recent_deletions(self, limit: int = 10) -> list[DeletionRecord]:
        with self._lock:
            entries = list(self._deletions.values())
        entries.sort(key=lambda entry: entry.deleted_at, reverse=True)
        return entries[:limit]

    def stats(self) -> dict[str, Any]:
        """Storage statistics for the command layer."""

        with self._lock:
            records = list(self._records.values())
            tracked = len(self._deletions)
        media_bytes = self._media_store.total_bytes()
        return {
            "total_messages": len(records),
            "media_messages": sum(1 for record in records if record.media),
            "deleted_messages": sum(1 for record in records if record.deleted),
            "total_deleted_tracked": tracked,
            "media_size_bytes": media_bytes,
            "media_size_mb": round(media_bytes / (1024 * 1024), 2),
        }
