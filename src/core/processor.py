"""Core event processing for the archive.

This module is integration-agnostic. The connection layer hands it raw
message batches and raw update batches; everything else (archiving, edit
correlation, deletion correlation) happens behind these two entry points.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Iterable, Optional

from core.archive import ArchiveStore
from core.content import parse_content
from core.deletions import DeletionCorrelator, normalize_deletion_signal
from core.edits import EditCorrelator
from core.models import DeletionSignal

LOGGER = logging.getLogger(__name__)


class ArchiveProcessor:
    """Routes incoming messages and updates to the archive components."""

    def __init__(
        self,
        archive: ArchiveStore,
        edits: EditCorrelator,
        deletions: DeletionCorrelator,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._archive = archive
        self._edits = edits
        self._deletions = deletions
        self._clock = clock
        self._pending: set[asyncio.Task] = set()

    async def handle_messages(self, raw_messages: Iterable[dict[str, Any]]) -> int:
        """Archive a batch of new messages in arrival order.

        Returns how many were handled without error.
        """

        handled = 0
        for raw_message in raw_messages:
            try:
                if self.handle_message(raw_message):
                    handled += 1
            except Exception:
                # Don't let one message stop the batch.
                LOGGER.exception("Error processing message")
        return handled

    def handle_message(self, raw_message: dict[str, Any]) -> bool:
        if not self._archive.archive(raw_message):
            return False
        message_id = str((raw_message.get("key") or {}).get("id") or "")
        record = self._archive.get(message_id) if message_id else None
        if record is not None and record.is_edited:
            self._edits.correlate(record)
        return True

    async def handle_updates(self, updates: Iterable[dict[str, Any]]) -> list[asyncio.Task]:
        """Dispatch message updates: deletions and edits.

        Deletion correlation waits on explicit delays, so each signal runs in
        its own task and never holds up the next update. The created tasks
        are returned for callers that want to await them.
        """

        tasks: list[asyncio.Task] = []
        for update in updates:
            try:
                signal = normalize_deletion_signal(update)
                if signal is not None:
                    tasks.append(self._spawn(signal))
                    continue
                edited = self.wrap_edit(update)
                if edited is not None:
                    self.handle_message(edited)
                else:
                    LOGGER.debug("Unhandled message update - not a deletion or edit")
            except Exception:
                LOGGER.exception("Error processing message update")
        return tasks

    def _spawn(self, signal: DeletionSignal) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._deletions.handle(signal))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def _edit_id(self, message_id: str, now: int, message: dict[str, Any]) -> str:
        """Derive a free id for an edit of an archived message.

        Several edits can land in the same second, so a counter is appended
        until the id is unused. A redelivered edit with the same text maps
        to the id it was first stored under.
        """

        parsed = parse_content(message)
        text = parsed.text if parsed is not None else ""
        base = f"{message_id}_edit_{now}"
        candidate = base
        counter = 1
        while True:
            existing = self._archive.get(candidate)
            if existing is None or existing.text == text:
                return candidate
            candidate = f"{base}_{counter}"
            counter += 1

    def wrap_edit(self, update: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Wrap an update that carries new content into an edited message."""

        key = update.get("key") or {}
        body = update.get("update") or {}
        message = body.get("message") if isinstance(body, dict) else None
        if not isinstance(message, dict) or not message or not key.get("id"):
            return None
        now = int(self._clock())
        # Updates reuse the edited message's key. Archived content is
        # immutable, so the edit is stored under its own id.
        if self._archive.get(str(key["id"])) is not None:
            key = {**key, "id": self._edit_id(str(key["id"]), now, message)}
        return {
            "key": key,
            "message": {"editedMessage": {"message": message, "timestamp": now}},
            "messageTimestamp": now,
        }

    async def drain(self) -> None:
        """Wait for in-flight deletion tasks."""

        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
