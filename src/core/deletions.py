"""Deletion correlation (core domain).

The chat network reports deletions in several shapes. They are reduced to a
canonical (message id, chat id) pair, looked up in the archive after a short
settle delay (the signal can overtake the archive write), retried exactly
once, and then turned into an alert, a silent mark, or a degraded alert.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional

from core.chat_ids import is_excluded_from_alerts, is_likely_self_chat
from core.config import DeletionConfig
from core.models import DeletionSignal, MessageRecord
from core.ports import AlertSink, ArchiveReader

LOGGER = logging.getLogger(__name__)

# Stub codes carried by message updates that mean "this message was deleted".
STUB_REVOKE = 68
STUB_REVOKE_LEGACY = 6
STUB_REVOKE_ALT = 1


class DeletionOutcome(str, Enum):
    FILTERED = "filtered"
    DISABLED = "disabled"
    DUPLICATE = "duplicate"
    ALERTED = "alerted"
    SELF = "self"
    DEGRADED = "degraded"
    MISSED = "missed"


def _revoked_key(update: dict[str, Any]) -> Optional[dict[str, Any]]:
    message = update.get("message") or {}
    protocol = message.get("protocolMessage") if isinstance(message, dict) else None
    if not isinstance(protocol, dict):
        return None
    key = protocol.get("key")
    return key if isinstance(key, dict) and key.get("id") else None


def _protocol_type(update: dict[str, Any]) -> Any:
    message = update.get("message") or {}
    protocol = message.get("protocolMessage") if isinstance(message, dict) else None
    return protocol.get("type") if isinstance(protocol, dict) else None


def normalize_deletion_signal(event: dict[str, Any]) -> Optional[DeletionSignal]:
    """Reduce any known deletion update shape to a DeletionSignal.

    Recognized shapes, checked in order:
    - stub type 68 (revoke)
    - stub type 6 (legacy revoke)
    - protocol message with numeric type 0 and the revoked key
    - protocol message with string type "REVOKE" and the revoked key
    - stub type 1
    Returns None for anything that is not a deletion.
    """

    key = event.get("key") or {}
    update = event.get("update") or {}
    if not isinstance(update, dict):
        return None
    stub = update.get("messageStubType")
    protocol_type = _protocol_type(update)

    message_id: Optional[str] = None
    chat_id: Optional[str] = None
    source = ""

    if stub == STUB_REVOKE:
        message_id, chat_id, source = key.get("id"), key.get("remoteJid"), "stub_68"
    elif stub == STUB_REVOKE_LEGACY:
        message_id, chat_id, source = key.get("id"), key.get("remoteJid"), "stub_6"
    elif protocol_type == 0 and not isinstance(protocol_type, bool):
        revoked = _revoked_key(update)
        if revoked:
            message_id = revoked.get("id")
            chat_id = revoked.get("remoteJid") or key.get("remoteJid")
            source = "protocol_type_0"
    elif protocol_type == "REVOKE":
        revoked = _revoked_key(update)
        if revoked:
            message_id = revoked.get("id")
            chat_id = revoked.get("remoteJid") or key.get("remoteJid")
            source = "protocol_revoke"
    elif stub == STUB_REVOKE_ALT:
        message_id, chat_id, source = key.get("id"), key.get("remoteJid"), "stub_1"

    if not message_id or not chat_id:
        return None
    return DeletionSignal(message_id=str(message_id), chat_id=str(chat_id), source=source)


class DeletionCorrelator:
    """Matches deletion signals to archived records and raises alerts."""

    def __init__(
        self,
        archive: ArchiveReader,
        alert_sink: AlertSink,
        config: DeletionConfig = DeletionConfig(),
        self_ids: Iterable[str] = (),
        is_enabled: Callable[[], bool] = lambda: True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._archive = archive
        self._alert_sink = alert_sink
        self._config = config
        self._self_ids = [own for own in self_ids if own]
        self._is_enabled = is_enabled
        self._sleep = sleep
        self._clock = clock
        self._in_flight: set[str] = set()

    async def handle(self, signal: DeletionSignal) -> DeletionOutcome:
        """Process one deletion signal; never raises."""

        if is_excluded_from_alerts(signal.chat_id):
            LOGGER.debug("Ignoring deletion in excluded chat %s", signal.chat_id)
            return DeletionOutcome.FILTERED
        if not self._is_enabled():
            return DeletionOutcome.DISABLED
        # Several signal shapes can report the same deletion.
        if signal.message_id in self._in_flight:
            return DeletionOutcome.DUPLICATE

        self._in_flight.add(signal.message_id)
        try:
            return await self._correlate(signal)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("Error handling deletion of %s", signal.message_id)
            return DeletionOutcome.MISSED
        finally:
            self._in_flight.discard(signal.message_id)

    async def _correlate(self, signal: DeletionSignal) -> DeletionOutcome:
        LOGGER.info("Deletion detected (%s) for %s in %s", signal.source, signal.message_id, signal.chat_id)

        await self._sleep(self._config.settle_seconds)
        record = self._archive.get(signal.message_id)
        if record is None:
            await self._sleep(self._config.retry_seconds)
            record = self._archive.get(signal.message_id)

        if record is not None:
            return await self._on_found(record, signal)

        LOGGER.warning("Original message not found in archive: %s", signal.message_id)
        if is_likely_self_chat(signal.chat_id, self._self_ids):
            return DeletionOutcome.MISSED
        await self._deliver(
            self._alert_sink.send_unrecoverable(signal.message_id, signal.chat_id, int(self._clock())),
            signal.message_id,
        )
        return DeletionOutcome.DEGRADED

    async def _on_found(self, record: MessageRecord, signal: DeletionSignal) -> DeletionOutcome:
        if record.deleted:
            return DeletionOutcome.DUPLICATE
        if record.from_self:
            LOGGER.info("Skipping alert for own message deletion %s", record.id)
            self._archive.mark_deleted(record.id, signal.chat_id)
            return DeletionOutcome.SELF

        media_path = self._archive.media_path(record.id) if record.media else None
        await self._deliver(
            self._alert_sink.send_deleted(record, signal.chat_id, media_path, int(self._clock())), record.id
        )
        self._archive.mark_deleted(record.id, signal.chat_id)
        LOGGER.info("Deletion alert sent for %s", record.id)
        return DeletionOutcome.ALERTED

    async def _deliver(self, pending: Awaitable[None], message_id: str) -> None:
        # Delivery and its retries belong to the sink; a failure here must not
        # stop the record from being marked deleted.
        try:
            await pending
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("Failed to deliver deletion alert for %s", message_id)
