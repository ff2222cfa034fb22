"""Telegram alert adapter for Saved Messages.

Formats a human-readable Markdown alert and sends it to Saved Messages.
Recovered media follows the alert as a separate file.
"""

from __future__ import annotations

import logging
from typing import Optional

from adapters.notification_formatting import (
    format_deleted_alert,
    format_media_caption,
    format_missing_media,
    format_unrecoverable_alert,
)
from core.models import MessageRecord

LOGGER = logging.getLogger(__name__)


class TelegramSavedMessagesAlertSink:
    """Alert sink that sends deletion alerts to the user's Saved Messages."""

    def __init__(self, client) -> None:
        self._client = client

    async def send_deleted(
        self, record: MessageRecord, chat_id: str, media_path: Optional[str], deleted_at: int
    ) -> None:
        """Send the recovered content, then its media when there is any."""

        message = format_deleted_alert(record, chat_id, deleted_at, mode="markdown")
        await self._client.send_message("me", message, parse_mode="Markdown")

        if not record.kind.has_media:
            return
        if not media_path:
            await self._client.send_message("me", format_missing_media(mode="markdown"))
            return
        await self._client.send_file(
            "me",
            media_path,
            caption=format_media_caption(record, mode="markdown"),
            parse_mode="Markdown",
            voice_note=record.is_voice_note,
        )
        LOGGER.info("Sent recovered %s for %s", record.kind.value, record.id)

    async def send_unrecoverable(self, message_id: str, chat_id: str, detected_at: int) -> None:
        message = format_unrecoverable_alert(message_id, chat_id, detected_at, mode="markdown")
        await self._client.send_message("me", message, parse_mode="Markdown")
