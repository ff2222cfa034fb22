"""Alert adapter that writes alerts to the log.

Used when no chat relay is configured and by offline commands that build
the pipeline without a network client.
"""

from __future__ import annotations

import logging
from typing import Optional

from adapters.notification_formatting import format_deleted_alert, format_unrecoverable_alert
from core.models import MessageRecord

LOGGER = logging.getLogger(__name__)


class LogAlertSink:
    def __init__(self, logger: logging.Logger = LOGGER) -> None:
        self._logger = logger

    async def send_deleted(
        self, record: MessageRecord, chat_id: str, media_path: Optional[str], deleted_at: int
    ) -> None:
        self._logger.warning("%s", format_deleted_alert(record, chat_id, deleted_at, mode="markdown"))
        if media_path:
            self._logger.warning("Recovered media: %s", media_path)

    async def send_unrecoverable(self, message_id: str, chat_id: str, detected_at: int) -> None:
        self._logger.warning("%s", format_unrecoverable_alert(message_id, chat_id, detected_at, mode="markdown"))
