"""Telegram Bot API alert adapter.

Uses the Bot API for delivery so alerts can be routed via a bot chat.
"""

from __future__ import annotations

import json
import logging
import mimetypes
import os
import urllib.error
import urllib.request
import uuid
from typing import Optional

from adapters.notification_formatting import (
    format_deleted_alert,
    format_media_caption,
    format_missing_media,
    format_unrecoverable_alert,
)
from core.models import MessageRecord

LOGGER = logging.getLogger(__name__)


class TelegramBotAlertSink:
    """Alert sink that sends deletion alerts via the Telegram Bot API."""

    def __init__(self, bot_token: str, chat_id: str, timeout: float = 10.0) -> None:
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._timeout = timeout

    def _endpoint(self, method: str) -> str:
        # The Bot API endpoint is deterministic and derived from the token.
        return f"https://api.telegram.org/bot{self._bot_token}/{method}"

    def _post(self, request: urllib.request.Request) -> None:
        # Blocking on purpose: alerts are rare and the adapter boundary makes
        # it easy to swap for an async client later.
        try:
            with urllib.request.urlopen(request, timeout=self._timeout):
                pass
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            raise RuntimeError(f"Bot API error {e.code}: {body}") from e

    def send_text(self, text: str) -> None:
        payload = {
            "chat_id": self._chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(self._endpoint("sendMessage"), data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        self._post(request)

    def send_document(self, path: str, caption: str) -> None:
        boundary = uuid.uuid4().hex
        body = _multipart(
            boundary,
            fields={"chat_id": str(self._chat_id), "caption": caption, "parse_mode": "HTML"},
            file_field="document",
            path=path,
        )
        request = urllib.request.Request(self._endpoint("sendDocument"), data=body, method="POST")
        request.add_header("Content-Type", f"multipart/form-data; boundary={boundary}")
        self._post(request)

    async def send_deleted(
        self, record: MessageRecord, chat_id: str, media_path: Optional[str], deleted_at: int
    ) -> None:
        self.send_text(format_deleted_alert(record, chat_id, deleted_at, mode="html"))
        if not record.kind.has_media:
            return
        if not media_path:
            self.send_text(format_missing_media(mode="html"))
            return
        self.send_document(media_path, format_media_caption(record, mode="html"))
        LOGGER.info("Sent recovered %s for %s via bot", record.kind.value, record.id)

    async def send_unrecoverable(self, message_id: str, chat_id: str, detected_at: int) -> None:
        self.send_text(format_unrecoverable_alert(message_id, chat_id, detected_at, mode="html"))


def _multipart(boundary: str, fields: dict[str, str], file_field: str, path: str) -> bytes:
    """Encode form fields and one file as multipart/form-data."""

    parts: list[bytes] = []
    for name, value in fields.items():
        parts.append(
            f'--{boundary}\r\nContent-Disposition: form-data; name="{name}"\r\n\r\n{value}\r\n'.encode("utf-8")
        )
    filename = os.path.basename(path)
    content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
    with open(path, "rb") as handle:
        payload = handle.read()
    parts.append(
        (
            f'--{boundary}\r\nContent-Disposition: form-data; name="{file_field}"; filename="{filename}"\r\n'
            f"Content-Type: {content_type}\r\n\r\n"
        ).encode("utf-8")
        + payload
        + b"\r\n"
    )
    parts.append(f"--{boundary}--\r\n".encode("utf-8"))
    return b"".join(parts)
