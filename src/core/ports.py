"""Ports (interfaces) used by the core archive.

Ports define the minimal contracts for persistence, media retrieval and
alert delivery so that the core can be reused with different backends and
chat network clients.
"""

from __future__ import annotations

from typing import Any, Iterator, Optional, Protocol

from core.models import MessageKind, MessageRecord


class DocumentPort(Protocol):
    """One durable JSON object (a logical table)."""

    def load(self) -> dict[str, Any]:
        ...

    def save(self, data: dict[str, Any]) -> None:
        ...


class KeyedDocumentsPort(Protocol):
    """A directory of documents, one per key."""

    def load_all(self) -> dict[str, Any]:
        ...

    def save(self, key: str, value: Any) -> None:
        ...

    def delete(self, key: str) -> bool:
        ...


class MediaFetcher(Protocol):
    """Downloads the bytes of an attachment from the chat network."""

    async def fetch(self, raw_message: dict[str, Any], kind: MessageKind) -> Optional[bytes]:
        ...


class AlertSink(Protocol):
    """Delivers deletion alerts to the bot owner."""

    async def send_deleted(
        self, record: MessageRecord, chat_id: str, media_path: Optional[str], deleted_at: int
    ) -> None:
        ...

    async def send_unrecoverable(self, message_id: str, chat_id: str, detected_at: int) -> None:
        ...


class ArchiveReader(Protocol):
    """Read side of the archive used by the correlators."""

    def get(self, message_id: str) -> Optional[MessageRecord]:
        ...

    def recent_by_chat(self, chat_id: str, limit: Optional[int]) -> Iterator[MessageRecord]:
        ...

    def mark_deleted(self, message_id: str, chat_id: str) -> bool:
        ...

    def media_path(self, message_id: str) -> Optional[str]:
        ...
