"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to the chat network's raw payloads. Records are persisted as plain
JSON objects, so each one knows how to convert itself to and from a dict.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Optional


class MessageKind(str, Enum):
    """Closed set of archived message kinds."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    STICKER = "sticker"
    PROTOCOL = "protocol"

    @property
    def has_media(self) -> bool:
        return self in MEDIA_KINDS


MEDIA_KINDS = frozenset(
    {
        MessageKind.IMAGE,
        MessageKind.VIDEO,
        MessageKind.AUDIO,
        MessageKind.DOCUMENT,
        MessageKind.STICKER,
    }
)


@dataclass(frozen=True)
class MediaRecord:
    """A downloaded attachment stored under the media root."""

    relative_path: str
    mime_type: str
    byte_size: int
    original_file_name: str
    duration_seconds: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MediaRecord":
        return cls(
            relative_path=data["relative_path"],
            mime_type=data.get("mime_type") or "",
            byte_size=int(data.get("byte_size") or 0),
            original_file_name=data.get("original_file_name") or "",
            duration_seconds=data.get("duration_seconds"),
            width=data.get("width"),
            height=data.get("height"),
        )


@dataclass(frozen=True)
class MessageRecord:
    """Archived representation of one observed message.

    Content is immutable once archived. The only later changes are the media
    patch after a background download and the deleted flag.
    """

    id: str
    chat_id: str
    sender_id: str
    participant_id: str
    kind: MessageKind
    text: str
    timestamp: int
    ingested_at: int
    from_self: bool = False
    is_group: bool = False
    is_business: bool = False
    is_voice_note: bool = False
    is_edited: bool = False
    deleted: bool = False
    media: Optional[MediaRecord] = None
    context_snapshot: Optional[str] = None
    quoted_original_id: Optional[str] = None
    content_kinds: tuple[str, ...] = field(default_factory=tuple)

    def with_media(self, media: MediaRecord) -> "MessageRecord":
        return replace(self, media=media)

    def as_deleted(self) -> "MessageRecord":
        return replace(self, deleted=True)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["media"] = self.media.to_dict() if self.media else None
        data["content_kinds"] = list(self.content_kinds)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MessageRecord":
        media = data.get("media")
        return cls(
            id=data["id"],
            chat_id=data.get("chat_id") or "",
            sender_id=data.get("sender_id") or "",
            participant_id=data.get("participant_id") or "",
            kind=MessageKind(data.get("kind") or MessageKind.TEXT.value),
            text=data.get("text") or "",
            timestamp=int(data.get("timestamp") or 0),
            ingested_at=int(data.get("ingested_at") or 0),
            from_self=bool(data.get("from_self")),
            is_group=bool(data.get("is_group")),
            is_business=bool(data.get("is_business")),
            is_voice_note=bool(data.get("is_voice_note")),
            is_edited=bool(data.get("is_edited")),
            deleted=bool(data.get("deleted")),
            media=MediaRecord.from_dict(media) if media else None,
            context_snapshot=data.get("context_snapshot"),
            quoted_original_id=data.get("quoted_original_id"),
            content_kinds=tuple(data.get("content_kinds") or ()),
        )


@dataclass(frozen=True)
class DeletionRecord:
    """Append-only snapshot written when a deletion is correlated."""

    original_id: str
    chat_id: str
    sender_id: str
    content: str
    media_descriptor: dict[str, Any]
    deleted_at: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeletionRecord":
        return cls(
            original_id=data["original_id"],
            chat_id=data.get("chat_id") or "",
            sender_id=data.get("sender_id") or "",
            content=data.get("content") or "",
            media_descriptor=dict(data.get("media_descriptor") or {}),
            deleted_at=int(data.get("deleted_at") or 0),
        )


@dataclass(frozen=True)
class ContextSnapshot:
    """Serialized reply context kept for an edited message."""

    message_id: str
    context: str
    stored_at: int
    ttl_seconds: int

    def is_expired(self, now: float) -> bool:
        return self.stored_at + self.ttl_seconds < now

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(
        cls, message_id: str, data: Any, default_ttl: int, loaded_at: int
    ) -> "ContextSnapshot":
        # Older documents stored the bare context string with no timestamp;
        # those are stamped with the load time so they age out normally.
        if isinstance(data, str):
            return cls(message_id=message_id, context=data, stored_at=loaded_at, ttl_seconds=default_ttl)
        return cls(
            message_id=message_id,
            context=data.get("context") or "",
            stored_at=int(data.get("stored_at") or loaded_at),
            ttl_seconds=int(data.get("ttl_seconds") or default_ttl),
        )


@dataclass(frozen=True)
class DeletionSignal:
    """Canonical form of every upstream deletion signal shape."""

    message_id: str
    chat_id: str
    source: str

