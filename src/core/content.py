"""Raw message parsing: kind selection, text extraction and noise filtering.

Raw messages arrive as the chat network delivers them: a ``key`` block with
routing ids and a ``message`` block mapping content keys (``conversation``,
``imageMessage``, ``editedMessage``...) to payloads. A message may carry
several content keys at once, so the kind is picked with a fixed priority
list and each kind has its own text extractor.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Optional

from core.chat_ids import ChatClass, classify_chat
from core.models import MessageKind

EDITED_KEY = "editedMessage"
PROTOCOL_KEY = "protocolMessage"

CONTENT_KEY_KINDS: dict[str, MessageKind] = {
    "audioMessage": MessageKind.AUDIO,
    "videoMessage": MessageKind.VIDEO,
    "imageMessage": MessageKind.IMAGE,
    "documentMessage": MessageKind.DOCUMENT,
    "stickerMessage": MessageKind.STICKER,
    "extendedTextMessage": MessageKind.TEXT,
    "conversation": MessageKind.TEXT,
    PROTOCOL_KEY: MessageKind.PROTOCOL,
}

# Highest priority first. Edited wrappers legitimately carry several keys.
PRIORITY_KEYS = (
    "audioMessage",
    "videoMessage",
    "imageMessage",
    "documentMessage",
    "stickerMessage",
    "extendedTextMessage",
    "conversation",
    PROTOCOL_KEY,
)

SYSTEM_KEYS = frozenset({"reactionMessage", "pollUpdateMessage", "receiptMessage"})

IGNORED_PROTOCOL_TYPES = frozenset(
    {
        "INITIAL_SECURITY_NOTIFICATION_SETTING_SYNC",
        "APP_STATE_SYNC_KEY_SHARE",
        "APP_STATE_SYNC_KEY_REQUEST",
        "PEER_DATA_OPERATION_REQUEST_RESPONSE_MESSAGE",
        "HISTORY_SYNC_NOTIFICATION",
        "SESSION_EXTENSION",
        "EPHEMERAL_SETTING",
    }
)

# Numeric protocol discriminators seen on the wire, mapped to their names.
PROTOCOL_TYPE_NAMES: dict[int, str] = {
    0: "REVOKE",
    3: "EPHEMERAL_SETTING",
    5: "HISTORY_SYNC_NOTIFICATION",
    6: "APP_STATE_SYNC_KEY_SHARE",
    7: "APP_STATE_SYNC_KEY_REQUEST",
    9: "INITIAL_SECURITY_NOTIFICATION_SETTING_SYNC",
    14: "MESSAGE_EDIT",
    17: "PEER_DATA_OPERATION_REQUEST_RESPONSE_MESSAGE",
}


@dataclass(frozen=True)
class RawMessage:
    """Routing fields pulled out of a raw message event."""

    id: str
    chat_id: str
    sender_id: str
    participant_id: str
    from_self: bool
    is_group: bool
    is_business: bool
    timestamp: int
    content: dict[str, Any]


@dataclass(frozen=True)
class ParsedContent:
    """Result of kind selection and text extraction."""

    kind: MessageKind
    content_key: str
    payload: Any
    text: str
    is_edited: bool
    is_voice_note: bool
    protocol_type: Optional[str]
    content_kinds: tuple[str, ...]


def parse_raw_message(raw: dict[str, Any], self_id: str = "") -> Optional[RawMessage]:
    """Resolve chat, sender and participant ids from a raw message.

    Returns None when the event carries no key or no content.
    """

    key = raw.get("key") or {}
    message_id = key.get("id")
    remote_jid = key.get("remoteJid")
    content = raw.get("message")
    if not message_id or not remote_jid or not isinstance(content, dict) or not content:
        return None

    from_self = bool(key.get("fromMe"))
    sender_pn = key.get("senderPn")
    # Business accounts address chats by an opaque lid; the phone number
    # form is the stable id.
    is_business = bool(sender_pn) and remote_jid.endswith("@lid")
    chat_id = sender_pn if is_business else remote_jid
    chat_class = classify_chat(remote_jid)
    is_group = chat_class is ChatClass.GROUP

    if from_self:
        sender_id = self_id or remote_jid
    elif is_business:
        sender_id = sender_pn
    elif chat_class in {ChatClass.GROUP, ChatClass.STATUS}:
        sender_id = (
            key.get("participant")
            or key.get("participantPn")
            or key.get("participantLid")
            or remote_jid
        )
    else:
        sender_id = remote_jid

    return RawMessage(
        id=str(message_id),
        chat_id=chat_id,
        sender_id=sender_id,
        participant_id=sender_id,
        from_self=from_self,
        is_group=is_group,
        is_business=is_business,
        timestamp=_coerce_timestamp(raw.get("messageTimestamp")),
        content=content,
    )


def _coerce_timestamp(value: Any) -> int:
    # Protobuf longs sometimes arrive as {"low": .., "high": ..} objects.
    if isinstance(value, dict):
        value = value.get("low")
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _text_of(payload: Any) -> str:
    """Generic fallback chain: string payload, then .text, then .caption."""

    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict):
        for field_name in ("text", "caption"):
            value = payload.get(field_name)
            if isinstance(value, str) and value:
                return value
    return ""


def _extract_text(payload: Any) -> str:
    return _text_of(payload)


def _extract_caption(payload: Any) -> str:
    if isinstance(payload, dict):
        return payload.get("caption") or ""
    return ""


def _extract_nothing(payload: Any) -> str:
    return ""


EXTRACTORS: dict[MessageKind, Callable[[Any], str]] = {
    MessageKind.TEXT: _extract_text,
    MessageKind.IMAGE: _extract_caption,
    MessageKind.VIDEO: _extract_caption,
    MessageKind.DOCUMENT: _extract_caption,
    MessageKind.AUDIO: _extract_nothing,
    MessageKind.STICKER: _extract_nothing,
    MessageKind.PROTOCOL: _extract_nothing,
}


def unwrap_edited(content: dict[str, Any]) -> Optional[dict[str, Any]]:
    """Return the inner content of an edited wrapper, if present."""

    wrapper = content.get(EDITED_KEY)
    if not isinstance(wrapper, dict):
        return None
    inner = wrapper.get("message")
    if not isinstance(inner, dict):
        return None
    # Updates re-wrapped by the connection layer can nest one more level.
    nested = inner.get(EDITED_KEY)
    if isinstance(nested, dict) and isinstance(nested.get("message"), dict):
        inner = nested["message"]
    return inner


def select_content_key(content: dict[str, Any]) -> str:
    """Pick the content key that decides the message kind."""

    keys = list(content.keys())
    if len(keys) == 1:
        return keys[0]
    for key in PRIORITY_KEYS:
        if key in content:
            return key
    if EDITED_KEY in content:
        return EDITED_KEY
    return keys[0]


def protocol_type_name(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    value = payload.get("type")
    if isinstance(value, int):
        return PROTOCOL_TYPE_NAMES.get(value, str(value))
    if isinstance(value, str):
        return value
    return None


def parse_content(content: dict[str, Any]) -> Optional[ParsedContent]:
    """Classify a content block and extract its text.

    Returns None when no known kind can be selected (reactions, receipts
    and other keys that carry no archivable content).
    """

    content_kinds = tuple(content.keys())
    is_edited = EDITED_KEY in content
    selected = select_content_key(content)
    payload = content.get(selected)
    source = content

    if selected == EDITED_KEY:
        inner = unwrap_edited(content)
        if not inner:
            return None
        source = inner
        selected = select_content_key(inner)
        payload = inner.get(selected)

    kind = CONTENT_KEY_KINDS.get(selected)
    text = EXTRACTORS[kind](payload) if kind else ""

    if not text and is_edited and source is content:
        inner = unwrap_edited(content)
        if inner:
            for inner_payload in inner.values():
                text = _text_of(inner_payload)
                if text:
                    break

    if not text:
        for key, sibling in content.items():
            if key == selected or key == EDITED_KEY:
                continue
            text = _text_of(sibling)
            if text:
                break

    if kind is None:
        if selected in SYSTEM_KEYS or not text:
            return None
        # Unknown carrier with usable text (e.g. templated replies).
        kind = MessageKind.TEXT

    is_voice_note = kind is MessageKind.AUDIO and isinstance(payload, dict) and payload.get("ptt") is True
    return ParsedContent(
        kind=kind,
        content_key=selected,
        payload=payload,
        text=text,
        is_edited=is_edited,
        is_voice_note=is_voice_note,
        protocol_type=protocol_type_name(payload) if kind is MessageKind.PROTOCOL else None,
        content_kinds=content_kinds,
    )


def is_noise(parsed: Optional[ParsedContent], chat_id: str) -> bool:
    """Return True for messages that are not worth archiving.

    Revoke notifications are protocol messages but are kept: deletion
    correlation needs them.
    """

    if parsed is None:
        return True
    if parsed.content_key in SYSTEM_KEYS:
        return True
    has_text = bool(parsed.text.strip())
    has_media = parsed.kind.has_media and not parsed.is_edited
    if parsed.kind is MessageKind.PROTOCOL:
        return parsed.protocol_type in IGNORED_PROTOCOL_TYPES
    if classify_chat(chat_id) is ChatClass.CHANNEL and not has_text and not has_media:
        return True
    return not has_text and not has_media


def extract_reply_context(content: dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    """Return (serialized contextInfo, quoted message id) for a content block."""

    candidates = list(content.values())
    inner = unwrap_edited(content)
    if inner:
        candidates.extend(inner.values())
    for payload in candidates:
        if not isinstance(payload, dict):
            continue
        context = payload.get("contextInfo")
        if not context:
            continue
        try:
            serialized = json.dumps(context, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return None, None
        quoted_id = context.get("stanzaId") if isinstance(context, dict) else None
        return serialized, quoted_id
    return None, None
