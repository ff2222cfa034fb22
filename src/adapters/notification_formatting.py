"""Shared notification formatting helpers.

Keeping formatting here prevents drift between adapters and keeps alerts
consistent regardless of delivery channel.
"""

from __future__ import annotations

import html
from datetime import datetime
from typing import Iterable

from core.chat_ids import ChatClass, bare_user, classify_chat
from core.models import DeletionRecord, MessageKind, MessageRecord

DIVIDER = "──────────────"


def _format_time(epoch_seconds: int) -> str:
    return datetime.fromtimestamp(epoch_seconds).astimezone().strftime("%H:%M:%S %d-%m-%Y").strip()


def format_chat_label(chat_id: str, sender_id: str = "") -> str:
    """Return a human-friendly chat label."""

    chat_class = classify_chat(chat_id)
    if chat_class is ChatClass.GROUP:
        return f"Group: {bare_user(chat_id)}"
    if chat_class is ChatClass.PRIVATE:
        return f"Private: {bare_user(sender_id or chat_id)}"
    return bare_user(chat_id) or chat_id


def _escape(value: str, mode: str) -> str:
    if mode == "html":
        return html.escape(value)
    if mode == "markdown":
        for ch in r"*[`":
            value = value.replace(ch, f"\\{ch}")
        return value
    raise ValueError(f"Unsupported notification format: {mode}")


def _bold(label: str, mode: str) -> str:
    return f"<b>{label}</b>" if mode == "html" else f"**{label}**"


def format_deleted_alert(record: MessageRecord, chat_id: str, deleted_at: int, mode: str) -> str:
    """Create the alert body for a recovered deleted message."""

    sender = _escape(bare_user(record.participant_id or record.sender_id), mode)
    chat = _escape(format_chat_label(chat_id, record.sender_id), mode)
    content = _escape(record.text or "No text content", mode)

    lines = [
        _bold("DELETED MESSAGE DETECTED", mode),
        "",
        f"{_bold('Sender:', mode)} {sender}",
        f"{_bold('Chat:', mode)} {chat}",
        f"{_bold('Original time:', mode)} {_format_time(record.timestamp)}",
        f"{_bold('Deleted at:', mode)} {_format_time(deleted_at)}",
        DIVIDER,
        "",
        content,
    ]
    if record.kind is not MessageKind.TEXT and record.kind is not MessageKind.PROTOCOL:
        lines.extend(["", f"{_bold('Type:', mode)} {record.kind.value}"])
    lines.append(DIVIDER)
    return "\n".join(lines)


def format_unrecoverable_alert(message_id: str, chat_id: str, detected_at: int, mode: str) -> str:
    """Create the degraded alert for a deletion with no archived content."""

    lines = [
        _bold("MESSAGE DELETION DETECTED", mode),
        "",
        "A message was deleted but its content could not be recovered.",
        f"{_bold('Chat:', mode)} {_escape(format_chat_label(chat_id), mode)}",
        f"{_bold('Message ID:', mode)} {_escape(message_id, mode)}",
        f"{_bold('Detected at:', mode)} {_format_time(detected_at)}",
        DIVIDER,
        "The message was probably sent before archiving started.",
    ]
    return "\n".join(lines)


def format_media_caption(record: MessageRecord, mode: str) -> str:
    return f"{_bold('Recovered media', mode)}\nThis {record.kind.value} was deleted from the message above."


def format_missing_media(mode: str) -> str:
    return "Media file could not be recovered (it may have been removed from disk)."


def format_recent_deletions(entries: Iterable[DeletionRecord], mode: str, preview_chars: int = 100) -> str:
    """Create the recent-deletions report used by the command layer."""

    entries = list(entries)
    if not entries:
        return "No deleted messages found"

    lines = [_bold("RECENT DELETED MESSAGES", mode), ""]
    for index, entry in enumerate(entries, start=1):
        content = entry.content or "No content"
        if len(content) > preview_chars:
            content = content[:preview_chars] + "..."
        sender = _escape(bare_user(entry.sender_id), mode)
        chat = _escape(bare_user(entry.chat_id), mode)
        lines.append(f"{_bold(f'{index}.', mode)} {sender} in {chat}")
        lines.append(_format_time(entry.deleted_at))
        lines.append(_escape(content, mode))
        lines.append("")
    return "\n".join(lines).rstrip()
