"""Helpers for working with chat and message identifiers."""

from __future__ import annotations

import re
from enum import Enum
from typing import Iterable

STATUS_CHAT_ID = "status@broadcast"
GROUP_SUFFIX = "@g.us"
USER_SUFFIXES = ("@s.whatsapp.net", "@lid")
CHANNEL_MARKERS = ("@newsletter", "@broadcast", "channel")


class ChatClass(str, Enum):
    """Conversation classes that drive alerting and retention policy."""

    STATUS = "status"
    CHANNEL = "channel"
    GROUP = "group"
    PRIVATE = "private"
    UNKNOWN = "unknown"


def classify_chat(chat_id: str | None) -> ChatClass:
    """Return the chat class for a chat id."""

    if not chat_id:
        return ChatClass.UNKNOWN
    if chat_id == STATUS_CHAT_ID:
        return ChatClass.STATUS
    # Broadcast markers must be checked before the user suffixes: a broadcast
    # list id is otherwise indistinguishable from a plain user id.
    if any(marker in chat_id for marker in CHANNEL_MARKERS):
        return ChatClass.CHANNEL
    if chat_id.endswith(GROUP_SUFFIX):
        return ChatClass.GROUP
    if chat_id.endswith(USER_SUFFIXES):
        return ChatClass.PRIVATE
    return ChatClass.UNKNOWN


def is_excluded_from_alerts(chat_id: str | None) -> bool:
    """Status updates and channels never produce deletion alerts."""

    return classify_chat(chat_id) in {ChatClass.STATUS, ChatClass.CHANNEL}


def bare_user(jid: str | None) -> str:
    """Return the user part of a jid, without server or device suffix."""

    if not jid:
        return ""
    user = jid.split("@", 1)[0]
    return user.split(":", 1)[0]


def is_likely_self_chat(chat_id: str | None, self_ids: Iterable[str]) -> bool:
    """Check whether a chat is the bot's own chat (notes to self)."""

    if not chat_id or classify_chat(chat_id) is not ChatClass.PRIVATE:
        return False
    chat_user = bare_user(chat_id)
    return any(chat_user == bare_user(own) for own in self_ids if own)


def sanitize_message_id(message_id: str) -> str:
    """Make a message id safe for use inside a file name."""

    return re.sub(r"[^a-zA-Z0-9]", "_", message_id)
