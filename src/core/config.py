"""Core configuration objects.

We keep config parsing outside the core, but these objects define the shape
the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Mapping, Optional

from core.chat_ids import ChatClass

HOUR = 60 * 60

DEFAULT_TTLS: dict[ChatClass, int] = {
    ChatClass.STATUS: 24 * HOUR,
    ChatClass.CHANNEL: 24 * HOUR,
    ChatClass.GROUP: 72 * HOUR,
    ChatClass.PRIVATE: 72 * HOUR,
}


class RetentionPolicy:
    """Per chat-class TTLs, shared by the retention manager and the app.

    The policy is mutable at runtime, so reads and updates go through a lock.
    A class without a TTL is never evicted.
    """

    def __init__(self, ttls: Optional[Mapping[ChatClass, int]] = None) -> None:
        self._lock = threading.Lock()
        self._ttls: dict[ChatClass, int] = dict(DEFAULT_TTLS)
        if ttls:
            self._ttls.update(ttls)

    def ttl_for(self, chat_class: ChatClass) -> Optional[int]:
        with self._lock:
            return self._ttls.get(chat_class)

    def update(self, ttls: Mapping[ChatClass, int]) -> None:
        """Merge new TTLs (seconds) into the policy."""

        for chat_class, ttl in ttls.items():
            if chat_class is ChatClass.UNKNOWN:
                raise ValueError("The unknown chat class cannot carry a TTL")
            if int(ttl) <= 0:
                raise ValueError(f"TTL for {chat_class.value} must be positive")
        with self._lock:
            self._ttls.update({chat_class: int(ttl) for chat_class, ttl in ttls.items()})

    def snapshot(self) -> dict[ChatClass, int]:
        with self._lock:
            return dict(self._ttls)

    @classmethod
    def from_hours(cls, hours: Mapping[str, float]) -> "RetentionPolicy":
        """Build a policy from a {"group": 72, ...} mapping."""

        return cls({ChatClass(name): int(float(value) * HOUR) for name, value in hours.items()})


@dataclass(frozen=True)
class MediaConfig:
    """Download settings for the media side-store."""

    backoff_seconds: float = 1.0
    workers: int = 2
    queue_size: int = 256


@dataclass(frozen=True)
class DeletionConfig:
    """Timing for deletion correlation.

    The settle delay absorbs a deletion signal that races ahead of the
    archive write; the retry delay is the single second chance.
    """

    settle_seconds: float = 1.0
    retry_seconds: float = 3.0


@dataclass(frozen=True)
class RetentionConfig:
    """Scheduling for the retention sweep."""

    sweep_interval_seconds: float = 6 * HOUR
    shutdown_timeout_seconds: float = 30.0
    context_backup_ttl_seconds: int = 7 * 24 * HOUR
    orphan_grace_seconds: float = 600.0
