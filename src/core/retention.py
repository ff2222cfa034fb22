"""Retention sweep (core domain).

A sweep evicts records older than their chat class TTL together with their
media, then removes media files no surviving record references, then drops
expired reply-context backups. Only one sweep runs at a time; a trigger that
arrives while a sweep is running is ignored.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from core.archive import ArchiveStore
from core.chat_ids import classify_chat
from core.config import RetentionConfig, RetentionPolicy
from core.edits import EditCorrelator
from core.media import MediaStore

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepReport:
    """Counts produced by one retention sweep."""

    messages: int
    media_files: int
    orphans: int
    context_snapshots: int
    errors: int
    duration_seconds: float


class RetentionManager:
    """Runs retention sweeps on demand or on a timer."""

    def __init__(
        self,
        archive: ArchiveStore,
        media_store: MediaStore,
        policy: RetentionPolicy,
        edits: Optional[EditCorrelator] = None,
        config: RetentionConfig = RetentionConfig(),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._archive = archive
        self._media_store = media_store
        self._policy = policy
        self._edits = edits
        self._config = config
        self._clock = clock
        self._state_lock = threading.Lock()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def policy(self) -> RetentionPolicy:
        return self._policy

    def sweep(self, now: Optional[float] = None) -> Optional[SweepReport]:
        """Run one sweep; returns None if another sweep is in progress."""

        with self._state_lock:
            if self._running:
                LOGGER.debug("Cleanup already running, skipping")
                return None
            self._running = True

        started = time.monotonic()
        try:
            report = self._sweep(self._clock() if now is None else now, started)
        except Exception:
            LOGGER.exception("Cleanup process failed")
            report = SweepReport(0, 0, 0, 0, 1, time.monotonic() - started)
        finally:
            with self._state_lock:
                self._running = False

        LOGGER.info(
            "Cleanup completed in %.1fs: messages=%s, media=%s, orphans=%s, context=%s, errors=%s",
            report.duration_seconds,
            report.messages,
            report.media_files,
            report.orphans,
            report.context_snapshots,
            report.errors,
        )
        return report

    def _sweep(self, now: float, started: float) -> SweepReport:
        errors = 0
        media_files = 0
        expired_ids: list[str] = []

        for record in self._archive.records():
            ttl = self._policy.ttl_for(classify_chat(record.chat_id))
            # No TTL for the class: never guess, keep the record.
            if ttl is None or record.ingested_at >= now - ttl:
                continue
            if record.media is not None:
                try:
                    if self._media_store.delete(record.media):
                        media_files += 1
                except OSError as exc:
                    errors += 1
                    LOGGER.error("Error deleting media file %s: %s", record.media.relative_path, exc)
            expired_ids.append(record.id)

        removed = self._archive.remove(expired_ids)
        if self._edits is not None:
            self._edits.forget(expired_ids)

        orphans, orphan_errors = self._remove_orphans()
        errors += orphan_errors

        context_snapshots = 0
        if self._edits is not None:
            try:
                context_snapshots = self._edits.evict_expired(now)
            except Exception:
                errors += 1
                LOGGER.exception("Context backup cleanup failed")

        return SweepReport(
            messages=removed,
            media_files=media_files,
            orphans=orphans,
            context_snapshots=context_snapshots,
            errors=errors,
            duration_seconds=time.monotonic() - started,
        )

    def _remove_orphans(self) -> tuple[int, int]:
        # Files younger than the grace period may belong to a download that
        # is still being written or not yet attached to its record.
        cutoff = time.time() - self._config.orphan_grace_seconds
        referenced = self._archive.referenced_media()
        orphans = 0
        errors = 0
        for path in list(self._media_store.files()):
            if self._media_store.relative(path) in referenced:
                continue
            try:
                if path.stat().st_mtime > cutoff:
                    continue
                path.unlink()
                orphans += 1
            except FileNotFoundError:
                continue
            except OSError as exc:
                errors += 1
                LOGGER.debug("Error deleting orphaned file %s: %s", path, exc)
        return orphans, errors

    async def _run_periodically(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            # Off the loop so ingestion and deletion timers keep running.
            await asyncio.to_thread(self.sweep)

    def start(self) -> None:
        """Schedule sweeps every sweep_interval_seconds on the running loop."""

        if self._task is not None and not self._task.done():
            self._task.cancel()
        interval = self._config.sweep_interval_seconds
        self._task = asyncio.get_running_loop().create_task(self._run_periodically(interval))
        LOGGER.info("Cleanup scheduler started (every %.1f hours)", interval / 3600)

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
            LOGGER.info("Cleanup scheduler stopped")

    async def shutdown(self, timeout: Optional[float] = None) -> bool:
        """Stop the scheduler and wait (bounded) for a running sweep.

        Returns True when no sweep is running anymore.
        """

        self.stop()
        limit = self._config.shutdown_timeout_seconds if timeout is None else timeout
        waited = 0.0
        while self._running and waited < limit:
            await asyncio.sleep(1.0)
            waited += 1.0
        if self._running:
            LOGGER.warning("Cleanup still running after %.0fs, shutting down anyway", limit)
            return False
        LOGGER.info("Cleanup manager shutdown")
        return True
