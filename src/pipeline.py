"""Component wiring for the archive pipeline.

build_pipeline() creates every store and correlator over one storage root
and connects them in a fixed order:
1) JSON documents and the media directory
2) Archive store, then the media worker pool posting back into it
3) Edit and deletion correlators over the archive
4) Settings (anti-delete switch, persisted retention overrides)
5) Retention manager and the processor facade

The host connection feeds Pipeline.processor and supplies the media fetcher
and the alert sink; nothing here talks to a chat network directly.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Mapping, Optional

from adapters.json_documents import JsonDocumentStore
from core.archive import ArchiveStore
from core.chat_ids import ChatClass
from core.config import HOUR, DeletionConfig, MediaConfig, RetentionConfig, RetentionPolicy
from core.deletions import DeletionCorrelator
from core.edits import EditCorrelator
from core.media import MediaStore, MediaWorkerPool
from core.ports import AlertSink, MediaFetcher
from core.processor import ArchiveProcessor
from core.retention import RetentionManager
from core.setting_store import ANTIDELETE_ENABLED, RETENTION_POLICY, SettingStore

LOGGER = logging.getLogger(__name__)


def parse_policy_hours(hours: Mapping[str, float]) -> dict[ChatClass, int]:
    """Turn {"group": 72, ...} into TTL seconds; rejects unknown names."""

    ttls: dict[ChatClass, int] = {}
    for name, value in hours.items():
        try:
            chat_class = ChatClass(str(name).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown chat class: {name}") from exc
        ttls[chat_class] = int(float(value) * HOUR)
    return ttls


def policy_as_hours(policy: RetentionPolicy) -> dict[str, float]:
    return {chat_class.value: ttl / HOUR for chat_class, ttl in policy.snapshot().items()}


@dataclass
class Pipeline:
    """Every long-lived component of one archive instance."""

    documents: JsonDocumentStore
    media_store: MediaStore
    media_pool: MediaWorkerPool
    archive: ArchiveStore
    edits: EditCorrelator
    deletions: DeletionCorrelator
    settings: SettingStore
    policy: RetentionPolicy
    retention: RetentionManager
    processor: ArchiveProcessor

    def update_policy(self, hours: Mapping[str, float]) -> dict[str, float]:
        """Apply retention overrides now and keep them for the next start."""

        self.policy.update(parse_policy_hours(hours))
        current = policy_as_hours(self.policy)
        if not self.settings.set(RETENTION_POLICY, current):
            LOGGER.warning("Retention policy applied but could not be persisted")
        return current

    def set_antidelete(self, enabled: bool) -> bool:
        return self.settings.set(ANTIDELETE_ENABLED, bool(enabled))

    def start(self) -> None:
        """Start background work; needs a running event loop."""

        self.retention.start()

    async def shutdown(self) -> None:
        await self.processor.drain()
        await self.media_pool.join()
        await self.media_pool.close()
        await self.retention.shutdown()


def build_pipeline(
    storage_root: str | Path,
    alert_sink: AlertSink,
    fetcher: Optional[MediaFetcher] = None,
    *,
    media_dir: Optional[str | Path] = None,
    policy_hours: Optional[Mapping[str, float]] = None,
    media_config: MediaConfig = MediaConfig(),
    deletion_config: DeletionConfig = DeletionConfig(),
    retention_config: RetentionConfig = RetentionConfig(),
    self_ids: Iterable[str] = (),
    clock: Callable[[], float] = time.time,
) -> Pipeline:
    """Create, load and connect all components over storage_root."""

    documents = JsonDocumentStore(storage_root)
    documents.init()

    media_store = MediaStore(
        Path(media_dir) if media_dir else documents.root / "media",
        fetcher,
        config=media_config,
        clock=clock,
    )
    media_store.init()

    self_ids = [own for own in self_ids if own]
    archive = ArchiveStore(
        documents.document("messages"),
        documents.document("deleted_messages"),
        media_store,
        self_id=self_ids[0] if self_ids else "",
        clock=clock,
    )
    archive.load()
    media_pool = MediaWorkerPool(media_store, archive.attach_media, config=media_config)
    archive.set_media_pool(media_pool)

    edits = EditCorrelator(
        archive,
        documents.document("edited_messages"),
        documents.document("context_backups"),
        backup_ttl_seconds=retention_config.context_backup_ttl_seconds,
        clock=clock,
    )
    edits.load()

    settings = SettingStore(documents.settings())
    settings.load()

    policy = RetentionPolicy()
    if policy_hours:
        policy.update(parse_policy_hours(policy_hours))
    overrides = settings.get(RETENTION_POLICY)
    if isinstance(overrides, dict):
        try:
            policy.update(parse_policy_hours(overrides))
        except (TypeError, ValueError) as exc:
            LOGGER.warning("Ignoring stored retention policy: %s", exc)

    deletions = DeletionCorrelator(
        archive,
        alert_sink,
        config=deletion_config,
        self_ids=self_ids,
        is_enabled=settings.antidelete_enabled,
        clock=clock,
    )
    retention = RetentionManager(archive, media_store, policy, edits=edits, config=retention_config, clock=clock)
    processor = ArchiveProcessor(archive, edits, deletions, clock=clock)

    LOGGER.info("Archive pipeline ready at %s", documents.root)
    return Pipeline(
        documents=documents,
        media_store=media_store,
        media_pool=media_pool,
        archive=archive,
        edits=edits,
        deletions=deletions,
        settings=settings,
        policy=policy,
        retention=retention,
        processor=processor,
    )
