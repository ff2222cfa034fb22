"""Media side-store: downloads attachments and keeps them under a media root.

Downloads never block ingestion. The archive submits jobs to a small worker
pool; each finished download posts a patch back to the archive through a
callback. A failed download is final: the record keeps no media.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator, Optional

from core.chat_ids import ChatClass, classify_chat, sanitize_message_id
from core.config import MediaConfig
from core.content import CONTENT_KEY_KINDS
from core.models import MediaRecord, MessageKind
from core.ports import MediaFetcher

LOGGER = logging.getLogger(__name__)

TEMP_SUFFIX = ".part"

MIME_EXTENSIONS: dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
    "video/3gpp": ".3gp",
    "video/quicktime": ".mov",
    "video/avi": ".avi",
    "audio/mpeg": ".mp3",
    "audio/ogg": ".ogg",
    "audio/wav": ".wav",
    "audio/aac": ".aac",
    "audio/m4a": ".m4a",
    "audio/amr": ".amr",
    "audio/opus": ".opus",
    "application/pdf": ".pdf",
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "application/zip": ".zip",
    "text/plain": ".txt",
}

KIND_EXTENSIONS: dict[MessageKind, str] = {
    MessageKind.IMAGE: ".jpg",
    MessageKind.VIDEO: ".mp4",
    MessageKind.AUDIO: ".mp3",
    MessageKind.DOCUMENT: ".bin",
    MessageKind.STICKER: ".webp",
}


def resolve_extension(mime_type: Optional[str], kind: MessageKind) -> str:
    """Return a file extension from the MIME table, else the kind default."""

    if mime_type:
        # "audio/ogg; codecs=opus" -> "audio/ogg"
        base = mime_type.split(";", 1)[0].strip().lower()
        extension = MIME_EXTENSIONS.get(base)
        if extension:
            return extension
    return KIND_EXTENSIONS.get(kind, ".bin")


def attempt_budget(kind: MessageKind, is_voice_note: bool, is_status: bool) -> int:
    """Voice notes, status media and video are flaky and get more tries."""

    if is_voice_note or is_status or kind is MessageKind.VIDEO:
        return 3
    if kind is MessageKind.AUDIO:
        return 2
    return 1


def media_payload(raw_message: dict[str, Any], kind: MessageKind) -> dict[str, Any]:
    """Find the content payload that carries the attachment of a kind."""

    content = raw_message.get("message") or {}
    for key, payload in content.items():
        if CONTENT_KEY_KINDS.get(key) is kind and isinstance(payload, dict):
            return payload
    return {}


class MediaStore:
    """Downloads, stores, reads and deletes media files."""

    def __init__(
        self,
        root: str | Path,
        fetcher: Optional[MediaFetcher],
        config: MediaConfig = MediaConfig(),
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._root = Path(root)
        self._fetcher = fetcher
        self._config = config
        self._clock = clock
        self._sleep = sleep

    @property
    def root(self) -> Path:
        return self._root

    def init(self) -> None:
        self._root.mkdir(parents=True, exist_ok=True)

    async def download(self, raw_message: dict[str, Any], kind: MessageKind) -> Optional[MediaRecord]:
        """Download and persist the attachment of a raw message.

        Returns None on any failure; errors are logged, never raised.
        """

        key = raw_message.get("key") or {}
        message_id = str(key.get("id") or "")
        chat_id = key.get("remoteJid") or ""
        chat_class = classify_chat(chat_id)

        if chat_class is ChatClass.CHANNEL:
            # Channel media keys are not served to regular clients.
            LOGGER.warning("Skipping channel media download for %s (unsupported)", message_id)
            return None
        if self._fetcher is None:
            LOGGER.debug("No media fetcher configured, skipping %s", message_id)
            return None

        payload = media_payload(raw_message, kind)
        is_voice_note = kind is MessageKind.AUDIO and payload.get("ptt") is True
        attempts = attempt_budget(kind, is_voice_note, chat_class is ChatClass.STATUS)

        data: Optional[bytes] = None
        for attempt in range(1, attempts + 1):
            try:
                data = await self._fetcher.fetch(raw_message, kind)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                LOGGER.warning(
                    "Media download attempt %s/%s failed for %s: %s", attempt, attempts, message_id, exc
                )
                data = None
            if data:
                break
            if attempt < attempts:
                await self._sleep(self._config.backoff_seconds)

        if not data:
            LOGGER.error("Failed to download %s media for %s", kind.value, message_id)
            return None

        mime_type = payload.get("mimetype") or ""
        file_name = (
            f"{int(self._clock() * 1000)}_{sanitize_message_id(message_id)}"
            f"{resolve_extension(mime_type, kind)}"
        )
        try:
            self._write(file_name, data)
        except OSError as exc:
            LOGGER.error("Failed to store media for %s: %s", message_id, exc)
            return None

        return MediaRecord(
            relative_path=file_name,
            mime_type=mime_type or kind.value,
            byte_size=len(data),
            original_file_name=payload.get("fileName") or file_name,
            duration_seconds=payload.get("seconds"),
            width=payload.get("width"),
            height=payload.get("height"),
        )

    def _write(self, file_name: str, data: bytes) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        path = self._root / file_name
        tmp_path = path.with_name(path.name + TEMP_SUFFIX)
        with open(tmp_path, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)

    def path_for(self, media: MediaRecord) -> Path:
        return self._root / media.relative_path

    def read(self, media: MediaRecord) -> Optional[bytes]:
        try:
            return self.path_for(media).read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            LOGGER.error("Error reading media %s: %s", media.relative_path, exc)
            return None

    def delete(self, media: MediaRecord) -> bool:
        """Remove a media file; False when it was already gone."""

        try:
            self.path_for(media).unlink()
        except FileNotFoundError:
            return False
        return True

    def files(self) -> Iterator[Path]:
        """Yield every file under the media root, recursively."""

        if not self._root.is_dir():
            return
        for path in sorted(self._root.rglob("*")):
            if path.is_file():
                yield path

    def relative(self, path: Path) -> str:
        return path.relative_to(self._root).as_posix()

    def total_bytes(self) -> int:
        total = 0
        for path in self.files():
            try:
                total += path.stat().st_size
            except OSError:
                continue
        return total


MediaCallback = Callable[[str, MediaRecord], None]


class MediaWorkerPool:
    """Bounded pool of asyncio workers running media downloads.

    Jobs are queued by the archive; each successful download is posted back
    with on_complete(message_id, media). Queue overflow drops the job.
    """

    def __init__(self, store: MediaStore, on_complete: MediaCallback, config: MediaConfig = MediaConfig()) -> None:
        self._store = store
        self._on_complete = on_complete
        self._config = config
        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []

    def _ensure_started(self) -> bool:
        if self._workers:
            return True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        self._queue = asyncio.Queue(maxsize=self._config.queue_size)
        self._workers = [
            loop.create_task(self._worker(index)) for index in range(max(1, self._config.workers))
        ]
        return True

    def submit(self, raw_message: dict[str, Any], kind: MessageKind) -> bool:
        """Queue a download without waiting for it."""

        message_id = str((raw_message.get("key") or {}).get("id") or "")
        if not self._ensure_started():
            LOGGER.warning("No running event loop, media download skipped for %s", message_id)
            return False
        try:
            self._queue.put_nowait((message_id, raw_message, kind))
        except asyncio.QueueFull:
            LOGGER.warning("Media queue full, download dropped for %s", message_id)
            return False
        return True

    async def _worker(self, index: int) -> None:
        queue = self._queue
        if queue is None:
            return
        while True:
            message_id, raw_message, kind = await queue.get()
            try:
                media = await self._store.download(raw_message, kind)
                if media is not None:
                    self._on_complete(message_id, media)
                    LOGGER.info("Media archived for %s (%s bytes)", message_id, media.byte_size)
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("Media worker %s failed on %s", index, message_id)
            finally:
                queue.task_done()

    async def join(self) -> None:
        """Wait until every queued download has finished."""

        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers = []
        self._queue = None
