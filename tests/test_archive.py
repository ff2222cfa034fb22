from __future__ import annotations

import json
from typing import Any, Optional

from adapters.json_documents import JsonDocument, JsonDocumentStore
from core.archive import ArchiveStore
from core.media import MediaStore
from core.models import MediaRecord, MessageKind

GROUP = "123-456@g.us"
ALICE = "4915100000@s.whatsapp.net"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FlakyDocument(JsonDocument):
    """Fails the next `failures` saves with OSError."""

    def __init__(self, path, failures: int = 1) -> None:
        super().__init__(path)
        self.failures = failures

    def save(self, data: dict[str, Any]) -> None:
        if self.failures:
            self.failures -= 1
            raise OSError("disk full")
        super().save(data)


class FakePool:
    def __init__(self) -> None:
        self.jobs: list[tuple[str, MessageKind]] = []

    def submit(self, raw_message: dict[str, Any], kind: MessageKind) -> bool:
        self.jobs.append((raw_message["key"]["id"], kind))
        return True


def _raw(message_id: str, text: str = "hello", chat_id: str = GROUP, ts: int = 1_700_000_000, **key: Any) -> dict:
    return {
        "key": {"id": message_id, "remoteJid": chat_id, "participant": ALICE, **key},
        "message": {"conversation": text},
        "messageTimestamp": ts,
    }


def _store(tmp_path, clock: Optional[FakeClock] = None, pool: Optional[FakePool] = None) -> ArchiveStore:
    documents = JsonDocumentStore(tmp_path)
    documents.init()
    store = ArchiveStore(
        documents.document("messages"),
        documents.document("deleted_messages"),
        MediaStore(tmp_path / "media", None),
        media_pool=pool,
        clock=clock or FakeClock(),
    )
    store.load()
    return store


def test_archive_then_get(tmp_path) -> None:
    store = _store(tmp_path)
    assert store.archive(_raw("A", "hello world"))

    record = store.get("A")
    assert record is not None
    assert record.text == "hello world"
    assert record.chat_id == GROUP
    assert record.sender_id == ALICE
    assert record.is_group
    assert not record.deleted
    assert store.get("missing") is None


def test_archive_is_idempotent_and_immutable(tmp_path) -> None:
    store = _store(tmp_path)
    assert store.archive(_raw("A", "first"))
    assert store.archive(_raw("A", "second"))
    assert store.get("A").text == "first"
    assert store.stats()["total_messages"] == 1


def test_archive_survives_reload(tmp_path) -> None:
    store = _store(tmp_path)
    store.archive(_raw("A", "persisted"))
    reloaded = _store(tmp_path)
    assert reloaded.get("A").text == "persisted"


def test_noise_is_accepted_but_not_stored(tmp_path) -> None:
    store = _store(tmp_path)
    raw = _raw("R", "")
    raw["message"] = {"reactionMessage": {"text": "👍"}}
    assert store.archive(raw)
    assert store.get("R") is None


def test_malformed_event_returns_true_without_storing(tmp_path) -> None:
    store = _store(tmp_path)
    assert store.archive({"key": {"id": "X"}})
    assert store.records() == []


def test_media_message_is_stored_then_patched(tmp_path) -> None:
    pool = FakePool()
    store = _store(tmp_path, pool=pool)
    raw = _raw("IMG")
    raw["message"] = {"imageMessage": {"caption": "look", "mimetype": "image/jpeg"}}

    assert store.archive(raw)
    assert store.get("IMG").media is None
    assert pool.jobs == [("IMG", MessageKind.IMAGE)]

    media = MediaRecord(relative_path="1_IMG.jpg", mime_type="image/jpeg", byte_size=3, original_file_name="x.jpg")
    assert store.attach_media("IMG", media)
    assert store.get("IMG").media == media
    assert store.referenced_media() == {"1_IMG.jpg"}
    # The patch is applied once only.
    assert not store.attach_media("IMG", media)


def test_media_for_evicted_record_is_discarded(tmp_path) -> None:
    store = _store(tmp_path)
    media_dir = tmp_path / "media"
    media_dir.mkdir()
    (media_dir / "1_GONE.jpg").write_bytes(b"abc")
    media = MediaRecord(relative_path="1_GONE.jpg", mime_type="image/jpeg", byte_size=3, original_file_name="")

    assert not store.attach_media("GONE", media)
    assert not (media_dir / "1_GONE.jpg").exists()


def test_edited_wrapper_does_not_download(tmp_path) -> None:
    pool = FakePool()
    store = _store(tmp_path, pool=pool)
    raw = _raw("E1")
    raw["message"] = {"editedMessage": {"message": {"imageMessage": {"caption": "new caption"}}}}
    assert store.archive(raw)
    assert store.get("E1").is_edited
    assert pool.jobs == []


def test_mark_deleted_writes_one_deletion_record(tmp_path) -> None:
    clock = FakeClock()
    store = _store(tmp_path, clock=clock)
    store.archive(_raw("A", "secret"))
    clock.now += 60

    assert store.mark_deleted("A", GROUP)
    assert store.mark_deleted("A", GROUP)

    record = store.get("A")
    assert record.deleted
    assert record.text == "secret"
    entries = store.recent_deletions()
    assert len(entries) == 1
    assert entries[0].content == "secret"
    assert entries[0].deleted_at == int(clock.now)
    assert entries[0].media_descriptor == {"kind": "text", "media_path": None}


def test_mark_deleted_unknown_id(tmp_path) -> None:
    store = _store(tmp_path)
    assert not store.mark_deleted("nope", GROUP)
    assert store.recent_deletions() == []


def test_recent_by_chat_newest_first(tmp_path) -> None:
    store = _store(tmp_path)
    store.archive(_raw("A", "one", ts=100))
    store.archive(_raw("B", "two", ts=300))
    store.archive(_raw("C", "three", ts=200))
    store.archive(_raw("D", "other chat", chat_id="999-1@g.us", ts=400))

    recent = store.recent_by_chat(GROUP, 2)
    assert [record.id for record in recent] == ["B", "C"]
    assert [record.id for record in store.recent_by_chat(GROUP, None)] == ["B", "C", "A"]


def test_remove_keeps_deletion_log(tmp_path) -> None:
    store = _store(tmp_path)
    store.archive(_raw("A"))
    store.mark_deleted("A", GROUP)
    assert store.remove(["A", "missing"]) == 1
    assert store.get("A") is None
    assert store.deletion_for("A") is not None


def test_get_media_reads_bytes(tmp_path) -> None:
    store = _store(tmp_path)
    raw = _raw("DOC")
    raw["message"] = {"documentMessage": {"fileName": "a.pdf", "mimetype": "application/pdf"}}
    store.archive(raw)
    (tmp_path / "media").mkdir()
    (tmp_path / "media" / "1_DOC.pdf").write_bytes(b"%PDF")
    store.attach_media(
        "DOC", MediaRecord(relative_path="1_DOC.pdf", mime_type="application/pdf", byte_size=4, original_file_name="a.pdf")
    )

    media, data = store.get_media("DOC")
    assert data == b"%PDF"
    assert media.original_file_name == "a.pdf"
    assert store.media_path("DOC").endswith("1_DOC.pdf")
    assert store.stats()["media_messages"] == 1
    assert store.stats()["media_size_bytes"] == 4


def test_failed_write_is_not_reported_as_archived_on_retry(tmp_path) -> None:
    messages = FlakyDocument(tmp_path / "messages.json")
    store = ArchiveStore(messages, JsonDocument(tmp_path / "deleted_messages.json"), MediaStore(tmp_path / "media", None))

    assert not store.archive(_raw("A", "hello"))
    assert store.get("A") is None

    assert store.archive(_raw("A", "hello"))
    on_disk = json.loads((tmp_path / "messages.json").read_text(encoding="utf-8"))
    assert list(on_disk) == ["A"]


def test_failed_deletion_write_is_rolled_back(tmp_path) -> None:
    deletions = FlakyDocument(tmp_path / "deleted_messages.json")
    store = ArchiveStore(
        JsonDocument(tmp_path / "messages.json"), deletions, MediaStore(tmp_path / "media", None), clock=FakeClock()
    )
    store.archive(_raw("A", "secret"))

    assert not store.mark_deleted("A", GROUP)
    assert not store.get("A").deleted
    assert store.deletion_for("A") is None

    assert store.mark_deleted("A", GROUP)
    on_disk = json.loads((tmp_path / "deleted_messages.json").read_text(encoding="utf-8"))
    assert on_disk["A"]["content"] == "secret"
    assert store.get("A").deleted
