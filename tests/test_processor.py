from __future__ import annotations

import asyncio
from typing import Any, Optional

from adapters.json_documents import JsonDocumentStore
from core.archive import ArchiveStore
from core.config import HOUR, DeletionConfig
from core.deletions import DeletionCorrelator
from core.edits import EditCorrelator
from core.media import MediaStore
from core.models import MessageRecord
from core.processor import ArchiveProcessor

CHAT = "4915100000@s.whatsapp.net"


class FakeAlertSink:
    def __init__(self) -> None:
        self.deleted: list[str] = []
        self.unrecoverable: list[str] = []

    async def send_deleted(self, record: MessageRecord, chat_id: str, media_path: Optional[str], deleted_at: int) -> None:
        self.deleted.append(record.id)

    async def send_unrecoverable(self, message_id: str, chat_id: str, detected_at: int) -> None:
        self.unrecoverable.append(message_id)


async def _no_sleep(delay: float) -> None:
    return None


def _setup(tmp_path) -> tuple[ArchiveProcessor, ArchiveStore, EditCorrelator, FakeAlertSink]:
    documents = JsonDocumentStore(tmp_path)
    documents.init()
    clock = lambda: 1_700_000_000
    archive = ArchiveStore(
        documents.document("messages"), documents.document("deleted_messages"), MediaStore(tmp_path / "media", None), clock=clock
    )
    edits = EditCorrelator(
        archive, documents.document("edited_messages"), documents.document("context_backups"), 7 * 24 * HOUR, clock=clock
    )
    sink = FakeAlertSink()
    deletions = DeletionCorrelator(archive, sink, config=DeletionConfig(), sleep=_no_sleep, clock=clock)
    return ArchiveProcessor(archive, edits, deletions, clock=clock), archive, edits, sink


def _text(message_id: str, text: str) -> dict[str, Any]:
    return {"key": {"id": message_id, "remoteJid": CHAT}, "message": {"conversation": text}, "messageTimestamp": 100}


def test_handle_messages_archives_batch_in_order(tmp_path) -> None:
    processor, archive, _, _ = _setup(tmp_path)
    handled = asyncio.run(processor.handle_messages([_text("A", "one"), {"broken": True}, _text("B", "two")]))
    assert handled == 3
    assert archive.get("A").text == "one"
    assert archive.get("B").text == "two"


def test_edited_message_in_batch_is_correlated(tmp_path) -> None:
    processor, archive, edits, _ = _setup(tmp_path)
    edited = {
        "key": {"id": "E", "remoteJid": CHAT},
        "message": {"editedMessage": {"message": {"conversation": "hello universe"}}},
        "messageTimestamp": 200,
    }
    asyncio.run(processor.handle_messages([_text("A", "hello world"), edited]))
    assert edits.original_for("E") == "A"


def test_update_with_new_content_is_archived_as_edit(tmp_path) -> None:
    processor, archive, edits, _ = _setup(tmp_path)
    asyncio.run(processor.handle_messages([_text("A", "hello world")]))

    update = {"key": {"id": "A", "remoteJid": CHAT}, "update": {"message": {"conversation": "hello universe"}}}
    tasks = asyncio.run(processor.handle_updates([update]))

    assert tasks == []
    assert archive.get("A").text == "hello world"
    edit_id = "A_edit_1700000000"
    edit = archive.get(edit_id)
    assert edit is not None
    assert edit.is_edited
    assert edit.text == "hello universe"
    assert edits.original_for(edit_id) == "A"


def test_deletion_update_alerts_and_marks(tmp_path) -> None:
    processor, archive, _, sink = _setup(tmp_path)

    async def scenario() -> None:
        await processor.handle_messages([_text("A", "secret")])
        tasks = await processor.handle_updates(
            [{"key": {"id": "A", "remoteJid": CHAT}, "update": {"messageStubType": 68}}]
        )
        assert len(tasks) == 1
        await processor.drain()

    asyncio.run(scenario())

    assert sink.deleted == ["A"]
    assert archive.get("A").deleted
    assert archive.deletion_for("A").content == "secret"


def test_unrelated_updates_are_ignored(tmp_path) -> None:
    processor, archive, _, sink = _setup(tmp_path)
    tasks = asyncio.run(processor.handle_updates([{"key": {"id": "A", "remoteJid": CHAT}, "update": {"status": 4}}]))
    assert tasks == []
    assert archive.records() == []
    assert sink.deleted == [] and sink.unrecoverable == []


def test_two_edits_in_the_same_second_are_both_archived(tmp_path) -> None:
    processor, archive, edits, _ = _setup(tmp_path)
    asyncio.run(processor.handle_messages([_text("A", "hello world")]))

    updates = [
        {"key": {"id": "A", "remoteJid": CHAT}, "update": {"message": {"conversation": "hello universe"}}},
        {"key": {"id": "A", "remoteJid": CHAT}, "update": {"message": {"conversation": "hello galaxy"}}},
    ]
    asyncio.run(processor.handle_updates(updates))

    assert archive.get("A_edit_1700000000").text == "hello universe"
    assert archive.get("A_edit_1700000000_1").text == "hello galaxy"
    assert edits.original_for("A_edit_1700000000_1") == "A"


def test_redelivered_edit_is_not_archived_twice(tmp_path) -> None:
    processor, archive, _, _ = _setup(tmp_path)
    asyncio.run(processor.handle_messages([_text("A", "hello world")]))

    update = {"key": {"id": "A", "remoteJid": CHAT}, "update": {"message": {"conversation": "hello universe"}}}
    asyncio.run(processor.handle_updates([update, update]))

    assert sorted(record.id for record in archive.records()) == ["A", "A_edit_1700000000"]


def test_failed_write_is_not_counted_as_handled(tmp_path) -> None:
    processor, archive, _, _ = _setup(tmp_path)
    # A directory where the document file should be makes every save fail.
    (tmp_path / "messages.json").unlink(missing_ok=True)
    (tmp_path / "messages.json").mkdir()

    handled = asyncio.run(processor.handle_messages([_text("A", "one")]))

    assert handled == 0
    assert archive.get("A") is None
