from __future__ import annotations

import json
from typing import Any

from adapters.json_documents import JsonDocumentStore
from core.archive import ArchiveStore
from core.config import HOUR
from core.edits import EditCorrelator, leading_token
from core.media import MediaStore

CHAT = "4915100000@s.whatsapp.net"
BACKUP_TTL = 7 * 24 * HOUR


class FakeClock:
    def __init__(self, now: float = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _text(message_id: str, text: str, ts: int, chat_id: str = CHAT) -> dict[str, Any]:
    return {"key": {"id": message_id, "remoteJid": chat_id}, "message": {"conversation": text}, "messageTimestamp": ts}


def _edit(message_id: str, text: str, ts: int, context: Any = None) -> dict[str, Any]:
    inner: dict[str, Any] = {"extendedTextMessage": {"text": text}}
    if context is not None:
        inner["extendedTextMessage"]["contextInfo"] = context
    return {"key": {"id": message_id, "remoteJid": CHAT}, "message": {"editedMessage": {"message": inner}}, "messageTimestamp": ts}


def _setup(tmp_path, clock: FakeClock) -> tuple[ArchiveStore, EditCorrelator, JsonDocumentStore]:
    documents = JsonDocumentStore(tmp_path)
    documents.init()
    archive = ArchiveStore(
        documents.document("messages"),
        documents.document("deleted_messages"),
        MediaStore(tmp_path / "media", None),
        clock=clock,
    )
    archive.load()
    edits = EditCorrelator(
        archive,
        documents.document("edited_messages"),
        documents.document("context_backups"),
        backup_ttl_seconds=BACKUP_TTL,
        clock=clock,
    )
    edits.load()
    return archive, edits, documents


def test_leading_token() -> None:
    assert leading_token("  hello   world ") == "hello"
    assert leading_token("") == ""


def test_edit_maps_to_original_by_leading_word(tmp_path) -> None:
    clock = FakeClock()
    archive, edits, documents = _setup(tmp_path, clock)
    archive.archive(_text("A", "hello world", ts=100))
    archive.archive(_text("B", "something else", ts=110))
    archive.archive(_edit("E", "hello universe", ts=120))

    assert edits.correlate(archive.get("E")) == "A"
    assert edits.original_for("E") == "A"
    # The original keeps its content.
    assert archive.get("A").text == "hello world"
    assert documents.document("edited_messages").load() == {"E": "A"}


def test_newest_matching_candidate_wins(tmp_path) -> None:
    archive, edits, _ = _setup(tmp_path, FakeClock())
    archive.archive(_text("OLD", "hello there", ts=100))
    archive.archive(_text("NEW", "hello again", ts=200))
    archive.archive(_edit("E", "hello again!", ts=300))
    assert edits.correlate(archive.get("E")) == "NEW"


def test_scan_is_limited_to_ten_recent_messages(tmp_path) -> None:
    archive, edits, _ = _setup(tmp_path, FakeClock())
    archive.archive(_text("A", "hello world", ts=1))
    for index in range(10):
        archive.archive(_text(f"N{index}", f"filler {index}", ts=10 + index))
    archive.archive(_edit("E", "hello universe", ts=100))
    assert edits.correlate(archive.get("E")) is None


def test_edits_in_other_chats_do_not_match(tmp_path) -> None:
    archive, edits, _ = _setup(tmp_path, FakeClock())
    archive.archive(_text("A", "hello world", ts=100, chat_id="123-456@g.us"))
    archive.archive(_edit("E", "hello universe", ts=120))
    assert edits.correlate(archive.get("E")) is None


def test_reply_context_backup_and_lookup(tmp_path) -> None:
    clock = FakeClock()
    archive, edits, _ = _setup(tmp_path, clock)
    context = {"stanzaId": "Q1", "quotedMessage": {"conversation": "quoted"}}
    archive.archive(_text("A", "fine", ts=100))
    archive.archive(_edit("E", "fine then", ts=110, context=context))

    edits.correlate(archive.get("E"))

    snapshot = edits.backup_for("E")
    assert snapshot is not None
    assert snapshot.stored_at == int(clock.now)
    assert snapshot.ttl_seconds == BACKUP_TTL
    # The original has no context of its own, so the backup answers.
    assert edits.find_context("E", CHAT) == context


def test_find_context_falls_back_to_recent_quotes(tmp_path) -> None:
    archive, edits, _ = _setup(tmp_path, FakeClock())
    context = {"stanzaId": "Q9", "quotedMessage": {"conversation": "quoted"}}
    raw = _text("R", "a reply", ts=100)
    raw["message"] = {"extendedTextMessage": {"text": "a reply", "contextInfo": context}}
    archive.archive(raw)
    assert edits.find_context("UNKNOWN", CHAT) == context
    assert edits.find_context("UNKNOWN", "123-456@g.us") is None


def test_context_backups_expire(tmp_path) -> None:
    clock = FakeClock()
    archive, edits, documents = _setup(tmp_path, clock)
    context = {"stanzaId": "Q1", "quotedMessage": {"conversation": "quoted"}}
    archive.archive(_edit("E", "text", ts=100, context=context))
    edits.correlate(archive.get("E"))

    assert edits.evict_expired(clock.now + BACKUP_TTL - 1) == 0
    assert edits.evict_expired(clock.now + BACKUP_TTL + 1) == 1
    assert edits.backup_for("E") is None
    assert documents.document("context_backups").load() == {}


def test_legacy_string_backups_are_stamped_on_load(tmp_path) -> None:
    clock = FakeClock()
    documents = JsonDocumentStore(tmp_path)
    documents.init()
    documents.document("context_backups").save({"OLD": json.dumps({"stanzaId": "Q"})})
    _, edits, _ = _setup(tmp_path, clock)

    snapshot = edits.backup_for("OLD")
    assert snapshot is not None
    assert snapshot.stored_at == int(clock.now)
    assert edits.counts() == {"edit_mappings": 0, "context_backups": 1}


def test_forget_drops_mappings_of_evicted_records(tmp_path) -> None:
    archive, edits, _ = _setup(tmp_path, FakeClock())
    archive.archive(_text("A", "hello world", ts=100))
    archive.archive(_edit("E", "hello universe", ts=120))
    edits.correlate(archive.get("E"))

    edits.forget(["A"])
    assert edits.original_for("E") is None
