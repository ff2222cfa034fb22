from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest

from core.chat_ids import ChatClass
from core.config import DeletionConfig, HOUR
from core.deletions import DeletionOutcome
from core.models import DeletionSignal, MessageKind, MessageRecord
from frontend.state import load_snapshot
from pipeline import build_pipeline


class FakeAlertSink:
    def __init__(self) -> None:
        self.deleted: list[tuple[str, Optional[str]]] = []

    async def send_deleted(self, record: MessageRecord, chat_id: str, media_path: Optional[str], deleted_at: int) -> None:
        self.deleted.append((record.id, media_path))

    async def send_unrecoverable(self, message_id: str, chat_id: str, detected_at: int) -> None:
        return None


class FakeFetcher:
    async def fetch(self, raw_message: dict[str, Any], kind: MessageKind) -> Optional[bytes]:
        return b"\xff\xd8jpeg"


def _build(tmp_path, sink: FakeAlertSink, **kwargs: Any):
    return build_pipeline(
        tmp_path / "data",
        sink,
        FakeFetcher(),
        deletion_config=DeletionConfig(settle_seconds=0, retry_seconds=0),
        **kwargs,
    )


def test_media_is_downloaded_and_recovered_on_deletion(tmp_path) -> None:
    sink = FakeAlertSink()
    pipeline = _build(tmp_path, sink)
    raw = {
        "key": {"id": "IMG1", "remoteJid": "123-456@g.us", "participant": "4915100000@s.whatsapp.net"},
        "message": {"imageMessage": {"caption": "holiday", "mimetype": "image/jpeg"}},
        "messageTimestamp": 1_700_000_000,
    }

    async def scenario() -> None:
        await pipeline.processor.handle_messages([raw])
        await pipeline.media_pool.join()
        await pipeline.processor.handle_updates(
            [{"key": {"id": "IMG1", "remoteJid": "123-456@g.us"}, "update": {"messageStubType": 68}}]
        )
        await pipeline.shutdown()

    asyncio.run(scenario())

    record = pipeline.archive.get("IMG1")
    assert record.media is not None
    assert record.deleted
    assert sink.deleted == [("IMG1", pipeline.archive.media_path("IMG1"))]
    assert sink.deleted[0][1].endswith(".jpg")


def test_policy_overrides_are_persisted(tmp_path) -> None:
    pipeline = _build(tmp_path, FakeAlertSink(), policy_hours={"group": 48})
    assert pipeline.policy.ttl_for(ChatClass.GROUP) == 48 * HOUR

    current = pipeline.update_policy({"private": 12})
    assert current["private"] == 12
    assert current["group"] == 48

    reopened = _build(tmp_path, FakeAlertSink())
    assert reopened.policy.ttl_for(ChatClass.PRIVATE) == 12 * HOUR
    assert reopened.policy.ttl_for(ChatClass.GROUP) == 48 * HOUR


def test_policy_rejects_unknown_class(tmp_path) -> None:
    pipeline = _build(tmp_path, FakeAlertSink())
    with pytest.raises(ValueError):
        pipeline.update_policy({"unknown": 1})
    with pytest.raises(ValueError):
        pipeline.update_policy({"forums": 1})


def test_antidelete_switch_disables_alerts(tmp_path) -> None:
    sink = FakeAlertSink()
    pipeline = _build(tmp_path, sink)
    assert pipeline.set_antidelete(False)

    outcome = asyncio.run(pipeline.deletions.handle(DeletionSignal("A", "123-456@g.us", "stub_68")))
    assert outcome is DeletionOutcome.DISABLED
    assert not _build(tmp_path, sink).settings.antidelete_enabled()


def test_browser_snapshot_reads_documents(tmp_path) -> None:
    pipeline = _build(tmp_path, FakeAlertSink())
    pipeline.archive.archive(
        {"key": {"id": "A", "remoteJid": "123-456@g.us"}, "message": {"conversation": "hi"}, "messageTimestamp": 5}
    )
    pipeline.archive.mark_deleted("A", "123-456@g.us")
    pipeline.set_antidelete(False)
    (tmp_path / "data" / "edited_messages.json").write_text("{broken", encoding="utf-8")

    snapshot = load_snapshot(tmp_path / "data")

    assert [record.id for record in snapshot.messages] == ["A"]
    assert [entry.original_id for entry in snapshot.deletions] == ["A"]
    assert snapshot.settings == {"antidelete.enabled": False}
    assert snapshot.errors == ["edited_messages.json unreadable"]
    # The browser reports but never quarantines.
    assert (tmp_path / "data" / "edited_messages.json").read_text(encoding="utf-8") == "{broken"
