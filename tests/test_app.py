from __future__ import annotations

import asyncio
import io
import json
import logging

import pytest

import app
import get_session
import settings
from adapters.log_notifier import LogAlertSink
from adapters.telegram_bot_notifier import TelegramBotAlertSink
from adapters.telegram_notifier import TelegramSavedMessagesAlertSink
from frontend.state import load_snapshot

CHAT = "4915100000@s.whatsapp.net"


class FakeClient:
    def __init__(self, authorized: bool = True) -> None:
        self.authorized = authorized
        self.connected = False
        self.connects = 0

    async def connect(self) -> None:
        self.connected = True
        self.connects += 1

    async def is_user_authorized(self) -> bool:
        return self.authorized

    async def disconnect(self) -> None:
        self.connected = False


@pytest.fixture
def offline_settings(tmp_path, monkeypatch):
    monkeypatch.setattr(app, "load_dotenv", lambda: None)
    monkeypatch.setattr(settings, "STORAGE_ROOT", str(tmp_path / "data"))
    monkeypatch.setattr(settings, "MEDIA_DIR", str(tmp_path / "data" / "media"))
    monkeypatch.setattr(settings, "SETTLE_SECONDS", 0.0)
    monkeypatch.setattr(settings, "RETRY_SECONDS", 0.0)
    monkeypatch.setattr(settings, "SELF_IDS", [])
    return tmp_path / "data"


def test_alert_method_selects_sink(monkeypatch) -> None:
    monkeypatch.setattr(app, "load_dotenv", lambda: None)

    monkeypatch.setattr(settings, "ALERT_METHOD", "log")
    assert isinstance(app.build_alert_sink(), LogAlertSink)

    monkeypatch.setattr(settings, "ALERT_METHOD", "saved_messages")
    assert isinstance(app.build_alert_sink(FakeClient()), TelegramSavedMessagesAlertSink)

    monkeypatch.setattr(settings, "ALERT_METHOD", "bot")
    monkeypatch.setenv("BOT_API", "123:abc")
    monkeypatch.setattr(settings, "BOT_CHAT_ID", 42)
    assert isinstance(app.build_alert_sink(), TelegramBotAlertSink)


def test_alert_method_misconfiguration_raises(monkeypatch) -> None:
    monkeypatch.setattr(app, "load_dotenv", lambda: None)

    monkeypatch.setattr(settings, "ALERT_METHOD", "bot")
    monkeypatch.delenv("BOT_API", raising=False)
    with pytest.raises(RuntimeError):
        app.build_alert_sink()

    monkeypatch.setattr(settings, "ALERT_METHOD", "saved_messages")
    with pytest.raises(RuntimeError):
        app.build_alert_sink()

    monkeypatch.setattr(settings, "ALERT_METHOD", "email")
    with pytest.raises(RuntimeError):
        app.build_alert_sink()


def test_ingest_archives_messages_and_alerts_deletions(offline_settings, monkeypatch, caplog) -> None:
    monkeypatch.setattr(settings, "ALERT_METHOD", "log")
    lines = [
        json.dumps({"key": {"id": "A", "remoteJid": CHAT}, "message": {"conversation": "secret"}, "messageTimestamp": 5}),
        "",
        "{not json",
        json.dumps({"key": {"id": "A", "remoteJid": CHAT}, "update": {"messageStubType": 68}}),
    ]

    with caplog.at_level(logging.WARNING, logger="adapters.log_notifier"):
        dispatched = asyncio.run(app._ingest(io.StringIO("\n".join(lines) + "\n")))

    assert dispatched == 2
    assert "DELETED MESSAGE DETECTED" in caplog.text
    snapshot = load_snapshot(offline_settings)
    assert [record.id for record in snapshot.messages] == ["A"]
    assert [entry.content for entry in snapshot.deletions] == ["secret"]


def test_ingest_uses_the_saved_messages_relay(offline_settings, monkeypatch) -> None:
    monkeypatch.setattr(settings, "ALERT_METHOD", "saved_messages")
    client = FakeClient()
    monkeypatch.setattr(get_session, "build_client", lambda: client)

    assert asyncio.run(app._ingest(io.StringIO(""))) == 0
    assert client.connects == 1
    assert not client.connected


def test_ingest_refuses_an_unauthorized_session(offline_settings, monkeypatch) -> None:
    monkeypatch.setattr(settings, "ALERT_METHOD", "saved_messages")
    client = FakeClient(authorized=False)
    monkeypatch.setattr(get_session, "build_client", lambda: client)

    with pytest.raises(SystemExit):
        asyncio.run(app._ingest(io.StringIO("")))
    assert not client.connected
