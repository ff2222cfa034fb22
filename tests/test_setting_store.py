from __future__ import annotations

from typing import Any

from adapters.json_documents import JsonKeyedDocuments
from core.setting_store import ANTIDELETE_ENABLED, SettingStore


class FailingDocuments:
    def load_all(self) -> dict[str, Any]:
        return {}

    def save(self, key: str, value: Any) -> None:
        raise OSError("disk full")

    def delete(self, key: str) -> bool:
        return False


def test_settings_persist_across_loads(tmp_path) -> None:
    store = SettingStore(JsonKeyedDocuments(tmp_path / "settings"))
    store.load()
    assert store.antidelete_enabled()
    assert store.set(ANTIDELETE_ENABLED, False)

    reloaded = SettingStore(JsonKeyedDocuments(tmp_path / "settings"))
    reloaded.load()
    assert not reloaded.antidelete_enabled()
    assert reloaded.keys() == [ANTIDELETE_ENABLED]


def test_delete_restores_default(tmp_path) -> None:
    store = SettingStore(JsonKeyedDocuments(tmp_path / "settings"))
    store.set(ANTIDELETE_ENABLED, False)
    assert store.delete(ANTIDELETE_ENABLED)
    assert store.get(ANTIDELETE_ENABLED) is None
    assert store.antidelete_enabled()


def test_failed_write_is_reported_and_not_cached() -> None:
    store = SettingStore(FailingDocuments())
    assert not store.set("retention.policy", {"group": 1})
    assert store.get("retention.policy") is None


def test_invalid_key_is_rejected(tmp_path) -> None:
    store = SettingStore(JsonKeyedDocuments(tmp_path / "settings"))
    assert not store.set("bad key/with slash", 1)
    assert store.keys() == []
