"""Static configuration for chatvault.

All user-editable settings (storage, retention, deletions, media, alerts,
logging) live in a single JSON file for quick edits without touching Python.
"""

import json
import os

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

CONFIG_PATH = os.environ.get("CHATVAULT_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Archive documents live under STORAGE_ROOT; media files under MEDIA_DIR.
_storage = _CONFIG.get("storage", {})
STORAGE_ROOT = _resolve_path(_storage.get("root", "data"))
MEDIA_DIR = _resolve_path(_storage.get("media_dir", os.path.join(STORAGE_ROOT, "media")))

# Retention TTLs are given in hours per chat class. Classes missing here keep
# their built-in defaults (status/channel 24h, group/private 72h).
_retention = _CONFIG.get("retention", {})
RETENTION_HOURS = {
    name: float(value)
    for name, value in _retention.get("hours", {}).items()
}
SWEEP_INTERVAL_HOURS = float(_retention.get("sweep_interval_hours", 6))
SHUTDOWN_TIMEOUT = float(_retention.get("shutdown_timeout", 30))
CONTEXT_BACKUP_TTL_HOURS = float(_retention.get("context_backup_ttl_hours", 7 * 24))
ORPHAN_GRACE_MINUTES = float(_retention.get("orphan_grace_minutes", 10))

# Deletion correlation timing. SELF_IDS lists the bot's own account ids so
# deletions in its own chat are not reported as unrecoverable.
_deletions = _CONFIG.get("deletions", {})
SETTLE_SECONDS = float(_deletions.get("settle_seconds", 1.0))
RETRY_SECONDS = float(_deletions.get("retry_seconds", 3.0))
SELF_IDS = [str(value) for value in _deletions.get("self_ids", []) if value]

# Media download workers and the fixed backoff between attempts.
_media = _CONFIG.get("media", {})
MEDIA_WORKERS = int(_media.get("workers", 2))
MEDIA_BACKOFF_SECONDS = float(_media.get("backoff_seconds", 1.0))
MEDIA_QUEUE_SIZE = int(_media.get("queue_size", 256))

# Alert method switches adapters without changing core logic.
_alerts = _CONFIG.get("alerts", {})
ALERT_METHOD = _alerts.get("method", "saved_messages")
# Bot chat id is only required when method=bot.
BOT_CHAT_ID = _alerts.get("bot_chat_id")

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
