"""Application entry point for chatvault."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING, Optional, TextIO

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.log_notifier import LogAlertSink
from adapters.notification_formatting import format_recent_deletions
from adapters.telegram_bot_notifier import TelegramBotAlertSink
from adapters.telegram_notifier import TelegramSavedMessagesAlertSink
from core.config import HOUR, DeletionConfig, MediaConfig, RetentionConfig
from core.ports import AlertSink, MediaFetcher
from pipeline import Pipeline, build_pipeline, policy_as_hours

if TYPE_CHECKING:
    from telethon import TelegramClient

NAME = "CHATVAULT"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = [os.getenv(name) for name in redact_cfg.get("patterns", [])]
    return sorted({value for value in values if value}, key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level = getattr(logging, str(config.get("level", "INFO")).upper(), logging.INFO)
    formatter = _RedactingFormatter(
        _collect_redaction_values(config),
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = []
    if config.get("console", True):
        handlers.append(logging.StreamHandler())

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/chatvault.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                path,
                maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
                backupCount=int(file_cfg.get("backup_count", 5)),
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    if handlers:
        logging.basicConfig(level=level, handlers=handlers)


def build_alert_sink(client=None) -> AlertSink:
    """Select the alert adapter from config so the core stays delivery-agnostic."""

    method = settings.ALERT_METHOD
    if method == "bot":
        load_dotenv()
        bot_token = os.getenv("BOT_API")
        if not bot_token:
            raise RuntimeError("BOT_API is required when alerts.method=bot")
        if not settings.BOT_CHAT_ID:
            raise RuntimeError("alerts.bot_chat_id is required for bot alerts")
        return TelegramBotAlertSink(bot_token=bot_token, chat_id=str(settings.BOT_CHAT_ID))
    if method == "saved_messages":
        if client is None:
            raise RuntimeError("Saved Messages alerts need a connected Telegram client")
        return TelegramSavedMessagesAlertSink(client)
    if method == "log":
        return LogAlertSink()
    raise RuntimeError("alerts.method must be 'saved_messages', 'bot' or 'log'")


def open_pipeline(alert_sink: Optional[AlertSink] = None, fetcher: Optional[MediaFetcher] = None) -> Pipeline:
    """Build the pipeline from config.json.

    `ingest` passes the sink chosen by alerts.method; offline commands get
    an alert sink that only logs.
    """

    return build_pipeline(
        settings.STORAGE_ROOT,
        alert_sink or LogAlertSink(),
        fetcher,
        media_dir=settings.MEDIA_DIR,
        policy_hours=settings.RETENTION_HOURS,
        media_config=MediaConfig(
            backoff_seconds=settings.MEDIA_BACKOFF_SECONDS,
            workers=settings.MEDIA_WORKERS,
            queue_size=settings.MEDIA_QUEUE_SIZE,
        ),
        deletion_config=DeletionConfig(
            settle_seconds=settings.SETTLE_SECONDS,
            retry_seconds=settings.RETRY_SECONDS,
        ),
        retention_config=RetentionConfig(
            sweep_interval_seconds=settings.SWEEP_INTERVAL_HOURS * HOUR,
            shutdown_timeout_seconds=settings.SHUTDOWN_TIMEOUT,
            context_backup_ttl_seconds=int(settings.CONTEXT_BACKUP_TTL_HOURS * HOUR),
            orphan_grace_seconds=settings.ORPHAN_GRACE_MINUTES * 60,
        ),
        self_ids=settings.SELF_IDS,
    )


async def _connect_relay() -> "TelegramClient":
    from get_session import build_client

    client = build_client()
    await client.connect()
    if not await client.is_user_authorized():
        await client.disconnect()
        raise SystemExit("Session is not authorized, run `chatvault login` first")
    return client


def _is_update(event: dict) -> bool:
    return "update" in event and "message" not in event


async def _ingest(source: TextIO, fetcher: Optional[MediaFetcher] = None) -> int:
    """Feed newline-delimited raw events into a running pipeline.

    Message events and update events may be interleaved; each line holds one
    JSON object. Returns the number of events dispatched.
    """

    client = await _connect_relay() if settings.ALERT_METHOD == "saved_messages" else None
    try:
        pipeline = open_pipeline(build_alert_sink(client), fetcher)
        pipeline.start()
        dispatched = 0
        try:
            while True:
                # Read off the loop so deletion timers and downloads progress
                # while the host is idle.
                line = await asyncio.to_thread(source.readline)
                if not line:
                    break
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError as exc:
                    LOGGER.warning("Skipping unreadable event line: %s", exc)
                    continue
                if not isinstance(event, dict):
                    LOGGER.warning("Skipping event that is not an object")
                    continue
                if _is_update(event):
                    await pipeline.processor.handle_updates([event])
                else:
                    await pipeline.processor.handle_messages([event])
                dispatched += 1
        finally:
            await pipeline.shutdown()
        LOGGER.info("Ingest finished after %s events", dispatched)
        return dispatched
    finally:
        if client is not None:
            await client.disconnect()


def _run_ingest(path: str) -> None:
    if path == "-":
        asyncio.run(_ingest(sys.stdin))
        return
    with open(path, "r", encoding="utf-8") as handle:
        asyncio.run(_ingest(handle))


def _stats(pipeline: Pipeline) -> None:
    stats = pipeline.archive.stats()
    edits = pipeline.edits.counts()
    print("Archive statistics")
    print(f"  Messages:        {stats['total_messages']}")
    print(f"  With media:      {stats['media_messages']}")
    print(f"  Deleted:         {stats['deleted_messages']}")
    print(f"  Deletion log:    {stats['total_deleted_tracked']}")
    print(f"  Media size:      {stats['media_size_mb']} MB")
    for name, count in edits.items():
        print(f"  {name.replace('_', ' ').capitalize() + ':':<17}{count}")
    print(f"  Anti-delete:     {'on' if pipeline.settings.antidelete_enabled() else 'off'}")


def _deleted(pipeline: Pipeline, limit: int) -> None:
    print(format_recent_deletions(pipeline.archive.recent_deletions(limit), mode="markdown"))


def _sweep(pipeline: Pipeline) -> None:
    report = pipeline.retention.sweep()
    if report is None:
        print("A cleanup is already running.")
        return
    print(
        f"Cleanup finished in {report.duration_seconds:.1f}s: "
        f"{report.messages} messages, {report.media_files} media files, "
        f"{report.orphans} orphans, {report.context_snapshots} context backups, "
        f"{report.errors} errors"
    )


def _parse_assignments(assignments: list[str]) -> dict[str, float]:
    hours: dict[str, float] = {}
    for item in assignments:
        name, sep, value = item.partition("=")
        if not sep:
            raise ValueError(f"Expected class=hours, got {item!r}")
        hours[name.strip()] = float(value)
    return hours


def _policy(pipeline: Pipeline, assignments: Optional[list[str]]) -> None:
    if assignments:
        try:
            current = pipeline.update_policy(_parse_assignments(assignments))
        except ValueError as exc:
            raise SystemExit(f"Invalid retention policy: {exc}") from exc
    else:
        current = policy_as_hours(pipeline.policy)
    for name, hours in sorted(current.items()):
        print(f"{name:<8} {hours:g}h")


def _antidelete(pipeline: Pipeline, state: Optional[str]) -> None:
    if state is not None:
        if not pipeline.set_antidelete(state == "on"):
            raise SystemExit("Could not save the anti-delete setting")
    print(f"Anti-delete is {'on' if pipeline.settings.antidelete_enabled() else 'off'}")


def _browse() -> None:
    _print_banner()
    from frontend.app import ArchiveBrowserApp

    ArchiveBrowserApp(settings.STORAGE_ROOT).run()


def _login() -> None:
    _print_banner()
    from get_session import login

    asyncio.run(login())


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="chatvault")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("stats", help="Show archive statistics")
    deleted = subparsers.add_parser("deleted", help="List recently deleted messages")
    deleted.add_argument("--limit", type=int, default=10)
    subparsers.add_parser("sweep", help="Run one retention cleanup now")
    policy = subparsers.add_parser("policy", help="Show or change retention hours per chat class")
    policy.add_argument("--set", dest="assignments", nargs="+", metavar="CLASS=HOURS")
    antidelete = subparsers.add_parser("antidelete", help="Show or toggle deletion alerts")
    antidelete.add_argument("state", nargs="?", choices=["on", "off"])
    subparsers.add_parser("browse", help="Browse the archive in a TUI")
    subparsers.add_parser("login", help="Authorize the Saved Messages alert relay")
    ingest = subparsers.add_parser("ingest", help="Archive raw events read as JSON lines")
    ingest.add_argument("source", nargs="?", default="-", help="Event file, or - for stdin")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return
    if args.command == "browse":
        _browse()
        return
    if args.command == "login":
        _login()
        return

    _configure_logging()
    if args.command == "ingest":
        _run_ingest(args.source)
        return

    pipeline = open_pipeline()
    if args.command == "stats":
        _stats(pipeline)
    elif args.command == "deleted":
        _deleted(pipeline, args.limit)
    elif args.command == "sweep":
        _sweep(pipeline)
    elif args.command == "policy":
        _policy(pipeline, args.assignments)
    elif args.command == "antidelete":
        _antidelete(pipeline, args.state)


if __name__ == "__main__":
    main()
