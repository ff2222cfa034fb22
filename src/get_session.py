"""Session login for the Saved Messages alert relay.

Alerts delivered to Saved Messages go through a Telethon user session. The
client is only built when that alert method is selected or when logging in.
Secrets come from the environment (python-dotenv) so they stay out of
config.json.
"""

from __future__ import annotations

import asyncio
import logging
import os
from getpass import getpass

import qrcode
from dotenv import load_dotenv
from telethon import TelegramClient, errors

LOGGER = logging.getLogger(__name__)

QR_TIMEOUT_SECONDS = 120


def build_client() -> TelegramClient:
    """Create a Telethon client from API_ID, API_HASH and SESSION_NAME."""

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")
    session_name = os.getenv("SESSION_NAME", "chatvault")

    # Fail fast on missing credentials to avoid an ambiguous login prompt.
    if not api_id or not api_hash:
        raise RuntimeError("Missing API_ID or API_HASH in environment")

    LOGGER.info("Initializing Telegram client for session %s", session_name)
    return TelegramClient(session_name, int(api_id), api_hash)


def _print_qr(url: str) -> None:
    qr = qrcode.QRCode(border=1)
    qr.add_data(url)
    qr.make(fit=True)
    qr.print_ascii(invert=True)


def _second_factor() -> str:
    return os.getenv("2FA") or getpass("2FA password: ")


async def _login_with_qr(client: TelegramClient) -> None:
    login = await client.qr_login()
    _print_qr(login.url)
    print("Scan the code from Settings > Devices > Link Desktop Device")
    await login.wait(timeout=QR_TIMEOUT_SECONDS)


async def _login_with_phone(client: TelegramClient) -> None:
    phone = os.getenv("PHONE") or input("Phone number (international format): ").strip()
    await client.send_code_request(phone)
    code = input("Login code: ").strip()
    await client.sign_in(phone=phone, code=code)


def _choose_method() -> str:
    method = (os.getenv("LOGIN_METHOD") or "").strip().lower()
    if method in {"qr", "phone"}:
        return method
    options = {"1": "qr", "2": "phone"}
    while True:
        print("")
        print("Login methods:")
        print("[1] QR code")
        print("[2] Phone code")
        print("[3] Exit")
        choice = input("chatvault > ").strip()
        if choice == "3":
            raise SystemExit(0)
        if choice in options:
            return options[choice]
        print("Invalid option. Please choose 1, 2, or 3.")


async def authorize(client: TelegramClient) -> None:
    """Log the session in unless it already is."""

    if await client.is_user_authorized():
        return

    method = _choose_method()
    try:
        if method == "phone":
            await _login_with_phone(client)
        else:
            await _login_with_qr(client)
    except errors.SessionPasswordNeededError:
        await client.sign_in(password=_second_factor())
    LOGGER.info("Session authorized via %s", method)


async def login() -> None:
    load_dotenv()
    client = build_client()
    await client.connect()
    try:
        await authorize(client)
        me = await client.get_me()
        LOGGER.info("Logged in as: %s", getattr(me, "first_name", None) or getattr(me, "id", "?"))
        print(f"Logged in as {getattr(me, 'first_name', '') or me.id}. Alerts go to Saved Messages.")
    finally:
        await client.disconnect()


if __name__ == "__main__":
    asyncio.run(login())
