from __future__ import annotations
from abc import ABC, abstractmethod
import json
import logging
import os
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API = os.environ.get("TELEGRAM_API", "https://api.telegram.org")


# ----------------------------
# Notification port
# ----------------------------
class Notifier(ABC):
    """Best-effort outbound operator alert. Never raises for delivery
    problems; returns whether the message was accepted."""

    @abstractmethod
    async def notify(
        self,
        message: str,
        image_url: Optional[str] = None,
        confirm_url: Optional[str] = None,
        reject_url: Optional[str] = None,
    ) -> bool: ...


class NullNotifier(Notifier):
    async def notify(self, message, image_url=None, confirm_url=None,
                     reject_url=None) -> bool:
        logger.warning("notifications disabled; dropping operator alert")
        return False


class RecordingNotifier(Notifier):
    """Keeps every alert in memory; handy for demos and tests."""

    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.sent: List[Dict[str, Any]] = []

    async def notify(self, message, image_url=None, confirm_url=None,
                     reject_url=None) -> bool:
        self.sent.append({
            "message": message,
            "image_url": image_url,
            "confirm_url": confirm_url,
            "reject_url": reject_url,
        })
        return self.ok


# ----------------------------
# Telegram implementation
# ----------------------------
def _is_local(url: Optional[str]) -> bool:
    # Telegram refuses inline buttons pointing at localhost
    return bool(url) and ("localhost" in url or "127.0.0.1" in url)


def build_text(message: str, confirm_url: Optional[str],
               reject_url: Optional[str]) -> str:
    if not (confirm_url and reject_url):
        return message
    return (
        f"{message}\n\n━━━━━━━━━━━━━━━\n"
        f"✅ *CONFIRM PAYMENT:*\n{confirm_url}\n\n"
        f"❌ *REJECT PAYMENT:*\n{reject_url}"
    )


class TelegramNotifier(Notifier):
    def __init__(self, http: httpx.AsyncClient, bot_token: str,
                 chat_id: str, api_base: str = TELEGRAM_API) -> None:
        self.http = http
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.api_base = api_base.rstrip("/")

    def _url(self, method: str) -> str:
        return f"{self.api_base}/bot{self.bot_token}/{method}"

    async def _send(self, method: str, body: Dict[str, Any]) -> bool:
        r = await self.http.post(self._url(method), json=body)
        try:
            data = r.json()
        except ValueError:
            data = {"ok": False, "status_code": r.status_code}
        if not data.get("ok"):
            logger.error("telegram %s failed: %s", method, data)
            return False
        return True

    async def notify(
        self,
        message: str,
        image_url: Optional[str] = None,
        confirm_url: Optional[str] = None,
        reject_url: Optional[str] = None,
    ) -> bool:
        if not self.bot_token or not self.chat_id:
            logger.warning("telegram configuration missing; alert skipped")
            return False

        text = build_text(message, confirm_url, reject_url)
        body: Dict[str, Any] = {
            "chat_id": self.chat_id,
            "parse_mode": "Markdown",
        }
        if confirm_url and reject_url and not _is_local(confirm_url):
            body["reply_markup"] = json.dumps({
                "inline_keyboard": [[
                    {"text": "✅ CONFIRM", "url": confirm_url},
                    {"text": "❌ REJECT", "url": reject_url},
                ]]
            })

        try:
            if image_url:
                ok = await self._send(
                    "sendPhoto", {**body, "photo": image_url,
                                  "caption": text}
                )
            else:
                ok = await self._send("sendMessage", {**body, "text": text})
            if ok or not image_url:
                return ok

            # photo may not be reachable yet: one text-only retry
            logger.info("retrying telegram alert without photo")
            return await self._send("sendMessage", {
                "chat_id": self.chat_id,
                "parse_mode": "Markdown",
                "text": f"{text}\n\n📸 *View proof:*\n{image_url}",
            })
        except httpx.HTTPError as e:
            logger.error("telegram delivery failed: %s", e)
            return False
