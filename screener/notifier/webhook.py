"""Discord / Telegram webhook 推送"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal

import aiohttp

from screener.alert.models import Alert
from screener.delivery.batcher import AlertSummary
from screener.notifier.formatter import format_alert, format_summary

logger = logging.getLogger(__name__)

DISCORD_URL_PATTERN = re.compile(r"^https://(?:discord|discordapp)\.com/api/webhooks/\d+/[\w-]+$")
TELEGRAM_URL_PATTERN = re.compile(r"^telegram://(.+):([^:]+)$")
TELEGRAM_API = "https://api.telegram.org"

# Discord 单条消息上限
DISCORD_MAX_CONTENT = 2000


def is_valid_discord_url(url: str) -> bool:
    return bool(DISCORD_URL_PATTERN.match(url))


def parse_telegram_url(url: str) -> tuple[str, str] | None:
    """telegram://<bot_token>:<chat_id> -> (bot_token, chat_id)"""
    match = TELEGRAM_URL_PATTERN.match(url)
    if not match:
        return None
    return match.group(1), match.group(2)


def _strip_html(text: str) -> str:
    return re.sub(r"</?b>", "**", text)


@dataclass
class WebhookNotifier:
    kind: ClassVar[str] = "webhook"

    name: str
    url: str
    type: Literal["discord", "telegram"] = "discord"
    enabled: bool = True
    _session: aiohttp.ClientSession | None = field(default=None, repr=False)

    async def init(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    def _build_request(self, text: str) -> tuple[str, dict[str, Any]] | None:
        if self.type == "discord":
            if not is_valid_discord_url(self.url):
                logger.warning(f"Invalid Discord webhook URL for {self.name}")
                return None
            return self.url, {"content": _strip_html(text)[:DISCORD_MAX_CONTENT]}

        parsed = parse_telegram_url(self.url)
        if parsed is None:
            logger.warning(f"Invalid Telegram webhook URL for {self.name}")
            return None
        token, chat_id = parsed
        return f"{TELEGRAM_API}/bot{token}/sendMessage", {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
        }

    async def send_text(self, text: str) -> bool:
        if not self.enabled:
            return False
        if self._session is None:
            raise RuntimeError("Session not initialized. Call init() first.")

        request = self._build_request(text)
        if request is None:
            return False
        url, payload = request

        try:
            response = await self._session.post(url, json=payload)
            # Discord 成功返回 204
            if response.status not in (200, 204):
                error_text = await response.text()
                logger.error(f"Webhook {self.name} returned {response.status}: {error_text}")
                return False
            return True
        except aiohttp.ClientError as e:
            logger.error(f"Webhook {self.name} unreachable: {e}")
            return False

    async def send_alert(self, alert: Alert) -> bool:
        return await self.send_text(format_alert(alert))

    async def send_summary(self, summary: AlertSummary, alerts: list[Alert]) -> bool:
        if len(alerts) == 1:
            return await self.send_alert(alerts[0])
        return await self.send_text(format_summary(summary))
