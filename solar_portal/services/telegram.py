# solar_portal/services/telegram.py
import logging
from typing import Optional

import httpx

log = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"


def escape_markdown(text) -> str:
    """Escape the characters legacy Markdown treats as markup."""
    out = str(text if text is not None else "")
    for ch in ("_", "*", "`", "["):
        out = out.replace(ch, "\\" + ch)
    return out


class TelegramClient:
    def __init__(self, bot_token: str, chat_id: str, transport: Optional[httpx.BaseTransport] = None, timeout: float = 10.0):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.transport = transport
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def send_message(self, text: str, chat_id: Optional[str] = None) -> bool:
        """Returns True when the Bot API accepted the message."""
        if not self.configured:
            log.info("Telegram not configured; skipping message")
            return False
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                r = client.post(
                    f"{API_BASE}/bot{self.bot_token}/sendMessage",
                    json={
                        "chat_id": chat_id or self.chat_id,
                        "text": text,
                        "parse_mode": "Markdown",
                        "disable_web_page_preview": True,
                    },
                )
            if r.status_code >= 400:
                log.error("Telegram HTTP %s: %s", r.status_code, r.text[:300])
                return False
            return True
        except httpx.HTTPError as e:
            log.error("Telegram send failed: %s", e)
            return False
