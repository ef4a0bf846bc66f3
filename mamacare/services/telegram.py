import logging
import re
from typing import Any

import httpx

from mamacare.core.config import settings
from mamacare.core.errors import ConfigurationError, UpstreamStatusError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

MARKDOWN_V2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")


def escape_markdown(text: str) -> str:
    return MARKDOWN_V2_SPECIAL.sub(r"\\\1", text)


class TelegramBot:
    """Minimal Bot API client: just the calls the nurse relay needs."""

    def __init__(self, token: str, api_base: str | None = None, timeout: float | None = None,
                 transport: httpx.BaseTransport | None = None):
        base = (api_base or settings.TELEGRAM_API_BASE).rstrip("/")
        self._client = httpx.Client(
            base_url=f"{base}/bot{token}",
            timeout=timeout or settings.TELEGRAM_TIMEOUT_SECONDS,
            transport=transport,
        )

    def _call(self, method: str, payload: dict) -> Any:
        try:
            response = self._client.post(f"/{method}", json=payload)
        except httpx.RequestError as e:
            logger.warning("telegram %s failed: %s", method, e)
            raise UpstreamUnavailableError("Telegram API is unreachable") from e

        if response.status_code >= 400:
            logger.warning("telegram %s status=%s body=%s", method, response.status_code, response.text)
            raise UpstreamStatusError(
                f"Telegram API error: {response.status_code} - {response.text}", response.status_code
            )
        try:
            body = response.json()
        except ValueError as e:
            # Proxies and gateways answer with HTML pages under a 2xx as well
            logger.warning("telegram %s status=%s non-JSON body=%.200s", method, response.status_code, response.text)
            raise UpstreamStatusError("Telegram API returned a non-JSON response", response.status_code) from e
        if not isinstance(body, dict):
            raise UpstreamStatusError("Telegram API returned an unexpected response", response.status_code)
        if not body.get("ok", False):
            raise UpstreamStatusError(f"Telegram API error: {body.get('description', 'unknown')}")
        return body.get("result")

    def send_message(self, chat_id: int | str, text: str, reply_markup: dict | None = None,
                     parse_mode: str | None = None) -> dict:
        payload: dict = {"chat_id": chat_id, "text": text}
        if reply_markup:
            payload["reply_markup"] = reply_markup
        if parse_mode:
            payload["parse_mode"] = parse_mode
        return self._call("sendMessage", payload)

    def set_webhook(self, url: str, secret_token: str | None = None) -> bool:
        payload: dict = {"url": url, "allowed_updates": ["message"]}
        if secret_token:
            payload["secret_token"] = secret_token
        return bool(self._call("setWebhook", payload))

    def close(self) -> None:
        self._client.close()


def get_bot() -> TelegramBot:
    if not settings.TELEGRAM_BOT_TOKEN:
        raise ConfigurationError("TELEGRAM_BOT_TOKEN is not set in environment variables.")
    return TelegramBot(settings.TELEGRAM_BOT_TOKEN)
