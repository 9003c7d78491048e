from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

import httpx

from walletlink.config import settings
from walletlink.errors import TransportError


logger = logging.getLogger(__name__)


class TelegramTransport:
    """Sends one Bot API message per call; a call either succeeds or raises TransportError."""

    name = "telegram"

    def __init__(
        self,
        bot_token: str,
        *,
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
        parse_mode: str | None = "Markdown",
        http_transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.bot_token = str(bot_token or "").strip()
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.parse_mode = parse_mode
        self.http_transport = http_transport

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self.http_transport)

    def send_message(self, recipient_id: int, text: str) -> dict[str, Any]:
        if not self.bot_token:
            raise TransportError("Missing bot_token")
        url = f"{self.api_base}/bot{self.bot_token}/sendMessage"
        payload: dict[str, Any] = {"chat_id": int(recipient_id), "text": text}
        if self.parse_mode:
            payload["parse_mode"] = self.parse_mode
        try:
            with self._client() as client:
                response = client.post(url, json=payload)
        except httpx.TimeoutException as exc:
            raise TransportError("telegram_timeout") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"telegram_request_failed: {exc.__class__.__name__}") from exc
        body = _json_body(response)
        if response.status_code >= 300 or not body.get("ok"):
            description = str(body.get("description") or response.text or "").strip()
            raise TransportError(
                f"Telegram API error: {description or f'status={response.status_code}'}",
                status_code=response.status_code,
            )
        result = body.get("result") or {}
        return {"ok": True, "message_id": result.get("message_id")}

    def health_check(self) -> tuple[bool, str]:
        if not self.bot_token:
            return False, "Missing bot_token"
        url = f"{self.api_base}/bot{self.bot_token}/getMe"
        try:
            with self._client() as client:
                response = client.get(url)
        except httpx.HTTPError:
            logger.exception("telegram_get_me_failed")
            return False, "request_failed"
        if response.status_code != 200:
            return False, f"status={response.status_code}"
        payload = _json_body(response)
        return bool(payload.get("ok")), "healthy" if payload.get("ok") else "invalid token"


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


@lru_cache(maxsize=1)
def get_telegram_transport() -> TelegramTransport:
    return TelegramTransport(
        settings.telegram_bot_token,
        api_base=settings.telegram_api_base,
        timeout=settings.telegram_send_timeout_seconds,
    )
