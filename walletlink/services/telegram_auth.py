from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from walletlink.config import settings
from walletlink.core.time_provider import default_time_provider, ensure_aware
from walletlink.errors import TelegramAuthConfigError
from walletlink.schemas import TelegramIdentity


logger = logging.getLogger(__name__)

# Tolerated clock drift for auth_date values slightly ahead of our clock.
MAX_CLOCK_SKEW_SECONDS = 60


def _bot_token(bot_token: str | None) -> str:
    token = str(bot_token if bot_token is not None else settings.telegram_bot_token or "").strip()
    if not token:
        raise TelegramAuthConfigError("TELEGRAM_BOT_TOKEN is not configured")
    return token


def data_check_string(payload: Mapping[str, Any]) -> str:
    pairs = [f"{key}={value}" for key, value in sorted(payload.items()) if key != "hash" and value is not None]
    return "\n".join(pairs)


def verify_telegram_auth(payload: Mapping[str, Any], bot_token: str | None = None) -> bool:
    """Checks the login widget hash: HMAC-SHA256 keyed with sha256(bot_token)."""
    secret_key = hashlib.sha256(_bot_token(bot_token).encode("utf-8")).digest()
    provided = payload.get("hash") if isinstance(payload, Mapping) else None
    if not isinstance(provided, str) or not provided:
        return False
    expected = hmac.new(secret_key, data_check_string(payload).encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, provided.strip().lower())


def parse_telegram_user(payload: Mapping[str, Any]) -> TelegramIdentity:
    """Typed view of a login payload; raises ValueError when required fields are missing."""
    try:
        return TelegramIdentity.model_validate(dict(payload))
    except ValidationError as exc:
        raise ValueError(f"invalid telegram login payload: {exc.error_count()} error(s)") from exc


def is_fresh(payload: Mapping[str, Any], max_age_ms: int | None = None, now: datetime | None = None) -> bool:
    max_age = int(settings.telegram_auth_max_age_ms if max_age_ms is None else max_age_ms)
    try:
        auth_date = int(payload.get("auth_date"))
    except (AttributeError, TypeError, ValueError):
        return False
    current = ensure_aware(now) if now is not None else default_time_provider.now()
    age_ms = int(current.timestamp() * 1000) - auth_date * 1000
    if age_ms < -MAX_CLOCK_SKEW_SECONDS * 1000:
        logger.warning("telegram_auth_date_in_future", extra={"auth_date": auth_date})
        return False
    return age_ms <= max_age
