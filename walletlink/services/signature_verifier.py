from __future__ import annotations

import json
import logging
from typing import Any

from eth_account import Account
from eth_account.messages import encode_defunct

from walletlink.core.addresses import is_wallet_address


logger = logging.getLogger(__name__)

LINK_ACTION = "telegram-connect"


def verify_ownership(address: str, message: str, signature: str | bytes) -> bool:
    """True when ``signature`` is an EIP-191 personal_sign of ``message`` by ``address``.

    Malformed input of any kind yields False instead of raising.
    """
    if not is_wallet_address(address) or not isinstance(message, str):
        return False
    if isinstance(signature, str):
        signature = signature.strip()
        if not signature:
            return False
    elif not isinstance(signature, (bytes, bytearray)) or not signature:
        return False
    try:
        recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception:
        logger.debug("signature_recover_failed", extra={"address": address.lower()})
        return False
    return str(recovered).lower() == address.strip().lower()


def build_link_message(*, wallet_address: str, telegram_id: int, nonce: str, timestamp_ms: int) -> str:
    # Key order is part of the signed bytes; keep it stable.
    return json.dumps(
        {
            "action": LINK_ACTION,
            "telegramId": int(telegram_id),
            "walletAddress": wallet_address,
            "timestamp": int(timestamp_ms),
            "nonce": nonce,
        },
        separators=(",", ":"),
    )


def parse_link_message(message: str) -> dict[str, Any] | None:
    try:
        data = json.loads(message)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict) or data.get("action") != LINK_ACTION:
        return None
    if not isinstance(data.get("nonce"), str) or not data["nonce"]:
        return None
    return data
