from __future__ import annotations

import re


_ADDRESS_RE = re.compile(r'^0x[0-9a-fA-F]{40}$')


def is_wallet_address(value: object) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value.strip()))


def normalize_wallet_address(value: str) -> str:
    clean = str(value or '').strip()
    if not _ADDRESS_RE.match(clean):
        raise ValueError('wallet address must be 0x followed by 40 hex digits')
    return clean.lower()


def mask_telegram_id(telegram_id: int | str | None) -> str:
    clean = str(telegram_id or '').strip()
    if len(clean) <= 4:
        return '****'
    return f'****{clean[-4:]}'
