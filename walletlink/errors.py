"""Error taxonomy for linking and dispatch.

Verification and validation errors are terminal for the request. Store errors
abort the current operation. Transport errors are recorded per recipient and
never undo a state change that already succeeded.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class LinkFailureReason(str, Enum):
    INVALID_TELEGRAM_AUTH = 'InvalidTelegramAuth'
    TELEGRAM_AUTH_EXPIRED = 'TelegramAuthExpired'
    SIGNATURE_INVALID = 'SignatureInvalid'
    STORE_ERROR = 'StoreError'


USER_MESSAGES = {
    LinkFailureReason.INVALID_TELEGRAM_AUTH: 'Telegram login could not be verified. Please log in with Telegram again.',
    LinkFailureReason.TELEGRAM_AUTH_EXPIRED: 'Telegram login expired. Please log in with Telegram again.',
    LinkFailureReason.SIGNATURE_INVALID: 'Wallet signature is invalid or was already used. Please sign a new message.',
    LinkFailureReason.STORE_ERROR: 'Could not save the link right now. Please retry shortly.',
}


class LinkingError(Exception):
    def __init__(self, reason: LinkFailureReason, detail: str = '') -> None:
        self.reason = reason
        self.detail = detail or reason.value
        super().__init__(f'{reason.value}: {self.detail}')

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.reason]


class StoreError(Exception):
    """Persistence failure; nothing from the failed call is committed."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class TransportError(Exception):
    """Outbound message could not be delivered."""

    def __init__(self, detail: str, *, status_code: int | None = None) -> None:
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class EventValidationError(ValueError):
    def __init__(self, errors: list[dict[str, Any]] | str) -> None:
        if isinstance(errors, str):
            errors = [{'msg': errors}]
        self.errors = errors
        super().__init__('; '.join(str(err.get('msg', err)) for err in errors))


class TelegramAuthConfigError(RuntimeError):
    """Bot credential missing; Telegram logins cannot be verified at all."""
