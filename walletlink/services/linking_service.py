from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from walletlink.config import settings
from walletlink.core.addresses import normalize_wallet_address
from walletlink.core.time_provider import default_time_provider
from walletlink.errors import LinkFailureReason, LinkingError, StoreError
from walletlink.models import WalletTelegramBinding
from walletlink.schemas import ProofOfOwnership, TelegramIdentity
from walletlink.services.binding_store import BindingStore
from walletlink.services.link_challenge_service import consume_link_challenge, resolve_link_challenge
from walletlink.services.notification_dispatcher import MessageTransport, NotificationDispatcher, RecipientOutcome
from walletlink.services.signature_verifier import verify_ownership
from walletlink.services.telegram_auth import is_fresh, verify_telegram_auth


logger = logging.getLogger(__name__)


class LinkState(str, Enum):
    IDLE = "idle"
    VERIFYING = "verifying"
    BINDING = "binding"
    NOTIFYING = "notifying"
    DONE = "done"
    FAILED = "failed"


_ALLOWED = {
    LinkState.IDLE: {LinkState.VERIFYING},
    LinkState.VERIFYING: {LinkState.BINDING, LinkState.DONE},
    LinkState.BINDING: {LinkState.NOTIFYING, LinkState.DONE},
    LinkState.NOTIFYING: {LinkState.DONE},
}


@dataclass
class LinkAttempt:
    """State of one connect call. Lives only for the request that created it."""

    wallet_address: str
    telegram_id: int
    state: LinkState = LinkState.IDLE
    failure: LinkFailureReason | None = None
    history: list[LinkState] = field(default_factory=lambda: [LinkState.IDLE])

    def advance(self, target: LinkState) -> None:
        if target not in _ALLOWED.get(self.state, set()):
            raise RuntimeError(f"invalid link transition {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    def fail(self, error: LinkingError) -> LinkingError:
        self.state = LinkState.FAILED
        self.failure = error.reason
        self.history.append(LinkState.FAILED)
        logger.warning(
            "link_attempt_failed",
            extra={
                "wallet_address": self.wallet_address,
                "telegram_id": self.telegram_id,
                "reason": error.reason.value,
                "detail": error.detail,
            },
        )
        return error


@dataclass
class LinkResult:
    ok: bool
    status: str
    wallet_address: str
    telegram_id: int | None = None
    state: LinkState = LinkState.DONE
    notification: RecipientOutcome | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "status": self.status,
            "wallet_address": self.wallet_address,
            "telegram_id": self.telegram_id,
            "state": self.state.value,
            "notification": self.notification.to_dict() if self.notification else None,
        }


class LinkingService:
    def __init__(
        self,
        db: Session,
        transport: MessageTransport,
        *,
        bot_token: str | None = None,
        max_auth_age_ms: int | None = None,
    ) -> None:
        self.db = db
        self.store = BindingStore(db)
        self.dispatcher = NotificationDispatcher(self.store, transport)
        self.bot_token = bot_token
        self.max_auth_age_ms = settings.telegram_auth_max_age_ms if max_auth_age_ms is None else max_auth_age_ms

    def connect(
        self,
        wallet_address: str,
        telegram_identity: TelegramIdentity,
        proof_of_ownership: ProofOfOwnership,
    ) -> LinkResult:
        wallet = normalize_wallet_address(wallet_address)
        telegram_id = int(telegram_identity.id)
        attempt = LinkAttempt(wallet_address=wallet, telegram_id=telegram_id)
        attempt.advance(LinkState.VERIFYING)

        payload = telegram_identity.signed_fields()
        if not verify_telegram_auth(payload, self.bot_token):
            raise attempt.fail(LinkingError(LinkFailureReason.INVALID_TELEGRAM_AUTH, "hash_mismatch"))
        if not is_fresh(payload, self.max_auth_age_ms):
            raise attempt.fail(LinkingError(LinkFailureReason.TELEGRAM_AUTH_EXPIRED, "auth_date_too_old"))

        try:
            challenge = resolve_link_challenge(
                self.db,
                message=proof_of_ownership.message,
                wallet_address=wallet,
                telegram_id=telegram_id,
            )
        except LinkingError as exc:
            raise attempt.fail(exc) from exc
        except StoreError as exc:
            raise attempt.fail(LinkingError(LinkFailureReason.STORE_ERROR, exc.detail)) from exc
        if not verify_ownership(wallet, proof_of_ownership.message, proof_of_ownership.signature):
            raise attempt.fail(LinkingError(LinkFailureReason.SIGNATURE_INVALID, "signer_mismatch"))

        try:
            existing = self.store.lookup_by_wallet(wallet)
        except StoreError as exc:
            raise attempt.fail(LinkingError(LinkFailureReason.STORE_ERROR, exc.detail)) from exc
        if existing is not None and int(existing.telegram_user_id) == telegram_id:
            attempt.advance(LinkState.DONE)
            logger.info("link_already_connected", extra={"wallet_address": wallet, "telegram_id": telegram_id})
            return LinkResult(ok=True, status="already_connected", wallet_address=wallet, telegram_id=telegram_id)

        attempt.advance(LinkState.BINDING)
        now = default_time_provider.utcnow_naive()
        try:
            binding = self.store.replace_bindings_for(
                wallet,
                telegram_id,
                before_write=lambda: consume_link_challenge(self.db, challenge, now=now),
            )
        except LinkingError as exc:
            if exc.detail == "nonce_already_used" and self._is_bound(wallet, telegram_id):
                # A concurrent call with the same proof bound this exact pair first.
                attempt.advance(LinkState.DONE)
                logger.info("link_already_connected", extra={"wallet_address": wallet, "telegram_id": telegram_id})
                return LinkResult(ok=True, status="already_connected", wallet_address=wallet, telegram_id=telegram_id)
            raise attempt.fail(exc) from exc
        except StoreError as exc:
            raise attempt.fail(LinkingError(LinkFailureReason.STORE_ERROR, exc.detail)) from exc

        attempt.advance(LinkState.NOTIFYING)
        notification = self.dispatcher.send_connected(binding)
        attempt.advance(LinkState.DONE)
        logger.info(
            "link_connected",
            extra={"wallet_address": wallet, "telegram_id": telegram_id, "notification": notification.status.value},
        )
        return LinkResult(
            ok=True,
            status="connected",
            wallet_address=wallet,
            telegram_id=telegram_id,
            notification=notification,
        )

    def disconnect(self, wallet_address: str) -> LinkResult:
        wallet = normalize_wallet_address(wallet_address)
        binding = self.store.lookup_by_wallet(wallet)
        if binding is None:
            return LinkResult(ok=True, status="not_connected", wallet_address=wallet)
        telegram_id = int(binding.telegram_user_id)
        # Notify first so the recipient still resolves; the outcome never blocks deletion.
        notification = self.dispatcher.send_disconnected(binding)
        self.store.delete_by_wallet(wallet)
        logger.info(
            "link_disconnected",
            extra={"wallet_address": wallet, "telegram_id": telegram_id, "notification": notification.status.value},
        )
        return LinkResult(
            ok=True,
            status="disconnected",
            wallet_address=wallet,
            telegram_id=telegram_id,
            notification=notification,
        )

    def status(self, wallet_address: str) -> WalletTelegramBinding | None:
        return self.store.lookup_by_wallet(wallet_address)

    def _is_bound(self, wallet: str, telegram_id: int) -> bool:
        try:
            binding = self.store.lookup_by_wallet(wallet)
        except StoreError:
            return False
        return binding is not None and int(binding.telegram_user_id) == telegram_id
