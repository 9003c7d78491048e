from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from walletlink.config import settings
from walletlink.errors import StoreError, TransportError
from walletlink.models import WalletTelegramBinding
from walletlink.schemas import (
    ConnectedData,
    DailyClaimData,
    DisconnectedData,
    RewardsDepositData,
    parse_event,
)
from walletlink.services.binding_store import BindingStore
from walletlink.services.message_templates import MessageTemplates


logger = logging.getLogger(__name__)


class MessageTransport(Protocol):
    def send_message(self, recipient_id: int, text: str) -> dict[str, Any]: ...


class RecipientStatus(str, Enum):
    SENT = "sent"
    SKIPPED_UNBOUND = "skipped_unbound"
    SEND_FAILED = "send_failed"
    LOOKUP_FAILED = "lookup_failed"
    DELETE_FAILED = "delete_failed"


@dataclass
class RecipientOutcome:
    address: str
    status: RecipientStatus
    telegram_id: int | None = None
    roles: list[str] = field(default_factory=list)
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "status": self.status.value,
            "telegram_id": self.telegram_id,
            "roles": list(self.roles),
            "error": self.error,
        }


@dataclass
class DispatchReport:
    event_type: str
    outcomes: list[RecipientOutcome] = field(default_factory=list)

    def count(self, status: RecipientStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def sent(self) -> int:
        return self.count(RecipientStatus.SENT)

    @property
    def skipped(self) -> int:
        return self.count(RecipientStatus.SKIPPED_UNBOUND)

    @property
    def failed(self) -> int:
        return sum(
            self.count(status)
            for status in (RecipientStatus.SEND_FAILED, RecipientStatus.LOOKUP_FAILED, RecipientStatus.DELETE_FAILED)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "sent": self.sent,
            "skipped": self.skipped,
            "failed": self.failed,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


class NotificationDispatcher:
    """Routes an upstream event to every bound recipient it names.

    Each recipient is resolved and sent on its own; a lookup or send failure is
    recorded in the report and never stops the remaining recipients.
    """

    def __init__(
        self,
        store: BindingStore,
        transport: MessageTransport,
        templates: MessageTemplates | None = None,
        *,
        explorer_tx_url: str | None = None,
    ) -> None:
        self.store = store
        self.transport = transport
        self.templates = templates or MessageTemplates()
        self.explorer_tx_url = explorer_tx_url or settings.explorer_tx_url
        self._handlers = {
            "Connected": self._on_connected,
            "Disconnected": self._on_disconnected,
            "RewardsDeposit": self._on_rewards_deposit,
            "DailyClaim": self._on_daily_claim,
        }

    def dispatch(self, event: Any) -> DispatchReport:
        if isinstance(event, dict):
            event = parse_event(event)
        report = DispatchReport(event_type=event.type)
        self._handlers[event.type](event.data, report)
        logger.info(
            "dispatch_completed",
            extra={
                "event_type": report.event_type,
                "sent": report.sent,
                "skipped": report.skipped,
                "failed": report.failed,
            },
        )
        return report

    def send_connected(self, binding: WalletTelegramBinding) -> RecipientOutcome:
        return self._send(
            binding.wallet_address,
            int(binding.telegram_user_id),
            self.templates.connected(binding.wallet_address),
        )

    def send_disconnected(self, binding: WalletTelegramBinding) -> RecipientOutcome:
        return self._send(
            binding.wallet_address,
            int(binding.telegram_user_id),
            self.templates.disconnected(binding.wallet_address),
        )

    def _on_connected(self, data: ConnectedData, report: DispatchReport) -> None:
        binding = self._resolve(data.wallet_address, report)
        if binding is None:
            return
        if int(binding.telegram_user_id) != int(data.telegram_id):
            report.outcomes.append(
                RecipientOutcome(
                    address=data.wallet_address,
                    status=RecipientStatus.SKIPPED_UNBOUND,
                    error="telegram_id_mismatch",
                )
            )
            return
        report.outcomes.append(self.send_connected(binding))

    def _on_disconnected(self, data: DisconnectedData, report: DispatchReport) -> None:
        # Resolve before deleting so the recipient can still be told.
        binding = self._resolve(data.wallet_address, report)
        if binding is None:
            return
        report.outcomes.append(self.send_disconnected(binding))
        try:
            self.store.delete_by_wallet(data.wallet_address)
        except StoreError as exc:
            # Send already attempted; the failed unbind is reported, not raised.
            logger.warning("dispatch_unbind_failed", extra={"wallet_address": data.wallet_address, "error": exc.detail})
            report.outcomes.append(
                RecipientOutcome(
                    address=data.wallet_address,
                    status=RecipientStatus.DELETE_FAILED,
                    telegram_id=int(binding.telegram_user_id),
                    error=exc.detail,
                )
            )

    def _on_rewards_deposit(self, data: RewardsDepositData, report: DispatchReport) -> None:
        roles_by_address: dict[str, list[str]] = {}
        for role, address in (
            ("receiver", data.receiver),
            ("minter", data.minter),
            ("referral", data.referral),
            ("verifier", data.verifier),
        ):
            roles_by_address.setdefault(address, []).append(role)

        tx_url = self.explorer_tx_url.format(tx_hash=data.transaction_hash)
        for address, roles in roles_by_address.items():
            binding = self._resolve(address, report, roles=roles)
            if binding is None:
                continue
            text = self.templates.rewards_deposit(
                roles=roles,
                receiver=data.receiver,
                minter=data.minter,
                referral=data.referral,
                verifier=data.verifier,
                tx_url=tx_url,
            )
            report.outcomes.append(self._send(address, int(binding.telegram_user_id), text, roles=roles))

    def _on_daily_claim(self, data: DailyClaimData, report: DispatchReport) -> None:
        for entry in data.artists:
            binding = self._resolve(entry.artist, report)
            if binding is None:
                continue
            text = self.templates.daily_claim(artist=entry.artist, quantity=entry.quantity)
            report.outcomes.append(self._send(entry.artist, int(binding.telegram_user_id), text))

    def _resolve(
        self,
        address: str,
        report: DispatchReport,
        *,
        roles: list[str] | None = None,
    ) -> WalletTelegramBinding | None:
        try:
            binding = self.store.lookup_by_wallet(address)
        except StoreError as exc:
            logger.warning("dispatch_lookup_failed", extra={"wallet_address": address, "error": exc.detail})
            report.outcomes.append(
                RecipientOutcome(
                    address=address,
                    status=RecipientStatus.LOOKUP_FAILED,
                    roles=list(roles or []),
                    error=exc.detail,
                )
            )
            return None
        if binding is None:
            report.outcomes.append(
                RecipientOutcome(address=address, status=RecipientStatus.SKIPPED_UNBOUND, roles=list(roles or []))
            )
        return binding

    def _send(
        self,
        address: str,
        telegram_id: int,
        text: str,
        *,
        roles: list[str] | None = None,
    ) -> RecipientOutcome:
        outcome = RecipientOutcome(
            address=address,
            status=RecipientStatus.SENT,
            telegram_id=telegram_id,
            roles=list(roles or []),
        )
        try:
            self.transport.send_message(telegram_id, text)
        except TransportError as exc:
            logger.warning("telegram_send_failed", extra={"telegram_id": telegram_id, "error": exc.detail})
            outcome.status = RecipientStatus.SEND_FAILED
            outcome.error = exc.detail
        except Exception as exc:
            logger.exception("telegram_send_crashed", extra={"telegram_id": telegram_id})
            outcome.status = RecipientStatus.SEND_FAILED
            outcome.error = f"{exc.__class__.__name__}: {exc}"
        return outcome
