from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from walletlink.config import settings
from walletlink.core.addresses import normalize_wallet_address
from walletlink.core.time_provider import default_time_provider
from walletlink.errors import LinkFailureReason, LinkingError, StoreError
from walletlink.models import LinkChallenge
from walletlink.services.signature_verifier import build_link_message, parse_link_message


logger = logging.getLogger(__name__)


def _signature_invalid(detail: str) -> LinkingError:
    return LinkingError(LinkFailureReason.SIGNATURE_INVALID, detail)


def issue_link_challenge(
    db: Session,
    *,
    wallet_address: str,
    telegram_id: int,
    ttl_seconds: int | None = None,
) -> LinkChallenge:
    wallet = normalize_wallet_address(wallet_address)
    ttl = max(60, int(ttl_seconds if ttl_seconds is not None else settings.link_challenge_ttl_seconds))
    now = default_time_provider.utcnow_naive()
    nonce = secrets.token_hex(16)
    row = LinkChallenge(
        nonce=nonce,
        wallet_address=wallet,
        telegram_user_id=int(telegram_id),
        message=build_link_message(
            wallet_address=wallet,
            telegram_id=int(telegram_id),
            nonce=nonce,
            timestamp_ms=default_time_provider.epoch_ms(),
        ),
        issued_at=now,
        expires_at=now + timedelta(seconds=ttl),
    )
    try:
        db.add(row)
        db.commit()
        db.refresh(row)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("link_challenge_issue_failed")
        raise StoreError("link_challenge_issue_failed") from exc
    logger.info("link_challenge_issued", extra={"wallet_address": wallet, "expires_at": row.expires_at.isoformat()})
    return row


def resolve_link_challenge(
    db: Session,
    *,
    message: str,
    wallet_address: str,
    telegram_id: int,
    now: datetime | None = None,
) -> LinkChallenge:
    parsed = parse_link_message(message)
    if parsed is None:
        raise _signature_invalid("unrecognized_link_message")
    try:
        row = db.query(LinkChallenge).filter(LinkChallenge.nonce == parsed["nonce"]).first()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreError("link_challenge_lookup_failed") from exc
    if row is None:
        raise _signature_invalid("unknown_nonce")
    if row.message != message:
        raise _signature_invalid("message_mismatch")
    if row.wallet_address != normalize_wallet_address(wallet_address) or int(row.telegram_user_id) != int(telegram_id):
        raise _signature_invalid("challenge_pair_mismatch")
    now = now or default_time_provider.utcnow_naive()
    if row.expires_at <= now:
        raise _signature_invalid("challenge_expired")
    return row


def consume_link_challenge(db: Session, challenge: LinkChallenge, *, now: datetime | None = None) -> None:
    """Marks the nonce used inside the caller's transaction. Only one caller can win."""
    now = now or default_time_provider.utcnow_naive()
    result = db.execute(
        update(LinkChallenge)
        .where(LinkChallenge.id == challenge.id, LinkChallenge.consumed_at.is_(None))
        .values(consumed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise _signature_invalid("nonce_already_used")


def purge_expired_challenges(db: Session, *, now: datetime | None = None) -> int:
    now = now or default_time_provider.utcnow_naive()
    try:
        result = db.execute(delete(LinkChallenge).where(LinkChallenge.expires_at <= now))
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreError("link_challenge_purge_failed") from exc
    removed = int(result.rowcount or 0)
    if removed:
        logger.info("link_challenges_purged", extra={"removed": removed})
    return removed
