from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from walletlink.config import settings
from walletlink.core.addresses import mask_telegram_id, normalize_wallet_address
from walletlink.db import get_db
from walletlink.route_logging import EndpointNameRoute
from walletlink.schemas import ConnectRequest, DisconnectRequest, LinkChallengeRequest
from walletlink.services.link_challenge_service import issue_link_challenge, purge_expired_challenges
from walletlink.services.linking_service import LinkingService
from walletlink.services.notification_dispatcher import MessageTransport
from walletlink.services.telegram_auth import is_fresh, parse_telegram_user, verify_telegram_auth
from walletlink.services.telegram_transport import get_telegram_transport

router = APIRouter(prefix="/api", tags=["Wallet Linking"], route_class=EndpointNameRoute)


def get_transport() -> MessageTransport:
    return get_telegram_transport()


def get_linking_service(
    db: Session = Depends(get_db),
    transport: MessageTransport = Depends(get_transport),
) -> LinkingService:
    return LinkingService(db, transport)


@router.post("/link/challenge")
def link_challenge(payload: LinkChallengeRequest, db: Session = Depends(get_db)):
    purge_expired_challenges(db)
    challenge = issue_link_challenge(db, wallet_address=payload.wallet_address, telegram_id=payload.telegram_id)
    return {
        "nonce": challenge.nonce,
        "message": challenge.message,
        "expiresAt": challenge.expires_at.isoformat() + "Z",
    }


@router.post("/link/connect")
def link_connect(payload: ConnectRequest, service: LinkingService = Depends(get_linking_service)):
    result = service.connect(payload.wallet_address, payload.telegram_identity, payload.proof_of_ownership)
    return result.to_dict()


@router.post("/link/disconnect")
def link_disconnect(payload: DisconnectRequest, service: LinkingService = Depends(get_linking_service)):
    return service.disconnect(payload.wallet_address).to_dict()


@router.get("/link/status")
def link_status(
    wallet_address: str = Query(alias="walletAddress"),
    service: LinkingService = Depends(get_linking_service),
):
    try:
        wallet = normalize_wallet_address(wallet_address)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    binding = service.status(wallet)
    return {
        "walletAddress": wallet,
        "linked": binding is not None,
        "telegramIdMasked": mask_telegram_id(binding.telegram_user_id) if binding else "",
    }


@router.post("/telegram/auth")
def telegram_auth_check(payload: dict[str, Any] = Body(...)):
    if not verify_telegram_auth(payload):
        raise HTTPException(status_code=400, detail="Invalid authentication data")
    if not is_fresh(payload, settings.telegram_auth_max_age_ms):
        raise HTTPException(status_code=400, detail="Authentication expired")
    try:
        user = parse_telegram_user(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid authentication data") from exc
    return {
        "success": True,
        "user": {
            "id": user.id,
            "username": user.username,
            "display_name": user.display_name,
            "auth_date": user.auth_date,
        },
    }
