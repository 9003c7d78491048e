from __future__ import annotations

import hmac
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from walletlink.config import settings
from walletlink.db import get_db
from walletlink.route_logging import EndpointNameRoute
from walletlink.routers.linking import get_transport
from walletlink.schemas import parse_event
from walletlink.services.binding_store import BindingStore
from walletlink.services.notification_dispatcher import MessageTransport, NotificationDispatcher

router = APIRouter(prefix="/api", tags=["Events"], route_class=EndpointNameRoute)


def _require_event_secret(x_events_secret: str | None = Header(default=None)) -> None:
    expected = str(settings.events_api_secret or "").strip()
    if expected and not hmac.compare_digest(expected, str(x_events_secret or "").strip()):
        raise HTTPException(status_code=403, detail="Invalid events secret")


@router.post("/events", dependencies=[Depends(_require_event_secret)])
def dispatch_event(
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    transport: MessageTransport = Depends(get_transport),
):
    # Validate the whole payload before any lookup or send.
    event = parse_event(payload)
    dispatcher = NotificationDispatcher(BindingStore(db), transport)
    return dispatcher.dispatch(event).to_dict()
