"""
Operator endpoints: takeover/release, direct and bulk messages, history.

Phone numbers are accepted with or without the `whatsapp:` prefix.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, Query

from sachetan.api.deps import get_services, require_admin
from sachetan.bootstrap import Services
from sachetan.core.exceptions import BusinessError, PersistenceError
from sachetan.messaging.whatsapp import whatsapp_address
from sachetan.schemas.sessions import AdminMessage, BulkMessage, HistoryEntryResponse, SessionResponse
from sachetan.services.session_store import SessionState

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])


def _to_response(state: SessionState) -> SessionResponse:
    return SessionResponse(
        phone=state.phone,
        stage=state.stage,
        previous_stage=state.previous_stage,
        user_type=state.user_type,
        last_message_at=state.last_message_at,
    )


@router.get("/{phone}", response_model=SessionResponse)
def get_session(phone: str, services: Services = Depends(get_services)):
    return _to_response(services.store.load(whatsapp_address(phone)))


@router.post("/{phone}/takeover", response_model=SessionResponse)
def takeover(phone: str, services: Services = Depends(get_services)):
    """Bot goes silent for this phone until released."""
    try:
        state = services.store.set_manual(whatsapp_address(phone), True)
    except PersistenceError as e:
        raise BusinessError.server_error(e)
    logger.info(f"[Admin] Manual takeover of {state.phone}")
    return _to_response(state)


@router.post("/{phone}/release", response_model=SessionResponse)
def release(phone: str, services: Services = Depends(get_services)):
    try:
        state = services.store.set_manual(whatsapp_address(phone), False)
    except PersistenceError as e:
        raise BusinessError.server_error(e)
    logger.info(f"[Admin] Released {state.phone} back to the bot")
    return _to_response(state)


@router.post("/{phone}/message")
async def send_message(phone: str, payload: AdminMessage, services: Services = Depends(get_services)):
    address = whatsapp_address(phone)
    sids = await services.messenger.send(address, payload.message, media_url=payload.media_url, sender="admin")
    return {"phone": address, "sent": sum(1 for sid in sids if sid), "parts": len(sids)}


@router.post("/bulk")
async def bulk_message(payload: BulkMessage, services: Services = Depends(get_services)):
    results = {}
    for phone in dict.fromkeys(whatsapp_address(p) for p in payload.phones):
        sids = await services.messenger.send(
            phone, payload.message, media_url=payload.media_url, sender="admin_bulk",
        )
        results[phone] = all(sids)
    logger.info(f"[Admin] Bulk message to {len(results)} phone(s)")
    return {"requested": len(results), "results": results}


@router.get("/{phone}/history", response_model=List[HistoryEntryResponse])
def history(phone: str, limit: int = Query(50, ge=1, le=500), services: Services = Depends(get_services)):
    return services.history.recent(whatsapp_address(phone), limit)
