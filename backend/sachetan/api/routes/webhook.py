"""
Twilio WhatsApp webhooks.

Both endpoints always answer 200 with an empty body: Twilio retries on
anything else, and errors are reported to the customer over WhatsApp.
The conversation turn runs as a background task after the response is sent.
"""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response

from sachetan.agent.turn import InboundMessage
from sachetan.api.deps import get_services
from sachetan.bootstrap import Services

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_MEDIA = 10


def parse_inbound(form) -> InboundMessage:
    try:
        num_media = int(form.get("NumMedia") or 0)
    except ValueError:
        num_media = 0
    media = []
    for index in range(min(num_media, MAX_MEDIA)):
        url = form.get(f"MediaUrl{index}")
        if url:
            media.append((url, form.get(f"MediaContentType{index}")))
    return InboundMessage(
        phone=(form.get("From") or "").strip(),
        body=form.get("Body") or "",
        media=media,
        message_sid=form.get("MessageSid"),
    )


async def _run_turn(services: Services, message: InboundMessage):
    try:
        await services.engine.handle_inbound(message)
    except Exception as e:
        logger.exception(f"[Webhook] Turn for {message.phone} failed outside the engine: {e}")


@router.post("/whatsapp")
async def whatsapp_inbound(
    request: Request,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
):
    try:
        form = await request.form()
        message = parse_inbound(form)
    except Exception as e:
        logger.error(f"[Webhook] Unreadable inbound payload: {e}")
        return Response(status_code=200)

    if not message.phone:
        logger.warning("[Webhook] Inbound message without sender ignored")
        return Response(status_code=200)

    logger.info(f"[Webhook] {message.phone}: {message.body[:80]!r} media={len(message.media)}")
    background_tasks.add_task(_run_turn, services, message)
    return Response(status_code=200)


@router.post("/whatsapp/status")
async def whatsapp_status(request: Request, services: Services = Depends(get_services)):
    try:
        form = await request.form()
        sid = form.get("MessageSid")
        status = form.get("MessageStatus")
        if sid and status:
            updated = services.history.update_status(sid, status)
            logger.debug(f"[Webhook] Status {sid} -> {status} ({updated} row(s))")
    except Exception as e:
        logger.error(f"[Webhook] Status callback failed: {e}")
    return Response(status_code=200)
