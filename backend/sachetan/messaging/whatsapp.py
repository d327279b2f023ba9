"""
Outbound WhatsApp messaging over Twilio.

`TwilioTransport` is the thin provider wrapper (blocking SDK calls).
`Messenger` is what the rest of the app uses: it renders quick-reply
buttons, splits long bodies on paragraph boundaries, runs the SDK in a
worker thread and logs every outbound message to chat history.

Without Twilio credentials the transport runs in dev mode: messages are
logged instead of sent.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import requests
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from sachetan.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuickReply:
    id: str  # stable reply the user can type back
    title: str


def render_buttons(buttons: Sequence[QuickReply]) -> str:
    return "\n".join(f"👉 *{button.id}* - {button.title}" for button in buttons)


def _hard_split(text: str, limit: int) -> List[str]:
    pieces = []
    remaining = text
    while len(remaining) > limit:
        cut = remaining.rfind("\n", 0, limit + 1)
        if cut <= 0:
            cut = remaining.rfind(" ", 0, limit + 1)
        if cut <= 0:
            cut = limit
        pieces.append(remaining[:cut].rstrip())
        remaining = remaining[cut:].lstrip()
    if remaining:
        pieces.append(remaining)
    return pieces


def split_message(body: str, limit: int = 1500) -> List[str]:
    """
    Split on blank-line paragraph boundaries into parts of at most `limit`
    characters. Nothing is truncated; an oversized paragraph is broken on
    line or word boundaries.
    """
    body = (body or "").strip()
    if len(body) <= limit:
        return [body] if body else []

    parts: List[str] = []
    current = ""
    for paragraph in body.split("\n\n"):
        paragraph = paragraph.strip()
        if not paragraph:
            continue
        for piece in _hard_split(paragraph, limit) if len(paragraph) > limit else [paragraph]:
            candidate = f"{current}\n\n{piece}" if current else piece
            if len(candidate) <= limit:
                current = candidate
            else:
                parts.append(current)
                current = piece
    if current:
        parts.append(current)
    return parts


def whatsapp_address(phone: str) -> str:
    phone = phone.strip()
    return phone if phone.startswith("whatsapp:") else f"whatsapp:{phone}"


class TwilioTransport:
    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        status_callback_url: Optional[str] = None,
    ):
        account_sid = settings.TWILIO_ACCOUNT_SID if account_sid is None else account_sid
        auth_token = settings.TWILIO_AUTH_TOKEN if auth_token is None else auth_token
        self.from_number = whatsapp_address(from_number or settings.TWILIO_WHATSAPP_FROM)
        self.status_callback_url = status_callback_url or f"{settings.BASE_URL}/webhook/whatsapp/status"
        self.account_sid = account_sid

        if account_sid and auth_token:
            self.client = Client(account_sid, auth_token)
            logger.info("✅ Twilio client initialized")
        else:
            logger.warning("⚠️ Twilio credentials missing. WhatsApp transport in DEV mode (log only).")
            self.client = None

    def is_available(self) -> bool:
        return self.client is not None

    def send(
        self,
        to: str,
        body: Optional[str] = None,
        media_url: Optional[str] = None,
        content_sid: Optional[str] = None,
        content_variables: Optional[Dict[str, str]] = None,
    ) -> Optional[str]:
        """Blocking send. Returns the provider message SID (None in dev mode)."""
        if self.client is None:
            logger.info(f"[DEV WhatsApp] to={to} media={media_url} template={content_sid}\n{body}")
            return None

        kwargs = {"from_": self.from_number, "to": whatsapp_address(to)}
        if self.status_callback_url.startswith("https://"):
            kwargs["status_callback"] = self.status_callback_url
        if content_sid:
            kwargs["content_sid"] = content_sid
            if content_variables:
                kwargs["content_variables"] = json.dumps(content_variables)
        else:
            kwargs["body"] = body or ""
        if media_url:
            kwargs["media_url"] = [media_url]

        message = self.client.messages.create(**kwargs)
        return message.sid

    def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            self.client.api.accounts(self.account_sid).fetch()
            return True
        except Exception as e:
            logger.warning(f"Twilio ping failed: {e}")
            return False


class Messenger:
    """Async outbound API used by the conversation engine, jobs and routes."""

    def __init__(self, transport, history, max_length: Optional[int] = None, admin_numbers: Optional[List[str]] = None):
        self.transport = transport
        self.history = history
        self.max_length = max_length or settings.MAX_MESSAGE_LENGTH
        self.admin_numbers = settings.ADMIN_WHATSAPP if admin_numbers is None else admin_numbers

    async def _deliver(self, phone: str, sender: str, body: str, **kwargs) -> Optional[str]:
        try:
            sid = await asyncio.to_thread(self.transport.send, phone, body, **kwargs)
            status = "sent" if sid else None
        except TwilioRestException as e:
            logger.error(f"[WhatsApp] Send to {phone} failed: {e.code} {e.msg}")
            sid, status = None, "failed"
        except (requests.RequestException, ConnectionError, TimeoutError) as e:
            logger.error(f"[WhatsApp] Send to {phone} failed: {e}")
            sid, status = None, "failed"
        self.history.record(
            phone, sender, body or f"[template {kwargs.get('content_sid')}]",
            media_url=kwargs.get("media_url"), provider_message_id=sid, status=status,
        )
        return sid

    async def send(
        self,
        phone: str,
        body: str = "",
        *,
        media_url: Optional[str] = None,
        buttons: Optional[Sequence[QuickReply]] = None,
        content_sid: Optional[str] = None,
        content_variables: Optional[Dict[str, str]] = None,
        sender: str = "bot",
    ) -> List[Optional[str]]:
        """
        Send a reply. Long text goes out as several sequential messages; the
        media attachment rides on the first part. A template (content_sid)
        is sent as a single message.
        """
        if content_sid:
            sid = await self._deliver(
                phone, sender, body, media_url=media_url,
                content_sid=content_sid, content_variables=content_variables,
            )
            return [sid]

        text = body or ""
        if buttons:
            text = f"{text}\n\n{render_buttons(buttons)}" if text else render_buttons(buttons)

        parts = split_message(text, self.max_length) or [""]
        sids = []
        for index, part in enumerate(parts):
            sids.append(await self._deliver(
                phone, sender, part, media_url=media_url if index == 0 else None,
            ))
        return sids

    async def notify_admins(self, body: str) -> None:
        for admin in self.admin_numbers:
            await self.send(admin, body, sender="bot")
