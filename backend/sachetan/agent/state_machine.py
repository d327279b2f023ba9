"""
Conversation engine - one parameterised state machine for every deployment.

Turn lifecycle (handle_inbound):
    1. Load the session (created on first contact) and log the inbound message
    2. Manual takeover: refresh last_message_at only, no reply
    3. Rate limit: throttling notice, no state change
    4. Classify once; greeting/reset goes to the menu with context cleared
    5. Media: stored in custom_solutions, logged as a lead artifact elsewhere
    6. Interruptible stage + conversational text -> confirm_exit_flow
    7. Stage handler runs on a working copy of the session
    8. Success -> the copy is saved. ValidationError / RetrievalError /
       CapacityError -> their user message is sent and the stored session
       is kept. Anything else -> logged, generic apology, nothing saved.

The webhook always acknowledges; nothing raised here reaches the transport.
"""
import asyncio
import logging
from contextlib import contextmanager
from typing import Awaitable, Callable, Dict, Optional

from sachetan.agent.conversation_state import INTERRUPTIBLE_STAGES, MessageKind, Stage, classify_message
from sachetan.agent.flow_config import SACHETAN_FLOW, FlowConfig
from sachetan.agent.flows import assistant, booking, menu, shop
from sachetan.agent.turn import InboundMessage, Turn
from sachetan.core.config import settings
from sachetan.core.exceptions import (
    GENERIC_APOLOGY,
    CapacityError,
    ChatbotError,
    RetrievalError,
    ValidationError,
)
from sachetan.core.rate_limiter import RateLimiter
from sachetan.core.timeutils import business_now
from sachetan.services import lead_service

logger = logging.getLogger(__name__)

THROTTLE_TEXT = "⏳ You're sending messages too quickly. Please wait a minute and try again."
MEDIA_ACK_TEXT = "📎 Thanks, we've received your file. Our team will take a look."
MEDIA_STORED_TEXT = "📎 Got it! I'll use your file in the next answer. Tell me what you need."
MEDIA_FAILED_TEXT = "😔 We couldn't download your file. Please try sending it again."

Handler = Callable[["ConversationEngine", Turn], Awaitable[None]]

HANDLERS: Dict[str, Handler] = {
    Stage.MENU: menu.handle_menu,
    Stage.ORDER_STATUS: menu.handle_order_status,
    Stage.BOOKING_CONFIRMED: menu.handle_menu,
    # AI assistant
    Stage.SELECT_USER_TYPE: assistant.handle_select_user_type,
    Stage.CUSTOM_SOLUTIONS: assistant.handle_custom_solutions,
    Stage.CUSTOM_ASK_NAME: assistant.handle_lead_field,
    Stage.CUSTOM_ASK_CITY: assistant.handle_lead_field,
    Stage.CUSTOM_ASK_PINCODE: assistant.handle_lead_field,
    Stage.CONFIRM_EXIT_FLOW: assistant.handle_confirm_exit,
    # Shop
    Stage.SHOP_TOP_CATEGORY: shop.handle_top_category,
    Stage.SHOP_MID_CATEGORY: shop.handle_mid_category,
    Stage.SHOP_PRODUCT: shop.handle_product,
    Stage.SHOP_QUANTITY: shop.handle_quantity,
    Stage.ASK_NAME: shop.handle_ask_name,
    Stage.ASK_ADDRESS: shop.handle_ask_address,
    Stage.ASK_PINCODE: shop.handle_ask_pincode,
    Stage.SHOP_CONFIRM: shop.handle_confirm,
    # Court booking
    Stage.CHOOSE_DATE: booking.handle_choose_date,
    Stage.CHOOSE_PLAYERS: booking.handle_choose_players,
    Stage.CHOOSE_SLOT: booking.handle_choose_slot,
    Stage.CHOOSE_COURT: booking.handle_choose_court,
    Stage.PAYMENT_PENDING: booking.handle_payment_pending,
    Stage.NO_SLOTS_AVAILABLE: booking.handle_no_slots,
    Stage.CHECK_AVAILABILITY_DATE: booking.handle_check_availability_date,
    Stage.AFTER_AVAILABILITY: booking.handle_after_availability,
}

# Re-ask the question of a stage when a declined interrupt resumes it
REPROMPTS: Dict[str, Handler] = {
    Stage.SHOP_TOP_CATEGORY: shop.prompt_top_category,
    Stage.SHOP_MID_CATEGORY: shop.prompt_mid_category,
    Stage.SHOP_PRODUCT: shop.prompt_product,
    Stage.SHOP_QUANTITY: shop.prompt_quantity,
    Stage.SHOP_CONFIRM: shop.prompt_confirm,
    Stage.CHOOSE_DATE: booking.prompt_date,
    Stage.CHOOSE_PLAYERS: booking.prompt_players,
    Stage.CHOOSE_SLOT: booking.prompt_slot,
    Stage.CHOOSE_COURT: booking.prompt_court,
}


class ConversationEngine:
    def __init__(
        self,
        *,
        store,
        messenger,
        rag,
        session_factory,
        history,
        media_store=None,
        flow: FlowConfig = SACHETAN_FLOW,
        rate_limiter: Optional[RateLimiter] = None,
        base_url: Optional[str] = None,
        clock=business_now,
    ):
        self.store = store
        self.messenger = messenger
        self.rag = rag
        self.session_factory = session_factory
        self.history = history
        self.media_store = media_store
        self.flow = flow
        self.rate_limiter = rate_limiter or RateLimiter(
            requests=settings.RATE_LIMIT_MESSAGES, window=settings.RATE_LIMIT_WINDOW_SECONDS
        )
        self.base_url = (base_url or settings.BASE_URL).rstrip("/")
        self.clock = clock

    # ------------------------------------------------------------------
    # Helpers used by flows
    # ------------------------------------------------------------------

    @contextmanager
    def db(self):
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    async def reply(self, turn: Turn, body: str, **kwargs) -> None:
        await self.messenger.send(turn.phone, body, **kwargs)

    async def reprompt(self, turn: Turn, stage: str) -> None:
        prompt = REPROMPTS.get(stage)
        if prompt is None:
            await menu.send_menu(self, turn)
            return
        await prompt(self, turn)

    async def _safe_send(self, phone: str, body: str) -> None:
        try:
            await self.messenger.send(phone, body)
        except Exception as e:
            logger.error(f"[Conversation] Could not deliver error reply to {phone}: {e}")

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def handle_inbound(self, message: InboundMessage) -> None:
        phone = message.phone
        try:
            session = self.store.load(phone)
        except ChatbotError as e:
            logger.error(f"[Conversation] Could not load session for {phone}: {e}")
            await self._safe_send(phone, e.user_message)
            return

        first_media = message.media[0][0] if message.media else None
        self.history.record(phone, "user", message.body, media_url=first_media,
                            provider_message_id=message.message_sid)

        if session.is_manual:
            self.store.touch(phone)
            logger.info(f"[Conversation] {phone} is in manual mode, no automated reply")
            return

        allowed, _ = self.rate_limiter.is_allowed(phone)
        if not allowed:
            logger.warning(f"[Conversation] Rate limit hit for {phone}")
            await self._safe_send(phone, THROTTLE_TEXT)
            return

        turn = Turn(message=message, session=session.copy(), classified=classify_message(message.body))
        stage_before = session.stage
        try:
            await self._dispatch(turn)
            self.store.save_state(turn.session)
            logger.info(f"[Conversation] {phone}: {stage_before} -> {turn.session.stage}")
        except (ValidationError, RetrievalError, CapacityError) as e:
            logger.info(f"[Conversation] {phone} at {stage_before}: {type(e).__name__}: {e}")
            await self._safe_send(phone, e.user_message)
            self._keep_stored_session(phone)
        except ChatbotError as e:
            logger.error(f"[Conversation] {phone} at {stage_before}: {type(e).__name__}: {e}")
            await self._safe_send(phone, e.user_message)
        except Exception as e:
            logger.exception(f"[Conversation] Unhandled error for {phone} at {stage_before}: {e}")
            await self._safe_send(phone, GENERIC_APOLOGY)

    def _keep_stored_session(self, phone: str) -> None:
        try:
            self.store.touch(phone)
        except ChatbotError as e:
            logger.error(f"[Conversation] Could not refresh session for {phone}: {e}")

    async def _dispatch(self, turn: Turn) -> None:
        if turn.message.has_media:
            proceed = await self._handle_media(turn)
            if not proceed:
                return

        if turn.classified.is_reset:
            turn.session.stage = Stage.MENU
            turn.session.previous_stage = None
            turn.session.context = {}
            await menu.send_menu(self, turn, greeting=turn.classified.kind == MessageKind.GREETING)
            return

        stage = turn.session.stage
        if stage in INTERRUPTIBLE_STAGES and turn.classified.is_conversational:
            await assistant.offer_interrupt(self, turn)
            return

        handler = HANDLERS.get(stage)
        if handler is None:
            logger.warning(f"[Conversation] Unknown stage {stage!r} for {turn.phone}, back to menu")
            turn.goto(Stage.MENU)
            handler = menu.handle_menu
        await handler(self, turn)

    async def _handle_media(self, turn: Turn) -> bool:
        """Returns True when the text part of the message should still be handled."""
        stage = turn.session.stage
        if stage == Stage.CUSTOM_SOLUTIONS and self.media_store is not None:
            attachments = turn.ctx.setdefault("custom", {}).setdefault("attachments", [])
            stored = 0
            for url, content_type in turn.message.media:
                try:
                    relative = await asyncio.to_thread(
                        self.media_store.download_inbound, url, content_type, turn.phone
                    )
                except Exception as e:
                    logger.error(f"[Conversation] Media download failed for {turn.phone}: {e}")
                    await self.reply(turn, MEDIA_FAILED_TEXT)
                    continue
                attachments.append(self.media_store.public_url(relative))
                stored += 1
            if turn.message.has_text:
                return True
            if stored:
                await self.reply(turn, MEDIA_STORED_TEXT)
            return False

        with self.db() as db:
            for url, content_type in turn.message.media:
                lead_service.log_artifact(db, turn.phone, url, content_type, stage)
        await self.reply(turn, MEDIA_ACK_TEXT)
        return False
