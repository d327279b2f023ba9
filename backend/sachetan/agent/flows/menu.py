"""Main menu, keyword shortcuts and order status lookup."""
import logging

from sachetan.agent.conversation_state import MessageKind, Stage
from sachetan.agent.flows import assistant, booking, shop
from sachetan.core.exceptions import ValidationError
from sachetan.models.order import OrderStatus
from sachetan.services import order_service

logger = logging.getLogger(__name__)

BOOK_KEYWORDS = frozenset({"book", "court", "book court", "book a court", "booking", "court booking"})
MY_BOOKINGS_KEYWORDS = frozenset({"my bookings", "my booking", "bookings"})
AVAILABILITY_KEYWORDS = frozenset({"availability", "check availability", "slots"})
RULES_KEYWORDS = frozenset({"pricing", "rules", "price list", "court rules"})
CONTACT_KEYWORDS = frozenset({"contact", "admin", "talk to admin", "call me", "human", "agent"})

ORDER_STATUS_PROMPT = "📦 Please send your order id (e.g. *ORD-123456-AB1*)."


async def send_menu(engine, turn, greeting: bool = False):
    text = engine.flow.menu_text
    if greeting:
        text = f"{engine.flow.welcome_text}\n\n{text}"
    await engine.reply(turn, text)


async def handle_menu(engine, turn):
    flow = engine.flow
    choice = turn.classified
    turn.goto(Stage.MENU)

    if choice.kind == MessageKind.SELECTION:
        if choice.number == 1:
            await shop.start(engine, turn)
        elif choice.number == 2:
            turn.goto(Stage.ORDER_STATUS)
            await engine.reply(turn, ORDER_STATUS_PROMPT)
        elif choice.number == 3:
            await assistant.start(engine, turn)
        elif choice.number == 4:
            await engine.reply(turn, flow.support_text)
        else:
            raise ValidationError(
                f"Menu option {choice.number} out of range",
                user_message=f"❌ Invalid selection. Please reply with a number from 1 to 4.\n\n{flow.menu_text}",
            )
        return

    text = choice.text
    if not text:
        await send_menu(engine, turn)
    elif text in BOOK_KEYWORDS:
        await booking.start(engine, turn)
    elif text in MY_BOOKINGS_KEYWORDS:
        await booking.list_bookings(engine, turn)
    elif text in AVAILABILITY_KEYWORDS:
        await booking.start_availability(engine, turn)
    elif text in RULES_KEYWORDS:
        await engine.reply(turn, flow.rules_text)
    elif text in CONTACT_KEYWORDS:
        await engine.reply(turn, flow.contact_text)
        await engine.messenger.notify_admins(
            f"📞 {turn.phone.replace('whatsapp:', '')} asked to talk to the team."
        )
    else:
        await assistant.answer_question(engine, turn, turn.text)


async def handle_order_status(engine, turn):
    order_id = turn.text.upper()
    with engine.db() as db:
        order = order_service.get_order(db, order_id) if order_id else None
        if order is None or order.phone != turn.phone:
            raise ValidationError(
                f"Unknown order id {order_id!r}",
                user_message="❌ We couldn't find that order. Please check the id and send it again, or type *menu*.",
            )
        order_service.expire_if_stale(db, order)
        summary = order_service.format_order_summary(order)
        link = order_service.payment_link(engine.base_url, order) if order.status == OrderStatus.PENDING else None

    turn.goto(Stage.MENU)
    text = summary if link is None else f"{summary}\n\n💳 Pay here: {link}"
    await engine.reply(turn, text)
