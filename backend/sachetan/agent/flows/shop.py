"""
Catalog checkout: top category -> mid category -> product -> quantity ->
name -> address -> pincode -> confirm.

The draft lives in context["shop"]. Confirming creates a PENDING order with
a short payment window and sends the payment link.
"""
import logging
from decimal import Decimal

from sachetan.agent.conversation_state import MessageKind, Stage
from sachetan.agent.turn import numbered, pick, require_text
from sachetan.core.exceptions import ValidationError
from sachetan.messaging.whatsapp import QuickReply
from sachetan.services import catalog_service, order_service
from sachetan.services.pricing import LineItem, compute_order_totals

logger = logging.getLogger(__name__)

CONFIRM_BUTTONS = [QuickReply("confirm", "Place order"), QuickReply("cancel", "Cancel")]

NAME_PROMPT = "Please share your *full name* for delivery."
ADDRESS_PROMPT = "Please share your *delivery address*."
PINCODE_PROMPT = "Please share your *pincode*."


def _draft(turn) -> dict:
    return turn.ctx.setdefault("shop", {})


# ============================================================================
# OPTION LISTS
# ============================================================================

def _top_options(engine):
    with engine.db() as db:
        return [(c.id, c.name) for c in catalog_service.list_top_categories(db)]


def _mid_options(engine, top_id):
    with engine.db() as db:
        return [(c.id, c.name) for c in catalog_service.list_mid_categories(db, top_id)]


def _product_options(engine, mid_id):
    with engine.db() as db:
        return [(p.id, p.name, p.price) for p in catalog_service.list_products(db, mid_id)]


def _top_prompt(options) -> str:
    return "🛒 *Shop by category*\n\n" + numbered([name for _, name in options]) + "\n\nReply with a number."


def _mid_prompt(options) -> str:
    return "📂 *Choose a sub-category*\n\n" + numbered([name for _, name in options]) + "\n\nReply with a number."


def _product_prompt(options) -> str:
    lines = [f"{name} - ₹{price}" for _, name, price in options]
    return "📦 *Choose a product*\n\n" + numbered(lines) + "\n\nReply with a number."


def _quantity_prompt(engine) -> str:
    return f"How many would you like? (minimum {engine.flow.shop_min_quantity})"


# ============================================================================
# PROMPTS (also used to resume after a declined interrupt)
# ============================================================================

async def start(engine, turn):
    turn.ctx["shop"] = {}
    turn.goto(Stage.SHOP_TOP_CATEGORY)
    await prompt_top_category(engine, turn)


async def prompt_top_category(engine, turn):
    options = _top_options(engine)
    if not options:
        turn.goto(Stage.MENU)
        await engine.reply(turn, "🛒 Our online catalog is being updated. Please check back soon or type *3* to ask our assistant.")
        return
    await engine.reply(turn, _top_prompt(options))


async def prompt_mid_category(engine, turn):
    await engine.reply(turn, _mid_prompt(_mid_options(engine, _draft(turn).get("top_id"))))


async def prompt_product(engine, turn):
    await engine.reply(turn, _product_prompt(_product_options(engine, _draft(turn).get("mid_id"))))


async def prompt_quantity(engine, turn):
    await engine.reply(turn, _quantity_prompt(engine))


async def prompt_confirm(engine, turn):
    await engine.reply(turn, _summary(engine, turn), buttons=CONFIRM_BUTTONS)


# ============================================================================
# HANDLERS
# ============================================================================

async def handle_top_category(engine, turn):
    options = _top_options(engine)
    top_id, name = pick(turn.classified.number, options, _top_prompt(options))
    mids = _mid_options(engine, top_id)
    if not mids:
        raise ValidationError(
            f"Top category {top_id} has no sub-categories",
            user_message=f"😔 No products under *{name}* yet. Please choose another category.\n\n{_top_prompt(options)}",
        )
    _draft(turn).update({"top_id": top_id, "top_name": name})
    turn.goto(Stage.SHOP_MID_CATEGORY)
    await engine.reply(turn, _mid_prompt(mids))


async def handle_mid_category(engine, turn):
    draft = _draft(turn)
    options = _mid_options(engine, draft.get("top_id"))
    mid_id, name = pick(turn.classified.number, options, _mid_prompt(options))
    products = _product_options(engine, mid_id)
    if not products:
        raise ValidationError(
            f"Mid category {mid_id} has no products",
            user_message=f"😔 No products under *{name}* yet. Please choose another.\n\n{_mid_prompt(options)}",
        )
    draft.update({"mid_id": mid_id, "mid_name": name})
    turn.goto(Stage.SHOP_PRODUCT)
    await engine.reply(turn, _product_prompt(products))


async def handle_product(engine, turn):
    draft = _draft(turn)
    options = _product_options(engine, draft.get("mid_id"))
    product_id, _, _ = pick(turn.classified.number, options, _product_prompt(options))
    with engine.db() as db:
        product = catalog_service.get_product(db, product_id)
        card = catalog_service.describe_product(product)
        photo = product.featured_photo
        draft.update({
            "product_id": product.id,
            "product_name": product.name,
            "unit_price": str(product.price),
            "stock": product.stock,
        })
    turn.goto(Stage.SHOP_QUANTITY)
    await engine.reply(turn, f"{card}\n\n{_quantity_prompt(engine)}", media_url=photo)


async def handle_quantity(engine, turn):
    draft = _draft(turn)
    minimum = engine.flow.shop_min_quantity
    quantity = turn.classified.number
    if turn.classified.kind != MessageKind.SELECTION or quantity < minimum:
        raise ValidationError(
            f"Bad quantity {turn.text!r}",
            user_message=f"❌ Please enter a quantity of at least {minimum}.",
        )
    stock = draft.get("stock")
    if stock is not None and quantity > stock:
        raise ValidationError(
            f"Quantity {quantity} above stock {stock}",
            user_message=f"❌ Only {stock} in stock. Please enter a smaller quantity.",
        )
    draft["quantity"] = quantity
    turn.goto(Stage.ASK_NAME)
    await engine.reply(turn, NAME_PROMPT)


async def handle_ask_name(engine, turn):
    _draft(turn)["name"] = require_text(turn.text, "name", NAME_PROMPT, max_length=80)
    turn.goto(Stage.ASK_ADDRESS)
    await engine.reply(turn, ADDRESS_PROMPT)


async def handle_ask_address(engine, turn):
    _draft(turn)["address"] = require_text(turn.text, "address", ADDRESS_PROMPT, max_length=500)
    turn.goto(Stage.ASK_PINCODE)
    await engine.reply(turn, PINCODE_PROMPT)


async def handle_ask_pincode(engine, turn):
    _draft(turn)["pincode"] = require_text(turn.text, "pincode", PINCODE_PROMPT, max_length=12)
    turn.goto(Stage.SHOP_CONFIRM)
    await prompt_confirm(engine, turn)


async def handle_confirm(engine, turn):
    choice = turn.classified
    if choice.text in ("confirm", "yes", "y") or choice.number == 1:
        await _place_order(engine, turn)
    elif choice.text in ("cancel", "no", "n") or choice.number == 2:
        turn.ctx.pop("shop", None)
        turn.goto(Stage.MENU)
        await engine.reply(turn, f"🗑️ Order cancelled.\n\n{engine.flow.menu_text}")
    else:
        raise ValidationError(
            f"Unexpected confirmation {choice.text!r}",
            user_message="Please reply *confirm* to place the order or *cancel* to discard it.",
        )


# ============================================================================
# ORDER
# ============================================================================

def _line_item(draft: dict) -> LineItem:
    return LineItem(
        name=draft["product_name"],
        unit_price=Decimal(draft["unit_price"]),
        quantity=int(draft["quantity"]),
        product_id=str(draft["product_id"]),
    )


def _summary(engine, turn) -> str:
    draft = _draft(turn)
    item = _line_item(draft)
    totals = compute_order_totals([item])
    return (
        "🧾 *Order summary*\n\n"
        f"• {item.name}: {item.quantity} × ₹{item.unit_price} = ₹{item.line_total}\n"
        f"*Total: ₹{totals.total}*\n\n"
        f"👤 {draft['name']}\n"
        f"🏠 {draft['address']} - {draft['pincode']}"
    )


async def _place_order(engine, turn):
    draft = _draft(turn)
    with engine.db() as db:
        order = order_service.create_order(
            db,
            turn.phone,
            [_line_item(draft)],
            source="shop",
            customer_name=draft.get("name"),
            address=draft.get("address"),
            pincode=draft.get("pincode"),
            user_type=turn.session.user_type,
            expires_in_minutes=engine.flow.order_payment_window_minutes,
        )
        summary = order_service.format_order_summary(order)
        link = order_service.payment_link(engine.base_url, order)
    turn.ctx.pop("shop", None)
    turn.goto(Stage.MENU)
    await engine.reply(
        turn,
        f"✅ Order placed!\n\n{summary}\n\n"
        f"💳 Pay here: {link}\n"
        f"⏳ This link expires in {engine.flow.order_payment_window_minutes} minutes.",
    )
