"""
AI assistant stages: user-type selection, lead capture, custom solutions
and the interrupt confirmation.

Custom-solutions turn:
    1. Lead gate (name, city, optional pincode). The question is stashed
       and replayed once the lead is complete.
    2. Regex-extracted requirements merged into context["custom"]["order"]
    3. Dynamic system prompt with pricing rules computed in code
    4. RAG with the prompt as override (strict when the user type is known)
    5. <order_state> block parsed fail-closed and merged into the order
    6. quotation_ready -> Order recomputed from the rules and admins notified

Context layout:
    context["lead"]             collected lead fields, "complete" flag
    context["custom"]           {"order": {...}, "attachments": [...], "quote_key": ...}
    context["pending_question"] question waiting for lead capture or an interrupt decision
"""
import json
import logging
import re
import time
from typing import List, Optional

from sachetan.agent.conversation_state import Stage, UserType
from sachetan.agent.turn import pick
from sachetan.core.exceptions import ValidationError
from sachetan.messaging.whatsapp import QuickReply, render_buttons
from sachetan.services import lead_service, order_service
from sachetan.services.entity_extractor import extract_lead_details, extract_requirements, has_sales_intent
from sachetan.services.pricing import build_quote, pricing_rules_summary
from sachetan_ai.prompts import GENERATION_APOLOGY, build_custom_solutions_prompt
from sachetan_ai.reply_parser import parse_reply

logger = logging.getLogger(__name__)

ASSISTANT_INTRO = (
    "🤖 *AI Assistant*\n\n"
    "Ask me anything about our boxes, sizes, printing or prices.\n"
    "For example: _I need 500 printed cake boxes for 1 kg cakes_"
)

EXIT_BUTTONS = [QuickReply("yes", "Yes, ask AI"), QuickReply("no", "No, continue order")]

LEAD_FIELDS = {
    Stage.CUSTOM_ASK_NAME: "name",
    Stage.CUSTOM_ASK_CITY: "city",
    Stage.CUSTOM_ASK_PINCODE: "pincode",
}

LEAD_PROMPTS = {
    Stage.CUSTOM_ASK_NAME: "Before I help, may I know your *name*? 🙂",
    Stage.CUSTOM_ASK_CITY: "Which *city* are you in?",
    Stage.CUSTOM_ASK_PINCODE: "What is your *pincode*? (type *skip* to skip)",
}

PINCODE = re.compile(r"^\d{6}$")
MAX_EXTRA_MEDIA = 2


# ============================================================================
# SHARED ANSWER HELPERS
# ============================================================================

def _dedupe(urls: List[str]) -> List[str]:
    seen: List[str] = []
    for url in urls:
        if url and url not in seen:
            seen.append(url)
    return seen


async def send_answer(engine, turn, text: str, media_urls: List[str]) -> None:
    """Answer text with the first image attached; a couple more images follow on their own."""
    media_urls = _dedupe(media_urls)
    await engine.reply(turn, text or GENERATION_APOLOGY, media_url=media_urls[0] if media_urls else None)
    for url in media_urls[1:1 + MAX_EXTRA_MEDIA]:
        await engine.reply(turn, "", media_url=url)


async def answer_question(engine, turn, question: str) -> None:
    """General question outside the quotation flow: default prompt, web search allowed."""
    result = await engine.rag.query_rag(question, strict=False)
    display, _, urls = parse_reply(result.answer)
    await send_answer(engine, turn, display, result.media_urls + urls)


# ============================================================================
# ENTRY
# ============================================================================

async def start(engine, turn):
    if turn.session.user_type not in UserType.ALL:
        turn.goto(Stage.SELECT_USER_TYPE)
        await engine.reply(turn, engine.flow.user_type_prompt)
        return
    turn.goto(Stage.CUSTOM_SOLUTIONS)
    await engine.reply(turn, ASSISTANT_INTRO)


async def handle_select_user_type(engine, turn):
    flow = engine.flow
    user_type = pick(turn.classified.number, list(flow.user_type_options), flow.user_type_prompt)
    turn.session.user_type = user_type
    turn.goto(Stage.CUSTOM_SOLUTIONS)
    logger.info(f"[Conversation] {turn.phone} classified as {user_type}")
    await engine.reply(turn, f"✅ Got it, {flow.user_type_label(user_type)}!\n\n{ASSISTANT_INTRO}")


# ============================================================================
# LEAD CAPTURE
# ============================================================================

def _next_lead_stage(lead: dict, ask_pincode: bool) -> Optional[str]:
    if not lead.get("name"):
        return Stage.CUSTOM_ASK_NAME
    if not lead.get("city"):
        return Stage.CUSTOM_ASK_CITY
    if ask_pincode and lead.get("pincode") is None:
        return Stage.CUSTOM_ASK_PINCODE
    return None


def _prefill_lead(engine, turn, lead: dict, question: str) -> None:
    with engine.db() as db:
        stored = lead_service.get_lead(db, turn.phone)
        if stored is not None:
            for attr in ("name", "city", "pincode"):
                value = getattr(stored, attr)
                if value is not None and lead.get(attr) is None:
                    lead[attr] = value
    for attr, value in extract_lead_details(question).items():
        lead.setdefault(attr, value)


async def _complete_lead(engine, turn, lead: dict, question: Optional[str]) -> None:
    lead["complete"] = True
    user_type = turn.session.user_type
    with engine.db() as db:
        record = lead_service.upsert_lead(
            db,
            turn.phone,
            name=lead.get("name"),
            city=lead.get("city"),
            pincode=lead.get("pincode"),
            user_type=user_type,
            last_query=question,
        )
        alert = lead_service.format_lead_alert(record, question or "", engine.flow.user_type_label(user_type))
    if question and has_sales_intent(question):
        await engine.messenger.notify_admins(alert)


async def ensure_lead(engine, turn, question: str) -> bool:
    """True when lead capture took over this turn (the question is stashed)."""
    flow = engine.flow
    if not flow.require_lead_capture:
        return False
    lead = turn.ctx.setdefault("lead", {})
    if lead.get("complete"):
        return False

    _prefill_lead(engine, turn, lead, question)
    next_stage = _next_lead_stage(lead, flow.ask_pincode)
    if next_stage is None:
        await _complete_lead(engine, turn, lead, question)
        return False

    turn.ctx["pending_question"] = question
    turn.goto(next_stage)
    await engine.reply(turn, LEAD_PROMPTS[next_stage])
    return True


async def handle_lead_field(engine, turn):
    stage = turn.session.stage
    field_name = LEAD_FIELDS[stage]
    lead = turn.ctx.setdefault("lead", {})

    if field_name == "pincode":
        if turn.classified.text == "skip":
            value = ""
        elif PINCODE.match(turn.classified.text):
            value = turn.classified.text
        else:
            raise ValidationError(
                "Bad pincode",
                user_message="❌ Please send a 6-digit pincode, or type *skip*.",
            )
    else:
        value = " ".join(turn.text.split())
        if len(value) < 2 or len(value) > 60 or value.isdigit():
            raise ValidationError(f"Bad {field_name}", user_message=f"❌ {LEAD_PROMPTS[stage]}")
        value = value.title()
    lead[field_name] = value

    next_stage = _next_lead_stage(lead, engine.flow.ask_pincode)
    if next_stage is not None:
        turn.goto(next_stage)
        await engine.reply(turn, LEAD_PROMPTS[next_stage])
        return

    question = turn.ctx.pop("pending_question", None)
    await _complete_lead(engine, turn, lead, question)
    turn.goto(Stage.CUSTOM_SOLUTIONS)
    await engine.reply(turn, f"Thanks, {lead['name']}! 🙏")
    if question:
        await answer_custom(engine, turn, question)
    else:
        await engine.reply(turn, ASSISTANT_INTRO)


# ============================================================================
# CUSTOM SOLUTIONS
# ============================================================================

def _strict_filter(engine, user_type: Optional[str]):
    if engine.flow.strict_when_user_type_known and user_type in UserType.ALL:
        return True, {"type": [user_type, "all"]}
    return False, None


def _quote_key(order_ctx: dict) -> str:
    keys = ("category", "product", "size", "quantity", "quoted_rate", "printing")
    return json.dumps({k: order_ctx.get(k) for k in keys}, sort_keys=True)


async def handle_custom_solutions(engine, turn):
    question = turn.text
    if not question:
        await engine.reply(turn, "Please type your question 🙂")
        return
    if await ensure_lead(engine, turn, question):
        return
    await answer_custom(engine, turn, question)


async def answer_custom(engine, turn, question: str) -> None:
    flow = engine.flow
    user_type = turn.session.user_type
    custom = turn.ctx.setdefault("custom", {})
    order_ctx = custom.setdefault("order", {})
    order_ctx.update(extract_requirements(question))
    lead = turn.ctx.get("lead", {})

    system_prompt = build_custom_solutions_prompt(
        flow.business_name,
        flow.user_type_label(user_type),
        order_ctx,
        pricing_rules_summary(flow, user_type),
        customer_name=lead.get("name"),
        customer_city=lead.get("city"),
        template=flow.custom_solutions_template,
    )
    query = question
    attachments = custom.get("attachments") or []
    if attachments:
        query = f"{question}\n\n(Customer shared files: {', '.join(attachments)})"

    if flow.ack_before_generation:
        await engine.reply(turn, flow.ack_text)

    strict, metadata_filter = _strict_filter(engine, user_type)
    result = await engine.rag.query_rag(
        query,
        metadata_filter=metadata_filter,
        strict=strict,
        system_prompt_override=system_prompt,
    )
    display, update, urls = parse_reply(result.answer)
    if update is not None:
        quotation_ready = update.pop("quotation_ready", False)
        order_ctx.update(update)
    else:
        quotation_ready = False

    await send_answer(engine, turn, display, result.media_urls + urls)

    if quotation_ready:
        await _materialise_quote(engine, turn, custom)

    digits = re.sub(r"\D", "", turn.phone)
    await engine.rag.remember_exchange(
        turn.phone, question, display, doc_id=f"mem_{digits}_{int(time.time() * 1000)}"
    )


async def _materialise_quote(engine, turn, custom: dict) -> None:
    flow = engine.flow
    user_type = turn.session.user_type
    order_ctx = custom.get("order", {})
    key = _quote_key(order_ctx)
    if custom.get("quote_key") == key:
        logger.info(f"[Conversation] Quotation for {turn.phone} unchanged, not re-issued")
        return

    try:
        quote = build_quote(flow, user_type, order_ctx)
    except ValidationError as e:
        # The model declared the quote ready too early; keep the conversation going
        logger.info(f"[Conversation] Quotation not ready for {turn.phone}: {e}")
        await engine.reply(turn, e.user_message)
        return

    lead = turn.ctx.get("lead", {})
    with engine.db() as db:
        order = order_service.create_order(
            db,
            turn.phone,
            quote.items,
            source="quotation",
            gst_rate=quote.totals.gst_rate,
            whole_rupees=True,
            customer_name=lead.get("name"),
            city=lead.get("city"),
            pincode=lead.get("pincode") or None,
            user_type=user_type,
        )
        order_id = order.order_id

    custom["quote_key"] = key
    custom["quoted_order_id"] = order_id
    summary = quote.summary()
    await engine.reply(
        turn,
        f"🧾 *Quotation {order_id}*\n\n{summary}\n\nOur team will contact you shortly to confirm design and delivery.",
    )
    await engine.messenger.notify_admins(
        f"🧾 *New quotation {order_id}*\n"
        f"Customer: {lead.get('name') or '-'} ({turn.phone.replace('whatsapp:', '')})\n"
        f"City: {lead.get('city') or '-'}\n"
        f"Type: {flow.user_type_label(user_type)}\n\n{summary}"
    )


# ============================================================================
# INTERRUPTS
# ============================================================================

def _exit_prompt(question: str) -> str:
    return f'⚠️ You are currently ordering. Do you want to cancel and ask: "{question}"?'


async def offer_interrupt(engine, turn):
    """
    Conversational input inside a selection flow. A newer question replaces
    the stashed one; the stage to resume is kept from the first interrupt.
    """
    question = turn.text
    if turn.session.stage != Stage.CONFIRM_EXIT_FLOW:
        turn.session.previous_stage = turn.session.stage
    turn.ctx["pending_question"] = question
    turn.goto(Stage.CONFIRM_EXIT_FLOW)
    await engine.reply(turn, _exit_prompt(question), buttons=EXIT_BUTTONS)


async def handle_confirm_exit(engine, turn):
    choice = turn.classified
    if choice.text in ("yes", "y") or choice.number == 1:
        question = turn.ctx.pop("pending_question", "") or ""
        turn.ctx.pop("shop", None)
        turn.ctx.pop("booking", None)
        turn.session.previous_stage = None
        turn.goto(Stage.CUSTOM_SOLUTIONS)
        if question:
            await answer_question(engine, turn, question)
        else:
            await engine.reply(turn, ASSISTANT_INTRO)
    elif choice.text in ("no", "n") or choice.number == 2:
        resume = turn.session.previous_stage or Stage.MENU
        turn.ctx.pop("pending_question", None)
        turn.session.previous_stage = None
        turn.goto(resume)
        await engine.reprompt(turn, resume)
    elif choice.is_conversational:
        await offer_interrupt(engine, turn)
    else:
        raise ValidationError(
            f"Unexpected interrupt reply {choice.text!r}",
            user_message=f"Please reply *yes* or *no*.\n\n{render_buttons(EXIT_BUTTONS)}",
        )
