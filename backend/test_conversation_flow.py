"""End-to-end conversation turns against the engine with a fake transport and LLM."""
import asyncio
from decimal import Decimal

from conftest import ADMIN, PHONE
from sachetan.agent.conversation_state import Stage, UserType
from sachetan.agent.state_machine import MEDIA_ACK_TEXT, MEDIA_STORED_TEXT, THROTTLE_TEXT
from sachetan.core.exceptions import GENERIC_APOLOGY, RetrievalError
from sachetan.core.rate_limiter import RateLimiter
from sachetan.models.booking import Booking, BookingStatus
from sachetan.models.lead import LeadArtifact
from sachetan.models.order import Order, OrderStatus
from sachetan.services import lead_service
from sachetan_ai.vector_store import RagDocument


def _state(services):
    return services.store.load(PHONE)


# ============================================================================
# MENU AND RESETS
# ============================================================================

def test_greeting_shows_welcome_and_menu(services, transport, send):
    send("Hi!")
    reply = transport.last()
    assert "Welcome to *Sachetan Packaging*" in reply
    assert "Main Menu" in reply
    assert _state(services).stage == Stage.MENU


def test_reset_clears_flow_context(services, transport, send, catalog):
    send("1")
    assert _state(services).stage == Stage.SHOP_TOP_CATEGORY
    send("menu")
    state = _state(services)
    assert state.stage == Stage.MENU
    assert state.context == {}
    assert "Welcome" not in transport.last()


def test_invalid_selection_keeps_stage(services, transport, send, catalog):
    send("1")
    send("99")
    assert "Invalid selection. Please reply with a number from 1 to 1." in transport.last()
    assert "Bakery Boxes" in transport.last()
    assert _state(services).stage == Stage.SHOP_TOP_CATEGORY


def test_menu_number_out_of_range(services, transport, send):
    send("7")
    assert "number from 1 to 4" in transport.last()
    assert _state(services).stage == Stage.MENU


def test_support_option(transport, send, engine):
    send("4")
    assert transport.last() == engine.flow.support_text


def test_contact_keyword_alerts_admins(transport, send):
    send("talk to admin")
    assert "get back to you" in transport.last()
    assert "asked to talk to the team" in transport.last(ADMIN)


def test_free_text_at_menu_goes_to_assistant(services, transport, generator, send):
    generator.default = "We deliver across Maharashtra in 3-7 days."
    send("Do you deliver to Nagpur?")
    assert transport.last() == "We deliver across Maharashtra in 3-7 days."
    assert _state(services).stage == Stage.MENU


# ============================================================================
# SHOP
# ============================================================================

def test_shop_checkout_creates_pending_order(services, transport, send, catalog, db):
    send("1")
    send("1")
    assert "Cake Boxes" in transport.last()
    send("1")
    assert "Window Cake Box 8x8x5 - ₹12.50" in transport.last()
    send("1")
    assert transport.sent[-1]["media_url"] == "https://cdn.example.com/cake-box.jpg"
    assert _state(services).stage == Stage.SHOP_QUANTITY

    send("10")
    send("Asha Patil")
    send("12 MG Road, Pune")
    send("411001")
    assert "Total: ₹125.00" in transport.last()
    assert _state(services).stage == Stage.SHOP_CONFIRM

    send("confirm")
    reply = transport.last()
    assert "Order placed" in reply
    assert "/payment/product?order=ORD-" in reply
    state = _state(services)
    assert state.stage == Stage.MENU
    assert "shop" not in state.context

    order = db.query(Order).one()
    assert order.status == OrderStatus.PENDING
    assert order.source == "shop"
    assert order.total_amount == Decimal("125.00")
    assert order.expires_at is not None
    assert order.customer_name == "Asha Patil"


def test_confirmation_send_failure_does_not_duplicate_order(services, transport, send, catalog, db):
    for text in ("1", "1", "1", "1", "10", "Asha Patil", "12 MG Road, Pune", "411001"):
        send(text)
    assert _state(services).stage == Stage.SHOP_CONFIRM

    deliver = transport.send

    def flaky(to, body=None, **kwargs):
        if "Order placed" in (body or ""):
            raise ConnectionError("connection reset by peer")
        return deliver(to, body, **kwargs)

    transport.send = flaky
    send("confirm")
    assert _state(services).stage == Stage.MENU
    assert services.history.recent(PHONE)[-1].status == "failed"

    transport.send = deliver
    send("confirm")
    assert db.query(Order).count() == 1


def test_quantity_above_stock_rejected(services, transport, send, catalog):
    for text in ("1", "1", "1", "1"):
        send(text)
    send("600")
    assert "Only 500 in stock" in transport.last()
    assert _state(services).stage == Stage.SHOP_QUANTITY


def test_cancel_at_confirmation(services, transport, send, catalog, db):
    for text in ("1", "1", "1", "1", "2", "Ravi", "Camp, Pune", "411001"):
        send(text)
    send("cancel")
    assert "Order cancelled" in transport.last()
    assert _state(services).stage == Stage.MENU
    assert db.query(Order).count() == 0


def test_order_status_lookup_is_limited_to_own_orders(services, transport, send, catalog):
    for text in ("1", "1", "1", "1", "2", "Ravi", "Camp, Pune", "411001", "confirm"):
        send(text)
    order_id = services.history.recent(PHONE, 100)[-1].message.split("*Order ")[1].split("*")[0]

    send("2")
    assert _state(services).stage == Stage.ORDER_STATUS
    send(order_id.lower())
    assert f"Order {order_id}" in transport.last()
    assert "Pay here" in transport.last()

    other = "whatsapp:+919811111111"
    send("2", phone=other)
    send(order_id, phone=other)
    assert "couldn't find that order" in transport.last(other)


# ============================================================================
# INTERRUPTS
# ============================================================================

def test_interrupt_declined_resumes_flow(services, transport, send, catalog):
    send("1")
    send("Do you deliver to Pune?")
    state = _state(services)
    assert state.stage == Stage.CONFIRM_EXIT_FLOW
    assert state.previous_stage == Stage.SHOP_TOP_CATEGORY
    assert 'cancel and ask: "Do you deliver to Pune?"' in transport.last()
    assert "👉 *yes* - Yes, ask AI" in transport.last()

    send("no")
    state = _state(services)
    assert state.stage == Stage.SHOP_TOP_CATEGORY
    assert state.previous_stage is None
    assert "Bakery Boxes" in transport.last()


def test_interrupt_accepted_answers_and_drops_draft(services, transport, generator, send, catalog):
    send("1")
    send("1")
    generator.default = "Yes, we deliver to Pune."
    send("Do you deliver to Pune?")
    send("yes")
    state = _state(services)
    assert state.stage == Stage.CUSTOM_SOLUTIONS
    assert "shop" not in state.context
    assert transport.last() == "Yes, we deliver to Pune."
    assert "Do you deliver to Pune?" in generator.calls[-1]["user"]


def test_second_interrupt_overwrites_question_but_keeps_resume_stage(services, transport, send, catalog):
    send("1")
    send("What GSM is the board?")
    send("Actually, do you print logos?")
    state = _state(services)
    assert state.previous_stage == Stage.SHOP_TOP_CATEGORY
    assert state.context["pending_question"] == "Actually, do you print logos?"


def test_interrupt_needs_yes_or_no(services, transport, send, catalog):
    send("1")
    send("Is there a discount on 1000 boxes?")
    send("3")
    assert "Please reply *yes* or *no*" in transport.last()
    assert _state(services).stage == Stage.CONFIRM_EXIT_FLOW


# ============================================================================
# BOOKING
# ============================================================================

def test_booking_flow_reserves_and_waits_for_payment(services, transport, send, db):
    send("book")
    assert _state(services).stage == Stage.CHOOSE_DATE
    assert "Tue, 10 Mar" in transport.last()

    send("2")
    send("9")
    assert "between 2 and 4 players" in transport.last()
    assert _state(services).stage == Stage.CHOOSE_PLAYERS

    send("3")
    assert "6:00 AM - 7:00 AM (4 spots left)" in transport.last()
    send("1")
    assert "Court 1 (4 spots left)" in transport.last()
    send("1")
    state = _state(services)
    assert state.stage == Stage.PAYMENT_PENDING
    assert "/payment?booking=NP-01" in transport.last()

    booking = db.query(Booking).one()
    assert booking.date == "2026-03-11"
    assert booking.player_count == 3
    assert booking.amount == Decimal("600")

    send("paid")
    assert "haven't received the payment" in transport.last()
    assert _state(services).stage == Stage.PAYMENT_PENDING


def test_booking_cancel_releases_slot(services, transport, send, db):
    for text in ("book", "2", "2", "1", "1"):
        send(text)
    send("cancel")
    assert _state(services).stage == Stage.MENU
    assert db.query(Booking).one().status == BookingStatus.CANCELLED


def test_slot_filled_by_someone_else_is_reported(services, transport, send, db):
    from sachetan.services import booking_service

    for text in ("book", "2", "3", "1"):
        send(text)
    courts = booking_service.active_courts(db)
    for court in courts:
        booking_service.create_booking(
            db, "whatsapp:+919822222222", "2026-03-11", "6:00 AM - 7:00 AM", court.id, 2, services.flow.booking
        )
    send("1")
    assert "just filled up" in transport.last()
    assert _state(services).stage == Stage.CHOOSE_SLOT


def test_availability_then_book(services, transport, send):
    send("availability")
    assert _state(services).stage == Stage.CHECK_AVAILABILITY_DATE
    send("2")
    assert "Availability for Wed, 11 Mar" in transport.last()
    send("1")
    assert _state(services).stage == Stage.CHOOSE_DATE


def test_my_bookings_empty(transport, send):
    send("my bookings")
    assert "no upcoming bookings" in transport.last()


# ============================================================================
# AI ASSISTANT
# ============================================================================

def _index_knowledge(services):
    asyncio.run(services.rag.index_documents([
        RagDocument("kb_cake", "Cake box 8x8x5 fits 1 kg cakes", {"type": "all"}),
    ]))


def test_user_type_then_lead_capture_replays_question(services, transport, generator, send, db):
    _index_knowledge(services)
    send("3")
    assert _state(services).stage == Stage.SELECT_USER_TYPE
    send("1")
    state = _state(services)
    assert state.user_type == UserType.HOMEBAKERS
    assert state.stage == Stage.CUSTOM_SOLUTIONS

    send("I need 500 cake boxes for 1 kg cakes")
    assert _state(services).stage == Stage.CUSTOM_ASK_NAME
    send("asha")
    assert _state(services).stage == Stage.CUSTOM_ASK_CITY
    send("Pune")
    assert _state(services).stage == Stage.CUSTOM_ASK_PINCODE
    send("12")
    assert "6-digit pincode" in transport.last()

    generator.answers = [
        "For 500 boxes of 8x8x5 the rate is ₹12.50 each. Total ₹6563 incl. GST.\n"
        '<order_state>{"product": "cake box", "size": "8x8x5", "quantity": 500, "quotation_ready": true}</order_state>'
    ]
    send("skip")

    bodies = transport.bodies()
    assert "Thanks, Asha! 🙏" in bodies
    assert any(b.startswith("For 500 boxes of 8x8x5") and "order_state" not in b for b in bodies)
    assert "Total: ₹6563" in transport.last()
    assert "New quotation" in transport.last(ADMIN)

    system_prompt = generator.calls[-1]["system"]
    assert "Homebaker" in system_prompt
    assert '"product": "cake box"' in system_prompt
    assert "I need 500 cake boxes" in generator.calls[-1]["user"]

    state = _state(services)
    assert state.stage == Stage.CUSTOM_SOLUTIONS
    assert "pending_question" not in state.context
    assert state.context["lead"]["complete"] is True

    lead = lead_service.get_lead(db, PHONE)
    assert lead.name == "Asha"
    assert lead.city == "Pune"
    assert lead.pincode == ""

    order = db.query(Order).one()
    assert order.source == "quotation"
    assert order.total_amount == Decimal("6563")
    assert order.expires_at is None
    assert services.vector_store.count(services.rag.memory_namespace) == 1


def test_repeated_quotation_is_not_reissued(services, transport, generator, send, db):
    _index_knowledge(services)
    services.store.save(
        PHONE,
        stage=Stage.CUSTOM_SOLUTIONS,
        user_type=UserType.HOMEBAKERS,
        context={"lead": {"name": "Asha", "city": "Pune", "pincode": "", "complete": True}},
    )
    ready = '<order_state>{"product": "cake box", "size": "8x8x5", "quantity": 500, "quotation_ready": true}</order_state>'
    generator.answers = [f"Quoted. {ready}", f"Same quote. {ready}"]
    send("500 cake boxes 8x8x5 please")
    send("ok thanks for the quote")
    assert db.query(Order).count() == 1


def test_new_category_reissues_quotation(services, transport, generator, send, db):
    _index_knowledge(services)
    services.store.save(
        PHONE,
        stage=Stage.CUSTOM_SOLUTIONS,
        user_type=UserType.HOMEBAKERS,
        context={"lead": {"name": "Asha", "city": "Pune", "pincode": "", "complete": True}},
    )
    generator.answers = [
        'Quoted. <order_state>{"category": "cake box", "size": "8x8x5", "quantity": 500, "quotation_ready": true}</order_state>',
        'Requoted. <order_state>{"category": "sweet box", "size": "8x8x5", "quantity": 500, "quotation_ready": true}</order_state>',
    ]
    send("500 boxes of 8x8x5 please")
    send("same size but for sweets")
    assert db.query(Order).count() == 2


def test_media_in_custom_solutions_feeds_next_answer(services, transport, generator, send, monkeypatch):
    _index_knowledge(services)
    services.store.save(
        PHONE,
        stage=Stage.CUSTOM_SOLUTIONS,
        user_type=UserType.HOMEBAKERS,
        context={"lead": {"name": "Asha", "city": "Pune", "pincode": "", "complete": True}},
    )
    monkeypatch.setattr(
        services.media_store, "download_inbound", lambda url, content_type, phone: "inbound/logo.jpg"
    )
    send("", media=[("https://api.twilio.com/media/ME2", "image/jpeg")])
    assert transport.last() == MEDIA_STORED_TEXT
    url = "https://bot.example.com/media/inbound/logo.jpg"
    assert _state(services).context["custom"]["attachments"] == [url]
    assert generator.calls == []

    send("Can you print this logo on cake boxes?")
    assert url in generator.calls[-1]["user"]
    assert "Can you print this logo" in generator.calls[-1]["user"]


def test_quotation_below_moq_keeps_talking(services, transport, generator, send, db):
    _index_knowledge(services)
    services.store.save(
        PHONE,
        stage=Stage.CUSTOM_SOLUTIONS,
        user_type=UserType.STORE_OWNER_BULK_BUYER,
        context={"lead": {"name": "Asha", "city": "Pune", "pincode": "", "complete": True}},
    )
    generator.answers = ['Noted. <order_state>{"size": "8x8x5", "quantity": 200, "quotation_ready": true}</order_state>']
    send("200 boxes of 8x8x5")
    assert "minimum order" in transport.last()
    assert db.query(Order).count() == 0


def test_strict_mode_without_knowledge_uses_fallback(services, transport, generator, send):
    services.store.save(
        PHONE,
        stage=Stage.CUSTOM_SOLUTIONS,
        user_type=UserType.HOMEBAKERS,
        context={"lead": {"name": "Asha", "city": "Pune", "pincode": "", "complete": True}},
    )
    send("Do you sell gold foil boxes?")
    assert "couldn't find specific information" in transport.last()
    assert generator.calls == []


# ============================================================================
# TURN BOUNDARY
# ============================================================================

def test_manual_mode_absorbs_messages(services, transport, send):
    services.store.set_manual(PHONE, True)
    send("hello?")
    assert transport.bodies() == []
    assert services.history.recent(PHONE)[-1].message == "hello?"
    assert _state(services).stage == Stage.MANUAL


def test_rate_limit_sends_throttle_notice(services, engine, transport, send):
    engine.rate_limiter = RateLimiter(requests=2, window=60)
    send("hi")
    send("1")
    send("2")
    assert transport.last() == THROTTLE_TEXT


def test_media_outside_assistant_is_logged_as_artifact(services, transport, send, db):
    send("", media=[("https://api.twilio.com/media/ME1", "image/jpeg")])
    assert transport.last() == MEDIA_ACK_TEXT
    artifact = db.query(LeadArtifact).one()
    assert artifact.stage == Stage.MENU
    assert artifact.media_url == "https://api.twilio.com/media/ME1"


def test_retrieval_error_is_reported_and_state_kept(services, transport, send, monkeypatch):
    async def broken(*args, **kwargs):
        raise RetrievalError("lancedb down")

    monkeypatch.setattr(services.rag, "query_rag", broken)
    send("What sizes do you have?")
    assert transport.last() == RetrievalError.user_message
    assert _state(services).stage == Stage.MENU


def test_unexpected_error_sends_generic_apology(services, transport, send, monkeypatch, catalog):
    send("1")

    def broken(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr("sachetan.services.catalog_service.list_mid_categories", broken)
    send("1")
    assert transport.last() == GENERIC_APOLOGY
    assert _state(services).stage == Stage.SHOP_TOP_CATEGORY
