"""Durable per-phone session state."""
from datetime import timedelta
from decimal import Decimal

from sachetan.agent.conversation_state import Stage
from sachetan.core.timeutils import utcnow
from sachetan.models.chat_session import ChatSession
from sachetan.services.session_store import SessionStore, deserialize_context

PHONE = "whatsapp:+919812345678"


def test_first_contact_creates_menu_session(session_factory):
    store = SessionStore(session_factory)
    state = store.load(PHONE)
    assert state.stage == Stage.MENU
    assert state.context == {}


def test_save_then_load_survives_a_new_store(session_factory):
    SessionStore(session_factory).save(
        PHONE, stage=Stage.SHOP_QUANTITY, context={"shop": {"unit_price": Decimal("12.50")}}
    )
    state = SessionStore(session_factory).load(PHONE)
    assert state.stage == Stage.SHOP_QUANTITY
    assert state.context == {"shop": {"unit_price": 12.5}}


def test_partial_save_keeps_other_fields(session_factory):
    store = SessionStore(session_factory)
    store.save(PHONE, stage=Stage.CUSTOM_SOLUTIONS, user_type="Homebakers", context={"lead": {"name": "Asha"}})
    store.save(PHONE, stage=Stage.MENU)
    state = store.load(PHONE)
    assert state.user_type == "Homebakers"
    assert state.context["lead"]["name"] == "Asha"


def test_loaded_state_is_a_copy(session_factory):
    store = SessionStore(session_factory)
    state = store.load(PHONE)
    state.context["junk"] = True
    assert "junk" not in store.load(PHONE).context


def test_manual_takeover_and_release(session_factory):
    store = SessionStore(session_factory)
    store.save(PHONE, stage=Stage.SHOP_PRODUCT, context={"shop": {"top_id": 1}})
    taken = store.set_manual(PHONE, True)
    assert taken.is_manual
    assert taken.previous_stage == Stage.SHOP_PRODUCT

    released = store.set_manual(PHONE, False)
    assert released.stage == Stage.MENU
    assert released.context == {}


def test_corrupt_context_reads_as_empty():
    assert deserialize_context("{not json", PHONE) == {}
    assert deserialize_context("[1, 2]", PHONE) == {}


def test_inactive_since_skips_menu_and_manual(session_factory):
    store = SessionStore(session_factory)
    store.save("whatsapp:+911", stage=Stage.SHOP_QUANTITY)
    store.save("whatsapp:+912", stage=Stage.MENU)
    store.save("whatsapp:+913", stage=Stage.MANUAL)

    db = session_factory()
    try:
        db.query(ChatSession).update({ChatSession.last_message_at: utcnow() - timedelta(days=2)})
        db.commit()
    finally:
        db.close()

    stuck = store.inactive_since(utcnow() - timedelta(hours=24))
    assert [s.phone for s in stuck] == ["whatsapp:+911"]
