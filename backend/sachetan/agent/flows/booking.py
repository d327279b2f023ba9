"""
Court booking: date -> players -> slot -> court -> payment_pending.

Every list is recomputed from the database when the user answers, so a
selection is always validated against current capacity. The final
capacity check happens inside `create_booking`; a CapacityError there keeps
the user on the court list with the exact number of places left.
"""
import logging
from datetime import date

from sachetan.agent.conversation_state import MessageKind, Stage
from sachetan.agent.turn import numbered, pick
from sachetan.core.exceptions import ValidationError
from sachetan.models.booking import BookingStatus
from sachetan.services import booking_service

logger = logging.getLogger(__name__)


def _draft(turn) -> dict:
    return turn.ctx.setdefault("booking", {})


def _spots(count: int) -> str:
    return f"{count} spot{'s' if count != 1 else ''} left"


def _date_label(day: date) -> str:
    return day.strftime("%a, %d %b")


def _date_options(engine):
    return booking_service.bookable_dates(engine.clock(), engine.flow.booking)


def _date_prompt(days, title="📅 *Choose a date*") -> str:
    return f"{title}\n\n" + numbered([_date_label(day) for day in days]) + "\n\nReply with a number."


def _players_prompt(engine) -> str:
    cfg = engine.flow.booking
    return f"👥 How many players? ({cfg.min_players}-{cfg.max_players})"


def _slot_options(engine, draft):
    with engine.db() as db:
        return [
            (slot.time, remaining)
            for slot, remaining in booking_service.available_slots(
                db, date.fromisoformat(draft["date"]), draft["players"], engine.clock(), engine.flow.booking
            )
        ]


def _slot_prompt(options) -> str:
    lines = [f"{label} ({_spots(remaining)})" for label, remaining in options]
    return "⏰ *Choose a time slot*\n\n" + numbered(lines) + "\n\nReply with a number."


def _court_options(engine, draft):
    with engine.db() as db:
        return [
            (court.id, court.name, remaining)
            for court, remaining in booking_service.available_courts(
                db, draft["date"], draft["slot"], draft["players"], engine.flow.booking
            )
        ]


def _court_prompt(options) -> str:
    lines = [f"{name} ({_spots(remaining)})" for _, name, remaining in options]
    return "🏟️ *Choose a court*\n\n" + numbered(lines) + "\n\nReply with a number."


# ============================================================================
# ENTRY POINTS
# ============================================================================

async def start(engine, turn):
    turn.ctx["booking"] = {}
    turn.goto(Stage.CHOOSE_DATE)
    await prompt_date(engine, turn)


async def start_availability(engine, turn):
    turn.goto(Stage.CHECK_AVAILABILITY_DATE)
    await engine.reply(turn, _date_prompt(_date_options(engine), "🔎 *Check availability*"))


async def list_bookings(engine, turn):
    with engine.db() as db:
        bookings = booking_service.upcoming_bookings(db, turn.phone, engine.clock().date())
        cards = [booking_service.format_booking(booking) for booking in bookings]
    if not cards:
        await engine.reply(turn, "You have no upcoming bookings. Type *book* to reserve a court.")
        return
    await engine.reply(turn, "📋 *Your bookings*\n\n" + "\n\n".join(cards))


# ============================================================================
# PROMPTS
# ============================================================================

async def prompt_date(engine, turn):
    await engine.reply(turn, _date_prompt(_date_options(engine)))


async def prompt_players(engine, turn):
    await engine.reply(turn, _players_prompt(engine))


async def prompt_slot(engine, turn):
    await engine.reply(turn, _slot_prompt(_slot_options(engine, _draft(turn))))


async def prompt_court(engine, turn):
    await engine.reply(turn, _court_prompt(_court_options(engine, _draft(turn))))


# ============================================================================
# HANDLERS
# ============================================================================

async def handle_choose_date(engine, turn):
    days = _date_options(engine)
    day = pick(turn.classified.number, days, _date_prompt(days))
    _draft(turn).update({"date": day.isoformat()})
    turn.goto(Stage.CHOOSE_PLAYERS)
    await engine.reply(turn, f"📅 {_date_label(day)}\n\n{_players_prompt(engine)}")


async def handle_choose_players(engine, turn):
    if turn.classified.kind != MessageKind.SELECTION:
        raise ValidationError(f"Bad player count {turn.text!r}", user_message=f"❌ {_players_prompt(engine)}")
    players = turn.classified.number
    booking_service.validate_player_count(engine.flow.booking, players)

    draft = _draft(turn)
    draft["players"] = players
    options = _slot_options(engine, draft)
    if not options:
        turn.goto(Stage.NO_SLOTS_AVAILABLE)
        await engine.reply(
            turn,
            f"😔 No slots left for {players} players on {_date_label(date.fromisoformat(draft['date']))}.\n\n"
            "1️⃣ Choose another date\n2️⃣ Main menu",
        )
        return
    turn.goto(Stage.CHOOSE_SLOT)
    await engine.reply(turn, _slot_prompt(options))


async def handle_choose_slot(engine, turn):
    draft = _draft(turn)
    options = _slot_options(engine, draft)
    label, _ = pick(turn.classified.number, options, _slot_prompt(options))
    draft["slot"] = label
    turn.goto(Stage.CHOOSE_COURT)
    await engine.reply(turn, _court_prompt(_court_options(engine, draft)))


async def handle_choose_court(engine, turn):
    draft = _draft(turn)
    options = _court_options(engine, draft)
    if not options:
        # Filled up while the user was choosing
        turn.goto(Stage.CHOOSE_SLOT)
        await engine.reply(turn, "😔 That slot just filled up.\n\n" + _slot_prompt(_slot_options(engine, draft)))
        return
    court_id, _, _ = pick(turn.classified.number, options, _court_prompt(options))

    with engine.db() as db:
        booking = booking_service.create_booking(
            db, turn.phone, draft["date"], draft["slot"], court_id, draft["players"], engine.flow.booking
        )
        card = booking_service.format_booking(booking)
        link = booking_service.payment_link(engine.base_url, booking)
        draft.update({"court_id": court_id, "booking_id": booking.booking_id})

    turn.goto(Stage.PAYMENT_PENDING)
    await engine.reply(
        turn,
        f"{card}\n\n💳 Pay here: {link}\n"
        f"⏳ Unpaid bookings are released after {engine.flow.booking.payment_window_minutes} minutes.\n\n"
        "Reply *paid* once done, or *cancel* to release the slot.",
    )


async def handle_payment_pending(engine, turn):
    draft = _draft(turn)
    choice = turn.classified.text
    if choice not in ("paid", "done", "cancel"):
        raise ValidationError(
            f"Unexpected reply {choice!r} while awaiting payment",
            user_message="Reply *paid* once you have paid, or *cancel* to release the slot.",
        )

    with engine.db() as db:
        booking = None
        if draft.get("booking_id"):
            booking = booking_service.get_booking(db, draft["booking_id"])
        if booking is None:
            booking = booking_service.latest_pending_booking(db, turn.phone)
        if booking is None:
            turn.ctx.pop("booking", None)
            turn.goto(Stage.MENU)
            await engine.reply(turn, f"We couldn't find a pending booking.\n\n{engine.flow.menu_text}")
            return

        if choice == "cancel":
            booking_service.cancel_booking(db, booking)
            status, card, link = booking.status, booking_service.format_booking(booking), None
        else:
            status = booking.status
            card = booking_service.format_booking(booking)
            link = booking_service.payment_link(engine.base_url, booking)

    if status == BookingStatus.CONFIRMED:
        turn.goto(Stage.BOOKING_CONFIRMED)
        await engine.reply(turn, f"🎉 Your booking is confirmed!\n\n{card}")
    elif status == BookingStatus.PENDING_PAYMENT:
        await engine.reply(
            turn,
            f"⏳ We haven't received the payment confirmation yet. It usually takes a minute.\n\n💳 {link}",
        )
    else:
        turn.ctx.pop("booking", None)
        turn.goto(Stage.MENU)
        await engine.reply(turn, f"Booking {status.replace('_', ' ')}.\n\n{card}\n\nType *book* to start again.")


async def handle_no_slots(engine, turn):
    if turn.classified.number == 1:
        await start(engine, turn)
    elif turn.classified.number == 2:
        turn.ctx.pop("booking", None)
        turn.goto(Stage.MENU)
        await engine.reply(turn, engine.flow.menu_text)
    else:
        raise ValidationError(
            "Expected 1 or 2",
            user_message="Reply *1* to choose another date or *2* for the main menu.",
        )


async def handle_check_availability_date(engine, turn):
    days = _date_options(engine)
    day = pick(turn.classified.number, days, _date_prompt(days, "🔎 *Check availability*"))
    with engine.db() as db:
        rows = booking_service.slot_availability(db, day, engine.clock(), engine.flow.booking)
        lines = [f"• {slot.time}: {_spots(remaining)}" for slot, remaining in rows]
    body = "\n".join(lines) if lines else "No slots can still be booked on this date."
    turn.goto(Stage.AFTER_AVAILABILITY)
    await engine.reply(
        turn,
        f"🔎 *Availability for {_date_label(day)}*\n\n{body}\n\n"
        "1️⃣ Book a court\n2️⃣ Check another date\n\nOr type *menu*.",
    )


async def handle_after_availability(engine, turn):
    if turn.classified.number == 1:
        await start(engine, turn)
    elif turn.classified.number == 2:
        await start_availability(engine, turn)
    else:
        raise ValidationError(
            "Expected 1 or 2",
            user_message="Reply *1* to book a court, *2* to check another date, or *menu*.",
        )
