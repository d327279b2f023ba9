"""Court capacity and booking lifecycle."""
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from sachetan.agent.flow_config import BookingConfig
from sachetan.core.exceptions import CapacityError, ValidationError
from sachetan.core.timeutils import utcnow
from sachetan.models.booking import BookingStatus
from sachetan.services import booking_service

CONFIG = BookingConfig()
DAY = "2026-03-11"
SLOT = "7:00 AM - 8:00 AM"
PHONE = "whatsapp:+919812345678"
OTHER = "whatsapp:+919800000001"


def _court_id(db):
    return booking_service.active_courts(db)[0].id


def test_slot_parsing_and_duration():
    assert booking_service.slot_duration_hours("7:00 AM - 8:00 AM") == 1
    assert booking_service.slot_duration_hours("7:00 PM - 9:00 PM") == 2
    assert booking_service.slot_start(date(2026, 3, 11), "6:00 PM - 7:00 PM") == datetime(2026, 3, 11, 18, 0)


def test_bookable_dates_skip_today_late_evening():
    late = datetime(2026, 3, 10, 22, 30)
    days = booking_service.bookable_dates(late, CONFIG)
    assert days[0] == date(2026, 3, 11)
    assert len(days) == CONFIG.booking_days


def test_advance_buffer_filters_slots(db):
    now = datetime(2026, 3, 11, 5, 30)
    labels = [slot.time for slot, _ in booking_service.slot_availability(db, date(2026, 3, 11), now, CONFIG)]
    assert "6:00 AM - 7:00 AM" not in labels
    assert "7:00 AM - 8:00 AM" not in labels
    assert "8:00 AM - 9:00 AM" in labels


def test_create_booking_prices_by_duration(db):
    booking = booking_service.create_booking(db, PHONE, DAY, SLOT, _court_id(db), 3, CONFIG)
    assert booking.status == BookingStatus.PENDING_PAYMENT
    assert booking.amount == Decimal("600")
    assert booking.booking_id == "NP-01"


def test_capacity_error_names_remaining_places(db):
    court = _court_id(db)
    booking_service.create_booking(db, PHONE, DAY, SLOT, court, 3, CONFIG)
    with pytest.raises(CapacityError) as exc:
        booking_service.create_booking(db, OTHER, DAY, SLOT, court, 2, CONFIG)
    assert exc.value.remaining == 1
    assert "Only 1 spot left" in exc.value.user_message


def test_full_slot_drops_out_of_available_courts(db):
    court = _court_id(db)
    booking_service.create_booking(db, PHONE, DAY, SLOT, court, 4, CONFIG)
    courts = booking_service.available_courts(db, DAY, SLOT, 2, CONFIG)
    assert court not in [c.id for c, _ in courts]
    assert len(courts) == 1


def test_cancelled_and_expired_bookings_release_capacity(db):
    court = _court_id(db)
    first = booking_service.create_booking(db, PHONE, DAY, SLOT, court, 4, CONFIG)
    booking_service.cancel_booking(db, first)
    assert booking_service.remaining_capacity(db, DAY, SLOT, court, CONFIG) == 4


def test_player_count_range():
    with pytest.raises(ValidationError):
        booking_service.validate_player_count(CONFIG, 1)
    with pytest.raises(ValidationError):
        booking_service.validate_player_count(CONFIG, 5)


def test_confirm_rechecks_against_confirmed_bookings(db):
    court = _court_id(db)
    a = booking_service.create_booking(db, PHONE, DAY, SLOT, court, 2, CONFIG)
    b = booking_service.create_booking(db, OTHER, DAY, SLOT, court, 2, CONFIG)
    booking_service.confirm_booking(db, a, "pay_a", CONFIG)
    confirmed = booking_service.confirm_booking(db, b, "pay_b", CONFIG)
    assert confirmed.status == BookingStatus.CONFIRMED
    assert confirmed.invoice_number.startswith("NP-")
    assert a.invoice_number != confirmed.invoice_number


def test_expire_pending_bookings(db):
    booking = booking_service.create_booking(db, PHONE, DAY, SLOT, _court_id(db), 2, CONFIG)
    assert booking_service.expire_pending_bookings(db, utcnow(), CONFIG) == []
    later = utcnow() + timedelta(minutes=CONFIG.payment_window_minutes + 1)
    expired = booking_service.expire_pending_bookings(db, later, CONFIG)
    assert [b.booking_id for b in expired] == [booking.booking_id]
    assert booking.status == BookingStatus.EXPIRED


def test_due_reminders_fire_once(db):
    booking = booking_service.create_booking(db, PHONE, DAY, SLOT, _court_id(db), 2, CONFIG)
    booking_service.confirm_booking(db, booking, "pay_1", CONFIG)

    day_before = datetime(2026, 3, 10, 9, 0)
    assert [kind for _, kind in booking_service.due_reminders(db, day_before)] == ["24h"]
    assert booking_service.due_reminders(db, day_before) == []

    hour_before = datetime(2026, 3, 11, 6, 30)
    assert [kind for _, kind in booking_service.due_reminders(db, hour_before)] == ["1h"]
