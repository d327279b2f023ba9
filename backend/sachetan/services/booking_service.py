"""
Court bookings: dates, slots, capacity and booking lifecycle.

Capacity rule: for one (date, slot, court) the players of bookings that are
`confirmed` or `pending_payment` never exceed the court capacity (4).
Checks return the exact remaining count through CapacityError.

Dates and slot times are business-local (Asia/Kolkata by default);
`created_at` is UTC like every other timestamp.
"""
import logging
from datetime import date, datetime, time as dtime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from sachetan.agent.flow_config import BookingConfig
from sachetan.core.exceptions import CapacityError, ValidationError
from sachetan.core.timeutils import utcnow
from sachetan.models.booking import Booking, BookingStatus, Court, Slot

logger = logging.getLogger(__name__)

_TIME_FORMATS = ("%I:%M %p", "%I %p", "%H:%M")


def _parse_time(value: str) -> dtime:
    value = value.strip().upper()
    for fmt in _TIME_FORMATS:
        try:
            return datetime.strptime(value, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Unrecognised time: {value!r}")


def parse_slot(label: str) -> Tuple[dtime, dtime]:
    """'7:00 AM - 8:00 AM' -> (07:00, 08:00)"""
    parts = [part for part in label.replace("–", "-").split("-") if part.strip()]
    if len(parts) != 2:
        raise ValueError(f"Slot label must be 'start - end': {label!r}")
    return _parse_time(parts[0]), _parse_time(parts[1])


def slot_duration_hours(label: str) -> int:
    start, end = parse_slot(label)
    minutes = (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)
    if minutes <= 0:
        minutes += 24 * 60
    return max(1, round(minutes / 60))


def slot_start(day: date, label: str) -> datetime:
    return datetime.combine(day, parse_slot(label)[0])


def bookable_dates(now: datetime, config: BookingConfig) -> List[date]:
    """Next `booking_days` days; today is dropped once it is too late to play."""
    start = now.date()
    if now.hour >= config.last_booking_hour:
        start = start + timedelta(days=1)
    return [start + timedelta(days=offset) for offset in range(config.booking_days)]


def meets_advance_buffer(day: date, label: str, now: datetime, config: BookingConfig) -> bool:
    return slot_start(day, label) - now >= timedelta(hours=config.advance_buffer_hours)


def booking_amount(config: BookingConfig, duration_hours: int, players: int) -> Decimal:
    price = config.price_per_player.get(duration_hours)
    if price is None:
        raise ValidationError(
            f"No price for {duration_hours}h",
            user_message="❌ This slot length cannot be booked online. Please pick another slot.",
        )
    return price * players


def validate_player_count(config: BookingConfig, players: int) -> None:
    if not config.min_players <= players <= config.max_players:
        raise ValidationError(
            f"Player count {players} out of range",
            user_message=f"❌ Please choose between {config.min_players} and {config.max_players} players.",
        )


def booked_players(
    db: Session,
    day: str,
    slot_time: str,
    court_id: int,
    exclude_booking_id: Optional[int] = None,
    statuses=BookingStatus.ACTIVE,
) -> int:
    query = (
        db.query(func.coalesce(func.sum(Booking.player_count), 0))
        .filter(Booking.date == day)
        .filter(Booking.slot_time == slot_time)
        .filter(Booking.court_id == court_id)
        .filter(Booking.status.in_(statuses))
    )
    if exclude_booking_id is not None:
        query = query.filter(Booking.id != exclude_booking_id)
    return int(query.scalar() or 0)


def remaining_capacity(
    db: Session,
    day: str,
    slot_time: str,
    court_id: int,
    config: BookingConfig,
    exclude_booking_id: Optional[int] = None,
    statuses=BookingStatus.ACTIVE,
) -> int:
    used = booked_players(db, day, slot_time, court_id, exclude_booking_id, statuses)
    return max(0, config.court_capacity - used)


def ensure_capacity(
    db: Session,
    day: str,
    slot_time: str,
    court_id: int,
    players: int,
    config: BookingConfig,
    exclude_booking_id: Optional[int] = None,
    statuses=BookingStatus.ACTIVE,
) -> int:
    """Raise CapacityError naming the remaining count; return it otherwise."""
    remaining = remaining_capacity(db, day, slot_time, court_id, config, exclude_booking_id, statuses)
    if players > remaining:
        raise CapacityError(requested=players, remaining=remaining)
    return remaining


def active_courts(db: Session) -> List[Court]:
    return db.query(Court).filter(Court.is_active.is_(True)).order_by(Court.id).all()


def active_slots(db: Session) -> List[Slot]:
    return db.query(Slot).filter(Slot.is_active.is_(True)).order_by(Slot.position, Slot.id).all()


def slot_availability(db: Session, day: date, now: datetime, config: BookingConfig) -> List[Tuple[Slot, int]]:
    """(slot, best remaining capacity across courts) for slots that meet the advance buffer."""
    courts = active_courts(db)
    result = []
    for slot in active_slots(db):
        if not meets_advance_buffer(day, slot.time, now, config):
            continue
        best = max(
            (remaining_capacity(db, day.isoformat(), slot.time, court.id, config) for court in courts),
            default=0,
        )
        result.append((slot, best))
    return result


def available_slots(db: Session, day: date, players: int, now: datetime, config: BookingConfig) -> List[Tuple[Slot, int]]:
    return [(slot, best) for slot, best in slot_availability(db, day, now, config) if best >= players]


def available_courts(db: Session, day: str, slot_time: str, players: int, config: BookingConfig) -> List[Tuple[Court, int]]:
    courts = []
    for court in active_courts(db):
        remaining = remaining_capacity(db, day, slot_time, court.id, config)
        if remaining >= players:
            courts.append((court, remaining))
    return courts


def next_booking_id(db: Session) -> str:
    return f"NP-{db.query(Booking).count() + 1:02d}"


def next_booking_invoice(db: Session, year: int) -> str:
    prefix = f"NP-{year}-"
    count = db.query(Booking).filter(Booking.invoice_number.like(f"{prefix}%")).count()
    return f"{prefix}{count + 1:02d}"


def create_booking(
    db: Session,
    phone: str,
    day: str,
    slot_time: str,
    court_id: int,
    players: int,
    config: BookingConfig,
) -> Booking:
    """Reserve places as pending_payment. Raises CapacityError / ValidationError."""
    validate_player_count(config, players)
    ensure_capacity(db, day, slot_time, court_id, players, config)
    duration = slot_duration_hours(slot_time)
    booking = Booking(
        booking_id=next_booking_id(db),
        phone=phone,
        date=day,
        slot_time=slot_time,
        court_id=court_id,
        duration_hours=duration,
        player_count=players,
        amount=booking_amount(config, duration, players),
        status=BookingStatus.PENDING_PAYMENT,
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    logger.info(f"[Bookings] {booking.booking_id} pending for {phone}: {day} {slot_time} court={court_id} players={players}")
    return booking


def get_booking(db: Session, booking_id: str) -> Optional[Booking]:
    return db.query(Booking).filter(Booking.booking_id == booking_id.strip().upper()).first()


def latest_pending_booking(db: Session, phone: str) -> Optional[Booking]:
    return (
        db.query(Booking)
        .filter(Booking.phone == phone)
        .filter(Booking.status == BookingStatus.PENDING_PAYMENT)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
        .first()
    )


def confirm_booking(db: Session, booking: Booking, payment_id: str, config: BookingConfig) -> Booking:
    """
    pending_payment -> confirmed after a verified payment.

    Capacity is re-checked against other confirmed bookings so a late payment
    cannot overfill a slot; CapacityError leaves the booking untouched.
    """
    ensure_capacity(
        db, booking.date, booking.slot_time, booking.court_id, booking.player_count, config,
        exclude_booking_id=booking.id, statuses=(BookingStatus.CONFIRMED,),
    )
    booking.status = BookingStatus.CONFIRMED
    booking.payment_id = payment_id
    booking.invoice_number = next_booking_invoice(db, utcnow().year)
    db.commit()
    db.refresh(booking)
    logger.info(f"[Bookings] {booking.booking_id} confirmed ({payment_id})")
    return booking


def cancel_booking(db: Session, booking: Booking) -> None:
    if booking.status == BookingStatus.PENDING_PAYMENT:
        booking.status = BookingStatus.CANCELLED
        db.commit()
        logger.info(f"[Bookings] {booking.booking_id} cancelled by user")


def expire_pending_bookings(db: Session, now: datetime, config: BookingConfig) -> List[Booking]:
    """Sweep: pending_payment older than the payment window becomes expired."""
    cutoff = now - timedelta(minutes=config.payment_window_minutes)
    stale = (
        db.query(Booking)
        .filter(Booking.status == BookingStatus.PENDING_PAYMENT)
        .filter(Booking.created_at < cutoff)
        .all()
    )
    for booking in stale:
        booking.status = BookingStatus.EXPIRED
    if stale:
        db.commit()
        logger.info(f"[Bookings] Expired {len(stale)} unpaid booking(s)")
    return stale


def due_reminders(db: Session, local_now: datetime) -> List[Tuple[Booking, str]]:
    """Confirmed bookings starting within 24h / 1h that have not been reminded yet. Marks them sent."""
    due = []
    window_start = local_now.date().isoformat()
    window_end = (local_now + timedelta(days=1)).date().isoformat()
    candidates = (
        db.query(Booking)
        .filter(Booking.status == BookingStatus.CONFIRMED)
        .filter(Booking.date >= window_start)
        .filter(Booking.date <= window_end)
        .all()
    )
    for booking in candidates:
        starts_in = slot_start(date.fromisoformat(booking.date), booking.slot_time) - local_now
        if starts_in <= timedelta(0):
            continue
        if starts_in <= timedelta(hours=1) and not booking.reminder_1h_sent:
            booking.reminder_1h_sent = True
            booking.reminder_24h_sent = True
            due.append((booking, "1h"))
        elif starts_in <= timedelta(hours=24) and not booking.reminder_24h_sent:
            booking.reminder_24h_sent = True
            due.append((booking, "24h"))
    if due:
        db.commit()
    return due


def upcoming_bookings(db: Session, phone: str, today: date) -> List[Booking]:
    return (
        db.query(Booking)
        .filter(Booking.phone == phone)
        .filter(Booking.status.in_(BookingStatus.ACTIVE))
        .filter(Booking.date >= today.isoformat())
        .order_by(Booking.date, Booking.id)
        .all()
    )


def payment_link(base_url: str, booking: Booking) -> str:
    return f"{base_url}/payment?booking={booking.booking_id}"


def format_booking(booking: Booking) -> str:
    court = booking.court.name if booking.court else f"Court {booking.court_id}"
    return (
        f"🎫 *{booking.booking_id}*\n"
        f"📅 {booking.date}  ⏰ {booking.slot_time}\n"
        f"🏟️ {court}  👥 {booking.player_count} players\n"
        f"💰 ₹{booking.amount}  •  {booking.status.replace('_', ' ')}"
    )
