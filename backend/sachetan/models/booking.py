from sqlalchemy import Boolean, Column, Integer, String, ForeignKey, Numeric, DateTime
from sqlalchemy.orm import relationship

from sachetan.core.timeutils import utcnow
from sachetan.db.base import Base


class BookingStatus:
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    # Statuses that hold a place in a slot
    ACTIVE = (CONFIRMED, PENDING_PAYMENT)


class Court(Base):
    __tablename__ = "courts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(64), nullable=False, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)


class Slot(Base):
    __tablename__ = "slots"

    id = Column(Integer, primary_key=True, index=True)
    time = Column(String(64), nullable=False, unique=True)  # "7:00 AM - 8:00 AM"
    position = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(String(32), unique=True, nullable=False, index=True)  # NP-01
    phone = Column(String(64), nullable=False, index=True)
    date = Column(String(10), nullable=False, index=True)  # YYYY-MM-DD, business timezone
    slot_time = Column(String(64), nullable=False)
    court_id = Column(Integer, ForeignKey("courts.id"), nullable=False)
    duration_hours = Column(Integer, nullable=False, default=1)
    player_count = Column(Integer, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(32), nullable=False, default=BookingStatus.PENDING_PAYMENT, index=True)
    payment_id = Column(String(64), nullable=True)
    invoice_number = Column(String(32), nullable=True, unique=True)
    reminder_24h_sent = Column(Boolean, nullable=False, default=False)
    reminder_1h_sent = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    court = relationship("Court")

    def __repr__(self):
        return f"<Booking {self.booking_id} {self.date} {self.slot_time} status={self.status}>"
