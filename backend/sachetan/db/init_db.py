"""Create all tables and seed the booking courts. Run on app startup."""
import logging

from sachetan.db.base import Base
from sachetan.db.session import engine, SessionLocal
from sachetan import models  # noqa: F401 - register models
from sachetan.models.booking import Court, Slot

logger = logging.getLogger(__name__)

DEFAULT_COURTS = ["Court 1", "Court 2"]
DEFAULT_SLOTS = [
    "6:00 AM - 7:00 AM",
    "7:00 AM - 8:00 AM",
    "8:00 AM - 9:00 AM",
    "5:00 PM - 6:00 PM",
    "6:00 PM - 7:00 PM",
    "7:00 PM - 9:00 PM",
]


def seed_booking_defaults(db) -> None:
    """Insert default courts and slots when the tables are empty."""
    if db.query(Court).count() == 0:
        for name in DEFAULT_COURTS:
            db.add(Court(name=name, is_active=True))
        logger.info(f"Seeded {len(DEFAULT_COURTS)} courts")
    if db.query(Slot).count() == 0:
        for position, label in enumerate(DEFAULT_SLOTS):
            db.add(Slot(time=label, position=position, is_active=True))
        logger.info(f"Seeded {len(DEFAULT_SLOTS)} slots")
    db.commit()


def init_db(bind=None, session_factory=None):
    Base.metadata.create_all(bind=bind or engine)

    db = (session_factory or SessionLocal)()
    try:
        seed_booking_defaults(db)
    finally:
        db.close()
