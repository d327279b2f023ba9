"""
Proactive jobs running alongside the webhook.

JOBS:
1. Unpaid sweep (every 60s): PENDING orders past expires_at -> EXPIRED,
   pending_payment bookings past the payment window -> expired. Customers
   waiting in payment_pending are told and their session goes back to menu.
2. Booking reminders (every 15 min): 24h and 1h before the slot.
3. Catalog sync (hourly): active products upserted into the RAG index,
   inactive ones removed.
4. Inactivity nudges (daily): sessions stuck mid-flow for a day get one
   reminder and are returned to the menu.

DB work runs in the default executor so the event loop keeps serving
webhooks. Sessions are written only through SessionStore.save.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, List, Tuple

from sachetan.agent.conversation_state import Stage
from sachetan.core.timeutils import business_now, utcnow
from sachetan.services import booking_service, catalog_service, order_service

logger = logging.getLogger(__name__)

# Configuration
EXPIRY_INTERVAL_SECONDS = 60
REMINDER_INTERVAL_SECONDS = 15 * 60
CATALOG_SYNC_INTERVAL_SECONDS = 3600
INACTIVITY_INTERVAL_SECONDS = 24 * 3600
INACTIVITY_AFTER = timedelta(hours=24)
INITIAL_DELAY_SECONDS = 10

Job = Callable[[object], Awaitable[int]]


async def _in_executor(func, *args):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func, *args)


# ============================================================================
# JOBS
# ============================================================================

def _expire_unpaid(services) -> List[Tuple[str, str]]:
    """Returns (phone, booking_id) for every booking that just expired."""
    db = services.session_factory()
    try:
        order_service.expire_stale_orders(db, utcnow())
        expired = booking_service.expire_pending_bookings(db, utcnow(), services.flow.booking)
        return [(booking.phone, booking.booking_id) for booking in expired]
    finally:
        db.close()


async def expire_unpaid_job(services) -> int:
    expired = await _in_executor(_expire_unpaid, services)
    for phone, booking_id in expired:
        session = await _in_executor(services.store.load, phone)
        waiting = session.context.get("booking", {}).get("booking_id") == booking_id
        if session.stage == Stage.PAYMENT_PENDING and waiting:
            await _in_executor(lambda: services.store.save(phone, stage=Stage.MENU, context={}))
            await services.messenger.send(
                phone,
                f"⌛ Booking {booking_id} was released because payment was not received in time.\n"
                "Type *book* to try again.",
            )
    return len(expired)


def _due_reminders(services) -> List[Tuple[str, str, str]]:
    db = services.session_factory()
    try:
        due = booking_service.due_reminders(db, business_now())
        return [(booking.phone, kind, booking_service.format_booking(booking)) for booking, kind in due]
    finally:
        db.close()


async def booking_reminder_job(services) -> int:
    due = await _in_executor(_due_reminders, services)
    for phone, kind, card in due:
        when = "in about an hour" if kind == "1h" else "tomorrow"
        await services.messenger.send(phone, f"⏰ Reminder: your court booking is {when}!\n\n{card}")
    if due:
        logger.info(f"[Scheduler] Sent {len(due)} booking reminder(s)")
    return len(due)


def _catalog_snapshot(services):
    db = services.session_factory()
    try:
        return (
            catalog_service.product_documents(db, services.flow),
            catalog_service.inactive_product_document_ids(db),
        )
    finally:
        db.close()


async def catalog_sync_job(services) -> int:
    documents, stale_ids = await _in_executor(_catalog_snapshot, services)
    indexed = await services.rag.index_documents(documents)
    if stale_ids:
        await services.rag.delete_documents(stale_ids)
    logger.info(f"[Scheduler] Catalog sync: {indexed} product(s) indexed, {len(stale_ids)} removed")
    return indexed


async def inactivity_job(services) -> int:
    stuck = await _in_executor(services.store.inactive_since, utcnow() - INACTIVITY_AFTER)
    for session in stuck:
        await services.messenger.send(
            session.phone,
            "👋 Still there? Your last request wasn't finished.\n"
            "Type *menu* whenever you're ready to continue.",
        )
        phone = session.phone
        await _in_executor(lambda: services.store.save(phone, stage=Stage.MENU, previous_stage=None, context={}))
    if stuck:
        logger.info(f"[Scheduler] Nudged {len(stuck)} inactive session(s)")
    return len(stuck)


DEFAULT_JOBS: List[Tuple[str, int, Job]] = [
    ("expire_unpaid", EXPIRY_INTERVAL_SECONDS, expire_unpaid_job),
    ("booking_reminders", REMINDER_INTERVAL_SECONDS, booking_reminder_job),
    ("catalog_sync", CATALOG_SYNC_INTERVAL_SECONDS, catalog_sync_job),
    ("inactivity", INACTIVITY_INTERVAL_SECONDS, inactivity_job),
]


# ============================================================================
# BACKGROUND LOOP - runs in the asyncio loop alongside FastAPI
# ============================================================================

class ProactiveScheduler:
    def __init__(self, services, jobs=None, initial_delay: float = INITIAL_DELAY_SECONDS):
        self.services = services
        self.jobs = DEFAULT_JOBS if jobs is None else jobs
        self.initial_delay = initial_delay
        self._tasks: List[asyncio.Task] = []

    async def _loop(self, name: str, interval: int, job: Job):
        logger.info(f"[Scheduler] Job '{name}' started. Interval: {interval}s")
        await asyncio.sleep(self.initial_delay)
        while True:
            try:
                await job(self.services)
            except Exception as e:
                logger.error(f"[Scheduler] Job '{name}' failed: {e}", exc_info=True)
            await asyncio.sleep(interval)

    def start(self):
        """Called from the FastAPI lifespan."""
        for name, interval, job in self.jobs:
            self._tasks.append(asyncio.create_task(self._loop(name, interval, job)))
        logger.info(f"[Scheduler] {len(self._tasks)} job(s) scheduled")

    async def stop(self):
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("[Scheduler] Stopped")
