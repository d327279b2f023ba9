"""
Sachetan WhatsApp Assistant backend.

ARCHITECTURE:
- Twilio WhatsApp webhook: one conversation turn per inbound message
- Conversation engine: durable per-phone state machine (shop, court booking,
  custom-solutions assistant, menu)
- RAG engine: LanceDB vectors + Groq generation, web search fallback
- SQLite/SQL DB: sessions, history, orders, bookings, knowledge documents
- Admin API: knowledge management, manual takeover, broadcast messages

Payment callbacks are verified server-side before any state changes.
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from sachetan.agent.proactive_scheduler import ProactiveScheduler
from sachetan.api.routes import payment, rag_admin, sessions_admin, webhook
from sachetan.bootstrap import build_services
from sachetan.core.config import settings
from sachetan.core.rate_limiter import AdminRateLimitMiddleware
from sachetan.db.init_db import init_db

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    1. Initialize database tables (and seed courts/slots)
    2. Build shared services (WhatsApp, RAG, session store)
    3. Start proactive scheduler (expiry, reminders, catalog sync, nudges)

    Shutdown:
    1. Stop proactive scheduler
    """
    scheduler = None
    print("[*] Initializing database...")
    init_db()
    print("[OK] Database initialized")

    print("[*] Building services...")
    app.state.services = build_services()
    print("[OK] Services ready")

    if settings.ENABLE_SCHEDULER:
        print("[*] Starting proactive scheduler...")
        scheduler = ProactiveScheduler(app.state.services)
        scheduler.start()
        print("[OK] Scheduler started")
    else:
        print("[WARN] Proactive scheduler disabled (ENABLE_SCHEDULER=false)")

    yield

    try:
        if scheduler is not None:
            await scheduler.stop()
    except Exception as e:
        print(f"[ERROR] Shutdown error: {e}")


app = FastAPI(
    title="Sachetan WhatsApp Assistant API",
    description="WhatsApp commerce and support bot: shop, court booking, RAG assistant.",
    version="0.1.0",
    lifespan=lifespan,
)

# SECURITY: Restrict CORS to specific methods and headers (not wildcards)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "Accept",
        "Origin",
    ],
    max_age=600,
    expose_headers=["Content-Type"],
)

# SECURITY: Rate limit the admin API (webhooks are never throttled here)
app.add_middleware(AdminRateLimitMiddleware)


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# Uploaded product images and inbound customer media; Twilio fetches these by URL
os.makedirs(settings.MEDIA_DIR, exist_ok=True)
app.mount("/media", StaticFiles(directory=settings.MEDIA_DIR), name="media")

app.include_router(webhook.router, prefix="/webhook", tags=["webhook"])
app.include_router(payment.router, prefix="/payment", tags=["payment"])
app.include_router(rag_admin.router, prefix="/api/admin/ai", tags=["admin-ai"])
app.include_router(sessions_admin.router, prefix="/api/admin/sessions", tags=["admin-sessions"])


@app.get("/health")
def health():
    return {"status": "ok", "scheduler": "enabled" if settings.ENABLE_SCHEDULER else "disabled"}
