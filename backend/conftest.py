"""Shared fixtures: in-memory database, fake transport/LLM, temp LanceDB."""
import asyncio
import os
import tempfile
from datetime import datetime
from decimal import Decimal

# Must be set before sachetan.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("MEDIA_DIR", tempfile.mkdtemp(prefix="sachetan-media-"))
os.environ.setdefault("ENABLE_SCHEDULER", "false")
os.environ.setdefault("ADMIN_WHATSAPP", "whatsapp:+919000000000")
os.environ.setdefault("BASE_URL", "https://bot.example.com")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sachetan.bootstrap import build_services
from sachetan.core.rate_limiter import RateLimiter
from sachetan.db.init_db import init_db
from sachetan.models.catalog import MidCategory, Product, TopCategory
from sachetan.services.media_service import MediaStore
from sachetan_ai.embeddings import EmbeddingClient
from sachetan_ai.vector_store import VectorStore

PHONE = "whatsapp:+919812345678"
ADMIN = "whatsapp:+919000000000"
FIXED_NOW = datetime(2026, 3, 10, 9, 0)


class FakeTransport:
    """Records outbound messages instead of calling Twilio."""

    def __init__(self):
        self.sent = []

    def send(self, to, body=None, media_url=None, content_sid=None, content_variables=None):
        self.sent.append({"to": to, "body": body or "", "media_url": media_url})
        return f"SM{len(self.sent):04d}"

    def bodies(self, to=PHONE):
        return [m["body"] for m in self.sent if m["to"] == to]

    def last(self, to=PHONE):
        bodies = self.bodies(to)
        return bodies[-1] if bodies else ""

    def clear(self):
        self.sent.clear()

    def ping(self):
        return True


class FakeGenerator:
    """Scripted LLM. `answers` are returned in order, then `default`."""

    def __init__(self, default="Our cake boxes start at ₹11 per piece."):
        self.default = default
        self.answers = []
        self.calls = []

    def generate(self, system_prompt, user_prompt):
        self.calls.append({"system": system_prompt, "user": user_prompt})
        if self.answers:
            return self.answers.pop(0)
        return self.default

    def ping(self):
        return True


class FakeWebSearch:
    def __init__(self):
        self.queries = []

    def search(self, query):
        self.queries.append(query)
        return []

    def ping(self):
        return False


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    init_db(bind=engine, session_factory=factory)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def web_search():
    return FakeWebSearch()


@pytest.fixture
def vector_store(tmp_path):
    return VectorStore(db_path=str(tmp_path / "lancedb"), dimension=64)


@pytest.fixture
def embeddings():
    return EmbeddingClient(model_name="hash", dimension=64)


@pytest.fixture
def services(session_factory, transport, generator, web_search, vector_store, embeddings, tmp_path):
    return build_services(
        session_factory=session_factory,
        transport=transport,
        embeddings=embeddings,
        vector_store=vector_store,
        generator=generator,
        web_search=web_search,
        media_store=MediaStore(media_dir=str(tmp_path / "media"), base_url="https://bot.example.com"),
        rate_limiter=RateLimiter(requests=1000, window=60),
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def engine(services):
    return services.engine


@pytest.fixture
def send(engine):
    """send("hi") runs one inbound turn for PHONE."""
    from sachetan.agent.turn import InboundMessage

    def _send(body="", phone=PHONE, media=None):
        asyncio.run(engine.handle_inbound(InboundMessage(phone=phone, body=body, media=media or [])))

    return _send


@pytest.fixture
def catalog(db):
    """Two-level catalog with one in-stock product."""
    top = TopCategory(name="Bakery Boxes", position=0)
    db.add(top)
    db.flush()
    mid = MidCategory(top_category_id=top.id, name="Cake Boxes", position=0)
    db.add(mid)
    db.flush()
    product = Product(
        mid_category_id=mid.id,
        name="Window Cake Box 8x8x5",
        price=Decimal("12.50"),
        sizes="8x8x5",
        description="White window cake box for 1 kg cakes.",
        featured_photo="https://cdn.example.com/cake-box.jpg",
        stock=500,
        is_active=True,
    )
    db.add(product)
    db.commit()
    return product
