"""HTTP surface: Twilio webhooks and the bearer-protected admin API."""
import io

import openpyxl
import pytest
import requests
from fastapi.testclient import TestClient
from starlette.datastructures import FormData

from conftest import PHONE
from sachetan.agent.conversation_state import Stage
from sachetan.api.routes.webhook import parse_inbound
from sachetan.core.config import settings
from sachetan.core.rate_limiter import admin_rate_limiter
from sachetan.main import app
from sachetan_ai import web_scraper

TOKEN = "test-admin-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}
XLSX_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class FakePage:
    def __init__(self, text):
        self.text = text

    def raise_for_status(self):
        pass


@pytest.fixture
def client(services, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_TOKEN", TOKEN)
    admin_rate_limiter.clients.clear()
    app.state.services = services
    # No context manager: the lifespan (real DB, scheduler) stays out of tests
    return TestClient(app)


def _indexed(services, source):
    vector = services.embeddings.embed("rates and boxes")
    return services.vector_store.query(vector, 5, services.rag.namespace, {"source": source})


def _inbound(client, body, phone=PHONE, sid="SMin0001"):
    return client.post(
        "/webhook/whatsapp",
        data={"From": phone, "Body": body, "MessageSid": sid, "NumMedia": "0"},
    )


# ============================================================================
# WEBHOOKS
# ============================================================================

def test_inbound_is_acknowledged_empty_and_answered_in_background(client, transport, services):
    response = _inbound(client, "hi")
    assert response.status_code == 200
    assert response.content == b""
    assert "Main Menu" in transport.last()
    senders = [entry.sender for entry in services.history.recent(PHONE)]
    assert senders[0] == "user"
    assert "bot" in senders


def test_inbound_without_sender_is_ignored(client, transport):
    response = client.post("/webhook/whatsapp", data={"Body": "hi"})
    assert response.status_code == 200
    assert transport.sent == []


def test_status_callback_updates_history(client, transport, services):
    _inbound(client, "hi")
    sid = services.history.recent(PHONE)[-1].provider_message_id
    assert sid

    response = client.post("/webhook/whatsapp/status", data={"MessageSid": sid, "MessageStatus": "delivered"})
    assert response.status_code == 200
    assert services.history.recent(PHONE)[-1].status == "delivered"


def test_parse_inbound_collects_media():
    form = FormData([
        ("From", " whatsapp:+919812345678 "),
        ("Body", "see this"),
        ("NumMedia", "2"),
        ("MediaUrl0", "https://api.twilio.com/m/0"),
        ("MediaContentType0", "image/jpeg"),
        ("MediaUrl1", "https://api.twilio.com/m/1"),
        ("MediaContentType1", "application/pdf"),
    ])
    message = parse_inbound(form)
    assert message.phone == PHONE
    assert message.media == [
        ("https://api.twilio.com/m/0", "image/jpeg"),
        ("https://api.twilio.com/m/1", "application/pdf"),
    ]


def test_parse_inbound_tolerates_bad_media_count():
    message = parse_inbound(FormData([("From", PHONE), ("NumMedia", "lots")]))
    assert message.media == []
    assert message.body == ""


# ============================================================================
# ADMIN AUTH
# ============================================================================

def test_admin_requires_token(client):
    assert client.get("/api/admin/ai/documents").status_code == 401
    bad = {"Authorization": "Bearer wrong"}
    assert client.get("/api/admin/ai/documents", headers=bad).status_code == 401


def test_admin_disabled_without_configured_token(client, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_TOKEN", "")
    assert client.get("/api/admin/ai/documents", headers=AUTH).status_code == 401


def test_security_headers_present(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"


# ============================================================================
# SESSIONS
# ============================================================================

def test_takeover_silences_bot_until_release(client, transport, services):
    response = client.post("/api/admin/sessions/+919812345678/takeover", headers=AUTH)
    assert response.status_code == 200
    assert response.json()["stage"] == Stage.MANUAL

    transport.clear()
    _inbound(client, "hello?")
    assert transport.sent == []
    assert services.history.recent(PHONE)[-1].message == "hello?"

    response = client.post("/api/admin/sessions/+919812345678/release", headers=AUTH)
    assert response.json()["stage"] == Stage.MENU


def test_admin_message_and_history(client, transport):
    response = client.post(
        "/api/admin/sessions/+919812345678/message",
        json={"message": "Your order ships today."},
        headers=AUTH,
    )
    assert response.status_code == 200
    assert response.json() == {"phone": PHONE, "sent": 1, "parts": 1}
    assert transport.last() == "Your order ships today."

    history = client.get("/api/admin/sessions/+919812345678/history", headers=AUTH).json()
    assert history[-1]["sender"] == "admin"
    assert history[-1]["message"] == "Your order ships today."


def test_bulk_message_dedupes_phones(client, transport):
    response = client.post(
        "/api/admin/sessions/bulk",
        json={"phones": ["+919812345678", "whatsapp:+919812345678", "+919811111111"], "message": "Diwali offer!"},
        headers=AUTH,
    )
    body = response.json()
    assert body["requested"] == 2
    assert all(body["results"].values())
    assert transport.last("whatsapp:+919811111111") == "Diwali offer!"


def test_history_limit_is_bounded(client):
    response = client.get("/api/admin/sessions/+919812345678/history?limit=0", headers=AUTH)
    assert response.status_code == 422


# ============================================================================
# KNOWLEDGE
# ============================================================================

def test_manual_document_lifecycle(client, services):
    response = client.post(
        "/api/admin/ai/documents/manual",
        json={"title": "Delivery", "content": "We ship across Maharashtra in 3-7 days.", "user_type": "all"},
        headers=AUTH,
    )
    assert response.status_code == 201
    doc = response.json()
    assert doc["source"] == "manual"
    assert doc["chunk_count"] == 1
    assert services.vector_store.count(services.rag.namespace) == 1

    listed = client.get("/api/admin/ai/documents", headers=AUTH).json()
    assert [d["doc_id"] for d in listed] == [doc["doc_id"]]

    updated = client.put(
        f"/api/admin/ai/documents/{doc['doc_id']}",
        json={"title": "Delivery times"},
        headers=AUTH,
    ).json()
    assert updated["title"] == "Delivery times"

    deleted = client.delete(f"/api/admin/ai/documents/{doc['doc_id']}", headers=AUTH).json()
    assert deleted["status"] == "deleted"
    assert services.vector_store.count(services.rag.namespace) == 0
    assert client.get("/api/admin/ai/documents", headers=AUTH).json() == []


def test_blank_manual_document_rejected(client):
    response = client.post(
        "/api/admin/ai/documents/manual",
        json={"title": "Empty", "content": "   "},
        headers=AUTH,
    )
    assert response.status_code == 400


def test_text_upload_is_indexed(client):
    response = client.post(
        "/api/admin/ai/documents/upload",
        files={"file": ("faq.txt", "Minimum order is 100 pieces.".encode("utf-8"), "text/plain")},
        data={"user_type": "Homebakers"},
        headers=AUTH,
    )
    assert response.status_code == 201
    assert response.json()["title"] == "faq.txt"
    assert response.json()["user_type"] == "Homebakers"


def test_spreadsheet_upload_indexes_rows(client, services):
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.append(["Size", "Rate", "Notes"])
    sheet.append(["8x8x5", 12.5, "fits 1 kg cakes"])
    sheet.append(["10x10x5", 15, None])
    buffer = io.BytesIO()
    workbook.save(buffer)

    response = client.post(
        "/api/admin/ai/documents/upload",
        files={"file": ("rates.xlsx", buffer.getvalue(), XLSX_TYPE)},
        headers=AUTH,
    )
    assert response.status_code == 201
    assert response.json()["chunk_count"] == 1

    matches = _indexed(services, "file")
    assert matches[0].text == "rates.xlsx\nSize,Rate,Notes\n8x8x5,12.5,fits 1 kg cakes\n10x10x5,15"


def test_csv_upload_joins_row_values(client, services):
    csv_text = "size,rate\n8x8x5,12.50\n10x10x5,15\n"
    response = client.post(
        "/api/admin/ai/documents/upload",
        files={"file": ("rates.csv", csv_text.encode("utf-8"), "text/csv")},
        headers=AUTH,
    )
    assert response.status_code == 201
    assert _indexed(services, "file")[0].text == "rates.csv\n8x8x5 12.50\n10x10x5 15"


def test_broken_spreadsheet_is_rejected(client):
    response = client.post(
        "/api/admin/ai/documents/upload",
        files={"file": ("rates.xlsx", b"not a workbook", XLSX_TYPE)},
        headers=AUTH,
    )
    assert response.status_code == 400


def test_scrape_indexes_page_text(client, services, monkeypatch):
    html = (
        "<html><head><title>About Sachetan</title><script>var x = 1;</script></head>"
        "<body><nav>Home | Shop</nav><main><h1>About us</h1><p>We make food-grade cake boxes in Pune.</p></main>"
        "<footer>Copyright</footer></body></html>"
    )
    requested = []

    def fake_get(url, **kwargs):
        requested.append(url)
        return FakePage(html)

    monkeypatch.setattr(web_scraper.requests, "get", fake_get)
    url = "https://sachetanpackaging.in/about"
    response = client.post("/api/admin/ai/scrape", json={"url": url}, headers=AUTH)
    assert response.status_code == 200
    assert response.json() == {"url": url, "title": "About Sachetan", "chunks": 1}
    assert requested == [url]

    matches = _indexed(services, "website")
    assert [m.id for m in matches] == [f"{web_scraper.url_doc_prefix(url)}_0"]
    assert matches[0].text == "About us We make food-grade cake boxes in Pune."
    assert matches[0].metadata["url"] == url

    # scraping again overwrites the same chunk ids
    client.post("/api/admin/ai/scrape", json={"url": url}, headers=AUTH)
    assert services.vector_store.count(services.rag.namespace) == 1


def test_scrape_fetch_failure_is_400(client, monkeypatch):
    def down(url, **kwargs):
        raise requests.ConnectionError("no route to host")

    monkeypatch.setattr(web_scraper.requests, "get", down)
    response = client.post("/api/admin/ai/scrape", json={"url": "https://sachetanpackaging.in"}, headers=AUTH)
    assert response.status_code == 400


def test_scrape_requires_http_url(client):
    response = client.post("/api/admin/ai/scrape", json={"url": "ftp://example.com"}, headers=AUTH)
    assert response.status_code == 422


def test_manual_product_sync(client, services, catalog):
    response = client.post("/api/admin/ai/sync-products", headers=AUTH)
    assert response.status_code == 200
    assert response.json() == {"indexed": 1}
    assert services.vector_store.count(services.rag.namespace) == 1


def test_product_document_rejects_non_images(client):
    response = client.post(
        "/api/admin/ai/documents/product",
        data={"name": "Pizza Box", "price": "9.5"},
        files=[("images", ("notes.txt", b"hello", "text/plain"))],
        headers=AUTH,
    )
    assert response.status_code == 400


def test_product_document_with_image(client):
    response = client.post(
        "/api/admin/ai/documents/product",
        data={"name": "Pizza Box 10in", "price": "9.5", "description": "Brown kraft pizza box."},
        files=[("images", ("pizza.jpg", b"\xff\xd8\xff fake jpeg", "image/jpeg"))],
        headers=AUTH,
    )
    assert response.status_code == 201
    doc = response.json()
    assert doc["source"] == "product"
    assert doc["price"] == "9.5"
    assert len(doc["image_urls"]) == 1
    assert doc["image_urls"][0].startswith("https://bot.example.com/media/")


def test_missing_document_is_404(client):
    assert client.delete("/api/admin/ai/documents/doc_missing", headers=AUTH).status_code == 404


def test_raw_query_strict_fallback(client, generator):
    response = client.post("/api/admin/ai/query", json={"query": "gold foil boxes", "strict": True}, headers=AUTH)
    assert response.status_code == 200
    assert response.json()["context"] == ""
    assert generator.calls == []


def test_health_reports_each_dependency(client):
    body = client.get("/api/admin/ai/health", headers=AUTH).json()
    assert body["checks"]["database"] is True
    assert body["checks"]["vector_store"] is True
    assert body["checks"]["llm"] is True
    assert body["checks"]["whatsapp"] is True
    # hash embeddings and no search key in tests
    assert body["checks"]["embeddings"] is False
    assert body["status"] == "degraded"
