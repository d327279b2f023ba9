"""Outbound message splitting and the Messenger wrapper."""
import asyncio

from sachetan.messaging.whatsapp import Messenger, QuickReply, render_buttons, split_message, whatsapp_address


def test_short_body_is_one_part():
    assert split_message("  hello  ", 20) == ["hello"]
    assert split_message("", 20) == []


def test_paragraphs_are_packed_without_truncation():
    body = "\n\n".join(["a" * 30, "b" * 30, "c" * 30])
    parts = split_message(body, 70)
    assert parts == ["a" * 30 + "\n\n" + "b" * 30, "c" * 30]
    assert all(len(part) <= 70 for part in parts)


def test_oversized_paragraph_breaks_on_words():
    words = " ".join(["box"] * 40)
    parts = split_message(words, 50)
    assert all(len(part) <= 50 for part in parts)
    assert " ".join(parts).split() == words.split()


def test_buttons_render_as_typed_replies():
    text = render_buttons([QuickReply("yes", "Yes, ask AI"), QuickReply("no", "No, continue")])
    assert text == "👉 *yes* - Yes, ask AI\n👉 *no* - No, continue"


def test_whatsapp_address_adds_prefix_once():
    assert whatsapp_address(" +919812345678 ") == "whatsapp:+919812345678"
    assert whatsapp_address("whatsapp:+919812345678") == "whatsapp:+919812345678"


def test_long_reply_sends_parts_in_order_with_media_on_first(services, transport):
    messenger = Messenger(transport, services.history, max_length=40, admin_numbers=[])
    body = "\n\n".join(["first paragraph here", "second paragraph here", "third one"])
    sids = asyncio.run(messenger.send("whatsapp:+91999", body, media_url="https://cdn.example.com/x.jpg"))
    assert len(sids) == len(transport.sent) > 1
    assert transport.sent[0]["media_url"] == "https://cdn.example.com/x.jpg"
    assert all(m["media_url"] is None for m in transport.sent[1:])
    assert "\n\n".join(m["body"] for m in transport.sent) == body


def test_failed_send_is_logged_as_failed(services):
    from twilio.base.exceptions import TwilioRestException

    class Down:
        def send(self, to, body=None, **kwargs):
            raise TwilioRestException(503, "https://api.twilio.com", msg="unavailable", code=20429)

    messenger = Messenger(Down(), services.history, admin_numbers=[])
    sids = asyncio.run(messenger.send("whatsapp:+91999", "hello"))
    assert sids == [None]
    entry = services.history.recent("whatsapp:+91999")[-1]
    assert entry.status == "failed"
    assert entry.sender == "bot"


def test_admin_alerts_are_logged_as_bot_messages(services, transport):
    messenger = Messenger(transport, services.history, admin_numbers=["whatsapp:+919000000001"])
    asyncio.run(messenger.notify_admins("New lead: Asha"))
    assert transport.last("whatsapp:+919000000001") == "New lead: Asha"
    assert services.history.recent("whatsapp:+919000000001")[-1].sender == "bot"


def test_network_error_is_logged_as_failed(services):
    import requests

    class Unreachable:
        def send(self, to, body=None, **kwargs):
            raise requests.ConnectionError("connection reset by peer")

    messenger = Messenger(Unreachable(), services.history, admin_numbers=[])
    assert asyncio.run(messenger.send("whatsapp:+91999", "hello")) == [None]
    assert services.history.recent("whatsapp:+91999")[-1].status == "failed"
