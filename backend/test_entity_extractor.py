"""Regex extraction of packaging requirements and lead details, and text chunking."""
from sachetan.services.entity_extractor import extract_lead_details, extract_requirements, has_sales_intent
from sachetan_ai.chunking import chunk_text


def test_requirements_from_one_message():
    found = extract_requirements("Need 500 pcs of 8x8x5 cake box, 300 gsm, printed with our logo")
    assert found == {
        "product": "cake box",
        "size": "8x8x5",
        "quantity": 500,
        "gsm": 300,
        "printing": "custom printed",
    }


def test_weight_size_and_prefixed_quantity():
    found = extract_requirements("1 kg pizza box qty: 250")
    assert found["product"] == "pizza box"
    assert found["size"] == "1 kg"
    assert found["quantity"] == 250


def test_nothing_found():
    assert extract_requirements("hello there") == {}


def test_lead_details():
    assert extract_lead_details("Hi, my name is priya sharma from Pune") == {"name": "Priya Sharma", "city": "Pune"}
    assert extract_lead_details("city: Nashik.") == {"city": "Nashik"}
    assert extract_lead_details("I am Rahul and I need boxes")["name"] == "Rahul"


def test_sales_intent():
    assert has_sales_intent("Can I get a quotation?")
    assert not has_sales_intent("What are your timings?")


def test_chunks_keep_sentences_whole():
    text = "First sentence here. Second one follows! Third? " * 3
    chunks = chunk_text(text, max_chars=60)
    assert all(len(chunk) <= 60 for chunk in chunks)
    assert all(chunk.endswith((".", "!", "?")) for chunk in chunks)
    assert " ".join(chunks).split() == text.split()


def test_overlong_sentence_is_split():
    chunks = chunk_text("word " * 50, max_chars=40)
    assert all(len(chunk) <= 40 for chunk in chunks)
    assert " ".join(chunks).split() == ["word"] * 50


def test_empty_text_has_no_chunks():
    assert chunk_text("   ") == []
