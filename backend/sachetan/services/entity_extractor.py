"""
Deterministic extraction of packaging requirements and lead details.

Runs on every custom-solutions message before the LLM is called, so obvious
facts ("500 pcs of 1 kg cake box, printed") land in the order context even
if the model forgets to report them. Also pre-fills lead capture from
phrases like "my name is Priya from Pune".
"""
import re
import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)


PRODUCT_PATTERNS = [
    ("cake box", re.compile(r"\bcake\s*box(es)?\b", re.IGNORECASE)),
    ("pizza box", re.compile(r"\bpizza\s*box(es)?\b", re.IGNORECASE)),
    ("paper bag", re.compile(r"\b(paper|carry)\s*bags?\b", re.IGNORECASE)),
    ("laminated box", re.compile(r"\blaminat(ed|ion)\s*box(es)?\b", re.IGNORECASE)),
    ("base", re.compile(r"\b(cake\s*)?bases?\b|\bboards?\b", re.IGNORECASE)),
]

SIZE_DIMENSIONS = re.compile(r"\b(\d+(?:\.\d+)?\s*[x×*]\s*\d+(?:\.\d+)?\s*[x×*]\s*\d+(?:\.\d+)?)\b", re.IGNORECASE)
SIZE_WEIGHT = re.compile(r"\b(\d+(?:\.\d+)?)\s*(kg|kilo)\b", re.IGNORECASE)
QUANTITY = re.compile(r"\b(\d{2,7})\s*(qty|pcs|pieces|piece|quantity|nos|boxes|bags|units)\b", re.IGNORECASE)
QUANTITY_PREFIX = re.compile(r"\b(qty|quantity)\s*[:\-]?\s*(\d{2,7})\b", re.IGNORECASE)
GSM = re.compile(r"\b(\d{2,3})\s*gsm\b", re.IGNORECASE)
PRINTING = re.compile(r"\b(printed|printing|print|logo|branding|custom\s*design|multicolou?r)\b", re.IGNORECASE)

NAME_PATTERNS = [
    re.compile(r"\bmy name is\s+([A-Za-z][A-Za-z .']{1,40}?)(?=\s+(?:from|and|,)|[.,!]|$)", re.IGNORECASE),
    re.compile(r"\b(?i:i am)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)(?=\s+(?:from|and|,)|[.,!]|$)"),
]
CITY_PATTERNS = [
    re.compile(r"\bcity\s*[:\-]\s*([A-Za-z][A-Za-z ]{1,40}?)(?=[.,!]|$)", re.IGNORECASE),
    re.compile(r"\bfrom\s+([A-Z][a-zA-Z]+(?:\s+[A-Z][a-zA-Z]+)?)\b"),
]

SALES_INTENT = re.compile(
    r"\b(quote|quotation|order|buy|price|bulk|custom|printed|logo|branding)\b",
    re.IGNORECASE,
)


def extract_requirements(text: str) -> Dict[str, object]:
    """Packaging facts stated in one message. Only keys that were found."""
    found: Dict[str, object] = {}
    text = text or ""

    for product, pattern in PRODUCT_PATTERNS:
        if pattern.search(text):
            found["product"] = product
            break

    match = SIZE_DIMENSIONS.search(text)
    if match:
        found["size"] = re.sub(r"\s+", "", match.group(1)).replace("×", "x").replace("*", "x")
    else:
        match = SIZE_WEIGHT.search(text)
        if match:
            found["size"] = f"{match.group(1)} kg"

    match = QUANTITY.search(text)
    if match:
        found["quantity"] = int(match.group(1))
    else:
        match = QUANTITY_PREFIX.search(text)
        if match:
            found["quantity"] = int(match.group(2))

    match = GSM.search(text)
    if match:
        found["gsm"] = int(match.group(1))

    if PRINTING.search(text):
        found["printing"] = "custom printed"

    if found:
        logger.debug(f"[Extractor] requirements={found}")
    return found


def _clean_name(value: str) -> Optional[str]:
    value = " ".join(value.strip(" .,'").split())
    if len(value) < 2 or len(value) > 60:
        return None
    return value.title()


def extract_lead_details(text: str) -> Dict[str, str]:
    """Name / city mentioned in free text."""
    found: Dict[str, str] = {}
    for pattern in NAME_PATTERNS:
        match = pattern.search(text or "")
        if match:
            name = _clean_name(match.group(1))
            if name:
                found["name"] = name
                break
    for pattern in CITY_PATTERNS:
        match = pattern.search(text or "")
        if match:
            city = _clean_name(match.group(1))
            if city:
                found["city"] = city
                break
    return found


def has_sales_intent(text: str) -> bool:
    return bool(SALES_INTENT.search(text or ""))
