"""
Website ingestion: fetch a page, keep its readable text, chunk it for the index.

Chunk ids are `web_<urlsafe base64 of the url>_<n>`, so scraping the same
page again overwrites its chunks in place.
"""

import base64
import logging
import re
from dataclasses import dataclass
from typing import List

import requests
from bs4 import BeautifulSoup

from sachetan.core.exceptions import ValidationError
from sachetan_ai.chunking import chunk_text
from sachetan_ai.vector_store import RagDocument

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; SachetanBot/1.0)"
NOISE_TAGS = ("script", "style", "noscript", "iframe", "nav", "footer", "header")
CONTENT_SELECTORS = ("main", "article", "#content", ".content", ".main", "#main")


@dataclass
class ScrapedPage:
    url: str
    title: str
    content: str


def page_text(html: str, url: str = "") -> ScrapedPage:
    """Title and main-content text of an HTML document, whitespace collapsed."""
    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else ""
    for tag in soup(list(NOISE_TAGS)):
        tag.decompose()

    parts = []
    for selector in CONTENT_SELECTORS:
        parts.extend(node.get_text(" ") for node in soup.select(selector))
    if not parts:
        root = soup.body or soup
        parts.append(root.get_text(" "))
    content = re.sub(r"\s+", " ", " ".join(parts)).strip()
    return ScrapedPage(url=url, title=title, content=content)


def scrape_url(url: str, timeout: float = 15.0) -> ScrapedPage:
    """
    Fetch and extract one page.

    Raises:
        requests.RequestException: fetch failed
        ValidationError: the page has no readable text
    """
    response = requests.get(url, headers={"User-Agent": USER_AGENT}, timeout=timeout)
    response.raise_for_status()
    page = page_text(response.text, url)
    if not page.content:
        raise ValidationError(f"No text at {url}", user_message="The page has no readable text")
    logger.info(f"[Scraper] {url}: '{page.title[:60]}' ({len(page.content)} chars)")
    return page


def url_doc_prefix(url: str) -> str:
    encoded = base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii").rstrip("=")
    return f"web_{encoded}"


def page_documents(page: ScrapedPage) -> List[RagDocument]:
    prefix = url_doc_prefix(page.url)
    return [
        RagDocument(
            id=f"{prefix}_{index}",
            text=chunk,
            metadata={
                "type": "all",
                "source": "website",
                "url": page.url,
                "title": page.title,
                "chunk_index": index,
            },
        )
        for index, chunk in enumerate(chunk_text(page.content))
    ]
