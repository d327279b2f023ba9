"""
Tavily web search, scoped to the business's own website.

Only used as a non-strict fallback when curated knowledge is thin. Each
snippet is prefixed with `[Web Search]` so the generator can tell web
content from curated content.
"""

import logging
from typing import List, Optional

import requests

from sachetan.core.config import settings

logger = logging.getLogger(__name__)

TAVILY_SEARCH_URL = "https://api.tavily.com/search"
WEB_PREFIX = "[Web Search]"


class WebSearchClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        domain: Optional[str] = None,
        business_name: Optional[str] = None,
        max_results: int = 3,
        timeout: float = 8.0,
    ):
        self.api_key = settings.TAVILY_API_KEY if api_key is None else api_key
        self.domain = domain or settings.BUSINESS_DOMAIN
        self.business_name = business_name or settings.BUSINESS_NAME
        self.max_results = max_results
        self.timeout = timeout

    def is_available(self) -> bool:
        return bool(self.api_key)

    def search(self, query: str) -> List[str]:
        """Return prefixed snippets, or [] when disabled or on any error."""
        if not self.is_available() or not query.strip():
            return []

        payload = {
            "api_key": self.api_key,
            "query": f"{self.business_name} {query}",
            "search_depth": "basic",
            "include_domains": [self.domain],
            "max_results": self.max_results,
        }
        try:
            response = requests.post(TAVILY_SEARCH_URL, json=payload, timeout=self.timeout)
            response.raise_for_status()
            results = response.json().get("results", [])
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"[WebSearch] Tavily search failed: {e}")
            return []

        snippets = []
        for result in results[: self.max_results]:
            content = (result.get("content") or "").strip()
            if not content:
                continue
            title = (result.get("title") or result.get("url") or "").strip()
            snippets.append(f"{WEB_PREFIX} {title}: {content}")
        logger.info(f"[WebSearch] {len(snippets)} result(s) for '{query[:60]}'")
        return snippets

    def ping(self) -> bool:
        """Configured and reachable (HEAD on the API host)."""
        if not self.is_available():
            return False
        try:
            requests.head("https://api.tavily.com", timeout=self.timeout)
            return True
        except requests.RequestException:
            return False
