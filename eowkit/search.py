from __future__ import annotations

from typing import List

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from .config import ServiceEndpoint
from .normalize import collapse_whitespace
from .pipeline_types import Hit

# kiwix-serve links its own result pages; those are not articles
_PAGER_PREFIX = "/search"


def extract_hits(html: str, k: int) -> List[Hit]:
    """
    Pair every article anchor with its label text, in document order.

    Anything that is not a site-relative link with a label is skipped; an
    unparseable body yields whatever was found before the parser gave up.
    """
    if not html or k <= 0:
        return []

    try:
        soup = BeautifulSoup(html, "html.parser")
    except Exception as e:
        logger.warning("Search body could not be parsed: {}", e)
        return []

    hits: List[Hit] = []
    for a in soup.find_all("a", href=True):
        href = str(a["href"]).strip()
        if not href.startswith("/") or href.startswith(_PAGER_PREFIX):
            continue
        title = collapse_whitespace(a.get_text(" "))
        if not title:
            continue
        hits.append(Hit(title=title, locator=href))
        if len(hits) >= k:
            break
    return hits


class SearchClient:
    """Lexical retrieval against kiwix-serve."""

    def __init__(self, client: httpx.Client, endpoint: ServiceEndpoint) -> None:
        self._client = client
        self._endpoint = endpoint

    def _url_variants(self, query: str) -> List[tuple[str, dict]]:
        url = self._endpoint.base_url + "/search"
        return [
            (url, {"pattern": query, "content": "html"}),
            (url, {"pattern": query}),
        ]

    def _get_body(self, url: str, params: dict) -> str:
        try:
            r = self._client.get(url, params=params)
        except httpx.HTTPError as e:
            logger.warning("Search request failed ({}): {}", params, e)
            return ""
        if r.status_code >= 400:
            logger.warning("Search: HTTP {} for {}", r.status_code, params)
            return ""
        return r.text or ""

    def search(self, query: str, k: int) -> List[Hit]:
        if k <= 0 or not query or not query.strip():
            return []

        for url, params in self._url_variants(query):
            body = self._get_body(url, params)
            if not body.strip():
                continue
            hits = extract_hits(body, k)
            logger.debug("Search {!r}: {} hits via {}", query, len(hits), params)
            return hits

        logger.warning("Search returned nothing usable for {!r}", query)
        return []
