from __future__ import annotations

from urllib.parse import quote

import httpx
from loguru import logger

from .config import ServiceEndpoint
from .errors import ContentFetchFailed
from .normalize import html_to_text


def locator_path(locator: str) -> str:
    """A content path is used as-is; a bare title maps to /wiki/<title>."""
    locator = locator.strip()
    if locator.startswith("/"):
        return locator
    return "/wiki/" + quote(locator, safe="")


class ContentFetcher:
    """Retrieves raw article markup for a hit and reduces it to plain text."""

    def __init__(self, client: httpx.Client, endpoint: ServiceEndpoint) -> None:
        self._client = client
        self._endpoint = endpoint

    def fetch_raw(self, locator: str) -> str:
        url = self._endpoint.base_url + locator_path(locator)
        try:
            r = self._client.get(url)
        except httpx.HTTPError as e:
            raise ContentFetchFailed(locator, str(e)) from e
        if r.status_code >= 400:
            raise ContentFetchFailed(locator, f"HTTP {r.status_code}")
        return r.text

    def fetch(self, locator: str) -> str:
        text = html_to_text(self.fetch_raw(locator))
        logger.debug("Fetched {} ({} chars)", locator, len(text))
        return text
