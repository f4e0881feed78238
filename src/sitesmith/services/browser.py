"""Page navigation and readable-text extraction for the browser agent view."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional, Protocol
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from ..core.cancellation import CancellationToken
from ..core.navigation import collapse_whitespace
from ..errors import NavigationError

LOG = logging.getLogger("sitesmith.browser")

_BROWSER_TIMEOUT = float(os.getenv("SITESMITH_BROWSER_TIMEOUT", "15"))
_MAX_PAGE_BYTES = 2_000_000
_USER_AGENT = "Mozilla/5.0 (compatible; SitesmithBrowserAgent/0.1)"


class PageExtractor(Protocol):
    """Fetches a page and returns its markup, or raises NavigationError."""

    async def __call__(self, url: str, token: CancellationToken) -> str: ...


def extract_readable_text(html: str) -> str:
    """Visible text of the page body with runs of whitespace collapsed."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    root = soup.body or soup
    return collapse_whitespace(root.get_text(" "))


class RequestsPageExtractor:
    def __init__(self, session: Optional[requests.Session] = None, timeout: Optional[float] = None) -> None:
        self._session = session or requests.Session()
        self._timeout = timeout or _BROWSER_TIMEOUT

    def fetch(self, url: str, token: CancellationToken) -> str:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise NavigationError(f"Unsupported URL: {url}")
        try:
            with self._session.get(
                url,
                timeout=self._timeout,
                stream=True,
                headers={"User-Agent": _USER_AGENT, "Accept": "text/html,*/*;q=0.8"},
            ) as resp:
                if resp.status_code >= 400:
                    raise NavigationError(f"{url} returned HTTP {resp.status_code}")
                token.on_cancel(resp.close)
                body = bytearray()
                try:
                    for chunk in resp.iter_content(chunk_size=16_384):
                        if token.cancelled:
                            break
                        if not chunk:
                            continue
                        body.extend(chunk)
                        if len(body) >= _MAX_PAGE_BYTES:
                            LOG.info("page_truncated", extra={"url": url, "bytes": len(body)})
                            break
                except Exception:
                    if not token.cancelled:
                        raise
                finally:
                    token.remove_callback(resp.close)
                if token.cancelled:
                    raise NavigationError("Navigation cancelled.")
                encoding = resp.encoding or "utf-8"
        except requests.exceptions.RequestException as exc:
            raise NavigationError(f"Could not load {url}: {exc}") from exc
        try:
            return bytes(body).decode(encoding, errors="replace")
        except LookupError:
            return bytes(body).decode("utf-8", errors="replace")

    async def navigate_and_extract(self, url: str, token: CancellationToken) -> str:
        if token.cancelled:
            raise NavigationError("Navigation cancelled.")
        LOG.info("browser_navigate", extra={"url": url})
        html = await asyncio.to_thread(self.fetch, url, token)
        if token.cancelled:
            raise NavigationError("Navigation cancelled.")
        return html

    __call__ = navigate_and_extract


_extractor: RequestsPageExtractor | None = None


def get_page_extractor() -> RequestsPageExtractor:
    global _extractor
    if _extractor is None:
        _extractor = RequestsPageExtractor()
    return _extractor
