import asyncio

import pytest
import requests

from src.sitesmith.core.cancellation import CancellationToken
from src.sitesmith.errors import NavigationError
from src.sitesmith.services.browser import RequestsPageExtractor, extract_readable_text


class _FakeResponse:
    def __init__(self, body, status_code=200, encoding="utf-8"):
        self._body = body
        self.status_code = status_code
        self.encoding = encoding
        self.closed = False
        self.after_chunk = None

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self._body), chunk_size):
            if self.closed:
                raise requests.exceptions.ConnectionError("connection closed")
            yield self._body[i : i + chunk_size]
            if self.after_chunk is not None:
                self.after_chunk()

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class _FakeSession:
    def __init__(self, response):
        self.response = response
        self.urls = []

    def get(self, url, **kwargs):
        self.urls.append(url)
        return self.response


def test_extract_readable_text_drops_scripts_and_collapses_space():
    html = """
    <html><head><title>T</title><style>body{}</style></head>
    <body><h1>Fresh   bread</h1>
      <script>var x = 1;</script>
      <p>Baked
         daily</p></body></html>
    """
    assert extract_readable_text(html) == "Fresh bread Baked daily"
    assert extract_readable_text("") == ""


def test_fetch_returns_markup():
    session = _FakeSession(_FakeResponse(b"<p>hello</p>"))
    extractor = RequestsPageExtractor(session=session, timeout=1)
    html = asyncio.run(extractor("https://bakery.test/", CancellationToken()))
    assert html == "<p>hello</p>"
    assert session.urls == ["https://bakery.test/"]


def test_fetch_rejects_bad_urls_and_http_errors():
    extractor = RequestsPageExtractor(session=_FakeSession(_FakeResponse(b"", status_code=404)), timeout=1)
    with pytest.raises(NavigationError, match="Unsupported URL"):
        extractor.fetch("javascript:alert(1)", CancellationToken())
    with pytest.raises(NavigationError, match="HTTP 404"):
        extractor.fetch("https://bakery.test/missing", CancellationToken())


def test_cancelled_navigation_fails():
    token = CancellationToken()
    token.cancel()
    extractor = RequestsPageExtractor(session=_FakeSession(_FakeResponse(b"<p/>")), timeout=1)
    with pytest.raises(NavigationError, match="Navigation cancelled."):
        asyncio.run(extractor("https://bakery.test/", token))


def test_unknown_encoding_falls_back_to_utf8():
    extractor = RequestsPageExtractor(
        session=_FakeSession(_FakeResponse("café".encode("utf-8"), encoding="x-not-real")), timeout=1
    )
    assert extractor.fetch("https://bakery.test/", CancellationToken()) == "café"


def test_stop_during_fetch_closes_response():
    token = CancellationToken()
    response = _FakeResponse(b"x" * 40_000)
    response.after_chunk = token.cancel
    extractor = RequestsPageExtractor(session=_FakeSession(response), timeout=1)

    with pytest.raises(NavigationError, match="Navigation cancelled."):
        extractor.fetch("https://bakery.test/", token)
    assert response.closed
