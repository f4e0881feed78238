import asyncio
import json

import pytest
import requests

from src.sitesmith.core.cancellation import CancellationToken
from src.sitesmith.domain.events import FileCreateEvent, ResultEvent
from src.sitesmith.domain.models import GenerationOptions, GenerationRequest
from src.sitesmith.errors import GenerationStreamError
from src.sitesmith.services.generation_client import HttpGenerationClient, decode_sse_line


class _FakeResponse:
    def __init__(self, lines, status_code=200, text=""):
        self._lines = lines
        self.status_code = status_code
        self.text = text
        self.closed = False

    def iter_lines(self):
        for line in self._lines:
            if self.closed:
                raise requests.exceptions.ConnectionError("connection closed")
            yield line

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class _FakeSession:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        return self.response


def _sse(payload):
    return f"data: {json.dumps(payload)}".encode("utf-8")


def _request():
    return GenerationRequest(prompt="Build a bakery site", options=GenerationOptions(model="gemini-2.5-flash"))


def test_decode_sse_line():
    assert decode_sse_line(b"") is None
    assert decode_sse_line(b": keep-alive") is None
    assert decode_sse_line(b"data: {bad json") is None
    assert decode_sse_line('data: {"type": "result"}') == {"type": "result"}


def test_iter_events_skips_unknown_and_stops_at_done():
    lines = [
        _sse({"type": "file_create", "file": {"name": "index.html"}}),
        _sse({"type": "heartbeat"}),
        b"",
        _sse({"type": "result", "data": [{"name": "index.html", "content": "<p/>"}]}),
        b"data: [DONE]",
        _sse({"type": "file_create", "file": {"name": "late.html"}}),
    ]
    session = _FakeSession(_FakeResponse(lines))
    client = HttpGenerationClient(url="http://backend.test/generate", session=session)

    got = list(client.iter_events(_request(), CancellationToken()))

    assert [type(e) for e in got] == [FileCreateEvent, ResultEvent]
    url, kwargs = session.calls[0]
    assert url == "http://backend.test/generate"
    assert kwargs["stream"] is True
    assert kwargs["json"]["prompt"] == "Build a bakery site"
    assert kwargs["json"]["options"]["view"] == "preview"


def test_iter_events_stops_when_cancelled():
    token = CancellationToken()
    token.cancel()
    session = _FakeSession(_FakeResponse([_sse({"type": "file_create", "file": {"name": "a.html"}})]))
    client = HttpGenerationClient(url="http://backend.test/generate", session=session)
    assert list(client.iter_events(_request(), token)) == []


def test_http_errors_and_malformed_events_raise_stream_error():
    client = HttpGenerationClient(
        url="http://backend.test/generate",
        session=_FakeSession(_FakeResponse([], status_code=502, text="bad gateway")),
    )
    with pytest.raises(GenerationStreamError, match="HTTP 502"):
        list(client.iter_events(_request(), CancellationToken()))

    client = HttpGenerationClient(
        url="http://backend.test/generate",
        session=_FakeSession(_FakeResponse([_sse({"type": "file_chunk", "name": "a.html"})])),
    )
    with pytest.raises(GenerationStreamError, match="Malformed"):
        list(client.iter_events(_request(), CancellationToken()))


def test_async_stream_yields_events():
    lines = [_sse({"type": "result", "data": []})]
    client = HttpGenerationClient(url="http://backend.test/generate", session=_FakeSession(_FakeResponse(lines)))

    async def collect():
        return [e async for e in client(_request(), CancellationToken())]

    got = asyncio.run(collect())
    assert len(got) == 1 and isinstance(got[0], ResultEvent)


def test_stop_closes_response_and_ends_stream_quietly():
    token = CancellationToken()
    response = _FakeResponse(
        [
            _sse({"type": "file_create", "file": {"name": "a.html"}}),
            _sse({"type": "file_create", "file": {"name": "b.html"}}),
        ]
    )
    client = HttpGenerationClient(url="http://backend.test/generate", session=_FakeSession(response))

    events = client.iter_events(_request(), token)
    assert isinstance(next(events), FileCreateEvent)
    token.cancel()

    assert response.closed
    assert list(events) == []


def test_async_stream_closes_iterator_when_consumer_stops_early():
    response = _FakeResponse([_sse({"type": "file_create", "file": {"name": "a.html"}})] * 3)
    client = HttpGenerationClient(url="http://backend.test/generate", session=_FakeSession(response))
    token = CancellationToken()

    async def take_one():
        agen = client(_request(), token)
        first = await agen.__anext__()
        await agen.aclose()
        return first

    assert isinstance(asyncio.run(take_one()), FileCreateEvent)
    token.cancel()
    assert not response.closed
