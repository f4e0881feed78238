from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, AsyncGenerator, Iterator, Optional, Protocol, Tuple

import requests
from pydantic import ValidationError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..core.cancellation import CancellationToken
from ..domain.events import StreamEvent, UnknownStreamEvent, parse_event
from ..domain.models import GenerationRequest
from ..errors import GenerationStreamError

LOG = logging.getLogger("sitesmith.stream")

DEFAULT_GENERATION_URL = "http://127.0.0.1:8787/generate"
_STREAM_TIMEOUT: Tuple[float, float] = (
    float(os.getenv("SITESMITH_GENERATION_CONNECT_TIMEOUT", "3")),
    float(os.getenv("SITESMITH_GENERATION_READ_TIMEOUT", "60")),
)
_DONE = object()


class GenerationStream(Protocol):
    """Produces the ordered, cancellable event sequence for one turn."""

    def __call__(self, request: GenerationRequest, token: CancellationToken) -> AsyncGenerator[StreamEvent, None]: ...


def _build_session() -> requests.Session:
    session = requests.Session()
    # Only connection setup is retried; a started stream is never replayed.
    retry = Retry(
        total=2,
        read=0,
        backoff_factor=0.5,
        status_forcelist=(429, 502, 503, 504),
        allowed_methods=frozenset(["POST"]),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=4, pool_maxsize=4)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def decode_sse_line(raw_line: Any) -> Optional[Any]:
    """Return the decoded JSON payload of one ``data:`` line, ``_DONE`` or None."""
    if not raw_line:
        return None
    line = raw_line.decode("utf-8") if isinstance(raw_line, bytes) else str(raw_line)
    if not line.startswith("data:"):
        return None
    data = line[5:].strip()
    if data == "[DONE]":
        return _DONE
    try:
        return json.loads(data)
    except ValueError:
        LOG.warning("generation_stream_bad_json", extra={"line": data[:200]})
        return None


class HttpGenerationClient:
    """Streams generation events from the backend over server-sent events."""

    def __init__(
        self,
        url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[Tuple[float, float]] = None,
    ) -> None:
        self.url = url or os.getenv("SITESMITH_GENERATION_URL") or DEFAULT_GENERATION_URL
        self._session = session or _build_session()
        self._timeout = timeout or _STREAM_TIMEOUT

    def iter_events(self, request: GenerationRequest, token: CancellationToken) -> Iterator[StreamEvent]:
        LOG.debug("generation_stream_open", extra={"url": self.url, "model": request.options.model})
        try:
            with self._session.post(
                self.url,
                json=request.model_dump(mode="json"),
                timeout=self._timeout,
                stream=True,
            ) as resp:
                if resp.status_code >= 400:
                    raise GenerationStreamError(
                        f"Generation backend returned HTTP {resp.status_code}: {resp.text[:200]}"
                    )
                # A stop closes the socket so a read blocked on a quiet backend returns.
                token.on_cancel(resp.close)
                try:
                    for raw_line in resp.iter_lines():
                        if token.cancelled:
                            LOG.debug("generation_stream_cancelled")
                            return
                        payload = decode_sse_line(raw_line)
                        if payload is None:
                            continue
                        if payload is _DONE:
                            return
                        try:
                            yield parse_event(payload)
                        except UnknownStreamEvent as exc:
                            LOG.warning("generation_stream_unknown_event", extra={"event_type": exc.event_type})
                        except ValidationError as exc:
                            raise GenerationStreamError(f"Malformed generation event: {exc.errors()[:1]}") from exc
                except Exception:
                    if token.cancelled:
                        LOG.debug("generation_stream_closed_on_cancel")
                        return
                    raise
                finally:
                    token.remove_callback(resp.close)
        except requests.exceptions.RequestException as exc:
            raise GenerationStreamError(f"Generation backend unreachable: {exc}") from exc

    async def stream(self, request: GenerationRequest, token: CancellationToken) -> AsyncGenerator[StreamEvent, None]:
        iterator = self.iter_events(request, token)
        try:
            while not token.cancelled:
                event = await asyncio.to_thread(next, iterator, _DONE)
                if event is _DONE:
                    break
                yield event
        finally:
            try:
                iterator.close()
            except ValueError:
                # Still running on the worker thread; the cancel callback has
                # closed its response, so it ends on its own.
                LOG.debug("generation_stream_close_deferred")

    __call__ = stream


_client: HttpGenerationClient | None = None


def get_generation_client() -> HttpGenerationClient:
    global _client
    if _client is None:
        _client = HttpGenerationClient()
    return _client
