from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence

from src.sitesmith.core.cancellation import CancellationToken
from src.sitesmith.domain.events import StreamEvent, parse_event
from src.sitesmith.domain.models import GenerationRequest
from src.sitesmith.errors import NavigationError


def events(*payloads: Dict[str, Any]) -> List[StreamEvent]:
    return [parse_event(p) for p in payloads]


def result_event(files: Sequence[Dict[str, Any]] = (), text: Optional[str] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"type": "result", "data": list(files)}
    if text is not None:
        payload["fallbackText"] = text
    return payload


class ScriptedStream:
    """Generation stream that replays one scripted event list per call."""

    def __init__(self, *scripts: Sequence[StreamEvent], on_event: Optional[Callable[[int, int], None]] = None) -> None:
        self.scripts = [list(s) for s in scripts]
        self.requests: List[GenerationRequest] = []
        self.flags_seen: List[bool] = []
        self.on_event = on_event
        self.is_generating: Optional[Callable[[], bool]] = None
        self.fail_with: Optional[Exception] = None
        self.closed = 0

    async def __call__(self, request: GenerationRequest, token: CancellationToken):
        call = len(self.requests)
        self.requests.append(request)
        if self.is_generating is not None:
            self.flags_seen.append(self.is_generating())
        script = self.scripts[call] if call < len(self.scripts) else []
        try:
            for index, event in enumerate(script):
                if token.cancelled:
                    return
                await asyncio.sleep(0)
                if self.on_event is not None:
                    self.on_event(call, index)
                yield event
            if self.fail_with is not None:
                raise self.fail_with
        finally:
            self.closed += 1


class FakeExtractor:
    def __init__(self, pages: Optional[Dict[str, str]] = None, error: Optional[str] = None) -> None:
        self.pages = pages or {}
        self.error = error
        self.calls: List[str] = []
        self.before_return: Optional[Callable[[], None]] = None

    async def __call__(self, url: str, token: CancellationToken) -> str:
        self.calls.append(url)
        if self.before_return is not None:
            self.before_return()
        if token.cancelled:
            raise NavigationError("Navigation cancelled.")
        if self.error is not None:
            raise NavigationError(self.error)
        return self.pages.get(url, "")
