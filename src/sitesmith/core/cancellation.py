"""Cancellation tokens and the process-wide "generating" state.

Tokens are cooperative: producers poll ``cancelled`` between yields. They are
backed by ``threading.Event`` because the HTTP collaborators read their
responses on worker threads.

The generating flag is lease-based. The outermost ``send`` of a turn chain
acquires one lease and is the only frame that releases it, so continuation
turns cannot report "done" mid-chain. ``stop`` revokes every lease at once.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Set

from ..errors import GenerationCancelled

LOG = logging.getLogger("sitesmith.orchestrator")


class CancellationToken:
    def __init__(self, label: str = "") -> None:
        self.label = label
        self._event = threading.Event()
        self._callbacks: List[Callable[[], None]] = []
        self._lock = threading.Lock()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as exc:
                LOG.warning("cancel_callback_failed", extra={"token": self.label, "err": str(exc)})

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` when the token fires, or right away if it already has.

        Used to close blocking I/O so a stopped producer unwinds promptly.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled()

    def __repr__(self) -> str:
        return f"CancellationToken({self.label!r}, cancelled={self.cancelled})"


class GenerationLease:
    def __init__(self, flag: "GeneratingFlag") -> None:
        self._flag = flag
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def release(self) -> None:
        self._flag._release(self)


class GeneratingFlag:
    def __init__(self) -> None:
        self._leases: Set[GenerationLease] = set()
        self._lock = threading.Lock()

    def acquire(self) -> GenerationLease:
        lease = GenerationLease(self)
        with self._lock:
            self._leases.add(lease)
        return lease

    def _release(self, lease: GenerationLease) -> None:
        with self._lock:
            lease._active = False
            self._leases.discard(lease)

    def clear(self) -> None:
        with self._lock:
            for lease in self._leases:
                lease._active = False
            self._leases.clear()

    @property
    def is_set(self) -> bool:
        with self._lock:
            return bool(self._leases)


@dataclass(eq=False)
class TurnTokens:
    stream: CancellationToken
    navigation: CancellationToken


class CancellationCoordinator:
    """Owns the tokens of the active stream and of its nested extraction.

    Concurrent ``send`` calls are not expected, but if they happen every live
    turn keeps its own tokens and ``stop`` cancels all of them.
    """

    def __init__(self, flag: Optional[GeneratingFlag] = None) -> None:
        self.flag = flag or GeneratingFlag()
        self._turns: List[TurnTokens] = []
        self._lock = threading.Lock()

    def begin_turn(self) -> TurnTokens:
        tokens = TurnTokens(
            stream=CancellationToken("stream"),
            navigation=CancellationToken("navigation"),
        )
        with self._lock:
            self._turns.append(tokens)
        return tokens

    def end_turn(self, tokens: TurnTokens) -> None:
        with self._lock:
            if tokens in self._turns:
                self._turns.remove(tokens)

    @property
    def current(self) -> Optional[TurnTokens]:
        with self._lock:
            return self._turns[-1] if self._turns else None

    def stop(self) -> None:
        """Cancel the active streams and extractions and drop the generating state."""
        with self._lock:
            turns = list(self._turns)
        for tokens in turns:
            tokens.stream.cancel()
            tokens.navigation.cancel()
        self.flag.clear()
        LOG.info("generation_stop_requested", extra={"active_turns": len(turns)})
