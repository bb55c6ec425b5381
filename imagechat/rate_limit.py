# ─────────────────────────────────────────────────────────────────────────────
# Rate Limiting — per-client admission control + outer slowapi flood guard
# ─────────────────────────────────────────────────────────────────────────────
# AdmissionController is the policy: one admission per rate window and at
# most max_in_flight running generations per client identity. It is created
# in the lifespan and injected.
#
# `limiter` is the shared slowapi instance for the coarse HTTP-level cap.
# Its per-key counters sit in slowapi's in-memory storage, separate from
# the AdmissionController state; they only count raw requests, never admit
# anything, and reset with the process. It lives here to avoid circular
# imports between main.py and route modules.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import contextlib
import math
import threading
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any, Literal

import structlog
from cachetools import TTLCache  # type: ignore[import-untyped]
from slowapi import Limiter

from imagechat.exceptions import ThrottledError
from imagechat.identity import client_identity

logger = structlog.get_logger(__name__)

limiter = Limiter(key_func=client_identity)

Clock = Callable[[], float]
RetryAfterMode = Literal["fixed", "remaining"]


@dataclass
class ClientLimiterState:
    """Mutable per-identity limiter state."""

    last_admitted_at: float | None = None
    in_flight: int = 0


@dataclass(frozen=True)
class Decision:
    admitted: bool
    retry_after_seconds: int = 0

    @classmethod
    def admit(cls) -> Decision:
        return cls(admitted=True)

    @classmethod
    def reject(cls, retry_after_seconds: int) -> Decision:
        return cls(admitted=False, retry_after_seconds=retry_after_seconds)


class _ClientStateCache(TTLCache):  # type: ignore[misc]
    """TTLCache of idle identities that logs capacity evictions (TTL expiry is silent)."""

    def popitem(self) -> tuple[str, ClientLimiterState]:
        identity, state = super().popitem()
        logger.info("limiter_state_evicted", identity=identity, reason="capacity")
        return identity, state


class AdmissionController:
    """Decides per client identity whether a generation may start now.

    A request is admitted only when the identity has fewer than
    ``max_in_flight`` admitted requests still running AND at least
    ``min_interval_seconds`` have passed since its last admission.
    Rejections carry a retry hint; nothing is queued.

    Check-and-update runs under a threading.Lock with no await inside, so
    it is atomic for both worker threads and asyncio tasks.

    Identities with work in flight are pinned in a plain dict and are never
    expired or evicted. Once an identity's last slot is released its state
    moves to a TTLCache driven by the injected clock: it is forgotten after
    ``idle_ttl_seconds`` without activity, and at most ``max_clients`` idle
    identities are kept (least recently used evicted first). The TTL is
    never shorter than the rate window and counts from the release, which
    is never earlier than the admission, so expiry cannot shorten a wait.
    Capacity eviction can; it only drops idle identities.
    """

    def __init__(
        self,
        min_interval_seconds: float = 60.0,
        max_in_flight: int = 1,
        retry_after_seconds: int = 60,
        retry_after_mode: RetryAfterMode = "fixed",
        idle_ttl_seconds: float = 300.0,
        max_clients: int = 10_000,
        clock: Clock = time.monotonic,
    ) -> None:
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")
        if retry_after_mode not in ("fixed", "remaining"):
            raise ValueError(f"Unknown retry_after_mode: {retry_after_mode!r}")

        self._min_interval = min_interval_seconds
        self._max_in_flight = max_in_flight
        self._retry_after = retry_after_seconds
        self._retry_after_mode = retry_after_mode
        self._idle_ttl = max(idle_ttl_seconds, min_interval_seconds)
        self._max_clients = max_clients
        self._clock = clock
        self._lock = threading.Lock()
        self._running: dict[str, ClientLimiterState] = {}
        self._idle: _ClientStateCache = _ClientStateCache(
            maxsize=max_clients, ttl=self._idle_ttl, timer=clock
        )

    def admit(self, identity: str) -> Decision:
        """Admit or reject one request from ``identity``.

        Admission records the time and takes an in-flight slot; the caller
        must call release() when the work finishes, success or failure.
        """
        with self._lock:
            now = self._clock()
            state = self._running.get(identity) or self._idle.get(identity)
            if state is None:
                state = ClientLimiterState()

            if state.in_flight >= self._max_in_flight:
                return Decision.reject(self._hint(state, now))

            if (
                state.last_admitted_at is not None
                and now - state.last_admitted_at < self._min_interval
            ):
                return Decision.reject(self._hint(state, now))

            state.last_admitted_at = now
            state.in_flight += 1
            self._idle.pop(identity, None)
            self._running[identity] = state
            return Decision.admit()

    def release(self, identity: str) -> None:
        """Give back an in-flight slot. Identities with nothing running are ignored."""
        with self._lock:
            state = self._running.get(identity)
            if state is None:
                logger.warning("limiter_release_unknown_identity", identity=identity)
                return
            state.in_flight -= 1
            if state.in_flight == 0:
                del self._running[identity]
                # Inserting starts the idle TTL and may evict the LRU idle entry.
                self._idle[identity] = state

    @contextlib.asynccontextmanager
    async def slot(self, identity: str) -> AsyncIterator[None]:
        """Hold an admission for the duration of the block.

        Raises ThrottledError immediately when rejected. The slot is
        released on exit whether the block succeeds or raises.
        """
        decision = self.admit(identity)
        if not decision.admitted:
            raise ThrottledError(decision.retry_after_seconds)
        try:
            yield
        finally:
            self.release(identity)

    def sweep(self) -> int:
        """Evict idle identities past the TTL. Returns how many went."""
        with self._lock:
            evicted = len(self._idle.expire())
        if evicted:
            logger.debug("limiter_swept", evicted=evicted)
        return evicted

    def reset(self) -> None:
        with self._lock:
            self._running.clear()
            self._idle.clear()

    def stats(self) -> dict[str, Any]:
        with self._lock:
            self._idle.expire()
            idle = len(self._idle)
            running = list(self._running.values())
        return {
            "tracked_identities": idle + len(running),
            "in_flight": sum(s.in_flight for s in running),
            "min_interval_seconds": self._min_interval,
            "max_in_flight": self._max_in_flight,
            "retry_after_mode": self._retry_after_mode,
            "idle_ttl_seconds": self._idle_ttl,
            "max_clients": self._max_clients,
        }

    def _hint(self, state: ClientLimiterState, now: float) -> int:
        if self._retry_after_mode == "fixed" or state.last_admitted_at is None:
            return self._retry_after
        remaining = self._min_interval - (now - state.last_admitted_at)
        return max(1, math.ceil(remaining))
