"""Sliding-window rate limiter keyed by caller identity."""
import hashlib
import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Mapping, Optional

from models.results import RateLimitResult
from config import RATE_LIMIT_WINDOW_MS, RATE_LIMIT_PRUNE_INTERVAL_S

logger = logging.getLogger(__name__)


def epoch_ms() -> int:
    return int(time.time() * 1000)


class _Entry:
    """Request timestamps of one identifier, oldest first."""

    __slots__ = ("timestamps", "window_ms", "lock", "evicted")

    def __init__(self, window_ms: int):
        self.timestamps: Deque[int] = deque()
        self.window_ms = window_ms
        self.lock = threading.Lock()
        self.evicted = False

    def drop_expired(self, now: int) -> None:
        cutoff = now - self.window_ms
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()


class RateLimiter:
    """
    Bounds requests per identifier over a trailing time window.

    A request is counted only when it is allowed, and `remaining` is the
    number of further requests allowed after this one. Checks for the same
    identifier are serialized on that identifier's lock; different
    identifiers only share the short store lock used to create or evict
    entries.
    """

    def __init__(self, clock: Callable[[], int] = epoch_ms):
        """
        Initialize the rate limiter.

        Args:
            clock: Returns the current time in epoch milliseconds
        """
        self.clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._store_lock = threading.Lock()
        self._pruner: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def __len__(self) -> int:
        with self._store_lock:
            return len(self._entries)

    def _entry_for(self, identifier: str, window_ms: int) -> _Entry:
        with self._store_lock:
            entry = self._entries.get(identifier)
            if entry is None:
                entry = _Entry(window_ms)
                self._entries[identifier] = entry
            return entry

    def check(
        self,
        identifier: str,
        max_requests: int,
        window_ms: int = RATE_LIMIT_WINDOW_MS
    ) -> RateLimitResult:
        """
        Check and record a request for an identifier.

        Args:
            identifier: Caller identity (see client_identifier)
            max_requests: Requests allowed within the window
            window_ms: Window length in milliseconds

        Returns:
            RateLimitResult with allowed flag, remaining requests and the
            epoch-ms time the oldest counted request leaves the window

        Raises:
            ValueError: If window_ms is not positive or max_requests is negative
        """
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        if max_requests < 0:
            raise ValueError("max_requests cannot be negative")

        while True:
            entry = self._entry_for(identifier, window_ms)
            with entry.lock:
                # Lost a race with prune(); take the fresh entry instead
                if entry.evicted:
                    continue

                now = self.clock()
                entry.window_ms = window_ms
                entry.drop_expired(now)

                count = len(entry.timestamps)
                allowed = count < max_requests
                if allowed:
                    entry.timestamps.append(now)
                    remaining = max_requests - count - 1
                else:
                    remaining = 0

                reset_at = entry.timestamps[0] + window_ms if entry.timestamps else now + window_ms

            if not allowed:
                logger.info(f"Rate limit exceeded for {identifier}")
            return RateLimitResult(allowed=allowed, remaining=remaining, reset_at=reset_at)

    def prune(self) -> int:
        """
        Drop expired timestamps and evict identifiers left with none.

        Each entry is pruned with the window of its latest check, so
        timestamps still inside that window are never removed.

        Returns:
            Number of evicted identifiers
        """
        now = self.clock()
        with self._store_lock:
            items = list(self._entries.items())

        evicted = 0
        for identifier, entry in items:
            with entry.lock:
                entry.drop_expired(now)
                if entry.timestamps:
                    continue
                with self._store_lock:
                    if self._entries.get(identifier) is entry:
                        del self._entries[identifier]
                        entry.evicted = True
                        evicted += 1

        if evicted:
            logger.debug(f"Pruned {evicted} idle rate-limit entries")
        return evicted

    def start_pruning(self, interval_s: float = RATE_LIMIT_PRUNE_INTERVAL_S) -> None:
        """Start the background pruning thread; a no-op if already running."""
        if self._pruner is not None and self._pruner.is_alive():
            return
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")

        self._stop_event.clear()
        self._pruner = threading.Thread(
            target=self._prune_loop,
            args=(interval_s,),
            name="rate-limit-pruner",
            daemon=True
        )
        self._pruner.start()
        logger.info(f"Started rate-limit pruning every {interval_s:.0f}s")

    def stop_pruning(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the background pruning thread and wait for it to exit."""
        self._stop_event.set()
        if self._pruner is not None:
            self._pruner.join(timeout)
            self._pruner = None
            logger.info("Stopped rate-limit pruning")

    def _prune_loop(self, interval_s: float) -> None:
        while not self._stop_event.wait(interval_s):
            try:
                self.prune()
            except Exception:
                logger.exception("Rate-limit pruning failed")


def client_identifier(
    headers: Mapping[str, str],
    client_host: Optional[str] = None,
    include_user_agent: bool = False,
    fingerprint_length: int = 8
) -> str:
    """
    Derive a rate-limit identifier from request metadata.

    The IP comes from proxy headers when present (first X-Forwarded-For hop,
    then X-Real-IP, then CF-Connecting-IP), else the socket peer. With
    include_user_agent, a short hash of the User-Agent is appended to tell
    apart clients sharing one NAT or proxy address.
    """
    lowered = {key.lower(): value for key, value in headers.items()}

    forwarded = lowered.get("x-forwarded-for", "")
    ip = (
        forwarded.split(",")[0].strip()
        or lowered.get("x-real-ip", "").strip()
        or lowered.get("cf-connecting-ip", "").strip()
        or client_host
        or "unknown"
    )

    if not include_user_agent:
        return ip

    user_agent = lowered.get("user-agent", "")
    fingerprint = hashlib.sha256(user_agent.encode("utf-8")).hexdigest()[:fingerprint_length]
    return f"{ip}:{fingerprint}"
