"""Sliding-window request throttle that fails closed when its store misbehaves."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Mapping, Optional, Protocol

from audit.types import RateLimitRecord
from config.settings import Settings

logger = logging.getLogger(__name__)


class RateLimitBackend(Protocol):  # Minimal store protocol
    def get(self, identifier: str) -> Optional[RateLimitRecord]: ...

    def put(self, record: RateLimitRecord) -> None: ...


class RateLimiter:
    """Per-identifier sliding window with a small in-process circuit breaker.

    Session identifiers get ``RATE_LIMIT_SESSION_MAX`` requests per window and
    network identifiers ``RATE_LIMIT_NETWORK_MAX``. Any failure to read or
    write the backing store denies the request.
    """

    def __init__(
        self,
        store: Optional[RateLimitBackend],
        cfg: Settings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._cfg = cfg
        self._clock = clock
        self._guard = threading.Lock()
        self._failures = 0
        self._last_failure_ms = 0
        self._open = False

    @property
    def window_ms(self) -> int:
        return self._cfg.RATE_LIMIT_WINDOW_S * 1000

    def _limit(self, is_network: bool) -> int:
        return self._cfg.RATE_LIMIT_NETWORK_MAX if is_network else self._cfg.RATE_LIMIT_SESSION_MAX

    def _circuit_allows(self, identifier: str, now_ms: int) -> bool:
        with self._guard:
            if not self._open:
                return True
            elapsed = now_ms - self._last_failure_ms
            if elapsed > self._cfg.CIRCUIT_BREAKER_TIMEOUT_S * 1000:
                self._open = False
                self._failures = 0
                logger.info("Rate limit circuit breaker reset")
                return True
        logger.warning(
            "Rate limit circuit open, blocking identifier=%s since_last_failure_ms=%d",
            identifier,
            elapsed,
        )
        return False

    def _record_failure(self, identifier: str, exc: BaseException) -> None:
        with self._guard:
            self._failures += 1
            self._last_failure_ms = int(self._clock() * 1000)
            if self._failures >= self._cfg.CIRCUIT_BREAKER_THRESHOLD and not self._open:
                self._open = True
                logger.error(
                    "Rate limit circuit opened after %d failures (threshold=%d)",
                    self._failures,
                    self._cfg.CIRCUIT_BREAKER_THRESHOLD,
                )
            failures = self._failures
        logger.error(
            "Rate limit check failed, blocking identifier=%s failures=%d: %s",
            identifier,
            failures,
            exc,
        )

    def check_and_record(self, identifier: str, is_network: bool = False) -> bool:
        """Return ``True`` and record the request if ``identifier`` is under its limit."""

        if not self._cfg.RATE_LIMIT_ENABLED:
            return True
        if self._store is None:
            logger.error("Rate limit store not configured, blocking identifier=%s", identifier)
            return False

        now_ms = int(self._clock() * 1000)
        if not self._circuit_allows(identifier, now_ms):
            return False

        try:
            record = self._store.get(identifier)
            timestamps = list(record.timestamps) if record else []
            recent = [ts for ts in timestamps if now_ms - ts < self.window_ms]
            if len(recent) >= self._limit(is_network):
                logger.info(
                    "Rate limit exceeded identifier=%s network=%s count=%d",
                    identifier,
                    is_network,
                    len(recent),
                )
                return False
            recent.append(now_ms)
            self._store.put(
                RateLimitRecord(
                    identifier=identifier,
                    timestamps=recent,
                    expires_at=(now_ms + self.window_ms) // 1000,
                )
            )
        except Exception as exc:  # noqa: BLE001
            self._record_failure(identifier, exc)
            return False

        with self._guard:
            self._failures = 0
        return True

    @property
    def circuit_open(self) -> bool:
        return self._open


def client_ip(headers: Mapping[str, str]) -> str:
    """Best-effort client address from proxy headers."""

    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return headers.get("cf-connecting-ip") or headers.get("x-real-ip") or "unknown"


__all__ = ["RateLimitBackend", "RateLimiter", "client_ip"]
