"""Throttling of forced key-set refetches, per identity domain.

A token signed with an unknown ``kid`` makes the verifier refetch the
domain's key set once. Without a limit, a stream of tokens carrying random
``kid`` values turns into one outbound JWKS request each.

RefreshGate gives every domain its own window: the first forced refetch
opens it, and further refetches for that domain are denied until
``min_interval`` seconds have passed. Denials are counted per window and
logged once when they reach the alert threshold. Windows of different
domains never affect each other.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Final

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL: Final[float] = 10
DEFAULT_ALERT_THRESHOLD: Final[int] = 5


@dataclass(slots=True)
class _Window:
    opens_at: float
    denied: int = 0


class RefreshGate:
    """Per-domain rate limiter consulted by KeySetCache.refresh.

    Thread Safety:
        One lock guards the window table; it is never held across I/O.

    Example:
        ```python
        gate = RefreshGate(min_interval=30)
        cache = KeySetCache(JWKSFetcher(), refresh_gate=gate)
        ```

    Attributes:
        _min_interval: Seconds a window stays closed after an allowed refetch.
        _alert_threshold: Denials within one window before a warning is logged.
        _clock: Monotonic time source.
        _windows: domain -> _Window.
    """

    def __init__(
        self,
        min_interval: float = DEFAULT_INTERVAL,
        alert_threshold: int = DEFAULT_ALERT_THRESHOLD,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Raises:
            ValueError: ``min_interval`` is not positive or
                ``alert_threshold`` is below 1.
        """
        if min_interval <= 0:
            raise ValueError(f"min_interval must be positive, got {min_interval}")
        if alert_threshold < 1:
            raise ValueError(f"alert_threshold must be at least 1, got {alert_threshold}")

        self._min_interval = min_interval
        self._alert_threshold = alert_threshold
        self._clock = clock

        self._lock = threading.Lock()
        self._windows: dict[str, _Window] = {}

    def denied(self, domain: str) -> int:
        """Denials for ``domain`` since its last allowed refetch."""
        with self._lock:
            window = self._windows.get(domain)
            return window.denied if window is not None else 0

    def allow(self, domain: str) -> bool:
        """Return True and restart the window if ``domain`` may refetch now."""
        now = self._clock()

        with self._lock:
            window = self._windows.get(domain)
            if window is None or now >= window.opens_at:
                self._windows[domain] = _Window(opens_at=now + self._min_interval)
                return True

            window.denied += 1
            if window.denied == self._alert_threshold:
                logger.warning(
                    "Key set refresh for %s throttled %d times within %.0fs",
                    domain,
                    window.denied,
                    self._min_interval,
                )
            return False
