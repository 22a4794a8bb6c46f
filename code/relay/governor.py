# =============================================================================
#  Copycord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from relay.outcome import Outcome, OutcomeKind

log = logging.getLogger(__name__)

DEFAULT_BACKOFF_CAP = 300.0


class BackoffGovernor:
    """
    Tracks a failure streak for one delivery stream and answers "may we send
    right now?".

    The backoff window after k consecutive failures is min(2**k, cap) seconds
    from the last failure, raised to the server's Retry-After when the last
    failure was a 429. Any success clears the streak.
    """

    def __init__(
        self,
        *,
        cap: float = DEFAULT_BACKOFF_CAP,
        clock: Callable[[], float] = time.monotonic,
        name: str = "relay",
    ) -> None:
        self._cap = float(cap)
        self._clock = clock
        self._name = name
        self._lock = threading.Lock()
        self._failures = 0
        self._last_failure = 0.0
        self._retry_floor = 0.0

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._failures

    @property
    def last_failure(self) -> float:
        with self._lock:
            return self._last_failure

    def _window_locked(self) -> float:
        if self._failures <= 0:
            return 0.0
        exp = min(2.0 ** min(self._failures, 64), self._cap)
        return max(exp, self._retry_floor)

    def backoff_window(self) -> float:
        with self._lock:
            return self._window_locked()

    def remaining(self) -> float:
        """Seconds left in the current backoff window (0 when sending is allowed)."""
        with self._lock:
            if self._failures <= 0:
                return 0.0
            elapsed = self._clock() - self._last_failure
            return max(0.0, self._window_locked() - elapsed)

    def should_backoff(self) -> bool:
        return self.remaining() > 0.0

    def record_success(self) -> None:
        with self._lock:
            recovered = self._failures
            self._failures = 0
            self._retry_floor = 0.0
        if recovered:
            log.info(
                "[✅] %s delivery recovered after %d failure(s)", self._name, recovered
            )

    def record_failure(self, retry_after: Optional[float] = None) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure = self._clock()
            self._retry_floor = max(0.0, float(retry_after or 0.0))
            failures = self._failures
            window = self._window_locked()
        log.warning(
            "[⏳] %s backoff active | failures=%d window=%.1fs",
            self._name,
            failures,
            window,
        )

    def record(self, outcome: Outcome) -> None:
        """
        Fold one attempt outcome into the streak. Permanent errors are the
        sink's business (it disables itself) and leave the streak alone.
        """
        if outcome.kind is OutcomeKind.DELIVERED:
            self.record_success()
        elif outcome.kind is OutcomeKind.RATE_LIMITED:
            self.record_failure(outcome.retry_after)
        elif outcome.kind is OutcomeKind.RECOVERABLE:
            self.record_failure()
