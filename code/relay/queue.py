# =============================================================================
#  Copycord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

import asyncio
import collections
import logging
import threading
from typing import Awaitable, Callable, Deque, Optional

from relay import logctx
from relay.context import RelayContext
from relay.governor import BackoffGovernor
from relay.outcome import Outcome, OutcomeKind

log = logging.getLogger(__name__)

PendingSend = Callable[[], Awaitable[Outcome]]


class MessageQueue:
    """
    Ordered multi-producer / single-consumer queue of pending sends.

    enqueue() may be called from any thread and never blocks on the network.
    The first enqueue on an idle queue schedules exactly one drain loop on the
    relay loop; the loop pops tasks in FIFO order, runs at most one at a time,
    and exits once the queue is empty. While the governor reports backoff,
    popped tasks are dropped rather than retried.
    """

    def __init__(
        self,
        ctx: RelayContext,
        governor: BackoffGovernor,
        *,
        name: str = "chat",
        pacing: float = 0.1,
    ) -> None:
        self.ctx = ctx
        self.governor = governor
        self.name = name
        self.pacing = max(0.0, float(pacing))

        self._pending: Deque[PendingSend] = collections.deque()
        self._lock = threading.Lock()
        self._processing = False
        self._idle = threading.Event()
        self._idle.set()
        self._last_attempt: Optional[float] = None

        self.delivered = 0
        self.failed = 0
        self.skipped = 0
        self.discarded = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def processing(self) -> bool:
        with self._lock:
            return self._processing

    def enqueue(self, task: PendingSend) -> bool:
        if self.ctx.shutting_down:
            log.debug("[📨] %s queue closed; send suppressed", self.name)
            return False

        with self._lock:
            self._pending.append(task)
            if self._processing:
                return True
            self._processing = True
            self._idle.clear()

        try:
            self.ctx.submit(self._drain())
        except RuntimeError:
            log.warning(
                "[⚠️] %s relay loop is not running; dropping %d pending send(s)",
                self.name,
                self._discard_all(),
            )
            return False
        return True

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no drain loop is active. For shutdown paths and tests."""
        return self._idle.wait(timeout)

    def _discard_all(self) -> int:
        with self._lock:
            dropped = len(self._pending)
            self._pending.clear()
            self._processing = False
            self._idle.set()
        self.discarded += dropped
        return dropped

    def _next(self) -> Optional[PendingSend]:
        """Pop the head task, or mark the loop finished when there is none."""
        with self._lock:
            if self._pending:
                return self._pending.popleft()
            self._processing = False
            self._idle.set()
            return None

    async def _attempt(self, task: PendingSend) -> Outcome:
        try:
            return await task()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.exception("[⛔] %s send task raised; counted as recoverable", self.name)
            return Outcome.recoverable(f"task raised {type(e).__name__}: {e}")

    async def _pace(self) -> None:
        """Hold the next attempt until `pacing` seconds after the previous one."""
        if not self.pacing or self._last_attempt is None:
            return
        wait = self._last_attempt + self.pacing - asyncio.get_running_loop().time()
        if wait > 0:
            await asyncio.sleep(wait)

    async def _drain(self) -> None:
        logctx.stream_name.set(self.name)
        skipped_in_run = 0
        try:
            while True:
                if self.ctx.shutting_down:
                    dropped = self._discard_all()
                    if dropped:
                        log.info(
                            "[🛑] Shutdown: discarded %d queued message(s)", dropped
                        )
                    return

                task = self._next()
                if task is None:
                    break

                if self.governor.should_backoff():
                    self.skipped += 1
                    skipped_in_run += 1
                    log.debug(
                        "[⏳] Backoff active (%.1fs left); dropping send",
                        self.governor.remaining(),
                    )
                    continue

                await self._pace()
                if self.ctx.shutting_down:
                    self.discarded += 1
                    continue
                outcome = await self._attempt(task)
                self._last_attempt = asyncio.get_running_loop().time()
                self.governor.record(outcome)

                if outcome.ok:
                    self.delivered += 1
                else:
                    self.failed += 1
                    if outcome.kind is OutcomeKind.PERMANENT:
                        log.error("[⛔] Send failed permanently: %s", outcome.reason)
                    else:
                        log.warning(
                            "[🌐] Send failed (%s) status=%s retry_after=%s",
                            outcome.reason or outcome.kind.value,
                            outcome.status,
                            outcome.retry_after,
                        )
        except asyncio.CancelledError:
            dropped = self._discard_all()
            log.info("[🛑] Drain cancelled; discarded %d queued message(s)", dropped)
            raise
        except Exception:
            dropped = self._discard_all()
            log.exception("[⛔] Drain loop crashed; discarded %d message(s)", dropped)
        finally:
            if skipped_in_run:
                log.warning(
                    "[⏳] Dropped %d message(s) during backoff", skipped_in_run
                )
