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
import concurrent.futures
import logging
import threading
from typing import Any, Coroutine, Optional

log = logging.getLogger(__name__)


class LoopThread:
    """
    An asyncio event loop running on its own daemon thread. The bot, the
    sinks and every drain loop live here; game threads only ever hand work
    over with submit() / call_soon().
    """

    def __init__(self, name: str = "relay-loop") -> None:
        self.name = name
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()

    @property
    def running(self) -> bool:
        return (
            self.loop is not None
            and self._thread is not None
            and self._thread.is_alive()
            and not self.loop.is_closed()
        )

    @property
    def in_loop_thread(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    def start(self) -> asyncio.AbstractEventLoop:
        if self.running:
            return self.loop
        self._ready.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        self._ready.wait()
        return self.loop

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self.loop = loop
        self._ready.set()
        try:
            loop.run_forever()
        finally:
            try:
                pending = asyncio.all_tasks(loop=loop)
                for task in pending:
                    task.cancel()
                loop.run_until_complete(
                    asyncio.gather(*pending, return_exceptions=True)
                )
                loop.run_until_complete(loop.shutdown_asyncgens())
            finally:
                loop.close()

    def submit(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        if not self.running:
            coro.close()
            raise RuntimeError(f"{self.name} is not running")
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def call_soon(self, fn, *args) -> None:
        if not self.running:
            raise RuntimeError(f"{self.name} is not running")
        self.loop.call_soon_threadsafe(fn, *args)

    def run(self, coro: Coroutine[Any, Any, Any], timeout: Optional[float] = None) -> Any:
        """Blocking helper for shutdown paths: run coro on the loop and wait."""
        return self.submit(coro).result(timeout=timeout)

    def stop(self, timeout: float = 5.0) -> None:
        if self.loop is None or self._thread is None:
            return
        if not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self.loop.stop)
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                log.warning("[⚠️] %s did not stop within %.1fs", self.name, timeout)
        self._thread = None


class RelayContext:
    """
    Shared state handed to every relay component at construction: the loop
    that runs deliveries and the cooperative shutdown flag.
    """

    def __init__(self, loop_thread: LoopThread) -> None:
        self.loop_thread = loop_thread
        self._shutting_down = threading.Event()

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down.is_set()

    def begin_shutdown(self) -> None:
        if not self._shutting_down.is_set():
            log.info("[🛑] Relay shutting down; new sends are suppressed")
        self._shutting_down.set()

    def submit(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        return self.loop_thread.submit(coro)
