"""
Shared fixtures for the relay tests: a live relay loop, a manual clock and
a recording sink that fails the test if two deliveries ever overlap.
"""

import asyncio
import threading
from typing import Callable, Optional

import pytest

from common.config import SinkConfig
from relay.context import LoopThread, RelayContext
from relay.outcome import Outcome
from relay.payload import Payload
from relay.sinks import DeliverySink


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSink(DeliverySink):
    """
    Records every payload it is asked to deliver. Outcomes come from
    ``script`` (consumed in order, then Delivered) or from ``decide``.
    """

    kind = "recording"

    def __init__(
        self,
        *,
        name: str = "test",
        enabled: bool = True,
        script: Optional[list] = None,
        decide: Optional[Callable[[Payload], Outcome]] = None,
        delay: float = 0.0,
        connected: bool = True,
        uses_identity: bool = False,
    ):
        super().__init__(SinkConfig(name=name, enabled=enabled, channel_id=1))
        self.script = list(script or [])
        self.decide = decide
        self.delay = delay
        self.connected = connected
        self.uses_identity = uses_identity
        self.seen: list[Payload] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._guard = threading.Lock()

    def is_connected(self) -> bool:
        return self.connected

    @property
    def texts(self) -> list[str]:
        return [p.content for p in self.seen]

    async def _deliver(self, payload: Payload) -> Outcome:
        with self._guard:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            self.seen.append(payload)
            if self.decide is not None:
                return self.decide(payload)
            if self.script:
                return self.script.pop(0)
            return Outcome.delivered()
        finally:
            with self._guard:
                self.in_flight -= 1


def send_task(sink: DeliverySink, text: str):
    async def _send():
        return await sink.attempt(Payload.text(text))

    return _send


@pytest.fixture
def loop_thread():
    lt = LoopThread("test-relay-loop")
    lt.start()
    yield lt
    lt.stop()


@pytest.fixture
def ctx(loop_thread):
    return RelayContext(loop_thread)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return RecordingSink()
