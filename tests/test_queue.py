"""
Unit tests for the single-flight message queue.
"""

import asyncio
import threading

from conftest import FakeClock, RecordingSink, send_task
from relay.context import LoopThread, RelayContext
from relay.governor import BackoffGovernor
from relay.outcome import Outcome
from relay.queue import MessageQueue


def make_queue(ctx, *, clock=None, pacing=0.0, name="chat"):
    gov = BackoffGovernor(clock=clock or FakeClock(), name=name)
    return MessageQueue(ctx, gov, name=name, pacing=pacing)


def test_twenty_sends_delivered_in_order(ctx, sink):
    q = make_queue(ctx)
    for i in range(20):
        assert q.enqueue(send_task(sink, f"msg-{i}"))

    assert q.wait_idle(5)
    assert sink.texts == [f"msg-{i}" for i in range(20)]
    assert q.delivered == 20
    assert len(q) == 0
    assert not q.processing


def test_drain_loop_terminates_when_empty(ctx, loop_thread, sink):
    q = make_queue(ctx)
    for i in range(5):
        q.enqueue(send_task(sink, str(i)))
    assert q.wait_idle(5)

    async def _count_tasks():
        return len(asyncio.all_tasks())

    # only the probe itself is left on the loop
    assert loop_thread.run(_count_tasks(), timeout=5) == 1


def test_single_flight_under_concurrent_producers(ctx):
    sink = RecordingSink(delay=0.001)
    q = make_queue(ctx)
    producers = 8
    per_producer = 25

    def _produce(pid):
        for n in range(per_producer):
            q.enqueue(send_task(sink, f"{pid}:{n}"))

    threads = [threading.Thread(target=_produce, args=(p,)) for p in range(producers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert q.wait_idle(30)
    assert sink.max_in_flight == 1
    assert len(sink.seen) == producers * per_producer

    # FIFO per producer
    for pid in range(producers):
        mine = [int(t.split(":")[1]) for t in sink.texts if t.startswith(f"{pid}:")]
        assert mine == list(range(per_producer))


def test_rate_limited_send_drops_the_rest_of_the_burst(ctx):
    clock = FakeClock()
    sink = RecordingSink(
        script=[Outcome.delivered(), Outcome.rate_limited(retry_after=3)]
    )
    q = make_queue(ctx, clock=clock)

    for i in range(1, 6):
        q.enqueue(send_task(sink, f"send-{i}"))
    assert q.wait_idle(5)

    assert sink.texts == ["send-1", "send-2"]
    assert q.skipped == 3
    assert q.failed == 1
    assert q.governor.should_backoff()

    clock.advance(3.01)
    assert not q.governor.should_backoff()
    q.enqueue(send_task(sink, "after"))
    assert q.wait_idle(5)
    assert sink.texts[-1] == "after"
    assert q.governor.consecutive_failures == 0


def test_nothing_sent_during_backoff_window(ctx):
    clock = FakeClock()
    sink = RecordingSink(script=[Outcome.recoverable("HTTP 503", 503)])
    q = make_queue(ctx, clock=clock)

    q.enqueue(send_task(sink, "fails"))
    assert q.wait_idle(5)

    for step in range(3):
        clock.advance(0.5)
        q.enqueue(send_task(sink, f"during-{step}"))
        assert q.wait_idle(5)
    assert sink.texts == ["fails"]
    assert q.skipped == 3


def test_task_exception_counts_as_recoverable(ctx, sink):
    clock = FakeClock()
    q = make_queue(ctx, clock=clock)

    async def _boom():
        raise ValueError("bad closure")

    q.enqueue(_boom)
    q.enqueue(send_task(sink, "next"))
    assert q.wait_idle(5)

    assert q.failed == 1
    assert q.governor.consecutive_failures == 1
    # the follow-up landed inside the backoff window and was dropped
    assert q.skipped == 1
    assert sink.seen == []


def test_shutdown_discards_backlog(ctx):
    started = threading.Event()
    ran = []

    async def _slow():
        started.set()
        await asyncio.sleep(0.2)
        ran.append("slow")
        return Outcome.delivered()

    def _quick(i):
        async def _send():
            ran.append(i)
            return Outcome.delivered()

        return _send

    q = make_queue(ctx)
    q.enqueue(_slow)
    for i in range(4):
        q.enqueue(_quick(i))

    assert started.wait(5)
    ctx.begin_shutdown()
    assert q.wait_idle(5)

    assert ran == ["slow"]
    assert q.discarded == 4
    assert len(q) == 0


def test_enqueue_after_shutdown_is_suppressed(ctx, sink):
    q = make_queue(ctx)
    ctx.begin_shutdown()
    assert not q.enqueue(send_task(sink, "late"))
    assert len(q) == 0


def test_enqueue_without_running_loop_drops():
    lt = LoopThread("never-started")
    q = make_queue(RelayContext(lt))
    sink = RecordingSink()

    assert not q.enqueue(send_task(sink, "x"))
    assert q.discarded == 1
    assert not q.processing


def test_pacing_spaces_attempts(ctx):
    sink = RecordingSink()
    q = make_queue(ctx, pacing=0.05)
    stamps = []

    def _stamped(i):
        async def _send():
            stamps.append(asyncio.get_running_loop().time())
            return Outcome.delivered()

        return _send

    for i in range(4):
        q.enqueue(_stamped(i))
    assert q.wait_idle(5)

    gaps = [b - a for a, b in zip(stamps, stamps[1:])]
    assert all(g >= 0.045 for g in gaps)


def test_drain_exits_without_trailing_pacing_delay(ctx, sink):
    q = make_queue(ctx, pacing=1.0)
    q.enqueue(send_task(sink, "only"))
    assert q.wait_idle(0.5)
    assert sink.texts == ["only"]


def test_pacing_holds_across_drain_runs(ctx):
    q = make_queue(ctx, pacing=0.2)
    stamps = []

    async def _send():
        stamps.append(asyncio.get_running_loop().time())
        return Outcome.delivered()

    q.enqueue(_send)
    assert q.wait_idle(5)
    q.enqueue(_send)
    assert q.wait_idle(5)
    assert stamps[1] - stamps[0] >= 0.19
