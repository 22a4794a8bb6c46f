"""
Unit tests for console capture: filtering, formatting and batching.
"""

import logging
import random
import re
from datetime import datetime

import pytest

from bridge.console import (
    FENCE_CLOSE,
    FENCE_OPEN,
    ConsoleBatcher,
    ConsoleFilter,
    ConsoleLogHandler,
    clean_message,
    format_line,
)
from conftest import FakeClock

MARKER_RE = re.compile(r"^\.\.\. and (\d+) more messages$")


class FakeFacade:
    def __init__(self):
        self.sent = []

    def send_text(self, author, body, **extra):
        self.sent.append(body)
        return True


def split_flush(body):
    """Lines and overflow count of one flushed message."""
    assert body.startswith(FENCE_OPEN)
    assert body.endswith(FENCE_CLOSE)
    inner = body[len(FENCE_OPEN): -len(FENCE_CLOSE)]
    lines = inner.split("\n")[:-1]
    overflow = 0
    if lines and MARKER_RE.match(lines[-1]):
        overflow = int(MARKER_RE.match(lines[-1]).group(1))
        lines = lines[:-1]
    return lines, overflow


@pytest.mark.parametrize(
    "logger_name,message",
    [
        ("Server", "[INFO] Done (3.2s)! For help, type help"),
        ("Server", "UUID of player Steve is 1234"),
        ("Server", "Steve joined the game"),
        ("Server", "Steve[/127.0.0.1:51234] logged in"),
        ("Server", "Exception in thread \"main\""),
        ("Server", "    at net.minecraft.Foo.bar(Foo.java:1)"),
        ("spark", "[spark] profiler started"),
        ("Server", "Loaded PlaceholderAPI expansion"),
        ("relay", "Sent 3 messages"),
        ("relay", "Webhook ready"),
    ],
)
def test_filter_denies_noise(logger_name, message):
    assert not ConsoleFilter().accepts(logger_name, message)


@pytest.mark.parametrize(
    "logger_name,message",
    [
        ("Server", "Can't keep up! Is the server overloaded? Running 2004ms behind"),
        ("WorldEdit", "Loading WorldEdit config"),
        ("relay", "Relay is up"),
    ],
)
def test_filter_accepts_signal(logger_name, message):
    assert ConsoleFilter().accepts(logger_name, message)


def test_clean_message_strips_ansi_and_tags():
    raw = "\x1b[32m[INFO]\x1b[0m  [Server]   hello   world : : done []"
    assert clean_message(raw) == "hello world : done"


def test_format_line():
    line = format_line("WARNING", "Server", "disk low", datetime(2024, 1, 1, 12, 0, 1))
    assert line == "[12:00:01] \x1b[33m[WARN]\x1b[0m [\x1b[35mServer\x1b[0m]: disk low"


def test_format_line_unknown_level_is_white():
    line = format_line("TRACE", "X", "m", datetime(2024, 1, 1))
    assert "\x1b[37m[TRACE]" in line


def test_flush_caps_lines_and_counts_overflow():
    facade = FakeFacade()
    batcher = ConsoleBatcher(facade, clock=FakeClock())
    for i in range(20):
        batcher.append(f"line {i}")

    assert batcher.flush()
    lines, overflow = split_flush(facade.sent[0])
    assert lines == [f"line {i}" for i in range(15)]
    assert overflow == 5
    assert len(batcher) == 0


def test_every_flush_fits_and_no_line_is_lost():
    rng = random.Random(1234)
    facade = FakeFacade()
    batcher = ConsoleBatcher(facade, ceiling=600, clock=FakeClock())

    total = 400
    for i in range(total):
        batcher.append(f"{i}:" + "x" * rng.randint(0, 900))
        if rng.random() < 0.05:
            batcher.flush()
    batcher.flush()

    shown = 0
    counted = 0
    for body in facade.sent:
        assert len(body) <= 600
        lines, overflow = split_flush(body)
        shown += len(lines)
        counted += overflow
    assert shown + counted == total


def test_line_text_survives_verbatim_when_short():
    facade = FakeFacade()
    batcher = ConsoleBatcher(facade, clock=FakeClock())
    batcher.append("[12:00:00] plain line")
    batcher.flush()
    assert split_flush(facade.sent[0])[0] == ["[12:00:00] plain line"]


def test_append_flushes_before_crossing_ceiling():
    facade = FakeFacade()
    batcher = ConsoleBatcher(facade, ceiling=300, clock=FakeClock())
    for i in range(5):
        batcher.append(str(i) * 100)

    assert facade.sent
    for body in facade.sent:
        assert len(body) <= 300
    assert len(batcher) >= 1


def test_lines_cannot_break_out_of_the_fence():
    facade = FakeFacade()
    batcher = ConsoleBatcher(facade, clock=FakeClock())
    batcher.append("evil ``` @everyone")
    batcher.flush()
    body = facade.sent[0]
    assert body.count("```") == 2
    assert "@everyone" not in body


def test_tick_respects_cooldown():
    clock = FakeClock()
    facade = FakeFacade()
    batcher = ConsoleBatcher(facade, cooldown=2.0, clock=clock)

    assert not batcher.tick()
    batcher.append("a")
    assert batcher.tick()

    batcher.append("b")
    clock.advance(1.0)
    assert not batcher.tick()
    clock.advance(1.5)
    assert batcher.tick()
    assert len(facade.sent) == 2


def test_final_flush_caps_at_ten_lines():
    facade = FakeFacade()
    batcher = ConsoleBatcher(facade, clock=FakeClock())
    for i in range(25):
        batcher.append(f"line {i}")

    text = batcher.final_flush_text()
    assert text.startswith(FENCE_OPEN + "[Console] Shutdown - Final 25 log messages:\n")
    assert "line 9\n" in text
    assert "line 10\n" not in text
    assert "... and 15 more messages\n" in text
    assert text.endswith(FENCE_CLOSE)
    assert len(batcher) == 0
    assert batcher.final_flush_text() is None


def test_handler_formats_and_skips_own_records():
    facade = FakeFacade()
    batcher = ConsoleBatcher(facade, clock=FakeClock())
    handler = ConsoleLogHandler(batcher)

    server = logging.LogRecord(
        "net.minecraft.server.Watchdog", logging.WARNING, __file__, 1,
        "Can't keep up! %s", ("2004ms behind",), None,
    )
    own = logging.LogRecord(
        "relay.queue", logging.WARNING, __file__, 1, "Send failed", (), None
    )
    handler.handle(server)
    handler.handle(own)

    assert len(batcher) == 1
    batcher.flush()
    line = split_flush(facade.sent[0])[0][0]
    assert "[WARN]" in line
    assert "Watchdog" in line
    assert line.endswith("Can't keep up! 2004ms behind")
