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
import logging
import re
import threading
import time
from datetime import datetime
from typing import Callable, Optional

from common.common_helpers import clip, escape_code_fence, sanitize_mentions
from relay.context import RelayContext
from relay.facade import RelayFacade

log = logging.getLogger(__name__)

FENCE_OPEN = "```ansi\n"
FENCE_CLOSE = "```"
OVERFLOW_MARKER = "... and {n} more messages\n"
FINAL_HEADER = "[Console] Shutdown - Final {n} log messages:\n"
# room for the overflow marker with a six-digit count
MARKER_RESERVE = len(OVERFLOW_MARKER.format(n=999999))

ANSI_RESET = "\x1b[0m"
ANSI_MAGENTA = "\x1b[35m"
LEVEL_COLORS = {
    "INFO": "\x1b[32m",
    "WARN": "\x1b[33m",
    "ERROR": "\x1b[31m",
    "FATAL": "\x1b[31m",
    "CRITICAL": "\x1b[31m",
    "DEBUG": "\x1b[36m",
}
DEFAULT_LEVEL_COLOR = "\x1b[37m"

# Loggers that belong to the bridge itself; their records are never forwarded.
OWN_LOGGERS = ("relay", "bridge", "common", "discord", "aiohttp", "asyncio")


class ConsoleFilter:
    """Deny list for console lines that are noise in a Discord channel."""

    CONSOLE_LOGGING = re.compile(r"Console logging")
    WEBHOOK = re.compile(r"webhook", re.I)
    STACK_TRACE = re.compile(r"^\s+at\s+")
    EXCEPTION = re.compile(r"Exception in thread")
    DISCONNECT = re.compile(r"handleDisconnect")

    INFO = re.compile(r"\[INFO\]|\[32m\[INFO\]")
    ROUTINE = re.compile(
        r"(Done preparing level|Running delayed init tasks|Done \(|Shutdown initiated"
        r"|Shutdown completed|Starting background profiler|expansion registration"
        r"|Preparing spawn area|Preparing start region|UUID of player|joined the game"
        r"|left the game|Player.+?has (disconnected|logged in)|initialized|protocol"
        r"|Connected)"
    )
    SPARK = re.compile(r"\[spark\]|spark")
    SERVER_ROUTINE = re.compile(
        r"\[(ServerLoginPacketListenerImpl|MinecraftServer|DedicatedServer|PlayerList"
        r"|Server|Player|User Authenticator)\]"
    )
    COMMON_NOISE = re.compile(
        r"(async-profiler|Votifier|PlaceholderAPI|Preparing start region"
        r"|Loading properties|Starting minecraft server|Default game type|Ready"
        r"|AdvancedServerListPlus|discord|Reloading ResourceManager)"
    )
    IP_ADDRESS = re.compile(r"([0-9]{1,3}\.){3}[0-9]{1,3}(:[0-9]{1,5})?")

    def __init__(self, own_name: str = "relay") -> None:
        self.own_name = own_name

    def accepts(self, logger_name: str, message: str) -> bool:
        message = message or ""
        if logger_name == self.own_name and (
            self.CONSOLE_LOGGING.search(message)
            or "Sent" in message
            or self.WEBHOOK.search(message)
        ):
            return False

        if (
            self.DISCONNECT.search(message)
            or self.EXCEPTION.search(message)
            or self.STACK_TRACE.match(message)
        ):
            return False

        for pattern in (
            self.INFO,
            self.ROUTINE,
            self.SPARK,
            self.SERVER_ROUTINE,
            self.COMMON_NOISE,
            self.IP_ADDRESS,
        ):
            if pattern.search(message):
                return False
        return True


_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")
_TAG_RE = re.compile(r"\[(?:INFO|WARN|ERROR|DEBUG|MinecraftServer|Server)\]")
_WS_RE = re.compile(r"\s+")
_EMPTY_BRACKETS_RE = re.compile(r"\[\s*\]")
_DOUBLE_COLON_RE = re.compile(r":\s+:")


def clean_message(message: str) -> str:
    cleaned = _ANSI_RE.sub("", message or "")
    cleaned = _TAG_RE.sub("", cleaned)
    cleaned = _WS_RE.sub(" ", cleaned)
    cleaned = _EMPTY_BRACKETS_RE.sub("", cleaned)
    cleaned = _DOUBLE_COLON_RE.sub(":", cleaned)
    return cleaned.strip()


def short_logger_name(name: str) -> str:
    return (name or "").rsplit(".", 1)[-1]


def format_line(
    level: str, logger_name: str, message: str, when: Optional[datetime] = None
) -> str:
    """``[12:00:01] <green>[INFO]<reset> [<magenta>Server<reset>]: text``"""
    level = "WARN" if level == "WARNING" else level
    stamp = (when or datetime.now()).strftime("%H:%M:%S")
    color = LEVEL_COLORS.get(level, DEFAULT_LEVEL_COLOR)
    return (
        f"[{stamp}] {color}[{level}]{ANSI_RESET} "
        f"[{ANSI_MAGENTA}{logger_name}{ANSI_RESET}]: {clean_message(message)}"
    )


class ConsoleBatcher:
    """
    Coalesces console lines into fenced ``ansi`` blocks. append() may be
    called from any thread. A flushed message never exceeds the ceiling, and
    every line either appears in a flush or is counted by that flush's
    "... and N more messages" marker.
    """

    def __init__(
        self,
        facade: RelayFacade,
        *,
        ceiling: int = 1900,
        max_lines: int = 15,
        interval: float = 2.5,
        cooldown: float = 2.0,
        final_cap: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.facade = facade
        self.ceiling = int(ceiling)
        self.max_lines = max(1, int(max_lines))
        self.interval = float(interval)
        self.cooldown = float(cooldown)
        self.final_cap = max(1, int(final_cap))
        self._clock = clock

        self._lock = threading.Lock()
        self._lines: list[str] = []
        self._size = 0
        self._last_flush = float("-inf")

        self.flushes = 0
        self.lines_sent = 0
        self.lines_overflowed = 0

    @property
    def line_limit(self) -> int:
        overhead = len(FENCE_OPEN) + len(FENCE_CLOSE) + MARKER_RESERVE + 1
        return max(16, self.ceiling - overhead)

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)

    def _prepare(self, line: str) -> str:
        return clip(escape_code_fence(sanitize_mentions(line)), self.line_limit)

    def _fits(self, size: int, extra: int) -> bool:
        base = len(FENCE_OPEN) + len(FENCE_CLOSE) + MARKER_RESERVE
        return base + size + extra <= self.ceiling

    def append(self, line: str) -> None:
        line = self._prepare(line)
        if not line:
            return
        with self._lock:
            if self._lines and not self._fits(self._size, len(line) + 1):
                self._flush_locked()
            self._lines.append(line)
            self._size += len(line) + 1

    def _render_locked(self) -> str:
        taken: list[str] = []
        size = 0
        for line in self._lines:
            if len(taken) >= self.max_lines or not self._fits(size, len(line) + 1):
                break
            taken.append(line)
            size += len(line) + 1

        overflow = len(self._lines) - len(taken)
        body = FENCE_OPEN + "".join(l + "\n" for l in taken)
        if overflow:
            body += OVERFLOW_MARKER.format(n=overflow)
        body += FENCE_CLOSE

        self.lines_sent += len(taken)
        self.lines_overflowed += overflow
        return body

    def _flush_locked(self) -> bool:
        if not self._lines:
            return False
        body = self._render_locked()
        self._lines.clear()
        self._size = 0
        self._last_flush = self._clock()
        self.flushes += 1
        return self.facade.send_text(None, body)

    def flush(self) -> bool:
        with self._lock:
            return self._flush_locked()

    def tick(self) -> bool:
        """Timer entry point: flush when there is something and the cooldown passed."""
        with self._lock:
            if not self._lines:
                return False
            if self._clock() - self._last_flush < self.cooldown:
                return False
            return self._flush_locked()

    async def run(self, ctx: RelayContext) -> None:
        log.debug("[🖥️] Console batcher started (every %.1fs)", self.interval)
        try:
            while not ctx.shutting_down:
                await asyncio.sleep(self.interval)
                if ctx.shutting_down:
                    break
                try:
                    self.tick()
                except Exception:
                    log.exception("[⛔] Console batch flush failed")
        except asyncio.CancelledError:
            log.debug("[🖥️] Console batcher cancelled")
            raise

    def final_flush_text(self) -> Optional[str]:
        """
        Drain the buffer for shutdown: the oldest lines up to the final cap,
        the rest summarised by the overflow marker. Returns None when empty.
        """
        with self._lock:
            if not self._lines:
                return None
            remaining = len(self._lines)
            body = FENCE_OPEN + FINAL_HEADER.format(n=remaining)
            taken = 0
            for line in self._lines[: self.final_cap]:
                if len(body) + len(line) + 1 + MARKER_RESERVE + len(FENCE_CLOSE) > self.ceiling:
                    break
                body += line + "\n"
                taken += 1
            dropped = remaining - taken
            if dropped:
                body += OVERFLOW_MARKER.format(n=dropped)
                log.info("[🛑] Console shutdown: %d line(s) not forwarded", dropped)
            body += FENCE_CLOSE

            self.lines_sent += taken
            self.lines_overflowed += dropped
            self._lines.clear()
            self._size = 0
            return body


class ConsoleLogHandler(logging.Handler):
    """Feeds server log records through the filter into the batcher."""

    def __init__(
        self,
        batcher: ConsoleBatcher,
        console_filter: Optional[ConsoleFilter] = None,
        level: int = logging.INFO,
    ) -> None:
        super().__init__(level)
        self.batcher = batcher
        self.console_filter = console_filter or ConsoleFilter()

    @staticmethod
    def is_own(name: str) -> bool:
        return any(name == n or name.startswith(n + ".") for n in OWN_LOGGERS)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            if self.is_own(record.name):
                return
            message = record.getMessage()
            logger_name = short_logger_name(record.name)
            if not self.console_filter.accepts(logger_name, message):
                return
            self.batcher.append(
                format_line(
                    record.levelname,
                    logger_name,
                    message,
                    datetime.fromtimestamp(record.created),
                )
            )
        except Exception:
            self.handleError(record)
