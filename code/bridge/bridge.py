# =============================================================================
#  Copycord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================


import asyncio
import concurrent.futures
import contextlib
import logging
import threading
from pathlib import Path
from typing import Callable, Optional

import discord
from discord.errors import Forbidden, LoginFailure

from bridge.commands import GameCommandHandler, RelayCommands
from bridge.console import ConsoleBatcher, ConsoleLogHandler
from bridge.embeds import EmbedFactory
from bridge.events import EventTranslator, GameEvent, GameServer, ServerStarted, ServerStopping
from bridge.status import StatusManager
from common.common_helpers import apply_placeholders, translate_color_codes
from common.config import CURRENT_VERSION, Config, ConfigurationError
from relay.context import LoopThread, RelayContext
from relay.facade import RelayFacade
from relay.governor import BackoffGovernor
from relay.logctx import StreamPrefixFilter
from relay.payload import Payload
from relay.queue import MessageQueue
from relay.sinks import ChannelSink, DeliverySink, WebhookSink

logger = logging.getLogger(__name__)

WATCHDOG_INTERVAL = 300.0
STOP_NOTICE_TIMEOUT = 5.0
CLOSE_TIMEOUT = 10.0
DEFAULT_DISCORD_TO_GAME = "&b[Discord] &f{username}: &7{message}"

LOG_FORMAT = "%(asctime)s | %(levelname)-5s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level_name: str = "INFO", debug: bool = False) -> logging.Handler:
    """
    Root stream handler in the usual "time | level | message" layout. Safe to
    call again on reload; the existing handler is reused.
    """
    level = getattr(logging, (level_name or "INFO").upper(), logging.INFO)
    root = logging.getLogger()

    handler = next(
        (h for h in root.handlers if getattr(h, "_relay_stream", False)), None
    )
    if handler is None:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
        handler.addFilter(StreamPrefixFilter())
        handler._relay_stream = True
        root.addHandler(handler)

    root.setLevel(min(root.level or level, level))
    handler.setLevel(logging.DEBUG if debug else level)

    for lib in (
        "discord",
        "discord.client",
        "discord.gateway",
        "discord.state",
        "discord.http",
    ):
        logging.getLogger(lib).setLevel(logging.WARNING)
    logging.getLogger("discord.client").setLevel(logging.ERROR)

    for name in ("relay", "bridge", "common"):
        logging.getLogger(name).setLevel(logging.DEBUG if debug else level)
    return handler


class Bridge:
    """
    Owns one bot session and every relay stream built on it. The game engine
    constructs it once, calls start() when the plugin enables, forwards
    engine events to handle_event() and calls stop() on disable.
    """

    def __init__(
        self,
        game: GameServer,
        config: Optional[Config] = None,
        *,
        env_file: Optional[Path] = None,
        config_factory: Optional[Callable[[], Config]] = None,
    ):
        self.game = game
        self._config_factory = config_factory or (lambda: Config(env_file=env_file))
        self.config = config or self._config_factory()

        self.loop_thread: Optional[LoopThread] = None
        self.ctx: Optional[RelayContext] = None
        self.bot: Optional[discord.Bot] = None

        self.channel_sink: Optional[ChannelSink] = None
        self.webhook_sink: Optional[WebhookSink] = None
        self.console_sink: Optional[ChannelSink] = None

        self.chat_queue: Optional[MessageQueue] = None
        self.console_queue: Optional[MessageQueue] = None
        self.chat: Optional[RelayFacade] = None
        self.events_facade: Optional[RelayFacade] = None
        self.console: Optional[RelayFacade] = None

        self.embeds = EmbedFactory(self.config)
        self.status: Optional[StatusManager] = None
        self.events: Optional[EventTranslator] = None
        self.console_batcher: Optional[ConsoleBatcher] = None
        self.console_handler: Optional[ConsoleLogHandler] = None
        self.commands = GameCommandHandler(self)

        self.disabled_reason: Optional[str] = None
        self._running = False
        self._pending_start_notice = False
        self._background: list[concurrent.futures.Future] = []
        self._bot_future: Optional[concurrent.futures.Future] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def sinks(self) -> list[DeliverySink]:
        return [
            s
            for s in (self.channel_sink, self.webhook_sink, self.console_sink)
            if s is not None
        ]

    @property
    def webhook_enabled(self) -> bool:
        return self.webhook_sink is not None and self.webhook_sink.enabled

    # ------------------------------------------------------------------ start

    def start(self) -> bool:
        if self._running:
            return True

        cfg = self.config
        setup_logging(cfg.LOG_LEVEL, cfg.DEBUG)
        try:
            cfg.validate()
        except ConfigurationError as e:
            self.disabled_reason = str(e)
            logger.error("[⛔] Relay disabled: %s", e)
            return False
        self.disabled_reason = None

        logger.info("[✨] Starting relay %s", CURRENT_VERSION)
        self.loop_thread = LoopThread("relay-loop")
        self.loop_thread.start()
        self.ctx = RelayContext(self.loop_thread)
        self.bot = self.loop_thread.run(self._make_bot(), timeout=CLOSE_TIMEOUT)

        self.embeds = EmbedFactory(cfg)
        self.status = StatusManager(self.bot, cfg)
        self._build_streams()
        self.events = EventTranslator(
            cfg,
            self.embeds,
            self.chat,
            self.events_facade,
            on_player_count=self.refresh_status,
        )
        self._install_console()

        self._bot_future = self.ctx.submit(self._run_bot())
        self._background.append(self.ctx.submit(self._watchdog()))
        self._running = True
        return True

    async def _make_bot(self) -> discord.Bot:
        intents = discord.Intents.default()
        intents.message_content = True
        bot = discord.Bot(intents=intents)
        bot.event(self.on_ready)
        bot.event(self.on_message)

        if self.config.COMMANDS_ENABLED:
            bot.add_cog(RelayCommands(bot, self))
            orig_on_connect = bot.on_connect

            async def _command_sync():
                try:
                    await orig_on_connect()
                except Forbidden as e:
                    logger.warning(
                        "[⚠️] Can't sync slash commands, make sure the bot is in the server: %s",
                        e,
                    )

            bot.on_connect = _command_sync
        else:
            logger.info("[🎮] Discord commands are disabled in config")
        return bot

    def _build_streams(self) -> None:
        cfg = self.config

        self.channel_sink = ChannelSink(cfg.chat_sink_config(), self.bot)
        webhook_cfg = cfg.webhook_sink_config()
        self.webhook_sink = WebhookSink(webhook_cfg) if webhook_cfg.enabled else None

        self.chat_queue = MessageQueue(
            self.ctx,
            BackoffGovernor(cap=cfg.BACKOFF_CAP_SECONDS, name="chat"),
            name="chat",
            pacing=cfg.SEND_PACING_SECONDS,
        )
        self.chat = RelayFacade(
            self.ctx,
            self.chat_queue,
            self.webhook_sink or self.channel_sink,
            fallback=self.channel_sink if self.webhook_sink is not None else None,
            template=cfg.FORMAT_GAME_TO_DISCORD,
            debug=cfg.DEBUG,
        )
        # events share the chat queue: one ordered stream
        self.events_facade = (
            RelayFacade(self.ctx, self.chat_queue, self.channel_sink, debug=cfg.DEBUG)
            if self.webhook_sink is not None
            else self.chat
        )

        if cfg.CONSOLE_ENABLED:
            self.console_sink = ChannelSink(cfg.console_sink_config(), self.bot)
            self.console_queue = MessageQueue(
                self.ctx,
                BackoffGovernor(cap=cfg.BACKOFF_CAP_SECONDS, name="console"),
                name="console",
                pacing=cfg.SEND_PACING_SECONDS,
            )
            self.console = RelayFacade(
                self.ctx,
                self.console_queue,
                self.console_sink,
                template="{message}",
                debug=cfg.DEBUG,
            )
        else:
            self.console_sink = None
            self.console_queue = None
            self.console = None

    def _install_console(self) -> None:
        if self.console is None:
            return
        self.console_batcher = ConsoleBatcher(
            self.console, ceiling=self.config.MAX_MESSAGE_LENGTH
        )
        self.console_handler = ConsoleLogHandler(self.console_batcher)
        logging.getLogger().addHandler(self.console_handler)
        self._background.append(self.ctx.submit(self.console_batcher.run(self.ctx)))
        logger.info("[🖥️] Console logging enabled")

    # ---------------------------------------------------------------- discord

    async def _run_bot(self) -> None:
        try:
            await self.bot.start(self.config.DISCORD_TOKEN)
        except LoginFailure:
            logger.error("[⛔] Discord rejected the bot token; relay stays offline")
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[⛔] Discord session ended unexpectedly")

    async def on_ready(self):
        ch = self.channel_sink.channel_name if self.channel_sink else None
        if ch is None:
            logger.error(
                "[⛔] Channel %s is not visible to the bot", self.config.channel_id
            )
        logger.info("[🤖] Logged in as %s (channel: #%s)", self.bot.user, ch or "?")

        if self._pending_start_notice:
            self._pending_start_notice = False
            self.events.handle(ServerStarted())
        self.refresh_status()

    async def on_message(self, message: discord.Message):
        if message.author.bot:
            return
        if message.channel.id != self.config.channel_id:
            return
        content = message.clean_content
        if not content:
            return

        template = translate_color_codes(
            self.config.FORMAT_DISCORD_TO_GAME or DEFAULT_DISCORD_TO_GAME
        )
        text = apply_placeholders(
            template,
            username=getattr(message.author, "display_name", None) or message.author.name,
            message=content,
        )
        try:
            self.game.run_on_main_thread(lambda: self.game.broadcast(text))
        except Exception:
            logger.exception("[⛔] Could not schedule broadcast to the game")
            return
        if self.config.DEBUG:
            logger.info("[💬] Discord -> game: %s: %s", message.author.name, content)

    async def _watchdog(self) -> None:
        while not self.ctx.shutting_down:
            await asyncio.sleep(WATCHDOG_INTERVAL)
            if self.ctx.shutting_down:
                break
            if self.bot.is_ready() and not self.bot.is_closed():
                continue
            logger.warning("[⚠️] Discord connection lost, attempting to reconnect")
            try:
                if not self.bot.is_closed():
                    await self.bot.close()
                self.bot.clear()
                self._bot_future = self.ctx.submit(self._run_bot())
            except Exception:
                logger.exception("[⛔] Reconnect attempt failed")

    def connection_state(self) -> Optional[str]:
        if self.bot is None or not self._running:
            return None
        if self.bot.is_closed():
            return "CLOSED"
        if self.bot.is_ready():
            return "CONNECTED"
        return "CONNECTING"

    def channel_name(self) -> Optional[str]:
        return self.channel_sink.channel_name if self.channel_sink else None

    # ----------------------------------------------------------------- events

    def handle_event(self, event: GameEvent) -> bool:
        """Entry point for engine event hooks. Never blocks on the network."""
        if not self._running or self.ctx.shutting_down:
            return False
        if isinstance(event, ServerStopping):
            self.stop()
            return True
        if isinstance(event, ServerStarted) and not self.channel_sink.is_connected():
            self._pending_start_notice = True
            return False
        return self.events.handle(event)

    def refresh_status(self) -> None:
        """Re-read the player count on the main thread and update presence."""
        if not self._running or self.ctx.shutting_down or self.status is None:
            return
        if not self.config.STATUS_ENABLED:
            return
        try:
            fut = self.game.run_on_main_thread(
                lambda: (len(self.game.online_players()), int(self.game.max_players()))
            )
            self.ctx.submit(self._apply_status(fut))
        except RuntimeError:
            logger.debug("[🎮] Status refresh skipped, relay loop not running")

    async def _apply_status(self, fut: concurrent.futures.Future) -> None:
        try:
            count, max_players = await asyncio.wrap_future(fut)
        except Exception:
            logger.warning("[⚠️] Could not read player count", exc_info=True)
            return
        await self.status.update(count, max_players)

    # ------------------------------------------------------------------- stop

    def _send_now(self, sink: Optional[DeliverySink], payload: Payload, what: str) -> None:
        if sink is None or not sink.available:
            return
        try:
            outcome = self.loop_thread.run(sink.attempt(payload), timeout=STOP_NOTICE_TIMEOUT)
        except concurrent.futures.TimeoutError:
            logger.warning("[⚠️] %s not delivered within %.0fs", what, STOP_NOTICE_TIMEOUT)
            return
        except Exception:
            logger.warning("[⚠️] %s failed", what, exc_info=True)
            return
        if not outcome.ok:
            logger.warning("[⚠️] %s not delivered: %s", what, outcome.reason)

    def _send_stopping_notice(self) -> None:
        """Queue the offline notice behind pending chat and wait for the drain."""
        stopping = self.events.server_stopping_payload() if self.events else None
        if stopping is None or self.events_facade is None:
            return
        if not self.events_facade.send_payload(stopping):
            return
        if not self.chat_queue.wait_idle(STOP_NOTICE_TIMEOUT):
            logger.warning(
                "[⚠️] Server stopping notice not delivered within %.0fs",
                STOP_NOTICE_TIMEOUT,
            )

    def stop(self) -> None:
        if not self._running:
            return
        if self.loop_thread.in_loop_thread:
            # stop() blocks on the relay loop
            threading.Thread(target=self.stop, name="relay-stop", daemon=True).start()
            return
        self._running = False
        logger.info("[🛑] Shutting down relay...")

        self._send_stopping_notice()
        self.ctx.begin_shutdown()

        if self.console_handler is not None:
            logging.getLogger().removeHandler(self.console_handler)
            self.console_handler = None
        # the console drain may still hold an attempt on the console sink
        if self.console_queue is not None:
            self.console_queue.wait_idle(STOP_NOTICE_TIMEOUT)
        if self.console_batcher is not None:
            final = self.console_batcher.final_flush_text()
            if final:
                self._send_now(self.console_sink, Payload.text(final), "Final console flush")
            self.console_batcher = None

        for fut in self._background:
            fut.cancel()
        self._background.clear()

        try:
            self.loop_thread.run(self._close_async(), timeout=CLOSE_TIMEOUT)
        except Exception:
            logger.debug("[shutdown] close failed", exc_info=True)
        if self._bot_future is not None:
            self._bot_future.cancel()
            self._bot_future = None

        for q in (self.chat_queue, self.console_queue):
            if q is not None and q.discarded:
                logger.info("[🛑] %s stream: %d message(s) discarded", q.name, q.discarded)

        self.loop_thread.stop()
        logger.info("Relay shutdown complete.")

    async def _close_async(self) -> None:
        for sink in self.sinks:
            try:
                await sink.close()
            except Exception:
                logger.debug("[shutdown] %s sink close failed", sink.config.name, exc_info=True)
        with contextlib.suppress(Exception):
            if self.bot is not None and not self.bot.is_closed():
                await self.bot.close()

    def reload(self) -> bool:
        """stop() + fresh configuration + start()."""
        self.stop()
        try:
            self.config = self._config_factory()
        except Exception:
            logger.exception("[⛔] Could not load configuration")
            return False
        return self.start()
