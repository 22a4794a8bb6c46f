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
import threading
from typing import Any, Optional

import aiohttp
import discord

from common.config import SinkConfig
from relay.outcome import (
    Outcome,
    OutcomeKind,
    classify_status,
    extract_retry_after_from_body,
    extract_retry_after_from_headers,
)
from relay.payload import Payload

log = logging.getLogger(__name__)


class DeliverySink:
    """
    Delivers one payload to Discord and reports an Outcome. Transport
    exceptions never escape attempt(); a permanent failure disables the sink
    until reset() is called with a (possibly new) configuration.
    """

    kind = "sink"
    uses_identity = False

    def __init__(self, config: SinkConfig) -> None:
        self._config = config
        self._disabled = threading.Event()
        self._disabled_reason = ""
        self.transport_calls = 0

    @property
    def config(self) -> SinkConfig:
        return self._config

    @property
    def disabled(self) -> bool:
        return self._disabled.is_set()

    @property
    def disabled_reason(self) -> str:
        return self._disabled_reason

    @property
    def enabled(self) -> bool:
        return self._config.enabled and not self._disabled.is_set()

    def is_connected(self) -> bool:
        return True

    @property
    def available(self) -> bool:
        return self.enabled and self.is_connected()

    def disable(self, reason: str) -> None:
        if self._disabled.is_set():
            return
        self._disabled_reason = reason
        self._disabled.set()
        log.error(
            "[⛔] %s sink disabled until reconfigured: %s", self._config.name, reason
        )

    def reset(self, config: Optional[SinkConfig] = None) -> None:
        if config is not None:
            self._config = config
        self._disabled_reason = ""
        self._disabled.clear()

    async def attempt(self, payload: Payload) -> Outcome:
        if not self._config.enabled:
            return Outcome.permanent("sink disabled by configuration")
        if self._disabled.is_set():
            return Outcome.permanent(f"sink disabled: {self._disabled_reason}")

        self.transport_calls += 1
        try:
            outcome = await self._deliver(payload)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            outcome = Outcome.recoverable("timeout")
        except aiohttp.ClientError as e:
            outcome = Outcome.recoverable(f"network error: {e}")
        except Exception as e:
            log.exception(
                "[⛔] %s sink raised while delivering %s",
                self._config.name,
                payload.describe(),
            )
            outcome = Outcome.recoverable(f"{type(e).__name__}: {e}")

        if outcome.kind is OutcomeKind.PERMANENT:
            self.disable(outcome.reason)
        elif outcome.kind is OutcomeKind.RECOVERABLE and outcome.status == 400:
            log.warning(
                "[⚠️] %s rejected payload %s: %s",
                self._config.name,
                payload.describe(),
                outcome.reason,
            )
        elif outcome.ok:
            log.debug("[📨] %s sent %s", self._config.name, payload.describe())
        return outcome

    async def _deliver(self, payload: Payload) -> Outcome:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class ChannelSink(DeliverySink):
    """Sends through the bot's own gateway session into a text channel."""

    kind = "channel"

    def __init__(self, config: SinkConfig, bot: Any) -> None:
        super().__init__(config)
        self.bot = bot

    def is_connected(self) -> bool:
        try:
            return bool(self.bot.is_ready()) and not self.bot.is_closed()
        except Exception:
            return False

    def _resolve_channel(self):
        return self.bot.get_channel(int(self._config.channel_id))

    @property
    def channel_name(self) -> Optional[str]:
        try:
            ch = self._resolve_channel()
        except Exception:
            return None
        return getattr(ch, "name", None) if ch is not None else None

    async def _deliver(self, payload: Payload) -> Outcome:
        if not self.is_connected():
            return Outcome.recoverable("gateway not connected")
        channel = self._resolve_channel()
        if channel is None:
            return Outcome.permanent(
                f"channel {self._config.channel_id} not found", status=404
            )

        embeds = [discord.Embed.from_dict(e.to_dict()) for e in payload.embeds]
        kwargs: dict[str, Any] = {
            "allowed_mentions": discord.AllowedMentions.none(),
        }
        if payload.content:
            kwargs["content"] = payload.content
        if embeds:
            kwargs["embeds"] = embeds

        try:
            await asyncio.wait_for(
                channel.send(**kwargs), timeout=self._config.total_timeout
            )
        except discord.HTTPException as e:
            retry_after = getattr(e, "retry_after", None)
            if retry_after is None:
                headers = getattr(getattr(e, "response", None), "headers", None)
                retry_after = extract_retry_after_from_headers(headers)
            return classify_status(
                int(e.status or 0), retry_after=retry_after, body=e.text or ""
            )
        return Outcome.delivered()


class WebhookSink(DeliverySink):
    """
    Executes a Discord webhook with its own per-message identity. Each
    attempt is an independent HTTP request with fixed connect/read timeouts.
    """

    kind = "webhook"
    uses_identity = True

    def __init__(
        self,
        config: SinkConfig,
        *,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        super().__init__(config)
        self._session = session
        self._owns_session = session is None

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self._config.total_timeout,
            sock_connect=self._config.connect_timeout,
            sock_read=self._config.read_timeout,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout())
            self._owns_session = True
        return self._session

    async def _deliver(self, payload: Payload) -> Outcome:
        url = self._config.endpoint
        if not url:
            return Outcome.permanent("webhook url missing")

        body = payload.to_webhook_json(
            default_username=self._config.display_name,
            default_avatar_url=self._config.avatar_for(self._config.display_name),
        )

        session = await self._get_session()
        async with session.post(url, json=body, timeout=self._timeout()) as resp:
            text = await resp.text()
            retry_after = extract_retry_after_from_headers(
                resp.headers
            ) or extract_retry_after_from_body(text)
            return classify_status(resp.status, retry_after=retry_after, body=text)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
