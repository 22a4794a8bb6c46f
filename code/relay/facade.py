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
from typing import Iterable, Optional

from common.common_helpers import apply_placeholders, escape_name, sanitize_mentions
from relay.context import RelayContext
from relay.payload import Payload, StructuredMessage
from relay.queue import MessageQueue
from relay.sinks import DeliverySink

log = logging.getLogger(__name__)

DEFAULT_TEMPLATE = "**{username}**: {message}"


class RelayFacade:
    """
    What producers call. Every method formats a payload, enqueues one send
    and returns at once; a disabled sink, a dropped gateway or a shutdown in
    progress turn the call into a silent no-op.

    With a ``fallback`` sink, sends go there while the primary sink is
    disabled (a webhook that answered 401/403/404 hands chat back to the
    bot's channel).
    """

    def __init__(
        self,
        ctx: RelayContext,
        queue: MessageQueue,
        sink: DeliverySink,
        *,
        fallback: Optional[DeliverySink] = None,
        template: str = DEFAULT_TEMPLATE,
        debug: bool = False,
    ) -> None:
        self.ctx = ctx
        self.queue = queue
        self.sink = sink
        self.fallback = fallback
        self.template = template or DEFAULT_TEMPLATE
        self.debug = debug

    @property
    def active_sink(self) -> DeliverySink:
        if not self.sink.enabled and self.fallback is not None and self.fallback.enabled:
            return self.fallback
        return self.sink

    def _accepting(self, sink: DeliverySink) -> bool:
        if self.ctx.shutting_down:
            log.debug("[📨] Relay is shutting down, skipping Discord message")
            return False
        if not sink.enabled:
            log.debug("[📨] %s sink is disabled, skipping message", sink.config.name)
            return False
        if not sink.is_connected():
            log.debug("[📨] %s sink is not connected, skipping message", sink.config.name)
            return False
        return True

    def _enqueue(self, sink: DeliverySink, payload: Payload) -> bool:
        async def _send():
            return await sink.attempt(payload)

        queued = self.queue.enqueue(_send)
        if queued and self.debug:
            log.info("[📨] Queued for %s: %s", sink.config.name, payload.describe())
        return queued

    def format_text(
        self,
        author: Optional[str],
        body: str,
        *,
        sink: Optional[DeliverySink] = None,
        **extra: object,
    ) -> Payload:
        sink = sink or self.active_sink
        message = sanitize_mentions(body or "")
        if sink.uses_identity and author:
            return Payload.text(
                message,
                username=author,
                avatar_url=sink.config.avatar_for(author),
            )
        content = apply_placeholders(
            self.template,
            **extra,
            username=escape_name(author or ""),
            message=message,
        )
        return Payload.text(content)

    def send_text(self, author: Optional[str], body: str, **extra: object) -> bool:
        sink = self.active_sink
        if not self._accepting(sink):
            return False
        return self._enqueue(sink, self.format_text(author, body, sink=sink, **extra))

    def send_structured(self, payload: StructuredMessage) -> bool:
        sink = self.active_sink
        if not self._accepting(sink):
            return False
        if sink.uses_identity:
            name = sink.config.display_name
            return self._enqueue(
                sink,
                Payload.structured(
                    payload, username=name, avatar_url=sink.config.avatar_for(name)
                ),
            )
        return self._enqueue(sink, Payload.structured(payload))

    def send_payload(self, payload: Payload) -> bool:
        """A prebuilt payload, queued behind everything already pending."""
        sink = self.active_sink
        if not self._accepting(sink):
            return False
        return self._enqueue(sink, payload)

    def send_system(self, text: str) -> bool:
        """Plain text with no author and no template, e.g. "Server is now online"."""
        return self.send_payload(Payload.text(sanitize_mentions(text or "")))

    def send_batch(self, lines: Iterable[str]) -> bool:
        """Several lines as one message, in order."""
        return self.send_system("\n".join(lines))
