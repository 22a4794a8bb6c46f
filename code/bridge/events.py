# =============================================================================
#  Copycord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

import concurrent.futures
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Union, runtime_checkable

from bridge.embeds import EmbedFactory
from common.common_helpers import derive_label
from common.config import Config
from relay.facade import RelayFacade
from relay.payload import Payload

log = logging.getLogger(__name__)


@runtime_checkable
class Advancement(Protocol):
    key: str

    def get_display_title(self) -> Optional[str]: ...

    def get_display_description(self) -> Optional[str]: ...


class GameServer(Protocol):
    """What the bridge needs from the game engine."""

    def online_players(self) -> list[str]: ...

    def max_players(self) -> int: ...

    def broadcast(self, text: str) -> None: ...

    def run_on_main_thread(self, fn: Callable[[], object]) -> concurrent.futures.Future: ...


@dataclass(frozen=True)
class PlayerJoined:
    name: str


@dataclass(frozen=True)
class PlayerLeft:
    name: str


@dataclass(frozen=True)
class AdvancementEarned:
    player: str
    advancement: Advancement


@dataclass(frozen=True)
class ServerStarted:
    pass


@dataclass(frozen=True)
class ServerStopping:
    pass


@dataclass(frozen=True)
class ChatMessage:
    player: str
    text: str


GameEvent = Union[
    PlayerJoined, PlayerLeft, AdvancementEarned, ServerStarted, ServerStopping, ChatMessage
]


def advancement_title(adv: Advancement) -> str:
    title = None
    try:
        title = adv.get_display_title()
    except Exception:
        log.debug("[🏆] Advancement %s has no display title", getattr(adv, "key", "?"))
    if title and str(title).strip():
        return str(title).strip()
    return derive_label(getattr(adv, "key", ""))


def advancement_description(adv: Advancement) -> str:
    try:
        desc = adv.get_display_description()
    except Exception:
        return ""
    return str(desc).strip() if desc else ""


class EventTranslator:
    """
    Turns engine events into relay sends. Runs on whatever thread the engine
    fires the event on and only ever enqueues.
    """

    def __init__(
        self,
        config: Config,
        embeds: EmbedFactory,
        chat: RelayFacade,
        events: Optional[RelayFacade] = None,
        *,
        on_player_count: Optional[Callable[[], None]] = None,
    ) -> None:
        self.config = config
        self.embeds = embeds
        self.chat = chat
        self.events = events or chat
        self.on_player_count = on_player_count
        self._announced: set[tuple[str, str]] = set()
        self._announced_lock = threading.Lock()

        self._handlers = {
            PlayerJoined: self._on_join,
            PlayerLeft: self._on_leave,
            AdvancementEarned: self._on_advancement,
            ServerStarted: self._on_server_started,
            ChatMessage: self._on_chat,
        }

    def handle(self, event: GameEvent) -> bool:
        handler = self._handlers.get(type(event))
        if handler is None:
            log.debug("[🎮] Ignoring event %s", type(event).__name__)
            return False
        return handler(event)

    def _player_count_changed(self) -> None:
        if self.on_player_count is None:
            return
        try:
            self.on_player_count()
        except Exception:
            log.exception("[⚠️] Player count callback failed")

    def _on_chat(self, ev: ChatMessage) -> bool:
        if not ev.text:
            return False
        return self.chat.send_text(ev.player, ev.text)

    def _on_join(self, ev: PlayerJoined) -> bool:
        self._player_count_changed()
        if not self.config.EVENT_PLAYER_JOIN:
            return False
        if self.embeds.enabled:
            return self.events.send_structured(self.embeds.player_join(ev.name))
        return self.events.send_system(f"{ev.name} joined the server")

    def _on_leave(self, ev: PlayerLeft) -> bool:
        self._player_count_changed()
        if not self.config.EVENT_PLAYER_QUIT:
            return False
        if self.embeds.enabled:
            return self.events.send_structured(self.embeds.player_leave(ev.name))
        return self.events.send_system(f"{ev.name} left the server")

    def _on_advancement(self, ev: AdvancementEarned) -> bool:
        if not self.config.EVENT_PLAYER_ADVANCEMENT:
            return False
        key = getattr(ev.advancement, "key", "") or ""
        if key.startswith("recipes/"):
            return False

        with self._announced_lock:
            if (ev.player, key) in self._announced:
                return False
            self._announced.add((ev.player, key))

        title = advancement_title(ev.advancement)
        if self.embeds.enabled:
            return self.events.send_structured(
                self.embeds.advancement(
                    ev.player, title, advancement_description(ev.advancement)
                )
            )
        return self.events.send_system(f"{ev.player} earned the achievement {title}")

    def _on_server_started(self, ev: ServerStarted) -> bool:
        self._player_count_changed()
        if not self.config.EVENT_SERVER_START:
            return False
        if self.embeds.enabled:
            return self.events.send_structured(self.embeds.server_status(True))
        return self.events.send_system("Server is now online")

    def server_stopping_payload(self) -> Optional[Payload]:
        """
        The offline notice. The bridge queues it behind pending chat and
        waits for the drain before the shutdown flag goes up.
        """
        if not self.config.EVENT_SERVER_STOP:
            return None
        if self.embeds.enabled:
            return Payload.structured(self.embeds.server_status(False))
        return Payload.text("Server is now offline")
