# =============================================================================
#  Copycord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence

import discord

from common.common_helpers import escape_name, parse_hex_color, split_into_chunks
from common.config import Config
from relay.payload import EmbedField, StructuredMessage

AVATAR_URL = "https://www.mc-heads.net/avatar/{name}"
FIELD_CHUNK_SIZE = 1000

DEFAULT_COLORS = {
    "join": "#55FF55",
    "leave": "#FF5555",
    "achievement": "#FFAA00",
    "server": "#55FFFF",
    "playerlist": "#5555FF",
}


def to_discord_embed(message: StructuredMessage) -> discord.Embed:
    return discord.Embed.from_dict(message.to_dict())


class EmbedFactory:
    """Builds the event embeds; colours come from config with per-kind defaults."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self._color_cache: dict[str, int] = {}

    @property
    def enabled(self) -> bool:
        return bool(self.config.EMBEDS_ENABLED)

    def color(self, kind: str) -> int:
        raw = (self.config.EMBED_COLORS or {}).get(kind) or DEFAULT_COLORS[kind]
        key = f"{kind}:{raw}"
        if key not in self._color_cache:
            self._color_cache[key] = parse_hex_color(raw, DEFAULT_COLORS[kind])
        return self._color_cache[key]

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def player_join(self, player: str) -> StructuredMessage:
        return StructuredMessage(
            title="Player Joined",
            description=f"**{escape_name(player)}** joined the server",
            color=self.color("join"),
            thumbnail_url=AVATAR_URL.format(name=player),
            timestamp=self._now(),
        )

    def player_leave(self, player: str) -> StructuredMessage:
        return StructuredMessage(
            title="Player Left",
            description=f"**{escape_name(player)}** left the server",
            color=self.color("leave"),
            thumbnail_url=AVATAR_URL.format(name=player),
            timestamp=self._now(),
        )

    def advancement(self, player: str, title: str, description: str = "") -> StructuredMessage:
        fields: tuple[EmbedField, ...] = ()
        if description and description.strip():
            fields = (EmbedField("Description", description.strip(), False),)
        return StructuredMessage(
            title="Achievement Unlocked",
            description=(
                f"**{escape_name(player)}** earned the achievement: **{escape_name(title)}**"
            ),
            color=self.color("achievement"),
            thumbnail_url=AVATAR_URL.format(name=player),
            timestamp=self._now(),
            fields=fields,
        )

    def server_status(
        self, online: bool, player_count: int = 0, max_players: int = 0
    ) -> StructuredMessage:
        if not online:
            return StructuredMessage(
                title="Server Offline",
                description="The server is now offline",
                color=self.color("server"),
                timestamp=self._now(),
            )

        fields: tuple[EmbedField, ...] = ()
        if player_count >= 0 and max_players > 0:
            fields = (EmbedField("Players", f"{player_count}/{max_players}", True),)
        return StructuredMessage(
            title="Server Online",
            description="The server is now online",
            color=self.color("server"),
            timestamp=self._now(),
            fields=fields,
        )

    def player_list(
        self, player_count: int, max_players: int, names: Sequence[str]
    ) -> StructuredMessage:
        if not names:
            fields = (EmbedField("Players", "No players online", False),)
        else:
            chunks = split_into_chunks(
                [escape_name(n) for n in sorted(names)], FIELD_CHUNK_SIZE
            )
            fields = tuple(
                EmbedField(
                    f"Players ({i + 1}/{len(chunks)})" if len(chunks) > 1 else "Players",
                    ", ".join(chunk),
                    False,
                )
                for i, chunk in enumerate(chunks)
            )
        return StructuredMessage(
            title="Online Players",
            description=f"{player_count}/{max_players} players online",
            color=self.color("playerlist"),
            timestamp=self._now(),
            fields=fields,
        )
