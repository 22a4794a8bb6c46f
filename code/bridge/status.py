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
from typing import Any, Optional

import discord

from common.common_helpers import apply_placeholders
from common.config import Config

log = logging.getLogger(__name__)

DEFAULT_STATUS_FORMAT = "{playerCount}/{maxPlayers} players online"

ACTIVITY_TYPES = {
    "PLAYING": discord.ActivityType.playing,
    "WATCHING": discord.ActivityType.watching,
    "LISTENING": discord.ActivityType.listening,
    "COMPETING": discord.ActivityType.competing,
    "STREAMING": discord.ActivityType.streaming,
}


def activity_type(name: Optional[str]) -> discord.ActivityType:
    return ACTIVITY_TYPES.get((name or "").upper(), discord.ActivityType.playing)


class StatusManager:
    """Keeps the bot's presence line in step with the player count."""

    def __init__(self, bot: Any, config: Config) -> None:
        self.bot = bot
        self.config = config
        self.last_status: Optional[str] = None

    def format_status(self, player_count: int, max_players: int) -> str:
        return apply_placeholders(
            self.config.STATUS_FORMAT or DEFAULT_STATUS_FORMAT,
            playerCount=player_count,
            maxPlayers=max_players,
        )

    async def update(self, player_count: int, max_players: int) -> bool:
        if not self.config.STATUS_ENABLED:
            return False
        try:
            message = self.format_status(player_count, max_players)
            kind = activity_type(self.config.STATUS_TYPE)
            await self.bot.change_presence(
                activity=discord.Activity(type=kind, name=message)
            )
        except Exception:
            log.warning("[⚠️] Failed to update bot status", exc_info=True)
            return False

        self.last_status = message
        if self.config.DEBUG:
            log.info("[🎮] Updated bot status: %s (%s)", message, kind.name)
        return True
