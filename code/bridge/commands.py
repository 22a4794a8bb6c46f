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
from typing import TYPE_CHECKING, Optional, Protocol, Sequence

import discord
from discord.ext import commands

from bridge.embeds import to_discord_embed
from common.common_helpers import translate_color_codes
from common.config import CURRENT_VERSION

if TYPE_CHECKING:
    from bridge.bridge import Bridge

logger = logging.getLogger(__name__)

PREFIX = "&b[Relay] "
PERM_RELOAD = "relay.reload"
PERM_STATUS = "relay.status"


def playerlist_text(player_count: int, max_players: int, names: Sequence[str]) -> str:
    if player_count > 0 and names:
        return f"Online Players ({player_count}/{max_players}): {', '.join(sorted(names))}"
    return f"There are no players online (0/{max_players})"


class RelayCommands(commands.Cog):
    """
    Slash commands served by the relay bot.
    """

    def __init__(self, bot: discord.Bot, bridge: "Bridge"):
        self.bot = bot
        self.bridge = bridge

    async def read_players(self) -> tuple[list[str], int]:
        """Player names and capacity, read on the engine's main thread."""
        game = self.bridge.game

        def _snapshot():
            return list(game.online_players()), int(game.max_players())

        return await asyncio.wrap_future(game.run_on_main_thread(_snapshot))

    async def build_playerlist_reply(self) -> dict:
        names, max_players = await self.read_players()
        names = sorted(names)
        embeds = self.bridge.embeds
        if embeds.enabled:
            return {
                "embed": to_discord_embed(
                    embeds.player_list(len(names), max_players, names)
                )
            }
        return {
            "content": playerlist_text(len(names), max_players, names),
            "allowed_mentions": discord.AllowedMentions.none(),
        }

    @commands.slash_command(
        name="playerlist",
        description="Shows the list of online players",
    )
    async def playerlist(self, ctx: discord.ApplicationContext):
        config = self.bridge.config
        if not (config.COMMANDS_ENABLED and config.COMMAND_PLAYERLIST):
            return await ctx.respond("This command is disabled", ephemeral=True)

        await ctx.defer()
        try:
            reply = await self.build_playerlist_reply()
        except Exception:
            logger.exception("[⛔] /playerlist failed")
            return await ctx.followup.send("Could not read the player list.")

        await ctx.followup.send(**reply)
        if config.DEBUG:
            logger.info("[🎮] Processed playerlist command for %s", ctx.user)


class CommandSender(Protocol):
    def has_permission(self, permission: str) -> bool: ...


class GameCommandHandler:
    """The in-game ``ddiscord`` operator command."""

    def __init__(self, bridge: "Bridge") -> None:
        self.bridge = bridge

    @staticmethod
    def _lines(*lines: str) -> list[str]:
        return [translate_color_codes(line) for line in lines]

    def handle(self, sender: CommandSender, args: Sequence[str]) -> list[str]:
        if not args:
            return self._lines(
                f"{PREFIX}&7Version {CURRENT_VERSION}",
                f"{PREFIX}&7/ddiscord reload - Reload configuration",
                f"{PREFIX}&7/ddiscord status - Check Discord connection status",
            )

        sub = args[0].lower()
        if sub == "reload":
            if not sender.has_permission(PERM_RELOAD):
                return self._lines("&cYou don't have permission to use this command")
            return self._reload()
        if sub == "status":
            if not sender.has_permission(PERM_STATUS):
                return self._lines("&cYou don't have permission to use this command")
            return self._status()
        return self._lines(
            f"{PREFIX}&cUnknown subcommand. Use /ddiscord for help."
        )

    def _reload(self) -> list[str]:
        logger.info("[🔄] Reload requested from the game console")
        if not self.bridge.reload():
            return self._lines(
                f"{PREFIX}&cReload failed; the relay is disabled. Check the server log."
            )
        return self._lines(f"{PREFIX}&aConfiguration reloaded!")

    def _status(self) -> list[str]:
        state: Optional[str] = self.bridge.connection_state()
        if state is None:
            return self._lines(f"{PREFIX}&7Discord connection: &cNot connected")

        color = {"CONNECTED": "&a", "CONNECTING": "&e"}.get(state, "&c")
        return self._lines(
            f"{PREFIX}&7Discord connection: {color}{state}",
            f"{PREFIX}&7Channel: {self.bridge.channel_name() or 'Not connected'}",
            f"{PREFIX}&7Webhook enabled: {str(self.bridge.webhook_enabled).lower()}",
        )
