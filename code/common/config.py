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
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)
CURRENT_VERSION = "v1.2.0"

DISCORD_WEBHOOK_RE = re.compile(
    r"^https?://(canary\.|ptb\.)?discord(app)?\.com/api/webhooks/\d+/.+", re.I
)

PLACEHOLDER_VALUES = frozenset(
    {
        "YOUR_BOT_TOKEN_HERE",
        "YOUR_CHANNEL_ID_HERE",
        "YOUR_WEBHOOK_URL_HERE",
        "YOUR_CONSOLE_LOG_CHANNEL_ID_HERE",
    }
)

DEFAULT_AVATAR_URL = "https://www.mc-heads.net/avatar/{username}"


class ConfigurationError(Exception):
    """Missing or placeholder credentials; the relay must stay disabled."""


@dataclass(frozen=True)
class SinkConfig:
    """
    Resolved settings for one delivery sink. Never mutated; a reload builds
    a new instance and swaps it in.
    """

    name: str
    enabled: bool
    endpoint: str = ""
    channel_id: int = 0
    display_name: str = "Relay"
    avatar_template: str = DEFAULT_AVATAR_URL
    max_length: int = 1900
    connect_timeout: float = 10.0
    read_timeout: float = 10.0
    write_timeout: float = 10.0

    def avatar_for(self, username: str) -> str:
        return self.avatar_template.replace("{username}", username)

    @property
    def total_timeout(self) -> float:
        return self.connect_timeout + self.read_timeout + self.write_timeout


def _is_missing(value: Optional[str]) -> bool:
    return value is None or not str(value).strip() or value in PLACEHOLDER_VALUES


class Config:
    def __init__(
        self,
        env: Optional[Mapping[str, str]] = None,
        *,
        env_file: Optional[Path] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if env is None:
            if env_file is not None:
                load_dotenv(env_file)
            env = os.environ
        self._env = dict(env)

        def _str(key: str, default: Optional[str] = None) -> Optional[str]:
            v = self._env.get(key)
            if v is None or (isinstance(v, str) and v.strip() == ""):
                return default
            return v

        def _int(key: str, default: str = "0") -> int:
            raw = _str(key, default)
            try:
                return int(str(raw).strip())
            except Exception:
                try:
                    return int(default)
                except Exception:
                    return 0

        def _float(key: str, default: str = "0") -> float:
            raw = _str(key, default)
            try:
                return float(str(raw).strip())
            except Exception:
                return float(default)

        def _bool(key: str, default: bool) -> bool:
            raw = _str(key)
            if raw is None:
                return default
            return str(raw).strip().lower() in ("1", "true", "yes", "on")

        self.logger = (logger or logging.getLogger(__name__)).getChild(
            self.__class__.__name__
        )

        self.DISCORD_TOKEN = _str("DISCORD_TOKEN")
        self.DISCORD_CHANNEL_ID = _str("DISCORD_CHANNEL_ID")

        self.FORMAT_DISCORD_TO_GAME = _str(
            "FORMAT_DISCORD_TO_GAME", "&b[Discord] &f{username}: &7{message}"
        )
        self.FORMAT_GAME_TO_DISCORD = _str(
            "FORMAT_GAME_TO_DISCORD", "**{username}**: {message}"
        )

        self.EMBEDS_ENABLED = _bool("EMBEDS_ENABLED", True)
        self.EMBED_COLORS = {
            "join": _str("EMBED_COLOR_JOIN", "#55FF55"),
            "leave": _str("EMBED_COLOR_LEAVE", "#FF5555"),
            "achievement": _str("EMBED_COLOR_ACHIEVEMENT", "#FFAA00"),
            "server": _str("EMBED_COLOR_SERVER", "#55FFFF"),
            "playerlist": _str("EMBED_COLOR_PLAYERLIST", "#5555FF"),
        }

        self.EVENT_PLAYER_JOIN = _bool("EVENT_PLAYER_JOIN", True)
        self.EVENT_PLAYER_QUIT = _bool("EVENT_PLAYER_QUIT", True)
        self.EVENT_PLAYER_ADVANCEMENT = _bool("EVENT_PLAYER_ADVANCEMENT", True)
        self.EVENT_SERVER_START = _bool("EVENT_SERVER_START", True)
        self.EVENT_SERVER_STOP = _bool("EVENT_SERVER_STOP", True)

        self.COMMANDS_ENABLED = _bool("COMMANDS_ENABLED", True)
        self.COMMAND_PLAYERLIST = _bool("COMMAND_PLAYERLIST", True)

        self.STATUS_ENABLED = _bool("STATUS_ENABLED", True)
        self.STATUS_TYPE = (_str("STATUS_TYPE", "PLAYING") or "PLAYING").upper()
        self.STATUS_FORMAT = _str(
            "STATUS_FORMAT", "{playerCount}/{maxPlayers} players online"
        )

        self.WEBHOOK_ENABLED = _bool("WEBHOOK_ENABLED", False)
        self.WEBHOOK_URL = _str("WEBHOOK_URL")
        self.WEBHOOK_NAME = _str("WEBHOOK_NAME", "Relay")
        self.WEBHOOK_AVATAR_URL = _str("WEBHOOK_AVATAR_URL", DEFAULT_AVATAR_URL)

        self.CONSOLE_ENABLED = _bool("CONSOLE_ENABLED", False)
        self.CONSOLE_CHANNEL_ID = _str("CONSOLE_CHANNEL_ID")

        self.MAX_MESSAGE_LENGTH = max(100, _int("MAX_MESSAGE_LENGTH", "1900"))
        self.HTTP_TIMEOUT_CONNECT = _float("HTTP_TIMEOUT_CONNECT", "10")
        self.HTTP_TIMEOUT_READ = _float("HTTP_TIMEOUT_READ", "10")
        self.HTTP_TIMEOUT_WRITE = _float("HTTP_TIMEOUT_WRITE", "10")
        self.SEND_PACING_SECONDS = max(0, _int("SEND_PACING_MS", "100")) / 1000.0
        self.BACKOFF_CAP_SECONDS = _float("BACKOFF_CAP_SECONDS", "300")

        self.DEBUG = _bool("DEBUG", False)
        self.LOG_LEVEL = (_str("LOG_LEVEL", "INFO") or "INFO").upper()

    def validate(self) -> None:
        """Raise ConfigurationError when the bot cannot possibly connect."""
        if _is_missing(self.DISCORD_TOKEN):
            raise ConfigurationError(
                "DISCORD_TOKEN is not configured; set it in the environment or .env"
            )
        if _is_missing(self.DISCORD_CHANNEL_ID):
            raise ConfigurationError(
                "DISCORD_CHANNEL_ID is not configured; set it in the environment or .env"
            )
        if not str(self.DISCORD_CHANNEL_ID).strip().isdigit():
            raise ConfigurationError(
                f"DISCORD_CHANNEL_ID must be a numeric id, got {self.DISCORD_CHANNEL_ID!r}"
            )

    @property
    def channel_id(self) -> int:
        try:
            return int(str(self.DISCORD_CHANNEL_ID).strip())
        except (TypeError, ValueError):
            return 0

    @property
    def console_channel_id(self) -> int:
        raw = self.CONSOLE_CHANNEL_ID
        if _is_missing(raw) or not str(raw).strip().isdigit():
            if self.CONSOLE_ENABLED:
                self.logger.warning(
                    "Console log channel ID not configured, using default channel"
                )
            return self.channel_id
        return int(str(raw).strip())

    def webhook_usable(self) -> bool:
        if not self.WEBHOOK_ENABLED:
            return False
        url = (self.WEBHOOK_URL or "").strip()
        if _is_missing(url):
            self.logger.warning(
                "Webhook URL is not configured! Webhook delivery stays disabled"
            )
            return False
        if not DISCORD_WEBHOOK_RE.match(url):
            self.logger.warning(
                "Non-Discord webhook URL is not supported; webhook delivery disabled | url=%s",
                (url[:80] + "...") if len(url) > 80 else url,
            )
            return False
        return True

    def _sink_config(self, name: str, **kw) -> SinkConfig:
        return SinkConfig(
            name=name,
            display_name=self.WEBHOOK_NAME or "Relay",
            avatar_template=self.WEBHOOK_AVATAR_URL or DEFAULT_AVATAR_URL,
            max_length=self.MAX_MESSAGE_LENGTH,
            connect_timeout=self.HTTP_TIMEOUT_CONNECT,
            read_timeout=self.HTTP_TIMEOUT_READ,
            write_timeout=self.HTTP_TIMEOUT_WRITE,
            **kw,
        )

    def chat_sink_config(self) -> SinkConfig:
        return self._sink_config("channel", enabled=True, channel_id=self.channel_id)

    def webhook_sink_config(self) -> SinkConfig:
        return self._sink_config(
            "webhook",
            enabled=self.webhook_usable(),
            endpoint=(self.WEBHOOK_URL or "").strip(),
        )

    def console_sink_config(self) -> SinkConfig:
        return self._sink_config(
            "console",
            enabled=self.CONSOLE_ENABLED,
            channel_id=self.console_channel_id if self.CONSOLE_ENABLED else 0,
        )
