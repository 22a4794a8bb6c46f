# =============================================================================
#  Copycord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

import re
from typing import Iterable

import discord

ZWSP = "\u200b"

# "@everyone", "@here", "@name", "<@123>", "<@!123>", "<@&123>"
_MENTION_RE = re.compile(r"@(?=[!&]?[\w-])")
_FENCE_RE = re.compile(r"`(?=``)")
_COLOR_CODE_RE = re.compile(r"&(?=[0-9a-fk-orA-FK-OR])")


def sanitize_mentions(text: str) -> str:
    """
    Break every mention-shaped token by putting a zero-width space after the
    "@". Already neutralised tokens are left untouched, so the function is
    idempotent.
    """
    if not text:
        return text or ""
    return _MENTION_RE.sub("@" + ZWSP, text)


def escape_code_fence(text: str) -> str:
    """Keep a line from closing the ``` block it is embedded in."""
    if not text:
        return text or ""
    return _FENCE_RE.sub("`" + ZWSP, text)


def escape_name(name: str) -> str:
    """Display names go into bold markdown, so their own markdown must be inert."""
    return sanitize_mentions(discord.utils.escape_markdown(name or ""))


def apply_placeholders(template: str, **values: object) -> str:
    """
    Replace ``{key}`` tokens in order. Values are inserted verbatim; callers
    put user-controlled text last so it is never re-scanned.
    """
    out = template or ""
    for key, val in values.items():
        out = out.replace("{" + key + "}", str(val))
    return out


def translate_color_codes(text: str) -> str:
    """Turn "&a"-style colour codes into the engine's "\u00a7a" form."""
    return _COLOR_CODE_RE.sub("\u00a7", text or "")


def clip(s: str, limit: int) -> str:
    s = s or ""
    return s if len(s) <= limit else (s[: max(0, limit - 3)] + "...")


def parse_hex_color(value: str | None, default: str) -> int:
    """
    "#55FF55" / "55FF55" / "0x55FF55" -> 0x55FF55. Falls back to the default
    colour when the configured value is unparsable.
    """
    for candidate in (value, default):
        if not candidate:
            continue
        s = str(candidate).strip().lstrip("#")
        if s.lower().startswith("0x"):
            s = s[2:]
        try:
            v = int(s, 16)
        except ValueError:
            continue
        if 0 <= v <= 0xFFFFFF:
            return v
    return 0


def split_into_chunks(items: Iterable[str], max_chunk_size: int) -> list[list[str]]:
    """
    Group names so that each group, joined with ", ", stays under
    max_chunk_size characters.
    """
    result: list[list[str]] = []
    current: list[str] = []
    size = 0

    for item in items:
        item_size = len(item) + 2
        if size + item_size > max_chunk_size and current:
            result.append(current)
            current = []
            size = 0
        current.append(item)
        size += item_size

    if current:
        result.append(current)
    return result


def derive_label(key: str) -> str:
    """Label for an advancement key: "story/mine_stone" becomes "Mine stone"."""
    tail = (key or "").rsplit("/", 1)[-1].replace("_", " ").strip()
    return tail[:1].upper() + tail[1:] if tail else ""
