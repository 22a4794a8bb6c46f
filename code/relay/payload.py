# =============================================================================
#  Copycord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from common.common_helpers import ZWSP, clip, sanitize_mentions

MAX_EMBEDS = 10
MAX_USERNAME = 80


@dataclass(frozen=True)
class EmbedField:
    name: str
    value: str
    inline: bool = False


@dataclass(frozen=True)
class EmbedAuthor:
    name: str
    url: Optional[str] = None
    icon_url: Optional[str] = None


@dataclass(frozen=True)
class EmbedFooter:
    text: str
    icon_url: Optional[str] = None


@dataclass(frozen=True)
class StructuredMessage:
    """
    A pre-built embed. Producers (the embed factory, slash commands) create
    these; the relay passes them through to the sink untouched.
    """

    title: str = ""
    description: str = ""
    color: int = 0
    timestamp: Optional[datetime] = None
    fields: tuple[EmbedField, ...] = ()
    author: Optional[EmbedAuthor] = None
    footer: Optional[EmbedFooter] = None
    thumbnail_url: Optional[str] = None

    def to_dict(self) -> dict:
        """Discord's embed object, keeping only keys webhooks accept."""
        out: dict[str, Any] = {}
        if self.title:
            out["title"] = self.title
        if self.description:
            out["description"] = self.description
        out["color"] = int(self.color) & 0xFFFFFF

        if self.author is not None and self.author.name:
            out["author"] = {"name": self.author.name}
            if self.author.url:
                out["author"]["url"] = self.author.url
            if self.author.icon_url:
                out["author"]["icon_url"] = self.author.icon_url

        if self.footer is not None and self.footer.text:
            out["footer"] = {"text": self.footer.text}
            if self.footer.icon_url:
                out["footer"]["icon_url"] = self.footer.icon_url

        if self.timestamp is not None:
            ts = self.timestamp
            if ts.tzinfo is None:
                ts = ts.replace(tzinfo=timezone.utc)
            out["timestamp"] = ts.isoformat()

        if self.thumbnail_url:
            out["thumbnail"] = {"url": self.thumbnail_url}

        out["fields"] = [
            {"name": f.name, "value": f.value, "inline": bool(f.inline)}
            for f in self.fields
            if f.name and f.value
        ]
        return out


@dataclass(frozen=True)
class Payload:
    """A fully formatted message, ready for one delivery attempt."""

    content: Optional[str] = None
    embeds: tuple[StructuredMessage, ...] = field(default_factory=tuple)
    username: Optional[str] = None
    avatar_url: Optional[str] = None

    @classmethod
    def text(
        cls,
        content: str,
        *,
        username: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> "Payload":
        return cls(content=content, username=username, avatar_url=avatar_url)

    @classmethod
    def structured(cls, message: StructuredMessage, **kw) -> "Payload":
        return cls(embeds=(message,), **kw)

    def describe(self) -> str:
        if self.content:
            return clip(self.content.replace("\n", " "), 80)
        if self.embeds:
            return f"embed:{self.embeds[0].title or '?'}"
        return "empty"

    def to_webhook_json(
        self,
        *,
        default_username: Optional[str] = None,
        default_avatar_url: Optional[str] = None,
    ) -> dict:
        """
        Webhook execute body. Content is mention-sanitised here as well so a
        payload built by hand can never ping a whole server; the
        allowed_mentions block disables pings even if something slips through.
        """
        body: dict[str, Any] = {"allowed_mentions": {"parse": []}}

        if self.content:
            body["content"] = sanitize_mentions(self.content)

        username = (self.username or default_username or "").strip()
        if username:
            body["username"] = clip(username, MAX_USERNAME)

        avatar_url = (self.avatar_url or default_avatar_url or "").strip()
        if avatar_url.startswith(("http://", "https://")):
            body["avatar_url"] = avatar_url

        if self.embeds:
            body["embeds"] = [e.to_dict() for e in self.embeds[:MAX_EMBEDS]]

        if "content" not in body and "embeds" not in body:
            body["content"] = ZWSP
        return body
