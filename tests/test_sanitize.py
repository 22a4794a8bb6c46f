"""
Unit tests for text helpers: mention neutralising, fences, placeholders.
"""

import re

import pytest

from common.common_helpers import (
    ZWSP,
    apply_placeholders,
    clip,
    derive_label,
    escape_code_fence,
    escape_name,
    parse_hex_color,
    sanitize_mentions,
    split_into_chunks,
    translate_color_codes,
)

# A mention only pings when "@" is directly followed by a name/id character.
LIVE_MENTION = re.compile(r"@[!&]?[\w-]")

SAMPLES = [
    "@everyone look",
    "hey @here",
    "ping @Steve_01 and @alex-b",
    "<@123456> <@!42> <@&99>",
    "email me at foo@example.com",
    "@@everyone",
    "nothing to see",
    "",
    "@",
    "trailing @",
    "@" + ZWSP + "everyone already safe",
]


@pytest.mark.parametrize("text", SAMPLES)
def test_sanitized_text_has_no_live_mentions(text):
    out = sanitize_mentions(text)
    assert not LIVE_MENTION.search(out)


@pytest.mark.parametrize("text", SAMPLES)
def test_sanitize_is_idempotent(text):
    once = sanitize_mentions(text)
    assert sanitize_mentions(once) == once


def test_sanitize_keeps_visible_text():
    assert sanitize_mentions("@everyone hi").replace(ZWSP, "") == "@everyone hi"


def test_code_fence_cannot_close_block():
    out = escape_code_fence("before ``` after")
    assert "```" not in out
    assert out.replace(ZWSP, "") == "before ``` after"
    assert escape_code_fence(out) == out


def test_escape_name_neutralises_markdown_and_mentions():
    out = escape_name("__bold__@here")
    assert "\\_" in out
    assert not LIVE_MENTION.search(out)


def test_apply_placeholders_does_not_rescan_values():
    out = apply_placeholders(
        "**{username}**: {message}", username="Steve", message="{username}"
    )
    assert out == "**Steve**: {username}"


def test_translate_color_codes():
    assert translate_color_codes("&b[Discord] &fhi & bye") == "§b[Discord] §fhi & bye"


def test_clip():
    assert clip("abc", 5) == "abc"
    assert clip("abcdefgh", 6) == "abc..."
    assert len(clip("x" * 50, 10)) == 10


@pytest.mark.parametrize(
    "value,expected",
    [("#55FF55", 0x55FF55), ("55ff55", 0x55FF55), ("0x0000FF", 0xFF), ("nope", 0xFF5555), (None, 0xFF5555)],
)
def test_parse_hex_color(value, expected):
    assert parse_hex_color(value, "#FF5555") == expected


def test_split_into_chunks_respects_limit():
    names = [f"player_{i:04d}" for i in range(300)]
    chunks = split_into_chunks(names, 100)
    assert [n for c in chunks for n in c] == names
    for c in chunks:
        assert len(", ".join(c)) <= 100


def test_derive_label():
    assert derive_label("story/mine_stone") == "Mine stone"
    assert derive_label("adventure/kill_a_mob") == "Kill a mob"
    assert derive_label("") == ""
