"""
Unit tests for settings loading and validation.
"""

import dataclasses

import pytest

from common.config import Config, ConfigurationError

VALID = {"DISCORD_TOKEN": "abc.def.ghi", "DISCORD_CHANNEL_ID": "123456789012345678"}


def test_defaults():
    cfg = Config(env=VALID)
    cfg.validate()
    assert cfg.channel_id == 123456789012345678
    assert cfg.FORMAT_GAME_TO_DISCORD == "**{username}**: {message}"
    assert cfg.FORMAT_DISCORD_TO_GAME == "&b[Discord] &f{username}: &7{message}"
    assert cfg.MAX_MESSAGE_LENGTH == 1900
    assert cfg.SEND_PACING_SECONDS == 0.1
    assert cfg.BACKOFF_CAP_SECONDS == 300
    assert cfg.EMBEDS_ENABLED is True
    assert cfg.WEBHOOK_ENABLED is False
    assert cfg.STATUS_TYPE == "PLAYING"


@pytest.mark.parametrize(
    "env",
    [
        {},
        {"DISCORD_TOKEN": "YOUR_BOT_TOKEN_HERE", "DISCORD_CHANNEL_ID": "1"},
        {"DISCORD_TOKEN": "abc", "DISCORD_CHANNEL_ID": "YOUR_CHANNEL_ID_HERE"},
        {"DISCORD_TOKEN": "abc", "DISCORD_CHANNEL_ID": "general"},
        {"DISCORD_TOKEN": "   ", "DISCORD_CHANNEL_ID": "1"},
    ],
)
def test_validate_rejects_missing_credentials(env):
    with pytest.raises(ConfigurationError):
        Config(env=env).validate()


def test_bad_numbers_fall_back_to_defaults():
    cfg = Config(env={**VALID, "MAX_MESSAGE_LENGTH": "lots", "HTTP_TIMEOUT_READ": "?"})
    assert cfg.MAX_MESSAGE_LENGTH == 1900
    assert cfg.HTTP_TIMEOUT_READ == 10.0


def test_webhook_requires_discord_url():
    base = {**VALID, "WEBHOOK_ENABLED": "true"}
    assert not Config(env=base).webhook_usable()
    assert not Config(env={**base, "WEBHOOK_URL": "YOUR_WEBHOOK_URL_HERE"}).webhook_usable()
    assert not Config(env={**base, "WEBHOOK_URL": "https://example.com/hook"}).webhook_usable()

    good = Config(env={**base, "WEBHOOK_URL": "https://discord.com/api/webhooks/1/abc"})
    assert good.webhook_usable()
    sink_cfg = good.webhook_sink_config()
    assert sink_cfg.enabled
    assert sink_cfg.endpoint == "https://discord.com/api/webhooks/1/abc"


def test_console_channel_falls_back_to_main():
    cfg = Config(env={**VALID, "CONSOLE_ENABLED": "true"})
    assert cfg.console_channel_id == cfg.channel_id
    cfg = Config(env={**VALID, "CONSOLE_ENABLED": "yes", "CONSOLE_CHANNEL_ID": "42"})
    assert cfg.console_sink_config().channel_id == 42
    assert cfg.console_sink_config().enabled


def test_sink_configs_are_immutable():
    cfg = Config(env={**VALID, "HTTP_TIMEOUT_CONNECT": "3", "WEBHOOK_NAME": "Bridge"})
    sc = cfg.chat_sink_config()
    assert sc.connect_timeout == 3.0
    assert sc.display_name == "Bridge"
    assert sc.avatar_for("Steve") == "https://www.mc-heads.net/avatar/Steve"
    with pytest.raises(dataclasses.FrozenInstanceError):
        sc.enabled = False


def test_env_file_is_loaded(tmp_path, monkeypatch):
    # registered first so teardown removes whatever load_dotenv sets
    for key in ("DISCORD_TOKEN", "DISCORD_CHANNEL_ID"):
        monkeypatch.setenv(key, "unset")
        monkeypatch.delenv(key)
    env_file = tmp_path / ".env"
    env_file.write_text("DISCORD_TOKEN=from-file\nDISCORD_CHANNEL_ID=77\n")

    cfg = Config(env_file=env_file)
    assert cfg.DISCORD_TOKEN == "from-file"
    assert cfg.channel_id == 77
