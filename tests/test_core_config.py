import json

import pytest

import core.config as config_module
from core.config import BotSettings, write_config_template
from core.errors import ConfigurationError
from core.utils import safe_json_read, safe_json_write


@pytest.fixture
def mock_env(monkeypatch):
    monkeypatch.setenv("USER_TOKEN", "  env_token  ")
    monkeypatch.setenv("GUILD_ID", "111")
    monkeypatch.setenv("CHANNEL_ID", "222")
    monkeypatch.setenv("USER_COOLDOWN", "4.0")


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "bot_config.json"
    monkeypatch.setattr(config_module, "CONFIG_FILE", path)
    return path


def test_bot_settings_from_env(mock_env, config_file):
    settings = BotSettings()
    assert settings.user_token == "env_token"
    assert settings.guild_id == "111"
    assert settings.user_cooldown == 4.0
    assert settings.http_timeout_seconds == 15.0
    settings.require_credentials()


def test_missing_credentials(config_file, monkeypatch):
    for name in ("USER_TOKEN", "GUILD_ID", "CHANNEL_ID"):
        monkeypatch.delenv(name, raising=False)
    settings = BotSettings(_env_file=None)
    with pytest.raises(ConfigurationError) as exc:
        settings.require_credentials()
    assert "user_token" in str(exc.value)


def test_non_positive_cooldown_rejected(config_file):
    settings = BotSettings(user_token="t", guild_id="1", channel_id="2", user_cooldown=0)
    with pytest.raises(ConfigurationError):
        settings.require_credentials()


class TestJsonConfig:
    """Values from config/bot_config.json fill fields the environment left unset."""

    def test_sections_applied(self, config_file):
        config_file.write_text(json.dumps({
            "system": {"user_cooldown": 2.5, "guild_id": "g"},
            "automation": {"auto_claim": True, "boosts_length": 10},
            "autonomy": {"allow_risk_bridge": True, "current_boat": "Yacht"},
            "extra_tasks": [{"command": "vote"}, "garbage"],
        }))
        settings = BotSettings()
        assert settings.user_cooldown == 2.5
        assert settings.guild_id == "g"
        assert settings.auto_claim is True
        assert settings.boosts_length == 10
        assert settings.allow_risk_bridge is True
        assert settings.current_boat == "Yacht"
        assert settings.extra_tasks == [{"command": "vote"}]

    def test_explicit_values_win(self, config_file):
        config_file.write_text(json.dumps({"system": {"user_cooldown": 2.5}}))
        settings = BotSettings(user_cooldown=6.0)
        assert settings.user_cooldown == 6.0

    def test_unknown_keys_ignored(self, config_file):
        config_file.write_text(json.dumps({"system": {"no_such_field": 1}}))
        settings = BotSettings()
        assert not hasattr(settings, "no_such_field")

    def test_corrupt_file_falls_back_to_backup(self, config_file):
        config_file.write_text("{not json")
        (config_file.parent / "bot_config.json.backup.1").write_text(
            json.dumps({"automation": {"sell_interval_minutes": 42}})
        )
        assert BotSettings().sell_interval_minutes == 42

    def test_write_template(self, config_file):
        assert write_config_template(config_file) is True
        data = json.loads(config_file.read_text())
        assert data["system"]["user_cooldown"] == 3.5
        assert data["autonomy"]["allow_risk_bridge"] is False
        # Existing files are left untouched
        assert write_config_template(config_file) is False


class TestSafeJson:

    def test_write_rotates_backups(self, tmp_path):
        path = str(tmp_path / "state.json")
        assert safe_json_write(path, {"v": 1})
        assert safe_json_write(path, {"v": 2})
        assert safe_json_read(path) == {"v": 2}
        assert safe_json_read(path + ".backup.1") == {"v": 1}

    def test_read_missing(self, tmp_path):
        assert safe_json_read(str(tmp_path / "nope.json")) is None

    def test_unserialisable_data(self, tmp_path):
        assert safe_json_write(str(tmp_path / "bad.json"), {"x": object()}) is False
