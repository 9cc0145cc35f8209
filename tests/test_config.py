"""Tests for configuration and target list loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from file_distributor.config import (
    Config,
    ConfigError,
    DiscordSettings,
    load_targets,
)


class TestConfig:
    """Tests for the JSON-backed Config."""

    def test_creates_default_file(self, tmp_path: Path) -> None:
        """A missing config file is created with defaults."""
        path = tmp_path / "config.json"
        config = Config(path)

        assert path.exists()
        assert config.debounce_delay_ms == 5000
        assert config.max_concurrent_uploads == 5
        assert config.upload_retry_count == 3
        assert config.retry_delay_ms == 2000
        assert config.connection_timeout_seconds == 30
        assert config.watch_patterns == ["*.*"]
        assert config.include_subdirectories is True

    def test_stored_values_override_defaults(self, tmp_path: Path) -> None:
        """Stored keys win, missing keys get defaults."""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"debounce_delay_ms": 250, "discord": {"channel_id": "9"}}))

        config = Config(path)

        assert config.debounce_delay_ms == 250
        assert config.max_concurrent_uploads == 5
        assert config.discord.channel_id == "9"
        assert config.discord.notify_on_failure is True

    def test_corrupt_file_uses_defaults(self, tmp_path: Path) -> None:
        """Unreadable JSON falls back to defaults."""
        path = tmp_path / "config.json"
        path.write_text("{not json")

        assert Config(path).upload_retry_count == 3

    def test_non_object_file_uses_defaults(self, tmp_path: Path) -> None:
        """A JSON list instead of an object falls back to defaults."""
        path = tmp_path / "config.json"
        path.write_text("[1, 2]")

        assert Config(path).max_concurrent_uploads == 5

    def test_setters_clamp(self, tmp_path: Path) -> None:
        """Setters keep values in a usable range."""
        config = Config(tmp_path / "config.json")
        config.max_concurrent_uploads = 0
        config.upload_retry_count = -2
        config.debounce_delay_ms = -1
        config.connection_timeout_seconds = 0

        assert config.max_concurrent_uploads == 1
        assert config.upload_retry_count == 1
        assert config.debounce_delay_ms == 0
        assert config.connection_timeout_seconds == 1

    def test_save_round_trip(self, tmp_path: Path) -> None:
        """Saved values are read back by a new instance."""
        path = tmp_path / "config.json"
        config = Config(path)
        config.watch_directory = "/data/dist"
        config.watch_patterns = ["*.amxx", " ", "*.bsp "]
        config.discord = DiscordSettings(relay_url="https://r", channel_id="1")
        config.save()

        reloaded = Config(path)
        assert reloaded.watch_directory == "/data/dist"
        assert reloaded.watch_patterns == ["*.amxx", "*.bsp"]
        assert reloaded.discord.relay_url == "https://r"

    def test_servers_file_defaults_next_to_config(self, tmp_path: Path) -> None:
        """servers.json lives beside the config file unless overridden."""
        config = Config(tmp_path / "config.json")
        assert config.servers_file == tmp_path / "servers.json"

        config.servers_file = str(tmp_path / "other.json")
        assert config.servers_file == tmp_path / "other.json"


class TestDiscordSettings:
    """Tests for DiscordSettings."""

    def test_all_channel_ids(self) -> None:
        """Primary channel comes first and blanks are skipped."""
        settings = DiscordSettings(channel_id="1", additional_channel_ids=["", "2"])
        assert settings.all_channel_ids() == ["1", "2"]

    def test_no_primary_channel(self) -> None:
        """Without a primary channel only additional ones are used."""
        assert DiscordSettings(additional_channel_ids=["5"]).all_channel_ids() == ["5"]

    def test_repr_hides_secret(self) -> None:
        """The relay secret is not shown in repr."""
        assert "topsecret" not in repr(DiscordSettings(auth_secret="topsecret"))


class TestLoadTargets:
    """Tests for reading servers.json."""

    def test_missing_file_writes_example(self, tmp_path: Path, caplog) -> None:
        """A missing servers file is replaced by an example and no targets load."""
        path = tmp_path / "servers.json"

        with caplog.at_level("WARNING"):
            targets = load_targets(path)

        assert targets == ()
        assert path.exists()
        example = json.loads(path.read_text())
        assert [e["name"] for e in example] == ["KTP Dallas 1", "KTP Chicago 1"]
        assert "privateKeyPath" in example[1]
        assert "not found" in caplog.text

    def test_loads_targets(self, tmp_path: Path) -> None:
        """Targets are parsed in file order, disabled ones included."""
        path = tmp_path / "servers.json"
        path.write_text(
            json.dumps(
                [
                    {"name": "a", "host": "h1", "password": "p", "remoteBasePath": "/srv"},
                    {"name": "b", "host": "h2", "privateKeyPath": "/k", "enabled": False},
                ]
            )
        )

        targets = load_targets(path)

        assert [t.name for t in targets] == ["a", "b"]
        assert targets[0].remote_base_path == "/srv"
        assert targets[1].enabled is False

    def test_malformed_json_raises(self, tmp_path: Path) -> None:
        """Unparseable servers.json is a configuration error."""
        path = tmp_path / "servers.json"
        path.write_text("[{")

        with pytest.raises(ConfigError):
            load_targets(path)

    def test_non_list_raises(self, tmp_path: Path) -> None:
        """servers.json must be a list."""
        path = tmp_path / "servers.json"
        path.write_text('{"name": "a"}')

        with pytest.raises(ConfigError, match="JSON list"):
            load_targets(path)

    def test_bad_entry_raises(self, tmp_path: Path) -> None:
        """An entry with an invalid port is a configuration error."""
        path = tmp_path / "servers.json"
        path.write_text('[{"name": "a", "host": "h", "port": "ssh"}]')

        with pytest.raises(ConfigError, match="Invalid server entry"):
            load_targets(path)

    def test_quoted_false_disables_target(self, tmp_path: Path) -> None:
        """A target switched off with "false" in quotes stays disabled."""
        path = tmp_path / "servers.json"
        path.write_text('[{"name": "a", "host": "h", "enabled": "false"}]')

        (target,) = load_targets(path)

        assert target.enabled is False

    def test_unreadable_enabled_raises(self, tmp_path: Path) -> None:
        """An enabled value that is not a boolean is a configuration error."""
        path = tmp_path / "servers.json"
        path.write_text('[{"name": "a", "host": "h", "enabled": "sometimes"}]')

        with pytest.raises(ConfigError, match="not a boolean"):
            load_targets(path)
