"""Tests for configuration loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from cachedrive.base import InvalidConfigurationError
from cachedrive.cache import Cache
from cachedrive.config import (
    ConfigSourceError,
    EnvConfigSource,
    FileConfigSource,
    load_config,
    merge_config,
)


SAMPLE = {
    "enabled": True,
    "driver": {"backend": "filesystem", "path": "/tmp/cache", "lifetime": 120},
}


class TestEnvConfigSource:
    """Tests for environment variable configuration."""

    def test_nested_keys(self) -> None:
        """Test double underscores nest keys."""
        source = EnvConfigSource(
            environ={
                "CACHEDRIVE_ENABLED": "true",
                "CACHEDRIVE_DRIVER__BACKEND": "redis",
                "CACHEDRIVE_DRIVER__PORT": "6380",
                "CACHEDRIVE_DRIVER__DELETE_EXPIRED_ON_READ": "off",
                "OTHER_VARIABLE": "ignored",
            }
        )

        assert source.load() == {
            "enabled": True,
            "driver": {"backend": "redis", "port": 6380, "delete_expired_on_read": False},
        }

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("yes", True),
            ("FALSE", False),
            ("none", None),
            ("42", 42),
            ("2.5", 2.5),
            ('{"a": 1}', {"a": 1}),
            ("[1, 2]", [1, 2]),
            ("{not json", "{not json"),
            ("localhost", "localhost"),
        ],
    )
    def test_value_parsing(self, raw: str, expected) -> None:
        """Test values are converted to the matching type."""
        source = EnvConfigSource(environ={"CACHEDRIVE_VALUE": raw})
        assert source.load() == {"value": expected}

    def test_config_path_variable_skipped(self) -> None:
        """Test the config file variable is not treated as an option."""
        source = EnvConfigSource(environ={"CACHEDRIVE_CONFIG": "cache.yaml"})
        assert source.load() == {}

    def test_custom_prefix(self) -> None:
        """Test a custom prefix."""
        source = EnvConfigSource(prefix="APP", environ={"APP_ENABLED": "1"})
        assert source.load() == {"enabled": 1}

    def test_conflicting_variables(self) -> None:
        """Test a scalar and a nested value for the same key conflict."""
        source = EnvConfigSource(
            environ={"CACHEDRIVE_DRIVER": "filesystem", "CACHEDRIVE_DRIVER__PATH": "/tmp"}
        )
        with pytest.raises(ConfigSourceError):
            source.load()

    def test_raw_keys(self) -> None:
        """Test listed keys keep their text while others are parsed."""
        source = EnvConfigSource(
            environ={
                "CACHEDRIVE_DRIVER__NAMESPACE": "2024",
                "CACHEDRIVE_DRIVER__PORT": "6380",
            },
            raw_keys={"driver.namespace"},
        )

        assert source.load() == {"driver": {"namespace": "2024", "port": 6380}}


class TestFileConfigSource:
    """Tests for file configuration."""

    def test_yaml(self, tmp_path: Path) -> None:
        """Test loading YAML."""
        path = tmp_path / "cache.yaml"
        path.write_text(yaml.safe_dump(SAMPLE))

        assert FileConfigSource(path).load() == SAMPLE

    def test_json(self, tmp_path: Path) -> None:
        """Test loading JSON."""
        path = tmp_path / "cache.json"
        path.write_text(json.dumps(SAMPLE))

        assert FileConfigSource(path).load() == SAMPLE

    def test_toml(self, tmp_path: Path) -> None:
        """Test loading TOML."""
        path = tmp_path / "cache.toml"
        path.write_text(
            "enabled = true\n"
            "\n"
            "[driver]\n"
            'backend = "filesystem"\n'
            'path = "/tmp/cache"\n'
            "lifetime = 120\n"
        )

        assert FileConfigSource(path).load() == SAMPLE

    def test_empty_yaml(self, tmp_path: Path) -> None:
        """Test an empty YAML file is an empty config."""
        path = tmp_path / "cache.yml"
        path.write_text("")

        assert FileConfigSource(path).load() == {}

    def test_missing_required(self, tmp_path: Path) -> None:
        """Test a missing required file raises."""
        with pytest.raises(ConfigSourceError, match="not found"):
            FileConfigSource(tmp_path / "missing.yaml").load()

    def test_missing_optional(self, tmp_path: Path) -> None:
        """Test a missing optional file is empty."""
        assert FileConfigSource(tmp_path / "missing.yaml", required=False).load() == {}

    @pytest.mark.parametrize(
        "name,content",
        [
            ("cache.ini", "[driver]"),
            ("cache.json", "{broken"),
            ("cache.yaml", "driver: [unclosed"),
            ("cache.toml", "driver = "),
            ("cache.yaml", "- a list\n- at the root\n"),
        ],
    )
    def test_malformed(self, tmp_path: Path, name: str, content: str) -> None:
        """Test unreadable files raise a configuration error."""
        path = tmp_path / name
        path.write_text(content)

        with pytest.raises(InvalidConfigurationError):
            FileConfigSource(path).load()


class TestLoadConfig:
    """Tests for load_config."""

    def test_merge_config(self) -> None:
        """Test nested mappings are merged key by key."""
        base = {"enabled": False, "driver": {"backend": "filesystem", "lifetime": 60}}
        merged = merge_config(base, {"driver": {"lifetime": 5}, "enabled": True})

        assert merged == {"enabled": True, "driver": {"backend": "filesystem", "lifetime": 5}}

    def test_environment_overrides_file(self, tmp_path: Path) -> None:
        """Test environment variables take precedence over the file."""
        path = tmp_path / "cache.yaml"
        path.write_text(yaml.safe_dump(SAMPLE))

        config = load_config(
            path,
            environ={"CACHEDRIVE_DRIVER__LIFETIME": "5", "CACHEDRIVE_ENABLED": "false"},
        )

        assert config == {
            "enabled": False,
            "driver": {"backend": "filesystem", "path": "/tmp/cache", "lifetime": 5},
        }

    def test_path_from_environment(self, tmp_path: Path) -> None:
        """Test the config file can be named by CACHEDRIVE_CONFIG."""
        path = tmp_path / "cache.json"
        path.write_text(json.dumps(SAMPLE))

        assert load_config(environ={"CACHEDRIVE_CONFIG": str(path)}) == SAMPLE

    def test_environment_only(self) -> None:
        """Test loading without a file."""
        assert load_config(environ={}) == {}

    def test_feeds_cache(self, tmp_path: Path) -> None:
        """Test a loaded config builds a working facade."""
        config = load_config(
            environ={
                "CACHEDRIVE_ENABLED": "true",
                "CACHEDRIVE_DRIVER__BACKEND": "fs",
                "CACHEDRIVE_DRIVER__PATH": str(tmp_path),
                "CACHEDRIVE_DRIVER__LIFETIME": "30",
            }
        )
        cache = Cache.from_config(config)

        assert cache.save("k", "v")
        assert cache.get("k") == "v"
        assert cache.driver.lifetime == 30

    def test_string_options_stay_text(self) -> None:
        """Test numeric-looking text options are not converted."""
        config = load_config(
            environ={
                "CACHEDRIVE_DRIVER__BACKEND": "redis",
                "CACHEDRIVE_DRIVER__NAMESPACE": "2024",
                "CACHEDRIVE_DRIVER__PASSWORD": "12345",
                "CACHEDRIVE_DRIVER__HOST": "10",
                "CACHEDRIVE_DRIVER__SEPARATOR": "0",
                "CACHEDRIVE_DRIVER__PORT": "6380",
                "CACHEDRIVE_DRIVER__SOCKET_TIMEOUT": "1.5",
                "CACHEDRIVE_DRIVER__LIFETIME": "30",
            }
        )

        assert config["driver"] == {
            "backend": "redis",
            "namespace": "2024",
            "password": "12345",
            "host": "10",
            "separator": "0",
            "port": 6380,
            "socket_timeout": 1.5,
            "lifetime": 30,
        }

    def test_numeric_path_builds_cache(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test a directory named by digits is a valid filesystem path."""
        monkeypatch.chdir(tmp_path)
        config = load_config(
            environ={
                "CACHEDRIVE_ENABLED": "true",
                "CACHEDRIVE_DRIVER__BACKEND": "filesystem",
                "CACHEDRIVE_DRIVER__PATH": "123",
                "CACHEDRIVE_DRIVER__FILE_EXTENSION": ".1",
            }
        )
        cache = Cache.from_config(config)

        assert config["driver"]["path"] == "123"
        assert cache.save("k", "v")
        assert cache.get("k") == "v"
        assert (tmp_path / "123").is_dir()
