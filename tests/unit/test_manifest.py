"""Tests for miles.toml loading and environment overrides."""

from __future__ import annotations

from pathlib import Path

import pytest

from miles.core.errors import ConfigError
from miles.core.manifest import MilesConfig, apply_env_overrides, load_manifest, parse_manifest


class TestParseManifest:
    def test_defaults(self) -> None:
        config = parse_manifest({})
        assert config.project.name == "miles_app"
        assert config.server.api_prefix == "/api"
        assert config.server.port == 8000
        assert config.database.auto_migrate is True
        assert config.client.api_url == "http://localhost:8000/api"

    def test_all_sections(self) -> None:
        config = parse_manifest(
            {
                "project": {"name": "todos", "version": "1.2.0", "models": ["app.models"]},
                "database": {"path": "db/todos.db", "auto_migrate": False},
                "server": {"host": "0.0.0.0", "port": 9000, "cors_origins": ["http://x"]},
                "client": {"output_dir": "web", "api_url": "http://api"},
                "logging": {"level": "debug", "dir": "logs"},
            }
        )
        assert config.project.models == ["app.models"]
        assert config.database.path == Path("db/todos.db")
        assert config.database.auto_migrate is False
        assert config.server.port == 9000
        assert config.server.cors_origins == ["http://x"]
        assert config.client.output_dir == Path("web")
        assert config.logging.level == "DEBUG"

    @pytest.mark.parametrize(
        "prefix,expected",
        [("api/v1", "/api/v1"), ("/api/", "/api"), ("/", ""), ("", "")],
    )
    def test_api_prefix_normalized(self, prefix: str, expected: str) -> None:
        config = parse_manifest({"server": {"api_prefix": prefix}})
        assert config.server.api_prefix == expected

    def test_wrong_type(self) -> None:
        with pytest.raises(ConfigError, match="server.port"):
            parse_manifest({"server": {"port": "8000"}})

    def test_bool_is_not_an_int(self) -> None:
        with pytest.raises(ConfigError, match="server.port"):
            parse_manifest({"server": {"port": True}})

    def test_section_must_be_a_table(self) -> None:
        with pytest.raises(ConfigError, match=r"\[database\]"):
            parse_manifest({"database": "data.db"})

    def test_models_must_be_strings(self) -> None:
        with pytest.raises(ConfigError):
            parse_manifest({"project": {"models": ["ok", 3]}})


class TestEnvOverrides:
    def test_overrides(self) -> None:
        config = apply_env_overrides(
            MilesConfig(),
            {
                "MILES_DB_PATH": "/tmp/other.db",
                "MILES_LOG_LEVEL": "warning",
                "MILES_API_PREFIX": "v2",
                "MILES_HOST": "0.0.0.0",
                "MILES_PORT": "8123",
            },
        )
        assert config.database.path == Path("/tmp/other.db")
        assert config.logging.level == "WARNING"
        assert config.server.api_prefix == "/v2"
        assert config.server.host == "0.0.0.0"
        assert config.server.port == 8123

    def test_bad_port(self) -> None:
        with pytest.raises(ConfigError, match="MILES_PORT"):
            apply_env_overrides(MilesConfig(), {"MILES_PORT": "eighty"})

    def test_empty_environment_changes_nothing(self) -> None:
        config = apply_env_overrides(MilesConfig(), {})
        assert config == MilesConfig(root=config.root)


class TestLoadManifest:
    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        config = load_manifest(tmp_path, environ={})
        assert config.root == tmp_path.resolve()
        assert config.database.path == tmp_path.resolve() / ".miles" / "data.db"

    def test_paths_resolved_against_manifest_dir(self, tmp_path: Path) -> None:
        (tmp_path / "miles.toml").write_text(
            '[project]\nname = "todos"\n\n[database]\npath = "var/todos.db"\n\n'
            '[client]\noutput_dir = "web"\n'
        )
        config = load_manifest(tmp_path / "miles.toml", environ={})
        root = tmp_path.resolve()
        assert config.project.name == "todos"
        assert config.database.path == root / "var" / "todos.db"
        assert config.client.output_dir == root / "web"
        assert config.logging.dir == root / ".miles" / "logs"

    def test_memory_database_not_resolved(self, tmp_path: Path) -> None:
        config = load_manifest(tmp_path, environ={"MILES_DB_PATH": ":memory:"})
        assert str(config.database.path) == ":memory:"

    def test_env_wins_over_file(self, tmp_path: Path) -> None:
        (tmp_path / "miles.toml").write_text("[server]\nport = 9000\n")
        config = load_manifest(tmp_path, environ={"MILES_PORT": "9100"})
        assert config.server.port == 9100

    def test_invalid_toml(self, tmp_path: Path) -> None:
        (tmp_path / "miles.toml").write_text("[project\nname = ")
        with pytest.raises(ConfigError, match="Invalid miles.toml"):
            load_manifest(tmp_path, environ={})
