"""Tests for configuration loading and validation."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from vitebridge.config import config_from_env, load_config
from vitebridge.models import DevServerConfig, default_start_command


class TestDevServerConfig:
    """Tests for the DevServerConfig model."""

    def test_defaults(self) -> None:
        config = DevServerConfig()
        assert config.host == "localhost"
        assert config.port == 5173
        assert config.working_dir == Path("frontend")
        assert config.startup_timeout_seconds == 60
        assert config.readiness_patterns == frozenset({"ready in", "Local:", "listening on"})
        assert config.dev_server_url == "http://localhost:5173"
        assert config.build_path == Path("frontend") / "dist"
        assert config.enabled and config.auto_start and not config.required

    def test_default_command_follows_host_and_port(self) -> None:
        config = DevServerConfig(host="127.0.0.1", port=3000)
        assert config.start_command == default_start_command("127.0.0.1", 3000)
        assert config.start_command[-4:] == ("--host", "127.0.0.1", "--port", "3000")

    @patch("vitebridge.models.os.name", "nt")
    def test_default_command_on_windows(self) -> None:
        assert default_start_command("localhost", 5173)[:3] == ("cmd.exe", "/c", "npm.cmd")

    def test_explicit_command_is_kept(self) -> None:
        config = DevServerConfig(start_command=["pnpm", "dev"])
        assert config.start_command == ("pnpm", "dev")

    @pytest.mark.parametrize("port", [0, 65536, -1])
    def test_invalid_port(self, port: int) -> None:
        with pytest.raises(ValidationError):
            DevServerConfig(port=port)

    @pytest.mark.parametrize("timeout", [0, -5])
    def test_invalid_timeout(self, timeout: int) -> None:
        with pytest.raises(ValidationError):
            DevServerConfig(startup_timeout_seconds=timeout)

    def test_empty_pattern_rejected(self) -> None:
        with pytest.raises(ValidationError):
            DevServerConfig(readiness_patterns={"ready in", ""})

    def test_frozen(self) -> None:
        config = DevServerConfig()
        with pytest.raises(ValidationError):
            config.port = 4000  # type: ignore[misc]

    def test_env_is_read_only(self) -> None:
        source = {"NODE_ENV": "development"}
        config = DevServerConfig(env=source)
        source["NODE_ENV"] = "production"
        assert config.env["NODE_ENV"] == "development"
        with pytest.raises(TypeError):
            config.env["NODE_ENV"] = "production"  # type: ignore[index]
        with pytest.raises(TypeError):
            DevServerConfig().env["X"] = "y"  # type: ignore[index]


class TestConfigFromEnv:
    """Tests for VITEBRIDGE_* environment parsing."""

    def test_empty_environment(self) -> None:
        assert config_from_env({"PATH": "/usr/bin"}) == {}

    def test_all_fields(self) -> None:
        values = config_from_env(
            {
                "VITEBRIDGE_HOST": "0.0.0.0",
                "VITEBRIDGE_PORT": "4000",
                "VITEBRIDGE_WORKING_DIR": "web",
                "VITEBRIDGE_START_COMMAND": "pnpm run dev --strictPort",
                "VITEBRIDGE_STARTUP_TIMEOUT": "15",
                "VITEBRIDGE_READINESS_PATTERNS": "ready in, Local:",
                "VITEBRIDGE_ENABLED": "yes",
                "VITEBRIDGE_AUTO_START": "false",
                "VITEBRIDGE_REQUIRED": "1",
                "VITEBRIDGE_HTTP_PROBE": "on",
                "VITEBRIDGE_BUILD_DIR": "build",
            }
        )
        config = DevServerConfig.model_validate(values)
        assert config.host == "0.0.0.0"
        assert config.port == 4000
        assert config.working_dir == Path("web")
        assert config.start_command == ("pnpm", "run", "dev", "--strictPort")
        assert config.startup_timeout_seconds == 15
        assert config.readiness_patterns == frozenset({"ready in", "Local:"})
        assert config.enabled and not config.auto_start
        assert config.required and config.http_probe
        assert config.build_path == Path("web") / "build"

    def test_child_env_overrides(self) -> None:
        values = config_from_env({"VITEBRIDGE_ENV_NODE_ENV": "development", "VITEBRIDGE_ENV_": "x"})
        assert values == {"env": {"NODE_ENV": "development"}}

    def test_invalid_port_from_env(self) -> None:
        with pytest.raises(ValidationError):
            DevServerConfig.model_validate(config_from_env({"VITEBRIDGE_PORT": "not-a-port"}))


class TestLoadConfig:
    """Tests for load_config precedence."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for key in list(os.environ):
            if key.startswith("VITEBRIDGE_"):
                monkeypatch.delenv(key)

    def test_dotenv_file(self, tmp_path: Path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("VITEBRIDGE_PORT=4100\nVITEBRIDGE_HOST=127.0.0.1\n")
        # load_dotenv writes into os.environ
        with patch.dict(os.environ):
            config = load_config(env_file)
        assert config.port == 4100
        assert config.host == "127.0.0.1"
        assert config.start_command[-1] == "4100"

    def test_environment_beats_dotenv(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("VITEBRIDGE_PORT=4100\n")
        monkeypatch.setenv("VITEBRIDGE_PORT", "4200")
        with patch.dict(os.environ):
            assert load_config(env_file).port == 4200

    def test_overrides_beat_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("VITEBRIDGE_PORT", "4200")
        config = load_config(None, port=4300, host=None)
        assert config.port == 4300
        assert config.host == "localhost"

    def test_missing_env_file_is_ignored(self, tmp_path: Path) -> None:
        assert load_config(tmp_path / "missing.env").port == 5173
