# tests/config/test_loader.py
"""
Тесты для модуля загрузки конфигурации.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from speed_tracker.config.loader import (
    get_project_root,
    get_config_path,
    load_config_json,
    SystemSettings,
    DeploymentSettings,
    LoggingSettings,
    TrackerSettings,
    Settings,
)


class TestGetProjectRoot:
    """Тесты для функции get_project_root."""

    def test_returns_path_object(self) -> None:
        """Проверяет, что возвращается объект Path."""
        root = get_project_root()
        assert isinstance(root, Path)

    def test_root_contains_package_directory(self) -> None:
        """Проверяет наличие пакета speed_tracker в корне."""
        root = get_project_root()
        assert (root / "speed_tracker").exists()

    def test_root_contains_config_directory(self) -> None:
        """Проверяет наличие директории config в корне."""
        root = get_project_root()
        assert (root / "config").exists()


class TestGetConfigPath:
    """Тесты для функции get_config_path."""

    def test_path_ends_with_config_json(self) -> None:
        """Проверяет правильность имени файла."""
        path = get_config_path()
        assert path.name == "config.json"
        assert path.parent.name == "config"


class TestLoadConfigJson:
    """Тесты для функции load_config_json."""

    def test_contains_required_keys(self) -> None:
        """Проверяет наличие обязательных ключей."""
        config = load_config_json()

        required_keys = [
            "PROJECT_NAME",
            "VERSION",
            "HUB_PORT",
            "STALE_THRESHOLD_MS",
            "SWEEP_INTERVAL_MS",
            "HORN_COOLDOWN_SECONDS",
        ]

        for key in required_keys:
            assert key in config, f"Отсутствует ключ: {key}"

    def test_comment_keys_are_filtered(self) -> None:
        """Ключи-комментарии не попадают в словарь."""
        config = load_config_json()
        assert not any(key.startswith("_comment_") for key in config)

    def test_filters_comments_from_custom_file(self, temp_config_file: Path) -> None:
        """Проверяет чтение произвольного файла."""
        with patch("speed_tracker.config.loader.get_config_path", return_value=temp_config_file):
            config = load_config_json()

        assert config["PROJECT_NAME"] == "speed_tracker_test"
        assert "_comment_system" not in config

    def test_raises_file_not_found(self, tmp_path: Path) -> None:
        """Проверяет исключение при отсутствии файла."""
        with patch("speed_tracker.config.loader.get_config_path") as mock_path:
            mock_path.return_value = tmp_path / "nonexistent.json"

            with pytest.raises(FileNotFoundError):
                load_config_json()


class TestSectionDefaults:
    """Значения по умолчанию секций."""

    def test_system_defaults(self) -> None:
        settings = SystemSettings()
        assert settings.PROJECT_NAME == "speed_tracker"
        assert settings.DEBUG is False

    def test_deployment_defaults(self) -> None:
        settings = DeploymentSettings()
        assert settings.HUB_HOST == "0.0.0.0"
        assert settings.HUB_PORT == 3001

    def test_logging_defaults(self) -> None:
        settings = LoggingSettings()
        assert settings.LOG_FORMAT == "colored"
        assert settings.LOG_TO_FILE is False

    def test_tracker_defaults(self) -> None:
        settings = TrackerSettings()
        assert settings.STALE_THRESHOLD_MS == 10000
        assert settings.SWEEP_INTERVAL_MS == 5000
        assert settings.HORN_COOLDOWN_SECONDS == 10.0
        assert settings.DEFAULT_USER_NAME == "Usuario"
        assert settings.DEFAULT_GROUP_NAME == "general"


class TestTrackerSettingsValidation:
    """Проверки соотношения порога и интервала очистки."""

    def test_threshold_must_exceed_interval(self) -> None:
        with pytest.raises(ValidationError):
            TrackerSettings(STALE_THRESHOLD_MS=5000, SWEEP_INTERVAL_MS=5000)

    def test_interval_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            TrackerSettings(SWEEP_INTERVAL_MS=0)

    def test_negative_cooldown_rejected(self) -> None:
        with pytest.raises(ValidationError):
            TrackerSettings(HORN_COOLDOWN_SECONDS=-1)

    def test_queue_size_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            TrackerSettings(OUTBOUND_QUEUE_SIZE=0)

    def test_zero_cooldown_allowed(self) -> None:
        settings = TrackerSettings(HORN_COOLDOWN_SECONDS=0)
        assert settings.HORN_COOLDOWN_SECONDS == 0


class TestSettings:
    """Тесты для главного класса Settings."""

    def test_from_dict(self, mock_config: dict[str, Any], monkeypatch: pytest.MonkeyPatch) -> None:
        """Проверяет сборку всех секций из плоского словаря."""
        monkeypatch.delenv("HUB_HOST", raising=False)
        monkeypatch.delenv("HUB_PORT", raising=False)
        settings = Settings.from_dict(mock_config)

        assert settings.system.PROJECT_NAME == "speed_tracker_test"
        assert settings.deployment.HUB_HOST == "127.0.0.1"
        assert settings.deployment.HUB_PORT == 3101
        assert settings.logging.LOG_FORMAT == "json"
        assert settings.tracker.STALE_THRESHOLD_MS == 8000
        assert settings.tracker.DEFAULT_GROUP_NAME == "lobby"

    def test_env_overrides_host_and_port(self, mock_config: dict[str, Any]) -> None:
        """HUB_HOST и HUB_PORT берутся из окружения."""
        with patch.dict("os.environ", {"HUB_HOST": "10.0.0.5", "HUB_PORT": "4000"}):
            settings = Settings.from_dict(mock_config)

        assert settings.deployment.HUB_HOST == "10.0.0.5"
        assert settings.deployment.HUB_PORT == 4000

    def test_from_dict_empty_uses_defaults(self) -> None:
        with patch.dict("os.environ", {"HUB_PORT": "3001"}):
            settings = Settings.from_dict({})

        assert settings.tracker.HORN_COOLDOWN_SECONDS == 10.0
        assert settings.deployment.HUB_PORT == 3001

    def test_invalid_tracker_section_rejected(self, mock_config: dict[str, Any]) -> None:
        mock_config["STALE_THRESHOLD_MS"] = 1000
        with pytest.raises(ValidationError):
            Settings.from_dict(mock_config)

    def test_from_config_json(self) -> None:
        """Проверяет загрузку настроек проекта."""
        settings = Settings.from_config_json()
        assert settings.system.PROJECT_NAME == "speed_tracker"
        assert settings.tracker.STALE_THRESHOLD_MS > settings.tracker.SWEEP_INTERVAL_MS
