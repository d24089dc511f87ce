"""
Загрузчик конфигурации проекта.
Единственный источник истины: config/config.json.
Адрес и порт сервера переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации."""
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь без ключей-комментариев."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return {k: v for k, v in data.items() if not k.startswith("_comment_")}


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "speed_tracker"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"


class DeploymentSettings(BaseModel):
    """Настройки развертывания хаба."""
    HUB_HOST: str = "0.0.0.0"
    HUB_PORT: int = 3001


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760
    LOG_BACKUP_COUNT: int = 5


class TrackerSettings(BaseModel):
    """
    Настройки хаба присутствия.

    Порог устаревания обязан быть строго больше интервала очистки,
    иначе участник может быть удалён между двумя соседними отчётами.
    """
    STALE_THRESHOLD_MS: int = 10000
    SWEEP_INTERVAL_MS: int = 5000
    HORN_COOLDOWN_SECONDS: float = 10.0
    DEFAULT_USER_NAME: str = "Usuario"
    DEFAULT_GROUP_NAME: str = "general"
    OUTBOUND_QUEUE_SIZE: int = 256

    @model_validator(mode="after")
    def check_sweep_window(self) -> "TrackerSettings":
        """Проверяет соотношение порога и интервала очистки."""
        if self.SWEEP_INTERVAL_MS <= 0:
            raise ValueError("SWEEP_INTERVAL_MS должен быть положительным")
        if self.STALE_THRESHOLD_MS <= self.SWEEP_INTERVAL_MS:
            raise ValueError(
                "STALE_THRESHOLD_MS должен быть больше SWEEP_INTERVAL_MS "
                f"({self.STALE_THRESHOLD_MS} <= {self.SWEEP_INTERVAL_MS})"
            )
        if self.HORN_COOLDOWN_SECONDS < 0:
            raise ValueError("HORN_COOLDOWN_SECONDS не может быть отрицательным")
        if self.OUTBOUND_QUEUE_SIZE <= 0:
            raise ValueError("OUTBOUND_QUEUE_SIZE должен быть положительным")
        return self


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    tracker: TrackerSettings = Field(default_factory=TrackerSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        """
        Создаёт объект Settings из плоского словаря config.json.
        HUB_HOST и HUB_PORT переопределяются из переменных окружения.
        """
        return cls(
            system=SystemSettings(
                PROJECT_NAME=data.get("PROJECT_NAME", "speed_tracker"),
                VERSION=data.get("VERSION", "1.0.0"),
                DEBUG=data.get("DEBUG", False),
                LOG_LEVEL=data.get("LOG_LEVEL", "INFO"),
                ENVIRONMENT=os.getenv("ENVIRONMENT", data.get("ENVIRONMENT", "development")),
            ),
            deployment=DeploymentSettings(
                HUB_HOST=os.getenv("HUB_HOST", data.get("HUB_HOST", "0.0.0.0")),
                HUB_PORT=int(os.getenv("HUB_PORT", data.get("HUB_PORT", 3001))),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=data.get("LOG_LEVEL", "DEBUG"),
                LOG_TO_FILE=data.get("LOG_TO_FILE", False),
                LOG_FILE_PATH=data.get("LOG_FILE_PATH", "logs/app.log"),
                LOG_FORMAT=data.get("LOG_FORMAT", "colored"),
                LOG_MAX_BYTES=data.get("LOG_MAX_BYTES", 10485760),
                LOG_BACKUP_COUNT=data.get("LOG_BACKUP_COUNT", 5),
            ),
            tracker=TrackerSettings(
                STALE_THRESHOLD_MS=data.get("STALE_THRESHOLD_MS", 10000),
                SWEEP_INTERVAL_MS=data.get("SWEEP_INTERVAL_MS", 5000),
                HORN_COOLDOWN_SECONDS=data.get("HORN_COOLDOWN_SECONDS", 10.0),
                DEFAULT_USER_NAME=data.get("DEFAULT_USER_NAME", "Usuario"),
                DEFAULT_GROUP_NAME=data.get("DEFAULT_GROUP_NAME", "general"),
                OUTBOUND_QUEUE_SIZE=data.get("OUTBOUND_QUEUE_SIZE", 256),
            ),
        )

    @classmethod
    def from_config_json(cls) -> "Settings":
        """Создаёт объект Settings из config/config.json."""
        return cls.from_dict(load_config_json())


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Перед чтением config.json подгружает .env из корня проекта.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
