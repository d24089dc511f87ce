# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("ENVIRONMENT", "test")

from speed_tracker.config.loader import TrackerSettings
from speed_tracker.services.realtime_hub.connection_manager import ConnectionHandle, ConnectionManager
from speed_tracker.services.realtime_hub.dispatcher import ProtocolDispatcher
from speed_tracker.services.realtime_hub.hub import RealtimeHub
from speed_tracker.services.realtime_hub.rate_limiter import HornRateLimiter
from speed_tracker.services.realtime_hub.registry import GroupRegistry


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "Системные настройки",
        "PROJECT_NAME": "speed_tracker_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "LOG_LEVEL": "DEBUG",
        "ENVIRONMENT": "test",
        "HUB_HOST": "127.0.0.1",
        "HUB_PORT": 3101,
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "LOG_FORMAT": "json",
        "LOG_MAX_BYTES": 1024,
        "LOG_BACKUP_COUNT": 2,
        "STALE_THRESHOLD_MS": 8000,
        "SWEEP_INTERVAL_MS": 2000,
        "HORN_COOLDOWN_SECONDS": 5,
        "DEFAULT_USER_NAME": "Tester",
        "DEFAULT_GROUP_NAME": "lobby",
        "OUTBOUND_QUEUE_SIZE": 16,
    }


@pytest.fixture
def tracker_settings() -> TrackerSettings:
    """Настройки хаба со значениями по умолчанию."""
    return TrackerSettings()


# =============================================================================
# ЧАСЫ И СОКЕТЫ
# =============================================================================

class FakeClock:
    """Управляемые часы (секунды)."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    @property
    def millis(self) -> int:
        return int(self.now * 1000)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_socket() -> Callable[[], AsyncMock]:
    """Фабрика фейковых WebSocket с send_text."""
    def _make() -> AsyncMock:
        socket = AsyncMock()
        socket.send_text = AsyncMock(return_value=None)
        return socket
    return _make


# =============================================================================
# КОМПОНЕНТЫ ХАБА
# =============================================================================

@pytest.fixture
def registry() -> GroupRegistry:
    return GroupRegistry()


@pytest.fixture
def manager() -> ConnectionManager:
    return ConnectionManager(queue_size=16)


@pytest.fixture
def rate_limiter() -> HornRateLimiter:
    return HornRateLimiter()


@pytest.fixture
def dispatcher(
    registry: GroupRegistry,
    manager: ConnectionManager,
    rate_limiter: HornRateLimiter,
    tracker_settings: TrackerSettings,
    clock: FakeClock,
) -> ProtocolDispatcher:
    return ProtocolDispatcher(registry, manager, rate_limiter, tracker_settings, clock=clock)


@pytest.fixture
def connect(manager: ConnectionManager, make_socket: Callable[[], AsyncMock]) -> Callable[[], ConnectionHandle]:
    """Подключить фейковое соединение без задачи-писателя."""
    def _connect() -> ConnectionHandle:
        return manager.connect(make_socket(), "Usuario", start_writer=False)
    return _connect


@pytest.fixture
def hub(tracker_settings: TrackerSettings, clock: FakeClock) -> RealtimeHub:
    return RealtimeHub(tracker_settings, clock=clock)


# =============================================================================
# УТИЛИТЫ
# =============================================================================

@pytest.fixture
def drain() -> Callable[[ConnectionHandle], list[dict[str, Any]]]:
    """Забрать все сообщения из очереди соединения."""
    def _drain(handle: ConnectionHandle) -> list[dict[str, Any]]:
        messages = []
        while not handle.outbox.empty():
            messages.append(json.loads(handle.outbox.get_nowait()))
        return messages
    return _drain


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2), encoding="utf-8")
    return config_file
