"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ConnectionRole(str, Enum):
    """Роль WebSocket соединения в группе."""
    PARTICIPANT = "participant"
    VIEWER = "viewer"


class InboundType(str, Enum):
    """Типы входящих сообщений протокола."""
    REGISTER = "register"
    JOIN = "join"
    SPEED = "speed"
    HORN = "horn"
    GROUP_HORN = "group-horn"
    PING = "ping"


# Имя логгера приложения
LOGGER_NAME = "speed_tracker"
