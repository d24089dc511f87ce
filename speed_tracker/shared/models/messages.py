"""
Сообщения WebSocket протокола.

Входящие сообщения валидируются pydantic; всё, что не прошло валидацию,
считается некорректным сообщением и игнорируется диспетчером.
Числовые поля отчёта о скорости нестрогие: нечисловое значение
становится None, а сам отчёт принимается.
Исходящие конверты сериализуются в camelCase.
"""

from __future__ import annotations

import math
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from speed_tracker.shared.models.member import MemberRecord


class _WireModel(BaseModel):
    """База для всех сообщений протокола."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# === ВХОДЯЩИЕ ===

def _to_float(v: Any) -> float | None:
    """Число, числовая строка или None; всё остальное - None."""
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float, str)):
        try:
            value = float(v)
        except (ValueError, OverflowError):
            return None
        return value if math.isfinite(value) else None
    return None


class Envelope(_WireModel):
    """Минимальный конверт: только тип сообщения."""
    type: str


class RegisterMessage(_WireModel):
    """Регистрация участника в группе."""
    type: Literal["register"] = "register"
    user_id: str | None = None
    user_name: str | None = None
    group_name: str | None = None


class JoinMessage(_WireModel):
    """Подключение наблюдателя к группе."""
    type: Literal["join"] = "join"
    group_name: str | None = None


class SpeedMessage(_WireModel):
    """Периодический отчёт о скорости и позиции."""
    type: Literal["speed"] = "speed"
    user_id: str | None = None
    user_name: str | None = None
    group_name: str | None = None
    speed: float | None = None
    max_speed: float | None = None
    lat: float | None = None
    lon: float | None = None
    heading: float | None = Field(
        default=0.0,
        validation_alias=AliasChoices("heading", "bearing"),
    )
    # Время на часах клиента; для устаревания не используется
    timestamp: int | None = None

    @field_validator("speed", "max_speed", "lat", "lon", "heading", mode="before")
    @classmethod
    def lenient_number(cls, v: Any) -> float | None:
        """Нечисловое значение становится None, отчёт не отбрасывается."""
        return _to_float(v)

    @field_validator("timestamp", mode="before")
    @classmethod
    def lenient_timestamp(cls, v: Any) -> int | None:
        value = _to_float(v)
        return int(value) if value is not None else None


class HornMessage(_WireModel):
    """Групповой сигнал (клаксон)."""
    type: Literal["horn", "group-horn"] = "horn"
    user_id: str | None = None
    user_name: str | None = None
    group_name: str | None = None


# === ИСХОДЯЩИЕ ===

class UsersEnvelope(_WireModel):
    """Полный состав группы."""
    type: Literal["users"] = "users"
    users: list[MemberRecord]


class PongEnvelope(_WireModel):
    type: Literal["pong"] = "pong"


class ErrorEnvelope(_WireModel):
    """Приватная ошибка отправителю."""
    type: Literal["error"] = "error"
    message: str
    # Секунды до следующей разрешённой попытки (для ошибок лимита)
    remaining: int | None = None

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class GroupHornEnvelope(_WireModel):
    """Рассылка группового сигнала."""
    type: Literal["group-horn"] = "group-horn"
    user_id: str
    user_name: str
    group_name: str
    timestamp: int
