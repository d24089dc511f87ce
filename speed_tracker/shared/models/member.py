"""
Запись участника группы.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class MemberRecord(BaseModel):
    """
    Последнее известное состояние пользователя в группе.

    Запись неизменяемая: реестр заменяет её целиком при каждом обновлении.
    max_speed - исторический максимум и может быть больше текущей speed.
    timestamp - время последнего обновления (мс, часы сервера).
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    user_id: str
    user_name: str
    speed: float | None = None
    max_speed: float | None = None
    lat: float | None = None
    lon: float | None = None
    heading: float | None = 0.0
    timestamp: int

    def to_wire(self) -> dict:
        """Представление для отправки клиентам (camelCase)."""
        return self.model_dump(mode="json", by_alias=True)
