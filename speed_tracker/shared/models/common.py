"""
Модели ответов HTTP API хаба.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from speed_tracker.shared.models.member import MemberRecord


class HealthStatus(BaseModel):
    """Статус здоровья сервиса с агрегатами реестра."""

    service: str
    status: str = "ok"
    version: str | None = None
    total_members: int = 0
    total_groups: int = 0
    timestamp: int


class GroupSummary(BaseModel):
    """Группа: количество участников и полный состав."""

    name: str
    count: int
    users: list[MemberRecord] = Field(default_factory=list)


class GroupListResponse(BaseModel):
    groups: list[GroupSummary]
    total_groups: int
    total_members: int


class UsersResponse(BaseModel):
    """Все участники всех групп."""

    users: list[MemberRecord]
    count: int


class StatsResponse(BaseModel):
    """Статистика WebSocket соединений."""

    active_connections: int
    total_connections_ever: int
    total_messages_sent: int
    total_messages_dropped: int
    connections_by_role: dict[str, int]
