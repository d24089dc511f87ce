"""
Реестр групп и таблицы участников.

Группа -> (user_id -> MemberRecord). Все изменения таблицы группы
выполняются под asyncio.Lock этой группы, поэтому конкуренция ограничена
одной группой. Пустая группа удаляется сразу же, как только из неё
ушёл последний участник.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from speed_tracker.shared.models.member import MemberRecord


# Вызывается под блокировкой группы со свежим составом
RosterCallback = Callable[[list[MemberRecord]], None]


def merge_max_speed(previous: float | None, incoming: float | None) -> float | None:
    """Максимум из двух значений; None означает «нет значения»."""
    if previous is None:
        return incoming
    if incoming is None:
        return previous
    return max(previous, incoming)


@dataclass
class Group:
    """Группа с таблицей участников и собственной блокировкой."""
    name: str
    members: dict[str, MemberRecord] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def roster(self) -> list[MemberRecord]:
        return list(self.members.values())


class GroupRegistry:
    """
    Реестр групп.

    Методы, изменяющие таблицу, возвращают снимок состава, снятый под той же
    блокировкой. Через параметр on_change вызывающий код может выполнить
    действие (например, поставить рассылку в очередь) до снятия блокировки,
    чтобы порядок рассылок совпадал с порядком изменений.
    """

    def __init__(self) -> None:
        self._groups: dict[str, Group] = {}

    # === БЛОКИРОВКИ ===

    @asynccontextmanager
    async def locked(self, name: str, create: bool = False) -> AsyncIterator[Group | None]:
        """
        Захватить блокировку группы.

        Если группа была удалена, пока мы ждали блокировку, поиск повторяется.
        После выхода из контекста пустая группа удаляется из реестра.

        Args:
            name: Имя группы
            create: Создать группу, если её нет

        Yields:
            Группа или None, если её нет и create=False
        """
        while True:
            group = self._groups.get(name)
            if group is None:
                if not create:
                    yield None
                    return
                group = Group(name=name)
                self._groups[name] = group

            async with group.lock:
                if self._groups.get(name) is not group:
                    continue
                try:
                    yield group
                finally:
                    if not group.members and self._groups.get(name) is group:
                        del self._groups[name]
                return

    # === ИЗМЕНЕНИЯ ===

    async def upsert_member(
        self,
        group_name: str,
        incoming: MemberRecord,
        on_change: RosterCallback | None = None,
    ) -> list[MemberRecord]:
        """
        Вставить или заменить запись участника.

        max_speed у incoming - подсказка клиента; итоговое значение
        max(предыдущий max_speed, подсказка или speed) вычисляется до того,
        как старая запись будет отброшена.

        Returns:
            Состав группы после изменения
        """
        async with self.locked(group_name, create=True) as group:
            previous = group.members.get(incoming.user_id)
            # Нулевая подсказка не перекрывает speed
            candidate = incoming.max_speed or incoming.speed
            if candidate is None:
                candidate = incoming.max_speed
            max_speed = merge_max_speed(previous.max_speed if previous else None, candidate)

            group.members[incoming.user_id] = incoming.model_copy(update={"max_speed": max_speed})
            roster = group.roster()
            if on_change is not None:
                on_change(roster)
            return roster

    async def touch_member(
        self,
        group_name: str,
        user_id: str,
        user_name: str,
        now_ms: int,
        on_change: RosterCallback | None = None,
    ) -> list[MemberRecord]:
        """
        Отметить участника при регистрации.

        Новый участник получает нулевую запись без позиции; у существующего
        обновляются имя и время, накопленный max_speed сохраняется.
        """
        async with self.locked(group_name, create=True) as group:
            previous = group.members.get(user_id)
            if previous is None:
                record = MemberRecord(
                    user_id=user_id,
                    user_name=user_name,
                    speed=0.0,
                    max_speed=0.0,
                    timestamp=now_ms,
                )
            else:
                record = previous.model_copy(update={"user_name": user_name, "timestamp": now_ms})

            group.members[user_id] = record
            roster = group.roster()
            if on_change is not None:
                on_change(roster)
            return roster

    async def remove_member(
        self,
        group_name: str,
        user_id: str,
        on_change: RosterCallback | None = None,
    ) -> list[MemberRecord] | None:
        """
        Удалить участника. Идемпотентно.

        Returns:
            Оставшийся состав (пустой, если группа удалена) или None,
            если участника не было
        """
        async with self.locked(group_name) as group:
            if group is None or user_id not in group.members:
                return None

            del group.members[user_id]
            roster = group.roster()
            if on_change is not None:
                on_change(roster)
            return roster

    async def evict_stale(
        self,
        group_name: str,
        now_ms: int,
        threshold_ms: int,
        on_change: RosterCallback | None = None,
    ) -> tuple[list[str], list[MemberRecord]]:
        """
        Удалить участников, не обновлявшихся дольше threshold_ms.

        on_change вызывается один раз и только если кто-то был удалён,
        а группа после этого не опустела.

        Returns:
            (удалённые user_id, оставшийся состав)
        """
        async with self.locked(group_name) as group:
            if group is None:
                return [], []

            removed = [
                user_id
                for user_id, record in group.members.items()
                if now_ms - record.timestamp > threshold_ms
            ]
            for user_id in removed:
                del group.members[user_id]

            roster = group.roster()
            if removed and roster and on_change is not None:
                on_change(roster)
            return removed, roster

    # === ЧТЕНИЕ ===

    def snapshot(self, group_name: str) -> list[MemberRecord]:
        """Состав группы; пустой список для неизвестной группы."""
        group = self._groups.get(group_name)
        return group.roster() if group else []

    def has_group(self, group_name: str) -> bool:
        return group_name in self._groups

    def group_names(self) -> list[str]:
        return list(self._groups)

    def all_members(self) -> list[MemberRecord]:
        """Участники всех групп."""
        return [record for group in list(self._groups.values()) for record in group.roster()]

    @property
    def total_groups(self) -> int:
        return len(self._groups)

    @property
    def total_members(self) -> int:
        return sum(len(group.members) for group in self._groups.values())
