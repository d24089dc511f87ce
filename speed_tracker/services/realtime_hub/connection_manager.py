"""
Менеджер WebSocket соединений и рассылка по группам.

Каждое соединение получает ограниченную очередь исходящих сообщений и
отдельную задачу-писатель. Рассылка только кладёт готовый текст в очереди,
поэтому медленный или мёртвый клиент не задерживает остальных.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from speed_tracker.common.constants import ConnectionRole
from speed_tracker.common.logger import log_debug
from speed_tracker.shared.models.member import MemberRecord
from speed_tracker.shared.models.messages import UsersEnvelope


class TextSocket(Protocol):
    """То, что нужно от транспорта: отправка текстового кадра."""

    async def send_text(self, data: str) -> None: ...


_connection_ids = itertools.count(1)


@dataclass(eq=False)
class ConnectionHandle:
    """
    Одно живое соединение и его теги.

    Теги (user_id, user_name, group_name, role) пишет только обработчик
    этого соединения; остальные компоненты их только читают.
    """
    websocket: TextSocket
    user_name: str
    queue_size: int = 256
    user_id: str | None = None
    group_name: str | None = None
    role: ConnectionRole | None = None
    connection_id: int = field(default_factory=lambda: next(_connection_ids))
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    closed: bool = False
    outbox: asyncio.Queue = field(init=False)
    _writer: asyncio.Task | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.outbox = asyncio.Queue(maxsize=self.queue_size)

    @property
    def is_registered(self) -> bool:
        return self.role is not None

    def enqueue(self, text: str) -> bool:
        """
        Поставить сообщение в очередь без ожидания.

        Returns:
            False, если соединение закрыто или очередь переполнена
        """
        if self.closed:
            return False
        try:
            self.outbox.put_nowait(text)
        except asyncio.QueueFull:
            return False
        return True

    def start_writer(self) -> None:
        """Запустить задачу, отправляющую сообщения из очереди."""
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop())

    async def stop_writer(self) -> None:
        """Остановить писателя; неотправленные сообщения отбрасываются."""
        self.closed = True
        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
            self._writer = None

    async def _write_loop(self) -> None:
        while not self.closed:
            text = await self.outbox.get()
            try:
                await self.websocket.send_text(text)
            except Exception as e:
                # Соединение разорвано: дальше сообщения не принимаем
                self.closed = True
                await log_debug(
                    f"Отправка в соединение #{self.connection_id} не удалась: {e}",
                    extra={"user_id": self.user_id, "group": self.group_name},
                )
                return


class ConnectionManager:
    """
    Менеджер WebSocket соединений.

    Поддерживает:
    - Подключение/отключение клиентов
    - Рассылку сообщения всем соединениям группы (участники и наблюдатели)
    - Персональные сообщения
    """

    def __init__(self, queue_size: int = 256) -> None:
        self._queue_size = queue_size
        self._connections: dict[int, ConnectionHandle] = {}

        # Для статистики
        self._total_connections: int = 0
        self._total_messages_sent: int = 0
        self._total_messages_dropped: int = 0

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    def connect(self, websocket: TextSocket, user_name: str, start_writer: bool = True) -> ConnectionHandle:
        """
        Зарегистрировать принятое соединение.

        Args:
            websocket: Транспорт (уже принятый)
            user_name: Имя по умолчанию до регистрации
            start_writer: Запустить задачу отправки
        """
        handle = ConnectionHandle(
            websocket=websocket,
            user_name=user_name,
            queue_size=self._queue_size,
        )
        self._connections[handle.connection_id] = handle
        self._total_connections += 1
        if start_writer:
            handle.start_writer()
        return handle

    async def disconnect(self, handle: ConnectionHandle) -> None:
        """Убрать соединение из рассылки и остановить его писателя."""
        self._connections.pop(handle.connection_id, None)
        await handle.stop_writer()

    def group_handles(self, group_name: str) -> list[ConnectionHandle]:
        """Открытые соединения с тегом группы."""
        return [
            handle
            for handle in self._connections.values()
            if handle.group_name == group_name and not handle.closed
        ]

    def send_personal(self, handle: ConnectionHandle, message: dict[str, Any]) -> bool:
        """Отправить сообщение одному соединению."""
        return self._deliver(handle, json.dumps(message, ensure_ascii=False))

    def broadcast_to_group(self, group_name: str, message: dict[str, Any]) -> int:
        """
        Отправить сообщение всем соединениям группы.

        Сообщение сериализуется один раз. Закрытые соединения и переполненные
        очереди пропускаются без повторов.

        Returns:
            Количество соединений, получивших сообщение в очередь
        """
        text = json.dumps(message, ensure_ascii=False)
        sent_count = 0
        for handle in self.group_handles(group_name):
            if self._deliver(handle, text):
                sent_count += 1
        return sent_count

    def broadcast_roster(self, group_name: str, roster: list[MemberRecord]) -> int:
        """Разослать группе её полный состав."""
        return self.broadcast_to_group(group_name, UsersEnvelope(users=roster).to_wire())

    def _deliver(self, handle: ConnectionHandle, text: str) -> bool:
        if handle.enqueue(text):
            self._total_messages_sent += 1
            return True
        self._total_messages_dropped += 1
        return False

    def get_stats(self) -> dict[str, Any]:
        """Получить статистику."""
        return {
            "active_connections": len(self._connections),
            "total_connections_ever": self._total_connections,
            "total_messages_sent": self._total_messages_sent,
            "total_messages_dropped": self._total_messages_dropped,
            "connections_by_role": self._count_by_role(),
        }

    def _count_by_role(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for handle in self._connections.values():
            role = handle.role.value if handle.is_registered else "unregistered"
            counts[role] = counts.get(role, 0) + 1
        return counts

    def has_other_connection(
        self,
        handle: ConnectionHandle,
        user_id: str,
        group_name: str | None = None,
        role: ConnectionRole | None = None,
    ) -> bool:
        """
        Есть ли другое открытое соединение того же пользователя.

        Нужен, чтобы закрытие старого соединения после переподключения
        не удалило запись, которую уже обновляет новое.
        """
        for other in self._connections.values():
            if other is handle or other.closed or other.user_id != user_id:
                continue
            if group_name is not None and other.group_name != group_name:
                continue
            if role is not None and other.role != role:
                continue
            return True
        return False
