"""
Диспетчер протокола хаба.

Разбирает входящие сообщения по типу и вызывает операции реестра,
лимитера и рассылки. Любое некорректное сообщение логируется и
игнорируется: соединение при этом не закрывается.
"""

from __future__ import annotations

import json
import time
from functools import partial
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ValidationError

from speed_tracker.common.constants import ConnectionRole, InboundType
from speed_tracker.common.logger import log_debug, log_info, log_warning
from speed_tracker.config.loader import TrackerSettings
from speed_tracker.services.realtime_hub.connection_manager import ConnectionHandle, ConnectionManager
from speed_tracker.services.realtime_hub.rate_limiter import HornRateLimiter
from speed_tracker.services.realtime_hub.registry import GroupRegistry, RosterCallback
from speed_tracker.shared.models.member import MemberRecord
from speed_tracker.shared.models.messages import (
    Envelope,
    ErrorEnvelope,
    GroupHornEnvelope,
    HornMessage,
    JoinMessage,
    PongEnvelope,
    RegisterMessage,
    SpeedMessage,
)


Handler = Callable[[ConnectionHandle, Any], Awaitable[None]]


class ProtocolDispatcher:
    """
    Обработчик сообщений одного хаба.

    Переходы состояния соединения: незарегистрированное -> участник
    (register / speed) или -> наблюдатель (join). Смена группы или роли
    сначала снимает прежнее членство, чтобы запись не осталась висеть
    в старой группе.
    """

    def __init__(
        self,
        registry: GroupRegistry,
        manager: ConnectionManager,
        rate_limiter: HornRateLimiter,
        tracker: TrackerSettings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.manager = manager
        self.rate_limiter = rate_limiter
        self.tracker = tracker
        self._clock = clock

        self._handlers: dict[str, tuple[type[BaseModel] | None, Handler]] = {
            InboundType.REGISTER.value: (RegisterMessage, self.on_register),
            InboundType.JOIN.value: (JoinMessage, self.on_join),
            InboundType.SPEED.value: (SpeedMessage, self.on_speed),
            InboundType.HORN.value: (HornMessage, self.on_horn),
            InboundType.GROUP_HORN.value: (HornMessage, self.on_horn),
            InboundType.PING.value: (None, self.on_ping),
        }

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def roster_broadcaster(self, group_name: str) -> RosterCallback:
        """Колбэк для реестра: разослать полный состав группы."""
        return partial(self.manager.broadcast_roster, group_name)

    # === ВХОД ===

    async def handle_raw(self, handle: ConnectionHandle, raw: str | bytes) -> None:
        """
        Разобрать и обработать одно входящее сообщение.

        Некорректный JSON, не-объект, неизвестный тип и ошибки валидации
        только логируются. ValueError покрывает JSONDecodeError, ошибки
        декодирования UTF-8 и слишком длинные целые; RecursionError -
        слишком глубокую вложенность.
        """
        try:
            data = json.loads(raw)
        except (ValueError, RecursionError) as e:
            await log_warning(
                f"Некорректное сообщение от соединения #{handle.connection_id}: {e}",
                extra={"user_id": handle.user_id},
            )
            return

        if not isinstance(data, dict):
            await log_warning(
                f"Сообщение от соединения #{handle.connection_id} не является объектом",
                extra={"user_id": handle.user_id},
            )
            return

        await self.dispatch(handle, data)

    async def dispatch(self, handle: ConnectionHandle, data: dict[str, Any]) -> None:
        """Вызвать обработчик по полю type."""
        try:
            msg_type = Envelope.model_validate(data).type
        except ValidationError:
            await log_warning(
                "Сообщение без поля type",
                extra={"user_id": handle.user_id, "keys": list(data)},
            )
            return

        entry = self._handlers.get(msg_type)
        if entry is None:
            await log_warning(
                f"Неизвестный тип сообщения: {msg_type}",
                extra={"user_id": handle.user_id},
            )
            return

        model, handler = entry
        if model is None:
            await handler(handle, data)
            return

        try:
            message = model.model_validate(data)
        except ValidationError as e:
            await log_warning(
                f"Некорректное сообщение {msg_type}: {e.error_count()} ошибок",
                extra={"user_id": handle.user_id, "errors": e.errors(include_url=False)},
            )
            return

        await handler(handle, message)

    # === ОБРАБОТЧИКИ ===

    async def on_register(self, handle: ConnectionHandle, message: RegisterMessage) -> None:
        """Регистрация участника: теги соединения + запись в группе."""
        user_id = message.user_id or handle.user_id
        if not user_id:
            await log_warning(
                f"register без userId от соединения #{handle.connection_id}",
            )
            return

        group_name = message.group_name or handle.group_name or self.tracker.DEFAULT_GROUP_NAME
        user_name = message.user_name or self._known_name(handle, user_id)

        await self._leave_previous(handle, user_id, group_name)
        handle.user_id = user_id
        handle.user_name = user_name
        handle.group_name = group_name
        handle.role = ConnectionRole.PARTICIPANT

        await self.registry.touch_member(
            group_name,
            user_id,
            user_name,
            self.now_ms(),
            on_change=self.roster_broadcaster(group_name),
        )
        await log_info(
            f"Пользователь зарегистрирован: {user_name} ({user_id}) в группе {group_name}",
            extra={"user_id": user_id, "group": group_name},
        )

    async def on_join(self, handle: ConnectionHandle, message: JoinMessage) -> None:
        """
        Подключение наблюдателя.

        Запись участника не создаётся, группа тоже: наблюдатель получает
        текущий состав (возможно, пустой) вместе с остальными соединениями.
        """
        group_name = message.group_name or handle.group_name or self.tracker.DEFAULT_GROUP_NAME

        if handle.user_id:
            await self._leave_previous(handle, None, None)
        handle.group_name = group_name
        handle.role = ConnectionRole.VIEWER

        async with self.registry.locked(group_name) as group:
            roster = group.roster() if group else []
            self.roster_broadcaster(group_name)(roster)

        await log_info(
            f"Наблюдатель подключился к группе {group_name}",
            extra={"group": group_name, "members": len(roster)},
        )

    async def on_speed(self, handle: ConnectionHandle, message: SpeedMessage) -> None:
        """
        Отчёт о скорости.

        Регистрация не обязательна: контекст пользователя и группы берётся
        из сообщения, а при его отсутствии - из тегов соединения.
        """
        user_id = message.user_id or handle.user_id
        if not user_id:
            await log_warning(
                f"speed без userId от соединения #{handle.connection_id}",
            )
            return

        group_name = message.group_name or handle.group_name or self.tracker.DEFAULT_GROUP_NAME
        user_name = message.user_name or self._known_name(handle, user_id)

        await self._leave_previous(handle, user_id, group_name)
        handle.user_id = user_id
        handle.user_name = user_name
        handle.group_name = group_name
        handle.role = ConnectionRole.PARTICIPANT

        incoming = MemberRecord(
            user_id=user_id,
            user_name=user_name,
            speed=message.speed,
            max_speed=message.max_speed,
            lat=message.lat,
            lon=message.lon,
            heading=message.heading,
            timestamp=self.now_ms(),
        )
        await self.registry.upsert_member(
            group_name,
            incoming,
            on_change=self.roster_broadcaster(group_name),
        )
        await log_debug(
            f"Скорость обновлена - {user_name}: {message.speed} km/h",
            extra={"user_id": user_id, "group": group_name},
        )

    async def on_horn(self, handle: ConnectionHandle, message: HornMessage) -> None:
        """
        Групповой сигнал.

        Группа должна существовать. При нарушении интервала отправитель
        получает приватную ошибку, рассылки нет.
        """
        group_name = message.group_name or handle.group_name
        user_id = message.user_id or handle.user_id

        if not group_name or not self.registry.has_group(group_name):
            await log_warning(
                f"Сигнал для несуществующей группы {group_name} отброшен",
                extra={"user_id": user_id},
            )
            return
        if not user_id:
            await log_warning(f"Сигнал без userId в группе {group_name} отброшен")
            return

        cooldown = self.tracker.HORN_COOLDOWN_SECONDS
        decision = self.rate_limiter.try_consume(user_id, self._clock(), cooldown)
        if not decision.allowed:
            remaining = decision.remaining_seconds
            self.manager.send_personal(
                handle,
                ErrorEnvelope(
                    message=f"Espera {remaining} segundos antes de volver a tocar la bocina",
                    remaining=remaining,
                ).to_wire(),
            )
            await log_info(
                f"Сигнал отклонён лимитом: {user_id}, осталось {remaining} с",
                extra={"user_id": user_id, "group": group_name, "remaining": remaining},
            )
            return

        user_name = message.user_name or self._known_name(handle, user_id)
        sent = self.manager.broadcast_to_group(
            group_name,
            GroupHornEnvelope(
                user_id=user_id,
                user_name=user_name,
                group_name=group_name,
                timestamp=self.now_ms(),
            ).to_wire(),
        )
        await log_info(
            f"Сигнал от {user_name} ({user_id}) в группе {group_name}",
            extra={"user_id": user_id, "group": group_name, "recipients": sent},
        )

    async def on_ping(self, handle: ConnectionHandle, data: dict[str, Any]) -> None:
        self.manager.send_personal(handle, PongEnvelope().to_wire())

    # === ОТКЛЮЧЕНИЕ ===

    async def on_disconnect(self, handle: ConnectionHandle) -> None:
        """
        Закрытие соединения: снять членство, удалить запись лимитера,
        остановить отправку.

        Членство снимается до первого реального ожидания: при отмене
        задачи соединения (остановка сервера) запись не должна остаться
        в группе.
        """
        handle.closed = True

        user_id = handle.user_id
        if handle.role == ConnectionRole.PARTICIPANT and user_id:
            await self._retract(handle, user_id, handle.group_name)

        if user_id and not self.manager.has_other_connection(handle, user_id):
            self.rate_limiter.discard(user_id)

        await log_info(
            f"Соединение #{handle.connection_id} закрыто",
            extra={"user_id": user_id, "group": handle.group_name},
        )

        await self.manager.disconnect(handle)

    # === ВСПОМОГАТЕЛЬНОЕ ===

    def _known_name(self, handle: ConnectionHandle, user_id: str) -> str:
        """Имя из тегов соединения, если это тот же пользователь."""
        if handle.user_id == user_id:
            return handle.user_name
        return self.tracker.DEFAULT_USER_NAME

    async def _leave_previous(
        self,
        handle: ConnectionHandle,
        user_id: str | None,
        group_name: str | None,
    ) -> None:
        """Снять прежнее членство, если пользователь или группа меняются."""
        if handle.role != ConnectionRole.PARTICIPANT or not handle.user_id:
            return
        if handle.user_id == user_id and handle.group_name == group_name:
            return
        await self._retract(handle, handle.user_id, handle.group_name)

    async def _retract(self, handle: ConnectionHandle, user_id: str, group_name: str | None) -> None:
        if not group_name:
            return
        if self.manager.has_other_connection(
            handle, user_id, group_name=group_name, role=ConnectionRole.PARTICIPANT
        ):
            return

        roster = await self.registry.remove_member(
            group_name,
            user_id,
            on_change=self.roster_broadcaster(group_name),
        )
        if roster is not None:
            await log_info(
                f"Пользователь отключён: {user_id} из группы {group_name}",
                extra={"user_id": user_id, "group": group_name, "remaining": len(roster)},
            )
