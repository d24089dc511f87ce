"""
Фоновая очистка устаревших участников.
"""

from __future__ import annotations

import asyncio
import time
from functools import partial
from typing import Callable

from speed_tracker.common.constants import TypeMsg
from speed_tracker.common.logger import log_error, log_info
from speed_tracker.config.loader import TrackerSettings
from speed_tracker.services.realtime_hub.connection_manager import ConnectionManager
from speed_tracker.services.realtime_hub.rate_limiter import HornRateLimiter
from speed_tracker.services.realtime_hub.registry import GroupRegistry


class StaleSweeper:
    """
    Периодически удаляет участников без обновлений дольше порога.

    Работает под теми же блокировками групп, что и живые обновления.
    По каждой затронутой группе рассылается один обновлённый состав;
    опустевшая группа удаляется без рассылки.
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
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def name(self) -> str:
        return "stale_sweeper"

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Запускает цикл очистки."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        await log_info(
            f"Воркер {self.name} запущен: интервал {self.tracker.SWEEP_INTERVAL_MS} мс, "
            f"порог {self.tracker.STALE_THRESHOLD_MS} мс",
            type_msg=TypeMsg.INFO,
        )

    async def stop(self) -> None:
        """Останавливает цикл очистки."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        await log_info(f"Воркер {self.name} остановлен", type_msg=TypeMsg.INFO)

    async def _loop(self) -> None:
        interval = self.tracker.SWEEP_INTERVAL_MS / 1000
        while self._running:
            await asyncio.sleep(interval)
            try:
                await self.sweep_once()
            except Exception as e:
                # Ошибка одного цикла не останавливает очистку
                await log_error(f"Ошибка в воркере {self.name}: {e}", exc_info=True)

    async def sweep_once(self, now_ms: int | None = None) -> dict[str, list[str]]:
        """
        Один проход очистки по всем группам.

        Args:
            now_ms: Текущее время в мс (по умолчанию - часы хаба)

        Returns:
            Группа -> список удалённых user_id (только затронутые группы)
        """
        if now_ms is None:
            now_ms = int(self._clock() * 1000)
        threshold = self.tracker.STALE_THRESHOLD_MS

        evicted: dict[str, list[str]] = {}
        for group_name in self.registry.group_names():
            removed, roster = await self.registry.evict_stale(
                group_name,
                now_ms,
                threshold,
                on_change=partial(self.manager.broadcast_roster, group_name),
            )
            if not removed:
                continue

            evicted[group_name] = removed
            for user_id in removed:
                await log_info(
                    f"Неактивный пользователь удалён: {user_id}",
                    extra={"user_id": user_id, "group": group_name},
                )
            if not roster:
                await log_info(f"Группа {group_name} опустела и удалена", extra={"group": group_name})

        pruned = self.rate_limiter.prune(now_ms / 1000, self.tracker.HORN_COOLDOWN_SECONDS)
        if pruned:
            await log_info(
                f"Удалено истёкших записей лимитера: {pruned}",
                type_msg=TypeMsg.DEBUG,
            )

        return evicted
