"""
Сборка компонентов хаба в один объект.
"""

from __future__ import annotations

import time
from typing import Callable

from speed_tracker.config.loader import TrackerSettings
from speed_tracker.services.realtime_hub.connection_manager import ConnectionManager
from speed_tracker.services.realtime_hub.dispatcher import ProtocolDispatcher
from speed_tracker.services.realtime_hub.rate_limiter import HornRateLimiter
from speed_tracker.services.realtime_hub.registry import GroupRegistry
from speed_tracker.services.realtime_hub.sweeper import StaleSweeper


class RealtimeHub:
    """
    Реестр групп, соединения, лимитер, диспетчер и очистка
    с общими часами и настройками.
    """

    def __init__(
        self,
        tracker: TrackerSettings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.tracker = tracker
        self.clock = clock
        self.registry = GroupRegistry()
        self.manager = ConnectionManager(queue_size=tracker.OUTBOUND_QUEUE_SIZE)
        self.rate_limiter = HornRateLimiter()
        self.dispatcher = ProtocolDispatcher(
            self.registry,
            self.manager,
            self.rate_limiter,
            tracker,
            clock=clock,
        )
        self.sweeper = StaleSweeper(
            self.registry,
            self.manager,
            self.rate_limiter,
            tracker,
            clock=clock,
        )

    def now_ms(self) -> int:
        return int(self.clock() * 1000)

    async def start(self) -> None:
        await self.sweeper.start()

    async def stop(self) -> None:
        await self.sweeper.stop()
