"""
Ограничение частоты групповых сигналов.

Запись user_id -> время последнего принятого сигнала общая для всех групп:
смена группы не сбрасывает ожидание, сбрасывает его только отключение.
"""

from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitDecision:
    """Результат проверки лимита."""
    allowed: bool
    remaining: float = 0.0

    @property
    def remaining_seconds(self) -> int:
        """Оставшееся ожидание, округлённое вверх до целых секунд."""
        if self.allowed:
            return 0
        return max(1, math.ceil(self.remaining))


class HornRateLimiter:
    """
    Лимитер сигналов по пользователю.

    try_consume не содержит await между проверкой и записью, поэтому
    в пределах одного event loop проверка и обновление атомарны.
    """

    def __init__(self) -> None:
        self._last_signal: dict[str, float] = {}

    def try_consume(self, user_id: str, now: float, cooldown: float) -> RateLimitDecision:
        """
        Попытаться принять сигнал.

        Args:
            user_id: Пользователь
            now: Текущее время (секунды)
            cooldown: Минимальный интервал между сигналами (секунды)
        """
        last = self._last_signal.get(user_id)
        if last is not None:
            elapsed = now - last
            if elapsed < cooldown:
                return RateLimitDecision(allowed=False, remaining=cooldown - elapsed)

        self._last_signal[user_id] = now
        return RateLimitDecision(allowed=True)

    def discard(self, user_id: str) -> None:
        """Удалить запись пользователя (при отключении)."""
        self._last_signal.pop(user_id, None)

    def prune(self, now: float, cooldown: float) -> int:
        """
        Удалить записи, ожидание по которым уже истекло.

        Такие записи больше ничего не запрещают; чистка ограничивает рост
        словаря для клиентов, пропавших без закрытия соединения.

        Returns:
            Количество удалённых записей
        """
        expired = [user_id for user_id, last in self._last_signal.items() if now - last >= cooldown]
        for user_id in expired:
            del self._last_signal[user_id]
        return len(expired)

    def last_signal_time(self, user_id: str) -> float | None:
        return self._last_signal.get(user_id)

    def __len__(self) -> int:
        return len(self._last_signal)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._last_signal
