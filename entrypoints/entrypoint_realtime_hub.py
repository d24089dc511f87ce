#!/usr/bin/env python3
"""
Entrypoint для WebSocket хаба Speed Tracker.

Запуск:
    python entrypoints/entrypoint_realtime_hub.py

Порт по умолчанию: 3001 (HUB_PORT)
"""

import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from speed_tracker.config import settings


def main() -> None:
    """Запустить хаб без main.py (отдельный контейнер)."""
    uvicorn.run(
        "speed_tracker.services.realtime_hub.app:app",
        host=settings.deployment.HUB_HOST,
        port=settings.deployment.HUB_PORT,
        reload=settings.system.DEBUG,
        log_level=settings.system.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
