#!/usr/bin/env python3
# main.py
"""
Главная точка входа Speed Tracker Hub.
Запускает WebSocket/HTTP сервер хаба через uvicorn.
"""

from __future__ import annotations

import asyncio
import sys

from speed_tracker.config import settings
from speed_tracker.common.logger import setup_logging, log_info
from speed_tracker.common.constants import TypeMsg


async def run_hub() -> None:
    """Запускает хаб (WebSocket + REST)."""
    import uvicorn

    host = settings.deployment.HUB_HOST
    port = settings.deployment.HUB_PORT

    await log_info(f"Запуск Speed Tracker Hub на {host}:{port}...", type_msg=TypeMsg.INFO)
    await log_info(f"Клиенты подключаются к ws://{host}:{port}/ws", type_msg=TypeMsg.INFO)

    config = uvicorn.Config(
        "speed_tracker.services.realtime_hub.app:app",
        host=host,
        port=port,
        log_level="debug" if settings.system.DEBUG else "info",
    )
    # SIGINT и SIGTERM обрабатывает сам uvicorn
    server = uvicorn.Server(config)

    try:
        await server.serve()
    except asyncio.CancelledError:
        await log_info("Хаб: graceful shutdown", type_msg=TypeMsg.DEBUG)
        await server.shutdown()


def print_usage() -> None:
    print(f"""
Speed Tracker Hub v{settings.system.VERSION}

Использование:
    python main.py            # Запуск хаба

Переменные окружения:
    HUB_HOST                  - адрес (по умолчанию из config/config.json)
    HUB_PORT                  - порт (по умолчанию 3001)

Endpoints:
    WS  /ws                   - протокол хаба
    GET /health               - статус и агрегаты
    GET /users                - все участники
    GET /groups               - группы и составы
    GET /groups/{{name}}        - одна группа
    GET /stats                - статистика соединений
    """)


async def main() -> None:
    setup_logging()
    await log_info(
        f"{settings.system.PROJECT_NAME} v{settings.system.VERSION} - запуск",
        type_msg=TypeMsg.INFO,
    )
    await run_hub()


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1].lower() in ("--help", "-h"):
        print_usage()
        sys.exit(0)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
