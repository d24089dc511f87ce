"""
FastAPI приложение realtime хаба.

WebSocket endpoints:
- /ws - протокол хаба (register, join, speed, horn, ping)
- / - то же самое для клиентов, подключающихся к корню

REST endpoints:
- GET /health - проверка здоровья и агрегаты реестра
- GET /users - все участники всех групп
- GET /groups - группы с количеством и составом
- GET /groups/{name} - одна группа или 404
- GET /stats - статистика соединений
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from starlette.websockets import WebSocketDisconnect

from speed_tracker.common.logger import log_error, log_info, setup_logging
from speed_tracker.config import settings
from speed_tracker.services.realtime_hub.hub import RealtimeHub
from speed_tracker.shared.models.common import (
    GroupListResponse,
    GroupSummary,
    HealthStatus,
    StatsResponse,
    UsersResponse,
)


def _get_hub(request: Request) -> RealtimeHub:
    return request.app.state.hub


def create_app(hub: RealtimeHub | None = None) -> FastAPI:
    """
    Создать приложение.

    Args:
        hub: Готовый хаб (в тестах - с управляемыми часами)
    """
    hub = hub or RealtimeHub(settings.tracker)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        await hub.start()
        await log_info(
            f"Хаб {settings.system.PROJECT_NAME} запущен на "
            f"{settings.deployment.HUB_HOST}:{settings.deployment.HUB_PORT}",
        )

        yield

        await hub.stop()
        await log_info("Хаб остановлен")

    app = FastAPI(
        title="Speed Tracker Hub",
        description="WebSocket хаб присутствия: состав групп, скорость и групповой сигнал.",
        version=settings.system.VERSION,
        lifespan=lifespan,
    )
    app.state.hub = hub

    # CORS: браузерные клиенты читают /health и /users с других origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === HEALTH CHECK ===

    @app.get("/health", response_model=HealthStatus, tags=["Health"])
    async def health_check(request: Request) -> HealthStatus:
        """Проверка здоровья сервиса."""
        current = _get_hub(request)
        return HealthStatus(
            service=settings.system.PROJECT_NAME,
            status="ok",
            version=settings.system.VERSION,
            total_members=current.registry.total_members,
            total_groups=current.registry.total_groups,
            timestamp=current.now_ms(),
        )

    # === LISTING ===

    @app.get("/users", response_model=UsersResponse, tags=["Groups"])
    async def list_users(request: Request) -> UsersResponse:
        """Все участники всех групп."""
        users = _get_hub(request).registry.all_members()
        return UsersResponse(users=users, count=len(users))

    @app.get("/groups", response_model=GroupListResponse, tags=["Groups"])
    async def list_groups(request: Request) -> GroupListResponse:
        """Группы с количеством участников и полным составом."""
        registry = _get_hub(request).registry
        groups = []
        for name in registry.group_names():
            users = registry.snapshot(name)
            if users:
                groups.append(GroupSummary(name=name, count=len(users), users=users))
        return GroupListResponse(
            groups=groups,
            total_groups=len(groups),
            total_members=sum(group.count for group in groups),
        )

    @app.get("/groups/{group_name}", response_model=GroupSummary, tags=["Groups"])
    async def get_group(group_name: str, request: Request) -> GroupSummary:
        """Одна группа; 404 для неизвестного имени."""
        users = _get_hub(request).registry.snapshot(group_name)
        if not users:
            raise HTTPException(status_code=404, detail=f"Группа {group_name} не найдена")
        return GroupSummary(name=group_name, count=len(users), users=users)

    # === STATS ===

    @app.get("/stats", response_model=StatsResponse, tags=["Stats"])
    async def get_stats(request: Request) -> StatsResponse:
        """Получить статистику соединений."""
        return StatsResponse(**_get_hub(request).manager.get_stats())

    # === WEBSOCKET ===

    @app.websocket("/ws")
    async def websocket_hub(websocket: WebSocket) -> None:
        await serve_connection(websocket, hub)

    @app.websocket("/")
    async def websocket_root(websocket: WebSocket) -> None:
        await serve_connection(websocket, hub)

    return app


async def serve_connection(websocket: WebSocket, hub: RealtimeHub) -> None:
    """
    Обслуживать одно соединение до его закрытия.

    Входящие кадры обрабатываются строго по очереди; после выхода из цикла
    членство снимается до того, как соединение будет забыто.
    """
    await websocket.accept()
    handle = hub.manager.connect(websocket, hub.tracker.DEFAULT_USER_NAME)

    client = websocket.client
    await log_info(
        f"Новое WebSocket соединение #{handle.connection_id} от {client.host if client else 'unknown'}",
    )

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            await hub.dispatcher.handle_raw(handle, raw)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        await log_error(
            f"Ошибка в WebSocket соединении #{handle.connection_id}: {e}",
            extra={"user_id": handle.user_id, "group": handle.group_name},
            exc_info=True,
        )
    finally:
        await hub.dispatcher.on_disconnect(handle)


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.deployment.HUB_HOST, port=settings.deployment.HUB_PORT)
