# ==============================================================================
# GRAM Ledger - FastAPI application factory
# ------------------------------------------------------------------------------
# Назначение: создаёт и конфигурирует FastAPI-приложение GRAM Ledger:
# подключает middleware корреляции, обработчики ошибок, роутеры и /health,
# а в lifespan поднимает и гасит Container сервисов.
#
# Канон/инварианты:
#   • Балансы меняют только сервисы (AccountMutator); фабрика денег не двигает.
#   • Сервисы живут в app.state.container - одна сборка на приложение.
#   • Ошибки отдаются единым JSON {error, message, details} (errors_core).
#
# Запреты:
#   • Не запускает бота и фоновые задачи - только HTTP-API.
# ==============================================================================
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI

from .core import boot_core, core_health
from .core.config_core import get_settings
from .core.database_core import db_ping
from .core.errors_core import setup_exception_handlers
from .core.logging_core import CorrelationIdMiddleware, get_logger
from .models import models_health
from .routes import list_registered_routes, register
from .services.container import Container

logger = get_logger(__name__)


def create_app(container: Optional[Container] = None) -> FastAPI:
    """
    Создать FastAPI-приложение.

    container - готовая сборка сервисов (тесты передают свою с SQLite-движком);
    по умолчанию Container собирается из настроек окружения.
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        boot_core()
        await app.state.container.startup()
        try:
            yield
        finally:
            await app.state.container.shutdown()

    app = FastAPI(title=settings.PROJECT_NAME, version=settings.APP_VERSION, lifespan=lifespan)
    app.state.container = container or Container(settings)
    app.add_middleware(CorrelationIdMiddleware)
    setup_exception_handlers(app)
    register(app, prefix=settings.API_PREFIX)

    @app.get("/health", tags=["health"])
    async def health() -> Dict[str, Any]:
        """Живость сервиса: ping БД, полнота моделей и отчёт core_health()."""
        db_ok = await db_ping(app.state.container.engine)
        models = models_health()
        return {
            "status": "ok" if db_ok and models["ok"] else "degraded",
            "db": db_ok,
            "models": models,
            "core": core_health(),
            "routes": list_registered_routes(),
        }

    logger.info("FastAPI app initialised", extra={"api_prefix": settings.API_PREFIX})
    return app


__all__ = ["create_app"]

# ==============================================================================
# Пояснения «для чайника»:
#   • Этот модуль ничего не пишет в БД - только собирает приложение.
#   • Container.startup() подтягивает конфиг наград из БД; shutdown() закрывает
#     бота уведомлений и пул соединений.
#   • Миграции (alembic upgrade head) запускаются отдельно, до старта API.
# ==============================================================================
