# -*- coding: utf-8 -*-
# gramledger/app/routes/__init__.py
# =============================================================================
# Назначение кода:
#   Единая точка подключения HTTP-роутов GRAM Ledger:
#     • общий APIRouter (api_router), в который вмонтированы все модули;
#     • register(app, prefix="") для подключения в FastAPI;
#     • list_registered_routes() для health-диагностики.
#
# Канон/инварианты:
#   • Только проводка маршрутов: ни SQL, ни денег.
#   • Каждый модуль сам задаёт свой prefix ("/accounts", "/events", "/admin"...).
#   • Импорты жёсткие: модуль, который не импортируется, роняет старт.
# =============================================================================

from __future__ import annotations

from typing import List, Tuple

from fastapi import APIRouter, FastAPI

from gramledger.app.core.logging_core import get_logger

from . import (
    accounts_routes,
    admin_routes,
    campaigns_routes,
    events_routes,
    referrals_routes,
)

logger = get_logger(__name__)

ROUTERS: Tuple[Tuple[str, APIRouter], ...] = (
    ("accounts_routes", accounts_routes.router),
    ("events_routes", events_routes.router),
    ("referrals_routes", referrals_routes.router),
    ("campaigns_routes", campaigns_routes.router),
    ("admin_routes", admin_routes.router),
)

api_router = APIRouter()
for _name, _router in ROUTERS:
    api_router.include_router(_router)


def register(app: FastAPI, prefix: str = "") -> None:
    """Регистрирует агрегированный роутер в приложении (prefix обычно "" или "/api")."""
    app.include_router(api_router, prefix=prefix)
    logger.info("routes: registered %s (prefix=%r)", ",".join(list_registered_routes()), prefix)


def list_registered_routes() -> List[str]:
    return [name for name, _ in ROUTERS]


__all__ = ["api_router", "register", "list_registered_routes", "ROUTERS"]
