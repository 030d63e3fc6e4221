# -*- coding: utf-8 -*-
# gramledger/app/deps.py
# =============================================================================
# GRAM Ledger - Общие зависимости FastAPI: контейнер сервисов, админ-гейт,
#               keyset-пагинация журнала, ETag.
# -----------------------------------------------------------------------------
# Канон/требования:
#   • Сервисы берутся ТОЛЬКО из app.state.container (никаких синглтонов).
#   • Админ-ручки требуют заголовок X-Admin-Token == ADMIN_API_TOKEN.
#   • Списки - только cursor-based (keyset) пагинация.
#
# Этот модуль НЕ делает бизнес-логику, только инфраструктуру/валидацию.
# =============================================================================
from __future__ import annotations

import hashlib
import json
import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, Header, HTTPException, Query, Request, status

from gramledger.app.core.logging_core import get_logger
from gramledger.app.core.utils_core import as_utc
from gramledger.app.services.container import Container
from gramledger.app.services.ledger_service import LedgerFilters

logger = get_logger(__name__)


def get_container(request: Request) -> Container:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is starting")
    return container


# -----------------------------------------------------------------------------
# Админ-гейт
# -----------------------------------------------------------------------------
async def require_admin(
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    container: Container = Depends(get_container),
) -> str:
    expected = container.settings.ADMIN_API_TOKEN
    if not expected:
        logger.warning("Admin endpoint called but ADMIN_API_TOKEN is not configured")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin API is disabled")
    if not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return x_admin_token


# -----------------------------------------------------------------------------
# Фильтры/пагинация журнала (query-параметры)
# -----------------------------------------------------------------------------
async def ledger_filters(
    kind: Optional[List[str]] = Query(None, description="Виды записей (можно несколько)"),
    date_from: Optional[datetime] = Query(None, description="Начало периода (включительно)"),
    date_to: Optional[datetime] = Query(None, description="Конец периода (не включительно)"),
    status_: Optional[str] = Query(None, alias="status", pattern="^(pending|completed|failed)$"),
    cursor: Optional[str] = Query(None, description="Keyset cursor b64(ts|id)"),
    limit: Optional[int] = Query(None, ge=1, description="Размер страницы"),
    container: Container = Depends(get_container),
) -> LedgerFilters:
    settings = container.settings
    page_size = min(limit or settings.LEDGER_PAGE_DEFAULT, settings.LEDGER_PAGE_MAX)
    return LedgerFilters(
        kinds=kind,
        date_from=as_utc(date_from),
        date_to=as_utc(date_to),
        status=status_,
        cursor=cursor,
        limit=page_size,
    )


# -----------------------------------------------------------------------------
# ETag helper
# -----------------------------------------------------------------------------
def make_etag(payload: Dict[str, Any]) -> str:
    """Детерминированный ETag из JSON-представления payload."""
    raw = json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


__all__ = ["get_container", "require_admin", "ledger_filters", "make_etag"]
