# -*- coding: utf-8 -*-
# gramledger/app/schemas/common_schemas.py
# =============================================================================
# Назначение кода:
# Базовые Pydantic-схемы GRAM Ledger для всех API: курсорная пагинация,
# типовые ответы/ошибки. Единый контракт для фронтенда.
#
# Канон / инварианты:
# • Суммы GRAM - целые числа (int), без дробной части.
# • Листинги используют курсорную пагинацию (без OFFSET).
#
# Запреты:
# • Нет бизнес-логики - только декларативные DTO.
# =============================================================================

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field


def _server_time() -> str:
    return datetime.now(timezone.utc).isoformat()


class ErrorResponse(BaseModel):
    """Стандартная форма ошибки (то, что отдаёт errors_core.to_payload)."""

    error: str = Field(..., description="Короткий код ошибки (snake_case)")
    message: str = Field(..., description="Человеко-читаемое описание проблемы")
    details: Optional[Dict[str, Any]] = Field(None, description="Безопасные детали")


# Документация OpenAPI: какие коды ошибок отдают доменные ручки
ERROR_RESPONSES: Dict[int | str, Dict[str, Any]] = {
    code: {"model": ErrorResponse} for code in (400, 404, 409, 422, 503)
}


T = TypeVar("T")


class CursorPage(BaseModel, Generic[T]):
    """
    Контейнер страницы списка:
      • items - элементы текущей выборки;
      • next_cursor - курсор следующей страницы (или None);
      • server_time - отметка времени формирования ответа.
    """

    items: List[T] = Field(..., description="Элементы текущей страницы")
    next_cursor: Optional[str] = Field(None, description="Курсор следующей страницы или None")
    server_time: str = Field(default_factory=_server_time, description="UTC-время ответа (ISO-8601)")


class ORMModel(BaseModel):
    """База DTO, собираемых из ORM-объектов (model_validate(obj))."""

    model_config = ConfigDict(from_attributes=True)


__all__ = ["ERROR_RESPONSES", "ErrorResponse", "CursorPage", "ORMModel"]
