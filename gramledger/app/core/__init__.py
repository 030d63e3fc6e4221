# -*- coding: utf-8 -*-
# gramledger/app/core/__init__.py
# =============================================================================
# Назначение кода:
# Единая точка входа ядра GRAM Ledger: версия ядра, стартовая сводка
# (boot_core) и быстрые sanity-checks настроек (core_health) для /health.
#
# Канон/инварианты:
# • Источник истины - config_core.get_settings(); локальных дублей нет.
# • Денежные операции здесь НЕ выполняются.
#
# Запреты:
# • Не импортируем тяжёлые слои (models/services/routes).
# =============================================================================

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from .config_core import get_settings
from .logging_core import get_logger

# Версия ядра (повышать при несовместимых изменениях ядра)
CORE_VERSION = "1.0.0"

logger = get_logger(__name__)


def core_health() -> Dict[str, Any]:
    """
    Быстрые проверки ключевых настроек. Никаких падений - только отчёт.

    Возвращает:
        dict: { ok: bool, errors: List[str], snapshot: Dict[str, str] }
    """
    settings = get_settings()
    errors: List[str] = []

    if settings.LEDGER_PAGE_DEFAULT > settings.LEDGER_PAGE_MAX:
        errors.append("LEDGER_PAGE_DEFAULT must not exceed LEDGER_PAGE_MAX.")
    if settings.NOTIFY_VIA_TELEGRAM and not settings.TELEGRAM_BOT_TOKEN:
        errors.append("NOTIFY_VIA_TELEGRAM is on but TELEGRAM_BOT_TOKEN is empty.")
    if settings.is_prod and settings.is_sqlite:
        errors.append("SQLite is not supported in production.")
    if settings.is_prod and not settings.ADMIN_API_TOKEN:
        errors.append("ADMIN_API_TOKEN must be set in production.")

    return {"ok": not errors, "errors": errors, "snapshot": settings.debug_dump()}


def boot_core() -> Dict[str, Any]:
    """Стартовая сводка ядра: время, версия, результат core_health()."""
    settings = get_settings()
    logger.info(
        "GRAM Ledger core boot: version=%s env=%s schema=%s",
        CORE_VERSION,
        settings.env_normalized,
        settings.DB_SCHEMA_CORE or "-",
    )
    health = core_health()
    if not health["ok"]:
        logger.warning("Core health warnings: %s", health["errors"])
    return {
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "core_version": CORE_VERSION,
        "health": health,
    }


__all__ = ["CORE_VERSION", "get_settings", "boot_core", "core_health"]

# =============================================================================
# Пояснения:
# • boot_core() вызывается при старте приложения (lifespan в create_app).
# • core_health() не бросает исключений: /health показывает предупреждения,
#   а решение «пускать ли трафик» принимает оркестратор.
# =============================================================================
