# -*- coding: utf-8 -*-
# gramledger/app/core/config_core.py
# =============================================================================
# Назначение:
#   • Единый конфигурационный модуль GRAM Ledger (FastAPI + SQLAlchemy async).
#   • Канонический источник инфраструктурных настроек: БД, логи, Telegram,
#     пагинация журнала, лимиты реферального графа.
#
# Канон / инварианты:
#   1) Баланс пользователя - целое число GRAM, отрицательный баланс запрещён.
#   2) Ставки наград (регистрация/премиум/активность/дневные лимиты) НЕ живут
#      в ENV: это горячо перезагружаемый документ reward_config в БД
#      (services/reward_config_service.py). Здесь только значения по умолчанию
#      для инфраструктуры.
#   3) DSN приводится к async-драйверу (asyncpg для PostgreSQL, aiosqlite для
#      локальной разработки и тестов).
#
# ИИ-защита / самодиагностика:
#   • Валидаторы нормализуют пустые строки и проверяют разумность лимитов.
#   • debug_dump() отдаёт безопасный снимок без секретов.
#
# Запреты:
#   • Никакой бизнес-логики начислений в этом модуле.
#   • Никаких сетевых вызовов при импорте.
# =============================================================================

from __future__ import annotations

from functools import lru_cache
from typing import Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# Док-описания полей (используются в Swagger и как подсказки «для чайника»)
# =============================================================================


class _Doc:
    # Приложение
    PROJECT_NAME = "Имя проекта (отображается в Swagger/health)."
    ENV = "Окружение: production/dev/local (нормализуется в prod/dev/local)."
    DEBUG = "Расширенные логи и SQL-эхо (только для dev/local)."
    APP_VERSION = "Версия приложения (попадает в /health)."
    API_PREFIX = "Префикс REST API, например /api."

    # БД
    DATABASE_URL = (
        "DSN PostgreSQL или SQLite. postgres:// и postgresql:// приводятся "
        "к postgresql+asyncpg://, sqlite:// - к sqlite+aiosqlite://."
    )
    DB_POOL_SIZE = "Размер пула соединений SQLAlchemy (только PostgreSQL)."
    DB_MAX_OVERFLOW = "Дополнительные соединения в пике (только PostgreSQL)."
    DB_SCHEMA_CORE = "Схема PostgreSQL с таблицами счетов, журнала и рефералки."

    # Telegram / уведомления
    TELEGRAM_BOT_TOKEN = "Токен бота для уведомлений (env: TELEGRAM_BOT_TOKEN)."
    NOTIFY_VIA_TELEGRAM = "Отправлять уведомления через Telegram (иначе только лог)."

    # Рефералка / журнал
    REFERRAL_CODE_LENGTH = "Длина реферального кода."
    REFERRAL_CYCLE_WALK_LIMIT = "Глубина обхода предков при проверке цикла."
    LEDGER_PAGE_DEFAULT = "Размер страницы журнала по умолчанию."
    LEDGER_PAGE_MAX = "Максимальный размер страницы журнала."

    # Админка
    ADMIN_API_TOKEN = "Токен заголовка X-Admin-Token для админ-ручек."


class Settings(BaseSettings):
    """Настройки приложения. Читаются из окружения и .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # --------------------------- Приложение ---------------------------------
    PROJECT_NAME: str = Field("GRAM Ledger", description=_Doc.PROJECT_NAME)
    ENV: str = Field("local", description=_Doc.ENV)
    DEBUG: bool = Field(False, description=_Doc.DEBUG)
    APP_VERSION: str = Field("1.0.0", description=_Doc.APP_VERSION)
    API_PREFIX: str = Field("", description=_Doc.API_PREFIX)

    # --------------------------- База данных --------------------------------
    DATABASE_URL: str = Field(
        "sqlite+aiosqlite:///./gramledger.db",
        description=_Doc.DATABASE_URL,
    )
    DB_POOL_SIZE: int = Field(10, description=_Doc.DB_POOL_SIZE)
    DB_MAX_OVERFLOW: int = Field(20, description=_Doc.DB_MAX_OVERFLOW)
    DB_SCHEMA_CORE: Optional[str] = Field("gram_core", description=_Doc.DB_SCHEMA_CORE)

    # --------------------------- Telegram -----------------------------------
    TELEGRAM_BOT_TOKEN: Optional[str] = Field(None, description=_Doc.TELEGRAM_BOT_TOKEN)
    NOTIFY_VIA_TELEGRAM: bool = Field(False, description=_Doc.NOTIFY_VIA_TELEGRAM)

    # --------------------------- Рефералка / журнал -------------------------
    REFERRAL_CODE_LENGTH: int = Field(8, description=_Doc.REFERRAL_CODE_LENGTH)
    REFERRAL_CYCLE_WALK_LIMIT: int = Field(64, description=_Doc.REFERRAL_CYCLE_WALK_LIMIT)
    LEDGER_PAGE_DEFAULT: int = Field(50, description=_Doc.LEDGER_PAGE_DEFAULT)
    LEDGER_PAGE_MAX: int = Field(500, description=_Doc.LEDGER_PAGE_MAX)

    # --------------------------- Админка ------------------------------------
    ADMIN_API_TOKEN: Optional[str] = Field(None, description=_Doc.ADMIN_API_TOKEN)

    # =========================== ВАЛИДАТОРЫ (ИИ-защита) ======================

    @field_validator("DB_SCHEMA_CORE", "TELEGRAM_BOT_TOKEN", "ADMIN_API_TOKEN", mode="before")
    @classmethod
    def _v_empty_to_none(cls, value: object) -> Optional[str]:
        """Пустая строка в ENV означает «не задано»."""
        if value is None:
            return None
        text_value = str(value).strip()
        return text_value or None

    @field_validator("REFERRAL_CODE_LENGTH")
    @classmethod
    def _v_code_length(cls, value: int) -> int:
        if not 6 <= value <= 32:
            raise ValueError("REFERRAL_CODE_LENGTH должен быть в диапазоне 6..32")
        return value

    @field_validator("REFERRAL_CYCLE_WALK_LIMIT", "LEDGER_PAGE_DEFAULT", "LEDGER_PAGE_MAX")
    @classmethod
    def _v_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Лимиты должны быть > 0")
        return value

    # =========================== Удобные свойства/методы =====================

    @property
    def env_normalized(self) -> str:
        """Нормализует ENV к одному из: prod/dev/local."""
        value = (self.ENV or "").strip().lower()
        if value.startswith("prod"):
            return "prod"
        if value.startswith("dev"):
            return "dev"
        if value.startswith("loc") or value == "test":
            return "local"
        return "prod"

    @property
    def is_prod(self) -> bool:
        return self.env_normalized == "prod"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url_async().startswith("sqlite")

    def database_url_async(self) -> str:
        """
        Возвращает DSN для SQLAlchemy async:
          postgres://   → postgresql+asyncpg://
          postgresql:// → postgresql+asyncpg:// при отсутствии драйвера;
          sqlite://     → sqlite+aiosqlite://.
        """
        if not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL не задан.")
        url = self.DATABASE_URL
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    def debug_dump(self) -> Dict[str, str]:
        """Безопасный дамп ключевых настроек (без секретов) для /health и логов."""
        return {
            "env": self.env_normalized,
            "projectName": self.PROJECT_NAME,
            "version": self.APP_VERSION,
            "apiPrefix": self.API_PREFIX,
            "dbDriver": self.database_url_async().split("://", 1)[0],
            "schema": self.DB_SCHEMA_CORE or "-",
            "telegramNotify": str(self.NOTIFY_VIA_TELEGRAM and bool(self.TELEGRAM_BOT_TOKEN)),
            "adminTokenSet": "yes" if self.ADMIN_API_TOKEN else "no",
        }


# =============================================================================
# Синглтон настроек для всего приложения
# =============================================================================


@lru_cache()
def get_settings() -> Settings:
    """Создаёт и кэширует объект Settings."""
    return Settings()


__all__ = ["Settings", "get_settings"]
