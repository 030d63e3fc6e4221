# -*- coding: utf-8 -*-
# gramledger/app/core/database_core.py
# =============================================================================
# Назначение кода:
#   • Единая точка работы с БД GRAM Ledger (SQLAlchemy 2.0 async).
#   • Declarative Base для всех моделей.
#   • Создание AsyncEngine и async_sessionmaker.
#   • transaction(): единица работы «сессия + транзакция» для денежных путей.
#   • Health/self-healing-утилиты (db_ping, reset_engine).
#
# Канон / инварианты:
#   • Только async-движок: asyncpg в проде, aiosqlite локально и в тестах.
#   • Сессии expire_on_commit=False, autoflush=False.
#   • Любая денежная операция = одна транзакция, покрывающая чтение баланса,
#     запись счёта и запись журнала. Ошибка на любом шаге откатывает всё.
#   • Сбой хранилища наружу - только StorageError (ничего не закоммичено).
#
# ИИ-защита:
#   • SQLite: каждая транзакция открывается как BEGIN IMMEDIATE, поэтому
#     писатели сериализуются так же, как при SELECT ... FOR UPDATE в PostgreSQL.
#   • SQLite не знает схем: схема моделей транслируется в None.
#
# Запреты:
#   • Никакой бизнес-логики (начисления, списания) в этом модуле.
#   • Никаких create_all при импорте - DDL живёт в миграциях.
# =============================================================================

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from sqlalchemy import TIMESTAMP, BigInteger, Integer, JSON, event, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from gramledger.app.core.config_core import Settings, get_settings
from gramledger.app.core.errors_core import StorageError
from gramledger.app.core.logging_core import get_logger

logger = get_logger(__name__)

# -----------------------------------------------------------------------------
# Declarative Base и переносимые типы колонок
# -----------------------------------------------------------------------------
# SQLite автоинкрементит только INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")
JsonDoc = JSON().with_variant(JSONB(), "postgresql")


class UTCDateTime(TypeDecorator):
    """
    TIMESTAMP WITH TIME ZONE, который всегда отдаёт aware-datetime в UTC.
    SQLite хранит время строкой без зоны: пишем UTC, при чтении помечаем UTC.
    """

    impl = TIMESTAMP(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        # время без зоны = UTC
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            value = value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


def utcnow() -> datetime:
    """Текущее время в UTC с tzinfo=UTC."""
    return datetime.now(tz=timezone.utc)


class Base(DeclarativeBase):
    """Единый declarative Base проекта (метаданные для Alembic и тестов)."""


# -----------------------------------------------------------------------------
# Фабрики движка и сессий
# -----------------------------------------------------------------------------
def _install_sqlite_immediate_begin(engine: AsyncEngine) -> None:
    """
    Отключает неявные транзакции pysqlite и открывает каждую транзакцию
    через BEGIN IMMEDIATE (блокировка записи берётся сразу).
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(
    url: str,
    *,
    schema: Optional[str] = None,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 20,
) -> AsyncEngine:
    """
    Создаёт AsyncEngine под указанный DSN.

    • PostgreSQL: пул по настройкам, pool_pre_ping.
    • SQLite: BEGIN IMMEDIATE, busy-timeout 30 с, схема транслируется в None.
    """
    if url.startswith("sqlite"):
        options: Dict[str, Any] = {}
        if schema:
            options["schema_translate_map"] = {schema: None}
        engine = create_async_engine(
            url,
            echo=echo,
            connect_args={"timeout": 30},
            execution_options=options,
        )
        _install_sqlite_immediate_begin(engine)
        return engine

    return create_async_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        echo=echo,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Строит async_sessionmaker поверх движка.

    • expire_on_commit=False - объекты валидны после commit() (нужно, чтобы
      отдавать записи журнала и слать уведомления уже после фиксации).
    • autoflush=False - flush делаем явно.
    """
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        class_=AsyncSession,
    )


# -----------------------------------------------------------------------------
# Единица работы
# -----------------------------------------------------------------------------
@asynccontextmanager
async def transaction(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """
    Открывает сессию и транзакцию; commit при выходе, rollback при исключении.

    Вложенные вызовы (движок наград → мутатор счёта → журнал) получают эту же
    сессию и не коммитят сами.

        async with transaction(factory) as session:
            await mutator.apply_delta(session, ...)
    """
    async with session_factory() as session:
        try:
            async with session.begin():
                yield session
        except IntegrityError:
            raise
        except (OperationalError, DBAPIError) as exc:
            logger.error(
                "Transaction failed, nothing committed",
                extra={"error_type": type(exc).__name__},
            )
            raise StorageError(details={"reason": type(getattr(exc, "orig", exc)).__name__}) from exc


# -----------------------------------------------------------------------------
# Движок из настроек, пересоздание, health
# -----------------------------------------------------------------------------
_engine_lock = asyncio.Lock()


def engine_from_settings(settings: Optional[Settings] = None) -> AsyncEngine:
    """AsyncEngine по DATABASE_URL и пул-параметрам из Settings."""
    settings = settings or get_settings()
    url = settings.database_url_async()
    logger.info("Creating async DB engine", extra={"driver": url.split("://", 1)[0]})
    return build_engine(
        url,
        schema=settings.DB_SCHEMA_CORE,
        echo=settings.DEBUG,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
    )


async def reset_engine(
    engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Optional[Settings] = None,
) -> AsyncEngine:
    """
    Пересоздаёт движок (смена DSN, тяжёлый сбой пула) и перепривязывает к нему
    существующую фабрику сессий. Сервисы держат ту же фабрику и ничего не
    замечают. Старый движок закрывается через dispose().
    """
    async with _engine_lock:
        new_engine = engine_from_settings(settings)
        session_factory.configure(bind=new_engine)
        logger.info("DB engine has been reset")
        await engine.dispose()
    return new_engine


async def db_ping(engine: AsyncEngine) -> bool:
    """SELECT 1: True - БД отвечает, False - нет (ошибка логируется)."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (OperationalError, DBAPIError, OSError) as exc:
        logger.error("DB ping failed: DB is not reachable", extra={"error": str(exc)})
        return False


__all__ = [
    "Base",
    "BigIntPK",
    "JsonDoc",
    "UTCDateTime",
    "utcnow",
    "AsyncSession",
    "AsyncEngine",
    "build_engine",
    "build_session_factory",
    "transaction",
    "engine_from_settings",
    "reset_engine",
    "db_ping",
]
