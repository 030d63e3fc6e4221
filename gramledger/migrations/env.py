# -*- coding: utf-8 -*-
"""Alembic environment for GRAM Ledger (async).

Назначение:
    • Настроить Alembic для работы с async SQLAlchemy (PostgreSQL/asyncpg,
      SQLite/aiosqlite для локальной разработки).
    • Подтянуть Declarative Base со всеми моделями GRAM Ledger.
    • Запустить миграции в оффлайн/онлайн-режиме.

Канон/инварианты:
    • Не выполняет бизнес-логики и не трогает деньги, только DDL.
    • Единственный источник DSN/схемы - config_core.
    • В SQLite схемы нет: имя схемы ядра транслируется в None.

Запреты:
    • Никаких create_all здесь - DDL описана в файлах версий.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from gramledger.app.core.config_core import get_settings
from gramledger.app.core.logging_core import get_logger
from gramledger.app.models import Base

# -----------------------------------------------------------------------------
# Базовая конфигурация Alembic
# -----------------------------------------------------------------------------
config = context.config
if config.config_file_name:
    fileConfig(config.config_file_name)

logger = get_logger(__name__)
settings = get_settings()

db_url = settings.database_url_async()
config.set_main_option("sqlalchemy.url", db_url)

target_metadata = Base.metadata


def _translate_map() -> dict:
    if settings.is_sqlite and settings.DB_SCHEMA_CORE:
        return {settings.DB_SCHEMA_CORE: None}
    return {}


# -----------------------------------------------------------------------------
# Оффлайн-режим (генерация SQL без подключения)
# -----------------------------------------------------------------------------
def run_migrations_offline() -> None:
    """Запускает миграции без подключения к БД (выводит SQL)."""

    context.configure(
        url=db_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_schemas=True,
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


# -----------------------------------------------------------------------------
# Онлайн-режим (async engine)
# -----------------------------------------------------------------------------
def do_run_migrations(connection) -> None:
    """Оборачивает context.run_migrations для sync-API внутри async соединения."""

    translate = _translate_map()
    if translate:
        connection = connection.execution_options(schema_translate_map=translate)

    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        include_schemas=not translate,
        render_as_batch=settings.is_sqlite,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Создаёт async engine и запускает миграции."""

    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section) or {},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()
    logger.info("Migrations applied", extra={"db_driver": db_url.split("://", 1)[0]})


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())


# ============================================================================
# Пояснения «для чайника»:
#   • Этот файл не создаёт таблицы сам - только настраивает Alembic.
#   • URL БД берётся из .env (DATABASE_URL) и приводится к async-драйверу.
#   • target_metadata = Base.metadata: импорт gramledger.app.models
#     регистрирует все таблицы.
# ============================================================================
