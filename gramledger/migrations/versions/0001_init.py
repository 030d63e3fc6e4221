# -*- coding: utf-8 -*-
"""Initial migration for GRAM Ledger.

Назначение:
    • Создать схему ядра и все таблицы GRAM Ledger по текущим моделям.
    • Засеять каталог реферальных достижений по умолчанию.

Канон/инварианты:
    • Денежные операции и балансы не изменяются - только DDL и каталог.
    • Таблицы создаются через Declarative Base, что исключает расхождение между
      миграцией и моделями.
    • Конфиг наград не сеется: без строки reward_config действуют значения
      по умолчанию из reward_config_service.
"""

from __future__ import annotations

from alembic import op
from sqlalchemy import text

from gramledger.app.core.config_core import get_settings
from gramledger.app.core.logging_core import get_logger
from gramledger.app.models import Achievement, Base

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels = None
depends_on = None

logger = get_logger(__name__)
settings = get_settings()
SCHEMA = settings.DB_SCHEMA_CORE

ACHIEVEMENT_CATALOG = [
    {
        "id": "first_referral",
        "name": "First Referral",
        "description": "Invite your first friend",
        "icon": "🤝",
        "category": "referrals",
        "requirement_type": "referrals_count",
        "threshold": 1,
        "reward_amount": 100,
        "reward_title": None,
        "rarity": "common",
        "is_hidden": False,
        "is_active": True,
    },
    {
        "id": "referral_master",
        "name": "Referral Master",
        "description": "Invite 100 friends",
        "icon": "👑",
        "category": "referrals",
        "requirement_type": "referrals_count",
        "threshold": 100,
        "reward_amount": 10000,
        "reward_title": "Referral Master",
        "rarity": "legendary",
        "is_hidden": False,
        "is_active": True,
    },
    {
        "id": "first_thousand",
        "name": "First Thousand",
        "description": "Earn 1000 GRAM from referrals",
        "icon": "💰",
        "category": "referrals",
        "requirement_type": "total_earned",
        "threshold": 1000,
        "reward_amount": 500,
        "reward_title": None,
        "rarity": "rare",
        "is_hidden": False,
        "is_active": True,
    },
]


def _is_sqlite() -> bool:
    return op.get_bind().dialect.name == "sqlite"


def upgrade() -> None:
    """Создать схему, все таблицы/индексы из моделей и каталог достижений."""

    bind = op.get_bind()
    if SCHEMA and not _is_sqlite():
        logger.info("Creating schema if missing", extra={"schema": SCHEMA})
        bind.execute(text(f"CREATE SCHEMA IF NOT EXISTS {SCHEMA}"))
    Base.metadata.create_all(bind=bind, checkfirst=True)
    op.bulk_insert(Achievement.__table__, ACHIEVEMENT_CATALOG)


def downgrade() -> None:
    """Удалить таблицы GRAM Ledger (схему - только если она своя)."""

    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind, checkfirst=True)
    if SCHEMA and not _is_sqlite():
        logger.info("Dropping schema (cascade)", extra={"schema": SCHEMA})
        bind.execute(text(f"DROP SCHEMA IF EXISTS {SCHEMA} CASCADE"))
