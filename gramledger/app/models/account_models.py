# -*- coding: utf-8 -*-
# gramledger/app/models/account_models.py
# =============================================================================
# Назначение кода:
#   ORM-модель домена «Счета» GRAM Ledger:
#   • Account - кошелёк пользователя и узел реферального графа.
#
# Канон/инварианты:
#   • balance - целые GRAM, всегда ≥ 0 (CHECK + сервисы); frozen_balance ≥ 0.
#   • referrer_id - FK на accounts.id, никогда не равен собственному id (CHECK).
#     Отсутствие циклов проверяет реферальный движок при записи связи.
#   • level выводится из баланса и пересчитывается мутатором при каждом
#     изменении баланса; вручную не правится.
#   • Счёт не удаляется - только is_active = false.
#
# ИИ-защиты:
#   • Индекс по referrer_id: выборки рефералов без полного сканирования.
#   • Уникальный referral_code и telegram_id.
#
# Запреты:
#   • Модель НЕ выполняет денежных операций - только services/ledger_service.py.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.config_core import get_settings
from ..core.database_core import Base, BigIntPK, UTCDateTime, utcnow

settings = get_settings()
CORE_SCHEMA = settings.DB_SCHEMA_CORE


def _fk(target: str) -> str:
    return f"{CORE_SCHEMA}.{target}" if CORE_SCHEMA else target


class Account(Base):
    """
    Счёт пользователя.

    Поля:
      • balance / frozen_balance   - доступный и зарезервированный баланс (GRAM).
      • level                      - bronze | silver | gold | premium (от баланса).
      • total_earned / total_spent - монотонные счётчики оборотов.
      • referrer_id                - кто пригласил (NULL - пришёл сам).
      • referred_at                - когда связь записана (для статистики по периодам).
      • referral_code              - постоянный код для приглашений.
      • referrals_count            - сколько счетов привязано к этому как к referrer.
      • premium_referrals_count    - сколько из них получили премиум (бонус выдан).
    """

    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("telegram_id", name="uq_accounts_telegram"),
        UniqueConstraint("referral_code", name="uq_accounts_referral_code"),
        CheckConstraint("balance >= 0", name="ck_accounts_balance_nonneg"),
        CheckConstraint("frozen_balance >= 0", name="ck_accounts_frozen_nonneg"),
        CheckConstraint("referrer_id IS NULL OR referrer_id <> id", name="ck_accounts_not_self_referrer"),
        CheckConstraint(
            "level IN ('bronze','silver','gold','premium')",
            name="ck_accounts_level_enum",
        ),
        Index("ix_accounts_referrer", "referrer_id"),
        Index("ix_accounts_created_id", "created_at", "id"),
        {"schema": CORE_SCHEMA},
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    telegram_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    username: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Балансы (целые GRAM)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    frozen_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    level: Mapped[str] = mapped_column(String(16), nullable=False, default="bronze", server_default="bronze")
    total_earned: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    total_spent: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")

    # Реферальный граф
    referrer_id: Mapped[Optional[int]] = mapped_column(
        BigIntPK, ForeignKey(_fk("accounts.id"), ondelete="RESTRICT"), nullable=True
    )
    referred_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    referral_code: Mapped[str] = mapped_column(String(32), nullable=False)
    referrals_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    premium_referrals_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")

    # Статусы
    is_premium: Mapped[bool] = mapped_column(nullable=False, default=False, server_default="false")
    premium_expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True, server_default="true")
    is_banned: Mapped[bool] = mapped_column(nullable=False, default=False, server_default="false")
    last_active_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Account id={self.id} balance={self.balance} level={self.level} ref={self.referrer_id}>"


__all__ = ["Account", "CORE_SCHEMA"]
# =============================================================================
# Пояснения «для чайника»:
#   • Почему реферальная связь хранится прямо в accounts?
#     У счёта максимум один пригласивший, поэтому отдельная таблица не нужна:
#     referrer_id - это ребро графа, индекс по нему даёт список рефералов.
#   • Почему server_default="false" для булевых?
#     Так миграция и create_all дают одинаковые значения по умолчанию в
#     PostgreSQL и SQLite.
# =============================================================================
