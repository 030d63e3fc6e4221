# -*- coding: utf-8 -*-
# gramledger/app/models/achievements_models.py
# =============================================================================
# Назначение кода:
#   • Achievement - каталог реферальных достижений (порог + разовая награда).
#   • EarnedAchievement - факт получения достижения счётом.
#
# Канон/инварианты:
#   • UNIQUE (account_id, achievement_id): достижение выдаётся один раз.
#     Повторная вставка ловится и игнорируется сервисом (конкурентная проверка).
#   • reward_amount = 0 - достижение без денежной награды.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Float,
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


class Achievement(Base):
    """Запись каталога. requirement_type: referrals_count | total_earned | conversion_rate."""

    __tablename__ = "achievements"
    __table_args__ = (
        CheckConstraint(
            "requirement_type IN ('referrals_count','total_earned','conversion_rate')",
            name="ck_achievements_requirement_enum",
        ),
        CheckConstraint("reward_amount >= 0", name="ck_achievements_reward_nonneg"),
        {"schema": CORE_SCHEMA},
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    icon: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="referrals")
    requirement_type: Mapped[str] = mapped_column(String(32), nullable=False)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)
    reward_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    reward_title: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    rarity: Mapped[str] = mapped_column(String(16), nullable=False, default="common")
    is_hidden: Mapped[bool] = mapped_column(nullable=False, default=False, server_default="false")
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True, server_default="true")


class EarnedAchievement(Base):
    __tablename__ = "earned_achievements"
    __table_args__ = (
        UniqueConstraint("account_id", "achievement_id", name="uq_earned_achievements_account_achievement"),
        Index("ix_earned_achievements_account", "account_id"),
        {"schema": CORE_SCHEMA},
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey(_fk("accounts.id"), ondelete="RESTRICT"), nullable=False
    )
    achievement_id: Mapped[str] = mapped_column(
        String(64), ForeignKey(_fk("achievements.id"), ondelete="RESTRICT"), nullable=False
    )
    earned_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now(), nullable=False
    )


__all__ = ["Achievement", "EarnedAchievement"]
