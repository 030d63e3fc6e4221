# -*- coding: utf-8 -*-
# gramledger/app/models/referral_models.py
# =============================================================================
# Назначение кода:
#   ORM-модели домена «Рефералы» GRAM Ledger (кроме самих связей - они живут
#   в accounts.referrer_id):
#   • RewardConfigDocument - горячо перезагружаемый документ ставок наград.
#   • ReferralCampaign - временная акция с множителями наград.
#   • ReferralCampaignMember - явное участие счёта в акции (одна запись на пару).
#
# Канон/инварианты:
#   • Множители ≥ 0; кампания без ends_at - бессрочная.
#   • Условия участия (min_referrals, target_level, requires_premium)
#     проверяются в момент вступления, а не при каждом начислении.
#   • UNIQUE (campaign_id, account_id) - повторное вступление невозможно.
#
# Запреты:
#   • Никаких денежных полей: награды живут только в ledger_entries.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.config_core import get_settings
from ..core.database_core import Base, BigIntPK, JsonDoc, UTCDateTime, utcnow

settings = get_settings()
CORE_SCHEMA = settings.DB_SCHEMA_CORE


def _fk(target: str) -> str:
    return f"{CORE_SCHEMA}.{target}" if CORE_SCHEMA else target


class RewardConfigDocument(Base):
    """Документ конфигурации наград. name='referral' - основной; version растёт при update."""

    __tablename__ = "reward_config"
    __table_args__ = ({"schema": CORE_SCHEMA},)

    name: Mapped[str] = mapped_column(String(32), primary_key=True)
    document: Mapped[Dict[str, Any]] = mapped_column(JsonDoc, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, server_default=func.now(), nullable=False
    )


class ReferralCampaign(Base):
    __tablename__ = "referral_campaigns"
    __table_args__ = (
        CheckConstraint("registration_multiplier >= 0", name="ck_campaigns_reg_mult_nonneg"),
        CheckConstraint("premium_bonus_multiplier >= 0", name="ck_campaigns_prem_mult_nonneg"),
        CheckConstraint("activity_multiplier >= 0", name="ck_campaigns_act_mult_nonneg"),
        CheckConstraint("ends_at IS NULL OR ends_at > starts_at", name="ck_campaigns_window"),
        Index("ix_campaigns_active_window", "is_active", "starts_at"),
        {"schema": CORE_SCHEMA},
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    starts_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    ends_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True, server_default="true")

    registration_multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    premium_bonus_multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    activity_multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)

    min_referrals: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    target_level: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    requires_premium: Mapped[bool] = mapped_column(nullable=False, default=False, server_default="false")

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<ReferralCampaign id={self.id} {self.name!r} active={self.is_active}>"


class ReferralCampaignMember(Base):
    __tablename__ = "referral_campaign_members"
    __table_args__ = (
        UniqueConstraint("campaign_id", "account_id", name="uq_campaign_members_pair"),
        Index("ix_campaign_members_account", "account_id"),
        {"schema": CORE_SCHEMA},
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    campaign_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey(_fk("referral_campaigns.id"), ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey(_fk("accounts.id"), ondelete="RESTRICT"), nullable=False
    )
    joined_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now(), nullable=False
    )


__all__ = ["RewardConfigDocument", "ReferralCampaign", "ReferralCampaignMember"]
