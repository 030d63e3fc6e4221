# -*- coding: utf-8 -*-
# gramledger/app/schemas/referral_schemas.py
# =============================================================================
# Назначение кода:
#   DTO реферального API: входящие события, итог начисления (RewardOutcome),
#   статистика пригласившего и прогресс достижений.
#
# Канон:
#   • Ответ события всегда 200: пропуск награды - не ошибка, а skip_reason.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .accounts_schemas import LedgerEntryOut


class RegistrationEventIn(BaseModel):
    account_id: int = Field(..., gt=0)
    referral_code: Optional[str] = Field(None, max_length=32)


class PremiumUpgradeEventIn(BaseModel):
    account_id: int = Field(..., gt=0)
    expires_at: Optional[datetime] = None


class ActivityEventIn(BaseModel):
    account_id: int = Field(..., gt=0)
    activity_type: str = Field(..., min_length=1, max_length=32, examples=["task_completion"])
    amount: int = Field(..., ge=0, description="Базовая сумма активности реферала (GRAM)")


class EarnedAchievementOut(BaseModel):
    id: str
    name: str
    reward_amount: int
    reward_title: Optional[str] = None


class RewardOutcomeOut(BaseModel):
    issued: bool
    skip_reason: Optional[str] = None
    referrer_id: Optional[int] = None
    entry: Optional[LedgerEntryOut] = None
    achievements: List[EarnedAchievementOut] = Field(default_factory=list)


class ReferralStatsOut(BaseModel):
    account_id: int
    period: str
    total_referrals: int
    premium_referrals: int
    total_earned: int
    conversion_rate: float
    average_earning_per_referral: float
    breakdown: Dict[str, int]


class ReferralSummaryOut(BaseModel):
    account_id: int
    username: Optional[str] = None
    level: str
    is_premium: bool
    registered_at: datetime
    referred_at: Optional[datetime] = None
    earnings: int = Field(..., description="Сколько пригласивший заработал на этом реферале")


class ReferralListOut(BaseModel):
    items: List[ReferralSummaryOut]
    total: int
    next_cursor: Optional[str] = None


class ReferralTreeNodeOut(BaseModel):
    account_id: int
    username: Optional[str] = None
    level: str
    is_premium: bool
    depth: int
    earnings: int
    children: List["ReferralTreeNodeOut"] = Field(default_factory=list)


class ReferralTreeOut(BaseModel):
    account_id: int
    max_depth: int
    nodes: List[ReferralTreeNodeOut]
    total_levels: int
    total_referrals: int
    total_earnings: int


class AchievementProgressOut(BaseModel):
    achievement_id: str
    name: str
    requirement_type: str
    current: float
    target: float
    progress: float
    earned: bool
    earned_at: Optional[datetime] = None
    reward_amount: int


__all__ = [
    "ReferralSummaryOut",
    "ReferralListOut",
    "ReferralTreeNodeOut",
    "ReferralTreeOut",
    "RegistrationEventIn",
    "PremiumUpgradeEventIn",
    "ActivityEventIn",
    "EarnedAchievementOut",
    "RewardOutcomeOut",
    "ReferralStatsOut",
    "AchievementProgressOut",
]
