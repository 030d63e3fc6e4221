# -*- coding: utf-8 -*-
# gramledger/app/schemas/admin_schemas.py
# =============================================================================
# Назначение кода:
#   DTO административного API и кампаний: бонусы, конфиг наград, кампании.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from .common_schemas import ORMModel


class BonusIn(BaseModel):
    account_ids: List[int] = Field(..., min_length=1, max_length=1000)
    amount: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=255)
    admin_id: int


class BonusFailureOut(BaseModel):
    account_id: int
    error: str
    message: str


class BonusOut(BaseModel):
    successful: List[int]
    failed: List[BonusFailureOut]


class RewardConfigOut(BaseModel):
    version: int
    config: Dict[str, Any]


class RewardConfigPatchIn(BaseModel):
    """Частичный документ: сливается с текущим конфигом (глубокое слияние)."""

    patch: Dict[str, Any] = Field(..., min_length=1)


class CampaignCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    description: str = Field("", max_length=512)
    starts_at: datetime
    ends_at: Optional[datetime] = None
    registration_multiplier: float = Field(1.0, ge=0)
    premium_bonus_multiplier: float = Field(1.0, ge=0)
    activity_multiplier: float = Field(1.0, ge=0)
    min_referrals: Optional[int] = Field(None, ge=0)
    target_level: Optional[str] = Field(None, pattern="^(bronze|silver|gold|premium)$")
    requires_premium: bool = False

    @model_validator(mode="after")
    def _window(self) -> "CampaignCreateIn":
        if self.ends_at is not None and self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        return self


class CampaignOut(ORMModel):
    id: int
    name: str
    description: str
    starts_at: datetime
    ends_at: Optional[datetime] = None
    is_active: bool
    registration_multiplier: float
    premium_bonus_multiplier: float
    activity_multiplier: float
    min_referrals: Optional[int] = None
    target_level: Optional[str] = None
    requires_premium: bool


class CampaignJoinIn(BaseModel):
    account_id: int = Field(..., gt=0)


class CampaignMemberOut(ORMModel):
    campaign_id: int
    account_id: int
    joined_at: datetime


__all__ = [
    "BonusIn",
    "BonusFailureOut",
    "BonusOut",
    "RewardConfigOut",
    "RewardConfigPatchIn",
    "CampaignCreateIn",
    "CampaignOut",
    "CampaignJoinIn",
    "CampaignMemberOut",
]
