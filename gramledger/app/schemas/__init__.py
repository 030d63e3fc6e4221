# -*- coding: utf-8 -*-
# gramledger/app/schemas/__init__.py
# =============================================================================
# Назначение кода:
# Централизованный «фасад» для Pydantic-схем GRAM Ledger:
#     from gramledger.app.schemas import AccountOut, RewardOutcomeOut, ...
#
# Запреты:
# • Никаких вычислений балансов/денег - только агрегация схем.
# =============================================================================

from __future__ import annotations

from .accounts_schemas import AccountCreateIn, AccountOut, BalanceOut, LedgerEntryOut
from .admin_schemas import (
    BonusFailureOut,
    BonusIn,
    BonusOut,
    CampaignCreateIn,
    CampaignJoinIn,
    CampaignMemberOut,
    CampaignOut,
    RewardConfigOut,
    RewardConfigPatchIn,
)
from .common_schemas import ERROR_RESPONSES, CursorPage, ErrorResponse, ORMModel
from .referral_schemas import (
    AchievementProgressOut,
    ActivityEventIn,
    EarnedAchievementOut,
    PremiumUpgradeEventIn,
    ReferralStatsOut,
    ReferralListOut,
    ReferralSummaryOut,
    ReferralTreeNodeOut,
    ReferralTreeOut,
    RegistrationEventIn,
    RewardOutcomeOut,
)

__all__ = [
    "AccountCreateIn",
    "AccountOut",
    "BalanceOut",
    "LedgerEntryOut",
    "BonusFailureOut",
    "BonusIn",
    "BonusOut",
    "CampaignCreateIn",
    "CampaignJoinIn",
    "CampaignMemberOut",
    "CampaignOut",
    "RewardConfigOut",
    "RewardConfigPatchIn",
    "CursorPage",
    "ERROR_RESPONSES",
    "ErrorResponse",
    "ORMModel",
    "AchievementProgressOut",
    "ActivityEventIn",
    "EarnedAchievementOut",
    "PremiumUpgradeEventIn",
    "ReferralStatsOut",
    "ReferralListOut",
    "ReferralSummaryOut",
    "ReferralTreeNodeOut",
    "ReferralTreeOut",
    "RegistrationEventIn",
    "RewardOutcomeOut",
]
