# -*- coding: utf-8 -*-
# gramledger/app/services/__init__.py
# =============================================================================
# GRAM Ledger - сервисный слой (единая точка входа)
# -----------------------------------------------------------------------------
# Назначение файла:
#   • Стабильный вход для доменных сервисов: роуты и скрипты берут сервисы
#     из Container, а типы/исключения - отсюда.
#
# Важные принципы:
#   • Никакой бизнес-логики здесь нет - только импорты.
#   • Никаких сетевых/блокирующих операций на уровне импорта.
# =============================================================================

from __future__ import annotations

from .accounts_service import AccountService
from .achievements_service import AchievementEvaluator, AchievementProgress
from .admin_service import AdminService, BonusDistribution, BonusFailure
from .campaign_service import CampaignMultipliers, CampaignService
from .container import Container
from .events_service import EventResult, RewardEvents
from .ledger_service import AccountMutator, LedgerFilters, LedgerPage, LedgerStore
from .notify_service import LoggingNotifier, Notifier, TelegramNotifier, notify_safely
from .referral_service import ReferralRewardEngine, RewardOutcome, SkipReason
from .reward_config_service import RewardConfig, RewardConfigStore
from .stats_service import ReferralStats, StatsService

__all__ = [
    "AccountService",
    "AchievementEvaluator",
    "AchievementProgress",
    "AdminService",
    "BonusDistribution",
    "BonusFailure",
    "CampaignMultipliers",
    "CampaignService",
    "Container",
    "EventResult",
    "RewardEvents",
    "AccountMutator",
    "LedgerFilters",
    "LedgerPage",
    "LedgerStore",
    "LoggingNotifier",
    "Notifier",
    "TelegramNotifier",
    "notify_safely",
    "ReferralRewardEngine",
    "RewardOutcome",
    "SkipReason",
    "RewardConfig",
    "RewardConfigStore",
    "ReferralStats",
    "StatsService",
]
