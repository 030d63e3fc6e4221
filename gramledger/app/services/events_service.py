# -*- coding: utf-8 -*-
# gramledger/app/services/events_service.py
# =============================================================================
# Назначение кода:
#   RewardEvents - точка входа внешних событий платформы:
#   • on_registration(account_id, code?)
#   • on_premium_upgrade(account_id, expires_at?)
#   • on_activity(account_id, activity_type, amount)
#   Каждое событие: движок наград → (если статистика пригласившего
#   сдвинулась) проверка достижений пригласившего.
#
# Канон:
#   • Движок и достижения работают в РАЗНЫХ транзакциях: награда события
#     фиксируется независимо от результата проверки достижений.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from gramledger.app.core.logging_core import get_logger
from gramledger.app.models import Achievement
from gramledger.app.services.accounts_service import AccountService
from gramledger.app.services.achievements_service import AchievementEvaluator
from gramledger.app.services.referral_service import ReferralRewardEngine, RewardOutcome, SkipReason

logger = get_logger(__name__, component="events")

# Пропуски, после которых статистика пригласившего всё равно изменилась
_STATS_MOVED_ON_SKIP = {SkipReason.DAILY_REFERRAL_LIMIT, SkipReason.ZERO_REWARD}


@dataclass
class EventResult:
    outcome: RewardOutcome
    achievements: List[Achievement] = field(default_factory=list)


class RewardEvents:
    def __init__(
        self,
        accounts: AccountService,
        engine: ReferralRewardEngine,
        achievements: AchievementEvaluator,
    ) -> None:
        self._accounts = accounts
        self._engine = engine
        self._achievements = achievements

    async def on_registration(self, account_id: int, code: Optional[str] = None) -> EventResult:
        outcome = await self._engine.process_registration(account_id, code)
        moved = outcome.issued or (outcome.skip in _STATS_MOVED_ON_SKIP)
        return await self._with_achievements(outcome, moved)

    async def on_premium_upgrade(self, account_id: int, expires_at: Optional[datetime] = None) -> EventResult:
        await self._accounts.set_premium(account_id, expires_at)
        outcome = await self._engine.process_premium_upgrade(account_id)
        return await self._with_achievements(outcome, outcome.issued)

    async def on_activity(self, account_id: int, activity_type: str, amount: int) -> EventResult:
        outcome = await self._engine.process_activity(account_id, activity_type, amount)
        return await self._with_achievements(outcome, outcome.issued)

    async def _with_achievements(self, outcome: RewardOutcome, stats_moved: bool) -> EventResult:
        if not stats_moved or outcome.referrer_id is None:
            return EventResult(outcome=outcome)
        earned = await self._achievements.check_achievements(outcome.referrer_id)
        if earned:
            logger.info(
                "Achievements earned after event",
                extra={"referrer_id": outcome.referrer_id, "achievements": [a.id for a in earned]},
            )
        return EventResult(outcome=outcome, achievements=earned)


__all__ = ["EventResult", "RewardEvents"]
