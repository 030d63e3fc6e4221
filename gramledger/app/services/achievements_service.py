# -*- coding: utf-8 -*-
# gramledger/app/services/achievements_service.py
# =============================================================================
# Назначение кода:
#   Оценка реферальных достижений GRAM Ledger:
#   • check_achievements(account_id) - выдаёт все выполненные и ещё не
#     полученные достижения (запись earned_achievements + награда в журнал).
#   • achievement_progress(account_id) - текущие/целевые значения по каталогу.
#   • seed_default_catalog() - upsert каталога по умолчанию.
#
# Канон/инварианты:
#   • Достижение выдаётся счёту не более одного раза:
#     UNIQUE (account_id, achievement_id) + idempotency_key
#     achievement:<account>:<achievement> в журнале.
#   • Каждое достижение - отдельный SAVEPOINT: дубль откатывает только его.
#   • Статистика читается под блокировкой строки счёта.
#   • Уведомления achievement_earned - после commit.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gramledger.app.core.database_core import transaction
from gramledger.app.core.errors_core import DuplicateRewardError, NotFoundError
from gramledger.app.core.logging_core import get_logger
from gramledger.app.models import Account, Achievement, EarnedAchievement
from gramledger.app.services.ledger_service import AccountMutator, AchievementCorrelation
from gramledger.app.services.notify_service import Notifier, notify_safely
from gramledger.app.services.stats_service import REFERRAL_EARNING_KINDS, conversion_rate

logger = get_logger(__name__, component="achievements")

DEFAULT_CATALOG: List[Dict[str, object]] = [
    {
        "id": "first_referral",
        "name": "First Referral",
        "description": "Invite your first friend",
        "icon": "🤝",
        "requirement_type": "referrals_count",
        "threshold": 1,
        "reward_amount": 100,
        "rarity": "common",
    },
    {
        "id": "referral_master",
        "name": "Referral Master",
        "description": "Invite 100 friends",
        "icon": "👑",
        "requirement_type": "referrals_count",
        "threshold": 100,
        "reward_amount": 10000,
        "reward_title": "Referral Master",
        "rarity": "legendary",
    },
    {
        "id": "first_thousand",
        "name": "First Thousand",
        "description": "Earn 1000 GRAM from referrals",
        "icon": "💰",
        "requirement_type": "total_earned",
        "threshold": 1000,
        "reward_amount": 500,
        "rarity": "rare",
    },
]


def achievement_key(account_id: int, achievement_id: str) -> str:
    return f"achievement:{int(account_id)}:{achievement_id}"


@dataclass(frozen=True)
class AchievementStats:
    referrals_count: int
    total_earned: int
    conversion_rate: float

    def value_for(self, requirement_type: str) -> float:
        if requirement_type == "referrals_count":
            return float(self.referrals_count)
        if requirement_type == "total_earned":
            return float(self.total_earned)
        if requirement_type == "conversion_rate":
            return float(self.conversion_rate)
        return 0.0


@dataclass
class AchievementProgress:
    achievement_id: str
    name: str
    requirement_type: str
    current: float
    target: float
    earned: bool
    earned_at: Optional[datetime]
    reward_amount: int

    @property
    def progress(self) -> float:
        if self.earned or self.target <= 0:
            return 1.0
        return min(1.0, self.current / self.target)


class AchievementEvaluator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        mutator: AccountMutator,
        notifier: Notifier,
    ) -> None:
        self._session_factory = session_factory
        self._mutator = mutator
        self._notifier = notifier

    async def _load_stats(self, session: AsyncSession, account: Account) -> AchievementStats:
        total_earned = await self._mutator.ledger.sum_amount(session, account.id, REFERRAL_EARNING_KINDS)
        referrals = int(account.referrals_count)
        return AchievementStats(
            referrals_count=referrals,
            total_earned=total_earned,
            conversion_rate=conversion_rate(int(account.premium_referrals_count), referrals),
        )

    @staticmethod
    async def _active_catalog(session: AsyncSession) -> List[Achievement]:
        stmt = select(Achievement).where(Achievement.is_active.is_(True)).order_by(Achievement.id)
        return list((await session.execute(stmt)).scalars().all())

    @staticmethod
    async def _earned(session: AsyncSession, account_id: int) -> Dict[str, datetime]:
        stmt = select(EarnedAchievement.achievement_id, EarnedAchievement.earned_at).where(
            EarnedAchievement.account_id == account_id
        )
        return {row.achievement_id: row.earned_at for row in (await session.execute(stmt)).all()}

    async def check_achievements(self, account_id: int) -> List[Achievement]:
        """Возвращает только НОВЫЕ достижения; повторный вызов → []."""
        newly_earned: List[Achievement] = []
        async with transaction(self._session_factory) as session:
            account = await self._mutator.lock_account(session, account_id)
            stats = await self._load_stats(session, account)
            earned = await self._earned(session, account.id)

            for achievement in await self._active_catalog(session):
                if achievement.id in earned:
                    continue
                if stats.value_for(achievement.requirement_type) < float(achievement.threshold):
                    continue
                try:
                    async with session.begin_nested():
                        session.add(EarnedAchievement(account_id=int(account_id), achievement_id=achievement.id))
                        await session.flush()
                        if int(achievement.reward_amount) > 0:
                            await self._mutator.apply_delta(
                                session,
                                int(account_id),
                                int(achievement.reward_amount),
                                "credit",
                                "achievement_reward",
                                AchievementCorrelation(achievement_id=achievement.id),
                                description=f"Achievement: {achievement.name}",
                                idempotency_key=achievement_key(account_id, achievement.id),
                            )
                except (IntegrityError, DuplicateRewardError):
                    logger.info(
                        "Achievement already earned (concurrent)",
                        extra={"account_id": account_id, "achievement_id": achievement.id},
                    )
                    continue
                newly_earned.append(achievement)

        for achievement in newly_earned:
            logger.info(
                "Achievement earned",
                extra={
                    "account_id": account_id,
                    "achievement_id": achievement.id,
                    "amount": achievement.reward_amount,
                },
            )
            await notify_safely(
                self._notifier,
                int(account_id),
                "achievement_earned",
                {
                    "achievement_id": achievement.id,
                    "name": achievement.name,
                    "amount": int(achievement.reward_amount),
                    "title": achievement.reward_title,
                },
            )
        return newly_earned

    async def achievement_progress(self, account_id: int) -> List[AchievementProgress]:
        async with self._session_factory() as session:
            account = await session.get(Account, int(account_id))
            if account is None:
                raise NotFoundError("Account not found.", details={"account_id": account_id})
            stats = await self._load_stats(session, account)
            earned = await self._earned(session, account.id)
            catalog = await self._active_catalog(session)

        progress: List[AchievementProgress] = []
        for achievement in catalog:
            is_earned = achievement.id in earned
            if achievement.is_hidden and not is_earned:
                continue
            progress.append(
                AchievementProgress(
                    achievement_id=achievement.id,
                    name=achievement.name,
                    requirement_type=achievement.requirement_type,
                    current=stats.value_for(achievement.requirement_type),
                    target=float(achievement.threshold),
                    earned=is_earned,
                    earned_at=earned.get(achievement.id),
                    reward_amount=int(achievement.reward_amount),
                )
            )
        return progress

    async def seed_default_catalog(self) -> int:
        """Создаёт/обновляет записи каталога по умолчанию. Возвращает их число."""
        async with transaction(self._session_factory) as session:
            for item in DEFAULT_CATALOG:
                row = await session.get(Achievement, item["id"])
                if row is None:
                    session.add(Achievement(**item))
                else:
                    for key, value in item.items():
                        setattr(row, key, value)
            await session.flush()
        logger.info("Achievement catalog seeded", extra={"count": len(DEFAULT_CATALOG)})
        return len(DEFAULT_CATALOG)


__all__ = [
    "DEFAULT_CATALOG",
    "achievement_key",
    "AchievementStats",
    "AchievementProgress",
    "AchievementEvaluator",
]
