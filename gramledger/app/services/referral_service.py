# -*- coding: utf-8 -*-
# gramledger/app/services/referral_service.py
# =============================================================================
# Назначение кода:
#   Движок реферальных наград GRAM Ledger:
#   • process_registration   - привязка реферала по коду + награда пригласившему.
#   • process_premium_upgrade - разовый бонус пригласившему за премиум реферала.
#   • process_activity       - процент от активности реферала (с дневным лимитом).
#
# Канон/инварианты:
#   • Каждая операция возвращает RewardOutcome: запись журнала ИЛИ SkipReason.
#     Ошибки привязки (неверный код, самоприглашение, цикл) движок ловит и
#     превращает в пропуски; повтор награды тоже пропуск.
#   • Награда считается в момент события по ТЕКУЩЕМУ уровню пригласившего
#     (строка счёта заблокирована).
#   • Множители кампаний применяются до округления вниз.
#   • Премиум-бонус за пару (пригласивший, реферал) - не более одного раза:
#     idempotency_key referral_premium_bonus:<referrer>:<account> UNIQUE в журнале.
#   • Дневной лимит активности: строка referral_daily_counters (referrer, день UTC)
#     читается и обновляется под блокировкой счёта пригласившего.
#   • Связь referrer_id не образует циклов: обход предков при записи.
#   • Уведомления - только после commit.
#
# ИИ-защита:
#   • Несколько счетов блокируются по возрастанию id.
#   • DuplicateRewardError при конкурентном премиум-бонусе → ALREADY_REWARDED.
#
# Запреты:
#   • Никаких прямых изменений balance: только AccountMutator.apply_delta.
#   • Никаких ретраев: StorageError уходит вызывающему.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gramledger.app.core.database_core import transaction, utcnow
from gramledger.app.core.errors_core import (
    DuplicateRewardError,
    InvalidReferralCodeError,
    NotFoundError,
    ReferralCycleError,
    SelfReferralError,
    ValidationError,
)
from gramledger.app.core.logging_core import get_logger
from gramledger.app.core.system_locks import assert_not_self_referral
from gramledger.app.core.utils_core import floor_reward, normalize_ref_code, utc_today
from gramledger.app.models import Account, LedgerEntry, ReferralDailyCounter
from gramledger.app.services.campaign_service import CampaignService
from gramledger.app.services.ledger_service import AccountMutator, ReferralCorrelation
from gramledger.app.services.notify_service import Notifier, notify_safely
from gramledger.app.services.reward_config_service import RewardConfigStore

logger = get_logger(__name__, component="referrals")


class SkipReason(str, Enum):
    INVALID_CODE = "invalid_code"
    SELF_REFERRAL = "self_referral"
    ALREADY_REFERRED = "already_referred"
    REFERRAL_CYCLE = "referral_cycle"
    NO_REFERRER = "no_referrer"
    ALREADY_REWARDED = "already_rewarded"
    CAP_EXCEEDED = "cap_exceeded"
    ZERO_REWARD = "zero_reward"
    BELOW_MINIMUM = "below_minimum"
    DAILY_REFERRAL_LIMIT = "daily_referral_limit"
    FEATURE_DISABLED = "feature_disabled"


_LINK_SKIPS = {
    InvalidReferralCodeError: SkipReason.INVALID_CODE,
    SelfReferralError: SkipReason.SELF_REFERRAL,
    ReferralCycleError: SkipReason.REFERRAL_CYCLE,
}


@dataclass(frozen=True)
class RewardOutcome:
    """Ровно одно из полей entry / skip заполнено."""

    entry: Optional[LedgerEntry] = None
    skip: Optional[SkipReason] = None
    referrer_id: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def issued(self) -> bool:
        return self.entry is not None

    @classmethod
    def rewarded(cls, entry: LedgerEntry, **details: Any) -> "RewardOutcome":
        return cls(entry=entry, referrer_id=entry.account_id, details=details)

    @classmethod
    def skipped(cls, reason: SkipReason, *, referrer_id: Optional[int] = None, **details: Any) -> "RewardOutcome":
        return cls(skip=reason, referrer_id=referrer_id, details=details)


def premium_bonus_key(referrer_id: int, account_id: int) -> str:
    return f"referral_premium_bonus:{int(referrer_id)}:{int(account_id)}"


class ReferralRewardEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        mutator: AccountMutator,
        config_store: RewardConfigStore,
        campaigns: CampaignService,
        notifier: Notifier,
        *,
        cycle_walk_limit: int = 64,
    ) -> None:
        self._session_factory = session_factory
        self._mutator = mutator
        self._config = config_store
        self._campaigns = campaigns
        self._notifier = notifier
        self._cycle_walk_limit = cycle_walk_limit

    # ------------------------------------------------------------------
    # Регистрация
    # ------------------------------------------------------------------
    async def process_registration(self, new_account_id: int, referral_code: Optional[str]) -> RewardOutcome:
        async with transaction(self._session_factory) as session:
            try:
                account, referrer = await self._link_referrer(session, new_account_id, referral_code)
            except (InvalidReferralCodeError, SelfReferralError, ReferralCycleError) as exc:
                logger.info(
                    "Registration skipped",
                    extra={"account_id": new_account_id, "reason": exc.code, **exc.details},
                )
                return RewardOutcome.skipped(_LINK_SKIPS[type(exc)], referrer_id=exc.details.get("referrer_id"))
            if account.referrer_id is not None:
                return RewardOutcome.skipped(SkipReason.ALREADY_REFERRED, referrer_id=account.referrer_id)

            assert_not_self_referral(account.id, referrer.id)
            account.referrer_id = referrer.id
            account.referred_at = utcnow()
            referrer.referrals_count = int(referrer.referrals_count) + 1

            config = self._config.get()
            counter = await self._lock_daily_counter(session, referrer.id, utc_today())
            if int(counter.registrations_rewarded) >= config.max_referrals_per_day:
                await session.flush()
                outcome = RewardOutcome.skipped(
                    SkipReason.DAILY_REFERRAL_LIMIT,
                    referrer_id=referrer.id,
                    limit=config.max_referrals_per_day,
                )
            else:
                multipliers = await self._campaigns.multipliers_for(session, referrer.id)
                amount = floor_reward(config.for_level(referrer.level).registration, multipliers.registration)
                if amount <= 0:
                    await session.flush()
                    outcome = RewardOutcome.skipped(SkipReason.ZERO_REWARD, referrer_id=referrer.id)
                else:
                    entry = await self._mutator.apply_delta(
                        session,
                        referrer.id,
                        amount,
                        "credit",
                        "referral_reward",
                        ReferralCorrelation(referred_account_id=account.id),
                        description="Referral registration reward",
                    )
                    counter.registrations_rewarded = int(counter.registrations_rewarded) + 1
                    await session.flush()
                    outcome = RewardOutcome.rewarded(entry)

        logger.info(
            "Referral linked",
            extra={
                "account_id": new_account_id,
                "referrer_id": outcome.referrer_id,
                "amount": outcome.entry.amount if outcome.entry else 0,
                "skip": outcome.skip.value if outcome.skip else None,
            },
        )
        if outcome.entry is not None:
            await notify_safely(
                self._notifier,
                outcome.entry.account_id,
                "referral_registered",
                {"referred_account_id": int(new_account_id), "amount": outcome.entry.amount},
            )
        return outcome

    # ------------------------------------------------------------------
    # Премиум
    # ------------------------------------------------------------------
    async def process_premium_upgrade(self, account_id: int) -> RewardOutcome:
        try:
            outcome = await self._premium_upgrade_tx(account_id)
        except DuplicateRewardError:
            logger.info("Premium bonus already issued (concurrent)", extra={"account_id": account_id})
            return RewardOutcome.skipped(SkipReason.ALREADY_REWARDED)

        if outcome.entry is not None:
            logger.info(
                "Premium bonus issued",
                extra={"account_id": account_id, "referrer_id": outcome.referrer_id, "amount": outcome.entry.amount},
            )
            await notify_safely(
                self._notifier,
                outcome.entry.account_id,
                "referral_premium_upgrade",
                {"referred_account_id": int(account_id), "amount": outcome.entry.amount},
            )
        return outcome

    async def _premium_upgrade_tx(self, account_id: int) -> RewardOutcome:
        async with transaction(self._session_factory) as session:
            referrer_id = await self._referrer_of(session, account_id)
            if referrer_id is None:
                return RewardOutcome.skipped(SkipReason.NO_REFERRER)
            config = self._config.get()
            if not config.enable_premium_bonuses:
                return RewardOutcome.skipped(SkipReason.FEATURE_DISABLED, referrer_id=referrer_id)

            referrer = await self._mutator.lock_account(session, referrer_id)
            if await self._mutator.ledger.find_premium_bonus(session, referrer.id, account_id) is not None:
                return RewardOutcome.skipped(SkipReason.ALREADY_REWARDED, referrer_id=referrer.id)

            multipliers = await self._campaigns.multipliers_for(session, referrer.id)
            amount = floor_reward(config.for_level(referrer.level).premium_bonus, multipliers.premium_bonus)
            if amount <= 0:
                return RewardOutcome.skipped(SkipReason.ZERO_REWARD, referrer_id=referrer.id)

            entry = await self._mutator.apply_delta(
                session,
                referrer.id,
                amount,
                "credit",
                "referral_premium_bonus",
                ReferralCorrelation(referred_account_id=int(account_id)),
                description="Referral premium upgrade bonus",
                idempotency_key=premium_bonus_key(referrer.id, account_id),
            )
            referrer.premium_referrals_count = int(referrer.premium_referrals_count) + 1
            await session.flush()
            return RewardOutcome.rewarded(entry)

    # ------------------------------------------------------------------
    # Активность
    # ------------------------------------------------------------------
    async def process_activity(self, account_id: int, activity_type: str, base_amount: int) -> RewardOutcome:
        if isinstance(base_amount, bool) or not isinstance(base_amount, int) or base_amount < 0:
            raise ValidationError("base_amount must be a non-negative integer.", details={"base_amount": base_amount})

        async with transaction(self._session_factory) as session:
            referrer_id = await self._referrer_of(session, account_id)
            if referrer_id is None:
                return RewardOutcome.skipped(SkipReason.NO_REFERRER)
            config = self._config.get()
            if not config.enable_activity_rewards:
                return RewardOutcome.skipped(SkipReason.FEATURE_DISABLED, referrer_id=referrer_id)
            if base_amount < config.min_activity_amount:
                return RewardOutcome.skipped(
                    SkipReason.BELOW_MINIMUM, referrer_id=referrer_id, minimum=config.min_activity_amount
                )

            referrer = await self._mutator.lock_account(session, referrer_id)
            rewards = config.for_level(referrer.level)
            multipliers = await self._campaigns.multipliers_for(session, referrer.id)
            reward = floor_reward(
                base_amount, rewards.percentage_for(activity_type), multipliers.activity, divisor=100
            )
            if reward <= 0:
                return RewardOutcome.skipped(SkipReason.ZERO_REWARD, referrer_id=referrer.id)

            counter = await self._lock_daily_counter(session, referrer.id, utc_today())
            remaining = rewards.daily_activity_cap - int(counter.paid)
            if remaining <= 0:
                logger.info(
                    "Activity reward skipped: daily cap reached",
                    extra={"referrer_id": referrer.id, "cap": rewards.daily_activity_cap},
                )
                return RewardOutcome.skipped(
                    SkipReason.CAP_EXCEEDED, referrer_id=referrer.id, cap=rewards.daily_activity_cap
                )
            clamped = min(reward, remaining)

            entry = await self._mutator.apply_delta(
                session,
                referrer.id,
                clamped,
                "credit",
                "referral_activity",
                ReferralCorrelation(referred_account_id=int(account_id), activity_type=activity_type),
                description=f"Referral activity reward ({activity_type})",
            )
            counter.paid = int(counter.paid) + clamped
            await session.flush()
            outcome = RewardOutcome.rewarded(entry, computed=reward, clamped=clamped < reward)

        logger.info(
            "Activity reward issued",
            extra={
                "account_id": account_id,
                "referrer_id": outcome.referrer_id,
                "amount": clamped,
                "activity_type": activity_type,
            },
        )
        await notify_safely(
            self._notifier,
            entry.account_id,
            "referral_activity_reward",
            {"referred_account_id": int(account_id), "activity_type": activity_type, "amount": clamped},
        )
        return outcome

    # ------------------------------------------------------------------
    # Внутренние помощники
    # ------------------------------------------------------------------
    @staticmethod
    async def _referrer_of(session: AsyncSession, account_id: int) -> Optional[int]:
        row = (
            await session.execute(select(Account.id, Account.referrer_id).where(Account.id == int(account_id)))
        ).first()
        if row is None:
            raise NotFoundError("Account not found.", details={"account_id": account_id})
        return int(row.referrer_id) if row.referrer_id is not None else None

    async def _link_referrer(
        self, session: AsyncSession, account_id: int, referral_code: Optional[str]
    ) -> Tuple[Account, Account]:
        """
        Находит пригласившего по коду и блокирует оба счёта (по возрастанию id).
        Нарушения правил привязки поднимаются ошибками рефералки.
        """
        code = normalize_ref_code(referral_code)
        referrer_id = None
        if code is not None:
            stmt = select(Account.id).where(Account.referral_code == code)
            referrer_id = (await session.execute(stmt)).scalar_one_or_none()
        if referrer_id is None:
            raise InvalidReferralCodeError(details={"account_id": int(account_id)})
        if int(referrer_id) == int(account_id):
            raise SelfReferralError(details={"account_id": int(account_id)})

        locked = await self._mutator.lock_accounts(session, (account_id, referrer_id))
        account, referrer = locked[int(account_id)], locked[int(referrer_id)]
        if account.referrer_id is None and await self._would_create_cycle(session, account.id, referrer.id):
            raise ReferralCycleError(details={"account_id": account.id, "referrer_id": referrer.id})
        return account, referrer

    async def _would_create_cycle(self, session: AsyncSession, account_id: int, referrer_id: int) -> bool:
        """
        Поднимается по предкам referrer_id. Встретили account_id → цикл.
        Не дошли до корня за cycle_walk_limit шагов → считаем циклом.
        """
        current: Optional[int] = referrer_id
        for _ in range(self._cycle_walk_limit):
            if current is None:
                return False
            if current == account_id:
                return True
            stmt = select(Account.referrer_id).where(Account.id == current)
            current = (await session.execute(stmt)).scalar_one_or_none()
        return current is not None

    @staticmethod
    async def _lock_daily_counter(session: AsyncSession, referrer_id: int, day: date) -> ReferralDailyCounter:
        """Строка (referrer, day) FOR UPDATE; создаётся при первом обращении за сутки."""
        stmt = (
            select(ReferralDailyCounter)
            .where(ReferralDailyCounter.referrer_id == referrer_id, ReferralDailyCounter.day == day)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        counter = (await session.execute(stmt)).scalar_one_or_none()
        if counter is None:
            counter = ReferralDailyCounter(referrer_id=referrer_id, day=day, paid=0, registrations_rewarded=0)
            session.add(counter)
            await session.flush()
        return counter


__all__ = ["SkipReason", "RewardOutcome", "premium_bonus_key", "ReferralRewardEngine"]
