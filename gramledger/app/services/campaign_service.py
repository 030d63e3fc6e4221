# -*- coding: utf-8 -*-
# gramledger/app/services/campaign_service.py
# =============================================================================
# Назначение кода:
#   Реферальные кампании - временной слой множителей поверх RewardConfig.
#   • create_campaign / list_active / join
#   • multipliers_for(session, account_id, now) - произведение множителей
#     всех активных кампаний счёта (1.0, если их нет).
#
# Канон/инварианты:
#   • Условия участия (окно, премиум, уровень, число рефералов) проверяются
#     только при вступлении.
#   • Повторное вступление → CampaignError (UNIQUE (campaign_id, account_id)).
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gramledger.app.core.database_core import transaction, utcnow
from gramledger.app.core.errors_core import CampaignError, NotFoundError, ValidationError
from gramledger.app.core.logging_core import get_logger
from gramledger.app.models import Account, ReferralCampaign, ReferralCampaignMember
from gramledger.app.services.ledger_service import LEVELS, level_rank

logger = get_logger(__name__)


@dataclass(frozen=True)
class CampaignMultipliers:
    registration: float = 1.0
    premium_bonus: float = 1.0
    activity: float = 1.0


NO_MULTIPLIERS = CampaignMultipliers()


def _active_clause(now: datetime):
    return (
        ReferralCampaign.is_active.is_(True),
        ReferralCampaign.starts_at <= now,
        or_(ReferralCampaign.ends_at.is_(None), ReferralCampaign.ends_at > now),
    )


class CampaignService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_campaign(
        self,
        *,
        name: str,
        starts_at: datetime,
        ends_at: Optional[datetime] = None,
        description: str = "",
        registration_multiplier: float = 1.0,
        premium_bonus_multiplier: float = 1.0,
        activity_multiplier: float = 1.0,
        min_referrals: Optional[int] = None,
        target_level: Optional[str] = None,
        requires_premium: bool = False,
    ) -> ReferralCampaign:
        if ends_at is not None and ends_at <= starts_at:
            raise ValidationError("Campaign must end after it starts.")
        for value in (registration_multiplier, premium_bonus_multiplier, activity_multiplier):
            if value < 0:
                raise ValidationError("Multipliers must be >= 0.")
        if target_level is not None and target_level not in LEVELS:
            raise ValidationError("Unknown target level.", details={"target_level": target_level})

        async with transaction(self._session_factory) as session:
            campaign = ReferralCampaign(
                name=name,
                description=description,
                starts_at=starts_at,
                ends_at=ends_at,
                is_active=True,
                registration_multiplier=registration_multiplier,
                premium_bonus_multiplier=premium_bonus_multiplier,
                activity_multiplier=activity_multiplier,
                min_referrals=min_referrals,
                target_level=target_level,
                requires_premium=requires_premium,
            )
            session.add(campaign)
            await session.flush()
        logger.info("Campaign created", extra={"campaign_id": campaign.id, "campaign_name": name})
        return campaign

    async def list_active(self, now: Optional[datetime] = None) -> List[ReferralCampaign]:
        now = now or utcnow()
        async with self._session_factory() as session:
            stmt = select(ReferralCampaign).where(*_active_clause(now)).order_by(ReferralCampaign.starts_at)
            return list((await session.execute(stmt)).scalars().all())

    async def join(self, account_id: int, campaign_id: int, now: Optional[datetime] = None) -> ReferralCampaignMember:
        now = now or utcnow()
        try:
            async with transaction(self._session_factory) as session:
                campaign = await session.get(ReferralCampaign, int(campaign_id))
                if campaign is None:
                    raise NotFoundError("Campaign not found.", details={"campaign_id": campaign_id})
                account = await session.get(Account, int(account_id))
                if account is None:
                    raise NotFoundError("Account not found.", details={"account_id": account_id})

                self._check_eligibility(campaign, account, now)

                member = ReferralCampaignMember(campaign_id=campaign.id, account_id=account.id)
                session.add(member)
                await session.flush()
        except IntegrityError as exc:
            raise CampaignError(
                "Account already joined this campaign.",
                details={"campaign_id": campaign_id, "account_id": account_id},
            ) from exc
        logger.info("Campaign joined", extra={"campaign_id": campaign_id, "account_id": account_id})
        return member

    @staticmethod
    def _check_eligibility(campaign: ReferralCampaign, account: Account, now: datetime) -> None:
        details = {"campaign_id": campaign.id, "account_id": account.id}
        if not campaign.is_active or campaign.starts_at > now or (
            campaign.ends_at is not None and campaign.ends_at <= now
        ):
            raise CampaignError("Campaign is not active.", details=details)
        if campaign.requires_premium and not account.is_premium:
            raise CampaignError("Campaign requires premium.", details=details)
        if campaign.target_level and level_rank(account.level) < level_rank(campaign.target_level):
            raise CampaignError(
                "Account level is below campaign target.",
                details={**details, "level": account.level, "target_level": campaign.target_level},
            )
        if campaign.min_referrals and int(account.referrals_count) < int(campaign.min_referrals):
            raise CampaignError(
                "Not enough referrals for campaign.",
                details={**details, "referrals_count": account.referrals_count},
            )

    async def multipliers_for(
        self,
        session: AsyncSession,
        account_id: int,
        now: Optional[datetime] = None,
    ) -> CampaignMultipliers:
        """Читает в сессии вызывающего: множители фиксируются в той же транзакции, что и начисление."""
        now = now or utcnow()
        stmt = (
            select(ReferralCampaign)
            .join(ReferralCampaignMember, ReferralCampaignMember.campaign_id == ReferralCampaign.id)
            .where(ReferralCampaignMember.account_id == int(account_id), *_active_clause(now))
        )
        campaigns = (await session.execute(stmt)).scalars().all()
        if not campaigns:
            return NO_MULTIPLIERS
        registration = premium_bonus = activity = 1.0
        for campaign in campaigns:
            registration *= float(campaign.registration_multiplier)
            premium_bonus *= float(campaign.premium_bonus_multiplier)
            activity *= float(campaign.activity_multiplier)
        return CampaignMultipliers(registration, premium_bonus, activity)


__all__ = ["CampaignMultipliers", "NO_MULTIPLIERS", "CampaignService"]
