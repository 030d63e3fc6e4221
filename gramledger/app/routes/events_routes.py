# -*- coding: utf-8 -*-
# gramledger/app/routes/events_routes.py
# =============================================================================
# Назначение кода:
#   Приём внешних событий платформы (регистрация, премиум, активность) и
#   передача их в RewardEvents.
#
# Канон:
#   • Пропуск награды - НЕ ошибка: 200 + skip_reason.
#   • Ошибки (нет счёта, сбой хранилища) - через errors_core.
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends

from gramledger.app.deps import get_container
from gramledger.app.schemas import (
    ERROR_RESPONSES,
    ActivityEventIn,
    EarnedAchievementOut,
    LedgerEntryOut,
    PremiumUpgradeEventIn,
    RegistrationEventIn,
    RewardOutcomeOut,
)
from gramledger.app.services.container import Container
from gramledger.app.services.events_service import EventResult

router = APIRouter(prefix="/events", tags=["events"], responses=ERROR_RESPONSES)


def _to_out(result: EventResult) -> RewardOutcomeOut:
    outcome = result.outcome
    return RewardOutcomeOut(
        issued=outcome.issued,
        skip_reason=outcome.skip.value if outcome.skip else None,
        referrer_id=outcome.referrer_id,
        entry=LedgerEntryOut.model_validate(outcome.entry) if outcome.entry is not None else None,
        achievements=[
            EarnedAchievementOut(
                id=a.id,
                name=a.name,
                reward_amount=int(a.reward_amount),
                reward_title=a.reward_title,
            )
            for a in result.achievements
        ],
    )


@router.post("/registration", response_model=RewardOutcomeOut, summary="Регистрация по реф-коду")
async def registration(body: RegistrationEventIn, container: Container = Depends(get_container)) -> RewardOutcomeOut:
    return _to_out(await container.events.on_registration(body.account_id, body.referral_code))


@router.post("/premium-upgrade", response_model=RewardOutcomeOut, summary="Реферал купил премиум")
async def premium_upgrade(
    body: PremiumUpgradeEventIn, container: Container = Depends(get_container)
) -> RewardOutcomeOut:
    return _to_out(await container.events.on_premium_upgrade(body.account_id, body.expires_at))


@router.post("/activity", response_model=RewardOutcomeOut, summary="Активность реферала")
async def activity(body: ActivityEventIn, container: Container = Depends(get_container)) -> RewardOutcomeOut:
    return _to_out(await container.events.on_activity(body.account_id, body.activity_type, body.amount))


__all__ = ["router"]
