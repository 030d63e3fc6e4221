# -*- coding: utf-8 -*-
# gramledger/app/routes/referrals_routes.py
# =============================================================================
# Назначение кода:
#   Чтение реферальной статистики и достижений:
#   • GET /referrals/{id}/stats?period=day|week|month|all
#   • GET /referrals/{id}/list?level=&is_premium=&date_from=&date_to=&cursor=
#   • GET /referrals/{id}/tree?max_depth=
#   • GET /referrals/{id}/achievements
#
# Канон:
#   • Чистое чтение; денежной логики нет.
# =============================================================================

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Path, Query

from gramledger.app.deps import get_container
from gramledger.app.core.utils_core import as_utc
from gramledger.app.schemas import (
    ERROR_RESPONSES,
    AchievementProgressOut,
    ReferralListOut,
    ReferralStatsOut,
    ReferralSummaryOut,
    ReferralTreeOut,
)
from gramledger.app.services.container import Container

router = APIRouter(prefix="/referrals", tags=["referrals"], responses=ERROR_RESPONSES)


@router.get("/{account_id}/stats", response_model=ReferralStatsOut, summary="Реферальная статистика")
async def get_referral_stats(
    account_id: int = Path(..., ge=1),
    period: Optional[Literal["day", "week", "month", "all"]] = Query(None),
    container: Container = Depends(get_container),
) -> ReferralStatsOut:
    stats = await container.stats.get_referral_stats(account_id, period)
    return ReferralStatsOut(
        account_id=stats.account_id,
        period=stats.period,
        total_referrals=stats.total_referrals,
        premium_referrals=stats.premium_referrals,
        total_earned=stats.total_earned,
        conversion_rate=stats.conversion_rate,
        average_earning_per_referral=stats.average_earning_per_referral,
        breakdown=stats.breakdown,
    )


@router.get("/{account_id}/list", response_model=ReferralListOut, summary="Прямые рефералы")
async def list_referrals(
    account_id: int = Path(..., ge=1),
    level: Optional[Literal["bronze", "silver", "gold", "premium"]] = Query(None),
    is_premium: Optional[bool] = Query(None),
    date_from: Optional[datetime] = Query(None, description="Зарегистрирован не раньше (включительно)"),
    date_to: Optional[datetime] = Query(None, description="Зарегистрирован раньше (не включительно)"),
    cursor: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=500),
    container: Container = Depends(get_container),
) -> ReferralListOut:
    page = await container.stats.list_referrals(
        account_id,
        level=level,
        is_premium=is_premium,
        date_from=as_utc(date_from),
        date_to=as_utc(date_to),
        cursor=cursor,
        limit=limit,
    )
    return ReferralListOut(
        items=[ReferralSummaryOut(**asdict(item)) for item in page.items],
        total=page.total,
        next_cursor=page.next_cursor,
    )


@router.get("/{account_id}/tree", response_model=ReferralTreeOut, summary="Дерево приглашённых")
async def get_referral_tree(
    account_id: int = Path(..., ge=1),
    max_depth: Optional[int] = Query(None, ge=1, description="Не глубже max_tree_depth из конфига"),
    container: Container = Depends(get_container),
) -> ReferralTreeOut:
    tree = await container.stats.referral_tree(account_id, max_depth)
    return ReferralTreeOut.model_validate(asdict(tree))


@router.get(
    "/{account_id}/achievements",
    response_model=List[AchievementProgressOut],
    summary="Прогресс реферальных достижений",
)
async def get_achievements(
    account_id: int = Path(..., ge=1),
    container: Container = Depends(get_container),
) -> List[AchievementProgressOut]:
    progress = await container.achievements.achievement_progress(account_id)
    return [
        AchievementProgressOut(
            achievement_id=item.achievement_id,
            name=item.name,
            requirement_type=item.requirement_type,
            current=item.current,
            target=item.target,
            progress=item.progress,
            earned=item.earned,
            earned_at=item.earned_at,
            reward_amount=item.reward_amount,
        )
        for item in progress
    ]


__all__ = ["router"]
