# -*- coding: utf-8 -*-
# gramledger/app/routes/admin_routes.py
# =============================================================================
# Назначение кода:
#   Административные ручки GRAM Ledger (заголовок X-Admin-Token):
#   • POST  /admin/bonus          - бонус списку счетов
#   • GET   /admin/reward-config  - текущий конфиг наград
#   • PATCH /admin/reward-config  - горячее изменение конфига
#   • POST  /admin/campaigns      - новая кампания
#
# Канон:
#   • Idempotency-Key (опционально) защищает повтор раздачи бонусов.
# =============================================================================

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, status

from gramledger.app.core.logging_core import get_logger
from gramledger.app.deps import get_container, require_admin
from gramledger.app.schemas import (
    ERROR_RESPONSES,
    BonusFailureOut,
    BonusIn,
    BonusOut,
    CampaignCreateIn,
    CampaignOut,
    RewardConfigOut,
    RewardConfigPatchIn,
)
from gramledger.app.services.container import Container

logger = get_logger(__name__)
router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    responses=ERROR_RESPONSES,
    dependencies=[Depends(require_admin)],
)


@router.post("/bonus", response_model=BonusOut, summary="Раздать бонус")
async def distribute_bonus(
    body: BonusIn,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    container: Container = Depends(get_container),
) -> BonusOut:
    result = await container.admin.distribute_bonus(
        body.account_ids,
        body.amount,
        body.reason,
        body.admin_id,
        idempotency_key=idempotency_key,
    )
    return BonusOut(
        successful=result.successful,
        failed=[BonusFailureOut(account_id=f.account_id, error=f.error, message=f.message) for f in result.failed],
    )


@router.get("/reward-config", response_model=RewardConfigOut, summary="Текущий конфиг наград")
async def get_reward_config(container: Container = Depends(get_container)) -> RewardConfigOut:
    store = container.config_store
    return RewardConfigOut(version=store.version, config=store.get().model_dump())


@router.patch("/reward-config", response_model=RewardConfigOut, summary="Изменить конфиг наград")
async def patch_reward_config(
    body: RewardConfigPatchIn,
    container: Container = Depends(get_container),
) -> RewardConfigOut:
    store = container.config_store
    config = await store.update(body.patch)
    return RewardConfigOut(version=store.version, config=config.model_dump())


@router.post(
    "/campaigns",
    response_model=CampaignOut,
    status_code=status.HTTP_201_CREATED,
    summary="Создать кампанию",
)
async def create_campaign(body: CampaignCreateIn, container: Container = Depends(get_container)) -> CampaignOut:
    campaign = await container.campaigns.create_campaign(**body.model_dump())
    return CampaignOut.model_validate(campaign)


__all__ = ["router"]
