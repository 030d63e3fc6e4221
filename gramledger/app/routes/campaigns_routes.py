# -*- coding: utf-8 -*-
# gramledger/app/routes/campaigns_routes.py
# =============================================================================
# Назначение кода:
#   • GET  /campaigns/active       - активные кампании
#   • POST /campaigns/{id}/join    - вступление счёта в кампанию
# =============================================================================

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Path, status

from gramledger.app.deps import get_container
from gramledger.app.schemas import ERROR_RESPONSES, CampaignJoinIn, CampaignMemberOut, CampaignOut
from gramledger.app.services.container import Container

router = APIRouter(prefix="/campaigns", tags=["campaigns"], responses=ERROR_RESPONSES)


@router.get("/active", response_model=List[CampaignOut], summary="Активные кампании")
async def list_active(container: Container = Depends(get_container)) -> List[CampaignOut]:
    return [CampaignOut.model_validate(c) for c in await container.campaigns.list_active()]


@router.post(
    "/{campaign_id}/join",
    response_model=CampaignMemberOut,
    status_code=status.HTTP_201_CREATED,
    summary="Вступить в кампанию",
)
async def join(
    body: CampaignJoinIn,
    campaign_id: int = Path(..., ge=1),
    container: Container = Depends(get_container),
) -> CampaignMemberOut:
    member = await container.campaigns.join(body.account_id, campaign_id)
    return CampaignMemberOut.model_validate(member)


__all__ = ["router"]
