# -*- coding: utf-8 -*-
# gramledger/app/routes/accounts_routes.py
# =============================================================================
# Назначение кода:
#   HTTP-ручки счетов GRAM Ledger:
#   • POST /accounts                 - создать счёт (опционально сразу с реф-кодом)
#   • GET  /accounts/{id}/balance    - текущий баланс
#   • GET  /accounts/{id}/ledger     - история (keyset-курсоры, ETag)
#
# Канон:
#   • Баланс меняет только сервисный слой; здесь - проводка и DTO.
#   • Журнал отдаётся новыми записями сверху, курсор непрозрачен.
# =============================================================================

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Path, Response, status

from gramledger.app.core.logging_core import get_logger
from gramledger.app.deps import get_container, ledger_filters, make_etag
from gramledger.app.schemas import (
    ERROR_RESPONSES,
    AccountCreateIn,
    AccountOut,
    BalanceOut,
    CursorPage,
    LedgerEntryOut,
)
from gramledger.app.services.container import Container
from gramledger.app.services.ledger_service import LedgerFilters

logger = get_logger(__name__)
router = APIRouter(prefix="/accounts", tags=["accounts"], responses=ERROR_RESPONSES)


@router.post("", response_model=AccountOut, status_code=status.HTTP_201_CREATED, summary="Создать счёт")
async def create_account(
    body: AccountCreateIn,
    container: Container = Depends(get_container),
) -> AccountOut:
    """
    Создаёт счёт с уникальным реферальным кодом. Если передан referral_code -
    сразу обрабатывается событие регистрации (неверный код не мешает созданию).
    """
    account = await container.accounts.create_account(telegram_id=body.telegram_id, username=body.username)
    if body.referral_code:
        await container.events.on_registration(account.id, body.referral_code)
        account = await container.accounts.get_account(account.id)
    return AccountOut.model_validate(account)


@router.get("/{account_id}/balance", response_model=BalanceOut, summary="Баланс счёта")
async def get_balance(
    account_id: int = Path(..., ge=1),
    container: Container = Depends(get_container),
) -> BalanceOut:
    account = await container.accounts.get_account(account_id)
    return BalanceOut(
        account_id=account.id,
        balance=int(account.balance),
        frozen_balance=int(account.frozen_balance),
        level=account.level,
    )


@router.get(
    "/{account_id}/ledger",
    response_model=CursorPage[LedgerEntryOut],
    summary="История операций счёта (курсорная пагинация)",
)
async def get_ledger(
    account_id: int = Path(..., ge=1),
    filters: LedgerFilters = Depends(ledger_filters),
    if_none_match: Optional[str] = Header(None),
    container: Container = Depends(get_container),
) -> Response:
    page = await container.accounts.get_ledger(account_id, filters)
    out = CursorPage[LedgerEntryOut](
        items=[LedgerEntryOut.model_validate(entry) for entry in page.entries],
        next_cursor=page.next_cursor,
    )

    etag = make_etag(
        {
            "scope": "ledger",
            "account_id": account_id,
            "cursor": filters.cursor or "",
            "items": [item.id for item in out.items],
            "next_cursor": page.next_cursor or "",
        }
    )
    if if_none_match and if_none_match.strip() == etag:
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers={"ETag": etag})

    return Response(
        content=out.model_dump_json(),
        status_code=status.HTTP_200_OK,
        media_type="application/json",
        headers={"ETag": etag},
    )


__all__ = ["router"]
