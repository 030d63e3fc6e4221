# -*- coding: utf-8 -*-
# gramledger/app/schemas/accounts_schemas.py
# =============================================================================
# Назначение кода:
#   DTO счетов и журнала: создание счёта, баланс, запись журнала.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .common_schemas import ORMModel


class AccountCreateIn(BaseModel):
    telegram_id: Optional[int] = Field(None, description="Telegram ID пользователя (уникален)")
    username: Optional[str] = Field(None, max_length=64)
    referral_code: Optional[str] = Field(
        None, max_length=32, description="Код пригласившего: сразу запускает событие регистрации"
    )


class AccountOut(ORMModel):
    id: int
    telegram_id: Optional[int] = None
    username: Optional[str] = None
    balance: int
    frozen_balance: int
    level: str
    total_earned: int
    total_spent: int
    referrer_id: Optional[int] = None
    referral_code: str
    referrals_count: int
    premium_referrals_count: int
    is_premium: bool
    created_at: datetime


class BalanceOut(BaseModel):
    account_id: int
    balance: int
    frozen_balance: int
    level: str


class LedgerEntryOut(ORMModel):
    id: int
    account_id: int
    kind: str
    direction: str
    amount: int
    balance_before: int
    balance_after: int
    related_account_id: Optional[int] = None
    related_task_id: Optional[int] = None
    related_check_id: Optional[int] = None
    correlation: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    status: str
    created_at: datetime


__all__ = ["AccountCreateIn", "AccountOut", "BalanceOut", "LedgerEntryOut"]
