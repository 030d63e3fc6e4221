# -*- coding: utf-8 -*-
# gramledger/app/services/admin_service.py
# =============================================================================
# Назначение кода:
#   Административные начисления GRAM Ledger:
#   • distribute_bonus(account_ids, amount, reason, admin_id) - бонус списку
#     счетов, каждый счёт в СВОЕЙ транзакции.
#
# Канон:
#   • Ошибка по одному счёту не откатывает остальные: она попадает в failed
#     со своим error-кодом.
#   • kind=admin_bonus, correlation {admin_id, reason}, уведомление
#     bonus_received после commit.
#   • idempotency_key (опционально) даёт ключ admin_bonus:<key>:<account>:
#     повтор запроса не начисляет второй раз (failed: duplicate_reward).
#
# Запреты:
#   • Никаких прямых UPDATE балансов - только AccountMutator.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gramledger.app.core.database_core import transaction
from gramledger.app.core.errors_core import DuplicateRewardError, GramError, ValidationError
from gramledger.app.core.logging_core import get_logger
from gramledger.app.services.ledger_service import AccountMutator, AdminCorrelation
from gramledger.app.services.notify_service import Notifier, notify_safely

logger = get_logger(__name__, component="admin")


@dataclass
class BonusFailure:
    account_id: int
    error: str
    message: str


@dataclass
class BonusDistribution:
    successful: List[int] = field(default_factory=list)
    failed: List[BonusFailure] = field(default_factory=list)
    entry_ids: Dict[int, int] = field(default_factory=dict)


class AdminService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        mutator: AccountMutator,
        notifier: Notifier,
    ) -> None:
        self._session_factory = session_factory
        self._mutator = mutator
        self._notifier = notifier

    async def distribute_bonus(
        self,
        account_ids: Sequence[int],
        amount: int,
        reason: str,
        admin_id: int,
        *,
        idempotency_key: Optional[str] = None,
    ) -> BonusDistribution:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Bonus amount must be a positive integer.", details={"amount": amount})
        if not reason or not reason.strip():
            raise ValidationError("Bonus reason is required.")

        result = BonusDistribution()
        # дубли id в запросе начисляются один раз
        for account_id in dict.fromkeys(int(a) for a in account_ids):
            key = f"admin_bonus:{idempotency_key}:{account_id}" if idempotency_key else None
            try:
                async with transaction(self._session_factory) as session:
                    if key is not None:
                        previous = await self._mutator.ledger.find_by_idempotency_key(session, key)
                        if previous is not None:
                            raise DuplicateRewardError(details={"entry_id": previous.id})
                    entry = await self._mutator.apply_delta(
                        session,
                        account_id,
                        amount,
                        "credit",
                        "admin_bonus",
                        AdminCorrelation(admin_id=int(admin_id), reason=reason),
                        description=reason,
                        idempotency_key=key,
                    )
            except GramError as exc:
                logger.warning(
                    "Admin bonus failed",
                    extra={"account_id": account_id, "admin_id": admin_id, "error": exc.code},
                )
                result.failed.append(BonusFailure(account_id=account_id, error=exc.code, message=exc.message))
                continue

            result.successful.append(account_id)
            result.entry_ids[account_id] = entry.id
            await notify_safely(
                self._notifier,
                account_id,
                "bonus_received",
                {"amount": amount, "reason": reason},
            )

        logger.info(
            "Admin bonus distributed",
            extra={
                "admin_id": admin_id,
                "amount": amount,
                "successful": len(result.successful),
                "failed": len(result.failed),
            },
        )
        return result


__all__ = ["BonusFailure", "BonusDistribution", "AdminService"]
