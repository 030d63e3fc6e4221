# -*- coding: utf-8 -*-
# gramledger/app/services/accounts_service.py
# =============================================================================
# Назначение кода:
#   Сервис счетов GRAM Ledger:
#   • create_account - новый счёт с уникальным реферальным кодом.
#   • get_account / get_balance / get_ledger - чтение.
#   • resolve_referral_code - код → id счёта (без учёта регистра).
#   • set_premium - отметка премиума (сам бонус выдаёт RewardEvents).
#   • credit / debit / freeze / release - обёртки над AccountMutator,
#     каждая в собственной транзакции.
#
# Канон/инварианты:
#   • Реф-код: алфавит без двусмысленных символов, длина из настроек.
#   • Коллизия кода при вставке → новая попытка с другим кодом.
#
# Запреты:
#   • Прямых изменений balance здесь нет - только через AccountMutator.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gramledger.app.core.config_core import Settings, get_settings
from gramledger.app.core.database_core import transaction
from gramledger.app.core.errors_core import NotFoundError, ValidationError
from gramledger.app.core.logging_core import get_logger
from gramledger.app.core.system_locks import LEDGER_KINDS, direction_for_kind
from gramledger.app.core.utils_core import gen_ref_code, normalize_ref_code
from gramledger.app.models import Account, LedgerEntry
from gramledger.app.services.ledger_service import (
    AccountMutator,
    Correlation,
    LedgerFilters,
    LedgerPage,
)

logger = get_logger(__name__)

_CODE_ATTEMPTS = 5


class AccountService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        mutator: AccountMutator,
        settings: Optional[Settings] = None,
    ) -> None:
        self._session_factory = session_factory
        self._mutator = mutator
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------ create
    async def create_account(
        self,
        telegram_id: Optional[int] = None,
        username: Optional[str] = None,
    ) -> Account:
        """
        Создаёт счёт. telegram_id уникален: повтор → ValidationError.
        Коллизия реф-кода (крайне редкая) лечится повторной генерацией.
        """
        for attempt in range(1, _CODE_ATTEMPTS + 1):
            code = gen_ref_code(self._settings.REFERRAL_CODE_LENGTH)
            try:
                async with transaction(self._session_factory) as session:
                    account = Account(telegram_id=telegram_id, username=username, referral_code=code)
                    session.add(account)
                    await session.flush()
            except IntegrityError as exc:
                reason = str(exc.orig)
                if "telegram_id" in reason or "uq_accounts_telegram" in reason:
                    raise ValidationError(
                        "Account with this telegram_id already exists.",
                        details={"telegram_id": telegram_id},
                    ) from exc
                logger.warning("Referral code collision, regenerating", extra={"attempt": attempt})
                continue
            logger.info("Account created", extra={"account_id": account.id, "telegram_id": telegram_id})
            return account
        raise ValidationError("Could not allocate a unique referral code.")

    # -------------------------------------------------------------------- read
    async def get_account(self, account_id: int) -> Account:
        async with self._session_factory() as session:
            account = await session.get(Account, int(account_id))
        if account is None:
            raise NotFoundError("Account not found.", details={"account_id": account_id})
        return account

    async def get_balance(self, account_id: int) -> int:
        return int((await self.get_account(account_id)).balance)

    async def get_ledger(self, account_id: int, filters: Optional[LedgerFilters] = None) -> LedgerPage:
        await self.get_account(account_id)
        async with self._session_factory() as session:
            return await self._mutator.ledger.list_entries(session, account_id, filters)

    async def resolve_referral_code(self, code: Optional[str]) -> Optional[int]:
        normalized = normalize_ref_code(code)
        if normalized is None:
            return None
        async with self._session_factory() as session:
            stmt = select(Account.id).where(Account.referral_code == normalized)
            return (await session.execute(stmt)).scalar_one_or_none()

    # ----------------------------------------------------------------- premium
    async def set_premium(self, account_id: int, expires_at: Optional[datetime] = None) -> Account:
        async with transaction(self._session_factory) as session:
            account = await self._mutator.lock_account(session, account_id)
            account.is_premium = True
            account.premium_expires_at = expires_at
            await session.flush()
        logger.info("Premium enabled", extra={"account_id": account_id})
        return account

    # ------------------------------------------------------------------- money
    async def credit(
        self,
        account_id: int,
        amount: int,
        kind: str,
        correlation: Optional[Correlation] = None,
        *,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> LedgerEntry:
        return await self._apply(account_id, amount, "credit", kind, correlation, description, idempotency_key)

    async def debit(
        self,
        account_id: int,
        amount: int,
        kind: str,
        correlation: Optional[Correlation] = None,
        *,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> LedgerEntry:
        return await self._apply(account_id, amount, "debit", kind, correlation, description, idempotency_key)

    async def _apply(
        self,
        account_id: int,
        amount: int,
        direction: str,
        kind: str,
        correlation: Optional[Correlation],
        description: Optional[str],
        idempotency_key: Optional[str],
    ) -> LedgerEntry:
        if kind not in LEDGER_KINDS or direction_for_kind(kind) != direction:
            raise ValidationError(
                f"Ledger kind {kind!r} is not a {direction}.",
                details={"kind": kind, "direction": direction},
            )
        async with transaction(self._session_factory) as session:
            entry = await self._mutator.apply_delta(
                session,
                account_id,
                amount,
                direction,
                kind,
                correlation,
                description=description,
                idempotency_key=idempotency_key,
            )
        logger.info(
            "Ledger entry committed",
            extra={"account_id": account_id, "kind": kind, "amount": amount, "entry_id": entry.id},
        )
        return entry

    async def freeze(self, account_id: int, amount: int) -> Account:
        """Резервирует сумму; в журнал пишется запись freeze."""
        async with transaction(self._session_factory) as session:
            await self._mutator.freeze(session, account_id, amount)
            return await self._mutator.lock_account(session, account_id)

    async def release(self, account_id: int, amount: int) -> Account:
        async with transaction(self._session_factory) as session:
            await self._mutator.release(session, account_id, amount)
            return await self._mutator.lock_account(session, account_id)


__all__ = ["AccountService"]
