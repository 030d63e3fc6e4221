# -*- coding: utf-8 -*-
# gramledger/app/services/ledger_service.py
# =============================================================================
# GRAM Ledger - Журнал и мутатор баланса (канон)
# -----------------------------------------------------------------------------
# ЕДИНСТВЕННАЯ точка входа для любых изменений баланса счёта.
#   • AccountMutator.apply_delta(...) - кредит/дебет + запись журнала.
#   • AccountMutator.freeze/release     - резерв, записи freeze (дебет) и release (кредит).
#   • LedgerStore                       - добавление и чтение записей журнала.
#   • Correlation                       - закрытый набор типизированных привязок.
#
# Правила:
#   • Отрицательный баланс запрещён (сервисная проверка + CHECK в БД).
#   • Направление (credit/debit) строго следует из kind записи.
#   • Строка счёта блокируется SELECT ... FOR UPDATE до изменения.
#   • Несколько счетов блокируются по возрастанию id (без взаимных дедлоков).
#   • Вызывающий код владеет транзакцией: здесь нет commit/rollback.
#   • Повтор idempotency_key → DuplicateRewardError (UNIQUE в журнале).
#
# Запреты:
#   • Никаких UPDATE/DELETE записей журнала.
#   • Никаких ретраев внутри: повтор - решение вызывающего.
# =============================================================================

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Sequence, Tuple, Type, Union

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gramledger.app.core.errors_core import (
    DuplicateRewardError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from gramledger.app.core.logging_core import get_logger
from gramledger.app.core.system_locks import (
    BalanceSnapshot,
    LEDGER_KINDS,
    RESERVE_KINDS,
    assert_direction_matches_kind,
    ensure_account_non_negative_after,
)
from gramledger.app.core.utils_core import decode_cursor, encode_cursor
from gramledger.app.models import Account, LedgerEntry

logger = get_logger(__name__)

# -----------------------------------------------------------------------------
# Уровни счёта
# -----------------------------------------------------------------------------
LEVELS = ("bronze", "silver", "gold", "premium")
_LEVEL_THRESHOLDS = ((100_000, "premium"), (50_000, "gold"), (10_000, "silver"))


def level_for_balance(balance: int) -> str:
    """≥100000 premium, ≥50000 gold, ≥10000 silver, иначе bronze."""
    for threshold, level in _LEVEL_THRESHOLDS:
        if balance >= threshold:
            return level
    return "bronze"


def level_rank(level: str) -> int:
    try:
        return LEVELS.index(level)
    except ValueError as exc:
        raise ValidationError("Unknown level.", details={"level": level}) from exc


# -----------------------------------------------------------------------------
# Корреляция записи журнала (tagged variant, хранится JSON с ключом type)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class TaskCorrelation:
    task_id: int
    type: ClassVar[str] = "task"


@dataclass(frozen=True)
class CheckCorrelation:
    check_id: int
    type: ClassVar[str] = "check"


@dataclass(frozen=True)
class ReferralCorrelation:
    referred_account_id: int
    activity_type: Optional[str] = None
    type: ClassVar[str] = "referral"


@dataclass(frozen=True)
class AchievementCorrelation:
    achievement_id: str
    type: ClassVar[str] = "achievement"


@dataclass(frozen=True)
class CampaignCorrelation:
    campaign_id: int
    type: ClassVar[str] = "campaign"


@dataclass(frozen=True)
class AdminCorrelation:
    admin_id: int
    reason: str
    type: ClassVar[str] = "admin"


Correlation = Union[
    TaskCorrelation,
    CheckCorrelation,
    ReferralCorrelation,
    AchievementCorrelation,
    CampaignCorrelation,
    AdminCorrelation,
]

_CORRELATION_TYPES: Dict[str, Type[Any]] = {
    cls.type: cls
    for cls in (
        TaskCorrelation,
        CheckCorrelation,
        ReferralCorrelation,
        AchievementCorrelation,
        CampaignCorrelation,
        AdminCorrelation,
    )
}


def correlation_to_json(correlation: Optional[Correlation]) -> Optional[Dict[str, Any]]:
    if correlation is None:
        return None
    return {"type": correlation.type, **asdict(correlation)}


def correlation_from_json(doc: Optional[Dict[str, Any]]) -> Optional[Correlation]:
    """Восстанавливает вариант по тегу type. Неизвестный тег → ValidationError."""
    if not doc:
        return None
    payload = dict(doc)
    tag = payload.pop("type", None)
    cls = _CORRELATION_TYPES.get(str(tag))
    if cls is None:
        raise ValidationError("Unknown correlation type.", details={"type": tag})
    return cls(**payload)


def _related_columns(correlation: Optional[Correlation]) -> Dict[str, Optional[int]]:
    related: Dict[str, Optional[int]] = {
        "related_account_id": None,
        "related_task_id": None,
        "related_check_id": None,
    }
    if isinstance(correlation, ReferralCorrelation):
        related["related_account_id"] = correlation.referred_account_id
    elif isinstance(correlation, TaskCorrelation):
        related["related_task_id"] = correlation.task_id
    elif isinstance(correlation, CheckCorrelation):
        related["related_check_id"] = correlation.check_id
    return related


# -----------------------------------------------------------------------------
# Фильтры и страница журнала
# -----------------------------------------------------------------------------
@dataclass
class LedgerFilters:
    kinds: Optional[Sequence[str]] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    status: Optional[str] = None
    cursor: Optional[str] = None
    limit: int = 50


@dataclass
class LedgerPage:
    entries: List[LedgerEntry] = field(default_factory=list)
    next_cursor: Optional[str] = None


# -----------------------------------------------------------------------------
# LedgerStore - только вставка и чтение
# -----------------------------------------------------------------------------
class LedgerStore:
    """Журнал. Все методы работают в сессии/транзакции вызывающего."""

    def __init__(self, *, page_max: int = 500) -> None:
        self.page_max = page_max

    async def append(self, session: AsyncSession, entry: LedgerEntry) -> LedgerEntry:
        session.add(entry)
        try:
            await session.flush()
        except IntegrityError as exc:
            if "idempotency_key" in str(exc.orig):
                raise DuplicateRewardError(
                    details={"idempotency_key": entry.idempotency_key},
                ) from exc
            raise
        return entry

    async def list_entries(
        self,
        session: AsyncSession,
        account_id: int,
        filters: Optional[LedgerFilters] = None,
    ) -> LedgerPage:
        """
        История счёта, новые сверху: ORDER BY created_at DESC, id DESC.
        Курсор - последняя отданная пара (created_at, id).
        """
        filters = filters or LedgerFilters()
        limit = max(1, min(int(filters.limit), self.page_max))

        stmt = select(LedgerEntry).where(LedgerEntry.account_id == account_id)
        if filters.kinds:
            stmt = stmt.where(LedgerEntry.kind.in_(list(filters.kinds)))
        if filters.status:
            stmt = stmt.where(LedgerEntry.status == filters.status)
        if filters.date_from is not None:
            stmt = stmt.where(LedgerEntry.created_at >= filters.date_from)
        if filters.date_to is not None:
            stmt = stmt.where(LedgerEntry.created_at < filters.date_to)
        if filters.cursor:
            ts, last_id = decode_cursor(filters.cursor)
            stmt = stmt.where(
                or_(
                    LedgerEntry.created_at < ts,
                    and_(LedgerEntry.created_at == ts, LedgerEntry.id < last_id),
                )
            )
        stmt = stmt.order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc()).limit(limit + 1)

        rows = list((await session.execute(stmt)).scalars().all())
        next_cursor: Optional[str] = None
        if len(rows) > limit:
            rows = rows[:limit]
            last = rows[-1]
            next_cursor = encode_cursor(last.created_at, last.id)
        return LedgerPage(entries=rows, next_cursor=next_cursor)

    async def sum_amount(
        self,
        session: AsyncSession,
        account_id: int,
        kinds: Iterable[str],
        since: Optional[datetime] = None,
    ) -> int:
        stmt = select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(
            LedgerEntry.account_id == account_id,
            LedgerEntry.kind.in_(list(kinds)),
        )
        if since is not None:
            stmt = stmt.where(LedgerEntry.created_at >= since)
        return int((await session.execute(stmt)).scalar_one())

    async def sum_by_kind(
        self,
        session: AsyncSession,
        account_id: int,
        kinds: Iterable[str],
        since: Optional[datetime] = None,
    ) -> Dict[str, int]:
        kinds = list(kinds)
        stmt = (
            select(LedgerEntry.kind, func.coalesce(func.sum(LedgerEntry.amount), 0))
            .where(LedgerEntry.account_id == account_id, LedgerEntry.kind.in_(kinds))
            .group_by(LedgerEntry.kind)
        )
        if since is not None:
            stmt = stmt.where(LedgerEntry.created_at >= since)
        totals = {kind: 0 for kind in kinds}
        for kind, total in (await session.execute(stmt)).all():
            totals[kind] = int(total)
        return totals

    async def sum_by_related(
        self,
        session: AsyncSession,
        account_ids: Iterable[int],
        related_account_ids: Iterable[int],
        kinds: Iterable[str],
    ) -> Dict[Tuple[int, int], int]:
        """Суммы по парам (account_id, related_account_id): сколько счёт заработал на каждом реферале."""
        account_ids, related_account_ids = list(account_ids), list(related_account_ids)
        if not account_ids or not related_account_ids:
            return {}
        stmt = (
            select(LedgerEntry.account_id, LedgerEntry.related_account_id, func.sum(LedgerEntry.amount))
            .where(
                LedgerEntry.account_id.in_(account_ids),
                LedgerEntry.related_account_id.in_(related_account_ids),
                LedgerEntry.kind.in_(list(kinds)),
            )
            .group_by(LedgerEntry.account_id, LedgerEntry.related_account_id)
        )
        return {
            (int(account_id), int(related_id)): int(total)
            for account_id, related_id, total in (await session.execute(stmt)).all()
        }

    async def find_by_idempotency_key(self, session: AsyncSession, key: str) -> Optional[LedgerEntry]:
        stmt = select(LedgerEntry).where(LedgerEntry.idempotency_key == key).limit(1)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def find_premium_bonus(
        self, session: AsyncSession, referrer_id: int, related_account_id: int
    ) -> Optional[LedgerEntry]:
        stmt = (
            select(LedgerEntry)
            .where(
                LedgerEntry.account_id == referrer_id,
                LedgerEntry.related_account_id == related_account_id,
                LedgerEntry.kind == "referral_premium_bonus",
            )
            .limit(1)
        )
        return (await session.execute(stmt)).scalar_one_or_none()


# -----------------------------------------------------------------------------
# AccountMutator - блокировка строки счёта и применение дельты
# -----------------------------------------------------------------------------
class AccountMutator:
    def __init__(self, ledger: LedgerStore) -> None:
        self.ledger = ledger

    async def lock_account(self, session: AsyncSession, account_id: int) -> Account:
        """SELECT ... FOR UPDATE; отложенные изменения сессии сбрасываются в БД заранее."""
        await session.flush()
        stmt = (
            select(Account)
            .where(Account.id == int(account_id))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        account = (await session.execute(stmt)).scalar_one_or_none()
        if account is None:
            raise NotFoundError("Account not found.", details={"account_id": account_id})
        return account

    async def lock_accounts(self, session: AsyncSession, account_ids: Iterable[int]) -> Dict[int, Account]:
        """Блокирует несколько счетов строго по возрастанию id."""
        locked: Dict[int, Account] = {}
        for account_id in sorted({int(a) for a in account_ids}):
            locked[account_id] = await self.lock_account(session, account_id)
        return locked

    async def apply_delta(
        self,
        session: AsyncSession,
        account_id: int,
        amount: int,
        direction: str,
        kind: str,
        correlation: Optional[Correlation] = None,
        *,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Кредит/дебет счёта с записью журнала в транзакции вызывающего.

        Ошибки:
          • ValidationError          - amount не положительное целое / неизвестный kind.
          • LockViolation            - direction не соответствует kind.
          • InsufficientBalanceError - дебет больше баланса (ничего не записано).
          • DuplicateRewardError     - idempotency_key уже есть в журнале.
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Amount must be a positive integer.", details={"amount": amount})
        if kind not in LEDGER_KINDS:
            raise ValidationError("Unknown ledger kind.", details={"kind": kind})
        if kind in RESERVE_KINDS:
            raise ValidationError("Reserve moves go through freeze/release.", details={"kind": kind})
        assert_direction_matches_kind(kind, direction)

        account = await self.lock_account(session, account_id)
        before = int(account.balance)

        if direction == "debit" and amount > before:
            logger.warning(
                "Debit rejected: insufficient balance",
                extra={"account_id": account.id, "balance": before, "requested": amount, "kind": kind},
            )
            raise InsufficientBalanceError(account_id=account.id, balance=before, requested=amount)

        delta = amount if direction == "credit" else -amount
        ensure_account_non_negative_after(BalanceSnapshot(before, int(account.frozen_balance)), delta)

        if direction == "credit":
            account.total_earned = int(account.total_earned) + amount
        else:
            account.total_spent = int(account.total_spent) + amount
        return await self._write_entry(
            session,
            account,
            amount,
            direction,
            kind,
            correlation,
            description=description,
            idempotency_key=idempotency_key,
        )

    async def freeze(self, session: AsyncSession, account_id: int, amount: int) -> LedgerEntry:
        """Переносит amount из balance в frozen_balance (запись freeze, дебет)."""
        return await self._move_frozen(session, account_id, amount, to_frozen=True)

    async def release(self, session: AsyncSession, account_id: int, amount: int) -> LedgerEntry:
        """Возвращает amount из frozen_balance в balance (запись release, кредит)."""
        return await self._move_frozen(session, account_id, amount, to_frozen=False)

    async def _move_frozen(
        self, session: AsyncSession, account_id: int, amount: int, *, to_frozen: bool
    ) -> LedgerEntry:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Amount must be a positive integer.", details={"amount": amount})
        account = await self.lock_account(session, account_id)
        balance, frozen = int(account.balance), int(account.frozen_balance)

        if to_frozen and amount > balance:
            raise InsufficientBalanceError(account_id=account.id, balance=balance, requested=amount)
        if not to_frozen and amount > frozen:
            raise ValidationError(
                "Release exceeds frozen balance.",
                details={"account_id": account.id, "frozen_balance": frozen, "requested": amount},
            )

        delta = -amount if to_frozen else amount
        ensure_account_non_negative_after(BalanceSnapshot(balance, frozen), delta, -delta)
        account.frozen_balance = frozen - delta
        return await self._write_entry(
            session,
            account,
            amount,
            "debit" if to_frozen else "credit",
            "freeze" if to_frozen else "release",
            description="Funds reserved" if to_frozen else "Reserved funds released",
        )

    async def _write_entry(
        self,
        session: AsyncSession,
        account: Account,
        amount: int,
        direction: str,
        kind: str,
        correlation: Optional[Correlation] = None,
        *,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> LedgerEntry:
        """Двигает balance заблокированного счёта и пишет запись с before/after."""
        before = int(account.balance)
        delta = amount if direction == "credit" else -amount
        after = before + delta
        account.balance = after
        account.level = level_for_balance(after)

        entry = LedgerEntry(
            account_id=account.id,
            kind=kind,
            direction=direction,
            amount=amount,
            balance_before=before,
            balance_after=after,
            correlation=correlation_to_json(correlation),
            description=description,
            status="completed",
            idempotency_key=idempotency_key,
            **_related_columns(correlation),
        )
        await self.ledger.append(session, entry)
        logger.debug(
            "Balance delta applied",
            extra={"account_id": account.id, "kind": kind, "delta": delta, "balance_after": after},
        )
        return entry


__all__ = [
    "LEVELS",
    "level_for_balance",
    "level_rank",
    "TaskCorrelation",
    "CheckCorrelation",
    "ReferralCorrelation",
    "AchievementCorrelation",
    "CampaignCorrelation",
    "AdminCorrelation",
    "Correlation",
    "correlation_to_json",
    "correlation_from_json",
    "LedgerFilters",
    "LedgerPage",
    "LedgerStore",
    "AccountMutator",
]
