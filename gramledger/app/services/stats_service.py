# -*- coding: utf-8 -*-
# gramledger/app/services/stats_service.py
# =============================================================================
# Назначение кода:
#   Реферальная статистика пригласившего за период (day/week/month/all):
#   число рефералов, премиум-рефералов, заработок по видам наград,
#   конверсия в премиум и средний заработок на реферала.
#   Список прямых рефералов (фильтры, курсор, заработок на каждом) и
#   многоуровневое дерево приглашённых глубиной до max_tree_depth.
#
# Канон:
#   • Заработок = referral_reward + referral_premium_bonus + referral_activity.
#   • conversion_rate - проценты (0, если рефералов нет).
#   • Только чтение.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gramledger.app.core.errors_core import NotFoundError
from gramledger.app.core.utils_core import decode_cursor, encode_cursor, period_start
from gramledger.app.models import Account, LedgerEntry
from gramledger.app.services.ledger_service import LedgerStore
from gramledger.app.services.reward_config_service import RewardConfigStore

REFERRAL_EARNING_KINDS = ("referral_reward", "referral_premium_bonus", "referral_activity")


def conversion_rate(premium_referrals: int, total_referrals: int) -> float:
    if total_referrals <= 0:
        return 0.0
    return round(premium_referrals / total_referrals * 100, 2)


@dataclass
class ReferralStats:
    account_id: int
    period: str
    total_referrals: int
    premium_referrals: int
    total_earned: int
    conversion_rate: float
    average_earning_per_referral: float
    breakdown: Dict[str, int] = field(default_factory=dict)


@dataclass
class ReferralSummary:
    account_id: int
    username: Optional[str]
    level: str
    is_premium: bool
    registered_at: datetime
    referred_at: Optional[datetime]
    earnings: int


@dataclass
class ReferralListPage:
    items: List[ReferralSummary] = field(default_factory=list)
    total: int = 0
    next_cursor: Optional[str] = None


@dataclass
class ReferralTreeNode:
    account_id: int
    username: Optional[str]
    level: str
    is_premium: bool
    depth: int
    earnings: int
    children: List["ReferralTreeNode"] = field(default_factory=list)


@dataclass
class ReferralTree:
    account_id: int
    max_depth: int
    nodes: List[ReferralTreeNode] = field(default_factory=list)
    total_levels: int = 0
    total_referrals: int = 0
    total_earnings: int = 0


class StatsService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: LedgerStore,
        config_store: RewardConfigStore,
        *,
        page_max: int = 500,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger
        self._config = config_store
        self._page_max = page_max

    async def get_referral_stats(
        self,
        account_id: int,
        period: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> ReferralStats:
        since = period_start(period, now)
        async with self._session_factory() as session:
            account = await session.get(Account, int(account_id))
            if account is None:
                raise NotFoundError("Account not found.", details={"account_id": account_id})

            if since is None:
                total_referrals = int(account.referrals_count)
                premium_referrals = int(account.premium_referrals_count)
            else:
                total_referrals = await self._count_referrals_since(session, account.id, since)
                premium_referrals = await self._count_entries_since(
                    session, account.id, "referral_premium_bonus", since
                )
            breakdown = await self._ledger.sum_by_kind(session, account.id, REFERRAL_EARNING_KINDS, since)

        total_earned = sum(breakdown.values())
        average = round(total_earned / total_referrals, 2) if total_referrals else 0.0
        return ReferralStats(
            account_id=int(account_id),
            period=period or "all",
            total_referrals=total_referrals,
            premium_referrals=premium_referrals,
            total_earned=total_earned,
            conversion_rate=conversion_rate(premium_referrals, total_referrals),
            average_earning_per_referral=average,
            breakdown=breakdown,
        )

    async def list_referrals(
        self,
        account_id: int,
        *,
        level: Optional[str] = None,
        is_premium: Optional[bool] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        cursor: Optional[str] = None,
        limit: int = 20,
    ) -> ReferralListPage:
        """
        Прямые рефералы счёта, новые сверху (created_at DESC, id DESC), с тем,
        сколько пригласивший заработал на каждом. Курсор как у журнала.
        """
        limit = max(1, min(int(limit), self._page_max))
        async with self._session_factory() as session:
            await self._require_account(session, account_id)

            conditions = [Account.referrer_id == int(account_id)]
            if level is not None:
                conditions.append(Account.level == level)
            if is_premium is not None:
                conditions.append(Account.is_premium.is_(is_premium))
            if date_from is not None:
                conditions.append(Account.created_at >= date_from)
            if date_to is not None:
                conditions.append(Account.created_at < date_to)

            total = int((await session.execute(select(func.count(Account.id)).where(*conditions))).scalar_one())

            stmt = select(Account).where(*conditions)
            if cursor:
                ts, last_id = decode_cursor(cursor)
                stmt = stmt.where(or_(Account.created_at < ts, and_(Account.created_at == ts, Account.id < last_id)))
            stmt = stmt.order_by(Account.created_at.desc(), Account.id.desc()).limit(limit + 1)
            rows = list((await session.execute(stmt)).scalars().all())

            next_cursor: Optional[str] = None
            if len(rows) > limit:
                rows = rows[:limit]
                next_cursor = encode_cursor(rows[-1].created_at, rows[-1].id)

            earnings = await self._ledger.sum_by_related(
                session, [int(account_id)], [row.id for row in rows], REFERRAL_EARNING_KINDS
            )

        items = [
            ReferralSummary(
                account_id=row.id,
                username=row.username,
                level=row.level,
                is_premium=bool(row.is_premium),
                registered_at=row.created_at,
                referred_at=row.referred_at,
                earnings=earnings.get((int(account_id), row.id), 0),
            )
            for row in rows
        ]
        return ReferralListPage(items=items, total=total, next_cursor=next_cursor)

    async def referral_tree(self, account_id: int, max_depth: Optional[int] = None) -> ReferralTree:
        """
        Многоуровневое дерево приглашённых. Глубина ограничена max_tree_depth
        из конфига наград; earnings узла - сколько его родитель заработал на нём.
        """
        limit = self._config.get().max_tree_depth
        depth_bound = limit if max_depth is None else max(1, min(int(max_depth), limit))

        tree = ReferralTree(account_id=int(account_id), max_depth=depth_bound)
        async with self._session_factory() as session:
            await self._require_account(session, account_id)

            parents: Dict[int, Optional[ReferralTreeNode]] = {int(account_id): None}
            for depth in range(1, depth_bound + 1):
                stmt = (
                    select(Account)
                    .where(Account.referrer_id.in_(list(parents)))
                    .order_by(Account.created_at.desc(), Account.id.desc())
                )
                children = list((await session.execute(stmt)).scalars().all())
                if not children:
                    break
                earnings = await self._ledger.sum_by_related(
                    session, list(parents), [child.id for child in children], REFERRAL_EARNING_KINDS
                )

                next_parents: Dict[int, Optional[ReferralTreeNode]] = {}
                for child in children:
                    node = ReferralTreeNode(
                        account_id=child.id,
                        username=child.username,
                        level=child.level,
                        is_premium=bool(child.is_premium),
                        depth=depth,
                        earnings=earnings.get((int(child.referrer_id), child.id), 0),
                    )
                    parent = parents[int(child.referrer_id)]
                    (tree.nodes if parent is None else parent.children).append(node)
                    next_parents[child.id] = node
                    tree.total_referrals += 1
                    tree.total_earnings += node.earnings
                tree.total_levels = depth
                parents = next_parents
        return tree

    @staticmethod
    async def _require_account(session: AsyncSession, account_id: int) -> None:
        if await session.get(Account, int(account_id)) is None:
            raise NotFoundError("Account not found.", details={"account_id": account_id})

    @staticmethod
    async def _count_referrals_since(session: AsyncSession, referrer_id: int, since: datetime) -> int:
        stmt = select(func.count(Account.id)).where(
            Account.referrer_id == referrer_id,
            Account.referred_at >= since,
        )
        return int((await session.execute(stmt)).scalar_one())

    @staticmethod
    async def _count_entries_since(session: AsyncSession, account_id: int, kind: str, since: datetime) -> int:
        stmt = select(func.count(LedgerEntry.id)).where(
            LedgerEntry.account_id == account_id,
            LedgerEntry.kind == kind,
            LedgerEntry.created_at >= since,
        )
        return int((await session.execute(stmt)).scalar_one())


__all__ = [
    "REFERRAL_EARNING_KINDS",
    "conversion_rate",
    "ReferralStats",
    "ReferralSummary",
    "ReferralListPage",
    "ReferralTreeNode",
    "ReferralTree",
    "StatsService",
]
