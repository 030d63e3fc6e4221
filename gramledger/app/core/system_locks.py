# -*- coding: utf-8 -*-
# gramledger/app/core/system_locks.py
# =============================================================================
# Назначение кода:
#   «Канон-замок» GRAM Ledger - проверки инвариантов, которые не зависят от
#   хранилища и вызываются сервисами перед каждой денежной записью:
#   • направление операции соответствует виду записи журнала;
#   • баланс и замороженный баланс не уходят в минус;
#   • счёт не может пригласить сам себя.
#
# Канон / инварианты:
#   • Нарушение здесь - ошибка программы, а не пользователя: LockViolation.
#   • Пользовательские отказы (не хватает денег) проверяются раньше в
#     services/ledger_service.py и дают InsufficientBalanceError.
#
# Запреты:
#   • Здесь нет обращений к БД и нет бизнес-логики начислений.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from gramledger.app.core.logging_core import get_logger

logger = get_logger(__name__)


class LockViolation(RuntimeError):
    """
    Нарушение канона / архитектурных запретов.

    Это ОШИБКА ПРОЕКТА, а не «ошибка пользователя»: отлавливается верхним
    слоем и логируется, но не маскируется под 500.
    """


@dataclass(frozen=True)
class BalanceSnapshot:
    """Снимок счёта до операции: доступный и замороженный баланс."""

    balance: int
    frozen: int = 0


# -----------------------------------------------------------------------------
# Виды записей журнала и их направление
# -----------------------------------------------------------------------------
CREDIT_KINDS = frozenset(
    {
        "deposit",
        "task_reward",
        "referral_reward",
        "referral_premium_bonus",
        "referral_activity",
        "achievement_reward",
        "check_received",
        "admin_bonus",
        "refund",
        "release",
    }
)
DEBIT_KINDS = frozenset({"task_payment", "check_sent", "commission", "withdraw", "freeze"})
LEDGER_KINDS = CREDIT_KINDS | DEBIT_KINDS
# Перенос между balance и frozen_balance: пишутся только через freeze/release
RESERVE_KINDS = frozenset({"freeze", "release"})


def direction_for_kind(kind: str) -> str:
    """Возвращает 'credit' или 'debit' для вида записи журнала."""
    if kind in CREDIT_KINDS:
        return "credit"
    if kind in DEBIT_KINDS:
        return "debit"
    raise LockViolation(f"Unknown ledger kind: {kind!r}")


def assert_direction_matches_kind(kind: str, direction: str) -> None:
    """Награда не может списывать, комиссия не может начислять."""
    expected = direction_for_kind(kind)
    if direction != expected:
        raise LockViolation(
            f"Ledger kind {kind!r} requires direction {expected!r}, got {direction!r}",
        )


def ensure_account_non_negative_after(
    before: BalanceSnapshot,
    delta_balance: int,
    delta_frozen: int = 0,
) -> None:
    """
    Последний рубеж «не уйти в минус».

    Вызывается ПЕРЕД записью нового состояния счёта. Сервисы обязаны
    отказать раньше с понятной пользователю ошибкой; сюда доходит только баг.
    """
    after_balance = before.balance + delta_balance
    after_frozen = before.frozen + delta_frozen
    if after_balance < 0 or after_frozen < 0:
        raise LockViolation(
            "Operation would make account negative: "
            f"balance={after_balance}, frozen={after_frozen}",
        )


def assert_not_self_referral(account_id: int, referrer_id: Optional[int]) -> None:
    if referrer_id is not None and int(referrer_id) == int(account_id):
        raise LockViolation(f"Account {account_id} cannot be its own referrer")


__all__ = [
    "LockViolation",
    "BalanceSnapshot",
    "CREDIT_KINDS",
    "DEBIT_KINDS",
    "LEDGER_KINDS",
    "RESERVE_KINDS",
    "direction_for_kind",
    "assert_direction_matches_kind",
    "ensure_account_non_negative_after",
    "assert_not_self_referral",
]
