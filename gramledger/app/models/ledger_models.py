# -*- coding: utf-8 -*-
# gramledger/app/models/ledger_models.py
# =============================================================================
# Назначение кода:
#   ORM-модели журнала GRAM Ledger:
#   • LedgerEntry - неизменяемая запись о каждом изменении баланса счёта.
#   • ReferralDailyCounter - атомарный счётчик выплат за активность рефералов
#     на пригласившего за UTC-сутки.
#
# Канон/инварианты:
#   • Запись журнала создаётся только вместе с изменением баланса в той же
#     транзакции (services/ledger_service.py). Отдельно не пишется.
#   • balance_after = balance_before ± amount (знак задаёт direction).
#   • amount > 0; balance_before/balance_after ≥ 0.
#   • idempotency_key UNIQUE (NULL допустим многократно) - одноразовые награды
#     (премиум-бонус, достижения) защищены на уровне БД.
#
# ИИ-защиты:
#   • Индексы (account_id, created_at), (kind, created_at) и kind - история
#     счёта и отчёты по видам наград без полного сканирования.
#   • correlation хранится как JSON с тегом type - см. services/ledger_service.py.
#
# Запреты:
#   • Никаких UPDATE/DELETE записей журнала в коде приложения.
# =============================================================================

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.config_core import get_settings
from ..core.database_core import Base, BigIntPK, JsonDoc, UTCDateTime, utcnow

settings = get_settings()
CORE_SCHEMA = settings.DB_SCHEMA_CORE


def _fk(target: str) -> str:
    return f"{CORE_SCHEMA}.{target}" if CORE_SCHEMA else target


class LedgerEntry(Base):
    """
    Запись журнала.

      • kind            - вид операции (deposit, task_reward, referral_reward, ...).
      • direction       - credit | debit, однозначно следует из kind.
      • amount          - положительное целое GRAM.
      • balance_before / balance_after - снимок баланса счёта на момент записи.
      • related_*       - контрагент/задание/чек, к которым относится запись.
      • correlation     - типизированная привязка ({"type": "referral", ...}).
      • status          - pending | completed | failed.
    """

    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_ledger_entries_idempotency_key"),
        CheckConstraint("amount > 0", name="ck_ledger_entries_amount_pos"),
        CheckConstraint("balance_before >= 0", name="ck_ledger_entries_before_nonneg"),
        CheckConstraint("balance_after >= 0", name="ck_ledger_entries_after_nonneg"),
        CheckConstraint("direction IN ('credit','debit')", name="ck_ledger_entries_direction_enum"),
        CheckConstraint(
            "status IN ('pending','completed','failed')",
            name="ck_ledger_entries_status_enum",
        ),
        Index("ix_ledger_entries_account_created", "account_id", "created_at"),
        Index("ix_ledger_entries_kind_created", "kind", "created_at"),
        Index("ix_ledger_entries_kind", "kind"),
        Index("ix_ledger_entries_related_account", "related_account_id"),
        {"schema": CORE_SCHEMA},
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    account_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey(_fk("accounts.id"), ondelete="RESTRICT"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    direction: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_before: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)

    related_account_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    related_task_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    related_check_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    correlation: Mapped[Optional[Dict[str, Any]]] = mapped_column(JsonDoc, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="completed", server_default="completed")
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        sign = "+" if self.direction == "credit" else "-"
        return (
            f"<LedgerEntry id={self.id} acc={self.account_id} {self.kind} {sign}{self.amount} "
            f"{self.balance_before}->{self.balance_after}>"
        )


class ReferralDailyCounter(Base):
    """
    Сколько GRAM выплачено пригласившему за активность рефералов за сутки.

    Строка (referrer_id, day) блокируется вместе со счётом пригласившего,
    поэтому «прочитать остаток → решить → записать» атомарно.
    """

    __tablename__ = "referral_daily_counters"
    __table_args__ = (
        CheckConstraint("paid >= 0", name="ck_referral_daily_counters_paid_nonneg"),
        {"schema": CORE_SCHEMA},
    )

    referrer_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey(_fk("accounts.id"), ondelete="RESTRICT"), primary_key=True
    )
    day: Mapped[date] = mapped_column(Date, primary_key=True)
    paid: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    registrations_rewarded: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0, server_default="0"
    )

    def __repr__(self) -> str:
        return f"<ReferralDailyCounter ref={self.referrer_id} day={self.day} paid={self.paid}>"


__all__ = ["LedgerEntry", "ReferralDailyCounter"]
