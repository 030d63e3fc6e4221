# -*- coding: utf-8 -*-
# gramledger/app/core/utils_core.py
# =============================================================================
# Назначение:
#   • Базовые утилиты уровня "core" без зависимостей от FastAPI/SQLAlchemy.
#   • Точная арифметика наград (Decimal, округление вниз до целого GRAM).
#   • Границы UTC-суток и отчётных периодов.
#   • Генерация реф-кодов, keyset-курсоры журнала.
#
# Канон:
#   • Награды считаются в Decimal и обрезаются вниз (floor): 1000 × 5% = 50,
#     999 × 5% = 49, без ошибок двоичных float.
#   • «Сегодня» - календарные сутки UTC.
# =============================================================================

from __future__ import annotations

import base64
import secrets
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, ROUND_FLOOR
from typing import Optional, Tuple, Union

from gramledger.app.core.errors_core import ValidationError

NumberLike = Union[str, int, float, Decimal]

# Без двусмысленных символов I/O/0/1
REF_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


# -----------------------------------------------------------------------------
# Арифметика наград
# -----------------------------------------------------------------------------
def floor_reward(*factors: NumberLike, divisor: NumberLike = 1) -> int:
    """
    Произведение множителей / divisor с округлением вниз до целого.

        floor_reward(1000, 5, divisor=100)        → 50
        floor_reward(1000, 5, 1.5, divisor=100)   → 75
    """
    product = Decimal(1)
    for factor in factors:
        product *= Decimal(str(factor))
    result = (product / Decimal(str(divisor))).to_integral_value(rounding=ROUND_FLOOR)
    return int(result)


# -----------------------------------------------------------------------------
# Время / периоды
# -----------------------------------------------------------------------------
def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware-datetime в UTC; время без зоны считается UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_today(now: Optional[datetime] = None) -> date:
    now = now or datetime.now(tz=timezone.utc)
    return now.astimezone(timezone.utc).date()


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """[начало, конец) UTC-суток."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


PERIODS = ("day", "week", "month", "all")


def period_start(period: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Начало отчётного периода: day - с полуночи UTC, week - 7 суток назад,
    month - 30 суток назад, all/None - без ограничения.
    """
    if period is None or period == "all":
        return None
    now = now or datetime.now(tz=timezone.utc)
    if period == "day":
        return day_bounds(utc_today(now))[0]
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return now - timedelta(days=30)
    raise ValidationError("Unknown period.", details={"period": period, "allowed": list(PERIODS)})


# -----------------------------------------------------------------------------
# Реф-коды
# -----------------------------------------------------------------------------
def gen_ref_code(length: int = 8, alphabet: str = REF_CODE_ALPHABET) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def normalize_ref_code(raw: Optional[str]) -> Optional[str]:
    """Обрезает пробелы и приводит к верхнему регистру; пустое → None."""
    if raw is None:
        return None
    code = raw.strip().upper()
    return code or None


# -----------------------------------------------------------------------------
# Keyset-курсор журнала: b64("<iso-ts>|<id>")
# -----------------------------------------------------------------------------
def encode_cursor(ts: datetime, row_id: int) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    blob = f"{ts.astimezone(timezone.utc).isoformat()}|{int(row_id)}".encode("utf-8")
    return base64.urlsafe_b64encode(blob).decode("ascii")


def decode_cursor(cursor: str) -> Tuple[datetime, int]:
    """Инверсия encode_cursor. Мусор → ValidationError."""
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8")
        ts_str, id_str = raw.split("|", 1)
        return datetime.fromisoformat(ts_str), int(id_str)
    except (ValueError, UnicodeError) as exc:
        raise ValidationError("Invalid cursor.", details={"cursor": cursor}) from exc


__all__ = [
    "REF_CODE_ALPHABET",
    "floor_reward",
    "as_utc",
    "utc_today",
    "day_bounds",
    "PERIODS",
    "period_start",
    "gen_ref_code",
    "normalize_ref_code",
    "encode_cursor",
    "decode_cursor",
]
