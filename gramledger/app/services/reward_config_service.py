# -*- coding: utf-8 -*-
# gramledger/app/services/reward_config_service.py
# =============================================================================
# Назначение кода:
#   Конфигурация реферальных наград GRAM Ledger:
#   • RewardConfig / LevelRewards - неизменяемые (frozen) pydantic-модели
#     ставок по уровням, лимитов и флагов.
#   • DEFAULT_REWARD_DOCUMENT / DEFAULT_REWARD_CONFIG - значения по умолчанию.
#   • RewardConfigStore - кэш + хранение исходного документа в таблице reward_config
#     с горячей перезагрузкой (update/reload без рестарта процесса).
#
# Канон/инварианты:
#   • premium_bonus по умолчанию = 2 × registration соответствующего уровня.
#   • Все четыре уровня (bronze/silver/gold/premium) обязаны присутствовать.
#   • Невалидный патч отклоняется целиком, кэш не меняется.
#   • Смена кэша - одна операция присваивания под asyncio.Lock.
#
# Запреты:
#   • Никаких начислений здесь - только данные.
# =============================================================================

from __future__ import annotations

import asyncio
import copy
from typing import Any, Dict, Mapping

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gramledger.app.core.database_core import transaction
from gramledger.app.core.errors_core import ValidationError
from gramledger.app.core.logging_core import get_logger
from gramledger.app.models import RewardConfigDocument
from gramledger.app.services.ledger_service import LEVELS

logger = get_logger(__name__)

CONFIG_NAME = "referral"


class LevelRewards(BaseModel):
    """Ставки одного уровня пригласившего."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    registration: int = Field(..., ge=0)
    premium_bonus: int = Field(..., ge=0)
    activity_percentage: Dict[str, float]
    daily_activity_cap: int = Field(..., ge=0)

    @model_validator(mode="before")
    @classmethod
    def _default_premium_bonus(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("premium_bonus") is None and "registration" in data:
            data = {**data, "premium_bonus": 2 * int(data["registration"])}
        return data

    @model_validator(mode="after")
    def _check_percentages(self) -> "LevelRewards":
        for activity_type, pct in self.activity_percentage.items():
            if pct < 0 or pct > 100:
                raise ValueError(f"activity_percentage[{activity_type}] must be within 0..100")
        return self

    def percentage_for(self, activity_type: str) -> float:
        return float(self.activity_percentage.get(activity_type, 0))


class RewardConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    levels: Dict[str, LevelRewards]
    max_referrals_per_day: int = Field(10, ge=1)
    min_activity_amount: int = Field(10, ge=0)
    max_tree_depth: int = Field(5, ge=1)
    enable_activity_rewards: bool = True
    enable_premium_bonuses: bool = True

    @model_validator(mode="after")
    def _check_levels(self) -> "RewardConfig":
        missing = [level for level in LEVELS if level not in self.levels]
        unknown = [level for level in self.levels if level not in LEVELS]
        if missing or unknown:
            raise ValueError(f"levels must be exactly {list(LEVELS)}; missing={missing} unknown={unknown}")
        return self

    def for_level(self, level: str) -> LevelRewards:
        return self.levels.get(level) or self.levels["bronze"]


# premium_bonus не указан: выводится из registration при валидации
DEFAULT_REWARD_DOCUMENT: Dict[str, Any] = {
    "levels": {
        "bronze": {
            "registration": 1000,
            "activity_percentage": {"task_completion": 5, "balance_topup": 10},
            "daily_activity_cap": 500,
        },
        "silver": {
            "registration": 1500,
            "activity_percentage": {"task_completion": 7, "balance_topup": 12},
            "daily_activity_cap": 1000,
        },
        "gold": {
            "registration": 2000,
            "activity_percentage": {"task_completion": 10, "balance_topup": 15},
            "daily_activity_cap": 2000,
        },
        "premium": {
            "registration": 3000,
            "activity_percentage": {"task_completion": 15, "balance_topup": 20},
            "daily_activity_cap": 5000,
        },
    },
}

DEFAULT_REWARD_CONFIG = RewardConfig.model_validate(DEFAULT_REWARD_DOCUMENT)


def _deep_merge(base: Dict[str, Any], patch: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in patch.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def parse_reward_config(document: Mapping[str, Any]) -> RewardConfig:
    """dict → RewardConfig; ошибки pydantic → ValidationError со списком полей."""
    try:
        return RewardConfig.model_validate(dict(document))
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid reward config.",
            details={"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
        ) from exc


class RewardConfigStore:
    """
    Кэш конфигурации наград поверх таблицы reward_config.

        store = RewardConfigStore(session_factory)
        await store.reload()            # при старте
        cfg = store.get()               # в горячем пути, без I/O
        await store.update({"levels": {"bronze": {"registration": 1200}}})

    Хранится исходный документ, а не model_dump(): уровень без явного
    premium_bonus продолжает получать 2 × registration после каждого патча.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._document: Dict[str, Any] = copy.deepcopy(DEFAULT_REWARD_DOCUMENT)
        self._current: RewardConfig = DEFAULT_REWARD_CONFIG
        self._version: int = 0
        self._lock = asyncio.Lock()

    @property
    def version(self) -> int:
        return self._version

    def get(self) -> RewardConfig:
        return self._current

    async def reload(self) -> RewardConfig:
        """Перечитывает документ из БД. Нет строки - остаются значения по умолчанию."""
        async with self._lock:
            async with transaction(self._session_factory) as session:
                row = await session.get(RewardConfigDocument, CONFIG_NAME)
                if row is None:
                    return self._current
                document = dict(row.document)
                config = parse_reward_config(document)
                version = int(row.version)
            self._document, self._current, self._version = document, config, version
            logger.info("Reward config reloaded", extra={"version": version})
            return config

    async def update(self, patch: Mapping[str, Any]) -> RewardConfig:
        """Сливает частичный документ с текущим, валидирует, сохраняет и подменяет кэш."""
        async with self._lock:
            merged = _deep_merge(self._document, patch)
            config = parse_reward_config(merged)

            async with transaction(self._session_factory) as session:
                stmt = (
                    select(RewardConfigDocument)
                    .where(RewardConfigDocument.name == CONFIG_NAME)
                    .with_for_update()
                )
                row = (await session.execute(stmt)).scalar_one_or_none()
                if row is None:
                    row = RewardConfigDocument(name=CONFIG_NAME, document=merged, version=1)
                    session.add(row)
                else:
                    row.document = merged
                    row.version = int(row.version) + 1
                await session.flush()
                version = int(row.version)

            self._document, self._current, self._version = merged, config, version
            logger.info("Reward config updated", extra={"version": version, "keys": sorted(patch.keys())})
            return config


__all__ = [
    "CONFIG_NAME",
    "LevelRewards",
    "RewardConfig",
    "DEFAULT_REWARD_DOCUMENT",
    "DEFAULT_REWARD_CONFIG",
    "parse_reward_config",
    "RewardConfigStore",
]
