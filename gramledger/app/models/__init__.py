# -*- coding: utf-8 -*-
# gramledger/app/models/__init__.py
# =============================================================================
# Назначение кода:
# Единая точка входа слоя моделей GRAM Ledger:
#  • импорт всех модулей моделей (чтобы Base.metadata был полным для Alembic
#    и тестов);
#  • реестр MODEL_REGISTRY для доступа к классам моделей по имени;
#  • models_health() - проверка полноты набора таблиц.
#
# Канон/инварианты:
#  • Модели описывают структуру данных, НЕ содержат бизнес-логики и денег.
#  • Денежные операции выполняются ТОЛЬКО в services/ledger_service.py.
#
# Запреты:
#  • Не размещать здесь DDL/DML и create_all().
# =============================================================================

from __future__ import annotations

import inspect
from types import ModuleType
from typing import Dict, List, Tuple, Type

from ..core.config_core import get_settings
from ..core.database_core import Base
from ..core.logging_core import get_logger
from . import account_models, achievements_models, ledger_models, referral_models
from .account_models import Account
from .achievements_models import Achievement, EarnedAchievement
from .ledger_models import LedgerEntry, ReferralDailyCounter
from .referral_models import ReferralCampaign, ReferralCampaignMember, RewardConfigDocument

logger = get_logger(__name__)
settings = get_settings()
SCHEMA = settings.DB_SCHEMA_CORE

_MODEL_MODULES: Tuple[ModuleType, ...] = (
    account_models,
    ledger_models,
    achievements_models,
    referral_models,
)


def _collect_model_classes(module: ModuleType) -> Dict[str, Type[Base]]:
    """{ClassName: Class} для всех подклассов Base с __tablename__ в модуле."""
    registry: Dict[str, Type[Base]] = {}
    for name, obj in vars(module).items():
        if inspect.isclass(obj) and issubclass(obj, Base) and obj.__module__ == module.__name__:
            registry[name] = obj
    return registry


MODEL_REGISTRY: Dict[str, Type[Base]] = {}
for _module in _MODEL_MODULES:
    MODEL_REGISTRY.update(_collect_model_classes(_module))


def list_models() -> List[Tuple[str, str]]:
    """Пары (ClassName, __tablename__) всех моделей, по алфавиту."""
    return [
        (cls_name, cls.__tablename__)
        for cls_name, cls in sorted(MODEL_REGISTRY.items(), key=lambda kv: kv[0].lower())
    ]


def models_health() -> Dict[str, object]:
    """
    Проверяет наличие ключевых таблиц ядра. Возвращает:
      {"ok": bool, "missing": [...], "present": [(ClassName, table), ...], "schema": ...}
    """
    required = ("accounts", "ledger_entries", "earned_achievements", "reward_config")
    present = list_models()
    tables = {tbl for _, tbl in present}
    missing = [tbl for tbl in required if tbl not in tables]
    if missing:
        logger.warning("models_health: missing tables %s", missing)
    return {"ok": not missing, "missing": missing, "present": present, "schema": SCHEMA}


__all__ = [
    "Base",
    "SCHEMA",
    "MODEL_REGISTRY",
    "Account",
    "LedgerEntry",
    "ReferralDailyCounter",
    "Achievement",
    "EarnedAchievement",
    "RewardConfigDocument",
    "ReferralCampaign",
    "ReferralCampaignMember",
    "list_models",
    "models_health",
]
