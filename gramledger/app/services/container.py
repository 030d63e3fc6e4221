# -*- coding: utf-8 -*-
# gramledger/app/services/container.py
# =============================================================================
# Назначение кода:
#   Container - сборка всех сервисов GRAM Ledger с их зависимостями.
#   Модульных синглтонов сервисов нет: HTTP-приложение, тесты и скрипты
#   создают Container и берут сервисы из него.
#
# Порядок сборки (от листьев):
#   engine → session_factory → LedgerStore → AccountMutator → RewardConfigStore
#   → CampaignService → Notifier → ReferralRewardEngine / AchievementEvaluator
#   → AccountService / StatsService / AdminService → RewardEvents
# =============================================================================

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from gramledger.app.core.config_core import Settings, get_settings
from gramledger.app.core.database_core import build_session_factory, engine_from_settings, reset_engine
from gramledger.app.core.logging_core import get_logger
from gramledger.app.services.accounts_service import AccountService
from gramledger.app.services.achievements_service import AchievementEvaluator
from gramledger.app.services.admin_service import AdminService
from gramledger.app.services.campaign_service import CampaignService
from gramledger.app.services.events_service import RewardEvents
from gramledger.app.services.ledger_service import AccountMutator, LedgerStore
from gramledger.app.services.notify_service import LoggingNotifier, Notifier, TelegramNotifier
from gramledger.app.services.referral_service import ReferralRewardEngine
from gramledger.app.services.reward_config_service import RewardConfigStore
from gramledger.app.services.stats_service import StatsService

logger = get_logger(__name__)


class Container:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        engine: Optional[AsyncEngine] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.engine: AsyncEngine = engine or engine_from_settings(self.settings)
        self.session_factory: async_sessionmaker[AsyncSession] = build_session_factory(self.engine)

        self.ledger = LedgerStore(page_max=self.settings.LEDGER_PAGE_MAX)
        self.mutator = AccountMutator(self.ledger)
        self.config_store = RewardConfigStore(self.session_factory)
        self.campaigns = CampaignService(self.session_factory)
        self.notifier: Notifier = notifier or self._default_notifier()

        self.engine_rewards = ReferralRewardEngine(
            self.session_factory,
            self.mutator,
            self.config_store,
            self.campaigns,
            self.notifier,
            cycle_walk_limit=self.settings.REFERRAL_CYCLE_WALK_LIMIT,
        )
        self.achievements = AchievementEvaluator(self.session_factory, self.mutator, self.notifier)
        self.accounts = AccountService(self.session_factory, self.mutator, self.settings)
        self.stats = StatsService(
            self.session_factory, self.ledger, self.config_store, page_max=self.settings.LEDGER_PAGE_MAX
        )
        self.admin = AdminService(self.session_factory, self.mutator, self.notifier)
        self.events = RewardEvents(self.accounts, self.engine_rewards, self.achievements)

    def _default_notifier(self) -> Notifier:
        if self.settings.NOTIFY_VIA_TELEGRAM and self.settings.TELEGRAM_BOT_TOKEN:
            logger.info("Notifications via Telegram enabled")
            return TelegramNotifier(self.settings.TELEGRAM_BOT_TOKEN, self.session_factory)
        return LoggingNotifier()

    async def startup(self) -> None:
        """Подтягивает конфиг наград из БД. Каталог достижений вставляет миграция 0001_init."""
        await self.config_store.reload()
        logger.info("Container started", extra={"config_version": self.config_store.version})

    async def reset_engine(self) -> None:
        """Новый движок по текущим настройкам; фабрика сессий сервисов перепривязывается."""
        self.engine = await reset_engine(self.engine, self.session_factory, self.settings)

    async def shutdown(self) -> None:
        if isinstance(self.notifier, TelegramNotifier):
            await self.notifier.close()
        await self.engine.dispose()
        logger.info("Container stopped")


__all__ = ["Container"]
