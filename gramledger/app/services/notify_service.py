# -*- coding: utf-8 -*-
# gramledger/app/services/notify_service.py
# =============================================================================
# Назначение кода:
#   Уведомления о наградах (вызываются только ПОСЛЕ commit):
#   • Notifier - протокол notify(account_id, kind, payload).
#   • LoggingNotifier - пишет событие в лог (локально и в тестах).
#   • TelegramNotifier - aiogram Bot.send_message по telegram_id счёта.
#   • notify_safely - сбой доставки логируется и не пробрасывается.
#
# Запреты:
#   • Никаких денежных операций и транзакций записи.
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Protocol

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gramledger.app.core.logging_core import get_logger
from gramledger.app.models import Account

logger = get_logger(__name__)

MESSAGE_TEMPLATES: Dict[str, str] = {
    "referral_registered": "🎉 New referral joined! You received <b>{amount}</b> GRAM.",
    "referral_premium_upgrade": "⭐ Your referral upgraded to premium! Bonus: <b>{amount}</b> GRAM.",
    "referral_activity_reward": "💸 Referral activity reward: <b>{amount}</b> GRAM.",
    "achievement_earned": "🏆 Achievement unlocked: <b>{name}</b> (+{amount} GRAM).",
    "bonus_received": "🎁 You received a bonus of <b>{amount}</b> GRAM.",
}


class Notifier(Protocol):
    async def notify(self, account_id: int, kind: str, payload: Mapping[str, Any]) -> None:
        ...


class LoggingNotifier:
    async def notify(self, account_id: int, kind: str, payload: Mapping[str, Any]) -> None:
        logger.info("notify", extra={"account_id": account_id, "kind": kind, "payload": dict(payload)})


class TelegramNotifier:
    """Отправляет сообщение в чат пользователя (chat_id = accounts.telegram_id)."""

    def __init__(
        self,
        token: str,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        bot: Optional[Bot] = None,
    ) -> None:
        self._bot = bot or Bot(token=token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
        self._session_factory = session_factory

    async def notify(self, account_id: int, kind: str, payload: Mapping[str, Any]) -> None:
        async with self._session_factory() as session:
            stmt = select(Account.telegram_id).where(Account.id == int(account_id))
            chat_id = (await session.execute(stmt)).scalar_one_or_none()
        if chat_id is None:
            logger.info("notify skipped: account has no telegram_id", extra={"account_id": account_id})
            return
        template = MESSAGE_TEMPLATES.get(kind, "{kind}")
        text = template.format_map({"kind": kind, "amount": "", "name": "", **payload})
        await self._bot.send_message(chat_id=int(chat_id), text=text)

    async def close(self) -> None:
        await self._bot.session.close()


async def notify_safely(notifier: Notifier, account_id: int, kind: str, payload: Mapping[str, Any]) -> None:
    try:
        await notifier.notify(account_id, kind, payload)
    except TelegramAPIError as exc:
        logger.warning(
            "Telegram delivery failed",
            extra={"account_id": account_id, "kind": kind, "error": str(exc)},
        )
    except Exception:  # noqa: BLE001
        logger.exception("Notification failed", extra={"account_id": account_id, "kind": kind})


__all__ = ["Notifier", "LoggingNotifier", "TelegramNotifier", "notify_safely", "MESSAGE_TEMPLATES"]
