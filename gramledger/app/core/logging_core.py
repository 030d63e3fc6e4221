# -*- coding: utf-8 -*-
# gramledger/app/core/logging_core.py
# =============================================================================
# Назначение кода:
#   Логирование GRAM Ledger:
#   • консольный хэндлер: dev/local - строка, остальные окружения - JSON;
#   • корреляция запроса (rid из X-Request-ID, idk из Idempotency-Key);
#   • маскирование секретов из настроек.
#
# Канон / инварианты:
#   • Каждая запись несёт env, svc, rid, idk; "-" если значения нет.
#   • Поля extra вызывающего кода (account_id, referrer_id, amount ...)
#     попадают в JSON как есть, в том числе через get_logger(..., component=).
#   • Контекст живёт в contextvars и сбрасывается токеном после запроса.
# =============================================================================

from __future__ import annotations

import contextvars
import logging
import sys
import uuid
from typing import Any, Awaitable, Callable, Dict, Mapping, MutableMapping, Optional, Tuple

from pythonjsonlogger.json import JsonFormatter

from gramledger.app.core.config_core import Settings, get_settings

ASGIApp = Callable[
    [Mapping[str, Any], Callable[..., Awaitable[Any]], Callable[..., Awaitable[Any]]],
    Awaitable[Any],
]

# (request_id, idempotency_key) текущего HTTP-запроса
_correlation: contextvars.ContextVar[Tuple[str, str]] = contextvars.ContextVar(
    "gramledger_correlation", default=("-", "-")
)

_DEV_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | rid=%(rid)s idk=%(idk)s | %(message)s"
_JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(env)s %(svc)s %(rid)s %(idk)s %(message)s"


class CorrelationFilter(logging.Filter):
    def __init__(self, env: str, service: str) -> None:
        super().__init__()
        self._env = env
        self._service = service

    def filter(self, record: logging.LogRecord) -> bool:
        rid, idk = _correlation.get()
        record.env = self._env
        record.svc = self._service
        record.rid = rid
        record.idk = idk
        return True


class RedactingFilter(logging.Filter):
    """Заменяет значения токенов и DSN из Settings на "****" в тексте записи."""

    MASK = "****"

    def __init__(self, settings: Settings) -> None:
        super().__init__()
        candidates = (settings.TELEGRAM_BOT_TOKEN, settings.ADMIN_API_TOKEN, settings.DATABASE_URL)
        self._secrets = tuple(value for value in candidates if isinstance(value, str) and value)

    def _mask(self, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        for secret in self._secrets:
            value = value.replace(secret, self.MASK)
        return value

    def filter(self, record: logging.LogRecord) -> bool:
        if self._secrets:
            record.msg = self._mask(record.msg)
            if isinstance(record.args, tuple):
                record.args = tuple(self._mask(arg) for arg in record.args)
        return True


class _ComponentAdapter(logging.LoggerAdapter):
    """Добавляет постоянные поля, не затирая extra конкретного вызова."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def setup_logging(settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    env = settings.env_normalized
    level = logging.DEBUG if settings.DEBUG else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    if env in ("local", "dev"):
        handler.setFormatter(logging.Formatter(_DEV_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    else:
        handler.setFormatter(
            JsonFormatter(_JSON_FORMAT, rename_fields={"asctime": "time", "levelname": "level", "name": "logger"})
        )
    handler.addFilter(CorrelationFilter(env=env, service=settings.PROJECT_NAME))
    handler.addFilter(RedactingFilter(settings))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        framework_logger = logging.getLogger(name)
        framework_logger.handlers.clear()
        framework_logger.propagate = True

    # aiosqlite пишет каждую операцию курсора в DEBUG
    logging.getLogger("aiosqlite").setLevel(logging.INFO)
    if settings.DEBUG:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    logging.getLogger(__name__).info("Logging initialized", extra={"log_level": logging.getLevelName(level)})


def get_logger(name: Optional[str] = None, **fields: Any) -> logging.Logger:
    """
    Логгер модуля; именованные аргументы становятся постоянными полями записи.

        logger = get_logger(__name__, component="referrals")
        logger.info("Referral linked", extra={"referrer_id": 7})  # component + referrer_id
    """
    base = logging.getLogger(name)
    if not fields:
        return base
    return _ComponentAdapter(base, fields)  # type: ignore[return-value]


class CorrelationIdMiddleware:
    """X-Request-ID (или новый uuid4 hex) и Idempotency-Key → контекст логов; X-Request-ID → ответ."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(
        self,
        scope: Mapping[str, Any],
        receive: Callable[..., Awaitable[Any]],
        send: Callable[..., Awaitable[Any]],
    ) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        headers: Dict[bytes, bytes] = dict(scope.get("headers") or [])
        rid = headers.get(b"x-request-id", b"").decode("latin-1") or uuid.uuid4().hex
        idk = headers.get(b"idempotency-key", b"").decode("latin-1") or "-"
        token = _correlation.set((rid, idk))

        async def send_with_request_id(message: Mapping[str, Any]) -> None:
            if message.get("type") == "http.response.start":
                extra_header = (b"x-request-id", rid.encode("latin-1"))
                message = {**message, "headers": [*message.get("headers", []), extra_header]}
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            _correlation.reset(token)


setup_logging()

__all__ = [
    "setup_logging",
    "get_logger",
    "CorrelationFilter",
    "RedactingFilter",
    "CorrelationIdMiddleware",
]
