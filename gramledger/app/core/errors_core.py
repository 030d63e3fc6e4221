# -*- coding: utf-8 -*-
# gramledger/app/core/errors_core.py
# =============================================================================
# Назначение кода:
#   • Единый слой доменных ошибок GRAM Ledger.
#   • Канонические коды ошибок для клиентов/логов.
#   • Унифицированные JSON-ответы для FastAPI.
#
# Канон / инварианты:
#   • Денежные и реферальные сервисы бросают ТОЛЬКО исключения из этого модуля
#     (или LockViolation из system_locks).
#   • Клиенту никогда не утекают технические детали (stack trace, DSN).
#   • У каждой ошибки стабильный code и http_status.
#
# ИИ-защита:
#   • Неизвестная ошибка логируется полностью, наружу - только internal_error.
#   • StorageError отдаётся как 503: операция не закоммичена, её можно повторить.
#
# Запреты:
#   • Никакой бизнес-логики здесь.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, cast

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from gramledger.app.core.logging_core import get_logger
from gramledger.app.core.system_locks import LockViolation

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Базовая доменная ошибка
# -----------------------------------------------------------------------------
@dataclass(eq=False)
class GramError(Exception):
    """
    Базовое доменное исключение.

    Поля:
      • code         - стабильный машинный код ошибки (snake_case).
      • message      - короткое безопасное сообщение для клиента.
      • http_status  - HTTP код по умолчанию.
      • details      - безопасные детали (без секретов), опционально.
    """

    code: str
    message: str
    http_status: int = status.HTTP_400_BAD_REQUEST
    details: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Готовит JSON-ответ для клиента."""
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


# -----------------------------------------------------------------------------
# Общие ошибки
# -----------------------------------------------------------------------------
class NotFoundError(GramError):
    """Ресурс не найден (счёт, кампания, достижение)."""

    def __init__(self, message: str = "Resource not found.", *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            code="not_found",
            message=message,
            http_status=status.HTTP_404_NOT_FOUND,
            details=details or {},
        )


class ValidationError(GramError):
    """Некорректные входные данные/состояние."""

    def __init__(self, message: str = "Invalid data.", *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            code="validation_error",
            message=message,
            http_status=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details or {},
        )


class StorageError(GramError):
    """Транзакция не зафиксирована. Состояние не изменилось, можно повторить."""

    def __init__(self, message: str = "Storage is unavailable, retry later.", *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            code="storage_error",
            message=message,
            http_status=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details or {},
        )


# -----------------------------------------------------------------------------
# Баланс и журнал
# -----------------------------------------------------------------------------
class InsufficientBalanceError(GramError):
    """Списание больше доступного баланса."""

    def __init__(
        self,
        message: str = "Insufficient balance.",
        *,
        account_id: Optional[int] = None,
        balance: Optional[int] = None,
        requested: Optional[int] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if account_id is not None:
            details = {"account_id": account_id, "balance": balance, "requested": requested}
        super().__init__(
            code="insufficient_balance",
            message=message,
            http_status=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class DuplicateRewardError(GramError):
    """Повторная выдача награды с тем же idempotency_key."""

    def __init__(self, message: str = "Reward already issued.", *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            code="duplicate_reward",
            message=message,
            http_status=status.HTTP_409_CONFLICT,
            details=details or {},
        )


# -----------------------------------------------------------------------------
# Рефералка и кампании
# -----------------------------------------------------------------------------
class InvalidReferralCodeError(GramError):
    def __init__(self, message: str = "Referral code is invalid.", *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            code="invalid_referral_code",
            message=message,
            http_status=status.HTTP_400_BAD_REQUEST,
            details=details or {},
        )


class SelfReferralError(GramError):
    def __init__(self, message: str = "Account cannot refer itself.", *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            code="self_referral",
            message=message,
            http_status=status.HTTP_400_BAD_REQUEST,
            details=details or {},
        )


class ReferralCycleError(GramError):
    """Связь сделала бы счёт собственным предком."""

    def __init__(self, message: str = "Referral link would create a cycle.", *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            code="referral_cycle",
            message=message,
            http_status=status.HTTP_400_BAD_REQUEST,
            details=details or {},
        )


class CampaignError(GramError):
    """Кампания неактивна, условия участия не выполнены или участие уже есть."""

    def __init__(self, message: str = "Campaign operation error.", *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            code="campaign_error",
            message=message,
            http_status=status.HTTP_400_BAD_REQUEST,
            details=details or {},
        )


# -----------------------------------------------------------------------------
# Нормализация исключений → (status_code, payload)
# -----------------------------------------------------------------------------
def normalize_exception(exc: BaseException) -> Tuple[int, Dict[str, Any]]:
    """
    Приводит произвольное исключение к каноническому HTTP-ответу.

      • GramError        → свой http_status + to_payload().
      • LockViolation    → 400 + {"error": "lock_violation"}.
      • HTTPException    → status_code + {"error": "http_error"}.
      • Любая другая     → 500 + {"error": "internal_error"} (без деталей).
    """
    if isinstance(exc, GramError):
        return exc.http_status, exc.to_payload()

    if isinstance(exc, LockViolation):
        logger.warning("LockViolation occurred: %s", str(exc))
        return status.HTTP_400_BAD_REQUEST, {"error": "lock_violation", "message": str(exc)}

    if isinstance(exc, HTTPException):
        details: Dict[str, Any] = {}
        if isinstance(exc.detail, str):
            msg = exc.detail
        elif isinstance(exc.detail, dict):
            details = cast(Dict[str, Any], exc.detail)
            msg = details.get("message") or details.get("detail") or "HTTP error."
        else:
            msg = "HTTP error."
        payload: Dict[str, Any] = {"error": "http_error", "message": msg}
        if details:
            payload["details"] = details
        return exc.status_code, payload

    logger.error("Unhandled exception", exc_info=exc, extra={"error_type": type(exc).__name__})
    return (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"error": "internal_error", "message": "Internal server error."},
    )


# -----------------------------------------------------------------------------
# FastAPI-хендлеры исключений
# -----------------------------------------------------------------------------
async def gram_error_handler(request: Request, exc: GramError) -> JSONResponse:
    status_code, payload = normalize_exception(exc)
    logger.warning(
        "GramError handled",
        extra={"path": request.url.path, "error": exc.code, "status": status_code},
    )
    return JSONResponse(status_code=status_code, content=payload)


async def lock_violation_handler(request: Request, exc: LockViolation) -> JSONResponse:
    status_code, payload = normalize_exception(exc)
    logger.warning("LockViolation handled", extra={"path": request.url.path, "status": status_code})
    return JSONResponse(status_code=status_code, content=payload)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    status_code, payload = normalize_exception(exc)
    return JSONResponse(status_code=status_code, content=payload, headers=getattr(exc, "headers", None))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = ValidationError("Request validation failed.", details={"errors": jsonable_encoder(exc.errors())})
    return JSONResponse(status_code=error.http_status, content=error.to_payload())


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Обработчик «на всё остальное»: клиенту только internal_error."""
    status_code, payload = normalize_exception(exc)
    return JSONResponse(status_code=status_code, content=payload)


def setup_exception_handlers(app: FastAPI) -> None:
    """Подключает обработчики исключений. Вызывается один раз в create_app()."""
    app.add_exception_handler(GramError, gram_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(LockViolation, lock_violation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
    logger.info("Exception handlers registered for GramError/LockViolation/HTTPException/RequestValidationError/Exception")


# =============================================================================
# Пояснения «для чайника»:
#   • Бизнес-отказ (нет денег, неверный код) - бросайте GramError-наследника,
#     а не HTTPException: клиент увидит стабильный error-код.
#   • Реферальные отказы (неверный код, самоприглашение, повтор награды)
#     движок превращает в SkipReason и не показывает регистрирующемуся.
# =============================================================================

__all__ = [
    "GramError",
    "NotFoundError",
    "ValidationError",
    "StorageError",
    "InsufficientBalanceError",
    "DuplicateRewardError",
    "InvalidReferralCodeError",
    "SelfReferralError",
    "ReferralCycleError",
    "CampaignError",
    "normalize_exception",
    "setup_exception_handlers",
]
