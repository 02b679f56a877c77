"""
Ошибки движка испытаний.

Каждая ошибка несёт стабильный `kind` (его видит клиент), человекочитаемое
сообщение и HTTP-статус, в который её превращает обработчик в main.py.
"""
from typing import Any, Optional


class EngineError(Exception):
    kind: str = "engine_error"
    status_code: int = 400
    default_message: str = "Request could not be processed"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} kind={self.kind} message={self.message!r}>"


# ─── Ошибки валидации ─────────────────────────────────────────────────────────

class ValidationError(EngineError):
    kind = "validation_error"
    status_code = 422
    default_message = "Invalid request data"


class BelowMinimum(ValidationError):
    kind = "below_minimum"
    default_message = "Amount is below the minimum withdrawal"


class InvalidDetails(ValidationError):
    kind = "invalid_details"
    default_message = "Payment details are incomplete for the selected method"


# ─── Бизнес-правила ───────────────────────────────────────────────────────────

class LimitExceeded(EngineError):
    kind = "limit_exceeded"
    status_code = 409
    default_message = "Maximum number of active challenges reached"


class OddsBelowMinimum(EngineError):
    kind = "odds_below_minimum"
    status_code = 422
    default_message = "Bet odds are below the challenge minimum"


class InsufficientBalance(EngineError):
    kind = "insufficient_balance"
    status_code = 400
    default_message = "Requested amount exceeds available balance"


class NotExpired(EngineError):
    kind = "not_expired"
    status_code = 409
    default_message = "Only expired challenges can be reset"


class NotFound(EngineError):
    kind = "not_found"
    status_code = 404
    default_message = "Resource not found"


class InvalidTransition(EngineError):
    kind = "invalid_transition"
    status_code = 409
    default_message = "Status transition is not allowed"


class PayoutAlreadyPending(EngineError):
    kind = "payout_already_pending"
    status_code = 409
    default_message = "You already have a pending payout request"


class PaymentNotConfirmed(EngineError):
    kind = "payment_not_confirmed"
    status_code = 402
    default_message = "Payment was not confirmed"


# ─── Инфраструктура ───────────────────────────────────────────────────────────

class TransientConflict(EngineError):
    kind = "transient_conflict"
    status_code = 503
    default_message = "The request conflicted with another operation, please retry"


def describe_validation_errors(errors: list[dict[str, Any]]) -> str:
    """Сводит ошибки pydantic в одну строку вида `amount: Input should be ...`."""
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or ValidationError.default_message
