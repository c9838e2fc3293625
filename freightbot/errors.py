"""
Error taxonomy shared by every component.

Each error carries a stable ``ErrorCode``, a developer-facing message,
structured context for logs, and whether retrying could help.
``get_user_message`` maps codes to the replies shown to end users.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Stable identifiers for every failure the system can report."""

    # Infrastructure
    BACKEND_UNAVAILABLE = "backend_unavailable"
    BACKEND_WRITE_FAILED = "backend_write_failed"

    # Providers
    PROVIDER_API_ERROR = "provider_api_error"
    PROVIDER_TIMEOUT = "provider_timeout"

    # Business
    INVALID_DESTINATION = "invalid_destination"
    INVALID_QUANTITY = "invalid_quantity"
    MISSING_TENANT = "missing_tenant"
    SESSION_NOT_FOUND = "session_not_found"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    NO_FREIGHT_OPTIONS = "no_freight_options"

    # Generic
    VALIDATION_ERROR = "validation_error"
    UNKNOWN_ERROR = "unknown_error"


class FreightBotError(Exception):
    """Base class for all domain errors."""

    retryable: bool = False

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        context: Optional[dict[str, Any]] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = context or {}
        if retryable is not None:
            self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code.value,
            "message": self.message,
            "context": self.context,
            "retryable": self.retryable,
        }


class ValidationError(FreightBotError):
    """Malformed user input (destination, quantity, tenant)."""


class StateError(FreightBotError):
    """An event was applied in a state that does not accept it."""


class SessionNotFoundError(FreightBotError):
    """An operation required an existing session and none was found."""


class InfrastructureError(FreightBotError):
    """The key-value backend is unavailable or rejected a write."""

    retryable = True


class ProviderError(FreightBotError):
    """A quote provider failed. Retryability depends on the failure class."""

    retryable = True


class NoOptionsError(FreightBotError):
    """Every provider answered, but none offered an option."""


USER_FACING_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.BACKEND_UNAVAILABLE: (
        "Serviço temporariamente indisponível. Tente novamente em alguns minutos."
    ),
    ErrorCode.BACKEND_WRITE_FAILED: "Erro ao processar sua solicitação. Tente novamente.",
    ErrorCode.PROVIDER_API_ERROR: "Erro ao calcular frete. Tente novamente em alguns instantes.",
    ErrorCode.PROVIDER_TIMEOUT: (
        "O cálculo de frete está demorando mais que o esperado. Tente novamente."
    ),
    ErrorCode.INVALID_DESTINATION: "CEP inválido. Por favor, digite um CEP válido (ex: 01001-000).",
    ErrorCode.INVALID_QUANTITY: (
        "Quantidade inválida. Por favor, digite um número inteiro entre 1 e 9999."
    ),
    ErrorCode.MISSING_TENANT: "Não foi possível identificar a loja desta conversa.",
    ErrorCode.SESSION_NOT_FOUND: 'Sessão não encontrada. Digite "frete" para começar.',
    ErrorCode.INVALID_STATE_TRANSITION: 'Comando inválido. Digite "frete" para começar de novo.',
    ErrorCode.NO_FREIGHT_OPTIONS: (
        "Não conseguimos calcular o frete para esse CEP. Tente outro CEP."
    ),
    ErrorCode.VALIDATION_ERROR: "Dados inválidos. Verifique e tente novamente.",
    ErrorCode.UNKNOWN_ERROR: "Ocorreu um erro inesperado. Tente novamente mais tarde.",
}


def get_user_message(error: BaseException) -> str:
    """Return the end-user reply for an error, never exposing internals."""
    if isinstance(error, FreightBotError):
        return USER_FACING_MESSAGES.get(
            error.code, USER_FACING_MESSAGES[ErrorCode.UNKNOWN_ERROR]
        )
    return USER_FACING_MESSAGES[ErrorCode.UNKNOWN_ERROR]


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, FreightBotError) and error.retryable
