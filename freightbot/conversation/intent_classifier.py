"""
Rule-based intent classifier for inbound chat messages.

Messages are normalized (lowercase, trimmed, accents stripped) and then
checked in a fixed order where the first match wins:

1. Control commands   - reset, cancel, help
2. Structured data    - postal code, then a bare quantity
3. Keyword intents    - freight query, tracking, payment, human support

Structured data outranks keyword intents because the state machine's
guards need the extracted fields.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from freightbot.conversation.state_machine import ConversationState
from freightbot.utils import strip_accents

logger = logging.getLogger(__name__)

POSTAL_CODE_REGEX = re.compile(r"\b(\d{5})-?(\d{3})\b")
QUANTITY_REGEX = re.compile(r"\b(\d{1,4})\b")
MIN_QUANTITY = 1
MAX_QUANTITY = 9999


class Intent(str, Enum):
    """All user intents the classifier can report."""

    FREIGHT_QUERY = "freight_query"
    PROVIDE_DESTINATION = "provide_destination"
    PROVIDE_QUANTITY = "provide_quantity"
    RESET = "reset"
    CANCEL = "cancel"
    HELP = "help"
    TRACK_ORDER = "track_order"
    PAYMENT_STATUS = "payment_status"
    HUMAN_SUPPORT = "human_support"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ExtractedFields:
    destination: Optional[str] = None
    quantity: Optional[int] = None


@dataclass(frozen=True)
class IntentResult:
    """Outcome of classifying one message."""
    intent: Intent
    confidence: float
    extracted: ExtractedFields = field(default_factory=ExtractedFields)


# Keyword sets are stored accent-free; messages are normalized the same way.
RESET_KEYWORDS = ["reiniciar", "recomecar", "restart", "reset", "voltar", "comecar de novo"]
CANCEL_KEYWORDS = ["cancelar", "cancel", "sair", "parar", "stop"]
HELP_KEYWORDS = ["ajuda", "help", "socorro", "como funciona", "nao entendi"]
FREIGHT_KEYWORDS = [
    "frete", "cotacao", "envio", "entrega", "shipping", "freight",
    "quanto custa", "valor do frete", "calcular frete",
]
TRACKING_KEYWORDS = ["rastrear", "rastreio", "tracking", "onde esta", "status do pedido"]
PAYMENT_KEYWORDS = ["pagamento", "payment", "boleto", "pix", "pagar", "segunda via"]
HUMAN_SUPPORT_KEYWORDS = [
    "atendente", "humano", "pessoa", "falar com alguem", "human", "agent",
]


def _contains_any(text: str, keywords: list[str]) -> bool:
    return any(kw in text for kw in keywords)


class IntentClassifier:
    """Classifies free text into an ``IntentResult``. Stateless and deterministic."""

    def classify(
        self, text: str, current_state: Optional[ConversationState] = None
    ) -> IntentResult:
        normalized = strip_accents(text or "")

        if _contains_any(normalized, RESET_KEYWORDS):
            return IntentResult(Intent.RESET, 1.0)
        if _contains_any(normalized, CANCEL_KEYWORDS):
            return IntentResult(Intent.CANCEL, 1.0)
        if _contains_any(normalized, HELP_KEYWORDS):
            return IntentResult(Intent.HELP, 1.0)

        destination = self.extract_postal_code(normalized)
        if destination is not None:
            return IntentResult(
                Intent.PROVIDE_DESTINATION, 1.0, ExtractedFields(destination=destination)
            )

        quantity = self.extract_quantity(normalized)
        if quantity is not None:
            return IntentResult(
                Intent.PROVIDE_QUANTITY, 1.0, ExtractedFields(quantity=quantity)
            )

        if _contains_any(normalized, FREIGHT_KEYWORDS):
            return IntentResult(Intent.FREIGHT_QUERY, 0.9)
        if _contains_any(normalized, TRACKING_KEYWORDS):
            return IntentResult(Intent.TRACK_ORDER, 0.8)
        if _contains_any(normalized, PAYMENT_KEYWORDS):
            return IntentResult(Intent.PAYMENT_STATUS, 0.8)
        if _contains_any(normalized, HUMAN_SUPPORT_KEYWORDS):
            return IntentResult(Intent.HUMAN_SUPPORT, 0.9)

        logger.debug(
            "Unable to classify intent: %r (state: %s)",
            normalized, current_state.value if current_state else None,
        )
        return IntentResult(Intent.UNKNOWN, 0.0)

    def has_multiple_intents(self, text: str) -> bool:
        """Report whether two or more data/keyword signals fire in one message."""
        normalized = strip_accents(text or "")
        signals = [
            self.extract_postal_code(normalized) is not None,
            self.extract_quantity(normalized) is not None,
            _contains_any(normalized, FREIGHT_KEYWORDS),
            _contains_any(normalized, TRACKING_KEYWORDS),
            _contains_any(normalized, PAYMENT_KEYWORDS),
            _contains_any(normalized, HUMAN_SUPPORT_KEYWORDS),
        ]
        return sum(signals) >= 2

    @staticmethod
    def extract_postal_code(text: str) -> Optional[str]:
        """Return the first postal code as 8 digits, hyphen removed."""
        match = POSTAL_CODE_REGEX.search(text)
        if match:
            return match.group(1) + match.group(2)
        return None

    @staticmethod
    def extract_quantity(text: str) -> Optional[int]:
        """Return the first bare 1-4 digit token if it lies in [1, 9999]."""
        match = QUANTITY_REGEX.search(text)
        if match:
            value = int(match.group(1))
            if MIN_QUANTITY <= value <= MAX_QUANTITY:
                return value
        return None
