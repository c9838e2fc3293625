"""
Conversation orchestrator: one inbound chat message in, one reply out.

Loads (or creates) the tenant-scoped session, classifies the message,
drives the state machine, calls the freight engine once a destination
and quantity are known, and turns every domain error into a
user-facing reply. Quotes are a one-shot flow: the session is deleted
as soon as a quote has been delivered.
"""

from dataclasses import dataclass

from freightbot.conversation.intent_classifier import Intent, IntentClassifier, IntentResult
from freightbot.conversation.session_store import SessionStore
from freightbot.conversation.state_machine import (
    ConversationContext,
    ConversationEvent,
    ConversationState,
    ConversationStateMachine,
)
from freightbot.errors import (
    ErrorCode,
    FreightBotError,
    NoOptionsError,
    StateError,
    ValidationError,
    get_user_message,
)
from freightbot.freight.decision_engine import FreightDecisionEngine
from freightbot.freight.messages import format_quote_message
from freightbot.logging_context import (
    get_conversation_logger,
    make_conversation_id,
    set_conversation_id,
)
from freightbot.schemas.freight_schema import FreightRequest

logger = get_conversation_logger(__name__)

GENERIC_FAILURE_REPLY = "Desculpe, ocorreu um erro. Tente novamente mais tarde."
RESET_REPLY = 'Conversa reiniciada. Digite "frete" para começar uma nova cotação.'
START_REPLY = "Olá! Vou ajudar você a calcular o frete. Qual é o CEP de destino?"
DESTINATION_REPLY = "CEP recebido! Agora, quantas unidades você deseja?"

COMING_SOON_REPLIES: dict[Intent, str] = {
    Intent.TRACK_ORDER: (
        'Rastreamento de pedidos estará disponível em breve. Digite "frete" para calcular frete.'
    ),
    Intent.PAYMENT_STATUS: (
        'Consulta de pagamento estará disponível em breve. Digite "frete" para calcular frete.'
    ),
    Intent.HUMAN_SUPPORT: (
        "Atendimento humano estará disponível em breve. Por enquanto, posso ajudar com "
        'cotações de frete. Digite "frete" para começar.'
    ),
}

HELP_REPLIES: dict[ConversationState, str] = {
    ConversationState.IDLE: 'Posso ajudar você a calcular o frete. Digite "frete" para começar.',
    ConversationState.AWAITING_DESTINATION: (
        "Estou aguardando o CEP de destino. Digite o CEP no formato 01001-000 ou 01001000."
    ),
    ConversationState.AWAITING_QUANTITY: (
        "Estou aguardando a quantidade de unidades. Digite um número (ex: 5)."
    ),
}
DEFAULT_HELP_REPLY = 'Digite "frete" para calcular o frete ou "ajuda" para mais informações.'

UNKNOWN_REPLIES: dict[ConversationState, str] = {
    ConversationState.AWAITING_DESTINATION: (
        "Não entendi. Por favor, digite o CEP de destino (ex: 01001-000)."
    ),
    ConversationState.AWAITING_QUANTITY: (
        "Não entendi. Por favor, digite a quantidade de unidades (ex: 5)."
    ),
}
DEFAULT_UNKNOWN_REPLY = (
    'Desculpe, não entendi. Digite "frete" para calcular o frete ou "ajuda" para mais informações.'
)


@dataclass(frozen=True)
class OrchestratorReply:
    reply: str
    success: bool


class ConversationOrchestrator:
    """Routes classified messages through the state machine and freight engine."""

    def __init__(
        self,
        classifier: IntentClassifier,
        state_machine: ConversationStateMachine,
        session_store: SessionStore,
        engine: FreightDecisionEngine,
    ) -> None:
        self._classifier = classifier
        self._sm = state_machine
        self._sessions = session_store
        self._engine = engine

    async def process_message(self, tenant_id: str, user_id: str, text: str) -> OrchestratorReply:
        """Handle one inbound message. Never raises for domain failures."""
        set_conversation_id(make_conversation_id(tenant_id, user_id))
        try:
            if not tenant_id or not str(tenant_id).strip():
                raise ValidationError(
                    ErrorCode.MISSING_TENANT,
                    "Inbound message has no tenant",
                    {"user_id": user_id},
                )

            record = await self._sessions.get(tenant_id, user_id)
            if record is None:
                record = await self._sessions.create(tenant_id, user_id)
            context = record.to_context()

            result = self._classifier.classify(text, context.state)
            logger.debug(
                "Intent classified: %s (confidence %.1f, state %s)",
                result.intent.value, result.confidence, context.state.value,
            )
            reply = await self._handle_intent(tenant_id, context, result)
            return OrchestratorReply(reply=reply, success=True)

        except (ValidationError, StateError) as exc:
            logger.info("Rejected message from %s/%s: %s", tenant_id, user_id, exc.message)
            return OrchestratorReply(reply=get_user_message(exc), success=False)
        except NoOptionsError as exc:
            logger.warning("No freight options for %s/%s: %s", tenant_id, user_id, exc.context)
            return OrchestratorReply(reply=get_user_message(exc), success=False)
        except FreightBotError as exc:
            logger.error(
                "Failed to process message for %s/%s: %s", tenant_id, user_id, exc.to_dict()
            )
            return OrchestratorReply(reply=get_user_message(exc), success=False)
        except Exception:
            logger.exception("Unexpected failure processing message for %s/%s", tenant_id, user_id)
            return OrchestratorReply(reply=GENERIC_FAILURE_REPLY, success=False)

    async def _handle_intent(
        self, tenant_id: str, context: ConversationContext, result: IntentResult
    ) -> str:
        intent = result.intent

        if intent in (Intent.RESET, Intent.CANCEL):
            await self._sessions.delete(tenant_id, context.user_id)
            return RESET_REPLY

        if intent is Intent.HELP:
            return HELP_REPLIES.get(context.state, DEFAULT_HELP_REPLY)

        if intent is Intent.FREIGHT_QUERY:
            return await self._start_query(tenant_id, context)

        if intent is Intent.PROVIDE_DESTINATION and result.extracted.destination:
            updated = self._sm.transition(
                context,
                ConversationEvent.DESTINATION_PROVIDED,
                destination=result.extracted.destination,
            )
            await self._sessions.save_context(tenant_id, updated)
            return DESTINATION_REPLY

        if intent is Intent.PROVIDE_QUANTITY and result.extracted.quantity:
            return await self._quote(tenant_id, context, result.extracted.quantity)

        if intent in COMING_SOON_REPLIES:
            return COMING_SOON_REPLIES[intent]

        return UNKNOWN_REPLIES.get(context.state, DEFAULT_UNKNOWN_REPLY)

    async def _start_query(self, tenant_id: str, context: ConversationContext) -> str:
        if context.state is not ConversationState.IDLE:
            logger.info(
                "Restarting active conversation for %s (was %s)",
                context.user_id, context.state.value,
            )
            context = self._sm.transition(context, ConversationEvent.RESET)
        updated = self._sm.transition(context, ConversationEvent.START_QUERY)
        await self._sessions.save_context(tenant_id, updated)
        return START_REPLY

    async def _quote(self, tenant_id: str, context: ConversationContext, quantity: int) -> str:
        computing = self._sm.transition(
            context, ConversationEvent.QUANTITY_PROVIDED, quantity=quantity
        )
        await self._sessions.save_context(tenant_id, computing)

        try:
            result = await self._engine.calculate_freight(
                tenant_id,
                FreightRequest(destination=computing.destination, quantity=computing.quantity),
            )
        except Exception:
            failed = self._sm.transition(computing, ConversationEvent.COMPUTE_FAILED)
            await self._sessions.save_context(tenant_id, failed)
            raise

        completed = self._sm.transition(computing, ConversationEvent.COMPUTE_SUCCEEDED)
        await self._sessions.delete(tenant_id, completed.user_id)
        logger.info(
            "Quote delivered to %s/%s, session closed in state %s",
            tenant_id, completed.user_id, completed.state.value,
        )
        return format_quote_message(result)
