from freightbot.conversation.intent_classifier import Intent, IntentClassifier, IntentResult
from freightbot.conversation.state_machine import (
    ConversationContext,
    ConversationEvent,
    ConversationState,
    ConversationStateMachine,
)

__all__ = [
    "ConversationStateMachine",
    "ConversationState",
    "ConversationEvent",
    "ConversationContext",
    "IntentClassifier",
    "Intent",
    "IntentResult",
]
