"""
Finite state machine for the freight quote conversation.

Defines six conversation states and the explicit transitions between
them. ``transition`` is pure: it never mutates the context it receives
and never persists anything. The caller saves the returned context.

Usage:
    sm = ConversationStateMachine(unit_weight=0.3, max_quantity=9999)
    ctx = ConversationContext(user_id="5511999990000")
    ctx = sm.transition(ctx, ConversationEvent.START_QUERY)
    assert ctx.state == ConversationState.AWAITING_DESTINATION
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional

from freightbot.errors import ErrorCode, StateError, ValidationError
from freightbot.utils import normalize_postal_code

logger = logging.getLogger(__name__)


class ConversationState(str, Enum):
    """All possible states in a quote conversation."""
    IDLE = "idle"
    AWAITING_DESTINATION = "awaiting_destination"
    AWAITING_QUANTITY = "awaiting_quantity"
    COMPUTING = "computing"
    COMPLETED = "completed"
    FAILED = "failed"


class ConversationEvent(str, Enum):
    """Events that cause state transitions."""
    START_QUERY = "start_query"
    DESTINATION_PROVIDED = "destination_provided"
    QUANTITY_PROVIDED = "quantity_provided"
    COMPUTE_SUCCEEDED = "compute_succeeded"
    COMPUTE_FAILED = "compute_failed"
    RESET = "reset"
    FAULT = "fault"


@dataclass(frozen=True)
class ConversationContext:
    """Immutable snapshot of the data carried through a conversation."""
    user_id: str
    state: ConversationState = ConversationState.IDLE
    destination: Optional[str] = None
    quantity: Optional[int] = None
    total_weight: Optional[float] = None
    error_count: int = 0


Guard = Callable[[ConversationContext], Optional[ValidationError]]
Action = Callable[[ConversationContext], ConversationContext]


@dataclass(frozen=True)
class Transition:
    """A single valid state transition."""
    from_state: ConversationState
    event: ConversationEvent
    to_state: ConversationState
    guard: Optional[Guard] = None
    action: Optional[Action] = None


@dataclass(frozen=True)
class TransitionRecord:
    """Observability event emitted for every accepted transition."""
    from_state: ConversationState
    to_state: ConversationState
    event: ConversationEvent
    user_id: str


TransitionListener = Callable[[TransitionRecord], None]

_RESETTABLE_STATES = (
    ConversationState.AWAITING_DESTINATION,
    ConversationState.AWAITING_QUANTITY,
    ConversationState.COMPUTING,
    ConversationState.COMPLETED,
    ConversationState.FAILED,
)
_FAULTABLE_STATES = (
    ConversationState.AWAITING_DESTINATION,
    ConversationState.AWAITING_QUANTITY,
)


def _clear_order(ctx: ConversationContext) -> ConversationContext:
    return replace(ctx, destination=None, quantity=None, total_weight=None)


def _count_error(ctx: ConversationContext) -> ConversationContext:
    return replace(ctx, error_count=ctx.error_count + 1)


class ConversationStateMachine:
    """
    Deterministic state machine controlling the quote conversation.

    Every transition must be explicitly defined. A ``(state, event)``
    pair absent from the table raises ``StateError``; a failing guard
    raises ``ValidationError``. In both cases the input context is
    returned to the caller untouched.
    """

    def __init__(
        self,
        unit_weight: float,
        max_quantity: int,
        listener: Optional[TransitionListener] = None,
    ) -> None:
        if unit_weight <= 0:
            raise ValueError(f"unit_weight must be > 0, got {unit_weight}")
        self._unit_weight = unit_weight
        self._max_quantity = max_quantity
        self._listener = listener
        self._transitions = self._build_transitions()

    def _build_transitions(self) -> list[Transition]:
        transitions = [
            # --- Query start ---
            Transition(ConversationState.IDLE, ConversationEvent.START_QUERY,
                       ConversationState.AWAITING_DESTINATION),

            # --- Data collection ---
            Transition(ConversationState.AWAITING_DESTINATION, ConversationEvent.DESTINATION_PROVIDED,
                       ConversationState.AWAITING_QUANTITY,
                       guard=self._check_destination, action=self._store_destination),
            Transition(ConversationState.AWAITING_QUANTITY, ConversationEvent.QUANTITY_PROVIDED,
                       ConversationState.COMPUTING,
                       guard=self._check_quantity, action=self._compute_weight),

            # --- Calculation result ---
            Transition(ConversationState.COMPUTING, ConversationEvent.COMPUTE_SUCCEEDED,
                       ConversationState.COMPLETED),
            Transition(ConversationState.COMPUTING, ConversationEvent.COMPUTE_FAILED,
                       ConversationState.FAILED, action=_count_error),
        ]

        # --- Reset ---
        transitions.extend(
            Transition(state, ConversationEvent.RESET, ConversationState.IDLE, action=_clear_order)
            for state in _RESETTABLE_STATES
        )

        # --- Faults while collecting data ---
        transitions.extend(
            Transition(state, ConversationEvent.FAULT, ConversationState.FAILED, action=_count_error)
            for state in _FAULTABLE_STATES
        )
        return transitions

    def transition(
        self,
        context: ConversationContext,
        event: ConversationEvent,
        *,
        destination: Optional[str] = None,
        quantity: Optional[int] = None,
    ) -> ConversationContext:
        """
        Apply an event to a context and return the resulting context.

        Args:
            context: The current conversation snapshot.
            event: The event to apply.
            destination: Raw destination carried by ``DESTINATION_PROVIDED``.
            quantity: Quantity carried by ``QUANTITY_PROVIDED``.

        Returns:
            A new context in the target state.

        Raises:
            StateError: If no transition exists for ``(state, event)``.
            ValidationError: If the transition's guard rejects the data.
        """
        found = self._find(context.state, event)
        if found is None:
            logger.warning(
                "Invalid state transition attempted: %s + %s (user %s)",
                context.state.value, event.value, context.user_id,
            )
            raise StateError(
                ErrorCode.INVALID_STATE_TRANSITION,
                f"No transition from '{context.state.value}' with event '{event.value}'. "
                f"Valid events: {[e.value for e in self.get_valid_events(context.state)]}",
                {"state": context.state.value, "event": event.value},
            )

        candidate = context
        if destination is not None:
            candidate = replace(candidate, destination=destination)
        if quantity is not None:
            candidate = replace(candidate, quantity=quantity)

        if found.guard is not None:
            error = found.guard(candidate)
            if error is not None:
                logger.warning(
                    "Transition guard failed: %s -> %s (%s): %s",
                    context.state.value, found.to_state.value, event.value, error.message,
                )
                raise error

        if found.action is not None:
            candidate = found.action(candidate)
        new_context = replace(candidate, state=found.to_state)

        record = TransitionRecord(
            from_state=context.state,
            to_state=found.to_state,
            event=event,
            user_id=context.user_id,
        )
        logger.info(
            "State transition: %s -> %s (event: %s, user: %s)",
            record.from_state.value, record.to_state.value, event.value, record.user_id,
        )
        if self._listener is not None:
            self._listener(record)
        return new_context

    def can_transition(self, state: ConversationState, event: ConversationEvent) -> bool:
        return self._find(state, event) is not None

    def get_valid_events(self, state: ConversationState) -> list[ConversationEvent]:
        """Return all events accepted from ``state``."""
        return [t.event for t in self._transitions if t.from_state == state]

    def _find(self, state: ConversationState, event: ConversationEvent) -> Optional[Transition]:
        for t in self._transitions:
            if t.from_state == state and t.event == event:
                return t
        return None

    # ------------------------------------------------------------------ #
    # Guards and actions
    # ------------------------------------------------------------------ #

    def _check_destination(self, ctx: ConversationContext) -> Optional[ValidationError]:
        if normalize_postal_code(ctx.destination) is None:
            return ValidationError(
                ErrorCode.INVALID_DESTINATION,
                f"Destination {ctx.destination!r} is not an 8-digit postal code",
                {"destination": ctx.destination},
            )
        return None

    def _store_destination(self, ctx: ConversationContext) -> ConversationContext:
        return replace(ctx, destination=normalize_postal_code(ctx.destination))

    def _check_quantity(self, ctx: ConversationContext) -> Optional[ValidationError]:
        q = ctx.quantity
        if isinstance(q, bool) or not isinstance(q, int) or not 1 <= q <= self._max_quantity:
            return ValidationError(
                ErrorCode.INVALID_QUANTITY,
                f"Quantity {q!r} must be an integer between 1 and {self._max_quantity}",
                {"quantity": q},
            )
        if ctx.destination is None:
            return ValidationError(
                ErrorCode.INVALID_DESTINATION,
                "Quantity provided before a destination",
                {"quantity": q},
            )
        return None

    def _compute_weight(self, ctx: ConversationContext) -> ConversationContext:
        total = round(ctx.quantity * self._unit_weight, 3)
        return replace(ctx, total_weight=total)
