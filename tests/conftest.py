"""Shared test fixtures and helpers."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest

from freightbot.config import FreightConfig
from freightbot.conversation.intent_classifier import IntentClassifier
from freightbot.conversation.session_store import SessionStore
from freightbot.conversation.state_machine import ConversationStateMachine
from freightbot.errors import ErrorCode, ProviderError
from freightbot.freight.audit import InMemorySimulationSink, SimulationSink
from freightbot.freight.decision_engine import FreightDecisionEngine
from freightbot.freight.providers import QuoteProvider
from freightbot.schemas.freight_schema import (
    Dimensions,
    QuoteCandidate,
    QuoteSource,
    SimulationRecord,
)
from freightbot.storage.backends import InMemoryBackend

TENANT = "loja-1"
USER = "5511999990000"


class FrozenClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_candidate(
    id: str,
    price: str,
    days: int,
    carrier: str = "Carrier",
    service: str = "Standard",
    source: QuoteSource = QuoteSource.MANUAL,
) -> QuoteCandidate:
    """Helper to create a QuoteCandidate."""
    return QuoteCandidate(
        id=id,
        carrier_name=carrier,
        service_name=service,
        price=Decimal(price),
        delivery_days=days,
        source=source,
    )


class FakeProvider(QuoteProvider):
    """Scripted provider: each call pops the next outcome (quotes or exception)."""

    def __init__(self, name: str, outcomes: Optional[list] = None, quotes=None) -> None:
        self.name = name
        self._outcomes = list(outcomes or [])
        self._default = quotes if quotes is not None else []
        self.calls: list[tuple[str, float, int]] = []

    async def get_quotes(
        self,
        destination: str,
        total_weight: float,
        quantity: int,
        dimensions: Optional[Dimensions] = None,
    ) -> list[QuoteCandidate]:
        self.calls.append((destination, total_weight, quantity))
        outcome = self._outcomes.pop(0) if self._outcomes else self._default
        if isinstance(outcome, Exception):
            raise outcome
        return list(outcome)


class FailingSink(SimulationSink):
    async def record_simulation(self, record: SimulationRecord) -> None:
        raise RuntimeError("database is down")


def light_quotes() -> list[QuoteCandidate]:
    return [
        make_candidate("me-1", "20.00", 10, "Correios", "PAC", QuoteSource.MELHOR_ENVIO),
        make_candidate("me-2", "40.00", 3, "Correios", "SEDEX", QuoteSource.MELHOR_ENVIO),
        make_candidate("me-3", "25.00", 8, "Jadlog", ".Package", QuoteSource.MELHOR_ENVIO),
    ]


def heavy_quotes() -> list[QuoteCandidate]:
    return [
        make_candidate("rt-1", "75.00", 5, "Transportadora Local", "Rodoviário",
                       QuoteSource.RATE_TABLE),
    ]


def provider_error(retryable: bool = True) -> ProviderError:
    return ProviderError(ErrorCode.PROVIDER_API_ERROR, "upstream failed", retryable=retryable)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def state_machine():
    return ConversationStateMachine(unit_weight=0.3, max_quantity=9999)


@pytest.fixture
def classifier():
    return IntentClassifier()


@pytest.fixture
def memory_backend(clock):
    return InMemoryBackend(clock)


@pytest.fixture
def session_store(memory_backend, clock):
    return SessionStore(memory_backend, environment="test", ttl_seconds=6 * 3600, clock=clock)


@pytest.fixture
def freight_config():
    return FreightConfig(
        origin_postal_code="01001000",
        default_unit_weight=0.3,
        max_quantity=9999,
        max_options=3,
        cache_ttl_seconds=600,
        light_max_weight=10,
        mixed_max_weight=15,
        price_weight=0.6,
        time_weight=0.4,
        margin_weight=0.0,
    )


@pytest.fixture
def sink():
    return InMemorySimulationSink()


@pytest.fixture
def light_provider():
    return FakeProvider("light", quotes=light_quotes())


@pytest.fixture
def heavy_provider():
    return FakeProvider("heavy", quotes=heavy_quotes())


@pytest.fixture
def engine(light_provider, heavy_provider, freight_config, sink, clock):
    return FreightDecisionEngine(
        light_provider,
        heavy_provider,
        freight_config=freight_config,
        cache=InMemoryBackend(clock),
        sink=sink,
        max_retries=2,
        retry_base_delay=0,
        call_timeout=1.0,
        clock=clock,
    )


def build_engine(freight_config, clock, light, heavy, **kwargs) -> FreightDecisionEngine:
    """Engine with an in-memory cache, no backoff delay and a short call timeout."""
    options = dict(
        freight_config=freight_config,
        cache=InMemoryBackend(clock),
        max_retries=2,
        retry_base_delay=0,
        call_timeout=1.0,
        clock=clock,
    )
    options.update(kwargs)
    return FreightDecisionEngine(light, heavy, **options)
