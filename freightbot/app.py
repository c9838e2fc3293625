"""
Application wiring.

``build_runtime`` assembles classifier, state machine, session store,
providers and decision engine from an ``AppConfig``. Any collaborator can
be passed in explicitly, which is how the console demo runs offline.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from freightbot.config import AppConfig
from freightbot.conversation.intent_classifier import IntentClassifier
from freightbot.conversation.orchestrator import ConversationOrchestrator
from freightbot.conversation.session_store import SessionEvent, SessionStore
from freightbot.conversation.state_machine import ConversationStateMachine
from freightbot.freight.audit import InMemorySimulationSink, SimulationSink
from freightbot.freight.decision_engine import FreightDecisionEngine
from freightbot.freight.providers import MelhorEnvioProvider, QuoteProvider, RateTableProvider
from freightbot.storage.backends import KeyValueBackend, RedisBackend
from freightbot.utils import Clock, utc_now

logger = logging.getLogger(__name__)


def _log_session_event(event: SessionEvent) -> None:
    logger.warning(
        "Session event %s for %s/%s: %s", event.name, event.tenant_id, event.user_id, event.detail
    )


@dataclass
class Runtime:
    """Everything one process needs to answer messages, plus what to close."""
    orchestrator: ConversationOrchestrator
    session_store: SessionStore
    engine: FreightDecisionEngine
    sink: SimulationSink
    sweep_interval_seconds: int
    http_client: Optional[httpx.AsyncClient] = None
    redis_backend: Optional[RedisBackend] = None

    def start(self) -> None:
        """Start background work. Must be called from a running event loop."""
        self.session_store.start_sweep(self.sweep_interval_seconds)

    async def aclose(self) -> None:
        await self.session_store.aclose()
        if self.http_client is not None:
            await self.http_client.aclose()
        if self.redis_backend is not None:
            await self.redis_backend.close()


def build_runtime(
    config: AppConfig,
    *,
    backend: Optional[KeyValueBackend] = None,
    light_provider: Optional[QuoteProvider] = None,
    heavy_provider: Optional[QuoteProvider] = None,
    sink: Optional[SimulationSink] = None,
    clock: Clock = utc_now,
) -> Runtime:
    redis_backend = None
    if backend is None and config.redis_url:
        redis_backend = RedisBackend.from_url(config.redis_url)
        backend = redis_backend

    store = SessionStore(
        backend,
        environment=config.environment,
        ttl_seconds=config.session.ttl_seconds,
        clock=clock,
        on_event=_log_session_event,
    )

    http_client = None
    if light_provider is None:
        http_client = httpx.AsyncClient(timeout=config.providers.request_timeout_sec)
        light_provider = MelhorEnvioProvider(
            http_client,
            base_url=config.providers.melhorenvio_url,
            token=config.providers.melhorenvio_token,
            origin_postal_code=config.freight.origin_postal_code,
        )

    heavy_provider = heavy_provider or RateTableProvider()
    sink = sink or InMemorySimulationSink()
    engine = FreightDecisionEngine(
        light_provider,
        heavy_provider,
        freight_config=config.freight,
        cache=backend if backend is not None else store.fallback,
        sink=sink,
        max_retries=config.providers.max_retries,
        retry_base_delay=config.providers.retry_base_delay_sec,
        call_timeout=config.providers.call_timeout_sec,
        clock=clock,
    )
    orchestrator = ConversationOrchestrator(
        IntentClassifier(),
        ConversationStateMachine(
            unit_weight=config.freight.default_unit_weight,
            max_quantity=config.freight.max_quantity,
        ),
        store,
        engine,
    )
    logger.info(
        "Runtime built (%s): sessions=%s light=%s heavy=%s",
        config.environment,
        backend.name if backend is not None else "memory",
        light_provider.name,
        heavy_provider.name,
    )
    return Runtime(
        orchestrator=orchestrator,
        session_store=store,
        engine=engine,
        sink=sink,
        sweep_interval_seconds=config.session.sweep_interval_seconds,
        http_client=http_client,
        redis_backend=redis_backend,
    )
