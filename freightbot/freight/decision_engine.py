"""
Freight decision engine.

Picks which quote providers to ask based on the total shipped weight,
queries them concurrently with per-call timeouts and bounded retries,
ranks the merged quotes, records a best-option summary and caches the
capped result.

Weight strategy (thresholds from ``FreightConfig``):

    weight <= 10 kg        -> light provider only
    10 kg < weight <= 15   -> light and heavy providers
    weight > 15 kg         -> heavy rate table only
"""

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from freightbot.config import FreightConfig
from freightbot.errors import (
    ErrorCode,
    InfrastructureError,
    NoOptionsError,
    ProviderError,
    ValidationError,
)
from freightbot.freight.audit import SimulationSink
from freightbot.freight.providers import QuoteProvider
from freightbot.freight.ranking import rank
from freightbot.schemas.freight_schema import (
    Dimensions,
    EconomicContext,
    FreightRequest,
    FreightResult,
    QuoteCandidate,
    RankingWeights,
    SimulationRecord,
    WeightDecision,
    WeightStrategy,
)
from freightbot.storage.backends import KeyValueBackend
from freightbot.utils import Clock, normalize_postal_code, utc_now

logger = logging.getLogger(__name__)

INVALID_POSTAL_CODES = {"00000000"}

PersistErrorHandler = Callable[[SimulationRecord, Exception], None]


def request_fingerprint(
    destination: str,
    total_weight: float,
    quantity: int,
    economic_context: Optional[EconomicContext] = None,
    weights: Optional[RankingWeights] = None,
) -> str:
    """Deterministic cache key for a normalized freight request."""
    parts: dict = {
        "destination": destination,
        "total_weight": total_weight,
        "quantity": quantity,
    }
    if economic_context is not None:
        parts["economics"] = economic_context.model_dump(mode="json")
    if weights is not None:
        parts["weights"] = weights.model_dump(mode="json")
    digest = hashlib.sha256(json.dumps(parts, sort_keys=True).encode("utf-8")).hexdigest()
    return f"freight:v2:{digest}"


@dataclass
class _ProviderOutcome:
    provider: str
    quotes: list[QuoteCandidate]
    error: Optional[ProviderError] = None


class FreightDecisionEngine:
    """Stateless per call apart from the read-through quote cache."""

    def __init__(
        self,
        light_provider: QuoteProvider,
        heavy_provider: QuoteProvider,
        *,
        freight_config: FreightConfig,
        cache: Optional[KeyValueBackend] = None,
        sink: Optional[SimulationSink] = None,
        max_retries: int = 2,
        retry_base_delay: float = 0.5,
        call_timeout: float = 15.0,
        clock: Clock = utc_now,
        on_persist_error: Optional[PersistErrorHandler] = None,
    ) -> None:
        self._light = light_provider
        self._heavy = heavy_provider
        self._config = freight_config
        self._cache = cache
        self._sink = sink
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._call_timeout = call_timeout
        self._clock = clock
        self._on_persist_error = on_persist_error
        self._default_weights = RankingWeights(
            price=freight_config.price_weight,
            time=freight_config.time_weight,
            margin=freight_config.margin_weight,
        )
        self.persist_failures = 0

    def decide_strategy(self, total_weight: float) -> WeightDecision:
        light_max = self._config.light_max_weight
        mixed_max = self._config.mixed_max_weight
        if total_weight <= light_max:
            strategy = WeightStrategy.LIGHT_ONLY
            rationale = f"Weight {total_weight} kg <= {light_max} kg: light provider only"
        elif total_weight <= mixed_max:
            strategy = WeightStrategy.MIXED
            rationale = (
                f"Weight {total_weight} kg in ({light_max}, {mixed_max}] kg: "
                "light and heavy providers"
            )
        else:
            strategy = WeightStrategy.HEAVY_ONLY
            rationale = f"Weight {total_weight} kg > {mixed_max} kg: heavy rate table only"
        return WeightDecision(total_weight=total_weight, strategy=strategy, rationale=rationale)

    async def calculate_freight(
        self,
        tenant_id: str,
        request: FreightRequest,
        economic_context: Optional[EconomicContext] = None,
        weights: Optional[RankingWeights] = None,
    ) -> FreightResult:
        """
        Compute ranked delivery options for a request.

        Raises:
            ValidationError: Missing tenant, bad destination or quantity.
            NoOptionsError: Every provider answered with no options.
            ProviderError: Every queried provider failed after retries.
        """
        if not tenant_id or not str(tenant_id).strip():
            raise ValidationError(
                ErrorCode.MISSING_TENANT, "tenant_id is required to calculate freight"
            )
        destination = self._validate_destination(request.destination)
        quantity = self._validate_quantity(request.quantity)

        unit_weight = request.unit_weight or self._config.default_unit_weight
        total_weight = round(quantity * unit_weight, 3)

        key = request_fingerprint(destination, total_weight, quantity, economic_context, weights)
        cached = await self._cache_get(key)
        if cached is not None:
            logger.info("Freight cache hit for %s (%s kg)", destination, total_weight)
            return cached

        decision = self.decide_strategy(total_weight)
        logger.info(
            "Calculating freight to %s: qty=%d weight=%s kg strategy=%s (%s)",
            destination, quantity, total_weight, decision.strategy.value, decision.rationale,
        )

        outcomes = await asyncio.gather(*(
            self._fetch(provider, destination, total_weight, quantity, request.dimensions)
            for provider in self._providers_for(decision.strategy)
        ))
        merged = [quote for outcome in outcomes for quote in outcome.quotes]
        failures = [outcome for outcome in outcomes if outcome.error is not None]

        if not merged:
            if failures:
                raise ProviderError(
                    ErrorCode.PROVIDER_API_ERROR,
                    "Every quote provider failed",
                    {
                        "destination": destination,
                        "providers": [f.provider for f in failures],
                    },
                    retryable=any(f.error.retryable for f in failures),
                )
            raise NoOptionsError(
                ErrorCode.NO_FREIGHT_OPTIONS,
                "No freight options available for this destination",
                {"destination": destination, "total_weight": total_weight},
            )

        ranking = rank(merged, weights or self._default_weights, economic_context)
        result = FreightResult(
            options=ranking.all[: self._config.max_options],
            best=ranking.best,
            cheapest=ranking.cheapest,
            fastest=ranking.fastest,
            best_margin=ranking.best_margin,
            total_weight=total_weight,
            strategy=decision.strategy,
            rationale=decision.rationale,
            calculated_at=self._clock(),
        )
        logger.info(
            "Freight calculation completed: %d options (%d shown), best %s at %s",
            len(ranking.all), len(result.options), result.best.carrier_name, result.best.price,
        )

        await self._persist(tenant_id, destination, quantity, result)
        await self._cache_put(key, result)
        return result

    # ------------------------------------------------------------------ #
    # Validation
    # ------------------------------------------------------------------ #

    @staticmethod
    def _validate_destination(raw: str) -> str:
        destination = normalize_postal_code(raw)
        if destination is None or destination in INVALID_POSTAL_CODES:
            raise ValidationError(
                ErrorCode.INVALID_DESTINATION,
                f"Invalid destination postal code: {raw!r}",
                {"destination": raw},
            )
        return destination

    def _validate_quantity(self, quantity: int) -> int:
        if (
            isinstance(quantity, bool)
            or not isinstance(quantity, int)
            or not 1 <= quantity <= self._config.max_quantity
        ):
            raise ValidationError(
                ErrorCode.INVALID_QUANTITY,
                f"Quantity must be between 1 and {self._config.max_quantity}, got {quantity!r}",
                {"quantity": quantity},
            )
        return quantity

    # ------------------------------------------------------------------ #
    # Provider fan-out
    # ------------------------------------------------------------------ #

    def _providers_for(self, strategy: WeightStrategy) -> list[QuoteProvider]:
        if strategy is WeightStrategy.LIGHT_ONLY:
            return [self._light]
        if strategy is WeightStrategy.MIXED:
            return [self._light, self._heavy]
        return [self._heavy]

    async def _fetch(
        self,
        provider: QuoteProvider,
        destination: str,
        total_weight: float,
        quantity: int,
        dimensions: Optional[Dimensions],
    ) -> _ProviderOutcome:
        try:
            quotes = await self._call_with_retry(
                provider, destination, total_weight, quantity, dimensions
            )
        except ProviderError as exc:
            logger.error(
                "Provider %s failed for %s after retries: %s (%s)",
                provider.name, destination, exc.message, exc.context,
            )
            return _ProviderOutcome(provider.name, [], exc)
        except Exception as exc:
            logger.exception("Provider %s raised unexpectedly for %s", provider.name, destination)
            error = ProviderError(
                ErrorCode.PROVIDER_API_ERROR,
                f"{provider.name} failed: {exc}",
                {"provider": provider.name, "type": type(exc).__name__},
                retryable=False,
            )
            return _ProviderOutcome(provider.name, [], error)
        logger.debug("Provider %s returned %d quotes", provider.name, len(quotes))
        return _ProviderOutcome(provider.name, quotes)

    async def _call_with_retry(
        self,
        provider: QuoteProvider,
        destination: str,
        total_weight: float,
        quantity: int,
        dimensions: Optional[Dimensions],
    ) -> list[QuoteCandidate]:
        """Exponential backoff on retryable failures; timeouts are retryable."""
        for attempt in range(self._max_retries + 1):
            try:
                return await asyncio.wait_for(
                    provider.get_quotes(destination, total_weight, quantity, dimensions),
                    timeout=self._call_timeout,
                )
            except asyncio.TimeoutError:
                error = ProviderError(
                    ErrorCode.PROVIDER_TIMEOUT,
                    f"{provider.name} timed out after {self._call_timeout}s",
                    {"provider": provider.name},
                    retryable=True,
                )
            except ProviderError as exc:
                error = exc

            if not error.retryable or attempt == self._max_retries:
                raise error

            delay = self._retry_base_delay * (2 ** attempt)
            logger.warning(
                "Provider %s failed (attempt %d/%d), retrying in %.2fs: %s",
                provider.name, attempt + 1, self._max_retries + 1, delay, error.message,
            )
            await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    # ------------------------------------------------------------------ #
    # Post-commit hooks: audit and cache
    # ------------------------------------------------------------------ #

    async def _persist(
        self, tenant_id: str, destination: str, quantity: int, result: FreightResult
    ) -> None:
        if self._sink is None:
            return
        best = result.best
        record = SimulationRecord(
            tenant_id=tenant_id,
            destination=destination,
            total_weight=result.total_weight,
            quantity=quantity,
            best_carrier=best.carrier_name,
            best_service=best.service_name,
            best_price=best.price,
            best_margin=best.economics.margin_percent if best.economics else None,
            strategy=result.strategy,
            recorded_at=result.calculated_at,
        )
        try:
            await self._sink.record_simulation(record)
        except Exception as exc:
            self.persist_failures += 1
            logger.error(
                "Failed to persist simulation for %s/%s: %s",
                tenant_id, destination, exc, exc_info=True,
            )
            if self._on_persist_error is not None:
                self._on_persist_error(record, exc)

    async def _cache_get(self, key: str) -> Optional[FreightResult]:
        if self._cache is None:
            return None
        try:
            raw = await self._cache.get(key)
        except InfrastructureError as exc:
            logger.warning("Freight cache read failed, recomputing: %s", exc.message)
            return None
        if raw is None:
            logger.debug("Freight cache miss for %s", key)
            return None
        try:
            cached = FreightResult.model_validate_json(raw)
        except ValueError as exc:
            logger.warning("Discarding unreadable freight cache entry %s: %s", key, exc)
            return None
        return cached.model_copy(update={"from_cache": True})

    async def _cache_put(self, key: str, result: FreightResult) -> None:
        if self._cache is None:
            return
        payload = result.model_dump_json().encode("utf-8")
        if not await self._cache.set(key, payload, self._config.cache_ttl_seconds):
            logger.warning("Freight cache write failed for %s", key)
