"""Tests for the freight decision engine."""

import asyncio
from decimal import Decimal

import pytest

from freightbot.errors import ErrorCode, NoOptionsError, ProviderError, ValidationError
from freightbot.freight.decision_engine import request_fingerprint
from freightbot.schemas.freight_schema import (
    EconomicContext,
    FreightRequest,
    RankingWeights,
    WeightStrategy,
)
from freightbot.storage.backends import InMemoryBackend

from tests.conftest import (
    TENANT,
    FailingSink,
    FakeProvider,
    build_engine,
    heavy_quotes,
    light_quotes,
    make_candidate,
    provider_error,
)


def request(destination="01310-100", quantity=5, **kwargs) -> FreightRequest:
    return FreightRequest(destination=destination, quantity=quantity, **kwargs)


class TestDecideStrategy:
    @pytest.mark.parametrize(
        "weight,expected",
        [
            (0.3, WeightStrategy.LIGHT_ONLY),
            (10, WeightStrategy.LIGHT_ONLY),
            (10.01, WeightStrategy.MIXED),
            (15, WeightStrategy.MIXED),
            (15.01, WeightStrategy.HEAVY_ONLY),
            (500, WeightStrategy.HEAVY_ONLY),
        ],
    )
    def test_thresholds(self, engine, weight, expected):
        decision = engine.decide_strategy(weight)
        assert decision.strategy == expected
        assert decision.total_weight == weight
        assert decision.rationale

    def test_rationale_mentions_threshold(self, engine):
        assert "10" in engine.decide_strategy(10).rationale
        assert "15" in engine.decide_strategy(15.01).rationale


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("destination", ["1234", "abcdefgh", "00000-000", "", "123456789"])
    async def test_bad_destination(self, engine, destination):
        with pytest.raises(ValidationError) as exc_info:
            await engine.calculate_freight(TENANT, request(destination=destination))
        assert exc_info.value.code == ErrorCode.INVALID_DESTINATION

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -3, 10000])
    async def test_bad_quantity(self, engine, quantity):
        with pytest.raises(ValidationError) as exc_info:
            await engine.calculate_freight(TENANT, request(quantity=quantity))
        assert exc_info.value.code == ErrorCode.INVALID_QUANTITY

    @pytest.mark.asyncio
    async def test_missing_tenant(self, engine, light_provider):
        with pytest.raises(ValidationError) as exc_info:
            await engine.calculate_freight("", request())
        assert exc_info.value.code == ErrorCode.MISSING_TENANT
        assert light_provider.calls == []


class TestProviderSelection:
    @pytest.mark.asyncio
    async def test_light_only(self, engine, light_provider, heavy_provider):
        result = await engine.calculate_freight(TENANT, request(quantity=5))
        assert result.strategy == WeightStrategy.LIGHT_ONLY
        assert result.total_weight == 1.5
        assert light_provider.calls == [("01310100", 1.5, 5)]
        assert heavy_provider.calls == []

    @pytest.mark.asyncio
    async def test_mixed_queries_both(self, engine, light_provider, heavy_provider):
        result = await engine.calculate_freight(TENANT, request(quantity=40))
        assert result.strategy == WeightStrategy.MIXED
        assert len(light_provider.calls) == 1
        assert len(heavy_provider.calls) == 1

    @pytest.mark.asyncio
    async def test_heavy_only(self, engine, light_provider, heavy_provider):
        result = await engine.calculate_freight(TENANT, request(quantity=60))
        assert result.strategy == WeightStrategy.HEAVY_ONLY
        assert result.total_weight == 18.0
        assert light_provider.calls == []
        assert result.best.id == "rt-1"

    @pytest.mark.asyncio
    async def test_explicit_unit_weight(self, engine, heavy_provider):
        result = await engine.calculate_freight(TENANT, request(quantity=4, unit_weight=5))
        assert result.total_weight == 20.0
        assert result.strategy == WeightStrategy.HEAVY_ONLY
        assert len(heavy_provider.calls) == 1


class TestResult:
    @pytest.mark.asyncio
    async def test_ranked_and_capped(self, freight_config, clock):
        light = FakeProvider("light", quotes=light_quotes() + [
            make_candidate("me-4", "500.00", 1, "Loggi", "Express"),
        ])
        engine = build_engine(freight_config, clock, light, FakeProvider("heavy"))
        result = await engine.calculate_freight(TENANT, request())

        assert len(result.options) == 3
        scores = [o.score for o in result.options]
        assert scores == sorted(scores)
        assert result.best == result.options[0]
        assert result.cheapest.id == "me-1"
        # The fastest option is kept even though it falls outside the cap.
        assert result.fastest.id == "me-4"
        assert "me-4" not in [o.id for o in result.options]
        assert result.calculated_at == clock()
        assert result.from_cache is False

    @pytest.mark.asyncio
    async def test_economics_passed_to_ranking(self, engine):
        context = EconomicContext(product_cost=Decimal("50"), selling_price=Decimal("100"))
        result = await engine.calculate_freight(TENANT, request(), economic_context=context)
        assert result.best_margin is not None
        assert result.best_margin.id == "me-1"

    @pytest.mark.asyncio
    async def test_custom_weights(self, engine):
        result = await engine.calculate_freight(
            TENANT, request(), weights=RankingWeights(price=1.0, time=0.0)
        )
        assert result.best.id == "me-1"

    @pytest.mark.asyncio
    async def test_simulation_recorded(self, engine, sink):
        result = await engine.calculate_freight(TENANT, request())
        assert len(sink.records) == 1
        record = sink.records[0]
        assert record.tenant_id == TENANT
        assert record.destination == "01310100"
        assert record.quantity == 5
        assert record.best_carrier == result.best.carrier_name
        assert record.best_price == result.best.price
        assert record.strategy == WeightStrategy.LIGHT_ONLY


class TestCache:
    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self, engine, light_provider, sink):
        first = await engine.calculate_freight(TENANT, request())
        second = await engine.calculate_freight(TENANT, request(destination="01310100"))
        assert second.from_cache is True
        assert second.best == first.best
        assert len(light_provider.calls) == 1
        assert len(sink.records) == 1

    @pytest.mark.asyncio
    async def test_cache_expires(self, engine, light_provider, clock):
        await engine.calculate_freight(TENANT, request())
        clock.advance(seconds=601)
        result = await engine.calculate_freight(TENANT, request())
        assert result.from_cache is False
        assert len(light_provider.calls) == 2

    @pytest.mark.asyncio
    async def test_different_quantity_is_a_new_key(self, engine, light_provider):
        await engine.calculate_freight(TENANT, request(quantity=5))
        await engine.calculate_freight(TENANT, request(quantity=6))
        assert len(light_provider.calls) == 2

    @pytest.mark.asyncio
    async def test_works_without_cache(self, freight_config, clock, light_provider, heavy_provider):
        engine = build_engine(freight_config, clock, light_provider, heavy_provider, cache=None)
        await engine.calculate_freight(TENANT, request())
        result = await engine.calculate_freight(TENANT, request())
        assert result.from_cache is False

    def test_fingerprint_is_deterministic(self):
        a = request_fingerprint("01310100", 1.5, 5)
        assert a == request_fingerprint("01310100", 1.5, 5)
        assert a.startswith("freight:v2:")
        assert a != request_fingerprint("01310100", 1.5, 6)
        assert a != request_fingerprint("01310100", 1.5, 5, weights=RankingWeights(price=1.0))


class TestFailures:
    @pytest.mark.asyncio
    async def test_no_options_caches_and_persists_nothing(self, freight_config, clock, sink):
        cache = InMemoryBackend(clock)
        engine = build_engine(
            freight_config, clock, FakeProvider("light"), FakeProvider("heavy"),
            cache=cache, sink=sink,
        )
        with pytest.raises(NoOptionsError) as exc_info:
            await engine.calculate_freight(TENANT, request(quantity=40))
        assert exc_info.value.code == ErrorCode.NO_FREIGHT_OPTIONS
        assert len(cache) == 0
        assert sink.records == []

    @pytest.mark.asyncio
    async def test_retryable_error_is_retried(self, freight_config, clock):
        light = FakeProvider("light", outcomes=[provider_error(), provider_error()],
                             quotes=light_quotes())
        engine = build_engine(freight_config, clock, light, FakeProvider("heavy"))
        result = await engine.calculate_freight(TENANT, request())
        assert len(light.calls) == 3
        assert result.best is not None

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, freight_config, clock, sink):
        light = FakeProvider("light", outcomes=[provider_error()] * 5)
        engine = build_engine(freight_config, clock, light, FakeProvider("heavy"), sink=sink)
        with pytest.raises(ProviderError):
            await engine.calculate_freight(TENANT, request())
        assert len(light.calls) == 3
        assert sink.records == []

    @pytest.mark.asyncio
    async def test_non_retryable_error_is_not_retried(self, freight_config, clock):
        light = FakeProvider("light", outcomes=[provider_error(retryable=False)])
        engine = build_engine(freight_config, clock, light, FakeProvider("heavy"))
        with pytest.raises(ProviderError) as exc_info:
            await engine.calculate_freight(TENANT, request())
        assert len(light.calls) == 1
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_backoff_is_exponential(self, freight_config, clock, monkeypatch):
        delays: list[float] = []

        async def fake_sleep(delay):
            delays.append(delay)

        monkeypatch.setattr("freightbot.freight.decision_engine.asyncio.sleep", fake_sleep)
        light = FakeProvider("light", outcomes=[provider_error()] * 3)
        engine = build_engine(
            freight_config, clock, light, FakeProvider("heavy"), retry_base_delay=0.5
        )
        with pytest.raises(ProviderError):
            await engine.calculate_freight(TENANT, request())
        assert delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_failed_provider_is_excluded(self, freight_config, clock):
        light = FakeProvider("light", outcomes=[provider_error(retryable=False)])
        heavy = FakeProvider("heavy", quotes=heavy_quotes())
        engine = build_engine(freight_config, clock, light, heavy)
        result = await engine.calculate_freight(TENANT, request(quantity=40))
        assert [o.id for o in result.options] == ["rt-1"]

    @pytest.mark.asyncio
    async def test_unexpected_provider_exception_is_excluded(self, freight_config, clock):
        light = FakeProvider("light", outcomes=[AttributeError("'str' object has no attribute 'get'")])
        heavy = FakeProvider("heavy", quotes=heavy_quotes())
        engine = build_engine(freight_config, clock, light, heavy)

        result = await engine.calculate_freight(TENANT, request(quantity=40))

        assert result.strategy == WeightStrategy.MIXED
        assert [o.id for o in result.options] == ["rt-1"]
        assert len(light.calls) == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_on_only_provider_is_provider_error(
        self, freight_config, clock, sink
    ):
        light = FakeProvider("light", outcomes=[RuntimeError("boom")])
        engine = build_engine(freight_config, clock, light, FakeProvider("heavy"), sink=sink)

        with pytest.raises(ProviderError) as exc_info:
            await engine.calculate_freight(TENANT, request())
        assert exc_info.value.code == ErrorCode.PROVIDER_API_ERROR
        assert exc_info.value.retryable is False
        assert sink.records == []

    @pytest.mark.asyncio
    async def test_timeout_is_retried_then_excluded(self, freight_config, clock):
        class SlowProvider(FakeProvider):
            async def get_quotes(self, *args, **kwargs):
                self.calls.append(args)
                await asyncio.sleep(1)
                return []

        slow = SlowProvider("light")
        heavy = FakeProvider("heavy", quotes=heavy_quotes())
        engine = build_engine(
            freight_config, clock, slow, heavy, call_timeout=0.01, max_retries=1
        )
        result = await engine.calculate_freight(TENANT, request(quantity=40))
        assert len(slow.calls) == 2
        assert result.best.id == "rt-1"

    @pytest.mark.asyncio
    async def test_timeout_on_only_provider_is_provider_timeout(self, freight_config, clock):
        class SlowProvider(FakeProvider):
            async def get_quotes(self, *args, **kwargs):
                await asyncio.sleep(1)
                return []

        engine = build_engine(
            freight_config, clock, SlowProvider("light"), FakeProvider("heavy"),
            call_timeout=0.01, max_retries=0,
        )
        with pytest.raises(ProviderError) as exc_info:
            await engine.calculate_freight(TENANT, request())
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_persist_failure_does_not_fail_result(self, freight_config, clock):
        seen = []
        engine = build_engine(
            freight_config, clock, FakeProvider("light", quotes=light_quotes()),
            FakeProvider("heavy"), sink=FailingSink(),
            on_persist_error=lambda record, exc: seen.append((record, exc)),
        )
        result = await engine.calculate_freight(TENANT, request())
        assert result.best is not None
        assert engine.persist_failures == 1
        assert len(seen) == 1
        assert seen[0][0].destination == "01310100"
        assert isinstance(seen[0][1], RuntimeError)
