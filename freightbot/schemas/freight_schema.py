"""Freight quote, ranking and simulation data models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class QuoteSource(str, Enum):
    MELHOR_ENVIO = "melhor_envio"
    RATE_TABLE = "rate_table"
    MANUAL = "manual"


class WeightStrategy(str, Enum):
    """Which provider(s) to query for a given total weight."""
    LIGHT_ONLY = "light_only"
    MIXED = "mixed"
    HEAVY_ONLY = "heavy_only"


class WeightDecision(BaseModel):
    total_weight: float
    strategy: WeightStrategy
    rationale: str


class Dimensions(BaseModel):
    """Package dimensions in centimetres."""
    width: float = Field(default=11, gt=0)
    height: float = Field(default=11, gt=0)
    length: float = Field(default=11, gt=0)


class FreightRequest(BaseModel):
    destination: str
    quantity: int
    unit_weight: Optional[float] = Field(default=None, gt=0)
    dimensions: Optional[Dimensions] = None


class QuoteCandidate(BaseModel):
    """A single delivery option offered by a provider."""

    model_config = ConfigDict(extra="ignore")

    id: str
    carrier_name: str
    service_name: str
    price: Decimal = Field(ge=0)
    delivery_days: int = Field(ge=0)
    source: QuoteSource


class EconomicContext(BaseModel):
    """Order economics used to compute per-option margin."""
    product_cost: Decimal = Decimal("0")
    selling_price: Decimal = Decimal("0")
    operational_cost: Decimal = Decimal("0")


class EconomicMetrics(BaseModel):
    net_revenue: Decimal
    profit: Decimal
    margin_percent: float


class ScoredCandidate(QuoteCandidate):
    economics: Optional[EconomicMetrics] = None
    score: float


class RankingWeights(BaseModel):
    price: float = Field(default=0.6, ge=0)
    time: float = Field(default=0.4, ge=0)
    margin: float = Field(default=0.0, ge=0)


class RankingResult(BaseModel):
    all: list[ScoredCandidate]
    best: ScoredCandidate
    cheapest: ScoredCandidate
    fastest: ScoredCandidate
    best_margin: Optional[ScoredCandidate] = None


class FreightResult(BaseModel):
    """Capped, ranked quote result. Also the quote-cache payload."""

    model_config = ConfigDict(extra="ignore")

    schema_version: int = 1
    options: list[ScoredCandidate]
    best: ScoredCandidate
    cheapest: ScoredCandidate
    fastest: ScoredCandidate
    best_margin: Optional[ScoredCandidate] = None
    total_weight: float
    strategy: WeightStrategy
    rationale: str
    calculated_at: datetime
    from_cache: bool = False


class SimulationRecord(BaseModel):
    """Best-option summary handed to the audit sink."""
    tenant_id: str
    destination: str
    total_weight: float
    quantity: int
    best_carrier: str
    best_service: str
    best_price: Decimal
    best_margin: Optional[float] = None
    strategy: WeightStrategy
    recorded_at: datetime
