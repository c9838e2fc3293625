"""
Weighted multi-criteria ranking of freight quotes.

Each candidate gets a score where lower is better:

    score = price / min_price * w.price
          + days / min_days * w.time
          + (1 - margin / max_margin) * w.margin

The margin term is inverted so that a higher margin lowers the score.
Cheapest, fastest and best-margin options are reported independently
of the weighted score.
"""

import logging
from decimal import Decimal
from typing import Optional, Sequence

from freightbot.schemas.freight_schema import (
    EconomicContext,
    EconomicMetrics,
    QuoteCandidate,
    RankingResult,
    RankingWeights,
    ScoredCandidate,
)

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = RankingWeights(price=0.6, time=0.4, margin=0.0)


def compute_economics(price: Decimal, context: EconomicContext) -> EconomicMetrics:
    """Net revenue, profit and margin of selling one order shipped at ``price``."""
    net_revenue = context.selling_price - price
    profit = net_revenue - context.product_cost - context.operational_cost
    if context.selling_price > 0:
        margin_percent = float(profit / context.selling_price * 100)
    else:
        margin_percent = 0.0
    return EconomicMetrics(net_revenue=net_revenue, profit=profit, margin_percent=margin_percent)


def rank(
    candidates: Sequence[QuoteCandidate],
    weights: Optional[RankingWeights] = None,
    economic_context: Optional[EconomicContext] = None,
) -> RankingResult:
    """Score and order candidates. Pure and deterministic for equal input."""
    if not candidates:
        raise ValueError("Cannot rank an empty candidate set")
    weights = weights or DEFAULT_WEIGHTS

    economics: list[Optional[EconomicMetrics]] = [
        compute_economics(c.price, economic_context) if economic_context else None
        for c in candidates
    ]

    # Zero minima (free or same-day options) normalize against 1.
    min_price = min(c.price for c in candidates)
    price_base = float(min_price) if min_price > 0 else 1.0
    min_days = min(c.delivery_days for c in candidates)
    days_base = float(min_days) if min_days > 0 else 1.0

    max_margin = 1.0
    if economic_context is not None:
        max_margin = max(e.margin_percent for e in economics) or 1.0

    scored: list[ScoredCandidate] = []
    for candidate, econ in zip(candidates, economics):
        score = (float(candidate.price) / price_base) * weights.price
        score += (candidate.delivery_days / days_base) * weights.time
        if econ is not None and weights.margin:
            score += (1 - econ.margin_percent / max_margin) * weights.margin
        scored.append(
            ScoredCandidate(**candidate.model_dump(), economics=econ, score=score)
        )

    ordered = sorted(scored, key=lambda s: s.score)
    cheapest = min(scored, key=lambda s: s.price)
    fastest = min(scored, key=lambda s: s.delivery_days)
    best_margin = None
    if economic_context is not None:
        best_margin = max(scored, key=lambda s: s.economics.margin_percent)

    logger.debug(
        "Ranked %d candidates: best=%s cheapest=%s fastest=%s",
        len(ordered), ordered[0].id, cheapest.id, fastest.id,
    )
    return RankingResult(
        all=ordered,
        best=ordered[0],
        cheapest=cheapest,
        fastest=fastest,
        best_margin=best_margin,
    )
