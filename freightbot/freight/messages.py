"""User-facing chat replies for freight quotes (Portuguese, BRL)."""

from decimal import ROUND_HALF_UP, Decimal

from freightbot.schemas.freight_schema import FreightResult, ScoredCandidate

CENTS = Decimal("0.01")


def format_brl(amount: Decimal) -> str:
    """Format an amount as Brazilian reais, e.g. ``R$ 1.234,56``."""
    quantized = Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)
    sign = "-" if quantized < 0 else ""
    text = f"{abs(quantized):,.2f}"
    # Swap the US separators for the Brazilian ones.
    text = text.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{sign}R$ {text}"


def _days(days: int) -> str:
    return "1 dia útil" if days == 1 else f"{days} dias úteis"


def _option_lines(option: ScoredCandidate) -> list[str]:
    return [
        f"📦 {option.carrier_name} - {option.service_name}",
        f"💰 {format_brl(option.price)} | 🕒 {_days(option.delivery_days)}",
    ]


def format_quote_message(result: FreightResult) -> str:
    """Render the recommended option plus distinct cheapest/fastest alternatives."""
    best = result.best
    lines = [
        "🚚 *Cotação de Frete*",
        "",
        "🏆 *Melhor Opção (Recomendada)*",
        *_option_lines(best),
    ]

    alternatives: list[tuple[str, ScoredCandidate]] = []
    if result.cheapest.id != best.id:
        alternatives.append(("💲 *Mais Barato*", result.cheapest))
    if result.fastest.id not in (best.id, result.cheapest.id):
        alternatives.append(("⚡ *Mais Rápido*", result.fastest))

    if alternatives:
        lines += ["", "*Outras Opções:*"]
        for label, option in alternatives:
            lines += ["", label, *_option_lines(option)]

    if best.economics is not None:
        lines += [
            "",
            f"📈 Margem estimada: {best.economics.margin_percent:.1f}%".replace(".", ","),
        ]
    return "\n".join(lines)
