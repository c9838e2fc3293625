from freightbot.freight.audit import InMemorySimulationSink, SimulationSink
from freightbot.freight.decision_engine import FreightDecisionEngine
from freightbot.freight.messages import format_quote_message
from freightbot.freight.providers import MelhorEnvioProvider, QuoteProvider, RateTableProvider
from freightbot.freight.ranking import rank

__all__ = [
    "FreightDecisionEngine",
    "QuoteProvider", "MelhorEnvioProvider", "RateTableProvider",
    "SimulationSink", "InMemorySimulationSink",
    "rank", "format_quote_message",
]
