"""Audit sink for freight simulation summaries."""

import logging
from abc import ABC, abstractmethod

from freightbot.schemas.freight_schema import SimulationRecord

logger = logging.getLogger(__name__)


class SimulationSink(ABC):
    """Receives one best-option summary per computed quote. Never read back."""

    @abstractmethod
    async def record_simulation(self, record: SimulationRecord) -> None:
        ...


class InMemorySimulationSink(SimulationSink):
    """Keeps records in a list. Used by the console demo and tests."""

    def __init__(self) -> None:
        self.records: list[SimulationRecord] = []

    async def record_simulation(self, record: SimulationRecord) -> None:
        self.records.append(record)
        logger.info(
            "Simulation recorded: %s -> %s via %s (%s)",
            record.tenant_id, record.destination, record.best_carrier, record.strategy.value,
        )
