"""
Quote providers.

``MelhorEnvioProvider`` calls the Melhor Envio shipment calculator for
light parcels. ``RateTableProvider`` prices heavier shipments from a
weight-banded table. Both return ``QuoteCandidate`` lists; retries and
timeouts are applied by the decision engine, so each call here makes a
single attempt and reports whether its failure is retryable.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Sequence

import httpx

from freightbot.errors import ErrorCode, ProviderError
from freightbot.schemas.freight_schema import Dimensions, QuoteCandidate, QuoteSource

logger = logging.getLogger(__name__)

CALCULATE_ENDPOINT = "/api/v2/me/shipment/calculate"
RETRYABLE_STATUSES = {429}
CENTS = Decimal("0.01")


class QuoteProvider(ABC):
    """A source of delivery quotes."""

    name: str = "provider"
    source: QuoteSource = QuoteSource.MANUAL

    @abstractmethod
    async def get_quotes(
        self,
        destination: str,
        total_weight: float,
        quantity: int,
        dimensions: Optional[Dimensions] = None,
    ) -> list[QuoteCandidate]:
        ...


class MelhorEnvioProvider(QuoteProvider):
    """Light-parcel quotes from the Melhor Envio API."""

    name = "melhor_envio"
    source = QuoteSource.MELHOR_ENVIO

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        token: str,
        origin_postal_code: str,
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._origin = origin_postal_code

    async def get_quotes(
        self,
        destination: str,
        total_weight: float,
        quantity: int,
        dimensions: Optional[Dimensions] = None,
    ) -> list[QuoteCandidate]:
        url = f"{self._base_url}{CALCULATE_ENDPOINT}"
        try:
            response = await self._client.post(
                url,
                json=self._build_payload(destination, total_weight, dimensions),
                headers={
                    "Authorization": f"Bearer {self._token}",
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                },
            )
        except httpx.TimeoutException as exc:
            raise ProviderError(
                ErrorCode.PROVIDER_TIMEOUT,
                "Melhor Envio request timed out",
                {"endpoint": CALCULATE_ENDPOINT},
                retryable=True,
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderError(
                ErrorCode.PROVIDER_API_ERROR,
                f"Melhor Envio transport error: {exc}",
                {"endpoint": CALCULATE_ENDPOINT},
                retryable=True,
            ) from exc

        if response.status_code >= 400:
            retryable = response.status_code >= 500 or response.status_code in RETRYABLE_STATUSES
            raise ProviderError(
                ErrorCode.PROVIDER_API_ERROR,
                f"Melhor Envio API error: {response.status_code}",
                {"status": response.status_code, "body": response.text[:500]},
                retryable=retryable,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError(
                ErrorCode.PROVIDER_API_ERROR,
                "Melhor Envio returned invalid JSON",
                {"status": response.status_code},
                retryable=False,
            ) from exc
        return self._parse_response(body)

    def _build_payload(
        self, destination: str, total_weight: float, dimensions: Optional[Dimensions]
    ) -> dict[str, Any]:
        box = dimensions or Dimensions()
        return {
            "from": {"postal_code": self._origin},
            "to": {"postal_code": destination},
            "products": [
                {
                    "id": "order",
                    "width": box.width,
                    "height": box.height,
                    "length": box.length,
                    "weight": total_weight,
                    # Weight is already the order total.
                    "quantity": 1,
                }
            ],
        }

    def _parse_response(self, body: Any) -> list[QuoteCandidate]:
        if not isinstance(body, list):
            raise ProviderError(
                ErrorCode.PROVIDER_API_ERROR,
                "Unexpected Melhor Envio response shape",
                {"type": type(body).__name__},
                retryable=False,
            )

        quotes: list[QuoteCandidate] = []
        for item in body:
            if not isinstance(item, dict) or item.get("error"):
                continue
            try:
                name = str(item["name"])
                company = item.get("company")
                carrier = company.get("name") if isinstance(company, dict) else None
                carrier = carrier or name.split(" - ")[0] or name
                quotes.append(
                    QuoteCandidate(
                        id=str(item["id"]),
                        carrier_name=carrier,
                        service_name=name,
                        price=Decimal(str(item["price"])),
                        delivery_days=int(item["delivery_time"]),
                        source=self.source,
                    )
                )
            except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
                logger.warning("Skipping malformed Melhor Envio quote %r: %s", item, exc)
        return quotes


@dataclass(frozen=True)
class RateTableRow:
    """One weight band of a carrier's price table."""
    carrier: str
    service: str
    max_weight: float
    base_price: Decimal
    price_per_kg: Decimal
    delivery_days: int


DEFAULT_HEAVY_TABLE: list[RateTableRow] = [
    RateTableRow("Transportadora Local", "Rodoviário", 30, Decimal("45.00"), Decimal("2.50"), 5),
    RateTableRow("Transportadora Local", "Rodoviário Expresso", 30, Decimal("70.00"), Decimal("3.10"), 3),
    RateTableRow("Carga Pesada Sul", "Rodoviário Fracionado", 500, Decimal("120.00"), Decimal("1.80"), 7),
]


class RateTableProvider(QuoteProvider):
    """Quotes priced as ``base_price + price_per_kg * weight`` per band."""

    name = "rate_table"
    source = QuoteSource.RATE_TABLE

    def __init__(
        self, rows: Sequence[RateTableRow] = DEFAULT_HEAVY_TABLE, name: Optional[str] = None
    ) -> None:
        self._rows = list(rows)
        if name:
            self.name = name

    async def get_quotes(
        self,
        destination: str,
        total_weight: float,
        quantity: int,
        dimensions: Optional[Dimensions] = None,
    ) -> list[QuoteCandidate]:
        weight = Decimal(str(total_weight))
        quotes = [
            QuoteCandidate(
                id=f"{self.name}-{index}",
                carrier_name=row.carrier,
                service_name=row.service,
                price=(row.base_price + row.price_per_kg * weight).quantize(CENTS),
                delivery_days=row.delivery_days,
                source=self.source,
            )
            for index, row in enumerate(self._rows, start=1)
            if total_weight <= row.max_weight
        ]
        logger.debug(
            "Rate table priced %d options for %s kg to %s", len(quotes), total_weight, destination
        )
        return quotes
