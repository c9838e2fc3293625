"""Persisted session record and its schema migrations."""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, model_validator

from freightbot.conversation.state_machine import ConversationContext, ConversationState

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 2


class SessionRecord(BaseModel):
    """
    One conversation's persisted state.

    Stored as JSON under ``session:{tenant_id}:{user_id}``. Unknown fields
    are ignored so older readers tolerate newer payloads.
    """

    model_config = ConfigDict(extra="ignore")

    schema_version: int = CURRENT_SCHEMA_VERSION
    tenant_id: str
    user_id: str
    state: ConversationState = ConversationState.IDLE
    destination: Optional[str] = None
    quantity: Optional[int] = None
    total_weight: Optional[float] = None
    error_count: int = 0
    created_at: datetime
    updated_at: datetime
    expires_at: datetime

    @model_validator(mode="after")
    def _check_order_fields(self) -> "SessionRecord":
        if self.quantity is not None and self.destination is None:
            raise ValueError("quantity requires destination")
        if self.total_weight is not None and self.quantity is None:
            raise ValueError("total_weight requires quantity")
        return self

    def to_context(self) -> ConversationContext:
        return ConversationContext(
            user_id=self.user_id,
            state=self.state,
            destination=self.destination,
            quantity=self.quantity,
            total_weight=self.total_weight,
            error_count=self.error_count,
        )


# --------------------------------------------------------------------------- #
# Migrations: each function upgrades a payload from version N to N + 1.
# --------------------------------------------------------------------------- #

_V1_STATES = {
    "IDLE": ConversationState.IDLE.value,
    "AWAITING_CEP": ConversationState.AWAITING_DESTINATION.value,
    "AWAITING_QUANTITY": ConversationState.AWAITING_QUANTITY.value,
    "CALCULATING": ConversationState.COMPUTING.value,
    "COMPLETED": ConversationState.COMPLETED.value,
    "ERROR": ConversationState.FAILED.value,
}


def _from_epoch_ms(value: Any) -> Any:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return value


def _upgrade_v1_to_v2(data: dict[str, Any]) -> dict[str, Any]:
    """v1 payloads used camelCase keys, epoch-ms timestamps and CEP naming."""
    return {
        "schema_version": 2,
        "tenant_id": data.get("tenantId"),
        "user_id": data.get("phoneNumber"),
        "state": _V1_STATES.get(data.get("currentState"), ConversationState.IDLE.value),
        "destination": data.get("cep"),
        "quantity": data.get("quantity"),
        "total_weight": data.get("totalWeight"),
        "error_count": data.get("errorCount") or 0,
        "created_at": _from_epoch_ms(data.get("createdAt")),
        "updated_at": _from_epoch_ms(data.get("updatedAt")),
        "expires_at": _from_epoch_ms(data.get("expiresAt")),
    }


MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: _upgrade_v1_to_v2,
}


def migrate_payload(data: dict[str, Any]) -> dict[str, Any]:
    """Upgrade a decoded payload to ``CURRENT_SCHEMA_VERSION``.

    Payloads without ``schema_version`` predate versioning and are v1.
    """
    version = data.get("schema_version", 1)
    if isinstance(version, bool) or not isinstance(version, int):
        raise ValueError(f"Invalid session schema_version: {version!r}")
    while version < CURRENT_SCHEMA_VERSION:
        upgrade = MIGRATIONS.get(version)
        if upgrade is None:
            raise ValueError(f"No migration from session schema v{version}")
        data = upgrade(data)
        logger.debug("Session payload migrated v%d -> v%d", version, version + 1)
        version += 1
    return data
