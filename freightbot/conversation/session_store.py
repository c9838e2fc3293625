"""
Tenant-scoped conversation session store.

Sessions live under ``session:{tenant_id}:{user_id}`` in the primary
key-value backend. Two compatibility paths exist:

- Legacy keys (``session:{user_id}``, from before tenant scoping) are
  deleted on first contact and reported as absent, forcing one fresh
  tenant-scoped session per legacy user.
- Payloads carry ``schema_version``; older versions are upgraded on read
  through ``freightbot.schemas.session_schema.migrate_payload``.

Outside production an ``InMemoryBackend`` stands in when the primary is
missing or failing. In production any primary failure raises
``InfrastructureError``.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Optional

from freightbot.conversation.state_machine import ConversationContext
from freightbot.errors import (
    ErrorCode,
    InfrastructureError,
    SessionNotFoundError,
    ValidationError,
)
from freightbot.schemas.session_schema import SessionRecord, migrate_payload
from freightbot.storage.backends import InMemoryBackend, KeyValueBackend
from freightbot.utils import Clock, utc_now

logger = logging.getLogger(__name__)

SESSION_RESET = "session_reset"
SESSION_DISCARDED = "session_discarded"

_IDENTITY_FIELDS = ("tenant_id", "user_id", "schema_version", "created_at")


def session_key(tenant_id: str, user_id: str) -> str:
    return f"session:{tenant_id}:{user_id}"


def legacy_session_key(user_id: str) -> str:
    return f"session:{user_id}"


@dataclass(frozen=True)
class SessionEvent:
    """Operational signal raised by the store (legacy reset, bad payload)."""
    name: str
    tenant_id: str
    user_id: str
    detail: dict[str, Any] = field(default_factory=dict)


SessionEventListener = Callable[[SessionEvent], None]


class SessionStore:
    """Owns the SessionRecord lifecycle: create, read, merge, extend, delete."""

    def __init__(
        self,
        backend: Optional[KeyValueBackend],
        *,
        fallback: Optional[InMemoryBackend] = None,
        environment: str = "development",
        ttl_seconds: int = 6 * 3600,
        clock: Clock = utc_now,
        on_event: Optional[SessionEventListener] = None,
    ) -> None:
        self._production = environment == "production"
        if self._production and backend is None:
            raise InfrastructureError(
                ErrorCode.BACKEND_UNAVAILABLE,
                "A durable session backend is required in production",
            )
        if ttl_seconds < 1:
            raise ValueError(f"ttl_seconds must be >= 1, got {ttl_seconds}")

        self._backend = backend
        if self._production:
            self._fallback = None
        else:
            self._fallback = fallback if fallback is not None else InMemoryBackend(clock)
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._on_event = on_event

    @property
    def fallback(self) -> Optional[InMemoryBackend]:
        return self._fallback

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def get(self, tenant_id: str, user_id: str) -> Optional[SessionRecord]:
        self._require_identity(tenant_id, user_id, "get")
        key = session_key(tenant_id, user_id)

        raw = await self._read(key)
        if raw is None:
            await self._discard_legacy(tenant_id, user_id)
            return None

        record = self._decode(raw, tenant_id, user_id)
        if record is None:
            await self._remove(key)
            return None

        if record.expires_at <= self._clock():
            logger.info("Session expired for %s/%s", tenant_id, user_id)
            await self._remove(key)
            return None

        return record

    async def create(self, tenant_id: str, user_id: str) -> SessionRecord:
        self._require_identity(tenant_id, user_id, "create")
        now = self._clock()
        record = SessionRecord(
            tenant_id=tenant_id,
            user_id=user_id,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(seconds=self._ttl_seconds),
        )
        await self._write(session_key(tenant_id, user_id), record, self._ttl_seconds)
        logger.info(
            "Session created for %s/%s (expires %s)",
            tenant_id, user_id, record.expires_at.isoformat(),
        )
        return record

    async def update(
        self, tenant_id: str, user_id: str, *, extend: bool = False, **changes: Any
    ) -> SessionRecord:
        """Merge ``changes`` into the session, creating it if absent.

        ``updated_at`` is refreshed; ``expires_at`` only moves when
        ``extend`` is set.
        """
        self._require_identity(tenant_id, user_id, "update")
        record = await self.get(tenant_id, user_id)
        if record is None:
            logger.info("Session not found for %s/%s, creating", tenant_id, user_id)
            record = await self.create(tenant_id, user_id)

        for name in _IDENTITY_FIELDS:
            changes.pop(name, None)

        now = self._clock()
        merged = record.model_dump()
        merged.update(changes)
        merged["updated_at"] = now
        if extend:
            merged["expires_at"] = now + timedelta(seconds=self._ttl_seconds)
        updated = SessionRecord.model_validate(merged)

        await self._write(
            session_key(tenant_id, user_id), updated, self._seconds_left(updated)
        )
        logger.debug("Session updated for %s/%s: %s", tenant_id, user_id, sorted(changes))
        return updated

    async def save_context(self, tenant_id: str, context: ConversationContext) -> SessionRecord:
        """Persist a state machine context into the session."""
        return await self.update(
            tenant_id,
            context.user_id,
            state=context.state,
            destination=context.destination,
            quantity=context.quantity,
            total_weight=context.total_weight,
            error_count=context.error_count,
        )

    async def delete(self, tenant_id: str, user_id: str) -> None:
        self._require_identity(tenant_id, user_id, "delete")
        await self._remove(session_key(tenant_id, user_id))
        logger.info("Session deleted for %s/%s", tenant_id, user_id)

    async def exists(self, tenant_id: str, user_id: str) -> bool:
        return await self.get(tenant_id, user_id) is not None

    async def ttl_remaining(self, tenant_id: str, user_id: str) -> Optional[int]:
        """Seconds until the session expires, or None if there is none."""
        record = await self.get(tenant_id, user_id)
        if record is None:
            return None
        return self._seconds_left(record)

    async def extend(self, tenant_id: str, user_id: str) -> SessionRecord:
        """Reset ``expires_at`` to now + TTL."""
        record = await self.get(tenant_id, user_id)
        if record is None:
            raise SessionNotFoundError(
                ErrorCode.SESSION_NOT_FOUND,
                "Cannot extend session: session not found",
                {"tenant_id": tenant_id, "user_id": user_id},
            )
        extended = record.model_copy(
            update={"expires_at": self._clock() + timedelta(seconds=self._ttl_seconds)}
        )
        await self._write(session_key(tenant_id, user_id), extended, self._ttl_seconds)
        logger.debug(
            "Session extended for %s/%s until %s",
            tenant_id, user_id, extended.expires_at.isoformat(),
        )
        return extended

    def start_sweep(self, interval_seconds: float) -> None:
        """Start evicting expired fallback entries (no-op in production)."""
        if self._fallback is not None:
            self._fallback.start_sweep(interval_seconds)

    async def aclose(self) -> None:
        if self._fallback is not None:
            await self._fallback.stop_sweep()

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _require_identity(tenant_id: str, user_id: str, operation: str) -> None:
        if not tenant_id or not str(tenant_id).strip():
            raise ValidationError(
                ErrorCode.MISSING_TENANT,
                f"tenant_id is required to {operation} a session",
                {"user_id": user_id},
            )
        if not user_id or not str(user_id).strip():
            raise ValidationError(
                ErrorCode.VALIDATION_ERROR,
                f"user_id is required to {operation} a session",
                {"tenant_id": tenant_id},
            )

    def _seconds_left(self, record: SessionRecord) -> int:
        remaining = (record.expires_at - self._clock()).total_seconds()
        return max(1, math.ceil(remaining))

    async def _discard_legacy(self, tenant_id: str, user_id: str) -> None:
        legacy = legacy_session_key(user_id)
        if await self._read(legacy) is None:
            return
        await self._remove(legacy)
        logger.warning(
            "Legacy session key found for %s, deleted to force a tenant-scoped restart "
            "(event=%s, tenant=%s)",
            user_id, SESSION_RESET, tenant_id,
        )
        self._emit(SessionEvent(SESSION_RESET, tenant_id, user_id, {"legacy_key": legacy}))

    def _decode(self, raw: bytes, tenant_id: str, user_id: str) -> Optional[SessionRecord]:
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            data = migrate_payload(data)
            record = SessionRecord.model_validate(data)
        except (ValueError, TypeError) as exc:
            logger.warning("Discarding unreadable session for %s/%s: %s", tenant_id, user_id, exc)
            self._emit(SessionEvent(SESSION_DISCARDED, tenant_id, user_id, {"reason": str(exc)}))
            return None

        if record.tenant_id != tenant_id or record.user_id != user_id:
            logger.warning(
                "Discarding session stored under %s/%s but owned by %s/%s",
                tenant_id, user_id, record.tenant_id, record.user_id,
            )
            self._emit(SessionEvent(SESSION_DISCARDED, tenant_id, user_id, {"reason": "owner_mismatch"}))
            return None
        return record

    def _emit(self, event: SessionEvent) -> None:
        if self._on_event is not None:
            self._on_event(event)

    async def _read(self, key: str) -> Optional[bytes]:
        if self._backend is not None:
            try:
                return await self._backend.get(key)
            except InfrastructureError:
                if self._production:
                    raise
                logger.warning("Primary session backend read failed, using in-memory fallback")
        return await self._fallback.get(key)

    async def _write(self, key: str, record: SessionRecord, ttl_seconds: int) -> None:
        payload = record.model_dump_json().encode("utf-8")
        if self._backend is not None:
            if await self._backend.set(key, payload, ttl_seconds):
                return
            if self._production:
                raise InfrastructureError(
                    ErrorCode.BACKEND_WRITE_FAILED,
                    "Failed to save session to the primary backend",
                    {"key": key},
                )
            logger.warning("Primary session backend write failed, using in-memory fallback")
        await self._fallback.set(key, payload, ttl_seconds)

    async def _remove(self, key: str) -> None:
        if self._backend is not None:
            try:
                await self._backend.delete(key)
            except InfrastructureError:
                if self._production:
                    raise
                logger.warning("Primary session backend delete failed for %s", key)
        if self._fallback is not None:
            await self._fallback.delete(key)
