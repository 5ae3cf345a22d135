"""
ArbanOS -- Trust Collaborators

The external systems the trust core talks to, as narrow protocols, plus
the default implementations the service falls back on.

  DistributionCollaborator  -- allocates currency after a level upgrade
  AuditSink                 -- receives an immutable event per trust action
  RoleDirectory             -- answers role_of(citizen_id)
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Protocol

import structlog

from arbanos.primitives.trust import (
    AuditEvent,
    AuditEventType,
    DistributionResult,
    Role,
    TrustLevel,
)
from arbanos.systems.trust.errors import NotFoundError

if TYPE_CHECKING:
    from arbanos.systems.trust.store import TrustStore

logger = structlog.get_logger("arbanos.systems.trust.collaborators")


# ─── Protocols ────────────────────────────────────────────────────


class DistributionCollaborator(Protocol):
    """The currency-distribution ledger. Treated as a black box."""

    async def register_citizen(self, citizen_id: str) -> None:
        """Idempotent; safe to call more than once per citizen."""
        ...

    async def distribute_for_level(
        self, citizen_id: str, level: TrustLevel,
    ) -> DistributionResult:
        ...


class AuditSink(Protocol):
    async def record(self, event: AuditEvent) -> None: ...


class RoleDirectory(Protocol):
    async def role_of(self, citizen_id: str) -> Role: ...


# ─── Defaults ─────────────────────────────────────────────────────


class NullDistribution:
    """Distribution stand-in for deployments without a ledger attached."""

    def __init__(self) -> None:
        self._registered: set[str] = set()

    async def register_citizen(self, citizen_id: str) -> None:
        self._registered.add(citizen_id)

    async def distribute_for_level(
        self, citizen_id: str, level: TrustLevel,
    ) -> DistributionResult:
        logger.debug(
            "distribution_skipped",
            citizen_id=citizen_id,
            level=level.name,
        )
        return DistributionResult(distributed=False, amount=Decimal("0"))


class InMemoryAuditLog:
    """Append-only, process-local timeline."""

    def __init__(self, max_events: int = 10_000) -> None:
        self._events: list[AuditEvent] = []
        self._max_events = max_events

    async def record(self, event: AuditEvent) -> None:
        self._events.append(event)
        if len(self._events) > self._max_events:
            self._events = self._events[-self._max_events:]

    def events(
        self,
        event_type: AuditEventType | None = None,
        target_id: str | None = None,
    ) -> list[AuditEvent]:
        return [
            e for e in self._events
            if (event_type is None or e.type == event_type)
            and (target_id is None or e.target_id == target_id)
        ]

    def __len__(self) -> int:
        return len(self._events)


class StoreRoleDirectory:
    """Reads roles straight off the citizen rows in the trust store."""

    def __init__(self, store: TrustStore) -> None:
        self._store = store

    async def role_of(self, citizen_id: str) -> Role:
        citizen = await self._store.get_citizen(citizen_id)
        if citizen is None:
            raise NotFoundError(f"Citizen {citizen_id} not found")
        return citizen.role
