"""
ArbanOS -- Post-Commit Side Effects

Audit events and distribution calls are fire-and-forget. They are buffered
while a trust operation runs and dispatched only after it commits, so a
rolled-back operation emits nothing and a failing collaborator can never
undo a verification or level change.
"""

from __future__ import annotations

import contextvars
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import structlog

from arbanos.primitives.trust import AuditEvent, AuditEventType, TrustLevel
from arbanos.systems.trust.collaborators import AuditSink, DistributionCollaborator

logger = structlog.get_logger("arbanos.systems.trust.effects")


@dataclass(frozen=True)
class _Effect:
    kind: str
    call: Callable[[], Awaitable[Any]]
    context: dict[str, Any]


_pending: contextvars.ContextVar[list[_Effect] | None] = contextvars.ContextVar(
    "arbanos_pending_effects", default=None,
)


class SideEffects:
    """
    Buffer for collaborator calls, flushed on successful completion.

    Usage (outermost scope wraps the store transaction):

        async with effects.collect(), store.transaction():
            ...
            effects.audit(AuditEventType.IDENTITY_VERIFIED, actor, target)
    """

    def __init__(
        self,
        distribution: DistributionCollaborator,
        audit: AuditSink,
    ) -> None:
        self._distribution = distribution
        self._audit = audit
        self._failures: int = 0
        self._dispatched: int = 0
        self._logger = logger.bind(component="side_effects")

    @asynccontextmanager
    async def collect(self) -> AsyncIterator[None]:
        if _pending.get() is not None:
            yield
            return

        buffer: list[_Effect] = []
        token = _pending.set(buffer)
        try:
            yield
        finally:
            _pending.reset(token)
        # Only reached when the body completed without raising
        await self._dispatch(buffer)

    # ─── Emitters ───────────────────────────────────────────────────

    def audit(
        self,
        event_type: AuditEventType,
        actor_id: str | None,
        target_id: str | None,
        **metadata: Any,
    ) -> None:
        event = AuditEvent(
            type=event_type,
            actor_id=actor_id,
            target_id=target_id,
            metadata=metadata,
        )
        self._enqueue(_Effect(
            kind="audit",
            call=lambda: self._audit.record(event),
            context={"event_type": event_type.value, "target_id": target_id},
        ))

    def citizen_verified(self, citizen_id: str) -> None:
        self._enqueue(_Effect(
            kind="distribution",
            call=lambda: self._distribution.register_citizen(citizen_id),
            context={"op": "register_citizen", "citizen_id": citizen_id},
        ))

    def level_upgraded(self, citizen_id: str, level: TrustLevel) -> None:
        async def _distribute() -> None:
            await self._distribution.register_citizen(citizen_id)
            result = await self._distribution.distribute_for_level(citizen_id, level)
            self._logger.info(
                "distribution_completed",
                citizen_id=citizen_id,
                level=level.name,
                distributed=result.distributed,
                amount=str(result.amount),
            )

        self._enqueue(_Effect(
            kind="distribution",
            call=_distribute,
            context={"op": "distribute_for_level", "citizen_id": citizen_id, "level": level.name},
        ))

    def _enqueue(self, effect: _Effect) -> None:
        buffer = _pending.get()
        if buffer is None:
            raise RuntimeError("side effect emitted outside a collect() scope")
        buffer.append(effect)

    # ─── Dispatch ───────────────────────────────────────────────────

    async def _dispatch(self, buffer: list[_Effect]) -> None:
        for effect in buffer:
            try:
                await effect.call()
                self._dispatched += 1
            except Exception as exc:
                # Fire-and-forget: logged, never propagated
                self._failures += 1
                self._logger.warning(
                    f"{effect.kind}_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    effect=effect.context,
                )

    @property
    def stats(self) -> dict[str, int]:
        return {"dispatched": self._dispatched, "failures": self._failures}
