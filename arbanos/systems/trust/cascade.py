"""
ArbanOS -- Cascade Revocation

When a citizen loses their standing, every vouch they granted loses its
support. Those edges are suspended, and anyone left with no other active
inbound edge loses their own standing in turn, which continues the walk.

The walk is an explicit breadth-first worklist, not recursion. Each root
carries its depth; roots beyond cascade_max_depth are flipped to unverified
but their own grants are left alone, and the report marks the run as
truncated. Suspension is idempotent: re-running a cascade over the same
root finds no active outbound edges and changes nothing.

Nothing is deleted. Suspended edges keep their reason and timestamp.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

import structlog

from arbanos.primitives.trust import AuditEventType
from arbanos.systems.trust.policy import is_root_of_trust
from arbanos.systems.trust.types import CascadeReport

if TYPE_CHECKING:
    from arbanos.systems.trust.collaborators import RoleDirectory
    from arbanos.systems.trust.effects import SideEffects
    from arbanos.systems.trust.store import TrustStore

logger = structlog.get_logger("arbanos.systems.trust.cascade")


class CascadeRevoker:
    """
    Transitive suspension over the verification graph.

    Must be called inside the caller's store transaction and effects scope;
    it opens neither itself so the whole cascade commits or rolls back with
    the revocation that triggered it.
    """

    def __init__(
        self,
        store: TrustStore,
        roles: RoleDirectory,
        effects: SideEffects,
        max_depth: int = 10,
    ) -> None:
        self._store = store
        self._roles = roles
        self._effects = effects
        self._max_depth = max_depth
        self._logger = logger.bind(component="cascade_revoker")

    @property
    def max_depth(self) -> int:
        return self._max_depth

    async def run(self, root_id: str, cause: str, actor_id: str | None = None) -> CascadeReport:
        """
        Suspend everything downstream of root_id.

        root_id is expected to have just lost its verified status.
        """
        report = CascadeReport(root_id=root_id)
        visited: set[str] = {root_id}
        worklist: deque[tuple[str, int]] = deque([(root_id, 1)])

        while worklist:
            current_id, depth = worklist.popleft()
            if depth > self._max_depth:
                report.truncated = True
                continue
            report.max_depth_reached = max(report.max_depth_reached, depth)

            for edge in await self._store.edges_from(current_id):
                edge.suspend(f"cascade: {cause} (upstream {current_id})")
                await self._store.save_edge(edge)
                await self._store.adjust_given_count(current_id, -1)
                report.suspended_edge_ids.append(edge.id)

                self._effects.audit(
                    AuditEventType.VERIFICATION_SUSPENDED,
                    actor_id,
                    edge.verified_id,
                    edge_id=edge.id,
                    verifier_id=current_id,
                    cause=cause,
                    depth=depth,
                )

                if await self.lose_standing(edge.verified_id):
                    report.unverified_citizen_ids.append(edge.verified_id)
                    if edge.verified_id not in visited:
                        visited.add(edge.verified_id)
                        worklist.append((edge.verified_id, depth + 1))

        self._logger.info(
            "cascade_completed",
            root_id=root_id,
            suspended=report.count,
            unverified=len(report.unverified_citizen_ids),
            max_depth_reached=report.max_depth_reached,
            truncated=report.truncated,
        )
        return report

    async def lose_standing(self, citizen_id: str) -> bool:
        """
        Flip a citizen to unverified if nothing supports them any more.

        Returns True only when the status actually changed.
        """
        citizen = await self._store.get_citizen(citizen_id)
        if citizen is None or not citizen.is_verified:
            return False
        if await self._store.edges_to(citizen_id):
            return False
        if is_root_of_trust(await self._roles.role_of(citizen_id)):
            return False

        citizen.is_verified = False
        citizen.verified_at = None
        await self._store.save_citizen(citizen)
        return True
