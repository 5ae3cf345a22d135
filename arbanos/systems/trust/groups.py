"""
ArbanOS -- Group Completeness Engine (Arban mutual verification)

A trust group has exactly five members. It is complete when every member
has verified every other member: 5 x 4 = 20 active mutual verifications.
Completion lifts the members to GROUP_VERIFIED through the LevelEngine;
losing completion takes that level back.

Only active verifications between current members count. A revoked group
verification keeps its row (is_verified=False); submitting the same pair
again reactivates it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from arbanos.primitives.common import utc_now
from arbanos.primitives.trust import AuditEventType, Citizen, GroupMutualVerification
from arbanos.systems.trust.errors import (
    DuplicateEdgeError,
    NotFoundError,
    PreconditionNotMetError,
    SelfReferenceError,
    UnauthorizedError,
)
from arbanos.systems.trust.policy import can_revoke
from arbanos.systems.trust.types import (
    GroupProgress,
    GroupRevocationResult,
    GroupSubmissionResult,
    MemberVerifications,
)

if TYPE_CHECKING:
    from arbanos.config import GroupConfig
    from arbanos.systems.trust.collaborators import RoleDirectory
    from arbanos.systems.trust.effects import SideEffects
    from arbanos.systems.trust.levels import LevelEngine
    from arbanos.systems.trust.store import TrustStore

logger = structlog.get_logger("arbanos.systems.trust.groups")


class GroupCompletenessEngine:
    """
    Mutual verification inside fixed-size trust groups.
    """

    def __init__(
        self,
        config: GroupConfig,
        store: TrustStore,
        roles: RoleDirectory,
        effects: SideEffects,
        levels: LevelEngine,
    ) -> None:
        self._config = config
        self._store = store
        self._roles = roles
        self._effects = effects
        self._levels = levels
        self._logger = logger.bind(component="group_engine")

    # ─── Submit ─────────────────────────────────────────────────────

    async def submit_mutual_verification(
        self,
        group_id: str,
        verifier_id: str,
        verified_id: str,
        notes: str | None = None,
    ) -> GroupSubmissionResult:
        """
        verifier_id vouches for verified_id inside group_id.

        If this completes the group, every still-UNVERIFIED member is
        upgraded in the same transaction.
        """
        if verifier_id == verified_id:
            raise SelfReferenceError("Cannot verify yourself")

        async with self._effects.collect(), self._store.transaction():
            verifier = await self._store.get_citizen(verifier_id)
            verified = await self._store.get_citizen(verified_id)
            if verifier is None or verified is None:
                raise NotFoundError("Citizen not found")
            if verifier.current_group_id != group_id or verified.current_group_id != group_id:
                raise PreconditionNotMetError("Both citizens must be members of this group")

            existing = await self._store.find_group_edge(group_id, verifier_id, verified_id)
            if existing is not None:
                if existing.is_verified:
                    raise DuplicateEdgeError("Already verified this member")
                existing.is_verified = True
                existing.verified_at = utc_now()
                existing.notes = notes
                existing.revoked_at = None
                existing.revoked_reason = None
                await self._store.save_group_edge(existing)
                verification = existing
            else:
                verification = GroupMutualVerification(
                    group_id=group_id,
                    verifier_id=verifier_id,
                    verified_id=verified_id,
                    notes=notes,
                )
                await self._store.add_group_edge(verification)

            self._effects.audit(
                AuditEventType.GROUP_VERIFICATION_SUBMITTED,
                verifier_id,
                verified_id,
                group_id=group_id,
            )

            is_complete = await self.is_complete(group_id)
            upgraded: list[str] = []
            if is_complete:
                # Idempotent: members already above UNVERIFIED are skipped
                members = await self._store.list_citizens(group_id=group_id)
                upgraded = await self._levels.upgrade_group(group_id, members)
            if upgraded:
                self._logger.info(
                    "group_complete",
                    group_id=group_id,
                    members=len(members),
                    upgraded=len(upgraded),
                )

        return GroupSubmissionResult(
            verification=verification,
            is_group_complete=is_complete,
            upgraded_ids=upgraded,
        )

    # ─── Revoke ─────────────────────────────────────────────────────

    async def revoke_mutual_verification(
        self,
        group_id: str,
        verifier_id: str,
        verified_id: str,
        requested_by: str,
        reason: str | None = None,
    ) -> GroupRevocationResult:
        """
        Withdraw a group verification. Allowed for the original verifier or
        an elevated/supreme citizen. Breaking completeness downgrades the
        members the group had lifted.
        """
        async with self._effects.collect(), self._store.transaction():
            allowed = requested_by == verifier_id or can_revoke(
                await self._roles.role_of(requested_by)
            )
            if not allowed:
                raise UnauthorizedError("Cannot revoke this verification")

            verification = await self._store.find_group_edge(group_id, verifier_id, verified_id)
            if verification is None or not verification.is_verified:
                raise NotFoundError("Group verification not found")

            verification.is_verified = False
            verification.revoked_at = utc_now()
            verification.revoked_reason = reason
            await self._store.save_group_edge(verification)

            self._effects.audit(
                AuditEventType.GROUP_VERIFICATION_REVOKED,
                requested_by,
                verified_id,
                group_id=group_id,
                verifier_id=verifier_id,
                reason=reason,
            )

            still_complete = await self.is_complete(group_id)
            downgraded: list[str] = []
            if not still_complete:
                downgraded = await self._levels.downgrade_group(group_id)

        self._logger.info(
            "group_verification_revoked",
            group_id=group_id,
            verifier_id=verifier_id,
            verified_id=verified_id,
            requested_by=requested_by,
            still_complete=still_complete,
            downgraded=len(downgraded),
        )
        return GroupRevocationResult(
            verification=verification,
            is_group_still_complete=still_complete,
            downgraded_ids=downgraded,
        )

    # ─── Completeness ───────────────────────────────────────────────

    async def is_complete(self, group_id: str) -> bool:
        members = await self._store.list_citizens(group_id=group_id)
        if len(members) != self._config.size:
            return False
        completed = await self._count_active(group_id, members)
        return completed >= self._config.required_edges

    async def progress(self, group_id: str) -> GroupProgress:
        required = self._config.required_edges
        members = await self._store.list_citizens(group_id=group_id)

        if len(members) != self._config.size:
            return GroupProgress(
                total=required,
                completed=0,
                percentage=0,
                is_complete=False,
                remaining=required,
            )

        completed = await self._count_active(group_id, members)
        return GroupProgress(
            total=required,
            completed=completed,
            percentage=round(completed / required * 100),
            is_complete=completed >= required,
            remaining=max(0, required - completed),
        )

    async def _count_active(self, group_id: str, members: list[Citizen]) -> int:
        member_ids = {m.id for m in members}
        return sum(
            1 for e in await self._store.group_edges(group_id)
            if e.verifier_id in member_ids and e.verified_id in member_ids
        )

    # ─── Queries ────────────────────────────────────────────────────

    async def verification_matrix(self, group_id: str) -> dict[str, list[str]]:
        """verified_id -> [verifier_ids], active verifications only."""
        matrix: dict[str, list[str]] = {}
        for edge in await self._store.group_edges(group_id):
            matrix.setdefault(edge.verified_id, []).append(edge.verifier_id)
        return matrix

    async def unverified_members(self, group_id: str, citizen_id: str) -> list[Citizen]:
        """Members citizen_id has not verified yet."""
        done = {
            e.verified_id for e in await self._store.group_edges(group_id)
            if e.verifier_id == citizen_id
        }
        return [
            m for m in await self._store.list_citizens(group_id=group_id)
            if m.id != citizen_id and m.id not in done
        ]

    async def member_verifications(self, group_id: str, member_id: str) -> MemberVerifications:
        edges = await self._store.group_edges(group_id)
        expected = self._config.size - 1
        return MemberVerifications(
            given=[e for e in edges if e.verifier_id == member_id],
            received=[e for e in edges if e.verified_id == member_id],
            expected_given=expected,
            expected_received=expected,
        )

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "group_size": self._config.size,
            "required_edges": self._config.required_edges,
        }
