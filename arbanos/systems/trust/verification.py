"""
ArbanOS -- Verification Engine

Creates and revokes individual verification edges. A citizen becomes
verified when someone in good standing vouches for them; ordinary citizens
may vouch for a limited number of others, elevated reviewers and supreme
citizens without limit.

Revoking an edge never deletes it. If the verified party is left with no
other active inbound edge they lose their standing, and the CascadeRevoker
walks everything they vouched for.

Chain depth is the number of hops from a citizen up to the first supreme
citizen, following the earliest active inbound edge at each step and
bounded by chain_max_depth.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from arbanos.primitives.common import utc_now
from arbanos.primitives.trust import (
    AuditEventType,
    ChainLink,
    Citizen,
    Role,
    VerificationEdge,
    VerificationMethod,
)
from arbanos.systems.trust.cascade import CascadeRevoker
from arbanos.systems.trust.errors import (
    AlreadyProcessedError,
    AlreadyVerifiedError,
    DuplicateEdgeError,
    NotFoundError,
    PreconditionNotMetError,
    QuotaExhaustedError,
    SelfReferenceError,
    UnauthorizedError,
)
from arbanos.systems.trust.policy import (
    can_revoke,
    can_verify_unverified,
    has_unlimited_verifications,
    is_root_of_trust,
    verification_method_for,
)
from arbanos.systems.trust.types import RevocationResult, VerificationResult, VerifierStats

if TYPE_CHECKING:
    from arbanos.config import VerificationConfig
    from arbanos.systems.trust.collaborators import RoleDirectory
    from arbanos.systems.trust.effects import SideEffects
    from arbanos.systems.trust.store import TrustStore

logger = structlog.get_logger("arbanos.systems.trust.verification")


class VerificationEngine:
    """
    Owns the individual trust graph: verify, revoke, chains and quotas.
    """

    def __init__(
        self,
        config: VerificationConfig,
        store: TrustStore,
        roles: RoleDirectory,
        effects: SideEffects,
    ) -> None:
        self._config = config
        self._store = store
        self._roles = roles
        self._effects = effects
        self._cascade = CascadeRevoker(
            store=store,
            roles=roles,
            effects=effects,
            max_depth=config.cascade_max_depth,
        )
        self._logger = logger.bind(component="verification_engine")

    # ─── Enrollment ─────────────────────────────────────────────────

    async def enroll(
        self,
        username: str = "",
        role: Role = Role.ORDINARY,
        group_id: str | None = None,
        accept_constitution: bool = False,
    ) -> Citizen:
        """Add a citizen to the graph with the configured verification quota."""
        citizen = Citizen(
            username=username,
            role=role,
            verification_quota=self._config.default_quota,
            current_group_id=group_id,
            constitution_accepted_at=utc_now() if accept_constitution else None,
        )
        async with self._store.transaction():
            await self._store.save_citizen(citizen)

        self._logger.info("citizen_enrolled", citizen_id=citizen.id, role=role.value)
        return citizen

    async def accept_constitution(self, citizen_id: str) -> Citizen:
        """Record the consent step that must precede being vouched for."""
        async with self._store.transaction():
            citizen = await self._require(citizen_id, "Citizen")
            if citizen.constitution_accepted_at is None:
                citizen.constitution_accepted_at = utc_now()
                await self._store.save_citizen(citizen)
        return citizen

    # ─── Verify ─────────────────────────────────────────────────────

    async def verify(
        self,
        verifier_id: str,
        verified_id: str,
        method: VerificationMethod | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> VerificationResult:
        """
        Create the edge verifier_id -> verified_id and mark the target verified.

        An ordered pair can be vouched for once, ever: if an earlier edge for
        the same pair was revoked, a different verifier has to step in.
        """
        if verifier_id == verified_id:
            raise SelfReferenceError("Cannot verify yourself")

        async with self._effects.collect(), self._store.transaction():
            verifier = await self._require(verifier_id, "Verifier")
            role = await self._roles.role_of(verifier_id)

            if not can_verify_unverified(role) and not verifier.is_verified:
                raise UnauthorizedError("You must be verified to verify others")

            unlimited = has_unlimited_verifications(role)
            if not unlimited and verifier.verifications_given_count >= verifier.verification_quota:
                raise QuotaExhaustedError(
                    f"Verification quota exhausted (limit: {verifier.verification_quota})"
                )

            target = await self._require(verified_id, "Citizen to verify")
            if target.is_verified:
                raise AlreadyVerifiedError(f"Citizen {verified_id} is already verified")
            if self._config.require_constitution and not target.has_accepted_constitution:
                raise PreconditionNotMetError("Citizen must accept the constitution first")

            if await self._store.find_edge(verifier_id, verified_id) is not None:
                raise DuplicateEdgeError(
                    "You have already verified this citizen; "
                    "a revoked verification needs a different verifier"
                )

            edge = VerificationEdge(
                verifier_id=verifier_id,
                verified_id=verified_id,
                method=method or verification_method_for(role),
                metadata=metadata or {},
            )
            await self._store.add_edge(edge)

            target.is_verified = True
            target.verified_at = utc_now()
            await self._store.save_citizen(target)

            given = await self._store.adjust_given_count(verifier_id, 1)
            chain_depth = len(await self.get_chain(verified_id))

            self._effects.audit(
                AuditEventType.IDENTITY_VERIFIED,
                verifier_id,
                verified_id,
                edge_id=edge.id,
                method=edge.method.value,
                chain_depth=chain_depth,
            )
            self._effects.citizen_verified(verified_id)

        remaining = None if unlimited else max(0, verifier.verification_quota - given)

        self._logger.info(
            "citizen_verified",
            verifier_id=verifier_id,
            verified_id=verified_id,
            method=edge.method.value,
            chain_depth=chain_depth,
            remaining_quota=remaining,
        )

        return VerificationResult(
            edge=edge,
            chain_depth=chain_depth,
            remaining_quota=remaining,
        )

    # ─── Revoke ─────────────────────────────────────────────────────

    async def revoke(self, edge_id: str, revoked_by: str, reason: str) -> RevocationResult:
        """
        Suspend an edge (elevated or supreme only) and cascade.

        The whole operation, cascade included, is one transaction.
        """
        async with self._effects.collect(), self._store.transaction():
            if not can_revoke(await self._roles.role_of(revoked_by)):
                raise UnauthorizedError("Only elevated reviewers or supreme citizens can revoke")

            edge = await self._store.get_edge(edge_id)
            if edge is None:
                raise NotFoundError(f"Verification edge {edge_id} not found")
            if not edge.is_active:
                raise AlreadyProcessedError(f"Verification edge {edge_id} is already inactive")

            edge.suspend(reason)
            await self._store.save_edge(edge)
            await self._store.adjust_given_count(edge.verifier_id, -1)

            lost_standing = await self._cascade.lose_standing(edge.verified_id)
            cascade = None
            if lost_standing:
                cascade = await self._cascade.run(
                    root_id=edge.verified_id,
                    cause=reason,
                    actor_id=revoked_by,
                )

            self._effects.audit(
                AuditEventType.VERIFICATION_REVOKED,
                revoked_by,
                edge.verified_id,
                edge_id=edge.id,
                verifier_id=edge.verifier_id,
                reason=reason,
                cascade_count=cascade.count if cascade else 0,
            )

        result = RevocationResult(
            edge=edge,
            target_still_verified=not lost_standing,
            cascade=cascade,
        )

        self._logger.info(
            "verification_revoked",
            edge_id=edge_id,
            revoked_by=revoked_by,
            verified_id=edge.verified_id,
            target_still_verified=result.target_still_verified,
            cascade_count=result.cascade_count,
        )
        return result

    # ─── Queries ────────────────────────────────────────────────────

    async def get_chain(self, citizen_id: str) -> list[ChainLink]:
        """
        Walk active inbound edges upward until a supreme citizen.

        The first link is the citizen's own verifier. Stops at
        chain_max_depth hops or on a cycle.
        """
        await self._require(citizen_id, "Citizen")

        chain: list[ChainLink] = []
        visited: set[str] = {citizen_id}
        current_id = citizen_id

        while len(chain) < self._config.chain_max_depth:
            inbound = await self._store.edges_to(current_id)
            if not inbound:
                break
            edge = inbound[0]
            verifier = await self._store.get_citizen(edge.verifier_id)
            if verifier is None:
                break

            role = await self._roles.role_of(verifier.id)
            chain.append(ChainLink(
                verifier_id=verifier.id,
                username=verifier.username,
                role=role,
                verified_at=edge.created_at,
            ))

            if is_root_of_trust(role) or verifier.id in visited:
                break
            visited.add(verifier.id)
            current_id = verifier.id

        return chain

    async def chain_depth(self, citizen_id: str) -> int:
        return len(await self.get_chain(citizen_id))

    async def get_edge(self, edge_id: str) -> VerificationEdge:
        edge = await self._store.get_edge(edge_id)
        if edge is None:
            raise NotFoundError(f"Verification edge {edge_id} not found")
        return edge

    async def pending_citizens(self) -> list[Citizen]:
        """Unverified citizens who have given consent, oldest first."""
        citizens = [
            c for c in await self._store.list_citizens()
            if not c.is_verified and c.has_accepted_constitution
        ]
        citizens.sort(key=lambda c: c.created_at)
        return citizens

    async def verifier_stats(self, citizen_id: str) -> VerifierStats:
        citizen = await self._require(citizen_id, "Citizen")
        unlimited = has_unlimited_verifications(await self._roles.role_of(citizen_id))
        edges = await self._store.edges_from(citizen_id, active_only=False)
        edges.reverse()

        return VerifierStats(
            given_count=citizen.verifications_given_count,
            quota=citizen.verification_quota,
            remaining_quota=(
                None if unlimited
                else max(0, citizen.verification_quota - citizen.verifications_given_count)
            ),
            is_unlimited=unlimited,
            edges_given=edges,
        )

    # ─── Internal ───────────────────────────────────────────────────

    async def _require(self, citizen_id: str, label: str) -> Citizen:
        citizen = await self._store.get_citizen(citizen_id)
        if citizen is None:
            raise NotFoundError(f"{label} {citizen_id} not found")
        return citizen

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "chain_max_depth": self._config.chain_max_depth,
            "cascade_max_depth": self._cascade.max_depth,
            "require_constitution": self._config.require_constitution,
        }
