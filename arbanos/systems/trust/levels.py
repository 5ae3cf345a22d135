"""
ArbanOS -- Level Engine (tiered verification)

Trust levels form a strict ladder:

    UNVERIFIED -> GROUP_VERIFIED -> CLAN_VERIFIED -> FULLY_VERIFIED

  - GROUP_VERIFIED is granted only by the GroupCompletenessEngine when a
    citizen's 5-member group completes mutual verification, and is taken
    back the same way if the group breaks.
  - CLAN_VERIFIED and FULLY_VERIFIED need an upgrade request approved by an
    elevated reviewer or supreme citizen, one rung at a time.
  - A supreme citizen may set any level directly.

Level gates emission: 100 units while UNVERIFIED, 1,000 while
GROUP_VERIFIED (one pool shared by the whole group), unbounded above.
Supreme citizens are unbounded regardless of level.

This engine is the only writer of Citizen.trust_level.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

import structlog

from arbanos.primitives.common import utc_now
from arbanos.primitives.trust import (
    AuditEventType,
    Citizen,
    RequestStatus,
    Role,
    TrustLevel,
    VerificationRequest,
)
from arbanos.systems.trust.errors import (
    AlreadyProcessedError,
    NotFoundError,
    PreconditionNotMetError,
    QuotaExhaustedError,
    UnauthorizedError,
)
from arbanos.systems.trust.policy import (
    REQUESTABLE_LEVELS,
    can_approve,
    can_override_level,
    emission_limit,
    is_group_pooled,
    is_root_of_trust,
)
from arbanos.systems.trust.types import EmissionStatus, ReconciliationReport

if TYPE_CHECKING:
    from arbanos.config import LevelConfig
    from arbanos.systems.trust.collaborators import RoleDirectory
    from arbanos.systems.trust.effects import SideEffects
    from arbanos.systems.trust.store import TrustStore

logger = structlog.get_logger("arbanos.systems.trust.levels")


class LevelEngine:
    """
    Trust level state machine, emission quotas and the upgrade-request
    workflow.
    """

    def __init__(
        self,
        config: LevelConfig,
        store: TrustStore,
        roles: RoleDirectory,
        effects: SideEffects,
    ) -> None:
        self._config = config
        self._store = store
        self._roles = roles
        self._effects = effects
        self._logger = logger.bind(component="level_engine")

    # ─── Emission ───────────────────────────────────────────────────

    def emission_limit(self, level: TrustLevel, role: Role = Role.ORDINARY) -> Decimal | None:
        return emission_limit(level, role, self._config)

    async def can_emit(self, citizen_id: str, amount: Decimal | int | str) -> bool:
        """
        Would emitting amount keep the citizen (or their group pool) within
        the level's limit?
        """
        amount = _positive_amount(amount)
        citizen = await self._require(citizen_id)
        role = await self._roles.role_of(citizen_id)

        limit = self.emission_limit(citizen.trust_level, role)
        if limit is None:
            return True

        used = await self._pool_used(citizen)
        return used + amount <= limit

    async def record_emission(self, citizen_id: str, amount: Decimal | int | str) -> Decimal:
        """
        Validate and add amount to the citizen's total_emitted.

        Validation and increment happen in one transaction; a rejected
        emission leaves total_emitted untouched.
        """
        amount = _positive_amount(amount)

        async with self._effects.collect(), self._store.transaction():
            if not await self.can_emit(citizen_id, amount):
                status = await self.emission_status(citizen_id)
                raise QuotaExhaustedError(
                    f"Emission limit exceeded. Level: {status.level.name}, "
                    f"Limit: {status.limit}, Used: {status.pool_used}, "
                    f"Requested: {amount}"
                )
            total = await self._store.add_emitted(citizen_id, amount)
            self._effects.audit(
                AuditEventType.EMISSION_RECORDED,
                citizen_id,
                citizen_id,
                amount=str(amount),
                total_emitted=str(total),
            )

        self._logger.info(
            "emission_recorded",
            citizen_id=citizen_id,
            amount=str(amount),
            total_emitted=str(total),
        )
        return total

    async def emission_status(self, citizen_id: str) -> EmissionStatus:
        citizen = await self._require(citizen_id)
        role = await self._roles.role_of(citizen_id)
        limit = self.emission_limit(citizen.trust_level, role)
        pool_used = await self._pool_used(citizen)

        return EmissionStatus(
            level=citizen.trust_level,
            limit=limit,
            used=citizen.total_emitted,
            pool_used=pool_used,
            remaining=None if limit is None else max(Decimal("0"), limit - pool_used),
            is_unlimited=limit is None,
        )

    async def _pool_used(self, citizen: Citizen) -> Decimal:
        if not (is_group_pooled(citizen.trust_level) and citizen.current_group_id):
            return citizen.total_emitted
        members = await self._store.list_citizens(group_id=citizen.current_group_id)
        return sum((m.total_emitted for m in members), Decimal("0"))

    # ─── Upgrade Requests ───────────────────────────────────────────

    async def request_upgrade(
        self,
        citizen_id: str,
        requested_level: TrustLevel,
        justification: str = "",
        supporting_documents: list[dict[str, Any]] | None = None,
    ) -> VerificationRequest:
        """Ask for the level immediately above the current one."""
        if requested_level not in REQUESTABLE_LEVELS:
            raise PreconditionNotMetError(
                "Only CLAN_VERIFIED or FULLY_VERIFIED can be requested"
            )

        async with self._effects.collect(), self._store.transaction():
            citizen = await self._require(citizen_id)
            if citizen.trust_level.next() is not requested_level:
                required = TrustLevel(requested_level.value - 1)
                raise PreconditionNotMetError(
                    f"Must be {required.name} to request {requested_level.name}"
                )

            pending = await self._store.list_requests(
                status=RequestStatus.PENDING, requester_id=citizen_id,
            )
            if any(r.requested_level is requested_level for r in pending):
                raise PreconditionNotMetError(
                    f"A request for {requested_level.name} is already pending"
                )

            request = VerificationRequest(
                requester_id=citizen_id,
                requested_level=requested_level,
                justification=justification,
                supporting_documents=supporting_documents or [],
            )
            await self._store.add_request(request)
            self._effects.audit(
                AuditEventType.UPGRADE_REQUESTED,
                citizen_id,
                citizen_id,
                request_id=request.id,
                requested_level=requested_level.name,
            )

        self._logger.info(
            "upgrade_requested",
            citizen_id=citizen_id,
            request_id=request.id,
            requested_level=requested_level.name,
        )
        return request

    async def review_request(
        self,
        request_id: str,
        reviewer_id: str,
        approved: bool,
        notes: str | None = None,
    ) -> VerificationRequest:
        """Approve or reject a pending request. Approval moves the level."""
        async with self._effects.collect(), self._store.transaction():
            if not can_approve(await self._roles.role_of(reviewer_id)):
                raise UnauthorizedError(
                    "Only elevated reviewers or supreme citizens can review requests"
                )

            request = await self._store.get_request(request_id)
            if request is None:
                raise NotFoundError(f"Verification request {request_id} not found")
            if request.status is not RequestStatus.PENDING:
                raise AlreadyProcessedError(f"Request {request_id} already reviewed")

            if approved:
                citizen = await self._require(request.requester_id)
                if citizen.trust_level.next() is not request.requested_level:
                    raise PreconditionNotMetError(
                        f"Citizen is {citizen.trust_level.name}; "
                        f"cannot move to {request.requested_level.name}"
                    )
                await self._transition(
                    citizen, request.requested_level, actor_id=reviewer_id,
                    reason=f"request {request.id} approved",
                )

            request.status = RequestStatus.APPROVED if approved else RequestStatus.REJECTED
            request.reviewed_by = reviewer_id
            request.reviewed_at = utc_now()
            request.review_notes = notes
            await self._store.save_request(request)

            self._effects.audit(
                AuditEventType.UPGRADE_REVIEWED,
                reviewer_id,
                request.requester_id,
                request_id=request.id,
                approved=approved,
                requested_level=request.requested_level.name,
            )

        self._logger.info(
            "upgrade_reviewed",
            request_id=request_id,
            reviewer_id=reviewer_id,
            approved=approved,
        )
        return request

    async def pending_requests(self) -> list[VerificationRequest]:
        """Oldest first."""
        return await self._store.list_requests(status=RequestStatus.PENDING)

    async def requests_for(self, citizen_id: str) -> list[VerificationRequest]:
        """Newest first."""
        requests = await self._store.list_requests(requester_id=citizen_id)
        requests.reverse()
        return requests

    # ─── Direct Transitions ─────────────────────────────────────────

    async def set_level(self, citizen_id: str, level: TrustLevel, actor_id: str) -> Citizen:
        """Supreme override: set any level, bypassing the request workflow."""
        async with self._effects.collect(), self._store.transaction():
            if not can_override_level(await self._roles.role_of(actor_id)):
                raise UnauthorizedError("Only supreme citizens can set levels directly")

            citizen = await self._require(citizen_id)
            if level is TrustLevel.FULLY_VERIFIED and not citizen.is_verified:
                citizen.is_verified = True
                citizen.verified_at = utc_now()
            citizen = await self._transition(
                citizen, level, actor_id=actor_id, reason="override",
            )
        return citizen

    async def upgrade_group(self, group_id: str, members: list[Citizen]) -> list[str]:
        """
        A group just completed mutual verification: lift every member still
        UNVERIFIED to GROUP_VERIFIED. Members already above are skipped.
        """
        upgraded: list[str] = []
        async with self._effects.collect(), self._store.transaction():
            for member in members:
                current = await self._require(member.id)
                if current.trust_level is not TrustLevel.UNVERIFIED:
                    continue
                current.group_verified_via = group_id
                await self._transition(
                    current, TrustLevel.GROUP_VERIFIED, actor_id=None,
                    reason=f"group {group_id} complete",
                )
                upgraded.append(current.id)
        return upgraded

    async def downgrade_group(self, group_id: str) -> list[str]:
        """
        A group lost completeness: members whose GROUP_VERIFIED came from
        this group go back to UNVERIFIED.
        """
        downgraded: list[str] = []
        async with self._effects.collect(), self._store.transaction():
            for member in await self._store.list_citizens(group_id=group_id):
                if member.trust_level is not TrustLevel.GROUP_VERIFIED:
                    continue
                if member.group_verified_via != group_id:
                    continue
                member.group_verified_via = None
                await self._transition(
                    member, TrustLevel.UNVERIFIED, actor_id=None,
                    reason=f"group {group_id} incomplete",
                )
                downgraded.append(member.id)
        return downgraded

    async def reconcile_supreme(self) -> ReconciliationReport:
        """
        Bootstrap step: every supreme citizen is verified at the top level.

        Idempotent; meant to run once at process start.
        """
        promoted: list[str] = []
        async with self._effects.collect(), self._store.transaction():
            # Roles come from the directory; the stored role may be stale
            supremes = [
                c for c in await self._store.list_citizens()
                if is_root_of_trust(await self._roles.role_of(c.id))
            ]
            for citizen in supremes:
                if citizen.is_verified and citizen.trust_level is TrustLevel.FULLY_VERIFIED:
                    continue
                if not citizen.is_verified:
                    citizen.is_verified = True
                    citizen.verified_at = utc_now()
                if citizen.trust_level is TrustLevel.FULLY_VERIFIED:
                    await self._store.save_citizen(citizen)
                else:
                    await self._transition(
                        citizen, TrustLevel.FULLY_VERIFIED, actor_id=None,
                        reason="supreme reconciliation",
                    )
                promoted.append(citizen.id)

        self._logger.info(
            "supreme_reconciled",
            supreme_count=len(supremes),
            promoted=len(promoted),
        )
        return ReconciliationReport(supreme_count=len(supremes), promoted_ids=promoted)

    # ─── Internal ───────────────────────────────────────────────────

    async def _transition(
        self,
        citizen: Citizen,
        new_level: TrustLevel,
        actor_id: str | None,
        reason: str,
    ) -> Citizen:
        """Persist a level change. Callers hold the transaction and effects scope."""
        previous = citizen.trust_level
        citizen.trust_level = new_level
        citizen.level_set_at = utc_now()
        citizen.level_set_by = actor_id
        if new_level is not TrustLevel.GROUP_VERIFIED:
            citizen.group_verified_via = None
        await self._store.save_citizen(citizen)

        if new_level == previous:
            return citizen

        self._effects.audit(
            AuditEventType.LEVEL_CHANGED,
            actor_id,
            citizen.id,
            previous=previous.name,
            new=new_level.name,
            reason=reason,
        )
        if new_level > previous:
            self._effects.level_upgraded(citizen.id, new_level)

        self._logger.info(
            "level_changed",
            citizen_id=citizen.id,
            previous=previous.name,
            new=new_level.name,
            actor_id=actor_id,
            reason=reason,
        )
        return citizen

    async def _require(self, citizen_id: str) -> Citizen:
        citizen = await self._store.get_citizen(citizen_id)
        if citizen is None:
            raise NotFoundError(f"Citizen {citizen_id} not found")
        return citizen

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "unverified_emission_limit": str(self._config.unverified_emission_limit),
            "group_verified_emission_limit": str(self._config.group_verified_emission_limit),
        }


def _positive_amount(amount: Decimal | int | str) -> Decimal:
    value = Decimal(str(amount))
    if value <= 0:
        raise PreconditionNotMetError("Emission amount must be positive")
    return value
