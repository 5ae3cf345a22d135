"""
Unit tests for the Group Completeness Engine.

Tests mutual verification inside a five-member group, completion upgrades,
revocation downgrades and the read models over a group.
"""

from __future__ import annotations

import itertools
import random

import pytest

from arbanos.primitives.trust import AuditEventType, Citizen, Role, TrustLevel
from arbanos.systems.trust import TrustService
from arbanos.systems.trust.errors import (
    DuplicateEdgeError,
    NotFoundError,
    PreconditionNotMetError,
    SelfReferenceError,
    UnauthorizedError,
)

GROUP = "arban-1"


# ─── Helpers ─────────────────────────────────────────────────────


async def make_group(service: TrustService, group_id: str = GROUP, size: int = 5) -> list[Citizen]:
    return [
        await service.verification.enroll(f"{group_id}-m{i}", group_id=group_id)
        for i in range(size)
    ]


def all_pairs(members: list[Citizen]) -> list[tuple[Citizen, Citizen]]:
    return list(itertools.permutations(members, 2))


async def submit(service: TrustService, verifier: Citizen, verified: Citizen, group_id: str = GROUP):
    return await service.groups.submit_mutual_verification(group_id, verifier.id, verified.id)


async def complete_group(service: TrustService, members: list[Citizen]) -> list[str]:
    upgraded: list[str] = []
    for verifier, verified in all_pairs(members):
        result = await submit(service, verifier, verified)
        upgraded.extend(result.upgraded_ids)
    return upgraded


async def levels_of(service: TrustService, members: list[Citizen]) -> list[TrustLevel]:
    return [(await service.store.get_citizen(m.id)).trust_level for m in members]


async def make_supreme(service: TrustService) -> Citizen:
    citizen = await service.verification.enroll("founder", role=Role.SUPREME)
    await service.levels.reconcile_supreme()
    return citizen


# ─── Completion ──────────────────────────────────────────────────


class TestCompletion:
    @pytest.mark.asyncio
    async def test_twenty_verifications_complete_the_group(self, service, distribution):
        members = await make_group(service)
        pairs = all_pairs(members)
        random.Random(7).shuffle(pairs)

        results = []
        for verifier, verified in pairs:
            results.append(await submit(service, verifier, verified))

        assert [r.is_group_complete for r in results] == [False] * 19 + [True]
        assert sorted(results[-1].upgraded_ids) == sorted(m.id for m in members)
        assert all(not r.upgraded_ids for r in results[:-1])
        assert await levels_of(service, members) == [TrustLevel.GROUP_VERIFIED] * 5
        for member in members:
            stored = await service.store.get_citizen(member.id)
            assert stored.group_verified_via == GROUP

        group_calls = [
            c for c in distribution.distribute_for_level.await_args_list
            if c.args[1] == TrustLevel.GROUP_VERIFIED
        ]
        assert len(group_calls) == 5

    @pytest.mark.asyncio
    async def test_twenty_first_submission_is_a_duplicate(self, service):
        members = await make_group(service)
        await complete_group(service, members)

        with pytest.raises(DuplicateEdgeError):
            await submit(service, members[0], members[1])

    @pytest.mark.asyncio
    async def test_progress(self, service):
        members = await make_group(service)
        for verifier, verified in all_pairs(members)[:10]:
            await submit(service, verifier, verified)

        progress = await service.groups.progress(GROUP)

        assert progress.total == 20
        assert progress.completed == 10
        assert progress.percentage == 50
        assert progress.remaining == 10
        assert not progress.is_complete

    @pytest.mark.asyncio
    async def test_undersized_group_never_completes(self, service):
        members = await make_group(service, size=4)
        for verifier, verified in all_pairs(members):
            await submit(service, verifier, verified)

        assert not await service.groups.is_complete(GROUP)
        progress = await service.groups.progress(GROUP)
        assert progress.total == 20
        assert progress.completed == 0
        assert await levels_of(service, members) == [TrustLevel.UNVERIFIED] * 4

    @pytest.mark.asyncio
    async def test_single_member_progress(self, service):
        await make_group(service, group_id="solo", size=1)

        progress = await service.groups.progress("solo")

        assert progress.total == 20
        assert progress.completed == 0
        assert not progress.is_complete

    @pytest.mark.asyncio
    async def test_members_above_unverified_are_left_alone(self, service):
        founder = await make_supreme(service)
        members = await make_group(service)
        await service.levels.set_level(members[3].id, TrustLevel.CLAN_VERIFIED, founder.id)
        await service.levels.set_level(members[4].id, TrustLevel.GROUP_VERIFIED, founder.id)

        upgraded = await complete_group(service, members)

        assert sorted(upgraded) == sorted(m.id for m in members[:3])
        levels = await levels_of(service, members)
        assert levels[3] == TrustLevel.CLAN_VERIFIED
        assert levels[4] == TrustLevel.GROUP_VERIFIED


# ─── Submission Preconditions ────────────────────────────────────


class TestSubmit:
    @pytest.mark.asyncio
    async def test_self_verification(self, service):
        members = await make_group(service)
        with pytest.raises(SelfReferenceError):
            await submit(service, members[0], members[0])

    @pytest.mark.asyncio
    async def test_non_member(self, service):
        members = await make_group(service)
        outsider = await service.verification.enroll("outsider", group_id="arban-2")

        with pytest.raises(PreconditionNotMetError):
            await submit(service, members[0], outsider)

    @pytest.mark.asyncio
    async def test_unknown_citizen(self, service):
        members = await make_group(service)
        with pytest.raises(NotFoundError):
            await service.groups.submit_mutual_verification(GROUP, members[0].id, "missing")

    @pytest.mark.asyncio
    async def test_submission_is_audited(self, service, audit_log):
        members = await make_group(service)
        await submit(service, members[0], members[1])

        events = audit_log.events(AuditEventType.GROUP_VERIFICATION_SUBMITTED)
        assert len(events) == 1
        assert events[0].metadata["group_id"] == GROUP


# ─── Revocation ──────────────────────────────────────────────────


class TestRevoke:
    @pytest.mark.asyncio
    async def test_verifier_revokes_and_group_is_downgraded(self, service):
        members = await make_group(service)
        await complete_group(service, members)

        result = await service.groups.revoke_mutual_verification(
            GROUP, members[0].id, members[1].id, requested_by=members[0].id, reason="moved away",
        )

        assert not result.is_group_still_complete
        assert sorted(result.downgraded_ids) == sorted(m.id for m in members)
        assert result.verification.revoked_reason == "moved away"
        assert await levels_of(service, members) == [TrustLevel.UNVERIFIED] * 5
        progress = await service.groups.progress(GROUP)
        assert progress.completed == 19

    @pytest.mark.asyncio
    async def test_resubmission_reactivates(self, service):
        members = await make_group(service)
        await complete_group(service, members)
        await service.groups.revoke_mutual_verification(
            GROUP, members[0].id, members[1].id, requested_by=members[0].id,
        )

        result = await submit(service, members[0], members[1])

        assert result.verification.is_verified
        assert result.verification.revoked_at is None
        assert result.is_group_complete
        assert len(result.upgraded_ids) == 5

    @pytest.mark.asyncio
    async def test_other_member_cannot_revoke(self, service):
        members = await make_group(service)
        await submit(service, members[0], members[1])

        with pytest.raises(UnauthorizedError):
            await service.groups.revoke_mutual_verification(
                GROUP, members[0].id, members[1].id, requested_by=members[2].id,
            )

    @pytest.mark.asyncio
    async def test_reviewer_can_revoke(self, service):
        reviewer = await service.verification.enroll("reviewer", role=Role.ELEVATED_REVIEWER)
        members = await make_group(service)
        await submit(service, members[0], members[1])

        result = await service.groups.revoke_mutual_verification(
            GROUP, members[0].id, members[1].id, requested_by=reviewer.id,
        )

        assert not result.verification.is_verified

    @pytest.mark.asyncio
    async def test_missing_or_revoked_verification(self, service):
        members = await make_group(service)
        with pytest.raises(NotFoundError):
            await service.groups.revoke_mutual_verification(
                GROUP, members[0].id, members[1].id, requested_by=members[0].id,
            )

        await submit(service, members[0], members[1])
        await service.groups.revoke_mutual_verification(
            GROUP, members[0].id, members[1].id, requested_by=members[0].id,
        )
        with pytest.raises(NotFoundError):
            await service.groups.revoke_mutual_verification(
                GROUP, members[0].id, members[1].id, requested_by=members[0].id,
            )

    @pytest.mark.asyncio
    async def test_downgrade_spares_levels_granted_elsewhere(self, service):
        founder = await make_supreme(service)
        members = await make_group(service)
        await service.levels.set_level(members[3].id, TrustLevel.CLAN_VERIFIED, founder.id)
        await service.levels.set_level(members[4].id, TrustLevel.GROUP_VERIFIED, founder.id)
        await complete_group(service, members)

        result = await service.groups.revoke_mutual_verification(
            GROUP, members[0].id, members[1].id, requested_by=founder.id,
        )

        assert sorted(result.downgraded_ids) == sorted(m.id for m in members[:3])
        levels = await levels_of(service, members)
        assert levels[:3] == [TrustLevel.UNVERIFIED] * 3
        assert levels[3] == TrustLevel.CLAN_VERIFIED
        assert levels[4] == TrustLevel.GROUP_VERIFIED


# ─── Queries ─────────────────────────────────────────────────────


class TestQueries:
    @pytest.mark.asyncio
    async def test_verification_matrix(self, service):
        m0, m1, m2, *_ = await make_group(service)
        await submit(service, m0, m1)
        await submit(service, m2, m1)
        await submit(service, m1, m0)

        matrix = await service.groups.verification_matrix(GROUP)

        assert matrix == {m1.id: [m0.id, m2.id], m0.id: [m1.id]}

    @pytest.mark.asyncio
    async def test_unverified_members(self, service):
        members = await make_group(service)
        await submit(service, members[0], members[1])

        remaining = await service.groups.unverified_members(GROUP, members[0].id)

        assert [m.id for m in remaining] == [m.id for m in members[2:]]

    @pytest.mark.asyncio
    async def test_member_verifications(self, service):
        m0, m1, m2, *_ = await make_group(service)
        await submit(service, m0, m1)
        await submit(service, m2, m1)
        await submit(service, m1, m0)

        summary = await service.groups.member_verifications(GROUP, m1.id)

        assert summary.given_count == 1
        assert summary.received_count == 2
        assert summary.expected_given == 4
        assert summary.expected_received == 4
