"""
Unit tests for TrustService lifecycle and post-commit side effects.
"""

from __future__ import annotations

import pytest

from arbanos.config import ArbanOSConfig
from arbanos.main import create_trust_service
from arbanos.primitives.trust import AuditEventType, Citizen, Role, TrustLevel
from arbanos.systems.trust import InMemoryTrustStore, TrustService
from arbanos.systems.trust.collaborators import InMemoryAuditLog, NullDistribution
from arbanos.systems.trust.errors import UnauthorizedError


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_uninitialized_service(self):
        svc = TrustService(config=ArbanOSConfig(), store=InMemoryTrustStore())

        with pytest.raises(RuntimeError):
            _ = svc.verification
        health = await svc.health()
        assert health["status"] == "unhealthy"
        assert not health["initialized"]

    @pytest.mark.asyncio
    async def test_initialize_reconciles_existing_supremes(self):
        store = InMemoryTrustStore()
        founder = Citizen(username="founder", role=Role.SUPREME)
        await store.save_citizen(founder)
        svc = TrustService(config=ArbanOSConfig(), store=store)

        await svc.initialize()
        engine = svc.verification
        await svc.initialize()

        assert svc.verification is engine
        stored = await store.get_citizen(founder.id)
        assert stored.is_verified
        assert stored.trust_level == TrustLevel.FULLY_VERIFIED

    @pytest.mark.asyncio
    async def test_defaults_collaborators(self):
        svc = TrustService(config=ArbanOSConfig(), store=InMemoryTrustStore())
        await svc.initialize()
        founder = await svc.verification.enroll("founder", role=Role.SUPREME)

        await svc.levels.reconcile_supreme()

        assert isinstance(svc.audit, InMemoryAuditLog)
        assert svc.audit.events(AuditEventType.LEVEL_CHANGED, target_id=founder.id)

    @pytest.mark.asyncio
    async def test_health(self, service):
        await service.verification.enroll("alice")

        health = await service.health()

        assert health["status"] == "healthy"
        assert health["store"]["citizens"] == 1
        assert health["groups"]["required_edges"] == 20
        assert health["verification"]["cascade_max_depth"] == 10

    @pytest.mark.asyncio
    async def test_create_trust_service(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        path = tmp_path / "arbanos.yaml"
        path.write_text("instance_id: test-node\nlogging:\n  level: WARNING\n")

        svc = await create_trust_service(path)

        health = await svc.health()
        assert health["status"] == "healthy"


class TestSideEffects:
    @pytest.mark.asyncio
    async def test_failed_operation_emits_nothing(self, service, audit_log, distribution):
        alice = await service.verification.enroll("alice")
        bob = await service.verification.enroll("bob", role=Role.ELEVATED_REVIEWER)
        before = len(audit_log)

        with pytest.raises(UnauthorizedError):
            await service.levels.set_level(alice.id, TrustLevel.FULLY_VERIFIED, bob.id)

        assert len(audit_log) == before
        distribution.distribute_for_level.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_null_distribution_reports_nothing_distributed(self):
        result = await NullDistribution().distribute_for_level("c1", TrustLevel.CLAN_VERIFIED)
        assert not result.distributed

    @pytest.mark.asyncio
    async def test_audit_failure_is_swallowed(self, config, store, distribution):
        class BrokenAudit:
            async def record(self, event):
                raise ConnectionError("audit sink down")

        svc = TrustService(config=config, store=store, distribution=distribution, audit=BrokenAudit())
        await svc.initialize()
        founder = await svc.verification.enroll("founder", role=Role.SUPREME)
        alice = await svc.verification.enroll("alice", accept_constitution=True)

        result = await svc.verification.verify(founder.id, alice.id)

        assert result.edge.is_active
        health = await svc.health()
        assert health["status"] == "degraded"
        assert health["side_effects"]["failures"] == 1
        distribution.register_citizen.assert_awaited_once_with(alice.id)

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_block_level_distribution(self, config, store, distribution):
        class BrokenAudit:
            async def record(self, event):
                raise ConnectionError("audit sink down")

        svc = TrustService(config=config, store=store, distribution=distribution, audit=BrokenAudit())
        await svc.initialize()
        founder = await svc.verification.enroll("founder", role=Role.SUPREME)
        alice = await svc.verification.enroll("alice")

        await svc.levels.reconcile_supreme()
        await svc.levels.set_level(alice.id, TrustLevel.CLAN_VERIFIED, founder.id)

        distribution.distribute_for_level.assert_any_await(founder.id, TrustLevel.FULLY_VERIFIED)
        distribution.distribute_for_level.assert_any_await(alice.id, TrustLevel.CLAN_VERIFIED)
        assert (await store.get_citizen(alice.id)).trust_level == TrustLevel.CLAN_VERIFIED


class TestCollaboratorInjection:
    @pytest.mark.asyncio
    async def test_empty_audit_log_is_kept(self, config, store):
        log = InMemoryAuditLog()
        svc = TrustService(config=config, store=store, audit=log)
        await svc.initialize()
        founder = await svc.verification.enroll("founder", role=Role.SUPREME)

        await svc.levels.reconcile_supreme()

        assert svc.audit is log
        assert log.events(AuditEventType.LEVEL_CHANGED, target_id=founder.id)

    @pytest.mark.asyncio
    async def test_injected_roles_are_kept(self, config, store):
        class EmptyDirectory:
            def __len__(self):
                return 0

            async def role_of(self, citizen_id):
                return Role.ORDINARY

        roles = EmptyDirectory()
        svc = TrustService(config=config, store=store, roles=roles)
        await svc.initialize()
        alice = await svc.verification.enroll("alice", role=Role.SUPREME)
        bob = await svc.verification.enroll("bob", accept_constitution=True)

        # The directory, not the stored role, decides authority
        with pytest.raises(UnauthorizedError):
            await svc.verification.verify(alice.id, bob.id)
