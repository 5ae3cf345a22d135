"""
Shared fixtures for the trust system tests.

Every test gets a fresh in-memory store, an in-memory audit timeline and a
mocked distribution ledger wired into an initialized TrustService.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from arbanos.config import ArbanOSConfig
from arbanos.primitives.trust import DistributionResult
from arbanos.systems.trust import InMemoryTrustStore, TrustService
from arbanos.systems.trust.collaborators import InMemoryAuditLog


@pytest.fixture
def config() -> ArbanOSConfig:
    return ArbanOSConfig()


@pytest.fixture
def store() -> InMemoryTrustStore:
    return InMemoryTrustStore()


@pytest.fixture
def audit_log() -> InMemoryAuditLog:
    return InMemoryAuditLog()


@pytest.fixture
def distribution() -> AsyncMock:
    ledger = AsyncMock()
    ledger.register_citizen.return_value = None
    ledger.distribute_for_level.return_value = DistributionResult(
        distributed=True, amount=Decimal("100"),
    )
    return ledger


@pytest_asyncio.fixture
async def service(
    config: ArbanOSConfig,
    store: InMemoryTrustStore,
    audit_log: InMemoryAuditLog,
    distribution: AsyncMock,
) -> TrustService:
    svc = TrustService(
        config=config,
        store=store,
        distribution=distribution,
        audit=audit_log,
    )
    await svc.initialize()
    return svc
