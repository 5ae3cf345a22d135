"""
ArbanOS -- Trust Service

Citizens earn ascending trust levels by vouching for each other rather than
through central authority alone, and their trust level decides how much
currency they may create.

The TrustService wires four sub-systems over one TrustStore:
  VerificationEngine      -- individual edges, quotas, chains, revocation
  CascadeRevoker          -- transitive suspension (owned by the engine)
  LevelEngine             -- trust levels, emission quotas, upgrade requests
  GroupCompletenessEngine -- 5-member mutual verification

Control flow:
  verify/submit -> (group complete) -> LevelEngine -> Distribution
  revoke        -> cascade over the graph

Lifecycle:
  initialize()  -- build sub-systems, reconcile supreme citizens
  health()      -- status and counters
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from arbanos.primitives.common import HealthStatus
from arbanos.systems.trust.collaborators import (
    InMemoryAuditLog,
    NullDistribution,
    StoreRoleDirectory,
)
from arbanos.systems.trust.effects import SideEffects
from arbanos.systems.trust.groups import GroupCompletenessEngine
from arbanos.systems.trust.levels import LevelEngine
from arbanos.systems.trust.verification import VerificationEngine

if TYPE_CHECKING:
    from arbanos.config import ArbanOSConfig
    from arbanos.systems.trust.collaborators import (
        AuditSink,
        DistributionCollaborator,
        RoleDirectory,
    )
    from arbanos.systems.trust.store import TrustStore

logger = structlog.get_logger("arbanos.systems.trust")


class TrustService:
    """
    Trust -- the citizen vouching system.

    Collaborators are optional: without a distribution ledger the service
    uses NullDistribution, without an audit sink an in-memory timeline, and
    roles are read off the store unless a RoleDirectory is given.
    """

    system_id: str = "trust"

    def __init__(
        self,
        config: ArbanOSConfig,
        store: TrustStore,
        distribution: DistributionCollaborator | None = None,
        audit: AuditSink | None = None,
        roles: RoleDirectory | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._distribution = distribution if distribution is not None else NullDistribution()
        self._audit = audit if audit is not None else InMemoryAuditLog()
        self._roles = roles if roles is not None else StoreRoleDirectory(store)
        self._logger = logger.bind(system="trust")
        self._initialized: bool = False

        # Sub-systems (built in initialize())
        self._effects: SideEffects | None = None
        self._verification: VerificationEngine | None = None
        self._levels: LevelEngine | None = None
        self._groups: GroupCompletenessEngine | None = None

    # ─── Lifecycle ──────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Build all sub-systems and run the supreme-citizen reconciliation."""
        if self._initialized:
            return

        self._effects = SideEffects(distribution=self._distribution, audit=self._audit)
        self._verification = VerificationEngine(
            config=self._config.verification,
            store=self._store,
            roles=self._roles,
            effects=self._effects,
        )
        self._levels = LevelEngine(
            config=self._config.levels,
            store=self._store,
            roles=self._roles,
            effects=self._effects,
        )
        self._groups = GroupCompletenessEngine(
            config=self._config.groups,
            store=self._store,
            roles=self._roles,
            effects=self._effects,
            levels=self._levels,
        )

        report = await self._levels.reconcile_supreme()
        self._initialized = True

        self._logger.info(
            "trust_initialized",
            supreme_count=report.supreme_count,
            promoted=len(report.promoted_ids),
            cascade_max_depth=self._config.verification.cascade_max_depth,
            group_size=self._config.groups.size,
        )

    # ─── Sub-systems ────────────────────────────────────────────────

    @property
    def verification(self) -> VerificationEngine:
        if self._verification is None:
            raise RuntimeError("TrustService not initialized")
        return self._verification

    @property
    def levels(self) -> LevelEngine:
        if self._levels is None:
            raise RuntimeError("TrustService not initialized")
        return self._levels

    @property
    def groups(self) -> GroupCompletenessEngine:
        if self._groups is None:
            raise RuntimeError("TrustService not initialized")
        return self._groups

    @property
    def store(self) -> TrustStore:
        return self._store

    @property
    def audit(self) -> AuditSink:
        return self._audit

    # ─── Health ─────────────────────────────────────────────────────

    async def health(self) -> dict[str, Any]:
        if not self._initialized or self._effects is None:
            return {"status": HealthStatus.UNHEALTHY.value, "initialized": False}

        effects = self._effects.stats
        status = HealthStatus.DEGRADED if effects["failures"] else HealthStatus.HEALTHY
        result: dict[str, Any] = {
            "status": status.value,
            "initialized": True,
            "side_effects": effects,
            "verification": self.verification.stats,
            "levels": self.levels.stats,
            "groups": self.groups.stats,
        }
        store_stats = getattr(self._store, "stats", None)
        if isinstance(store_stats, dict):
            result["store"] = store_stats
        return result
