"""
ArbanOS -- Trust Engine Result Types

What the engines hand back to callers. Persistent rows live in
arbanos.primitives.trust; these are read models and operation reports.
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import Field

from arbanos.primitives.common import ArbanBaseModel
from arbanos.primitives.trust import (
    GroupMutualVerification,
    TrustLevel,
    VerificationEdge,
)


# ─── Verification Engine ──────────────────────────────────────────


class VerificationResult(ArbanBaseModel):
    edge: VerificationEdge
    chain_depth: int
    remaining_quota: int | None  # None for unlimited roles


class CascadeReport(ArbanBaseModel):
    """Everything one cascade run touched."""

    root_id: str
    suspended_edge_ids: list[str] = Field(default_factory=list)
    unverified_citizen_ids: list[str] = Field(default_factory=list)
    max_depth_reached: int = 0
    truncated: bool = False  # Depth ceiling stopped the walk

    @property
    def count(self) -> int:
        return len(self.suspended_edge_ids)


class RevocationResult(ArbanBaseModel):
    edge: VerificationEdge
    target_still_verified: bool
    cascade: CascadeReport | None = None

    @property
    def cascade_count(self) -> int:
        return self.cascade.count if self.cascade else 0


class VerifierStats(ArbanBaseModel):
    given_count: int
    quota: int
    remaining_quota: int | None
    is_unlimited: bool
    edges_given: list[VerificationEdge] = Field(default_factory=list)


# ─── Level Engine ─────────────────────────────────────────────────


class EmissionStatus(ArbanBaseModel):
    """Emission headroom for a citizen. limit and remaining are None when unbounded."""

    level: TrustLevel
    limit: Decimal | None
    used: Decimal
    pool_used: Decimal  # Group total for GROUP_VERIFIED, otherwise == used
    remaining: Decimal | None
    is_unlimited: bool


class ReconciliationReport(ArbanBaseModel):
    supreme_count: int
    promoted_ids: list[str] = Field(default_factory=list)


# ─── Group Completeness Engine ────────────────────────────────────


class GroupProgress(ArbanBaseModel):
    total: int
    completed: int
    percentage: int
    is_complete: bool
    remaining: int


class GroupSubmissionResult(ArbanBaseModel):
    verification: GroupMutualVerification
    is_group_complete: bool
    upgraded_ids: list[str] = Field(default_factory=list)


class GroupRevocationResult(ArbanBaseModel):
    verification: GroupMutualVerification
    is_group_still_complete: bool
    downgraded_ids: list[str] = Field(default_factory=list)


class MemberVerifications(ArbanBaseModel):
    given: list[GroupMutualVerification] = Field(default_factory=list)
    received: list[GroupMutualVerification] = Field(default_factory=list)
    expected_given: int
    expected_received: int

    @property
    def given_count(self) -> int:
        return len(self.given)

    @property
    def received_count(self) -> int:
        return len(self.received)
