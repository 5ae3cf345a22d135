"""
ArbanOS -- Trust Primitives

Citizens, verification edges, upgrade requests, group mutual verification
and the audit/distribution records exchanged with collaborators.

Trust is granted by people vouching for people. A verification edge is
never deleted: revoking or cascading only marks it inactive, so the graph
keeps a full history of who vouched for whom and when that was withdrawn.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import Field, model_validator

from arbanos.primitives.common import ArbanBaseModel, Identified, Timestamped, utc_now


# ─── Roles & Levels ───────────────────────────────────────────────


class Role(str, enum.Enum):
    """Authority of a citizen. Elevated and supreme roles verify without quota."""

    ORDINARY = "ordinary"
    ELEVATED_REVIEWER = "elevated_reviewer"
    SUPREME = "supreme"


class TrustLevel(int, enum.Enum):
    """
    Ordered trust tiers. Each tier gates how much currency a citizen
    may create.
    """

    UNVERIFIED = 0      # 100 units, individual
    GROUP_VERIFIED = 1  # 1,000 units, shared across the 5-member group
    CLAN_VERIFIED = 2   # Unbounded
    FULLY_VERIFIED = 3  # Unbounded

    def next(self) -> TrustLevel | None:
        if self is TrustLevel.FULLY_VERIFIED:
            return None
        return TrustLevel(self.value + 1)


class VerificationMethod(str, enum.Enum):
    ADMINISTRATIVE = "administrative"
    PEER_REFERRAL = "peer_referral"


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# ─── Citizen ──────────────────────────────────────────────────────


class Citizen(Identified, Timestamped):
    """
    A person in the trust graph.

    is_verified is derived from having at least one active inbound edge;
    trust_level is mutated only by the LevelEngine.
    """

    username: str = ""
    role: Role = Role.ORDINARY
    trust_level: TrustLevel = TrustLevel.UNVERIFIED
    is_verified: bool = False
    verified_at: datetime | None = None
    verifications_given_count: int = 0
    verification_quota: int = 5
    total_emitted: Decimal = Decimal("0")
    current_group_id: str | None = None
    # Consent precondition: a citizen must accept the constitution before
    # anyone may vouch for them.
    constitution_accepted_at: datetime | None = None

    # Level bookkeeping
    level_set_at: datetime | None = None
    level_set_by: str | None = None
    group_verified_via: str | None = None  # Group that granted GROUP_VERIFIED

    @property
    def has_accepted_constitution(self) -> bool:
        return self.constitution_accepted_at is not None


# ─── Verification Graph ───────────────────────────────────────────


class VerificationEdge(Identified, Timestamped):
    """A directed vouch: verifier_id vouches for verified_id."""

    verifier_id: str
    verified_id: str
    method: VerificationMethod = VerificationMethod.PEER_REFERRAL
    is_active: bool = True
    suspended_at: datetime | None = None
    suspended_reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _no_self_loop(self) -> VerificationEdge:
        if self.verifier_id == self.verified_id:
            raise ValueError("verification edge cannot be a self-loop")
        return self

    def suspend(self, reason: str) -> None:
        self.is_active = False
        self.suspended_at = utc_now()
        self.suspended_reason = reason


class ChainLink(ArbanBaseModel):
    """One hop of a verification chain, walking upward toward the root."""

    verifier_id: str
    username: str = ""
    role: Role
    verified_at: datetime


# ─── Upgrade Requests ─────────────────────────────────────────────


class VerificationRequest(Identified, Timestamped):
    """A citizen asking to be raised to the next trust level."""

    requester_id: str
    requested_level: TrustLevel
    justification: str = ""
    supporting_documents: list[dict[str, Any]] = Field(default_factory=list)
    status: RequestStatus = RequestStatus.PENDING
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None


# ─── Group Mutual Verification ────────────────────────────────────


class GroupMutualVerification(Identified, Timestamped):
    """A vouch between two members of the same trust group (Arban)."""

    group_id: str
    verifier_id: str
    verified_id: str
    is_verified: bool = True
    verified_at: datetime | None = Field(default_factory=utc_now)
    notes: str | None = None
    revoked_at: datetime | None = None
    revoked_reason: str | None = None


# ─── Collaborator Records ─────────────────────────────────────────


class DistributionResult(ArbanBaseModel):
    distributed: bool = False
    amount: Decimal = Decimal("0")


class AuditEventType(str, enum.Enum):
    IDENTITY_VERIFIED = "identity_verified"
    VERIFICATION_REVOKED = "verification_revoked"
    VERIFICATION_SUSPENDED = "verification_suspended"
    LEVEL_CHANGED = "level_changed"
    UPGRADE_REQUESTED = "upgrade_requested"
    UPGRADE_REVIEWED = "upgrade_reviewed"
    GROUP_VERIFICATION_SUBMITTED = "group_verification_submitted"
    GROUP_VERIFICATION_REVOKED = "group_verification_revoked"
    EMISSION_RECORDED = "emission_recorded"


class AuditEvent(Identified):
    """Immutable timeline record of a trust action."""

    model_config = {"frozen": True}

    type: AuditEventType
    actor_id: str | None = None
    target_id: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)
    metadata: dict[str, Any] = Field(default_factory=dict)
