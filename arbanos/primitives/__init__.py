"""
ArbanOS -- Primitives

Data models shared by every system.
"""

from arbanos.primitives.common import (
    ArbanBaseModel,
    HealthStatus,
    Identified,
    Timestamped,
    new_id,
    utc_now,
)
from arbanos.primitives.trust import (
    AuditEvent,
    AuditEventType,
    ChainLink,
    Citizen,
    DistributionResult,
    GroupMutualVerification,
    RequestStatus,
    Role,
    TrustLevel,
    VerificationEdge,
    VerificationMethod,
    VerificationRequest,
)

__all__ = [
    "ArbanBaseModel",
    "AuditEvent",
    "AuditEventType",
    "ChainLink",
    "Citizen",
    "DistributionResult",
    "GroupMutualVerification",
    "HealthStatus",
    "Identified",
    "RequestStatus",
    "Role",
    "Timestamped",
    "TrustLevel",
    "VerificationEdge",
    "VerificationMethod",
    "VerificationRequest",
    "new_id",
    "utc_now",
]
