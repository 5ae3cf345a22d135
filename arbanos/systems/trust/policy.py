"""
ArbanOS -- Trust Policy

Authorization predicates and emission limits. Every role or level check in
the trust core goes through one of these functions; nothing compares role
strings inline.
"""

from __future__ import annotations

from decimal import Decimal

from arbanos.config import LevelConfig
from arbanos.primitives.trust import Role, TrustLevel, VerificationMethod

_PRIVILEGED = frozenset({Role.ELEVATED_REVIEWER, Role.SUPREME})

# Levels that can only be reached through an approved VerificationRequest.
REQUESTABLE_LEVELS = frozenset({TrustLevel.CLAN_VERIFIED, TrustLevel.FULLY_VERIFIED})


# ─── Capabilities ─────────────────────────────────────────────────


def has_unlimited_verifications(role: Role) -> bool:
    return role in _PRIVILEGED


def can_verify_unverified(role: Role) -> bool:
    """Privileged roles may vouch for others without being verified themselves."""
    return role in _PRIVILEGED


def can_revoke(role: Role) -> bool:
    return role in _PRIVILEGED


def can_approve(role: Role) -> bool:
    return role in _PRIVILEGED


def can_override_level(role: Role) -> bool:
    return role is Role.SUPREME


def is_root_of_trust(role: Role) -> bool:
    """Supreme citizens terminate chains and are never cascaded out."""
    return role is Role.SUPREME


def verification_method_for(role: Role) -> VerificationMethod:
    if role in _PRIVILEGED:
        return VerificationMethod.ADMINISTRATIVE
    return VerificationMethod.PEER_REFERRAL


# ─── Emission ─────────────────────────────────────────────────────


def emission_limit(level: TrustLevel, role: Role, config: LevelConfig) -> Decimal | None:
    """
    Maximum cumulative emission for a level. None means unbounded.

    Supreme citizens are unbounded regardless of level.
    """
    if role is Role.SUPREME:
        return None
    if level is TrustLevel.UNVERIFIED:
        return config.unverified_emission_limit
    if level is TrustLevel.GROUP_VERIFIED:
        return config.group_verified_emission_limit
    return None


def is_group_pooled(level: TrustLevel) -> bool:
    """GROUP_VERIFIED citizens share one emission pool across their group."""
    return level is TrustLevel.GROUP_VERIFIED
