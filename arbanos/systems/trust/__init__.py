"""
ArbanOS -- Trust System

Mutual human vouching, cascade revocation, tiered trust levels and
5-member group mutual verification.
"""

from arbanos.systems.trust.service import TrustService
from arbanos.systems.trust.store import InMemoryTrustStore, TrustStore

__all__ = ["InMemoryTrustStore", "TrustService", "TrustStore"]
