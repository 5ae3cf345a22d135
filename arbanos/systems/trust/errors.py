"""
ArbanOS -- Trust Error Hierarchy

All exceptions raised by the trust core: verification, cascade revocation,
trust levels and group mutual verification.

Namespace: arbanos.systems.trust.errors

Every error is a terminal failure surfaced synchronously to the caller.
Nothing here is retried internally, and raising any of them inside an
operation rolls the store transaction back. Collaborator failures
(distribution, audit) are deliberately NOT part of this hierarchy: they are
logged and discarded by SideEffects.
"""

from __future__ import annotations


class TrustError(RuntimeError):
    """Base for all trust-core errors."""


class NotFoundError(TrustError):
    """A citizen, edge, group verification or request does not exist."""


class AlreadyVerifiedError(TrustError):
    """The target citizen is already verified."""


class SelfReferenceError(TrustError):
    """A citizen tried to verify themselves."""


class QuotaExhaustedError(TrustError):
    """
    A verification or emission quota would be exceeded.

    Raised for verifiers out of outbound vouches and for emissions that
    would cross the level's limit. State is left unchanged.
    """


class PreconditionNotMetError(TrustError):
    """
    The operation is valid in general but not for the current state:
    missing consent, wrong current level, not a member of the group.
    """


class UnauthorizedError(TrustError):
    """The actor's role does not permit this operation."""


class DuplicateEdgeError(TrustError):
    """An edge for this ordered pair already exists (active or revoked)."""


class AlreadyProcessedError(TrustError):
    """The request was already reviewed, or the edge is already inactive."""
