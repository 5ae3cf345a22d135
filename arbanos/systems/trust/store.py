"""
ArbanOS -- Trust Store

Durable keyed storage for citizens, verification edges, upgrade requests
and group mutual verifications, as seen by the trust core.

TrustStore is the narrow interface the engines depend on. InMemoryTrustStore
is the reference implementation used by the service and the tests:
  - models are copied on read and on write, so a caller's mutation never
    reaches the store until it is saved
  - unique constraints on (verifier_id, verified_id) and
    (group_id, verifier_id, verified_id)
  - transaction() serializes writers behind one asyncio.Lock and restores
    a snapshot if the body raises; nested transactions in the same task
    join the outer one
"""

from __future__ import annotations

import asyncio
import contextvars
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from decimal import Decimal
from typing import Protocol

import structlog

from arbanos.primitives.trust import (
    Citizen,
    GroupMutualVerification,
    RequestStatus,
    Role,
    VerificationEdge,
    VerificationRequest,
)
from arbanos.systems.trust.errors import DuplicateEdgeError, NotFoundError

logger = structlog.get_logger("arbanos.systems.trust.store")


class TrustStore(Protocol):
    """Minimal interface the trust core needs from persistence."""

    def transaction(self) -> AbstractAsyncContextManager[None]: ...

    # Citizens
    async def get_citizen(self, citizen_id: str) -> Citizen | None: ...
    async def save_citizen(self, citizen: Citizen) -> None: ...
    async def list_citizens(
        self, role: Role | None = None, group_id: str | None = None,
    ) -> list[Citizen]: ...
    async def adjust_given_count(self, citizen_id: str, delta: int) -> int: ...
    async def add_emitted(self, citizen_id: str, amount: Decimal) -> Decimal: ...

    # Verification edges
    async def add_edge(self, edge: VerificationEdge) -> None: ...
    async def save_edge(self, edge: VerificationEdge) -> None: ...
    async def get_edge(self, edge_id: str) -> VerificationEdge | None: ...
    async def find_edge(self, verifier_id: str, verified_id: str) -> VerificationEdge | None: ...
    async def edges_from(self, verifier_id: str, active_only: bool = True) -> list[VerificationEdge]: ...
    async def edges_to(self, verified_id: str, active_only: bool = True) -> list[VerificationEdge]: ...

    # Upgrade requests
    async def add_request(self, request: VerificationRequest) -> None: ...
    async def save_request(self, request: VerificationRequest) -> None: ...
    async def get_request(self, request_id: str) -> VerificationRequest | None: ...
    async def list_requests(
        self, status: RequestStatus | None = None, requester_id: str | None = None,
    ) -> list[VerificationRequest]: ...

    # Group mutual verifications
    async def add_group_edge(self, edge: GroupMutualVerification) -> None: ...
    async def save_group_edge(self, edge: GroupMutualVerification) -> None: ...
    async def find_group_edge(
        self, group_id: str, verifier_id: str, verified_id: str,
    ) -> GroupMutualVerification | None: ...
    async def group_edges(
        self, group_id: str, active_only: bool = True,
    ) -> list[GroupMutualVerification]: ...


# ids of the stores whose transaction the current task holds
_open_transactions: contextvars.ContextVar[frozenset[int]] = contextvars.ContextVar(
    "arbanos_store_open_transactions", default=frozenset(),
)


class InMemoryTrustStore:
    """
    Process-local TrustStore.

    Rows are held as pydantic models keyed by id, plus index dicts for the
    unique constraints. Stored models are never mutated in place, which is
    what makes a shallow dict copy a valid transaction snapshot.
    """

    def __init__(self) -> None:
        self._citizens: dict[str, Citizen] = {}
        self._edges: dict[str, VerificationEdge] = {}
        self._edge_pairs: dict[tuple[str, str], str] = {}
        self._requests: dict[str, VerificationRequest] = {}
        self._group_edges: dict[str, GroupMutualVerification] = {}
        self._group_triples: dict[tuple[str, str, str], str] = {}
        self._write_lock = asyncio.Lock()
        self._logger = logger.bind(component="in_memory_store")

    # ─── Transactions ───────────────────────────────────────────────

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """
        Serialize writers and roll back on error.

        Re-entrant within a task: an engine operation that calls another
        engine joins the caller's transaction instead of deadlocking.
        """
        held = _open_transactions.get()
        if id(self) in held:
            yield
            return

        async with self._write_lock:
            token = _open_transactions.set(held | {id(self)})
            snapshot = self._snapshot()
            try:
                yield
            except BaseException:
                self._restore(snapshot)
                self._logger.debug("transaction_rolled_back")
                raise
            finally:
                _open_transactions.reset(token)

    def _snapshot(self) -> tuple[dict, ...]:
        return (
            dict(self._citizens),
            dict(self._edges),
            dict(self._edge_pairs),
            dict(self._requests),
            dict(self._group_edges),
            dict(self._group_triples),
        )

    def _restore(self, snapshot: tuple[dict, ...]) -> None:
        (
            self._citizens,
            self._edges,
            self._edge_pairs,
            self._requests,
            self._group_edges,
            self._group_triples,
        ) = snapshot

    # ─── Citizens ───────────────────────────────────────────────────

    async def get_citizen(self, citizen_id: str) -> Citizen | None:
        citizen = self._citizens.get(citizen_id)
        return citizen.model_copy(deep=True) if citizen else None

    async def save_citizen(self, citizen: Citizen) -> None:
        self._citizens[citizen.id] = citizen.model_copy(deep=True)

    async def list_citizens(
        self, role: Role | None = None, group_id: str | None = None,
    ) -> list[Citizen]:
        return [
            c.model_copy(deep=True)
            for c in self._citizens.values()
            if (role is None or c.role == role)
            and (group_id is None or c.current_group_id == group_id)
        ]

    async def adjust_given_count(self, citizen_id: str, delta: int) -> int:
        citizen = self._require_citizen(citizen_id)
        count = max(0, citizen.verifications_given_count + delta)
        self._citizens[citizen_id] = citizen.model_copy(
            update={"verifications_given_count": count},
        )
        return count

    async def add_emitted(self, citizen_id: str, amount: Decimal) -> Decimal:
        citizen = self._require_citizen(citizen_id)
        total = citizen.total_emitted + amount
        self._citizens[citizen_id] = citizen.model_copy(update={"total_emitted": total})
        return total

    def _require_citizen(self, citizen_id: str) -> Citizen:
        citizen = self._citizens.get(citizen_id)
        if citizen is None:
            raise NotFoundError(f"Citizen {citizen_id} not found")
        return citizen

    # ─── Verification Edges ─────────────────────────────────────────

    async def add_edge(self, edge: VerificationEdge) -> None:
        pair = (edge.verifier_id, edge.verified_id)
        if pair in self._edge_pairs:
            raise DuplicateEdgeError(
                f"Edge {edge.verifier_id} -> {edge.verified_id} already exists"
            )
        self._edges[edge.id] = edge.model_copy(deep=True)
        self._edge_pairs[pair] = edge.id

    async def save_edge(self, edge: VerificationEdge) -> None:
        if edge.id not in self._edges:
            raise NotFoundError(f"Verification edge {edge.id} not found")
        self._edges[edge.id] = edge.model_copy(deep=True)

    async def get_edge(self, edge_id: str) -> VerificationEdge | None:
        edge = self._edges.get(edge_id)
        return edge.model_copy(deep=True) if edge else None

    async def find_edge(self, verifier_id: str, verified_id: str) -> VerificationEdge | None:
        edge_id = self._edge_pairs.get((verifier_id, verified_id))
        return await self.get_edge(edge_id) if edge_id else None

    async def edges_from(self, verifier_id: str, active_only: bool = True) -> list[VerificationEdge]:
        return self._select_edges(
            lambda e: e.verifier_id == verifier_id and (e.is_active or not active_only)
        )

    async def edges_to(self, verified_id: str, active_only: bool = True) -> list[VerificationEdge]:
        return self._select_edges(
            lambda e: e.verified_id == verified_id and (e.is_active or not active_only)
        )

    def _select_edges(
        self, predicate: Callable[[VerificationEdge], bool],
    ) -> list[VerificationEdge]:
        # Insertion order is creation order
        return [e.model_copy(deep=True) for e in self._edges.values() if predicate(e)]

    # ─── Upgrade Requests ───────────────────────────────────────────

    async def add_request(self, request: VerificationRequest) -> None:
        self._requests[request.id] = request.model_copy(deep=True)

    async def save_request(self, request: VerificationRequest) -> None:
        if request.id not in self._requests:
            raise NotFoundError(f"Verification request {request.id} not found")
        self._requests[request.id] = request.model_copy(deep=True)

    async def get_request(self, request_id: str) -> VerificationRequest | None:
        request = self._requests.get(request_id)
        return request.model_copy(deep=True) if request else None

    async def list_requests(
        self, status: RequestStatus | None = None, requester_id: str | None = None,
    ) -> list[VerificationRequest]:
        requests = [
            r.model_copy(deep=True)
            for r in self._requests.values()
            if (status is None or r.status == status)
            and (requester_id is None or r.requester_id == requester_id)
        ]
        return requests

    # ─── Group Mutual Verifications ─────────────────────────────────

    async def add_group_edge(self, edge: GroupMutualVerification) -> None:
        triple = (edge.group_id, edge.verifier_id, edge.verified_id)
        if triple in self._group_triples:
            raise DuplicateEdgeError(
                f"Group {edge.group_id} edge {edge.verifier_id} -> "
                f"{edge.verified_id} already exists"
            )
        self._group_edges[edge.id] = edge.model_copy(deep=True)
        self._group_triples[triple] = edge.id

    async def save_group_edge(self, edge: GroupMutualVerification) -> None:
        if edge.id not in self._group_edges:
            raise NotFoundError(f"Group verification {edge.id} not found")
        self._group_edges[edge.id] = edge.model_copy(deep=True)

    async def find_group_edge(
        self, group_id: str, verifier_id: str, verified_id: str,
    ) -> GroupMutualVerification | None:
        edge_id = self._group_triples.get((group_id, verifier_id, verified_id))
        if edge_id is None:
            return None
        return self._group_edges[edge_id].model_copy(deep=True)

    async def group_edges(
        self, group_id: str, active_only: bool = True,
    ) -> list[GroupMutualVerification]:
        edges = [
            e.model_copy(deep=True)
            for e in self._group_edges.values()
            if e.group_id == group_id and (e.is_verified or not active_only)
        ]
        return edges

    # ─── Stats ──────────────────────────────────────────────────────

    @property
    def stats(self) -> dict[str, int]:
        return {
            "citizens": len(self._citizens),
            "edges": len(self._edges),
            "active_edges": sum(1 for e in self._edges.values() if e.is_active),
            "requests": len(self._requests),
            "group_edges": len(self._group_edges),
        }
