"""
Request Ledger

Durable record of every bridge request, its terminal outcome, and any
operator reconciliation performed on it.

Outcomes are write-once. An outcome that needs reconciliation stays
"unresolved" until an operator appends a ReconciliationEntry; the outcome
itself is never mutated.

Implementations:
  - InMemoryRequestLedger: tests and embedding (this module)
  - SQLiteRequestLedger: production persistence (``request_store``)
"""

import asyncio
import time
from dataclasses import replace
from typing import Dict, List, Optional, Protocol, runtime_checkable

from .types import (
    BridgeOutcome,
    BridgeRequest,
    BridgeState,
    ReconciliationEntry,
    Resolution,
)
from ..exceptions import OutcomeAlreadyRecorded, RequestAlreadyExists, ValidationError
from ..logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class RequestLedger(Protocol):
    """Persistence backend for bridge requests and outcomes."""

    async def create_request(self, request: BridgeRequest) -> None:
        """Insert a new request. Raises RequestAlreadyExists on a taken key."""
        ...

    async def get_request(self, request_id: str) -> Optional[BridgeRequest]:
        ...

    async def update_request(
        self,
        request_id: str,
        status: BridgeState,
        source_handle: Optional[str] = None,
        dest_handle: Optional[str] = None,
    ) -> None:
        """Move a request to ``status``; handles are only ever set, never cleared."""
        ...

    async def record_outcome(self, outcome: BridgeOutcome) -> None:
        """
        Durably write the terminal outcome and move the request to the
        matching terminal state, atomically. Returns only once persisted.

        Raises:
            OutcomeAlreadyRecorded: an outcome exists for this key
        """
        ...

    async def get_outcome(self, request_id: str) -> Optional[BridgeOutcome]:
        ...

    async def list_requests(self, status: Optional[BridgeState] = None) -> List[BridgeRequest]:
        ...

    async def list_unresolved(self) -> List[BridgeOutcome]:
        """Outcomes needing reconciliation that no operator has closed yet."""
        ...

    async def list_incomplete(self) -> List[BridgeRequest]:
        """Requests with no outcome (in flight, or abandoned by a crash)."""
        ...

    async def record_reconciliation(
        self,
        request_id: str,
        operator: str,
        resolution: Resolution,
        note: str = "",
    ) -> ReconciliationEntry:
        ...

    async def get_reconciliations(self, request_id: str) -> List[ReconciliationEntry]:
        ...

    async def close(self) -> None:
        ...


class InMemoryRequestLedger:
    """
    In-memory RequestLedger. Nothing survives the process; use
    SQLiteRequestLedger for anything that must.
    """

    def __init__(self):
        self._requests: Dict[str, BridgeRequest] = {}
        self._outcomes: Dict[str, BridgeOutcome] = {}
        self._reconciliations: Dict[str, List[ReconciliationEntry]] = {}
        self._lock = asyncio.Lock()

    async def create_request(self, request: BridgeRequest) -> None:
        async with self._lock:
            if request.request_id in self._requests:
                raise RequestAlreadyExists(f"Request {request.request_id} already exists")
            self._requests[request.request_id] = replace(request)

    async def get_request(self, request_id: str) -> Optional[BridgeRequest]:
        request = self._requests.get(request_id)
        return replace(request) if request else None

    async def update_request(
        self,
        request_id: str,
        status: BridgeState,
        source_handle: Optional[str] = None,
        dest_handle: Optional[str] = None,
    ) -> None:
        async with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                raise KeyError(request_id)
            request.status = status
            request.updated_at = time.time()
            if source_handle is not None:
                request.source_handle = source_handle
            if dest_handle is not None:
                request.dest_handle = dest_handle

    async def record_outcome(self, outcome: BridgeOutcome) -> None:
        async with self._lock:
            if outcome.request_id in self._outcomes:
                raise OutcomeAlreadyRecorded(f"Outcome for {outcome.request_id} already recorded")
            self._outcomes[outcome.request_id] = outcome
            request = self._requests.get(outcome.request_id)
            if request is not None:
                request.status = outcome.status.terminal_state
                request.updated_at = outcome.recorded_at

    async def get_outcome(self, request_id: str) -> Optional[BridgeOutcome]:
        return self._outcomes.get(request_id)

    async def list_requests(self, status: Optional[BridgeState] = None) -> List[BridgeRequest]:
        requests = sorted(self._requests.values(), key=lambda r: r.created_at)
        return [replace(r) for r in requests if status is None or r.status == status]

    async def list_unresolved(self) -> List[BridgeOutcome]:
        unresolved = [
            o for o in self._outcomes.values()
            if o.needs_reconciliation and not self._reconciliations.get(o.request_id)
        ]
        return sorted(unresolved, key=lambda o: o.recorded_at)

    async def list_incomplete(self) -> List[BridgeRequest]:
        return [r for r in await self.list_requests() if r.request_id not in self._outcomes]

    async def record_reconciliation(
        self,
        request_id: str,
        operator: str,
        resolution: Resolution,
        note: str = "",
    ) -> ReconciliationEntry:
        entry = ReconciliationEntry(
            request_id=request_id,
            operator=operator,
            resolution=Resolution(resolution),
            note=note,
        )
        async with self._lock:
            self._reconciliations.setdefault(request_id, []).append(entry)
        return entry

    async def get_reconciliations(self, request_id: str) -> List[ReconciliationEntry]:
        return list(self._reconciliations.get(request_id, []))

    async def close(self) -> None:
        pass


async def reconcile_outcome(
    ledger: RequestLedger,
    request_id: str,
    operator: str,
    resolution: Resolution,
    note: str = "",
) -> ReconciliationEntry:
    """
    Record an operator's resolution of an outcome awaiting reconciliation.

    Raises:
        ValidationError: no such outcome, or it never needed reconciliation
    """
    if not operator or not operator.strip():
        raise ValidationError("operator name is required")
    outcome = await ledger.get_outcome(request_id)
    if outcome is None or not outcome.needs_reconciliation:
        raise ValidationError(f"No outcome awaiting reconciliation for {request_id}")
    entry = await ledger.record_reconciliation(request_id, operator.strip(), Resolution(resolution), note)
    logger.info(f"[bridge] {request_id} reconciled as {entry.resolution.value} by {entry.operator}")
    return entry
