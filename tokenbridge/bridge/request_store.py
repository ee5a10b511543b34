"""
Request Ledger: SQLite Persistence

aiosqlite-backed ``RequestLedger`` so bridge requests and, above all,
outcomes needing reconciliation survive process restarts.

Schema:
    bridge_requests: one row per idempotency key, current state and handles.
    bridge_outcomes: write-once terminal record (key is the primary key).
    bridge_reconciliations: append-only operator audit trail.

Amounts are stored as TEXT: 18-decimal magnitudes overflow SQLite INTEGER.

Usage:
    ledger = await SQLiteRequestLedger.create("data/bridge.db")
    orchestrator = BridgeOrchestrator(eth, sui, ledger, settings)
"""

import asyncio
import json
import os
import time
from typing import List, Optional

import aiosqlite

from .types import (
    BridgeOutcome,
    BridgeRequest,
    BridgeState,
    OutcomeStatus,
    ReconciliationEntry,
    Resolution,
)
from ..exceptions import OutcomeAlreadyRecorded, RequestAlreadyExists
from ..logger import get_logger

logger = get_logger(__name__)

# ── SQL DDL ─────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS bridge_requests (
    request_id      TEXT PRIMARY KEY,
    direction       TEXT NOT NULL,
    amount          TEXT NOT NULL,
    source_account  TEXT NOT NULL,
    dest_account    TEXT NOT NULL,
    status          TEXT NOT NULL,
    created_at      REAL NOT NULL,
    updated_at      REAL NOT NULL,
    source_handle   TEXT,
    dest_handle     TEXT
);

CREATE TABLE IF NOT EXISTS bridge_outcomes (
    request_id      TEXT PRIMARY KEY,
    status          TEXT NOT NULL,
    error_kind      TEXT,
    recorded_at     REAL NOT NULL,
    content         TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS bridge_reconciliations (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    request_id      TEXT NOT NULL,
    operator        TEXT NOT NULL,
    resolution      TEXT NOT NULL,
    note            TEXT NOT NULL DEFAULT '',
    recorded_at     REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_bridge_requests_status ON bridge_requests(status);
CREATE INDEX IF NOT EXISTS idx_bridge_outcomes_status ON bridge_outcomes(status);
CREATE INDEX IF NOT EXISTS idx_bridge_reconciliations_request ON bridge_reconciliations(request_id);
"""

_INSERT_REQUEST = """
INSERT INTO bridge_requests (
    request_id, direction, amount, source_account, dest_account,
    status, created_at, updated_at, source_handle, dest_handle
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

_UPDATE_REQUEST = """
UPDATE bridge_requests SET
    status        = ?,
    updated_at    = ?,
    source_handle = COALESCE(?, source_handle),
    dest_handle   = COALESCE(?, dest_handle)
WHERE request_id = ?
"""

_INSERT_OUTCOME = """
INSERT INTO bridge_outcomes (request_id, status, error_kind, recorded_at, content)
VALUES (?, ?, ?, ?, ?)
"""

_INSERT_RECONCILIATION = """
INSERT INTO bridge_reconciliations (request_id, operator, resolution, note, recorded_at)
VALUES (?, ?, ?, ?, ?)
"""

_SELECT_UNRESOLVED = """
SELECT o.content FROM bridge_outcomes o
WHERE o.status IN (?, ?)
  AND NOT EXISTS (
      SELECT 1 FROM bridge_reconciliations r WHERE r.request_id = o.request_id
  )
ORDER BY o.recorded_at
"""

_SELECT_INCOMPLETE = """
SELECT r.* FROM bridge_requests r
LEFT JOIN bridge_outcomes o ON o.request_id = r.request_id
WHERE o.request_id IS NULL
ORDER BY r.created_at
"""


def _row_to_request(row) -> BridgeRequest:
    return BridgeRequest.from_dict(dict(row))


class SQLiteRequestLedger:
    """SQLite-backed RequestLedger (WAL mode, single connection)."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.connection: Optional[aiosqlite.Connection] = None
        # One connection: writes from concurrent requests must not interleave
        # inside each other's transaction.
        self._write_lock = asyncio.Lock()

    @staticmethod
    async def create(db_path: str) -> "SQLiteRequestLedger":
        """Open (creating if needed) the database at ``db_path``."""
        self = SQLiteRequestLedger(db_path)

        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        self.connection = await aiosqlite.connect(db_path)
        self.connection.row_factory = aiosqlite.Row

        await self.connection.execute("PRAGMA journal_mode=WAL")
        # Outcomes are the reconciliation record: fsync on every commit
        await self.connection.execute("PRAGMA synchronous=FULL")

        await self.connection.executescript(_SCHEMA)
        await self.connection.commit()

        logger.info(f"Request ledger initialized: {db_path}")
        return self

    async def close(self) -> None:
        if self.connection is not None:
            await self.connection.close()
            self.connection = None

    # ── Requests ────────────────────────────────────────────────────

    async def create_request(self, request: BridgeRequest) -> None:
        d = request.to_dict()
        async with self._write_lock:
            try:
                await self.connection.execute(
                    _INSERT_REQUEST,
                    (
                        d["request_id"], d["direction"], d["amount"], d["source_account"],
                        d["dest_account"], d["status"], d["created_at"], d["updated_at"],
                        d["source_handle"], d["dest_handle"],
                    ),
                )
                await self.connection.commit()
            except aiosqlite.IntegrityError as e:
                await self.connection.rollback()
                raise RequestAlreadyExists(f"Request {request.request_id} already exists") from e

    async def get_request(self, request_id: str) -> Optional[BridgeRequest]:
        async with self.connection.execute(
            "SELECT * FROM bridge_requests WHERE request_id = ?", (request_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_request(row) if row else None

    async def update_request(
        self,
        request_id: str,
        status: BridgeState,
        source_handle: Optional[str] = None,
        dest_handle: Optional[str] = None,
    ) -> None:
        async with self._write_lock:
            cursor = await self.connection.execute(
                _UPDATE_REQUEST,
                (BridgeState(status).value, time.time(), source_handle, dest_handle, request_id),
            )
            await self.connection.commit()
        if cursor.rowcount == 0:
            raise KeyError(request_id)

    async def list_requests(self, status: Optional[BridgeState] = None) -> List[BridgeRequest]:
        if status is None:
            query, params = "SELECT * FROM bridge_requests ORDER BY created_at", ()
        else:
            query = "SELECT * FROM bridge_requests WHERE status = ? ORDER BY created_at"
            params = (BridgeState(status).value,)
        async with self.connection.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_request(row) for row in rows]

    async def list_incomplete(self) -> List[BridgeRequest]:
        async with self.connection.execute(_SELECT_INCOMPLETE) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_request(row) for row in rows]

    # ── Outcomes ────────────────────────────────────────────────────

    async def record_outcome(self, outcome: BridgeOutcome) -> None:
        """Outcome insert and request status update commit together."""
        async with self._write_lock:
            try:
                await self.connection.execute(
                    _INSERT_OUTCOME,
                    (
                        outcome.request_id,
                        outcome.status.value,
                        outcome.error_kind,
                        outcome.recorded_at,
                        json.dumps(outcome.to_dict()),
                    ),
                )
                await self.connection.execute(
                    "UPDATE bridge_requests SET status = ?, updated_at = ? WHERE request_id = ?",
                    (outcome.status.terminal_state.value, outcome.recorded_at, outcome.request_id),
                )
                await self.connection.commit()
            except aiosqlite.IntegrityError as e:
                await self.connection.rollback()
                raise OutcomeAlreadyRecorded(
                    f"Outcome for {outcome.request_id} already recorded"
                ) from e
            except Exception:
                await self.connection.rollback()
                raise

    async def get_outcome(self, request_id: str) -> Optional[BridgeOutcome]:
        async with self.connection.execute(
            "SELECT content FROM bridge_outcomes WHERE request_id = ?", (request_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return BridgeOutcome.from_dict(json.loads(row["content"])) if row else None

    async def list_unresolved(self) -> List[BridgeOutcome]:
        async with self.connection.execute(
            _SELECT_UNRESOLVED,
            (OutcomeStatus.FAILED_AFTER_SOURCE_CONFIRMED.value, OutcomeStatus.TIMED_OUT.value),
        ) as cursor:
            rows = await cursor.fetchall()
        return [BridgeOutcome.from_dict(json.loads(row["content"])) for row in rows]

    # ── Reconciliation ──────────────────────────────────────────────

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
        async with self._write_lock:
            await self.connection.execute(
                _INSERT_RECONCILIATION,
                (entry.request_id, entry.operator, entry.resolution.value, entry.note, entry.recorded_at),
            )
            await self.connection.commit()
        return entry

    async def get_reconciliations(self, request_id: str) -> List[ReconciliationEntry]:
        async with self.connection.execute(
            "SELECT * FROM bridge_reconciliations WHERE request_id = ? ORDER BY id",
            (request_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            ReconciliationEntry(
                request_id=row["request_id"],
                operator=row["operator"],
                resolution=Resolution(row["resolution"]),
                note=row["note"],
                recorded_at=row["recorded_at"],
            )
            for row in rows
        ]
