"""
Bridge Types

Core data structures for the bridge orchestrator.

Defines:
  - LedgerId / Direction for the two ledgers and the two bridge directions
  - BridgeState, the orchestrator's state machine states
  - ObjectRef / AssetHandle for the object-model ledger
  - OperationHandle / Confirmation / LedgerOperation for a single ledger leg
  - BridgeRequest, the durable record of one user intent
  - BridgeOutcome, the immutable terminal record used for reconciliation
  - ReconciliationEntry, the operator's append-only audit trail

All magnitudes are Python ints in the owning ledger's smallest unit and are
serialized as decimal strings; nothing here ever passes through float.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..exceptions import InvalidAmount, InvalidDirection


# ══════════════════════════════════════════════════════════════════════
#  LEDGERS & DIRECTIONS
# ══════════════════════════════════════════════════════════════════════

class LedgerId(str, Enum):
    """The two ledgers the bridge relays between."""
    ETHEREUM = "ethereum"   # ledger A: account/balance model
    SUI      = "sui"        # ledger B: object-with-version model


LEDGER_NAMES: Dict[LedgerId, str] = {
    LedgerId.ETHEREUM: "Ethereum",
    LedgerId.SUI: "Sui",
}


_DIRECTION_ALIASES = {
    "eth-to-sui": "eth-to-sui",
    "a-to-b": "eth-to-sui",
    "sui-to-eth": "sui-to-eth",
    "b-to-a": "sui-to-eth",
}


class Direction(str, Enum):
    """Bridge direction; source ledger first."""
    ETH_TO_SUI = "eth-to-sui"
    SUI_TO_ETH = "sui-to-eth"

    @property
    def source(self) -> LedgerId:
        return LedgerId.ETHEREUM if self is Direction.ETH_TO_SUI else LedgerId.SUI

    @property
    def destination(self) -> LedgerId:
        return LedgerId.SUI if self is Direction.ETH_TO_SUI else LedgerId.ETHEREUM

    @classmethod
    def parse(cls, value: Any) -> "Direction":
        """Accepts the wire values and the A-to-B / B-to-A aliases."""
        if isinstance(value, Direction):
            return value
        if not isinstance(value, str):
            raise InvalidDirection(f"Invalid bridge direction: {value!r}")
        canonical = _DIRECTION_ALIASES.get(value.strip().lower())
        if canonical is None:
            raise InvalidDirection(f"Invalid bridge direction: {value!r}")
        return cls(canonical)


# ══════════════════════════════════════════════════════════════════════
#  STATE MACHINE
# ══════════════════════════════════════════════════════════════════════

class BridgeState(str, Enum):
    """Orchestrator states for a single BridgeRequest."""
    VALIDATED                     = "VALIDATED"
    SOURCE_SUBMITTED              = "SOURCE_SUBMITTED"
    SOURCE_CONFIRMED              = "SOURCE_CONFIRMED"
    DESTINATION_SUBMITTED         = "DESTINATION_SUBMITTED"
    COMPLETED                     = "COMPLETED"
    FAILED_VALIDATION             = "FAILED_VALIDATION"
    FAILED_SOURCE                 = "FAILED_SOURCE"
    FAILED_AFTER_SOURCE_CONFIRMED = "FAILED_AFTER_SOURCE_CONFIRMED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({
    BridgeState.COMPLETED,
    BridgeState.FAILED_VALIDATION,
    BridgeState.FAILED_SOURCE,
    BridgeState.FAILED_AFTER_SOURCE_CONFIRMED,
})


class OperationKind(str, Enum):
    BURN    = "burn"
    MINT    = "mint"
    RELEASE = "release"
    LOCK    = "lock"


class ConfirmationStatus(str, Enum):
    PENDING   = "pending"
    CONFIRMED = "confirmed"
    FAILED    = "failed"
    TIMED_OUT = "timed-out"


class OutcomeStatus(str, Enum):
    """Terminal status of a BridgeOutcome."""
    COMPLETED                     = "completed"
    FAILED_VALIDATION             = "failed-validation"
    FAILED_SOURCE                 = "failed-source"
    FAILED_AFTER_SOURCE_CONFIRMED = "failed-destination-after-source-confirmed"
    TIMED_OUT                     = "timed-out"

    @property
    def needs_reconciliation(self) -> bool:
        return self in (OutcomeStatus.FAILED_AFTER_SOURCE_CONFIRMED, OutcomeStatus.TIMED_OUT)

    @property
    def terminal_state(self) -> BridgeState:
        """The request state an outcome of this status leaves behind."""
        return _OUTCOME_TO_STATE[self]


_OUTCOME_TO_STATE = {
    OutcomeStatus.COMPLETED: BridgeState.COMPLETED,
    OutcomeStatus.FAILED_VALIDATION: BridgeState.FAILED_VALIDATION,
    OutcomeStatus.FAILED_SOURCE: BridgeState.FAILED_SOURCE,
    OutcomeStatus.FAILED_AFTER_SOURCE_CONFIRMED: BridgeState.FAILED_AFTER_SOURCE_CONFIRMED,
    # Source status unknown after the maximum wait: value may have left the
    # source ledger, so it is owned by the reconciliation path.
    OutcomeStatus.TIMED_OUT: BridgeState.FAILED_AFTER_SOURCE_CONFIRMED,
}


class Resolution(str, Enum):
    """How an operator closed a reconciliation case."""
    CREDITED    = "credited"
    REFUNDED    = "refunded"
    WRITTEN_OFF = "written-off"
    NO_ACTION   = "no-action"


# ══════════════════════════════════════════════════════════════════════
#  OBJECT-MODEL REFERENCES
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ObjectRef:
    """
    Reference to a versioned object on the object-model ledger.

    Valid only at the instant it was fetched: a concurrent write bumps the
    version and any submission built from this ref may be rejected.

    Attributes:
        object_id: 0x-prefixed object id
        version: Sequence number at fetch time
        digest: Object digest at fetch time
        fetched_at: time.monotonic() at fetch
    """
    object_id: str
    version: int
    digest: str = ""
    fetched_at: float = field(default_factory=time.monotonic, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "object_id": self.object_id,
            "version": self.version,
            "digest": self.digest,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ObjectRef":
        return cls(
            object_id=d["object_id"],
            version=int(d["version"]),
            digest=d.get("digest", ""),
        )


@dataclass(frozen=True)
class AssetHandle:
    """A specific fungible unit owned by an account (a coin object on Sui)."""
    asset_id: str
    asset_type: str
    balance: int
    version: Optional[int] = None


# ══════════════════════════════════════════════════════════════════════
#  LEDGER OPERATIONS
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class OperationHandle:
    """Handle of a submitted ledger operation (tx hash / digest)."""
    ledger: LedgerId
    kind: OperationKind
    tx_handle: str
    counterparty: str = ""
    submitted_at: float = field(default_factory=time.time, compare=False)


@dataclass(frozen=True)
class Confirmation:
    """
    Result of waiting on an OperationHandle.

    Attributes:
        handle: The awaited operation
        status: CONFIRMED, FAILED, or TIMED_OUT (never PENDING)
        error: Ledger-reported error string for FAILED
        amount: Amount the ledger reports moved for the counterparty, if any
        checkpoint: Block number / checkpoint of inclusion
    """
    handle: OperationHandle
    status: ConfirmationStatus
    error: str = ""
    amount: Optional[int] = None
    checkpoint: Optional[int] = None

    @property
    def is_confirmed(self) -> bool:
        return self.status == ConfirmationStatus.CONFIRMED


@dataclass
class LedgerOperation:
    """
    One leg of a bridge: burn/lock on the source or mint/release on the
    destination.
    """
    kind: OperationKind
    ledger: LedgerId
    amount: int
    counterparty: str
    tx_handle: Optional[str] = None
    status: ConfirmationStatus = ConfirmationStatus.PENDING
    object_refs: Tuple[ObjectRef, ...] = ()
    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "ledger": self.ledger.value,
            "amount": str(self.amount),
            "counterparty": self.counterparty,
            "tx_handle": self.tx_handle,
            "status": self.status.value,
            "object_refs": [r.to_dict() for r in self.object_refs],
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "LedgerOperation":
        return cls(
            kind=OperationKind(d["kind"]),
            ledger=LedgerId(d["ledger"]),
            amount=int(d["amount"]),
            counterparty=d["counterparty"],
            tx_handle=d.get("tx_handle"),
            status=ConfirmationStatus(d.get("status", "pending")),
            object_refs=tuple(ObjectRef.from_dict(r) for r in d.get("object_refs", [])),
            error=d.get("error", ""),
        )


# ══════════════════════════════════════════════════════════════════════
#  BRIDGE REQUEST
# ══════════════════════════════════════════════════════════════════════

@dataclass
class BridgeRequest:
    """
    A single user intent: move ``amount`` from ``source_account`` on the
    direction's source ledger to ``dest_account`` on its destination.

    Attributes:
        request_id: Idempotency key (caller-supplied or generated)
        direction: Direction of the transfer
        amount: Requested amount in the source ledger's smallest unit
        source_account: Account debited on the source ledger
        dest_account: Account credited on the destination ledger
        status: Current orchestrator state
        created_at: Creation timestamp (unix seconds)
        updated_at: Last state transition (unix seconds)
        source_handle: Source tx handle once submitted
        dest_handle: Destination tx handle once submitted
    """
    request_id: str
    direction: Direction
    amount: int
    source_account: str
    dest_account: str
    status: BridgeState = BridgeState.VALIDATED
    created_at: float = 0.0
    updated_at: float = 0.0
    source_handle: Optional[str] = None
    dest_handle: Optional[str] = None

    def __post_init__(self):
        # bool is an int subclass; floats are never accepted as magnitudes
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise InvalidAmount(
                f"amount must be an integer in smallest units, got {type(self.amount).__name__}"
            )
        self.direction = Direction.parse(self.direction)
        if not self.created_at:
            self.created_at = time.time()
        if not self.updated_at:
            self.updated_at = self.created_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "direction": self.direction.value,
            "amount": str(self.amount),
            "source_account": self.source_account,
            "dest_account": self.dest_account,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "source_handle": self.source_handle,
            "dest_handle": self.dest_handle,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "BridgeRequest":
        return cls(
            request_id=d["request_id"],
            direction=Direction(d["direction"]),
            amount=int(d["amount"]),
            source_account=d["source_account"],
            dest_account=d["dest_account"],
            status=BridgeState(d.get("status", BridgeState.VALIDATED.value)),
            created_at=d.get("created_at", 0.0),
            updated_at=d.get("updated_at", 0.0),
            source_handle=d.get("source_handle"),
            dest_handle=d.get("dest_handle"),
        )


# ══════════════════════════════════════════════════════════════════════
#  BRIDGE OUTCOME
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class BridgeOutcome:
    """
    Terminal record of a BridgeRequest. Immutable once written; the single
    source of truth for reconciliation.

    Attributes:
        request_id: Idempotency key of the request
        status: Terminal outcome status
        source_operation: Source leg (absent only for validation failures)
        destination_operation: Destination leg, if one was attempted
        detail: Free-form diagnostic detail
        error_kind: Exception taxonomy kind for failures
        recorded_at: When the outcome was recorded (unix seconds)
    """
    request_id: str
    status: OutcomeStatus
    source_operation: Optional[LedgerOperation] = None
    destination_operation: Optional[LedgerOperation] = None
    detail: str = ""
    error_kind: Optional[str] = None
    recorded_at: float = field(default_factory=time.time)

    @property
    def is_success(self) -> bool:
        return self.status == OutcomeStatus.COMPLETED

    @property
    def needs_reconciliation(self) -> bool:
        return self.status.needs_reconciliation

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "status": self.status.value,
            "source_operation": self.source_operation.to_dict() if self.source_operation else None,
            "destination_operation": (
                self.destination_operation.to_dict() if self.destination_operation else None
            ),
            "detail": self.detail,
            "error_kind": self.error_kind,
            "recorded_at": self.recorded_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "BridgeOutcome":
        src = d.get("source_operation")
        dst = d.get("destination_operation")
        return cls(
            request_id=d["request_id"],
            status=OutcomeStatus(d["status"]),
            source_operation=LedgerOperation.from_dict(src) if src else None,
            destination_operation=LedgerOperation.from_dict(dst) if dst else None,
            detail=d.get("detail", ""),
            error_kind=d.get("error_kind"),
            recorded_at=d.get("recorded_at", 0.0),
        )


@dataclass(frozen=True)
class ReconciliationEntry:
    """Operator action taken on an outcome that needed reconciliation."""
    request_id: str
    operator: str
    resolution: Resolution
    note: str = ""
    recorded_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "operator": self.operator,
            "resolution": self.resolution.value,
            "note": self.note,
            "recorded_at": self.recorded_at,
        }
