"""
tokenbridge Bridge Core

Provides:
  - types: Core data structures (Direction, BridgeRequest, BridgeOutcome, etc.)
  - amounts: Integer precision normalization
  - rpc: Async JSON-RPC transport
  - signing: Operator signers for both ledgers
  - resolver: Just-in-time object reference resolution
  - adapters: Ledger clients (Ethereum, Sui)
  - request_ledger / request_store: Durable request and outcome records
  - orchestrator: The bridge state machine
  - interface: Wire request/response shaping
"""

from .types import (
    AssetHandle,
    BridgeOutcome,
    BridgeRequest,
    BridgeState,
    Confirmation,
    ConfirmationStatus,
    Direction,
    LEDGER_NAMES,
    LedgerId,
    LedgerOperation,
    ObjectRef,
    OperationHandle,
    OperationKind,
    OutcomeStatus,
    ReconciliationEntry,
    Resolution,
)

from .amounts import (
    AmountQuantity,
    normalize,
    parse_amount,
    truncation_remainder,
)

from .rpc import JsonRpcClient

from .signing import (
    Ed25519SuiSigner,
    EvmSigner,
    LocalEvmSigner,
    SignedEvmTransaction,
    SuiSigner,
    sui_address_from_public_key,
    sui_transaction_digest,
)

from .resolver import ObjectStateResolver

from .adapters import (
    BaseLedgerClient,
    EthereumLedgerClient,
    SuiLedgerClient,
)

from .request_ledger import InMemoryRequestLedger, RequestLedger, reconcile_outcome
from .request_store import SQLiteRequestLedger

from .orchestrator import (
    BridgeOrchestrator,
    LegSettings,
    OrchestratorSettings,
)

from .interface import (
    BridgeService,
    error_to_response,
    outcome_to_response,
    parse_bridge_request,
)

__all__ = [
    # Types
    "AssetHandle",
    "BridgeOutcome",
    "BridgeRequest",
    "BridgeState",
    "Confirmation",
    "ConfirmationStatus",
    "Direction",
    "LEDGER_NAMES",
    "LedgerId",
    "LedgerOperation",
    "ObjectRef",
    "OperationHandle",
    "OperationKind",
    "OutcomeStatus",
    "ReconciliationEntry",
    "Resolution",
    # Amounts
    "AmountQuantity",
    "normalize",
    "parse_amount",
    "truncation_remainder",
    # Transport & signing
    "JsonRpcClient",
    "Ed25519SuiSigner",
    "EvmSigner",
    "LocalEvmSigner",
    "SignedEvmTransaction",
    "SuiSigner",
    "sui_address_from_public_key",
    "sui_transaction_digest",
    # Ledger clients
    "BaseLedgerClient",
    "EthereumLedgerClient",
    "ObjectStateResolver",
    "SuiLedgerClient",
    # Request ledger
    "InMemoryRequestLedger",
    "RequestLedger",
    "SQLiteRequestLedger",
    "reconcile_outcome",
    # Orchestration
    "BridgeOrchestrator",
    "LegSettings",
    "OrchestratorSettings",
    # Interface
    "BridgeService",
    "error_to_response",
    "outcome_to_response",
    "parse_bridge_request",
]
