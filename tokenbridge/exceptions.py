"""
tokenbridge Exceptions

Tagged exception taxonomy for the bridge. Callers and the operator
recovery path branch on ``kind`` rather than on message text; ``retryable``
tells a caller whether the same intent may be resubmitted.
"""

from typing import Any, Optional


class BridgeError(Exception):
    """Base exception for the bridge."""
    kind = "BridgeError"
    retryable = False


# ── Caller-facing taxonomy ──────────────────────────────────────────

class ValidationError(BridgeError):
    """Bad input. No side effect; safe to retry after correction."""
    kind = "ValidationError"
    retryable = True


class InvalidAmount(ValidationError):
    """Amount is not a positive integer or cannot be represented."""
    pass


class InvalidAddress(ValidationError):
    """Account reference fails the target ledger's address format."""
    pass


class InvalidDirection(ValidationError):
    """Direction is not one of the recognized values."""
    pass


class SourceRejected(BridgeError):
    """No value left the source ledger; retry with a new request id."""
    kind = "SourceRejected"
    retryable = True


class SourceTimeout(BridgeError):
    """Source operation status unknown. Poll, never resubmit."""
    kind = "SourceTimeout"


class DestinationRejected(BridgeError):
    """Value left the source ledger but the destination operation failed."""
    kind = "DestinationRejected"


class ObjectStale(BridgeError):
    """An authority object reference was invalidated by a concurrent write."""
    kind = "ObjectStale"
    retryable = True


class ObjectNotFound(BridgeError):
    """The ledger reports no such object."""
    kind = "ObjectNotFound"


class LedgerUnavailable(BridgeError):
    """
    Transport-level failure talking to a ledger node.

    ``handle`` is set when the failure happened after a signed operation
    was built, i.e. the operation may or may not have reached the ledger.
    """
    kind = "LedgerUnavailable"
    retryable = True

    def __init__(self, message: str, handle: Optional[Any] = None):
        super().__init__(message)
        self.handle = handle


# ── Internal ────────────────────────────────────────────────────────

class RpcError(BridgeError):
    """JSON-RPC error object returned by a ledger node."""
    kind = "RpcError"

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.rpc_message = message
        self.data = data


class RequestInProgress(BridgeError):
    """A request with the same idempotency key has no outcome yet."""
    kind = "RequestInProgress"
    retryable = True


class RequestAlreadyExists(BridgeError):
    """Idempotency key already present in the request ledger."""
    kind = "RequestAlreadyExists"


class OutcomeAlreadyRecorded(BridgeError):
    """Outcomes are write-once."""
    kind = "OutcomeAlreadyRecorded"


class ConfigurationError(BridgeError):
    """Configuration error."""
    kind = "ConfigurationError"
