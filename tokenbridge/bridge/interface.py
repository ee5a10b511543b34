"""
Request / Response Shaping

The seam an HTTP layer (or the operator CLI) calls into. Translates the
wire request object into a BridgeRequest and outcomes or errors back into
wire responses whose ``errorKind`` comes from the exception taxonomy.

Request:
    {"direction": "eth-to-sui" | "sui-to-eth" | "A-to-B" | "B-to-A",
     "amount": "<positive integer string>",
     "sourceAccount": "...", "destAccount": "...",
     "idempotencyKey": "..."}            # optional

Success:
    {"success": true, "sourceTxHandle": "...", "destTxHandle": "...", "requestId": "..."}

Failure:
    {"success": false, "errorKind": "...", "message": "...", "requestId": "...", "status": "..."}
"""

import uuid
from typing import Any, Callable, Dict, Optional

from .amounts import parse_amount
from .orchestrator import BridgeOrchestrator
from .types import BridgeOutcome, BridgeRequest, Direction
from ..exceptions import BridgeError, ValidationError
from ..logger import get_logger

logger = get_logger(__name__)

_REQUIRED_FIELDS = ("direction", "amount", "sourceAccount", "destAccount")


def _generate_key() -> str:
    return uuid.uuid4().hex


def parse_bridge_request(
    payload: Any,
    idempotency_key_factory: Callable[[], str] = _generate_key,
) -> BridgeRequest:
    """
    Build a BridgeRequest from the wire object.

    Raises:
        ValidationError: missing or ill-typed fields (or a subclass for
            a bad direction / amount)
    """
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")

    missing = [name for name in _REQUIRED_FIELDS if payload.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"missing required field(s): {', '.join(missing)}")

    for name in ("sourceAccount", "destAccount"):
        if not isinstance(payload[name], str):
            raise ValidationError(f"{name} must be a string")

    key = payload.get("idempotencyKey")
    if key is None:
        key = idempotency_key_factory()
    elif not isinstance(key, str) or not key.strip():
        raise ValidationError("idempotencyKey must be a non-empty string")

    return BridgeRequest(
        request_id=key.strip(),
        direction=Direction.parse(payload["direction"]),
        amount=parse_amount(payload["amount"]),
        source_account=payload["sourceAccount"].strip(),
        dest_account=payload["destAccount"].strip(),
    )


def outcome_to_response(outcome: BridgeOutcome) -> Dict[str, Any]:
    if outcome.is_success:
        return {
            "success": True,
            "sourceTxHandle": outcome.source_operation.tx_handle,
            "destTxHandle": outcome.destination_operation.tx_handle,
            "requestId": outcome.request_id,
        }
    response = {
        "success": False,
        "errorKind": outcome.error_kind or "BridgeError",
        "message": outcome.detail,
        "requestId": outcome.request_id,
        "status": outcome.status.value,
    }
    if outcome.source_operation and outcome.source_operation.tx_handle:
        response["sourceTxHandle"] = outcome.source_operation.tx_handle
    if outcome.destination_operation and outcome.destination_operation.tx_handle:
        response["destTxHandle"] = outcome.destination_operation.tx_handle
    return response


def error_to_response(exc: BridgeError, request_id: Optional[str] = None) -> Dict[str, Any]:
    """Shape an error raised before any outcome existed."""
    response = {
        "success": False,
        "errorKind": exc.kind,
        "message": str(exc),
        "retryable": exc.retryable,
    }
    if request_id is not None:
        response["requestId"] = request_id
    return response


class BridgeService:
    """Parse, orchestrate, shape: one call per inbound request."""

    def __init__(
        self,
        orchestrator: BridgeOrchestrator,
        idempotency_key_factory: Callable[[], str] = _generate_key,
    ):
        self.orchestrator = orchestrator
        self.idempotency_key_factory = idempotency_key_factory

    async def handle(self, payload: Any) -> Dict[str, Any]:
        try:
            request = parse_bridge_request(payload, self.idempotency_key_factory)
        except BridgeError as e:
            logger.warning(f"Rejected bridge request: {e}")
            return error_to_response(e)

        try:
            outcome = await self.orchestrator.bridge(request)
        except BridgeError as e:
            logger.warning(f"[bridge] {request.request_id} not accepted: {e}")
            return error_to_response(e, request.request_id)

        return outcome_to_response(outcome)
