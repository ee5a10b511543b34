"""
Bridge Orchestrator

Drives one BridgeRequest through the state machine

    VALIDATED -> SOURCE_SUBMITTED -> SOURCE_CONFIRMED
              -> DESTINATION_SUBMITTED -> COMPLETED

with the failure branches FAILED_VALIDATION, FAILED_SOURCE and
FAILED_AFTER_SOURCE_CONFIRMED.

Guarantees:
  - Nothing is sent to the destination unless the source leg confirmed.
  - A source leg whose status is unknown is re-polled, never resubmitted.
  - Every terminal outcome past validation is durably recorded in the
    request ledger before ``bridge()`` returns.
  - Once the source submission starts the request cannot be cancelled:
    the remainder runs shielded from caller cancellation.
  - Authority object refs are resolved immediately before each submission
    and re-resolved on staleness, up to ``stale_retry_limit`` times.

Each request is an independent coroutine; there is no lock across requests.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from .adapters import BaseLedgerClient
from .amounts import normalize, truncation_remainder
from .request_ledger import RequestLedger, reconcile_outcome
from .types import (
    AssetHandle,
    BridgeOutcome,
    BridgeRequest,
    BridgeState,
    Confirmation,
    ConfirmationStatus,
    LedgerId,
    LedgerOperation,
    ObjectRef,
    OperationHandle,
    OperationKind,
    OutcomeStatus,
    ReconciliationEntry,
    Resolution,
)
from ..constants import (
    ETH_CONFIRMATION_TIMEOUT,
    ETH_MAX_WAIT,
    STALE_RETRY_LIMIT,
    SUI_CONFIRMATION_TIMEOUT,
    SUI_MAX_WAIT,
)
from ..exceptions import (
    BridgeError,
    ConfigurationError,
    DestinationRejected,
    InvalidAddress,
    InvalidAmount,
    LedgerUnavailable,
    ObjectStale,
    RequestAlreadyExists,
    RequestInProgress,
    SourceRejected,
    SourceTimeout,
    ValidationError,
)
from ..logger import get_logger

logger = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════
#  SETTINGS
# ══════════════════════════════════════════════════════════════════════

@dataclass
class LegSettings:
    """
    Confirmation timing for one ledger.

    Attributes:
        confirmation_timeout: One poll window, in seconds
        max_wait: Total re-poll budget before the status is declared unknown
    """
    confirmation_timeout: float
    max_wait: float

    def __post_init__(self):
        if self.confirmation_timeout <= 0:
            raise ConfigurationError("confirmation_timeout must be positive")
        if self.max_wait < self.confirmation_timeout:
            raise ConfigurationError("max_wait must be >= confirmation_timeout")


@dataclass
class OrchestratorSettings:
    ethereum: LegSettings = field(
        default_factory=lambda: LegSettings(ETH_CONFIRMATION_TIMEOUT, ETH_MAX_WAIT)
    )
    sui: LegSettings = field(
        default_factory=lambda: LegSettings(SUI_CONFIRMATION_TIMEOUT, SUI_MAX_WAIT)
    )
    stale_retry_limit: int = STALE_RETRY_LIMIT
    allow_truncation: bool = True

    def __post_init__(self):
        if self.stale_retry_limit < 0:
            raise ConfigurationError("stale_retry_limit must be >= 0")

    def leg(self, ledger: LedgerId) -> LegSettings:
        return self.ethereum if ledger == LedgerId.ETHEREUM else self.sui


# ══════════════════════════════════════════════════════════════════════
#  ORCHESTRATOR
# ══════════════════════════════════════════════════════════════════════

SubmitFn = Callable[[Tuple[ObjectRef, ...]], Awaitable[OperationHandle]]


class BridgeOrchestrator:
    """
    Coordinates the two ledger clients and the request ledger.

    Args:
        ethereum: Client for the account/balance ledger
        sui: Client for the object-with-version ledger
        request_ledger: Durable request/outcome store
        settings: Timing, retry and truncation policy
    """

    def __init__(
        self,
        ethereum: BaseLedgerClient,
        sui: BaseLedgerClient,
        request_ledger: RequestLedger,
        settings: Optional[OrchestratorSettings] = None,
    ):
        self.clients: Dict[LedgerId, BaseLedgerClient] = {
            LedgerId.ETHEREUM: ethereum,
            LedgerId.SUI: sui,
        }
        self.request_ledger = request_ledger
        self.settings = settings or OrchestratorSettings()
        self._active: Set[str] = set()

    # ── Public API ──────────────────────────────────────────────────

    async def bridge(self, request: BridgeRequest) -> BridgeOutcome:
        """
        Run ``request`` to a terminal outcome.

        Ledger failures are reported through the returned outcome, never
        raised. A key that already has an outcome returns that outcome
        without touching either ledger.

        Raises:
            RequestInProgress: the key is known but has no outcome yet
        """
        key = request.request_id

        prior = await self.request_ledger.get_outcome(key)
        if prior is not None:
            logger.info(f"[bridge] {key} replay: returning recorded {prior.status.value} outcome")
            return prior

        if key in self._active:
            raise RequestInProgress(f"Request {key} is already in progress")
        self._active.add(key)

        execution: Optional[asyncio.Future] = None
        try:
            if await self.request_ledger.get_request(key) is not None:
                raise RequestInProgress(f"Request {key} exists without an outcome")

            source = self.clients[request.direction.source]
            destination = self.clients[request.direction.destination]

            try:
                dest_amount = self._validate(request, source, destination)
            except ValidationError as e:
                logger.warning(f"[bridge] {key} -> {BridgeState.FAILED_VALIDATION.value}: {e}")
                return BridgeOutcome(
                    request_id=key,
                    status=OutcomeStatus.FAILED_VALIDATION,
                    detail=str(e),
                    error_kind=e.kind,
                )

            request.status = BridgeState.VALIDATED
            try:
                await self.request_ledger.create_request(request)
            except RequestAlreadyExists as e:
                raise RequestInProgress(f"Request {key} exists without an outcome") from e
            logger.info(
                f"[bridge] {key} {BridgeState.VALIDATED.value}: {request.direction.value} "
                f"{request.amount} ({source.name}) -> {dest_amount} ({destination.name})"
            )

            source_op = LedgerOperation(
                kind=OperationKind.BURN,
                ledger=source.ledger,
                amount=request.amount,
                counterparty=request.source_account,
            )

            try:
                asset = await self._lookup_asset(request, source)
            except asyncio.CancelledError:
                await asyncio.shield(self._finish(
                    request, OutcomeStatus.FAILED_SOURCE, source_op,
                    detail="cancelled before submission",
                    error_kind=SourceRejected.kind,
                ))
                raise
            except BridgeError as e:
                return await self._finish(
                    request, OutcomeStatus.FAILED_SOURCE, source_op,
                    detail=f"asset lookup failed: {e}",
                    error_kind=e.kind,
                )

            # The key stays active until the execution task itself finishes,
            # even if the caller stops waiting for it.
            execution = asyncio.ensure_future(
                self._execute(request, source, destination, dest_amount, asset, source_op)
            )
            execution.add_done_callback(lambda task: self._release(key, task))
            return await asyncio.shield(execution)
        finally:
            if execution is None:
                self._active.discard(key)

    def _release(self, key: str, task: asyncio.Future) -> None:
        self._active.discard(key)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[bridge] {key} execution ended with {task.exception()!r}")

    async def recover_incomplete(self) -> List[BridgeOutcome]:
        """
        Close out requests left without an outcome (e.g. by a crash).

        Nothing is ever submitted from here. Anything whose source leg may
        have moved value is recorded as FAILED_AFTER_SOURCE_CONFIRMED for
        the operator.
        """
        outcomes = []
        for request in await self.request_ledger.list_incomplete():
            if request.request_id in self._active:
                continue
            outcomes.append(await self._recover(request))
        if outcomes:
            logger.warning(f"[bridge] recovered {len(outcomes)} incomplete request(s)")
        return outcomes

    async def reconcile(
        self,
        request_id: str,
        operator: str,
        resolution: Resolution,
        note: str = "",
    ) -> ReconciliationEntry:
        """Record an operator's resolution of an outcome that needed reconciliation."""
        return await reconcile_outcome(self.request_ledger, request_id, operator, resolution, note)

    # ── Validation ──────────────────────────────────────────────────

    def _validate(
        self,
        request: BridgeRequest,
        source: BaseLedgerClient,
        destination: BaseLedgerClient,
    ) -> int:
        """Check the request and return the destination amount. No side effects."""
        if not source.validate_address(request.source_account):
            raise InvalidAddress(f"Invalid {source.name} source address: {request.source_account!r}")
        if not destination.validate_address(request.dest_account):
            raise InvalidAddress(f"Invalid {destination.name} destination address: {request.dest_account!r}")

        if request.amount <= 0:
            raise InvalidAmount(f"amount must be positive, got {request.amount}")
        if request.amount > source.max_amount:
            raise InvalidAmount(f"amount {request.amount} exceeds {source.name} maximum")

        dest_amount = normalize(request.amount, source.precision, destination.precision)
        remainder = truncation_remainder(request.amount, source.precision, destination.precision)

        if dest_amount == 0:
            raise InvalidAmount(
                f"amount {request.amount} at {source.precision} decimals is zero at "
                f"{destination.precision} decimals"
            )
        if dest_amount > destination.max_amount:
            raise InvalidAmount(f"amount {dest_amount} exceeds {destination.name} maximum")
        if remainder:
            if not self.settings.allow_truncation:
                raise InvalidAmount(
                    f"amount {request.amount} is not representable at {destination.precision} "
                    f"decimals (remainder {remainder})"
                )
            logger.warning(
                f"[bridge] {request.request_id} truncation: {remainder} source units below "
                f"{destination.name} precision are not bridged"
            )

        request.source_account = source.normalize_address(request.source_account)
        request.dest_account = destination.normalize_address(request.dest_account)
        return dest_amount

    async def _lookup_asset(
        self,
        request: BridgeRequest,
        source: BaseLedgerClient,
    ) -> Optional[AssetHandle]:
        # Only the object-model ledger burns a specific unit
        if source.resolver is None:
            return None
        asset = await source.get_owned_asset(request.source_account, min_amount=request.amount)
        logger.info(f"[bridge] {request.request_id} burning from asset {asset.asset_id}")
        return asset

    # ── Execution ───────────────────────────────────────────────────

    async def _execute(
        self,
        request: BridgeRequest,
        source: BaseLedgerClient,
        destination: BaseLedgerClient,
        dest_amount: int,
        asset: Optional[AssetHandle],
        source_op: LedgerOperation,
    ) -> BridgeOutcome:
        key = request.request_id
        dest_op: Optional[LedgerOperation] = None

        try:
            # ── Source leg ──
            try:
                handle = await self._submit_with_fresh_refs(
                    request,
                    source,
                    source_op,
                    lambda refs: source.submit_burn(
                        request.source_account, request.amount, refs, asset
                    ),
                )
            except LedgerUnavailable as e:
                if e.handle is None:
                    return await self._finish(
                        request, OutcomeStatus.FAILED_SOURCE, source_op,
                        detail=f"source submission failed: {e}", error_kind=e.kind,
                    )
                handle = e.handle
                logger.warning(
                    f"[bridge] {key} source broadcast outcome unknown ({e}); polling {handle.tx_handle}"
                )
            except BridgeError as e:
                source_op.status = ConfirmationStatus.FAILED
                source_op.error = str(e)
                return await self._finish(
                    request, OutcomeStatus.FAILED_SOURCE, source_op,
                    detail=f"source submission rejected: {e}", error_kind=e.kind,
                )

            source_op.tx_handle = handle.tx_handle
            await self._transition(request, BridgeState.SOURCE_SUBMITTED, source_handle=handle.tx_handle)

            confirmation = await self._await_final(request, source, handle)
            source_op.status = confirmation.status
            source_op.error = confirmation.error

            if confirmation.status == ConfirmationStatus.FAILED:
                return await self._finish(
                    request, OutcomeStatus.FAILED_SOURCE, source_op,
                    detail=f"source operation failed on ledger: {confirmation.error}",
                    error_kind=SourceRejected.kind,
                )
            if confirmation.status == ConfirmationStatus.TIMED_OUT:
                return await self._finish(
                    request, OutcomeStatus.TIMED_OUT, source_op,
                    detail=(
                        f"source status unknown after {self.settings.leg(source.ledger).max_wait}s; "
                        f"poll {handle.tx_handle}, do not resubmit"
                    ),
                    error_kind=SourceTimeout.kind,
                )
            mismatch = self._amount_mismatch(request, "source", confirmation, request.amount)
            if mismatch:
                return await self._finish(
                    request, OutcomeStatus.FAILED_AFTER_SOURCE_CONFIRMED, source_op,
                    detail=mismatch, error_kind=DestinationRejected.kind,
                )

            await self._transition(request, BridgeState.SOURCE_CONFIRMED)

            # ── Destination leg ──
            dest_op = LedgerOperation(
                kind=OperationKind.MINT,
                ledger=destination.ledger,
                amount=dest_amount,
                counterparty=request.dest_account,
            )
            try:
                dest_handle = await self._submit_with_fresh_refs(
                    request,
                    destination,
                    dest_op,
                    lambda refs: destination.submit_mint(request.dest_account, dest_amount, refs),
                )
            except LedgerUnavailable as e:
                if e.handle is None:
                    dest_op.error = str(e)
                    return await self._finish(
                        request, OutcomeStatus.FAILED_AFTER_SOURCE_CONFIRMED, source_op, dest_op,
                        detail=f"destination submission failed: {e}",
                        error_kind=DestinationRejected.kind,
                    )
                dest_handle = e.handle
                logger.warning(
                    f"[bridge] {key} destination broadcast outcome unknown ({e}); "
                    f"polling {dest_handle.tx_handle}"
                )
            except BridgeError as e:
                dest_op.status = ConfirmationStatus.FAILED
                dest_op.error = str(e)
                return await self._finish(
                    request, OutcomeStatus.FAILED_AFTER_SOURCE_CONFIRMED, source_op, dest_op,
                    detail=f"destination submission rejected: {e}",
                    error_kind=DestinationRejected.kind,
                )

            dest_op.tx_handle = dest_handle.tx_handle
            await self._transition(
                request, BridgeState.DESTINATION_SUBMITTED, dest_handle=dest_handle.tx_handle
            )

            dest_confirmation = await self._await_final(request, destination, dest_handle)
            dest_op.status = dest_confirmation.status
            dest_op.error = dest_confirmation.error

            if not dest_confirmation.is_confirmed:
                reason = dest_confirmation.error or dest_confirmation.status.value
                return await self._finish(
                    request, OutcomeStatus.FAILED_AFTER_SOURCE_CONFIRMED, source_op, dest_op,
                    detail=f"destination operation {dest_confirmation.status.value}: {reason}",
                    error_kind=DestinationRejected.kind,
                )
            mismatch = self._amount_mismatch(request, "destination", dest_confirmation, dest_amount)
            if mismatch:
                return await self._finish(
                    request, OutcomeStatus.FAILED_AFTER_SOURCE_CONFIRMED, source_op, dest_op,
                    detail=mismatch, error_kind=DestinationRejected.kind,
                )

            return await self._finish(request, OutcomeStatus.COMPLETED, source_op, dest_op)

        except Exception:
            # The source submission may have gone out: leave it to the operator
            logger.exception(f"[bridge] {key} unexpected error in state {request.status.value}")
            if await self.request_ledger.get_outcome(key) is None:
                await self._finish(
                    request, OutcomeStatus.FAILED_AFTER_SOURCE_CONFIRMED, source_op, dest_op,
                    detail=f"unexpected error in state {request.status.value}",
                    error_kind=DestinationRejected.kind,
                )
            raise

    async def _submit_with_fresh_refs(
        self,
        request: BridgeRequest,
        client: BaseLedgerClient,
        operation: LedgerOperation,
        submit: SubmitFn,
    ) -> OperationHandle:
        """
        Submit, resolving the client's authority objects immediately before
        each attempt. ObjectStale triggers a re-resolve and another attempt,
        up to ``stale_retry_limit`` retries.
        """
        limit = self.settings.stale_retry_limit
        retries = 0
        while True:
            refs: Tuple[ObjectRef, ...] = ()
            if client.resolver is not None and client.authority_object_ids:
                refs = tuple(await client.resolver.resolve_all(client.authority_object_ids))
                operation.object_refs = refs
            try:
                return await submit(refs)
            except ObjectStale as e:
                retries += 1
                if retries > limit:
                    logger.error(
                        f"[bridge] {request.request_id} {client.name} authority objects still stale "
                        f"after {limit} retries"
                    )
                    raise
                logger.warning(
                    f"[bridge] {request.request_id} stale {client.name} object reference ({e}); "
                    f"re-resolving (retry {retries}/{limit})"
                )

    async def _await_final(
        self,
        request: BridgeRequest,
        client: BaseLedgerClient,
        handle: OperationHandle,
    ) -> Confirmation:
        """Re-poll in ``confirmation_timeout`` windows until final or ``max_wait`` elapses."""
        leg = self.settings.leg(client.ledger)
        deadline = time.monotonic() + leg.max_wait
        while True:
            window = min(leg.confirmation_timeout, max(deadline - time.monotonic(), 0.0))
            confirmation = await client.await_confirmation(handle, window)
            if confirmation.status != ConfirmationStatus.TIMED_OUT:
                return confirmation
            if time.monotonic() >= deadline:
                logger.error(
                    f"[bridge] {request.request_id} {client.name} {handle.tx_handle} "
                    f"not final after {leg.max_wait}s"
                )
                return confirmation
            logger.info(
                f"[bridge] {request.request_id} {client.name} {handle.tx_handle} still pending; re-polling"
            )

    def _amount_mismatch(
        self,
        request: BridgeRequest,
        leg: str,
        confirmation: Confirmation,
        expected: int,
    ) -> Optional[str]:
        if confirmation.amount is None:
            logger.warning(
                f"[bridge] {request.request_id} {leg} ledger reported no amount for "
                f"{confirmation.handle.tx_handle}; cross-check skipped"
            )
            return None
        if confirmation.amount != expected:
            return (
                f"{leg} amount mismatch: ledger reported {confirmation.amount}, expected {expected}"
            )
        return None

    # ── Recovery ────────────────────────────────────────────────────

    async def _recover(self, request: BridgeRequest) -> BridgeOutcome:
        source = self.clients[request.direction.source]
        destination = self.clients[request.direction.destination]
        source_op = LedgerOperation(
            kind=OperationKind.BURN,
            ledger=source.ledger,
            amount=request.amount,
            counterparty=request.source_account,
            tx_handle=request.source_handle,
        )

        if request.status == BridgeState.VALIDATED:
            return await self._finish(
                request, OutcomeStatus.FAILED_SOURCE, source_op,
                detail="abandoned before submission", error_kind=SourceRejected.kind,
            )

        if request.status == BridgeState.SOURCE_SUBMITTED and request.source_handle:
            handle = OperationHandle(
                ledger=source.ledger,
                kind=OperationKind.BURN,
                tx_handle=request.source_handle,
                counterparty=request.source_account,
            )
            confirmation = await source.await_confirmation(
                handle, self.settings.leg(source.ledger).confirmation_timeout
            )
            source_op.status = confirmation.status
            source_op.error = confirmation.error
            if confirmation.status == ConfirmationStatus.FAILED:
                return await self._finish(
                    request, OutcomeStatus.FAILED_SOURCE, source_op,
                    detail=f"recovered: source operation failed on ledger: {confirmation.error}",
                    error_kind=SourceRejected.kind,
                )
            return await self._finish(
                request, OutcomeStatus.FAILED_AFTER_SOURCE_CONFIRMED, source_op,
                detail=(
                    f"recovered: source {confirmation.status.value}, destination never submitted"
                ),
                error_kind=DestinationRejected.kind,
            )

        if request.status in (BridgeState.SOURCE_CONFIRMED, BridgeState.DESTINATION_SUBMITTED):
            source_op.status = ConfirmationStatus.CONFIRMED

        dest_op = None
        if request.dest_handle:
            dest_op = LedgerOperation(
                kind=OperationKind.MINT,
                ledger=destination.ledger,
                amount=normalize(request.amount, source.precision, destination.precision),
                counterparty=request.dest_account,
                tx_handle=request.dest_handle,
            )
        return await self._finish(
            request, OutcomeStatus.FAILED_AFTER_SOURCE_CONFIRMED, source_op, dest_op,
            detail=f"recovered: interrupted in {request.status.value}",
            error_kind=DestinationRejected.kind,
        )

    # ── Bookkeeping ─────────────────────────────────────────────────

    async def _transition(
        self,
        request: BridgeRequest,
        new_state: BridgeState,
        source_handle: Optional[str] = None,
        dest_handle: Optional[str] = None,
    ) -> None:
        old_state = request.status
        await self.request_ledger.update_request(
            request.request_id, new_state, source_handle=source_handle, dest_handle=dest_handle
        )
        request.status = new_state
        if source_handle is not None:
            request.source_handle = source_handle
        if dest_handle is not None:
            request.dest_handle = dest_handle
        logger.info(f"[bridge] {request.request_id} {old_state.value} -> {new_state.value}")

    async def _finish(
        self,
        request: BridgeRequest,
        status: OutcomeStatus,
        source_op: Optional[LedgerOperation],
        dest_op: Optional[LedgerOperation] = None,
        detail: str = "",
        error_kind: Optional[str] = None,
    ) -> BridgeOutcome:
        """Durably record the terminal outcome, then hand it back."""
        outcome = BridgeOutcome(
            request_id=request.request_id,
            status=status,
            source_operation=source_op,
            destination_operation=dest_op,
            detail=detail,
            error_kind=error_kind,
        )
        await self.request_ledger.record_outcome(outcome)

        old_state = request.status
        request.status = status.terminal_state
        message = f"[bridge] {request.request_id} {old_state.value} -> {request.status.value}"
        if status == OutcomeStatus.COMPLETED:
            logger.info(message)
        elif status.needs_reconciliation:
            logger.error(f"{message} ({status.value}): {detail}. RECONCILIATION REQUIRED")
        else:
            logger.warning(f"{message}: {detail}")
        return outcome
