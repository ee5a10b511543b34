"""
Ledger Clients: Per-Ledger Interface Layer

Each client gives the orchestrator the same capability surface over a
very different ledger:

  - submit_burn / submit_mint: build, sign and broadcast one operation
  - await_confirmation: poll until finalized or the caller's deadline
  - get_owned_asset: locate the fungible unit to burn (object-model ledger)
  - validate_address / normalize_address: the ledger's account format

EthereumLedgerClient speaks Ethereum JSON-RPC to an ERC-20 style contract
with privileged mint/burn. SuiLedgerClient speaks Sui JSON-RPC to a Move
module whose mint/burn require the TreasuryCap and MinterCap authority
objects, resolved fresh before every submission.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from eth_abi import encode as abi_encode
from eth_utils import (
    encode_hex,
    function_signature_to_4byte_selector,
    is_address,
    to_checksum_address,
)

from .resolver import ObjectStateResolver
from .rpc import JsonRpcClient
from .signing import EvmSigner, SuiSigner, sui_transaction_digest
from .types import (
    AssetHandle,
    Confirmation,
    ConfirmationStatus,
    LEDGER_NAMES,
    LedgerId,
    ObjectRef,
    OperationHandle,
    OperationKind,
)
from ..constants import (
    ERC20_TRANSFER_TOPIC,
    ETH_CONFIRMATIONS,
    ETH_POLL_INTERVAL,
    ETHEREUM_DECIMALS,
    SUI_DECIMALS,
    SUI_GAS_BUDGET,
    SUI_POLL_INTERVAL,
    VALID_SUI_ADDRESS_PATTERN,
)
from ..exceptions import (
    BridgeError,
    DestinationRejected,
    LedgerUnavailable,
    ObjectStale,
    RpcError,
    SourceRejected,
)
from ..logger import get_logger

logger = get_logger(__name__)


def _rejection(kind: OperationKind, message: str) -> BridgeError:
    """Burns are always the source leg, mints always the destination leg."""
    if kind in (OperationKind.BURN, OperationKind.LOCK):
        return SourceRejected(message)
    return DestinationRejected(message)


# ══════════════════════════════════════════════════════════════════════
#  BASE LEDGER CLIENT  (Abstract)
# ══════════════════════════════════════════════════════════════════════

class BaseLedgerClient(ABC):
    """
    Abstract capability interface for one ledger.

    Clients are explicit objects with a defined lifetime: construct them at
    startup, inject them into the orchestrator, ``aclose()`` at shutdown.
    """

    #: Largest amount a single operation can carry on this ledger
    max_amount: int = 2 ** 256 - 1

    def __init__(
        self,
        ledger: LedgerId,
        rpc: JsonRpcClient,
        precision: int,
        poll_interval: float,
    ):
        self.ledger = ledger
        self.rpc = rpc
        self.precision = precision
        self.poll_interval = poll_interval
        self.resolver: Optional[ObjectStateResolver] = None

    @property
    def name(self) -> str:
        return LEDGER_NAMES[self.ledger]

    @property
    def authority_object_ids(self) -> Tuple[str, ...]:
        """Versioned objects every privileged submission must reference."""
        return ()

    async def aclose(self) -> None:
        await self.rpc.aclose()

    # ── Addresses ───────────────────────────────────────────────────

    @abstractmethod
    def validate_address(self, address: Any) -> bool:
        """True if ``address`` is well-formed for this ledger."""
        ...

    @abstractmethod
    def normalize_address(self, address: str) -> str:
        """Canonical form of a valid address."""
        ...

    # ── Submission ──────────────────────────────────────────────────

    @abstractmethod
    async def submit_burn(
        self,
        account: str,
        amount: int,
        object_refs: Sequence[ObjectRef] = (),
        asset: Optional[AssetHandle] = None,
    ) -> OperationHandle:
        """
        Burn/lock ``amount`` from ``account``.

        Raises:
            SourceRejected: the ledger refused the operation at submission
            ObjectStale: an authority object ref was invalidated
            LedgerUnavailable: transport failure (``handle`` set if possibly sent)
        """
        ...

    @abstractmethod
    async def submit_mint(
        self,
        account: str,
        amount: int,
        object_refs: Sequence[ObjectRef] = (),
    ) -> OperationHandle:
        """
        Mint/release ``amount`` to ``account``.

        Raises:
            DestinationRejected: the ledger refused the operation at submission
            ObjectStale: an authority object ref was invalidated
            LedgerUnavailable: transport failure (``handle`` set if possibly sent)
        """
        ...

    @abstractmethod
    async def get_owned_asset(
        self,
        account: str,
        asset_type: Optional[str] = None,
        min_amount: int = 0,
    ) -> AssetHandle:
        """
        First eligible asset of ``asset_type`` owned by ``account``.

        Raises:
            SourceRejected: no asset covers ``min_amount``
        """
        ...

    # ── Confirmation ────────────────────────────────────────────────

    @abstractmethod
    async def _poll_once(self, handle: OperationHandle) -> Optional[Confirmation]:
        """One status probe. None means not yet final."""
        ...

    async def await_confirmation(
        self,
        handle: OperationHandle,
        timeout: float,
    ) -> Confirmation:
        """
        Poll ``handle`` until it is final or ``timeout`` seconds elapse.

        Elapsing returns a TIMED_OUT confirmation rather than FAILED: the
        operation may still land later and must not be assumed reversed.
        Cancelling the awaiting task cancels only the wait.
        """
        deadline = time.monotonic() + timeout
        while True:
            try:
                confirmation = await self._poll_once(handle)
            except (LedgerUnavailable, RpcError) as e:
                logger.warning(f"{self.name}: status probe for {handle.tx_handle} failed: {e}")
                confirmation = None

            if confirmation is not None:
                return confirmation

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return Confirmation(handle=handle, status=ConfirmationStatus.TIMED_OUT)
            await asyncio.sleep(min(self.poll_interval, remaining))


# ══════════════════════════════════════════════════════════════════════
#  ETHEREUM CLIENT  (account/balance ledger)
# ══════════════════════════════════════════════════════════════════════

class EthereumLedgerClient(BaseLedgerClient):
    """
    Ethereum client for a token contract exposing privileged
    ``mint(address,uint256)`` and ``burn(address,uint256)``.

    Submissions from the operator account share one nonce sequence, so
    the nonce fetch and broadcast are serialized per client. Confirmation
    waits are not.
    """

    MINT_SIGNATURE = "mint(address,uint256)"
    BURN_SIGNATURE = "burn(address,uint256)"
    BALANCE_OF_SIGNATURE = "balanceOf(address)"

    # eth_estimateGas gives a tight figure; leave headroom for state drift
    GAS_HEADROOM_NUM = 12
    GAS_HEADROOM_DEN = 10

    def __init__(
        self,
        rpc: JsonRpcClient,
        signer: EvmSigner,
        contract_address: str,
        chain_id: int,
        precision: int = ETHEREUM_DECIMALS,
        confirmations: int = ETH_CONFIRMATIONS,
        gas_limit_cap: int = 500_000,
        poll_interval: float = ETH_POLL_INTERVAL,
    ):
        super().__init__(LedgerId.ETHEREUM, rpc, precision, poll_interval)
        self.signer = signer
        self.contract_address = to_checksum_address(contract_address)
        self.chain_id = chain_id
        self.confirmations = max(1, confirmations)
        self.gas_limit_cap = gas_limit_cap
        self._nonce_lock = asyncio.Lock()

    # ── Addresses ───────────────────────────────────────────────────

    def validate_address(self, address: Any) -> bool:
        return (
            isinstance(address, str)
            and address.startswith("0x")
            and len(address) == 42
            and is_address(address)
        )

    def normalize_address(self, address: str) -> str:
        return to_checksum_address(address)

    # ── Encoding ────────────────────────────────────────────────────

    @staticmethod
    def _call_data(signature: str, types: List[str], values: List[Any]) -> str:
        return encode_hex(function_signature_to_4byte_selector(signature) + abi_encode(types, values))

    # ── Submission ──────────────────────────────────────────────────

    async def submit_burn(
        self,
        account: str,
        amount: int,
        object_refs: Sequence[ObjectRef] = (),
        asset: Optional[AssetHandle] = None,
    ) -> OperationHandle:
        return await self._submit(OperationKind.BURN, self.BURN_SIGNATURE, account, amount)

    async def submit_mint(
        self,
        account: str,
        amount: int,
        object_refs: Sequence[ObjectRef] = (),
    ) -> OperationHandle:
        return await self._submit(OperationKind.MINT, self.MINT_SIGNATURE, account, amount)

    async def _submit(
        self,
        kind: OperationKind,
        signature: str,
        account: str,
        amount: int,
    ) -> OperationHandle:
        account = self.normalize_address(account)
        data = self._call_data(signature, ["address", "uint256"], [account, amount])
        sender = self.signer.address

        async with self._nonce_lock:
            nonce = int(await self.rpc.call("eth_getTransactionCount", [sender, "pending"]), 16)
            gas_price = int(await self.rpc.call("eth_gasPrice"), 16)

            try:
                estimate = await self.rpc.call(
                    "eth_estimateGas",
                    [{"from": sender, "to": self.contract_address, "data": data}],
                )
            except RpcError as e:
                # A revert at estimate time (e.g. insufficient balance) means
                # nothing was broadcast.
                raise _rejection(kind, f"{signature} rejected: {e.rpc_message}") from e

            gas = min(
                int(estimate, 16) * self.GAS_HEADROOM_NUM // self.GAS_HEADROOM_DEN,
                self.gas_limit_cap,
            )
            tx = {
                "nonce": nonce,
                "gasPrice": gas_price,
                "gas": gas,
                "to": self.contract_address,
                "value": 0,
                "data": data,
                "chainId": self.chain_id,
            }
            signed = self.signer.sign_transaction(tx)
            handle = OperationHandle(
                ledger=self.ledger,
                kind=kind,
                tx_handle=signed.tx_hash,
                counterparty=account,
            )

            try:
                await self.rpc.call("eth_sendRawTransaction", [signed.raw])
            except LedgerUnavailable as e:
                raise LedgerUnavailable(str(e), handle=handle) from e
            except RpcError as e:
                if "already known" in e.rpc_message.lower():
                    logger.info(f"{self.name}: {signed.tx_hash} already in mempool")
                else:
                    raise _rejection(kind, f"{signature} rejected: {e.rpc_message}") from e

        logger.info(
            f"{self.name}: {kind.value} of {amount} for {account} submitted "
            f"(nonce={nonce}, gas={gas}) -> {handle.tx_handle}"
        )
        return handle

    # ── Assets ──────────────────────────────────────────────────────

    async def get_owned_asset(
        self,
        account: str,
        asset_type: Optional[str] = None,
        min_amount: int = 0,
    ) -> AssetHandle:
        account = self.normalize_address(account)
        data = self._call_data(self.BALANCE_OF_SIGNATURE, ["address"], [account])
        raw = await self.rpc.call(
            "eth_call",
            [{"to": self.contract_address, "data": data}, "latest"],
        )
        balance = int(raw, 16) if raw and raw != "0x" else 0
        if balance < min_amount:
            raise SourceRejected(
                f"Insufficient balance for {account}: {balance} < {min_amount}"
            )
        return AssetHandle(
            asset_id=self.contract_address,
            asset_type=asset_type or "erc20",
            balance=balance,
        )

    # ── Confirmation ────────────────────────────────────────────────

    async def _poll_once(self, handle: OperationHandle) -> Optional[Confirmation]:
        receipt = await self.rpc.call("eth_getTransactionReceipt", [handle.tx_handle])
        if not receipt or receipt.get("blockNumber") is None:
            return None

        block_number = int(receipt["blockNumber"], 16)
        if self.confirmations > 1:
            head = int(await self.rpc.call("eth_blockNumber"), 16)
            if head - block_number + 1 < self.confirmations:
                return None

        # Pre-Byzantium receipts carry no status: that is not an unambiguous success
        status = receipt.get("status")
        if status is None or int(status, 16) != 1:
            return Confirmation(
                handle=handle,
                status=ConfirmationStatus.FAILED,
                error=f"transaction reverted (status {status})",
                checkpoint=block_number,
            )

        return Confirmation(
            handle=handle,
            status=ConfirmationStatus.CONFIRMED,
            amount=self._transfer_amount(receipt, handle),
            checkpoint=block_number,
        )

    def _transfer_amount(self, receipt: Dict[str, Any], handle: OperationHandle) -> Optional[int]:
        """
        Amount moved for the counterparty according to the token's Transfer
        logs: tokens leaving it for a burn, arriving at it for a mint.
        """
        counterparty = handle.counterparty.lower()[2:]
        burn = handle.kind in (OperationKind.BURN, OperationKind.LOCK)
        total = None
        for log in receipt.get("logs") or []:
            if str(log.get("address", "")).lower() != self.contract_address.lower():
                continue
            topics = log.get("topics") or []
            if len(topics) != 3 or str(topics[0]).lower() != ERC20_TRANSFER_TOPIC:
                continue
            party = str(topics[1] if burn else topics[2]).lower()[-40:]
            if party != counterparty:
                continue
            total = (total or 0) + int(log.get("data") or "0x0", 16)
        return total


# ══════════════════════════════════════════════════════════════════════
#  SUI CLIENT  (object-with-version ledger)
# ══════════════════════════════════════════════════════════════════════

# Fragments of Sui RPC errors raised when an input object's version moved
# between resolution and execution, or it is locked by another transaction.
_STALE_OBJECT_MARKERS = (
    "objectversionunavailableforconsumption",
    "not available for consumption",
    "already locked",
    "objectlockconflict",
    "equivocat",
    "object version mismatch",
)

_TX_NOT_FOUND_MARKERS = (
    "could not find the referenced transaction",
    "transaction not found",
    "not found",
)


def _normalize_sui_id(value: str) -> str:
    hex_part = value[2:] if value.startswith("0x") else value
    return "0x" + hex_part.lower().rjust(64, "0")


def _normalize_coin_type(coin_type: str) -> str:
    parts = coin_type.split("::")
    if len(parts) == 3:
        parts[0] = _normalize_sui_id(parts[0])
    return "::".join(parts)


class SuiLedgerClient(BaseLedgerClient):
    """
    Sui client for a Move coin module with
    ``mint(treasury_cap, minter_cap, amount, recipient)`` and
    ``burn(treasury_cap, minter_cap, coin, amount)``.

    Transactions are built node-side with ``unsafe_moveCall``, signed
    locally, and executed with ``sui_executeTransactionBlock``.

    ``unsafe_moveCall`` takes bare object ids: the node selects the
    authority object versions when it builds the transaction. The
    resolved ObjectRefs passed to ``submit_mint``/``submit_burn`` are
    only checked for presence and logged; their versions are not
    written into the signed bytes. Staleness surfaces as a node error
    on execution, which is translated to ObjectStale.
    """

    max_amount = 2 ** 64 - 1  # Move u64

    def __init__(
        self,
        rpc: JsonRpcClient,
        signer: SuiSigner,
        package_id: str,
        module: str,
        treasury_cap_id: str,
        minter_cap_id: str,
        coin_name: str = "TOKEN",
        precision: int = SUI_DECIMALS,
        gas_budget: int = SUI_GAS_BUDGET,
        poll_interval: float = SUI_POLL_INTERVAL,
        mint_function: str = "mint",
        burn_function: str = "burn",
    ):
        super().__init__(LedgerId.SUI, rpc, precision, poll_interval)
        self.signer = signer
        self.package_id = package_id
        self.module = module
        self.treasury_cap_id = treasury_cap_id
        self.minter_cap_id = minter_cap_id
        self.coin_type = f"{package_id}::{module}::{coin_name}"
        self.gas_budget = gas_budget
        self.mint_function = mint_function
        self.burn_function = burn_function
        self.resolver = ObjectStateResolver(rpc)

    @property
    def authority_object_ids(self) -> Tuple[str, ...]:
        return (self.treasury_cap_id, self.minter_cap_id)

    # ── Addresses ───────────────────────────────────────────────────

    def validate_address(self, address: Any) -> bool:
        return isinstance(address, str) and bool(VALID_SUI_ADDRESS_PATTERN.match(address))

    def normalize_address(self, address: str) -> str:
        return _normalize_sui_id(address)

    # ── Submission ──────────────────────────────────────────────────

    async def _authority_refs(self, object_refs: Sequence[ObjectRef]) -> Tuple[ObjectRef, ObjectRef]:
        refs = list(object_refs) or await self.resolver.resolve_all(self.authority_object_ids)
        by_id = {_normalize_sui_id(r.object_id): r for r in refs}
        try:
            return (
                by_id[_normalize_sui_id(self.treasury_cap_id)],
                by_id[_normalize_sui_id(self.minter_cap_id)],
            )
        except KeyError as e:
            raise ObjectStale(f"Missing authority object reference {e}") from e

    async def submit_mint(
        self,
        account: str,
        amount: int,
        object_refs: Sequence[ObjectRef] = (),
    ) -> OperationHandle:
        account = self.normalize_address(account)
        treasury, minter = await self._authority_refs(object_refs)
        logger.info(
            f"{self.name}: minting {amount} to {account} using treasury@{treasury.version}, "
            f"minter@{minter.version}"
        )
        return await self._execute(
            OperationKind.MINT,
            self.mint_function,
            [treasury.object_id, minter.object_id, str(amount), account],
            account,
        )

    async def submit_burn(
        self,
        account: str,
        amount: int,
        object_refs: Sequence[ObjectRef] = (),
        asset: Optional[AssetHandle] = None,
    ) -> OperationHandle:
        if asset is None:
            raise SourceRejected("No coin object supplied for burning")
        account = self.normalize_address(account)
        treasury, minter = await self._authority_refs(object_refs)
        logger.info(
            f"{self.name}: burning {amount} from coin {asset.asset_id} of {account} using "
            f"treasury@{treasury.version}, minter@{minter.version}"
        )
        return await self._execute(
            OperationKind.BURN,
            self.burn_function,
            [treasury.object_id, minter.object_id, asset.asset_id, str(amount)],
            account,
        )

    def _translate(self, kind: OperationKind, error: RpcError) -> BridgeError:
        message = error.rpc_message.lower()
        if any(marker in message for marker in _STALE_OBJECT_MARKERS):
            return ObjectStale(error.rpc_message)
        return _rejection(kind, f"{kind.value} rejected: {error.rpc_message}")

    async def _execute(
        self,
        kind: OperationKind,
        function: str,
        arguments: List[Any],
        counterparty: str,
    ) -> OperationHandle:
        try:
            built = await self.rpc.call(
                "unsafe_moveCall",
                [
                    self.signer.address,
                    self.package_id,
                    self.module,
                    function,
                    [],
                    arguments,
                    None,
                    str(self.gas_budget),
                ],
            )
        except RpcError as e:
            raise self._translate(kind, e) from e

        if not isinstance(built, dict) or not isinstance(built.get("txBytes"), str):
            raise LedgerUnavailable(f"unsafe_moveCall returned no transaction bytes for {function}")
        tx_bytes = built["txBytes"]
        handle = OperationHandle(
            ledger=self.ledger,
            kind=kind,
            tx_handle=sui_transaction_digest(tx_bytes),
            counterparty=counterparty,
        )
        signature = self.signer.sign_transaction(tx_bytes)

        try:
            result = await self.rpc.call(
                "sui_executeTransactionBlock",
                [tx_bytes, [signature], {"showEffects": True}, "WaitForEffectsCert"],
            )
        except LedgerUnavailable as e:
            raise LedgerUnavailable(str(e), handle=handle) from e
        except RpcError as e:
            raise self._translate(kind, e) from e

        digest = (result or {}).get("digest") or handle.tx_handle
        if digest != handle.tx_handle:
            logger.warning(f"{self.name}: node digest {digest} differs from local {handle.tx_handle}")
            handle = OperationHandle(
                ledger=self.ledger, kind=kind, tx_handle=digest, counterparty=counterparty,
            )
        logger.info(f"{self.name}: {kind.value} submitted -> {digest}")
        return handle

    # ── Assets ──────────────────────────────────────────────────────

    async def get_owned_asset(
        self,
        account: str,
        asset_type: Optional[str] = None,
        min_amount: int = 0,
    ) -> AssetHandle:
        """
        Eligible coin of ``asset_type`` with the lowest object id.

        Eligible means its balance covers ``min_amount``; ordering by id
        keeps the choice reproducible across runs and replicas.
        """
        owner = self.normalize_address(account)
        coin_type = asset_type or self.coin_type
        best: Optional[Dict[str, Any]] = None
        cursor = None

        while True:
            page = await self.rpc.call("suix_getCoins", [owner, coin_type, cursor, 50]) or {}
            for coin in page.get("data") or []:
                if int(coin["balance"]) < min_amount:
                    continue
                if best is None or int(coin["coinObjectId"], 16) < int(best["coinObjectId"], 16):
                    best = coin
            if not page.get("hasNextPage"):
                break
            cursor = page.get("nextCursor")

        if best is None:
            raise SourceRejected(f"No suitable coins found for burning {min_amount} from {owner}")

        return AssetHandle(
            asset_id=best["coinObjectId"],
            asset_type=best.get("coinType", coin_type),
            balance=int(best["balance"]),
            version=int(best["version"]) if best.get("version") is not None else None,
        )

    # ── Confirmation ────────────────────────────────────────────────

    async def _poll_once(self, handle: OperationHandle) -> Optional[Confirmation]:
        try:
            tx = await self.rpc.call(
                "sui_getTransactionBlock",
                [handle.tx_handle, {"showEffects": True, "showBalanceChanges": True}],
            )
        except RpcError as e:
            if any(marker in e.rpc_message.lower() for marker in _TX_NOT_FOUND_MARKERS):
                return None
            raise

        effects = (tx or {}).get("effects") or {}
        status = effects.get("status") or {}
        if not status:
            return None

        checkpoint = tx.get("checkpoint")
        checkpoint = int(checkpoint) if checkpoint is not None else None

        if status.get("status") != "success":
            return Confirmation(
                handle=handle,
                status=ConfirmationStatus.FAILED,
                error=status.get("error") or f"execution status {status.get('status')!r}",
                checkpoint=checkpoint,
            )

        return Confirmation(
            handle=handle,
            status=ConfirmationStatus.CONFIRMED,
            amount=self._balance_change(tx.get("balanceChanges") or [], handle.counterparty),
            checkpoint=checkpoint,
        )

    def _balance_change(self, changes: Iterable[Dict[str, Any]], counterparty: str) -> Optional[int]:
        target = _normalize_sui_id(counterparty)
        coin_type = _normalize_coin_type(self.coin_type)
        total = None
        for change in changes:
            owner = change.get("owner") or {}
            address = owner.get("AddressOwner") if isinstance(owner, dict) else None
            if not address or _normalize_sui_id(address) != target:
                continue
            if _normalize_coin_type(change.get("coinType", "")) != coin_type:
                continue
            total = (total or 0) + abs(int(change["amount"]))
        return total
