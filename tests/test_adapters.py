"""
Tests for the per-ledger clients against a fake JSON-RPC node.

Tests:
  - EthereumLedgerClient: addresses, submission flow, rejection mapping,
    receipt polling (pending / confirmed / reverted / depth), balance lookup
  - SuiLedgerClient: addresses, mint/burn via unsafe_moveCall + execute,
    stale object mapping, coin selection, transaction polling
  - BaseLedgerClient.await_confirmation timing out as TIMED_OUT
"""

import base64
import json
import os
import sys

import httpx
import pytest
from eth_abi import decode as abi_decode
from eth_utils import function_signature_to_4byte_selector, keccak, to_bytes

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from tokenbridge.bridge.adapters import EthereumLedgerClient, SuiLedgerClient
from tokenbridge.bridge.rpc import JsonRpcClient
from tokenbridge.bridge.signing import Ed25519SuiSigner, LocalEvmSigner, sui_transaction_digest
from tokenbridge.bridge.types import (
    AssetHandle,
    ConfirmationStatus,
    LedgerId,
    ObjectRef,
    OperationHandle,
    OperationKind,
)
from tokenbridge.constants import ERC20_TRANSFER_TOPIC
from tokenbridge.exceptions import (
    DestinationRejected,
    LedgerUnavailable,
    ObjectStale,
    SourceRejected,
)


CONTRACT = "0x" + "aa" * 20
ETH_USER = "0x" + "11" * 20
SUI_USER = "0x" + "22" * 32
PACKAGE = "0x" + "33" * 32
TREASURY = "0x" + "44" * 32
MINTER = "0x" + "55" * 32
TX_BYTES = base64.b64encode(b"\x00move-call-transaction").decode()
COIN_TYPE = f"{PACKAGE}::token::TOKEN"


# ═══════════════════════════════════════════════════════════════════════
#  HELPERS
# ═══════════════════════════════════════════════════════════════════════

class FakeNode:
    """
    Scripted JSON-RPC node. ``handlers`` maps method -> value, callable
    (params -> value) or RpcFailure. Every call is recorded.
    """

    def __init__(self, handlers):
        self.handlers = handlers
        self.calls = []

    def methods(self):
        return [method for method, _ in self.calls]

    def params(self, method):
        return [params for m, params in self.calls if m == method]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method, params = body["method"], body["params"]
        self.calls.append((method, params))
        handler = self.handlers[method]
        if callable(handler) and not isinstance(handler, RpcFailure):
            handler = handler(params)
        if isinstance(handler, RpcFailure):
            payload = {"jsonrpc": "2.0", "id": body["id"], "error": handler.error}
        else:
            payload = {"jsonrpc": "2.0", "id": body["id"], "result": handler}
        return httpx.Response(200, json=payload)

    def rpc(self) -> JsonRpcClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(self))
        return JsonRpcClient("http://node.test", client=http, max_attempts=1)


class RpcFailure:
    def __init__(self, message, code=-32000):
        self.error = {"code": code, "message": message}


def _topic(address: str) -> str:
    return "0x" + address[2:].lower().rjust(64, "0")


def _transfer_log(sender: str, recipient: str, amount: int, contract: str = CONTRACT):
    return {
        "address": contract,
        "topics": [ERC20_TRANSFER_TOPIC, _topic(sender), _topic(recipient)],
        "data": hex(amount),
    }


def _eth_client(node: FakeNode, confirmations=1) -> EthereumLedgerClient:
    return EthereumLedgerClient(
        rpc=node.rpc(),
        signer=LocalEvmSigner("0x" + "4c" * 32),
        contract_address=CONTRACT,
        chain_id=11155111,
        confirmations=confirmations,
        gas_limit_cap=100_000,
        poll_interval=0.01,
    )


def _eth_submit_handlers(**overrides):
    handlers = {
        "eth_getTransactionCount": "0x5",
        "eth_gasPrice": "0x3b9aca00",
        "eth_estimateGas": "0xc350",  # 50_000
        "eth_sendRawTransaction": lambda params: "0x" + keccak(to_bytes(hexstr=params[0])).hex(),
    }
    handlers.update(overrides)
    return handlers


def _sui_client(node: FakeNode) -> SuiLedgerClient:
    return SuiLedgerClient(
        rpc=node.rpc(),
        signer=Ed25519SuiSigner(bytes(range(32)).hex()),
        package_id=PACKAGE,
        module="token",
        treasury_cap_id=TREASURY,
        minter_cap_id=MINTER,
        poll_interval=0.01,
    )


def _sui_object(params):
    versions = {TREASURY: "17", MINTER: "9"}
    return {"data": {"objectId": params[0], "version": versions[params[0]], "digest": "D"}}


def _sui_submit_handlers(**overrides):
    handlers = {
        "sui_getObject": _sui_object,
        "unsafe_moveCall": {"txBytes": TX_BYTES, "gas": [], "inputObjects": []},
        "sui_executeTransactionBlock": lambda params: {
            "digest": sui_transaction_digest(params[0]),
            "effects": {"status": {"status": "success"}},
        },
    }
    handlers.update(overrides)
    return handlers


# ═══════════════════════════════════════════════════════════════════════
#  1. ETHEREUM: ADDRESSES
# ═══════════════════════════════════════════════════════════════════════

class TestEthereumAddresses:

    def test_validate(self):
        client = _eth_client(FakeNode({}))
        assert client.validate_address(ETH_USER)
        assert client.validate_address("0x52908400098527886E0F7030069857D2E4169EE7")
        assert not client.validate_address("0x52908400098527886e0F7030069857D2E4169EE7")  # bad checksum
        assert not client.validate_address("11" * 20)
        assert not client.validate_address("0x1234")
        assert not client.validate_address(SUI_USER)
        assert not client.validate_address(None)

    def test_normalize_checksums(self):
        client = _eth_client(FakeNode({}))
        assert client.normalize_address("0x52908400098527886e0f7030069857d2e4169ee7") == (
            "0x52908400098527886E0F7030069857D2E4169EE7"
        )


# ═══════════════════════════════════════════════════════════════════════
#  2. ETHEREUM: SUBMISSION
# ═══════════════════════════════════════════════════════════════════════

class TestEthereumSubmit:

    @pytest.mark.asyncio
    async def test_mint_flow(self):
        node = FakeNode(_eth_submit_handlers())
        client = _eth_client(node)

        handle = await client.submit_mint(ETH_USER, 10 ** 18)

        assert node.methods() == [
            "eth_getTransactionCount",
            "eth_gasPrice",
            "eth_estimateGas",
            "eth_sendRawTransaction",
        ]
        assert handle.ledger == LedgerId.ETHEREUM
        assert handle.kind == OperationKind.MINT
        assert handle.counterparty == client.normalize_address(ETH_USER)
        raw = node.params("eth_sendRawTransaction")[0][0]
        assert handle.tx_handle == "0x" + keccak(to_bytes(hexstr=raw)).hex()

        call = node.params("eth_estimateGas")[0][0]
        data = to_bytes(hexstr=call["data"])
        assert data[:4] == function_signature_to_4byte_selector("mint(address,uint256)")
        recipient, amount = abi_decode(["address", "uint256"], data[4:])
        assert recipient.lower() == ETH_USER
        assert amount == 10 ** 18

    @pytest.mark.asyncio
    async def test_burn_uses_burn_selector(self):
        node = FakeNode(_eth_submit_handlers())
        handle = await _eth_client(node).submit_burn(ETH_USER, 5)
        data = to_bytes(hexstr=node.params("eth_estimateGas")[0][0]["data"])
        assert data[:4] == function_signature_to_4byte_selector("burn(address,uint256)")
        assert handle.kind == OperationKind.BURN

    @pytest.mark.asyncio
    async def test_estimate_revert_on_burn_is_source_rejected(self):
        node = FakeNode(_eth_submit_handlers(
            eth_estimateGas=RpcFailure("execution reverted: ERC20: burn amount exceeds balance"),
        ))
        with pytest.raises(SourceRejected, match="burn amount exceeds balance"):
            await _eth_client(node).submit_burn(ETH_USER, 5)
        assert "eth_sendRawTransaction" not in node.methods()

    @pytest.mark.asyncio
    async def test_send_error_on_mint_is_destination_rejected(self):
        node = FakeNode(_eth_submit_handlers(
            eth_sendRawTransaction=RpcFailure("insufficient funds for gas * price + value"),
        ))
        with pytest.raises(DestinationRejected):
            await _eth_client(node).submit_mint(ETH_USER, 5)

    @pytest.mark.asyncio
    async def test_already_known_counts_as_accepted(self):
        node = FakeNode(_eth_submit_handlers(eth_sendRawTransaction=RpcFailure("already known")))
        handle = await _eth_client(node).submit_mint(ETH_USER, 5)
        assert handle.tx_handle.startswith("0x")

    @pytest.mark.asyncio
    async def test_broadcast_transport_failure_carries_handle(self):
        def unavailable(request):
            body = json.loads(request.content)
            if body["method"] == "eth_sendRawTransaction":
                return httpx.Response(503)
            return FakeNode(_eth_submit_handlers())(request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(unavailable))
        client = EthereumLedgerClient(
            rpc=JsonRpcClient("http://node.test", client=http, max_attempts=1),
            signer=LocalEvmSigner("0x" + "4c" * 32),
            contract_address=CONTRACT,
            chain_id=1,
        )
        with pytest.raises(LedgerUnavailable) as exc_info:
            await client.submit_mint(ETH_USER, 5)
        assert exc_info.value.handle is not None
        assert exc_info.value.handle.kind == OperationKind.MINT

    @pytest.mark.asyncio
    async def test_gas_headroom_capped(self):
        node = FakeNode(_eth_submit_handlers(eth_estimateGas=hex(90_000)))
        client = _eth_client(node)
        sent = []
        original = client.signer.sign_transaction

        def capture(tx):
            sent.append(tx)
            return original(tx)

        client.signer.sign_transaction = capture
        await client.submit_mint(ETH_USER, 5)
        assert sent[0]["gas"] == 100_000
        assert sent[0]["nonce"] == 5
        assert sent[0]["chainId"] == 11155111


# ═══════════════════════════════════════════════════════════════════════
#  3. ETHEREUM: CONFIRMATION & BALANCE
# ═══════════════════════════════════════════════════════════════════════

def _eth_handle(kind=OperationKind.BURN):
    return OperationHandle(
        ledger=LedgerId.ETHEREUM,
        kind=kind,
        tx_handle="0x" + "ab" * 32,
        counterparty="0x1111111111111111111111111111111111111111",
    )


class TestEthereumConfirmation:

    @pytest.mark.asyncio
    async def test_confirmed_with_burn_amount(self):
        receipt = {
            "blockNumber": "0x10",
            "status": "0x1",
            "logs": [
                _transfer_log(ETH_USER, "0x" + "00" * 20, 700),
                _transfer_log(ETH_USER, "0x" + "00" * 20, 9, contract="0x" + "bb" * 20),
            ],
        }
        client = _eth_client(FakeNode({"eth_getTransactionReceipt": receipt}))
        confirmation = await client.await_confirmation(_eth_handle(), timeout=1)
        assert confirmation.status == ConfirmationStatus.CONFIRMED
        assert confirmation.amount == 700
        assert confirmation.checkpoint == 16

    @pytest.mark.asyncio
    async def test_mint_amount_matches_recipient(self):
        receipt = {
            "blockNumber": "0x10",
            "status": "0x1",
            "logs": [_transfer_log("0x" + "00" * 20, ETH_USER, 10 ** 18)],
        }
        client = _eth_client(FakeNode({"eth_getTransactionReceipt": receipt}))
        confirmation = await client.await_confirmation(_eth_handle(OperationKind.MINT), timeout=1)
        assert confirmation.amount == 10 ** 18

    @pytest.mark.asyncio
    async def test_no_transfer_log_reports_no_amount(self):
        receipt = {"blockNumber": "0x10", "status": "0x1", "logs": []}
        client = _eth_client(FakeNode({"eth_getTransactionReceipt": receipt}))
        confirmation = await client.await_confirmation(_eth_handle(), timeout=1)
        assert confirmation.is_confirmed
        assert confirmation.amount is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["0x0", None])
    async def test_reverted_or_statusless_is_failed(self, status):
        receipt = {"blockNumber": "0x10", "logs": []}
        if status is not None:
            receipt["status"] = status
        client = _eth_client(FakeNode({"eth_getTransactionReceipt": receipt}))
        confirmation = await client.await_confirmation(_eth_handle(), timeout=1)
        assert confirmation.status == ConfirmationStatus.FAILED
        assert "reverted" in confirmation.error

    @pytest.mark.asyncio
    async def test_pending_times_out(self):
        node = FakeNode({"eth_getTransactionReceipt": None})
        confirmation = await _eth_client(node).await_confirmation(_eth_handle(), timeout=0.05)
        assert confirmation.status == ConfirmationStatus.TIMED_OUT
        assert len(node.calls) >= 2

    @pytest.mark.asyncio
    async def test_waits_for_depth(self):
        heads = iter(["0x10", "0x11", "0x12"])
        node = FakeNode({
            "eth_getTransactionReceipt": {"blockNumber": "0x10", "status": "0x1", "logs": []},
            "eth_blockNumber": lambda params: next(heads),
        })
        confirmation = await _eth_client(node, confirmations=3).await_confirmation(
            _eth_handle(), timeout=1
        )
        assert confirmation.is_confirmed
        assert node.methods().count("eth_blockNumber") == 3

    @pytest.mark.asyncio
    async def test_transport_errors_while_polling_are_pending(self):
        answers = iter([RpcFailure("header not found"), {"blockNumber": "0x1", "status": "0x1", "logs": []}])
        node = FakeNode({"eth_getTransactionReceipt": lambda params: next(answers)})
        confirmation = await _eth_client(node).await_confirmation(_eth_handle(), timeout=1)
        assert confirmation.is_confirmed


class TestEthereumBalance:

    @pytest.mark.asyncio
    async def test_balance_covers_amount(self):
        node = FakeNode({"eth_call": hex(5000)})
        asset = await _eth_client(node).get_owned_asset(ETH_USER, min_amount=4000)
        assert asset.balance == 5000
        assert asset.asset_id == _eth_client(node).contract_address

    @pytest.mark.asyncio
    async def test_insufficient_balance(self):
        node = FakeNode({"eth_call": "0x"})
        with pytest.raises(SourceRejected):
            await _eth_client(node).get_owned_asset(ETH_USER, min_amount=1)


# ═══════════════════════════════════════════════════════════════════════
#  4. SUI: ADDRESSES & SUBMISSION
# ═══════════════════════════════════════════════════════════════════════

class TestSuiAddresses:

    def test_validate(self):
        client = _sui_client(FakeNode({}))
        assert client.validate_address(SUI_USER)
        assert client.validate_address("0x2")
        assert not client.validate_address("0x" + "2" * 65)
        assert not client.validate_address("22" * 32)
        assert not client.validate_address("0xzz")
        assert not client.validate_address(42)

    def test_normalize_pads(self):
        client = _sui_client(FakeNode({}))
        assert client.normalize_address("0x2") == "0x" + "0" * 63 + "2"
        assert client.normalize_address("0xABC") == "0x" + "0" * 61 + "abc"


class TestSuiSubmit:

    @pytest.mark.asyncio
    async def test_mint_resolves_authority_objects(self):
        node = FakeNode(_sui_submit_handlers())
        client = _sui_client(node)

        handle = await client.submit_mint(SUI_USER, 10 ** 9)

        assert node.methods() == [
            "sui_getObject",
            "sui_getObject",
            "unsafe_moveCall",
            "sui_executeTransactionBlock",
        ]
        move_call = node.params("unsafe_moveCall")[0]
        assert move_call[0] == client.signer.address
        assert move_call[1:4] == [PACKAGE, "token", "mint"]
        assert move_call[5] == [TREASURY, MINTER, str(10 ** 9), SUI_USER]
        assert move_call[7] == str(client.gas_budget)

        execute = node.params("sui_executeTransactionBlock")[0]
        assert execute[0] == TX_BYTES
        assert len(execute[1]) == 1
        assert handle.tx_handle == sui_transaction_digest(TX_BYTES)
        assert handle.kind == OperationKind.MINT

    @pytest.mark.asyncio
    async def test_supplied_refs_skip_resolution(self):
        node = FakeNode(_sui_submit_handlers())
        refs = (ObjectRef(MINTER, 9), ObjectRef(TREASURY, 17))
        await _sui_client(node).submit_mint(SUI_USER, 1, refs)
        assert "sui_getObject" not in node.methods()
        assert node.params("unsafe_moveCall")[0][5][:2] == [TREASURY, MINTER]

    @pytest.mark.asyncio
    async def test_missing_ref_is_stale(self):
        node = FakeNode(_sui_submit_handlers())
        with pytest.raises(ObjectStale):
            await _sui_client(node).submit_mint(SUI_USER, 1, (ObjectRef(TREASURY, 17),))

    @pytest.mark.asyncio
    async def test_burn_uses_coin(self):
        node = FakeNode(_sui_submit_handlers())
        coin = AssetHandle(asset_id="0x" + "66" * 32, asset_type=COIN_TYPE, balance=10 ** 9)
        handle = await _sui_client(node).submit_burn(SUI_USER, 5 * 10 ** 8, asset=coin)
        move_call = node.params("unsafe_moveCall")[0]
        assert move_call[3] == "burn"
        assert move_call[5] == [TREASURY, MINTER, coin.asset_id, str(5 * 10 ** 8)]
        assert handle.kind == OperationKind.BURN

    @pytest.mark.parametrize("built", [None, {"gas": []}, {"txBytes": None}])
    @pytest.mark.asyncio
    async def test_unbuilt_transaction_is_never_broadcast(self, built):
        node = FakeNode(_sui_submit_handlers(unsafe_moveCall=built))
        with pytest.raises(LedgerUnavailable) as exc_info:
            await _sui_client(node).submit_mint(SUI_USER, 1)
        assert exc_info.value.handle is None
        assert "sui_executeTransactionBlock" not in node.methods()

    @pytest.mark.asyncio
    async def test_burn_without_coin_is_rejected(self):
        with pytest.raises(SourceRejected):
            await _sui_client(FakeNode(_sui_submit_handlers())).submit_burn(SUI_USER, 1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", [
        "Transaction validator signing failed due to issues with transaction inputs: "
        "Object ID 0x44 Version 0x11 Digest D is not available for consumption, current version: 0x12",
        "Failed to sign transaction by a quorum of validators because of locked objects: "
        "ObjectLockConflict",
    ])
    async def test_version_conflict_is_stale(self, message):
        node = FakeNode(_sui_submit_handlers(sui_executeTransactionBlock=RpcFailure(message)))
        with pytest.raises(ObjectStale):
            await _sui_client(node).submit_mint(SUI_USER, 1)

    @pytest.mark.asyncio
    async def test_move_abort_on_mint_is_destination_rejected(self):
        node = FakeNode(_sui_submit_handlers(
            unsafe_moveCall=RpcFailure("MoveAbort(MoveLocation { module: token }, 2) in command 0"),
        ))
        with pytest.raises(DestinationRejected):
            await _sui_client(node).submit_mint(SUI_USER, 1)

    @pytest.mark.asyncio
    async def test_move_abort_on_burn_is_source_rejected(self):
        node = FakeNode(_sui_submit_handlers(
            sui_executeTransactionBlock=RpcFailure("MoveAbort(...) insufficient balance"),
        ))
        coin = AssetHandle(asset_id="0x66", asset_type=COIN_TYPE, balance=1)
        with pytest.raises(SourceRejected):
            await _sui_client(node).submit_burn(SUI_USER, 1, asset=coin)

    @pytest.mark.asyncio
    async def test_node_digest_wins(self):
        node = FakeNode(_sui_submit_handlers(
            sui_executeTransactionBlock={"digest": "NodeDigest", "effects": {}},
        ))
        handle = await _sui_client(node).submit_mint(SUI_USER, 1)
        assert handle.tx_handle == "NodeDigest"


# ═══════════════════════════════════════════════════════════════════════
#  5. SUI: COINS & CONFIRMATION
# ═══════════════════════════════════════════════════════════════════════

def _coin(object_id, balance, version=1):
    return {
        "coinType": COIN_TYPE,
        "coinObjectId": object_id,
        "version": str(version),
        "digest": "D",
        "balance": str(balance),
    }


class TestSuiCoins:

    @pytest.mark.asyncio
    async def test_lowest_eligible_id_across_pages(self):
        pages = {
            None: {
                "data": [_coin("0x0f", 100), _coin("0x09", 5)],
                "hasNextPage": True,
                "nextCursor": "c1",
            },
            "c1": {
                "data": [_coin("0x0a", 50), _coin("0x3f", 500)],
                "hasNextPage": False,
                "nextCursor": None,
            },
        }
        node = FakeNode({"suix_getCoins": lambda params: pages[params[2]]})
        asset = await _sui_client(node).get_owned_asset(SUI_USER, min_amount=50)
        assert asset.asset_id == "0x0a"
        assert asset.balance == 50
        assert asset.version == 1
        assert node.params("suix_getCoins")[0][:2] == [SUI_USER, COIN_TYPE]

    @pytest.mark.asyncio
    async def test_no_eligible_coin(self):
        node = FakeNode({"suix_getCoins": {"data": [_coin("0x01", 3)], "hasNextPage": False}})
        with pytest.raises(SourceRejected):
            await _sui_client(node).get_owned_asset(SUI_USER, min_amount=4)


def _sui_handle(kind=OperationKind.MINT):
    return OperationHandle(ledger=LedgerId.SUI, kind=kind, tx_handle="Digest1", counterparty=SUI_USER)


class TestSuiConfirmation:

    @pytest.mark.asyncio
    async def test_confirmed_with_balance_change(self):
        node = FakeNode({
            "sui_getTransactionBlock": {
                "digest": "Digest1",
                "checkpoint": "1234",
                "effects": {"status": {"status": "success"}},
                "balanceChanges": [
                    {"owner": {"AddressOwner": SUI_USER}, "coinType": "0x2::sui::SUI", "amount": "-1000"},
                    {"owner": {"AddressOwner": SUI_USER}, "coinType": COIN_TYPE, "amount": "1000000000"},
                ],
            },
        })
        confirmation = await _sui_client(node).await_confirmation(_sui_handle(), timeout=1)
        assert confirmation.status == ConfirmationStatus.CONFIRMED
        assert confirmation.amount == 10 ** 9
        assert confirmation.checkpoint == 1234

    @pytest.mark.asyncio
    async def test_failure_status(self):
        node = FakeNode({
            "sui_getTransactionBlock": {
                "digest": "Digest1",
                "effects": {"status": {"status": "failure", "error": "MoveAbort in command 0"}},
            },
        })
        confirmation = await _sui_client(node).await_confirmation(_sui_handle(), timeout=1)
        assert confirmation.status == ConfirmationStatus.FAILED
        assert confirmation.error == "MoveAbort in command 0"

    @pytest.mark.asyncio
    async def test_unknown_digest_is_pending(self):
        node = FakeNode({
            "sui_getTransactionBlock": RpcFailure(
                "Could not find the referenced transaction [TransactionDigest(Digest1)]."
            ),
        })
        confirmation = await _sui_client(node).await_confirmation(_sui_handle(), timeout=0.05)
        assert confirmation.status == ConfirmationStatus.TIMED_OUT
