"""
Runtime Assembly

Turns a validated BridgeConfig into the explicit objects the bridge runs
on: signers, JSON-RPC transports, ledger clients, the request ledger and
the orchestrator. Nothing here is a module-level singleton; the caller
owns the returned runtime and must ``aclose()`` it.

Usage:
    config = load_config()
    async with await build_runtime(config) as runtime:
        response = await runtime.service.handle(payload)
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from .loader import BridgeConfig
from ..bridge.adapters import EthereumLedgerClient, SuiLedgerClient
from ..bridge.interface import BridgeService
from ..bridge.orchestrator import BridgeOrchestrator, LegSettings, OrchestratorSettings
from ..bridge.request_store import SQLiteRequestLedger
from ..bridge.rpc import JsonRpcClient
from ..bridge.signing import Ed25519SuiSigner, LocalEvmSigner
from ..logger import get_logger

logger = get_logger(__name__)


def orchestrator_settings(config: BridgeConfig) -> OrchestratorSettings:
    return OrchestratorSettings(
        ethereum=LegSettings(config.ethereum.confirmation_timeout, config.ethereum.max_wait),
        sui=LegSettings(config.sui.confirmation_timeout, config.sui.max_wait),
        stale_retry_limit=config.orchestrator.stale_retry_limit,
        allow_truncation=config.orchestrator.allow_truncation,
    )


def _rpc_client(url: str, config: BridgeConfig, http_client: Optional[httpx.AsyncClient]) -> JsonRpcClient:
    return JsonRpcClient(
        url,
        client=http_client,
        max_attempts=config.rpc.max_attempts,
        backoff_base=config.rpc.backoff_base,
        backoff_max=config.rpc.backoff_max,
        timeout=config.rpc.timeout,
    )


@dataclass
class BridgeRuntime:
    """Everything a running bridge process holds, with one lifetime."""
    config: BridgeConfig
    ethereum: EthereumLedgerClient
    sui: SuiLedgerClient
    request_ledger: SQLiteRequestLedger
    orchestrator: BridgeOrchestrator
    service: BridgeService

    async def aclose(self) -> None:
        await self.ethereum.aclose()
        await self.sui.aclose()
        await self.request_ledger.close()
        logger.debug("Bridge runtime closed")

    async def __aenter__(self) -> "BridgeRuntime":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


async def build_runtime(
    config: BridgeConfig,
    http_client: Optional[httpx.AsyncClient] = None,
) -> BridgeRuntime:
    """
    Validate ``config`` and assemble a BridgeRuntime.

    Args:
        config: Loaded configuration (validated here, once)
        http_client: Optional shared ``httpx.AsyncClient``; each transport
            creates its own if omitted

    Raises:
        ConfigurationError: invalid configuration or key material
    """
    config.validate()

    eth_signer = LocalEvmSigner(config.ethereum.private_key)
    sui_signer = Ed25519SuiSigner(config.sui.private_key)

    ethereum = EthereumLedgerClient(
        rpc=_rpc_client(config.ethereum.rpc_url, config, http_client),
        signer=eth_signer,
        contract_address=config.ethereum.contract_address,
        chain_id=config.ethereum.chain_id,
        precision=config.ethereum.decimals,
        confirmations=config.ethereum.confirmations,
        gas_limit_cap=config.ethereum.gas_limit_cap,
        poll_interval=config.ethereum.poll_interval,
    )
    sui = SuiLedgerClient(
        rpc=_rpc_client(config.sui.rpc_url, config, http_client),
        signer=sui_signer,
        package_id=config.sui.package_id,
        module=config.sui.module,
        treasury_cap_id=config.sui.treasury_cap_id,
        minter_cap_id=config.sui.minter_cap_id,
        coin_name=config.sui.coin_name,
        precision=config.sui.decimals,
        gas_budget=config.sui.gas_budget,
        poll_interval=config.sui.poll_interval,
    )

    request_ledger = await SQLiteRequestLedger.create(config.database.path)
    orchestrator = BridgeOrchestrator(
        ethereum, sui, request_ledger, orchestrator_settings(config)
    )

    logger.info(
        f"Bridge runtime ready: Ethereum operator {eth_signer.address} (chain {config.ethereum.chain_id}), "
        f"Sui operator {sui_signer.address} ({config.sui.coin_type})"
    )
    return BridgeRuntime(
        config=config,
        ethereum=ethereum,
        sui=sui,
        request_ledger=request_ledger,
        orchestrator=orchestrator,
        service=BridgeService(orchestrator),
    )
