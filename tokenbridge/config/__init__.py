"""
tokenbridge Unified Configuration

Loads all sections of tokenbridge.toml at startup.
Environment variables override TOML values.
"""

from .loader import (
    BridgeConfig,
    DatabaseConfig,
    EthereumConfig,
    LoggingConfig,
    OrchestratorConfig,
    RpcConfig,
    SuiConfig,
    load_config,
)
from .runtime import BridgeRuntime, build_runtime, orchestrator_settings

__all__ = [
    "BridgeConfig",
    "DatabaseConfig",
    "EthereumConfig",
    "LoggingConfig",
    "OrchestratorConfig",
    "RpcConfig",
    "SuiConfig",
    "load_config",
    "BridgeRuntime",
    "build_runtime",
    "orchestrator_settings",
]
