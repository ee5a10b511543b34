"""
tokenbridge TOML Configuration Loader

Loads every section of tokenbridge.toml at startup with environment
variable overrides (dataclass + from_dict + apply_env + validate).

Environment variable mapping:
    [ethereum] rpc_url       → TOKENBRIDGE_ETH_RPC_URL
    [sui] treasury_cap_id    → TOKENBRIDGE_SUI_TREASURY_CAP_ID
    [orchestrator] allow_truncation → TOKENBRIDGE_ALLOW_TRUNCATION
    ...

Operator keys MUST come from env vars, never TOML:
    TOKENBRIDGE_ETH_PRIVATE_KEY, TOKENBRIDGE_SUI_PRIVATE_KEY
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import tomllib as tomli  # Python 3.11+
except ImportError:
    import tomli  # type: ignore[no-redef]

from ..constants import (
    ETH_CONFIRMATION_TIMEOUT,
    ETH_CONFIRMATIONS,
    ETH_MAX_WAIT,
    ETH_POLL_INTERVAL,
    ETHEREUM_DECIMALS,
    MAX_DECIMALS,
    RPC_BACKOFF_BASE,
    RPC_BACKOFF_MAX,
    RPC_MAX_ATTEMPTS,
    RPC_TIMEOUT,
    STALE_RETRY_LIMIT,
    SUI_CONFIRMATION_TIMEOUT,
    SUI_DECIMALS,
    SUI_GAS_BUDGET,
    SUI_MAX_WAIT,
    SUI_POLL_INTERVAL,
    VALID_SUI_ADDRESS_PATTERN,
)
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_EVM_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _check_url(section: str, url: str) -> None:
    if not url.startswith(("http://", "https://")):
        raise ConfigurationError(f"[{section}] rpc_url must be an http(s) URL, got {url!r}")


def _check_decimals(section: str, decimals: int) -> None:
    if isinstance(decimals, bool) or not isinstance(decimals, int) or not 0 <= decimals <= MAX_DECIMALS:
        raise ConfigurationError(f"[{section}] decimals must be in 0..{MAX_DECIMALS}, got {decimals!r}")


def _check_timing(section: str, poll_interval: float, confirmation_timeout: float, max_wait: float) -> None:
    if poll_interval <= 0:
        raise ConfigurationError(f"[{section}] poll_interval must be positive")
    if confirmation_timeout <= 0:
        raise ConfigurationError(f"[{section}] confirmation_timeout must be positive")
    if max_wait < confirmation_timeout:
        raise ConfigurationError(f"[{section}] max_wait must be >= confirmation_timeout")


# ---------------------------------------------------------------------------
# Ledger sections
# ---------------------------------------------------------------------------


@dataclass
class EthereumConfig:
    """[ethereum] section."""
    rpc_url: str = "http://127.0.0.1:8545"
    chain_id: int = 1
    contract_address: str = ""
    decimals: int = ETHEREUM_DECIMALS
    confirmations: int = ETH_CONFIRMATIONS
    gas_limit_cap: int = 500_000
    poll_interval: float = ETH_POLL_INTERVAL
    confirmation_timeout: float = ETH_CONFIRMATION_TIMEOUT
    max_wait: float = ETH_MAX_WAIT
    private_key: str = field(default="", repr=False)  # env only

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EthereumConfig":
        if "private_key" in data:
            raise ConfigurationError(
                "[ethereum] private_key must not be set in TOML; use TOKENBRIDGE_ETH_PRIVATE_KEY"
            )
        return cls(
            rpc_url=data.get("rpc_url", "http://127.0.0.1:8545"),
            chain_id=data.get("chain_id", 1),
            contract_address=data.get("contract_address", ""),
            decimals=data.get("decimals", ETHEREUM_DECIMALS),
            confirmations=data.get("confirmations", ETH_CONFIRMATIONS),
            gas_limit_cap=data.get("gas_limit_cap", 500_000),
            poll_interval=data.get("poll_interval", ETH_POLL_INTERVAL),
            confirmation_timeout=data.get("confirmation_timeout", ETH_CONFIRMATION_TIMEOUT),
            max_wait=data.get("max_wait", ETH_MAX_WAIT),
        )

    def apply_env(self) -> None:
        """Override from environment variables."""
        if v := os.environ.get("TOKENBRIDGE_ETH_RPC_URL"):
            self.rpc_url = v
        if v := os.environ.get("TOKENBRIDGE_ETH_CHAIN_ID"):
            self.chain_id = int(v)
        if v := os.environ.get("TOKENBRIDGE_ETH_CONTRACT_ADDRESS"):
            self.contract_address = v
        if v := os.environ.get("TOKENBRIDGE_ETH_DECIMALS"):
            self.decimals = int(v)
        if v := os.environ.get("TOKENBRIDGE_ETH_CONFIRMATIONS"):
            self.confirmations = int(v)
        if v := os.environ.get("TOKENBRIDGE_ETH_GAS_LIMIT_CAP"):
            self.gas_limit_cap = int(v)
        if v := os.environ.get("TOKENBRIDGE_ETH_POLL_INTERVAL"):
            self.poll_interval = float(v)
        if v := os.environ.get("TOKENBRIDGE_ETH_CONFIRMATION_TIMEOUT"):
            self.confirmation_timeout = float(v)
        if v := os.environ.get("TOKENBRIDGE_ETH_MAX_WAIT"):
            self.max_wait = float(v)
        if v := os.environ.get("TOKENBRIDGE_ETH_PRIVATE_KEY"):
            self.private_key = v

    def validate(self, require_secrets: bool = True) -> None:
        _check_url("ethereum", self.rpc_url)
        if self.chain_id < 1:
            raise ConfigurationError("[ethereum] chain_id must be >= 1")
        if not _EVM_ADDRESS_PATTERN.match(self.contract_address):
            raise ConfigurationError(
                f"[ethereum] contract_address must be a 0x-prefixed 20-byte address, "
                f"got {self.contract_address!r}"
            )
        _check_decimals("ethereum", self.decimals)
        if self.confirmations < 1:
            raise ConfigurationError("[ethereum] confirmations must be >= 1")
        if self.gas_limit_cap < 21_000:
            raise ConfigurationError("[ethereum] gas_limit_cap must be >= 21000")
        _check_timing("ethereum", self.poll_interval, self.confirmation_timeout, self.max_wait)
        if require_secrets and not self.private_key:
            raise ConfigurationError("TOKENBRIDGE_ETH_PRIVATE_KEY is not set")


@dataclass
class SuiConfig:
    """[sui] section."""
    rpc_url: str = "https://fullnode.testnet.sui.io:443"
    package_id: str = ""
    module: str = "token"
    coin_name: str = "TOKEN"
    treasury_cap_id: str = ""
    minter_cap_id: str = ""
    decimals: int = SUI_DECIMALS
    gas_budget: int = SUI_GAS_BUDGET
    poll_interval: float = SUI_POLL_INTERVAL
    confirmation_timeout: float = SUI_CONFIRMATION_TIMEOUT
    max_wait: float = SUI_MAX_WAIT
    private_key: str = field(default="", repr=False)  # env only

    @property
    def coin_type(self) -> str:
        return f"{self.package_id}::{self.module}::{self.coin_name}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SuiConfig":
        if "private_key" in data:
            raise ConfigurationError(
                "[sui] private_key must not be set in TOML; use TOKENBRIDGE_SUI_PRIVATE_KEY"
            )
        return cls(
            rpc_url=data.get("rpc_url", "https://fullnode.testnet.sui.io:443"),
            package_id=data.get("package_id", ""),
            module=data.get("module", "token"),
            coin_name=data.get("coin_name", "TOKEN"),
            treasury_cap_id=data.get("treasury_cap_id", ""),
            minter_cap_id=data.get("minter_cap_id", ""),
            decimals=data.get("decimals", SUI_DECIMALS),
            gas_budget=data.get("gas_budget", SUI_GAS_BUDGET),
            poll_interval=data.get("poll_interval", SUI_POLL_INTERVAL),
            confirmation_timeout=data.get("confirmation_timeout", SUI_CONFIRMATION_TIMEOUT),
            max_wait=data.get("max_wait", SUI_MAX_WAIT),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("TOKENBRIDGE_SUI_RPC_URL"):
            self.rpc_url = v
        if v := os.environ.get("TOKENBRIDGE_SUI_PACKAGE_ID"):
            self.package_id = v
        if v := os.environ.get("TOKENBRIDGE_SUI_MODULE"):
            self.module = v
        if v := os.environ.get("TOKENBRIDGE_SUI_COIN_NAME"):
            self.coin_name = v
        if v := os.environ.get("TOKENBRIDGE_SUI_TREASURY_CAP_ID"):
            self.treasury_cap_id = v
        if v := os.environ.get("TOKENBRIDGE_SUI_MINTER_CAP_ID"):
            self.minter_cap_id = v
        if v := os.environ.get("TOKENBRIDGE_SUI_DECIMALS"):
            self.decimals = int(v)
        if v := os.environ.get("TOKENBRIDGE_SUI_GAS_BUDGET"):
            self.gas_budget = int(v)
        if v := os.environ.get("TOKENBRIDGE_SUI_POLL_INTERVAL"):
            self.poll_interval = float(v)
        if v := os.environ.get("TOKENBRIDGE_SUI_CONFIRMATION_TIMEOUT"):
            self.confirmation_timeout = float(v)
        if v := os.environ.get("TOKENBRIDGE_SUI_MAX_WAIT"):
            self.max_wait = float(v)
        if v := os.environ.get("TOKENBRIDGE_SUI_PRIVATE_KEY"):
            self.private_key = v

    def validate(self, require_secrets: bool = True) -> None:
        _check_url("sui", self.rpc_url)
        for name in ("package_id", "treasury_cap_id", "minter_cap_id"):
            value = getattr(self, name)
            if not VALID_SUI_ADDRESS_PATTERN.match(value):
                raise ConfigurationError(f"[sui] {name} must be a 0x-prefixed object id, got {value!r}")
        if not self.module.isidentifier() or not self.coin_name.isidentifier():
            raise ConfigurationError("[sui] module and coin_name must be Move identifiers")
        _check_decimals("sui", self.decimals)
        if self.gas_budget <= 0:
            raise ConfigurationError("[sui] gas_budget must be positive")
        _check_timing("sui", self.poll_interval, self.confirmation_timeout, self.max_wait)
        if require_secrets and not self.private_key:
            raise ConfigurationError("TOKENBRIDGE_SUI_PRIVATE_KEY is not set")


# ---------------------------------------------------------------------------
# Process sections
# ---------------------------------------------------------------------------


@dataclass
class OrchestratorConfig:
    """[orchestrator] section."""
    stale_retry_limit: int = STALE_RETRY_LIMIT
    allow_truncation: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrchestratorConfig":
        return cls(
            stale_retry_limit=data.get("stale_retry_limit", STALE_RETRY_LIMIT),
            allow_truncation=data.get("allow_truncation", True),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("TOKENBRIDGE_STALE_RETRY_LIMIT"):
            self.stale_retry_limit = int(v)
        if v := os.environ.get("TOKENBRIDGE_ALLOW_TRUNCATION"):
            self.allow_truncation = _env_bool(v)


@dataclass
class RpcConfig:
    """[rpc] section, shared by both ledger transports."""
    max_attempts: int = RPC_MAX_ATTEMPTS
    backoff_base: float = RPC_BACKOFF_BASE
    backoff_max: float = RPC_BACKOFF_MAX
    timeout: float = RPC_TIMEOUT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RpcConfig":
        return cls(
            max_attempts=data.get("max_attempts", RPC_MAX_ATTEMPTS),
            backoff_base=data.get("backoff_base", RPC_BACKOFF_BASE),
            backoff_max=data.get("backoff_max", RPC_BACKOFF_MAX),
            timeout=data.get("timeout", RPC_TIMEOUT),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("TOKENBRIDGE_RPC_MAX_ATTEMPTS"):
            self.max_attempts = int(v)
        if v := os.environ.get("TOKENBRIDGE_RPC_BACKOFF_BASE"):
            self.backoff_base = float(v)
        if v := os.environ.get("TOKENBRIDGE_RPC_BACKOFF_MAX"):
            self.backoff_max = float(v)
        if v := os.environ.get("TOKENBRIDGE_RPC_TIMEOUT"):
            self.timeout = float(v)


@dataclass
class DatabaseConfig:
    """[database] section."""
    path: str = "./data/tokenbridge.db"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DatabaseConfig":
        return cls(path=data.get("path", "./data/tokenbridge.db"))

    def apply_env(self) -> None:
        if v := os.environ.get("TOKENBRIDGE_DATABASE_PATH"):
            self.path = v


@dataclass
class LoggingConfig:
    """[logging] section."""
    level: str = "INFO"
    file_output: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingConfig":
        return cls(
            level=str(data.get("level", "INFO")).upper(),
            file_output=data.get("file_output", True),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("TOKENBRIDGE_LOG_LEVEL"):
            self.level = v.upper()
        if v := os.environ.get("TOKENBRIDGE_LOG_FILE_OUTPUT"):
            self.file_output = _env_bool(v)


# -----------------------------------------------------------------------
# Top-level unified config
# -----------------------------------------------------------------------

@dataclass
class BridgeConfig:
    """
    Unified bridge configuration.

    Loads every section of tokenbridge.toml and applies environment
    variable overrides. Validated once at startup; this is the single
    source of truth at runtime.
    """
    ethereum: EthereumConfig = field(default_factory=EthereumConfig)
    sui: SuiConfig = field(default_factory=SuiConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    rpc: RpcConfig = field(default_factory=RpcConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # --- factories --------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BridgeConfig":
        """Create BridgeConfig from a parsed TOML dict."""
        return cls(
            ethereum=EthereumConfig.from_dict(data.get("ethereum", {})),
            sui=SuiConfig.from_dict(data.get("sui", {})),
            orchestrator=OrchestratorConfig.from_dict(data.get("orchestrator", {})),
            rpc=RpcConfig.from_dict(data.get("rpc", {})),
            database=DatabaseConfig.from_dict(data.get("database", {})),
            logging=LoggingConfig.from_dict(data.get("logging", {})),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "BridgeConfig":
        """
        Load configuration from a TOML file.

        A missing file yields defaults (plus env overrides); a malformed
        one raises ConfigurationError.
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning("Config file not found: %s, using defaults", config_path)
            cfg = cls()
            cfg.apply_env()
            return cfg

        try:
            with open(path, "rb") as f:
                raw = tomli.load(f)
        except tomli.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

        cfg = cls.from_dict(raw)
        cfg.apply_env()
        return cfg

    # --- env overrides ----------------------------------------------------

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        self.ethereum.apply_env()
        self.sui.apply_env()
        self.orchestrator.apply_env()
        self.rpc.apply_env()
        self.database.apply_env()
        self.logging.apply_env()

    # --- validation -------------------------------------------------------

    def validate(self, require_secrets: bool = True) -> bool:
        """
        Validate all configuration sections.

        Args:
            require_secrets: Also require both operator keys (commands that
                only read the request ledger pass False)

        Raises:
            ConfigurationError: on invalid config
        """
        self.ethereum.validate(require_secrets)
        self.sui.validate(require_secrets)
        if self.orchestrator.stale_retry_limit < 0:
            raise ConfigurationError("[orchestrator] stale_retry_limit must be >= 0")
        if self.rpc.max_attempts < 1:
            raise ConfigurationError("[rpc] max_attempts must be >= 1")
        if self.rpc.backoff_base < 0 or self.rpc.backoff_max < self.rpc.backoff_base:
            raise ConfigurationError("[rpc] backoff_max must be >= backoff_base >= 0")
        if self.rpc.timeout <= 0:
            raise ConfigurationError("[rpc] timeout must be positive")
        if not self.database.path:
            raise ConfigurationError("[database] path must be set")
        if self.logging.level not in _LOG_LEVELS:
            raise ConfigurationError(f"Invalid log level: {self.logging.level}")
        return True

    # --- serialisation ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics; operator keys are never included)."""
        return {
            "ethereum": {
                "rpc_url": self.ethereum.rpc_url,
                "chain_id": self.ethereum.chain_id,
                "contract_address": self.ethereum.contract_address,
                "decimals": self.ethereum.decimals,
                "confirmations": self.ethereum.confirmations,
                "confirmation_timeout": self.ethereum.confirmation_timeout,
                "max_wait": self.ethereum.max_wait,
                "private_key_set": bool(self.ethereum.private_key),
            },
            "sui": {
                "rpc_url": self.sui.rpc_url,
                "coin_type": self.sui.coin_type,
                "treasury_cap_id": self.sui.treasury_cap_id,
                "minter_cap_id": self.sui.minter_cap_id,
                "decimals": self.sui.decimals,
                "gas_budget": self.sui.gas_budget,
                "confirmation_timeout": self.sui.confirmation_timeout,
                "max_wait": self.sui.max_wait,
                "private_key_set": bool(self.sui.private_key),
            },
            "orchestrator": {
                "stale_retry_limit": self.orchestrator.stale_retry_limit,
                "allow_truncation": self.orchestrator.allow_truncation,
            },
            "rpc": {
                "max_attempts": self.rpc.max_attempts,
                "backoff_base": self.rpc.backoff_base,
                "backoff_max": self.rpc.backoff_max,
                "timeout": self.rpc.timeout,
            },
            "database": {"path": self.database.path},
            "logging": {"level": self.logging.level},
        }


def load_config(path: Optional[str] = None) -> BridgeConfig:
    """
    Load bridge configuration.

    Resolution order:
        1. Explicit *path* argument
        2. TOKENBRIDGE_CONFIG env var
        3. ./tokenbridge.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("TOKENBRIDGE_CONFIG", "tokenbridge.toml")

    return BridgeConfig.from_file(path)
