"""
tokenbridge Constants

This module consolidates global constants and the .env-driven logger
configuration used throughout the bridge. Constants are organized by
category for easy reference and maintenance.
"""
import ast
import re

from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================
# Load environment variables once at module import
_config = dotenv_values(".env")

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
    'LOG_INCLUDE_RPC_CONTENT':         'False',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024 # 10MB
LOG_BACKUP_COUNT = 5
LOG_MAX_PARAMS_LENGTH = 320  # Truncates logged JSON-RPC params beyond this


# ==================================================================================
# LEDGER PRECISION
# ==================================================================================
ETHEREUM_DECIMALS = 18
SUI_DECIMALS = 9

# uint256 holds at most 78 decimal digits
MAX_DECIMALS = 77


# ==================================================================================
# ORCHESTRATION DEFAULTS
# ==================================================================================
# Bounded re-resolve-and-retry for stale authority object references
STALE_RETRY_LIMIT = 3

# Per-leg confirmation windows (seconds). Each leg re-polls until max_wait.
ETH_CONFIRMATION_TIMEOUT = 60.0
ETH_MAX_WAIT = 600.0
ETH_POLL_INTERVAL = 2.0
ETH_CONFIRMATIONS = 1

SUI_CONFIRMATION_TIMEOUT = 30.0
SUI_MAX_WAIT = 300.0
SUI_POLL_INTERVAL = 1.0
SUI_GAS_BUDGET = 20_000_000


# ==================================================================================
# TRANSPORT
# ==================================================================================
RPC_MAX_ATTEMPTS = 4
RPC_BACKOFF_BASE = 0.5
RPC_BACKOFF_MAX = 8.0
RPC_TIMEOUT = 15.0


# ==================================================================================
# VALIDATION PATTERNS
# ==================================================================================
# Sui addresses and object ids: 0x followed by up to 32 bytes of hex
VALID_SUI_ADDRESS_PATTERN = re.compile(r'^0x[0-9a-fA-F]{1,64}$')

# Wire amounts: positive base-10 integers only
VALID_AMOUNT_PATTERN = re.compile(r'^[0-9]+$')

# ERC-20 Transfer(address,address,uint256) topic
ERC20_TRANSFER_TOPIC = '0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef'


# ==================================================================================
# CONFIGURATION WRAPPERS
# ==================================================================================
class ConfigString(str):
    """
    String subclass that stores a default value.
    """
    def __new__(cls, value, default):
        obj = str.__new__(cls, value)
        obj._default = default
        return obj

    def default(self):
        return self._default

class ConfigBool(int):
    """
    Int subclass acting as a boolean that stores a default value.
    """
    def __new__(cls, value, default):
        obj = int.__new__(cls, bool(value))
        obj._default = default
        return obj

    def default(self):
        return self._default

    def __repr__(self):
        return str(bool(self))

    def __str__(self):
        return str(bool(self))

    def __eq__(self, other):
        return bool(self) == other

    __hash__ = int.__hash__


# ==================================================================================
# DYNAMIC CONFIGURATION LOADING
# ==================================================================================
namespace = globals()

def parse_bool(v):
    """
    Convert "True"/"False" (any casing, with surrounding whitespace) into bool.
    Avoids exceptions by only calling ast.literal_eval for known literals.
    """
    if not isinstance(v, str):
        return v
    s = v.strip()
    if not s:
        return v
    if s.casefold() in {"true", "false"}:
        return ast.literal_eval(s.title())
    return v

for key, default_raw in LOGGER_DEFAULTS.items():
    # dotenv_values returns strings or None. None is treated as missing.
    raw = _config.get(key)
    value_raw = default_raw if raw is None else raw

    value = parse_bool(value_raw)
    default_val = parse_bool(default_raw)

    if isinstance(value, bool):
        namespace[key] = ConfigBool(value, default_val)
    else:
        namespace[key] = ConfigString(value_raw, default_val)
