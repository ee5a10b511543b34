"""
Signing Collaborators

The bridge is an operator-trusted relay: it holds authority on both ledgers
and signs with operator keys. Key *storage* is somebody else's problem;
these classes take key material handed to them at startup (see
``tokenbridge.config``) and expose only ``address`` and ``sign_*``.

  - EvmSigner / LocalEvmSigner: legacy-or-1559 EVM transactions via eth_account
  - SuiSigner / Ed25519SuiSigner: Sui intent-message signatures via cryptography
"""

import base64
import hashlib
from dataclasses import dataclass
from typing import Any, Dict, Protocol, runtime_checkable

import base58
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from eth_account import Account
from eth_utils import ValidationError as EthValidationError, encode_hex

from ..exceptions import ConfigurationError

# Sui signature scheme flag for Ed25519
SUI_ED25519_FLAG = 0x00

# IntentScope::TransactionData, IntentVersion::V0, AppId::Sui
SUI_TRANSACTION_INTENT = bytes([0, 0, 0])


# ══════════════════════════════════════════════════════════════════════
#  EVM
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SignedEvmTransaction:
    """Raw signed transaction and its hash, both 0x-prefixed hex."""
    raw: str
    tx_hash: str


@runtime_checkable
class EvmSigner(Protocol):
    """Signs EVM transactions for the operator account."""

    @property
    def address(self) -> str:
        ...

    def sign_transaction(self, tx: Dict[str, Any]) -> SignedEvmTransaction:
        ...


class LocalEvmSigner:
    """EvmSigner backed by an in-process private key."""

    def __init__(self, private_key: str):
        try:
            self._account = Account.from_key(private_key)
        except (ValueError, TypeError, EthValidationError) as e:
            raise ConfigurationError(f"Invalid EVM private key: {e}") from e

    @property
    def address(self) -> str:
        return self._account.address

    def sign_transaction(self, tx: Dict[str, Any]) -> SignedEvmTransaction:
        signed = self._account.sign_transaction(tx)
        return SignedEvmTransaction(
            raw=encode_hex(signed.raw_transaction),
            tx_hash=encode_hex(signed.hash),
        )


# ══════════════════════════════════════════════════════════════════════
#  SUI
# ══════════════════════════════════════════════════════════════════════

def _blake2b_256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def sui_transaction_digest(tx_bytes_b64: str) -> str:
    """
    Digest of a Sui TransactionData, computed locally.

    Lets the orchestrator poll a transaction whose broadcast outcome is
    unknown (e.g. the node went away mid-request).
    """
    tx_bytes = base64.b64decode(tx_bytes_b64)
    return base58.b58encode(_blake2b_256(b"TransactionData::" + tx_bytes)).decode("ascii")


def sui_address_from_public_key(public_key: bytes) -> str:
    """Sui address: blake2b-256(flag || pubkey), hex."""
    return "0x" + _blake2b_256(bytes([SUI_ED25519_FLAG]) + public_key).hex()


def _parse_sui_key(private_key: str) -> bytes:
    text = private_key.strip()
    if text.startswith("suiprivkey"):
        raise ConfigurationError(
            "Bech32 'suiprivkey' keys are not supported; export the key as hex or base64"
        )
    hex_text = text[2:] if text.startswith("0x") else text
    if len(hex_text) == 64:
        try:
            return bytes.fromhex(hex_text)
        except ValueError:
            pass
    try:
        raw = base64.b64decode(text, validate=True)
    except ValueError as e:
        raise ConfigurationError("Sui private key is neither 32-byte hex nor base64") from e
    if len(raw) == 33 and raw[0] == SUI_ED25519_FLAG:
        return raw[1:]
    if len(raw) == 32:
        return raw
    raise ConfigurationError("Sui private key must be an Ed25519 key (flag 0x00)")


@runtime_checkable
class SuiSigner(Protocol):
    """Signs Sui transaction bytes for the operator address."""

    @property
    def address(self) -> str:
        ...

    def sign_transaction(self, tx_bytes_b64: str) -> str:
        ...


class Ed25519SuiSigner:
    """SuiSigner backed by an in-process Ed25519 key."""

    def __init__(self, private_key: str):
        seed = _parse_sui_key(private_key)
        self._key = Ed25519PrivateKey.from_private_bytes(seed)
        self._public_key = self._key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self._address = sui_address_from_public_key(self._public_key)

    @property
    def address(self) -> str:
        return self._address

    @property
    def public_key(self) -> bytes:
        return self._public_key

    def sign_transaction(self, tx_bytes_b64: str) -> str:
        """
        Sign base64 TransactionData bytes.

        Returns:
            base64(flag || signature || pubkey), the serialized Sui signature
        """
        tx_bytes = base64.b64decode(tx_bytes_b64)
        digest = _blake2b_256(SUI_TRANSACTION_INTENT + tx_bytes)
        signature = self._key.sign(digest)
        return base64.b64encode(
            bytes([SUI_ED25519_FLAG]) + signature + self._public_key
        ).decode("ascii")
