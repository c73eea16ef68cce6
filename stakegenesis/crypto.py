from typing import Optional, Union

import base58
import bech32
from bip_utils.bech32 import Bech32ChecksumError, SegwitBech32Decoder
from web3 import Web3

try:
    from cryptography.hazmat.primitives import serialization
    from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
except Exception as exc:  # pragma: no cover - hard fail when dependency missing
    raise ImportError(
        "cryptography is required. Install with `python3 -m pip install cryptography`."
    ) from exc

from .utils import hex_prefixed

VALIDATOR_HRP = "im"
VALIDATOR_ADDRESS_LENGTH = 41
ADDRESS_BYTES = 20
CONSENSUS_KEY_BYTES = 32

BITCOIN_NETWORKS = {
    "mainnet": {"hrp": "bc", "p2pkh": 0x00, "p2sh": 0x05},
    "testnet": {"hrp": "tb", "p2pkh": 0x6F, "p2sh": 0xC4},
    "regtest": {"hrp": "bcrt", "p2pkh": 0x6F, "p2sh": 0xC4},
}


# -----------------------------
# Validator addresses (bech32, "im" prefix)
# -----------------------------


def decode_validator_address(address: str) -> bytes:
    if len(address) != VALIDATOR_ADDRESS_LENGTH:
        raise ValueError(f"validator address must be {VALIDATOR_ADDRESS_LENGTH} characters")
    if address != address.lower():
        raise ValueError("validator address must be lower case")
    hrp, data = bech32.bech32_decode(address)
    if hrp is None or data is None:
        raise ValueError("invalid bech32 checksum or encoding")
    if hrp != VALIDATOR_HRP:
        raise ValueError(f"unexpected prefix {hrp!r}")
    payload = bech32.convertbits(data, 5, 8, False)
    if payload is None or len(payload) != ADDRESS_BYTES:
        raise ValueError("validator payload must be 20 bytes")
    return bytes(payload)


def encode_validator_address(payload: bytes) -> str:
    if len(payload) != ADDRESS_BYTES:
        raise ValueError("validator payload must be 20 bytes")
    return bech32.bech32_encode(VALIDATOR_HRP, bech32.convertbits(list(payload), 8, 5))


def is_validator_address(address: str) -> bool:
    try:
        decode_validator_address(address)
    except ValueError:
        return False
    return True


# -----------------------------
# Destination (EVM) addresses
# -----------------------------


def normalize_destination(address: str) -> str:
    candidate = address if address[:2] in ("0x", "0X") else "0x" + address
    if len(candidate) != 2 + ADDRESS_BYTES * 2 or not Web3.is_address(candidate):
        raise ValueError(f"invalid destination address {address!r}")
    body = candidate[2:]
    # mixed case must carry a valid EIP-55 checksum
    if body != body.lower() and body != body.upper() and not Web3.is_checksum_address(candidate):
        raise ValueError(f"bad checksum on destination address {address!r}")
    return "0x" + body.lower()


# -----------------------------
# Source chain addresses
# -----------------------------


def bitcoin_address_hash(address: str, network: str = "mainnet") -> bytes:
    params = BITCOIN_NETWORKS.get(network)
    if params is None:
        raise ValueError(f"unknown bitcoin network {network!r}")
    try:
        raw = base58.b58decode_check(address)
    except ValueError:
        raw = b""
    if len(raw) == ADDRESS_BYTES + 1 and raw[0] in (params["p2pkh"], params["p2sh"]):
        return raw[1:]
    # v0 programs use bech32, v1+ (taproot) use bech32m
    try:
        _, witprog = SegwitBech32Decoder.Decode(params["hrp"], address)
    except (Bech32ChecksumError, ValueError) as exc:
        raise ValueError(f"{address} has no matching script for {network}") from exc
    return bytes(witprog)


def xrp_account_id(address: str) -> bytes:
    try:
        raw = base58.b58decode_check(address, alphabet=base58.XRP_ALPHABET)
    except ValueError as exc:
        raise ValueError(f"invalid XRP address {address!r}") from exc
    if len(raw) != ADDRESS_BYTES + 1 or raw[0] != 0:
        raise ValueError(f"invalid XRP account id in {address!r}")
    return raw[1:]


def encode_xrp_address(account_id: bytes) -> str:
    return base58.b58encode_check(b"\x00" + account_id, alphabet=base58.XRP_ALPHABET).decode()


# -----------------------------
# Consensus keys (ed25519)
# -----------------------------


def normalize_consensus_key(raw: Union[bytes, str, None]) -> Optional[str]:
    if raw is None:
        return None
    if isinstance(raw, str):
        text = raw[2:] if raw[:2] in ("0x", "0X") else raw
        if not text:
            return None
        raw = bytes.fromhex(text)
    if not any(raw):
        return None
    if len(raw) != CONSENSUS_KEY_BYTES:
        raise ValueError("consensus key must be 32 bytes")
    key = Ed25519PublicKey.from_public_bytes(bytes(raw))
    return hex_prefixed(
        key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
    )
