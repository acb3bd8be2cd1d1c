# src/optirollup/crypto/hash.py
from typing import Any, Union
import hashlib
import json
import string

from web3 import Web3

from ..utils.config import Config

_HEX_DIGITS = frozenset(string.hexdigits)


class Hash:
    @staticmethod
    def sha256(data: Union[str, bytes]) -> str:
        """
        Create 0x-prefixed SHA-256 hash of raw bytes (strings are UTF-8 encoded)
        """
        if isinstance(data, str):
            data = data.encode()
        return "0x" + hashlib.sha256(data).hexdigest()

    @staticmethod
    def keccak(data: bytes) -> str:
        """
        Create 0x-prefixed keccak256 hash, as used by the settlement layer
        """
        return Web3.to_hex(Web3.keccak(data))

    @staticmethod
    def is_hex(value: Any, byte_length: int = None) -> bool:
        """Check for a 0x-prefixed hex string, optionally of an exact byte length"""
        if not isinstance(value, str) or not value.startswith("0x"):
            return False
        digits = value[2:]
        if len(digits) % 2 != 0:
            return False
        if byte_length is not None and len(digits) != byte_length * 2:
            return False
        return all(c in _HEX_DIGITS for c in digits)

    @staticmethod
    def is_hash(value: Any) -> bool:
        """Check for a 32-byte 0x-prefixed hash"""
        return Hash.is_hex(value, 32) and len(value) == Config.PROOF_HEX_LENGTH

    @staticmethod
    def to_bytes(value: str) -> bytes:
        """Decode a 0x-prefixed hex string"""
        return Web3.to_bytes(hexstr=value)

    @staticmethod
    def uint256(value: int) -> bytes:
        """Encode a non-negative integer as a 32-byte big-endian word"""
        return int(value).to_bytes(32, "big")

    @staticmethod
    def address_bytes(address: str) -> bytes:
        """Encode an address as its 20 raw bytes"""
        return Hash.to_bytes(Web3.to_checksum_address(address))

    @staticmethod
    def canonical_json(payload: Any) -> bytes:
        """Compact, key-sorted JSON used for every hashed serialization"""
        return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()
