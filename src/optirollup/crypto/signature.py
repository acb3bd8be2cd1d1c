#src/optirollup/crypto/signature.py
from typing import Any
import logging

from cryptography.hazmat.primitives.asymmetric import ec
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys.exceptions import BadSignature, ValidationError as KeyValidationError
from web3 import Web3

from .hash import Hash
from ..utils.config import Config

logger = logging.getLogger(__name__)

RECOVERY_IDS = frozenset({0, 1, 27, 28})


class SignatureManager:
    """
    Well-formedness checks for transaction signatures and validator keys,
    plus signer recovery for EIP-191 personal messages
    """

    @staticmethod
    def is_well_formed_signature(signature: Any) -> bool:
        """A 65-byte r||s||v hex signature with a known recovery id"""
        if not Hash.is_hex(signature, 65):
            return False
        if len(signature) != Config.SIGNATURE_HEX_LENGTH:
            return False
        return int(signature[-2:], 16) in RECOVERY_IDS

    @staticmethod
    def is_valid_public_key(public_key: Any) -> bool:
        """
        A 0x-prefixed 64-byte uncompressed secp256k1 point (X||Y, no 04 prefix)
        that actually lies on the curve
        """
        if not Hash.is_hex(public_key, 64):
            return False
        if len(public_key) != Config.PUBLIC_KEY_HEX_LENGTH:
            return False
        try:
            ec.EllipticCurvePublicKey.from_encoded_point(
                ec.SECP256K1(),
                b"\x04" + Hash.to_bytes(public_key)
            )
        except ValueError:
            return False
        return True

    @staticmethod
    def recover_signer(message: bytes, signature: str) -> str:
        """Recover the checksum address that signed ``message``"""
        return Account.recover_message(encode_defunct(primitive=message), signature=signature)

    @staticmethod
    def verify_signer(message: bytes, signature: str, address: str) -> bool:
        """Check that ``signature`` over ``message`` was produced by ``address``"""
        try:
            recovered = SignatureManager.recover_signer(message, signature)
        except (ValueError, TypeError, BadSignature, KeyValidationError) as e:
            logger.warning(f"Signer recovery failed: {str(e)}")
            return False
        return recovered == Web3.to_checksum_address(address)
