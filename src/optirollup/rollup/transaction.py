# src/optirollup/rollup/transaction.py
from typing import Any, Dict, Mapping, Optional, Union
from dataclasses import dataclass
import logging

from web3 import Web3

from ..crypto.hash import Hash
from ..crypto.signature import SignatureManager
from ..exceptions import ValidationError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('from', 'to', 'value', 'data', 'nonce', 'signature')


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def _parse_uint(field: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Transaction field '{field}' must be an integer", reason=field)
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and value.isascii() and value.isdigit():
        parsed = int(value)
    elif isinstance(value, str) and Hash.is_hex(value) and len(value) > 2:
        parsed = int(value, 16)
    else:
        raise ValidationError(f"Transaction field '{field}' must be an integer", reason=field)
    if parsed < 0:
        raise ValidationError(f"Transaction field '{field}' must be non-negative", reason=field)
    return parsed


@dataclass(frozen=True)
class Transaction:
    """
    An execution-layer transaction as accepted by the sequencer.

    Instances are immutable; the commitment is keccak256 over the canonical
    JSON of the six wire fields.
    """
    sender: str
    recipient: str
    value: int
    data: str
    nonce: int
    signature: str

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> 'Transaction':
        """Validate a wire payload; raises ValidationError naming the first bad field"""
        if not isinstance(payload, Mapping):
            raise ValidationError("Transaction must be a mapping", reason="payload")

        for field in REQUIRED_FIELDS:
            if _is_missing(payload.get(field)):
                logger.warning(f"Transaction validation failed: missing '{field}'")
                raise ValidationError(f"Transaction field '{field}' is missing", reason=field)

        for field in ('from', 'to'):
            if not Web3.is_address(payload[field]):
                raise ValidationError(f"Transaction field '{field}' is not a valid address", reason=field)

        data = payload['data']
        if not Hash.is_hex(data):
            raise ValidationError("Transaction field 'data' must be 0x-prefixed hex", reason='data')

        signature = payload['signature']
        if not SignatureManager.is_well_formed_signature(signature):
            logger.warning("Transaction signature is malformed")
            raise ValidationError("Transaction signature is malformed", reason='signature')

        return cls(
            sender=Web3.to_checksum_address(payload['from']),
            recipient=Web3.to_checksum_address(payload['to']),
            value=_parse_uint('value', payload['value']),
            data=data.lower(),
            nonce=_parse_uint('nonce', payload['nonce']),
            signature=signature.lower()
        )

    @classmethod
    def coerce(cls, transaction: Union['Transaction', Mapping[str, Any]]) -> 'Transaction':
        if isinstance(transaction, cls):
            return transaction
        return cls.from_dict(transaction)

    @staticmethod
    def signing_message(sender: str, recipient: str, value: int, data: str, nonce: int) -> bytes:
        """Bytes a sender signs: canonical JSON of every field except the signature"""
        return Hash.canonical_json({
            "from": Web3.to_checksum_address(sender),
            "to": Web3.to_checksum_address(recipient),
            "value": str(int(value)),
            "data": data.lower(),
            "nonce": int(nonce)
        })

    def signing_payload(self) -> bytes:
        return self.signing_message(self.sender, self.recipient, self.value, self.data, self.nonce)

    def verify_signer(self) -> bool:
        """Check the signature was produced by ``sender``"""
        return SignatureManager.verify_signer(self.signing_payload(), self.signature, self.sender)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.sender,
            "to": self.recipient,
            "value": str(self.value),
            "data": self.data,
            "nonce": self.nonce,
            "signature": self.signature
        }

    def serialize(self) -> bytes:
        """Canonical serialization committed to in the batch Merkle tree"""
        return Hash.canonical_json(self.to_dict())

    @property
    def commitment(self) -> str:
        return Hash.keccak(self.serialize())

    def __str__(self) -> str:
        return (
            f"Transaction(from={self.sender[:10]}..., "
            f"to={self.recipient[:10]}..., nonce={self.nonce}, "
            f"hash={self.commitment[:10]}...)"
        )
