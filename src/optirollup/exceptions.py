# src/optirollup/exceptions.py
from typing import Optional


class RollupError(Exception):
    """Base exception class for rollup-related errors"""

    def __init__(self, message: str, reason: Optional[str] = None, entity_id: Optional[str] = None):
        super().__init__(message)
        self.reason = reason
        self.entity_id = entity_id


class ValidationError(RollupError):
    """Raised when a transaction, amount, address or key is malformed"""
    pass


class StateError(RollupError):
    """Raised when an operation is attempted in the wrong status or window"""
    pass


class NotFoundError(StateError):
    """Raised when a batch, deposit, withdrawal or validator does not exist"""

    def __init__(self, message: str, reason: Optional[str] = "not_found"):
        super().__init__(message, reason)


class ProofError(RollupError):
    """Raised when a generated or re-verified proof does not match"""
    pass


class ExternalError(RollupError):
    """Raised when a settlement-layer call fails after bounded retries"""
    pass


class SettlementTimeoutError(ExternalError):
    """Raised when a settlement-layer call exceeds its timeout"""
    pass


class InvariantError(RollupError):
    """Raised when internal structures are corrupted; fatal to the owner"""
    pass


class InvalidLeafIndexError(RollupError, IndexError):
    """Raised when a Merkle proof is requested for an index out of range"""
    pass


class StorageError(RollupError):
    """Base exception class for storage-related errors"""
    pass


class DatabaseError(StorageError):
    """Raised when database operations fail"""
    pass


class ConfigError(RollupError):
    """Raised when configuration is missing or invalid"""
    pass
