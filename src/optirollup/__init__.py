"""Optimistic rollup sequencer core: batches, disputes and a lock-and-prove bridge."""

__version__ = "0.1.0"

from .exceptions import (
    ConfigError,
    ExternalError,
    InvalidLeafIndexError,
    InvariantError,
    NotFoundError,
    ProofError,
    RollupError,
    SettlementTimeoutError,
    StateError,
    ValidationError,
)
from .rollup import BatchCoordinator, MerkleTree, Transaction
from .bridge import BridgeCoordinator
from .consensus import ValidatorRegistry
from .settlement import InMemorySettlementLayer, RetryPolicy, SettlementLayer, Web3SettlementLayer
from .node import RollupNode

__all__ = [
    'BatchCoordinator',
    'BridgeCoordinator',
    'ConfigError',
    'ExternalError',
    'InMemorySettlementLayer',
    'InvalidLeafIndexError',
    'InvariantError',
    'MerkleTree',
    'NotFoundError',
    'ProofError',
    'RetryPolicy',
    'RollupError',
    'RollupNode',
    'SettlementLayer',
    'SettlementTimeoutError',
    'StateError',
    'Transaction',
    'ValidationError',
    'ValidatorRegistry',
    'Web3SettlementLayer',
]
