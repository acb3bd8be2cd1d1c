# File: src/optirollup/rollup/__init__.py
from .merkle import MerkleTree, PairingRule, ProofStep, Side
from .transaction import Transaction
from .batch import Batch, BatchStatus, Challenge
from .batch_coordinator import BatchCoordinator
from .receipts import ChallengeReceipt, FinalizationReceipt, TransactionReceipt

__all__ = [
    'Batch',
    'BatchCoordinator',
    'BatchStatus',
    'Challenge',
    'ChallengeReceipt',
    'FinalizationReceipt',
    'MerkleTree',
    'PairingRule',
    'ProofStep',
    'Side',
    'Transaction',
    'TransactionReceipt'
]
