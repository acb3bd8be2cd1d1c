# src/optirollup/rollup/batch.py
from typing import Any, Dict, List, Optional, Sequence, Tuple
from dataclasses import dataclass, field
from enum import Enum
import copy

from .merkle import MerkleTree
from .transaction import Transaction
from ..crypto.hash import Hash
from ..exceptions import InvariantError
from ..utils.state import ensure_transition


class BatchStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    CHALLENGED = "challenged"
    FINALIZED = "finalized"
    REVERTED = "reverted"


BATCH_TRANSITIONS = {
    BatchStatus.PENDING: frozenset({BatchStatus.SUBMITTED}),
    BatchStatus.SUBMITTED: frozenset({BatchStatus.CHALLENGED, BatchStatus.FINALIZED}),
    BatchStatus.CHALLENGED: frozenset({BatchStatus.REVERTED}),
    BatchStatus.FINALIZED: frozenset(),
    BatchStatus.REVERTED: frozenset(),
}

TERMINAL_BATCH_STATUSES = frozenset({BatchStatus.FINALIZED, BatchStatus.REVERTED})


def compute_merkle_root(transactions: Sequence[Transaction]) -> Optional[str]:
    """Merkle root over per-transaction commitments, in submission order"""
    tree = MerkleTree(Hash.to_bytes(tx.commitment) for tx in transactions)
    return tree.root


def compute_state_root(previous_root: str, merkle_root: str, batch_id: int) -> str:
    """state_root = keccak(previous_root || merkle_root || uint256(batch_id))"""
    return Hash.keccak(
        Hash.to_bytes(previous_root)
        + Hash.to_bytes(merkle_root)
        + Hash.uint256(batch_id)
    )


@dataclass
class Challenge:
    validator: str
    reason: str
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {"validator": self.validator, "reason": self.reason, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Challenge':
        return cls(validator=data["validator"], reason=data["reason"], timestamp=data["timestamp"])


@dataclass
class Batch:
    id: int
    transactions: Tuple[Transaction, ...]
    merkle_root: str
    state_root: str
    previous_root: str
    created_at: float
    status: BatchStatus = BatchStatus.PENDING
    submitted_at: Optional[float] = None
    settlement_ref: Optional[str] = None
    challenge: Optional[Challenge] = None
    resolved_at: Optional[float] = None
    submission_attempts: int = 0
    submission_error: Optional[str] = None

    @classmethod
    def build(
        cls,
        batch_id: int,
        transactions: Sequence[Transaction],
        previous_root: str,
        created_at: float
    ) -> 'Batch':
        if not transactions:
            raise InvariantError("Cannot build a batch without transactions")
        merkle_root = compute_merkle_root(transactions)
        if merkle_root is None:
            raise InvariantError(f"Batch {batch_id}: Merkle tree produced no root")
        return cls(
            id=batch_id,
            transactions=tuple(transactions),
            merkle_root=merkle_root,
            state_root=compute_state_root(previous_root, merkle_root, batch_id),
            previous_root=previous_root,
            created_at=created_at
        )

    def transition(self, target: BatchStatus) -> None:
        ensure_transition(BATCH_TRANSITIONS, self.status, target, f"Batch {self.id}")
        self.status = target

    @property
    def is_resolved(self) -> bool:
        return self.status in TERMINAL_BATCH_STATUSES

    def challenge_deadline(self, challenge_period: float) -> Optional[float]:
        if self.submitted_at is None:
            return None
        return self.submitted_at + challenge_period

    def verify_roots(self) -> None:
        """Recompute both roots from the transactions; raises InvariantError on mismatch"""
        merkle_root = compute_merkle_root(self.transactions)
        if merkle_root != self.merkle_root:
            raise InvariantError(f"Batch {self.id}: Merkle root does not match its transactions")
        if compute_state_root(self.previous_root, merkle_root, self.id) != self.state_root:
            raise InvariantError(f"Batch {self.id}: state root does not chain from previous root")

    def encode(self) -> bytes:
        """Batch data posted to the settlement layer"""
        return Hash.canonical_json({
            "id": self.id,
            "merkle_root": self.merkle_root,
            "previous_root": self.previous_root,
            "transactions": [tx.to_dict() for tx in self.transactions]
        })

    def snapshot(self) -> 'Batch':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "transactions": [tx.to_dict() for tx in self.transactions],
            "merkle_root": self.merkle_root,
            "state_root": self.state_root,
            "previous_root": self.previous_root,
            "created_at": self.created_at,
            "status": self.status.value,
            "submitted_at": self.submitted_at,
            "settlement_ref": self.settlement_ref,
            "challenge": self.challenge.to_dict() if self.challenge else None,
            "resolved_at": self.resolved_at,
            "submission_attempts": self.submission_attempts,
            "submission_error": self.submission_error
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Batch':
        transactions: List[Transaction] = [Transaction.from_dict(tx) for tx in data["transactions"]]
        return cls(
            id=data["id"],
            transactions=tuple(transactions),
            merkle_root=data["merkle_root"],
            state_root=data["state_root"],
            previous_root=data["previous_root"],
            created_at=data["created_at"],
            status=BatchStatus(data["status"]),
            submitted_at=data.get("submitted_at"),
            settlement_ref=data.get("settlement_ref"),
            challenge=Challenge.from_dict(data["challenge"]) if data.get("challenge") else None,
            resolved_at=data.get("resolved_at"),
            submission_attempts=data.get("submission_attempts", 0),
            submission_error=data.get("submission_error")
        )

    def __str__(self) -> str:
        return (
            f"Batch(id={self.id}, status={self.status.value}, "
            f"tx_count={len(self.transactions)}, "
            f"state_root={self.state_root[:10]}...)"
        )
