"""
Deposit and withdrawal records.

Each record moves through a fixed transition table; the bridge coordinator
is the only writer. Amounts are kept both in ether units (``Decimal``) and in
wei, which is what proofs commit to.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
import copy

from ..crypto.hash import Hash
from ..utils.state import ensure_transition


class DepositStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    FAILED = "failed"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    BURNED = "burned"
    COMPLETED = "completed"
    FAILED = "failed"


DEPOSIT_TRANSITIONS = {
    DepositStatus.PENDING: frozenset({DepositStatus.CONFIRMED, DepositStatus.FAILED}),
    DepositStatus.CONFIRMED: frozenset({DepositStatus.COMPLETED, DepositStatus.FAILED}),
    DepositStatus.COMPLETED: frozenset(),
    DepositStatus.FAILED: frozenset(),
}

WITHDRAWAL_TRANSITIONS = {
    WithdrawalStatus.PENDING: frozenset({WithdrawalStatus.BURNED, WithdrawalStatus.FAILED}),
    WithdrawalStatus.BURNED: frozenset({WithdrawalStatus.COMPLETED, WithdrawalStatus.FAILED}),
    WithdrawalStatus.COMPLETED: frozenset(),
    WithdrawalStatus.FAILED: frozenset(),
}


def transfer_proof(record_id: str, user: str, token: str, amount_wei: int, timestamp: int) -> str:
    """keccak(id || user || token || uint256(amount) || uint256(timestamp))"""
    return Hash.keccak(
        record_id.encode()
        + Hash.address_bytes(user)
        + Hash.address_bytes(token)
        + Hash.uint256(amount_wei)
        + Hash.uint256(timestamp)
    )


@dataclass
class Deposit:
    id: str
    user: str
    token: str
    amount: Decimal
    amount_wei: int
    created_at: int
    status: DepositStatus = DepositStatus.PENDING
    proof: Optional[str] = None
    confirmed_at: Optional[int] = None
    completed_at: Optional[int] = None
    mint_ref: Optional[str] = None
    canonical_root: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)
    failure_reason: Optional[str] = None

    def transition(self, target: DepositStatus):
        ensure_transition(DEPOSIT_TRANSITIONS, self.status, target, f"Deposit {self.id}")
        self.status = target

    def expected_proof(self) -> str:
        return transfer_proof(self.id, self.user, self.token, self.amount_wei, self.created_at)

    def snapshot(self) -> 'Deposit':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user": self.user,
            "token": self.token,
            "amount": str(self.amount),
            "amount_wei": str(self.amount_wei),
            "created_at": self.created_at,
            "status": self.status.value,
            "proof": self.proof,
            "confirmed_at": self.confirmed_at,
            "completed_at": self.completed_at,
            "mint_ref": self.mint_ref,
            "canonical_root": self.canonical_root,
            "options": self.options,
            "failure_reason": self.failure_reason
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Deposit':
        return cls(
            id=data["id"],
            user=data["user"],
            token=data["token"],
            amount=Decimal(data["amount"]),
            amount_wei=int(data["amount_wei"]),
            created_at=data["created_at"],
            status=DepositStatus(data["status"]),
            proof=data.get("proof"),
            confirmed_at=data.get("confirmed_at"),
            completed_at=data.get("completed_at"),
            mint_ref=data.get("mint_ref"),
            canonical_root=data.get("canonical_root"),
            options=data.get("options") or {},
            failure_reason=data.get("failure_reason")
        )


@dataclass
class Withdrawal:
    id: str
    user: str
    token: str
    amount: Decimal
    amount_wei: int
    created_at: int
    unlock_time: int
    status: WithdrawalStatus = WithdrawalStatus.PENDING
    proof: Optional[str] = None
    burn_ref: Optional[str] = None
    settlement_ref: Optional[str] = None
    completed_at: Optional[int] = None
    canonical_root: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)
    failure_reason: Optional[str] = None
    release_attempted: bool = False

    def transition(self, target: WithdrawalStatus):
        ensure_transition(WITHDRAWAL_TRANSITIONS, self.status, target, f"Withdrawal {self.id}")
        self.status = target

    def expected_proof(self) -> str:
        return transfer_proof(self.id, self.user, self.token, self.amount_wei, self.created_at)

    def snapshot(self) -> 'Withdrawal':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user": self.user,
            "token": self.token,
            "amount": str(self.amount),
            "amount_wei": str(self.amount_wei),
            "created_at": self.created_at,
            "unlock_time": self.unlock_time,
            "status": self.status.value,
            "proof": self.proof,
            "burn_ref": self.burn_ref,
            "settlement_ref": self.settlement_ref,
            "completed_at": self.completed_at,
            "canonical_root": self.canonical_root,
            "options": self.options,
            "failure_reason": self.failure_reason,
            "release_attempted": self.release_attempted
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Withdrawal':
        return cls(
            id=data["id"],
            user=data["user"],
            token=data["token"],
            amount=Decimal(data["amount"]),
            amount_wei=int(data["amount_wei"]),
            created_at=data["created_at"],
            unlock_time=data["unlock_time"],
            status=WithdrawalStatus(data["status"]),
            proof=data.get("proof"),
            burn_ref=data.get("burn_ref"),
            settlement_ref=data.get("settlement_ref"),
            completed_at=data.get("completed_at"),
            canonical_root=data.get("canonical_root"),
            options=data.get("options") or {},
            failure_reason=data.get("failure_reason"),
            release_attempted=data.get("release_attempted", False)
        )
