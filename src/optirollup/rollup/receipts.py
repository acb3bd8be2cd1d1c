# src/optirollup/rollup/receipts.py
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .batch import BatchStatus


class TransactionReceipt(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "accepted"
    transaction_hash: str
    pending_count: int
    batch_id: Optional[int] = None  # set when this transaction sealed a batch


class ChallengeReceipt(BaseModel):
    model_config = ConfigDict(frozen=True)

    batch_id: int
    status: BatchStatus
    validator: str
    challenged_at: float


class FinalizationReceipt(BaseModel):
    model_config = ConfigDict(frozen=True)

    batch_id: int
    status: BatchStatus
    state_root: str
    finalized_root: str
