# src/optirollup/bridge/receipts.py
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .models import DepositStatus, WithdrawalStatus


class DepositReceipt(BaseModel):
    model_config = ConfigDict(frozen=True)

    deposit_id: str
    status: DepositStatus
    proof: Optional[str] = None


class WithdrawalReceipt(BaseModel):
    model_config = ConfigDict(frozen=True)

    withdrawal_id: str
    status: WithdrawalStatus
    unlock_time: int


class WithdrawalCompletion(BaseModel):
    model_config = ConfigDict(frozen=True)

    withdrawal_id: str
    status: WithdrawalStatus
    settlement_ref: str
