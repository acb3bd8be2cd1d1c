# File: src/optirollup/bridge/__init__.py
from .models import Deposit, DepositStatus, Withdrawal, WithdrawalStatus
from .events import BridgeEvent, BridgeEventLog
from .bridge_coordinator import BridgeCoordinator
from .receipts import DepositReceipt, WithdrawalCompletion, WithdrawalReceipt

__all__ = [
    'BridgeCoordinator',
    'BridgeEvent',
    'BridgeEventLog',
    'Deposit',
    'DepositReceipt',
    'DepositStatus',
    'Withdrawal',
    'WithdrawalCompletion',
    'WithdrawalReceipt',
    'WithdrawalStatus'
]
