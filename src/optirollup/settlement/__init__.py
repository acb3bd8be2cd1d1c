from .base import SettlementLayer
from .memory import InMemorySettlementLayer
from .retry import RetryPolicy
from .web3_client import Web3SettlementLayer

__all__ = ['SettlementLayer', 'InMemorySettlementLayer', 'RetryPolicy', 'Web3SettlementLayer']
