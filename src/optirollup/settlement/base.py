"""
Settlement-layer adapter interface.

The rollup core never talks to the settlement chain directly; it calls an
adapter implementing ``SettlementLayer``. Every mutating call is keyed by the
batch or withdrawal id and must be idempotent: re-issuing a call that already
landed returns the original reference without applying anything twice.
"""
from abc import ABC, abstractmethod
from typing import Optional


class SettlementLayer(ABC):

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable adapter name."""
        ...

    # ── Batches ─────────────────────────────────────────────────────

    @abstractmethod
    async def submit_batch(self, batch_id: int, state_root: str, batch_data: bytes) -> str:
        """
        Post a batch commitment.

        Args:
            batch_id: Batch index, also the idempotency key
            state_root: 0x-prefixed 32-byte state root
            batch_data: Encoded batch payload

        Returns:
            Settlement transaction reference
        """
        ...

    @abstractmethod
    async def get_batch_submission(self, batch_id: int) -> Optional[str]:
        """Reference of an earlier submission of ``batch_id``, if it landed."""
        ...

    @abstractmethod
    async def get_state_root(self) -> str:
        """Current canonical state root recorded on the settlement layer."""
        ...

    # ── Bridge ──────────────────────────────────────────────────────

    @abstractmethod
    async def verify_proof(self, proof: str) -> bool:
        """Check a deposit or withdrawal proof commitment."""
        ...

    @abstractmethod
    async def release_withdrawal(
        self,
        withdrawal_id: str,
        proof: str,
        user: str,
        token: str,
        amount_wei: int
    ) -> str:
        """
        Unlock withdrawn funds on the settlement layer.

        Returns:
            Settlement transaction reference
        """
        ...

    @abstractmethod
    async def get_withdrawal_release(self, withdrawal_id: str) -> Optional[str]:
        """Reference of an earlier release of ``withdrawal_id``, if it landed."""
        ...
