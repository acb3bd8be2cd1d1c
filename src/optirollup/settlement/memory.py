from collections import Counter
from typing import Dict, Optional, Set, Tuple
import asyncio
import logging

from .base import SettlementLayer
from ..crypto.hash import Hash
from ..exceptions import ExternalError
from ..utils.config import Config

logger = logging.getLogger(__name__)


class InMemorySettlementLayer(SettlementLayer):
    """
    Deterministic in-process settlement peer.

    Batches must arrive in id order, exactly like the on-chain contract.
    References are keccak digests of the call's inputs, so replays return the
    same value. ``fail_next``, ``hang_next`` and ``reject_proof`` inject the
    faults a real chain produces.
    """

    def __init__(self, genesis_root: str = Config.ZERO_ROOT):
        self._state_root = genesis_root
        self._batches: Dict[int, Tuple[str, str]] = {}  # batch_id -> (state_root, ref)
        self._releases: Dict[str, str] = {}  # withdrawal_id -> ref
        self._rejected_proofs: Set[str] = set()
        self._failures: Dict[str, int] = {}
        self._hangs: Dict[str, Tuple[float, bool]] = {}
        self.calls: Counter = Counter()

    @property
    def name(self) -> str:
        return "In-Memory Settlement"

    # ── Fault injection ─────────────────────────────────────────────

    def fail_next(self, operation: str, count: int = 1):
        """Make the next ``count`` calls to ``operation`` raise ExternalError"""
        self._failures[operation] = self._failures.get(operation, 0) + count

    def hang_next(self, operation: str, seconds: float, apply_first: bool = False):
        """
        Stall the next call to ``operation``. With ``apply_first`` the call's
        effect lands before the stall, as when a receipt is lost in transit.
        """
        self._hangs[operation] = (seconds, apply_first)

    def reject_proof(self, proof: str):
        self._rejected_proofs.add(proof.lower())

    async def _enter(self, operation: str) -> Tuple[float, bool]:
        self.calls[operation] += 1
        remaining = self._failures.get(operation, 0)
        if remaining:
            self._failures[operation] = remaining - 1
            raise ExternalError(f"{operation}: injected settlement failure")
        return self._hangs.pop(operation, (0.0, False))

    # ── Batches ─────────────────────────────────────────────────────

    async def submit_batch(self, batch_id: int, state_root: str, batch_data: bytes) -> str:
        stall, apply_first = await self._enter("submit_batch")
        if stall and not apply_first:
            await asyncio.sleep(stall)

        if batch_id in self._batches:
            recorded_root, ref = self._batches[batch_id]
            if recorded_root != state_root:
                raise ExternalError(f"Batch {batch_id} already submitted with a different state root")
        else:
            expected = len(self._batches)
            if batch_id != expected:
                raise ExternalError(f"Batch {batch_id} submitted out of order; expected {expected}")
            ref = Hash.keccak(b"batch" + Hash.uint256(batch_id) + Hash.to_bytes(state_root))
            self._batches[batch_id] = (state_root, ref)
            self._state_root = state_root
            logger.debug(f"Settlement recorded batch {batch_id} ref={ref[:10]}...")

        if stall and apply_first:
            await asyncio.sleep(stall)
        return ref

    async def get_batch_submission(self, batch_id: int) -> Optional[str]:
        await self._enter("get_batch_submission")
        entry = self._batches.get(batch_id)
        return entry[1] if entry else None

    async def get_state_root(self) -> str:
        await self._enter("get_state_root")
        return self._state_root

    # ── Bridge ──────────────────────────────────────────────────────

    async def verify_proof(self, proof: str) -> bool:
        stall, _ = await self._enter("verify_proof")
        if stall:
            await asyncio.sleep(stall)
        return Hash.is_hash(proof) and proof.lower() not in self._rejected_proofs

    async def release_withdrawal(
        self,
        withdrawal_id: str,
        proof: str,
        user: str,
        token: str,
        amount_wei: int
    ) -> str:
        stall, apply_first = await self._enter("release_withdrawal")
        if stall and not apply_first:
            await asyncio.sleep(stall)

        ref = self._releases.get(withdrawal_id)
        if ref is None:
            ref = Hash.keccak(
                b"release" + withdrawal_id.encode() + Hash.to_bytes(proof)
                + Hash.address_bytes(user) + Hash.address_bytes(token)
                + Hash.uint256(amount_wei)
            )
            self._releases[withdrawal_id] = ref

        if stall and apply_first:
            await asyncio.sleep(stall)
        return ref

    async def get_withdrawal_release(self, withdrawal_id: str) -> Optional[str]:
        await self._enter("get_withdrawal_release")
        return self._releases.get(withdrawal_id)
