# src/optirollup/rollup/batch_coordinator.py
from collections import deque
from decimal import Decimal
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple, Union, TYPE_CHECKING
import asyncio
import logging
import time

from web3 import Web3

from .batch import Batch, BatchStatus, Challenge
from .transaction import Transaction
from .receipts import ChallengeReceipt, FinalizationReceipt, TransactionReceipt
from ..crypto.hash import Hash
from ..exceptions import (
    ExternalError, InvariantError, NotFoundError, SettlementTimeoutError,
    StateError, ValidationError
)
from ..monitoring.metrics import RollupMetrics
from ..settlement.base import SettlementLayer
from ..settlement.retry import RetryPolicy
from ..utils.config import Config
from ..utils.logger import short_hash

if TYPE_CHECKING:
    from ..consensus.validator_registry import ValidatorRegistry
    from ..storage.rollup_state import RollupStateStore

logger = logging.getLogger(__name__)

ROOTS_META_KEY = "rollup:roots"


class BatchCoordinator:
    """
    Sequencer side of the rollup.

    Accepted transactions wait in a FIFO queue until ``batch_size`` of them
    are collected or the oldest has waited ``batch_timeout`` seconds. Each
    batch commits to its transactions through a Merkle root and chains a new
    state root from the previous one. ``current_root`` moves forward as soon
    as a batch is built; ``finalized_root`` only moves when a batch survives
    its challenge window.

    Settlement calls are the only suspension points. A batch whose submission
    failed or timed out stays pending and is retried, in id order, by the
    next ``tick()``.
    """

    def __init__(
        self,
        settlement: SettlementLayer,
        registry: 'ValidatorRegistry',
        batch_size: int = Config.BATCH_SIZE,
        batch_timeout: float = Config.BATCH_TIMEOUT,
        challenge_period: float = Config.CHALLENGE_PERIOD,
        min_challenge_stake: Optional[Decimal] = None,
        verify_signatures: bool = Config.VERIFY_SIGNATURES,
        retry_policy: Optional[RetryPolicy] = None,
        store: Optional['RollupStateStore'] = None,
        metrics: Optional[RollupMetrics] = None,
        clock: Callable[[], float] = time.time,
        genesis_root: str = Config.ZERO_ROOT,
        sequencer_address: Optional[str] = None
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if batch_timeout < 0 or challenge_period < 0:
            raise ValueError("batch_timeout and challenge_period must not be negative")
        if not Hash.is_hash(genesis_root):
            raise ValueError(f"Invalid genesis root: {genesis_root!r}")

        self.settlement = settlement
        self.registry = registry
        self.batch_size = batch_size
        self.batch_timeout = batch_timeout
        self.challenge_period = challenge_period
        self.min_challenge_stake = (
            Decimal(str(min_challenge_stake)) if min_challenge_stake is not None
            else registry.minimum_stake
        )
        self.verify_signatures = verify_signatures
        self.retry_policy = retry_policy or RetryPolicy()
        self.store = store
        self.metrics = metrics or RollupMetrics()
        self.sequencer_address = sequencer_address
        self._clock = clock

        self._pending: Deque[Tuple[Transaction, float]] = deque()
        self._batches: Dict[int, Batch] = {}
        self._batch_locks: Dict[int, asyncio.Lock] = {}
        self._creation_lock = asyncio.Lock()
        self._submission_lock = asyncio.Lock()
        self._next_batch_id = 0
        self._current_root = genesis_root.lower()
        self._finalized_root = genesis_root.lower()
        self._halted: Optional[str] = None

    # ── Properties ──────────────────────────────────────────────────

    @property
    def current_root(self) -> str:
        """Root after the newest batch, finalized or not"""
        return self._current_root

    @property
    def finalized_root(self) -> str:
        """Root of the newest batch that survived its challenge window"""
        return self._finalized_root

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def halted(self) -> bool:
        return self._halted is not None

    # ── Internal helpers ────────────────────────────────────────────

    def _ensure_operational(self):
        if self._halted is not None:
            raise InvariantError(f"Batch coordinator halted: {self._halted}", reason="halted")

    def _halt(self, error: Exception):
        self._halted = str(error)
        logger.critical(f"Batch coordinator halted: {str(error)}")

    def _get(self, batch_id: int) -> Batch:
        batch = self._batches.get(batch_id)
        if batch is None:
            raise NotFoundError(f"Batch not found: {batch_id}")
        return batch

    def _persist_batch(self, batch: Batch):
        if self.store is not None:
            self.store.save_batch(batch.to_dict())

    def _persist_roots(self):
        if self.store is not None:
            self.store.set_meta(ROOTS_META_KEY, {
                "current_root": self._current_root,
                "finalized_root": self._finalized_root,
                "next_batch_id": self._next_batch_id
            })

    def _update_pending_gauge(self):
        self.metrics.pending_transactions.set(len(self._pending))

    # ── Lifecycle ───────────────────────────────────────────────────

    async def initialize(self) -> str:
        """
        Adopt the settlement layer's canonical root when there is no local
        history. Returns the root the coordinator starts from.
        """
        self._ensure_operational()
        if self._batches:
            return self._current_root

        root = await self.retry_policy.run("get_state_root", self.settlement.get_state_root, self.metrics)
        if not Hash.is_hash(root):
            error = InvariantError(f"Settlement layer returned a malformed state root: {root!r}")
            self._halt(error)
            raise error

        self._current_root = root.lower()
        self._finalized_root = root.lower()
        self._persist_roots()
        logger.info(f"Starting from settlement root {short_hash(root)}")
        return self._current_root

    def restore(self) -> int:
        """
        Reload persisted batches and roots. Every batch is re-verified against
        its transactions and its predecessor; any mismatch halts the
        coordinator.
        """
        if self.store is None:
            return 0

        batches = [Batch.from_dict(data) for data in self.store.load_batches()]
        try:
            previous: Optional[Batch] = None
            for expected_id, batch in enumerate(batches):
                if batch.id != expected_id:
                    raise InvariantError(f"Stored batches are not contiguous: expected {expected_id}, found {batch.id}")
                batch.verify_roots()
                if previous is not None and batch.previous_root != previous.state_root:
                    raise InvariantError(f"Batch {batch.id} does not chain from batch {previous.id}")
                previous = batch

            # The registry must be restored first so challengers can be found
            for batch in batches:
                if batch.status is BatchStatus.CHALLENGED:
                    try:
                        self.registry.open_challenge(batch.challenge.validator, batch.id)
                    except NotFoundError as e:
                        raise InvariantError(
                            f"Batch {batch.id} is challenged by {batch.challenge.validator}, "
                            f"which is not an active validator"
                        ) from e
        except InvariantError as e:
            self._halt(e)
            raise

        for batch in batches:
            self._batches[batch.id] = batch
            self._batch_locks[batch.id] = asyncio.Lock()
        self._next_batch_id = len(batches)

        roots = self.store.get_meta(ROOTS_META_KEY, {})
        if batches:
            self._current_root = batches[-1].state_root
            finalized = [b for b in batches if b.status is BatchStatus.FINALIZED]
            if finalized:
                self._finalized_root = finalized[-1].state_root
            else:
                self._finalized_root = roots.get("finalized_root", batches[0].previous_root)
        elif roots:
            self._current_root = roots["current_root"]
            self._finalized_root = roots["finalized_root"]

        logger.info(
            f"Restored {len(batches)} batches; current root {short_hash(self._current_root)}, "
            f"finalized root {short_hash(self._finalized_root)}"
        )
        return len(batches)

    # ── Transactions ────────────────────────────────────────────────

    async def add_transaction(self, tx: Union[Transaction, Mapping[str, Any]]) -> TransactionReceipt:
        """
        Validate and queue a transaction.

        Raises:
            ValidationError: A field is missing or malformed, or the signer
                does not match ``from`` when signature checks are enabled.
        """
        self._ensure_operational()
        try:
            transaction = Transaction.coerce(tx)
            if self.verify_signatures and not transaction.verify_signer():
                raise ValidationError("Signature was not produced by the sender", reason="signature")
        except ValidationError as e:
            self.metrics.transactions_rejected.labels(reason=e.reason or "invalid").inc()
            logger.warning(f"Rejected transaction: {str(e)}")
            raise

        self._pending.append((transaction, self._clock()))
        self.metrics.transactions_accepted.inc()
        self._update_pending_gauge()
        logger.debug(f"Queued transaction {short_hash(transaction.commitment)} ({len(self._pending)} pending)")

        batch = None
        if len(self._pending) >= self.batch_size:
            batch = await self._create_batch(require_full=True)

        return TransactionReceipt(
            transaction_hash=transaction.commitment,
            pending_count=len(self._pending),
            batch_id=batch.id if batch else None
        )

    # ── Batches ─────────────────────────────────────────────────────

    async def create_batch(self) -> Optional[Batch]:
        """Seal up to ``batch_size`` queued transactions into a batch; None when the queue is empty"""
        return await self._create_batch(require_full=False)

    async def _create_batch(self, require_full: bool) -> Optional[Batch]:
        self._ensure_operational()
        async with self._creation_lock:
            if not self._pending:
                return None
            if require_full and len(self._pending) < self.batch_size:
                return None

            count = min(self.batch_size, len(self._pending))
            transactions = [self._pending.popleft()[0] for _ in range(count)]
            batch_id = self._next_batch_id
            try:
                batch = Batch.build(batch_id, transactions, self._current_root, self._clock())
            except InvariantError as e:
                self._halt(e)
                raise

            self._next_batch_id += 1
            self._batches[batch_id] = batch
            self._batch_locks[batch_id] = asyncio.Lock()
            self._current_root = batch.state_root
            self._persist_batch(batch)
            self._persist_roots()

            self.metrics.batches.labels(status="created").inc()
            self.metrics.batch_size.observe(count)
            self._update_pending_gauge()
            logger.info(
                f"Created batch {batch_id} with {count} transactions, "
                f"merkle root {short_hash(batch.merkle_root)}, state root {short_hash(batch.state_root)}"
            )

        await self.submit_pending()
        return self._batches[batch_id].snapshot()

    async def submit_pending(self) -> List[int]:
        """Submit pending batches in id order, stopping at the first that does not land"""
        self._ensure_operational()
        submitted = []
        async with self._submission_lock:
            pending = sorted(i for i, b in self._batches.items() if b.status is BatchStatus.PENDING)
            for batch_id in pending:
                if not await self._submit(self._batches[batch_id]):
                    break
                submitted.append(batch_id)
        return submitted

    async def _submit(self, batch: Batch) -> bool:
        async with self._batch_locks[batch.id]:
            if batch.status is not BatchStatus.PENDING:
                return True

            try:
                ref = None
                if batch.submission_attempts:
                    # An earlier call may have landed without us seeing the receipt
                    ref = await self.retry_policy.run(
                        "get_batch_submission",
                        lambda: self.settlement.get_batch_submission(batch.id),
                        self.metrics
                    )
                if ref is None:
                    batch.submission_attempts += 1
                    ref = await self.retry_policy.run(
                        "submit_batch",
                        lambda: self.settlement.submit_batch(batch.id, batch.state_root, batch.encode()),
                        self.metrics
                    )
            except SettlementTimeoutError as e:
                batch.submission_error = str(e)
                self._persist_batch(batch)
                logger.warning(f"Submission of batch {batch.id} timed out; will reconcile on next tick")
                return False
            except ExternalError as e:
                batch.submission_error = str(e)
                self._persist_batch(batch)
                logger.error(f"Submission of batch {batch.id} failed: {str(e)}")
                return False

            batch.transition(BatchStatus.SUBMITTED)
            batch.submitted_at = self._clock()
            batch.settlement_ref = ref
            batch.submission_error = None
            self._persist_batch(batch)

        self.metrics.batches.labels(status=BatchStatus.SUBMITTED.value).inc()
        logger.info(f"Batch {batch.id} submitted, ref {short_hash(ref)}")
        return True

    async def tick(self) -> Optional[Batch]:
        """
        Periodic driver: seal a batch once the oldest queued transaction has
        waited ``batch_timeout`` seconds, otherwise retry pending submissions.
        """
        self._ensure_operational()
        if self._pending and self._clock() - self._pending[0][1] >= self.batch_timeout:
            return await self.create_batch()
        await self.submit_pending()
        return None

    # ── Disputes ────────────────────────────────────────────────────

    async def challenge_batch(self, batch_index: int, validator: str, reason: str) -> ChallengeReceipt:
        """
        Dispute a submitted batch inside its challenge window.

        Raises:
            ValidationError: The challenger is not an active validator with
                enough stake, or no reason was given.
            NotFoundError: Unknown batch.
            StateError: The batch is not challengeable right now.
        """
        self._ensure_operational()
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError("A challenge reason is required", reason="reason")
        if not self.registry.is_validator(validator):
            raise ValidationError(f"Not an active validator: {validator}", reason="not_validator")
        stake = self.registry.get_stake(validator)
        if stake < self.min_challenge_stake:
            raise ValidationError(
                f"Insufficient stake to challenge: {stake} < {self.min_challenge_stake}",
                reason="insufficient_stake"
            )

        batch = self._get(batch_index)
        async with self._batch_locks[batch.id]:
            now = self._clock()
            if batch.status is BatchStatus.PENDING:
                raise StateError(f"Batch {batch.id} has not been submitted", reason="not_submitted")
            if batch.status is BatchStatus.CHALLENGED:
                raise StateError(f"Batch {batch.id} is already challenged", reason="already_challenged")
            if batch.is_resolved:
                raise StateError(f"Batch {batch.id} is already {batch.status.value}", reason="already_resolved")
            if now > batch.challenge_deadline(self.challenge_period):
                raise StateError(f"Challenge period for batch {batch.id} has expired", reason="challenge_period_expired")

            challenger = Web3.to_checksum_address(validator)
            self.registry.open_challenge(challenger, batch.id)
            batch.transition(BatchStatus.CHALLENGED)
            batch.challenge = Challenge(validator=challenger, reason=reason, timestamp=now)
            self._persist_batch(batch)

        self.metrics.batches.labels(status=BatchStatus.CHALLENGED.value).inc()
        logger.warning(f"Batch {batch.id} challenged by {challenger}: {reason}")
        return ChallengeReceipt(
            batch_id=batch.id,
            status=batch.status,
            validator=challenger,
            challenged_at=batch.challenge.timestamp
        )

    async def finalize_batch(self, batch_index: int) -> FinalizationReceipt:
        """
        Resolve a batch whose challenge window has closed: unchallenged
        batches finalize, challenged ones revert.
        """
        self._ensure_operational()
        batch = self._get(batch_index)
        async with self._batch_locks[batch.id]:
            now = self._clock()
            if batch.status is BatchStatus.PENDING:
                raise StateError(f"Batch {batch.id} has not been submitted", reason="not_submitted")
            if batch.is_resolved:
                raise StateError(f"Batch {batch.id} is already {batch.status.value}", reason="already_resolved")
            if now <= batch.challenge_deadline(self.challenge_period):
                raise StateError(f"Challenge period for batch {batch.id} is still active", reason="challenge_period_active")
            previous = self._batches.get(batch.id - 1)
            if previous is not None and not previous.is_resolved:
                raise StateError(
                    f"Batch {previous.id} must be resolved before batch {batch.id}",
                    reason="previous_unresolved"
                )

            if batch.status is BatchStatus.SUBMITTED:
                batch.transition(BatchStatus.FINALIZED)
                self._finalized_root = batch.state_root
            else:
                batch.transition(BatchStatus.REVERTED)
                challenger = batch.challenge.validator
                self.registry.resolve_challenge(challenger, batch.id)
                self.registry.update_performance(challenger, True)
            batch.resolved_at = now
            self._persist_batch(batch)
            self._persist_roots()

        self.metrics.batches.labels(status=batch.status.value).inc()
        if batch.status is BatchStatus.FINALIZED:
            logger.info(f"Batch {batch.id} finalized, root {short_hash(batch.state_root)}")
        else:
            logger.warning(f"Batch {batch.id} reverted; current root stays at {short_hash(self._current_root)}")

        return FinalizationReceipt(
            batch_id=batch.id,
            status=batch.status,
            state_root=batch.state_root,
            finalized_root=self._finalized_root
        )

    # ── Queries ─────────────────────────────────────────────────────

    def get_batch(self, batch_id: int) -> Optional[Batch]:
        batch = self._batches.get(batch_id)
        return batch.snapshot() if batch else None

    def get_all_batches(self) -> List[Batch]:
        return [self._batches[i].snapshot() for i in sorted(self._batches)]

    def get_stats(self) -> Dict[str, Any]:
        by_status = {status.value: 0 for status in BatchStatus}
        for batch in list(self._batches.values()):
            by_status[batch.status.value] += 1
        return {
            "total_batches": len(self._batches),
            "pending_transactions": len(self._pending),
            "batches_by_status": by_status,
            "current_root": self._current_root,
            "finalized_root": self._finalized_root,
            "next_batch_id": self._next_batch_id,
            "batch_size": self.batch_size,
            "challenge_period": self.challenge_period,
            "sequencer_address": self.sequencer_address,
            "halted": self._halted is not None
        }
