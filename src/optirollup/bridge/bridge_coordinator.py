# src/optirollup/bridge/bridge_coordinator.py
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Union, TYPE_CHECKING
import asyncio
import logging
import math
import time

from web3 import Web3

from .events import BridgeEvent, BridgeEventLog
from .models import Deposit, DepositStatus, Withdrawal, WithdrawalStatus
from .receipts import DepositReceipt, WithdrawalCompletion, WithdrawalReceipt
from ..crypto.hash import Hash
from ..exceptions import (
    ExternalError, NotFoundError, ProofError, RollupError, SettlementTimeoutError,
    StateError, ValidationError
)
from ..monitoring.metrics import RollupMetrics
from ..settlement.base import SettlementLayer
from ..settlement.retry import RetryPolicy
from ..utils.config import Config
from ..utils.logger import short_hash

if TYPE_CHECKING:
    from ..storage.rollup_state import RollupStateStore

logger = logging.getLogger(__name__)

Amount = Union[Decimal, int, str, float]


def _parse_amount(amount: Amount) -> Decimal:
    if isinstance(amount, bool):
        raise ValidationError(f"Invalid amount: {amount!r}", reason="amount")
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {amount!r}", reason="amount")
    if not value.is_finite() or value <= 0:
        raise ValidationError(f"Invalid amount: {amount!r}", reason="amount")
    return value


def _normalize_address(address: Optional[str], field: str, default: Optional[str] = None) -> str:
    if default is not None and (address is None or address == ""):
        address = default
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ValidationError(f"Invalid {field} address: {address!r}", reason=field)
    return Web3.to_checksum_address(address)


class BridgeCoordinator:
    """
    Moves value between the settlement layer and the rollup.

    Deposits: pending -> confirmed -> completed | failed
    Withdrawals: pending -> burned -> completed | failed

    Stages for one id never overlap; each id has its own lock. A settlement
    timeout leaves the record in its last confirmed stage for ``reconcile()``;
    a proof mismatch or exhausted retries fail it for good.
    """

    def __init__(
        self,
        settlement: SettlementLayer,
        retry_policy: Optional[RetryPolicy] = None,
        min_deposit: Amount = Config.MIN_DEPOSIT,
        max_deposit: Amount = Config.MAX_DEPOSIT,
        withdrawal_delay: int = Config.WITHDRAWAL_DELAY,
        event_capacity: int = Config.BRIDGE_EVENT_CAPACITY,
        store: Optional['RollupStateStore'] = None,
        metrics: Optional[RollupMetrics] = None,
        clock: Callable[[], float] = time.time,
        root_provider: Optional[Callable[[], str]] = None
    ):
        self.min_deposit = _parse_amount(min_deposit)
        self.max_deposit = _parse_amount(max_deposit)
        if self.min_deposit > self.max_deposit:
            raise ValueError("min_deposit must not exceed max_deposit")
        if withdrawal_delay < 0:
            raise ValueError("withdrawal_delay must not be negative")

        self.settlement = settlement
        self.retry_policy = retry_policy or RetryPolicy()
        self.withdrawal_delay = int(withdrawal_delay)
        self.store = store
        self.metrics = metrics or RollupMetrics()
        self._clock = clock
        self._root_provider = root_provider

        self._deposits: Dict[str, Deposit] = {}
        self._withdrawals: Dict[str, Withdrawal] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._events = BridgeEventLog(event_capacity)
        self._deposit_counter = 0
        self._withdrawal_counter = 0

    # ── Internal helpers ────────────────────────────────────────────

    def _now(self) -> int:
        return int(self._clock())

    def _lock_for(self, entity_id: str) -> asyncio.Lock:
        lock = self._locks.get(entity_id)
        if lock is None:
            lock = self._locks[entity_id] = asyncio.Lock()
        return lock

    def _canonical_root(self) -> Optional[str]:
        return self._root_provider() if self._root_provider else None

    def _record(self, event_type: str, entity: Union[Deposit, Withdrawal], **extra) -> BridgeEvent:
        data = {
            "user": entity.user,
            "token": entity.token,
            "amount": str(entity.amount)
        }
        data.update(extra)
        return self._events.append(event_type, entity.id, entity.status.value, self._now(), data)

    def _persist_deposit(self, deposit: Deposit):
        if self.store is not None:
            self.store.save_deposit(deposit.to_dict())

    def _persist_withdrawal(self, withdrawal: Withdrawal):
        if self.store is not None:
            self.store.save_withdrawal(withdrawal.to_dict())

    def _get_deposit(self, deposit_id: str) -> Deposit:
        deposit = self._deposits.get(deposit_id)
        if deposit is None:
            raise NotFoundError(f"Deposit not found: {deposit_id}")
        return deposit

    def _get_withdrawal(self, withdrawal_id: str) -> Withdrawal:
        withdrawal = self._withdrawals.get(withdrawal_id)
        if withdrawal is None:
            raise NotFoundError(f"Withdrawal not found: {withdrawal_id}")
        return withdrawal

    # ── Deposits ────────────────────────────────────────────────────

    async def deposit(
        self,
        user: str,
        token: Optional[str],
        amount: Amount,
        options: Optional[Dict[str, Any]] = None
    ) -> DepositReceipt:
        """
        Lock funds on the settlement layer and credit them on the rollup.

        Raises:
            ValidationError: Bad address, or amount outside
                [min_deposit, max_deposit].
            ProofError: The deposit proof did not verify; the deposit is failed.
            ExternalError: Settlement retries ran out; the deposit is failed.
        """
        user = _normalize_address(user, "user")
        token = _normalize_address(token, "token", default=Config.ZERO_ADDRESS)
        value = _parse_amount(amount)
        if value < self.min_deposit or value > self.max_deposit:
            raise ValidationError(
                f"Deposit amount {value} outside [{self.min_deposit}, {self.max_deposit}]",
                reason="amount_out_of_range"
            )

        self._deposit_counter += 1
        deposit_id = f"deposit_{self._deposit_counter}"
        deposit = Deposit(
            id=deposit_id,
            user=user,
            token=token,
            amount=value,
            amount_wei=Web3.to_wei(value, "ether"),
            created_at=self._now(),
            canonical_root=self._canonical_root(),
            options=dict(options or {})
        )
        self._deposits[deposit_id] = deposit

        async with self._lock_for(deposit_id):
            self._record("deposit_initiated", deposit)
            self.metrics.deposits.labels(status=DepositStatus.PENDING.value).inc()
            logger.info(f"Deposit initiated: {deposit_id} user={user} amount={value}")

            deposit.proof = deposit.expected_proof()
            deposit.transition(DepositStatus.CONFIRMED)
            deposit.confirmed_at = self._now()
            self._record("deposit_confirmed", deposit, proof=deposit.proof)
            self.metrics.deposits.labels(status=DepositStatus.CONFIRMED.value).inc()
            self._persist_deposit(deposit)

            return await self._process_deposit(deposit)

    async def process_deposit(self, deposit_id: str) -> DepositReceipt:
        """Verify a confirmed deposit's proof and complete it"""
        deposit = self._get_deposit(deposit_id)
        async with self._lock_for(deposit_id):
            if deposit.status is not DepositStatus.CONFIRMED:
                raise StateError(
                    f"Deposit {deposit_id} not ready for processing (status {deposit.status.value})",
                    reason="not_ready"
                )
            return await self._process_deposit(deposit)

    async def _process_deposit(self, deposit: Deposit) -> DepositReceipt:
        try:
            if not Hash.is_hash(deposit.proof) or deposit.proof != deposit.expected_proof():
                raise ProofError(f"Deposit {deposit.id} proof does not match its record", reason="invalid_proof")
            valid = await self.retry_policy.run(
                "verify_proof",
                lambda: self.settlement.verify_proof(deposit.proof),
                self.metrics
            )
            if not valid:
                raise ProofError(f"Settlement layer rejected proof for {deposit.id}", reason="invalid_proof")
        except SettlementTimeoutError:
            logger.warning(f"Deposit {deposit.id} verification timed out; left confirmed for reconciliation")
            return DepositReceipt(deposit_id=deposit.id, status=deposit.status, proof=deposit.proof)
        except (ProofError, ExternalError) as e:
            self._fail_deposit(deposit, e)
            raise

        deposit.mint_ref = Hash.keccak(b"mint" + Hash.to_bytes(deposit.proof))
        deposit.transition(DepositStatus.COMPLETED)
        deposit.completed_at = self._now()
        self._record("deposit_completed", deposit, mint_ref=deposit.mint_ref)
        self.metrics.deposits.labels(status=DepositStatus.COMPLETED.value).inc()
        self._persist_deposit(deposit)
        logger.info(f"Deposit completed: {deposit.id} mint={short_hash(deposit.mint_ref)}")
        return DepositReceipt(deposit_id=deposit.id, status=deposit.status, proof=deposit.proof)

    def _fail_deposit(self, deposit: Deposit, error: RollupError):
        error.entity_id = deposit.id
        deposit.transition(DepositStatus.FAILED)
        deposit.failure_reason = error.reason or "error"
        self._record("deposit_failed", deposit, reason=deposit.failure_reason)
        self.metrics.deposits.labels(status=DepositStatus.FAILED.value).inc()
        self._persist_deposit(deposit)
        logger.error(f"Deposit {deposit.id} failed: {str(error)}")

    # ── Withdrawals ─────────────────────────────────────────────────

    async def withdraw(
        self,
        user: str,
        token: Optional[str],
        amount: Amount,
        options: Optional[Dict[str, Any]] = None
    ) -> WithdrawalReceipt:
        """Burn funds on the rollup; they unlock on the settlement layer after the delay"""
        user = _normalize_address(user, "user")
        token = _normalize_address(token, "token", default=Config.ZERO_ADDRESS)
        value = _parse_amount(amount)
        if value < self.min_deposit:
            raise ValidationError(
                f"Withdrawal amount {value} below minimum {self.min_deposit}",
                reason="amount_out_of_range"
            )

        raw_now = self._clock()
        now = int(raw_now)
        self._withdrawal_counter += 1
        withdrawal_id = f"withdrawal_{self._withdrawal_counter}"
        withdrawal = Withdrawal(
            id=withdrawal_id,
            user=user,
            token=token,
            amount=value,
            amount_wei=Web3.to_wei(value, "ether"),
            created_at=now,
            unlock_time=math.ceil(raw_now) + self.withdrawal_delay,
            canonical_root=self._canonical_root(),
            options=dict(options or {})
        )
        self._withdrawals[withdrawal_id] = withdrawal

        async with self._lock_for(withdrawal_id):
            self._record("withdrawal_initiated", withdrawal, unlock_time=withdrawal.unlock_time)
            self.metrics.withdrawals.labels(status=WithdrawalStatus.PENDING.value).inc()

            withdrawal.proof = withdrawal.expected_proof()
            withdrawal.burn_ref = Hash.keccak(b"burn" + Hash.to_bytes(withdrawal.proof))
            withdrawal.transition(WithdrawalStatus.BURNED)
            self._record("withdrawal_burned", withdrawal, proof=withdrawal.proof, burn_ref=withdrawal.burn_ref)
            self.metrics.withdrawals.labels(status=WithdrawalStatus.BURNED.value).inc()
            self._persist_withdrawal(withdrawal)

        logger.info(
            f"Withdrawal initiated: {withdrawal_id} user={user} amount={value} "
            f"unlocks at {withdrawal.unlock_time}"
        )
        return WithdrawalReceipt(
            withdrawal_id=withdrawal_id,
            status=withdrawal.status,
            unlock_time=withdrawal.unlock_time
        )

    async def complete_withdrawal(self, withdrawal_id: str) -> WithdrawalCompletion:
        """
        Release a burned withdrawal on the settlement layer once its delay
        has passed.

        Raises:
            NotFoundError: Unknown id.
            StateError: ``not_ready`` when not burned, ``still_locked`` before
                ``unlock_time``.
            ProofError: The proof did not verify; the withdrawal is failed.
            SettlementTimeoutError: The release did not confirm in time; the
                withdrawal stays burned and the next attempt reconciles.
            ExternalError: Settlement retries ran out; the withdrawal is failed.
        """
        withdrawal = self._get_withdrawal(withdrawal_id)
        async with self._lock_for(withdrawal_id):
            if withdrawal.status is not WithdrawalStatus.BURNED:
                raise StateError(
                    f"Withdrawal {withdrawal_id} not ready for completion (status {withdrawal.status.value})",
                    reason="not_ready"
                )
            if self._clock() < withdrawal.unlock_time:
                raise StateError(
                    f"Withdrawal {withdrawal_id} not ready: still locked in delay period "
                    f"until {withdrawal.unlock_time}",
                    reason="still_locked"
                )

            try:
                if not Hash.is_hash(withdrawal.proof) or withdrawal.proof != withdrawal.expected_proof():
                    raise ProofError(f"Withdrawal {withdrawal_id} proof does not match its record", reason="invalid_proof")

                ref = None
                if withdrawal.release_attempted:
                    ref = await self.retry_policy.run(
                        "get_withdrawal_release",
                        lambda: self.settlement.get_withdrawal_release(withdrawal_id),
                        self.metrics
                    )
                if ref is None:
                    valid = await self.retry_policy.run(
                        "verify_proof",
                        lambda: self.settlement.verify_proof(withdrawal.proof),
                        self.metrics
                    )
                    if not valid:
                        raise ProofError(f"Settlement layer rejected proof for {withdrawal_id}", reason="invalid_proof")
                    withdrawal.release_attempted = True
                    self._persist_withdrawal(withdrawal)
                    ref = await self.retry_policy.run(
                        "release_withdrawal",
                        lambda: self.settlement.release_withdrawal(
                            withdrawal_id, withdrawal.proof, withdrawal.user,
                            withdrawal.token, withdrawal.amount_wei
                        ),
                        self.metrics
                    )
            except SettlementTimeoutError:
                logger.warning(f"Withdrawal {withdrawal_id} release timed out; left burned for reconciliation")
                raise
            except (ProofError, ExternalError) as e:
                self._fail_withdrawal(withdrawal, e)
                raise

            withdrawal.settlement_ref = ref
            withdrawal.transition(WithdrawalStatus.COMPLETED)
            withdrawal.completed_at = self._now()
            self._record("withdrawal_completed", withdrawal, settlement_ref=ref)
            self.metrics.withdrawals.labels(status=WithdrawalStatus.COMPLETED.value).inc()
            self._persist_withdrawal(withdrawal)

        logger.info(f"Withdrawal completed: {withdrawal_id} ref={short_hash(ref)}")
        return WithdrawalCompletion(withdrawal_id=withdrawal_id, status=withdrawal.status, settlement_ref=ref)

    def _fail_withdrawal(self, withdrawal: Withdrawal, error: RollupError):
        error.entity_id = withdrawal.id
        withdrawal.transition(WithdrawalStatus.FAILED)
        withdrawal.failure_reason = error.reason or "error"
        self._record("withdrawal_failed", withdrawal, reason=withdrawal.failure_reason)
        self.metrics.withdrawals.labels(status=WithdrawalStatus.FAILED.value).inc()
        self._persist_withdrawal(withdrawal)
        logger.error(f"Withdrawal {withdrawal.id} failed: {str(error)}")

    # ── Reconciliation ──────────────────────────────────────────────

    async def reconcile(self) -> Dict[str, Dict[str, str]]:
        """
        Retry work left behind by settlement timeouts: confirmed deposits are
        re-processed and withdrawals whose release was already sent are
        completed. Returns the resulting status per id touched.
        """
        outcome: Dict[str, Dict[str, str]] = {"deposits": {}, "withdrawals": {}}

        for deposit in [d for d in self._deposits.values() if d.status is DepositStatus.CONFIRMED]:
            try:
                await self.process_deposit(deposit.id)
            except StateError:
                pass  # progressed concurrently
            except (ProofError, ExternalError) as e:
                logger.warning(f"Reconciliation of {deposit.id} ended with {type(e).__name__}: {str(e)}")
            outcome["deposits"][deposit.id] = deposit.status.value

        now = self._clock()
        for withdrawal in [
            w for w in self._withdrawals.values()
            if w.status is WithdrawalStatus.BURNED and w.release_attempted and now >= w.unlock_time
        ]:
            try:
                await self.complete_withdrawal(withdrawal.id)
            except StateError:
                pass  # progressed concurrently
            except (ProofError, ExternalError) as e:
                logger.warning(f"Reconciliation of {withdrawal.id} ended with {type(e).__name__}: {str(e)}")
            outcome["withdrawals"][withdrawal.id] = withdrawal.status.value

        return outcome

    def restore(self) -> int:
        """Reload deposits and withdrawals from the store; returns how many were loaded"""
        if self.store is None:
            return 0

        for data in self.store.load_deposits():
            deposit = Deposit.from_dict(data)
            self._deposits[deposit.id] = deposit
        for data in self.store.load_withdrawals():
            withdrawal = Withdrawal.from_dict(data)
            self._withdrawals[withdrawal.id] = withdrawal

        self._deposit_counter = max((_sequence(i) for i in self._deposits), default=0)
        self._withdrawal_counter = max((_sequence(i) for i in self._withdrawals), default=0)
        count = len(self._deposits) + len(self._withdrawals)
        logger.info(f"Restored {len(self._deposits)} deposits and {len(self._withdrawals)} withdrawals")
        return count

    # ── Queries ─────────────────────────────────────────────────────

    def get_deposit(self, deposit_id: str) -> Optional[Deposit]:
        deposit = self._deposits.get(deposit_id)
        return deposit.snapshot() if deposit else None

    def get_withdrawal(self, withdrawal_id: str) -> Optional[Withdrawal]:
        withdrawal = self._withdrawals.get(withdrawal_id)
        return withdrawal.snapshot() if withdrawal else None

    def get_bridge_events(self, limit: int = 100) -> List[BridgeEvent]:
        return self._events.recent(limit)

    def get_stats(self) -> Dict[str, Any]:
        deposits = list(self._deposits.values())
        withdrawals = list(self._withdrawals.values())
        deposit_counts = {status.value: 0 for status in DepositStatus}
        for deposit in deposits:
            deposit_counts[deposit.status.value] += 1
        withdrawal_counts = {status.value: 0 for status in WithdrawalStatus}
        for withdrawal in withdrawals:
            withdrawal_counts[withdrawal.status.value] += 1

        deposited = sum((d.amount for d in deposits if d.status is DepositStatus.COMPLETED), Decimal('0'))
        withdrawn = sum((w.amount for w in withdrawals if w.status is WithdrawalStatus.COMPLETED), Decimal('0'))
        return {
            "total_deposits": len(deposits),
            "total_withdrawals": len(withdrawals),
            "deposits_by_status": deposit_counts,
            "withdrawals_by_status": withdrawal_counts,
            "total_deposited": str(deposited),
            "total_withdrawn": str(withdrawn),
            "min_deposit": str(self.min_deposit),
            "max_deposit": str(self.max_deposit),
            "withdrawal_delay": self.withdrawal_delay,
            "events_recorded": self._events.total_recorded
        }


def _sequence(entity_id: str) -> int:
    try:
        return int(entity_id.rsplit("_", 1)[1])
    except (IndexError, ValueError):
        return 0
