# src/optirollup/consensus/validator_registry.py
from typing import Callable, Dict, List, Optional, Set, Union, TYPE_CHECKING
from decimal import Decimal, InvalidOperation
import logging
import threading
import time

from web3 import Web3

from .validator import Validator, ValidatorPerformance
from ..crypto.signature import SignatureManager
from ..exceptions import NotFoundError, StateError, ValidationError
from ..utils.config import Config

if TYPE_CHECKING:
    from ..monitoring.metrics import RollupMetrics
    from ..storage.rollup_state import RollupStateStore

logger = logging.getLogger(__name__)

StakeAmount = Union[Decimal, int, str, float]


def _parse_stake(stake: StakeAmount) -> Decimal:
    try:
        amount = Decimal(str(stake))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid stake amount: {stake!r}", reason="stake")
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"Invalid stake amount: {stake!r}", reason="stake")
    return amount


class ValidatorRegistry:
    """
    Stake-weighted set of parties allowed to challenge submitted batches.

    Reads work on the current dict without locking and hand out copies;
    every write runs under one re-entrant lock.
    """

    def __init__(
        self,
        minimum_stake: StakeAmount = Config.MINIMUM_STAKE,
        store: Optional['RollupStateStore'] = None,
        metrics: Optional['RollupMetrics'] = None,
        clock: Callable[[], float] = time.time
    ):
        self.minimum_stake = _parse_stake(minimum_stake)
        self.store = store
        self.metrics = metrics
        self._clock = clock
        self._validators: Dict[str, Validator] = {}
        self._open_challenges: Dict[str, Set[int]] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _normalize(address: str) -> str:
        if not Web3.is_address(address):
            raise ValidationError(f"Invalid validator address: {address!r}", reason="address")
        return Web3.to_checksum_address(address)

    def _lookup(self, address: str) -> Optional[Validator]:
        if not Web3.is_address(address):
            return None
        return self._validators.get(Web3.to_checksum_address(address))

    def _active(self, address: str) -> Validator:
        validator = self._lookup(address)
        if validator is None or not validator.active:
            raise NotFoundError(f"Validator not found: {address}")
        return validator

    def _persist(self, validator: Validator):
        if self.store is not None:
            self.store.save_validator(validator.to_dict())

    def _update_gauges(self):
        if self.metrics is not None:
            self.metrics.active_validators.set(
                sum(1 for v in self._validators.values() if v.active)
            )

    def register(self, address: str, public_key: str, stake: StakeAmount) -> Validator:
        """Register a new validator (or reactivate a deactivated one)"""
        address = self._normalize(address)
        amount = _parse_stake(stake)

        with self._lock:
            existing = self._validators.get(address)
            if existing is not None and existing.active:
                raise StateError(f"Validator already registered: {address}", reason="already_registered")

            if amount < self.minimum_stake:
                raise ValidationError(
                    f"Insufficient stake amount: {amount} < {self.minimum_stake}",
                    reason="insufficient_stake"
                )

            if not SignatureManager.is_valid_public_key(public_key):
                raise ValidationError("Invalid public key format", reason="public_key")

            now = int(self._clock())
            if existing is not None:
                existing.reactivate(public_key.lower(), amount, now)
                validator = existing
            else:
                validator = Validator(address, public_key.lower(), amount, registered_at=now)
                self._validators[address] = validator

            self._persist(validator)
            self._update_gauges()

        logger.info(f"Validator registered: {address} stake={amount} key={public_key[:20]}...")
        return validator.copy()

    def unregister(self, address: str) -> bool:
        """Deactivate a validator with no unresolved challenges"""
        with self._lock:
            validator = self._active(address)
            open_batches = self._open_challenges.get(validator.address)
            if open_batches:
                raise StateError(
                    f"Validator {validator.address} has unresolved challenges on batches "
                    f"{sorted(open_batches)}",
                    reason="open_challenge"
                )
            validator.deactivate(int(self._clock()))
            self._persist(validator)
            self._update_gauges()

        logger.info(f"Validator unregistered: {validator.address}")
        return True

    def update_stake(self, address: str, new_stake: StakeAmount) -> Validator:
        """Update validator's stake"""
        amount = _parse_stake(new_stake)
        with self._lock:
            validator = self._active(address)
            if amount < self.minimum_stake:
                raise ValidationError(
                    f"Insufficient stake amount: {amount} < {self.minimum_stake}",
                    reason="insufficient_stake"
                )
            old_stake = validator.stake
            validator.stake = amount
            self._persist(validator)

        logger.info(f"Validator stake updated: {validator.address} {old_stake} -> {amount}")
        return validator.copy()

    def update_performance(self, address: str, success: bool) -> ValidatorPerformance:
        """Record one dispute outcome and recompute uptime"""
        with self._lock:
            validator = self._lookup(address)
            if validator is None:
                raise NotFoundError(f"Validator not found: {address}")
            validator.performance.record(success)
            self._persist(validator)
            perf = ValidatorPerformance(**vars(validator.performance))

        logger.debug(f"Validator performance updated: {validator.address} uptime={perf.uptime:.2f}%")
        return perf

    def open_challenge(self, address: str, batch_id: int):
        with self._lock:
            validator = self._active(address)
            self._open_challenges.setdefault(validator.address, set()).add(batch_id)

    def resolve_challenge(self, address: str, batch_id: int):
        with self._lock:
            validator = self._lookup(address)
            if validator is None:
                return
            open_batches = self._open_challenges.get(validator.address)
            if open_batches is not None:
                open_batches.discard(batch_id)
                if not open_batches:
                    del self._open_challenges[validator.address]

    def has_open_challenges(self, address: str) -> bool:
        validator = self._lookup(address)
        return validator is not None and bool(self._open_challenges.get(validator.address))

    def is_validator(self, address: str) -> bool:
        validator = self._lookup(address)
        return validator is not None and validator.active

    def get_stake(self, address: str) -> Decimal:
        validator = self._lookup(address)
        if validator is None or not validator.active:
            return Decimal('0')
        return validator.stake

    def get_validator(self, address: str) -> Optional[Validator]:
        validator = self._lookup(address)
        return validator.copy() if validator else None

    def get_performance(self, address: str) -> Optional[ValidatorPerformance]:
        validator = self._lookup(address)
        if validator is None:
            return None
        return ValidatorPerformance(**vars(validator.performance))

    def get_active_validators(self) -> List[Validator]:
        return [v.copy() for v in list(self._validators.values()) if v.active]

    def get_all_validators(self) -> List[Validator]:
        return [v.copy() for v in list(self._validators.values())]

    def restore(self) -> int:
        """Reload validators from the store; returns how many were loaded"""
        if self.store is None:
            return 0
        with self._lock:
            for data in self.store.load_validators():
                validator = Validator.from_dict(data)
                self._validators[validator.address] = validator
            self._update_gauges()
            count = len(self._validators)
        logger.info(f"Restored {count} validators from store")
        return count

    def get_stats(self) -> Dict:
        validators = list(self._validators.values())
        active = [v for v in validators if v.active]
        total_stake = sum((v.stake for v in active), Decimal('0'))
        average_stake = total_stake / len(active) if active else Decimal('0')
        return {
            "total_validators": len(validators),
            "active_validators": len(active),
            "total_stake": str(total_stake),
            "average_stake": str(average_stake),
            "minimum_stake": str(self.minimum_stake),
            "open_challenges": sum(len(b) for b in self._open_challenges.values())
        }
