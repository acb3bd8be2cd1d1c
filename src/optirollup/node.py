# src/optirollup/node.py
from typing import Any, Callable, Dict, Optional
import asyncio
import logging
import time

from .bridge.bridge_coordinator import BridgeCoordinator
from .config.settings import NodeSettings
from .consensus.validator_registry import ValidatorRegistry
from .exceptions import InvariantError, RollupError
from .monitoring.metrics import RollupMetrics
from .rollup.batch_coordinator import BatchCoordinator
from .settlement.base import SettlementLayer
from .settlement.memory import InMemorySettlementLayer
from .settlement.retry import RetryPolicy
from .settlement.web3_client import Web3SettlementLayer
from .storage.rollup_state import RollupStateStore

logger = logging.getLogger(__name__)


class RollupNode:
    """
    One sequencer process: a validator registry, a batch coordinator and a
    bridge coordinator sharing a settlement adapter, a store and a metrics
    registry. ``start()`` restores persisted state and runs the periodic
    batch timer and reconciliation loop.
    """

    def __init__(
        self,
        settings: Optional[NodeSettings] = None,
        settlement: Optional[SettlementLayer] = None,
        metrics: Optional[RollupMetrics] = None,
        clock: Callable[[], float] = time.time
    ):
        self.settings = settings or NodeSettings()
        self.metrics = metrics or RollupMetrics()
        self.store = (
            RollupStateStore(self.settings.storage.db_path)
            if self.settings.storage.enabled else None
        )
        self.settlement = settlement or self._create_settlement()

        s = self.settings.settlement
        retry_policy = RetryPolicy(
            attempts=s.attempts,
            timeout=s.timeout,
            backoff=s.backoff,
            max_backoff=s.max_backoff
        )

        self.registry = ValidatorRegistry(
            minimum_stake=self.settings.validators.minimum_stake,
            store=self.store,
            metrics=self.metrics,
            clock=clock
        )
        self.rollup = BatchCoordinator(
            settlement=self.settlement,
            registry=self.registry,
            batch_size=self.settings.rollup.batch_size,
            batch_timeout=self.settings.rollup.batch_timeout,
            challenge_period=self.settings.rollup.challenge_period,
            min_challenge_stake=self.settings.validators.min_challenge_stake,
            verify_signatures=self.settings.rollup.verify_signatures,
            retry_policy=retry_policy,
            store=self.store,
            metrics=self.metrics,
            clock=clock,
            genesis_root=self.settings.rollup.genesis_root,
            sequencer_address=self.settings.rollup.sequencer_address
        )
        self.bridge = BridgeCoordinator(
            settlement=self.settlement,
            retry_policy=retry_policy,
            min_deposit=self.settings.bridge.min_deposit,
            max_deposit=self.settings.bridge.max_deposit,
            withdrawal_delay=self.settings.bridge.withdrawal_delay,
            event_capacity=self.settings.bridge.event_capacity,
            store=self.store,
            metrics=self.metrics,
            clock=clock,
            root_provider=lambda: self.rollup.finalized_root
        )

        self._task: Optional[asyncio.Task] = None
        self._running = False

    def _create_settlement(self) -> SettlementLayer:
        s = self.settings.settlement
        if s.backend == "web3":
            return Web3SettlementLayer(
                rpc_url=s.rpc_url,
                rollup_address=s.rollup_contract_address,
                bridge_address=s.bridge_contract_address,
                sender=s.sender_address or self.settings.rollup.sequencer_address,
                private_key=s.private_key,
                receipt_timeout=s.receipt_timeout
            )
        return InMemorySettlementLayer(genesis_root=self.settings.rollup.genesis_root)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Restore state, sync the starting root and launch the tick loop"""
        if self._running:
            return

        self.registry.restore()
        self.rollup.restore()
        self.bridge.restore()
        await self.rollup.initialize()

        if self.settings.monitoring.metrics_enabled:
            self.metrics.serve(self.settings.monitoring.metrics_port)

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(
            f"Rollup node started with {self.settlement.name}, "
            f"batch size {self.rollup.batch_size}, root {self.rollup.current_root}"
        )

    async def _run(self):
        interval = self.settings.rollup.tick_interval
        while self._running:
            try:
                await self.rollup.tick()
                await self.bridge.reconcile()
            except InvariantError as e:
                logger.critical(f"Stopping tick loop: {str(e)}")
                self._running = False
                raise
            except RollupError as e:
                logger.error(f"Tick failed: {str(e)}")
            await asyncio.sleep(interval)

    async def stop(self):
        """Stop the tick loop and close the store"""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except InvariantError:
                logger.error("Tick loop had already stopped on an invariant violation")
            self._task = None
        if self.store is not None:
            self.store.close()
        logger.info("Rollup node stopped")

    async def run_forever(self):
        await self.start()
        try:
            await self._task
        finally:
            await self.stop()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "settlement": self.settlement.name,
            "rollup": self.rollup.get_stats(),
            "bridge": self.bridge.get_stats(),
            "validators": self.registry.get_stats()
        }
