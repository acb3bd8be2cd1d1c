from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar, TYPE_CHECKING
import asyncio
import logging
import time

from ..exceptions import ExternalError, SettlementTimeoutError
from ..utils.config import Config

if TYPE_CHECKING:
    from ..monitoring.metrics import RollupMetrics

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    Bounded timeout and exponential backoff for settlement calls.

    ExternalError is retried up to ``attempts`` times. A timeout is not
    retried in-line: the caller keeps its last confirmed state and
    reconciles on its next poll.
    """
    attempts: int = Config.SETTLEMENT_ATTEMPTS
    timeout: float = Config.SETTLEMENT_TIMEOUT
    backoff: float = Config.SETTLEMENT_BACKOFF
    max_backoff: float = Config.SETTLEMENT_MAX_BACKOFF

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")

    async def run(
        self,
        name: str,
        operation: Callable[[], Awaitable[T]],
        metrics: Optional['RollupMetrics'] = None
    ) -> T:
        delay = self.backoff
        last_error: Optional[ExternalError] = None

        for attempt in range(1, self.attempts + 1):
            started = time.monotonic()
            try:
                result = await asyncio.wait_for(operation(), self.timeout)
            except asyncio.TimeoutError as e:
                if metrics is not None:
                    metrics.settlement_failures.labels(operation=name, kind="timeout").inc()
                logger.warning(f"Settlement call {name} timed out after {self.timeout}s")
                raise SettlementTimeoutError(
                    f"{name} timed out after {self.timeout}s",
                    reason="timeout"
                ) from e
            except ExternalError as e:
                last_error = e
                if metrics is not None:
                    metrics.settlement_failures.labels(operation=name, kind="error").inc()
                logger.warning(f"Settlement call {name} failed (attempt {attempt}/{self.attempts}): {str(e)}")
                if attempt < self.attempts:
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, self.max_backoff)
                continue

            if metrics is not None:
                metrics.settlement_latency.labels(operation=name).observe(time.monotonic() - started)
            return result

        raise ExternalError(
            f"{name} failed after {self.attempts} attempts: {str(last_error)}",
            reason="retries_exhausted"
        ) from last_error
