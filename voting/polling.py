"""
Bounded polling for values that appear on the ledger asynchronously.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Type

from config.config import PollingConfig
from .errors import LedgerError, PollingTimeoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    interval: float = 0.1
    backoff: float = 1.5
    max_interval: float = 2.0
    max_attempts: int = 50
    timeout: float = 30.0

    @classmethod
    def from_config(cls, config: PollingConfig) -> "RetryPolicy":
        return cls(config.interval, config.backoff, config.max_interval,
                   config.max_attempts, config.timeout)

    def delays(self):
        """Sleep before attempt 2, 3, ...: interval * backoff^k, capped"""
        delay = self.interval
        for _ in range(self.max_attempts - 1):
            yield delay
            delay = min(delay * self.backoff, self.max_interval)


def totals_available(totals) -> bool:
    return totals is not None and sum(totals) > 0


async def poll(fetch: Callable[[], Any], policy: RetryPolicy,
               is_ready: Callable[[Any], bool] = totals_available,
               retry_on: Tuple[Type[BaseException], ...] = (LedgerError,),
               description: str = "value") -> Any:
    """Call fetch until is_ready accepts its result.

    Sync fetchers run in the default executor so blocking HTTP clients do
    not stall the event loop. Exceptions in retry_on count as a miss; any
    other exception propagates.
    """
    loop = asyncio.get_running_loop()
    start = time.monotonic()
    deadline = start + policy.timeout
    delays = policy.delays()
    attempts = 0
    last_error: Optional[BaseException] = None

    while True:
        attempts += 1
        try:
            if inspect.iscoroutinefunction(fetch):
                result = await fetch()
            else:
                result = await loop.run_in_executor(None, fetch)
        except retry_on as e:
            last_error = e
            logger.debug(f"Polling {description}: attempt {attempts} failed: {e}")
        else:
            if is_ready(result):
                logger.info(f"Polled {description} after {attempts} attempts")
                return result

        delay = next(delays, None)
        remaining = deadline - time.monotonic()
        if delay is None or remaining <= 0:
            message = f"Gave up waiting for {description}"
            if last_error is not None:
                message = f"{message} (last error: {last_error})"
            raise PollingTimeoutError(message, attempts, time.monotonic() - start)
        await asyncio.sleep(min(delay, remaining))


async def poll_for_totals(fetch: Callable[[], Any], policy: Optional[RetryPolicy] = None) -> Tuple[int, int, int]:
    """Wait until the ledger reports non-zero (abstain, nay, yay) totals"""
    totals = await poll(fetch, policy or RetryPolicy(), totals_available,
                        description="vote totals")
    return tuple(int(v) for v in totals)
