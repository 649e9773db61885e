import pytest

from config.config import PollingConfig
from voting.errors import LedgerError, PollingTimeoutError
from voting.polling import RetryPolicy, poll, poll_for_totals, totals_available

FAST = RetryPolicy(interval=0.001, backoff=2.0, max_interval=0.004, max_attempts=6, timeout=5.0)


class Counter:
    def __init__(self, results):
        self.results = list(results)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def test_delays_back_off_and_cap():
    assert list(FAST.delays()) == [0.001, 0.002, 0.004, 0.004, 0.004]


def test_policy_from_config():
    policy = RetryPolicy.from_config(PollingConfig(interval=0.5, max_attempts=3))
    assert policy.interval == 0.5
    assert policy.max_attempts == 3


def test_totals_available():
    assert not totals_available(None)
    assert not totals_available((0, 0, 0))
    assert totals_available((0, 0, 6))


@pytest.mark.asyncio
async def test_returns_once_totals_appear():
    fetch = Counter([(0, 0, 0), (0, 0, 0), (1, 0, 5)])
    assert await poll_for_totals(fetch, FAST) == (1, 0, 5)
    assert fetch.calls == 3


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    fetch = Counter([(0, 0, 0)])
    with pytest.raises(PollingTimeoutError) as excinfo:
        await poll_for_totals(fetch, FAST)
    assert excinfo.value.attempts == FAST.max_attempts
    assert fetch.calls == FAST.max_attempts


@pytest.mark.asyncio
async def test_gives_up_at_deadline():
    policy = RetryPolicy(interval=0.02, backoff=1.0, max_interval=0.02, max_attempts=1000, timeout=0.05)
    fetch = Counter([None])
    with pytest.raises(PollingTimeoutError) as excinfo:
        await poll(fetch, policy, is_ready=lambda value: value is not None)
    assert excinfo.value.attempts < 1000
    assert excinfo.value.elapsed >= 0.05


@pytest.mark.asyncio
async def test_ledger_errors_are_retried():
    fetch = Counter([LedgerError("node down"), LedgerError("node down"), (0, 3, 0)])
    assert await poll_for_totals(fetch, FAST) == (0, 3, 0)


@pytest.mark.asyncio
async def test_last_error_is_reported():
    fetch = Counter([LedgerError("node down")])
    with pytest.raises(PollingTimeoutError, match="node down"):
        await poll_for_totals(fetch, FAST)


@pytest.mark.asyncio
async def test_other_errors_propagate():
    fetch = Counter([RuntimeError("bug")])
    with pytest.raises(RuntimeError):
        await poll_for_totals(fetch, FAST)
    assert fetch.calls == 1


@pytest.mark.asyncio
async def test_async_fetch():
    values = iter([None, "ready"])

    async def fetch():
        return next(values)

    assert await poll(fetch, FAST, is_ready=lambda v: v is not None) == "ready"
