import asyncio

import httpx
import pytest

from enrich_batch.core.types import RawResponse, StatusKind
from enrich_batch.pipeline.retry import (
    AttemptOutcome,
    RetryPolicy,
    call_once,
    send_with_retry,
)
from tests.helpers import RecordingSleep

pytestmark = pytest.mark.unit


def scripted(*responses):
    """Sender returning the given responses in order, repeating the last one."""
    queue = list(responses)
    calls = []

    async def send():
        calls.append(1)
        return queue.pop(0) if len(queue) > 1 else queue[0]

    send.calls = calls
    return send


OK = RawResponse.ok('{"results": []}')
DROPPED = RawResponse.transport_error("connection reset")
LIMITED = RawResponse.rate_limited()


class TestPolicy:
    def test_transport_backoff_is_linear_and_capped(self):
        policy = RetryPolicy(base_delay=0.4, max_delay=1.0)
        assert [policy.transport_delay(n) for n in (1, 2, 3)] == [0.4, 0.8, 1.0]

    def test_rate_limit_backoff_is_exponential_and_capped(self):
        policy = RetryPolicy(rate_limit_base_delay=2.0, max_delay=10.0)
        assert [policy.rate_limit_delay(n, None) for n in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 10.0]

    def test_rate_limit_hint_wins_but_is_capped(self):
        policy = RetryPolicy(max_delay=60.0)
        assert policy.rate_limit_delay(3, 1.5) == 1.5
        assert policy.rate_limit_delay(1, 300.0) == 60.0

    def test_from_config_uses_salvage_budget_for_single_items(self, config_factory):
        config = config_factory(max_retry_attempts=4, salvage_attempts=1)
        assert RetryPolicy.from_config(config).max_attempts == 4
        assert RetryPolicy.from_config(config, single_item=True).max_attempts == 1


@pytest.mark.asyncio
class TestSendWithRetry:
    async def test_transport_errors_then_success(self):
        sleep = RecordingSleep()
        report = await send_with_retry(
            scripted(DROPPED, DROPPED, OK), RetryPolicy(), timeout=5, sleep=sleep
        )
        assert report.ok
        assert report.attempts == 3
        assert report.delays == (0.4, 0.8)
        assert sleep.delays == [0.4, 0.8]

    async def test_transport_budget_exhausted(self):
        sender = scripted(DROPPED)
        report = await send_with_retry(
            sender, RetryPolicy(max_attempts=3), timeout=5, sleep=RecordingSleep()
        )
        assert report.outcome is AttemptOutcome.RETRYABLE
        assert not report.ok
        assert report.attempts == 3
        assert len(sender.calls) == 3
        assert report.response.error == "connection reset"

    async def test_rate_limit_hint_is_honored(self):
        sleep = RecordingSleep()
        report = await send_with_retry(
            scripted(RawResponse.rate_limited(5.0), OK), RetryPolicy(), timeout=5, sleep=sleep
        )
        assert report.ok
        assert report.rate_limit_hits == 1
        assert sleep.delays == [5.0]

    async def test_rate_limit_budget_exhausted(self):
        sleep = RecordingSleep()
        report = await send_with_retry(
            scripted(LIMITED),
            RetryPolicy(rate_limit_attempts=4, rate_limit_base_delay=2.0, max_delay=5.0),
            timeout=5,
            sleep=sleep,
        )
        assert report.outcome is AttemptOutcome.RATE_LIMITED
        assert report.rate_limit_hits == 4
        assert report.attempts == 4
        assert sleep.delays == [2.0, 4.0, 5.0]

    async def test_budgets_are_counted_separately(self):
        sleep = RecordingSleep()
        report = await send_with_retry(
            scripted(LIMITED, LIMITED, DROPPED, OK),
            RetryPolicy(max_attempts=2),
            timeout=5,
            sleep=sleep,
        )
        assert report.ok
        assert report.attempts == 4
        assert sleep.delays == [2.0, 4.0, 0.4]

    async def test_rejection_is_not_retried(self):
        sender = scripted(RawResponse.rejected("bad request", status_code=400))
        sleep = RecordingSleep()
        report = await send_with_retry(sender, RetryPolicy(), timeout=5, sleep=sleep)
        assert report.outcome is AttemptOutcome.FATAL
        assert report.attempts == 1
        assert sleep.delays == []


@pytest.mark.asyncio
class TestCallOnce:
    async def test_timeout_becomes_transport_error(self):
        async def slow():
            await asyncio.sleep(10)
            return OK

        response = await call_once(slow, timeout=0.01)
        assert response.status is StatusKind.TRANSPORT_ERROR
        assert "timed out" in response.error

    async def test_network_exception_becomes_transport_error(self):
        async def broken():
            raise httpx.ConnectError("refused")

        response = await call_once(broken, timeout=5)
        assert response.status is StatusKind.TRANSPORT_ERROR
        assert "ConnectError" in response.error

    async def test_unexpected_exception_becomes_rejection(self):
        async def buggy():
            raise ValueError("bad payload")

        response = await call_once(buggy, timeout=5)
        assert response.status is StatusKind.REJECTED
        assert "bad payload" in response.error
