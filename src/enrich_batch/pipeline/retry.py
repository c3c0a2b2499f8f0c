"""Bounded retry loop around a single completion call.

Exceptions raised by a client are converted into a ``RawResponse`` exactly
once, in ``call_once``. From there on the loop is driven by an explicit
``AttemptOutcome`` per attempt, with separate budgets for transport failures
and rate limiting.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import enum
import logging

import httpx

from enrich_batch.config import FrozenConfig
from enrich_batch.core.types import RawResponse, StatusKind
from enrich_batch.telemetry import TelemetryContext, TelemetryContextProtocol

log = logging.getLogger(__name__)

type Sender = Callable[[], Awaitable[RawResponse]]
type Sleeper = Callable[[float], Awaitable[None]]


class AttemptOutcome(enum.StrEnum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    RATE_LIMITED = "rate_limited"
    FATAL = "fatal"


_OUTCOMES = {
    StatusKind.OK: AttemptOutcome.SUCCESS,
    StatusKind.TRANSPORT_ERROR: AttemptOutcome.RETRYABLE,
    StatusKind.RATE_LIMITED: AttemptOutcome.RATE_LIMITED,
    StatusKind.REJECTED: AttemptOutcome.FATAL,
}


def classify(response: RawResponse) -> AttemptOutcome:
    return _OUTCOMES[response.status]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt budgets and backoff shape.

    Transport failures back off linearly (``base_delay * attempt``); rate
    limits honor the service's hint when given, otherwise back off
    exponentially from ``rate_limit_base_delay``. Every wait is capped at
    ``max_delay``.
    """

    max_attempts: int = 3
    rate_limit_attempts: int = 6
    base_delay: float = 0.4
    rate_limit_base_delay: float = 2.0
    max_delay: float = 60.0

    @classmethod
    def from_config(cls, config: FrozenConfig, *, single_item: bool = False) -> "RetryPolicy":
        return cls(
            max_attempts=config.salvage_attempts if single_item else config.max_retry_attempts,
            rate_limit_attempts=config.rate_limit_attempts,
            base_delay=config.retry_base_delay,
            rate_limit_base_delay=config.rate_limit_base_delay,
            max_delay=config.retry_max_delay,
        )

    def transport_delay(self, attempt: int) -> float:
        return min(self.base_delay * attempt, self.max_delay)

    def rate_limit_delay(self, hit: int, hint: float | None) -> float:
        if hint is not None and hint >= 0:
            return min(hint, self.max_delay)
        return min(self.rate_limit_base_delay * 2 ** (hit - 1), self.max_delay)


@dataclass(frozen=True, slots=True)
class RetryReport:
    """How a request ended, and what it took to get there."""

    outcome: AttemptOutcome
    response: RawResponse
    attempts: int
    rate_limit_hits: int
    delays: tuple[float, ...] = ()

    @property
    def ok(self) -> bool:
        return self.outcome is AttemptOutcome.SUCCESS


async def call_once(send: Sender, timeout: float) -> RawResponse:
    """Run one attempt, mapping client exceptions onto response statuses."""
    try:
        return await asyncio.wait_for(send(), timeout=timeout)
    except TimeoutError:
        return RawResponse.transport_error(f"timed out after {timeout:g}s")
    except (httpx.TransportError, OSError) as e:
        return RawResponse.transport_error(f"{type(e).__name__}: {e}")
    except Exception as e:
        log.exception("Completion client raised unexpectedly")
        return RawResponse.rejected(f"{type(e).__name__}: {e}")


async def send_with_retry(
    send: Sender,
    policy: RetryPolicy,
    *,
    timeout: float,
    sleep: Sleeper = asyncio.sleep,
    telemetry: TelemetryContextProtocol | None = None,
    label: str = "request",
) -> RetryReport:
    """Send until success, a fatal outcome, or an exhausted budget."""
    tele = telemetry or TelemetryContext()
    transport_failures = 0
    rate_limit_hits = 0
    delays: list[float] = []

    for attempt in range(1, policy.max_attempts + policy.rate_limit_attempts + 1):
        response = await call_once(send, timeout)
        outcome = classify(response)

        if outcome is AttemptOutcome.RATE_LIMITED:
            rate_limit_hits += 1
            tele.count("enrich.rate_limited")
            if rate_limit_hits >= policy.rate_limit_attempts:
                log.warning("%s: rate limit budget exhausted after %d hits", label, rate_limit_hits)
                return RetryReport(outcome, response, attempt, rate_limit_hits, tuple(delays))
            delay = policy.rate_limit_delay(rate_limit_hits, response.retry_after)
        elif outcome is AttemptOutcome.RETRYABLE:
            transport_failures += 1
            if transport_failures >= policy.max_attempts:
                log.warning(
                    "%s: giving up after %d transport failures (%s)",
                    label,
                    transport_failures,
                    response.error,
                )
                return RetryReport(outcome, response, attempt, rate_limit_hits, tuple(delays))
            delay = policy.transport_delay(transport_failures)
        else:
            if outcome is AttemptOutcome.FATAL:
                log.warning("%s: rejected (%s), not retrying", label, response.error)
            return RetryReport(outcome, response, attempt, rate_limit_hits, tuple(delays))

        tele.count("enrich.retry")
        log.warning(
            "%s: %s on attempt %d, retrying in %.2fs", label, outcome.value, attempt, delay
        )
        delays.append(delay)
        await sleep(delay)

    # Unreachable: each iteration consumes one of the two budgets.
    raise AssertionError("retry budgets not enforced")
