import asyncio

import aiohttp
import pytest

from pricewatch.core.errors import (
    ClientError,
    FetchTimeoutError,
    NetworkConnectionError,
    RateLimitError,
    ServerError,
)
from pricewatch.services.retry import retry_delay, retry_with_backoff


class ScriptedOperation:
    """Raises or returns the scripted outcomes in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.mark.asyncio
async def test_rate_limited_twice_then_success_returns_payload():
    operation = ScriptedOperation(
        RateLimitError("429", status=429),
        RateLimitError("429", status=429),
        [{"id": "bitcoin"}],
    )
    sleep = RecordingSleep()

    result = await retry_with_backoff(operation, max_attempts=3, base_delay=1.0, sleep=sleep)

    assert result == [{"id": "bitcoin"}]
    assert operation.calls == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_rate_limited_on_every_attempt_raises_rate_limit_error():
    operation = ScriptedOperation(*[RateLimitError("429", status=429) for _ in range(3)])
    sleep = RecordingSleep()

    with pytest.raises(RateLimitError):
        await retry_with_backoff(operation, max_attempts=3, base_delay=1.0, sleep=sleep)

    assert operation.calls == 3
    assert len(sleep.delays) == 2


@pytest.mark.asyncio
async def test_client_error_is_not_retried():
    operation = ScriptedOperation(ClientError("404", status=404), [])
    sleep = RecordingSleep()

    with pytest.raises(ClientError):
        await retry_with_backoff(operation, max_attempts=3, sleep=sleep)

    assert operation.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_raw_transport_failures_are_classified_and_retried_with_fixed_delay():
    operation = ScriptedOperation(
        aiohttp.ClientConnectionError("refused"),
        asyncio.TimeoutError(),
        ServerError("503", status=503),
    )
    sleep = RecordingSleep()

    with pytest.raises(ServerError):
        await retry_with_backoff(operation, max_attempts=3, base_delay=0.5, sleep=sleep)

    assert operation.calls == 3
    assert sleep.delays == [0.5, 0.5]


@pytest.mark.asyncio
async def test_last_raw_failure_surfaces_as_classified_error():
    operation = ScriptedOperation(asyncio.TimeoutError())

    with pytest.raises(FetchTimeoutError):
        await retry_with_backoff(operation, max_attempts=1, sleep=RecordingSleep())


def test_retry_delay_is_linear_for_rate_limits_and_fixed_otherwise():
    rate_limited = RateLimitError("429", status=429)
    network = NetworkConnectionError("reset")

    assert [retry_delay(rate_limited, attempt, 1.0, 2.0) for attempt in (1, 2, 3)] == [2.0, 4.0, 6.0]
    assert [retry_delay(network, attempt, 1.0, 2.0) for attempt in (1, 2, 3)] == [1.0, 1.0, 1.0]
