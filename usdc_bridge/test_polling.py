#!/usr/bin/env python3
"""
Poll policy tests (simulated clock, no real sleeping)
"""

import pytest

from usdc_bridge import errors
from usdc_bridge.polling import PollPolicy


def probe_returning(*results):
    calls = []
    remaining = list(results)

    async def probe():
        calls.append(len(calls))
        value = remaining.pop(0) if remaining else None
        if isinstance(value, Exception):
            raise value
        return value

    return probe, calls


class TestPollPolicy:

    def test_rejects_bad_settings(self):
        with pytest.raises(errors.ValidationError):
            PollPolicy(max_attempts=0)
        with pytest.raises(errors.ValidationError):
            PollPolicy(interval=-1)
        with pytest.raises(errors.ValidationError):
            PollPolicy(backoff=0.5)

    def test_delay_with_backoff(self):
        policy = PollPolicy(interval=2.0, backoff=2.0, max_interval=10.0)
        assert [policy.delay(n) for n in range(5)] == [2.0, 4.0, 8.0, 10.0, 10.0]

    @pytest.mark.asyncio
    async def test_returns_first_result(self, clock):
        probe, calls = probe_returning(None, None, "done")

        result = await clock.policy(max_attempts=5, interval=3.0).poll(probe)

        assert result == "done"
        assert len(calls) == 3
        assert clock.sleeps == [3.0, 3.0]

    @pytest.mark.asyncio
    async def test_no_sleep_after_last_attempt(self, clock):
        probe, calls = probe_returning()

        with pytest.raises(errors.TimeoutError) as exc_info:
            await clock.policy(max_attempts=3, interval=3.0).poll(probe, description="thing")

        assert len(calls) == 3
        assert clock.sleeps == [3.0, 3.0]
        assert "thing timed out" in exc_info.value.message
        assert exc_info.value.details == {"attempts": 3}

    @pytest.mark.asyncio
    async def test_deadline(self, clock):
        probe, calls = probe_returning()
        policy = clock.policy(max_attempts=100, interval=10.0)

        with pytest.raises(errors.TimeoutError, match="deadline"):
            await policy.poll(probe, deadline=policy.deadline_in(25.0))

        assert len(calls) == 3
        assert clock.now == 20.0

    @pytest.mark.asyncio
    async def test_probe_errors_propagate(self, clock):
        probe, calls = probe_returning(None, errors.ExternalServiceError("boom"))

        with pytest.raises(errors.ExternalServiceError):
            await clock.policy(max_attempts=5).poll(probe)

        assert len(calls) == 2
