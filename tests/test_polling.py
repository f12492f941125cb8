"""Tests for the cooperative polling primitive."""

import pytest

from webchat_driver.errors import Timeout
from webchat_driver.utils.polling import wait_until


def scripted(values):
    """Async probe returning ``values`` in order, repeating the last one."""
    calls = {"count": 0}

    async def probe():
        index = min(calls["count"], len(values) - 1)
        calls["count"] += 1
        return values[index]

    probe.calls = calls
    return probe


class TestWaitUntil:
    @pytest.mark.asyncio
    async def test_returns_immediately_when_condition_holds(self, clock):
        probe = scripted(["ready"])

        result = await wait_until(probe, timeout=5, clock=clock, sleep=clock.sleep)

        assert result == "ready"
        assert probe.calls["count"] == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_stability_window_resets_on_failure(self, clock):
        probe = scripted([1, 1, 0, 1, 1, 1])

        result = await wait_until(
            probe,
            timeout=10,
            interval=0.25,
            stable_for=0.5,
            clock=clock,
            sleep=clock.sleep,
        )

        assert result == 1
        assert probe.calls["count"] == 6
        assert clock.now == pytest.approx(1.25)

    @pytest.mark.asyncio
    async def test_timeout_carries_last_state(self, clock):
        probe = scripted([{"status": "waiting"}])

        with pytest.raises(Timeout) as excinfo:
            await wait_until(
                probe,
                timeout=1.0,
                interval=0.3,
                predicate=lambda value: value["status"] == "done",
                description="response",
                clock=clock,
                sleep=clock.sleep,
            )

        assert excinfo.value.last_state == {"status": "waiting"}
        assert "response" in str(excinfo.value)
        assert clock.now == pytest.approx(1.0)
        assert max(clock.sleeps) <= 0.3

    @pytest.mark.asyncio
    async def test_never_sleeps_past_deadline(self, clock):
        probe = scripted([False])

        with pytest.raises(Timeout):
            await wait_until(probe, timeout=0.5, interval=2.0, clock=clock, sleep=clock.sleep)

        assert clock.sleeps == [pytest.approx(0.5)]

    @pytest.mark.asyncio
    async def test_probe_errors_propagate(self, clock):
        async def probe():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await wait_until(probe, timeout=5, clock=clock, sleep=clock.sleep)
