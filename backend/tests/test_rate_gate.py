from datetime import date, datetime, timezone

import pytest

from core.errors import RateBudgetExhausted
from core.rate_gate import RateGate, shared_gate


class FakeClock:
    def __init__(self):
        self.now = 1000.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def make_gate(clock, **kwargs):
    options = dict(per_minute=60, per_day=5000, minute_buffer=5, day_buffer=50, min_interval=0.05)
    options.update(kwargs)
    return RateGate("test", clock=clock, sleep=clock.sleep, **options)


async def test_each_call_reserves_from_both_budgets():
    clock = FakeClock()
    gate = make_gate(clock)

    await gate.wait_if_needed()

    assert gate.minute_remaining == 59
    assert gate.day_remaining == 4999


async def test_waits_for_window_reset_when_minute_budget_is_low():
    clock = FakeClock()
    gate = make_gate(clock, per_minute=7, min_interval=0)

    await gate.wait_if_needed()
    await gate.wait_if_needed()
    assert gate.minute_remaining == 5
    assert clock.sleeps == []

    clock.now += 10
    await gate.wait_if_needed()

    assert clock.sleeps == [50.0]
    assert gate.minute_remaining == 6


async def test_consecutive_calls_are_spaced():
    clock = FakeClock()
    gate = make_gate(clock)

    await gate.wait_if_needed()
    await gate.wait_if_needed()

    assert clock.sleeps == [pytest.approx(0.05)]


async def test_day_budget_fails_fast_at_reserve():
    clock = FakeClock()
    gate = make_gate(clock, per_day=51, min_interval=0)

    await gate.wait_if_needed()
    with pytest.raises(RateBudgetExhausted):
        await gate.wait_if_needed()
    assert clock.sleeps == []


async def test_day_budget_resets_on_new_utc_day():
    clock = FakeClock()
    today = {"value": datetime(2024, 5, 1, 23, 59, tzinfo=timezone.utc)}
    gate = make_gate(clock, per_day=51, min_interval=0, utcnow=lambda: today["value"])

    await gate.wait_if_needed()
    today["value"] = datetime(2024, 5, 2, 0, 1, tzinfo=timezone.utc)
    await gate.wait_if_needed()

    assert gate._day == date(2024, 5, 2)
    assert gate.day_remaining == 50


async def test_pipedrive_headers_override_estimates():
    clock = FakeClock()
    gate = make_gate(clock, min_interval=0)
    await gate.wait_if_needed()

    gate.update_from_headers({"X-RateLimit-Remaining": "3", "X-RateLimit-Limit": "80", "X-RateLimit-Reset": "2"})
    assert gate.minute_remaining == 3
    assert gate.per_minute == 80

    await gate.wait_if_needed()

    assert clock.sleeps == [pytest.approx(2.0)]
    assert gate.minute_remaining == 79


async def test_xero_day_header_triggers_fail_fast():
    clock = FakeClock()
    gate = make_gate(
        clock,
        minute_header="X-MinLimit-Remaining",
        day_header="X-DayLimit-Remaining",
        limit_header=None,
        reset_header=None,
    )
    await gate.wait_if_needed()

    gate.update_from_headers({"X-MinLimit-Remaining": "40", "X-DayLimit-Remaining": "50"})

    assert gate.minute_remaining == 40
    with pytest.raises(RateBudgetExhausted):
        await gate.wait_if_needed()


async def test_retry_after_suspends_until_it_elapses():
    clock = FakeClock()
    gate = make_gate(clock, min_interval=0)
    await gate.wait_if_needed()

    gate.update_from_headers({"Retry-After": "7"})
    await gate.wait_if_needed()

    assert clock.sleeps == [pytest.approx(7.0)]


def test_unparseable_headers_are_ignored():
    gate = make_gate(FakeClock())

    gate.update_from_headers({"x-ratelimit-remaining": "soon"})
    gate.update_from_headers({})

    assert gate.minute_remaining == 60


def test_shared_gate_is_one_instance_per_name():
    assert shared_gate("gate-test-a") is shared_gate("gate-test-a")
    assert shared_gate("gate-test-a") is not shared_gate("gate-test-b")
