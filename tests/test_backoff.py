"""Tests for reconnect backoff scheduling."""

from __future__ import annotations

import pytest

from agriassist.backoff import BackoffStrategy, ReconnectController, should_retry
from fakes import FakeScheduler


class TestBackoffStrategy:
    def test_linear_delays(self):
        strategy = BackoffStrategy()
        assert [strategy.compute_delay(n) for n in range(1, 6)] == [2.0, 4.0, 6.0, 8.0, 10.0]

    def test_custom_base_delay(self):
        strategy = BackoffStrategy(base_delay=0.5)
        assert strategy.compute_delay(3) == 1.5

    def test_max_delay_caps(self):
        strategy = BackoffStrategy(base_delay=2.0, max_delay=5.0)
        assert strategy.compute_delay(4) == 5.0


@pytest.mark.parametrize(
    ("code", "expected"),
    [(1000, False), (1008, False), (1001, True), (1006, True), (1011, True), (4000, True)],
)
def test_should_retry(code, expected):
    assert should_retry(code) is expected


class TestReconnectController:
    def test_schedules_five_attempts_then_exhausts(self):
        scheduler = FakeScheduler()
        controller = ReconnectController(scheduler=scheduler)
        reopened = []

        for _ in range(5):
            assert controller.on_close(1006, lambda: reopened.append(1)) is not None
            scheduler.fire()

        assert scheduler.delays == [2.0, 4.0, 6.0, 8.0, 10.0]
        assert len(reopened) == 5

        assert controller.on_close(1006, lambda: reopened.append(1)) is None
        assert controller.exhausted
        assert controller.attempt_count == 5
        assert len(scheduler.timers) == 5

    def test_normal_close_never_schedules(self):
        scheduler = FakeScheduler()
        controller = ReconnectController(scheduler=scheduler)

        assert controller.on_close(1000, lambda: None) is None
        assert scheduler.timers == []
        assert not controller.exhausted

    def test_policy_violation_never_schedules(self):
        scheduler = FakeScheduler()
        controller = ReconnectController(scheduler=scheduler)

        assert controller.on_close(1008, lambda: None) is None
        assert scheduler.timers == []

    def test_open_resets_counter(self):
        scheduler = FakeScheduler()
        controller = ReconnectController(scheduler=scheduler)
        controller.on_close(1006, lambda: None)
        scheduler.fire()
        controller.on_close(1006, lambda: None)

        controller.on_open()

        assert controller.attempt_count == 0
        assert controller.on_close(1006, lambda: None) == 2.0

    def test_reset_cancels_armed_timer(self):
        scheduler = FakeScheduler()
        controller = ReconnectController(scheduler=scheduler)
        controller.on_close(1006, lambda: None)
        assert controller.pending

        controller.reset()

        assert not controller.pending
        assert scheduler.timers[0].cancelled
        assert controller.attempt_count == 0

    def test_reset_after_exhaustion_allows_new_cycle(self):
        scheduler = FakeScheduler()
        controller = ReconnectController(BackoffStrategy(max_attempts=1), scheduler=scheduler)
        controller.on_close(1006, lambda: None)
        scheduler.fire()
        assert controller.on_close(1006, lambda: None) is None
        assert controller.exhausted

        controller.reset()

        assert not controller.exhausted
        assert controller.on_close(1006, lambda: None) == 2.0

    def test_zero_attempts_exhausts_immediately(self):
        scheduler = FakeScheduler()
        controller = ReconnectController(BackoffStrategy(max_attempts=0), scheduler=scheduler)

        assert controller.on_close(1006, lambda: None) is None
        assert controller.exhausted
        assert scheduler.timers == []
