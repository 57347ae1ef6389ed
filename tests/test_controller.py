"""
Restart/backoff counters and the deferred restart scheduler.
"""

import pytest

from conftest import FakeMonotonic
from pipewatch.local.supervisor.controller import RestartController, RestartScheduler


class TestRestartController:

    @pytest.fixture
    def controller(self):
        return RestartController(max_restarts=3, backoff_schedule=(300, 600, 1200))

    def test_starts_at_zero(self, controller):
        assert controller.restart_count == 0
        assert controller.backoff_index == 0
        assert controller.can_restart()

    def test_restart_budget(self, controller):
        for expected in (1, 2, 3):
            assert controller.record_restart_attempt() == expected
        assert not controller.can_restart()

    def test_completed_resets_both_counters(self, controller):
        controller.record_restart_attempt()
        controller.advance_backoff()
        controller.on_completed()
        assert controller.restart_count == 0
        assert controller.backoff_index == 0

    def test_next_backoff_does_not_advance(self, controller):
        assert controller.next_backoff() == 300
        assert controller.next_backoff() == 300
        assert controller.backoff_index == 0

    def test_backoff_is_clamped(self, controller):
        waits = []
        for _ in range(5):
            waits.append(controller.next_backoff())
            controller.advance_backoff()
        assert waits == [300, 600, 1200, 1200, 1200]
        assert controller.backoff_index == 2
        assert controller.backoff_level == 3

    def test_backoff_independent_of_restart_count(self, controller):
        controller.advance_backoff()
        assert controller.restart_count == 0
        assert controller.next_backoff() == 600

    def test_empty_schedule_rejected(self):
        with pytest.raises(ValueError):
            RestartController(3, ())


class TestRestartScheduler:

    def test_due_restarts_pop_in_order(self):
        clock = FakeMonotonic()
        scheduler = RestartScheduler(clock)
        scheduler.schedule(600, "second")
        scheduler.schedule(300, "first")
        assert scheduler.pop_due() == []
        assert scheduler.seconds_until_next() == 300

        clock.advance(600)
        due = scheduler.pop_due()
        assert [r.reason for r in due] == ["first", "second"]
        assert scheduler.pending == 0
        assert scheduler.seconds_until_next() is None

    def test_cancelled_restart_never_fires(self):
        clock = FakeMonotonic()
        scheduler = RestartScheduler(clock)
        restart = scheduler.schedule(10, "token exhausted")
        restart.cancel()
        assert restart.cancelled
        assert scheduler.pending == 0
        clock.advance(20)
        assert scheduler.pop_due() == []
