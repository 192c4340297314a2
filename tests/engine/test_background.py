"""
Tests for the platform background capabilities.

Every task id handed to dispatch() or timeout() must end up finished,
whether the handler ran, was skipped, or was never configured.
"""

from datetime import timedelta

import pytest

from lectio_sync.engine import ForegroundOnly, WithBackgroundSlot


@pytest.fixture
def handled():
    return []


@pytest.fixture
def slot(background, handled):
    """Configured slot whose handler records and acknowledges the task."""

    def on_fetch(task_id):
        handled.append(task_id)
        background.finish(task_id)

    background.configure(on_fetch, background.finish, timedelta(minutes=15))
    return background


class TestForegroundOnly:

    def test_never_available(self):
        capability = ForegroundOnly()
        capability.configure(lambda t: None, lambda t: None)

        assert capability.platform == "web"
        assert capability.available is False
        capability.finish("anything")
        capability.stop()


class TestDispatch:

    def test_dispatch_before_configure_acknowledges(self, background):
        assert background.available is False

        assert background.dispatch("task-1") is False
        assert background.was_finished("task-1")

    def test_dispatch_runs_handler(self, slot, handled):
        assert slot.dispatch("task-1") is True

        assert handled == ["task-1"]
        assert slot.was_finished("task-1")

    def test_task_is_open_while_handler_runs(self, background):
        observed = []

        def on_fetch(task_id):
            observed.append(background.is_open(task_id))
            background.finish(task_id)

        background.configure(on_fetch, background.finish)
        background.dispatch("task-1")

        assert observed == [True]
        assert background.is_open("task-1") is False

    def test_slot_inside_minimum_interval_is_acknowledged(self, slot, handled, mock_clock):
        slot.dispatch("task-1")
        mock_clock.tick(14 * 60)

        assert slot.dispatch("task-2") is False

        assert handled == ["task-1"]
        assert slot.was_finished("task-2")

    def test_slot_after_minimum_interval_runs(self, slot, handled, mock_clock):
        slot.dispatch("task-1")
        mock_clock.tick(15 * 60)

        assert slot.dispatch("task-2") is True
        assert handled == ["task-1", "task-2"]

    def test_zero_interval_never_throttles(self, background, handled):
        background.configure(handled.append, background.finish, timedelta(0))

        background.dispatch("a")
        background.dispatch("b")

        assert handled == ["a", "b"]

    def test_negative_interval_rejected(self, background):
        with pytest.raises(ValueError):
            background.configure(lambda t: None, lambda t: None, timedelta(minutes=-1))

        assert background.available is False


class TestFinish:

    def test_timeout_calls_timeout_handler(self, background):
        timed_out = []
        background.configure(lambda t: None, timed_out.append)

        background.timeout("task-9")

        assert timed_out == ["task-9"]

    def test_timeout_without_handler_acknowledges(self, background):
        background.timeout("task-9")

        assert background.was_finished("task-9")

    def test_finish_is_idempotent(self, background):
        background.finish("task-1")
        background.finish("task-1")

        assert list(background._finished) == ["task-1"]

    def test_finished_history_is_bounded(self, mock_clock):
        background = WithBackgroundSlot(clock=mock_clock.now, history_size=3)

        for n in range(5):
            background.finish(f"task-{n}")

        assert not background.was_finished("task-0")
        assert background.was_finished("task-4")

    def test_stop_acknowledges_open_tasks(self, background):
        """Test that stop() finishes a slot whose handler never acknowledged it."""
        background.configure(lambda task_id: None, background.finish)
        background.dispatch("task-1")
        assert background.is_open("task-1")

        background.stop()

        assert background.was_finished("task-1")
        assert background.available is False
