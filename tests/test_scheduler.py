"""
Scheduler tests - task registry, due-time checks and the blocking loop.
"""

import logging
import time
from datetime import timedelta
from unittest.mock import patch, MagicMock

import pytest

from verification.core import scheduler
from verification.core.scheduler import (
    register_task,
    unregister_task,
    list_tasks,
    start,
    stop,
    should_run_task,
    run_task,
    run_pending,
    reset_task,
    get_status,
)


@pytest.fixture(autouse=True)
def reset_scheduler():
    """Reset scheduler state between tests."""
    scheduler.tasks.clear()
    scheduler.running = False
    scheduler.shutdown_event = None
    yield
    scheduler.tasks.clear()
    scheduler.running = False


class TestSchedulerRegistration:
    """Test task registration functionality."""

    def test_register_task_valid(self):
        register_task("deadline_sweep", 30, lambda: None)
        assert list_tasks() == ["deadline_sweep"]

    def test_register_task_invalid_func(self):
        with pytest.raises(ValueError, match="Task function must be callable"):
            register_task("bad_task", 30, "not_callable")

    def test_register_task_invalid_interval(self):
        with pytest.raises(ValueError, match="Interval must be >= 1 second"):
            register_task("bad_task", 0, lambda: None)

    def test_register_duplicate_task(self):
        """Registering an existing name replaces it."""
        register_task("duplicate", 30, lambda: None)
        register_task("duplicate", 60, lambda: None)
        assert len(list_tasks()) == 1
        assert scheduler.tasks["duplicate"]["interval"] == 60

    def test_unregister_task(self):
        register_task("test_task", 30, lambda: None)
        unregister_task("test_task")
        assert "test_task" not in list_tasks()

    def test_unregister_nonexistent_task(self):
        unregister_task("nonexistent")  # Should not raise


class TestSchedulerTiming:
    """Test task due-time logic."""

    def test_should_run_first_time(self):
        task_info = {"last_run": None, "interval": 30}
        assert should_run_task("test", task_info)

    def test_should_run_when_due(self):
        task_info = {"last_run": time.monotonic() - 35, "interval": 30}
        assert should_run_task("test", task_info)

    def test_should_not_run_too_soon(self):
        task_info = {"last_run": time.monotonic() - 10, "interval": 30}
        assert not should_run_task("test", task_info)

    def test_reset_task_forces_run(self):
        register_task("sweep", 3600, lambda: None)
        run_pending()
        assert not should_run_task("sweep", scheduler.tasks["sweep"])
        reset_task("sweep")
        assert should_run_task("sweep", scheduler.tasks["sweep"])


class TestSchedulerExecution:
    """Test task execution and the scheduler loop."""

    def test_run_task_success(self):
        mock_func = MagicMock()
        task_info = {"func": mock_func, "interval": 30, "last_run": None}

        run_task("test_task", task_info)

        mock_func.assert_called_once()
        assert task_info["last_run"] is not None

    def test_run_task_failure(self):
        mock_func = MagicMock(side_effect=ValueError("Task failed"))
        task_info = {"func": mock_func, "interval": 30, "last_run": None}

        with pytest.raises(RuntimeError, match="Task failed"):
            run_task("failing_task", task_info)

        # A failed run still waits out its interval
        assert task_info["last_run"] is not None

    def test_run_pending_isolates_failures(self):
        healthy = MagicMock()
        register_task("broken", 30, MagicMock(side_effect=ValueError("boom")))
        register_task("healthy", 30, healthy)

        assert run_pending() == 2
        healthy.assert_called_once()

    def test_run_pending_skips_tasks_not_due(self):
        func = MagicMock()
        register_task("sweep", 3600, func)
        run_pending()
        assert run_pending() == 0
        func.assert_called_once()

    @patch('verification.core.scheduler.is_sweeper_enabled', return_value=False)
    def test_start_disabled(self, mock_enabled, caplog):
        with caplog.at_level(logging.INFO):
            start()
        assert "Scheduler disabled" in caplog.text

    @patch('verification.core.scheduler.is_sweeper_enabled', return_value=True)
    @patch('verification.core.scheduler.validate_config', return_value=[])
    def test_start_runs_tasks_until_stopped(self, mock_validate, mock_enabled, caplog):
        calls = []

        def task():
            calls.append(1)
            stop()

        register_task("once", 30, task)
        with caplog.at_level(logging.INFO):
            start()

        assert calls == [1]
        assert not scheduler.running
        assert "Starting scheduler loop" in caplog.text

    @patch('verification.core.scheduler.is_sweeper_enabled', return_value=True)
    @patch('verification.core.scheduler.validate_config', return_value=["REQUIRED_APPROVALS cannot exceed VALIDATOR_COUNT"])
    def test_start_with_invalid_config(self, mock_validate, mock_enabled):
        with pytest.raises(ValueError, match="Configuration invalid"):
            start()

    def test_start_already_running(self):
        scheduler.running = True
        with patch('verification.core.scheduler.is_sweeper_enabled', return_value=True), \
             pytest.raises(RuntimeError, match="already running"):
            start()

    def test_stop_not_running(self, caplog):
        with caplog.at_level(logging.INFO):
            stop()
        assert "Scheduler not running" in caplog.text


class TestSchedulerStatus:
    """Test scheduler status for monitoring."""

    def test_get_status_disabled(self):
        with patch('verification.core.scheduler.is_sweeper_enabled', return_value=False):
            status = get_status()
        assert status["status"] == "disabled"
        assert "SWEEPER_ENABLED=false" in status["reason"]

    def test_get_status_stopped(self):
        with patch('verification.core.scheduler.is_sweeper_enabled', return_value=True):
            status = get_status()
        assert status["status"] == "stopped"
        assert status["tasks"] == {}

    def test_get_status_running(self):
        scheduler.running = True
        with patch('verification.core.scheduler.is_sweeper_enabled', return_value=True):
            register_task("deadline_sweep", 3600, lambda: None)
            status = get_status()
        assert status["status"] == "running"
        assert status["tasks"]["deadline_sweep"]["interval_sec"] == 3600
        assert status["tasks"]["deadline_sweep"]["next_run"] is None


class TestSweeperTask:
    """The sweep registered the way the runner script does it."""

    def test_scheduled_sweep_runs_against_database(self, panel):
        from verification.core.deadlines import DeadlineSweeper

        sweeper = DeadlineSweeper(panel.workflow)
        reports = []
        register_task("deadline_sweep", 3600,
                      lambda: reports.append(sweeper.sweep_expired(now=panel.deadline + timedelta(seconds=1))))

        run_pending()

        assert reports[0].requests_processed == 1
        assert reports[0].validators_auto_abstained == 5
