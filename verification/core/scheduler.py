"""
Interval task scheduler - runs the deadline sweep (and any other registered
job) on a fixed cadence.
"""

import threading
import time
from typing import Callable, Dict

from .config import is_sweeper_enabled, validate_config
from ..util.logging import logger


tasks: Dict[str, Dict] = {}  # task_name -> {func, interval, last_run}
running = False
shutdown_event = None

# Poll granularity of the loop
TICK_SEC = 0.5


def register_task(name: str, interval_sec: int, func: Callable):
    """
    Register a task to be executed periodically.

    Args:
        name: Unique task identifier
        interval_sec: How often to run this task in seconds
        func: Function to call
    """
    if not callable(func):
        raise ValueError(f"Task function must be callable: {func}")

    if interval_sec < 1:
        raise ValueError(f"Interval must be >= 1 second: {interval_sec}")

    tasks[name] = {
        "func": func,
        "interval": interval_sec,
        "last_run": None
    }

    logger.info(f"Registered scheduled task '{name}' (every {interval_sec}s)")


def unregister_task(name: str):
    """Remove a task from the registry."""
    if name in tasks:
        del tasks[name]
        logger.info(f"Unregistered scheduled task '{name}'")


def list_tasks():
    """Return list of registered task names."""
    return list(tasks.keys())


def should_run_task(name: str, task_info: Dict) -> bool:
    """Check if a task should run this cycle."""
    if task_info["last_run"] is None:
        return True  # Run immediately if never run

    elapsed = time.monotonic() - task_info["last_run"]
    return elapsed >= task_info["interval"]


def run_task(name: str, task_info: Dict):
    """Execute a task and record timing."""
    start_time = time.monotonic()

    try:
        task_info["func"]()
    except Exception as e:
        end_time = time.monotonic()
        # A failed run still counts, so a broken task waits a full interval
        task_info["last_run"] = end_time
        logger.log_scheduler_task(name, start_time, end_time, "failed", {"error": str(e)[:100]})
        raise RuntimeError(f"Task '{name}' failed after {end_time - start_time:.2f}s: {e}") from e

    end_time = time.monotonic()
    task_info["last_run"] = end_time
    logger.log_scheduler_task(name, start_time, end_time)


def run_pending() -> int:
    """Run every due task once; returns how many ran."""
    ran = 0
    for name, task_info in list(tasks.items()):
        if should_run_task(name, task_info):
            ran += 1
            try:
                run_task(name, task_info)
            except RuntimeError as e:
                # Error isolation - log error but keep the loop alive
                logger.error(str(e))
    return ran


def start():
    """
    Start the scheduler loop (blocking).

    Runs until ``stop()`` is called or the process is interrupted.
    """
    global running, shutdown_event

    if not is_sweeper_enabled():
        logger.info("Scheduler disabled (SWEEPER_ENABLED=false). Skipping start.")
        return

    if running:
        raise RuntimeError("Scheduler already running")

    issues = validate_config()
    if issues:
        raise ValueError(f"Configuration invalid: {issues}")

    running = True
    shutdown_event = threading.Event()

    logger.info(f"Starting scheduler loop with tasks: {list(tasks.keys())}")

    try:
        while running and not shutdown_event.is_set():
            run_pending()
            shutdown_event.wait(TICK_SEC)
    except KeyboardInterrupt:
        logger.info("Scheduler interrupted by user")
    finally:
        running = False
        logger.info("Scheduler loop stopped")


def stop():
    """Stop the scheduler loop gracefully."""
    global running

    if not running:
        logger.info("Scheduler not running")
        return

    running = False

    if shutdown_event:
        shutdown_event.set()


def reset_task(name: str):
    """Reset a task's last_run time to force immediate execution."""
    if name in tasks:
        tasks[name]["last_run"] = None


def get_status():
    """Return current scheduler status for monitoring."""
    if not is_sweeper_enabled():
        return {"status": "disabled", "reason": "SWEEPER_ENABLED=false"}

    return {
        "status": "running" if running else "stopped",
        "tasks": {
            name: {
                "interval_sec": info["interval"],
                "last_run": info["last_run"],
                "next_run": info["last_run"] + info["interval"] if info["last_run"] else None
            }
            for name, info in tasks.items()
        }
    }
