#!/usr/bin/env python3
"""
Deadline sweeper - periodically auto-abstains silent validators on verification
requests whose voting deadline has passed.
"""

import sys

from verification.core.config import get_sweep_interval, is_sweeper_enabled
from verification.core.db import init_db
from verification.core.deadlines import sweep_expired
from verification.core.scheduler import register_task, start, stop
from verification.util.logging import logger


def deadline_sweep_task():
    """Run one sweep and report what changed."""
    report = sweep_expired()

    if not report.requests_processed and not report.failed:
        logger.debug("No expired verifications")
        return

    if report.stalled:
        logger.warning(f"{len(report.stalled)} verification(s) need administrator action: {report.stalled}")
    if report.failed:
        logger.error(f"Sweep failed for {len(report.failed)} verification(s): {report.failed}")


def main():
    """Main entry point for the sweeper script."""
    try:
        if not is_sweeper_enabled():
            logger.error("Deadline sweeper requires SWEEPER_ENABLED=true")
            sys.exit(1)

        init_db()

        interval = get_sweep_interval()
        register_task("deadline_sweep", interval, deadline_sweep_task)

        # Blocks until stopped
        start()

    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
        stop()
    except Exception as e:
        logger.error(f"Critical error: {e}")
        stop()
        sys.exit(1)


if __name__ == "__main__":
    main()
