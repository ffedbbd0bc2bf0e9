"""
Daemon Loop Utilities
=====================

The recompute daemon polls for pending work on an interval and keeps
running until SIGINT / Ctrl-C. This module holds that loop so the entrypoint
stays thin and easy to read:

- Poll on an interval by calling ``run_once``.
- Errors raised by one run are logged and do not stop the daemon.
- Ctrl-C exits cleanly.
"""

from __future__ import annotations

import time
from typing import Callable

import structlog

log = structlog.get_logger(__name__)


def run_polling_loop(
    *,
    daemon_name: str,
    run_once: Callable[[], bool],
    poll_interval_seconds: int,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """
    Call ``run_once`` forever, sleeping ``poll_interval_seconds`` in between.

    Args:
        daemon_name:
            Name used in log messages.
        run_once:
            Performs one unit of work. Returns True when it found work to do,
            which only affects logging. Exceptions are caught and logged.
        poll_interval_seconds:
            How long to sleep between iterations (at least one second).
        sleep:
            Injectable sleep function (primarily for tests).
    """
    poll_interval_seconds = max(1, int(poll_interval_seconds))

    was_idle = False
    while True:
        try:
            did_work = run_once()
            if not did_work:
                if not was_idle:
                    log.info("No work found; waiting", daemon=daemon_name)
                was_idle = True
            else:
                was_idle = False
            sleep(poll_interval_seconds)
        except KeyboardInterrupt:
            log.info("Ctrl-C received; exiting", daemon=daemon_name)
            break
        except Exception:
            log.exception(
                "Unexpected error in daemon loop; sleeping",
                daemon=daemon_name,
                poll_interval_seconds=poll_interval_seconds,
            )
            try:
                sleep(poll_interval_seconds)
            except KeyboardInterrupt:
                log.info("Ctrl-C received; exiting", daemon=daemon_name)
                break
