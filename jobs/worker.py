"""
Worker entry point.

Run with:
    dramatiq jobs.worker
"""

from levelnet.config.logging import setup_logging

setup_logging()

from jobs.broker import broker  # noqa: E402, F401
from jobs.tasks.housekeeping import run_housekeeping  # noqa: E402, F401
from jobs.tasks.network_events import process_network_event  # noqa: E402, F401
