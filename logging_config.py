"""
Centralized logging configuration.

Modules log through ``logging.getLogger(__name__)``; this only installs the
root handler and format once at start-up.
"""

import logging
import sys

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())

    # Avoid stacking handlers when the app is re-imported (uvicorn --reload, tests)
    if any(getattr(handler, "_voting_handler", False) for handler in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._voting_handler = True
    root.addHandler(handler)

    # APScheduler is chatty at INFO on every run
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
