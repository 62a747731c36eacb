"""
Logging
=======
Prefect-aware logger lookup.

Inside a flow or task run the run logger is used so messages land in the
Prefect UI; outside a run (CLI, in-process scheduler, tests) the plain
Prefect logger is used instead.
"""

import logging

from prefect import get_run_logger
from prefect.exceptions import MissingContextError
from prefect.logging import get_logger as get_prefect_logger


def get_logger(name: str = "sqp_sync") -> logging.Logger | logging.LoggerAdapter:
    """Return the run logger when available, otherwise a named Prefect logger."""
    try:
        return get_run_logger()
    except MissingContextError:
        return get_prefect_logger(name)
