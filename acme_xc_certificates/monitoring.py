"""
Simple monitoring utilities.
"""

import logging
import time
from contextlib import contextmanager

logger = logging.getLogger(__name__)


@contextmanager
def timer(operation_name: str):
    """
    Log how long a block took, including when it raises.

    Usage:
        with timer("Certificate ns/lb"):
            # issue and deliver
    """
    start = time.monotonic()
    logger.debug(f"Starting: {operation_name}")
    outcome = "failed"

    try:
        yield
        outcome = "completed"
    finally:
        elapsed = time.monotonic() - start
        logger.info(f"{operation_name} {outcome} in {elapsed:.2f}s")
