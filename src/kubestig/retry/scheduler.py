"""
Polling primitive used by every wait loop in kubestig.

A probe classifies each attempt itself:

- ok():              done, stop with success
- severe_error(err): done, stop and raise err
- minor_error(err):  not done, retry after the interval and remember err
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

from kubestig.context import ContextCancelledError, ScanContext

logger = logging.getLogger(__name__)

ProbeResult = Tuple[bool, Optional[Exception]]
Probe = Callable[[ScanContext], ProbeResult]


class RetryTimeoutError(Exception):
    """Raised when the deadline elapsed before the probe succeeded."""

    def __init__(self, last_error: Exception | None = None):
        self.last_error = last_error
        message = "retry timed out"
        if last_error is not None:
            message = f"{message}, last error: {last_error}"
        super().__init__(message)


def ok() -> ProbeResult:
    """Classify an attempt as successful."""
    return True, None


def severe_error(err: Exception) -> ProbeResult:
    """Classify an attempt as a terminal failure."""
    return True, err


def minor_error(err: Exception) -> ProbeResult:
    """Classify an attempt as a failure worth retrying."""
    return False, err


def until(ctx: ScanContext, interval: float, probe: Probe) -> None:
    """
    Invoke probe until it is done or the context deadline elapses.

    The probe runs immediately and then every interval seconds. Waiting
    parks on the context's cancellation event.

    Args:
        ctx: Context bounding the loop
        interval: Seconds between attempts
        probe: Function returning a (done, error) classification

    Raises:
        Exception: The error of a severe attempt, unchanged
        RetryTimeoutError: If the deadline elapsed, carrying the last minor error
        ContextCancelledError: If the context was cancelled
    """
    last_error: Exception | None = None

    while True:
        if ctx.cancelled:
            raise ContextCancelledError()
        if ctx.expired:
            raise RetryTimeoutError(last_error) from last_error

        done, err = probe(ctx)
        if done:
            if err is not None:
                raise err
            return

        last_error = err
        if err is not None:
            logger.debug(f"Retrying after minor error: {err}")

        if ctx.wait(interval):
            raise ContextCancelledError()
