"""
Cancellation and deadline handling for kubestig.

A ScanContext is passed through every blocking operation (rule runs,
pod waits, command streams). It carries an optional deadline and a
cancellation event shared with every context derived from it.
"""

from __future__ import annotations

import threading
import time


class ContextError(Exception):
    """Base exception for context termination."""


class ContextCancelledError(ContextError):
    """Raised when the scan was cancelled."""

    def __init__(self, message: str = "context canceled"):
        super().__init__(message)


class DeadlineExceededError(ContextError):
    """Raised when a context deadline elapsed."""

    def __init__(self, message: str = "context deadline exceeded"):
        super().__init__(message)


class ScanContext:
    """
    Cancellation token with an optional deadline.

    Deadlines are expressed on the monotonic clock. Contexts derived with
    with_timeout() share the cancellation event of their parent, so
    cancelling any of them cancels the whole scan.

    Example:
        >>> ctx = ScanContext.background()
        >>> child = ctx.with_timeout(15)
        >>> child.remaining() <= 15
        True
    """

    def __init__(
        self,
        deadline: float | None = None,
        cancel_event: threading.Event | None = None,
    ):
        """
        Initialize a context.

        Args:
            deadline: Absolute deadline (time.monotonic() based), None for no deadline
            cancel_event: Event shared with the parent context
        """
        self._deadline = deadline
        self._cancel_event = cancel_event or threading.Event()

    @classmethod
    def background(cls) -> ScanContext:
        """Create a context without deadline."""
        return cls()

    @property
    def deadline(self) -> float | None:
        """Get the absolute deadline."""
        return self._deadline

    @property
    def cancelled(self) -> bool:
        """Check if the context was cancelled."""
        return self._cancel_event.is_set()

    @property
    def expired(self) -> bool:
        """Check if the deadline elapsed."""
        return self._deadline is not None and time.monotonic() >= self._deadline

    def with_timeout(self, timeout: float) -> ScanContext:
        """
        Derive a context that expires after timeout seconds.

        The child never outlives its parent deadline.

        Args:
            timeout: Seconds until the derived context expires

        Returns:
            New ScanContext sharing this context's cancellation
        """
        deadline = time.monotonic() + timeout
        if self._deadline is not None:
            deadline = min(deadline, self._deadline)
        return ScanContext(deadline=deadline, cancel_event=self._cancel_event)

    def cancel(self) -> None:
        """Cancel this context and every context sharing its event."""
        self._cancel_event.set()

    def remaining(self) -> float | None:
        """Get seconds until the deadline, None if there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def check(self) -> None:
        """
        Raise if the context is done.

        Raises:
            ContextCancelledError: If the context was cancelled
            DeadlineExceededError: If the deadline elapsed
        """
        if self.cancelled:
            raise ContextCancelledError()
        if self.expired:
            raise DeadlineExceededError()

    def wait(self, seconds: float) -> bool:
        """
        Park the caller for up to seconds, never past the deadline.

        Args:
            seconds: Maximum time to wait

        Returns:
            True if the context was cancelled while waiting
        """
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        if seconds <= 0:
            return self.cancelled
        return self._cancel_event.wait(timeout=seconds)
