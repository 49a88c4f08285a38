"""Time budget and cancellation primitives.

The overall timeout is turned into one Deadline when a run starts. Both
polling phases check that same value, so the detection and rollout phases
share a single budget.
"""

import signal
import threading
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Any

Clock = Callable[[], float]

# Sleeps for the given number of seconds; returns True if the run was cancelled
Sleeper = Callable[[float], bool]


class Deadline:
    """A fixed point in time computed once from a timeout.

    Attributes:
        timeout: The budget in seconds.
        started_at: Clock reading when the deadline was created.
        expires_at: Clock reading at which the budget is exhausted.

    """

    def __init__(self, timeout: float, *, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self.timeout: float = timeout
        self.started_at: float = clock()
        self.expires_at: float = self.started_at + timeout

    def elapsed(self) -> float:
        """Seconds since the deadline was created."""
        return self._clock() - self.started_at

    def remaining(self) -> float:
        """Seconds left before expiry, never negative."""
        return max(0.0, self.expires_at - self._clock())

    def expired(self) -> bool:
        """Whether the budget is exhausted."""
        return self._clock() >= self.expires_at

    def after(self, seconds: float) -> bool:
        """Whether at least ``seconds`` have passed since the deadline was created."""
        return self.elapsed() >= seconds

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"Deadline(timeout={self.timeout!r}, remaining={self.remaining():.1f})"


class Cancellation:
    """Cancellable sleeping shared by every polling loop of a run.

    ``sleep`` is used as the Sleeper of the detector and tracker. Calling
    ``cancel`` (e.g. from a signal handler) wakes every sleeping loop
    immediately.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def sleep(self, seconds: float) -> bool:
        """Sleep for ``seconds`` or until cancelled.

        Returns:
            True if the run was cancelled.

        """
        return self._event.wait(max(0.0, seconds))


@contextmanager
def cancel_on_signals(
    cancellation: Cancellation,
    signals: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM),
) -> Generator[Cancellation, None, None]:
    """Cancel ``cancellation`` when one of ``signals`` is received.

    Previous handlers are restored on exit. Must be entered from the main thread.

    Args:
        cancellation: The cancellation to trigger.
        signals: Signals that cancel the run.

    Yields:
        The cancellation.

    """

    def _handler(signum: int, frame: Any) -> None:  # noqa: ARG001
        cancellation.cancel()

    previous = {signum: signal.signal(signum, _handler) for signum in signals}
    try:
        yield cancellation
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
