"""
Reconnect Backoff - Bounded retry scheduling for the chat socket.

Decides whether a closed socket should be reopened, how long to wait, and
when to give up until the user does something explicit.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from agriassist.models import TERMINAL_CLOSE_CODES

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
BASE_DELAY = 2.0


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Runs ``callback`` once after ``delay`` seconds."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioScheduler:
    """Scheduler backed by the running event loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


@dataclass
class BackoffStrategy:
    """Linear backoff: attempt N waits ``N * base_delay`` seconds."""

    base_delay: float = BASE_DELAY  # Delay unit in seconds
    max_attempts: int = MAX_ATTEMPTS  # Automatic attempts before giving up
    max_delay: float | None = None  # Optional cap

    def compute_delay(self, attempt: int) -> float:
        """Compute delay for a given attempt number (1-indexed).

        Args:
            attempt: The attempt number (1 = first reconnect)

        Returns:
            Delay in seconds before the reconnect
        """
        delay = self.base_delay * max(attempt, 0)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


def should_retry(code: int) -> bool:
    """Return True if a closure with ``code`` is abnormal and worth retrying."""
    return code not in TERMINAL_CLOSE_CODES


@dataclass
class ReconnectState:
    """State tracking for reconnect attempts."""

    attempt_count: int = 0
    exhausted: bool = False
    last_code: int | None = None
    last_delay: float | None = None

    def reset(self) -> None:
        self.attempt_count = 0
        self.exhausted = False
        self.last_delay = None


class ReconnectController:
    """Drives reconnects from socket close events.

    Usage:
        controller = ReconnectController()
        delay = controller.on_close(code, reopen)  # None = not scheduled
        controller.on_open()  # after a successful handshake
        controller.reset()  # explicit user action
    """

    def __init__(
        self,
        strategy: BackoffStrategy | None = None,
        *,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.strategy = strategy or BackoffStrategy()
        self.state = ReconnectState()
        self._scheduler = scheduler or AsyncioScheduler()
        self._timer: TimerHandle | None = None

    @property
    def attempt_count(self) -> int:
        return self.state.attempt_count

    @property
    def exhausted(self) -> bool:
        return self.state.exhausted

    @property
    def pending(self) -> bool:
        """True while a reconnect timer is armed."""
        return self._timer is not None

    def on_close(self, code: int, callback: Callable[[], None]) -> float | None:
        """Handle a close event; schedule ``callback`` if a retry is due.

        Returns:
            The scheduled delay in seconds, or None if nothing was scheduled
            (terminal close code or attempts exhausted).
        """
        self.state.last_code = code
        if not should_retry(code):
            logger.info(f"Socket closed with code {code}; not reconnecting")
            return None

        if self.state.attempt_count >= self.strategy.max_attempts:
            self.state.exhausted = True
            logger.warning(
                "Giving up after %d reconnect attempts (last code %s)",
                self.state.attempt_count,
                code,
            )
            return None

        self.state.attempt_count += 1
        delay = self.strategy.compute_delay(self.state.attempt_count)
        self.state.last_delay = delay
        self.cancel()
        self._timer = self._scheduler.call_later(delay, lambda: self._fire(callback))
        logger.info(
            f"Reconnect {self.state.attempt_count}/{self.strategy.max_attempts} "
            f"in {delay:.1f}s (code {code})"
        )
        return delay

    def _fire(self, callback: Callable[[], None]) -> None:
        self._timer = None
        callback()

    def on_open(self) -> None:
        """A handshake succeeded; start counting from zero again."""
        self.state.reset()

    def reset(self) -> None:
        """Deliberate reset: cancel any armed timer and clear the counter."""
        self.cancel()
        self.state.reset()

    def cancel(self) -> None:
        """Disarm the pending timer, if any."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
