"""Cancellable waits and polling loops used by the build steps."""

import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from .errors import BuildCancelledError, WaitTimeoutError

logger = structlog.get_logger()

Clock = Callable[[], float]


class WaitOutcome(Enum):
    """Which of the raced events ended a wait."""

    DONE = "done"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass
class BackgroundResult:
    """Value or exception produced by a background task."""

    value: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_in_background(target: Callable[..., Any], *args: Any, name: str = "") -> "queue.Queue[BackgroundResult]":
    """Run target on a daemon thread and deliver its outcome on a single-slot queue."""
    slot: queue.Queue[BackgroundResult] = queue.Queue(maxsize=1)

    def _worker() -> None:
        try:
            slot.put(BackgroundResult(value=target(*args)))
        except Exception as e:
            slot.put(BackgroundResult(error=e))

    thread = threading.Thread(target=_worker, name=name or getattr(target, "__name__", "worker"), daemon=True)
    thread.start()
    return slot


def wait_any(
    slot: "queue.Queue[BackgroundResult]",
    cancel: threading.Event,
    timeout: float | None,
    tick: float = 1.0,
    clock: Clock = time.monotonic,
) -> tuple[WaitOutcome, BackgroundResult | None]:
    """Wait for the first of: a result on slot, the timeout, or cancellation.

    Cancellation and the deadline are checked at least once per tick.
    """
    deadline = None if timeout is None else clock() + timeout
    while True:
        if cancel.is_set():
            return WaitOutcome.CANCELLED, None

        wait_for = tick
        if deadline is not None:
            remaining = deadline - clock()
            if remaining <= 0:
                return WaitOutcome.TIMEOUT, None
            wait_for = min(tick, remaining)

        try:
            return WaitOutcome.DONE, slot.get(timeout=wait_for)
        except queue.Empty:
            logger.debug("Still waiting")


def sleep(seconds: float, cancel: threading.Event, description: str = "wait") -> None:
    """Sleep for seconds unless cancelled first."""
    if seconds <= 0:
        return
    if cancel.wait(seconds):
        raise BuildCancelledError(f"{description} cancelled")


def poll_until(
    condition: Callable[[], bool],
    *,
    interval: float,
    timeout: float,
    cancel: threading.Event,
    description: str,
    clock: Clock = time.monotonic,
) -> None:
    """Call condition every interval until it returns True.

    Raises WaitTimeoutError when the timeout elapses and
    BuildCancelledError when cancel is set; exceptions raised by
    condition propagate unchanged.
    """
    deadline = clock() + timeout
    while True:
        if cancel.is_set():
            raise BuildCancelledError(f"cancelled waiting for {description}")
        if condition():
            return
        remaining = deadline - clock()
        if remaining <= 0:
            raise WaitTimeoutError(f"timed out after {timeout:g}s waiting for {description}")
        if cancel.wait(min(interval, remaining)):
            raise BuildCancelledError(f"cancelled waiting for {description}")


def interval_for(timeout: float) -> float:
    """Poll interval scaled to a timeout, to bound API call volume."""
    if timeout >= 120:
        return 30.0
    if timeout >= 60:
        return 15.0
    if timeout >= 10:
        return 5.0
    return 1.0
