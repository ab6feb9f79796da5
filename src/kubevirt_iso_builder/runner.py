"""Sequential step runner with reverse-order cleanup."""

import threading
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

import structlog

from .errors import BuildCancelledError
from .models import CANCELLED, ERROR, RunResult, StateBag, StepAction

logger = structlog.get_logger()


@runtime_checkable
class Step(Protocol):
    """A unit of work with a forward action and a cleanup action."""

    name: str

    def run(self, state: StateBag) -> StepAction: ...

    def cleanup(self, state: StateBag) -> None: ...


def halt(state: StateBag, error: BaseException, message: str, **fields: object) -> StepAction:
    """Record a step failure in the state bag and return HALT."""
    state.put(ERROR, error)
    if isinstance(error, BuildCancelledError):
        state.put(CANCELLED, True)
        logger.warning(message, error=str(error), **fields)
    else:
        logger.error(message, error=str(error), **fields)
    return StepAction.HALT


class Runner:
    """Runs steps in order and unwinds executed steps in reverse.

    A step returning HALT stops forward execution; every step that
    previously returned CONTINUE is then cleaned up, last first. The
    halting step is not cleaned up by the runner. After a fully
    successful run the executed steps are unwound the same way, which
    is how temporary resources are torn down.
    """

    def __init__(self, steps: Sequence[Step], cancel: threading.Event | None = None) -> None:
        self.steps = list(steps)
        self.cancel = cancel or threading.Event()

    def run(self, state: StateBag) -> RunResult:
        executed: list[Step] = []
        failed_step: str | None = None

        for step in self.steps:
            if self.cancel.is_set():
                failed_step = step.name
                halt(state, BuildCancelledError("build cancelled"), "Build cancelled", step=step.name)
                break

            logger.info("Running step", step=step.name)
            try:
                action = step.run(state)
            except Exception as e:
                logger.exception("Step raised an exception", step=step.name)
                state.put(ERROR, e)
                action = StepAction.HALT

            if action is not StepAction.CONTINUE:
                failed_step = step.name
                break
            executed.append(step)

        self._unwind(executed, state)

        error = state.get(ERROR) if failed_step else None
        result = RunResult(
            ok=failed_step is None,
            state=state,
            failed_step=failed_step,
            error=error,
            executed=[s.name for s in executed],
        )
        if result.ok:
            logger.info("Build steps completed", steps=len(executed))
        else:
            logger.error("Build halted", step=failed_step, error=str(error) if error else None)
        return result

    def _unwind(self, executed: list[Step], state: StateBag) -> None:
        for step in reversed(executed):
            try:
                step.cleanup(state)
            except Exception as e:
                logger.warning("Cleanup failed", step=step.name, error=str(e))
