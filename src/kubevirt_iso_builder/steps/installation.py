"""Give an unattended installer time to finish."""

import threading
import time

import structlog

from ..config import Settings
from ..errors import BuildCancelledError
from ..kubevirt_client import KubeVirtClient
from ..models import StateBag, StepAction
from ..runner import halt
from ..waiting import Clock

logger = structlog.get_logger()


class StepWaitForInstallation:
    name = "wait-for-installation"

    def __init__(
        self,
        settings: Settings,
        client: KubeVirtClient,
        cancel: threading.Event,
        log_interval: float = 60.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self.settings = settings
        self.client = client
        self.cancel = cancel
        self.log_interval = log_interval
        self.clock = clock

    def run(self, state: StateBag) -> StepAction:
        timeout = self.settings.installation_wait_timeout.total_seconds()
        if timeout <= 0:
            return StepAction.CONTINUE

        logger.info("Waiting for installation to complete", timeout=timeout)
        deadline = self.clock() + timeout
        while (remaining := deadline - self.clock()) > 0:
            if self.cancel.wait(min(self.log_interval, remaining)):
                return halt(
                    state, BuildCancelledError("cancelled waiting for installation"), "Installation wait cancelled"
                )
            if deadline - self.clock() > 0:
                logger.info("Still waiting for installation", remaining=round(deadline - self.clock()))

        logger.info("Installation wait finished")
        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass
