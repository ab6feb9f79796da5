"""Connect the communicator to the guest."""

import threading
from typing import Any

import paramiko
import structlog

from .. import waiting
from ..communicator import Communicator, Connector, resolve_target
from ..config import Settings
from ..errors import BuildError
from ..kubevirt_client import KubeVirtClient
from ..models import COMMUNICATOR, StateBag, StepAction
from ..runner import halt

logger = structlog.get_logger()

# Errors that mean "guest not reachable yet"
RETRYABLE_ERRORS = (OSError, EOFError, paramiko.SSHException)


class StepConnect:
    """Retry the connector until it succeeds or communicator.timeout elapses."""

    name = "connect"

    def __init__(
        self,
        settings: Settings,
        client: KubeVirtClient,
        cancel: threading.Event,
        connector: Connector,
        retry_interval: float = 5.0,
    ) -> None:
        self.settings = settings
        self.client = client
        self.cancel = cancel
        self.connector = connector
        self.retry_interval = retry_interval

    def run(self, state: StateBag) -> StepAction:
        comm_type = self.settings.communicator.type
        try:
            target = resolve_target(state, self.settings)
        except BuildError as e:
            return halt(state, e, "No target to connect to", communicator=comm_type)

        logger.info("Connecting to guest", communicator=comm_type, target=str(target))
        session: list[Any] = []

        def attempt() -> bool:
            try:
                session.append(self.connector(target, self.settings))
            except RETRYABLE_ERRORS as e:
                logger.debug("Connection attempt failed", target=str(target), error=str(e))
                return False
            return True

        try:
            waiting.poll_until(
                attempt,
                interval=self.retry_interval,
                timeout=self.settings.communicator.timeout.total_seconds(),
                cancel=self.cancel,
                description=f"{comm_type} connection to {target}",
            )
        except BuildError as e:
            return halt(state, e, "Failed to connect to guest", communicator=comm_type, target=str(target))

        state.put(COMMUNICATOR, session[0])
        logger.info("Connected to guest", communicator=comm_type, target=str(target))
        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        communicator: Communicator | None = state.get(COMMUNICATOR)
        if communicator is not None:
            logger.info("Closing guest connection")
            communicator.close()
