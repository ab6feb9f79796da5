"""Check that the installation ISO volume exists and has been imported."""

import threading

import structlog

from .. import waiting
from ..config import Settings
from ..errors import BuildError, DataVolumeFailedError
from ..kubevirt_client import KubeVirtClient
from ..models import StateBag, StepAction
from ..runner import halt

logger = structlog.get_logger()

PHASE_SUCCEEDED = "Succeeded"
PHASE_FAILED = "Failed"


def data_volume_phase(data_volume: dict) -> str:
    return str(data_volume.get("status", {}).get("phase", ""))


def volume_succeeded(client: KubeVirtClient, namespace: str, name: str) -> bool:
    """True once the DataVolume reports Succeeded; raises if it Failed."""
    phase = data_volume_phase(client.get_data_volume(namespace, name))
    if phase == PHASE_FAILED:
        raise DataVolumeFailedError(f"DataVolume {namespace}/{name} is in phase {PHASE_FAILED}")
    logger.debug("DataVolume phase", namespace=namespace, name=name, phase=phase or "Unknown")
    return phase == PHASE_SUCCEEDED


class StepValidateSourceVolume:
    """Wait for the ISO DataVolume to finish importing before anything is created."""

    name = "validate-source-volume"

    def __init__(
        self,
        settings: Settings,
        client: KubeVirtClient,
        cancel: threading.Event,
        poll_interval: float = 5.0,
    ) -> None:
        self.settings = settings
        self.client = client
        self.cancel = cancel
        self.poll_interval = poll_interval

    def run(self, state: StateBag) -> StepAction:
        namespace = self.settings.namespace
        volume = self.settings.iso_volume_name
        logger.info("Validating source volume", namespace=namespace, name=volume)

        try:
            waiting.poll_until(
                lambda: volume_succeeded(self.client, namespace, volume),
                interval=self.poll_interval,
                timeout=self.settings.volume_ready_timeout.total_seconds(),
                cancel=self.cancel,
                description=f"source volume {namespace}/{volume}",
            )
        except BuildError as e:
            return halt(state, e, "Source volume is not usable", namespace=namespace, name=volume)

        logger.info("Source volume is ready", namespace=namespace, name=volume)
        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass
