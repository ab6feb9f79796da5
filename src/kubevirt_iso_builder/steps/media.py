"""Stage install-time files in a ConfigMap attached to the VM."""

import base64
import threading
from pathlib import Path

import structlog

from .. import resources
from ..config import Settings
from ..errors import BuildError, ResourceNotFoundError
from ..kubevirt_client import KubeVirtClient
from ..models import StateBag, StepAction
from ..runner import halt

logger = structlog.get_logger()


def collect_media(files: list[str], content: dict[str, str]) -> tuple[dict[str, str], dict[str, str]]:
    """Build ConfigMap data and binaryData from files and inline content.

    Files are keyed by basename. Files that are not valid UTF-8 go to
    binaryData, base64 encoded. Inline content wins over a file with the
    same name. Raises OSError if a file cannot be read.
    """
    data: dict[str, str] = {}
    binary_data: dict[str, str] = {}

    for path in files:
        raw = Path(path).read_bytes()
        filename = Path(path).name
        try:
            data[filename] = raw.decode("utf-8")
        except UnicodeDecodeError:
            binary_data[filename] = base64.b64encode(raw).decode("ascii")

    for filename, text in content.items():
        data[filename] = text
        binary_data.pop(filename, None)

    return data, binary_data


class StepCopyMediaFiles:
    name = "copy-media-files"

    def __init__(self, settings: Settings, client: KubeVirtClient, cancel: threading.Event) -> None:
        self.settings = settings
        self.client = client
        self.cancel = cancel

    def run(self, state: StateBag) -> StepAction:
        namespace = self.settings.namespace
        name = self.settings.vm_name
        media = self.settings.media

        try:
            data, binary_data = collect_media(media.files, media.content)
        except OSError as e:
            return halt(state, e, "Failed to read media file")

        logger.info(
            "Creating ConfigMap for media files",
            namespace=namespace,
            name=name,
            files=sorted([*data, *binary_data]),
        )
        try:
            self.client.create_config_map(namespace, resources.config_map(name, data, binary_data))
        except BuildError as e:
            return halt(state, e, "Failed to create media ConfigMap", namespace=namespace, name=name)

        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        namespace = self.settings.namespace
        name = self.settings.vm_name

        if self.settings.media.keep:
            logger.info("Keeping ConfigMap", namespace=namespace, name=name, reason="media.keep = true")
            state.add_retained(f"ConfigMap {namespace}/{name}")
            return

        logger.info("Deleting ConfigMap", namespace=namespace, name=name)
        try:
            self.client.delete_config_map(namespace, name)
        except ResourceNotFoundError:
            logger.debug("ConfigMap already gone", namespace=namespace, name=name)
