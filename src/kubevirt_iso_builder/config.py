"""Configuration management for KubeVirt ISO builds."""

import re
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Any

import yaml
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

OS_TYPES = ("linux", "windows")
ACCESS_MODES = ("ReadWriteOnce", "ReadWriteMany")
VOLUME_MODES = ("Filesystem", "Block")
COMMUNICATOR_TYPES = ("ssh", "winrm", "none")

DEFAULT_INSTANCE_TYPE_KIND = "virtualmachineclusterinstancetype"
DEFAULT_PREFERENCE_KIND = "virtualmachineclusterpreference"
DEFAULT_COMMUNICATOR_PORTS = {"ssh": 22, "winrm": 5985}

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Any) -> Any:
    """Accept Go-style duration strings ("30m", "1h30m", "500ms").

    Anything else is handed to pydantic's own timedelta parsing
    (seconds as a number, ISO-8601 strings).
    """
    if not isinstance(value, str):
        return value
    text = value.strip()
    if re.fullmatch(r"\d+(\.\d+)?", text):
        return timedelta(seconds=float(text))
    parts = _DURATION_PART.findall(text)
    if parts and "".join(n + u for n, u in parts) == text:
        return timedelta(seconds=sum(float(n) * _DURATION_UNITS[u] for n, u in parts))
    return value


Duration = Annotated[timedelta, BeforeValidator(parse_duration)]


class StrictModel(BaseModel):
    """Nested build options; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")


class PodNetwork(StrictModel):
    """The stock pod network, attached with a masquerade interface."""

    vm_network_cidr: str | None = None
    vm_ipv6_network_cidr: str | None = None


class MultusNetwork(StrictModel):
    """A named NetworkAttachmentDefinition, attached with a bridge interface."""

    network_name: str
    default: bool = False


class Network(StrictModel):
    """A network attachment for the temporary VM."""

    name: str
    pod: PodNetwork | None = None
    multus: MultusNetwork | None = None


class MediaConfig(StrictModel):
    """Install-time files staged in a ConfigMap and attached to the VM."""

    label: str = Field(default="OEMDRV", description="Volume label of the media disk (ignored on Windows)")
    files: list[str] = Field(default_factory=list, description="Local files copied into the ConfigMap")
    content: dict[str, str] = Field(
        default_factory=dict, description="Inline file contents, wins over a same-named file"
    )
    keep: bool = Field(default=False, description="Leave the ConfigMap in place after the build")


class CommunicatorConfig(StrictModel):
    """How to reach the guest once it is installed."""

    type: str = Field(default="ssh", description="ssh, winrm or none")
    host: str | None = Field(default=None, description="Static host, overrides the discovered IP")
    port: int | None = Field(default=None, description="Guest port, defaults per communicator type")
    username: str | None = None
    password: str | None = None
    private_key_file: str | None = None
    timeout: Duration = Field(default=timedelta(minutes=5), description="How long to retry connecting")


class PortForwardConfig(StrictModel):
    """Control-plane port forwarding to the guest."""

    disable_forwarding: bool = False
    forwarding_port: int = Field(default=0, description="Local port, 0 allocates an ephemeral port")


class Settings(BaseSettings):
    """Build settings loaded from a build file and environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="KUBEVIRT_BUILD_",
        env_nested_delimiter="__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Cluster settings
    kube_config: str | None = Field(default=None, description="Path to a kubeconfig file")
    api_timeout_seconds: int = Field(default=30, description="Per-request API timeout")

    # Image settings
    name: str = Field(default="", description="Name of the resulting DataVolume and DataSource")
    namespace: str = Field(default="", description="Namespace for all build resources")
    vm_name: str = Field(default="", description="Temporary VM name, defaults to <name>-builder")
    iso_volume_name: str = Field(default="", description="DataVolume holding the installation ISO")
    disk_size: str = Field(default="", description="Root disk size, e.g. 10Gi")
    instance_type: str = ""
    instance_type_kind: str = DEFAULT_INSTANCE_TYPE_KIND
    preference: str = ""
    preference_kind: str = DEFAULT_PREFERENCE_KIND
    os_type: str = Field(default="linux", description="linux or windows")
    virtio_container: str = Field(
        default="quay.io/kubevirt/virtio-container-disk:v1.6.0",
        description="VirtIO drivers container disk attached to Windows VMs",
    )
    networks: list[Network] = Field(default_factory=list)
    access_mode: str = "ReadWriteOnce"
    volume_mode: str = "Filesystem"

    media: MediaConfig = Field(default_factory=MediaConfig)

    # Installation
    boot_command: list[str] = Field(default_factory=list)
    boot_wait: Duration = timedelta(0)
    boot_key_interval: Duration = timedelta(milliseconds=100)
    installation_wait_timeout: Duration = timedelta(0)

    # Wait timeouts
    vm_ready_timeout: Duration = timedelta(hours=1)
    volume_ready_timeout: Duration = timedelta(hours=1)
    stop_timeout: Duration = timedelta(minutes=10)
    ip_wait_timeout: Duration = timedelta(minutes=30)
    ip_settle_timeout: Duration = timedelta(seconds=5)
    agent_wait_timeout: Duration = timedelta(0)

    # Guest access
    communicator: CommunicatorConfig = Field(default_factory=CommunicatorConfig)
    port_forward: PortForwardConfig = Field(default_factory=PortForwardConfig)
    provision_commands: list[str] = Field(default_factory=list)

    # Deprecated options, remapped by prepare()
    ssh_remote_port: int = 0
    winrm_remote_port: int = 0
    winrm_wait_timeout: Duration = timedelta(0)

    # Retention
    keep_vm: bool = Field(default=False, description="Leave the temporary VM in place")
    keep_volumes: bool = Field(default=False, description="Orphan the VM's volumes when deleting it")

    def prepare(self) -> list[str]:
        """Validate the settings and fill derived defaults.

        Returns deprecation warnings. Raises ConfigurationError listing
        every problem found.
        """
        problems: list[str] = []

        for field in ("name", "namespace", "iso_volume_name", "disk_size", "instance_type", "preference"):
            if not getattr(self, field):
                problems.append(f"{field} is required")

        if self.os_type not in OS_TYPES:
            problems.append(f"OS type of '{self.os_type}' is not supported, set 'linux' or 'windows'")
        if self.access_mode not in ACCESS_MODES:
            problems.append(f"access_mode must be one of {', '.join(ACCESS_MODES)}")
        if self.volume_mode not in VOLUME_MODES:
            problems.append(f"volume_mode must be one of {', '.join(VOLUME_MODES)}")
        if self.communicator.type not in COMMUNICATOR_TYPES:
            problems.append(f"communicator type '{self.communicator.type}' is not supported")
        if not 0 <= self.port_forward.forwarding_port <= 65535:
            problems.append("forwarding_port must be between 0 and 65535")

        for network in self.networks:
            if network.pod is not None and network.multus is not None:
                problems.append(f'network "{network.name}": only one of pod or multus can be defined')
            elif network.pod is None and network.multus is None:
                network.pod = PodNetwork()

        if problems:
            raise ConfigurationError(problems)

        warnings = self._backwards_compat()

        if not self.vm_name:
            self.vm_name = f"{self.name}-builder"
        if self.communicator.port is None:
            self.communicator.port = DEFAULT_COMMUNICATOR_PORTS.get(self.communicator.type)

        return warnings

    def _backwards_compat(self) -> list[str]:
        messages: list[str] = []

        if self.ssh_remote_port:
            messages.append("ssh_remote_port is deprecated - use communicator.port instead")
            if self.communicator.type == "ssh":
                self.communicator.port = self.ssh_remote_port

        if self.winrm_remote_port:
            messages.append("winrm_remote_port is deprecated - use communicator.port instead")
            if self.communicator.type == "winrm":
                self.communicator.port = self.winrm_remote_port

        if self.winrm_wait_timeout:
            messages.append("winrm_wait_timeout is deprecated - use communicator.timeout instead")
            if self.communicator.type == "winrm":
                self.communicator.timeout = self.winrm_wait_timeout

        return messages


def load_settings(path: str | Path | None = None, **overrides: Any) -> Settings:
    """Load settings from an optional YAML build file plus environment."""
    data: dict[str, Any] = {}
    if path is not None:
        with open(path) as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"{path}: expected a mapping at the top level")
        data.update(loaded)
    data.update(overrides)

    # extra="ignore" stays on Settings for unrelated env and .env entries
    unknown = sorted(str(key) for key in data if key not in Settings.model_fields)
    if unknown:
        raise ConfigurationError([f"{key}: unknown option" for key in unknown])

    try:
        return Settings(**data)
    except ValidationError as e:
        raise ConfigurationError(
            [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        ) from e
