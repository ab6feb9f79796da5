"""Data models shared by the build steps."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

# Well-known StateBag keys
IP = "ip"
FORWARDING_HOST = "forwarding_host"
FORWARDING_PORT = "forwarding_port"
PORT_FORWARDER = "port_forwarder"
ROOT_VOLUME_NAME = "root_volume_name"
BOOTABLE_VOLUME_NAME = "bootable_volume_name"
COMMUNICATOR = "communicator"
GUEST_AGENT = "guest_agent"
ERROR = "error"
CANCELLED = "cancelled"
RETAINED_RESOURCES = "retained_resources"


class StepAction(Enum):
    """Outcome of a step's forward action."""

    CONTINUE = "continue"
    HALT = "halt"


class StateBag:
    """Key/value store shared by the steps of a single build.

    Keys are never removed during a build; absence of a key is a valid
    condition that readers must check for.
    """

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    def put(self, key: str, value: Any) -> None:
        self._data[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def get_ok(self, key: str) -> tuple[Any, bool]:
        if key in self._data:
            return self._data[key], True
        return None, False

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def add_retained(self, coordinates: str) -> None:
        """Record a resource that was intentionally left in the cluster."""
        retained = self._data.setdefault(RETAINED_RESOURCES, [])
        retained.append(coordinates)


@dataclass
class Artifact:
    """The reusable image produced by a successful build."""

    name: str
    namespace: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def id(self) -> str:
        return f"{self.namespace}/{self.name}"

    def __str__(self) -> str:
        return f"DataSource {self.namespace}/{self.name}"


@dataclass
class RunResult:
    """Result of running a step sequence."""

    ok: bool
    state: StateBag
    failed_step: str | None = None
    error: BaseException | None = None
    executed: list[str] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return bool(self.state.get(CANCELLED, False))
