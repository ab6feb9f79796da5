"""Discover the guest's IP address and wait for it to settle.

Guests can report a transient address early in boot, so an address is
only trusted once it has been observed unchanged for longer than the
settle window. Any change restarts the window.
"""

import threading
import time
from typing import cast

import structlog

from .. import waiting
from ..config import Settings
from ..errors import BuildCancelledError, RemoteCallError, WaitTimeoutError
from ..kubevirt_client import KubeVirtClient
from ..models import IP, StateBag, StepAction
from ..runner import halt
from ..waiting import BackgroundResult, Clock, WaitOutcome

logger = structlog.get_logger()


def bracket(address: str) -> str:
    """Enclose an IPv6 literal in brackets so it can be joined with a port."""
    if ":" in address and not address.startswith("["):
        return f"[{address}]"
    return address


class AddressWatcher:
    """Polls a VMI's first interface address until it is stable."""

    def __init__(
        self,
        client: KubeVirtClient,
        namespace: str,
        name: str,
        settle: float,
        poll_interval: float | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.client = client
        self.namespace = namespace
        self.name = name
        self.settle = settle
        self.interval = poll_interval if poll_interval is not None else waiting.interval_for(settle)
        self.clock = clock
        self.previous = ""
        self.stable_since: float | None = None
        self.last_seen = ""
        self._stop = threading.Event()

    def stop(self) -> None:
        self._stop.set()

    def observe(self) -> str:
        vmi = self.client.get_virtual_machine_instance(self.namespace, self.name)
        interfaces = vmi.get("status", {}).get("interfaces")
        if interfaces is None:
            raise RemoteCallError(
                f"VirtualMachineInstance {self.namespace}/{self.name} unexpectedly has no interface status"
            )
        if not interfaces:
            return ""
        return interfaces[0].get("ipAddress") or ""

    def check(self, address: str, now: float) -> str | None:
        """Record one observation. Returns the address once it is accepted."""
        if address:
            self.last_seen = address

        if not self.previous and not address:
            logger.debug("IP not yet acquired")
            return None

        if address != self.previous:
            if not self.previous:
                logger.info("VM IP acquired", ip=address)
                if self.settle == 0:
                    logger.info("ip_settle_timeout is 0, using the first IP seen", ip=address)
                    return address
            else:
                logger.info("VM IP changed", previous=self.previous, ip=address)
            self.previous = address
            self.stable_since = now
            return None

        if now - cast(float, self.stable_since) > self.settle:
            logger.info("VM IP seems stable enough", ip=address)
            return address
        logger.debug("VM IP is still the same", ip=address)
        return None

    def wait(self) -> str:
        """Poll until an address is accepted or stop() is called."""
        while True:
            accepted = self.check(self.observe(), self.clock())
            if accepted:
                return bracket(accepted)
            if self._stop.wait(self.interval):
                raise BuildCancelledError("cancelled waiting for IP address")


class StepWaitForIp:
    """Run an AddressWatcher in the background, bounded by ip_wait_timeout.

    On timeout the last address ever seen is used, if there was one.
    """

    name = "wait-for-ip"

    def __init__(
        self,
        settings: Settings,
        client: KubeVirtClient,
        cancel: threading.Event,
        poll_interval: float | None = None,
        tick: float = 1.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self.settings = settings
        self.client = client
        self.cancel = cancel
        self.poll_interval = poll_interval
        self.tick = tick
        self.clock = clock

    def run(self, state: StateBag) -> StepAction:
        timeout = self.settings.ip_wait_timeout.total_seconds()
        if timeout <= 0:
            logger.info("ip_wait_timeout is 0, skipping wait for IP")
            return StepAction.CONTINUE

        settle = self.settings.ip_settle_timeout.total_seconds()
        watcher = AddressWatcher(
            self.client,
            self.settings.namespace,
            self.settings.vm_name,
            settle,
            poll_interval=self.poll_interval,
            clock=self.clock,
        )
        logger.info("Waiting for IP", timeout=timeout, settle=settle)

        slot = waiting.run_in_background(watcher.wait, name="wait-for-ip")
        outcome, result = waiting.wait_any(slot, self.cancel, timeout, tick=self.tick)
        watcher.stop()

        if outcome is WaitOutcome.CANCELLED:
            return halt(state, BuildCancelledError("cancelled waiting for IP address"), "Waiting for IP cancelled")

        if outcome is WaitOutcome.TIMEOUT:
            if watcher.last_seen:
                ip = bracket(watcher.last_seen)
                logger.warning("Timed out waiting for IP to settle, using last IP seen", ip=ip)
                state.put(IP, ip)
                return StepAction.CONTINUE
            error = WaitTimeoutError(f"timed out after {timeout:g}s waiting for IP address")
            return halt(state, error, "Waiting for IP timed out")

        result = cast(BackgroundResult, result)
        if result.error is not None:
            return halt(state, result.error, "Failed to get VM IP address")

        state.put(IP, result.value)
        logger.info("VM IP found", ip=result.value)
        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass
