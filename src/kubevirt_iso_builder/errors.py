"""Exception hierarchy for KubeVirt ISO builds."""


class BuildError(Exception):
    """Base exception for build errors."""

    pass


class ConfigurationError(BuildError):
    """Raised when build options are invalid, before any remote call."""

    def __init__(self, problems: list[str] | str) -> None:
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class RemoteCallError(BuildError):
    """Raised when a control-plane call fails."""

    def __init__(self, message: str, status: int | None = None, reason: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.reason = reason


class ResourceNotFoundError(RemoteCallError):
    """Raised when a control-plane resource does not exist."""

    pass


class DataVolumeFailedError(RemoteCallError):
    """Raised when a DataVolume reaches the Failed phase."""

    pass


class WaitTimeoutError(BuildError):
    """Raised when a bounded wait elapses before its condition is met."""

    pass


class BuildCancelledError(BuildError):
    """Raised when the build is cancelled from outside."""

    pass


class EmptyRootVolumeError(BuildError):
    """Raised when finalize has no root volume name to clone from."""

    pass


class NoTargetError(BuildError):
    """Raised when no forwarding host, configured host or guest IP is known."""

    pass


class ProvisionError(BuildError):
    """Raised when a provisioning command fails inside the guest."""

    pass


class BuildFailedError(BuildError):
    """Terminal build failure, naming the step that halted."""

    def __init__(
        self,
        step: str | None,
        cause: BaseException | None,
        retained_resources: list[str] | None = None,
    ) -> None:
        self.step = step
        self.cause = cause
        self.retained_resources = list(retained_resources or [])
        where = f"step {step}" if step else "build"
        why = str(cause) if cause is not None else "halted without a diagnostic"
        super().__init__(f"{where} failed: {why}")
