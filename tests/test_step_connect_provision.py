"""Tests for connecting to the guest and provisioning it."""

import threading
from datetime import timedelta
from unittest.mock import MagicMock

import paramiko
import pytest

from kubevirt_iso_builder.communicator import ConnectTarget
from kubevirt_iso_builder.config import Settings
from kubevirt_iso_builder.errors import BuildCancelledError, NoTargetError, ProvisionError, WaitTimeoutError
from kubevirt_iso_builder.models import COMMUNICATOR, ERROR, IP, StateBag, StepAction
from kubevirt_iso_builder.steps.connect import StepConnect
from kubevirt_iso_builder.steps.provision import StepProvision, command_hook


class FlakyConnector:
    """Connector that fails a fixed number of times before connecting."""

    def __init__(self, failures: list[Exception]) -> None:
        self.failures = list(failures)
        self.targets: list[ConnectTarget] = []
        self.session = MagicMock()

    def __call__(self, target: ConnectTarget, settings: Settings) -> MagicMock:
        self.targets.append(target)
        if self.failures:
            raise self.failures.pop(0)
        return self.session


class TestStepConnect:
    """Tests for StepConnect class."""

    def test_retries_until_connected(
        self,
        settings: Settings,
        mock_client: MagicMock,
        state: StateBag,
        cancel: threading.Event,
    ) -> None:
        """Test transient failures are retried."""
        state.put(IP, "10.0.2.2")
        connector = FlakyConnector([ConnectionRefusedError(), paramiko.SSHException("banner"), EOFError()])

        action = StepConnect(settings, mock_client, cancel, connector, retry_interval=0.01).run(state)

        assert action is StepAction.CONTINUE
        assert state.get(COMMUNICATOR) is connector.session
        assert connector.targets == [ConnectTarget("10.0.2.2", 22)] * 4

    def test_no_target_halts(
        self,
        settings: Settings,
        mock_client: MagicMock,
        state: StateBag,
        cancel: threading.Event,
    ) -> None:
        """Test a build with no known host halts without connecting."""
        connector = FlakyConnector([])

        action = StepConnect(settings, mock_client, cancel, connector).run(state)

        assert action is StepAction.HALT
        assert isinstance(state.get(ERROR), NoTargetError)
        assert connector.targets == []

    def test_connect_timeout(
        self,
        settings: Settings,
        mock_client: MagicMock,
        state: StateBag,
        cancel: threading.Event,
    ) -> None:
        """Test the communicator timeout bounds the retries."""
        settings.communicator.timeout = timedelta(seconds=0.1)
        state.put(IP, "10.0.2.2")
        connector = FlakyConnector([ConnectionRefusedError()] * 1000)

        action = StepConnect(settings, mock_client, cancel, connector, retry_interval=0.01).run(state)

        assert action is StepAction.HALT
        assert isinstance(state.get(ERROR), WaitTimeoutError)
        assert COMMUNICATOR not in state

    def test_cleanup_closes_session(
        self,
        settings: Settings,
        mock_client: MagicMock,
        state: StateBag,
        cancel: threading.Event,
    ) -> None:
        """Test cleanup closes the communicator."""
        session = MagicMock()
        state.put(COMMUNICATOR, session)

        StepConnect(settings, mock_client, cancel, FlakyConnector([])).cleanup(state)

        session.close.assert_called_once()


class TestCommandHook:
    """Tests for command_hook."""

    def test_runs_commands_in_order(self, state: StateBag, cancel: threading.Event) -> None:
        """Test every command runs when all succeed."""
        communicator = MagicMock()
        communicator.execute.return_value = ("", "", 0)

        command_hook(["dnf -y update", "cloud-init clean"])(communicator, state, cancel)

        assert [c.args[0] for c in communicator.execute.call_args_list] == ["dnf -y update", "cloud-init clean"]

    def test_non_zero_exit_stops(self, state: StateBag, cancel: threading.Event) -> None:
        """Test the first failing command raises and later ones are skipped."""
        communicator = MagicMock()
        communicator.execute.side_effect = [("", "no such package", 1), ("", "", 0)]

        with pytest.raises(ProvisionError, match="no such package"):
            command_hook(["dnf -y install nope", "true"])(communicator, state, cancel)

        assert communicator.execute.call_count == 1

    def test_cancelled(self, state: StateBag, cancel: threading.Event) -> None:
        """Test a cancelled build runs nothing."""
        communicator = MagicMock()
        cancel.set()

        with pytest.raises(BuildCancelledError):
            command_hook(["true"])(communicator, state, cancel)

        communicator.execute.assert_not_called()


class TestStepProvision:
    """Tests for StepProvision class."""

    def test_runs_hook(
        self,
        settings: Settings,
        mock_client: MagicMock,
        state: StateBag,
        cancel: threading.Event,
    ) -> None:
        """Test the hook receives the session."""
        session = MagicMock()
        state.put(COMMUNICATOR, session)
        hook = MagicMock()

        action = StepProvision(settings, mock_client, cancel, hook=hook).run(state)

        assert action is StepAction.CONTINUE
        hook.assert_called_once_with(session, state, cancel)

    def test_configured_commands(
        self,
        settings: Settings,
        mock_client: MagicMock,
        state: StateBag,
        cancel: threading.Event,
    ) -> None:
        """Test provision_commands drive the default hook."""
        settings.provision_commands = ["false"]
        session = MagicMock()
        session.execute.return_value = ("", "", 1)
        state.put(COMMUNICATOR, session)

        action = StepProvision(settings, mock_client, cancel).run(state)

        assert action is StepAction.HALT
        assert isinstance(state.get(ERROR), ProvisionError)

    def test_no_session_halts(
        self,
        settings: Settings,
        mock_client: MagicMock,
        state: StateBag,
        cancel: threading.Event,
    ) -> None:
        """Test provisioning needs a connected communicator."""
        hook = MagicMock()

        action = StepProvision(settings, mock_client, cancel, hook=hook).run(state)

        assert action is StepAction.HALT
        assert isinstance(state.get(ERROR), ProvisionError)
        hook.assert_not_called()
