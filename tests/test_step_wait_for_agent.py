"""Tests for the guest agent wait."""

import threading
from datetime import timedelta
from unittest.mock import MagicMock

from kubevirt_iso_builder.config import Settings
from kubevirt_iso_builder.errors import BuildCancelledError, RemoteCallError, WaitTimeoutError
from kubevirt_iso_builder.models import ERROR, GUEST_AGENT, StateBag, StepAction
from kubevirt_iso_builder.steps.wait_for_agent import StepWaitForAgent, agent_connected


def vmi_conditions(*conditions: tuple[str, str]) -> dict:
    return {"status": {"conditions": [{"type": t, "status": s} for t, s in conditions]}}


class TestAgentConnected:
    """Tests for condition matching."""

    def test_connected(self) -> None:
        """Test AgentConnected=True is detected."""
        assert agent_connected(vmi_conditions(("Ready", "True"), ("AgentConnected", "True")))

    def test_not_connected(self) -> None:
        """Test other states are not connected."""
        assert not agent_connected(vmi_conditions(("AgentConnected", "False")))
        assert not agent_connected(vmi_conditions(("Ready", "True")))
        assert not agent_connected({"status": {}})


class TestStepWaitForAgent:
    """Tests for StepWaitForAgent class."""

    def test_zero_timeout_skips(
        self,
        settings: Settings,
        mock_client: MagicMock,
        state: StateBag,
        cancel: threading.Event,
    ) -> None:
        """Test the step is skipped by default."""
        action = StepWaitForAgent(settings, mock_client, cancel).run(state)

        assert action is StepAction.CONTINUE
        assert GUEST_AGENT not in state
        mock_client.get_virtual_machine_instance.assert_not_called()

    def test_waits_until_connected(
        self,
        settings: Settings,
        mock_client: MagicMock,
        state: StateBag,
        cancel: threading.Event,
    ) -> None:
        """Test polling continues until the agent connects."""
        settings.agent_wait_timeout = timedelta(seconds=5)
        mock_client.get_virtual_machine_instance.side_effect = [
            vmi_conditions(("AgentConnected", "False")),
            vmi_conditions(("AgentConnected", "True")),
        ]

        action = StepWaitForAgent(settings, mock_client, cancel, poll_interval=0.01).run(state)

        assert action is StepAction.CONTINUE
        assert state.get(GUEST_AGENT) is True
        mock_client.get_virtual_machine_instance.assert_called_with("images", "fedora-42-builder")

    def test_timeout_halts(
        self,
        settings: Settings,
        mock_client: MagicMock,
        state: StateBag,
        cancel: threading.Event,
    ) -> None:
        """Test the step halts when the agent never connects."""
        settings.agent_wait_timeout = timedelta(seconds=0.1)
        mock_client.get_virtual_machine_instance.return_value = vmi_conditions()

        action = StepWaitForAgent(settings, mock_client, cancel, poll_interval=0.01).run(state)

        assert action is StepAction.HALT
        assert isinstance(state.get(ERROR), WaitTimeoutError)

    def test_cancel_mid_wait(
        self,
        settings: Settings,
        mock_client: MagicMock,
        state: StateBag,
        cancel: threading.Event,
    ) -> None:
        """Test cancellation halts within one interval."""
        settings.agent_wait_timeout = timedelta(minutes=10)
        mock_client.get_virtual_machine_instance.return_value = vmi_conditions()
        threading.Timer(0.05, cancel.set).start()

        action = StepWaitForAgent(settings, mock_client, cancel, poll_interval=0.02).run(state)

        assert action is StepAction.HALT
        assert isinstance(state.get(ERROR), BuildCancelledError)
        assert GUEST_AGENT not in state

    def test_poll_error_halts(
        self,
        settings: Settings,
        mock_client: MagicMock,
        state: StateBag,
        cancel: threading.Event,
    ) -> None:
        """Test an API error halts."""
        settings.agent_wait_timeout = timedelta(seconds=5)
        mock_client.get_virtual_machine_instance.side_effect = RemoteCallError("boom", status=500)

        action = StepWaitForAgent(settings, mock_client, cancel, poll_interval=0.01).run(state)

        assert action is StepAction.HALT
        assert isinstance(state.get(ERROR), RemoteCallError)
