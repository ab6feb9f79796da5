"""Pytest fixtures for KubeVirt ISO builder tests."""

import threading
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from kubevirt_iso_builder.config import Settings
from kubevirt_iso_builder.kubevirt_client import KubeVirtClient
from kubevirt_iso_builder.models import StateBag


@pytest.fixture
def settings() -> Settings:
    """Create prepared test settings."""
    settings = Settings(
        name="fedora-42",
        namespace="images",
        iso_volume_name="fedora-42-iso",
        disk_size="10Gi",
        instance_type="u1.medium",
        preference="fedora",
        vm_ready_timeout=timedelta(seconds=2),
        volume_ready_timeout=timedelta(seconds=2),
        stop_timeout=timedelta(seconds=2),
        ip_wait_timeout=timedelta(seconds=2),
        ip_settle_timeout=timedelta(0),
        api_timeout_seconds=10,
    )
    settings.prepare()
    return settings


@pytest.fixture
def mock_client(settings: Settings) -> MagicMock:
    """Create a mock KubeVirt client."""
    with (
        patch.object(KubeVirtClient, "_load_config"),
        patch("kubevirt_iso_builder.kubevirt_client.client"),
    ):
        client = MagicMock(spec=KubeVirtClient)
        client.settings = settings
        return client


@pytest.fixture
def state() -> StateBag:
    """Create an empty state bag."""
    return StateBag()


@pytest.fixture
def cancel() -> threading.Event:
    """Create an unset cancellation event."""
    return threading.Event()
